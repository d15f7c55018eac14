"""Import report accumulated over one run."""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from jobfeed.ingest.records import RejectedRecord

DEFAULT_REJECT_LIMIT = 50


@dataclass
class ImportReport:
    """
    Exact counts for one import run plus a capped sample of rejects.

    ``written`` counts records accepted by the sink (or that would have
    been, in a dry run); ``unchanged`` is the subset the sink resolved as
    no-ops. ``read == written + rejected_count`` holds after every flush.
    """
    reject_limit: int = DEFAULT_REJECT_LIMIT
    dry_run: bool = False
    read: int = 0
    written: int = 0
    unchanged: int = 0
    rejected_count: int = 0
    rejected: List[RejectedRecord] = field(default_factory=list)
    status: str = "idle"
    cancelled: bool = False
    error: Optional[str] = None

    @property
    def balanced(self) -> bool:
        return self.read == self.written + self.rejected_count

    def reject(self, record: RejectedRecord) -> None:
        self.rejected_count += 1
        if len(self.rejected) < self.reject_limit:
            self.rejected.append(record)

    def reject_all(self, records: Iterable[RejectedRecord]) -> None:
        for record in records:
            self.reject(record)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for the HTTP response and the audit record."""
        data: Dict[str, Any] = {"read": self.read}
        if self.dry_run:
            data["wouldWrite"] = self.written
        else:
            data["written"] = self.written
            data["unchanged"] = self.unchanged
        data.update({
            "rejectedCount": self.rejected_count,
            "rejected": [record.to_dict() for record in self.rejected],
            "dryRun": self.dry_run,
            "status": self.status,
            "cancelled": self.cancelled,
        })
        if self.error:
            data["error"] = self.error
        return data
