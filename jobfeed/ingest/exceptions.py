"""
Exceptions raised by the import pipeline.

Record-level problems never surface as exceptions outside the pipeline;
they are collected into the import report. The exceptions here either
stop an import before decoding begins or abort it part-way.
"""


class PipelineError(Exception):
    """Base class for import pipeline errors."""
    pass


class FeedError(PipelineError):
    """Raised when a feed cannot be opened or decoded at all."""
    status_code = 400


class MissingSourceError(FeedError):
    """Raised when an import request names no feed."""
    status_code = 400


class ContentTypeMismatchError(FeedError):
    """Raised when a feed's content type does not match a supported format."""
    status_code = 415

    def __init__(self, message: str, content_type: str = ""):
        super().__init__(message)
        self.content_type = content_type


class FeedFetchError(FeedError):
    """Raised when the feed URL cannot be fetched."""
    status_code = 502


class RecordWriteError(PipelineError):
    """Raised by a sink when a single record cannot be written."""
    pass


class SinkUnavailableError(PipelineError):
    """Raised by a sink when it can no longer execute statements."""
    pass


class BatchAbortedError(PipelineError):
    """Raised when a whole batch fails and the run cannot continue."""

    def __init__(self, message: str, batch_size: int):
        super().__init__(message)
        self.batch_size = batch_size


class ImportStateError(PipelineError):
    """Raised when a coordinator is used outside its lifecycle."""
    pass
