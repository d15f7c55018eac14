# Test configuration

import json
import os
import sys

import pytest
from sqlalchemy import select

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from jobfeed.catalog.database import create_sqlite_engine  # noqa: E402
from jobfeed.catalog.models import Base, Job  # noqa: E402
from jobfeed.catalog.schema import get_schema_descriptor, invalidate_schema_cache  # noqa: E402
from jobfeed.config.settings import Settings  # noqa: E402


@pytest.fixture
def engine(tmp_path):
    """SQLite database with the jobs and import_run tables."""
    engine = create_sqlite_engine(f"sqlite:///{tmp_path / 'jobfeed.db'}")
    Base.metadata.create_all(bind=engine)
    invalidate_schema_cache()
    yield engine
    invalidate_schema_cache()
    engine.dispose()


@pytest.fixture
def schema(engine):
    """Reflected descriptor of the jobs table."""
    return get_schema_descriptor(engine, "jobs")


@pytest.fixture
def test_settings(engine):
    """Settings pointing at the test database"""
    return Settings(
        database_url=str(engine.url),
        import_token="test-token",
        import_batch_size=2,
        feed_fetch_retries=1,
    )


@pytest.fixture
def fetch_jobs(engine):
    """Return stored jobs as dicts keyed by (company_slug, internal_job_id)."""
    columns = [
        Job.company_slug, Job.internal_job_id, Job.title, Job.city,
        Job.is_active, Job.salary_min, Job.departments, Job.extra,
    ]

    def fetch():
        with engine.connect() as conn:
            rows = conn.execute(select(*columns)).mappings().all()
        return {(row["company_slug"], row["internal_job_id"]): dict(row) for row in rows}

    return fetch


def ndjson(*records) -> bytes:
    """Encode records (dicts or raw strings) as NDJSON bytes."""
    lines = [r if isinstance(r, str) else json.dumps(r) for r in records]
    return ("\n".join(lines) + "\n").encode("utf-8")


def job(slug: str = "acme", job_id: str = "1", **fields) -> dict:
    return {"company_slug": slug, "internal_job_id": job_id, **fields}
