# API routes

import secrets
from typing import Optional
from uuid import UUID

from fastapi import (
    APIRouter, Body, Depends, File, Form, Header, HTTPException, Query,
    UploadFile, status,
)
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from jobfeed.catalog.database import get_db, get_engine
from jobfeed.catalog.models import ImportRun, Job
from jobfeed.catalog.schema import get_schema_descriptor, invalidate_schema_cache
from jobfeed.config.settings import MAX_BATCH_SIZE, MIN_BATCH_SIZE, Settings, get_settings
from jobfeed.ingest.exceptions import FeedError, MissingSourceError
from jobfeed.ingest.service import ImportOptions, ImportResult, ImportService
from jobfeed.ingest.source import FeedFormat, FeedStream

router = APIRouter()


class ImportRequest(BaseModel):
    url: Optional[str] = None
    dryRun: Optional[bool] = None
    insertOnly: Optional[bool] = None
    batchSize: Optional[int] = Field(None, ge=MIN_BATCH_SIZE, le=MAX_BATCH_SIZE)
    format: Optional[FeedFormat] = None


class ImportRunResponse(BaseModel):
    id: str
    source: str
    format: str
    status: str
    dryRun: bool
    insertOnly: bool
    cancelled: bool
    read: int
    written: int
    rejectedCount: int
    rejected: list
    error: Optional[str] = None
    startedAt: str
    finishedAt: Optional[str] = None


def require_import_token(
    x_import_token: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
):
    """Check the shared import token sent in the x-import-token header."""
    expected = settings.import_token
    if not expected:
        raise HTTPException(
            status_code=500,
            detail={"ok": False, "error": "IMPORT_TOKEN not set"}
        )
    if not x_import_token or not secrets.compare_digest(x_import_token, expected):
        raise HTTPException(
            status_code=401,
            detail={"ok": False, "error": "unauthorized"}
        )


def get_import_service(
    engine: Engine = Depends(get_engine),
    settings: Settings = Depends(get_settings),
) -> ImportService:
    return ImportService(engine, settings)


def _first(*values):
    for value in values:
        if value is not None:
            return value
    return None


def _respond(result: ImportResult) -> JSONResponse:
    code = status.HTTP_503_SERVICE_UNAVAILABLE if result.aborted else status.HTTP_200_OK
    return JSONResponse(status_code=code, content=result.to_dict())


def _feed_error(e: FeedError) -> HTTPException:
    detail = {"ok": False, "error": str(e)}
    content_type = getattr(e, "content_type", None)
    if content_type:
        detail["contentType"] = content_type
    return HTTPException(status_code=e.status_code, detail=detail)


@router.post("/import", dependencies=[Depends(require_import_token)])
def import_from_url(
    body: Optional[ImportRequest] = Body(None),
    url: Optional[str] = Query(None),
    dry_run: Optional[bool] = Query(None, alias="dryRun"),
    insert_only: Optional[bool] = Query(None, alias="insertOnly"),
    batch_size: Optional[int] = Query(
        None, alias="batchSize", ge=MIN_BATCH_SIZE, le=MAX_BATCH_SIZE),
    feed_format: Optional[FeedFormat] = Query(None, alias="format"),
    service: ImportService = Depends(get_import_service),
):
    """
    Import a job feed from a URL.

    - **url**: Feed URL (query parameter or JSON body)
    - **dryRun**: Validate and count without writing
    - **insertOnly**: Skip rows whose identity already exists
    - **batchSize**: Records per transaction (1-5000)
    - **format**: ndjson, csv or tsv when the content type is generic

    Returns the import report. An aborted run answers 503 with the partial
    counts; a feed that cannot be fetched answers 502.

    The run is not tied to the client connection. IMPORT_TIMEOUT_SECONDS,
    when set, is the only limit on an HTTP-initiated run; a client that
    disconnects does not stop it.
    """
    body = body or ImportRequest()
    feed_url = _first(url, body.url)
    options = ImportOptions(
        dry_run=_first(dry_run, body.dryRun),
        insert_only=_first(insert_only, body.insertOnly),
        batch_size=_first(batch_size, body.batchSize),
        feed_format=_first(feed_format, body.format),
    )

    try:
        if not feed_url:
            raise MissingSourceError("Missing url")
        result = service.import_url(feed_url, options)
    except FeedError as e:
        raise _feed_error(e)

    return _respond(result)


@router.post("/import/upload", dependencies=[Depends(require_import_token)])
def import_from_upload(
    file: UploadFile = File(...),
    dry_run: Optional[bool] = Form(None, alias="dryRun"),
    insert_only: Optional[bool] = Form(None, alias="insertOnly"),
    batch_size: Optional[int] = Form(
        None, alias="batchSize", ge=MIN_BATCH_SIZE, le=MAX_BATCH_SIZE),
    feed_format: Optional[FeedFormat] = Form(None, alias="format"),
    service: ImportService = Depends(get_import_service),
):
    """
    Import an uploaded feed file.

    The file is streamed through the pipeline; its format comes from the
    part's content type, the format field, or the file extension.
    """
    feed = FeedStream.from_file(
        file.file,
        content_type=file.content_type or "",
        name=file.filename or "",
    )
    options = ImportOptions(
        dry_run=dry_run,
        insert_only=insert_only,
        batch_size=batch_size,
        feed_format=feed_format,
    )

    try:
        result = service.run(feed, options)
    except FeedError as e:
        raise _feed_error(e)

    return _respond(result)


@router.get("/imports/{import_id}", response_model=ImportRunResponse)
def get_import_run(import_id: str, db: Session = Depends(get_db)):
    """Get the recorded report of a past import run."""
    try:
        run_id = UUID(import_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid import ID format")

    run = db.get(ImportRun, run_id)
    if not run:
        raise HTTPException(status_code=404, detail="Import run not found")

    return ImportRunResponse(
        id=str(run.id),
        source=run.source,
        format=run.feed_format,
        status=run.status,
        dryRun=run.dry_run,
        insertOnly=run.insert_only,
        cancelled=run.cancelled,
        read=run.read_count,
        written=run.written_count,
        rejectedCount=run.rejected_count,
        rejected=run.rejected_sample or [],
        error=run.error_message,
        startedAt=run.started_at.isoformat(),
        finishedAt=run.finished_at.isoformat() if run.finished_at else None,
    )


@router.get("/jobs/count")
def count_jobs(
    company_slug: Optional[str] = Query(None, alias="companySlug"),
    db: Session = Depends(get_db),
):
    """Count imported job postings, optionally for one company."""
    query = select(func.count()).select_from(Job)
    if company_slug:
        query = query.where(Job.company_slug == company_slug)
    return {"count": db.execute(query).scalar_one()}


@router.post("/admin/schema/refresh", dependencies=[Depends(require_import_token)])
def refresh_schema(
    engine: Engine = Depends(get_engine),
    settings: Settings = Depends(get_settings),
):
    """Drop the cached target-table schema and reload it."""
    removed = invalidate_schema_cache()
    table = settings.import_table
    descriptor = get_schema_descriptor(engine, table)
    if descriptor is None:
        raise HTTPException(
            status_code=503,
            detail={"ok": False, "error": f"Table {table!r} is not available"}
        )
    return {
        "ok": True,
        "invalidated": removed,
        "table": descriptor.table,
        "columns": {name: kind.value for name, kind in descriptor.columns.items()},
    }
