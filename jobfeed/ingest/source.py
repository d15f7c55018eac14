"""
Feed sources and format detection.

Opens a feed (a URL fetched with a streamed httpx request, or an uploaded
file), decides its format from the content type, the requested format and
the file extension, and hands back a lazy record iterator. Content-type
problems are raised before any record is decoded.
"""

import itertools
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath
from typing import BinaryIO, Callable, Dict, Iterator, Optional, Tuple
from urllib.parse import urlparse

import httpx
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from jobfeed.ingest.decoder import READ_CHUNK_SIZE, iter_ndjson, iter_tabular
from jobfeed.ingest.exceptions import ContentTypeMismatchError, FeedFetchError
from jobfeed.ingest.records import DecodedRecord

logger = logging.getLogger(__name__)


class FeedFormat(str, Enum):
    """Supported feed encodings."""
    NDJSON = "ndjson"
    CSV = "csv"
    TSV = "tsv"


CONTENT_TYPE_FORMATS: Dict[str, FeedFormat] = {
    "application/x-ndjson": FeedFormat.NDJSON,
    "application/ndjson": FeedFormat.NDJSON,
    "application/jsonl": FeedFormat.NDJSON,
    "application/x-jsonlines": FeedFormat.NDJSON,
    "text/csv": FeedFormat.CSV,
    "application/csv": FeedFormat.CSV,
    "text/comma-separated-values": FeedFormat.CSV,
    "text/tab-separated-values": FeedFormat.TSV,
}

# Content types that say nothing about the encoding
GENERIC_CONTENT_TYPES = {
    "",
    "text/plain",
    "application/octet-stream",
    "binary/octet-stream",
}

EXTENSION_FORMATS: Dict[str, FeedFormat] = {
    ".ndjson": FeedFormat.NDJSON,
    ".jsonl": FeedFormat.NDJSON,
    ".csv": FeedFormat.CSV,
    ".tsv": FeedFormat.TSV,
}

_HTML_PREFIXES = (b"<!doctype", b"<html")


@dataclass
class FeedStream:
    """An opened feed: its declared content type and its raw bytes."""
    content_type: str
    chunks: Iterator[bytes]
    name: str = ""

    @classmethod
    def from_file(cls, file: BinaryIO, content_type: str = "", name: str = "") -> "FeedStream":
        chunks = iter(lambda: file.read(READ_CHUNK_SIZE), b"")
        return cls(content_type=content_type or "", chunks=chunks, name=name or "")


def media_type(content_type: Optional[str]) -> str:
    """Strip parameters such as charset from a content type."""
    return (content_type or "").split(";")[0].strip().lower()


def format_from_name(name: Optional[str]) -> Optional[FeedFormat]:
    """Guess the feed format from a URL or file name extension."""
    if not name:
        return None
    path = urlparse(name).path if "://" in name else name
    return EXTENSION_FORMATS.get(PurePosixPath(path).suffix.lower())


def resolve_format(
    content_type: Optional[str],
    requested: Optional[FeedFormat] = None,
    name: Optional[str] = None,
) -> FeedFormat:
    """
    Decide the feed format.

    A specific content type wins and must agree with the requested format.
    A generic content type defers to the requested format, then to the
    name's extension.

    Raises:
        ContentTypeMismatchError: For HTML, unsupported or contradicting
            content types, or when no format can be determined
    """
    declared = media_type(content_type)
    if "html" in declared:
        raise ContentTypeMismatchError(
            "Feed returned HTML, not CSV or NDJSON", content_type or "")

    detected = CONTENT_TYPE_FORMATS.get(declared)
    if detected is None and declared not in GENERIC_CONTENT_TYPES:
        raise ContentTypeMismatchError(
            f"Unsupported content type {declared!r}", content_type or "")

    if detected is None:
        detected = requested or format_from_name(name)
        if detected is None:
            raise ContentTypeMismatchError(
                "Cannot determine feed format; pass format=ndjson, csv or tsv",
                content_type or "")

    if requested is not None and requested != detected:
        raise ContentTypeMismatchError(
            f"Requested {requested.value} but feed is {detected.value} ({declared})",
            content_type or "")

    return detected


def looks_like_html(first_chunk: bytes) -> bool:
    head = first_chunk.lstrip(b"\xef\xbb\xbf \t\r\n")[:16].lower()
    return head.startswith(_HTML_PREFIXES)


def peek(chunks: Iterator[bytes]) -> Tuple[bytes, Iterator[bytes]]:
    """Return the first non-empty chunk and an iterator that still yields it."""
    for chunk in chunks:
        if chunk:
            return chunk, itertools.chain([chunk], chunks)
    return b"", iter(())


_DECODERS: Dict[FeedFormat, Callable[[Iterator[bytes]], Iterator[DecodedRecord]]] = {
    FeedFormat.NDJSON: iter_ndjson,
    FeedFormat.CSV: lambda chunks: iter_tabular(chunks, delimiter=","),
    FeedFormat.TSV: lambda chunks: iter_tabular(chunks, delimiter="\t"),
}


def decode_feed(
    feed: FeedStream,
    requested: Optional[FeedFormat] = None,
) -> Tuple[FeedFormat, Iterator[DecodedRecord]]:
    """
    Check a feed's type and return its lazy record iterator.

    Only the first chunk is read here, to catch HTML served in place of
    a data file.

    Raises:
        ContentTypeMismatchError: Before any record is decoded
    """
    feed_format = resolve_format(feed.content_type, requested, feed.name)
    first_chunk, chunks = peek(feed.chunks)
    if looks_like_html(first_chunk):
        raise ContentTypeMismatchError(
            "Feed returned HTML, not CSV or NDJSON", feed.content_type)
    return feed_format, _DECODERS[feed_format](chunks)


def _guard_transport(chunks: Iterator[bytes]) -> Iterator[bytes]:
    try:
        yield from chunks
    except httpx.HTTPError as e:
        raise FeedFetchError(f"Feed transfer failed: {e}") from e


def _open_response(client: httpx.Client, url: str, retries: int) -> httpx.Response:
    retrying = Retrying(
        stop=stop_after_attempt(max(1, retries)),
        wait=wait_exponential(multiplier=0.5, max=5),
        retry=retry_if_exception_type(httpx.TransportError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    try:
        for attempt in retrying:
            with attempt:
                request = client.build_request("GET", url)
                response = client.send(request, stream=True)
    except httpx.HTTPError as e:
        raise FeedFetchError(f"Failed to fetch feed: {e}") from e

    if response.status_code >= 400:
        response.close()
        raise FeedFetchError(f"Feed returned HTTP {response.status_code}")
    return response


@contextmanager
def open_feed(
    url: str,
    timeout: float = 30.0,
    retries: int = 3,
    client: Optional[httpx.Client] = None,
) -> Iterator[FeedStream]:
    """
    Open a feed URL as a streamed response.

    Transient connection failures are retried before the first byte;
    failures during the transfer surface as FeedFetchError from the
    chunk iterator.

    Args:
        url: Feed URL
        timeout: Per-operation timeout in seconds
        retries: Attempts for connecting
        client: Optional preconfigured client (not closed here)

    Raises:
        FeedFetchError: If the feed cannot be fetched
    """
    owns_client = client is None
    if client is None:
        client = httpx.Client(timeout=timeout, follow_redirects=True)

    try:
        response = _open_response(client, url, retries)
        try:
            yield FeedStream(
                content_type=response.headers.get("content-type", ""),
                chunks=_guard_transport(response.iter_bytes()),
                name=url,
            )
        finally:
            response.close()
    finally:
        if owns_client:
            client.close()
