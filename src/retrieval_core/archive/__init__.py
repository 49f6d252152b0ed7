"""Remote archive access: transport, circuit breaker, client and download queue."""

from __future__ import annotations

from retrieval_core.archive.breaker import CircuitBreaker, CircuitBreakerState
from retrieval_core.archive.client import ArchiveClient
from retrieval_core.archive.download_queue import DownloadQueue
from retrieval_core.archive.models import ArchivedFileRef, DownloadLayout, DownloadQueueEntry
from retrieval_core.archive.transport import (
    ArchiveTransport,
    HttpArchiveTransport,
    filter_archive_files,
)

__all__ = [
    "ArchiveClient",
    "ArchiveTransport",
    "ArchivedFileRef",
    "CircuitBreaker",
    "CircuitBreakerState",
    "DownloadLayout",
    "DownloadQueue",
    "DownloadQueueEntry",
    "HttpArchiveTransport",
    "filter_archive_files",
]
