"""HTTP transport for the remote archive service.

The archive exposes two JSON/HTTP endpoints:

    GET {base_url}/files?dataset=<name>
        -> {"files": [{"id": 1234, "dataset": "...", "relative_path": "SIC_1/x.txt",
                       "transaction_id": 98765, "is_directory": false,
                       "size": 1024, "hash": "..."}]}

    GET {base_url}/download/<id>
        -> file bytes (streamed)

Name and subdirectory filters support ``*``/``?`` wildcards and are applied
client-side, case-insensitively. When several archived files share one
relative path, only the one from the newest transaction is reported.

Connection failures and timeouts are raised as
``ArchiveConnectivityError`` so the archive client can count them toward its
circuit breaker; any other failure is an ``ArchiveError``.
"""

from __future__ import annotations

import fnmatch
import logging
import os
from collections.abc import Iterable
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import requests

from retrieval_core.archive.models import ArchivedFileRef
from retrieval_core.exceptions import ArchiveConnectivityError, ArchiveError
from retrieval_core.network_utils import _with_retries, is_connectivity_error
from retrieval_core.secrets import SecretStr
from retrieval_core.stability import stable_api

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
DEFAULT_CONNECT_TIMEOUT = 15.0
DEFAULT_READ_TIMEOUT = 300.0
TOKEN_HEADER = "X-Archive-Token"


@runtime_checkable
class ArchiveTransport(Protocol):
    def find_files(
        self, file_name: str, subdirectory: str, dataset: str, recurse: bool
    ) -> list[ArchivedFileRef]: ...

    def download_file(self, ref: ArchivedFileRef, destination: Path) -> Path: ...


def _matches(pattern: str, value: str) -> bool:
    return fnmatch.fnmatchcase(value.lower(), pattern.lower())


def _path_matches(pattern: str, path: str) -> bool:
    # Wildcards match within one path segment
    pattern_parts = pattern.split("/")
    path_parts = path.split("/")
    if len(pattern_parts) != len(path_parts):
        return False
    return all(_matches(p, s) for p, s in zip(pattern_parts, path_parts))


def _subdirectory_matches(pattern: str, subdirectory: str, recurse: bool) -> bool:
    pattern = pattern.replace("\\", "/").strip("/")
    if not pattern:
        return recurse or subdirectory == ""
    if _path_matches(pattern, subdirectory):
        return True
    if not recurse:
        return False
    # Recursive searches also accept anything below a matching directory
    parts = subdirectory.split("/")
    return any(_path_matches(pattern, "/".join(parts[:depth])) for depth in range(1, len(parts)))


@stable_api
def filter_archive_files(
    refs: Iterable[ArchivedFileRef], file_name: str, subdirectory: str, recurse: bool
) -> list[ArchivedFileRef]:
    """Apply name/subdirectory filters, then keep the newest file per path."""
    name_pattern = file_name or "*"
    newest: dict[str, ArchivedFileRef] = {}
    for ref in refs:
        if ref.is_directory:
            continue
        if not _matches(name_pattern, ref.filename):
            continue
        if not _subdirectory_matches(subdirectory, ref.subdirectory, recurse):
            continue
        key = ref.relative_path.lower()
        current = newest.get(key)
        if current is None or ref.transaction_id > current.transaction_id:
            newest[key] = ref
    return sorted(newest.values(), key=lambda item: (item.relative_path.lower(), item.file_id))


class HttpArchiveTransport:
    """``requests``-based archive transport.

    Args:
        base_url: Service root, e.g. ``https://archive.example.org/api``
        api_token: Optional token sent in the ``X-Archive-Token`` header
        timeout: Read timeout in seconds
        max_attempts: Attempts per request for transient HTTP errors
        backoff_base: Base for exponential backoff between attempts
        backoff_max: Maximum backoff in seconds
        session: Optional pre-built session (tests inject a mock)
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_token: SecretStr | str | None = None,
        timeout: float = DEFAULT_READ_TIMEOUT,
        max_attempts: int = 3,
        backoff_base: float = 2.0,
        backoff_max: float = 60.0,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = (DEFAULT_CONNECT_TIMEOUT, timeout)
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.session = session or requests.Session()
        token = api_token if isinstance(api_token, SecretStr) else SecretStr(api_token)
        if token:
            self.session.headers[TOKEN_HEADER] = token.reveal()

    def _get(self, url: str, **kwargs: Any) -> requests.Response:
        def _fetch() -> requests.Response:
            resp = self.session.get(url, timeout=self.timeout, **kwargs)
            resp.raise_for_status()
            return resp

        def _log_retry(attempt: int, exc: Exception) -> None:
            logger.warning("Archive request failed (attempt %d): %s; retrying %s", attempt, exc, url)

        try:
            return _with_retries(
                _fetch,
                max_attempts=self.max_attempts,
                backoff_base=self.backoff_base,
                backoff_max=self.backoff_max,
                on_retry=_log_retry,
            )
        except requests.exceptions.RequestException as exc:
            if is_connectivity_error(exc):
                raise ArchiveConnectivityError(
                    f"Unable to connect to the archive: {exc}", context={"url": url}
                ) from exc
            raise ArchiveError(f"Archive request failed: {exc}", context={"url": url}) from exc

    def list_dataset_files(self, dataset: str) -> list[ArchivedFileRef]:
        resp = self._get(f"{self.base_url}/files", params={"dataset": dataset})
        try:
            payload = resp.json()
        except ValueError as exc:
            raise ArchiveError(
                f"Invalid JSON from archive for dataset {dataset}: {exc}",
                context={"dataset": dataset},
            ) from exc
        records = payload.get("files", []) if isinstance(payload, dict) else payload
        if not isinstance(records, list):
            raise ArchiveError(
                f"Unexpected archive listing for dataset {dataset}", context={"dataset": dataset}
            )
        refs = []
        for record in records:
            ref = ArchivedFileRef.from_dict(record)
            if not ref.dataset:
                ref = ArchivedFileRef(
                    file_id=ref.file_id,
                    dataset=dataset,
                    relative_path=ref.relative_path,
                    transaction_id=ref.transaction_id,
                    is_directory=ref.is_directory,
                    size=ref.size,
                    hash=ref.hash,
                )
            refs.append(ref)
        return refs

    def find_files(
        self, file_name: str, subdirectory: str, dataset: str, recurse: bool
    ) -> list[ArchivedFileRef]:
        return filter_archive_files(
            self.list_dataset_files(dataset), file_name, subdirectory, recurse
        )

    def download_file(self, ref: ArchivedFileRef, destination: Path) -> Path:
        """Stream one archived file to ``destination`` (via a ``.part`` file)."""
        destination.parent.mkdir(parents=True, exist_ok=True)
        temp_path = destination.with_name(f"{destination.name}.part")
        resp = self._get(f"{self.base_url}/download/{ref.file_id}", stream=True)
        try:
            with temp_path.open("wb") as f:
                for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
        except requests.exceptions.RequestException as exc:
            if is_connectivity_error(exc):
                raise ArchiveConnectivityError(
                    f"Connection lost downloading archive file {ref.file_id}: {exc}",
                    context={"file_id": ref.file_id},
                ) from exc
            raise ArchiveError(
                f"Error downloading archive file {ref.file_id}: {exc}",
                context={"file_id": ref.file_id},
            ) from exc
        finally:
            resp.close()

        if ref.size is not None:
            actual = temp_path.stat().st_size
            if actual != ref.size:
                temp_path.unlink(missing_ok=True)
                raise ArchiveError(
                    f"Size mismatch for archive file {ref.file_id}: expected {ref.size}, got {actual}",
                    context={"file_id": ref.file_id, "path": str(temp_path)},
                )
        os.replace(temp_path, destination)
        return destination
