"""
retrieval_core/archive/client.py

Remote archive queries behind a circuit breaker.

The client never raises for an unreachable archive: a disabled or failing
archive answers with an empty list and the resolver moves on to the next
tier. Every file found is remembered (by file id) so that an encoded archive
path handed back to the caller can later be turned into a download.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone

from retrieval_core.archive.breaker import CircuitBreaker
from retrieval_core.archive.models import ArchivedFileRef
from retrieval_core.archive.transport import ArchiveTransport
from retrieval_core.exceptions import ArchiveConnectivityError, ArchiveError
from retrieval_core.reporting import LoggingReporter, StatusReporter
from retrieval_core.stability import stable_api

logger = logging.getLogger(__name__)


def _format_timestamp(epoch_seconds: float) -> str:
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


@stable_api
class ArchiveClient:
    """Query the remote archive and remember what it returned.

    Args:
        transport: Anything implementing :class:`ArchiveTransport`
        reporter: Status sink (default: logging)
        breaker: Circuit breaker; one per client
        clock: Time function shared with the default breaker
    """

    def __init__(
        self,
        transport: ArchiveTransport,
        reporter: StatusReporter | None = None,
        breaker: CircuitBreaker | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.transport = transport
        self.reporter = reporter or LoggingReporter(logger)
        self.breaker = breaker or CircuitBreaker(clock=clock)
        self._all_found: dict[int, ArchivedFileRef] = {}
        self._recent: list[ArchivedFileRef] = []

    @property
    def all_found_files(self) -> list[ArchivedFileRef]:
        """Every file found since the last :meth:`clear_all_found_files`."""
        return list(self._all_found.values())

    @property
    def recently_found_files(self) -> list[ArchivedFileRef]:
        """Files returned by the most recent :meth:`query`."""
        return list(self._recent)

    def clear_all_found_files(self) -> None:
        self._all_found.clear()

    def get_cached_file_info(self, file_id: int) -> ArchivedFileRef | None:
        for ref in self._recent:
            if ref.file_id == file_id:
                return ref
        return self._all_found.get(file_id)

    def query(
        self,
        file_name_pattern: str,
        subdirectory: str,
        dataset_name: str,
        recurse: bool = False,
    ) -> list[ArchivedFileRef]:
        """Find files for one dataset; returns ``[]`` when none or when unreachable.

        Args:
            file_name_pattern: File name, ``*`` and ``?`` allowed
            subdirectory: Subdirectory below the dataset directory ('' for the top)
            dataset_name: Dataset to search
            recurse: Also search below ``subdirectory``
        """
        self._recent = []

        was_disabled = self.breaker.state.auto_disabled
        if not self.breaker.allow_request():
            if self.breaker.should_notify_disabled():
                self.reporter.debug(
                    "Archive querying is disabled until "
                    f"{_format_timestamp(self.breaker.state.disabled_until)}; "
                    f"skipping search for {file_name_pattern}"
                )
            return []
        if was_disabled:
            self.reporter.status("Re-enabling archive querying")

        try:
            found = self.transport.find_files(file_name_pattern, subdirectory, dataset_name, recurse)
        except ArchiveConnectivityError as exc:
            if self.breaker.record_failure():
                self.reporter.warning(
                    "Disabling archive querying until "
                    f"{_format_timestamp(self.breaker.state.disabled_until)} "
                    f"after {self.breaker.failure_threshold} consecutive connection failures: {exc}"
                )
            else:
                self.reporter.warning(f"Unable to reach the archive for dataset {dataset_name}: {exc}")
            return []
        except ArchiveError as exc:
            self.reporter.error(
                f"Error searching the archive for {file_name_pattern} in dataset {dataset_name}", exc
            )
            return []

        self.breaker.record_success()
        self._recent = list(found)
        for ref in self._recent:
            self._all_found.setdefault(ref.file_id, ref)
        return list(self._recent)
