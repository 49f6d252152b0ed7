"""Status reporting seam shared by every retrieval component.

Components never raise for expected misses; they describe what happened
through a ``StatusReporter`` handed to them at construction time. The default
implementation forwards to :mod:`logging` and remembers the most recent error
so callers can surface it in a job close-out message.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from retrieval_core.stability import stable_api


@runtime_checkable
class StatusReporter(Protocol):
    def debug(self, message: str) -> None: ...

    def status(self, message: str) -> None: ...

    def warning(self, message: str) -> None: ...

    def error(self, message: str, exc: BaseException | None = None) -> None: ...

    def progress(self, message: str, percent_complete: float) -> None: ...


@stable_api
class LoggingReporter:
    """StatusReporter backed by a :class:`logging.Logger`.

    Args:
        logger: Logger to write to (default: ``retrieval_core``)
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger("retrieval_core")
        self.last_error: str = ""
        self.error_count = 0
        self.warning_count = 0

    def debug(self, message: str) -> None:
        self.logger.debug("%s", message)

    def status(self, message: str) -> None:
        self.logger.info("%s", message)

    def warning(self, message: str) -> None:
        self.warning_count += 1
        self.logger.warning("%s", message)

    def error(self, message: str, exc: BaseException | None = None) -> None:
        self.error_count += 1
        self.last_error = message
        if exc is not None:
            self.logger.error("%s: %s", message, exc, exc_info=exc)
        else:
            self.logger.error("%s", message)

    def progress(self, message: str, percent_complete: float) -> None:
        self.logger.info("%s (%.1f%% complete)", message, percent_complete)
