"""
retrieval_core/result.py

Result types for operations whose failure is a normal outcome.

Error Handling Convention:
--------------------------
1. **Exceptions** are raised for configuration and programmer errors:
   - ConfigValidationError: invalid settings file
   - ValueError: invalid arguments to functions

2. **Result types** (this module) are returned when a retrieval step can fail
   for reasons outside the caller's control:
   - a download queue flush that aborts on the first failed file
   - a condenser pass over a missing or unreadable file

3. Plain ``None``/``False`` returns are used for "not found" answers
   (``Resolver.find``), with the explanation sent to the status reporter.

Usage:
------
    from retrieval_core.result import Ok, Err

    def flush() -> Result[list[Path]]:
        ...
        return Err("download_failed", "Archive returned HTTP 503 for file 1234")

    result = queue.flush(work_dir)
    if not result.is_ok:
        reporter.error(result.message)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

T = TypeVar("T")


@dataclass
class Result(Generic[T]):
    """
    Either success (Ok), failure (Err), or a skipped operation (Noop).

    Attributes:
        status: "ok", "error" or "noop"
        value: The success value (only meaningful when status="ok")
        error: Error code (only meaningful when status="error")
        message: Human-readable message (error text or skip reason)
        warnings: Non-fatal problems collected along the way
        extras: Additional context (counts, paths, ...)
    """

    status: str
    value: T | None = None
    error: str | None = None
    message: str | None = None
    warnings: list[str] = field(default_factory=list)
    extras: dict[str, Any] = field(default_factory=dict)

    @property
    def is_ok(self) -> bool:
        return self.status == "ok"

    @property
    def is_err(self) -> bool:
        return self.status == "error"

    @property
    def is_noop(self) -> bool:
        return self.status == "noop"

    def __bool__(self) -> bool:
        # Noop counts as success: nothing needed doing
        return self.status != "error"

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dict for JSON output."""
        d: dict[str, Any] = {"status": self.status}
        if self.status == "ok":
            if self.value is not None:
                d["value"] = self.value
        elif self.status == "error":
            if self.error:
                d["error"] = self.error
            if self.message:
                d["message"] = self.message
        elif self.status == "noop":
            if self.message:
                d["reason"] = self.message
        if self.warnings:
            d["warnings"] = list(self.warnings)
        d.update(self.extras)
        return d


def Ok(value: T = None, **extras: Any) -> Result[T]:  # noqa: N802 - intentional PascalCase
    """Create a successful result."""
    return Result(status="ok", value=value, extras=extras)


def Err(error: str, message: str | None = None, **extras: Any) -> Result[Any]:  # noqa: N802
    """Create a failure result."""
    return Result(status="error", error=error, message=message, extras=extras)


def Noop(reason: str, **extras: Any) -> Result[Any]:  # noqa: N802
    """Create a no-operation result (skipped)."""
    return Result(status="noop", message=reason, extras=extras)
