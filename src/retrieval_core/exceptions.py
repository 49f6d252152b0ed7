"""Exception hierarchy for the retrieval engine.

Expected misses (a file absent from every tier, the archive temporarily
unreachable) are not exceptions; they are reported through a
``StatusReporter`` and returned as ``None``/``False``/``Result``. The classes
below cover configuration problems and conditions that the component raising
them cannot resolve locally.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping


@dataclass
class RetrievalError(Exception):
    message: str
    code: str = "retrieval_error"
    context: dict[str, Any] = field(default_factory=dict)

    def __init__(
        self, message: str, *, code: str | None = None, context: Mapping[str, Any] | None = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.code
        self.context = dict(context or {})

    def __str__(self) -> str:
        return self.message

    def as_log_fields(self) -> dict[str, Any]:
        return {
            "error_code": self.code,
            "error_message": self.message,
            "error_context": self.context,
        }


class ConfigValidationError(RetrievalError):
    code = "config_validation_error"


class YamlParseError(RetrievalError):
    code = "yaml_parse_error"


class ArchiveError(RetrievalError):
    """The remote archive answered, but not with something usable."""

    code = "archive_error"


class ArchiveConnectivityError(ArchiveError):
    """The remote archive could not be reached (connect failure, timeout)."""

    code = "archive_offline"


class ArchiveExtractionError(RetrievalError):
    """Raised when archive extraction fails due to safety checks."""

    code = "archive_extraction_error"


class PathTraversalError(ArchiveExtractionError):
    code = "path_traversal"


class SymlinkError(ArchiveExtractionError):
    code = "symlink_not_allowed"


class DecompressionBombError(ArchiveExtractionError):
    code = "decompression_bomb"


class TooManyFilesError(ArchiveExtractionError):
    code = "too_many_files"


class ExtractedSizeLimitError(ArchiveExtractionError):
    code = "extracted_size_limit"
