"""
retrieval_core/condenser.py

Streaming rewrites of concatenated DTA text files (``*_dta.txt``).

A CDTA file is a sequence of spectra, each introduced by a header line::

    =================================== "QC_Shew.0002.0002.3.dta" ==================================
    1234.5678 3   scan=2 cs=3
    100.1 25.0
    101.2 0
    ...

The line after the header is the parent ion line (MH+ and charge); every
other non-blank line is a data point (m/z, intensity). Files can exceed
several gigabytes, so every pass reads line by line and writes a temporary
``<file>.tmp`` that replaces the original only when something changed.

Replacement moves the original to the first free name of ``<file>.old``,
``<file>.old1``, ``<file>.old2`` ..., moves the rewrite into place and, by
default, deletes the backup.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

from retrieval_core.reporting import LoggingReporter, StatusReporter
from retrieval_core.result import Err, Noop, Ok, Result
from retrieval_core.stability import provisional_api, stable_api

logger = logging.getLogger(__name__)

MINIMUM_ION_COUNT = 3
SIZE_THRESHOLD_BYTES = 2**31 - 1
TEMP_SUFFIX = ".tmp"
BACKUP_SUFFIX = ".old"

_DTA_HEADER_RE = re.compile(r"\.(\d+)\.(\d+)\.(\d+)(?:\.dta)?$", re.IGNORECASE)


@dataclass
class CondenseResult:
    """Outcome of one pass over a CDTA file."""

    path: Path
    spectra_parsed: int = 0
    spectra_removed: int = 0
    lines_updated: int = 0
    points_removed: int = 0
    replaced: bool = False
    backup_path: Path | None = None


def _is_header(text: str) -> bool:
    return text.startswith("=")


def _iter_lines(reader: TextIO) -> Iterator[tuple[str, str]]:
    """Yield ``(text, terminator)`` pairs, keeping each line's own line ending."""
    for raw in reader:
        text = raw.rstrip("\r\n")
        yield text, raw[len(text):]


def _next_backup_path(path: Path) -> Path:
    candidate = path.with_name(path.name + BACKUP_SUFFIX)
    addon = 1
    while candidate.exists():
        candidate = path.with_name(f"{path.name}{BACKUP_SUFFIX}{addon}")
        addon += 1
    return candidate


@stable_api
def finalize_replacement(
    original: Path,
    updated: Path,
    has_updates: bool,
    *,
    replace_source: bool = True,
    delete_backup: bool = True,
) -> Path | None:
    """Swap ``updated`` in for ``original`` when ``has_updates``, else drop ``updated``.

    Returns:
        The backup path when a backup was kept, otherwise None
    """
    if not has_updates:
        updated.unlink(missing_ok=True)
        return None
    if not replace_source:
        return None

    backup = _next_backup_path(original)
    os.replace(original, backup)
    os.replace(updated, original)
    if delete_backup:
        backup.unlink()
        return None
    return backup


def _missing(path: Path, operation: str, reporter: StatusReporter) -> Result[CondenseResult]:
    message = f"Error in {operation}: source file not found: {path}"
    reporter.error(message)
    return Err("file_not_found", message, path=str(path))


@stable_api
def remove_sparse_spectra(
    path: Path,
    minimum_ion_count: int = MINIMUM_ION_COUNT,
    *,
    delete_backup: bool = True,
    reporter: StatusReporter | None = None,
) -> Result[CondenseResult]:
    """Drop spectra with fewer than ``minimum_ion_count`` data points.

    Blank lines are carried along with the spectrum they follow but are not
    data points. Anything before the first header is always written.
    """
    reporter = reporter or LoggingReporter(logger)
    path = Path(path)
    if not path.is_file():
        return _missing(path, "remove_sparse_spectra", reporter)

    result = CondenseResult(path=path)
    temp_path = path.with_name(path.name + TEMP_SUFFIX)
    buffer: list[str] = []
    ion_count = 0
    parent_ion_line_is_next = False

    try:
        with path.open("r", encoding="utf-8", newline="") as reader, temp_path.open(
            "w", encoding="utf-8", newline=""
        ) as writer:
            for text, ending in _iter_lines(reader):
                if text and _is_header(text):
                    if buffer:
                        # The first spectrum is always kept, whatever its ion count.
                        # spectra_parsed == 0 means text before the first header.
                        if ion_count >= minimum_ion_count or result.spectra_parsed <= 1:
                            writer.writelines(buffer)
                        else:
                            result.spectra_removed += 1
                        buffer = []
                        ion_count = 0
                    parent_ion_line_is_next = True
                    result.spectra_parsed += 1
                elif text:
                    if parent_ion_line_is_next:
                        parent_ion_line_is_next = False
                    else:
                        ion_count += 1
                buffer.append(text + ending)

            if buffer:
                # No first-spectrum exception at end of file
                if ion_count >= minimum_ion_count or result.spectra_parsed == 0:
                    writer.writelines(buffer)
                else:
                    result.spectra_removed += 1

        if result.spectra_removed:
            reporter.status(
                f"Removed {result.spectra_removed} spectra from {path.name} "
                f"since fewer than {minimum_ion_count} ions"
            )
        result.backup_path = finalize_replacement(
            path, temp_path, result.spectra_removed > 0, delete_backup=delete_backup
        )
        result.replaced = result.spectra_removed > 0
    except (OSError, UnicodeDecodeError) as exc:
        temp_path.unlink(missing_ok=True)
        message = f"Exception in remove_sparse_spectra for {path}: {exc}"
        reporter.error(message, exc)
        return Err("condense_failed", message, path=str(path))
    return Ok(result)


def parse_dta_header(header_line: str) -> tuple[int, int, int]:
    """Return ``(scan_start, scan_end, charge)`` from a DTA header; zeros when unparsable."""
    name = header_line.strip('= "\t')
    match = _DTA_HEADER_RE.search(name)
    if not match:
        return 0, 0, 0
    return int(match.group(1)), int(match.group(2)), int(match.group(3))


@stable_api
def validate_scan_and_cs_tags(
    path: Path,
    replace_source: bool = True,
    output_path: Path | None = None,
    *,
    delete_backup: bool = True,
    reporter: StatusReporter | None = None,
) -> Result[CondenseResult]:
    """Make sure every parent ion line carries ``scan=`` and ``cs=`` tags.

    Missing tags are filled in from the spectrum header
    (``<dataset>.<start scan>.<end scan>.<charge>.dta``). With
    ``replace_source=False`` the rewrite goes to ``output_path`` instead,
    and is removed again when no line needed a tag.
    """
    reporter = reporter or LoggingReporter(logger)
    path = Path(path)
    if not path.is_file():
        return _missing(path, "validate_scan_and_cs_tags", reporter)
    if replace_source:
        target = path.with_name(path.name + TEMP_SUFFIX)
    elif output_path is None:
        message = "validate_scan_and_cs_tags: output_path is required when replace_source is False"
        reporter.error(message)
        return Err("invalid_arguments", message)
    else:
        target = Path(output_path)

    result = CondenseResult(path=path)
    scan_start = charge = 0
    parent_ion_line_is_next = False

    try:
        with path.open("r", encoding="utf-8", newline="") as reader, target.open(
            "w", encoding="utf-8", newline=""
        ) as writer:
            for text, ending in _iter_lines(reader):
                if text and _is_header(text):
                    scan_start, _, charge = parse_dta_header(text)
                    parent_ion_line_is_next = True
                    result.spectra_parsed += 1
                elif text and parent_ion_line_is_next:
                    parent_ion_line_is_next = False
                    updated = text
                    if "scan=" not in updated:
                        updated = f"{updated.strip()}   scan={scan_start}"
                    if "cs=" not in updated:
                        updated = f"{updated.strip()} cs={charge}"
                    if updated != text:
                        result.lines_updated += 1
                        text = updated
                writer.write(text + ending)

        has_updates = result.lines_updated > 0
        result.backup_path = finalize_replacement(
            path, target, has_updates, replace_source=replace_source, delete_backup=delete_backup
        )
        result.replaced = has_updates and replace_source
    except (OSError, UnicodeDecodeError) as exc:
        target.unlink(missing_ok=True)
        message = f"Exception in validate_scan_and_cs_tags for {path}: {exc}"
        reporter.error(message, exc)
        return Err("condense_failed", message, path=str(path))
    return Ok(result)


def _intensity_is_zero(text: str) -> bool:
    parts = text.split()
    if len(parts) < 2:
        return False
    try:
        return float(parts[1]) == 0.0
    except ValueError:
        return False


@provisional_api
def condense_if_oversized(
    path: Path,
    size_threshold_bytes: int = SIZE_THRESHOLD_BYTES,
    *,
    delete_backup: bool = True,
    reporter: StatusReporter | None = None,
) -> Result[CondenseResult]:
    """Shrink a CDTA file larger than ``size_threshold_bytes``.

    Each run of consecutive zero-intensity data points inside a spectrum is
    reduced to its first and last point. Files at or below the threshold are
    left alone (Noop).
    """
    reporter = reporter or LoggingReporter(logger)
    path = Path(path)
    if not path.is_file():
        return _missing(path, "condense_if_oversized", reporter)

    size = path.stat().st_size
    if size <= size_threshold_bytes:
        return Noop("file is below the size threshold", path=str(path), size=size)

    reporter.status(
        f"{path.name} is {size / 1024**3:.2f} GB in size; condensing runs of "
        "consecutive zero-intensity data points"
    )
    result = CondenseResult(path=path)
    temp_path = path.with_name(path.name + TEMP_SUFFIX)
    run: list[str] = []
    parent_ion_line_is_next = False

    def flush_run(writer: TextIO) -> None:
        if len(run) > 2:
            writer.write(run[0])
            writer.write(run[-1])
            result.points_removed += len(run) - 2
        else:
            writer.writelines(run)
        run.clear()

    try:
        with path.open("r", encoding="utf-8", newline="") as reader, temp_path.open(
            "w", encoding="utf-8", newline=""
        ) as writer:
            for text, ending in _iter_lines(reader):
                is_data_point = False
                if text and _is_header(text):
                    parent_ion_line_is_next = True
                    result.spectra_parsed += 1
                elif text and parent_ion_line_is_next:
                    parent_ion_line_is_next = False
                elif text:
                    is_data_point = True

                if is_data_point and _intensity_is_zero(text):
                    run.append(text + ending)
                    continue
                flush_run(writer)
                writer.write(text + ending)
            flush_run(writer)

        has_updates = result.points_removed > 0
        result.backup_path = finalize_replacement(
            path, temp_path, has_updates, delete_backup=delete_backup
        )
        result.replaced = has_updates
    except (OSError, UnicodeDecodeError) as exc:
        temp_path.unlink(missing_ok=True)
        message = f"Exception in condense_if_oversized for {path}: {exc}"
        reporter.error(message, exc)
        return Err("condense_failed", message, path=str(path))

    if result.replaced:
        reporter.status(
            f"Condensing complete; removed {result.points_removed} zero-intensity points, "
            f"new size {path.stat().st_size / 1024**3:.2f} GB"
        )
    return Ok(result)
