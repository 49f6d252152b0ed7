"""Hashcheck sidecar files for cached copies.

A cached data file ``X`` may have a companion ``X.hashcheck`` recording the
size, UTC modification time and content hash it had when it was cached:

    # Hashcheck file created 2024-03-01 10:22:41 UTC
    size=1234567
    modification_date_utc=2024-03-01 10:20:05
    hashtype=md5
    hash=9e107d9d372bb6826bd81d3542a419d6

Validation checks size, then modification time, then (unless the record was
confirmed recently) the hash. Hashing a multi-gigabyte file is the expensive
part, so a record younger than ``recheck_interval_days`` is trusted after the
cheap checks pass.
"""

from __future__ import annotations

import hashlib
import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from retrieval_core.stability import stable_api

logger = logging.getLogger(__name__)

HASHCHECK_SUFFIX = ".hashcheck"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
SUPPORTED_HASH_TYPES = ("md5", "sha1", "sha256")
SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class HashcheckRecord:
    size: int
    modification_date_utc: datetime
    hash_type: str = "md5"
    hash: str = ""

    def to_text(self) -> str:
        created = datetime.now(timezone.utc).strftime(DATE_FORMAT)
        return (
            f"# Hashcheck file created {created} UTC\n"
            f"size={self.size}\n"
            f"modification_date_utc={self.modification_date_utc.strftime(DATE_FORMAT)}\n"
            f"hashtype={self.hash_type}\n"
            f"hash={self.hash}\n"
        )

    @classmethod
    def from_text(cls, text: str) -> HashcheckRecord:
        values: dict[str, str] = {}
        for raw_line in text.splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, _, value = line.partition("=")
            values[key.strip().lower()] = value.strip()

        if "size" not in values or "modification_date_utc" not in values:
            raise ValueError("hashcheck record is missing size or modification_date_utc")
        modified = datetime.strptime(values["modification_date_utc"], DATE_FORMAT)
        return cls(
            size=int(values["size"]),
            modification_date_utc=modified.replace(tzinfo=timezone.utc),
            hash_type=values.get("hashtype", "md5").lower() or "md5",
            hash=values.get("hash", ""),
        )


@dataclass
class HashcheckValidation:
    valid: bool
    error_message: str = ""
    hash_computed: bool = False
    hash_mismatch: bool = False

    def __bool__(self) -> bool:
        return self.valid


def hashcheck_path_for(data_file: Path) -> Path:
    data_file = Path(data_file)
    return data_file.with_name(data_file.name + HASHCHECK_SUFFIX)


def file_modification_utc(path: Path) -> datetime:
    """Modification time of ``path`` in UTC, truncated to whole seconds."""
    mtime = int(Path(path).stat().st_mtime)
    return datetime.fromtimestamp(mtime, tz=timezone.utc)


def compute_file_hash(path: Path, hash_type: str = "md5") -> str:
    """Hex digest of a file, streamed in 1 MB chunks."""
    hash_type = hash_type.lower()
    if hash_type not in SUPPORTED_HASH_TYPES:
        raise ValueError(f"Unsupported hash type: {hash_type}")
    h = hashlib.new(hash_type)
    with Path(path).open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def read_hashcheck_file(hashcheck_file: Path) -> HashcheckRecord:
    return HashcheckRecord.from_text(Path(hashcheck_file).read_text(encoding="utf-8"))


def write_hashcheck_file(hashcheck_file: Path, record: HashcheckRecord) -> Path:
    hashcheck_file = Path(hashcheck_file)
    hashcheck_file.write_text(record.to_text(), encoding="utf-8")
    return hashcheck_file


@stable_api
def create_hashcheck_file(
    data_file: Path, compute_hash: bool = True, hash_type: str = "md5"
) -> Path | None:
    """Write ``<data_file>.hashcheck`` for an existing file.

    Returns:
        The sidecar path, or None if ``data_file`` does not exist
    """
    data_file = Path(data_file)
    if not data_file.is_file():
        logger.warning("Cannot create hashcheck file; data file not found: %s", data_file)
        return None
    record = HashcheckRecord(
        size=data_file.stat().st_size,
        modification_date_utc=file_modification_utc(data_file),
        hash_type=hash_type.lower(),
        hash=compute_file_hash(data_file, hash_type) if compute_hash else "",
    )
    return write_hashcheck_file(hashcheck_path_for(data_file), record)


@stable_api
def validate_file_vs_hashcheck(
    data_file: Path,
    hashcheck_file: Path,
    hash_type: str = "md5",
    recheck_interval_days: float = 0,
    check_date: bool = True,
    compute_hash: bool = True,
) -> HashcheckValidation:
    """Check a data file against its hashcheck record.

    Args:
        data_file: File to validate
        hashcheck_file: Its sidecar
        hash_type: Hash used when the record does not name one
        recheck_interval_days: Trust a record confirmed less than this many
            days ago (the sidecar's own mtime) without hashing
        check_date: Require the data file mtime to match the record
        compute_hash: Allow hashing; False validates on size and date only
    """
    data_file = Path(data_file)
    hashcheck_file = Path(hashcheck_file)

    if not data_file.is_file():
        return HashcheckValidation(False, f"Data file not found: {data_file}")
    try:
        record = read_hashcheck_file(hashcheck_file)
    except FileNotFoundError:
        return HashcheckValidation(False, f"Hashcheck file not found: {hashcheck_file}")
    except (OSError, ValueError) as exc:
        return HashcheckValidation(False, f"Unable to read hashcheck file {hashcheck_file}: {exc}")

    actual_size = data_file.stat().st_size
    if actual_size != record.size:
        return HashcheckValidation(
            False, f"File size mismatch for {data_file.name}: expected {record.size}, actual {actual_size}"
        )

    if check_date:
        actual_date = file_modification_utc(data_file)
        if actual_date != record.modification_date_utc:
            return HashcheckValidation(
                False,
                f"File modification date mismatch for {data_file.name}: "
                f"expected {record.modification_date_utc.strftime(DATE_FORMAT)}, "
                f"actual {actual_date.strftime(DATE_FORMAT)}",
            )

    if recheck_interval_days > 0:
        age_seconds = time.time() - hashcheck_file.stat().st_mtime
        if age_seconds < recheck_interval_days * SECONDS_PER_DAY:
            return HashcheckValidation(True)

    if not compute_hash or not record.hash:
        return HashcheckValidation(True)

    try:
        actual_hash = compute_file_hash(data_file, record.hash_type or hash_type)
    except (OSError, ValueError) as exc:
        return HashcheckValidation(False, f"Unable to hash {data_file.name}: {exc}")
    if actual_hash.lower() != record.hash.lower():
        return HashcheckValidation(
            False,
            f"{record.hash_type} hash mismatch for {data_file.name}: "
            f"expected {record.hash}, actual {actual_hash}",
            hash_computed=True,
            hash_mismatch=True,
        )

    # Restart the recheck interval
    os.utime(hashcheck_file, None)
    return HashcheckValidation(True, hash_computed=True)
