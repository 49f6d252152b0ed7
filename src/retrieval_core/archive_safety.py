"""Post-download unpacking of archived files.

Files fetched from the remote archive may be stored zipped (``.zip``) or
gzipped (``.gz``). Both are unpacked into the directory the download landed
in, refusing:
- members whose paths escape that directory (``../``, absolute paths)
- symlink members
- archives with too many members or too many uncompressed bytes
- members that inflate past their declared size
"""

from __future__ import annotations

import gzip
import logging
import os
import stat
import zipfile
import zlib
from dataclasses import dataclass, field
from pathlib import Path

from retrieval_core.exceptions import (
    ArchiveExtractionError,
    DecompressionBombError,
    ExtractedSizeLimitError,
    PathTraversalError,
    SymlinkError,
    TooManyFilesError,
)
from retrieval_core.stability import stable_api

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILES = 10_000
DEFAULT_MAX_EXTRACTED_BYTES = 50 * 1024 * 1024 * 1024  # 50 GB
DEFAULT_MAX_COMPRESSION_RATIO = 200
CHUNK_SIZE = 1024 * 1024


@dataclass
class UnpackedFiles:
    """Files produced by one unpack.

    ``files`` holds ``(file name, path relative to the destination directory)``
    pairs in archive order.
    """

    source: Path
    dest_dir: Path
    files: list[tuple[str, str]] = field(default_factory=list)
    bytes_written: int = 0


@stable_api
def is_path_safe(member_path: str, dest_dir: Path) -> tuple[bool, str | None]:
    """Check whether an archive member lands inside ``dest_dir``.

    Returns:
        Tuple of (is_safe, error_reason)
    """
    normalized = os.path.normpath(member_path.replace("\\", "/"))
    if os.path.isabs(normalized) or member_path.startswith(("/", "\\")):
        return False, f"absolute_path:{member_path}"
    if normalized == ".." or normalized.startswith("../"):
        return False, f"path_traversal:{member_path}"
    try:
        (dest_dir / normalized).resolve().relative_to(dest_dir.resolve())
    except ValueError:
        return False, f"escapes_dest:{member_path}"
    except OSError as e:
        return False, f"path_resolution_error:{member_path}:{e}"
    return True, None


def _copy_limited(src, dst, declared_size: int, name: str) -> int:
    written = 0
    limit = declared_size * 1.1 + CHUNK_SIZE
    while True:
        chunk = src.read(CHUNK_SIZE)
        if not chunk:
            return written
        written += len(chunk)
        if written > limit:
            raise DecompressionBombError(f"File {name} expanded beyond declared size")
        dst.write(chunk)


@stable_api
def safe_extract_zip(
    archive_path: Path,
    dest_dir: Path,
    *,
    max_files: int = DEFAULT_MAX_FILES,
    max_extracted_bytes: int = DEFAULT_MAX_EXTRACTED_BYTES,
    max_compression_ratio: int = DEFAULT_MAX_COMPRESSION_RATIO,
) -> UnpackedFiles:
    """Extract a ZIP archive into ``dest_dir``.

    Raises:
        ArchiveExtractionError: If any safety check fails or the file is not a zip
    """
    archive_path = Path(archive_path)
    dest_dir = Path(dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)
    unpacked = UnpackedFiles(source=archive_path, dest_dir=dest_dir)
    compressed_size = archive_path.stat().st_size

    try:
        zf = zipfile.ZipFile(archive_path, "r")
    except zipfile.BadZipFile as exc:
        raise ArchiveExtractionError(
            f"Not a valid zip file: {archive_path}", context={"path": str(archive_path)}
        ) from exc

    with zf:
        members = zf.infolist()
        if len(members) > max_files:
            raise TooManyFilesError(
                f"Archive contains {len(members)} files, exceeds limit of {max_files}"
            )
        total_uncompressed = sum(m.file_size for m in members)
        if total_uncompressed > max_extracted_bytes:
            raise ExtractedSizeLimitError(
                f"Total uncompressed size {total_uncompressed} exceeds limit {max_extracted_bytes}"
            )
        if compressed_size > 0 and total_uncompressed / compressed_size > max_compression_ratio:
            raise DecompressionBombError(
                f"Compression ratio {total_uncompressed / compressed_size:.1f}x exceeds "
                f"limit {max_compression_ratio}x"
            )

        for member in members:
            is_safe, reason = is_path_safe(member.filename, dest_dir)
            if not is_safe:
                raise PathTraversalError(f"Unsafe path in archive: {reason}")
            if stat.S_ISLNK(member.external_attr >> 16):
                raise SymlinkError(f"Symlink not allowed: {member.filename}")

            relative = os.path.normpath(member.filename.replace("\\", "/"))
            target_path = dest_dir / relative
            if member.is_dir():
                target_path.mkdir(parents=True, exist_ok=True)
                continue

            target_path.parent.mkdir(parents=True, exist_ok=True)
            try:
                with zf.open(member) as src, open(target_path, "wb") as dst:
                    unpacked.bytes_written += _copy_limited(
                        src, dst, member.file_size, member.filename
                    )
            except (zipfile.BadZipFile, zlib.error, EOFError) as exc:
                target_path.unlink(missing_ok=True)
                raise ArchiveExtractionError(
                    f"Corrupt member {member.filename} in {archive_path}: {exc}",
                    context={"path": str(archive_path), "member": member.filename},
                ) from exc
            unpacked.files.append((target_path.name, relative))

    logger.info(
        "ZIP extraction complete: archive=%s files=%d bytes=%d",
        archive_path,
        len(unpacked.files),
        unpacked.bytes_written,
    )
    return unpacked


@stable_api
def gunzip_file(
    gz_path: Path,
    dest_dir: Path | None = None,
    *,
    max_extracted_bytes: int = DEFAULT_MAX_EXTRACTED_BYTES,
) -> UnpackedFiles:
    """Decompress a single-stream ``.gz`` file next to itself (or into ``dest_dir``)."""
    gz_path = Path(gz_path)
    dest_dir = Path(dest_dir) if dest_dir is not None else gz_path.parent
    dest_dir.mkdir(parents=True, exist_ok=True)
    target_name = gz_path.name[:-3] if gz_path.name.lower().endswith(".gz") else f"{gz_path.name}.out"
    target_path = dest_dir / target_name
    unpacked = UnpackedFiles(source=gz_path, dest_dir=dest_dir)

    try:
        with gzip.open(gz_path, "rb") as src, open(target_path, "wb") as dst:
            while True:
                chunk = src.read(CHUNK_SIZE)
                if not chunk:
                    break
                unpacked.bytes_written += len(chunk)
                if unpacked.bytes_written > max_extracted_bytes:
                    raise ExtractedSizeLimitError(
                        f"Decompressed size of {gz_path.name} exceeds limit {max_extracted_bytes}"
                    )
                dst.write(chunk)
    except ExtractedSizeLimitError:
        target_path.unlink(missing_ok=True)
        raise
    except (OSError, EOFError, zlib.error) as exc:
        target_path.unlink(missing_ok=True)
        raise ArchiveExtractionError(
            f"Error decompressing {gz_path}: {exc}", context={"path": str(gz_path)}
        ) from exc

    unpacked.files.append((target_name, target_name))
    logger.info("GZip decompression complete: file=%s bytes=%d", gz_path, unpacked.bytes_written)
    return unpacked


@stable_api
def unpack_file(path: Path, dest_dir: Path | None = None) -> UnpackedFiles | None:
    """Unpack ``.zip``/``.gz`` files; returns None for anything else."""
    path = Path(path)
    name_lower = path.name.lower()
    target = Path(dest_dir) if dest_dir is not None else path.parent
    if name_lower.endswith(".zip"):
        return safe_extract_zip(path, target)
    if name_lower.endswith(".gz"):
        return gunzip_file(path, target)
    return None
