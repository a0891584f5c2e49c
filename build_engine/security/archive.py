# build_engine/security/archive.py
"""Defensive extraction of tenant-uploaded ZIP archives."""

import logging
import re
import zipfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import List

from build_engine.core.errors import BuildValidationError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
SUSPICIOUS_RATIO = 100.0
IGNORED_PREFIXES = ("__MACOSX/",)
_DRIVE_PATTERN = re.compile(r"^[A-Za-z]:")


@dataclass(frozen=True)
class ArchiveLimits:
    min_bytes: int = 22
    max_entries: int = 10_000
    max_uncompressed_bytes: int = 500 * 1024 * 1024


@dataclass
class ExtractionReport:
    entries: int
    files_written: int
    bytes_written: int
    suspicious_entries: List[str]


def check_member_name(name: str) -> PurePosixPath:
    """
    Validate an archive member name and return it as a relative path.

    Raises:
        BuildValidationError: absolute path, drive letter or traversal segment
    """
    normalized = name.replace("\\", "/")

    if normalized.startswith("/") or _DRIVE_PATTERN.match(normalized):
        raise BuildValidationError(f"Archive entry has an absolute path: {name!r}")

    parts = [p for p in normalized.split("/") if p not in ("", ".")]
    if ".." in parts:
        raise BuildValidationError(f"Archive entry escapes the extraction root: {name!r}")

    return PurePosixPath(*parts) if parts else PurePosixPath(".")


def extract_archive(
    archive_path: Path,
    destination: Path,
    limits: ArchiveLimits = ArchiveLimits(),
) -> ExtractionReport:
    """
    Extract a ZIP archive into destination with traversal and zip-bomb guards.

    Every entry is vetted before anything is written. Uncompressed bytes are
    counted while streaming, so a member lying about its size in the central
    directory still hits the ceiling.
    """
    size = archive_path.stat().st_size
    if size < limits.min_bytes:
        raise BuildValidationError(
            f"Archive too small ({size} bytes) - likely corrupted"
        )

    try:
        archive = zipfile.ZipFile(archive_path)
    except zipfile.BadZipFile as e:
        raise BuildValidationError(f"Archive is not a valid ZIP file: {e}") from e

    with archive:
        members = [
            info for info in archive.infolist()
            if not info.filename.startswith(IGNORED_PREFIXES)
        ]

        if not members:
            raise BuildValidationError("Archive contains no entries")

        if len(members) > limits.max_entries:
            raise BuildValidationError(
                f"Archive has {len(members)} entries, limit is {limits.max_entries}"
            )

        root = destination.resolve()
        declared_total = 0
        suspicious: List[str] = []
        planned = []

        for info in members:
            relative = check_member_name(info.filename)
            target = (root / relative).resolve()
            if target != root and root not in target.parents:
                raise BuildValidationError(
                    f"Archive entry escapes the extraction root: {info.filename!r}"
                )

            declared_total += info.file_size
            ratio = info.file_size / info.compress_size if info.compress_size else 0.0
            logger.debug(
                f"[archive] {info.filename} size={info.file_size} "
                f"compressed={info.compress_size} ratio={ratio:.1f}"
            )
            if ratio > SUSPICIOUS_RATIO:
                suspicious.append(info.filename)
                logger.warning(
                    f"[archive] High compression ratio {ratio:.0f}:1 for {info.filename}"
                )

            planned.append((info, target))

        if declared_total > limits.max_uncompressed_bytes:
            raise BuildValidationError(
                f"Archive expands to {declared_total} bytes, "
                f"limit is {limits.max_uncompressed_bytes}"
            )

        logger.info(
            f"[archive] Extracting {len(planned)} entries "
            f"({size / 1024 / 1024:.2f} MB compressed) to {destination}"
        )

        written = 0
        files = 0
        for info, target in planned:
            if info.is_dir():
                target.mkdir(parents=True, exist_ok=True)
                continue

            target.parent.mkdir(parents=True, exist_ok=True)
            with archive.open(info) as src, open(target, "wb") as dst:
                while True:
                    chunk = src.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    written += len(chunk)
                    if written > limits.max_uncompressed_bytes:
                        raise BuildValidationError(
                            f"Archive expands beyond {limits.max_uncompressed_bytes} bytes"
                        )
                    dst.write(chunk)
            files += 1

    logger.info(f"[archive] ✅ Extracted {files} files ({written} bytes)")

    return ExtractionReport(
        entries=len(planned),
        files_written=files,
        bytes_written=written,
        suspicious_entries=suspicious,
    )
