"""ZIP archive access for the NRDP timetable and fares feeds.

Both feeds arrive as ZIP archives holding fixed-width text members
(``.MSN``, ``.MCA``, ``.TOC``). Members are streamed line by line
straight out of the archive; nothing is extracted to disk.

Member text encoding is detected with charset-normalizer on the first
1 MB. The CIF files are nominally ASCII but names occasionally carry Latin-1
bytes. Low-confidence detection falls back to ``latin-1``.
"""

from __future__ import annotations

import io
import logging
import zipfile
from collections.abc import Iterator
from pathlib import Path, PurePosixPath
from typing import Final

from charset_normalizer import from_bytes

logger: Final[logging.Logger] = logging.getLogger(__name__)

_ENCODING_CONFIDENCE_THRESHOLD: Final[float] = 0.7
_ENCODING_SAMPLE_SIZE: Final[int] = 1_048_576  # 1 MB
_FALLBACK_ENCODING: Final[str] = "latin-1"
_BOM: Final[str] = "\ufeff"


class ArchiveError(Exception):
    """Raised when a feed archive is unreadable or lacks a required member."""


def _open_archive(zip_path: Path) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(zip_path, "r")
    except zipfile.BadZipFile as exc:
        raise ArchiveError(f"'{zip_path}' is not a valid ZIP archive: {exc}") from exc


def verify_archive(zip_path: Path) -> None:
    """Check every member's CRC.

    Raises:
        ArchiveError: If the archive cannot be opened or a member is corrupt.
        FileNotFoundError: If zip_path does not exist.
    """
    with _open_archive(zip_path) as zf:
        corrupt_member = zf.testzip()
    if corrupt_member is not None:
        raise ArchiveError(
            f"Corrupt ZIP archive '{zip_path}': bad member '{corrupt_member}'"
        )


def find_members(zip_path: Path, suffix: str) -> list[str]:
    """List archive members whose name ends with *suffix*.

    Matching is case-insensitive and preserves archive order. Directory
    entries and macOS metadata are excluded.
    """
    wanted = suffix.lower()
    with _open_archive(zip_path) as zf:
        return [
            info.filename
            for info in zf.infolist()
            if not info.is_dir()
            and "__MACOSX" not in info.filename
            and PurePosixPath(info.filename).name.lower().endswith(wanted)
        ]


def detect_encoding(sample: bytes) -> str:
    """Pick a text encoding for a member from its leading bytes."""
    if not sample:
        return _FALLBACK_ENCODING
    best = from_bytes(sample).best()
    if best is None:
        logger.warning("No encoding candidates; falling back to %s", _FALLBACK_ENCODING)
        return _FALLBACK_ENCODING

    # charset-normalizer uses chaos (0=perfect). Invert to confidence.
    confidence = 1.0 - best.chaos
    if confidence < _ENCODING_CONFIDENCE_THRESHOLD:
        logger.warning(
            "Low confidence (%.2f) for %s; falling back to %s",
            confidence,
            best.encoding,
            _FALLBACK_ENCODING,
        )
        return _FALLBACK_ENCODING
    return str(best.encoding)


def iter_member_lines(zip_path: Path, member: str) -> Iterator[str]:
    """Stream the lines of one archive member without line terminators.

    Undecodable bytes are replaced with U+FFFD. A leading BOM is dropped.
    """
    with _open_archive(zip_path) as zf:
        with zf.open(member) as raw:
            encoding = detect_encoding(raw.read(_ENCODING_SAMPLE_SIZE))
        logger.debug("Reading %s as %s", member, encoding)

        with zf.open(member) as raw:
            text = io.TextIOWrapper(raw, encoding=encoding, errors="replace")
            first = True
            for line in text:
                if first:
                    line = line.removeprefix(_BOM)
                    first = False
                yield line.rstrip("\r\n")


def iter_suffix_lines(zip_path: Path, suffix: str) -> Iterator[str]:
    """Stream lines of every member matching *suffix*, in archive order.

    Raises:
        ArchiveError: If no member matches.
    """
    members = find_members(zip_path, suffix)
    if not members:
        raise ArchiveError(f"No '{suffix}' member found in '{zip_path}'")
    for member in members:
        logger.info("Processing %s from %s", member, zip_path.name)
        yield from iter_member_lines(zip_path, member)
