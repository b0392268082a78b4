"""Shared pytest fixtures for the converter tests.

Generates feed archives programmatically to avoid committing binary
files. Lines are built at their fixed-width offsets by ``cif_lines``.
"""

from __future__ import annotations

import zipfile
from typing import TYPE_CHECKING, Any

import pytest

from cif_lines import (
    aa_line,
    bs_line,
    bx_line,
    li_line,
    lo_line,
    lt_line,
    msn_line,
    toc_line,
    write_zip,
)
from railgtfs.stations import Station

if TYPE_CHECKING:
    from pathlib import Path

# ---------------------------------------------------------------------------
# Station map
# ---------------------------------------------------------------------------


@pytest.fixture()
def stations() -> dict[str, Station]:
    """Resolved stations for a short Great Western corridor and the WCML."""
    return {
        "PADTON": Station("PADTON", "LONDON PADDINGTON", 51.5163, -0.1767),
        "RDNGSTN": Station("RDNGSTN", "READING", 51.4585, -0.9719),
        "DIDCOTP": Station("DIDCOTP", "DIDCOT PARKWAY", 51.6109, -1.2428),
        "EUSTON": Station("EUSTON", "LONDON EUSTON", 51.5282, -0.1337),
        "WFJ": Station("WFJ", "WATFORD JUNCTION", 51.6637, -0.3967),
        "WLSDNJL": Station("WLSDNJL", "WILLESDEN JUNCTION", 51.5325, -0.2447),
        "STFD": Station("STFD", "STRATFORD", 51.5419, -0.0034),
    }


# ---------------------------------------------------------------------------
# Feed lines
# ---------------------------------------------------------------------------

MSN_LINES: list[str] = [
    "/!! Start of file",
    msn_line("LONDON PADDINGTON", "PADTON", "PAD", "15266", "61812"),
    msn_line("READING", "RDNGSTN", "RDG", "14714", "61736"),
    msn_line("DIDCOT PARKWAY", "DIDCOTP", "DID", "14524", "61906"),
    "ZLONDON PADDINGTON        PADDINGTON",
]

MCA_LINES: list[str] = [
    "HDTPS.UCFCATE.PD2401011001240920DFTTISCF       UA240101241231",
    "TIPADTON 00123456PLONDON PADDINGTON",
    # Base schedule
    bs_line("C10001", "240101", "241231", "1111100", "1A23", "P"),
    bx_line("GW"),
    lo_line("PADTON", "0900 ", "0900"),
    li_line("RDNGSTN", "0925 ", "0927 ", "0925", "0927"),
    lt_line("DIDCOTP", "0945 ", "0945"),
    # Same calls and calendar under another UID
    bs_line("C10002", "240101", "241231", "1111100", "1A23", "P"),
    bx_line("GW"),
    lo_line("PADTON", "0900 ", "0900"),
    li_line("RDNGSTN", "0925 ", "0927 ", "0925", "0927"),
    lt_line("DIDCOTP", "0945 ", "0945"),
    # Overlay of the base UID with its own validity window
    bs_line("C10001", "240601", "240630", "1111100", "1A23", "O"),
    bx_line("GW"),
    lo_line("PADTON", "0905 ", "0905"),
    li_line("RDNGSTN", "0930 ", "0932 ", "0930", "0932"),
    lt_line("DIDCOTP", "0950 ", "0950"),
    # Cancellation
    bs_line("C10003", "240101", "241231", "1111100", "1A99", "C"),
    aa_line("C10001", "C20002", location="RDNGSTN"),
    "ZZ",
]

TOC_LINES: list[str] = [
    "/!! Start of file",
    toc_line("GW", "Great Western Railway"),
    toc_line("LO", "London Overground"),
]


@pytest.fixture()
def timetable_zip(tmp_path: Path) -> Path:
    """Timetable archive with one MSN and one MCA member."""
    return write_zip(
        tmp_path / "timetable.zip",
        {"RJTTF123.MSN": MSN_LINES, "RJTTF123.MCA": MCA_LINES},
    )


@pytest.fixture()
def fares_zip(tmp_path: Path) -> Path:
    """Fares archive with one TOC member."""
    return write_zip(tmp_path / "fares.zip", {"RJFAF123.TOC": TOC_LINES})


@pytest.fixture()
def corrupt_zip(tmp_path: Path) -> Path:
    """Create a ZIP whose stored member fails its CRC check."""
    zip_path = tmp_path / "corrupt.zip"
    with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_STORED) as zf:
        zf.writestr("RJTTF123.MCA", "ZZ\r\n" * 500)
    raw = bytearray(zip_path.read_bytes())
    # Member data starts after the 42-byte local file header
    for i in range(50, 100):
        raw[i] ^= 0xFF
    zip_path.write_bytes(bytes(raw))
    return zip_path


@pytest.fixture()
def overpass_payload() -> dict[str, Any]:
    """Overpass response with a node, a way and a multi-valued tag."""
    return {
        "version": 0.6,
        "elements": [
            {
                "type": "node",
                "id": 1,
                "lat": 51.5154,
                "lon": -0.1755,
                "tags": {"name": "London Paddington", "ref:crs": "PAD"},
            },
            {
                "type": "way",
                "id": 2,
                "center": {"lat": 51.4588, "lon": -0.9718},
                "tags": {"name": "Reading", "ref:crs": "rdg"},
            },
            {
                "type": "node",
                "id": 3,
                "lat": 51.5448,
                "lon": -0.0033,
                "tags": {"ref:crs": "SRA;SRT"},
            },
            {"type": "node", "id": 4, "lat": 51.0, "lon": 0.0, "tags": {}},
        ],
    }
