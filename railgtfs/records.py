"""Positional record parsing for CIF schedule files.

Each line of an ``.MCA`` file starts with a two-character record type
followed by fields at fixed character offsets. This module classifies
lines and extracts the fields the converter consumes into typed,
immutable records. Offsets are those of the published CIF record layouts,
expressed as 0-based slice bounds.

Missing fields on short lines degrade to the same defaults the upstream
format uses for blank columns; no line ever raises.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Final

_NO_TIME: Final[str] = "00:00:00"
_NO_PUBLIC_TIME: Final[str] = "0000"

CANCELLATION: Final[str] = "C"


class RecordType(enum.Enum):
    """Two-character CIF record identifiers consumed by the converter."""

    SCHEDULE_BASIC = "BS"
    SCHEDULE_EXTRA = "BX"
    ORIGIN = "LO"
    INTERMEDIATE = "LI"
    TERMINAL = "LT"
    ASSOCIATION = "AA"
    OTHER = "??"


_RECORD_TYPES: Final[dict[str, RecordType]] = {
    rt.value: rt for rt in RecordType if rt is not RecordType.OTHER
}


# ---------------------------------------------------------------------------
# Record dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ScheduleBasic:
    """BS record: opens a schedule.

    Attributes:
        uid: Train UID (business key shared by schedule revisions).
        start_date: Validity start, raw YYMMDD.
        end_date: Validity end, raw YYMMDD.
        days_run: Seven-character Monday-first day bitmask.
        train_identity: Signalling headcode (GTFS short name).
        stp_indicator: P, O, N or C; C cancels the schedule.
    """

    uid: str
    start_date: str
    end_date: str
    days_run: str
    train_identity: str
    stp_indicator: str

    @property
    def is_cancellation(self) -> bool:
        return self.stp_indicator == CANCELLATION


@dataclass(frozen=True, slots=True)
class ScheduleExtra:
    """BX record: carries the operating company code."""

    operator_code: str


@dataclass(frozen=True, slots=True)
class OriginLocation:
    """LO record: first calling point."""

    tiploc: str
    departure: str


@dataclass(frozen=True, slots=True)
class IntermediateLocation:
    """LI record: calling or passing point between origin and terminus."""

    tiploc: str
    arrival: str
    departure: str
    public_arrival: str
    public_departure: str

    @property
    def is_public_stop(self) -> bool:
        """Whether passengers can board or alight here."""
        return not (
            self.public_arrival == _NO_PUBLIC_TIME
            and self.public_departure == _NO_PUBLIC_TIME
        )


@dataclass(frozen=True, slots=True)
class TerminalLocation:
    """LT record: last calling point; closes the schedule."""

    tiploc: str
    arrival: str


@dataclass(frozen=True, slots=True)
class Association:
    """AA record: a join, divide or next-working link between two trains.

    Dates are already expanded to YYYYMMDD.
    """

    base_uid: str
    assoc_uid: str
    start_date: str
    end_date: str
    days_run: str
    category: str
    location: str
    assoc_type: str
    stp_indicator: str


Record = (
    ScheduleBasic
    | ScheduleExtra
    | OriginLocation
    | IntermediateLocation
    | TerminalLocation
    | Association
)


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def _field(line: str, start: int, end: int, default: str = "") -> str:
    """Return ``line[start:end]``, or *default* when the line is too short."""
    if len(line) < end:
        return default
    return line[start:end]


def format_time(raw: str) -> str:
    """Render a raw CIF time as ``HH:MM:00``.

    Non-digit characters (the ``H`` half-minute marker, padding) are
    dropped first. Fewer than four digits renders as midnight.

    >>> format_time("0930H")
    '09:30:00'
    """
    digits = "".join(c for c in raw if c.isdigit())
    if len(digits) < 4:
        return _NO_TIME
    return f"{digits[0:2]}:{digits[2:4]}:00"


def format_date(raw: str) -> str:
    """Expand a CIF ``YYMMDD`` date to GTFS ``YYYYMMDD``."""
    return f"20{raw}"


def classify(line: str) -> RecordType | None:
    """Return the record type of *line*, or None for lines under 2 chars."""
    if len(line) < 2:
        return None
    return _RECORD_TYPES.get(line[0:2], RecordType.OTHER)


# ---------------------------------------------------------------------------
# Per-type parsers
# ---------------------------------------------------------------------------


def _parse_basic(line: str) -> ScheduleBasic:
    return ScheduleBasic(
        uid=_field(line, 3, 9),
        start_date=_field(line, 9, 15),
        end_date=_field(line, 15, 21),
        days_run=_field(line, 21, 28, "0000000"),
        train_identity=_field(line, 32, 36).strip(),
        stp_indicator=_field(line, 79, 80, "P"),
    )


def _parse_extra(line: str) -> ScheduleExtra:
    return ScheduleExtra(operator_code=_field(line, 11, 13).strip())


def _parse_origin(line: str) -> OriginLocation:
    return OriginLocation(
        tiploc=_field(line, 2, 9).strip(),
        departure=format_time(_field(line, 10, 15, "00000")),
    )


def _parse_intermediate(line: str) -> IntermediateLocation:
    return IntermediateLocation(
        tiploc=_field(line, 2, 9).strip(),
        arrival=format_time(_field(line, 10, 15, "00000")),
        departure=format_time(_field(line, 15, 20, "00000")),
        public_arrival=_field(line, 25, 29, _NO_PUBLIC_TIME),
        public_departure=_field(line, 29, 33, _NO_PUBLIC_TIME),
    )


def _parse_terminal(line: str) -> TerminalLocation:
    return TerminalLocation(
        tiploc=_field(line, 2, 9).strip(),
        arrival=format_time(_field(line, 10, 15, "00000")),
    )


def _parse_association(line: str) -> Association:
    return Association(
        base_uid=_field(line, 3, 9),
        assoc_uid=_field(line, 9, 15),
        start_date=format_date(_field(line, 15, 21)),
        end_date=format_date(_field(line, 21, 27)),
        days_run=_field(line, 27, 34),
        category=_field(line, 34, 36),
        location=_field(line, 37, 44).strip(),
        assoc_type=_field(line, 47, 48),
        stp_indicator=_field(line, 79, 80),
    )


_PARSERS: Final = {
    RecordType.SCHEDULE_BASIC: _parse_basic,
    RecordType.SCHEDULE_EXTRA: _parse_extra,
    RecordType.ORIGIN: _parse_origin,
    RecordType.INTERMEDIATE: _parse_intermediate,
    RecordType.TERMINAL: _parse_terminal,
    RecordType.ASSOCIATION: _parse_association,
}


def parse_record(line: str) -> Record | None:
    """Parse one schedule line into a typed record.

    Args:
        line: Raw line without its line terminator.

    Returns:
        The parsed record, or None for short lines and record types the
        converter does not consume (TI, TA, CR, ZZ, ...).
    """
    record_type = classify(line)
    if record_type is None or record_type is RecordType.OTHER:
        return None
    return _PARSERS[record_type](line)
