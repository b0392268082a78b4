"""GTFS output rows, table contracts and the CSV feed writer.

Each output file has a frozen row dataclass and a ``TableSpec`` naming
its file and column order. ``FeedWriter`` owns one ``csv.DictWriter``
per table for the duration of a conversion and streams rows to disk as
they are produced, so rows flushed before a fatal error stay on disk.
"""

from __future__ import annotations

import csv
import logging
from collections import Counter
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from types import TracebackType
from typing import IO, Any, Final

logger: Final[logging.Logger] = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Row dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class AgencyRow:
    agency_id: str
    agency_name: str
    agency_url: str
    agency_timezone: str


@dataclass(frozen=True, slots=True)
class StopRow:
    stop_id: str
    stop_name: str
    stop_lat: float
    stop_lon: float


@dataclass(frozen=True, slots=True)
class RouteRow:
    """routes.txt row. Colors are empty for routes outside the metro network."""

    route_id: str
    agency_id: str
    route_short_name: str
    route_long_name: str
    route_type: int
    route_color: str = ""
    route_text_color: str = ""


@dataclass(frozen=True, slots=True)
class TripRow:
    route_id: str
    service_id: str
    trip_id: str
    trip_headsign: str
    trip_short_name: str


@dataclass(frozen=True, slots=True)
class StopTimeRow:
    trip_id: str
    arrival_time: str
    departure_time: str
    stop_id: str
    stop_sequence: int


@dataclass(frozen=True, slots=True)
class CalendarRow:
    service_id: str
    monday: int
    tuesday: int
    wednesday: int
    thursday: int
    friday: int
    saturday: int
    sunday: int
    start_date: str
    end_date: str


@dataclass(frozen=True, slots=True)
class AssociationRow:
    """Non-standard associations.txt row mirroring a CIF AA record."""

    base_uid: str
    assoc_uid: str
    start_date: str
    end_date: str
    days_run: str
    category: str
    location: str
    assoc_type: str
    stp_indicator: str


GtfsRow = (
    AgencyRow
    | StopRow
    | RouteRow
    | TripRow
    | StopTimeRow
    | CalendarRow
    | AssociationRow
)


# ---------------------------------------------------------------------------
# Table registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TableSpec:
    """Mapping between a row type and its output file.

    Attributes:
        name: Table identifier, also the file stem.
        row_type: Dataclass whose fields define the column order.
    """

    name: str
    row_type: type

    @property
    def file_name(self) -> str:
        return f"{self.name}.txt"

    @property
    def columns(self) -> tuple[str, ...]:
        return tuple(f.name for f in fields(self.row_type))


TABLES: Final[tuple[TableSpec, ...]] = (
    TableSpec(name="agency", row_type=AgencyRow),
    TableSpec(name="stops", row_type=StopRow),
    TableSpec(name="routes", row_type=RouteRow),
    TableSpec(name="trips", row_type=TripRow),
    TableSpec(name="stop_times", row_type=StopTimeRow),
    TableSpec(name="calendar", row_type=CalendarRow),
    TableSpec(name="associations", row_type=AssociationRow),
)

_TABLE_BY_ROW: Final[dict[type, TableSpec]] = {t.row_type: t for t in TABLES}


def calendar_row(service_id: str, days_run: str, start: str, end: str) -> CalendarRow:
    """Build a calendar row from a Monday-first CIF day bitmask.

    Missing trailing days count as not running.
    """
    flags = [1 if c == "1" else 0 for c in days_run.ljust(7, "0")[:7]]
    return CalendarRow(
        service_id=service_id,
        monday=flags[0],
        tuesday=flags[1],
        wednesday=flags[2],
        thursday=flags[3],
        friday=flags[4],
        saturday=flags[5],
        sunday=flags[6],
        start_date=start,
        end_date=end,
    )


# ---------------------------------------------------------------------------
# Writer
# ---------------------------------------------------------------------------


class FeedWriter:
    """Stream GTFS rows to one CSV file per table.

    Opens every table file (header included) on entry so that a feed
    with no trips still has a complete set of files. Implements the
    context manager protocol to guarantee files are closed on exit.
    """

    def __init__(self, output_dir: Path) -> None:
        self._output_dir = output_dir
        self._handles: dict[str, IO[str]] = {}
        self._writers: dict[str, csv.DictWriter[str]] = {}
        self.row_counts: Counter[str] = Counter()

    def __enter__(self) -> FeedWriter:
        self._output_dir.mkdir(parents=True, exist_ok=True)
        for spec in TABLES:
            handle = (self._output_dir / spec.file_name).open(
                "w", newline="", encoding="utf-8"
            )
            writer = csv.DictWriter(
                handle, fieldnames=list(spec.columns), quoting=csv.QUOTE_MINIMAL
            )
            writer.writeheader()
            self._handles[spec.name] = handle
            self._writers[spec.name] = writer
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        for handle in self._handles.values():
            handle.close()
        self._handles.clear()
        self._writers.clear()

    def write(self, row: GtfsRow) -> None:
        """Append one row to the table matching its type."""
        spec = _TABLE_BY_ROW[type(row)]
        record: dict[str, Any] = asdict(row)
        self._writers[spec.name].writerow(record)
        self.row_counts[spec.name] += 1
