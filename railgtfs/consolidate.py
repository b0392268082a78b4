"""Deduplication of calendars and trips into a minimal GTFS feed.

The CIF timetable repeats the same physical service many times: one
schedule per validity window and STP revision, often with identical
calls. Two content-addressed registries collapse that repetition:

* ``CalendarRegistry`` maps a (days, start, end) signature to a
  synthetic service_id, allocated sequentially in first-seen order.
* ``TripRegistry`` maps a (route, calls, headsign, headcode) signature
  plus service_id to a trip_id. A repeated key is a true duplicate and
  is never written again.

``FeedConsolidator`` ties both to the route/agency classifier and writes
rows through a row sink as soon as each trip is accepted.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Final

from railgtfs.classify import agency_for, classify_route
from railgtfs.gtfs import (
    AgencyRow,
    AssociationRow,
    GtfsRow,
    RouteRow,
    StopTimeRow,
    TripRow,
    calendar_row,
)
from railgtfs.records import Association, format_date
from railgtfs.schedule import FinalizedTrip
from railgtfs.stations import Station

logger: Final[logging.Logger] = logging.getLogger(__name__)

_SERVICE_ID_PREFIX: Final[str] = "S"

RowSink = Callable[[GtfsRow], None]


@dataclass(frozen=True, slots=True)
class CalendarSignature:
    """Day pattern plus inclusive validity window (raw YYMMDD dates)."""

    days_run: str
    start_date: str
    end_date: str


@dataclass(frozen=True, slots=True)
class TripSignature:
    """Everything a rider can observe about a trip except its calendar.

    Attributes:
        route_id: Derived route identifier.
        calls: Ordered ``(tiploc, arrival, departure)`` tuples.
        headsign: Destination display name.
        short_name: Train identity (headcode).
    """

    route_id: str
    calls: tuple[tuple[str, str, str], ...]
    headsign: str
    short_name: str


class CalendarRegistry:
    """Calendar signature -> service_id, allocated in first-seen order."""

    def __init__(self) -> None:
        self._ids: dict[CalendarSignature, str] = {}

    def __len__(self) -> int:
        return len(self._ids)

    def resolve(self, signature: CalendarSignature) -> tuple[str, bool]:
        """Return the service_id for *signature* and whether it is new."""
        existing: str | None = self._ids.get(signature)
        if existing is not None:
            return existing, False
        service_id: str = f"{_SERVICE_ID_PREFIX}{len(self._ids) + 1}"
        self._ids[signature] = service_id
        return service_id, True


class TripRegistry:
    """(Trip signature, service_id) -> trip_id.

    The first trip to use a UID gets the bare UID as its trip_id; later
    distinct trips under the same UID are suffixed with their validity
    start date and STP indicator, plus a counter (``_2``, ``_3``, ...)
    when that suffixed id has already been issued.
    """

    def __init__(self) -> None:
        self._ids: dict[tuple[TripSignature, str], str] = {}
        self._issued: set[str] = set()

    def __len__(self) -> int:
        return len(self._ids)

    def resolve(
        self,
        signature: TripSignature,
        service_id: str,
        uid: str,
        start_date: str,
        stp_indicator: str,
    ) -> str | None:
        """Allocate a trip_id, or return None if the key was already seen."""
        key: tuple[TripSignature, str] = (signature, service_id)
        if key in self._ids:
            return None
        trip_id: str = uid
        if trip_id in self._issued:
            base: str = f"{uid}_{start_date}_{stp_indicator}"
            trip_id = base
            counter: int = 1
            while trip_id in self._issued:
                counter += 1
                trip_id = f"{base}_{counter}"
        self._issued.add(trip_id)
        self._ids[key] = trip_id
        return trip_id


def trip_signature(trip: FinalizedTrip, route_id: str) -> TripSignature:
    return TripSignature(
        route_id=route_id,
        calls=tuple((s.tiploc, s.arrival, s.departure) for s in trip.stops),
        headsign=trip.destination_name,
        short_name=trip.train_identity,
    )


class FeedConsolidator:
    """Turn finalized trips and associations into deduplicated GTFS rows.

    Trip, stop_time, calendar and association rows are written to the
    sink immediately. Agencies and routes are collected (first writer
    wins) and written by ``flush_reference_tables`` once every trip has
    been seen.
    """

    def __init__(
        self,
        sink: RowSink,
        stations: Mapping[str, Station],
        operators: Mapping[str, str],
    ) -> None:
        self._sink = sink
        self._stations = stations
        self._operators = operators
        self.calendars = CalendarRegistry()
        self.trips = TripRegistry()
        self.agencies: dict[AgencyRow, None] = {}
        self.routes: dict[str, RouteRow] = {}
        self.duplicates_suppressed: int = 0

    def add_trip(self, trip: FinalizedTrip) -> str | None:
        """Consolidate one finalized trip.

        Returns:
            The trip_id written, or None when the trip duplicates one
            already in the feed.
        """
        self.agencies.setdefault(agency_for(trip.operator_code, self._operators), None)

        route: RouteRow = classify_route(trip, self._stations)
        self.routes.setdefault(route.route_id, route)

        calendar: CalendarSignature = CalendarSignature(
            trip.days_run, trip.start_date, trip.end_date
        )
        service_id, is_new_calendar = self.calendars.resolve(calendar)
        if is_new_calendar:
            self._sink(
                calendar_row(
                    service_id,
                    trip.days_run,
                    format_date(trip.start_date),
                    format_date(trip.end_date),
                )
            )

        trip_id: str | None = self.trips.resolve(
            trip_signature(trip, route.route_id),
            service_id,
            trip.uid,
            trip.start_date,
            trip.stp_indicator,
        )
        if trip_id is None:
            self.duplicates_suppressed += 1
            logger.debug("Suppressed duplicate schedule %s", trip.uid)
            return None

        self._sink(
            TripRow(
                route_id=route.route_id,
                service_id=service_id,
                trip_id=trip_id,
                trip_headsign=trip.destination_name,
                trip_short_name=trip.train_identity,
            )
        )
        for stop in trip.stops:
            self._sink(
                StopTimeRow(
                    trip_id=trip_id,
                    arrival_time=stop.arrival,
                    departure_time=stop.departure,
                    stop_id=stop.tiploc,
                    stop_sequence=stop.sequence,
                )
            )
        return trip_id

    def add_association(self, assoc: Association) -> None:
        self._sink(
            AssociationRow(
                base_uid=assoc.base_uid,
                assoc_uid=assoc.assoc_uid,
                start_date=assoc.start_date,
                end_date=assoc.end_date,
                days_run=assoc.days_run,
                category=assoc.category,
                location=assoc.location,
                assoc_type=assoc.assoc_type,
                stp_indicator=assoc.stp_indicator,
            )
        )

    def flush_reference_tables(self) -> None:
        """Write the collected agency and route rows."""
        for agency in self.agencies:
            self._sink(agency)
        for route in self.routes.values():
            self._sink(route)
