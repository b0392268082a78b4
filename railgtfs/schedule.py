"""Record state machine over a CIF schedule file.

Consumes parsed records in file order and assembles trips. The machine
has two states:

* ``Idle``: no schedule is open.
* ``Accumulating``: a BS record opened a schedule and location records
  are being collected into its ``TripAccumulator``.

``transition`` is a pure function of ``(state, record)``. A trip is only
committed when its LT record resolves to a known station; every other
path out of ``Accumulating`` (a new BS, a cancellation, an unresolved
terminus) discards the accumulator without emitting anything.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, replace
from typing import Final

from railgtfs.config import DEFAULT_OPERATOR
from railgtfs.records import (
    Association,
    IntermediateLocation,
    OriginLocation,
    Record,
    ScheduleBasic,
    ScheduleExtra,
    TerminalLocation,
    parse_record,
)
from railgtfs.stations import Station

logger: Final[logging.Logger] = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StopEvent:
    """One public call within a trip.

    Attributes:
        tiploc: Location code of the call (resolved in the station map).
        arrival: ``HH:MM:SS`` arrival time.
        departure: ``HH:MM:SS`` departure time.
        sequence: 1-based position among the trip's emitted calls.
    """

    tiploc: str
    arrival: str
    departure: str
    sequence: int


@dataclass(frozen=True, slots=True)
class TripAccumulator:
    """In-progress schedule between its BS and LT records."""

    uid: str
    start_date: str
    end_date: str
    days_run: str
    stp_indicator: str
    train_identity: str
    operator_code: str = DEFAULT_OPERATOR
    origin_name: str = ""
    destination_name: str = ""
    stops: tuple[StopEvent, ...] = ()

    def with_stop(self, tiploc: str, arrival: str, departure: str) -> TripAccumulator:
        """Return a copy with one more stop at the next sequence number."""
        stop = StopEvent(
            tiploc=tiploc,
            arrival=arrival,
            departure=departure,
            sequence=len(self.stops) + 1,
        )
        return replace(self, stops=(*self.stops, stop))


@dataclass(frozen=True, slots=True)
class FinalizedTrip:
    """A complete trip committed at its terminal location.

    Carries the same fields as the accumulator it was built from; the
    destination name is always set and the stop list is never empty.
    """

    uid: str
    start_date: str
    end_date: str
    days_run: str
    stp_indicator: str
    train_identity: str
    operator_code: str
    origin_name: str
    destination_name: str
    stops: tuple[StopEvent, ...]

    @classmethod
    def from_accumulator(cls, acc: TripAccumulator) -> FinalizedTrip:
        return cls(
            uid=acc.uid,
            start_date=acc.start_date,
            end_date=acc.end_date,
            days_run=acc.days_run,
            stp_indicator=acc.stp_indicator,
            train_identity=acc.train_identity,
            operator_code=acc.operator_code,
            origin_name=acc.origin_name,
            destination_name=acc.destination_name,
            stops=acc.stops,
        )


@dataclass(frozen=True, slots=True)
class Idle:
    """No schedule open."""


@dataclass(frozen=True, slots=True)
class Accumulating:
    """A schedule is open and collecting calls."""

    trip: TripAccumulator


State = Idle | Accumulating
Emitted = FinalizedTrip | Association

IDLE: Final[Idle] = Idle()


def _open_schedule(record: ScheduleBasic) -> State:
    if record.is_cancellation:
        return IDLE
    return Accumulating(
        TripAccumulator(
            uid=record.uid,
            start_date=record.start_date,
            end_date=record.end_date,
            days_run=record.days_run,
            stp_indicator=record.stp_indicator,
            train_identity=record.train_identity,
        )
    )


def transition(
    state: State,
    record: Record,
    stations: Mapping[str, Station],
) -> tuple[State, list[Emitted]]:
    """Advance the machine by one record.

    Args:
        state: Current state.
        record: Next parsed record in file order.
        stations: TIPLOC -> Station map; calls at unknown locations are
            dropped.

    Returns:
        The next state and the items committed by this record (a finalized
        trip, an association, or nothing).
    """
    if isinstance(record, Association):
        return state, [record]

    if isinstance(record, ScheduleBasic):
        if isinstance(state, Accumulating):
            logger.debug("Discarding unterminated schedule %s", state.trip.uid)
        return _open_schedule(record), []

    if not isinstance(state, Accumulating):
        return state, []

    trip = state.trip

    if isinstance(record, ScheduleExtra):
        if record.operator_code:
            trip = replace(trip, operator_code=record.operator_code)
        return Accumulating(trip), []

    if isinstance(record, OriginLocation):
        station = stations.get(record.tiploc)
        if station is None:
            return state, []
        trip = replace(trip, origin_name=station.name)
        trip = trip.with_stop(record.tiploc, record.departure, record.departure)
        return Accumulating(trip), []

    if isinstance(record, IntermediateLocation):
        if not record.is_public_stop or record.tiploc not in stations:
            return state, []
        trip = trip.with_stop(record.tiploc, record.arrival, record.departure)
        return Accumulating(trip), []

    if isinstance(record, TerminalLocation):
        station = stations.get(record.tiploc)
        if station is None:
            logger.debug(
                "Dropping schedule %s: terminus %s not in station map",
                trip.uid,
                record.tiploc,
            )
            return IDLE, []
        trip = replace(trip, destination_name=station.name)
        trip = trip.with_stop(record.tiploc, record.arrival, record.arrival)
        return IDLE, [FinalizedTrip.from_accumulator(trip)]

    return state, []


def iter_schedule(
    lines: Iterable[str],
    stations: Mapping[str, Station],
) -> Iterator[Emitted]:
    """Run the state machine over schedule lines.

    Args:
        lines: Lines of an MCA file, in file order.
        stations: TIPLOC -> Station map.

    Yields:
        Finalized trips and associations in the order they are committed.
    """
    state: State = IDLE
    for line in lines:
        record = parse_record(line)
        if record is None:
            continue
        state, emitted = transition(state, record, stations)
        yield from emitted
