"""Route and agency identity for finalized trips.

National Rail routes are keyed by operator and origin: every trip an
operator starts from the same station shares one route. London
Overground trips are instead assigned to one of its six named lines by
a hand-ordered decision list over the station names each trip touches.

The decision list is evaluated top to bottom and the first match wins.
Several lines share stations (Gospel Oak, Highbury & Islington,
Willesden Junction, Clapham Junction); a shared station is claimed by the
earliest rule that matches it.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Final

from railgtfs.config import (
    AGENCY_TIMEZONE,
    AGENCY_URL,
    METRO_OPERATOR,
    ROUTE_TYPE_RAIL,
)
from railgtfs.gtfs import AgencyRow, RouteRow
from railgtfs.schedule import FinalizedTrip
from railgtfs.stations import Station

StationNames = frozenset[str]
Predicate = Callable[[StationNames], bool]


@dataclass(frozen=True, slots=True)
class LineIdentity:
    """Fixed route identity of a named metro line.

    Attributes:
        name: Public line name (route short and long name).
        route_id: Stable GTFS route_id.
        color: Line color, hex without ``#``.
        text_color: Contrasting text color, hex without ``#``.
    """

    name: str
    route_id: str
    color: str
    text_color: str


def all_of(*markers: str) -> Predicate:
    """Match when every marker is contained in some touched station name."""

    def predicate(names: StationNames) -> bool:
        return all(any(m in n for n in names) for m in markers)

    return predicate


def any_of(*markers: str) -> Predicate:
    """Match when at least one marker is contained in a touched station name."""

    def predicate(names: StationNames) -> bool:
        return any(m in n for m in markers for n in names)

    return predicate


LIONESS: Final = LineIdentity("Lioness", "LO_LIONESS", "FAA61A", "000000")
LIBERTY: Final = LineIdentity("Liberty", "LO_LIBERTY", "676767", "FFFFFF")
SUFFRAGETTE: Final = LineIdentity("Suffragette", "LO_SUFFRAGETTE", "5BBD72", "000000")
WEAVER: Final = LineIdentity("Weaver", "LO_WEAVER", "9B0058", "FFFFFF")
WINDRUSH: Final = LineIdentity("Windrush", "LO_WINDRUSH", "DC241F", "FFFFFF")
MILDMAY: Final = LineIdentity("Mildmay", "LO_MILDMAY", "0071FD", "FFFFFF")
OVERGROUND: Final = LineIdentity(
    "London Overground", "LO_OVERGROUND", "EE7C0E", "FFFFFF"
)

# Markers are matched against upper-cased MSN station names.
METRO_LINE_RULES: Final[tuple[tuple[Predicate, LineIdentity], ...]] = (
    # Euston - Watford Junction; shares Willesden Junction with Mildmay
    (all_of("EUSTON", "WATFORD JUNCTION"), LIONESS),
    # Romford - Upminster shuttle
    (any_of("ROMFORD", "EMERSON PARK", "UPMINSTER"), LIBERTY),
    # Gospel Oak - Barking Riverside; Gospel Oak alone is also Mildmay
    (any_of("BARKING", "UPPER HOLLOWAY", "WALTHAMSTOW QUEENS"), SUFFRAGETTE),
    # Liverpool Street - Enfield Town / Cheshunt / Chingford
    (any_of("LIVERPOOL STREET", "ENFIELD TOWN", "CHESHUNT", "CHINGFORD"), WEAVER),
    # East London line core; Highbury and Clapham Junction are shared
    (
        any_of(
            "DALSTON JUNCTION",
            "SHOREDITCH HIGH",
            "SURREY QUAYS",
            "NEW CROSS",
            "WEST CROYDON",
            "CRYSTAL PALACE",
        ),
        WINDRUSH,
    ),
    # Stratford - Richmond / Clapham Junction
    (any_of("STRATFORD", "RICHMOND", "WILLESDEN JUNCTION"), MILDMAY),
)


def classify_metro_line(names: Iterable[str]) -> LineIdentity:
    """Assign a metro trip to its named line.

    Args:
        names: Display names of the stations the trip touches.

    Returns:
        The first matching line in ``METRO_LINE_RULES``, else the
        generic Overground identity.
    """
    touched: StationNames = frozenset(n.upper() for n in names)
    for predicate, line in METRO_LINE_RULES:
        if predicate(touched):
            return line
    return OVERGROUND


def _touched_names(
    trip: FinalizedTrip,
    stations: Mapping[str, Station],
) -> set[str]:
    names = {stations[s.tiploc].name for s in trip.stops if s.tiploc in stations}
    names.update(n for n in (trip.origin_name, trip.destination_name) if n)
    return names


def classify_route(
    trip: FinalizedTrip,
    stations: Mapping[str, Station],
) -> RouteRow:
    """Derive the route a trip belongs to.

    Args:
        trip: Finalized trip.
        stations: TIPLOC -> Station map used to name the trip's stops.

    Returns:
        Route row keyed by the derived route_id.
    """
    operator = trip.operator_code
    if operator == METRO_OPERATOR:
        line = classify_metro_line(_touched_names(trip, stations))
        return RouteRow(
            route_id=line.route_id,
            agency_id=operator,
            route_short_name=line.name,
            route_long_name=line.name,
            route_type=ROUTE_TYPE_RAIL,
            route_color=line.color,
            route_text_color=line.text_color,
        )

    return RouteRow(
        route_id=f"{operator}_{trip.origin_name}",
        agency_id=operator,
        route_short_name=operator,
        route_long_name=f"{trip.origin_name} to {trip.destination_name}",
        route_type=ROUTE_TYPE_RAIL,
    )


def agency_for(operator_code: str, operators: Mapping[str, str]) -> AgencyRow:
    """Build the agency row for an operator code.

    Codes missing from the fares feed get a synthesized name.
    """
    name = operators.get(operator_code) or f"National Rail ({operator_code})"
    return AgencyRow(
        agency_id=operator_code,
        agency_name=name,
        agency_url=AGENCY_URL,
        agency_timezone=AGENCY_TIMEZONE,
    )
