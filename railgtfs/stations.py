"""Station coordinate resolution from the master station names file.

Builds the TIPLOC -> Station map consumed by the schedule parser. Two
coordinate sources are merged per station:

1. An external geocoded lookup keyed by three-letter CRS code (built
   from OpenStreetMap ``ref:crs`` tags). A hit is authoritative and its
   coordinates are used verbatim.
2. The OSGB36 grid reference carried in the MSN record itself,
   projected to WGS84 with pyproj.

A single unreadable station never aborts the run: malformed grid fields
parse as zero and failed projections resolve to (0.0, 0.0).
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Final

from pyproj import Transformer
from pyproj.exceptions import ProjError

logger: Final[logging.Logger] = logging.getLogger(__name__)

_MSN_MARKER: Final[str] = "A"

# MSN grid fields are in 100 m units behind a leading flag digit:
# easting "15473" is 547300 m, northing "61790" is 179000 m.
_EASTING_FLAG: Final[int] = 10_000
_NORTHING_FLAG: Final[int] = 60_000
_GRID_UNIT_METRES: Final[float] = 100.0

_NO_COORDINATES: Final[tuple[float, float]] = (0.0, 0.0)

GeocodeLookup = Mapping[str, tuple[float, float]]


@dataclass(frozen=True, slots=True)
class Station:
    """A resolved stop.

    Attributes:
        tiploc: Timing point location code (GTFS stop_id).
        name: Display name from the MSN record.
        lat: WGS84 latitude.
        lon: WGS84 longitude.
    """

    tiploc: str
    name: str
    lat: float
    lon: float


@dataclass(frozen=True, slots=True)
class MsnRecord:
    """Raw fields of an MSN station detail (``A``) record."""

    name: str
    tiploc: str
    crs: str
    easting: str
    northing: str


def _field(line: str, start: int, end: int, default: str = "") -> str:
    if len(line) < end:
        return default
    return line[start:end].strip()


def parse_msn_line(line: str) -> MsnRecord | None:
    """Extract station fields from one MSN line.

    Returns None for header, alias and trailer records.
    """
    if not line.startswith(_MSN_MARKER):
        return None
    return MsnRecord(
        name=_field(line, 5, 31),
        tiploc=_field(line, 36, 43),
        crs=_field(line, 49, 52),
        easting=_field(line, 52, 57, "0"),
        northing=_field(line, 58, 63, "0"),
    )


# ---------------------------------------------------------------------------
# Grid conversion
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def _osgb36_transformer() -> Transformer:
    """British National Grid (EPSG:27700) to WGS84, x/y = easting/northing."""
    return Transformer.from_crs("EPSG:27700", "EPSG:4326", always_xy=True)


def _parse_grid_units(raw: str, flag: int) -> float:
    """Decode one MSN grid field to metres; unreadable input is 0."""
    try:
        units = int(raw.strip())
    except ValueError:
        return 0.0
    if units >= flag:
        units -= flag
    return units * _GRID_UNIT_METRES


def grid_to_latlon(easting_raw: str, northing_raw: str) -> tuple[float, float]:
    """Project an MSN grid reference to ``(lat, lon)``.

    Args:
        easting_raw: Five-character easting field.
        northing_raw: Five-character northing field.

    Returns:
        WGS84 ``(lat, lon)``; ``(0.0, 0.0)`` when the reference is blank
        or cannot be projected.
    """
    easting = _parse_grid_units(easting_raw, _EASTING_FLAG)
    northing = _parse_grid_units(northing_raw, _NORTHING_FLAG)
    if easting == 0.0 and northing == 0.0:
        return _NO_COORDINATES
    try:
        lon, lat = _osgb36_transformer().transform(easting, northing, errcheck=True)
    except ProjError:
        logger.debug("Grid projection failed for %s/%s", easting_raw, northing_raw)
        return _NO_COORDINATES
    if not (math.isfinite(lat) and math.isfinite(lon)):
        return _NO_COORDINATES
    return lat, lon


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def resolve_stations(
    lines: Iterable[str],
    geocode: GeocodeLookup | None = None,
) -> dict[str, Station]:
    """Build the TIPLOC -> Station map from MSN lines.

    Args:
        lines: Lines of one or more MSN files.
        geocode: Optional CRS -> ``(lat, lon)`` lookup that takes
            precedence over the grid reference.

    Returns:
        Mapping keyed by TIPLOC. A repeated TIPLOC keeps the last record.
    """
    lookup: GeocodeLookup = geocode or {}
    stations: dict[str, Station] = {}
    geocoded = 0

    for line in lines:
        record = parse_msn_line(line)
        if record is None or not record.tiploc:
            continue

        coords = lookup.get(record.crs) if record.crs else None
        if coords is not None:
            lat, lon = coords
            geocoded += 1
        else:
            lat, lon = grid_to_latlon(record.easting, record.northing)

        stations[record.tiploc] = Station(
            tiploc=record.tiploc,
            name=record.name,
            lat=lat,
            lon=lon,
        )

    logger.info(
        "Resolved %d stations (%d from geocode lookup, %d from grid)",
        len(stations),
        geocoded,
        len(stations) - geocoded,
    )
    return stations


def parse_overpass_crs(payload: Mapping[str, Any]) -> dict[str, tuple[float, float]]:
    """Build a CRS -> ``(lat, lon)`` lookup from an Overpass JSON response.

    Nodes carry ``lat``/``lon`` directly; ways and relations returned with
    ``out center`` carry a ``center`` object. Multi-valued tags
    (``"SRA;SRT"``) register every code. Later elements overwrite earlier
    ones for the same code.
    """
    lookup: dict[str, tuple[float, float]] = {}
    elements = payload.get("elements", [])
    if not isinstance(elements, list):
        return lookup

    for element in elements:
        if not isinstance(element, dict):
            continue
        tags = element.get("tags") or {}
        raw_crs = str(tags.get("ref:crs", "")).strip()
        if not raw_crs:
            continue

        position = element.get("center", element)
        lat = position.get("lat")
        lon = position.get("lon")
        if lat is None or lon is None:
            continue

        for code in raw_crs.split(";"):
            code = code.strip().upper()
            if code:
                lookup[code] = (float(lat), float(lon))

    return lookup
