"""Pipeline orchestrator for the National Rail CIF to GTFS conversion.

Sequences retrieval, operator and station resolution, the schedule
state machine and consolidation into one synchronous pass. Lookup
tables are built once and handed explicitly to every stage.

Usage:
    python -m railgtfs.convert
    python -m railgtfs.convert --timetable data/raw/timetable.zip \
        --fares data/raw/fares.zip
    python -m railgtfs.convert --osm-cache data/working/osm_crs.json --verbose
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final

import httpx

from railgtfs.archive import (
    ArchiveError,
    find_members,
    iter_member_lines,
    iter_suffix_lines,
    verify_archive,
)
from railgtfs.config import ConfigError, resolve_credentials
from railgtfs.consolidate import FeedConsolidator
from railgtfs.download import (
    AuthenticationError,
    CacheError,
    DownloadError,
    build_client,
    cache_json,
    download_all,
    fetch_osm_crs,
    load_cached_json,
)
from railgtfs.gtfs import TABLES, FeedWriter, StopRow
from railgtfs.operators import parse_toc_lines
from railgtfs.schedule import FinalizedTrip, iter_schedule
from railgtfs.stations import GeocodeLookup, parse_overpass_crs, resolve_stations

logger: Final[logging.Logger] = logging.getLogger(__name__)

_DEFAULT_OUTPUT_DIR: Final[str] = "gtfs_output"
_DEFAULT_DOWNLOAD_DIR: Final[str] = "data/raw"


@dataclass(frozen=True, slots=True)
class ConversionResult:
    """Outcome of one conversion run.

    Attributes:
        output_dir: Directory holding the GTFS tables.
        row_counts: Rows written per table name.
        stations: Stations resolved from the MSN file.
        trips_finalized: Trips committed by the state machine.
        duplicates_suppressed: Finalized trips dropped as duplicates.
        elapsed_seconds: Wall-clock time for the conversion.
    """

    output_dir: Path
    row_counts: dict[str, int] = field(default_factory=dict)
    stations: int = 0
    trips_finalized: int = 0
    duplicates_suppressed: int = 0
    elapsed_seconds: float = 0.0


def convert_archives(
    timetable_zip: Path,
    output_dir: Path,
    fares_zip: Path | None = None,
    geocode: GeocodeLookup | None = None,
) -> ConversionResult:
    """Convert NRDP feed archives into GTFS tables.

    Args:
        timetable_zip: Timetable archive holding ``.MSN`` and ``.MCA`` members.
        output_dir: Directory for the GTFS ``.txt`` files.
        fares_zip: Optional fares archive holding a ``.TOC`` member.
        geocode: Optional CRS -> ``(lat, lon)`` lookup.

    Returns:
        ConversionResult with per-table row counts.

    Raises:
        ArchiveError: If an archive is corrupt or lacks a required member.
    """
    start = time.monotonic()

    operators: dict[str, str] = {}
    if fares_zip is not None:
        verify_archive(fares_zip)
        operators = parse_toc_lines(iter_suffix_lines(fares_zip, ".TOC"))

    verify_archive(timetable_zip)
    stations = resolve_stations(iter_suffix_lines(timetable_zip, ".MSN"), geocode)

    schedule_members = find_members(timetable_zip, ".MCA")
    if not schedule_members:
        raise ArchiveError(f"No '.MCA' member found in '{timetable_zip}'")

    trips_finalized = 0
    with FeedWriter(output_dir) as writer:
        for station in stations.values():
            writer.write(
                StopRow(
                    stop_id=station.tiploc,
                    stop_name=station.name,
                    stop_lat=station.lat,
                    stop_lon=station.lon,
                )
            )

        consolidator = FeedConsolidator(writer.write, stations, operators)
        for member in schedule_members:
            logger.info("Processing timetable %s", member)
            lines = iter_member_lines(timetable_zip, member)
            for item in iter_schedule(lines, stations):
                if isinstance(item, FinalizedTrip):
                    trips_finalized += 1
                    consolidator.add_trip(item)
                else:
                    consolidator.add_association(item)

        consolidator.flush_reference_tables()
        row_counts = {spec.name: writer.row_counts[spec.name] for spec in TABLES}

    elapsed = time.monotonic() - start
    logger.info(
        "Converted %d trips (%d duplicates suppressed) in %.1fs",
        trips_finalized,
        consolidator.duplicates_suppressed,
        elapsed,
    )
    return ConversionResult(
        output_dir=output_dir,
        row_counts=row_counts,
        stations=len(stations),
        trips_finalized=trips_finalized,
        duplicates_suppressed=consolidator.duplicates_suppressed,
        elapsed_seconds=round(elapsed, 3),
    )


def load_geocode(cache_path: Path | None) -> GeocodeLookup:
    """Build the CRS lookup from the cache file, or fetch and cache it."""
    if cache_path is not None and cache_path.exists():
        payload = load_cached_json(cache_path)
    else:
        with build_client() as client:
            payload = fetch_osm_crs(client)
        if cache_path is not None:
            cache_json(payload, cache_path)
    lookup = parse_overpass_crs(payload)
    logger.info("Loaded %d CRS coordinates from OSM", len(lookup))
    return lookup


# ---- CLI ---------------------------------------------------------------------


def _build_arg_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the conversion CLI."""
    parser = argparse.ArgumentParser(
        description="Convert the National Rail CIF timetable to GTFS.",
    )
    parser.add_argument(
        "--output-dir",
        type=str,
        default=_DEFAULT_OUTPUT_DIR,
        help=f"Directory for GTFS output (default: {_DEFAULT_OUTPUT_DIR}).",
    )
    parser.add_argument(
        "--download-dir",
        type=str,
        default=_DEFAULT_DOWNLOAD_DIR,
        help=f"Directory for downloaded archives (default: {_DEFAULT_DOWNLOAD_DIR}).",
    )
    parser.add_argument(
        "--timetable",
        type=str,
        default=None,
        help="Local timetable archive; skips NRDP download.",
    )
    parser.add_argument(
        "--fares",
        type=str,
        default=None,
        help="Local fares archive for operator names (with --timetable).",
    )
    parser.add_argument(
        "--osm-cache",
        type=str,
        default=None,
        help="Overpass JSON cache: read if present, written after a fetch.",
    )
    parser.add_argument(
        "--no-osm",
        action="store_true",
        help="Skip the OSM lookup and use grid references only.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug-level logging.",
    )
    return parser


def _print_summary(result: ConversionResult) -> None:
    """Print structured execution summary to stdout."""
    print(f"\n{'=' * 60}")
    print("Conversion Summary")
    print(f"{'=' * 60}")
    print(f"{'Table':<30} {'Rows'}")
    print("-" * 60)
    for name, count in result.row_counts.items():
        print(f"{name:<30} {count}")
    print("-" * 60)
    print(
        f"Stations: {result.stations}  "
        f"Trips: {result.trips_finalized}  "
        f"Duplicates: {result.duplicates_suppressed}  "
        f"Elapsed: {result.elapsed_seconds:.1f}s"
    )
    print(f"{'=' * 60}\n")


def _run(args: argparse.Namespace) -> ConversionResult:
    geocode: GeocodeLookup | None = None
    if not args.no_osm:
        cache = Path(args.osm_cache) if args.osm_cache else None
        geocode = load_geocode(cache)

    fares: Path | None
    if args.timetable is not None:
        timetable = Path(args.timetable)
        fares = Path(args.fares) if args.fares else None
    else:
        credentials = resolve_credentials()
        bundle = download_all(Path(args.download_dir), credentials)
        timetable = bundle.timetable.file_path
        fares = bundle.fares.file_path

    return convert_archives(timetable, Path(args.output_dir), fares, geocode)


def main(argv: list[str] | None = None) -> int:
    """CLI entry point for the converter.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:]).

    Returns:
        Exit code: 0 on success, 1 on a fatal error.
    """
    parser = _build_arg_parser()
    args: argparse.Namespace = parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        stream=sys.stderr,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)

    if args.fares is not None and args.timetable is None:
        parser.error("--fares requires --timetable")

    try:
        result = _run(args)
    except (
        ConfigError,
        AuthenticationError,
        CacheError,
        DownloadError,
        ArchiveError,
        httpx.HTTPError,
        OSError,
    ) as exc:
        logger.error("Conversion failed: %s", exc)
        return 1

    _print_summary(result)
    return 0


if __name__ == "__main__":
    sys.exit(main())
