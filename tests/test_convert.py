"""End-to-end tests for the conversion pipeline and its CLI."""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Any

import httpx
import pytest
import respx

from cif_lines import bs_line, lo_line, lt_line, msn_line, write_zip
from railgtfs.archive import ArchiveError
from railgtfs.config import OVERPASS_URL
from railgtfs.convert import convert_archives, main
from railgtfs.download import cache_json


def _read(path: Path) -> list[dict[str, str]]:
    with path.open(encoding="utf-8", newline="") as fh:
        return list(csv.DictReader(fh))


class TestConvertArchives:
    """Tests for the full archive-to-GTFS pass."""

    def test_row_counts(
        self, timetable_zip: Path, fares_zip: Path, tmp_path: Path
    ) -> None:
        result = convert_archives(timetable_zip, tmp_path / "gtfs", fares_zip)

        assert result.row_counts == {
            "agency": 1,
            "stops": 3,
            "routes": 1,
            "trips": 2,
            "stop_times": 6,
            "calendar": 2,
            "associations": 1,
        }
        assert result.stations == 3
        assert result.trips_finalized == 3
        assert result.duplicates_suppressed == 1

    def test_feed_contents(
        self, timetable_zip: Path, fares_zip: Path, tmp_path: Path
    ) -> None:
        out = tmp_path / "gtfs"
        convert_archives(timetable_zip, out, fares_zip)

        trips = _read(out / "trips.txt")
        assert [t["trip_id"] for t in trips] == ["C10001", "C10001_240601_O"]
        assert [t["service_id"] for t in trips] == ["S1", "S2"]
        assert trips[0]["trip_headsign"] == "DIDCOT PARKWAY"

        (agency,) = _read(out / "agency.txt")
        assert agency["agency_name"] == "Great Western Railway"
        assert agency["agency_timezone"] == "Europe/London"

        (route,) = _read(out / "routes.txt")
        assert route["route_long_name"] == "LONDON PADDINGTON to DIDCOT PARKWAY"
        assert route["route_type"] == "2"

        calendar = _read(out / "calendar.txt")
        assert calendar[1]["start_date"] == "20240601"
        assert calendar[1]["saturday"] == "0"

        stop_ids = {s["stop_id"] for s in _read(out / "stops.txt")}
        stop_time_ids = {s["stop_id"] for s in _read(out / "stop_times.txt")}
        assert stop_time_ids <= stop_ids

        (assoc,) = _read(out / "associations.txt")
        assert assoc["assoc_uid"] == "C20002"

    def test_without_fares_synthesizes_agency(
        self, timetable_zip: Path, tmp_path: Path
    ) -> None:
        out = tmp_path / "gtfs"
        convert_archives(timetable_zip, out)
        (agency,) = _read(out / "agency.txt")
        assert agency["agency_name"] == "National Rail (GW)"

    def test_geocode_overrides_grid(
        self, timetable_zip: Path, tmp_path: Path
    ) -> None:
        out = tmp_path / "gtfs"
        convert_archives(timetable_zip, out, geocode={"PAD": (51.5154, -0.1755)})
        stops = {s["stop_id"]: s for s in _read(out / "stops.txt")}
        assert float(stops["PADTON"]["stop_lat"]) == 51.5154
        assert float(stops["PADTON"]["stop_lon"]) == -0.1755

    def test_state_resets_between_members(self, tmp_path: Path) -> None:
        archive = write_zip(
            tmp_path / "timetable.zip",
            {
                "A.MSN": [
                    msn_line("LONDON PADDINGTON", "PADTON", "PAD"),
                    msn_line("READING", "RDNGSTN", "RDG"),
                ],
                "A.MCA": [bs_line("C10001"), lo_line("PADTON")],
                "B.MCA": [lt_line("RDNGSTN")],
            },
        )
        result = convert_archives(archive, tmp_path / "gtfs")
        assert result.trips_finalized == 0
        assert result.row_counts["trips"] == 0

    def test_reused_uid_across_members_unique_ids(self, tmp_path: Path) -> None:
        def schedule(days: str, departure: str) -> list[str]:
            return [
                bs_line("X10001", "240101", "241231", days, "2B45", "P"),
                lo_line("PADTON", departure),
                lt_line("RDNGSTN"),
            ]

        archive = write_zip(
            tmp_path / "timetable.zip",
            {
                "A.MSN": [
                    msn_line("LONDON PADDINGTON", "PADTON", "PAD"),
                    msn_line("READING", "RDNGSTN", "RDG"),
                ],
                "A.MCA": schedule("1111100", "0800 ") + schedule("0000010", "0810 "),
                "B.MCA": schedule("0000001", "0820 "),
            },
        )
        out = tmp_path / "gtfs"
        convert_archives(archive, out)

        trip_ids = [t["trip_id"] for t in _read(out / "trips.txt")]
        assert trip_ids == ["X10001", "X10001_240101_P", "X10001_240101_P_2"]
        stop_time_ids = [s["trip_id"] for s in _read(out / "stop_times.txt")]
        assert {i: stop_time_ids.count(i) for i in trip_ids} == dict.fromkeys(
            trip_ids, 2
        )

    def test_missing_schedule_member(self, tmp_path: Path) -> None:

        archive = write_zip(
            tmp_path / "timetable.zip",
            {"A.MSN": [msn_line("READING", "RDNGSTN", "RDG")]},
        )
        with pytest.raises(ArchiveError, match=r"\.MCA"):
            convert_archives(archive, tmp_path / "gtfs")

    def test_corrupt_archive(self, corrupt_zip: Path, tmp_path: Path) -> None:
        with pytest.raises(ArchiveError):
            convert_archives(corrupt_zip, tmp_path / "gtfs")


class TestMain:
    """Tests for the CLI entry point."""

    def test_local_archives(
        self,
        timetable_zip: Path,
        fares_zip: Path,
        tmp_path: Path,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        out = tmp_path / "gtfs"
        code = main(
            [
                "--timetable",
                str(timetable_zip),
                "--fares",
                str(fares_zip),
                "--no-osm",
                "--output-dir",
                str(out),
            ]
        )
        assert code == 0
        assert (out / "stop_times.txt").exists()
        captured = capsys.readouterr()
        assert "Conversion Summary" in captured.out
        assert "stop_times" in captured.out

    def test_osm_cache_used(
        self,
        timetable_zip: Path,
        tmp_path: Path,
        overpass_payload: dict[str, Any],
    ) -> None:
        cache = cache_json(overpass_payload, tmp_path / "osm_crs.json")
        out = tmp_path / "gtfs"
        code = main(
            [
                "--timetable",
                str(timetable_zip),
                "--osm-cache",
                str(cache),
                "--output-dir",
                str(out),
            ]
        )
        assert code == 0
        stops = {s["stop_id"]: s for s in _read(out / "stops.txt")}
        assert float(stops["RDNGSTN"]["stop_lat"]) == 51.4588

    def test_corrupt_archive_exit_code(
        self, corrupt_zip: Path, tmp_path: Path
    ) -> None:
        code = main(
            [
                "--timetable",
                str(corrupt_zip),
                "--no-osm",
                "--output-dir",
                str(tmp_path / "gtfs"),
            ]
        )
        assert code == 1

    def test_missing_credentials_exit_code(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        monkeypatch.delenv("NR_USERNAME", raising=False)
        monkeypatch.delenv("NR_PASSWORD", raising=False)
        monkeypatch.setattr(Path, "home", lambda: Path("/nonexistent_home_dir"))
        code = main(["--no-osm", "--output-dir", str(tmp_path / "gtfs")])
        assert code == 1

    def test_fares_requires_timetable(self, fares_zip: Path) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["--fares", str(fares_zip)])
        assert exc_info.value.code == 2

    def test_corrupt_osm_cache_exit_code(
        self, timetable_zip: Path, tmp_path: Path
    ) -> None:
        cache = tmp_path / "osm_crs.json"
        cache.write_text("{not json", encoding="utf-8")
        code = main(
            [
                "--timetable",
                str(timetable_zip),
                "--osm-cache",
                str(cache),
                "--output-dir",
                str(tmp_path / "gtfs"),
            ]
        )
        assert code == 1
        assert not (tmp_path / "gtfs").exists()

    @respx.mock
    def test_non_json_overpass_exit_code(
        self, timetable_zip: Path, tmp_path: Path
    ) -> None:
        respx.post(OVERPASS_URL).mock(
            return_value=httpx.Response(200, text="<html>rate limited</html>")
        )
        code = main(
            [
                "--timetable",
                str(timetable_zip),
                "--osm-cache",
                str(tmp_path / "osm_crs.json"),
                "--output-dir",
                str(tmp_path / "gtfs"),
            ]
        )
        assert code == 1
        assert not (tmp_path / "osm_crs.json").exists()
