"""Tests for TOC operator name parsing."""

from __future__ import annotations

from cif_lines import toc_line
from railgtfs.operators import parse_toc_lines


class TestParseTocLines:
    """Tests for operator code -> name extraction."""

    def test_parses_codes_and_names(self) -> None:
        lines = [
            toc_line("GW", "Great Western Railway"),
            toc_line("LO", "London Overground"),
        ]
        assert parse_toc_lines(lines) == {
            "GW": "Great Western Railway",
            "LO": "London Overground",
        }

    def test_ignores_other_records(self) -> None:
        lines = ["/!! Start of file", "RGW00001", toc_line("GW", "GWR")]
        assert parse_toc_lines(lines) == {"GW": "GWR"}

    def test_skips_blank_code_or_name(self) -> None:
        lines = [toc_line("  ", "Nameless"), "TXC", toc_line("XC", "")]
        assert parse_toc_lines(lines) == {}

    def test_repeated_code_keeps_last(self) -> None:
        lines = [toc_line("GW", "First Great Western"), toc_line("GW", "GWR")]
        assert parse_toc_lines(lines) == {"GW": "GWR"}

    def test_name_truncated_to_field_width(self) -> None:
        lines = ["TSW" + "South Western Railway".ljust(30) + "EXTRA"]
        assert parse_toc_lines(lines) == {"SW": "South Western Railway"}
