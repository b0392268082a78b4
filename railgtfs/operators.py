"""Train operating company names from the fares feed ``.TOC`` file."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Final

logger: Final[logging.Logger] = logging.getLogger(__name__)

_TOC_MARKER: Final[str] = "T"


def parse_toc_lines(lines: Iterable[str]) -> dict[str, str]:
    """Map two-letter operator codes to display names.

    TOC lines are ``T`` + code (2 chars) + name (30 chars). Lines missing
    either value are skipped; a repeated code keeps the last name.
    """
    operators: dict[str, str] = {}
    for line in lines:
        if not line.startswith(_TOC_MARKER):
            continue
        code = line[1:3].strip()
        name = line[3:33].strip()
        if code and name:
            operators[code] = name
    logger.info("Loaded %d operator names", len(operators))
    return operators
