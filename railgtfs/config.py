"""Feed configuration registry for the National Rail GTFS converter.

Defines typed configuration for the three upstream sources: the NRDP
timetable feed (CIF schedule and master station names), the NRDP fares
feed (train operating company names), and the OpenStreetMap CRS station
lookup served through the Overpass API. Also resolves the data-provider
credentials used by the download module.
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Final

# NRDP endpoints
AUTH_URL: Final[str] = "https://opendata.nationalrail.co.uk/authenticate"
_TIMETABLE_URL: Final[str] = (
    "https://opendata.nationalrail.co.uk/api/staticfeeds/3.0/timetable"
)
_FARES_URL: Final[str] = "https://opendata.nationalrail.co.uk/api/staticfeeds/2.0/fares"

OVERPASS_URL: Final[str] = "https://overpass-api.de/api/interpreter"

# Seconds allowed for each connect, read, write and pool wait
DOWNLOAD_TIMEOUT: Final[int] = 300

# GTFS constants shared by every agency and route row
AGENCY_URL: Final[str] = "http://www.nationalrail.co.uk"
AGENCY_TIMEZONE: Final[str] = "Europe/London"
ROUTE_TYPE_RAIL: Final[int] = 2

# Operator code used when a schedule carries no BX record
DEFAULT_OPERATOR: Final[str] = "NR"

# London Overground, routed through the named-line classifier
METRO_OPERATOR: Final[str] = "LO"

_CREDENTIALS_RELPATH: Final[Path] = Path(".config") / "railgtfs" / "credentials.toml"


class ConfigError(Exception):
    """Raised when required configuration cannot be resolved."""


@dataclass(frozen=True, slots=True)
class FeedConfig:
    """Immutable configuration for a single upstream feed.

    Attributes:
        name: Machine-readable feed identifier (snake_case).
        url: Endpoint the feed is retrieved from.
        member_suffixes: Archive member suffixes consumed from this feed.
        filename: Local filename the feed is stored under.
        requires_auth: Whether the request needs an NRDP token.
    """

    name: str
    url: str
    member_suffixes: tuple[str, ...]
    filename: str
    requires_auth: bool


@dataclass(frozen=True, slots=True)
class Credentials:
    """NRDP account credentials."""

    username: str
    password: str


FEEDS: Final[tuple[FeedConfig, ...]] = (
    FeedConfig(
        name="timetable",
        url=_TIMETABLE_URL,
        member_suffixes=(".MSN", ".MCA"),
        filename="timetable.zip",
        requires_auth=True,
    ),
    FeedConfig(
        name="fares",
        url=_FARES_URL,
        member_suffixes=(".TOC",),
        filename="fares.zip",
        requires_auth=True,
    ),
    FeedConfig(
        name="osm_crs",
        url=OVERPASS_URL,
        member_suffixes=(),
        filename="osm_crs.json",
        requires_auth=False,
    ),
)


def get_feed_by_name(name: str) -> FeedConfig:
    """Look up a feed configuration by its machine-readable name.

    Args:
        name: Feed name matching FeedConfig.name field.

    Returns:
        Matching FeedConfig instance.

    Raises:
        KeyError: If no feed matches the given name.
    """
    for feed in FEEDS:
        if feed.name == name:
            return feed
    valid_names = ", ".join(f.name for f in FEEDS)
    raise KeyError(f"Unknown feed '{name}'. Valid names: {valid_names}")


def resolve_credentials(
    username: str | None = None,
    password: str | None = None,
    *,
    toml_path: Path | None = None,
) -> Credentials:
    """Resolve NRDP credentials from the available sources.

    Resolution order:
      1. Explicit arguments
      2. Environment variables (NR_USERNAME, NR_PASSWORD)
      3. ``~/.config/railgtfs/credentials.toml`` ``[nrdp]`` section

    Args:
        username: Explicit account name.
        password: Explicit account password.
        toml_path: Override for the credentials file location.

    Returns:
        Complete Credentials instance.

    Raises:
        ConfigError: If no source yields both a username and a password.
    """
    user = username or os.environ.get("NR_USERNAME", "")
    secret = password or os.environ.get("NR_PASSWORD", "")

    if user and secret:
        return Credentials(username=user, password=secret)

    path = toml_path or Path.home() / _CREDENTIALS_RELPATH
    if path.exists():
        with path.open("rb") as fh:
            config = tomllib.load(fh)
        section = config.get("nrdp", {})
        user = user or str(section.get("username", ""))
        secret = secret or str(section.get("password", ""))
        if user and secret:
            return Credentials(username=user, password=secret)

    raise ConfigError(
        "NRDP credentials not found. Set NR_USERNAME and NR_PASSWORD "
        f"environment variables or configure {path} with an [nrdp] section."
    )
