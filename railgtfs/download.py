"""Feed retrieval for the National Rail GTFS converter.

Authenticates against the National Rail Data Portal (NRDP), streams the
timetable and fares archives to disk, and fetches the OpenStreetMap CRS
station lookup from the Overpass API. Each connect, read, write and
pool wait is bounded by the same timeout; any HTTP failure is fatal to
the run.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Final

import httpx

from railgtfs.config import (
    AUTH_URL,
    DOWNLOAD_TIMEOUT,
    Credentials,
    FeedConfig,
    get_feed_by_name,
)

logger: Final[logging.Logger] = logging.getLogger(__name__)

_CHUNK_SIZE: Final[int] = 65_536
_RETRIES: Final[int] = 3
_TOKEN_HEADER: Final[str] = "X-Auth-Token"

# Nodes, ways and relations carrying a CRS code anywhere in Great Britain
_OVERPASS_QUERY: Final[str] = (
    f"[out:json][timeout:{DOWNLOAD_TIMEOUT}];"
    'area["ISO3166-1"="GB"][admin_level=2]->.gb;'
    '(node["ref:crs"](area.gb);way["ref:crs"](area.gb);'
    'relation["ref:crs"](area.gb););'
    "out center;"
)


# ---------------------------------------------------------------------------
# Exceptions and results
# ---------------------------------------------------------------------------


class DownloadError(Exception):
    """Raised when an HTTP request fails with a non-success status code."""

    def __init__(self, url: str, status_code: int, body: str) -> None:
        self.url: Final[str] = url
        self.status_code: Final[int] = status_code
        self.body: Final[str] = body
        super().__init__(f"HTTP {status_code} for {url}: {body[:200]}")


class AuthenticationError(Exception):
    """Raised when the NRDP rejects the credentials or returns no token."""

    def __init__(self, message: str, *, status_code: int = 0) -> None:
        self.status_code: Final[int] = status_code
        super().__init__(message)


class CacheError(Exception):
    """Raised when a cached Overpass response cannot be used."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path: Final[Path] = path
        self.reason: Final[str] = reason
        super().__init__(f"Unusable cache file {path}: {reason}")



@dataclass(frozen=True, slots=True)
class DownloadResult:
    """Outcome of a single feed download.

    Attributes:
        file_path: Path to the downloaded file on disk.
        url: Source URL the file was fetched from.
        http_status: HTTP response status code.
        byte_size: File size in bytes after download.
        download_timestamp: ISO-8601 timestamp of download completion.
        sha256_hash: Hex-encoded SHA-256 digest of the file contents.
    """

    file_path: Path
    url: str
    http_status: int
    byte_size: int
    download_timestamp: str
    sha256_hash: str


@dataclass(frozen=True, slots=True)
class DownloadBundle:
    """Local copies of every feed one conversion needs."""

    timetable: DownloadResult
    fares: DownloadResult


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------


def compute_sha256(file_path: Path) -> str:
    """Compute SHA-256 hex digest of a file using chunked reads."""
    hasher = hashlib.sha256()
    with file_path.open("rb") as fh:
        while True:
            chunk: bytes = fh.read(_CHUNK_SIZE)
            if not chunk:
                break
            hasher.update(chunk)
    return hasher.hexdigest()


def build_client() -> httpx.Client:
    """Construct an httpx client with retries and a per-phase timeout."""
    transport = httpx.HTTPTransport(retries=_RETRIES)
    return httpx.Client(timeout=DOWNLOAD_TIMEOUT, transport=transport)


def _stream_to_file(
    client: httpx.Client,
    url: str,
    dest: Path,
    headers: dict[str, str] | None = None,
) -> tuple[int, int]:
    """Stream an HTTP GET response to a file on disk.

    Returns:
        Tuple of (http_status_code, bytes_written).

    Raises:
        DownloadError: On HTTP 4xx/5xx responses.
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    with client.stream("GET", url, headers=headers) as response:
        if response.status_code >= 400:
            body: str = response.read().decode("utf-8", errors="replace")
            raise DownloadError(url, response.status_code, body)
        total_bytes: int = 0
        with dest.open("wb") as fh:
            for chunk in response.iter_bytes(chunk_size=_CHUNK_SIZE):
                fh.write(chunk)
                total_bytes += len(chunk)
    return response.status_code, total_bytes


# ---------------------------------------------------------------------------
# NRDP
# ---------------------------------------------------------------------------


def authenticate(client: httpx.Client, credentials: Credentials) -> str:
    """Exchange NRDP credentials for a session token.

    Args:
        client: Configured httpx.Client instance.
        credentials: NRDP account credentials.

    Returns:
        Token to send in the ``X-Auth-Token`` header.

    Raises:
        AuthenticationError: On HTTP 4xx/5xx or a response without a token.
    """
    logger.info("Authenticating with NRDP as %s", credentials.username)
    response = client.post(
        AUTH_URL,
        data={"username": credentials.username, "password": credentials.password},
    )
    if response.status_code >= 400:
        raise AuthenticationError(
            f"Authentication failed ({response.status_code}): {response.text[:200]}",
            status_code=response.status_code,
        )
    try:
        payload: dict[str, Any] = response.json()
    except json.JSONDecodeError as exc:
        raise AuthenticationError(
            "Authentication response is not JSON",
            status_code=response.status_code,
        ) from exc

    token: Any = payload.get("token") if isinstance(payload, dict) else None
    if not token:
        raise AuthenticationError(
            "Authentication response carries no token",
            status_code=response.status_code,
        )
    logger.info("Authentication successful")
    return str(token)


def download_feed(
    client: httpx.Client,
    config: FeedConfig,
    dest_dir: Path,
    token: str | None = None,
) -> DownloadResult:
    """Download one NRDP feed archive.

    Args:
        client: Configured httpx.Client instance.
        config: Feed to download.
        dest_dir: Directory the archive is written to.
        token: NRDP session token, required for authenticated feeds.

    Returns:
        DownloadResult describing the file on disk.

    Raises:
        AuthenticationError: If the feed needs a token and none is given.
        DownloadError: On HTTP errors.
    """
    headers: dict[str, str] = {}
    if config.requires_auth:
        if not token:
            raise AuthenticationError(f"Feed '{config.name}' requires a token")
        headers[_TOKEN_HEADER] = token

    dest: Path = dest_dir / config.filename
    logger.info("Downloading %s feed: %s -> %s", config.name, config.url, dest)
    status, byte_size = _stream_to_file(client, config.url, dest, headers)

    return DownloadResult(
        file_path=dest,
        url=config.url,
        http_status=status,
        byte_size=byte_size,
        download_timestamp=datetime.now(tz=UTC).isoformat(),
        sha256_hash=compute_sha256(dest),
    )


def download_all(dest_dir: Path, credentials: Credentials) -> DownloadBundle:
    """Authenticate once and download the fares and timetable archives."""
    with build_client() as client:
        token = authenticate(client, credentials)
        fares = download_feed(client, get_feed_by_name("fares"), dest_dir, token)
        timetable = download_feed(
            client, get_feed_by_name("timetable"), dest_dir, token
        )
    return DownloadBundle(timetable=timetable, fares=fares)


# ---------------------------------------------------------------------------
# OpenStreetMap CRS lookup
# ---------------------------------------------------------------------------


def fetch_osm_crs(client: httpx.Client) -> dict[str, Any]:
    """Query Overpass for every feature tagged with a CRS code.

    Returns:
        Parsed Overpass JSON response.

    Raises:
        DownloadError: On HTTP errors or a body that is not a JSON object.
    """
    url: str = get_feed_by_name("osm_crs").url
    logger.info("Fetching OSM CRS stations from %s", url)
    response = client.post(url, data={"data": _OVERPASS_QUERY})
    if response.status_code >= 400:
        raise DownloadError(url, response.status_code, response.text)
    try:
        data: Any = response.json()
    except json.JSONDecodeError as exc:
        raise DownloadError(url, response.status_code, response.text) from exc
    if not isinstance(data, dict):
        raise DownloadError(url, response.status_code, response.text)
    return data


def cache_json(data: dict[str, Any], path: Path) -> Path:
    """Write an Overpass response to a local cache file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False)
    logger.info("Cached OSM CRS JSON to %s", path)
    return path


def load_cached_json(path: Path) -> dict[str, Any]:
    """Load a cached Overpass response.

    Raises:
        FileNotFoundError: If the cache file does not exist.
        CacheError: If the file does not hold a JSON object.
    """
    with path.open(encoding="utf-8") as f:
        try:
            data: Any = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise CacheError(path, f"not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise CacheError(path, f"expected an object, got {type(data).__name__}")
    logger.info("Loaded OSM CRS JSON from %s", path)
    return data
