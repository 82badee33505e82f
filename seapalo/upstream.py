"""
External tide API client (WorldTides v3).

Used only when internal computation is disabled. Requests carry an explicit
timeout and a response size cap and are never retried. Responses go through
a validating parse: a malformed payload is reported as a failure instead of
being patched up with defaults.
"""
import json
import logging
import math
import urllib.parse
import urllib.request
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional, Tuple

from .exceptions import UpstreamUnavailable

logger = logging.getLogger(__name__)

# Maximum response size accepted from the API (1 MB)
MAX_RESPONSE_SIZE = 1 * 1024 * 1024

# WorldTides rejects requests shorter than one step
MIN_STEP_SECONDS = 60


@dataclass(frozen=True)
class UpstreamPoint:
    time: datetime  # UTC, timezone-aware
    height: float  # metres
    extrema_type: Optional[str] = None  # 'high' or 'low'


@dataclass(frozen=True)
class ParseResult:
    """Outcome of validating an upstream payload: points or an error message."""

    points: Tuple[UpstreamPoint, ...] = ()
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def safe_read_response(response, max_size: int = MAX_RESPONSE_SIZE) -> bytes:
    """
    Read an HTTP response body, refusing anything above max_size bytes.

    Raises:
        ValueError: If the response exceeds the size limit
    """
    content_length = response.headers.get('Content-Length')
    if content_length and int(content_length) > max_size:
        raise ValueError(f"Response too large: {content_length} bytes (max: {max_size})")

    # Read one extra byte to detect overflow
    data = response.read(max_size + 1)
    if len(data) > max_size:
        raise ValueError(f"Response exceeded size limit of {max_size} bytes")
    return data


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def parse_worldtides(payload: Any, field: str) -> ParseResult:
    """
    Validate a WorldTides v3 response and extract one series.

    Args:
        payload: Decoded JSON body
        field: 'heights' or 'extremes'

    Returns:
        ParseResult with points sorted by time, or with `error` set
    """
    if not isinstance(payload, dict):
        return ParseResult(error="Response is not a JSON object")

    status = payload.get('status', 200)
    if status != 200:
        return ParseResult(error=f"API status {status}: {payload.get('error', 'unknown error')}")

    entries = payload.get(field)
    if not isinstance(entries, list):
        return ParseResult(error=f"Response has no '{field}' list")

    points = []
    for i, entry in enumerate(entries):
        if not isinstance(entry, dict):
            return ParseResult(error=f"{field}[{i}] is not an object")

        dt = entry.get('dt')
        height = entry.get('height')
        if not isinstance(dt, int) or isinstance(dt, bool):
            return ParseResult(error=f"{field}[{i}] has no integer 'dt'")
        if not _is_number(height):
            return ParseResult(error=f"{field}[{i}] has no numeric 'height'")

        tide_type = None
        if field == 'extremes':
            raw_type = entry.get('type')
            if not isinstance(raw_type, str) or raw_type.lower() not in ('high', 'low'):
                return ParseResult(error=f"{field}[{i}] has invalid type {raw_type!r}")
            tide_type = raw_type.lower()

        points.append(UpstreamPoint(
            time=datetime.fromtimestamp(dt, tz=timezone.utc),
            height=float(height),
            extrema_type=tide_type,
        ))

    points.sort(key=lambda p: p.time)
    return ParseResult(points=tuple(points))


class WorldTidesClient:
    """Minimal WorldTides v3 client for heights and extremes."""

    def __init__(
        self,
        api_key: str,
        base_url: str = 'https://www.worldtides.info/api/v3',
        timeout: float = 10.0,
        max_response_size: int = MAX_RESPONSE_SIZE,
    ):
        if not api_key:
            raise ValueError("WorldTides API key is required")
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.max_response_size = max_response_size

    def _request(self, params: dict) -> Any:
        query = urllib.parse.urlencode({**params, 'key': self.api_key})
        url = f"{self.base_url}?{query}"
        try:
            with urllib.request.urlopen(url, timeout=self.timeout) as response:
                return json.loads(safe_read_response(response, self.max_response_size).decode())
        except (OSError, ValueError) as e:
            # URLError and socket timeouts are OSErrors; bad JSON and oversize bodies are ValueErrors
            logger.warning(f"WorldTides request failed: {e}")
            raise UpstreamUnavailable(f"Tide API request failed: {e}") from e

    def _fetch(self, field: str, lat: float, lon: float, start: datetime, end: datetime,
               step_minutes: Optional[float] = None) -> List[UpstreamPoint]:
        start_ts = int(start.timestamp())
        length = max(int((end - start).total_seconds()), MIN_STEP_SECONDS)
        params = {field: '', 'lat': lat, 'lon': lon, 'start': start_ts, 'length': length}
        if step_minutes is not None:
            params['step'] = max(int(step_minutes * 60), MIN_STEP_SECONDS)

        result = parse_worldtides(self._request(params), field)
        if not result.ok:
            logger.warning(f"Rejected WorldTides payload: {result.error}")
            raise UpstreamUnavailable(f"Tide API returned a malformed response: {result.error}")
        return list(result.points)

    def heights(self, lat: float, lon: float, start: datetime, end: datetime,
                step_minutes: float = 60) -> List[UpstreamPoint]:
        """Water levels from start to end (inclusive) at a fixed step."""
        return self._fetch('heights', lat, lon, start, end + timedelta(seconds=1), step_minutes)

    def extremes(self, lat: float, lon: float, start: datetime, end: datetime) -> List[UpstreamPoint]:
        """High and low water events between start and end."""
        return self._fetch('extremes', lat, lon, start, end)
