"""
Prediction Orchestrator.

Serves predictions through three tiers, in order:

1. Tile cache hit: constituents come from the cached tile (DataSource.TILE)
2. Cache miss: constituents are resolved at the tile centroid, packaged and
   cached (DataSource.HARMONIC)
3. Cache miss with internal computation disabled: the external tide API is
   queried (DataSource.API)

Coordinates outside the supported region are rejected before any of this.
"""
import logging
import math
import threading
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from timezonefinder import TimezoneFinder

from .cache import TileCache, TileCacheStats
from .codec import TileManifest, build_manifest
from .exceptions import CorruptPayload, InvalidRequest, OutOfRegion, UpstreamUnavailable
from .lunar import LunarPhaseCalculator, LunarPhaseResult
from .resolver import ConstituentResolver
from .tide_service import ExtremaType, PredictionPoint, TideSynthesizer
from .tiles import Location, TidalConstituent, TileMetadata, TilePackage, tile_bbox, tile_centroid, tile_id
from .upstream import UpstreamPoint, WorldTidesClient

logger = logging.getLogger(__name__)

# Upper bound on tiles listed for one manifest bounding box
MAX_MANIFEST_TILES = 256


class DataSource(str, Enum):
    TILE = "tile"
    HARMONIC = "harmonic"
    API = "api"


@dataclass(frozen=True)
class TimeOfDay:
    hour: int
    minute: int = 0

    def __post_init__(self):
        if not (0 <= self.hour <= 23) or not (0 <= self.minute <= 59):
            raise InvalidRequest(f"Invalid time of day {self.hour}:{self.minute}")


@dataclass(frozen=True)
class TimeRange:
    start_hour: float
    end_hour: float
    interval_minutes: float = 60

    def __post_init__(self):
        if not (0 <= self.start_hour <= 24) or not (0 <= self.end_hour <= 24):
            raise InvalidRequest("Time range hours must be within 0-24")
        if self.end_hour < self.start_hour:
            raise InvalidRequest("Time range ends before it starts")
        if self.interval_minutes <= 0:
            raise InvalidRequest("Time range interval must be positive")


@dataclass(frozen=True)
class PredictionRequest:
    """
    A prediction for one local calendar day.

    With `time` the response holds the level at that moment, with
    `time_range` a level series, and with neither the day's high and low
    water events.
    """

    location: Location
    date: date
    time: Optional[TimeOfDay] = None
    time_range: Optional[TimeRange] = None

    def __post_init__(self):
        if self.time is not None and self.time_range is not None:
            raise InvalidRequest("Specify either a time or a time range, not both")


@dataclass(frozen=True)
class PredictionResponse:
    location: Location
    date: date
    predictions: List[PredictionPoint]
    data_source: DataSource
    response_time_ms: float


@dataclass(frozen=True)
class CacheStats:
    """Process-wide service counters plus a snapshot of the tile cache."""

    request_count: int
    avg_response_time_ms: float
    cache_hit_rate: float
    total_cache_bytes: int
    tiles: TileCacheStats


class TidePredictionService:
    """
    Coordinates the tile cache, resolver, synthesizer and upstream API.

    The cache is owned by the caller and shared by reference; the service
    never mutates a Tile it gets back from the cache.
    """

    def __init__(
        self,
        cache: TileCache,
        resolver: ConstituentResolver,
        synthesizer: TideSynthesizer,
        lunar: LunarPhaseCalculator,
        upstream: Optional[WorldTidesClient] = None,
        internal_enabled: bool = True,
        metadata: TileMetadata = TileMetadata(model='Harmonic36', datum='MSL', version='1.0.0'),
        tile_resolution_deg: float = 0.1,
    ):
        self.cache = cache
        self.resolver = resolver
        self.synthesizer = synthesizer
        self.lunar = lunar
        self.upstream = upstream
        self.internal_enabled = internal_enabled
        self.metadata = metadata
        self.tile_resolution_deg = tile_resolution_deg

        self._tz_finder = TimezoneFinder()
        self._stats_lock = threading.Lock()
        self._request_count = 0
        self._total_response_ms = 0.0

    # =========================================================================
    # Public API
    # =========================================================================

    def get_predictions(self, request: PredictionRequest) -> PredictionResponse:
        """
        Predictions for a request, tagged with the tier that produced them.

        Raises:
            OutOfRegion: If the location is outside the supported region
            InvalidRequest: If the request window is malformed
            UpstreamUnavailable: If the external API was needed and failed
        """
        started = time.perf_counter()
        try:
            loc = request.location
            self.resolver.check_region(loc.lat, loc.lon)

            package, source = self._lookup_tile(loc.lat, loc.lon)
            tz = self._get_timezone(loc.lat, loc.lon)
            day_start = datetime(request.date.year, request.date.month, request.date.day, tzinfo=tz)
            # Lunar day follows the calendar date, not the location's UTC offset
            lunar_phase = self.lunar.lunar_phase_for_date(request.date)

            if package is not None:
                predictions = self._synthesize(request, package.tile.constituents, lunar_phase, day_start)
            else:
                predictions = self._from_upstream(request, lunar_phase, day_start, tz)
                source = DataSource.API

            elapsed_ms = (time.perf_counter() - started) * 1000.0
            logger.debug(f"Prediction for ({loc.lat}, {loc.lon}) on {request.date} "
                         f"from {source.value} in {elapsed_ms:.2f} ms")
            return PredictionResponse(
                location=loc,
                date=request.date,
                predictions=predictions,
                data_source=source,
                response_time_ms=round(elapsed_ms, 2),
            )
        finally:
            self._record((time.perf_counter() - started) * 1000.0)

    def get_tile(self, lat: float, lon: float) -> Tuple[TilePackage, DataSource]:
        """
        Encoded tile for the cell containing a coordinate.

        Raises:
            OutOfRegion: If the coordinate is outside the supported region
            UpstreamUnavailable: If the tile is not cached and internal
                computation is disabled
        """
        self.resolver.check_region(lat, lon)
        package, source = self._lookup_tile(lat, lon)
        if package is None:
            raise UpstreamUnavailable("Tile is not cached and internal computation is disabled")
        return package, source

    def manifest(self, bbox: Optional[Tuple[float, float, float, float]] = None) -> TileManifest:
        """
        Manifest of tiles for offline pre-fetch.

        Without a bbox the tiles currently cached are listed. With a bbox
        (west, south, east, north) every cell overlapping both the box and
        the supported region is listed, computing missing tiles when internal
        computation is enabled and skipping them otherwise.

        Raises:
            InvalidRequest: If the box is malformed or spans too many cells
            OutOfRegion: If the box does not overlap the supported region
        """
        if bbox is None:
            packages = self._cached_packages()
        else:
            packages = []
            for lat, lon in self._cells_in(bbox):
                package, _ = self._lookup_tile(lat, lon)
                if package is not None:
                    packages.append(package)
        return build_manifest(packages, version=self.metadata.version)

    def lunar_phase(self, instant: datetime) -> LunarPhaseResult:
        return self.lunar.lunar_phase(instant)

    def stats(self) -> CacheStats:
        tiles = self.cache.stats()
        with self._stats_lock:
            count = self._request_count
            total = self._total_response_ms
        return CacheStats(
            request_count=count,
            avg_response_time_ms=round(total / count, 3) if count else 0.0,
            cache_hit_rate=tiles.hit_rate,
            total_cache_bytes=tiles.total_bytes,
            tiles=tiles,
        )

    # =========================================================================
    # Tiers
    # =========================================================================

    def _lookup_tile(self, lat: float, lon: float) -> Tuple[Optional[TilePackage], Optional[DataSource]]:
        """
        Cached tile, or a freshly computed one when internal computation is on.

        A corrupt cache entry comes back from the cache as a miss, so it is
        recomputed here once and never retried further.
        """
        step = self.tile_resolution_deg
        key = tile_id(lat, lon, step)

        package = self.cache.get_package(key)
        if package is not None:
            return package, DataSource.TILE

        if not self.internal_enabled:
            return None, None

        package = self._compute_tile(key, lat, lon)
        try:
            self.cache.put_package(key, package)
        except ValueError as e:
            logger.warning(f"Not caching {key}: {e}")
        return package, DataSource.HARMONIC

    def _compute_tile(self, key: str, lat: float, lon: float) -> TilePackage:
        step = self.tile_resolution_deg
        lon_c, lat_c = tile_centroid(lat, lon, step)

        # Cells straddling the region edge are resolved at the nearest point inside it
        west, south, east, north = self.resolver.region
        centre = Location(lat=min(max(lat_c, south), north), lon=min(max(lon_c, west), east))
        constituents = self.resolver.resolve(centre)

        logger.info(f"Computed tile {key} with {len(constituents)} constituents")
        return self.cache.codec.package_tile(
            tile_id=key,
            bbox=tile_bbox(lat, lon, step),
            centroid=(lon_c, lat_c),
            constituents=constituents,
            metadata=self.metadata,
        )

    def _synthesize(
        self,
        request: PredictionRequest,
        constituents: Sequence[TidalConstituent],
        lunar_phase: LunarPhaseResult,
        day_start: datetime,
    ) -> List[PredictionPoint]:
        if request.time is not None:
            instant = day_start + timedelta(hours=request.time.hour, minutes=request.time.minute)
            return [self.synthesizer.level_at(constituents, lunar_phase, instant)]

        if request.time_range is not None:
            tr = request.time_range
            return self.synthesizer.synthesize(
                constituents,
                lunar_phase,
                day_start + timedelta(hours=tr.start_hour),
                day_start + timedelta(hours=tr.end_hour),
                tr.interval_minutes,
            )

        return self.synthesizer.find_extrema(constituents, lunar_phase, day_start, day_start + timedelta(days=1))

    def _from_upstream(
        self,
        request: PredictionRequest,
        lunar_phase: LunarPhaseResult,
        day_start: datetime,
        tz: ZoneInfo,
    ) -> List[PredictionPoint]:
        if self.upstream is None:
            raise UpstreamUnavailable("Internal computation is disabled and no tide API is configured")

        loc = request.location
        confidence = self.synthesizer.confidence(lunar_phase)

        if request.time is not None:
            instant = day_start + timedelta(hours=request.time.hour, minutes=request.time.minute)
            points = self.upstream.heights(loc.lat, loc.lon, instant, instant, step_minutes=1)[:1]
        elif request.time_range is not None:
            tr = request.time_range
            points = self.upstream.heights(
                loc.lat,
                loc.lon,
                day_start + timedelta(hours=tr.start_hour),
                day_start + timedelta(hours=tr.end_hour),
                step_minutes=tr.interval_minutes,
            )
        else:
            points = self.upstream.extremes(loc.lat, loc.lon, day_start, day_start + timedelta(days=1))

        if not points:
            raise UpstreamUnavailable("Tide API returned no data for the requested window")
        return [self._convert(p, tz, confidence) for p in points]

    @staticmethod
    def _convert(point: UpstreamPoint, tz: ZoneInfo, confidence: float) -> PredictionPoint:
        return PredictionPoint(
            time=point.time.astimezone(tz),
            level=round(point.height, 3),
            extrema_type=ExtremaType(point.extrema_type) if point.extrema_type else None,
            confidence=confidence,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _cached_packages(self) -> List[TilePackage]:
        packages = []
        for key, payload in self.cache.snapshot():
            try:
                tile = self.cache.codec.decode(payload)
            except CorruptPayload as e:
                logger.warning(f"Leaving corrupt cache entry {key} out of the manifest: {e}")
                continue
            packages.append(TilePackage(tile=tile, payload=payload))
        return packages

    def _cells_in(self, bbox: Tuple[float, float, float, float]) -> List[Tuple[float, float]]:
        """(lat, lon) centroids of the grid cells overlapping a box clipped to the region."""
        west, south, east, north = bbox
        if not (west < east and south < north):
            raise InvalidRequest(f"Malformed bounding box {bbox}")
        mid_lat, mid_lon = (south + north) / 2, (west + east) / 2

        r_west, r_south, r_east, r_north = self.resolver.region
        west, south = max(west, r_west), max(south, r_south)
        east, north = min(east, r_east), min(north, r_north)
        if not (west < east and south < north):
            raise OutOfRegion(mid_lat, mid_lon, f"Bounding box {bbox} does not overlap the supported region")

        step = self.tile_resolution_deg
        rows = range(math.floor(south / step + 1e-9), math.ceil(north / step - 1e-9))
        cols = range(math.floor(west / step + 1e-9), math.ceil(east / step - 1e-9))
        if len(rows) * len(cols) > MAX_MANIFEST_TILES:
            raise InvalidRequest(
                f"Bounding box spans {len(rows) * len(cols)} tiles, more than {MAX_MANIFEST_TILES}"
            )
        return [((i + 0.5) * step, (j + 0.5) * step) for i in rows for j in cols]

    def _get_timezone(self, lat: float, lon: float) -> ZoneInfo:
        """Local timezone for coordinates, UTC when it cannot be determined."""
        timezone_str = self._tz_finder.timezone_at(lat=lat, lng=lon)
        if timezone_str is None:
            timezone_str = 'UTC'
        try:
            return ZoneInfo(timezone_str)
        except (ValueError, KeyError):
            return ZoneInfo('UTC')

    def _record(self, elapsed_ms: float) -> None:
        with self._stats_lock:
            self._request_count += 1
            self._total_response_ms += elapsed_ms
