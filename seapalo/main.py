import base64
import logging
import time
import uuid
from datetime import date as date_type
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

from .cache import TileCache
from .codec import TileCodec, TileManifest, make_compressor, payload_checksum
from .config import Settings, load_settings
from .exceptions import InvalidRequest, OutOfRegion, TideServiceError, UpstreamUnavailable
from .lunar import LunarPhaseCalculator
from .prediction_service import (
    PredictionRequest,
    PredictionResponse,
    TidePredictionService,
    TimeOfDay,
    TimeRange,
)
from .resolver import ConstituentResolver
from .tide_service import PredictionPoint, TideSynthesizer
from .tiles import Location, TileMetadata
from .upstream import WorldTidesClient

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"

# Tiles never change for a fixed coordinate, model and version
TILE_CACHE_CONTROL = "public, max-age=2592000, immutable"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        return response


def build_service(settings: Settings) -> TidePredictionService:
    """Wire the prediction core from settings."""
    codec = TileCodec(make_compressor(settings.tile_compression))
    cache = TileCache(codec, max_entries=settings.cache_max_entries, max_bytes=settings.cache_max_bytes)

    upstream = None
    if settings.worldtides_api_key:
        upstream = WorldTidesClient(
            api_key=settings.worldtides_api_key,
            base_url=settings.worldtides_api_url,
            timeout=settings.upstream_timeout_seconds,
        )

    return TidePredictionService(
        cache=cache,
        resolver=ConstituentResolver(region=settings.region, station_radius_km=settings.station_radius_km),
        synthesizer=TideSynthesizer(
            datum_offset_m=settings.datum_offset_m,
            nodal_corrections=settings.nodal_corrections,
            base_confidence=settings.base_confidence,
        ),
        lunar=LunarPhaseCalculator(utc_offset_hours=settings.lunar_utc_offset_hours),
        upstream=upstream,
        internal_enabled=settings.internal_enabled,
        metadata=TileMetadata(model=settings.tile_model, datum=settings.tile_datum, version=settings.tile_version),
        tile_resolution_deg=settings.tile_resolution_deg,
    )


app = FastAPI(
    title="SEAPALO Tide API",
    description="Harmonic tide predictions and compressed constituent tiles for Thai waters",
    version=VERSION,
)

# Set up rate limiter
limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(SecurityHeadersMiddleware)

settings = load_settings()
prediction_service = build_service(settings)
STARTED_AT = time.monotonic()


# =============================================================================
# Request bodies
# =============================================================================


class LocationBody(BaseModel):
    lat: float = Field(..., ge=-90, le=90, description="Latitude in degrees")
    lon: float = Field(..., ge=-180, le=180, description="Longitude in degrees")
    name: str = ""


class TimeBody(BaseModel):
    hour: int = Field(..., ge=0, le=23)
    minute: int = Field(0, ge=0, le=59)


class TimeRangeBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    start_hour: float = Field(..., alias="startHour", ge=0, le=24)
    end_hour: float = Field(..., alias="endHour", ge=0, le=24)
    interval_minutes: int = Field(60, alias="intervalMinutes", gt=0, le=1440)


class PredictBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    location: LocationBody
    date: Optional[str] = Field(None, description="Local calendar date (YYYY-MM-DD)")
    time: Optional[TimeBody] = None
    time_range: Optional[TimeRangeBody] = Field(None, alias="timeRange")


# =============================================================================
# Helpers
# =============================================================================


def _parse_date(value: Optional[str]) -> date_type:
    if not value:
        raise InvalidRequest("Field 'date' is required")
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError:
        raise InvalidRequest("Invalid date format. Please use ISO 8601 format (YYYY-MM-DD)")


def _parse_instant(value: str) -> datetime:
    try:
        instant = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise HTTPException(400, "Invalid date format. Please use ISO 8601 format (YYYY-MM-DD)")
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant


def _error_response(e: TideServiceError) -> HTTPException:
    """Map a core error onto an HTTP status with a stable error kind."""
    if isinstance(e, (OutOfRegion, InvalidRequest)):
        status = 400
    elif isinstance(e, UpstreamUnavailable):
        status = 503
    else:
        status = 500
    return HTTPException(status, detail={"error": e.kind, "message": str(e)})


def _manifest_json(manifest: TileManifest) -> dict:
    return {
        "version": manifest.version,
        "generatedAt": manifest.generated_at.isoformat(),
        "tiles": [
            {
                "tileId": entry.tile_id,
                "checksum": entry.checksum,
                "compressedSize": entry.compressed_size,
                "originalSize": entry.original_size,
                "bbox": list(entry.bbox),
                "centroid": list(entry.centroid),
                "model": entry.model,
                "datum": entry.datum,
                "version": entry.version,
            }
            for entry in manifest.tiles
        ],
    }


def _point_json(point: PredictionPoint) -> dict:
    body = {
        "time": point.time.isoformat(),
        "level": point.level,
        "confidence": point.confidence,
    }
    if point.extrema_type is not None:
        body["type"] = point.extrema_type.value
    return body


def _prediction_json(response: PredictionResponse) -> dict:
    return {
        "location": {
            "lat": response.location.lat,
            "lon": response.location.lon,
            "name": response.location.name,
        },
        "date": response.date.isoformat(),
        "predictions": [_point_json(p) for p in response.predictions],
        "dataSource": response.data_source.value,
        "responseTimeMs": response.response_time_ms,
    }


# =============================================================================
# Routes
# =============================================================================


@app.get("/api/tiles/manifest")
@limiter.limit("30/minute")
async def get_manifest(
    request: Request,
    west: Optional[float] = Query(None, description="Bounding box west edge (degrees)"),
    south: Optional[float] = Query(None, description="Bounding box south edge (degrees)"),
    east: Optional[float] = Query(None, description="Bounding box east edge (degrees)"),
    north: Optional[float] = Query(None, description="Bounding box north edge (degrees)"),
):
    """
    List tiles with their SHA-256 checksums for offline pre-fetch.

    With a full bounding box every tile overlapping it is listed; without
    one, the tiles currently cached.
    """
    edges = (west, south, east, north)
    try:
        if all(edge is None for edge in edges):
            bbox = None
        elif any(edge is None for edge in edges):
            raise InvalidRequest("A bounding box needs all of west, south, east and north")
        else:
            bbox = edges
        manifest = await run_in_threadpool(prediction_service.manifest, bbox)
    except TideServiceError as e:
        raise _error_response(e)
    except Exception:
        error_id = uuid.uuid4().hex[:8]
        logger.exception(f"Error {error_id} in get_manifest")
        raise HTTPException(500, detail=f"Internal error (ref: {error_id})")

    return _manifest_json(manifest)


@app.get("/api/tiles/{lat}/{lon}")
@limiter.limit("60/minute")
async def get_tile(request: Request, lat: float, lon: float):
    """
    Get the compressed constituent tile for the cell containing (lat, lon).

    The payload is base64 of the compressed binary tile. Tiles are immutable
    for a given coordinate, model and version, so responses are cacheable for
    30 days.
    """
    try:
        package, source = await run_in_threadpool(prediction_service.get_tile, lat, lon)
    except TideServiceError as e:
        raise _error_response(e)
    except Exception:
        error_id = uuid.uuid4().hex[:8]
        logger.exception(f"Error {error_id} in get_tile")
        raise HTTPException(500, detail=f"Internal error (ref: {error_id})")

    tile = package.tile
    checksum = payload_checksum(package.payload)
    body = {
        "tile": {
            "id": tile.id,
            "bbox": list(tile.bbox),
            "centroid": list(tile.centroid),
            "compressedSize": tile.compressed_size,
            "originalSize": tile.original_size,
            "metadata": {
                "model": tile.metadata.model,
                "datum": tile.metadata.datum,
                "version": tile.metadata.version,
            },
        },
        "payload": base64.b64encode(package.payload).decode("ascii"),
        "checksum": checksum,
        "dataSource": source.value,
    }
    return JSONResponse(
        content=body,
        headers={
            "Cache-Control": TILE_CACHE_CONTROL,
            "X-Tile-Size": str(tile.compressed_size),
            "X-Original-Size": str(tile.original_size),
            "X-Tile-Checksum": checksum,
        },
    )


@app.post("/api/predict")
async def predict(body: PredictBody):
    """
    Get predictions for a location on a local calendar day.

    - With `time`: the level at that local time
    - With `timeRange`: levels from `startHour` to `endHour` every
      `intervalMinutes` (default 60), high/low samples tagged with `type`
    - With neither: the day's high and low water events
    """
    try:
        request = PredictionRequest(
            location=Location(lat=body.location.lat, lon=body.location.lon, name=body.location.name),
            date=_parse_date(body.date),
            time=TimeOfDay(hour=body.time.hour, minute=body.time.minute) if body.time else None,
            time_range=TimeRange(
                start_hour=body.time_range.start_hour,
                end_hour=body.time_range.end_hour,
                interval_minutes=body.time_range.interval_minutes,
            ) if body.time_range else None,
        )
        response = await run_in_threadpool(prediction_service.get_predictions, request)
        return _prediction_json(response)
    except TideServiceError as e:
        raise _error_response(e)
    except HTTPException:
        raise
    except Exception:
        error_id = uuid.uuid4().hex[:8]
        logger.exception(f"Error {error_id} in predict")
        raise HTTPException(500, detail=f"Internal error (ref: {error_id})")


@app.get("/api/status")
async def status():
    """Read-only snapshot of the process-wide counters."""
    stats = prediction_service.stats()
    tiles = stats.tiles
    return {
        "status": "ok",
        "version": VERSION,
        "uptime": round(time.monotonic() - STARTED_AT, 1),
        "requestCount": stats.request_count,
        "avgResponseTimeMs": stats.avg_response_time_ms,
        "cacheHitRate": round(stats.cache_hit_rate, 4),
        "totalCacheBytes": stats.total_cache_bytes,
        "tiles": {
            "entries": tiles.entries,
            "hits": tiles.hits,
            "misses": tiles.misses,
            "evictions": tiles.evictions,
            "corruptPayloads": tiles.corrupt_payloads,
            "maxEntries": tiles.max_entries,
            "maxBytes": tiles.max_bytes,
        },
        "internalEnabled": prediction_service.internal_enabled,
        "upstreamConfigured": prediction_service.upstream is not None,
    }


@app.get("/api/debug/lunar")
async def debug_lunar(
    date: str = Query(..., description="Instant or date (ISO 8601). Dates are taken as 00:00 UTC."),
    reference: bool = Query(False, description="Also compute the phase angle from the DE421 ephemeris"),
):
    """
    Lunar phase for a date, for checking against reference ephemerides.
    """
    instant = _parse_instant(date)
    try:
        result = prediction_service.lunar_phase(instant)
        body = {
            "date": instant.isoformat(),
            "ageDays": round(result.age_days, 3),
            "isWaxing": result.is_waxing,
            "lunarDay": result.lunar_day,
            "phaseAngle": round(result.phase_angle, 2),
        }
        if reference:
            angle = await run_in_threadpool(prediction_service.lunar.reference_phase_angle, instant)
            body["referencePhaseAngle"] = round(angle, 2) if angle is not None else None
        return body
    except Exception:
        error_id = uuid.uuid4().hex[:8]
        logger.exception(f"Error {error_id} in debug_lunar")
        raise HTTPException(500, detail=f"Internal error (ref: {error_id})")


@app.get("/health")
async def health():
    return {"status": "healthy", "version": VERSION, "model": prediction_service.metadata.model}
