"""
Runtime configuration for the SEAPALO prediction core.

Values come from environment variables (a `.env` file in the working
directory is loaded first) and fall back to the defaults below when unset
or malformed.
"""
import os
from dataclasses import dataclass
from typing import Optional, Tuple

from dotenv import load_dotenv


def _get_float_env(key: str, default: float) -> float:
    """Get a float value from environment variable or use default."""
    value = os.environ.get(key)
    if value is not None:
        try:
            return float(value)
        except ValueError:
            pass
    return default


def _get_int_env(key: str, default: Optional[int]) -> Optional[int]:
    """Get an int value from environment variable or use default."""
    value = os.environ.get(key)
    if value is not None:
        try:
            return int(value)
        except ValueError:
            pass
    return default


def _get_bool_env(key: str, default: bool) -> bool:
    """Get a boolean flag (1/0, true/false, yes/no) from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    value = value.strip().lower()
    if value in ('1', 'true', 'yes', 'on'):
        return True
    if value in ('0', 'false', 'no', 'off'):
        return False
    return default


# =============================================================================
# Defaults
# =============================================================================

# Supported region: Thai waters (Gulf of Thailand + Andaman Sea) with a buffer
REGION_SOUTH = 5.0
REGION_NORTH = 21.0
REGION_WEST = 97.0
REGION_EAST = 106.0

# Tile grid step in degrees (~11 km at the equator)
TILE_RESOLUTION_DEG = 0.1

# Cache limits (entries and cumulative compressed bytes)
CACHE_MAX_ENTRIES = 512
CACHE_MAX_BYTES = 16 * 1024 * 1024

# Civil time used for the lunar day count (Indochina Time, UTC+7)
LUNAR_UTC_OFFSET_HOURS = 7.0

# Reference stations further away than this fall back to the regional model
STATION_RADIUS_KM = 80.0

# Tile metadata stamped into every tile
TILE_MODEL = 'Harmonic36'
TILE_DATUM = 'MSL'
TILE_VERSION = '1.0.0'

# Upstream (WorldTides v3) fallback
WORLDTIDES_API_URL = 'https://www.worldtides.info/api/v3'
UPSTREAM_TIMEOUT_SECONDS = 10.0


@dataclass(frozen=True)
class Settings:
    """Resolved configuration for one process."""

    region: Tuple[float, float, float, float] = (REGION_WEST, REGION_SOUTH, REGION_EAST, REGION_NORTH)
    tile_resolution_deg: float = TILE_RESOLUTION_DEG
    cache_max_entries: Optional[int] = CACHE_MAX_ENTRIES
    cache_max_bytes: Optional[int] = CACHE_MAX_BYTES
    tile_compression: str = 'zlib'
    lunar_utc_offset_hours: float = LUNAR_UTC_OFFSET_HOURS
    station_radius_km: float = STATION_RADIUS_KM
    datum_offset_m: float = 0.0
    nodal_corrections: bool = False
    internal_enabled: bool = True
    base_confidence: float = 0.85
    tile_model: str = TILE_MODEL
    tile_datum: str = TILE_DATUM
    tile_version: str = TILE_VERSION
    worldtides_api_key: str = ''
    worldtides_api_url: str = WORLDTIDES_API_URL
    upstream_timeout_seconds: float = UPSTREAM_TIMEOUT_SECONDS


def load_settings() -> Settings:
    """Build settings from the environment (and `.env`, if present)."""
    load_dotenv()

    max_entries = _get_int_env('SEAPALO_CACHE_MAX_ENTRIES', CACHE_MAX_ENTRIES)
    max_bytes = _get_int_env('SEAPALO_CACHE_MAX_BYTES', CACHE_MAX_BYTES)

    return Settings(
        region=(
            _get_float_env('SEAPALO_REGION_WEST', REGION_WEST),
            _get_float_env('SEAPALO_REGION_SOUTH', REGION_SOUTH),
            _get_float_env('SEAPALO_REGION_EAST', REGION_EAST),
            _get_float_env('SEAPALO_REGION_NORTH', REGION_NORTH),
        ),
        tile_resolution_deg=_get_float_env('SEAPALO_TILE_RESOLUTION_DEG', TILE_RESOLUTION_DEG),
        # 0 disables a limit
        cache_max_entries=max_entries or None,
        cache_max_bytes=max_bytes or None,
        tile_compression=os.environ.get('SEAPALO_TILE_COMPRESSION', 'zlib').strip().lower(),
        lunar_utc_offset_hours=_get_float_env('SEAPALO_LUNAR_UTC_OFFSET_HOURS', LUNAR_UTC_OFFSET_HOURS),
        station_radius_km=_get_float_env('SEAPALO_STATION_RADIUS_KM', STATION_RADIUS_KM),
        datum_offset_m=_get_float_env('SEAPALO_DATUM_OFFSET_M', 0.0),
        nodal_corrections=_get_bool_env('SEAPALO_NODAL_CORRECTIONS', False),
        internal_enabled=_get_bool_env('SEAPALO_INTERNAL_ENABLED', True),
        base_confidence=_get_float_env('SEAPALO_BASE_CONFIDENCE', 0.85),
        tile_model=os.environ.get('SEAPALO_TILE_MODEL', TILE_MODEL),
        tile_datum=os.environ.get('SEAPALO_TILE_DATUM', TILE_DATUM),
        tile_version=os.environ.get('SEAPALO_TILE_VERSION', TILE_VERSION),
        worldtides_api_key=os.environ.get('WORLDTIDES_API_KEY', ''),
        worldtides_api_url=os.environ.get('WORLDTIDES_API_URL', WORLDTIDES_API_URL),
        upstream_timeout_seconds=_get_float_env('SEAPALO_UPSTREAM_TIMEOUT', UPSTREAM_TIMEOUT_SECONDS),
    )
