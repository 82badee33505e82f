"""
Value types for locations, constituents and tiles, plus the tile grid.

A tile covers one cell of a regular lat/lon grid. Its id is derived from the
cell centroid, so every coordinate inside the cell maps to the same id.
"""
import math
from dataclasses import dataclass, field
from typing import Tuple

from .exceptions import InvalidRequest

# Guard against 13.3 / 0.1 == 132.99999999999997 landing in the cell below
_GRID_EPSILON = 1e-9

# Cell corners are rounded to 6 decimals, so finer grids would alias
MIN_TILE_RESOLUTION_DEG = 1e-4


@dataclass(frozen=True)
class Location:
    """A point on the globe, optionally named."""

    lat: float
    lon: float
    name: str = ""

    def __post_init__(self):
        if not (-90.0 <= self.lat <= 90.0):
            raise InvalidRequest(f"Latitude {self.lat} is outside [-90, 90]")
        if not (-180.0 <= self.lon <= 180.0):
            raise InvalidRequest(f"Longitude {self.lon} is outside [-180, 180]")


@dataclass(frozen=True)
class TidalConstituent:
    """Location-specific harmonic constituent."""

    name: str
    amplitude: float  # metres
    phase: float  # degrees, Greenwich phase lag in [0, 360)
    speed: float  # degrees per hour


@dataclass(frozen=True)
class TileMetadata:
    model: str
    datum: str
    version: str


@dataclass(frozen=True)
class Tile:
    """
    Constituents for one grid cell.

    `compressed_size` and `original_size` describe a particular encoding of
    the tile and are excluded from equality.
    """

    id: str
    bbox: Tuple[float, float, float, float]  # west, south, east, north
    centroid: Tuple[float, float]  # lon, lat
    constituents: Tuple[TidalConstituent, ...]
    metadata: TileMetadata
    compressed_size: int = field(default=0, compare=False)
    original_size: int = field(default=0, compare=False)


@dataclass(frozen=True)
class TilePackage:
    """A tile together with the compressed payload it was encoded to."""

    tile: Tile
    payload: bytes

    @property
    def size(self) -> int:
        return len(self.payload)


def quantize(lat: float, lon: float, step: float) -> Tuple[float, float]:
    """
    Snap a coordinate to the south-west corner of its grid cell.

    Args:
        lat: Latitude in degrees
        lon: Longitude in degrees
        step: Grid resolution in degrees

    Returns:
        (lat, lon) of the cell origin, rounded to 6 decimals
    """
    if not step >= MIN_TILE_RESOLUTION_DEG:
        raise InvalidRequest(f"Tile resolution must be at least {MIN_TILE_RESOLUTION_DEG} degrees, got {step}")
    lat0 = math.floor(lat / step + _GRID_EPSILON) * step
    lon0 = math.floor(lon / step + _GRID_EPSILON) * step
    return round(lat0, 6), round(lon0, 6)


def tile_bbox(lat: float, lon: float, step: float) -> Tuple[float, float, float, float]:
    """Bounding box (west, south, east, north) of the cell containing a coordinate."""
    south, west = quantize(lat, lon, step)
    return west, south, round(west + step, 6), round(south + step, 6)


def tile_centroid(lat: float, lon: float, step: float) -> Tuple[float, float]:
    """Centre (lon, lat) of the cell containing a coordinate."""
    south, west = quantize(lat, lon, step)
    return round(west + step / 2, 6), round(south + step / 2, 6)


def tile_id(lat: float, lon: float, step: float) -> str:
    """
    Deterministic tile id, e.g. 'tile_13.350_100.950'.

    Centroids are printed with at least 3 decimals, more when half a cell is
    smaller than 0.001 degrees, so neighbouring cells never share an id.
    """
    lon_c, lat_c = tile_centroid(lat, lon, step)
    decimals = _id_decimals(step)
    return f"tile_{lat_c:.{decimals}f}_{lon_c:.{decimals}f}"


def _id_decimals(step: float) -> int:
    return max(3, math.ceil(-math.log10(step / 2) - _GRID_EPSILON))
