"""
Tile Codec.

Binary layout (little endian) before compression:

    magic        4s   b"SPT1"
    format ver   B    1
    id           H + utf-8
    bbox         4d   west, south, east, north
    centroid     2d   lon, lat
    model        H + utf-8
    datum        H + utf-8
    version      H + utf-8
    count        H
    per constituent:
      name       B + utf-8
      amplitude  d
      phase      d
      speed      d

The framed bytes are then passed through an injected compressor. Any
lossless codec with compress/decompress can be swapped in without touching
the framing.

Payloads are identified by the SHA-256 of the compressed bytes. A manifest
lists those checksums with sizes and metadata so clients can pre-fetch tiles
for offline use and verify what they downloaded. Checksums detect damage in
transit only; manifests are not signed.
"""
import hashlib
import io
import logging
import math
import struct
import zlib
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence, Tuple

import zstandard

from .exceptions import CorruptPayload
from .tiles import TidalConstituent, Tile, TileMetadata, TilePackage

logger = logging.getLogger(__name__)

MAGIC = b"SPT1"
FORMAT_VERSION = 1

_U8 = struct.Struct("<B")
_U16 = struct.Struct("<H")
_BBOX = struct.Struct("<4d")
_CENTROID = struct.Struct("<2d")
_CONSTITUENT = struct.Struct("<3d")


class ZlibCompressor:
    """Deflate (zlib container)."""

    name = "zlib"

    def __init__(self, level: int = 9):
        self.level = level

    def compress(self, data: bytes) -> bytes:
        return zlib.compress(data, self.level)

    def decompress(self, data: bytes) -> bytes:
        try:
            return zlib.decompress(data)
        except zlib.error as e:
            raise CorruptPayload(f"Cannot inflate tile payload: {e}") from e


class ZstdCompressor:
    """Zstandard frames via python-zstandard."""

    name = "zstd"

    def __init__(self, level: int = 10):
        self.level = level

    def compress(self, data: bytes) -> bytes:
        return zstandard.ZstdCompressor(level=self.level).compress(data)

    def decompress(self, data: bytes) -> bytes:
        try:
            return zstandard.ZstdDecompressor().decompress(data)
        except zstandard.ZstdError as e:
            raise CorruptPayload(f"Cannot decompress tile payload: {e}") from e


def make_compressor(name: str):
    """Compressor for a configuration name ('zlib' or 'zstd')."""
    if name == "zlib":
        return ZlibCompressor()
    if name == "zstd":
        return ZstdCompressor()
    raise ValueError(f"Unknown tile compression '{name}', expected 'zlib' or 'zstd'")


@dataclass(frozen=True)
class EncodedTile:
    payload: bytes
    original_size: int
    compressed_size: int


def _write_str(buffer: io.BytesIO, value: str, prefix: struct.Struct) -> None:
    raw = value.encode("utf-8")
    limit = 2 ** (8 * prefix.size) - 1
    if len(raw) > limit:
        raise ValueError(f"String of {len(raw)} bytes does not fit a {prefix.size}-byte length prefix")
    buffer.write(prefix.pack(len(raw)))
    buffer.write(raw)


class _Reader:
    """Bounds-checked reads over a decompressed frame."""

    def __init__(self, data: bytes):
        self.data = data
        self.offset = 0

    def take(self, n: int) -> bytes:
        end = self.offset + n
        if end > len(self.data):
            raise CorruptPayload(f"Truncated tile payload at byte {self.offset}")
        chunk = self.data[self.offset:end]
        self.offset = end
        return chunk

    def unpack(self, fmt: struct.Struct) -> Tuple:
        return fmt.unpack(self.take(fmt.size))

    def string(self, prefix: struct.Struct) -> str:
        (length,) = self.unpack(prefix)
        raw = self.take(length)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise CorruptPayload(f"Invalid UTF-8 in tile payload: {e}") from e

    def finish(self) -> None:
        if self.offset != len(self.data):
            raise CorruptPayload(f"{len(self.data) - self.offset} trailing bytes in tile payload")


def _check_constituent(name: str, amplitude: float, phase: float, speed: float) -> None:
    if math.isnan(amplitude) or amplitude < 0:
        raise CorruptPayload(f"Invalid amplitude {amplitude} for {name}")
    if math.isnan(phase) or not (0.0 <= phase < 360.0):
        raise CorruptPayload(f"Phase {phase} for {name} outside [0, 360)")
    if math.isnan(speed) or speed <= 0:
        raise CorruptPayload(f"Invalid speed {speed} for {name}")


class TileCodec:
    """Serialize tiles to compressed bytes and back."""

    def __init__(self, compressor=None):
        self.compressor = compressor or ZlibCompressor()

    def frame(self, tile: Tile) -> bytes:
        """Uncompressed binary frame for a tile."""
        buffer = io.BytesIO()
        buffer.write(MAGIC)
        buffer.write(_U8.pack(FORMAT_VERSION))
        _write_str(buffer, tile.id, _U16)
        buffer.write(_BBOX.pack(*tile.bbox))
        buffer.write(_CENTROID.pack(*tile.centroid))
        _write_str(buffer, tile.metadata.model, _U16)
        _write_str(buffer, tile.metadata.datum, _U16)
        _write_str(buffer, tile.metadata.version, _U16)

        buffer.write(_U16.pack(len(tile.constituents)))
        for const in tile.constituents:
            _write_str(buffer, const.name, _U8)
            buffer.write(_CONSTITUENT.pack(const.amplitude, const.phase, const.speed))

        return buffer.getvalue()

    def encode(self, tile: Tile) -> EncodedTile:
        """
        Frame and compress a tile.

        Both sizes are reported even when compression makes a small frame
        larger.
        """
        raw = self.frame(tile)
        payload = self.compressor.compress(raw)
        return EncodedTile(payload=payload, original_size=len(raw), compressed_size=len(payload))

    def decode(self, payload: bytes) -> Tile:
        """
        Decompress and parse a payload back into a Tile.

        Raises:
            CorruptPayload: If the bytes cannot be inflated or fail a sanity check
        """
        raw = self.compressor.decompress(payload)
        reader = _Reader(raw)

        if reader.take(len(MAGIC)) != MAGIC:
            raise CorruptPayload("Bad tile magic")
        (version,) = reader.unpack(_U8)
        if version != FORMAT_VERSION:
            raise CorruptPayload(f"Unsupported tile format version {version}")

        tile_id = reader.string(_U16)
        bbox = reader.unpack(_BBOX)
        centroid = reader.unpack(_CENTROID)
        metadata = TileMetadata(
            model=reader.string(_U16),
            datum=reader.string(_U16),
            version=reader.string(_U16),
        )

        (count,) = reader.unpack(_U16)
        if count == 0:
            raise CorruptPayload("Tile has no constituents")

        constituents = []
        seen = set()
        for _ in range(count):
            name = reader.string(_U8)
            amplitude, phase, speed = reader.unpack(_CONSTITUENT)
            if name in seen:
                raise CorruptPayload(f"Duplicate constituent {name}")
            seen.add(name)
            _check_constituent(name, amplitude, phase, speed)
            constituents.append(TidalConstituent(name=name, amplitude=amplitude, phase=phase, speed=speed))
        reader.finish()

        return Tile(
            id=tile_id,
            bbox=tuple(bbox),
            centroid=tuple(centroid),
            constituents=tuple(constituents),
            metadata=metadata,
            compressed_size=len(payload),
            original_size=len(raw),
        )

    def package_tile(
        self,
        tile_id: str,
        bbox: Tuple[float, float, float, float],
        centroid: Tuple[float, float],
        constituents: Sequence[TidalConstituent],
        metadata: TileMetadata,
    ) -> TilePackage:
        """Build a tile, encode it and fill in both size fields."""
        tile = Tile(
            id=tile_id,
            bbox=tuple(bbox),
            centroid=tuple(centroid),
            constituents=tuple(constituents),
            metadata=metadata,
        )
        encoded = self.encode(tile)
        tile = replace(tile, compressed_size=encoded.compressed_size, original_size=encoded.original_size)
        logger.debug(f"Packaged {tile_id}: {encoded.original_size} -> {encoded.compressed_size} bytes")
        return TilePackage(tile=tile, payload=encoded.payload)


# =============================================================================
# Checksums and manifests
# =============================================================================


def payload_checksum(payload: bytes) -> str:
    """Hex SHA-256 of a compressed tile payload."""
    return hashlib.sha256(payload).hexdigest()


def verify_tile_integrity(payload: bytes, checksum: Optional[str]) -> bool:
    """True when the payload matches an advertised checksum. A missing checksum never matches."""
    if not checksum:
        return False
    return payload_checksum(payload) == checksum.lower()


@dataclass(frozen=True)
class ManifestEntry:
    tile_id: str
    checksum: str
    compressed_size: int
    original_size: int
    bbox: Tuple[float, float, float, float]
    centroid: Tuple[float, float]
    model: str
    datum: str
    version: str


@dataclass(frozen=True)
class TileManifest:
    """Listing of packaged tiles for offline pre-fetch."""

    version: str
    generated_at: datetime
    tiles: Tuple[ManifestEntry, ...]


def build_manifest(
    packages: Iterable[TilePackage],
    version: str,
    generated_at: Optional[datetime] = None,
) -> TileManifest:
    """
    Manifest entry per package, in tile id order.

    Args:
        packages: Encoded tiles; a tile id listed twice keeps its last package
        version: Manifest format/content version
        generated_at: Timestamp to stamp (defaults to now, UTC)
    """
    by_id = {}
    for package in packages:
        tile = package.tile
        by_id[tile.id] = ManifestEntry(
            tile_id=tile.id,
            checksum=payload_checksum(package.payload),
            compressed_size=package.size,
            original_size=tile.original_size,
            bbox=tuple(tile.bbox),
            centroid=tuple(tile.centroid),
            model=tile.metadata.model,
            datum=tile.metadata.datum,
            version=tile.metadata.version,
        )

    return TileManifest(
        version=version,
        generated_at=generated_at or datetime.now(timezone.utc),
        tiles=tuple(by_id[key] for key in sorted(by_id)),
    )
