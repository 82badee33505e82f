"""
Unit tests for the tile codec.
"""
import hashlib
import struct
import zlib
from dataclasses import replace
from datetime import datetime, timezone

import pytest

from seapalo.codec import (
    MAGIC,
    TileCodec,
    ZlibCompressor,
    ZstdCompressor,
    build_manifest,
    make_compressor,
    payload_checksum,
    verify_tile_integrity,
)
from seapalo.exceptions import CorruptPayload
from seapalo.tiles import TidalConstituent, Tile, TileMetadata

METADATA = TileMetadata(model='Harmonic36', datum='MSL', version='1.0.0')


@pytest.fixture
def tile():
    return Tile(
        id='tile_13.350_100.950',
        bbox=(100.9, 13.3, 101.0, 13.4),
        centroid=(100.95, 13.35),
        constituents=(
            TidalConstituent('M2', 0.3412, 166.25, 28.9841042),
            TidalConstituent('S2', 0.1502, 190.5, 30.0),
            TidalConstituent('K1', 0.6031, 116.1, 15.0410686),
            TidalConstituent('O1', 0.4412, 102.0, 13.9430356),
        ),
        metadata=METADATA,
    )


@pytest.fixture(params=[ZlibCompressor, ZstdCompressor], ids=['zlib', 'zstd'])
def codec(request):
    return TileCodec(request.param())


def frame_with(tile, constituents):
    """Raw frame for a tile whose constituent section is replaced."""
    codec = TileCodec()
    raw = codec.frame(tile)
    head = raw[:raw.rindex(struct.pack('<H', len(tile.constituents)) + b'\x02M2')]
    body = struct.pack('<H', len(constituents))
    for name, amp, phase, speed in constituents:
        encoded = name.encode('utf-8')
        body += struct.pack('<B', len(encoded)) + encoded + struct.pack('<3d', amp, phase, speed)
    return head + body


class TestRoundTrip:
    """Tests for encode/decode."""

    def test_decode_restores_tile(self, codec, tile):
        """Decoding an encoded tile gives back an equal tile in catalog order."""
        decoded = codec.decode(codec.encode(tile).payload)
        assert decoded == tile
        assert [c.name for c in decoded.constituents] == ['M2', 'S2', 'K1', 'O1']

    def test_sizes_reported(self, codec, tile):
        """Both sizes are reported on encode and recovered on decode."""
        encoded = codec.encode(tile)
        assert encoded.compressed_size == len(encoded.payload)
        assert encoded.original_size == len(codec.frame(tile))

        decoded = codec.decode(encoded.payload)
        assert decoded.compressed_size == encoded.compressed_size
        assert decoded.original_size == encoded.original_size

    def test_frame_starts_with_magic(self, tile):
        """Uncompressed frames open with the format magic."""
        assert TileCodec().frame(tile).startswith(MAGIC)

    def test_unicode_metadata(self, codec, tile):
        """Metadata strings are stored as UTF-8."""
        named = replace(tile, metadata=TileMetadata('แบบจำลอง', 'MSL', '1.0.0'))
        assert codec.decode(codec.encode(named).payload).metadata.model == 'แบบจำลอง'

    def test_package_tile_fills_sizes(self, codec, tile):
        """package_tile returns a tile whose sizes describe its own payload."""
        package = codec.package_tile(tile.id, tile.bbox, tile.centroid, list(tile.constituents), METADATA)
        assert package.tile == tile
        assert package.tile.compressed_size == package.size
        assert package.tile.original_size > 0
        assert codec.decode(package.payload) == package.tile

    def test_encoding_is_deterministic(self, codec, tile):
        """Encoding the same tile twice yields identical bytes and equal tiles."""
        first = codec.encode(tile)
        second = codec.encode(tile)
        assert first.payload == second.payload
        assert codec.decode(first.payload) == codec.decode(second.payload) == tile
        assert payload_checksum(first.payload) == payload_checksum(second.payload)


class TestCorruption:
    """Tests for rejection of damaged payloads."""

    def test_garbage_bytes(self, codec):
        """Arbitrary bytes fail to decompress."""
        with pytest.raises(CorruptPayload):
            codec.decode(b'definitely not a tile')

    def test_empty_payload(self, codec):
        """An empty payload is corrupt, not an empty tile."""
        with pytest.raises(CorruptPayload):
            codec.decode(b'')

    def test_bad_magic(self, tile):
        """A frame with the wrong magic is rejected."""
        raw = b'XXXX' + TileCodec().frame(tile)[4:]
        with pytest.raises(CorruptPayload, match='magic'):
            TileCodec().decode(zlib.compress(raw))

    def test_unsupported_version(self, tile):
        """Unknown format versions are rejected rather than guessed at."""
        raw = bytearray(TileCodec().frame(tile))
        raw[4] = 99
        with pytest.raises(CorruptPayload, match='version'):
            TileCodec().decode(zlib.compress(bytes(raw)))

    def test_truncated_frame(self, tile):
        """A frame cut short inside a constituent is rejected."""
        raw = TileCodec().frame(tile)[:-5]
        with pytest.raises(CorruptPayload, match='Truncated'):
            TileCodec().decode(zlib.compress(raw))

    def test_trailing_bytes(self, tile):
        """Bytes left over after the last constituent are rejected."""
        raw = TileCodec().frame(tile) + b'\x00\x00'
        with pytest.raises(CorruptPayload, match='trailing'):
            TileCodec().decode(zlib.compress(raw))

    def test_truncated_compressed_stream(self, codec, tile):
        """Half a compressed stream does not inflate."""
        payload = codec.encode(tile).payload
        with pytest.raises(CorruptPayload):
            codec.decode(payload[:len(payload) // 2])

    def test_empty_constituent_set(self, tile):
        """A tile must carry at least one constituent."""
        raw = frame_with(tile, [])
        with pytest.raises(CorruptPayload, match='no constituents'):
            TileCodec().decode(zlib.compress(raw))

    def test_duplicate_names(self, tile):
        """A constituent name may appear only once per tile."""
        raw = frame_with(tile, [('M2', 0.3, 10.0, 28.98), ('M2', 0.2, 20.0, 28.98)])
        with pytest.raises(CorruptPayload, match='Duplicate'):
            TileCodec().decode(zlib.compress(raw))

    @pytest.mark.parametrize("amp,phase,speed", [
        (float('nan'), 10.0, 28.98),
        (-0.1, 10.0, 28.98),
        (0.3, 360.0, 28.98),
        (0.3, -1.0, 28.98),
        (0.3, 10.0, 0.0),
    ])
    def test_invalid_constituent_values(self, tile, amp, phase, speed):
        """Non-finite or out-of-range constituent values are rejected."""
        raw = frame_with(tile, [('M2', amp, phase, speed)])
        with pytest.raises(CorruptPayload):
            TileCodec().decode(zlib.compress(raw))


class TestCompressors:
    """Tests for compressor selection."""

    def test_make_compressor(self):
        """Compressors are looked up by name."""
        assert make_compressor('zlib').name == 'zlib'
        assert make_compressor('zstd').name == 'zstd'

    def test_unknown_compressor(self):
        """An unknown compressor name is a configuration error."""
        with pytest.raises(ValueError):
            make_compressor('lz4')

    def test_default_is_zlib(self):
        """Codecs built without a compressor use zlib."""
        assert TileCodec().compressor.name == 'zlib'

    def test_cross_codec_payload_rejected(self, tile):
        """A zstd payload is corrupt to a zlib codec."""
        payload = TileCodec(ZstdCompressor()).encode(tile).payload
        with pytest.raises(CorruptPayload):
            TileCodec(ZlibCompressor()).decode(payload)


class TestChecksums:
    """Tests for payload checksums and integrity checks."""

    def test_checksum_is_sha256_hex(self, codec, tile):
        """The checksum is the lowercase hex SHA-256 of the compressed bytes."""
        payload = codec.encode(tile).payload
        assert payload_checksum(payload) == hashlib.sha256(payload).hexdigest()
        assert len(payload_checksum(payload)) == 64

    def test_verify_accepts_matching_payload(self, codec, tile):
        """A payload verifies against its own checksum, in either case."""
        payload = codec.encode(tile).payload
        checksum = payload_checksum(payload)
        assert verify_tile_integrity(payload, checksum)
        assert verify_tile_integrity(payload, checksum.upper())

    def test_verify_rejects_damaged_payload(self, codec, tile):
        """Flipping a single byte breaks verification."""
        payload = codec.encode(tile).payload
        checksum = payload_checksum(payload)
        damaged = bytes([payload[0] ^ 0xFF]) + payload[1:]
        assert not verify_tile_integrity(damaged, checksum)

    @pytest.mark.parametrize("checksum", [None, ""])
    def test_verify_rejects_missing_checksum(self, tile, checksum):
        """Without a checksum there is nothing to verify against."""
        assert not verify_tile_integrity(TileCodec().encode(tile).payload, checksum)


class TestManifest:
    """Tests for build_manifest()."""

    def test_entries_describe_packages(self, codec, tile):
        """Each entry carries the checksum, sizes, geometry and metadata of its tile."""
        package = codec.package_tile(tile.id, tile.bbox, tile.centroid, list(tile.constituents), METADATA)
        stamp = datetime(2024, 1, 11, tzinfo=timezone.utc)
        manifest = build_manifest([package], version='1.0.0', generated_at=stamp)

        assert manifest.version == '1.0.0'
        assert manifest.generated_at == stamp
        (entry,) = manifest.tiles
        assert entry.tile_id == tile.id
        assert entry.checksum == payload_checksum(package.payload)
        assert entry.compressed_size == package.size
        assert entry.original_size == package.tile.original_size
        assert entry.bbox == tile.bbox
        assert entry.centroid == tile.centroid
        assert (entry.model, entry.datum, entry.version) == ('Harmonic36', 'MSL', '1.0.0')
        assert verify_tile_integrity(package.payload, entry.checksum)

    def test_entries_sorted_and_unique(self, tile):
        """Entries are ordered by tile id and a repeated id is listed once."""
        codec = TileCodec()
        other = replace(tile, id='tile_07.850_098.350')
        packages = [
            codec.package_tile(t.id, t.bbox, t.centroid, list(t.constituents), METADATA)
            for t in (tile, other, tile)
        ]
        manifest = build_manifest(packages, version='1.0.0')
        assert [e.tile_id for e in manifest.tiles] == ['tile_07.850_098.350', 'tile_13.350_100.950']

    def test_empty_manifest_stamped_now(self):
        """An empty manifest is valid and timestamped in UTC."""
        manifest = build_manifest([], version='1.0.0')
        assert manifest.tiles == ()
        assert manifest.generated_at.tzinfo is not None
        assert manifest.generated_at.utcoffset().total_seconds() == 0
