"""
In-memory LRU tile cache.

Entries are compressed tile payloads keyed by tile id. The cache is bounded
by entry count, by cumulative payload bytes, or both; whichever limit is
exceeded first triggers eviction of the least recently used entries.

All bookkeeping goes through a single lock. Payloads are decoded outside the
lock, and a payload that fails to decode is dropped and counted as a miss so
the caller recomputes it.
"""
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass, replace
from typing import List, Optional, Tuple

from .codec import TileCodec
from .exceptions import CorruptPayload
from .tiles import Tile, TilePackage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TileCacheStats:
    entries: int
    total_bytes: int
    hits: int
    misses: int
    evictions: int
    corrupt_payloads: int
    max_entries: Optional[int]
    max_bytes: Optional[int]

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0


class TileCache:
    """
    Thread-safe LRU store of encoded tiles.

    Created empty with zero counters. Counters only ever grow; `clear()`
    drops entries but keeps the counters.
    """

    def __init__(self, codec: TileCodec, max_entries: Optional[int] = None, max_bytes: Optional[int] = None):
        if max_entries is not None and max_entries <= 0:
            raise ValueError("max_entries must be positive")
        if max_bytes is not None and max_bytes <= 0:
            raise ValueError("max_bytes must be positive")

        self.codec = codec
        self.max_entries = max_entries
        self.max_bytes = max_bytes

        self._entries: "OrderedDict[str, bytes]" = OrderedDict()
        self._total_bytes = 0
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._corrupt = 0
        self._lock = threading.Lock()

    def get(self, tile_id: str) -> Optional[Tile]:
        """Decoded tile for an id, or None on a miss (or a corrupt entry)."""
        package = self.get_package(tile_id)
        return package.tile if package else None

    def get_package(self, tile_id: str) -> Optional[TilePackage]:
        """Decoded tile plus the cached payload, or None."""
        with self._lock:
            payload = self._entries.get(tile_id)
            if payload is None:
                self._misses += 1
                return None
            self._entries.move_to_end(tile_id)

        try:
            tile = self.codec.decode(payload)
        except CorruptPayload as e:
            logger.warning(f"Dropping corrupt cache entry {tile_id}: {e}")
            with self._lock:
                # Another thread may already have replaced the entry
                if self._entries.get(tile_id) is payload:
                    self._remove(tile_id)
                self._corrupt += 1
                self._misses += 1
            return None

        with self._lock:
            self._hits += 1
        return TilePackage(tile=tile, payload=payload)

    def put(self, tile_id: str, tile: Tile) -> TilePackage:
        """Encode a tile through the codec and store it."""
        encoded = self.codec.encode(tile)
        package = TilePackage(
            tile=replace(tile, compressed_size=encoded.compressed_size, original_size=encoded.original_size),
            payload=encoded.payload,
        )
        self.put_package(tile_id, package)
        return package

    def put_package(self, tile_id: str, package: TilePackage) -> None:
        """
        Store an already encoded tile, replacing any previous entry.

        Raises:
            ValueError: If the payload alone exceeds the byte budget
        """
        size = package.size
        if self.max_bytes is not None and size > self.max_bytes:
            raise ValueError(f"Tile {tile_id} ({size} bytes) exceeds cache budget of {self.max_bytes} bytes")

        with self._lock:
            if tile_id in self._entries:
                self._remove(tile_id)
            self._entries[tile_id] = package.payload
            self._total_bytes += size
            self._evict()

    def discard(self, tile_id: str) -> bool:
        """Remove an entry if present. Returns True when something was removed."""
        with self._lock:
            if tile_id not in self._entries:
                return False
            self._remove(tile_id)
            return True

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._total_bytes = 0

    def snapshot(self) -> List[Tuple[str, bytes]]:
        """(tile id, payload) pairs, least recently used first. Touches neither LRU order nor counters."""
        with self._lock:
            return list(self._entries.items())

    def __contains__(self, tile_id: str) -> bool:
        with self._lock:
            return tile_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> TileCacheStats:
        with self._lock:
            return TileCacheStats(
                entries=len(self._entries),
                total_bytes=self._total_bytes,
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                corrupt_payloads=self._corrupt,
                max_entries=self.max_entries,
                max_bytes=self.max_bytes,
            )

    # Callers must hold self._lock for the methods below

    def _remove(self, tile_id: str) -> None:
        payload = self._entries.pop(tile_id)
        self._total_bytes -= len(payload)

    def _over_budget(self) -> bool:
        if self.max_entries is not None and len(self._entries) > self.max_entries:
            return True
        if self.max_bytes is not None and self._total_bytes > self.max_bytes:
            return True
        return False

    def _evict(self) -> None:
        while self._entries and self._over_budget():
            tile_id, payload = self._entries.popitem(last=False)
            self._total_bytes -= len(payload)
            self._evictions += 1
            logger.info(f"Evicted tile {tile_id} ({len(payload)} bytes)")
