"""
Persistent price cache.

Maps a lookup key to ``{"price": float, "timestamp": float}`` and persists the map
as JSON. Stale entries are evicted lazily on read; writes reach disk only on
an explicit ``save()``.
"""
import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from deploycost.core.config import config


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    """One cached price lookup."""
    price_per_hour: float
    timestamp: float  # epoch seconds

    def to_dict(self) -> Dict[str, float]:
        return {"price": self.price_per_hour, "timestamp": self.timestamp}


class PriceCacheStore:
    """Durable key -> price map with TTL-based invalidation."""

    def __init__(
        self,
        cache_file: Optional[str] = None,
        ttl_seconds: Optional[float] = None,
        disabled: bool = False,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize the store, loading ``cache_file`` unless disabled.

        Args:
            cache_file: Path of the JSON cache file (default from config)
            ttl_seconds: Maximum entry age in seconds (default from config)
            disabled: When True every operation is a no-op and get() misses
            clock: Time source returning epoch seconds
        """
        self.cache_file = Path(cache_file or config.PRICING_CACHE_FILE)
        self.ttl_seconds = float(ttl_seconds if ttl_seconds is not None else config.PRICING_CACHE_TTL_SECONDS)
        self.disabled = disabled
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._dirty = False

        if not self.disabled:
            self._load()

    def _load(self) -> None:
        """Load the cache file; anything unreadable counts as an empty cache."""
        try:
            if not self.cache_file.exists():
                return
            raw = json.loads(self.cache_file.read_text(encoding="utf-8"))
            self._entries = {
                str(key): CacheEntry(float(value["price"]), float(value["timestamp"]))
                for key, value in raw.items()
            }
        except (OSError, ValueError, TypeError, KeyError, AttributeError) as error:
            logger.debug("Ignoring unreadable price cache %s: %s", self.cache_file, error)
            self._entries = {}

    @property
    def dirty(self) -> bool:
        return self._dirty

    def get(self, key: str) -> Optional[float]:
        """
        Get a cached price.

        Args:
            key: Lookup key

        Returns:
            Cached price per hour, or None if absent, stale or disabled
        """
        if self.disabled:
            return None
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.timestamp > self.ttl_seconds:
            del self._entries[key]
            self._dirty = True
            return None
        return entry.price_per_hour

    def set(self, key: str, price_per_hour: float) -> None:
        """Store a price with the current timestamp (last write wins)."""
        if self.disabled:
            return
        self._entries[key] = CacheEntry(float(price_per_hour), self._clock())
        self._dirty = True

    def save(self) -> None:
        """
        Persist the map if anything changed.

        Write failures (e.g. read-only filesystem) are swallowed; the in-memory
        map remains valid for the rest of the process.
        """
        if self.disabled or not self._dirty:
            return
        payload = {key: entry.to_dict() for key, entry in self._entries.items()}
        tmp_path = None
        try:
            self.cache_file.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.cache_file.parent,
                prefix=".pricing-cache-",
                suffix=".tmp",
                delete=False
            ) as handle:
                tmp_path = handle.name
                json.dump(payload, handle, indent=2)
            os.replace(tmp_path, self.cache_file)
            tmp_path = None
            self._dirty = False
        except OSError as error:
            logger.debug("Could not write price cache %s: %s", self.cache_file, error)
        finally:
            if tmp_path and os.path.exists(tmp_path):
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass

    def clear(self) -> None:
        """Empty the in-memory map; the file is rewritten on the next save()."""
        self._entries = {}
        self._dirty = True

    def stats(self) -> Dict[str, Any]:
        """
        Get cache statistics (for debugging/monitoring).

        Returns:
            Dictionary with stats
        """
        return {
            "entries": len(self._entries),
            "ttl_seconds": self.ttl_seconds,
            "cache_file": str(self.cache_file),
            "disabled": self.disabled,
            "dirty": self._dirty,
        }

    def __len__(self) -> int:
        return len(self._entries)


# Global singleton instance
_price_cache: Optional[PriceCacheStore] = None


def get_price_cache() -> PriceCacheStore:
    """
    Get the process-wide price cache, creating it on first use.

    Returns:
        PriceCacheStore instance
    """
    global _price_cache
    if _price_cache is None:
        _price_cache = PriceCacheStore(disabled=config.PRICING_CACHE_DISABLED)
    return _price_cache


def reset_price_cache() -> None:
    """Drop the shared instance so the next get_price_cache() builds a fresh one."""
    global _price_cache
    _price_cache = None
