"""Caching layer for remote work item responses."""

import hashlib
import json
import time
from pathlib import Path
from typing import Any, Optional

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_TTL_SECONDS = 300


class WorkItemCache:
    """File-based cache for remote work item payloads with TTL expiry."""

    def __init__(self, cache_dir: Path, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        """Initialize cache.

        Args:
            cache_dir: Directory to store cache files
            ttl_seconds: Age after which an entry is treated as missing
        """
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.ttl_seconds = ttl_seconds

        # Stats
        self.hits = 0
        self.misses = 0

    def _generate_key(self, source: str, key: str) -> str:
        hash_obj = hashlib.sha256(key.encode())
        hash_obj.update(source.encode())
        return hash_obj.hexdigest()

    def _path(self, source: str, key: str) -> Path:
        return self.cache_dir / f"{source}-{self._generate_key(source, key)}.json"

    def get(self, source: str, key: str) -> Optional[Any]:
        """Get a cached payload.

        Args:
            source: Source name, e.g. ``azure``
            key: Item id or request key

        Returns:
            Cached payload, or None when absent or expired
        """
        cache_file = self._path(source, key)

        if cache_file.exists():
            try:
                with open(cache_file, "r") as f:
                    data = json.load(f)
                if time.time() - data.get("stored_at", 0) <= self.ttl_seconds:
                    self.hits += 1
                    return data.get("payload")
                cache_file.unlink(missing_ok=True)
            except (OSError, ValueError) as e:
                logger.debug("cache_read_failed", file=str(cache_file), error=str(e))

        self.misses += 1
        return None

    def set(self, source: str, key: str, payload: Any) -> None:
        """Cache a payload.

        Args:
            source: Source name
            key: Item id or request key
            payload: JSON-serializable payload
        """
        cache_file = self._path(source, key)

        try:
            with open(cache_file, "w") as f:
                json.dump(
                    {
                        "source": source,
                        "key": key,
                        "stored_at": time.time(),
                        "payload": payload,
                    },
                    f,
                )
        except (OSError, TypeError) as e:
            logger.warning("cache_write_failed", file=str(cache_file), error=str(e))

    def clear(self) -> int:
        """Clear all cache files.

        Returns:
            Number of entries removed
        """
        removed = 0
        for cache_file in self.cache_dir.glob("*.json"):
            cache_file.unlink()
            removed += 1

        self.hits = 0
        self.misses = 0
        return removed

    def get_stats(self) -> dict:
        """Get cache statistics.

        Returns:
            Dictionary with cache stats
        """
        total_requests = self.hits + self.misses
        hit_rate = (self.hits / total_requests * 100) if total_requests > 0 else 0.0

        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": f"{hit_rate:.1f}%",
            "cached_items": len(list(self.cache_dir.glob("*.json"))),
            "ttl_seconds": self.ttl_seconds,
        }
