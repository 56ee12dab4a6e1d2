"""Caller-owned cache for discovered schema metadata."""
import hashlib
import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from schemaseed.core.schema_types import ConstraintMetadata, SchemaIntrospectionResult

logger = logging.getLogger(__name__)


class MetadataCache:
    """
    Cache of introspection and constraint-discovery results.

    Entries live in memory and, when ``cache_dir`` is given, are mirrored to
    JSON files so a later run can reuse them. The cache is an explicit object
    the caller creates and passes around; nothing is cached at module level.
    """

    def __init__(
        self,
        cache_dir: Optional[Path] = None,
        default_ttl: int = 600,
        max_cache_size: int = 100,
    ):
        """
        Initialize cache manager.

        Args:
            cache_dir: Directory for persisted entries, in-memory only when None
            default_ttl: Default time-to-live in seconds
            max_cache_size: Maximum number of entries per cache kind
        """
        self.cache_dir = cache_dir
        self.default_ttl = default_ttl
        self.max_cache_size = max_cache_size
        self._lock = threading.Lock()

        self.constraints_cache_file = cache_dir / "constraints.json" if cache_dir else None
        self.introspection_cache_file = cache_dir / "introspection.json" if cache_dir else None

        self.constraints_cache = self._load_cache(self.constraints_cache_file)
        self.introspection_cache = self._load_cache(self.introspection_cache_file)

        self._cleanup_expired()

    def _generate_key(self, *args: Any) -> str:
        """Generate deterministic cache key from arguments."""
        combined = "|".join(str(arg) for arg in args if arg is not None)
        return hashlib.sha256(combined.encode("utf-8")).hexdigest()[:16]

    @staticmethod
    def table_set_key(table_names: Iterable[str]) -> str:
        """Order-independent key for a set of table names."""
        return ",".join(sorted(set(table_names)))

    def _load_cache(self, cache_file: Optional[Path]) -> Dict[str, Any]:
        if cache_file is None or not cache_file.exists():
            return {}

        try:
            with open(cache_file, "r", encoding="utf-8") as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"Ignoring unreadable cache file {cache_file}: {e}")
            return {}

    def _save_cache(self, cache_file: Optional[Path], cache_data: Dict[str, Any]) -> None:
        if cache_file is None:
            return

        try:
            cache_file.parent.mkdir(parents=True, exist_ok=True)
            with open(cache_file, "w", encoding="utf-8") as f:
                json.dump(cache_data, f, indent=2, ensure_ascii=False)
        except IOError as e:
            logger.warning(f"Failed to save cache: {e}")

    def _is_expired(self, timestamp: str, ttl: Optional[int] = None) -> bool:
        try:
            cached_time = datetime.fromisoformat(timestamp)
        except (ValueError, TypeError):
            return True

        ttl_seconds = ttl if ttl is not None else self.default_ttl
        return (datetime.now() - cached_time).total_seconds() > ttl_seconds

    def _cleanup_expired(self) -> int:
        cleared = 0
        for cache_data, cache_file in self._caches():
            expired_keys = [
                k for k, v in cache_data.items()
                if self._is_expired(v.get("timestamp", ""), v.get("ttl"))
            ]
            for key in expired_keys:
                del cache_data[key]
            if expired_keys:
                self._save_cache(cache_file, cache_data)
            cleared += len(expired_keys)
        return cleared

    def _enforce_size_limit(self, cache_data: Dict[str, Any]) -> None:
        """Remove oldest entries if cache exceeds size limit."""
        if len(cache_data) <= self.max_cache_size:
            return

        sorted_entries = sorted(cache_data.items(), key=lambda x: x[1].get("timestamp", ""))
        cache_data.clear()
        cache_data.update(dict(sorted_entries[-self.max_cache_size:]))

    def _caches(self):
        return [
            (self.constraints_cache, self.constraints_cache_file),
            (self.introspection_cache, self.introspection_cache_file),
        ]

    def _get(self, cache_data: Dict[str, Any], cache_file: Optional[Path], key: str) -> Optional[Dict[str, Any]]:
        entry = cache_data.get(key)
        if entry is None:
            return None

        if self._is_expired(entry.get("timestamp", ""), entry.get("ttl")):
            del cache_data[key]
            self._save_cache(cache_file, cache_data)
            return None

        entry["access_count"] = entry.get("access_count", 0) + 1
        entry["last_accessed"] = datetime.now().isoformat()
        return entry["value"]

    def _set(
        self,
        cache_data: Dict[str, Any],
        cache_file: Optional[Path],
        key: str,
        label: str,
        value: Dict[str, Any],
        ttl: Optional[int],
    ) -> None:
        now = datetime.now().isoformat()
        cache_data[key] = {
            "value": value,
            "label": label,
            "timestamp": now,
            "ttl": ttl if ttl is not None else self.default_ttl,
            "access_count": 0,
            "last_accessed": now,
        }
        self._enforce_size_limit(cache_data)
        self._save_cache(cache_file, cache_data)

    # ==================== Constraint metadata ====================

    def get_constraint_metadata(self, table_names: Iterable[str]) -> Optional[ConstraintMetadata]:
        """Return cached discovery output for exactly this table set, if fresh."""
        label = self.table_set_key(table_names)
        with self._lock:
            value = self._get(self.constraints_cache, self.constraints_cache_file, self._generate_key(label))
        return ConstraintMetadata.model_validate(value) if value is not None else None

    def set_constraint_metadata(
        self,
        table_names: Iterable[str],
        metadata: ConstraintMetadata,
        ttl: Optional[int] = None,
    ) -> None:
        label = self.table_set_key(table_names)
        with self._lock:
            self._set(
                self.constraints_cache,
                self.constraints_cache_file,
                self._generate_key(label),
                label,
                metadata.model_dump(mode="json"),
                ttl,
            )

    # ==================== Introspection ====================

    def get_introspection(self, scope: str) -> Optional[SchemaIntrospectionResult]:
        with self._lock:
            value = self._get(self.introspection_cache, self.introspection_cache_file, self._generate_key(scope))
        return SchemaIntrospectionResult.model_validate(value) if value is not None else None

    def set_introspection(self, scope: str, result: SchemaIntrospectionResult, ttl: Optional[int] = None) -> None:
        with self._lock:
            self._set(
                self.introspection_cache,
                self.introspection_cache_file,
                self._generate_key(scope),
                scope,
                result.model_dump(mode="json"),
                ttl,
            )

    # ==================== Cache Management ====================

    def clear_all(self) -> None:
        """Clear all cache entries."""
        with self._lock:
            for cache_data, cache_file in self._caches():
                cache_data.clear()
                self._save_cache(cache_file, cache_data)

    def clear_expired(self) -> int:
        """
        Clear all expired entries.

        Returns:
            Number of entries cleared
        """
        with self._lock:
            return self._cleanup_expired()

    def get_stats(self) -> Dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dictionary with cache stats
        """
        with self._lock:
            return {
                "constraint_entries": len(self.constraints_cache),
                "introspection_entries": len(self.introspection_cache),
                "total_entries": len(self.constraints_cache) + len(self.introspection_cache),
                "table_sets": sorted(v.get("label", "") for v in self.constraints_cache.values()),
                "cache_dir": str(self.cache_dir) if self.cache_dir else None,
            }
