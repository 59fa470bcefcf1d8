"""
In-memory TTL cache for generation results, keyed by a stable hash of the
traveler's preferences. Safe to share between threads.
"""
import hashlib
import json
import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel

from itinerary_engine.models.request_models import UserPreferences
from itinerary_engine.models.response_models import CacheStats, GenerationResult

logger = logging.getLogger(__name__)

KEY_LENGTH = 16
EVICTION_FRACTION = 0.1


class CacheEntry(BaseModel):
    data: GenerationResult
    expires_at: datetime
    created_at: datetime
    last_accessed: datetime
    access_count: int = 0


def normalize_preferences(preferences: UserPreferences) -> Dict[str, Any]:
    """Only the fields that change the generated itinerary, in a stable order."""
    return {
        "start_date": preferences.start_date,
        "end_date": preferences.end_date,
        "adults": preferences.adults,
        "children": preferences.children,
        "infants": preferences.infants,
        "budget_min": preferences.budget_min,
        "budget_max": preferences.budget_max,
        "currency": preferences.currency,
        "primary_destination": preferences.primary_destination.lower(),
        "additional_destinations": sorted(d.lower() for d in preferences.additional_destinations),
        "interests": sorted(i.lower() for i in preferences.interests),
        "accommodation_type": preferences.accommodation_type,
        "transportation_preference": preferences.transportation_preference,
        "pace_preference": preferences.pace_preference.value,
        "dietary_restrictions": sorted(preferences.dietary_restrictions),
        "mobility_requirements": preferences.mobility_requirements,
    }


def generate_cache_key(preferences: UserPreferences) -> str:
    payload = json.dumps(normalize_preferences(preferences), sort_keys=True, default=str)
    return hashlib.sha256(payload.encode()).hexdigest()[:KEY_LENGTH]


class CachingService:
    def __init__(
        self,
        max_size: int = 1000,
        default_ttl_seconds: int = 3600,
        now: Callable[[], datetime] = datetime.utcnow,
    ):
        self.max_size = max_size
        self.default_ttl_seconds = default_ttl_seconds
        self._now = now
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._last_cleared: Optional[datetime] = now()

    def generate_cache_key(self, preferences: UserPreferences) -> str:
        return generate_cache_key(preferences)

    def set(self, key: str, result: GenerationResult, ttl_seconds: Optional[int] = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl_seconds
        now = self._now()
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_size:
                self._evict_least_recent()
            self._entries[key] = CacheEntry(
                data=result,
                expires_at=now + timedelta(seconds=ttl),
                created_at=now,
                last_accessed=now,
            )
        logger.debug(f"Cached generation result {key} for {ttl}s")

    def get(self, key: str) -> Optional[GenerationResult]:
        now = self._now()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if now >= entry.expires_at:
                del self._entries[key]
                self._misses += 1
                logger.debug(f"Cache expired for {key}")
                return None
            entry.access_count += 1
            entry.last_accessed = now
            self._hits += 1
            return entry.data

    def has(self, key: str) -> bool:
        now = self._now()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if now >= entry.expires_at:
                del self._entries[key]
                return False
            return True

    def cleanup(self) -> int:
        """Remove expired entries; returns how many were dropped."""
        now = self._now()
        with self._lock:
            expired = [k for k, e in self._entries.items() if now >= e.expires_at]
            for k in expired:
                del self._entries[k]
        if expired:
            logger.debug(f"Cleaned up {len(expired)} expired cache entries")
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._last_cleared = self._now()
        logger.info("Generation cache cleared")

    def get_stats(self) -> CacheStats:
        with self._lock:
            lookups = self._hits + self._misses
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                hit_rate=self._hits / lookups if lookups else 0.0,
                size=len(self._entries),
                max_size=self.max_size,
                evictions=self._evictions,
                last_cleared=self._last_cleared,
            )

    def get_cache_info(self) -> Dict[str, Any]:
        with self._lock:
            entries = [
                {
                    "key": key,
                    "created_at": e.created_at.isoformat(),
                    "expires_at": e.expires_at.isoformat(),
                    "access_count": e.access_count,
                    "last_accessed": e.last_accessed.isoformat(),
                }
                for key, e in self._entries.items()
            ]
        return {
            "size": len(entries),
            "max_size": self.max_size,
            "default_ttl_seconds": self.default_ttl_seconds,
            "entries": entries,
        }

    def _evict_least_recent(self) -> None:
        count = max(1, int(len(self._entries) * EVICTION_FRACTION))
        oldest = sorted(self._entries.items(), key=lambda kv: kv[1].last_accessed)[:count]
        for key, _ in oldest:
            del self._entries[key]
        self._evictions += count
        logger.debug(f"Evicted {count} least recently used cache entries")
