"""Timezone enrichment for sensor coordinates.

Wraps the Google Maps Time Zone API with an in-process cache keyed by the
coordinates rounded to six decimal places. Entries expire after a fixed TTL
and a background task sweeps expired entries on a fixed interval.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

import httpx
import structlog

from app.core.metrics import record_geo_cache_lookup
from app.services.errors import BackendUnavailableError

logger = structlog.get_logger()

T = TypeVar("T")


class GeoLookupError(BackendUnavailableError):
    """Timezone lookup failed."""

    def __init__(self, message: str, original_error: Exception | None = None):
        super().__init__(message, source="geocoding", original_error=original_error)


@dataclass(frozen=True)
class TimezoneInfo:
    """Timezone details for a location."""

    timezone_id: str
    timezone_name: str


class ExpiringCache(Generic[T]):
    """Async-safe key/value cache with per-entry expiry and periodic sweeping.

    Expired entries are never returned, whether or not the sweep has run yet.
    """

    def __init__(
        self,
        ttl_seconds: float = 3600.0,
        sweep_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._entries: dict[str, tuple[T, float]] = {}
        self._lock = asyncio.Lock()
        self._running = False
        self._task: asyncio.Task | None = None

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> T | None:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    async def set(self, key: str, value: T) -> None:
        async with self._lock:
            self._entries[key] = (value, self._clock() + self.ttl_seconds)

    async def evict_expired(self) -> int:
        """Remove expired entries, returning how many were evicted."""
        async with self._lock:
            now = self._clock()
            expired = [key for key, (_, expires_at) in self._entries.items() if now >= expires_at]
            for key in expired:
                del self._entries[key]
            return len(expired)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    async def start(self) -> None:
        """Start the background sweep loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._sweep_loop(), name="geo_cache_sweep")
        logger.info("Geo cache sweep started", interval=self.sweep_interval, ttl=self.ttl_seconds)

    async def stop(self) -> None:
        """Stop the background sweep loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Geo cache sweep stopped")

    async def _sweep_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.sweep_interval)
                evicted = await self.evict_expired()
                if evicted:
                    logger.debug("Evicted expired geo cache entries", count=evicted)
            except asyncio.CancelledError:
                break


class TimezoneLookup:
    """Caching client for the Google Maps Time Zone API.

    Failed lookups are not cached, so a retry for the same coordinates goes
    straight back to the API. Concurrent misses for the same coordinates are
    not deduplicated.
    """

    def __init__(
        self,
        api_key: str,
        cache: ExpiringCache[TimezoneInfo],
        base_url: str = "https://maps.googleapis.com/maps/api/timezone/json",
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
        wall_clock: Callable[[], float] = time.time,
    ):
        self.api_key = api_key
        self.cache = cache
        self.base_url = base_url
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self._wall_clock = wall_clock

    @staticmethod
    def location_key(latitude: float, longitude: float) -> str:
        return f"{latitude:.6f},{longitude:.6f}"

    async def find_timezone_for_location(self, latitude: float, longitude: float) -> TimezoneInfo:
        """Return timezone details for a location, consulting the cache first.

        Raises:
            GeoLookupError: If the API cannot be reached or rejects the request
        """
        key = self.location_key(latitude, longitude)
        cached = await self.cache.get(key)
        if cached is not None:
            record_geo_cache_lookup(hit=True)
            return cached
        record_geo_cache_lookup(hit=False)

        if not self.api_key:
            raise GeoLookupError("Google API key is not configured")

        # Offsets are DST-sensitive, so the API needs a reference instant
        params = {
            "location": key,
            "timestamp": str(int(self._wall_clock())),
            "key": self.api_key,
        }
        try:
            response = await self._client.get(self.base_url, params=params)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise GeoLookupError(f"Timezone lookup failed for {key}: {e}", original_error=e) from e

        status = payload.get("status")
        if status != "OK":
            message = payload.get("errorMessage") or status or "unknown error"
            raise GeoLookupError(f"Timezone lookup failed for {key}: {message}")

        info = TimezoneInfo(
            timezone_id=payload.get("timeZoneId", ""),
            timezone_name=payload.get("timeZoneName", ""),
        )
        await self.cache.set(key, info)
        return info

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
