"""Measurement source contract shared by the storage backends.

A backend implements the per-window primitives (planning the physical
queries for a range, running one of them, fetching a sensor's latest
reading). The read operations exposed to the API are built once here on top
of those primitives, so backends can be swapped without touching callers.
"""

import time
from abc import ABC, abstractmethod
from enum import Enum

import structlog

from app.core.metrics import record_backend_query, record_latest_reading_failure
from app.models.device import Sensor
from app.models.reading import HourlyAggregate, MinimalReading, SensorReading
from app.services.device_registry import DeviceRegistry
from app.services.errors import DataAccessError, UnsupportedQueryError
from app.services.result_merger import merge_pages
from app.services.shard_resolver import QueryWindow

logger = structlog.get_logger()


class QueryKind(str, Enum):
    """Kinds of readings a source can be asked for."""

    RAW = "raw"
    HOURLY = "hourly"
    LATEST = "latest"


class MeasurementSource(ABC):
    """Read contract over a measurement storage backend."""

    backend_name: str = "unknown"
    supports_hourly: bool = False

    def __init__(self, device_registry: DeviceRegistry):
        self.device_registry = device_registry

    # Backend primitives

    @abstractmethod
    def plan_windows(self, start: int, end: int, kind: QueryKind) -> list[QueryWindow]:
        """Physical queries needed to cover ``[start, end]``, oldest first."""

    @abstractmethod
    async def fetch_readings(
        self, account_id: str, sensor_id: str, window: QueryWindow
    ) -> list[MinimalReading]:
        """Readings inside one window, newest first."""

    async def fetch_hourly_aggregates(
        self, account_id: str, sensor_id: str, window: QueryWindow
    ) -> list[HourlyAggregate]:
        """Hourly rollups inside one window, newest first."""
        raise UnsupportedQueryError(
            f"Hourly readings are not available from the {self.backend_name} backend",
            source=self.backend_name,
        )

    @abstractmethod
    async def latest_reading(self, sensor: Sensor) -> SensorReading:
        """Most recent reading for a sensor (empty reading when none)."""

    # Read operations

    async def latest_readings(self, account_id: str, state: str = "") -> dict[str, SensorReading]:
        """Latest reading per sensor of an account, keyed by sensor ID.

        A failing sensor is logged and left out of the mapping instead of
        failing the whole request. Listing the sensors themselves is not
        isolated: if that fails, the error propagates.
        """
        sensors = await self.device_registry.get_sensors(account_id, state, enrich=False)

        readings: dict[str, SensorReading] = {}
        for sensor in sensors:
            started = time.perf_counter()
            try:
                readings[sensor.id] = await self.latest_reading(sensor)
            except DataAccessError as e:
                record_latest_reading_failure(self.backend_name)
                logger.warning(
                    "Latest reading query failed",
                    backend=self.backend_name,
                    account_id=account_id,
                    sensor_id=sensor.id,
                    error=str(e),
                )
                continue
            finally:
                record_backend_query(
                    self.backend_name, QueryKind.LATEST.value, time.perf_counter() - started
                )
        return readings

    async def query_range(
        self, account_id: str, sensor_id: str, start: int, end: int
    ) -> list[MinimalReading]:
        """Raw readings for a sensor between ``start`` and ``end`` (inclusive)."""
        windows = self.plan_windows(start, end, QueryKind.RAW)
        pages = []
        for window in windows:
            started = time.perf_counter()
            try:
                pages.append(await self.fetch_readings(account_id, sensor_id, window))
            finally:
                record_backend_query(
                    self.backend_name, QueryKind.RAW.value, time.perf_counter() - started
                )
        return merge_pages(pages)

    async def query_hourly_range(
        self, account_id: str, sensor_id: str, start: int, end: int
    ) -> list[HourlyAggregate]:
        """Hourly min/max rollups for a sensor between ``start`` and ``end``."""
        if not self.supports_hourly:
            raise UnsupportedQueryError(
                f"Hourly readings are not available from the {self.backend_name} backend",
                source=self.backend_name,
            )
        windows = self.plan_windows(start, end, QueryKind.HOURLY)
        pages = []
        for window in windows:
            started = time.perf_counter()
            try:
                pages.append(await self.fetch_hourly_aggregates(account_id, sensor_id, window))
            finally:
                record_backend_query(
                    self.backend_name, QueryKind.HOURLY.value, time.perf_counter() - started
                )
        return merge_pages(pages)
