"""Measurement source over the TimescaleDB ``sensor_measurements`` table.

The time-series store partitions by time on its own, so a range is answered
by one query. Rows are wide: one column per measurement, and measurement
names and units are inferred from the column names.
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Sequence

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.device import Sensor
from app.models.reading import Measurement, MinimalReading, SensorReading
from app.services.device_registry import DeviceRegistry
from app.services.errors import BackendUnavailableError
from app.services.measurement_source import MeasurementSource, QueryKind
from app.services.shard_resolver import QueryWindow

logger = structlog.get_logger()

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class ColumnFamily(str, Enum):
    """Column families, in the order column names are matched against them."""

    TIME = "time"
    TEMPERATURE = "temperature"
    HUMIDITY = "humidity"
    SOIL_MOISTURE = "soil_moisture"


MEASUREMENT_UNITS = {
    ColumnFamily.TEMPERATURE: "Celsius",
    ColumnFamily.HUMIDITY: "%",
    ColumnFamily.SOIL_MOISTURE: "VWC",
}


def classify_column(column: str) -> ColumnFamily | None:
    """First family whose marker is a substring of the column name, if any."""
    for family in ColumnFamily:
        if family.value in column:
            return family
    return None


def to_epoch_seconds(value: Any) -> int:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp())
    if isinstance(value, str):
        return to_epoch_seconds(datetime.fromisoformat(value.replace("Z", "+00:00")))
    return int(value)


def row_to_reading(columns: Sequence[str], row: Sequence[Any]) -> MinimalReading:
    """Convert one result row, dropping columns that are not measurements."""
    reading = MinimalReading(timestamp=0)
    for column, value in zip(columns, row):
        family = classify_column(column)
        if family is None:
            continue
        if family == ColumnFamily.TIME:
            try:
                reading.timestamp = to_epoch_seconds(value)
            except (TypeError, ValueError, OverflowError) as e:
                raise BackendUnavailableError(
                    f"Unreadable {column} value in time-series row: {value!r}",
                    source="timescale",
                    original_error=e,
                ) from e
            continue
        if value is None:
            continue
        try:
            numeric = float(value)
        except (TypeError, ValueError):
            continue
        reading.measurements.append(
            Measurement(name=column, value=numeric, unit=MEASUREMENT_UNITS[family])
        )
    return reading


class TimeSeriesMeasurementSource(MeasurementSource):
    """Reads sensor measurements with native time-range queries."""

    backend_name = "timescale"
    supports_hourly = False

    def __init__(
        self,
        device_registry: DeviceRegistry,
        session_factory: async_sessionmaker[AsyncSession],
        table_name: str = "sensor_measurements",
    ):
        super().__init__(device_registry)
        if not _IDENTIFIER.match(table_name):
            raise ValueError(f"Invalid measurements table name: {table_name!r}")
        self.session_factory = session_factory
        self.table_name = table_name

    def plan_windows(self, start: int, end: int, kind: QueryKind) -> list[QueryWindow]:
        if end < start:
            return []
        return [QueryWindow(table_name=self.table_name, start=start, end=end)]

    async def fetch_readings(
        self, account_id: str, sensor_id: str, window: QueryWindow
    ) -> list[MinimalReading]:
        sql = text(f"""
            SELECT *
            FROM {window.table_name}
            WHERE sensor_id = :sensor_id
              AND account_id = :account_id
              AND time BETWEEN :start_time AND :end_time
            ORDER BY time DESC
        """)
        columns, rows = await self._execute(
            sql,
            {
                "sensor_id": sensor_id,
                "account_id": account_id,
                "start_time": datetime.fromtimestamp(window.start, tz=timezone.utc),
                "end_time": datetime.fromtimestamp(window.end, tz=timezone.utc),
            },
        )
        return [row_to_reading(columns, row) for row in rows]

    async def latest_reading(self, sensor: Sensor) -> SensorReading:
        sql = text(f"""
            SELECT *
            FROM {self.table_name}
            WHERE sensor_id = :sensor_id
              AND account_id = :account_id
            ORDER BY time DESC
            LIMIT 1
        """)
        columns, rows = await self._execute(
            sql, {"sensor_id": sensor.id, "account_id": sensor.account_id}
        )

        reading = SensorReading(
            sensor_id=sensor.id,
            account_id=sensor.account_id,
            name=sensor.name,
            state=sensor.state,
        )
        if rows:
            latest = row_to_reading(columns, rows[0])
            reading.timestamp = latest.timestamp
            reading.measurements = latest.measurements
        return reading

    async def _execute(self, sql, params: dict[str, Any]) -> tuple[list[str], list[Sequence[Any]]]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(sql, params)
                return list(result.keys()), list(result.all())
        except SQLAlchemyError as e:
            logger.error("Time-series query failed", table=self.table_name, error=str(e))
            raise BackendUnavailableError(
                f"Time-series query failed: {e}", source=self.backend_name, original_error=e
            ) from e
