"""Measurement source over month-sharded DynamoDB readings tables."""

import json
from datetime import datetime, timezone
from typing import Any, Callable

import structlog
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from app.models.device import Sensor, reading_key
from app.models.reading import (
    HourlyAggregate,
    Measurement,
    MinimalReading,
    MinMaxMeasurement,
    SensorReading,
)
from app.services.device_registry import DeviceRegistry
from app.services.dynamodb import backend_error, call_dynamodb, is_missing_table
from app.services.errors import BackendUnavailableError
from app.services.measurement_source import MeasurementSource, QueryKind
from app.services.shard_resolver import QueryWindow, current_shard_table_name, resolve_shards

logger = structlog.get_logger()


class ShardedMeasurementSource(MeasurementSource):
    """Reads per-reading and hourly rollup records from monthly tables.

    Each shard is queried by partition key ``account_id:sensor_id`` and a
    ``timestamp`` range, newest first, up to ``page_size`` records. A shard
    whose table does not exist yet is read as empty. The latest reading only
    looks at the current month's shard and does not fall back to older ones.
    """

    backend_name = "dynamodb"
    supports_hourly = True

    def __init__(
        self,
        device_registry: DeviceRegistry,
        dynamodb,
        readings_table_prefix: str = "sensor_readings",
        hourly_table_prefix: str = "hourly_sensor_readings",
        page_size: int = 10000,
        max_shards: int = 3,
        now: Callable[[], datetime] | None = None,
    ):
        super().__init__(device_registry)
        self.dynamodb = dynamodb
        self.readings_table_prefix = readings_table_prefix
        self.hourly_table_prefix = hourly_table_prefix
        self.page_size = page_size
        self.max_shards = max_shards
        self._now = now or (lambda: datetime.now(timezone.utc))

    def plan_windows(self, start: int, end: int, kind: QueryKind) -> list[QueryWindow]:
        prefix = self.hourly_table_prefix if kind == QueryKind.HOURLY else self.readings_table_prefix
        return resolve_shards(start, end, self.max_shards, prefix)

    async def fetch_readings(
        self, account_id: str, sensor_id: str, window: QueryWindow
    ) -> list[MinimalReading]:
        items = await self._query_shard(
            window.table_name,
            Key("id").eq(reading_key(account_id, sensor_id))
            & Key("timestamp").between(window.start, window.end),
            limit=self.page_size,
        )
        readings = []
        for item in items:
            timestamp, measurements = decode_record(item, window.table_name, Measurement)
            readings.append(MinimalReading(timestamp=timestamp, measurements=measurements))
        return readings

    async def fetch_hourly_aggregates(
        self, account_id: str, sensor_id: str, window: QueryWindow
    ) -> list[HourlyAggregate]:
        items = await self._query_shard(
            window.table_name,
            Key("id").eq(reading_key(account_id, sensor_id))
            & Key("timestamp").between(window.start, window.end),
            limit=self.page_size,
        )
        aggregates = []
        for item in items:
            timestamp, measurements = decode_record(item, window.table_name, MinMaxMeasurement)
            aggregates.append(HourlyAggregate(timestamp=timestamp, measurements=measurements))
        return aggregates

    async def latest_reading(self, sensor: Sensor) -> SensorReading:
        reading = SensorReading(
            sensor_id=sensor.id,
            account_id=sensor.account_id,
            name=sensor.name,
            state=sensor.state,
        )
        table_name = current_shard_table_name(self.readings_table_prefix, self._now())
        items = await self._query_shard(table_name, Key("id").eq(sensor.reading_key), limit=1)
        for item in items:
            reading.timestamp, reading.measurements = decode_record(item, table_name, Measurement)
        return reading

    async def _query_shard(self, table_name: str, condition, limit: int) -> list[dict[str, Any]]:
        table = self.dynamodb.Table(table_name)
        try:
            response = await call_dynamodb(
                table.query,
                KeyConditionExpression=condition,
                ScanIndexForward=False,
                Limit=limit,
            )
        except ClientError as e:
            if is_missing_table(e):
                logger.info("Shard table does not exist, treating as empty", table=table_name)
                return []
            raise backend_error(e, f"querying {table_name}") from e
        return response.get("Items", [])


def decode_record(
    item: dict[str, Any],
    table_name: str,
    measurement_type: type[Measurement] | type[MinMaxMeasurement],
) -> tuple[int, list[Any]]:
    """Decode a stored record into its timestamp and measurement objects.

    ``measurements`` is a JSON-serialized list of measurement dicts. Any
    record that does not have that shape is reported as a backend failure.
    """
    try:
        timestamp = int(item["timestamp"])
        payload = json.loads(item["measurements"]) or []
        if not isinstance(payload, list):
            raise TypeError(f"expected a list, got {type(payload).__name__}")
        measurements = [measurement_type.from_dict(m) for m in payload]
    except (KeyError, TypeError, ValueError, AttributeError, OverflowError) as e:
        raise BackendUnavailableError(
            f"Malformed reading record in {table_name} at {item.get('timestamp')}: {e}",
            source="dynamodb",
            original_error=e,
        ) from e
    return timestamp, measurements
