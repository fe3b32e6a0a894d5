"""Query engine: the read operations served by the readings API."""

from datetime import datetime, timezone
from typing import Callable

import structlog

from app.models.reading import ReadingsQueryResult, SensorReading
from app.services.errors import MalformedInputError
from app.services.measurement_source import MeasurementSource
from app.services.shard_resolver import add_months

logger = structlog.get_logger()


def parse_time_bound(value: str | None, name: str) -> int | None:
    """Parse an epoch-seconds query parameter; blank means unset.

    The value must also be a representable UTC instant, so later calendar
    arithmetic on it cannot fail.
    """
    if value is None or value.strip() == "":
        return None
    try:
        bound = int(value.strip())
    except ValueError:
        raise MalformedInputError(f"Unable to parse {name} as int")
    try:
        datetime.fromtimestamp(bound, tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        raise MalformedInputError(f"{name} is out of range: {bound}")
    return bound


class QueryEngine:
    """Answers latest, raw range and hourly range queries.

    The measurement source is chosen at startup; the engine never looks at
    which backend it is talking to.
    """

    def __init__(
        self,
        source: MeasurementSource,
        now: Callable[[], datetime] | None = None,
    ):
        self.source = source
        self._now = now or (lambda: datetime.now(timezone.utc))

    def resolve_range(self, start_time: str | None, end_time: str | None) -> tuple[int, int]:
        """Parse range bounds, defaulting to one month ago through now.

        Raises:
            MalformedInputError: If a bound is not an integer or not a representable instant
        """
        start = parse_time_bound(start_time, "start_time")
        end = parse_time_bound(end_time, "end_time")
        now = self._now()
        if start is None:
            start = int(add_months(now, -1).timestamp())
        if end is None:
            end = int(now.timestamp())
        return start, end

    async def last_sensor_readings(self, account_id: str, state: str = "") -> dict[str, SensorReading]:
        return await self.source.latest_readings(account_id, state)

    async def sensor_readings(
        self,
        account_id: str,
        sensor_id: str,
        start_time: str | None = None,
        end_time: str | None = None,
    ) -> ReadingsQueryResult:
        start, end = self.resolve_range(start_time, end_time)
        readings = await self.source.query_range(account_id, sensor_id, start, end)
        logger.debug(
            "Sensor readings queried",
            account_id=account_id,
            sensor_id=sensor_id,
            start=start,
            end=end,
            count=len(readings),
        )
        return ReadingsQueryResult(account_id=account_id, sensor_id=sensor_id, readings=readings)

    async def hourly_sensor_readings(
        self,
        account_id: str,
        sensor_id: str,
        start_time: str | None = None,
        end_time: str | None = None,
    ) -> ReadingsQueryResult:
        start, end = self.resolve_range(start_time, end_time)
        readings = await self.source.query_hourly_range(account_id, sensor_id, start, end)
        return ReadingsQueryResult(account_id=account_id, sensor_id=sensor_id, readings=readings)
