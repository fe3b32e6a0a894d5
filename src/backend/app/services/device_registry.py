"""Device registry over the DynamoDB accounts, relays and sensors tables."""

from decimal import Decimal
from typing import Any

import structlog
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from app.models.device import (
    Account,
    Relay,
    Sensor,
    DEFAULT_SAMPLE_FREQUENCY,
    MUTABLE_SENSOR_FIELDS,
)
from app.services.dynamodb import backend_error, call_dynamodb, is_failed_condition
from app.services.errors import BackendUnavailableError, MalformedInputError, NotFoundError
from app.services.geo_lookup import TimezoneLookup

logger = structlog.get_logger()

ACCOUNTS_TABLE = "accounts"
RELAYS_TABLE = "relays"
SENSORS_TABLE = "sensors"
SENSORS_ACCOUNT_INDEX = "account_id-index"
NULLABLE_SENSOR_FIELDS = ("latitude", "longitude")


class DeviceRegistry:
    """Reads accounts, relays and sensors; updates the mutable sensor fields.

    Sensors with coordinates are enriched with timezone details on every read.
    A failed timezone lookup never fails the read; the sensor is returned
    without timezone fields.
    """

    def __init__(
        self,
        dynamodb,
        geo_lookup: TimezoneLookup | None = None,
        sensors_query_limit: int = 100,
    ):
        self.dynamodb = dynamodb
        self.geo_lookup = geo_lookup
        self.sensors_query_limit = sensors_query_limit

    async def get_account(self, account_id: str) -> Account:
        """Get account by ID."""
        item = await self._get_item(ACCOUNTS_TABLE, account_id)
        if item is None:
            raise NotFoundError(f"Account not found: {account_id}", source=ACCOUNTS_TABLE)
        return Account(id=account_id, name=item.get("name", ""), state=item.get("state", ""))

    async def get_relay(self, relay_id: str) -> Relay:
        """Get relay by ID."""
        item = await self._get_item(RELAYS_TABLE, relay_id)
        if item is None:
            raise NotFoundError(f"Relay not found: {relay_id}", source=RELAYS_TABLE)
        return Relay(
            id=relay_id,
            account_id=item.get("account_id", ""),
            name=item.get("name", ""),
            state=item.get("state", ""),
        )

    async def get_sensor(self, sensor_id: str) -> Sensor:
        """Get sensor by ID, enriched with timezone details when located."""
        item = await self._get_item(SENSORS_TABLE, sensor_id)
        if item is None:
            raise NotFoundError(f"Sensor not found: {sensor_id}", source=SENSORS_TABLE)
        sensor = sensor_from_item({**item, "id": sensor_id})
        await self._enrich(sensor)
        return sensor

    async def get_sensors(
        self,
        account_id: str,
        state: str = "",
        enrich: bool = True,
    ) -> list[Sensor]:
        """List sensors for an account, optionally filtered by exact state."""
        table = self.dynamodb.Table(SENSORS_TABLE)
        try:
            response = await call_dynamodb(
                table.query,
                IndexName=SENSORS_ACCOUNT_INDEX,
                KeyConditionExpression=Key("account_id").eq(account_id),
                Limit=self.sensors_query_limit,
            )
        except ClientError as e:
            raise backend_error(e, f"listing sensors for account {account_id}") from e

        sensors = []
        for item in response.get("Items", []):
            if state and item.get("state") != state:
                continue
            sensor = sensor_from_item(item, account_id=account_id)
            if enrich:
                await self._enrich(sensor)
            sensors.append(sensor)
        return sensors

    async def update_sensor(self, sensor_id: str, updates: dict[str, Any]) -> Sensor:
        """Apply mutable-field updates to a sensor and return the stored result.

        Fields outside the mutable set (``id``, ``account_id``, derived
        timezone fields) are ignored. A ``None`` coordinate removes it; a
        ``None`` for any other field leaves it unchanged.
        """
        changes = {
            k: v
            for k, v in updates.items()
            if k in MUTABLE_SENSOR_FIELDS and (v is not None or k in NULLABLE_SENSOR_FIELDS)
        }
        if not changes:
            return await self.get_sensor(sensor_id)

        sample_frequency = changes.get("sample_frequency")
        if sample_frequency is not None and sample_frequency < 1:
            raise MalformedInputError("sample_frequency must be at least 1")

        set_clauses = []
        remove_clauses = []
        names: dict[str, str] = {}
        values: dict[str, Any] = {}
        for field, value in changes.items():
            names[f"#{field}"] = field
            if value is None:
                remove_clauses.append(f"#{field}")
            else:
                set_clauses.append(f"#{field} = :{field}")
                values[f":{field}"] = to_dynamodb_value(value)

        expression_parts = []
        if set_clauses:
            expression_parts.append("SET " + ", ".join(set_clauses))
        if remove_clauses:
            expression_parts.append("REMOVE " + ", ".join(remove_clauses))

        params: dict[str, Any] = {
            "Key": {"id": sensor_id},
            "UpdateExpression": " ".join(expression_parts),
            "ExpressionAttributeNames": names,
            "ConditionExpression": Attr("id").exists(),
        }
        if values:
            params["ExpressionAttributeValues"] = values

        table = self.dynamodb.Table(SENSORS_TABLE)
        try:
            await call_dynamodb(table.update_item, **params)
        except ClientError as e:
            if is_failed_condition(e):
                raise NotFoundError(f"Sensor not found: {sensor_id}", source=SENSORS_TABLE) from e
            raise backend_error(e, f"updating sensor {sensor_id}") from e

        logger.info("Sensor updated", sensor_id=sensor_id, fields=sorted(changes))
        return await self.get_sensor(sensor_id)

    async def _get_item(self, table_name: str, item_id: str) -> dict[str, Any] | None:
        table = self.dynamodb.Table(table_name)
        try:
            response = await call_dynamodb(
                table.get_item,
                Key={"id": item_id},
                ConsistentRead=True,
            )
        except ClientError as e:
            raise backend_error(e, f"reading {table_name} item {item_id}") from e
        return response.get("Item")

    async def _enrich(self, sensor: Sensor) -> None:
        if self.geo_lookup is None or not sensor.has_location:
            return
        try:
            tz = await self.geo_lookup.find_timezone_for_location(sensor.latitude, sensor.longitude)
        except BackendUnavailableError as e:
            logger.warning("Timezone lookup failed", sensor_id=sensor.id, error=str(e))
            return
        sensor.timezone_id = tz.timezone_id
        sensor.timezone_name = tz.timezone_name


def sensor_from_item(item: dict[str, Any], account_id: str | None = None) -> Sensor:
    """Build a Sensor from a DynamoDB item (numbers arrive as ``Decimal``)."""
    sample_frequency = item.get("sample_frequency")
    sensor = Sensor(
        id=item["id"],
        account_id=account_id or item.get("account_id", ""),
        name=item.get("name", ""),
        state=item.get("state", ""),
        location_enabled=bool(item.get("location_enabled", False)),
        sample_frequency=(
            int(sample_frequency) if sample_frequency is not None else DEFAULT_SAMPLE_FREQUENCY
        ),
    )
    if item.get("latitude") is not None and item.get("longitude") is not None:
        sensor.latitude = float(item["latitude"])
        sensor.longitude = float(item["longitude"])
    return sensor


def to_dynamodb_value(value: Any) -> Any:
    """boto3 rejects floats; numbers are stored as ``Decimal``."""
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return value
