"""Pytest configuration and fixtures for data access tests."""

import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from botocore.exceptions import ClientError
from httpx import AsyncClient, ASGITransport

from app.core.config import settings
from app.main import app as fastapi_app
from app.services.device_registry import DeviceRegistry
from app.services.dynamodb_source import ShardedMeasurementSource
from app.services.geo_lookup import TimezoneInfo
from app.services.query_engine import QueryEngine

API_TOKEN = "test-token"

# Fixed "now" used by sources and the engine: 2024-05-20 12:00:00 UTC
FIXED_NOW = datetime(2024, 5, 20, 12, 0, tzinfo=timezone.utc)

PACIFIC = TimezoneInfo(timezone_id="America/Los_Angeles", timezone_name="Pacific Daylight Time")


def ts(*args: int) -> int:
    """Epoch seconds for a UTC date/time."""
    return int(datetime(*args, tzinfo=timezone.utc).timestamp())


def client_error(code: str, operation: str = "Query") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


def describe_key_condition(condition) -> dict[str, tuple]:
    """Flatten a boto3 key condition into ``{attribute: (operator, *values)}``."""
    expression = condition.get_expression()
    if expression["operator"] == "AND":
        described: dict[str, tuple] = {}
        for part in expression["values"]:
            described.update(describe_key_condition(part))
        return described
    attribute, *values = expression["values"]
    return {attribute.name: (expression["operator"], *values)}


def reading_item(
    account_id: str,
    sensor_id: str,
    timestamp: int,
    measurements: list[dict[str, Any]],
) -> dict[str, Any]:
    """A readings-table item the way boto3 returns it."""
    return {
        "id": f"{account_id}:{sensor_id}",
        "timestamp": Decimal(timestamp),
        "measurements": json.dumps(measurements),
    }


class FakeTable:
    """In-memory stand-in for a boto3 DynamoDB ``Table``.

    ``get_item``/``update_item`` operate on ``items``; ``query`` is a
    ``MagicMock`` so tests can script pages and inspect the calls.
    """

    def __init__(self, name: str):
        self.name = name
        self.items: dict[str, dict[str, Any]] = {}
        self.query = MagicMock(return_value={"Items": []})

    def get_item(self, Key: dict[str, Any], ConsistentRead: bool = False) -> dict[str, Any]:
        item = self.items.get(Key["id"])
        return {"Item": dict(item)} if item is not None else {}

    def update_item(
        self,
        Key: dict[str, Any],
        UpdateExpression: str,
        ExpressionAttributeNames: dict[str, str],
        ExpressionAttributeValues: dict[str, Any] | None = None,
        ConditionExpression=None,
    ) -> dict[str, Any]:
        item = self.items.get(Key["id"])
        if ConditionExpression is not None and item is None:
            raise client_error("ConditionalCheckFailedException", "UpdateItem")
        item = self.items.setdefault(Key["id"], {"id": Key["id"]})
        values = ExpressionAttributeValues or {}

        if UpdateExpression.startswith("REMOVE "):
            set_part, remove_part = "", UpdateExpression[len("REMOVE "):]
        else:
            set_part, _, remove_part = UpdateExpression.partition(" REMOVE ")
            set_part = set_part[len("SET "):]

        for assignment in filter(None, set_part.split(", ")):
            name, value = assignment.split(" = ")
            item[ExpressionAttributeNames[name]] = values[value]
        for name in filter(None, remove_part.split(", ")):
            item.pop(ExpressionAttributeNames[name], None)
        return {}


class FakeDynamoResource:
    """In-memory stand-in for ``boto3.resource("dynamodb")``."""

    def __init__(self):
        self.tables: dict[str, FakeTable] = {}
        self.meta = MagicMock()

    def Table(self, name: str) -> FakeTable:
        if name not in self.tables:
            self.tables[name] = FakeTable(name)
        return self.tables[name]

    def put_sensor(
        self,
        account_id: str,
        sensor_id: str,
        state: str = "active",
        name: str | None = None,
        latitude: float | None = None,
        longitude: float | None = None,
        sample_frequency: int | None = None,
    ) -> dict[str, Any]:
        item: dict[str, Any] = {
            "id": sensor_id,
            "account_id": account_id,
            "name": name or f"Sensor {sensor_id}",
            "state": state,
            "location_enabled": latitude is not None,
        }
        if latitude is not None and longitude is not None:
            item["latitude"] = Decimal(str(latitude))
            item["longitude"] = Decimal(str(longitude))
        if sample_frequency is not None:
            item["sample_frequency"] = Decimal(sample_frequency)
        sensors = self.Table("sensors")
        sensors.items[sensor_id] = item
        # The account index returns every sensor of the account
        sensors.query.return_value = {
            "Items": [dict(i) for i in sensors.items.values() if i["account_id"] == account_id]
        }
        return item


@pytest.fixture
def dynamodb() -> FakeDynamoResource:
    return FakeDynamoResource()


@pytest.fixture
def timezone_lookup() -> MagicMock:
    lookup = MagicMock()
    lookup.find_timezone_for_location = AsyncMock(return_value=PACIFIC)
    return lookup


@pytest.fixture
def device_registry(dynamodb, timezone_lookup) -> DeviceRegistry:
    return DeviceRegistry(dynamodb, geo_lookup=timezone_lookup)


@pytest.fixture
def sharded_source(device_registry, dynamodb) -> ShardedMeasurementSource:
    return ShardedMeasurementSource(device_registry, dynamodb, now=lambda: FIXED_NOW)


@pytest.fixture
def query_engine(sharded_source) -> QueryEngine:
    return QueryEngine(sharded_source, now=lambda: FIXED_NOW)


@pytest_asyncio.fixture(scope="function")
async def client(
    monkeypatch, device_registry, query_engine
) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client with in-memory services and a valid API token."""
    monkeypatch.setattr(settings, "api_tokens_str", API_TOKEN)
    fastapi_app.state.device_registry = device_registry
    fastapi_app.state.query_engine = query_engine

    transport = ASGITransport(app=fastapi_app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"Authorization": f"Bearer {API_TOKEN}"},
    ) as ac:
        yield ac
