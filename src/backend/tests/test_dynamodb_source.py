"""Tests for the month-sharded DynamoDB measurement source."""

import pytest

from app.models.reading import Measurement, MinMaxMeasurement
from app.services.dynamodb_source import ShardedMeasurementSource, decode_record
from app.services.errors import BackendUnavailableError
from app.services.measurement_source import QueryKind
from app.services.shard_resolver import QueryWindow
from conftest import FIXED_NOW, client_error, describe_key_condition, reading_item, ts

TEMPERATURE = {"name": "temperature", "value": 21.5, "unit": "Celsius"}
HUMIDITY = {"name": "humidity", "value": 40.0, "unit": "%"}


class TestPlanWindows:
    """Tests for shard planning per query kind."""

    def test_raw_uses_readings_prefix(self, sharded_source):
        windows = sharded_source.plan_windows(ts(2024, 5, 2), ts(2024, 5, 3), QueryKind.RAW)
        assert windows == [QueryWindow("sensor_readings_2024-05", ts(2024, 5, 2), ts(2024, 5, 3))]

    def test_hourly_uses_hourly_prefix(self, sharded_source):
        windows = sharded_source.plan_windows(ts(2024, 5, 2), ts(2024, 5, 3), QueryKind.HOURLY)
        assert windows[0].table_name == "hourly_sensor_readings_2024-05"

    def test_custom_prefix_and_cap(self, device_registry, dynamodb):
        source = ShardedMeasurementSource(
            device_registry, dynamodb, readings_table_prefix="readings", max_shards=1
        )
        windows = source.plan_windows(ts(2024, 3, 2), ts(2024, 5, 3), QueryKind.RAW)
        assert [w.table_name for w in windows] == ["readings_2024-03"]


class TestQueryRange:
    """Tests for raw range queries across shards."""

    @pytest.mark.asyncio
    async def test_three_month_range_issues_three_shard_queries(self, dynamodb, sharded_source):
        start = ts(2024, 3, 15, 12, 0)
        end = ts(2024, 5, 20, 6, 0)
        for month, day in ((3, 20), (4, 10), (5, 5)):
            dynamodb.Table(f"sensor_readings_2024-0{month}").query.return_value = {
                "Items": [reading_item("A1", "S1", ts(2024, month, day), [TEMPERATURE])]
            }

        readings = await sharded_source.query_range("A1", "S1", start, end)

        expected_starts = {
            "sensor_readings_2024-03": start,
            "sensor_readings_2024-04": ts(2024, 4, 1),
            "sensor_readings_2024-05": ts(2024, 5, 1),
        }
        assert set(dynamodb.tables) == set(expected_starts)
        for table_name, effective_start in expected_starts.items():
            query = dynamodb.Table(table_name).query
            query.assert_called_once()
            kwargs = query.call_args.kwargs
            assert describe_key_condition(kwargs["KeyConditionExpression"]) == {
                "id": ("=", "A1:S1"),
                "timestamp": ("BETWEEN", effective_start, end),
            }
            assert kwargs["ScanIndexForward"] is False
            assert kwargs["Limit"] == 10000

        assert [r.timestamp for r in readings] == [ts(2024, 3, 20), ts(2024, 4, 10), ts(2024, 5, 5)]
        assert readings[0].measurements == [Measurement("temperature", 21.5, "Celsius")]

    @pytest.mark.asyncio
    async def test_order_within_and_across_shards(self, dynamodb, sharded_source):
        """Oldest shard first; each shard's page stays newest first."""
        dynamodb.Table("sensor_readings_2024-04").query.return_value = {
            "Items": [
                reading_item("A1", "S1", ts(2024, 4, 30), [HUMIDITY]),
                reading_item("A1", "S1", ts(2024, 4, 2), [HUMIDITY]),
            ]
        }
        dynamodb.Table("sensor_readings_2024-05").query.return_value = {
            "Items": [
                reading_item("A1", "S1", ts(2024, 5, 19), [HUMIDITY]),
                reading_item("A1", "S1", ts(2024, 5, 1), [HUMIDITY]),
            ]
        }

        readings = await sharded_source.query_range("A1", "S1", ts(2024, 4, 1), ts(2024, 5, 20))

        assert [r.timestamp for r in readings] == [
            ts(2024, 4, 30),
            ts(2024, 4, 2),
            ts(2024, 5, 19),
            ts(2024, 5, 1),
        ]

    @pytest.mark.asyncio
    async def test_end_before_start_issues_no_queries(self, dynamodb, sharded_source):
        readings = await sharded_source.query_range("A1", "S1", ts(2024, 5, 20), ts(2024, 5, 1))

        assert readings == []
        assert dynamodb.tables == {}

    @pytest.mark.asyncio
    async def test_missing_shard_table_reads_as_empty(self, dynamodb, sharded_source):
        dynamodb.Table("sensor_readings_2024-04").query.side_effect = client_error(
            "ResourceNotFoundException"
        )
        dynamodb.Table("sensor_readings_2024-05").query.return_value = {
            "Items": [reading_item("A1", "S1", ts(2024, 5, 2), [TEMPERATURE])]
        }

        readings = await sharded_source.query_range("A1", "S1", ts(2024, 4, 10), ts(2024, 5, 20))

        assert [r.timestamp for r in readings] == [ts(2024, 5, 2)]

    @pytest.mark.asyncio
    async def test_shard_failure_aborts_query(self, dynamodb, sharded_source):
        dynamodb.Table("sensor_readings_2024-04").query.side_effect = client_error(
            "ProvisionedThroughputExceededException"
        )

        with pytest.raises(BackendUnavailableError, match="sensor_readings_2024-04"):
            await sharded_source.query_range("A1", "S1", ts(2024, 4, 10), ts(2024, 5, 20))

        # Sub-queries are sequential; nothing after the failing shard runs
        dynamodb.Table("sensor_readings_2024-05").query.assert_not_called()

    @pytest.mark.asyncio
    async def test_malformed_measurements_payload(self, dynamodb, sharded_source):
        item = reading_item("A1", "S1", ts(2024, 5, 2), [])
        item["measurements"] = "{not json"
        dynamodb.Table("sensor_readings_2024-05").query.return_value = {"Items": [item]}

        with pytest.raises(BackendUnavailableError, match="Malformed reading record"):
            await sharded_source.query_range("A1", "S1", ts(2024, 5, 1), ts(2024, 5, 20))

    @pytest.mark.asyncio
    async def test_non_numeric_measurement_value(self, dynamodb, sharded_source):
        bad = {"name": "temperature", "value": "n/a", "unit": "Celsius"}
        dynamodb.Table("sensor_readings_2024-05").query.return_value = {
            "Items": [reading_item("A1", "S1", ts(2024, 5, 2), [bad])]
        }

        with pytest.raises(BackendUnavailableError, match="sensor_readings_2024-05"):
            await sharded_source.query_range("A1", "S1", ts(2024, 5, 1), ts(2024, 5, 20))


class TestQueryHourlyRange:
    """Tests for hourly rollup queries."""

    @pytest.mark.asyncio
    async def test_hourly_rollups(self, dynamodb, sharded_source):
        rollup = {
            "name": "temperature",
            "min": {"name": "temperature", "value": 18.0, "unit": "Celsius"},
            "max": {"name": "temperature", "value": 24.5, "unit": "Celsius"},
        }
        dynamodb.Table("hourly_sensor_readings_2024-05").query.return_value = {
            "Items": [reading_item("A1", "S1", ts(2024, 5, 10, 14), [rollup])]
        }

        aggregates = await sharded_source.query_hourly_range(
            "A1", "S1", ts(2024, 5, 10), ts(2024, 5, 11)
        )

        assert len(aggregates) == 1
        assert aggregates[0].timestamp == ts(2024, 5, 10, 14)
        assert aggregates[0].measurements == [
            MinMaxMeasurement(
                name="temperature",
                min=Measurement("temperature", 18.0, "Celsius"),
                max=Measurement("temperature", 24.5, "Celsius"),
            )
        ]
        assert "sensor_readings_2024-05" not in dynamodb.tables

    @pytest.mark.asyncio
    async def test_hourly_end_before_start(self, dynamodb, sharded_source):
        assert await sharded_source.query_hourly_range("A1", "S1", 10, 5) == []
        assert dynamodb.tables == {}


class TestLatestReadings:
    """Tests for latest readings per sensor."""

    @pytest.mark.asyncio
    async def test_latest_reading_reads_current_month_only(self, dynamodb, sharded_source):
        dynamodb.put_sensor("A1", "S1", name="Greenhouse")
        dynamodb.Table("sensor_readings_2024-05").query.return_value = {
            "Items": [reading_item("A1", "S1", ts(2024, 5, 19), [TEMPERATURE, HUMIDITY])]
        }

        readings = await sharded_source.latest_readings("A1")

        reading = readings["S1"]
        assert reading.sensor_id == "S1"
        assert reading.account_id == "A1"
        assert reading.name == "Greenhouse"
        assert reading.state == "active"
        assert reading.timestamp == ts(2024, 5, 19)
        assert [m.name for m in reading.measurements] == ["temperature", "humidity"]

        kwargs = dynamodb.Table("sensor_readings_2024-05").query.call_args.kwargs
        assert describe_key_condition(kwargs["KeyConditionExpression"]) == {"id": ("=", "A1:S1")}
        assert kwargs["Limit"] == 1
        assert kwargs["ScanIndexForward"] is False
        assert "sensor_readings_2024-04" not in dynamodb.tables

    @pytest.mark.asyncio
    async def test_sensor_without_current_data_gets_empty_reading(self, dynamodb, sharded_source):
        dynamodb.put_sensor("A1", "S1")

        readings = await sharded_source.latest_readings("A1")

        assert readings["S1"].timestamp == 0
        assert readings["S1"].measurements == []

    @pytest.mark.asyncio
    async def test_failing_sensor_is_omitted(self, dynamodb, sharded_source):
        """S1 succeeds, S2 fails: the mapping holds S1 only and the call succeeds."""
        dynamodb.put_sensor("A1", "S1", state="active")
        dynamodb.put_sensor("A1", "S2", state="disabled")

        def query(**kwargs):
            key = describe_key_condition(kwargs["KeyConditionExpression"])["id"][1]
            if key == "A1:S2":
                raise client_error("InternalServerError")
            return {"Items": [reading_item("A1", "S1", ts(2024, 5, 19), [TEMPERATURE])]}

        dynamodb.Table("sensor_readings_2024-05").query.side_effect = query

        readings = await sharded_source.latest_readings("A1")

        assert list(readings) == ["S1"]
        assert readings["S1"].timestamp == ts(2024, 5, 19)

    @pytest.mark.asyncio
    async def test_sensor_with_unreadable_record_is_omitted(self, dynamodb, sharded_source):
        """A bad stored record for S2 does not hide S1's reading."""
        dynamodb.put_sensor("A1", "S1")
        dynamodb.put_sensor("A1", "S2")

        def query(**kwargs):
            key = describe_key_condition(kwargs["KeyConditionExpression"])["id"][1]
            if key == "A1:S2":
                bad = {"name": "temperature", "value": "n/a", "unit": "Celsius"}
                return {"Items": [reading_item("A1", "S2", ts(2024, 5, 18), [bad])]}
            return {"Items": [reading_item("A1", "S1", ts(2024, 5, 19), [TEMPERATURE])]}

        dynamodb.Table("sensor_readings_2024-05").query.side_effect = query

        readings = await sharded_source.latest_readings("A1")

        assert list(readings) == ["S1"]
        assert readings["S1"].measurements == [Measurement("temperature", 21.5, "Celsius")]

    @pytest.mark.asyncio
    async def test_state_filter(self, dynamodb, sharded_source):
        dynamodb.put_sensor("A1", "S1", state="active")
        dynamodb.put_sensor("A1", "S2", state="disabled")

        readings = await sharded_source.latest_readings("A1", "disabled")

        assert list(readings) == ["S2"]

    @pytest.mark.asyncio
    async def test_sensor_listing_failure_propagates(self, dynamodb, sharded_source):
        dynamodb.Table("sensors").query.side_effect = client_error("InternalServerError")

        with pytest.raises(BackendUnavailableError):
            await sharded_source.latest_readings("A1")

    @pytest.mark.asyncio
    async def test_latest_does_not_geocode(self, dynamodb, sharded_source, timezone_lookup):
        dynamodb.put_sensor("A1", "S1", latitude=1.0, longitude=2.0)

        await sharded_source.latest_readings("A1")

        timezone_lookup.find_timezone_for_location.assert_not_called()


class TestDecodeRecord:
    """Tests for the stored record decoder."""

    def test_decodes_readings(self):
        item = reading_item("A1", "S1", 1714521600, [TEMPERATURE])
        assert decode_record(item, "t", Measurement) == (
            1714521600,
            [Measurement("temperature", 21.5, "Celsius")],
        )

    def test_null_payload_is_empty(self):
        assert decode_record({"timestamp": 5, "measurements": "null"}, "t", Measurement) == (5, [])

    @pytest.mark.parametrize(
        "item",
        [
            {"timestamp": 1},
            {"measurements": "[]"},
            {"timestamp": 1, "measurements": '{"name": "t", "value": 1, "unit": "C"}'},
            {"timestamp": 1, "measurements": '[{"name": "t", "value": "n/a", "unit": "C"}]'},
            {"timestamp": 1, "measurements": '["t"]'},
            {"timestamp": "soon", "measurements": "[]"},
        ],
        ids=["no-payload", "no-timestamp", "object-payload", "text-value", "bare-string", "bad-timestamp"],
    )
    def test_malformed_records(self, item):
        with pytest.raises(BackendUnavailableError, match="Malformed reading record in t"):
            decode_record(item, "t", Measurement)

    def test_malformed_rollup(self):
        item = {"timestamp": 1, "measurements": '[{"name": "t", "min": "low", "max": {}}]'}
        with pytest.raises(BackendUnavailableError):
            decode_record(item, "t", MinMaxMeasurement)


def test_fixed_clock_month():
    """The fixture clock sits in May 2024, which the latest-reading tests rely on."""
    assert FIXED_NOW.strftime("%Y-%m") == "2024-05"