"""Sensor readings endpoints: latest per sensor, raw range and hourly range.

Range bounds are epoch seconds. When omitted the range defaults to one month
ago through now. Multi-shard results are ordered oldest shard first and
newest first within each shard.
"""

from dataclasses import asdict

from fastapi import APIRouter, Query
from pydantic import BaseModel

from app.core.deps import Engine

router = APIRouter()


# ==================== Schemas ====================

class MeasurementSchema(BaseModel):
    name: str
    value: float
    unit: str


class SensorReadingResponse(BaseModel):
    """Latest reading for a sensor."""
    sensor_id: str
    account_id: str
    name: str
    state: str
    timestamp: int
    measurements: list[MeasurementSchema]


class LatestSensorReadingsResponse(BaseModel):
    """Latest reading per sensor, keyed by sensor ID."""
    sensors: dict[str, SensorReadingResponse]


class MinimalReadingResponse(BaseModel):
    timestamp: int
    measurements: list[MeasurementSchema]


class SensorReadingsResponse(BaseModel):
    account_id: str
    sensor_id: str
    readings: list[MinimalReadingResponse]


class MinMaxMeasurementSchema(BaseModel):
    name: str
    min: MeasurementSchema
    max: MeasurementSchema


class HourlyReadingResponse(BaseModel):
    timestamp: int
    measurements: list[MinMaxMeasurementSchema]


class HourlySensorReadingsResponse(BaseModel):
    account_id: str
    sensor_id: str
    readings: list[HourlyReadingResponse]


# ==================== Endpoints ====================

@router.get("/last_sensor_readings/account/{account_id}", response_model=LatestSensorReadingsResponse)
async def get_last_sensor_readings(account_id: str, engine: Engine, state: str = ""):
    """Latest reading of every sensor in an account.

    Sensors whose query fails are left out rather than failing the request.
    """
    readings = await engine.last_sensor_readings(account_id, state)
    return LatestSensorReadingsResponse.model_validate(
        {"sensors": {sensor_id: asdict(reading) for sensor_id, reading in readings.items()}}
    )


@router.get("/sensor_readings", response_model=SensorReadingsResponse)
async def query_sensor_readings(
    engine: Engine,
    account_id: str = Query(..., min_length=1),
    sensor_id: str = Query(..., min_length=1),
    start_time: str | None = None,
    end_time: str | None = None,
):
    """Raw readings for a sensor within a time range."""
    result = await engine.sensor_readings(account_id, sensor_id, start_time, end_time)
    return SensorReadingsResponse.model_validate(asdict(result))


@router.get("/hourly_sensor_readings", response_model=HourlySensorReadingsResponse)
async def query_hourly_sensor_readings(
    engine: Engine,
    account_id: str = Query(..., min_length=1),
    sensor_id: str = Query(..., min_length=1),
    start_time: str | None = None,
    end_time: str | None = None,
):
    """Hourly min/max rollups for a sensor within a time range."""
    result = await engine.hourly_sensor_readings(account_id, sensor_id, start_time, end_time)
    return HourlySensorReadingsResponse.model_validate(asdict(result))
