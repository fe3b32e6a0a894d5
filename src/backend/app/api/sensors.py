"""Device metadata endpoints: sensors, accounts and relays."""

from dataclasses import asdict

from fastapi import APIRouter
from pydantic import BaseModel, ConfigDict, Field

from app.core.deps import Registry
from app.models.device import Sensor

router = APIRouter()


# ==================== Schemas ====================

class SensorResponse(BaseModel):
    """Sensor record; coordinates and timezone are omitted when absent."""
    id: str
    account_id: str
    name: str
    state: str
    location_enabled: bool = False
    latitude: float | None = None
    longitude: float | None = None
    timezone_id: str | None = None
    timezone_name: str | None = None
    sample_frequency: int = 1


class SensorUpdate(BaseModel):
    """Partial sensor update. Only mutable fields are accepted."""
    model_config = ConfigDict(extra="ignore")

    name: str | None = Field(None, min_length=1, max_length=200)
    state: str | None = Field(None, min_length=1, max_length=50)
    location_enabled: bool | None = None
    latitude: float | None = Field(None, ge=-90, le=90)
    longitude: float | None = Field(None, ge=-180, le=180)
    sample_frequency: int | None = Field(None, ge=1)


class SensorsResponse(BaseModel):
    """Sensors of an account."""
    sensors: list[SensorResponse]


class AccountResponse(BaseModel):
    id: str
    name: str
    state: str


class RelayResponse(BaseModel):
    id: str
    account_id: str
    name: str
    state: str


def sensor_to_response(sensor: Sensor) -> SensorResponse:
    """Convert Sensor model to response."""
    return SensorResponse.model_validate(asdict(sensor))


# ==================== Endpoints ====================

@router.get("/sensor/{sensor_id}", response_model=SensorResponse, response_model_exclude_none=True)
async def get_sensor(sensor_id: str, registry: Registry):
    """Get a sensor, with its timezone when it has coordinates."""
    sensor = await registry.get_sensor(sensor_id)
    return sensor_to_response(sensor)


@router.put("/sensor/{sensor_id}", response_model=SensorResponse, response_model_exclude_none=True)
async def update_sensor(sensor_id: str, payload: SensorUpdate, registry: Registry):
    """Update the mutable fields of a sensor and return the stored record."""
    sensor = await registry.update_sensor(sensor_id, payload.model_dump(exclude_unset=True))
    return sensor_to_response(sensor)


@router.get(
    "/sensors/account/{account_id}",
    response_model=SensorsResponse,
    response_model_exclude_none=True,
)
async def list_account_sensors(account_id: str, registry: Registry, state: str = ""):
    """List the sensors of an account, optionally only those in ``state``."""
    sensors = await registry.get_sensors(account_id, state)
    return SensorsResponse(sensors=[sensor_to_response(s) for s in sensors])


@router.get("/account/{account_id}", response_model=AccountResponse)
async def get_account(account_id: str, registry: Registry):
    account = await registry.get_account(account_id)
    return AccountResponse.model_validate(asdict(account))


@router.get("/relay/{relay_id}", response_model=RelayResponse)
async def get_relay(relay_id: str, registry: Registry):
    relay = await registry.get_relay(relay_id)
    return RelayResponse.model_validate(asdict(relay))
