"""Sensor readings and hourly rollups returned by the query engine."""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class Measurement:
    """A named physical quantity captured by a sensor."""

    name: str
    value: float
    unit: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Measurement":
        return cls(
            name=str(data.get("name", "")),
            value=float(data.get("value", 0.0)),
            unit=str(data.get("unit", "")),
        )


@dataclass
class MinimalReading:
    """Reading without sensor/account identity; the query context carries it."""

    timestamp: int
    measurements: list[Measurement] = field(default_factory=list)


@dataclass
class SensorReading:
    """Latest reading for a sensor, denormalized with sensor name and state.

    A sensor without data in the current window has ``timestamp`` 0 and no
    measurements.
    """

    sensor_id: str
    account_id: str
    name: str
    state: str
    timestamp: int = 0
    measurements: list[Measurement] = field(default_factory=list)


@dataclass
class MinMaxMeasurement:
    """Minimum and maximum value of one measurement within an hour."""

    name: str
    min: Measurement
    max: Measurement

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MinMaxMeasurement":
        return cls(
            name=str(data.get("name", "")),
            min=Measurement.from_dict(data.get("min") or {}),
            max=Measurement.from_dict(data.get("max") or {}),
        )


@dataclass
class HourlyAggregate:
    """Hourly rollup: hour boundary timestamp plus min/max per measurement."""

    timestamp: int
    measurements: list[MinMaxMeasurement] = field(default_factory=list)


@dataclass
class ReadingsQueryResult:
    """Readings (raw or hourly) for one sensor of an account."""

    account_id: str
    sensor_id: str
    readings: list[Any] = field(default_factory=list)
