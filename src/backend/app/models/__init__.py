"""StreamMarker domain models."""

from app.models.device import (
    Account,
    Relay,
    Sensor,
    DEFAULT_SAMPLE_FREQUENCY,
    MUTABLE_SENSOR_FIELDS,
    reading_key,
)
from app.models.reading import (
    Measurement,
    MinimalReading,
    SensorReading,
    MinMaxMeasurement,
    HourlyAggregate,
    ReadingsQueryResult,
)

__all__ = [
    "Account",
    "Relay",
    "Sensor",
    "DEFAULT_SAMPLE_FREQUENCY",
    "MUTABLE_SENSOR_FIELDS",
    "reading_key",
    "Measurement",
    "MinimalReading",
    "SensorReading",
    "MinMaxMeasurement",
    "HourlyAggregate",
    "ReadingsQueryResult",
]
