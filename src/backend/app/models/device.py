"""Device metadata: accounts, relays and sensors stored in the key-value store."""

from dataclasses import dataclass

DEFAULT_SAMPLE_FREQUENCY = 1

# Sensor fields a client may change through the registry
MUTABLE_SENSOR_FIELDS = (
    "name",
    "state",
    "location_enabled",
    "latitude",
    "longitude",
    "sample_frequency",
)


@dataclass
class Account:
    """Account owning relays and sensors. Read-only."""

    id: str
    name: str
    state: str


@dataclass
class Relay:
    """Relay forwarding sensor traffic for an account. Read-only."""

    id: str
    account_id: str
    name: str
    state: str


@dataclass
class Sensor:
    """Sensor capable of producing measurements.

    ``timezone_id`` and ``timezone_name`` are derived from the coordinates on
    every read and are never persisted.
    """

    id: str
    account_id: str
    name: str
    state: str
    location_enabled: bool = False
    latitude: float | None = None
    longitude: float | None = None
    timezone_id: str | None = None
    timezone_name: str | None = None
    sample_frequency: int = DEFAULT_SAMPLE_FREQUENCY

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def reading_key(self) -> str:
        """Partition key of this sensor's records in the readings shards."""
        return reading_key(self.account_id, self.id)


def reading_key(account_id: str, sensor_id: str) -> str:
    """Composite partition key used by the readings tables."""
    return f"{account_id}:{sensor_id}"
