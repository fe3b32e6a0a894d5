"""StreamMarker Services Module."""

from app.services.errors import (
    DataAccessError,
    NotFoundError,
    MalformedInputError,
    BackendUnavailableError,
    UnsupportedQueryError,
)
from app.services.geo_lookup import ExpiringCache, TimezoneLookup, TimezoneInfo, GeoLookupError
from app.services.device_registry import DeviceRegistry
from app.services.shard_resolver import QueryWindow, resolve_shards
from app.services.result_merger import merge_pages
from app.services.measurement_source import MeasurementSource, QueryKind
from app.services.dynamodb_source import ShardedMeasurementSource
from app.services.timeseries_source import TimeSeriesMeasurementSource, classify_column
from app.services.query_engine import QueryEngine
from app.services.health_service import health_service, HealthService

__all__ = [
    "DataAccessError",
    "NotFoundError",
    "MalformedInputError",
    "BackendUnavailableError",
    "UnsupportedQueryError",
    "ExpiringCache",
    "TimezoneLookup",
    "TimezoneInfo",
    "GeoLookupError",
    "DeviceRegistry",
    "QueryWindow",
    "resolve_shards",
    "merge_pages",
    "MeasurementSource",
    "QueryKind",
    "ShardedMeasurementSource",
    "TimeSeriesMeasurementSource",
    "classify_column",
    "QueryEngine",
    "health_service",
    "HealthService",
]
