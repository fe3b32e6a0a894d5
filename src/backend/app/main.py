"""StreamMarker Data Access FastAPI Application Entry Point."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from app.api import router as api_router
from app.core.config import settings
from app.core.deps import async_session_factory, engine
from app.services.device_registry import DeviceRegistry
from app.services.dynamodb import get_dynamodb_resource
from app.services.dynamodb_source import ShardedMeasurementSource
from app.services.errors import (
    BackendUnavailableError,
    DataAccessError,
    MalformedInputError,
    NotFoundError,
    UnsupportedQueryError,
)
from app.services.geo_lookup import ExpiringCache, TimezoneLookup
from app.services.health_service import HealthStatus, health_service
from app.services.measurement_source import MeasurementSource
from app.services.query_engine import QueryEngine
from app.services.timeseries_source import TimeSeriesMeasurementSource

structlog.configure(
    wrapper_class=structlog.make_filtering_bound_logger(
        logging.getLevelName(settings.log_level.upper())
    ),
)

logger = structlog.get_logger()


def build_measurement_source(registry: DeviceRegistry, dynamodb) -> MeasurementSource:
    """Create the measurement source selected by configuration."""
    if settings.measurement_backend == "timescale":
        return TimeSeriesMeasurementSource(
            device_registry=registry,
            session_factory=async_session_factory,
            table_name=settings.measurements_table,
        )
    return ShardedMeasurementSource(
        device_registry=registry,
        dynamodb=dynamodb,
        readings_table_prefix=settings.readings_table_prefix,
        hourly_table_prefix=settings.hourly_readings_table_prefix,
        page_size=settings.shard_page_size,
        max_shards=settings.max_lookback_shards,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown events."""
    # Startup
    logger.info(
        "Starting data access service",
        environment=settings.environment,
        backend=settings.measurement_backend,
    )
    if not settings.api_tokens:
        logger.warning("No API tokens configured, all API requests will be rejected")

    geo_cache: ExpiringCache = ExpiringCache(
        ttl_seconds=settings.geo_cache_ttl_seconds,
        sweep_interval=settings.geo_cache_sweep_interval_seconds,
    )
    await geo_cache.start()

    timezone_lookup = TimezoneLookup(
        api_key=settings.google_api_key,
        cache=geo_cache,
        base_url=settings.google_timezone_url,
        timeout=settings.geo_request_timeout,
    )

    dynamodb = get_dynamodb_resource()
    registry = DeviceRegistry(
        dynamodb,
        geo_lookup=timezone_lookup,
        sensors_query_limit=settings.sensors_query_limit,
    )
    source = build_measurement_source(registry, dynamodb)

    app.state.dynamodb = dynamodb
    app.state.geo_cache = geo_cache
    app.state.timezone_lookup = timezone_lookup
    app.state.device_registry = registry
    app.state.query_engine = QueryEngine(source)
    app.state.measurement_session_factory = (
        async_session_factory if settings.measurement_backend == "timescale" else None
    )

    yield

    # Shutdown
    logger.info("Shutting down data access service")

    await geo_cache.stop()
    await timezone_lookup.close()
    await engine.dispose()


app = FastAPI(
    title="StreamMarker Data Access API",
    description="Sensor metadata and time-sharded telemetry queries",
    version="0.1.0",
    docs_url="/data-access/docs",
    redoc_url="/data-access/redoc",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Readings payloads are large and compress well
app.add_middleware(GZipMiddleware, minimum_size=1024)

# Include API routes
app.include_router(api_router, prefix="/data-access/v1")


# Error mapping

_ERROR_STATUS = (
    (NotFoundError, 404),
    (MalformedInputError, 400),
    (UnsupportedQueryError, 501),
    (BackendUnavailableError, 503),
)


@app.exception_handler(DataAccessError)
async def data_access_exception_handler(request: Request, exc: DataAccessError):
    status_code = 500
    for error_type, code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            status_code = code
            break

    if status_code >= 500:
        logger.error(
            "Data access failed",
            path=str(request.url.path),
            source=exc.source,
            error=str(exc),
        )
    else:
        logger.info("Request rejected", path=str(request.url.path), error=str(exc))
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc):
    # Convert errors to JSON-serializable format
    errors = []
    for error in exc.errors():
        err = {
            "loc": error.get("loc"),
            "msg": str(error.get("msg")),
            "type": error.get("type"),
        }
        errors.append(err)

    logger.error("Validation error",
                 path=str(request.url.path),
                 errors=errors,
                 body=str(exc.body)[:500] if hasattr(exc, 'body') else None)
    return JSONResponse(
        status_code=422,
        content={"detail": errors}
    )


# Set up Prometheus metrics instrumentation
_instrumentator = None
if settings.metrics_enabled:
    from app.core.metrics import setup_metrics, expose_metrics

    _instrumentator = setup_metrics(app)
    expose_metrics(app, _instrumentator)


@app.get("/health/live")
async def liveness_check() -> dict:
    """Liveness check - reports if application is running."""
    result = health_service.get_liveness()
    return result.to_dict()


async def _readiness(request: Request):
    state = request.app.state
    return await health_service.get_readiness(
        state.dynamodb,
        state.geo_cache,
        session_factory=state.measurement_session_factory,
    )


@app.get("/health/ready")
async def readiness_check(request: Request) -> dict:
    """Readiness check - reports if application can serve traffic."""
    result = await _readiness(request)
    return result.to_dict()


@app.get("/healthcheck")
async def legacy_health_check(request: Request):
    """Readiness check that fails with 500 when a backend is unreachable."""
    result = await _readiness(request)
    status_code = 500 if result.status == HealthStatus.UNHEALTHY else 200
    return JSONResponse(status_code=status_code, content=result.to_dict())
