"""Health check service for the data access API."""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog
from botocore.exceptions import BotoCoreError, ClientError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.metrics import set_geo_cache_entries
from app.services.device_registry import SENSORS_TABLE
from app.services.dynamodb import call_dynamodb
from app.services.errors import BackendUnavailableError
from app.services.geo_lookup import ExpiringCache

logger = structlog.get_logger()


class HealthStatus(str, Enum):
    """Health check status values."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    """Health status of a single component."""

    name: str
    status: HealthStatus
    message: str | None = None
    latency_ms: float | None = None


@dataclass
class SystemHealth:
    """Overall system health status."""

    status: HealthStatus
    version: str
    components: list[ComponentHealth]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON response."""
        return {
            "status": self.status.value,
            "version": self.version,
            "components": [
                {
                    "name": c.name,
                    "status": c.status.value,
                    "message": c.message,
                    "latency_ms": c.latency_ms,
                }
                for c in self.components
            ],
        }


class HealthService:
    """Service for checking health of the storage backends and caches."""

    VERSION = "0.1.0"

    async def check_key_value_store(self, dynamodb) -> ComponentHealth:
        """Check DynamoDB connectivity by describing the sensors table."""
        start = time.perf_counter()
        try:
            await call_dynamodb(dynamodb.meta.client.describe_table, TableName=SENSORS_TABLE)
            latency = (time.perf_counter() - start) * 1000

            return ComponentHealth(
                name="dynamodb",
                status=HealthStatus.HEALTHY,
                message="DynamoDB responding",
                latency_ms=round(latency, 2),
            )
        except (ClientError, BotoCoreError, BackendUnavailableError) as e:
            latency = (time.perf_counter() - start) * 1000
            logger.error("DynamoDB health check failed", error=str(e))
            return ComponentHealth(
                name="dynamodb",
                status=HealthStatus.UNHEALTHY,
                message=f"Connection failed: {str(e)[:100]}",
                latency_ms=round(latency, 2),
            )

    async def check_time_series_store(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> ComponentHealth:
        """Check TimescaleDB connectivity and response time."""
        start = time.perf_counter()
        try:
            async with session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()
            latency = (time.perf_counter() - start) * 1000

            return ComponentHealth(
                name="timescale",
                status=HealthStatus.HEALTHY,
                message="TimescaleDB responding",
                latency_ms=round(latency, 2),
            )
        except (SQLAlchemyError, OSError) as e:
            latency = (time.perf_counter() - start) * 1000
            logger.error("TimescaleDB health check failed", error=str(e))
            return ComponentHealth(
                name="timescale",
                status=HealthStatus.UNHEALTHY,
                message=f"Connection failed: {str(e)[:100]}",
                latency_ms=round(latency, 2),
            )

    def check_geo_cache(self, cache: ExpiringCache) -> ComponentHealth:
        """Report timezone cache size. Never unhealthy: enrichment is optional."""
        entries = len(cache)
        set_geo_cache_entries(entries)
        return ComponentHealth(
            name="geo_cache",
            status=HealthStatus.HEALTHY,
            message=f"entries={entries}",
        )

    async def get_readiness(
        self,
        dynamodb,
        cache: ExpiringCache,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> SystemHealth:
        """Get full readiness status including all dependencies.

        The time-series store is only checked when it backs the readings API.
        """
        components = [await self.check_key_value_store(dynamodb)]

        if session_factory is not None:
            components.append(await self.check_time_series_store(session_factory))

        components.append(self.check_geo_cache(cache))

        statuses = [c.status for c in components]
        if HealthStatus.UNHEALTHY in statuses:
            overall_status = HealthStatus.UNHEALTHY
        elif HealthStatus.DEGRADED in statuses:
            overall_status = HealthStatus.DEGRADED
        else:
            overall_status = HealthStatus.HEALTHY

        return SystemHealth(
            status=overall_status,
            version=self.VERSION,
            components=components,
        )

    def get_liveness(self) -> SystemHealth:
        """Get basic liveness status (application is running)."""
        return SystemHealth(
            status=HealthStatus.HEALTHY,
            version=self.VERSION,
            components=[
                ComponentHealth(
                    name="application",
                    status=HealthStatus.HEALTHY,
                    message="Application is running",
                )
            ],
        )


# Singleton instance
health_service = HealthService()
