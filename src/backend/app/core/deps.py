"""Dependency injection utilities for FastAPI."""

from typing import Annotated

import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from app.core.config import settings
from app.core.security import verify_api_token
from app.services.device_registry import DeviceRegistry
from app.services.query_engine import QueryEngine

logger = structlog.get_logger()

# TimescaleDB engine and session factory (connections are opened lazily)
engine = create_async_engine(settings.database_url, echo=settings.debug)
async_session_factory = async_sessionmaker(engine, expire_on_commit=False)

# Security schemes: bearer token, or the legacy X-API-KEY header
bearer = HTTPBearer(auto_error=False)
api_key_header = APIKeyHeader(name="X-API-KEY", auto_error=False)


async def require_api_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer)],
    api_key: Annotated[str | None, Depends(api_key_header)],
) -> str:
    """Reject requests that do not carry an allowlisted API token."""
    token = credentials.credentials if credentials is not None else api_key
    if not verify_api_token(token, settings.api_tokens):
        logger.info("Rejected request without a valid API token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return token


def get_device_registry(request: Request) -> DeviceRegistry:
    """Device registry created at startup."""
    return request.app.state.device_registry


def get_query_engine(request: Request) -> QueryEngine:
    """Query engine created at startup."""
    return request.app.state.query_engine


# Type aliases for cleaner dependency injection
Registry = Annotated[DeviceRegistry, Depends(get_device_registry)]
Engine = Annotated[QueryEngine, Depends(get_query_engine)]
