"""DynamoDB access helpers shared by the device registry and the sharded source."""

import asyncio
from functools import lru_cache
from typing import Any, Callable

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from app.core.config import settings
from app.services.errors import BackendUnavailableError


@lru_cache(maxsize=1)
def get_dynamodb_resource():
    endpoint = settings.dynamodb_endpoint_url or None
    return boto3.resource(
        "dynamodb",
        endpoint_url=endpoint,
        region_name=settings.aws_region,
    )


def error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


def is_missing_table(exc: Exception) -> bool:
    return isinstance(exc, ClientError) and error_code(exc) == "ResourceNotFoundException"


def is_failed_condition(exc: Exception) -> bool:
    return isinstance(exc, ClientError) and error_code(exc) == "ConditionalCheckFailedException"


async def call_dynamodb(operation: Callable[..., Any], **kwargs: Any) -> Any:
    """Run a blocking boto3 call off the event loop.

    ``ClientError`` propagates unchanged so callers can inspect the error code;
    transport-level failures are raised as ``BackendUnavailableError``.
    """
    try:
        return await asyncio.to_thread(operation, **kwargs)
    except BotoCoreError as e:
        raise BackendUnavailableError(
            f"DynamoDB request failed: {e}", source="dynamodb", original_error=e
        ) from e


def backend_error(exc: ClientError, action: str) -> BackendUnavailableError:
    return BackendUnavailableError(
        f"DynamoDB error while {action}: {error_code(exc) or exc}",
        source="dynamodb",
        original_error=exc,
    )
