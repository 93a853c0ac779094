"""AWS client construction shared by the collaborators."""

from typing import Any

import boto3
from botocore.config import Config

from .config import settings


def create_client(
    service_name: str, region_name: str | None = None, endpoint_url: str | None = None
) -> Any:
    """Create a boto3 client with standard-mode retries.

    Retries configured here are the transport's; the lifecycle engine never
    retries a call itself.
    """
    return boto3.client(
        service_name,
        region_name=region_name or settings.AWS_REGION,
        endpoint_url=endpoint_url,
        config=Config(retries={"max_attempts": settings.AWS_MAX_ATTEMPTS, "mode": "standard"}),
    )


def error_code(exc: Exception) -> str:
    """Return the AWS error code carried by a ClientError, or the exception name."""
    response = getattr(exc, "response", None)
    if isinstance(response, dict):
        return str(response.get("Error", {}).get("Code", "Unknown"))
    return type(exc).__name__
