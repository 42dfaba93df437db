"""Shared boto3 helpers: client construction and error classification."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

logger = logging.getLogger(__name__)

TRANSIENT_ERROR_CODES = {
    "Throttling",
    "ThrottlingException",
    "TooManyRequestsException",
    "SlowDown",
    "RequestTimeout",
    "RequestLimitExceeded",
    "InternalError",
    "InternalFailure",
    "InternalServerException",
    "ServiceUnavailable",
    "ServiceUnavailableException",
}


def error_code(exc: BaseException) -> Optional[str]:
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code")
    return None


def is_transient_aws_error(exc: BaseException) -> bool:
    """True for connection failures, timeouts, throttling and 5xx responses."""
    if isinstance(exc, (EndpointConnectionError, ConnectionClosedError, ConnectTimeoutError, ReadTimeoutError)):
        return True
    if isinstance(exc, ClientError):
        if error_code(exc) in TRANSIENT_ERROR_CODES:
            return True
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        return isinstance(status, int) and status >= 500
    return False


def build_client(service: str, config: Optional[Dict[str, Any]] = None) -> Any:
    """Create a boto3 client from a connection section of the export config.

    Recognized keys:
        - region: AWS region name
        - endpoint_url_env: Environment variable holding a custom endpoint (MinIO, localstack)
        - access_key_env / secret_key_env: Environment variables holding credentials
        - max_attempts: botocore retry attempts (the client's own retry layer)

    Without explicit credentials the default AWS credential chain is used.
    """
    cfg = config or {}
    endpoint_env = cfg.get("endpoint_url_env")
    access_key_env = cfg.get("access_key_env", "AWS_ACCESS_KEY_ID")
    secret_key_env = cfg.get("secret_key_env", "AWS_SECRET_ACCESS_KEY")

    endpoint_url = os.environ.get(endpoint_env) if endpoint_env else None
    access_key = os.environ.get(access_key_env)
    secret_key = os.environ.get(secret_key_env)

    client_kwargs: Dict[str, Any] = {
        "config": Config(retries={"max_attempts": int(cfg.get("max_attempts", 5)), "mode": "standard"}),
    }
    if endpoint_url:
        client_kwargs["endpoint_url"] = endpoint_url
    if cfg.get("region"):
        client_kwargs["region_name"] = cfg["region"]
    if access_key and secret_key:
        client_kwargs["aws_access_key_id"] = access_key
        client_kwargs["aws_secret_access_key"] = secret_key

    client = boto3.client(service, **client_kwargs)
    logger.debug(f"Created {service} client with endpoint: {endpoint_url or 'default'}")
    return client
