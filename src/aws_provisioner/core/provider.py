"""AWS Provider - connection configuration and the remote API boundary."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping  # noqa: TC003 - pydantic resolves these
from functools import cached_property
from typing import Any, Self

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)
from pydantic import BaseModel, ConfigDict, PrivateAttr

from aws_provisioner.engine.errors import RemoteError, RemoteFatalError, RemoteTransientError
from aws_provisioner.engine.retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)

_TRANSIENT_CODES: frozenset[str] = frozenset(
    {
        "Throttling",
        "ThrottlingException",
        "ThrottledException",
        "RequestLimitExceeded",
        "TooManyRequestsException",
        "RequestThrottled",
        "ServiceUnavailable",
        "ServiceUnavailableException",
        "InternalError",
        "InternalFailure",
        "InternalServerError",
        "ServerException",
        "RequestTimeout",
        "RequestTimeoutException",
        "PriorRequestNotComplete",
        "DependencyViolation",
        "ResourceInUse",
        "ResourceInUseException",
        "IncorrectState",
        "ConcurrentModification",
    }
)

_NOT_FOUND_CODES: frozenset[str] = frozenset(
    {
        "NoSuchEntity",
        "NotFoundException",
        "RepositoryNotFoundException",
        "ClusterNotFoundException",
        "ServiceNotFoundException",
        "LoadBalancerNotFound",
        "TargetGroupNotFound",
        "ListenerNotFound",
    }
)

# Eventual consistency surfaced as a validation error (fresh IAM roles).
_TRANSIENT_MESSAGES: tuple[str, ...] = ("Unable to assume role",)

_READ_ONLY_PREFIXES: tuple[str, ...] = ("describe_", "list_", "get_")


def is_not_found(code: str | None) -> bool:
    """True for error codes meaning the addressed object does not exist."""
    if code is None:
        return False
    return code.endswith(".NotFound") or code in _NOT_FOUND_CODES


def translate_client_error(exc: ClientError, operation: str) -> RemoteError:
    """Classify a botocore ``ClientError`` as transient or fatal.

    Not-found codes count as transient: right after a create, AWS may not
    return the new object yet (read-after-write delay).
    """
    error = exc.response.get("Error", {})
    code = error.get("Code", "Unknown")
    message = error.get("Message", str(exc))
    status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode") or 0
    text = f"{operation}: {code}: {message}"

    if (
        code in _TRANSIENT_CODES
        or is_not_found(code)
        or status >= 500
        or any(m in message for m in _TRANSIENT_MESSAGES)
    ):
        return RemoteTransientError(text, code=code)
    return RemoteFatalError(text, code=code)


def translate_botocore_error(exc: BotoCoreError, operation: str) -> RemoteError:
    """Classify connection-level failures.

    A read timeout on a mutating call is fatal: the request may have been
    applied, so repeating it could create a duplicate.
    """
    text = f"{operation}: {exc}"
    if isinstance(exc, EndpointConnectionError | ConnectTimeoutError):
        return RemoteTransientError(text)
    if isinstance(exc, ReadTimeoutError | ConnectionClosedError) and operation.startswith(
        _READ_ONLY_PREFIXES
    ):
        return RemoteTransientError(text)
    return RemoteFatalError(text)


class AWSProvider(BaseModel):
    """Connection configuration for an AWS account/region.

    For normal use, provide region and optionally a named profile; credentials
    come from the standard boto3 chain.  Tests inject clients with
    :meth:`from_clients`.

    Examples:
        provider = AWSProvider(region="eu-west-1", profile="staging")

        # With stub clients
        provider = AWSProvider.from_clients({"ec2": MagicMock()})
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    region: str | None = None
    profile: str | None = None
    endpoint_url: str | None = None
    connect_timeout: int = 10
    read_timeout: int = 60
    retry: RetryPolicy = RetryPolicy()

    # Injected clients (for testing)
    _injected_clients: dict[str, Any] | None = None
    _clients: dict[str, Any] = PrivateAttr(default_factory=dict)
    _client_lock: threading.Lock = PrivateAttr(default_factory=threading.Lock)
    _sleep: Callable[[float], None] = PrivateAttr(default=time.sleep)

    @classmethod
    def from_clients(
        cls,
        clients: Mapping[str, Any],
        *,
        retry: RetryPolicy | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> Self:
        """Create a provider with pre-built service clients keyed by service name."""
        provider = cls.model_construct(retry=retry or RetryPolicy())
        provider._injected_clients = dict(clients)
        if sleep is not None:
            provider._sleep = sleep
        return provider

    @cached_property
    def session(self) -> boto3.session.Session:
        return boto3.session.Session(profile_name=self.profile, region_name=self.region)

    def client(self, service: str) -> Any:
        """Get (and cache) a boto3 client for *service*."""
        if self._injected_clients is not None:
            try:
                return self._injected_clients[service]
            except KeyError as e:
                raise ValueError(f"No client injected for service '{service}'") from e

        with self._client_lock:
            if service not in self._clients:
                config = Config(
                    connect_timeout=self.connect_timeout,
                    read_timeout=self.read_timeout,
                    # Retrying is done by ``call`` so transient errors are classified once.
                    retries={"max_attempts": 1, "mode": "standard"},
                )
                client_kwargs: dict[str, Any] = {"config": config}
                if self.endpoint_url:
                    client_kwargs["endpoint_url"] = self.endpoint_url
                logger.debug("Creating %s client (region=%s)", service, self.region)
                self._clients[service] = self.session.client(service, **client_kwargs)
            return self._clients[service]

    def call(
        self,
        service: str,
        operation: str,
        /,
        *,
        missing_ok: bool = False,
        **params: Any,
    ) -> dict[str, Any] | None:
        """Invoke ``client(service).<operation>(**params)`` with retry.

        With *missing_ok*, a not-found error returns ``None`` immediately
        instead of being retried. *service* and *operation* are positional-only
        so API parameters with the same names (ECS ``service=``) pass through.

        Raises:
            RemoteFatalError: Non-retryable failure or retries exhausted.
        """
        method = getattr(self.client(service), operation)
        missing = object()

        def _once() -> Any:
            try:
                return method(**params)
            except ClientError as exc:
                err = translate_client_error(exc, operation)
                if missing_ok and is_not_found(err.code):
                    return missing
                raise err from exc
            except BotoCoreError as exc:
                raise translate_botocore_error(exc, operation) from exc

        result = call_with_retry(
            _once, self.retry, description=f"{service}.{operation}", sleep=self._sleep
        )
        return None if result is missing else result
