"""Bounded exponential backoff for remote calls."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from aws_provisioner.engine.errors import RemoteFatalError, RemoteTransientError

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy(BaseModel):
    """How often and how patiently a transient failure is retried."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    max_attempts: int = Field(default=5, ge=1)
    base_delay: float = Field(default=1.0, ge=0)
    factor: float = Field(default=2.0, ge=1)
    max_delay: float = Field(default=20.0, ge=0)

    def delay(self, attempt: int) -> float:
        """Seconds to wait after the *attempt*-th failure (1-based)."""
        return min(self.max_delay, self.base_delay * self.factor ** (attempt - 1))


def call_with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy,
    *,
    description: str = "remote call",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call *fn*, retrying :class:`RemoteTransientError` with backoff.

    Raises:
        RemoteFatalError: On a fatal error, or once attempts are exhausted.
    """
    attempt = 1
    while True:
        try:
            return fn()
        except RemoteTransientError as exc:
            if attempt >= policy.max_attempts:
                raise RemoteFatalError(
                    f"{description} still failing after {attempt} attempts: {exc}",
                    code=exc.code,
                ) from exc
            delay = policy.delay(attempt)
            logger.info(
                "%s failed (%s), retrying in %.1fs (attempt %d/%d)",
                description,
                exc,
                delay,
                attempt,
                policy.max_attempts,
            )
            sleep(delay)
            attempt += 1
