"""Engine error types."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from aws_provisioner.engine.types import ApplyResult


class EngineError(Exception):
    """Base exception for engine errors."""


class ParseError(EngineError):
    """Raised for malformed declarations (YAML, schema, variables, modules)."""


class UnknownResourceTypeError(EngineError):
    """Raised when a resource type has no registration/handler."""

    def __init__(self, resource_type: str) -> None:
        super().__init__(f"Unknown resource type: {resource_type}")
        self.resource_type = resource_type


class DuplicateAddressError(EngineError):
    """Raised when multiple desired resources share the same address."""

    def __init__(self, address: str) -> None:
        super().__init__(f"Duplicate resource address: {address}")
        self.address = address


class CycleError(EngineError):
    """Raised when dependencies contain a cycle."""

    def __init__(self, addresses: list[str]) -> None:
        msg = "Dependency cycle detected"
        if addresses:
            msg += f": {', '.join(addresses)}"
        super().__init__(msg)
        self.addresses = addresses


class UnknownReferenceError(EngineError):
    """Raised when a declaration references a resource that is not declared."""

    def __init__(self, address: str, target: str, *, tracked: bool = False) -> None:
        msg = f"Resource '{address}' references undeclared resource '{target}'"
        if tracked:
            msg += (
                f"; '{target}' is still tracked in state and removing it would orphan"
                f" '{address}'"
            )
        super().__init__(msg)
        self.address = address
        self.target = target
        self.tracked = tracked


class UnresolvedReferenceError(EngineError):
    """Raised when a reference is resolved before its target output is known."""

    def __init__(self, expression: str) -> None:
        super().__init__(f"Value of {expression} is not known yet")
        self.expression = expression


class StateMismatchError(EngineError):
    """Raised when the on-disk state belongs to a different stack."""

    def __init__(self, expected: str, got: str) -> None:
        super().__init__(f"State stack mismatch: expected {expected}, got {got}")
        self.expected = expected
        self.got = got


class StalePlanError(EngineError):
    """Raised when applying a plan against a different state than planned."""


class StateLockError(EngineError):
    """Raised when the state lock cannot be acquired or released."""


class LockHeldError(StateLockError):
    """Raised when another process already holds the state lock."""

    def __init__(self, lock_path: str) -> None:
        super().__init__(f"State is locked by another process: {lock_path}")
        self.lock_path = lock_path


class ValidationError(EngineError):
    """One or more resources failed plan validation."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        msg = "Validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        super().__init__(msg)


class RemoteError(EngineError):
    """Base class for failures reported by the remote API."""

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class RemoteTransientError(RemoteError):
    """Retryable API failure (throttling, eventual consistency, timeouts)."""


class RemoteFatalError(RemoteError):
    """Non-retryable API failure (invalid parameter, quota exceeded, ...)."""


class ApplyError(EngineError):
    """Raised when an apply fails mid-way through.

    Carries the partial result (what was applied, what failed and what was
    never attempted) so callers can inspect progress.  The first failure is
    chained via ``__cause__``.
    """

    def __init__(self, result: ApplyResult, message: str) -> None:
        self.result = result
        failed = ", ".join(result.failed) or "unknown"
        super().__init__(f"Apply failed on {failed}: {message}")


class ApplyCanceled(EngineError):
    """Raised when an apply is canceled (e.g., Ctrl-C)."""

    def __init__(self, result: ApplyResult) -> None:
        self.result = result
        super().__init__("Apply canceled")
