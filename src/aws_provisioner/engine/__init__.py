"""Plan and apply engine for AWS resources."""

from aws_provisioner.engine.engine import AWSEngine
from aws_provisioner.engine.errors import (
    ApplyCanceled,
    ApplyError,
    CycleError,
    DuplicateAddressError,
    EngineError,
    LockHeldError,
    ParseError,
    RemoteError,
    RemoteFatalError,
    RemoteTransientError,
    StalePlanError,
    StateLockError,
    StateMismatchError,
    UnknownReferenceError,
    UnknownResourceTypeError,
    UnresolvedReferenceError,
    ValidationError,
)
from aws_provisioner.engine.graph import DependencyGraph, ResourceGraph, build_resource_graph
from aws_provisioner.engine.handlers import EngineContext, PlanContext, ResourceHandler
from aws_provisioner.engine.registry import ResourceTypeRegistration, ResourceTypeRegistry
from aws_provisioner.engine.retry import RetryPolicy
from aws_provisioner.engine.types import Action, ApplyResult, Plan, PlanMetadata, ResourceChange

__all__ = [
    "AWSEngine",
    "Action",
    "ApplyCanceled",
    "ApplyError",
    "ApplyResult",
    "CycleError",
    "DependencyGraph",
    "DuplicateAddressError",
    "EngineContext",
    "EngineError",
    "LockHeldError",
    "ParseError",
    "Plan",
    "PlanContext",
    "PlanMetadata",
    "RemoteError",
    "RemoteFatalError",
    "RemoteTransientError",
    "ResourceChange",
    "ResourceGraph",
    "ResourceHandler",
    "ResourceTypeRegistration",
    "ResourceTypeRegistry",
    "RetryPolicy",
    "StalePlanError",
    "StateLockError",
    "StateMismatchError",
    "UnknownReferenceError",
    "UnknownResourceTypeError",
    "UnresolvedReferenceError",
    "ValidationError",
    "build_resource_graph",
]
