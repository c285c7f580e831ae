"""Engine-facing handler interfaces."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from aws_provisioner.resources.base import Resource

if TYPE_CHECKING:
    from collections.abc import Mapping

    from aws_provisioner.core.provider import AWSProvider
    from aws_provisioner.core.state import ResourceInstance, State
    from aws_provisioner.resources.expressions import Reference

R = TypeVar("R", bound=Resource)

STACK_TAG = "aws-provisioner:stack"


@dataclass(frozen=True)
class EngineContext:
    """Context passed to handlers."""

    provider: AWSProvider
    stack: str

    def default_tags(self, resource: Resource) -> dict[str, str]:
        """Tags applied to every taggable resource, merged under the declared ones."""
        return {"Name": resource.name, STACK_TAG: self.stack, **resource.tags}


class PlanContext:
    """Merged view of desired and existing resources for plan-level validation.

    Desired declarations take precedence over state entries with the same
    address.
    """

    def __init__(self, all_desired: Mapping[str, Resource], state: State) -> None:
        self._desired = dict(all_desired)
        self._state = state

    def address_exists(self, address: str) -> bool:
        """Check if an address exists in desired or state."""
        return address in self._desired or address in self._state.resources

    def desired(self, address: str) -> Resource | None:
        return self._desired.get(address)

    def get_attr(self, address: str, attr: str) -> Any:
        """Look up an attribute of a desired resource, falling back to state."""
        r = self._desired.get(address)
        if r is not None:
            return getattr(r, attr, None)
        inst = self._state.resources.get(address)
        if inst is not None:
            return inst.attributes.get(attr)
        return None

    def target(self, ref: Reference) -> Resource | None:
        """The declared resource a reference points at."""
        return self._desired.get(ref.address)


class ResourceHandler(Generic[R]):
    """Base class for resource handlers.

    Handlers translate resources into AWS API calls.  ``create``/``update``
    receive a resolved resource (every reference already substituted) and
    return the attributes to store: the applied inputs, keyed like the
    model's fields, plus provider-assigned outputs such as ``id`` and ``arn``.
    """

    def validate(self, ctx: EngineContext, desired: R) -> list[str]:
        """Single-resource validation. No cross-resource context needed.

        Return list of error messages (empty = valid).
        """
        _ = ctx, desired
        return []

    def validate_plan(
        self,
        ctx: EngineContext,
        desired: R,
        plan_ctx: PlanContext,
    ) -> list[str]:
        """Cross-resource validation with access to all resources.

        Return list of error messages (empty = valid).
        """
        _ = ctx, desired, plan_ctx
        return []

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> dict[str, Any] | None:
        """Read the resource from AWS. Return None if it no longer exists."""
        raise NotImplementedError

    def create(self, ctx: EngineContext, desired: R) -> dict[str, Any]:
        """Create the resource in AWS. Return stored attributes."""
        raise NotImplementedError

    def update(self, ctx: EngineContext, desired: R, prior: ResourceInstance) -> dict[str, Any]:
        """Update the resource in AWS. Return stored attributes."""
        raise NotImplementedError

    def delete(self, ctx: EngineContext, prior: ResourceInstance) -> None:
        """Delete the resource from AWS."""
        raise NotImplementedError


# ── Helpers shared by the AWS handlers ──────────────────────────────


def applied_attributes(desired: Resource, **outputs: Any) -> dict[str, Any]:
    """Attributes to store for a resolved resource: its inputs plus provider outputs."""
    return {**desired.planned_attributes({}), **outputs}


def tag_list(tags: Mapping[str, str], *, key: str = "Key", value: str = "Value") -> list[dict]:
    """Render tags the way most AWS APIs take them (ECS uses lowercase keys)."""
    return [{key: k, value: v} for k, v in sorted(tags.items())]


def tag_dict(tags: list[dict[str, str]] | None, *, key: str = "Key", value: str = "Value") -> dict:
    return {t[key]: t[value] for t in tags or []}


def declared_tags(remote: Mapping[str, str], prior: ResourceInstance) -> dict[str, str]:
    """Remote tags minus the defaults the engine adds, unless they were declared."""
    declared = prior.attributes.get("tags") or {}
    return {
        k: v for k, v in remote.items() if k not in ("Name", STACK_TAG) or k in declared
    }


def tag_changes(
    ctx: EngineContext, desired: Resource, prior: ResourceInstance
) -> tuple[dict[str, str], list[str]]:
    """Tags to (re)write and tag keys to remove for an update."""
    wanted = ctx.default_tags(desired)
    removed = sorted(set(prior.attributes.get("tags") or {}) - set(wanted))
    return wanted, removed
