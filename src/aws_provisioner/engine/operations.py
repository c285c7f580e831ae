"""Apply operations.

Terraform runs apply by executing a graph of operations (resource nodes + other
nodes). This module implements a minimal version of that idea: each operation
knows how to apply itself and lists dependencies on other operations.  Each
operation records its outcome in the state store as soon as the remote call
succeeds.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from aws_provisioner.engine.types import Action

if TYPE_CHECKING:
    from aws_provisioner.core.state import StateStore
    from aws_provisioner.engine.handlers import EngineContext
    from aws_provisioner.engine.registry import ResourceTypeRegistry
    from aws_provisioner.engine.types import ResourceChange


class Operation(Protocol):
    key: str
    deps: list[str]
    change: ResourceChange | None

    def run(
        self, *, ctx: EngineContext, store: StateStore, registry: ResourceTypeRegistry
    ) -> bool:
        """Execute this operation.

        Returns:
            True if the operation changed a resource (and state).
        """


@dataclass
class BarrierOperation:
    """A no-op node used to enforce ordering between operation phases."""

    key: str
    deps: list[str] = field(default_factory=list)
    change: ResourceChange | None = None

    def run(
        self, *, ctx: EngineContext, store: StateStore, registry: ResourceTypeRegistry
    ) -> bool:
        _ = ctx, store, registry
        return False


def _desired_object(change: ResourceChange, reg: Any, *, action: str) -> Any:
    if change.desired is None:
        raise ValueError(f"Missing desired config for {action}: {change.address}")

    desired_obj = reg.model.model_validate(change.desired)
    if desired_obj.address != change.address:
        raise ValueError(
            f"Desired address mismatch for {action}: {change.address} != {desired_obj.address}"
        )
    return desired_obj


@dataclass
class CreateOperation:
    key: str
    change: ResourceChange | None
    deps: list[str] = field(default_factory=list)

    def run(
        self, *, ctx: EngineContext, store: StateStore, registry: ResourceTypeRegistry
    ) -> bool:
        assert self.change is not None
        reg = registry.get(self.change.resource_type)
        desired_obj = _desired_object(self.change, reg, action="create")
        resolved = desired_obj.resolved(store.outputs())

        attrs = reg.handler.create(ctx, resolved)
        store.save(
            self.change.address,
            attrs,
            resource_type=self.change.resource_type,
            name=desired_obj.name,
            dependencies=list(desired_obj.depends_on),
        )
        return True


@dataclass
class UpdateOperation:
    key: str
    change: ResourceChange | None
    deps: list[str] = field(default_factory=list)

    def run(
        self, *, ctx: EngineContext, store: StateStore, registry: ResourceTypeRegistry
    ) -> bool:
        assert self.change is not None
        reg = registry.get(self.change.resource_type)
        desired_obj = _desired_object(self.change, reg, action="update")
        resolved = desired_obj.resolved(store.outputs())

        prior_inst = store.get(self.change.address)
        if prior_inst is None:
            raise ValueError(f"Missing state for update operation: {self.change.address}")
        attrs = reg.handler.update(ctx, resolved, prior_inst)
        store.save(
            self.change.address,
            attrs,
            resource_type=self.change.resource_type,
            name=desired_obj.name,
            dependencies=list(desired_obj.depends_on),
        )
        return True


@dataclass
class DeleteOperation:
    key: str
    change: ResourceChange | None
    deps: list[str] = field(default_factory=list)

    def run(
        self, *, ctx: EngineContext, store: StateStore, registry: ResourceTypeRegistry
    ) -> bool:
        assert self.change is not None
        reg = registry.get(self.change.resource_type)

        prior_inst = store.get(self.change.address)
        if prior_inst is None:
            raise ValueError(f"Missing state for delete operation: {self.change.address}")
        reg.handler.delete(ctx, prior_inst)
        store.remove(self.change.address)
        return True


def build_operations(
    changes: list[ResourceChange], dependencies: dict[str, list[str]]
) -> dict[str, Operation]:
    """Build the operation graph for *changes*.

    *dependencies* maps each address to the addresses it depends on: desired
    dependencies for creates/updates, recorded state dependencies for deletes.
    Creates/updates wait for their dependencies; deletes wait for their
    dependents; every delete waits for all creates/updates.
    """
    ops: dict[str, Operation] = {}
    create_update_set: set[str] = set()
    delete_set: set[str] = set()

    for c in changes:
        op: Operation
        match c.action:
            case Action.NOOP:
                continue
            case Action.CREATE:
                op = CreateOperation(key=c.address, change=c)
                create_update_set.add(c.address)
            case Action.UPDATE:
                op = UpdateOperation(key=c.address, change=c)
                create_update_set.add(c.address)
            case Action.DELETE:
                op = DeleteOperation(key=c.address, change=c)
                delete_set.add(c.address)
            case _:
                raise ValueError(f"Unknown action: {c.action}")

        if op.key in ops:
            raise ValueError(f"Duplicate operation key in plan: {op.key}")
        ops[op.key] = op

    # create/update: dependencies must run before dependents
    for addr in create_update_set:
        deps = dependencies.get(addr, [])
        ops[addr].deps.extend(d for d in deps if d in create_update_set)

    # deletes: dependents must be deleted before dependencies (invert edges)
    for addr in delete_set:
        for dep in dependencies.get(addr, []):
            if dep in delete_set:
                ops[dep].deps.append(addr)

    # Ensure create/update runs before deletes (Terraform-like default ordering).
    if create_update_set and delete_set:
        barrier_key = "__engine__.apply_barrier"
        if barrier_key in ops:
            raise ValueError(f"Barrier operation key conflicts with plan: {barrier_key}")

        ops[barrier_key] = BarrierOperation(key=barrier_key, deps=sorted(create_update_set))
        for addr in delete_set:
            ops[addr].deps.append(barrier_key)

    return ops
