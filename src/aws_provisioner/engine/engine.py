"""Plan/apply engine."""

from __future__ import annotations

import contextlib
import hashlib
import json
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from aws_provisioner import __version__
from aws_provisioner.core.state import (
    State,
    StateStore,
    compute_attributes_hash,
    compute_state_digest,
)
from aws_provisioner.engine.errors import (
    StalePlanError,
    StateMismatchError,
    UnknownReferenceError,
    ValidationError,
)
from aws_provisioner.engine.executor import Executor, ProgressCallback, operation_waves
from aws_provisioner.engine.graph import DependencyGraph, ResourceGraph, build_resource_graph
from aws_provisioner.engine.handlers import EngineContext, PlanContext
from aws_provisioner.engine.lock import StateLock
from aws_provisioner.engine.operations import build_operations
from aws_provisioner.engine.types import Action, ApplyResult, Plan, PlanMetadata, ResourceChange
from aws_provisioner.resources.expressions import (
    UNKNOWN,
    collect_references,
    contains_unknown,
    parse_expressions,
    resolve_expressions,
)
from aws_provisioner.resources.markers import (
    CompareStrategy,
    collect_compare_strategies,
    collect_immutable_fields,
)

if TYPE_CHECKING:
    import threading
    from collections.abc import Iterator, Mapping, Sequence
    from pathlib import Path

    from aws_provisioner.core.provider import AWSProvider
    from aws_provisioner.engine.registry import ResourceTypeRegistry
    from aws_provisioner.resources.base import Resource

logger = logging.getLogger(__name__)

__all__ = ["AWSEngine", "ProgressCallback"]


def _values_differ(
    desired: Any,
    prior: Any,
    *,
    strategy: CompareStrategy | None = None,
) -> bool:
    """Check whether a desired value differs from the prior (stored) value.

    Comparison semantics depend on *strategy*:

    - ``strategy="set"``:
      - If both values are lists, they are compared as multisets
        (order-insensitive; items may be dicts).
      - Other types fall back to strict equality.
    - ``strategy="exact"``:
      - Values are compared with strict equality.
      - For dicts, extra or missing keys are treated as differences.
    - ``strategy=None`` or ``"partial"``:
      - For dict values, only keys present in *desired* are compared.
      - Extra keys present only in *prior* (provider-added defaults) are ignored.
      - Non-dict values use strict equality.
    """
    if strategy == "set":
        if isinstance(desired, list) and isinstance(prior, list):
            return sorted(map(_canonical_json, desired)) != sorted(map(_canonical_json, prior))
        return desired != prior

    if strategy == "exact":
        return desired != prior

    if isinstance(desired, dict) and isinstance(prior, dict):
        return any(_values_differ(v, prior.get(k), strategy="partial") for k, v in desired.items())
    return desired != prior


def _canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def _sha256_hex(payload: str) -> str:
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _desired_dump(resource: Resource) -> dict[str, Any]:
    return resource.model_dump(mode="json", exclude_none=True, exclude={"address"})


def _compute_config_digest(resources: Sequence[Resource], outputs: Mapping[str, str]) -> str:
    items: list[dict[str, Any]] = []
    for r in resources:
        planned = _desired_dump(r)
        planned.pop("depends_on", None)
        items.append(
            {
                "address": r.address,
                "resource_type": r.resource_type,
                "planned": planned,
            }
        )
    items.sort(key=lambda x: x["address"])
    return _sha256_hex(_canonical_json({"resources": items, "outputs": dict(outputs)}))


def _known_outputs(
    resource: Resource, prior: Mapping[str, Any], planned: Mapping[str, Any]
) -> dict[str, Any]:
    """Outputs of a resource that is about to be updated, as far as they are known.

    Stored values carry over except the ones an update regenerates; planned
    inputs replace the stored ones unless they are not known yet.
    """
    known = {k: v for k, v in prior.items() if k not in resource.volatile_outputs}
    for k, v in planned.items():
        if contains_unknown(v):
            known.pop(k, None)
        else:
            known[k] = v
    return known


class AWSEngine:
    """Terraform-like plan/apply engine for AWS resources."""

    def __init__(
        self,
        *,
        provider: AWSProvider,
        stack: str,
        state_path: Path,
        registry: ResourceTypeRegistry,
        parallelism: int = 4,
    ) -> None:
        self._provider = provider
        self._stack = stack
        self._state_path = state_path
        self._registry = registry
        self._parallelism = parallelism
        self._store = StateStore(state_path, stack)
        self._lock_held = False

    @property
    def stack(self) -> str:
        return self._stack

    @property
    def state_path(self) -> Path:
        return self._state_path

    @property
    def store(self) -> StateStore:
        return self._store

    def _ctx(self) -> EngineContext:
        return EngineContext(provider=self._provider, stack=self._stack)

    @contextlib.contextmanager
    def locked(self) -> Iterator[None]:
        """Hold the state lock; nested uses share the outer lock.

        Wrap ``plan`` and ``apply`` in one ``locked()`` block to keep other
        processes out for the whole cycle.
        """
        if self._lock_held:
            yield
            return
        with StateLock(self._state_path):
            self._lock_held = True
            try:
                yield
            finally:
                self._lock_held = False

    # ── refresh ─────────────────────────────────────────────────────

    def _refresh_state_in_place(self, state: State) -> bool:
        logger.debug("Refreshing state from AWS")
        changed = False
        ctx = self._ctx()

        for address, inst in list(state.resources.items()):
            handler = self._registry.get(inst.resource_type).handler
            attrs = handler.read(ctx, inst)
            if attrs is None:
                logger.info("%s no longer exists remotely; dropping it from state", address)
                del state.resources[address]
                changed = True
                continue

            new_hash = compute_attributes_hash(attrs)
            if attrs != inst.attributes or new_hash != inst.attributes_hash:
                inst.attributes = attrs
                inst.attributes_hash = new_hash
                inst.updated_at = datetime.now(UTC)
                changed = True

        logger.debug("State refreshed, changed=%s", changed)
        return changed

    def refresh(self, *, persist: bool = False) -> tuple[State, State]:
        """Refresh state from AWS. Returns (pre_refresh, post_refresh)."""
        with self.locked():
            snapshot = self._store.load().model_copy(deep=True)
            state = snapshot.model_copy(deep=True)
            changed = self._refresh_state_in_place(state)
            if changed and persist:
                self._store.replace(state)
            return snapshot, state

    def drift(self) -> list[ResourceChange]:
        """Differences between the state file and the live resources (not persisted)."""
        before, after = self.refresh(persist=False)
        return self.state_changes(before, after)

    @staticmethod
    def state_changes(before: State, after: State) -> list[ResourceChange]:
        """Describe how *after* differs from *before* as UPDATE/DELETE changes."""
        changes: list[ResourceChange] = []
        for addr, old_inst in sorted(before.resources.items()):
            old = old_inst.attributes
            new_inst = after.resources.get(addr)
            if new_inst is None:
                changes.append(
                    ResourceChange(
                        address=addr,
                        resource_type=old_inst.resource_type,
                        action=Action.DELETE,
                        prior=dict(old),
                    )
                )
                continue
            new = new_inst.attributes
            if old == new:
                continue
            diff = {
                k: {"from": old.get(k), "to": new.get(k)}
                for k in sorted(set(old) | set(new))
                if old.get(k) != new.get(k)
            }
            changes.append(
                ResourceChange(
                    address=addr,
                    resource_type=old_inst.resource_type,
                    action=Action.UPDATE,
                    prior=dict(old),
                    planned=dict(new),
                    diff=diff,
                )
            )
        return changes

    def save_state(self, state: State) -> None:
        """Persist a (refreshed) state."""
        if state.stack != self._stack:
            raise StateMismatchError(self._stack, state.stack)
        with self.locked():
            self._store.replace(state)

    # ── plan ────────────────────────────────────────────────────────

    def graph(self, resources: Sequence[Resource]) -> ResourceGraph:
        """Build the dependency graph of *resources* (no remote calls)."""
        for r in resources:
            self._registry.get(r.resource_type)
        tracked = set(self._store.load().resources) if self._state_path.exists() else set()
        return build_resource_graph(resources, tracked=tracked)

    def _validate(self, graph: ResourceGraph, state: State) -> None:
        ctx = self._ctx()
        errors: list[str] = []
        for r in graph.resources.values():
            reg = self._registry.get(r.resource_type)
            errors.extend(reg.handler.validate(ctx, r))
        plan_ctx = PlanContext(graph.resources, state)
        for r in graph.resources.values():
            reg = self._registry.get(r.resource_type)
            errors.extend(reg.handler.validate_plan(ctx, r, plan_ctx))
        if errors:
            raise ValidationError(errors)

    def _classify_change(
        self,
        resource: Resource,
        state: State,
        deps: list[str],
        known: dict[str, dict[str, Any]],
    ) -> tuple[ResourceChange, list[str]]:
        """Classify a single resource as CREATE, UPDATE, or NOOP.

        Records what is known about the resource's outputs in *known* and
        returns the change plus any immutability violations.
        """
        addr = resource.address
        desired_dump = _desired_dump(resource)
        desired_dump["depends_on"] = deps
        planned = resource.planned_attributes(known, unknown=UNKNOWN)

        prior_inst = state.resources.get(addr)
        if prior_inst is None:
            logger.debug("Classified %s as create", addr)
            return (
                ResourceChange(
                    address=addr,
                    resource_type=resource.resource_type,
                    action=Action.CREATE,
                    desired=desired_dump,
                    planned=planned,
                ),
                [],
            )

        prior = dict(prior_inst.attributes)
        compare_strategies = collect_compare_strategies(resource)
        diff = {
            k: {"from": prior.get(k), "to": v}
            for k, v in planned.items()
            if _values_differ(v, prior.get(k), strategy=compare_strategies.get(k))
        }
        errors = [
            f"{addr}: attribute '{k}' cannot be changed in place"
            f" ({prior.get(k)!r} -> {planned[k]!r}); remove the resource and re-create it"
            for k in sorted(set(diff) & collect_immutable_fields(resource))
        ]

        action = Action.UPDATE if diff else Action.NOOP
        known[addr] = prior if action == Action.NOOP else _known_outputs(resource, prior, planned)
        logger.debug("Classified %s as %s", addr, action.value)
        return (
            ResourceChange(
                address=addr,
                resource_type=resource.resource_type,
                action=action,
                desired=desired_dump,
                prior=prior,
                planned=planned,
                diff=diff or None,
            ),
            errors,
        )

    def _plan_deletes(self, state: State, addrs: set[str]) -> list[ResourceChange]:
        """Plan delete changes for the given addresses in reverse dependency order."""
        order = self._delete_order(state, addrs)
        changes: list[ResourceChange] = []
        for addr in order:
            inst = state.resources[addr]
            changes.append(
                ResourceChange(
                    address=addr,
                    resource_type=inst.resource_type,
                    action=Action.DELETE,
                    prior=dict(inst.attributes),
                )
            )
        return changes

    def _delete_order(self, state: State, delete_set: set[str]) -> list[str]:
        dep_map: dict[str, list[str]] = {}
        priorities: dict[str, int] = {}
        for addr in delete_set:
            inst = state.resources[addr]
            dep_map[addr] = [d for d in inst.dependencies if d in delete_set]
            # fail early if unknown
            priorities[addr] = self._registry.get(inst.resource_type).plan_priority
        return DependencyGraph(
            delete_set, dep_map, priorities=priorities
        ).reverse_topological_order()

    @staticmethod
    def _check_outputs(outputs: Mapping[str, str], graph: ResourceGraph | None) -> None:
        for name, expression in outputs.items():
            for ref in collect_references(parse_expressions(expression)):
                if graph is None or ref.address not in graph.resources:
                    raise UnknownReferenceError(f"output.{name}", ref.address)

    @staticmethod
    def _operation_dependencies(
        changes: Sequence[ResourceChange], state: State
    ) -> dict[str, list[str]]:
        deps: dict[str, list[str]] = {}
        for c in changes:
            if c.action == Action.DELETE:
                inst = state.resources.get(c.address)
                deps[c.address] = list(inst.dependencies) if inst is not None else []
            else:
                if c.desired is None:
                    raise ValueError(f"Missing desired config for {c.action.value}: {c.address}")
                deps[c.address] = list(c.desired.get("depends_on") or [])
        return deps

    def _assign_waves(self, changes: list[ResourceChange], state: State) -> None:
        for rank, c in enumerate(changes):
            c.rank = rank
        ops = build_operations(changes, self._operation_dependencies(changes, state))
        waves = [[k for k in wave if ops[k].change is not None] for wave in operation_waves(ops)]
        for index, wave in enumerate(w for w in waves if w):
            for key in wave:
                change = ops[key].change
                assert change is not None
                change.wave = index

    def plan(
        self,
        resources: Sequence[Resource],
        *,
        outputs: Mapping[str, Any] | None = None,
        destroy: bool = False,
        refresh: bool = True,
    ) -> Plan:
        logger.info(
            "Planning %d resources (destroy=%s, refresh=%s)", len(resources), destroy, refresh
        )
        output_exprs = {} if destroy else {k: str(v) for k, v in (outputs or {}).items()}

        with self.locked():
            state = self._store.load()

            # Graph errors surface before any remote call.
            graph: ResourceGraph | None = None
            if not destroy:
                for r in resources:
                    self._registry.get(r.resource_type)
                graph = build_resource_graph(resources, tracked=set(state.resources))
                self._check_outputs(output_exprs, graph)

            if refresh:
                refreshed = state.model_copy(deep=True)
                if self._refresh_state_in_place(refreshed):
                    self._store.replace(refreshed)
                state = self._store.state

            if graph is None:
                changes = self._plan_deletes(state, set(state.resources))
            else:
                self._validate(graph, state)
                known: dict[str, dict[str, Any]] = {}
                changes = []
                errors: list[str] = []
                for addr in graph.topological_order():
                    change, immutable_errors = self._classify_change(
                        graph.resources[addr], state, graph.dependencies[addr], known
                    )
                    changes.append(change)
                    errors.extend(immutable_errors)
                if errors:
                    raise ValidationError(errors)
                removed = set(state.resources) - set(graph.resources)
                changes.extend(self._plan_deletes(state, removed))

            self._assign_waves(changes, state)

            metadata = PlanMetadata(
                stack=self._stack,
                created_at=datetime.now(UTC),
                destroy=destroy,
                refresh=refresh,
                state_lineage=state.lineage,
                state_serial=state.serial,
                state_digest=compute_state_digest(state),
                config_digest=_compute_config_digest(
                    [] if destroy else resources, output_exprs
                ),
                engine_version=__version__,
            )

            return Plan(metadata=metadata, changes=changes, outputs=output_exprs)

    # ── apply ───────────────────────────────────────────────────────

    def _resolve_outputs(self, outputs: Mapping[str, str]) -> dict[str, Any]:
        applied = self._store.outputs()
        resolved: dict[str, Any] = {}
        for name, expression in outputs.items():
            value = resolve_expressions(parse_expressions(expression), applied, unknown=None)
            if value is None:
                logger.warning("Output %s has no value (%s)", name, expression)
            resolved[name] = value
        return resolved

    def apply(
        self,
        plan: Plan,
        *,
        progress: ProgressCallback | None = None,
        cancel: threading.Event | None = None,
    ) -> ApplyResult:
        with self.locked():
            # A missing state file is bootstrapped from the plan metadata.
            state = self._store.load(
                lineage=plan.metadata.state_lineage, serial=plan.metadata.state_serial
            )
            if plan.metadata.stack != self._stack:
                raise StateMismatchError(self._stack, plan.metadata.stack)

            # Stale plan detection
            if state.lineage != plan.metadata.state_lineage:
                raise StalePlanError("State lineage changed; re-run plan")
            if state.serial != plan.metadata.state_serial:
                raise StalePlanError("State serial changed; re-run plan")
            if compute_state_digest(state) != plan.metadata.state_digest:
                raise StalePlanError("State digest changed; re-run plan")

            ops = build_operations(plan.changes, self._operation_dependencies(plan.changes, state))
            executor = Executor(
                ctx=self._ctx(),
                registry=self._registry,
                store=self._store,
                parallelism=self._parallelism,
                progress=progress,
                cancel=cancel,
            )
            result = executor.run(ops)
            self._store.set_outputs(self._resolve_outputs(plan.outputs))
            logger.info("Apply complete: %s", result.summary())
            return result

    def outputs(self) -> dict[str, Any]:
        """Output values recorded by the last apply."""
        return dict(self._store.load().outputs) if self._state_path.exists() else {}
