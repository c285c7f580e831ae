from __future__ import annotations

import itertools
from pathlib import Path
from typing import Annotated, Any, ClassVar
from unittest.mock import MagicMock

import pytest

from aws_provisioner.config.registry import default_registry
from aws_provisioner.core import AWSProvider, ResourceInstance, StateStore
from aws_provisioner.core.state import State
from aws_provisioner.engine import AWSEngine
from aws_provisioner.engine.engine import _values_differ
from aws_provisioner.engine.errors import (
    ApplyError,
    CycleError,
    LockHeldError,
    RemoteFatalError,
    StalePlanError,
    UnknownReferenceError,
    UnknownResourceTypeError,
    ValidationError,
)
from aws_provisioner.engine.handlers import EngineContext, ResourceHandler, applied_attributes
from aws_provisioner.engine.lock import StateLock
from aws_provisioner.engine.registry import ResourceTypeRegistry
from aws_provisioner.engine.types import Action, Plan
from aws_provisioner.resources.base import Resource
from aws_provisioner.resources.expressions import UNKNOWN, Expr
from aws_provisioner.resources.markers import Immutable


class Network(Resource):
    resource_type: ClassVar[str] = "fake_network"
    plan_priority: ClassVar[int] = 10

    cidr: Annotated[str, Immutable()] = "10.0.0.0/16"
    label: str = ""


class Image(Resource):
    resource_type: ClassVar[str] = "fake_image"
    volatile_outputs: ClassVar[frozenset[str]] = frozenset({"digest"})

    tag: str = "v1"


class Host(Resource):
    resource_type: ClassVar[str] = "fake_host"

    network_id: Expr
    image: Expr | None = None
    size: int = 1


class FakeCloud(ResourceHandler[Any]):
    """In-memory stand-in for an AWS API: assigns ids, records calls."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.objects: dict[str, dict[str, Any]] = {}
        self.fail_on: set[str] = set()
        self._ids = itertools.count(1)

    def _check(self, address: str) -> None:
        if address in self.fail_on:
            raise RemoteFatalError(f"boom on {address}", code="InvalidParameterValue")

    def _outputs(self, desired: Resource) -> dict[str, Any]:
        n = next(self._ids)
        outputs: dict[str, Any] = {"id": f"{desired.resource_type}-{n}"}
        if isinstance(desired, Image):
            outputs["digest"] = f"sha256:{n}"
        return outputs

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> dict[str, Any] | None:
        _ = ctx
        obj = self.objects.get(prior.address)
        return dict(obj) if obj is not None else None

    def create(self, ctx: EngineContext, desired: Any) -> dict[str, Any]:
        _ = ctx
        self.calls.append(("create", desired.address))
        self._check(desired.address)
        attrs = applied_attributes(desired, **self._outputs(desired))
        self.objects[desired.address] = dict(attrs)
        return attrs

    def update(self, ctx: EngineContext, desired: Any, prior: ResourceInstance) -> dict[str, Any]:
        _ = ctx
        self.calls.append(("update", desired.address))
        self._check(desired.address)
        outputs = {"id": prior.attributes["id"]}
        if isinstance(desired, Image):
            outputs["digest"] = f"sha256:{next(self._ids)}"
        attrs = applied_attributes(desired, **outputs)
        self.objects[desired.address] = dict(attrs)
        return attrs

    def delete(self, ctx: EngineContext, prior: ResourceInstance) -> None:
        _ = ctx
        self.calls.append(("delete", prior.address))
        self._check(prior.address)
        self.objects.pop(prior.address, None)


def _engine(tmp_path: Path, *, parallelism: int = 4) -> tuple[AWSEngine, FakeCloud]:
    provider = AWSProvider.from_clients({"ec2": MagicMock()})
    registry = ResourceTypeRegistry()
    cloud = FakeCloud()
    for model in (Network, Image, Host):
        registry.register(model, cloud)
    engine = AWSEngine(
        provider=provider,
        stack="test",
        state_path=tmp_path / "state.json",
        registry=registry,
        parallelism=parallelism,
    )
    return engine, cloud


def _actions(plan: Plan) -> dict[str, Action]:
    return {c.address: c.action for c in plan.changes}


def _stack() -> list[Resource]:
    return [
        Host(name="web", network_id="${fake_network.main.id}"),
        Network(name="main"),
    ]


def test_create_update_delete_and_plan_roundtrip(tmp_path: Path) -> None:
    engine, cloud = _engine(tmp_path)

    plan1 = engine.plan([Network(name="n1", label="a")])
    assert plan1.changes[0].action == Action.CREATE

    plan_path = tmp_path / "plan.json"
    plan1.save(plan_path)
    engine.apply(Plan.load(plan_path))

    state = State.load(engine.state_path)
    assert state.serial == 1
    assert state.resources["fake_network.n1"].attributes["id"] == "fake_network-1"

    plan2 = engine.plan([Network(name="n1", label="a")])
    assert plan2.changes[0].action == Action.NOOP
    engine.apply(plan2)
    assert State.load(engine.state_path).serial == 1  # NOOP does not write state

    plan3 = engine.plan([Network(name="n1", label="b")])
    assert plan3.changes[0].action == Action.UPDATE
    assert plan3.changes[0].diff == {"label": {"from": "a", "to": "b"}}
    engine.apply(plan3)
    assert cloud.objects["fake_network.n1"]["label"] == "b"
    assert Path(str(engine.state_path) + ".backup").exists()

    plan4 = engine.plan([])
    assert _actions(plan4) == {"fake_network.n1": Action.DELETE}
    engine.apply(plan4)
    assert State.load(engine.state_path).resources == {}


def test_plan_after_apply_is_empty(tmp_path: Path) -> None:
    engine, _cloud = _engine(tmp_path)
    engine.apply(engine.plan(_stack()))

    plan = engine.plan(_stack())
    assert plan.actionable() == []


def test_creates_follow_references_and_deletes_run_in_reverse(tmp_path: Path) -> None:
    engine, cloud = _engine(tmp_path)

    plan = engine.plan(_stack())
    assert [c.address for c in plan.changes] == ["fake_network.main", "fake_host.web"]
    assert [c.wave for c in plan.changes] == [0, 1]

    engine.apply(plan)
    assert cloud.calls == [("create", "fake_network.main"), ("create", "fake_host.web")]

    cloud.calls.clear()
    destroy = engine.plan(_stack(), destroy=True)
    assert [c.address for c in destroy.changes] == ["fake_host.web", "fake_network.main"]
    engine.apply(destroy)
    assert cloud.calls == [("delete", "fake_host.web"), ("delete", "fake_network.main")]


def test_unknown_outputs_are_shown_and_resolved_at_apply(tmp_path: Path) -> None:
    engine, cloud = _engine(tmp_path)

    plan = engine.plan(_stack())
    host = next(c for c in plan.changes if c.address == "fake_host.web")
    assert host.planned is not None
    assert host.planned["network_id"] == UNKNOWN

    engine.apply(plan)
    assert cloud.objects["fake_host.web"]["network_id"] == "fake_network-1"


def test_update_keeps_known_outputs(tmp_path: Path) -> None:
    engine, _cloud = _engine(tmp_path)
    engine.apply(engine.plan(_stack()))

    relabeled = [
        Host(name="web", network_id="${fake_network.main.id}"),
        Network(name="main", label="blue"),
    ]
    plan = engine.plan(relabeled)
    assert _actions(plan) == {
        "fake_network.main": Action.UPDATE,
        "fake_host.web": Action.NOOP,
    }


def test_volatile_output_marks_dependents_for_update(tmp_path: Path) -> None:
    engine, cloud = _engine(tmp_path)
    resources: list[Resource] = [
        Network(name="main"),
        Image(name="app"),
        Host(name="web", network_id="${fake_network.main.id}", image="${fake_image.app.digest}"),
    ]
    engine.apply(engine.plan(resources))

    resources[1] = Image(name="app", tag="v2")
    plan = engine.plan(resources)
    host = next(c for c in plan.changes if c.address == "fake_host.web")
    assert host.action == Action.UPDATE
    assert host.diff is not None
    assert host.diff["image"]["to"] == UNKNOWN

    engine.apply(plan)
    assert cloud.objects["fake_host.web"]["image"] == cloud.objects["fake_image.app"]["digest"]
    assert engine.plan(resources).actionable() == []


def test_immutable_change_is_rejected(tmp_path: Path) -> None:
    engine, cloud = _engine(tmp_path)
    engine.apply(engine.plan([Network(name="main")]))
    cloud.calls.clear()

    with pytest.raises(ValidationError, match="cidr") as exc_info:
        engine.plan([Network(name="main", cidr="10.1.0.0/16")])
    assert "cannot be changed in place" in exc_info.value.errors[0]
    assert cloud.calls == []


def test_removing_referenced_declaration_is_rejected(tmp_path: Path) -> None:
    engine, cloud = _engine(tmp_path)
    engine.apply(engine.plan(_stack()))
    cloud.calls.clear()

    with pytest.raises(UnknownReferenceError, match="orphan"):
        engine.plan([Host(name="web", network_id="${fake_network.main.id}")])
    assert cloud.calls == []
    assert "fake_network.main" in cloud.objects


def test_cycle_fails_before_refresh(tmp_path: Path) -> None:
    engine, cloud = _engine(tmp_path)
    engine.apply(engine.plan([Network(name="main")]))
    cloud.objects.clear()

    cyclic = [
        Host(name="a", network_id="${fake_host.b.id}"),
        Host(name="b", network_id="${fake_host.a.id}"),
    ]
    with pytest.raises(CycleError):
        engine.plan(cyclic)
    assert "fake_network.main" in State.load(engine.state_path).resources


def test_unknown_resource_type(tmp_path: Path) -> None:
    engine, _cloud = _engine(tmp_path)

    class Stray(Resource):
        resource_type: ClassVar[str] = "fake_stray"

    with pytest.raises(UnknownResourceTypeError):
        engine.plan([Stray(name="x")])


def test_stale_plan_rejected(tmp_path: Path) -> None:
    engine, _cloud = _engine(tmp_path)
    engine.apply(engine.plan([Network(name="a")]))

    stale = engine.plan([Network(name="a"), Network(name="b")])
    engine.apply(engine.plan([Network(name="a", label="x")]))

    with pytest.raises(StalePlanError, match="serial"):
        engine.apply(stale)


def test_partial_failure_keeps_applied_resources(tmp_path: Path) -> None:
    engine, cloud = _engine(tmp_path)
    resources: list[Resource] = [
        Network(name="a"),
        Network(name="b"),
        Host(name="c", network_id="${fake_network.a.id}", depends_on=["fake_network.b"]),
        Host(name="d", network_id="${fake_host.c.id}"),
        Host(name="e", network_id="${fake_host.c.id}"),
    ]
    cloud.fail_on = {"fake_host.c"}

    with pytest.raises(ApplyError) as exc_info:
        engine.apply(engine.plan(resources))

    result = exc_info.value.result
    assert sorted(result.applied_addresses()) == ["fake_network.a", "fake_network.b"]
    assert list(result.failed) == ["fake_host.c"]
    assert "boom" in result.failed["fake_host.c"]
    assert sorted(result.not_attempted) == ["fake_host.d", "fake_host.e"]
    assert isinstance(exc_info.value.__cause__, RemoteFatalError)

    state = State.load(engine.state_path)
    assert sorted(state.resources) == ["fake_network.a", "fake_network.b"]

    cloud.fail_on.clear()
    retry = engine.plan(resources)
    assert _actions(retry) == {
        "fake_network.a": Action.NOOP,
        "fake_network.b": Action.NOOP,
        "fake_host.c": Action.CREATE,
        "fake_host.d": Action.CREATE,
        "fake_host.e": Action.CREATE,
    }
    assert engine.apply(retry).ok


def test_outputs_recorded_after_apply(tmp_path: Path) -> None:
    engine, _cloud = _engine(tmp_path)
    plan = engine.plan(_stack(), outputs={"network": "${fake_network.main.id}"})
    assert plan.outputs == {"network": "${fake_network.main.id}"}

    engine.apply(plan)
    assert engine.outputs() == {"network": "fake_network-1"}


def test_output_with_unknown_reference_fails(tmp_path: Path) -> None:
    engine, _cloud = _engine(tmp_path)
    with pytest.raises(UnknownReferenceError, match="output.url"):
        engine.plan(_stack(), outputs={"url": "${fake_network.other.id}"})


def test_refresh_drops_deleted_resources(tmp_path: Path) -> None:
    engine, cloud = _engine(tmp_path)
    engine.apply(engine.plan([Network(name="main")]))
    del cloud.objects["fake_network.main"]

    assert [c.action for c in engine.drift()] == [Action.DELETE]
    # drift does not persist
    assert "fake_network.main" in State.load(engine.state_path).resources

    plan = engine.plan([Network(name="main")])
    assert _actions(plan) == {"fake_network.main": Action.CREATE}
    # plan persisted the refresh and is stamped with the refreshed state
    state = State.load(engine.state_path)
    assert "fake_network.main" not in state.resources
    assert plan.metadata.state_serial == state.serial
    engine.apply(plan)
    assert "fake_network.main" in State.load(engine.state_path).resources


def test_refresh_detects_remote_changes(tmp_path: Path) -> None:
    engine, cloud = _engine(tmp_path)
    engine.apply(engine.plan([Network(name="main", label="a")]))
    cloud.objects["fake_network.main"]["label"] = "changed"

    changes = engine.drift()
    assert len(changes) == 1
    assert changes[0].diff == {"label": {"from": "a", "to": "changed"}}

    plan = engine.plan([Network(name="main", label="a")])
    assert _actions(plan) == {"fake_network.main": Action.UPDATE}


def test_plan_fails_fast_when_locked(tmp_path: Path) -> None:
    engine, _cloud = _engine(tmp_path)
    with StateLock(engine.state_path), pytest.raises(LockHeldError):
        engine.plan([Network(name="main")])


def test_locked_block_shares_the_lock(tmp_path: Path) -> None:
    engine, _cloud = _engine(tmp_path)
    with engine.locked():
        plan = engine.plan([Network(name="main")])
        engine.apply(plan)
    assert "fake_network.main" in State.load(engine.state_path).resources


def test_destroy_deletes_ecs_service_before_its_cluster(tmp_path: Path) -> None:
    state_path = tmp_path / "state.json"
    store = StateStore(state_path, "test")
    store.save(
        "aws_ecs_cluster.main",
        {"name": "main", "arn": "arn:cluster/main", "id": "arn:cluster/main"},
        resource_type="aws_ecs_cluster",
        name="main",
        dependencies=[],
    )
    store.save(
        "aws_ecs_service.app",
        {"name": "app", "arn": "arn:svc/app", "id": "arn:svc/app", "cluster": "arn:cluster/main"},
        resource_type="aws_ecs_service",
        name="app",
        dependencies=["aws_ecs_cluster.main"],
    )
    ecs = MagicMock()
    engine = AWSEngine(
        provider=AWSProvider.from_clients({"ecs": ecs}, sleep=lambda _s: None),
        stack="test",
        state_path=state_path,
        registry=default_registry(),
    )

    result = engine.apply(engine.plan([], destroy=True, refresh=False))

    assert [c.address for c in result.applied] == ["aws_ecs_service.app", "aws_ecs_cluster.main"]
    ecs.delete_service.assert_called_once_with(
        cluster="arn:cluster/main", service="arn:svc/app", force=True
    )
    ecs.delete_cluster.assert_called_once_with(cluster="arn:cluster/main")
    assert State.load(state_path).resources == {}


class TestValuesDiffer:
    def test_partial_ignores_extra_prior_keys(self) -> None:
        assert not _values_differ({"a": 1}, {"a": 1, "b": 2})

    def test_exact_compares_whole_dict(self) -> None:
        assert _values_differ({"a": 1}, {"a": 1, "b": 2}, strategy="exact")

    def test_set_ignores_order(self) -> None:
        assert not _values_differ([{"x": 1}, {"y": 2}], [{"y": 2}, {"x": 1}], strategy="set")
        assert _values_differ([1, 1], [1], strategy="set")
