from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from aws_provisioner.core.provider import AWSProvider
from aws_provisioner.core.state import StateStore
from aws_provisioner.engine.errors import ApplyCanceled, ApplyError, RemoteFatalError
from aws_provisioner.engine.executor import Executor, operation_waves
from aws_provisioner.engine.handlers import EngineContext
from aws_provisioner.engine.registry import ResourceTypeRegistry
from aws_provisioner.engine.types import Action, ResourceChange


@dataclass
class StubOperation:
    key: str
    deps: list[str] = field(default_factory=list)
    rank: int = 0
    action: Any = None
    log: list[str] = field(default_factory=list)
    change: ResourceChange | None = None

    def __post_init__(self) -> None:
        self.change = ResourceChange(
            address=self.key, resource_type="stub", action=Action.CREATE, rank=self.rank
        )

    def run(self, *, ctx: Any, store: Any, registry: Any) -> bool:
        _ = ctx, store, registry
        if self.action is not None:
            self.action()
        self.log.append(self.key)
        return True


def _executor(tmp_path: Path, **kwargs: Any) -> Executor:
    return Executor(
        ctx=EngineContext(provider=AWSProvider.from_clients({}), stack="test"),
        registry=ResourceTypeRegistry(),
        store=StateStore(tmp_path / "state.json", "test"),
        **kwargs,
    )


def _ops(*ops: StubOperation) -> dict[str, StubOperation]:
    for rank, op in enumerate(ops):
        assert op.change is not None
        op.change.rank = rank
    return {op.key: op for op in ops}


def test_operation_waves_group_independent_operations() -> None:
    ops = _ops(
        StubOperation("a"),
        StubOperation("b"),
        StubOperation("c", deps=["a", "b"]),
        StubOperation("d", deps=["c"]),
        StubOperation("e", deps=["c"]),
    )
    assert operation_waves(ops) == [["a", "b"], ["c"], ["d", "e"]]


def test_operations_in_a_wave_run_concurrently(tmp_path: Path) -> None:
    barrier = threading.Barrier(2, timeout=5)
    ops = _ops(StubOperation("a", action=barrier.wait), StubOperation("b", action=barrier.wait))

    result = _executor(tmp_path, parallelism=2).run(ops)

    assert sorted(result.applied_addresses()) == ["a", "b"]
    assert result.ok


def test_waves_run_in_order(tmp_path: Path) -> None:
    log: list[str] = []
    ops = _ops(
        StubOperation("a", log=log),
        StubOperation("b", deps=["a"], log=log),
        StubOperation("c", deps=["b"], log=log),
    )

    result = _executor(tmp_path).run(ops)

    assert log == ["a", "b", "c"]
    assert result.applied_addresses() == ["a", "b", "c"]


def test_failure_stops_later_waves(tmp_path: Path) -> None:
    def boom() -> None:
        raise RemoteFatalError("quota exceeded", code="LimitExceededException")

    ops = _ops(
        StubOperation("a"),
        StubOperation("b"),
        StubOperation("c", deps=["a", "b"], action=boom),
        StubOperation("d", deps=["c"]),
        StubOperation("e", deps=["c"]),
    )

    with pytest.raises(ApplyError, match="quota exceeded") as exc_info:
        _executor(tmp_path).run(ops)

    result = exc_info.value.result
    assert result.applied_addresses() == ["a", "b"]
    assert result.failed == {"c": "quota exceeded"}
    assert result.not_attempted == ["d", "e"]
    assert not result.ok


def test_cancel_stops_dispatch_of_new_waves(tmp_path: Path) -> None:
    cancel = threading.Event()
    ops = _ops(StubOperation("a", action=cancel.set), StubOperation("b", deps=["a"]))

    with pytest.raises(ApplyCanceled) as exc_info:
        _executor(tmp_path, cancel=cancel).run(ops)

    assert exc_info.value.result.applied_addresses() == ["a"]
    assert exc_info.value.result.not_attempted == ["b"]


def test_cancel_before_start_attempts_nothing(tmp_path: Path) -> None:
    cancel = threading.Event()
    cancel.set()
    ops = _ops(StubOperation("a"), StubOperation("b"))

    with pytest.raises(ApplyCanceled) as exc_info:
        _executor(tmp_path, cancel=cancel).run(ops)

    assert exc_info.value.result.applied == []
    assert exc_info.value.result.not_attempted == ["a", "b"]


def test_progress_reports_start_and_done(tmp_path: Path) -> None:
    events: list[tuple[str, str]] = []
    ops = _ops(StubOperation("a"))

    _executor(tmp_path, progress=lambda c, e: events.append((c.address, e))).run(ops)

    assert events == [("a", "start"), ("a", "done")]


def test_parallelism_must_be_positive(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="parallelism"):
        _executor(tmp_path, parallelism=0)
