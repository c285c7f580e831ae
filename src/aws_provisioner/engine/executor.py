"""Wave-based execution of apply operations.

The operation graph is cut into waves of mutually independent operations.
Waves run one after another; the operations inside a wave run concurrently on
a thread pool.  A failure stops the operations of its wave that have not
started yet and every later wave; a cancel request stops dispatch of new
waves.  In both cases in-flight calls finish and are recorded.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed, wait
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from aws_provisioner.engine.errors import ApplyCanceled, ApplyError
from aws_provisioner.engine.graph import DependencyGraph
from aws_provisioner.engine.types import ApplyResult, ResourceChange

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from concurrent.futures import Future

    from aws_provisioner.core.state import StateStore
    from aws_provisioner.engine.handlers import EngineContext
    from aws_provisioner.engine.operations import Operation
    from aws_provisioner.engine.registry import ResourceTypeRegistry

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ResourceChange, Literal["start", "done"]], None]


@dataclass
class _Outcome:
    op: Operation
    status: Literal["applied", "unchanged", "failed", "skipped"]
    error: Exception | None = None


def operation_waves(ops: Mapping[str, Operation]) -> list[list[str]]:
    """Group operation keys into waves (ranked by plan order inside a wave)."""
    priorities = {k: op.change.rank for k, op in ops.items() if op.change is not None}
    return DependencyGraph(
        ops.keys(), {k: op.deps for k, op in ops.items()}, priorities=priorities
    ).waves()


class Executor:
    """Runs an operation graph wave by wave."""

    def __init__(
        self,
        *,
        ctx: EngineContext,
        registry: ResourceTypeRegistry,
        store: StateStore,
        parallelism: int = 4,
        progress: ProgressCallback | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        if parallelism < 1:
            raise ValueError("parallelism must be >= 1")
        self._ctx = ctx
        self._registry = registry
        self._store = store
        self._parallelism = parallelism
        self._progress = progress
        self._cancel = cancel if cancel is not None else threading.Event()

    def run(self, ops: Mapping[str, Operation]) -> ApplyResult:
        """Execute *ops*.

        Raises:
            ApplyError: An operation failed; carries the partial result.
            ApplyCanceled: Cancel was requested; carries the partial result.
        """
        waves = operation_waves(ops)
        result = ApplyResult()
        logger.info("Applying %d operations in %d waves", len(ops), len(waves))

        with ThreadPoolExecutor(
            max_workers=self._parallelism, thread_name_prefix="aws-provisioner-apply"
        ) as pool:
            for index, wave in enumerate(waves):
                if self._cancel.is_set():
                    self._mark_not_attempted(waves[index:], ops, result)
                    raise ApplyCanceled(result)

                logger.debug("Wave %d: %s", index, ", ".join(wave))
                outcomes = self._run_wave(pool, [ops[k] for k in wave])
                first_error = self._record(outcomes, result)

                if first_error is not None:
                    self._mark_not_attempted(waves[index + 1 :], ops, result)
                    raise ApplyError(result, str(first_error)) from first_error
                if self._cancel.is_set():
                    self._mark_not_attempted(waves[index + 1 :], ops, result)
                    raise ApplyCanceled(result)

        return result

    def _run_wave(self, pool: ThreadPoolExecutor, wave: Sequence[Operation]) -> list[_Outcome]:
        abort = threading.Event()
        futures: list[Future[_Outcome]] = [pool.submit(self._run_one, op, abort) for op in wave]
        try:
            for fut in as_completed(futures):
                if fut.result().status == "failed":
                    abort.set()
        except KeyboardInterrupt:
            logger.warning("Interrupted; waiting for in-flight operations to finish")
            self._cancel.set()
            abort.set()
            wait(futures)
        return [f.result() for f in futures]

    def _run_one(self, op: Operation, abort: threading.Event) -> _Outcome:
        if abort.is_set() or self._cancel.is_set():
            return _Outcome(op, "skipped")

        if self._progress and op.change is not None:
            self._progress(op.change, "start")
        try:
            changed = op.run(ctx=self._ctx, store=self._store, registry=self._registry)
        except Exception as exc:
            logger.error("%s failed: %s", op.key, exc)
            abort.set()
            return _Outcome(op, "failed", exc)

        if not changed:
            return _Outcome(op, "unchanged")
        if self._progress and op.change is not None:
            self._progress(op.change, "done")
        logger.debug("%s applied", op.key)
        return _Outcome(op, "applied")

    @staticmethod
    def _record(outcomes: list[_Outcome], result: ApplyResult) -> Exception | None:
        first_error: Exception | None = None
        for outcome in sorted(outcomes, key=lambda o: o.op.change.rank if o.op.change else -1):
            if outcome.op.change is None:
                continue
            if outcome.status == "applied":
                result.applied.append(outcome.op.change)
            elif outcome.status == "failed":
                result.failed[outcome.op.key] = str(outcome.error)
                first_error = first_error or outcome.error
            elif outcome.status == "skipped":
                result.not_attempted.append(outcome.op.key)
        return first_error

    @staticmethod
    def _mark_not_attempted(
        waves: Sequence[Sequence[str]], ops: Mapping[str, Operation], result: ApplyResult
    ) -> None:
        for wave in waves:
            result.not_attempted.extend(k for k in wave if ops[k].change is not None)
