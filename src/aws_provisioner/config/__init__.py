"""YAML configuration loading and convenience plan/apply API."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from aws_provisioner.config.loader import ConfigError, load_config
from aws_provisioner.config.registry import default_registry
from aws_provisioner.config.schema import Config, ProviderConfig
from aws_provisioner.core.provider import AWSProvider
from aws_provisioner.core.state import State
from aws_provisioner.engine.engine import AWSEngine, ProgressCallback

if TYPE_CHECKING:
    import threading
    from pathlib import Path

    from aws_provisioner.engine.graph import ResourceGraph
    from aws_provisioner.engine.types import ApplyResult, Plan, ResourceChange

__all__ = [
    "Config",
    "ConfigError",
    "ProviderConfig",
    "State",
    "apply",
    "drift",
    "engine_from_config",
    "graph",
    "load",
    "load_config",
    "outputs",
    "plan",
    "plan_and_apply",
    "refresh",
    "save_state",
]


def load(path: Path | str) -> Config:
    """Load a YAML configuration file."""
    return load_config(path)


def engine_from_config(config: Config) -> AWSEngine:
    """Build an ``AWSEngine`` from a ``Config`` instance."""
    provider = AWSProvider(
        region=config.provider.region,
        profile=config.provider.profile,
        endpoint_url=config.provider.endpoint_url,
        connect_timeout=config.provider.connect_timeout,
        read_timeout=config.provider.read_timeout,
        retry=config.retry,
    )
    return AWSEngine(
        provider=provider,
        stack=config.stack,
        state_path=config.state_path,
        registry=default_registry(),
        parallelism=config.parallelism,
    )


def plan(
    config: Config,
    *,
    destroy: bool = False,
    refresh: bool = True,
    engine: AWSEngine | None = None,
) -> Plan:
    """Plan changes for the given configuration.

    Pass an *engine* already inside ``engine.locked()`` to keep the state lock
    held until the plan is applied.
    """
    engine = engine or engine_from_config(config)
    return engine.plan(config.resources, outputs=config.outputs, destroy=destroy, refresh=refresh)


def apply(
    plan_obj: Plan,
    config: Config,
    *,
    progress: ProgressCallback | None = None,
    cancel: threading.Event | None = None,
    engine: AWSEngine | None = None,
) -> ApplyResult:
    """Apply a previously computed plan."""
    engine = engine or engine_from_config(config)
    return engine.apply(plan_obj, progress=progress, cancel=cancel)


def plan_and_apply(
    config: Config,
    *,
    destroy: bool = False,
    refresh: bool = True,
    progress: ProgressCallback | None = None,
    cancel: threading.Event | None = None,
) -> ApplyResult:
    """Plan and apply in one step, holding the state lock throughout."""
    engine = engine_from_config(config)
    with engine.locked():
        plan_obj = engine.plan(
            config.resources, outputs=config.outputs, destroy=destroy, refresh=refresh
        )
        return engine.apply(plan_obj, progress=progress, cancel=cancel)


def graph(config: Config) -> ResourceGraph:
    """Dependency graph of the declared resources (no AWS calls)."""
    return engine_from_config(config).graph(config.resources)


def refresh(config: Config) -> tuple[list[ResourceChange], State]:
    """Refresh state from AWS (not persisted).

    Returns the list of drift changes and the new state. Call
    :func:`save_state` to persist the returned state to disk.
    """
    engine = engine_from_config(config)
    before, after = engine.refresh()
    return engine.state_changes(before, after), after


def save_state(config: Config, state: State) -> None:
    """Persist state to disk."""
    engine_from_config(config).save_state(state)


def drift(config: Config) -> list[ResourceChange]:
    """Detect drift between state file and live AWS resources."""
    return engine_from_config(config).drift()


def outputs(config: Config, *, engine: AWSEngine | None = None) -> dict[str, Any]:
    """Output values recorded by the last apply."""
    return (engine or engine_from_config(config)).outputs()
