"""State management for tracking deployed resources."""

from __future__ import annotations

import contextlib
import hashlib
import json
import logging
import os
import tempfile
import threading
import uuid
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from aws_provisioner.engine.errors import StateMismatchError

logger = logging.getLogger(__name__)


def _canonical_json(obj: Any) -> str:
    # Stable encoding for hashes/digests. `default=str` keeps it robust for
    # datetimes/paths/etc while staying deterministic enough for our use.
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def compute_attributes_hash(attrs: Mapping[str, Any]) -> str:
    """Compute a stable hash for a resource's stored attributes."""
    payload = _canonical_json(attrs)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class ResourceInstance(BaseModel):
    """A tracked resource instance in the state file.

    Attributes:
        address: Unique resource address (e.g., "aws_subnet.public_a")
        resource_type: Type of the resource (e.g., "aws_subnet")
        name: Resource name (e.g., "public_a")
        attributes: Applied inputs plus provider-assigned outputs (ids, ARNs)
        attributes_hash: SHA256 hash for change detection
        dependencies: Addresses of dependencies
        created_at: When the resource was created
        updated_at: When the resource was last updated
    """

    address: str
    resource_type: str
    name: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    attributes_hash: str = ""
    dependencies: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class State(BaseModel):
    """Terraform-style state file for tracking deployed resources.

    Attributes:
        version: State file format version
        stack: Stack name the state belongs to
        resources: Mapping of resource addresses to instances
        outputs: Output values resolved after the last apply
    """

    version: int = 1
    stack: str
    serial: int = 0
    lineage: str = Field(default_factory=lambda: str(uuid.uuid4()))
    resources: dict[str, ResourceInstance] = Field(default_factory=dict)
    outputs: dict[str, Any] = Field(default_factory=dict)

    def save(self, path: Path) -> None:
        """Save state to a JSON file.

        - Writes atomically (temp file + fsync + rename)
        - Writes a `.backup` copy of the previous state when overwriting
        """
        path.parent.mkdir(parents=True, exist_ok=True)

        backup_path = Path(str(path) + ".backup")
        # Avoid TOCTOU race between exists() and read_bytes().
        with contextlib.suppress(FileNotFoundError):
            backup_path.write_bytes(path.read_bytes())

        data = self.model_dump(mode="json")
        content = json.dumps(data, indent=2, sort_keys=True) + "\n"

        fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
        tmp_file = Path(tmp_path)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            tmp_file.replace(path)
        finally:
            with contextlib.suppress(FileNotFoundError):
                tmp_file.unlink()
        logger.debug("State saved: serial=%d path=%s", self.serial, path)

    @classmethod
    def load(cls, path: Path) -> State:
        """Load state from a JSON file."""
        state = cls.model_validate_json(path.read_text(encoding="utf-8"))
        logger.debug("State loaded from %s", path)
        return state

    @classmethod
    def load_or_create(cls, path: Path, stack: str) -> State:
        """Load existing state or create a new one."""
        if path.exists():
            return cls.load(path)
        logger.debug("Created new state for stack %s", stack)
        return cls(stack=stack)


def compute_state_digest(state: State) -> str:
    """Compute a stable digest of state content (excluding timestamps).

    Used for stale-plan detection.  Timestamps and outputs are left out so
    they never force a re-plan.
    """
    resources = []
    for address, inst in sorted(state.resources.items(), key=lambda kv: kv[0]):
        resources.append(
            {
                "address": address,
                "resource_type": inst.resource_type,
                "name": inst.name,
                "attributes_hash": inst.attributes_hash,
                "dependencies": sorted(inst.dependencies),
            }
        )

    digestable = {
        "version": state.version,
        "stack": state.stack,
        "lineage": state.lineage,
        "serial": state.serial,
        "resources": resources,
    }
    payload = _canonical_json(digestable)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class StateStore:
    """Durable, thread-safe access to one stack's state file.

    Every mutation bumps the serial and is written to disk before the call
    returns, so a crash mid-apply leaves the file consistent with what was
    actually applied.  Callers are expected to hold the
    :class:`~aws_provisioner.engine.lock.StateLock` for the whole cycle.
    """

    def __init__(self, path: Path, stack: str) -> None:
        self._path = Path(path)
        self._stack = stack
        self._state: State | None = None
        self._mutex = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def state(self) -> State:
        if self._state is None:
            return self.load()
        return self._state

    def load(self, *, lineage: str | None = None, serial: int = 0) -> State:
        """Read the state file, or start a new state (optionally with a known lineage)."""
        with self._mutex:
            if self._path.exists():
                state = State.load(self._path)
            elif lineage is not None:
                state = State(stack=self._stack, lineage=lineage, serial=serial)
            else:
                state = State(stack=self._stack)
            if state.stack != self._stack:
                raise StateMismatchError(self._stack, state.stack)
            self._state = state
        logger.debug("State loaded: serial=%d, %d resources", state.serial, len(state.resources))
        return state

    def get(self, address: str) -> ResourceInstance | None:
        with self._mutex:
            return self.state.resources.get(address)

    def outputs(self) -> dict[str, dict[str, Any]]:
        """Snapshot of applied attributes keyed by address."""
        with self._mutex:
            return {addr: dict(inst.attributes) for addr, inst in self.state.resources.items()}

    def save(
        self,
        address: str,
        attributes: dict[str, Any],
        *,
        resource_type: str,
        name: str,
        dependencies: list[str],
    ) -> ResourceInstance:
        """Record the applied attributes of one resource and persist."""
        with self._mutex:
            state = self.state
            now = datetime.now(UTC)
            prior = state.resources.get(address)
            inst = ResourceInstance(
                address=address,
                resource_type=resource_type,
                name=name,
                attributes=attributes,
                attributes_hash=compute_attributes_hash(attributes),
                dependencies=list(dependencies),
                created_at=prior.created_at if prior is not None else now,
                updated_at=now,
            )
            state.resources[address] = inst
            self._persist(state)
            return inst

    def remove(self, address: str) -> None:
        """Forget a deleted resource and persist."""
        with self._mutex:
            state = self.state
            if state.resources.pop(address, None) is not None:
                self._persist(state)

    def set_outputs(self, outputs: dict[str, Any]) -> None:
        with self._mutex:
            state = self.state
            if state.outputs == outputs:
                return
            state.outputs = outputs
            self._persist(state)

    def replace(self, state: State) -> None:
        """Persist a whole state (used after a refresh)."""
        with self._mutex:
            if state.stack != self._stack:
                raise StateMismatchError(self._stack, state.stack)
            self._state = state
            self._persist(state)

    def _persist(self, state: State) -> None:
        state.serial += 1
        state.save(self._path)
