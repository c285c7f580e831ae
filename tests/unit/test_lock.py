"""Tests for the local state lock."""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING

import pytest

from aws_provisioner.engine.errors import LockHeldError, StateLockError
from aws_provisioner.engine.lock import StateLock

if TYPE_CHECKING:
    from pathlib import Path

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="flock semantics")


def test_lock_file_sits_next_to_state(tmp_path: Path) -> None:
    lock = StateLock(tmp_path / "nested" / "state.json")

    with lock:
        assert lock.lock_path == tmp_path / "nested" / "state.json.lock"
        assert lock.lock_path.exists()


def test_second_holder_fails_fast(tmp_path: Path) -> None:
    state_path = tmp_path / "state.json"

    with StateLock(state_path), pytest.raises(LockHeldError) as exc_info:
        StateLock(state_path).__enter__()

    assert isinstance(exc_info.value, StateLockError)
    assert exc_info.value.lock_path == str(tmp_path / "state.json.lock")
    assert "locked by another process" in str(exc_info.value)


def test_lock_is_reusable_after_release(tmp_path: Path) -> None:
    state_path = tmp_path / "state.json"

    with StateLock(state_path):
        pass
    with StateLock(state_path) as lock:
        assert lock.lock_path.exists()


def test_exit_without_enter_is_noop(tmp_path: Path) -> None:
    StateLock(tmp_path / "state.json").__exit__(None, None, None)
