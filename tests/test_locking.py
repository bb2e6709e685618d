"""Tests for the host-wide run lock."""
from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from miniosetup.locking import LockManager, LockTimeoutError


def test_run_lock_creates_metadata(tmp_path: Path) -> None:
    """Acquiring the lock writes metadata and releases cleanly."""
    manager = LockManager(tmp_path / "run", default_timeout=1.0)

    lock_path = tmp_path / "run" / "miniosetup.lock"
    with manager.run_lock() as handle:
        assert handle.wait_ms >= 0
        assert handle.path == lock_path
        data = json.loads(lock_path.read_text(encoding="utf-8"))
        assert data["pid"] == os.getpid()
        assert data["path"] == str(lock_path)

    # Lockfile persists for diagnostics but no longer holds the lock.
    with manager.run_lock(timeout=0.2):
        pass


def test_run_lock_timeout(tmp_path: Path) -> None:
    """A second acquisition times out while the first lock is held."""
    manager = LockManager(tmp_path / "run", default_timeout=1.0, poll=0.01)

    with manager.run_lock():
        with pytest.raises(LockTimeoutError, match="Another miniosetup run"):
            with manager.run_lock(timeout=0.1):
                pass


def test_run_lock_released_after_error(tmp_path: Path) -> None:
    """An exception inside the block still releases the lock."""
    manager = LockManager(tmp_path / "run", default_timeout=1.0)

    with pytest.raises(RuntimeError):
        with manager.run_lock():
            raise RuntimeError("boom")

    with manager.run_lock(timeout=0.2) as handle:
        assert handle.wait_ms < 200
