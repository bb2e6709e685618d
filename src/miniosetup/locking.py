"""Host-wide run lock so only one provisioning run mutates the host."""
from __future__ import annotations

import fcntl
import json
import os
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path


class LockTimeoutError(RuntimeError):
    """Raised when the run lock cannot be acquired in time."""


@dataclass(slots=True)
class LockHandle:
    """Details about an acquired lock."""

    path: Path
    wait_ms: int


class LockManager:
    """Acquire ``flock``-based locks under *runtime_dir*."""

    def __init__(self, runtime_dir: Path, default_timeout: float, *, poll: float = 0.1) -> None:
        """Store the lock directory and default timeout."""
        self.runtime_dir = runtime_dir
        self.default_timeout = default_timeout
        self.poll = poll

    @property
    def run_lock_path(self) -> Path:
        """Return the path of the global run lock."""
        return self.runtime_dir / "miniosetup.lock"

    @contextmanager
    def run_lock(self, *, timeout: float | None = None) -> Iterator[LockHandle]:
        """Hold the global run lock for the duration of the block."""
        path = self.run_lock_path
        path.parent.mkdir(parents=True, exist_ok=True)
        limit = self.default_timeout if timeout is None else timeout
        started = time.monotonic()
        handle = path.open("a+", encoding="utf-8")
        try:
            while True:
                try:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError as exc:
                    if time.monotonic() - started >= limit:
                        raise LockTimeoutError(
                            f"Another miniosetup run holds {path}; waited {limit:.1f}s."
                        ) from exc
                    time.sleep(self.poll)
            wait_ms = int((time.monotonic() - started) * 1000)
            handle.seek(0)
            handle.truncate()
            handle.write(
                json.dumps(
                    {
                        "pid": os.getpid(),
                        "path": str(path),
                        "acquired_at": datetime.now(tz=UTC).isoformat(),
                    }
                )
            )
            handle.flush()
            try:
                yield LockHandle(path=path, wait_ms=wait_ms)
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        finally:
            handle.close()


__all__ = ["LockHandle", "LockManager", "LockTimeoutError"]
