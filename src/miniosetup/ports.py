"""TCP listener inspection and forced port release."""
from __future__ import annotations

import logging
import os
import signal
import subprocess
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field

LOGGER = logging.getLogger(__name__)


class PortReleaseError(RuntimeError):
    """Raised when a port stays bound after its owners were terminated."""


@dataclass(slots=True)
class PortInspector:
    """Query and free TCP ports using ``lsof``."""

    lsof_bin: str = "lsof"
    release_timeout: float = 2.0
    poll_interval: float = 0.25
    kill: Callable[[int, int], None] = os.kill
    sleep: Callable[[float], None] = time.sleep
    clock: Callable[[], float] = time.monotonic
    _available: bool | None = field(default=None, repr=False)

    def is_in_use(self, port: int) -> bool | None:
        """Return whether *port* has a listener, or ``None`` when ``lsof`` is unavailable."""
        pids = self.owners(port)
        if pids is None:
            return None
        return bool(pids)

    def owners(self, port: int) -> list[int] | None:
        """Return PIDs bound to *port*; ``None`` when ownership cannot be determined."""
        try:
            result = self._run([self.lsof_bin, "-t", "-i", f"TCP:{port}", "-s", "TCP:LISTEN"])
        except FileNotFoundError:
            if self._available is not False:
                LOGGER.debug("%s not found; port state unknown", self.lsof_bin)
            self._available = False
            return None
        self._available = True
        # lsof exits 1 with no output when nothing matches.
        pids: list[int] = []
        for line in (result.stdout or "").splitlines():
            line = line.strip()
            if line.isdigit():
                pids.append(int(line))
        return sorted(set(pids))

    def ports_in_use(self, ports: Iterable[int]) -> tuple[set[int], bool]:
        """Return the bound subset of *ports* and whether the check was conclusive."""
        bound: set[int] = set()
        conclusive = True
        for port in ports:
            state = self.is_in_use(port)
            if state is None:
                conclusive = False
            elif state:
                bound.add(port)
        return bound, conclusive

    def release(self, port: int) -> list[int]:
        """Terminate every process bound to *port* and wait for the port to free up.

        Returns the PIDs that were signalled. Raises :class:`PortReleaseError`
        when the port is still bound once ``release_timeout`` has elapsed.
        """
        pids = self.owners(port)
        if pids is None:
            raise PortReleaseError(
                f"Cannot determine which process owns port {port}: {self.lsof_bin} not found."
            )
        if not pids:
            return []
        for pid in pids:
            LOGGER.info("Killing process %s bound to port %s", pid, port)
            try:
                self.kill(pid, signal.SIGKILL)
            except ProcessLookupError:
                continue
            except PermissionError as exc:
                raise PortReleaseError(
                    f"Not permitted to terminate PID {pid} on port {port}: {exc}"
                ) from exc

        deadline = self.clock() + self.release_timeout
        while True:
            remaining = self.owners(port)
            if not remaining:
                return pids
            if self.clock() >= deadline:
                joined = ", ".join(str(pid) for pid in remaining)
                raise PortReleaseError(
                    f"Port {port} is still bound after {self.release_timeout:.1f}s "
                    f"(PIDs: {joined})."
                )
            self.sleep(self.poll_interval)

    def _run(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        return subprocess.run(  # noqa: S603
            list(args),
            capture_output=True,
            text=True,
            check=False,
        )


__all__ = ["PortInspector", "PortReleaseError"]
