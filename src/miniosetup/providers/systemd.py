"""Systemd provider for the storage service and reverse proxy units."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass


class SystemdError(RuntimeError):
    """Raised when systemd operations fail."""


@dataclass(slots=True)
class SystemdProvider:
    """Thin wrapper around ``systemctl`` and ``journalctl``."""

    systemctl_bin: str = "systemctl"
    journalctl_bin: str = "journalctl"

    @staticmethod
    def unit_name(unit: str) -> str:
        """Return the fully qualified unit name for *unit*."""
        return unit if "." in unit else f"{unit}.service"

    def enable(self, unit: str) -> subprocess.CompletedProcess[str]:
        """Enable *unit*."""
        return self._systemctl("enable", unit)

    def start(self, unit: str) -> subprocess.CompletedProcess[str]:
        """Start *unit*."""
        return self._systemctl("start", unit)

    def stop(self, unit: str, *, check: bool = True) -> subprocess.CompletedProcess[str]:
        """Stop *unit*."""
        return self._systemctl("stop", unit, check=check)

    def restart(self, unit: str) -> subprocess.CompletedProcess[str]:
        """Restart *unit*."""
        return self._systemctl("restart", unit)

    def reload(self, unit: str) -> subprocess.CompletedProcess[str]:
        """Ask *unit* to reload its configuration."""
        return self._systemctl("reload", unit)

    def daemon_reload(self) -> None:
        """Reload systemd manager configuration."""
        self._systemctl("daemon-reload")

    def is_active(self, unit: str) -> bool:
        """Return ``True`` when *unit* is active."""
        try:
            result = self._systemctl("is-active", unit, check=False, quiet=True)
        except SystemdError:
            return False
        return result.returncode == 0

    def is_registered(self, unit: str) -> bool | None:
        """Return whether systemd knows a unit file for *unit*.

        ``None`` means ``systemctl`` is unavailable and the answer is unknown.
        """
        name = self.unit_name(unit)
        try:
            result = self._systemctl("list-unit-files", name, check=False, extra=["--no-legend"])
        except SystemdError:
            return None
        for line in (result.stdout or "").splitlines():
            fields = line.split()
            if fields and fields[0] == name:
                return True
        return False

    def logs(self, unit: str, *, lines: int = 50) -> str:
        """Return the last *lines* journal entries for *unit*."""
        args = ["--unit", self.unit_name(unit), "--no-pager", "--lines", str(lines)]
        result = self._run_command(
            [self.journalctl_bin, *args],
            check=False,
            error_prefix=f"{self.journalctl_bin} --unit {unit}",
        )
        return result.stdout or ""

    # ------------------------------------------------------------------
    def _systemctl(
        self,
        command: str,
        unit: str | None = None,
        *,
        check: bool = True,
        quiet: bool = False,
        extra: Sequence[str] = (),
    ) -> subprocess.CompletedProcess[str]:
        args: list[str] = [self.systemctl_bin, command]
        if quiet:
            args.append("--quiet")
        args.extend(extra)
        if unit is not None:
            args.append(self.unit_name(unit))
        return self._run_command(
            args,
            check=check,
            error_prefix=f"{self.systemctl_bin} {command}",
        )

    def _run_command(
        self,
        args: Sequence[str],
        *,
        check: bool,
        error_prefix: str,
    ) -> subprocess.CompletedProcess[str]:
        try:
            result = subprocess.run(  # noqa: S603
                list(args),
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise SystemdError(f"{args[0]} not found: {exc}") from exc
        if check and result.returncode != 0:
            stdout = getattr(result, "stdout", "") or ""
            stderr = getattr(result, "stderr", "") or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise SystemdError(f"{error_prefix} failed (exit {result.returncode}): {message}")
        return result


__all__ = ["SystemdError", "SystemdProvider"]
