"""Optional ``ufw`` firewall integration."""
from __future__ import annotations

import shutil
import subprocess
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field


class FirewallError(RuntimeError):
    """Raised when a ufw command fails."""


@dataclass(slots=True)
class FirewallResult:
    """Rules applied by :meth:`UfwProvider.allow_ports`."""

    allowed: list[int] = field(default_factory=list)
    enabled: bool = False


@dataclass(slots=True)
class UfwProvider:
    """Open TCP ports with ``ufw`` when it is installed."""

    ufw_bin: str = "ufw"

    def available(self) -> bool:
        """Return ``True`` when ufw is installed."""
        return shutil.which(self.ufw_bin) is not None

    def is_active(self) -> bool:
        """Return ``True`` when ufw reports an active firewall."""
        result = self._run([self.ufw_bin, "status"], check=False)
        return "Status: active" in (result.stdout or "")

    def allow_ports(self, ports: Iterable[int], *, enable: bool = True) -> FirewallResult:
        """Allow each TCP port, then enable the firewall when it is inactive."""
        outcome = FirewallResult()
        for port in dict.fromkeys(ports):
            self._run([self.ufw_bin, "allow", f"{port}/tcp"])
            outcome.allowed.append(port)
        if enable and not self.is_active():
            self._run([self.ufw_bin, "--force", "enable"])
            outcome.enabled = True
        return outcome

    # ------------------------------------------------------------------
    def _run(
        self,
        args: Sequence[str],
        *,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        try:
            result = subprocess.run(  # noqa: S603
                list(args),
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise FirewallError(f"{self.ufw_bin} not found: {exc}") from exc
        if check and result.returncode != 0:
            message = (result.stderr or result.stdout or "no output").strip()
            raise FirewallError(f"{' '.join(args)} failed (exit {result.returncode}): {message}")
        return result


__all__ = ["FirewallError", "FirewallResult", "UfwProvider"]
