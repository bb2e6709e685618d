"""APT/dpkg/snap provider for OS package management."""
from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

LOGGER = logging.getLogger(__name__)


class PackageError(RuntimeError):
    """Raised when a package operation fails."""


@dataclass(slots=True)
class PackageProvider:
    """Install, query and remove Debian packages."""

    apt_get_bin: str = "apt-get"
    dpkg_bin: str = "dpkg"
    dpkg_query_bin: str = "dpkg-query"
    snap_bin: str = "snap"

    def is_installed(self, name: str) -> bool | None:
        """Return whether *name* is installed; ``None`` when ``dpkg-query`` is unavailable."""
        try:
            result = self._run(
                [self.dpkg_query_bin, "-W", "-f=${Status}", name],
                check=False,
            )
        except PackageError:
            return None
        return result.returncode == 0 and "install ok installed" in (result.stdout or "")

    def update(self) -> None:
        """Refresh the package lists."""
        self._run([self.apt_get_bin, "update"])

    def install(self, *names: str) -> list[str]:
        """Install every missing package in *names*; return the ones installed."""
        installed: list[str] = []
        for name in names:
            if self.is_installed(name):
                LOGGER.debug("%s already installed", name)
                continue
            self._run([self.apt_get_bin, "install", "-y", name])
            installed.append(name)
        return installed

    def install_deb(self, path: Path) -> None:
        """Install a downloaded ``.deb`` archive."""
        self._run([self.dpkg_bin, "-i", str(path)])

    def remove(self, name: str) -> bool:
        """Remove *name* when installed, followed by ``autoremove``."""
        if not self.is_installed(name):
            return False
        self._run([self.apt_get_bin, "remove", "-y", name])
        self._run([self.apt_get_bin, "autoremove", "-y"])
        return True

    def install_snap(self, name: str, *, classic: bool = False) -> None:
        """Install *name* from the snap store."""
        args = [self.snap_bin, "install"]
        if classic:
            args.append("--classic")
        args.append(name)
        self._run(args)

    def refresh_snap(self, name: str) -> None:
        """Refresh the snap *name*."""
        self._run([self.snap_bin, "refresh", name])

    # ------------------------------------------------------------------
    def _run(
        self,
        args: Sequence[str],
        *,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        env = dict(os.environ)
        env.setdefault("DEBIAN_FRONTEND", "noninteractive")
        try:
            result = subprocess.run(  # noqa: S603
                list(args),
                capture_output=True,
                text=True,
                check=False,
                env=env,
            )
        except FileNotFoundError as exc:
            raise PackageError(f"{args[0]} not found: {exc}") from exc
        if check and result.returncode != 0:
            message = (result.stderr or result.stdout or "no output").strip()
            raise PackageError(
                f"{' '.join(args)} failed (exit {result.returncode}): {message}"
            )
        return result


__all__ = ["PackageError", "PackageProvider"]
