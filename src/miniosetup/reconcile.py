"""Decide how to treat a previous installation and clean it up on request."""
from __future__ import annotations

import logging
import shutil
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .ports import PortInspector
from .probe import HostProbe
from .providers.nginx import NginxProvider
from .providers.packages import PackageProvider
from .providers.scheduler import CronScheduler
from .providers.systemd import SystemdProvider

LOGGER = logging.getLogger(__name__)


class InstallDecision(Enum):
    """Outcome of reconciliation; terminal for the run."""

    FRESH = "fresh"
    # Reserved: the operator is only ever offered clean or abort.
    REUSE = "reuse"
    CLEAN_AND_FRESH = "clean-and-fresh"
    ABORT = "abort"


class CleanupChoice(Enum):
    """Operator answer when a previous installation is detected."""

    CLEAN = "clean"
    ABORT = "abort"


ChoiceSource = CleanupChoice | Callable[[HostProbe], CleanupChoice | None] | None


@dataclass(slots=True)
class CleanupReport:
    """What :meth:`InstallationCleaner.clean` changed."""

    stopped: list[str] = field(default_factory=list)
    killed: dict[int, list[int]] = field(default_factory=dict)
    removed_files: list[Path] = field(default_factory=list)
    removed_packages: list[str] = field(default_factory=list)


@dataclass(slots=True)
class InstallationCleaner:
    """Remove every artifact of a previous installation, in a fixed order."""

    systemd: SystemdProvider
    ports: PortInspector
    packages: PackageProvider
    nginx: NginxProvider
    scheduler: CronScheduler
    service_unit: str
    nginx_unit: str
    monitored_ports: tuple[int, ...]
    unit_files: tuple[Path, ...]
    env_files: tuple[Path, ...]
    cert_dir: Path
    package_names: tuple[str, ...]
    site_name: str

    def clean(self, on_step: Callable[[str, str], None] | None = None) -> CleanupReport:
        """Run the cleanup.

        Raises :class:`~miniosetup.ports.PortReleaseError` when a port stays
        bound; nothing after that step runs.
        """
        report = CleanupReport()
        step = on_step or (lambda name, detail: None)

        for unit in (self.service_unit, self.nginx_unit):
            # Units that are not installed fail to stop; that is expected here.
            self.systemd.stop(unit, check=False)
            report.stopped.append(unit)
        step("cleanup.stop-services", ", ".join(report.stopped))

        for port in self.monitored_ports:
            pids = self.ports.release(port)
            if pids:
                report.killed[port] = pids
        step("cleanup.release-ports", ", ".join(str(port) for port in self.monitored_ports))

        report.removed_files.extend(_remove_files((*self.unit_files, *self.env_files)))
        report.removed_files.extend(_clear_directory(self.cert_dir))
        if self.scheduler.unregister():
            report.removed_files.append(self.scheduler.cron_file)
        step("cleanup.remove-files", f"{len(report.removed_files)} removed")

        for name in self.package_names:
            if self.packages.remove(name):
                report.removed_packages.append(name)
        step("cleanup.remove-packages", ", ".join(report.removed_packages) or "none installed")

        report.removed_files.extend(self.nginx.remove(self.site_name))
        step("cleanup.remove-site", self.site_name)

        self.systemd.daemon_reload()
        step("cleanup.daemon-reload", "systemd")
        return report


def reconcile(
    probe: HostProbe,
    user_choice: ChoiceSource,
    *,
    cleaner: InstallationCleaner,
    on_step: Callable[[str, str], None] | None = None,
) -> InstallDecision:
    """Return the install decision for *probe*.

    *user_choice* may be a :class:`CleanupChoice` or a callable returning one;
    the callable is only invoked when the probe found an existing installation.
    Anything but an explicit ``CLEAN`` aborts.
    """
    if not probe.has_artifacts:
        return InstallDecision.FRESH

    choice = user_choice(probe) if callable(user_choice) else user_choice
    if choice is not CleanupChoice.CLEAN:
        LOGGER.info("Existing installation kept; aborting run")
        return InstallDecision.ABORT

    cleaner.clean(on_step)
    return InstallDecision.CLEAN_AND_FRESH


def _remove_files(paths: Iterable[Path]) -> list[Path]:
    removed: list[Path] = []
    for path in paths:
        if path.exists() or path.is_symlink():
            path.unlink()
            removed.append(path)
    return removed


def _clear_directory(directory: Path) -> list[Path]:
    removed: list[Path] = []
    if not directory.is_dir():
        return removed
    for entry in sorted(directory.iterdir()):
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry)
        else:
            entry.unlink()
        removed.append(entry)
    return removed


__all__ = [
    "CleanupChoice",
    "CleanupReport",
    "InstallDecision",
    "InstallationCleaner",
    "reconcile",
]
