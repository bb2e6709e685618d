"""Read-only inspection of the host before provisioning."""
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .config import AppConfig
from .ports import PortInspector
from .providers.packages import PackageProvider
from .providers.systemd import SystemdProvider

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProbeSpec:
    """What to look for on the host."""

    service_unit: str
    ports: tuple[int, ...] = ()
    config_paths: tuple[Path, ...] = ()
    packages: tuple[str, ...] = ()

    @classmethod
    def from_config(cls, config: AppConfig) -> ProbeSpec:
        """Build the probe targets for the configured installation."""
        cert_dir = config.service.cert_dir
        return cls(
            service_unit=config.service.unit,
            ports=config.ports.monitored,
            config_paths=(
                *config.service.unit_files,
                *config.service.env_files,
                config.service.config_dir,
                cert_dir / "public.crt",
                cert_dir / "private.key",
            ),
            packages=(config.packages.server, config.packages.client),
        )


@dataclass(frozen=True)
class HostProbe:
    """Snapshot of installation artifacts found on the host."""

    service_registered: bool = False
    ports_in_use: frozenset[int] = frozenset()
    config_files_present: frozenset[Path] = frozenset()
    package_installed: Mapping[str, bool] = field(default_factory=dict)
    unknown: frozenset[str] = frozenset()

    @property
    def has_artifacts(self) -> bool:
        """Return ``True`` when anything suggests a previous installation."""
        return (
            self.service_registered
            or bool(self.ports_in_use)
            or bool(self.config_files_present)
            or any(self.package_installed.values())
        )

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation."""
        return {
            "service_registered": self.service_registered,
            "ports_in_use": sorted(self.ports_in_use),
            "config_files_present": sorted(str(path) for path in self.config_files_present),
            "package_installed": dict(self.package_installed),
            "unknown": sorted(self.unknown),
            "has_artifacts": self.has_artifacts,
        }


def probe(
    spec: ProbeSpec,
    *,
    systemd: SystemdProvider,
    ports: PortInspector,
    packages: PackageProvider,
) -> HostProbe:
    """Inspect the host for *spec*.

    Nothing is modified. A fact that cannot be determined because its tool is
    missing is recorded in :attr:`HostProbe.unknown` and treated as absent.
    """
    unknown: set[str] = set()

    registered = systemd.is_registered(spec.service_unit)
    if registered is None:
        unknown.add("service_registered")
        registered = False

    bound, conclusive = ports.ports_in_use(spec.ports)
    if not conclusive:
        unknown.add("ports_in_use")

    present = frozenset(path for path in spec.config_paths if path.exists())

    installed: dict[str, bool] = {}
    for name in spec.packages:
        state = packages.is_installed(name)
        if state is None:
            unknown.add("package_installed")
            state = False
        installed[name] = state

    result = HostProbe(
        service_registered=registered,
        ports_in_use=frozenset(bound),
        config_files_present=present,
        package_installed=installed,
        unknown=frozenset(unknown),
    )
    LOGGER.debug("Host probe: %s", result.to_dict())
    return result


__all__ = ["HostProbe", "ProbeSpec", "probe"]
