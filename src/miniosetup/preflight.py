"""Host checks performed before anything is changed."""
from __future__ import annotations

import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path

from packaging.version import InvalidVersion, Version

OS_RELEASE = Path("/etc/os-release")
SUPPORTED_ID = "ubuntu"
MINIMUM_VERSION = Version("20.04")


class PreflightError(RuntimeError):
    """Raised when the host cannot be provisioned at all."""


@dataclass(frozen=True)
class OSRelease:
    """Relevant fields of ``/etc/os-release``."""

    id: str
    version_id: str
    pretty_name: str

    @property
    def supported(self) -> bool:
        """Return ``True`` for Ubuntu 20.04 or newer."""
        if self.id != SUPPORTED_ID:
            return False
        try:
            return Version(self.version_id) >= MINIMUM_VERSION
        except InvalidVersion:
            return False


def parse_os_release(text: str) -> dict[str, str]:
    """Parse ``KEY=value`` lines, removing surrounding quotes."""
    values: dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        values[key.strip()] = value.strip().strip("\"'")
    return values


def read_os_release(path: Path = OS_RELEASE) -> OSRelease | None:
    """Return the host's OS release, or ``None`` when it cannot be read."""
    try:
        fields: Mapping[str, str] = parse_os_release(path.read_text(encoding="utf-8"))
    except OSError:
        return None
    return OSRelease(
        id=fields.get("ID", "").lower(),
        version_id=fields.get("VERSION_ID", ""),
        pretty_name=fields.get("PRETTY_NAME", fields.get("NAME", "unknown")),
    )


def require_root(geteuid: Callable[[], int] = os.geteuid) -> None:
    """Raise :class:`PreflightError` unless running as root."""
    if geteuid() != 0:
        raise PreflightError("miniosetup must be run as root (try sudo).")


def os_advisory(release: OSRelease | None) -> str | None:
    """Return a warning when the OS is not a supported Ubuntu release."""
    if release is None:
        return "Cannot determine the operating system; only Ubuntu 20.04+ is supported."
    if release.supported:
        return None
    return (
        f"{release.pretty_name} is not supported; this installer targets Ubuntu "
        f"{MINIMUM_VERSION} or newer."
    )


__all__ = [
    "OSRelease",
    "PreflightError",
    "os_advisory",
    "parse_os_release",
    "read_os_release",
    "require_root",
]
