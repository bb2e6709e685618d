"""Configuration loader for miniosetup.

Values are resolved from several sources, later sources winning:

1. Built-in defaults (:data:`DEFAULTS`).
2. ``/etc/miniosetup/config.yml`` (or the path given via ``--config-file`` or
   ``MINIOSETUP_CONFIG_FILE``).
3. Environment variables prefixed with ``MINIOSETUP_``.
4. Explicit overrides supplied programmatically (CLI flags, tests).

Environment keys use double underscores to express nesting, e.g.::

    export MINIOSETUP_PORTS__CONSOLE=9443
    export MINIOSETUP_TLS__AUTHORITY=self-signed

Values are coerced via PyYAML's ``safe_load`` so booleans and numbers parse
naturally. The resolved configuration is exposed as frozen dataclasses.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

ENV_PREFIX = "MINIOSETUP_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
PASSWORD_ENV_VAR = f"{ENV_PREFIX}ROOT_PASSWORD"
RESERVED_ENV_KEYS = {
    CONFIG_ENV_VAR,
    PASSWORD_ENV_VAR,
}

ALLOWED_AUTHORITIES = {"letsencrypt", "self-signed"}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class ServiceConfig:
    """Storage service identity, unit and file locations."""

    user: str = "minio-user"
    group: str = "minio-user"
    unit: str = "minio"
    env_file: Path = Path("/etc/default/minio")
    config_dir: Path = Path("/etc/minio")
    cert_dir: Path = Path("/etc/minio/certs")
    extra_env_files: tuple[Path, ...] = (Path("/etc/minio/config.env"),)
    unit_files: tuple[Path, ...] = (
        Path("/etc/systemd/system/minio.service"),
        Path("/lib/systemd/system/minio.service"),
    )

    @property
    def env_files(self) -> tuple[Path, ...]:
        """Return every environment file owned by the service."""
        return (self.env_file, *self.extra_env_files)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "user": self.user,
            "group": self.group,
            "unit": self.unit,
            "env_file": str(self.env_file),
            "config_dir": str(self.config_dir),
            "cert_dir": str(self.cert_dir),
            "extra_env_files": [str(path) for path in self.extra_env_files],
            "unit_files": [str(path) for path in self.unit_files],
        }


@dataclass(frozen=True)
class PortsConfig:
    """Ports served or opened by the installation."""

    api: int = 9000
    console: int = 9001
    ssh: int = 22
    release_timeout: float = 2.0

    @property
    def monitored(self) -> tuple[int, int]:
        """Return the storage service ports watched by the reconciler."""
        return (self.api, self.console)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "api": self.api,
            "console": self.console,
            "ssh": self.ssh,
            "release_timeout": self.release_timeout,
        }


@dataclass(frozen=True)
class NginxConfig:
    """Reverse proxy locations."""

    unit: str = "nginx"
    bin: str = "nginx"
    site_name: str = "minio"
    sites_available: Path = Path("/etc/nginx/sites-available")
    sites_enabled: Path = Path("/etc/nginx/sites-enabled")
    api_location: str = "/api"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "unit": self.unit,
            "bin": self.bin,
            "site_name": self.site_name,
            "sites_available": str(self.sites_available),
            "sites_enabled": str(self.sites_enabled),
            "api_location": self.api_location,
        }


@dataclass(frozen=True)
class LetsEncryptConfig:
    """Let's Encrypt client settings."""

    live_dir: Path = Path("/etc/letsencrypt/live")
    certbot_bin: str = "certbot"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"live_dir": str(self.live_dir), "certbot_bin": self.certbot_bin}


@dataclass(frozen=True)
class RenewalConfig:
    """Recurring renewal task settings."""

    schedule: str = "0 3 * * *"
    cron_file: Path = Path("/etc/cron.d/miniosetup-renew")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"schedule": self.schedule, "cron_file": str(self.cron_file)}


@dataclass(frozen=True)
class SelfSignedConfig:
    """Subject fields and validity for locally generated certificates."""

    days: int = 365
    key_size: int = 2048
    country: str = "US"
    state: str = "State"
    locality: str = "City"
    organization: str = "Organization"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "days": self.days,
            "key_size": self.key_size,
            "country": self.country,
            "state": self.state,
            "locality": self.locality,
            "organization": self.organization,
        }


@dataclass(frozen=True)
class TLSConfig:
    """Aggregated TLS configuration values."""

    authority: str = "letsencrypt"
    lets_encrypt: LetsEncryptConfig = LetsEncryptConfig()
    renewal: RenewalConfig = RenewalConfig()
    self_signed: SelfSignedConfig = SelfSignedConfig()

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "authority": self.authority,
            "lets_encrypt": self.lets_encrypt.to_dict(),
            "renewal": self.renewal.to_dict(),
            "self_signed": self.self_signed.to_dict(),
        }


@dataclass(frozen=True)
class PackagesConfig:
    """OS package names and package tool binaries."""

    server: str = "minio"
    client: str = "mcli"
    base: tuple[str, ...] = (
        "curl",
        "wget",
        "gnupg2",
        "software-properties-common",
        "apt-transport-https",
        "ca-certificates",
    )
    apt_get_bin: str = "apt-get"
    dpkg_bin: str = "dpkg"
    dpkg_query_bin: str = "dpkg-query"
    snap_bin: str = "snap"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "server": self.server,
            "client": self.client,
            "base": list(self.base),
            "apt_get_bin": self.apt_get_bin,
            "dpkg_bin": self.dpkg_bin,
            "dpkg_query_bin": self.dpkg_query_bin,
            "snap_bin": self.snap_bin,
        }


@dataclass(frozen=True)
class DownloadSourceConfig:
    """Where to look for a vendor ``.deb`` package."""

    index_url: str
    pinned_url: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"index_url": self.index_url, "pinned_url": self.pinned_url}


@dataclass(frozen=True)
class DownloadsConfig:
    """Vendor download settings."""

    server: DownloadSourceConfig
    client: DownloadSourceConfig
    arch: str | None = None
    timeout: float = 30.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "arch": self.arch,
            "timeout": self.timeout,
            "server": self.server.to_dict(),
            "client": self.client.to_dict(),
        }


@dataclass(frozen=True)
class FirewallConfig:
    """Optional firewall integration."""

    ufw_bin: str = "ufw"
    enable: bool = True

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"ufw_bin": self.ufw_bin, "enable": self.enable}


@dataclass(frozen=True)
class SystemdConfig:
    """Systemd integration configuration values."""

    systemctl_bin: str = "systemctl"
    journalctl_bin: str = "journalctl"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "systemctl_bin": self.systemctl_bin,
            "journalctl_bin": self.journalctl_bin,
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for miniosetup."""

    config_file: Path
    logs_dir: Path
    runtime_dir: Path
    templates_dir: Path
    lock_timeout: float
    data_dir: Path
    service: ServiceConfig
    ports: PortsConfig
    nginx: NginxConfig
    tls: TLSConfig
    packages: PackagesConfig
    downloads: DownloadsConfig
    firewall: FirewallConfig
    systemd: SystemdConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "logs_dir": str(self.logs_dir),
            "runtime_dir": str(self.runtime_dir),
            "templates_dir": str(self.templates_dir),
            "lock_timeout": self.lock_timeout,
            "data_dir": str(self.data_dir),
            "service": self.service.to_dict(),
            "ports": self.ports.to_dict(),
            "nginx": self.nginx.to_dict(),
            "tls": self.tls.to_dict(),
            "packages": self.packages.to_dict(),
            "downloads": self.downloads.to_dict(),
            "firewall": self.firewall.to_dict(),
            "systemd": self.systemd.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/miniosetup/config.yml",
    "logs_dir": "/var/log/miniosetup",
    "runtime_dir": "/run/miniosetup",
    "templates_dir": "/etc/miniosetup/templates",
    "lock_timeout": 10.0,
    "data_dir": "/mnt/data",
    "service": {
        "user": "minio-user",
        "group": "minio-user",
        "unit": "minio",
        "env_file": "/etc/default/minio",
        "config_dir": "/etc/minio",
        "cert_dir": "/etc/minio/certs",
        "extra_env_files": ["/etc/minio/config.env"],
        "unit_files": [
            "/etc/systemd/system/minio.service",
            "/lib/systemd/system/minio.service",
        ],
    },
    "ports": {
        "api": 9000,
        "console": 9001,
        "ssh": 22,
        "release_timeout": 2.0,
    },
    "nginx": {
        "unit": "nginx",
        "bin": "nginx",
        "site_name": "minio",
        "sites_available": "/etc/nginx/sites-available",
        "sites_enabled": "/etc/nginx/sites-enabled",
        "api_location": "/api",
    },
    "tls": {
        "authority": "letsencrypt",
        "lets_encrypt": {
            "live_dir": "/etc/letsencrypt/live",
            "certbot_bin": "certbot",
        },
        "renewal": {
            "schedule": "0 3 * * *",
            "cron_file": "/etc/cron.d/miniosetup-renew",
        },
        "self_signed": {
            "days": 365,
            "key_size": 2048,
            "country": "US",
            "state": "State",
            "locality": "City",
            "organization": "Organization",
        },
    },
    "packages": {
        "server": "minio",
        "client": "mcli",
        "base": [
            "curl",
            "wget",
            "gnupg2",
            "software-properties-common",
            "apt-transport-https",
            "ca-certificates",
        ],
        "apt_get_bin": "apt-get",
        "dpkg_bin": "dpkg",
        "dpkg_query_bin": "dpkg-query",
        "snap_bin": "snap",
    },
    "downloads": {
        "arch": None,
        "timeout": 30.0,
        "server": {
            "index_url": "https://dl.min.io/server/minio/release/linux-{arch}/",
            "pinned_url": None,
        },
        "client": {
            "index_url": "https://dl.min.io/client/mc/release/linux-{arch}/",
            "pinned_url": None,
        },
    },
    "firewall": {
        "ufw_bin": "ufw",
        "enable": True,
    },
    "systemd": {
        "systemctl_bin": "systemctl",
        "journalctl_bin": "journalctl",
    },
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_keys(merged, DEFAULTS, "")

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_keys(raw: Mapping[str, object], schema: Mapping[str, object], prefix: str) -> None:
    unknown = set(raw.keys()) - set(schema.keys())
    if unknown:
        joined = ", ".join(f"{prefix}{key}" for key in sorted(unknown))
        raise ConfigError(f"Unknown configuration keys: {joined}.")
    for key, expected in schema.items():
        if not isinstance(expected, Mapping):
            continue
        value = raw.get(key)
        if value is None:
            continue
        _validate_keys(_as_dict(value, f"{prefix}{key}"), expected, f"{prefix}{key}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    service_map = _as_dict(raw.get("service"), "service")
    service = ServiceConfig(
        user=_expect_name(service_map.get("user"), "service.user"),
        group=_expect_name(service_map.get("group"), "service.group"),
        unit=_expect_name(service_map.get("unit"), "service.unit"),
        env_file=_to_path(service_map.get("env_file")),
        config_dir=_to_path(service_map.get("config_dir")),
        cert_dir=_to_path(service_map.get("cert_dir")),
        extra_env_files=_to_paths(service_map.get("extra_env_files"), "service.extra_env_files"),
        unit_files=_to_paths(service_map.get("unit_files"), "service.unit_files"),
    )

    ports_map = _as_dict(raw.get("ports"), "ports")
    ports = PortsConfig(
        api=_expect_port(ports_map.get("api"), "ports.api", default=9000),
        console=_expect_port(ports_map.get("console"), "ports.console", default=9001),
        ssh=_expect_port(ports_map.get("ssh"), "ports.ssh", default=22),
        release_timeout=_expect_positive_float(
            ports_map.get("release_timeout"), "ports.release_timeout", default=2.0
        ),
    )
    if ports.api == ports.console:
        raise ConfigError("ports.api and ports.console must differ.")

    nginx_map = _as_dict(raw.get("nginx"), "nginx")
    api_location = str(nginx_map.get("api_location", "/api"))
    if not api_location.startswith("/"):
        raise ConfigError("nginx.api_location must start with '/'.")
    nginx = NginxConfig(
        unit=_expect_name(nginx_map.get("unit"), "nginx.unit"),
        bin=_expect_name(nginx_map.get("bin"), "nginx.bin"),
        site_name=_expect_name(nginx_map.get("site_name"), "nginx.site_name"),
        sites_available=_to_path(nginx_map.get("sites_available")),
        sites_enabled=_to_path(nginx_map.get("sites_enabled")),
        api_location=api_location,
    )

    tls_map = _as_dict(raw.get("tls"), "tls")
    authority = str(tls_map.get("authority", "letsencrypt")).strip().lower()
    if authority not in ALLOWED_AUTHORITIES:
        allowed = ", ".join(sorted(ALLOWED_AUTHORITIES))
        raise ConfigError(f"Unsupported tls.authority '{authority}'. Allowed: {allowed}.")
    lets_map = _as_dict(tls_map.get("lets_encrypt"), "tls.lets_encrypt")
    renewal_map = _as_dict(tls_map.get("renewal"), "tls.renewal")
    self_signed_map = _as_dict(tls_map.get("self_signed"), "tls.self_signed")
    schedule = str(renewal_map.get("schedule", "0 3 * * *")).strip()
    if len(schedule.split()) != 5:
        raise ConfigError("tls.renewal.schedule must contain five cron fields.")
    days = _expect_int(self_signed_map.get("days"), "tls.self_signed.days", default=365)
    key_size = _expect_int(
        self_signed_map.get("key_size"), "tls.self_signed.key_size", default=2048
    )
    if days <= 0:
        raise ConfigError("tls.self_signed.days must be greater than zero.")
    if key_size < 2048:
        raise ConfigError("tls.self_signed.key_size must be at least 2048.")
    country = str(self_signed_map.get("country", "US"))
    if len(country) != 2:
        raise ConfigError("tls.self_signed.country must be a two-letter code.")
    tls = TLSConfig(
        authority=authority,
        lets_encrypt=LetsEncryptConfig(
            live_dir=_to_path(lets_map.get("live_dir")),
            certbot_bin=_expect_name(lets_map.get("certbot_bin"), "tls.lets_encrypt.certbot_bin"),
        ),
        renewal=RenewalConfig(
            schedule=schedule,
            cron_file=_to_path(renewal_map.get("cron_file")),
        ),
        self_signed=SelfSignedConfig(
            days=days,
            key_size=key_size,
            country=country,
            state=str(self_signed_map.get("state", "State")),
            locality=str(self_signed_map.get("locality", "City")),
            organization=str(self_signed_map.get("organization", "Organization")),
        ),
    )

    packages_map = _as_dict(raw.get("packages"), "packages")
    packages = PackagesConfig(
        server=_expect_name(packages_map.get("server"), "packages.server"),
        client=_expect_name(packages_map.get("client"), "packages.client"),
        base=tuple(
            str(item) for item in _as_sequence(packages_map.get("base", []), "packages.base")
        ),
        apt_get_bin=_expect_name(packages_map.get("apt_get_bin"), "packages.apt_get_bin"),
        dpkg_bin=_expect_name(packages_map.get("dpkg_bin"), "packages.dpkg_bin"),
        dpkg_query_bin=_expect_name(
            packages_map.get("dpkg_query_bin"), "packages.dpkg_query_bin"
        ),
        snap_bin=_expect_name(packages_map.get("snap_bin"), "packages.snap_bin"),
    )

    downloads_map = _as_dict(raw.get("downloads"), "downloads")
    arch_value = downloads_map.get("arch")
    downloads = DownloadsConfig(
        arch=str(arch_value) if arch_value else None,
        timeout=_expect_positive_float(
            downloads_map.get("timeout"), "downloads.timeout", default=30.0
        ),
        server=_build_download_source(downloads_map.get("server"), "downloads.server"),
        client=_build_download_source(downloads_map.get("client"), "downloads.client"),
    )

    firewall_map = _as_dict(raw.get("firewall"), "firewall")
    firewall = FirewallConfig(
        ufw_bin=_expect_name(firewall_map.get("ufw_bin"), "firewall.ufw_bin"),
        enable=bool(firewall_map.get("enable", True)),
    )

    systemd_map = _as_dict(raw.get("systemd"), "systemd")
    systemd = SystemdConfig(
        systemctl_bin=_expect_name(systemd_map.get("systemctl_bin"), "systemd.systemctl_bin"),
        journalctl_bin=_expect_name(systemd_map.get("journalctl_bin"), "systemd.journalctl_bin"),
    )

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        logs_dir=_to_path(raw.get("logs_dir")),
        runtime_dir=_to_path(raw.get("runtime_dir")),
        templates_dir=_to_path(raw.get("templates_dir")),
        lock_timeout=_expect_positive_float(
            raw.get("lock_timeout"), "lock_timeout", default=10.0
        ),
        data_dir=_to_path(raw.get("data_dir")),
        service=service,
        ports=ports,
        nginx=nginx,
        tls=tls,
        packages=packages,
        downloads=downloads,
        firewall=firewall,
        systemd=systemd,
    )


def _build_download_source(value: object, label: str) -> DownloadSourceConfig:
    mapping = _as_dict(value, label)
    index_url = _expect_str(mapping.get("index_url"), f"{label}.index_url")
    if not index_url.startswith(("https://", "http://")):
        raise ConfigError(f"{label}.index_url must be an http(s) URL.")
    pinned = mapping.get("pinned_url")
    pinned_url = str(pinned).strip() if pinned else None
    return DownloadSourceConfig(index_url=index_url, pinned_url=pinned_url or None)


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _to_paths(value: object, label: str) -> tuple[Path, ...]:
    if value is None:
        return ()
    return tuple(_to_path(item) for item in _as_sequence(value, label))


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_port(value: object | None, label: str, *, default: int) -> int:
    port = _expect_int(value, label, default=default)
    if not 1 <= port <= 65535:
        raise ConfigError(f"{label} must be between 1 and 65535. Got {port}.")
    return port


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_name(value: object, key: str) -> str:
    text = _expect_str(value, key).strip()
    if not text:
        raise ConfigError(f"{key} must be a non-empty string.")
    return text


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(f"Expected {label} to be numeric. Got {type(value).__name__}.")
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "ConfigError",
    "DownloadSourceConfig",
    "DownloadsConfig",
    "FirewallConfig",
    "LetsEncryptConfig",
    "NginxConfig",
    "PackagesConfig",
    "PortsConfig",
    "RenewalConfig",
    "SelfSignedConfig",
    "ServiceConfig",
    "SystemdConfig",
    "TLSConfig",
    "load_config",
]
