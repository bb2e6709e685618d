"""Provisioning driver: probe, decide, act, report.

:class:`ProvisioningDriver` sequences one installation run. Decisions that
need a person are delegated to an :class:`~miniosetup.prompts.Operator`;
every step is recorded on the caller's
:class:`~miniosetup.logging.OperationScope`. Admin credentials only ever
reach the generated environment file.
"""
from __future__ import annotations

import logging
import os
import shutil
import tempfile
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from .bootstrap import (
    DirectorySpec,
    FilesystemError,
    ServiceAccountSpec,
    apply_directory_plan,
    ensure_service_account,
    plan_directories,
)
from .bootstrap.service_accounts import Runner
from .config import AppConfig
from .credentials import Credentials, validate
from .locking import LockManager
from .logging import OperationScope
from .ports import PortInspector
from .preflight import OSRelease, os_advisory, read_os_release, require_root
from .probe import HostProbe, ProbeSpec, probe
from .prompts import Operator, PromptError
from .providers import (
    CertbotClient,
    CronScheduler,
    DirectoryIndexResolver,
    FirewallResult,
    NginxProvider,
    PackageProvider,
    PackageUrlResolver,
    SystemdProvider,
    UfwProvider,
)
from .providers.downloads import download, host_arch
from .reconcile import InstallationCleaner, InstallDecision, reconcile
from .templates import TemplateEngine
from .tls import (
    CertificateAuthority,
    CertificateLifecycleManager,
    CertificateSource,
    CertificateState,
)

LOGGER = logging.getLogger(__name__)

NGINX_PACKAGE = "nginx"
SNAPD_PACKAGE = "snapd"
CERTBOT_SNAP = "certbot"
SNAP_CERTBOT_PATH = Path("/snap/bin/certbot")
CERTBOT_LINK = Path("/usr/bin/certbot")
HTTP_PORT = 80
HTTPS_PORT = 443
SSL_PROTOCOLS = "TLSv1.2 TLSv1.3"
SSL_CIPHERS = "HIGH:!aNULL:!MD5"
PROXY_TIMEOUT = 300


@dataclass(frozen=True)
class ProvisionSettings:
    """Everything the operator decided for this run."""

    domain: str
    authority: CertificateAuthority
    admin_email: str | None
    credentials: Credentials
    data_dir: Path
    install_client: bool

    def to_dict(self) -> dict[str, object]:
        """Return a loggable representation without the password."""
        return {
            "domain": self.domain,
            "authority": self.authority.value,
            "admin_email": self.admin_email,
            "username": self.credentials.username,
            "data_dir": str(self.data_dir),
            "install_client": self.install_client,
        }


@dataclass
class ProvisionResult:
    """Outcome of a provisioning run."""

    decision: InstallDecision
    settings: ProvisionSettings | None = None
    certificate: CertificateState | None = None
    env_file: Path | None = None
    site_path: Path | None = None
    nginx_action: str | None = None
    firewall: FirewallResult | None = None
    installed_packages: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def aborted(self) -> bool:
        """Return ``True`` when the run stopped without provisioning."""
        return self.decision is InstallDecision.ABORT

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable summary."""
        return {
            "decision": self.decision.value,
            "settings": self.settings.to_dict() if self.settings else None,
            "certificate": self.certificate.to_dict() if self.certificate else None,
            "env_file": str(self.env_file) if self.env_file else None,
            "site_path": str(self.site_path) if self.site_path else None,
            "nginx_action": self.nginx_action,
            "firewall": (
                {"allowed": self.firewall.allowed, "enabled": self.firewall.enabled}
                if self.firewall
                else None
            ),
            "installed_packages": list(self.installed_packages),
            "warnings": list(self.warnings),
        }


@dataclass
class ProviderSet:
    """External tool wrappers used by a run."""

    templates: TemplateEngine
    systemd: SystemdProvider
    ports: PortInspector
    packages: PackageProvider
    nginx: NginxProvider
    certbot: CertbotClient
    scheduler: CronScheduler
    firewall: UfwProvider
    resolver: PackageUrlResolver

    @classmethod
    def from_config(cls, config: AppConfig) -> ProviderSet:
        """Build every provider from *config*."""
        templates = TemplateEngine.with_overrides(config.templates_dir)
        systemd = SystemdProvider(
            systemctl_bin=config.systemd.systemctl_bin,
            journalctl_bin=config.systemd.journalctl_bin,
        )
        lets_encrypt = config.tls.lets_encrypt
        return cls(
            templates=templates,
            systemd=systemd,
            ports=PortInspector(release_timeout=config.ports.release_timeout),
            packages=PackageProvider(
                apt_get_bin=config.packages.apt_get_bin,
                dpkg_bin=config.packages.dpkg_bin,
                dpkg_query_bin=config.packages.dpkg_query_bin,
                snap_bin=config.packages.snap_bin,
            ),
            nginx=NginxProvider(
                templates=templates,
                systemd=systemd,
                sites_available=config.nginx.sites_available,
                sites_enabled=config.nginx.sites_enabled,
                nginx_bin=config.nginx.bin,
                unit=config.nginx.unit,
            ),
            certbot=CertbotClient(
                certbot_bin=lets_encrypt.certbot_bin,
                live_dir=lets_encrypt.live_dir,
            ),
            scheduler=CronScheduler(templates=templates, cron_file=config.tls.renewal.cron_file),
            firewall=UfwProvider(ufw_bin=config.firewall.ufw_bin),
            resolver=_LazyResolver(config),
        )


@dataclass
class _LazyResolver:
    """Defer architecture detection until a package URL is actually needed."""

    config: AppConfig
    _resolver: DirectoryIndexResolver | None = None

    def resolve_latest_package_url(self, product: str) -> str:
        if self._resolver is None:
            downloads = self.config.downloads
            self._resolver = DirectoryIndexResolver(
                sources={"server": downloads.server, "client": downloads.client},
                arch=downloads.arch or host_arch(),
                timeout=downloads.timeout,
            )
        return self._resolver.resolve_latest_package_url(product)


def build_cleaner(config: AppConfig, providers: ProviderSet) -> InstallationCleaner:
    """Return the cleaner for the configured installation."""
    return InstallationCleaner(
        systemd=providers.systemd,
        ports=providers.ports,
        packages=providers.packages,
        nginx=providers.nginx,
        scheduler=providers.scheduler,
        service_unit=config.service.unit,
        nginx_unit=config.nginx.unit,
        monitored_ports=config.ports.monitored,
        unit_files=config.service.unit_files,
        env_files=config.service.env_files,
        cert_dir=config.service.cert_dir,
        package_names=(config.packages.server, config.packages.client),
        site_name=config.nginx.site_name,
    )


def build_certificate_manager(
    config: AppConfig,
    providers: ProviderSet,
    operator: Operator | None = None,
) -> CertificateLifecycleManager:
    """Return the certificate manager for the configured installation."""
    return CertificateLifecycleManager(
        certbot=providers.certbot,
        systemd=providers.systemd,
        scheduler=providers.scheduler,
        self_signed=config.tls.self_signed,
        owner=config.service.user,
        group=config.service.group,
        nginx_unit=config.nginx.unit,
        service_unit=config.service.unit,
        renewal_schedule=config.tls.renewal.schedule,
        choose_existing=operator.existing_certificate_choice if operator else None,
    )


def probe_host(config: AppConfig, providers: ProviderSet) -> HostProbe:
    """Probe the host for the configured installation."""
    return probe(
        ProbeSpec.from_config(config),
        systemd=providers.systemd,
        ports=providers.ports,
        packages=providers.packages,
    )


def env_quote(value: str) -> str:
    """Escape *value* for a double-quoted environment file entry."""
    return value.replace("\\", "\\\\").replace('"', '\\"')


class ProvisioningDriver:
    """Run a complete installation."""

    def __init__(
        self,
        config: AppConfig,
        providers: ProviderSet,
        operator: Operator,
        locks: LockManager,
        *,
        check_root: Callable[[], None] = require_root,
        os_release: Callable[[], OSRelease | None] = read_os_release,
        account_runner: Runner | None = None,
    ) -> None:
        """Store collaborators; nothing touches the host until :meth:`run`."""
        self.config = config
        self.providers = providers
        self.operator = operator
        self.locks = locks
        self._check_root = check_root
        self._os_release = os_release
        self._account_runner = account_runner

    def run(self, op: OperationScope) -> ProvisionResult:
        """Provision the host, recording each step on *op*."""
        self._check_root()
        advisory = os_advisory(self._os_release())
        if advisory is not None:
            op.add_step("preflight.os", status="warning", detail=advisory)
            if not self.operator.confirm_unsupported_os(advisory):
                return ProvisionResult(decision=InstallDecision.ABORT, warnings=[advisory])

        with self.locks.run_lock() as lock:
            op.add_step("lock.acquired", detail=f"waited {lock.wait_ms} ms")
            result = self._provision(op)
        if advisory is not None:
            result.warnings.insert(0, advisory)
        return result

    # ------------------------------------------------------------------
    def _provision(self, op: OperationScope) -> ProvisionResult:
        config = self.config
        providers = self.providers

        self.operator.progress("Checking for an existing installation")
        host = probe_host(config, providers)
        op.add_step("probe", detail=_describe_probe(host))

        decision = reconcile(
            host,
            self.operator.cleanup_choice,
            cleaner=build_cleaner(config, providers),
            on_step=lambda name, detail: op.add_step(name, detail=detail),
        )
        op.add_step("reconcile", detail=decision.value)
        if decision is InstallDecision.ABORT:
            return ProvisionResult(decision=decision)

        settings = self._collect_settings(op)
        result = ProvisionResult(decision=decision, settings=settings)

        self.operator.progress("Installing packages")
        result.installed_packages.extend(self._install_packages(settings, op))

        self.operator.progress("Preparing the service account and directories")
        account = ensure_service_account(
            ServiceAccountSpec(name=config.service.user, group=config.service.group),
            runner=self._account_runner,
        )
        result.warnings.extend(account.warnings)
        op.add_step(
            "service-account",
            detail=", ".join(action.kind for action in account.actions) or "present",
        )
        self._prepare_directories(settings, op)

        self.operator.progress("Setting up the TLS certificate")
        manager = build_certificate_manager(config, providers, self.operator)
        certificate = manager.ensure_certificate(
            settings.domain,
            settings.admin_email,
            config.service.cert_dir,
            settings.authority,
        )
        result.certificate = certificate
        op.add_step(
            "certificate",
            status="warning" if certificate.source is CertificateSource.FALLBACK else "success",
            detail=f"{certificate.authority.value} ({certificate.source.value})",
        )
        if certificate.source is CertificateSource.FALLBACK:
            result.warnings.append(
                "Let's Encrypt issuance failed; a self-signed certificate is in use."
            )

        self.operator.progress("Configuring the MinIO service")
        result.env_file = self._write_environment(settings, op)
        providers.systemd.daemon_reload()
        providers.systemd.enable(config.service.unit)
        providers.systemd.restart(config.service.unit)
        op.add_step("service.restart", detail=config.service.unit)

        self.operator.progress("Configuring nginx")
        render = providers.nginx.render_site(
            config.nginx.site_name,
            self._site_context(settings.domain, certificate),
        )
        op.add_step("nginx.validate", detail=str(render.site_path))
        result.site_path = render.site_path
        result.nginx_action = providers.nginx.activate()
        op.add_step("nginx.activate", detail=result.nginx_action)

        result.firewall = self._configure_firewall(result, op)
        return result

    def _collect_settings(self, op: OperationScope) -> ProvisionSettings:
        site = self.operator.site_settings()
        attempt = 1
        while True:
            credentials = self.operator.credentials(attempt)
            validation = validate(credentials.username, credentials.password)
            if validation.ok:
                break
            op.add_step(
                "credentials.invalid",
                status="warning",
                detail=", ".join(kind.value for kind in validation.violations),
            )
            self.operator.report_invalid(validation)
            attempt += 1
        op.add_step("credentials", detail=f"accepted after {attempt} attempt(s)")

        if site.domain is None or site.authority is None:
            raise PromptError("A domain and a certificate authority are required.")
        return ProvisionSettings(
            domain=site.domain,
            authority=site.authority,
            admin_email=site.admin_email,
            credentials=credentials,
            data_dir=site.data_dir or self.config.data_dir,
            install_client=bool(site.install_client),
        )

    def _install_packages(self, settings: ProvisionSettings, op: OperationScope) -> list[str]:
        packages = self.providers.packages
        installed: list[str] = []

        packages.update()
        installed.extend(packages.install(*self.config.packages.base))
        installed.extend(packages.install(NGINX_PACKAGE))
        op.add_step("packages.base", detail=", ".join(installed) or "already installed")

        if settings.authority is CertificateAuthority.LETSENCRYPT:
            if self.providers.certbot.available():
                op.add_step("packages.certbot", detail="already installed")
            else:
                installed.extend(packages.install(SNAPD_PACKAGE))
                packages.install_snap("core")
                packages.refresh_snap("core")
                packages.install_snap(CERTBOT_SNAP, classic=True)
                _link_certbot()
                installed.append(CERTBOT_SNAP)
                op.add_step("packages.certbot", detail="installed via snap")

        products = [("server", self.config.packages.server)]
        if settings.install_client:
            products.append(("client", self.config.packages.client))
        for product, name in products:
            if packages.is_installed(name):
                op.add_step(f"packages.{product}", detail=f"{name} already installed")
                continue
            url = self.providers.resolver.resolve_latest_package_url(product)
            with tempfile.TemporaryDirectory(prefix="miniosetup-") as tmp:
                archive = download(
                    url,
                    Path(tmp) / f"{name}.deb",
                    timeout=self.config.downloads.timeout,
                )
                packages.install_deb(archive)
            installed.append(name)
            op.add_step(f"packages.{product}", detail=url)
        return installed

    def _prepare_directories(self, settings: ProvisionSettings, op: OperationScope) -> None:
        service = self.config.service
        plan = plan_directories(
            [
                DirectorySpec(
                    path=settings.data_dir,
                    owner=service.user,
                    group=service.group,
                    mode=0o750,
                    recursive_owner=True,
                ),
                DirectorySpec(
                    path=service.config_dir,
                    owner=service.user,
                    group=service.group,
                    mode=0o750,
                ),
                DirectorySpec(
                    path=service.cert_dir,
                    owner=service.user,
                    group=service.group,
                    mode=0o700,
                ),
            ]
        )
        if plan.warnings:
            raise FilesystemError(" ".join(plan.warnings))
        apply_directory_plan(plan)
        op.add_step("directories", detail=f"{len(plan.actions)} change(s)")

    def _write_environment(self, settings: ProvisionSettings, op: OperationScope) -> Path:
        env_file = self.config.service.env_file
        changed = self.providers.templates.render_to_path(
            "minio/env.j2",
            env_file,
            {
                "data_dir": env_quote(str(settings.data_dir)),
                "cert_dir": env_quote(str(self.config.service.cert_dir)),
                "console_port": self.config.ports.console,
                "root_user": env_quote(settings.credentials.username),
                "root_password": env_quote(settings.credentials.password),
            },
            mode=0o600,
        )
        op.add_step("environment", detail=f"{env_file} ({'changed' if changed else 'unchanged'})")
        return env_file

    def _site_context(self, domain: str, certificate: CertificateState) -> dict[str, object]:
        return {
            "http_listen_port": HTTP_PORT,
            "https_listen_port": HTTPS_PORT,
            "server_name": domain,
            "certificate": str(certificate.cert_path),
            "certificate_key": str(certificate.key_path),
            "ssl_protocols": SSL_PROTOCOLS,
            "ssl_ciphers": SSL_CIPHERS,
            "upstream_host": "localhost",
            "console_port": self.config.ports.console,
            "api_port": self.config.ports.api,
            "api_location": self.config.nginx.api_location,
            "proxy_timeout": PROXY_TIMEOUT,
        }

    def _configure_firewall(
        self, result: ProvisionResult, op: OperationScope
    ) -> FirewallResult | None:
        firewall = self.providers.firewall
        if not firewall.available():
            result.warnings.append("ufw is not installed; no firewall rules were added.")
            op.add_step("firewall", status="skipped", detail="ufw not installed")
            return None
        ports = self.config.ports
        outcome = firewall.allow_ports(
            [ports.ssh, HTTP_PORT, HTTPS_PORT, ports.console],
            enable=self.config.firewall.enable,
        )
        op.add_step(
            "firewall",
            detail=", ".join(str(port) for port in outcome.allowed)
            + (" (enabled)" if outcome.enabled else ""),
        )
        return outcome


def _describe_probe(host: HostProbe) -> str:
    if not host.has_artifacts:
        detail = "clean host"
    else:
        parts = []
        if host.service_registered:
            parts.append("service registered")
        if host.ports_in_use:
            parts.append("ports " + ", ".join(str(port) for port in sorted(host.ports_in_use)))
        if host.config_files_present:
            parts.append(f"{len(host.config_files_present)} config file(s)")
        installed = [name for name, state in host.package_installed.items() if state]
        if installed:
            parts.append("packages " + ", ".join(sorted(installed)))
        detail = "; ".join(parts)
    if host.unknown:
        detail += f" (unknown: {', '.join(sorted(host.unknown))})"
    return detail


def _link_certbot() -> None:
    if shutil.which(CERTBOT_SNAP) is not None or not SNAP_CERTBOT_PATH.exists():
        return
    CERTBOT_LINK.unlink(missing_ok=True)
    os.symlink(SNAP_CERTBOT_PATH, CERTBOT_LINK)


__all__ = [
    "ProviderSet",
    "ProvisionResult",
    "ProvisionSettings",
    "ProvisioningDriver",
    "build_certificate_manager",
    "build_cleaner",
    "env_quote",
    "probe_host",
]
