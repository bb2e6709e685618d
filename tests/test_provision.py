"""End-to-end tests for the provisioning driver with scripted collaborators."""
from __future__ import annotations

import json
import subprocess
from collections.abc import Callable, Iterable, Sequence
from pathlib import Path

import pytest

from conftest import write_certificate_pair
from miniosetup import provision
from miniosetup.bootstrap import FilesystemError
from miniosetup.config import AppConfig
from miniosetup.credentials import Credentials, ValidationResult
from miniosetup.locking import LockManager
from miniosetup.logging import StructuredLogger
from miniosetup.preflight import OSRelease, PreflightError
from miniosetup.probe import HostProbe
from miniosetup.prompts import PromptError, SiteSettings
from miniosetup.providers.certbot import CertbotClient
from miniosetup.providers.firewall import FirewallResult
from miniosetup.providers.nginx import NginxError, NginxProvider
from miniosetup.providers.scheduler import CronScheduler
from miniosetup.provision import ProviderSet, ProvisioningDriver, ProvisionResult
from miniosetup.reconcile import CleanupChoice, InstallDecision
from miniosetup.templates import TemplateEngine
from miniosetup.tls import (
    CertificateAuthority,
    CertificateSource,
    ExistingCertificate,
    ExistingCertificateChoice,
)

PASSWORD = 'pa"ss\\word12'
UBUNTU = OSRelease(id="ubuntu", version_id="22.04", pretty_name="Ubuntu 22.04.4 LTS")


class DummyResult:
    """Stand-in for ``subprocess.CompletedProcess``."""

    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        """Initialise the dummy result."""
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class FakeSystemd:
    """Systemd double for both the storage service and nginx."""

    systemctl_bin = "systemctl"

    def __init__(self, *, registered: bool = False) -> None:
        """Start with the given unit registration state."""
        self.registered = registered
        self.active: set[str] = set()
        self.calls: list[str] = []

    def is_registered(self, unit: str) -> bool | None:
        return self.registered

    def is_active(self, unit: str) -> bool:
        return unit in self.active

    def daemon_reload(self) -> None:
        self.calls.append("daemon-reload")

    def enable(self, unit: str) -> None:
        self.calls.append(f"enable {unit}")

    def start(self, unit: str) -> None:
        self.calls.append(f"start {unit}")
        self.active.add(unit)

    def stop(self, unit: str, *, check: bool = True) -> None:
        self.calls.append(f"stop {unit}")
        self.active.discard(unit)

    def restart(self, unit: str) -> None:
        self.calls.append(f"restart {unit}")
        self.active.add(unit)

    def reload(self, unit: str) -> None:
        self.calls.append(f"reload {unit}")


class FakePorts:
    def __init__(self, bound: Iterable[int] = ()) -> None:
        self.bound = set(bound)

    def ports_in_use(self, ports: Iterable[int]) -> tuple[set[int], bool]:
        return {port for port in ports if port in self.bound}, True

    def release(self, port: int) -> list[int]:
        if port in self.bound:
            self.bound.discard(port)
            return [4242]
        return []


class FakePackages:
    """Package manager double keeping an installed set."""

    def __init__(self, installed: Iterable[str] = ()) -> None:
        """Seed the installed set."""
        self.installed = set(installed)
        self.calls: list[str] = []

    def is_installed(self, name: str) -> bool | None:
        return name in self.installed

    def update(self) -> None:
        self.calls.append("update")

    def install(self, *names: str) -> list[str]:
        added = [name for name in names if name not in self.installed]
        self.installed.update(added)
        self.calls.extend(f"install {name}" for name in added)
        return added

    def install_deb(self, path: Path) -> None:
        self.calls.append(f"install-deb {path.name}")
        self.installed.add(path.stem)

    def install_snap(self, name: str, *, classic: bool = False) -> None:
        self.calls.append(f"snap install {name}{' --classic' if classic else ''}")

    def refresh_snap(self, name: str) -> None:
        self.calls.append(f"snap refresh {name}")

    def remove(self, name: str) -> bool:
        if name not in self.installed:
            return False
        self.installed.discard(name)
        self.calls.append(f"remove {name}")
        return True


class FakeFirewall:
    def __init__(self, *, available: bool = True) -> None:
        self._available = available
        self.allowed: list[int] = []

    def available(self) -> bool:
        return self._available

    def allow_ports(self, ports: Iterable[int], *, enable: bool = True) -> FirewallResult:
        self.allowed = list(dict.fromkeys(ports))
        return FirewallResult(allowed=list(self.allowed), enabled=enable)


class FakeResolver:
    def __init__(self) -> None:
        self.requested: list[str] = []

    def resolve_latest_package_url(self, product: str) -> str:
        self.requested.append(product)
        return f"https://dl.example.test/{product}/{product}_1_amd64.deb"


class ScriptedOperator:
    """Operator answering from fixed values."""

    def __init__(
        self,
        *,
        site: SiteSettings,
        credentials: Sequence[Credentials],
        cleanup: CleanupChoice = CleanupChoice.ABORT,
        continue_on_unsupported: bool = False,
    ) -> None:
        """Store the scripted answers."""
        self.site = site
        self._credentials = list(credentials)
        self.cleanup = cleanup
        self.continue_on_unsupported = continue_on_unsupported
        self.cleanup_asked: list[HostProbe] = []
        self.invalid: list[ValidationResult] = []
        self.messages: list[str] = []

    def confirm_unsupported_os(self, message: str) -> bool:
        self.messages.append(message)
        return self.continue_on_unsupported

    def cleanup_choice(self, probe: HostProbe) -> CleanupChoice:
        self.cleanup_asked.append(probe)
        return self.cleanup

    def site_settings(self) -> SiteSettings:
        return self.site

    def credentials(self, attempt: int) -> Credentials:
        return self._credentials[attempt - 1]

    def report_invalid(self, result: ValidationResult) -> None:
        self.invalid.append(result)

    def existing_certificate_choice(
        self, existing: ExistingCertificate
    ) -> ExistingCertificateChoice:
        return ExistingCertificateChoice.REUSE

    def progress(self, message: str) -> None:
        self.messages.append(message)


class Host:
    """Every fake collaborator of one run."""

    def __init__(
        self,
        config: AppConfig,
        *,
        registered: bool = False,
        installed: Iterable[str] = (),
        ufw: bool = True,
    ) -> None:
        """Build providers rooted in the config's temporary paths."""
        self.config = config
        self.systemd = FakeSystemd(registered=registered)
        self.packages = FakePackages(installed)
        self.firewall = FakeFirewall(available=ufw)
        self.resolver = FakeResolver()
        templates = TemplateEngine.with_overrides(config.templates_dir)
        self.providers = ProviderSet(
            templates=templates,
            systemd=self.systemd,  # type: ignore[arg-type]
            ports=FakePorts(),  # type: ignore[arg-type]
            packages=self.packages,  # type: ignore[arg-type]
            nginx=NginxProvider(
                templates=templates,
                systemd=self.systemd,  # type: ignore[arg-type]
                sites_available=config.nginx.sites_available,
                sites_enabled=config.nginx.sites_enabled,
            ),
            certbot=CertbotClient(live_dir=config.tls.lets_encrypt.live_dir),
            scheduler=CronScheduler(templates=templates, cron_file=config.tls.renewal.cron_file),
            firewall=self.firewall,  # type: ignore[arg-type]
            resolver=self.resolver,
        )
        self.account_commands: list[list[str]] = []
        self.logger = StructuredLogger(config.logs_dir)

    def driver(
        self,
        operator: ScriptedOperator,
        *,
        check_root: Callable[[], None] = lambda: None,
        os_release: OSRelease | None = UBUNTU,
    ) -> ProvisioningDriver:
        def runner(command: list[str]) -> subprocess.CompletedProcess[str]:
            self.account_commands.append(command)
            return subprocess.CompletedProcess(command, 0, "", "")

        return ProvisioningDriver(
            self.config,
            self.providers,
            operator,
            LockManager(self.config.runtime_dir, default_timeout=1.0),
            check_root=check_root,
            os_release=lambda: os_release,
            account_runner=runner,
        )

    def run(self, operator: ScriptedOperator, **kwargs: object) -> ProvisionResult:
        with self.logger.operation("install") as op:
            result = self.driver(operator, **kwargs).run(op)  # type: ignore[arg-type]
            op.success("done", context=result.to_dict())
        return result

    def steps(self) -> list[str]:
        lines = self.logger.path.read_text(encoding="utf-8").splitlines()
        return [step["name"] for step in json.loads(lines[-1])["steps"]]


@pytest.fixture(autouse=True)
def _offline(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    """Downloads write a placeholder file; nginx -t always passes."""
    fetched: list[str] = []

    def fake_download(url: str, destination: Path, *, timeout: float = 30.0) -> Path:
        fetched.append(url)
        destination.write_bytes(b"deb")
        return destination

    monkeypatch.setattr(provision, "download", fake_download)
    monkeypatch.setattr(NginxProvider, "_run_nginx", lambda self, args: DummyResult())
    return fetched


def _self_signed_site(**overrides: object) -> SiteSettings:
    values: dict[str, object] = {
        "domain": "storage.example.test",
        "authority": CertificateAuthority.SELF_SIGNED,
        "admin_email": None,
        "data_dir": None,
        "install_client": True,
    }
    values.update(overrides)
    return SiteSettings(**values)  # type: ignore[arg-type]


def _valid() -> list[Credentials]:
    return [Credentials(username="minioadmin", password=PASSWORD)]


def test_fresh_self_signed_install(app_config: AppConfig) -> None:
    """A clean host ends with service, proxy, certificate and firewall configured."""
    host = Host(app_config)
    operator = ScriptedOperator(site=_self_signed_site(), credentials=_valid())

    result = host.run(operator)

    assert result.decision is InstallDecision.FRESH
    assert operator.cleanup_asked == []
    assert result.certificate is not None
    assert result.certificate.authority is CertificateAuthority.SELF_SIGNED
    assert result.certificate.source is CertificateSource.ISSUED
    assert result.certificate.cert_path == app_config.service.cert_dir / "public.crt"

    env_file = app_config.service.env_file
    assert result.env_file == env_file
    assert env_file.stat().st_mode & 0o777 == 0o600
    env = env_file.read_text(encoding="utf-8")
    assert 'MINIO_ROOT_USER="minioadmin"' in env
    assert 'MINIO_ROOT_PASSWORD="pa\\"ss\\\\word12"' in env
    assert f'MINIO_VOLUMES="{app_config.data_dir}"' in env
    assert f"--certs-dir {app_config.service.cert_dir}" in env

    site = app_config.nginx.sites_available / "minio"
    assert result.site_path == site
    assert "server_name storage.example.test;" in site.read_text(encoding="utf-8")
    assert (app_config.nginx.sites_enabled / "minio").is_symlink()
    assert result.nginx_action == "started"

    assert host.systemd.calls[:3] == ["daemon-reload", "enable minio", "restart minio"]
    assert host.systemd.calls[-2:] == ["enable nginx", "start nginx"]
    assert host.firewall.allowed == [22, 80, 443, 9001]
    assert host.resolver.requested == ["server", "client"]
    assert {"nginx", "minio", "mcli"} <= set(result.installed_packages)
    assert app_config.data_dir.is_dir()
    assert app_config.data_dir.stat().st_mode & 0o777 == 0o750
    assert app_config.service.cert_dir.stat().st_mode & 0o777 == 0o700
    assert host.account_commands == []
    assert not app_config.tls.renewal.cron_file.exists()


def test_password_never_reaches_the_log(app_config: AppConfig) -> None:
    host = Host(app_config)

    host.run(ScriptedOperator(site=_self_signed_site(), credentials=_valid()))

    log = host.logger.path.read_text(encoding="utf-8")
    assert "word12" not in log
    assert "minioadmin" in log


def test_steps_are_recorded_in_order(app_config: AppConfig) -> None:
    host = Host(app_config)

    host.run(ScriptedOperator(site=_self_signed_site(), credentials=_valid()))

    steps = host.steps()
    expected = [
        "lock.acquired",
        "probe",
        "reconcile",
        "credentials",
        "packages.base",
        "packages.server",
        "packages.client",
        "service-account",
        "directories",
        "certificate",
        "environment",
        "service.restart",
        "nginx.validate",
        "nginx.activate",
        "firewall",
    ]
    assert [name for name in steps if name in expected] == expected


def test_invalid_credentials_are_asked_again(app_config: AppConfig) -> None:
    """Rejected credentials are reported and re-requested until valid."""
    host = Host(app_config)
    operator = ScriptedOperator(
        site=_self_signed_site(),
        credentials=[
            Credentials(username="ad", password="longenough1"),
            Credentials(username="minioadmin", password="short"),
            Credentials(username="minioadmin", password="longenough1"),
        ],
    )

    result = host.run(operator)

    assert len(operator.invalid) == 2
    assert result.settings is not None
    assert result.settings.credentials.password == "longenough1"
    assert host.steps().count("credentials.invalid") == 2


def test_existing_installation_abort_changes_nothing(app_config: AppConfig) -> None:
    """Declining cleanup aborts before anything is installed."""
    host = Host(app_config, registered=True, installed={"minio"})
    operator = ScriptedOperator(site=_self_signed_site(), credentials=_valid())

    result = host.run(operator)

    assert result.aborted is True
    assert len(operator.cleanup_asked) == 1
    assert host.packages.calls == []
    assert host.systemd.calls == []
    assert not app_config.service.env_file.exists()


def test_existing_installation_clean_then_fresh(app_config: AppConfig) -> None:
    """Consenting to cleanup removes the old installation before installing again."""
    env_file = app_config.service.env_file
    env_file.parent.mkdir(parents=True)
    env_file.write_text('MINIO_ROOT_PASSWORD="old"\n', encoding="utf-8")
    cert_path = app_config.service.cert_dir / "public.crt"
    write_certificate_pair(cert_path, app_config.service.cert_dir / "private.key")
    old_cert = cert_path.read_bytes()
    cron_file = app_config.tls.renewal.cron_file
    cron_file.parent.mkdir(parents=True)
    cron_file.write_text("0 3 * * * root certbot renew --quiet\n", encoding="utf-8")
    host = Host(app_config, installed={"minio"})
    operator = ScriptedOperator(
        site=_self_signed_site(), credentials=_valid(), cleanup=CleanupChoice.CLEAN
    )

    result = host.run(operator)

    assert result.decision is InstallDecision.CLEAN_AND_FRESH
    assert "remove minio" in host.packages.calls
    assert host.packages.calls.index("remove minio") < host.packages.calls.index("update")
    assert "old" not in env_file.read_text(encoding="utf-8")
    assert cert_path.read_bytes() != old_cert
    assert result.certificate is not None
    assert result.certificate.source is CertificateSource.ISSUED
    assert "cleanup.release-ports" in host.steps()
    assert not cron_file.exists()


def test_unsupported_os_declined(app_config: AppConfig) -> None:
    host = Host(app_config)
    operator = ScriptedOperator(site=_self_signed_site(), credentials=_valid())
    debian = OSRelease(id="debian", version_id="12", pretty_name="Debian GNU/Linux 12")

    result = host.run(operator, os_release=debian)

    assert result.aborted is True
    assert result.warnings and "not supported" in result.warnings[0]
    assert host.packages.calls == []


def test_unsupported_os_confirmed_continues(app_config: AppConfig) -> None:
    host = Host(app_config)
    operator = ScriptedOperator(
        site=_self_signed_site(), credentials=_valid(), continue_on_unsupported=True
    )

    result = host.run(operator, os_release=None)

    assert result.decision is InstallDecision.FRESH
    assert result.warnings[0].startswith("Cannot determine the operating system")


def test_requires_root(app_config: AppConfig) -> None:
    host = Host(app_config)

    def not_root() -> None:
        raise PreflightError("miniosetup must be run as root (try sudo).")

    with pytest.raises(PreflightError):
        host.run(
            ScriptedOperator(site=_self_signed_site(), credentials=_valid()),
            check_root=not_root,
        )


def test_missing_domain_is_rejected(app_config: AppConfig) -> None:
    host = Host(app_config)

    with pytest.raises(PromptError):
        host.run(ScriptedOperator(site=_self_signed_site(domain=None), credentials=_valid()))


def test_missing_ufw_is_a_warning(app_config: AppConfig) -> None:
    host = Host(app_config, ufw=False)

    result = host.run(ScriptedOperator(site=_self_signed_site(), credentials=_valid()))

    assert result.firewall is None
    assert any("ufw is not installed" in warning for warning in result.warnings)


def test_installed_packages_are_not_downloaded(app_config: AppConfig, _offline: list[str]) -> None:
    host = Host(app_config)

    host.run(
        ScriptedOperator(site=_self_signed_site(install_client=False), credentials=_valid())
    )

    assert host.resolver.requested == ["server"]
    assert _offline == ["https://dl.example.test/server/server_1_amd64.deb"]


def test_lets_encrypt_installs_certbot_and_schedules_renewal(
    monkeypatch: pytest.MonkeyPatch, app_config: AppConfig
) -> None:
    """Let's Encrypt installs certbot via snap, issues and registers renewal."""
    live_dir = app_config.tls.lets_encrypt.live_dir

    def fake_certbot(self: CertbotClient, args: Sequence[str]) -> DummyResult:
        domain = list(args)[list(args).index("-d") + 1]
        write_certificate_pair(
            live_dir / domain / "fullchain.pem",
            live_dir / domain / "privkey.pem",
            common_name=domain,
            issuer_name="R3",
        )
        return DummyResult()

    monkeypatch.setattr(CertbotClient, "available", lambda self: False)
    monkeypatch.setattr(CertbotClient, "_run", fake_certbot)
    monkeypatch.setattr(provision, "_link_certbot", lambda: None)
    host = Host(app_config)
    site = _self_signed_site(
        authority=CertificateAuthority.LETSENCRYPT, admin_email="ops@example.test"
    )

    result = host.run(ScriptedOperator(site=site, credentials=_valid()))

    assert result.certificate is not None
    assert result.certificate.authority is CertificateAuthority.LETSENCRYPT
    assert result.certificate.source is CertificateSource.ISSUED
    assert "snap install certbot --classic" in host.packages.calls
    assert "snap refresh core" in host.packages.calls
    assert "stop nginx" in host.systemd.calls
    assert app_config.tls.renewal.cron_file.exists()


def test_lets_encrypt_failure_warns(
    monkeypatch: pytest.MonkeyPatch, app_config: AppConfig
) -> None:
    from miniosetup.providers.certbot import CertbotError

    def failing_certbot(self: CertbotClient, args: Sequence[str]) -> DummyResult:
        raise CertbotError("certbot certonly failed (exit 1): DNS problem")

    monkeypatch.setattr(CertbotClient, "available", lambda self: True)
    monkeypatch.setattr(CertbotClient, "_run", failing_certbot)
    host = Host(app_config)
    site = _self_signed_site(
        authority=CertificateAuthority.LETSENCRYPT, admin_email="ops@example.test"
    )

    result = host.run(ScriptedOperator(site=site, credentials=_valid()))

    assert result.certificate is not None
    assert result.certificate.source is CertificateSource.FALLBACK
    assert any("self-signed" in warning for warning in result.warnings)
    assert not app_config.tls.renewal.cron_file.exists()


def test_data_dir_that_is_a_file_stops_the_run(app_config: AppConfig) -> None:
    """A data path that cannot become a directory fails before anything is configured."""
    data_file = app_config.data_dir.parent / "datafile"
    data_file.write_text("not a directory", encoding="utf-8")
    host = Host(app_config)
    operator = ScriptedOperator(site=_self_signed_site(data_dir=data_file), credentials=_valid())

    with pytest.raises(FilesystemError, match="not a directory"):
        host.run(operator)

    assert data_file.is_file()
    assert not app_config.service.env_file.exists()
    assert "restart minio" not in host.systemd.calls
    assert not (app_config.nginx.sites_available / "minio").exists()
    assert host.firewall.allowed == []


def test_rejected_nginx_config_leaves_nginx_untouched(
    monkeypatch: pytest.MonkeyPatch, app_config: AppConfig
) -> None:
    """A failing ``nginx -t`` stops the run before nginx is reloaded or started."""

    def rejecting_nginx(self: NginxProvider, args: Sequence[str]) -> DummyResult:
        raise NginxError("nginx -t failed (exit 1): unknown directive")

    monkeypatch.setattr(NginxProvider, "_run_nginx", rejecting_nginx)
    host = Host(app_config)

    with pytest.raises(NginxError, match="unknown directive"):
        host.run(ScriptedOperator(site=_self_signed_site(), credentials=_valid()))

    nginx_calls = [call for call in host.systemd.calls if call.endswith(" nginx")]
    assert nginx_calls == []
    assert not (app_config.nginx.sites_available / "minio").exists()
    assert not (app_config.nginx.sites_enabled / "minio").is_symlink()
    assert host.firewall.allowed == []
    assert "nginx.validate" not in host.steps()
