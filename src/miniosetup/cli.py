"""Typer-powered command line interface for ``miniosetup``."""
from __future__ import annotations

import json
import os
import textwrap
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .bootstrap import FilesystemError, ServiceAccountError
from .config import PASSWORD_ENV_VAR, AppConfig, ConfigError, load_config
from .exit_codes import ExitCode
from .locking import LockManager, LockTimeoutError
from .logging import OperationScope, StructuredLogger
from .ports import PortReleaseError
from .preflight import PreflightError, require_root
from .prompts import InteractiveOperator, PromptError, SiteSettings
from .providers import (
    CertbotError,
    DownloadError,
    FirewallError,
    NginxError,
    PackageError,
    SystemdError,
)
from .provision import (
    ProviderSet,
    ProvisioningDriver,
    ProvisionResult,
    build_certificate_manager,
    build_cleaner,
    probe_host,
)
from .reconcile import CleanupChoice, InstallDecision, reconcile
from .tls import CertificateAuthority, CertificateError, ExistingCertificateChoice

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to miniosetup's YAML config file.",
)

PROVIDER_ERRORS: tuple[type[Exception], ...] = (
    CertbotError,
    CertificateError,
    DownloadError,
    FilesystemError,
    FirewallError,
    NginxError,
    PackageError,
    PortReleaseError,
    ServiceAccountError,
    SystemdError,
)
ENVIRONMENT_ERRORS: tuple[type[Exception], ...] = (LockTimeoutError, PreflightError)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        MinIO server installer.

        Provisions a MinIO object storage node behind an nginx reverse proxy
        with a Let's Encrypt or self-signed TLS certificate.
        """
    ).strip(),
)
tls_app = typer.Typer(help="Inspect and renew the TLS certificate.")
config_app = typer.Typer(help="Inspect the effective configuration.")

app.add_typer(tls_app, name="tls")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    locks: LockManager
    logger: StructuredLogger
    providers: ProviderSet


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=int(ExitCode.VALIDATION)) from exc

    runtime = RuntimeContext(
        config=config,
        locks=LockManager(config.runtime_dir, config.lock_timeout),
        logger=StructuredLogger(config.logs_dir),
        providers=ProviderSet.from_config(config),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the miniosetup version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"miniosetup {__version__}")
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = int(ExitCode.VALIDATION),
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=rc)
    raise typer.Exit(code=rc)


def _exit_code_for(exc: Exception) -> ExitCode:
    if isinstance(exc, ENVIRONMENT_ERRORS):
        return ExitCode.ENVIRONMENT
    if isinstance(exc, PROVIDER_ERRORS):
        return ExitCode.PROVIDER
    return ExitCode.VALIDATION


def _parse_authority(value: str | None) -> CertificateAuthority | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    for authority in (CertificateAuthority.LETSENCRYPT, CertificateAuthority.SELF_SIGNED):
        if normalized == authority.value:
            return authority
    raise typer.BadParameter("Use 'letsencrypt' or 'self-signed'.", param_hint="--authority")


def _render_summary(result: ProvisionResult, api_location: str) -> None:
    table = Table(show_header=False)
    table.add_column("Item", style="bold")
    table.add_column("Value")
    settings = result.settings
    if settings is not None:
        table.add_row("Domain", settings.domain)
        table.add_row("Console", f"https://{settings.domain}")
        table.add_row("API", f"https://{settings.domain}{api_location}")
        table.add_row("Admin user", settings.credentials.username)
        table.add_row("Data directory", str(settings.data_dir))
    if result.certificate is not None:
        table.add_row(
            "Certificate",
            f"{result.certificate.authority.value} ({result.certificate.source.value})",
        )
    if result.env_file is not None:
        table.add_row("Environment file", str(result.env_file))
    if result.site_path is not None:
        table.add_row("nginx site", f"{result.site_path} ({result.nginx_action})")
    if result.firewall is not None:
        table.add_row("Firewall", ", ".join(str(port) for port in result.firewall.allowed))
    console.print("[green]MinIO installation complete.[/green]")
    console.print(table)
    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")


@app.command()
def install(
    ctx: typer.Context,
    domain: str | None = typer.Option(None, "--domain", help="Public domain name."),
    authority: str | None = typer.Option(
        None,
        "--authority",
        help="Certificate authority: 'letsencrypt' or 'self-signed'.",
    ),
    email: str | None = typer.Option(None, "--email", help="Admin email for Let's Encrypt."),
    data_dir: Path | None = typer.Option(
        None,
        "--data-dir",
        file_okay=False,
        help="MinIO data directory.",
    ),
    client: bool | None = typer.Option(
        None,
        "--client/--no-client",
        help="Install the MinIO client (mcli).",
    ),
    username: str | None = typer.Option(None, "--username", help="MinIO admin username."),
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Remove an existing installation without asking.",
    ),
    reuse_certificate: bool | None = typer.Option(
        None,
        "--reuse-certificate/--new-certificate",
        help="Keep or replace an existing certificate without asking.",
    ),
    non_interactive: bool = typer.Option(
        False,
        "--non-interactive",
        help=f"Never prompt; the password is read from {PASSWORD_ENV_VAR}.",
    ),
) -> None:
    """Install and configure MinIO, nginx and the TLS certificate."""
    runtime = _get_runtime(ctx)
    config = runtime.config
    certificate_choice = None
    if reuse_certificate is not None:
        certificate_choice = (
            ExistingCertificateChoice.REUSE
            if reuse_certificate
            else ExistingCertificateChoice.REQUEST_NEW
        )
    operator = InteractiveOperator(
        console=console,
        preset=SiteSettings(
            domain=domain,
            authority=_parse_authority(authority),
            admin_email=email,
            data_dir=data_dir,
            install_client=client,
        ),
        username=username,
        password=os.environ.get(PASSWORD_ENV_VAR),
        assume_clean=yes,
        certificate_choice=certificate_choice,
        interactive=not non_interactive,
        default_data_dir=config.data_dir,
        default_authority=CertificateAuthority(config.tls.authority),
    )
    driver = ProvisioningDriver(config, runtime.providers, operator, runtime.locks)

    with runtime.logger.operation(
        "install",
        args={
            "domain": domain,
            "authority": authority,
            "data_dir": data_dir,
            "client": client,
            "yes": yes,
            "non_interactive": non_interactive,
        },
        target={"kind": "host", "service": config.service.unit},
    ) as op:
        try:
            result = driver.run(op)
        except (*PROVIDER_ERRORS, *ENVIRONMENT_ERRORS, PromptError) as exc:
            _command_error(op, str(exc), rc=int(_exit_code_for(exc)))

        if result.aborted:
            console.print("[yellow]Installation aborted.[/yellow]")
            op.warning(
                "Installation aborted by operator.",
                warnings=["aborted", *result.warnings],
                rc=int(ExitCode.ABORTED),
            )
            raise typer.Exit(code=int(ExitCode.ABORTED))

        _render_summary(result, config.nginx.api_location)
        op.success(
            "MinIO installation complete.",
            changed=len(result.installed_packages) + 1,
            warnings=result.warnings,
            context=result.to_dict(),
        )


@app.command("probe")
def probe_command(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", help="Emit the probe as JSON."),
) -> None:
    """Report installation artifacts found on this host."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "probe",
        args={"json": json_output},
        target={"kind": "host"},
    ) as op:
        host = probe_host(runtime.config, runtime.providers)
        data = host.to_dict()
        if json_output:
            console.print_json(data=data)
        else:
            table = Table(show_header=True, header_style="bold magenta")
            table.add_column("Fact", style="bold")
            table.add_column("Value")
            for key, value in data.items():
                rendered = json.dumps(value) if isinstance(value, (dict, list)) else str(value)
                table.add_row(key, rendered)
            console.print(table)
        op.success("Probed host.", changed=0, context=data)


@app.command()
def cleanup(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Remove an existing MinIO installation."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "cleanup",
        args={"yes": yes},
        target={"kind": "host", "service": runtime.config.service.unit},
    ) as op:
        try:
            require_root()
            with runtime.locks.run_lock():
                host = probe_host(runtime.config, runtime.providers)

                def _choose(_: object) -> CleanupChoice:
                    if yes or typer.confirm(
                        "Remove the existing MinIO installation?", default=False
                    ):
                        return CleanupChoice.CLEAN
                    return CleanupChoice.ABORT

                decision = reconcile(
                    host,
                    _choose,
                    cleaner=build_cleaner(runtime.config, runtime.providers),
                    on_step=lambda name, detail: op.add_step(name, detail=detail),
                )
        except (*PROVIDER_ERRORS, *ENVIRONMENT_ERRORS) as exc:
            _command_error(op, str(exc), rc=int(_exit_code_for(exc)))

        if decision is InstallDecision.ABORT:
            console.print("[yellow]Cleanup aborted.[/yellow]")
            op.warning("Cleanup aborted by operator.", rc=int(ExitCode.ABORTED))
            raise typer.Exit(code=int(ExitCode.ABORTED))
        if decision is InstallDecision.FRESH:
            console.print("Nothing to clean up.")
            op.success("No existing installation found.", changed=0)
            return
        console.print("[green]Existing installation removed.[/green]")
        op.success("Removed existing installation.", changed=1)


@tls_app.command("status")
def tls_status(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", help="Emit the status as JSON."),
) -> None:
    """Show the installed certificate."""
    runtime = _get_runtime(ctx)
    cert_dir = runtime.config.service.cert_dir
    with runtime.logger.operation(
        "tls status",
        args={"json": json_output},
        target={"kind": "certificate", "path": cert_dir},
    ) as op:
        manager = build_certificate_manager(runtime.config, runtime.providers)
        try:
            info = manager.inspect(cert_dir)
        except CertificateError as exc:
            _command_error(op, str(exc), rc=int(ExitCode.PROVIDER))
        if info is None:
            _command_error(op, f"No certificate installed in {cert_dir}.")

        data = info.to_dict()
        if json_output:
            console.print_json(data=data)
        else:
            table = Table(show_header=False)
            table.add_column("Field", style="bold")
            table.add_column("Value")
            for key, value in data.items():
                table.add_row(key, str(value))
            console.print(table)
        op.success("Reported certificate status.", changed=0, context=data)


@tls_app.command("renew")
def tls_renew(
    ctx: typer.Context,
    domain: str = typer.Option(..., "--domain", help="Domain of the Let's Encrypt certificate."),
) -> None:
    """Renew the Let's Encrypt certificate and restart nginx and MinIO."""
    runtime = _get_runtime(ctx)
    cert_dir = runtime.config.service.cert_dir
    with runtime.logger.operation(
        "tls renew",
        args={"domain": domain},
        target={"kind": "certificate", "path": cert_dir},
    ) as op:
        manager = build_certificate_manager(runtime.config, runtime.providers)
        try:
            require_root()
            with runtime.locks.run_lock():
                state = manager.renew(domain, cert_dir)
        except (*PROVIDER_ERRORS, *ENVIRONMENT_ERRORS) as exc:
            _command_error(op, str(exc), rc=int(_exit_code_for(exc)))
        console.print(f"[green]Certificate for {domain} renewed.[/green]")
        op.success("Renewed certificate.", changed=1, context=state.to_dict())


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit configuration as JSON instead of a table.",
    ),
) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")

        for key, value in data.items():
            if isinstance(value, dict):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)

        console.print(table)
        op.success("Rendered configuration table.", changed=0)


def main() -> None:
    """Console script entry point."""
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
