"""Operator interaction for the provisioning driver.

The driver never talks to a terminal directly; it asks an :class:`Operator`.
:class:`InteractiveOperator` answers from command line options where given
and prompts (via Typer) for everything else. Tests supply scripted operators.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import typer
from rich.console import Console

from .credentials import Credentials, ValidationResult
from .probe import HostProbe
from .reconcile import CleanupChoice
from .tls import CertificateAuthority, ExistingCertificate, ExistingCertificateChoice


class PromptError(RuntimeError):
    """Raised when an answer is required but prompting is disabled."""


@dataclass(frozen=True)
class SiteSettings:
    """Answers describing the site to provision."""

    domain: str | None = None
    authority: CertificateAuthority | None = None
    admin_email: str | None = None
    data_dir: Path | None = None
    install_client: bool | None = None


class Operator(Protocol):
    """Decisions the driver delegates to a person (or a script)."""

    def confirm_unsupported_os(self, message: str) -> bool:
        """Return ``True`` to continue on an unsupported operating system."""

    def cleanup_choice(self, probe: HostProbe) -> CleanupChoice:
        """Decide what to do with an existing installation."""

    def site_settings(self) -> SiteSettings:
        """Return the completed site settings."""

    def credentials(self, attempt: int) -> Credentials:
        """Return admin credentials; *attempt* starts at 1."""

    def report_invalid(self, result: ValidationResult) -> None:
        """Explain why the last credentials were rejected."""

    def existing_certificate_choice(
        self, existing: ExistingCertificate
    ) -> ExistingCertificateChoice:
        """Decide whether to reuse an existing certificate."""

    def progress(self, message: str) -> None:
        """Show a progress message."""


def prompt_text(message: str, *, default: str | None = None) -> str:
    """Prompt until a non-empty value is entered."""
    while True:
        value = str(typer.prompt(message, default=default)).strip()
        if value:
            return value


def prompt_password(message: str) -> str:
    """Prompt for a hidden value, asking twice until both entries match."""
    return str(typer.prompt(message, hide_input=True, confirmation_prompt=True))


def confirm(message: str, *, default: bool = False) -> bool:
    """Ask a yes/no question."""
    return bool(typer.confirm(message, default=default))


@dataclass
class InteractiveOperator:
    """Answer from preset options first and prompt for the rest."""

    console: Console
    preset: SiteSettings = SiteSettings()
    username: str | None = None
    password: str | None = None
    assume_clean: bool = False
    certificate_choice: ExistingCertificateChoice | None = None
    interactive: bool = True
    default_data_dir: Path = Path("/mnt/data")
    default_username: str = "minioadmin"
    default_authority: CertificateAuthority = CertificateAuthority.LETSENCRYPT

    def confirm_unsupported_os(self, message: str) -> bool:
        """Show *message* and ask whether to continue anyway."""
        self.console.print(f"[yellow]{message}[/yellow]")
        if not self.interactive:
            return False
        return confirm("Continue anyway?", default=False)

    def cleanup_choice(self, probe: HostProbe) -> CleanupChoice:
        """Describe what was found and ask for consent to remove it."""
        self.console.print("[yellow]An existing MinIO installation was detected:[/yellow]")
        if probe.service_registered:
            self.console.print("  - the MinIO service is registered with systemd")
        for port in sorted(probe.ports_in_use):
            self.console.print(f"  - port {port} is in use")
        for path in sorted(probe.config_files_present):
            self.console.print(f"  - {path} exists")
        for name, installed in sorted(probe.package_installed.items()):
            if installed:
                self.console.print(f"  - package {name} is installed")
        if self.assume_clean:
            return CleanupChoice.CLEAN
        if not self.interactive:
            return CleanupChoice.ABORT
        if confirm("Remove it completely and perform a fresh installation?", default=False):
            return CleanupChoice.CLEAN
        return CleanupChoice.ABORT

    def site_settings(self) -> SiteSettings:
        """Fill every field not given as an option by prompting."""
        preset = self.preset
        domain = preset.domain or self._ask_text("Enter your domain name (e.g. example.com)")
        authority = preset.authority
        if authority is None:
            use_lets_encrypt = self._ask_confirm(
                "Request a Let's Encrypt certificate? (No generates a self-signed one)",
                default=self.default_authority is CertificateAuthority.LETSENCRYPT,
            )
            authority = (
                CertificateAuthority.LETSENCRYPT
                if use_lets_encrypt
                else CertificateAuthority.SELF_SIGNED
            )
        admin_email = preset.admin_email
        if authority is CertificateAuthority.LETSENCRYPT and not admin_email:
            admin_email = self._ask_text("Enter the admin email for Let's Encrypt")
        data_dir = preset.data_dir or Path(
            self._ask_text("Enter the MinIO data directory", default=str(self.default_data_dir))
        )
        install_client = preset.install_client
        if install_client is None:
            install_client = self._ask_confirm("Install the MinIO client (mcli)?", default=True)

        return SiteSettings(
            domain=domain,
            authority=authority,
            admin_email=admin_email,
            data_dir=data_dir,
            install_client=install_client,
        )

    def credentials(self, attempt: int) -> Credentials:
        """Return preset credentials first, then prompt."""
        if attempt == 1 and self.username is not None and self.password is not None:
            return Credentials(username=self.username, password=self.password)
        if not self.interactive:
            raise PromptError("Valid admin credentials are required in non-interactive mode.")
        username = (
            self.username
            if attempt == 1 and self.username is not None
            else prompt_text("Enter MinIO admin username", default=self.default_username)
        )
        password = prompt_password("Enter MinIO admin password")
        return Credentials(username=username, password=password)

    def report_invalid(self, result: ValidationResult) -> None:
        """Print each violation."""
        for message in result.messages:
            self.console.print(f"[red]{message}[/red]")

    def existing_certificate_choice(
        self, existing: ExistingCertificate
    ) -> ExistingCertificateChoice:
        """Ask whether to keep the certificate that is already installed."""
        if self.certificate_choice is not None:
            return self.certificate_choice
        where = "Let's Encrypt" if not existing.in_cert_dir else str(existing.certificate.parent)
        self.console.print(f"Existing certificate for {existing.domain} found in {where}.")
        if not self.interactive:
            return ExistingCertificateChoice.REUSE
        if confirm("Reuse the existing certificate?", default=True):
            return ExistingCertificateChoice.REUSE
        return ExistingCertificateChoice.REQUEST_NEW

    def progress(self, message: str) -> None:
        """Print a progress line."""
        self.console.print(f"[cyan]==>[/cyan] {message}")

    # ------------------------------------------------------------------
    def _ask_text(self, message: str, *, default: str | None = None) -> str:
        if not self.interactive:
            if default is not None:
                return default
            raise PromptError(f"Missing answer for: {message}")
        return prompt_text(message, default=default)

    def _ask_confirm(self, message: str, *, default: bool) -> bool:
        if not self.interactive:
            return default
        return confirm(message, default=default)


__all__ = [
    "InteractiveOperator",
    "Operator",
    "PromptError",
    "SiteSettings",
    "confirm",
    "prompt_password",
    "prompt_text",
]
