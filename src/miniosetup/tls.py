"""Certificate lifecycle: reuse, issue, fall back, install and renew.

The storage service reads its TLS pair from ``<cert_dir>/public.crt`` and
``<cert_dir>/private.key``; nginx terminates TLS with the same pair. Whatever
path a run takes, the pair handed back has been chowned to the runtime
identity, restricted to mode ``0600`` and verified (both parse and the public
keys match) before it is returned.
"""
from __future__ import annotations

import grp
import ipaddress
import logging
import os
import pwd
import shlex
import shutil
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Protocol, cast

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from .config import SelfSignedConfig
from .providers.certbot import CertbotClient, CertbotError
from .providers.scheduler import CronScheduler
from .providers.systemd import SystemdError, SystemdProvider

LOGGER = logging.getLogger(__name__)

CERTIFICATE_NAME = "public.crt"
KEY_NAME = "private.key"
FILE_MODE = 0o600


class CertificateError(RuntimeError):
    """Raised when certificate material cannot be produced or verified."""


class CertificateAuthority(Enum):
    """Who signed the certificate."""

    LETSENCRYPT = "letsencrypt"
    SELF_SIGNED = "self-signed"
    NONE = "none"


class CertificateSource(Enum):
    """How the certificate of this run came to be."""

    REUSED = "reused"
    RENEWED = "renewed"
    ISSUED = "issued"
    FALLBACK = "fallback"


class ExistingCertificateChoice(Enum):
    """Operator answer when a certificate is already present."""

    REUSE = "reuse"
    REQUEST_NEW = "request-new"


@dataclass(frozen=True)
class ExistingCertificate:
    """Certificate material found before issuing."""

    domain: str
    certificate: Path
    key: Path
    in_cert_dir: bool
    managed_by_lets_encrypt: bool


@dataclass(frozen=True)
class CertificateState:
    """Terminal certificate state of a run."""

    domain: str
    authority: CertificateAuthority
    cert_path: Path
    key_path: Path
    exists: bool
    source: CertificateSource

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "domain": self.domain,
            "authority": self.authority.value,
            "cert_path": str(self.cert_path),
            "key_path": str(self.key_path),
            "exists": self.exists,
            "source": self.source.value,
        }


@dataclass(frozen=True)
class CertificateInfo:
    """Details of an installed certificate."""

    path: Path
    subject: str
    issuer: str
    not_valid_before: datetime
    not_valid_after: datetime
    days_remaining: int
    authority: CertificateAuthority

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "path": str(self.path),
            "subject": self.subject,
            "issuer": self.issuer,
            "not_valid_before": self.not_valid_before.isoformat(),
            "not_valid_after": self.not_valid_after.isoformat(),
            "days_remaining": self.days_remaining,
            "authority": self.authority.value,
        }


class PublicKeyProtocol(Protocol):
    """Protocol covering public keys exposing ``public_bytes``."""

    def public_bytes(
        self,
        *,
        encoding: serialization.Encoding,
        format: serialization.PublicFormat,
    ) -> bytes:
        """Return the public key bytes in the requested encoding/format."""


class PrivateKeyProtocol(Protocol):
    """Protocol for private keys that can provide a matching public key."""

    def public_key(self) -> PublicKeyProtocol:
        """Return the associated public key object."""


ExistingChooser = Callable[[ExistingCertificate], ExistingCertificateChoice]


def certificate_paths(cert_dir: Path) -> tuple[Path, Path]:
    """Return the certificate and key paths inside *cert_dir*."""
    return cert_dir / CERTIFICATE_NAME, cert_dir / KEY_NAME


def _now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(slots=True)
class CertificateLifecycleManager:
    """Decide between reuse, issuance and fallback for a domain's certificate."""

    certbot: CertbotClient
    systemd: SystemdProvider
    scheduler: CronScheduler
    self_signed: SelfSignedConfig
    owner: str
    group: str
    nginx_unit: str = "nginx"
    service_unit: str = "minio"
    renewal_schedule: str = "0 3 * * *"
    choose_existing: ExistingChooser | None = None
    clock: Callable[[], datetime] = _now

    # ------------------------------------------------------------------
    def ensure_certificate(
        self,
        domain: str,
        admin_email: str | None,
        cert_dir: Path,
        requested_authority: CertificateAuthority,
    ) -> CertificateState:
        """Return a verified certificate for *domain* installed in *cert_dir*.

        Existing material (the Let's Encrypt live pair or the pair already in
        *cert_dir*) is offered to :attr:`choose_existing`; without a chooser
        it is reused. Let's Encrypt failures fall back to a self-signed pair.
        The renewal task is registered only for a fresh Let's Encrypt issue.
        """
        cert_path, key_path = certificate_paths(cert_dir)
        existing = self.find_existing(domain, cert_dir)
        if existing is not None:
            choice = (
                self.choose_existing(existing)
                if self.choose_existing is not None
                else ExistingCertificateChoice.REUSE
            )
            if choice is ExistingCertificateChoice.REUSE:
                return self._reuse(existing, cert_dir)
            LOGGER.info("Replacing existing certificate for %s", domain)

        cert_dir.mkdir(parents=True, exist_ok=True)

        if requested_authority is CertificateAuthority.LETSENCRYPT:
            if not admin_email:
                raise CertificateError("An admin email is required for Let's Encrypt.")
            try:
                self._issue_lets_encrypt(domain, admin_email, cert_dir)
            except (CertbotError, SystemdError, OSError) as exc:
                LOGGER.warning(
                    "Let's Encrypt issuance for %s failed, using a self-signed certificate: %s",
                    domain,
                    exc,
                )
                self.generate_self_signed(domain, cert_path, key_path)
                return self._finalize(
                    domain, CertificateAuthority.SELF_SIGNED, cert_dir, CertificateSource.FALLBACK
                )
            state = self._finalize(
                domain, CertificateAuthority.LETSENCRYPT, cert_dir, CertificateSource.ISSUED
            )
            self.register_renewal(domain, cert_dir)
            return state

        if requested_authority is CertificateAuthority.SELF_SIGNED:
            self.generate_self_signed(domain, cert_path, key_path)
            return self._finalize(
                domain, CertificateAuthority.SELF_SIGNED, cert_dir, CertificateSource.ISSUED
            )

        raise CertificateError(f"Cannot issue a certificate without an authority for {domain}.")

    def renew(self, domain: str, cert_dir: Path) -> CertificateState:
        """Renew the Let's Encrypt certificate and re-install it into *cert_dir*."""
        if not self.certbot.has_certificate(domain):
            raise CertificateError(f"No Let's Encrypt certificate is managed for {domain}.")
        self.certbot.renew()
        self._install_live_pair(domain, cert_dir)
        state = self._finalize(
            domain, CertificateAuthority.LETSENCRYPT, cert_dir, CertificateSource.RENEWED
        )
        self.systemd.restart(self.nginx_unit)
        self.systemd.restart(self.service_unit)
        return state

    def find_existing(self, domain: str, cert_dir: Path) -> ExistingCertificate | None:
        """Return certificate material already present for *domain*, if any."""
        cert_path, key_path = certificate_paths(cert_dir)
        local = cert_path.exists() and key_path.exists()
        managed = self.certbot.has_certificate(domain)
        if local:
            return ExistingCertificate(
                domain=domain,
                certificate=cert_path,
                key=key_path,
                in_cert_dir=True,
                managed_by_lets_encrypt=managed,
            )
        if managed:
            live = self.certbot.live_paths(domain)
            return ExistingCertificate(
                domain=domain,
                certificate=live.certificate,
                key=live.key,
                in_cert_dir=False,
                managed_by_lets_encrypt=True,
            )
        return None

    def inspect(self, cert_dir: Path) -> CertificateInfo | None:
        """Describe the certificate installed in *cert_dir*; ``None`` when absent."""
        cert_path, _ = certificate_paths(cert_dir)
        if not cert_path.exists():
            return None
        try:
            cert = _load_certificate(cert_path)
        except (OSError, ValueError) as exc:
            raise CertificateError(f"Cannot read certificate {cert_path}: {exc}") from exc
        not_before = cert.not_valid_before_utc
        not_after = cert.not_valid_after_utc
        return CertificateInfo(
            path=cert_path,
            subject=cert.subject.rfc4514_string(),
            issuer=cert.issuer.rfc4514_string(),
            not_valid_before=not_before,
            not_valid_after=not_after,
            days_remaining=(not_after - self.clock()).days,
            authority=_authority_of(cert),
        )

    def generate_self_signed(self, domain: str, cert_path: Path, key_path: Path) -> None:
        """Write a new self-signed certificate and key for *domain*."""
        settings = self.self_signed
        try:
            key = rsa.generate_private_key(public_exponent=65537, key_size=settings.key_size)
            name = x509.Name(
                [
                    x509.NameAttribute(NameOID.COUNTRY_NAME, settings.country),
                    x509.NameAttribute(NameOID.STATE_OR_PROVINCE_NAME, settings.state),
                    x509.NameAttribute(NameOID.LOCALITY_NAME, settings.locality),
                    x509.NameAttribute(NameOID.ORGANIZATION_NAME, settings.organization),
                    x509.NameAttribute(NameOID.COMMON_NAME, domain),
                ]
            )
            now = self.clock()
            cert = (
                x509.CertificateBuilder()
                .subject_name(name)
                .issuer_name(name)
                .public_key(key.public_key())
                .serial_number(x509.random_serial_number())
                .not_valid_before(now - timedelta(minutes=5))
                .not_valid_after(now + timedelta(days=settings.days))
                .add_extension(x509.SubjectAlternativeName([_san_entry(domain)]), critical=False)
                .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
                .sign(key, hashes.SHA256())
            )
            key_bytes = key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            )
            cert_path.parent.mkdir(parents=True, exist_ok=True)
            _write_private(key_path, key_bytes)
            _write_private(cert_path, cert.public_bytes(serialization.Encoding.PEM))
        except (OSError, ValueError, TypeError) as exc:
            raise CertificateError(
                f"Failed to generate a self-signed certificate for {domain}: {exc}"
            ) from exc
        LOGGER.info("Generated self-signed certificate for %s", domain)

    def renewal_command(self, domain: str, cert_dir: Path) -> str:
        """Return the shell command the recurring renewal task runs."""
        live = self.certbot.live_paths(domain)
        cert_path, key_path = certificate_paths(cert_dir)
        systemctl = self.systemd.systemctl_bin
        steps = [
            self.certbot.renew_command(),
            _install_command(live.certificate, cert_path, self.owner, self.group),
            _install_command(live.key, key_path, self.owner, self.group),
            f"{systemctl} restart {shlex.quote(SystemdProvider.unit_name(self.nginx_unit))}",
            f"{systemctl} restart {shlex.quote(SystemdProvider.unit_name(self.service_unit))}",
        ]
        return " && ".join(steps)

    def register_renewal(self, domain: str, cert_dir: Path) -> bool:
        """Install the recurring renewal task; ``True`` when it changed."""
        return self.scheduler.register(
            domain=domain,
            schedule=self.renewal_schedule,
            command=self.renewal_command(domain, cert_dir),
        )

    # ------------------------------------------------------------------
    def _reuse(self, existing: ExistingCertificate, cert_dir: Path) -> CertificateState:
        if not existing.in_cert_dir:
            cert_dir.mkdir(parents=True, exist_ok=True)
            self._install_live_pair(existing.domain, cert_dir)
        cert_path, _ = certificate_paths(cert_dir)
        try:
            authority = _authority_of(_load_certificate(cert_path))
        except (OSError, ValueError) as exc:
            raise CertificateError(f"Existing certificate {cert_path} is unreadable: {exc}") from exc
        return self._finalize(existing.domain, authority, cert_dir, CertificateSource.REUSED)

    def _issue_lets_encrypt(self, domain: str, email: str, cert_dir: Path) -> None:
        # certbot's standalone authenticator needs port 80.
        self.systemd.stop(self.nginx_unit, check=False)
        self.certbot.issue(domain, email)
        self._install_live_pair(domain, cert_dir)

    def _install_live_pair(self, domain: str, cert_dir: Path) -> None:
        live = self.certbot.live_paths(domain)
        cert_path, key_path = certificate_paths(cert_dir)
        shutil.copyfile(live.certificate, cert_path)
        shutil.copyfile(live.key, key_path)

    def _finalize(
        self,
        domain: str,
        authority: CertificateAuthority,
        cert_dir: Path,
        source: CertificateSource,
    ) -> CertificateState:
        cert_path, key_path = certificate_paths(cert_dir)
        uid, gid = self._identity()
        for path in (cert_path, key_path):
            try:
                os.chown(path, uid, gid)
                os.chmod(path, FILE_MODE)
            except OSError as exc:
                raise CertificateError(f"Cannot secure {path}: {exc}") from exc
        verify_pair(cert_path, key_path)
        LOGGER.info("Certificate for %s ready (%s, %s)", domain, authority.value, source.value)
        return CertificateState(
            domain=domain,
            authority=authority,
            cert_path=cert_path,
            key_path=key_path,
            exists=True,
            source=source,
        )

    def _identity(self) -> tuple[int, int]:
        try:
            return pwd.getpwnam(self.owner).pw_uid, grp.getgrnam(self.group).gr_gid
        except KeyError as exc:
            raise CertificateError(
                f"Runtime identity {self.owner}:{self.group} does not exist."
            ) from exc


def verify_pair(cert_path: Path, key_path: Path) -> None:
    """Raise :class:`CertificateError` unless both files parse and belong together."""
    try:
        cert = _load_certificate(cert_path)
        key = _load_private_key(key_path)
    except (OSError, ValueError, TypeError) as exc:
        raise CertificateError(f"Invalid certificate material in {cert_path.parent}: {exc}") from exc
    if not _public_keys_match(cert, key):
        raise CertificateError(f"{cert_path} does not match {key_path}.")


def _authority_of(cert: x509.Certificate) -> CertificateAuthority:
    if cert.issuer == cert.subject:
        return CertificateAuthority.SELF_SIGNED
    return CertificateAuthority.LETSENCRYPT


def _san_entry(domain: str) -> x509.GeneralName:
    try:
        return x509.IPAddress(ipaddress.ip_address(domain))
    except ValueError:
        return x509.DNSName(domain)


def _install_command(source: Path, destination: Path, owner: str, group: str) -> str:
    return (
        f"install -m 600 -o {shlex.quote(owner)} -g {shlex.quote(group)} "
        f"{shlex.quote(str(source))} {shlex.quote(str(destination))}"
    )


def _write_private(path: Path, data: bytes) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_MODE)
    with os.fdopen(fd, "wb") as handle:
        handle.write(data)
    os.chmod(path, FILE_MODE)


def _load_certificate(path: Path) -> x509.Certificate:
    data = path.read_bytes()
    try:
        return x509.load_pem_x509_certificate(data)
    except ValueError:
        return x509.load_der_x509_certificate(data)


def _load_private_key(path: Path) -> PrivateKeyProtocol:
    data = path.read_bytes()
    private_key = serialization.load_pem_private_key(data, password=None)
    return cast(PrivateKeyProtocol, private_key)


def _public_keys_match(cert: x509.Certificate, private_key: PrivateKeyProtocol) -> bool:
    cert_bytes = cert.public_key().public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    key_bytes = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return cert_bytes == key_bytes


__all__ = [
    "CERTIFICATE_NAME",
    "KEY_NAME",
    "CertificateAuthority",
    "CertificateError",
    "CertificateInfo",
    "CertificateLifecycleManager",
    "CertificateSource",
    "CertificateState",
    "ExistingCertificate",
    "ExistingCertificateChoice",
    "certificate_paths",
    "verify_pair",
]
