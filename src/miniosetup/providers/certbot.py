"""Let's Encrypt client wrapper around ``certbot``."""
from __future__ import annotations

import shutil
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path


class CertbotError(RuntimeError):
    """Raised when certbot fails to issue or renew a certificate."""


@dataclass(frozen=True, slots=True)
class IssuedCertificate:
    """Paths of a certificate managed by certbot."""

    certificate: Path
    key: Path


@dataclass(slots=True)
class CertbotClient:
    """Issue and renew certificates with certbot's standalone authenticator."""

    certbot_bin: str = "certbot"
    live_dir: Path = Path("/etc/letsencrypt/live")

    def available(self) -> bool:
        """Return ``True`` when the certbot binary can be found."""
        return shutil.which(self.certbot_bin) is not None

    def live_paths(self, domain: str) -> IssuedCertificate:
        """Return the live ``fullchain.pem``/``privkey.pem`` paths for *domain*."""
        base = self.live_dir / domain
        return IssuedCertificate(certificate=base / "fullchain.pem", key=base / "privkey.pem")

    def has_certificate(self, domain: str) -> bool:
        """Return ``True`` when certbot manages a certificate for *domain*."""
        paths = self.live_paths(domain)
        return paths.certificate.exists() and paths.key.exists()

    def issue(self, domain: str, email: str) -> IssuedCertificate:
        """Request a certificate for *domain*; port 80 must be free."""
        self._run(
            [
                self.certbot_bin,
                "certonly",
                "--standalone",
                "--agree-tos",
                "--non-interactive",
                "--email",
                email,
                "-d",
                domain,
            ]
        )
        paths = self.live_paths(domain)
        if not (paths.certificate.exists() and paths.key.exists()):
            raise CertbotError(
                f"certbot reported success but {paths.certificate.parent} has no certificate."
            )
        return paths

    def renew(self) -> None:
        """Renew every certificate that is close to expiry."""
        self._run([self.certbot_bin, "renew", "--quiet"])

    def renew_command(self) -> str:
        """Return the shell command used by the recurring renewal task."""
        return f"{self.certbot_bin} renew --quiet"

    # ------------------------------------------------------------------
    def _run(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        try:
            result = subprocess.run(  # noqa: S603
                list(args),
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise CertbotError(f"{self.certbot_bin} not found: {exc}") from exc
        if result.returncode != 0:
            message = (result.stderr or result.stdout or "no output").strip()
            raise CertbotError(
                f"{self.certbot_bin} {args[1]} failed (exit {result.returncode}): {message}"
            )
        return result


__all__ = ["CertbotClient", "CertbotError", "IssuedCertificate"]
