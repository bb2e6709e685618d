"""Nginx provider for the MinIO reverse proxy site."""
from __future__ import annotations

import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from ..templates import TemplateEngine
from .systemd import SystemdError, SystemdProvider


class NginxError(RuntimeError):
    """Raised when nginx operations fail."""


@dataclass(slots=True)
class NginxRenderResult:
    """Outcome of rendering and validating the site configuration."""

    changed: bool
    site_path: Path
    validation: subprocess.CompletedProcess[str] | None = None


@dataclass(slots=True)
class NginxProvider:
    """Render, validate and activate the nginx site configuration."""

    templates: TemplateEngine
    systemd: SystemdProvider
    sites_available: Path = Path("/etc/nginx/sites-available")
    sites_enabled: Path = Path("/etc/nginx/sites-enabled")
    nginx_bin: str = "nginx"
    unit: str = "nginx"

    def site_path(self, site: str) -> Path:
        """Return the path to the site configuration file."""
        return self.sites_available / site

    def enabled_path(self, site: str) -> Path:
        """Return the path of the symlink in sites-enabled for *site*."""
        return self.sites_enabled / site

    def render_site(self, site: str, context: Mapping[str, object]) -> NginxRenderResult:
        """Write and enable *site*, then validate the full nginx configuration.

        The running nginx keeps serving its previous configuration until
        :meth:`activate` is called. When ``nginx -t`` rejects the new file the
        previous file (or its absence) and the previous enabled state are
        restored and :class:`NginxError` is raised.
        """
        destination = self.site_path(site)
        previous: tuple[str, int] | None = None
        if destination.exists():
            previous = (
                destination.read_text(encoding="utf-8"),
                destination.stat().st_mode & 0o777,
            )
        was_enabled = self.is_enabled(site)

        changed = self.templates.render_to_path(
            "nginx/site.conf.j2",
            destination,
            context,
            mode=0o644,
        )
        self.enable(site)

        try:
            validation = self.test_config()
        except NginxError:
            if previous is None:
                destination.unlink(missing_ok=True)
            else:
                content, mode = previous
                destination.write_text(content, encoding="utf-8")
                destination.chmod(mode)
            if not was_enabled:
                self.disable(site)
            raise
        return NginxRenderResult(changed=changed, site_path=destination, validation=validation)

    def activate(self) -> str:
        """Reload nginx when running, otherwise enable and start it.

        Returns ``"reloaded"`` or ``"started"``.
        """
        try:
            if self.systemd.is_active(self.unit):
                self.systemd.reload(self.unit)
                return "reloaded"
            self.systemd.enable(self.unit)
            self.systemd.start(self.unit)
        except SystemdError as exc:
            message = f"Failed to activate nginx: {exc}"
            journal = self._journal()
            if journal:
                message = f"{message}\nRecent {self.unit} journal entries:\n{journal}"
            raise NginxError(message) from exc
        return "started"

    def enable(self, site: str) -> None:
        """Enable the site by creating a symlink in sites-enabled."""
        source = self.site_path(site)
        target = self.enabled_path(site)
        target.parent.mkdir(parents=True, exist_ok=True)
        if target.exists() or target.is_symlink():
            try:
                if target.resolve() == source.resolve():
                    return
            except FileNotFoundError:
                # Broken symlink; replace it with a fresh one.
                pass
            target.unlink()
        target.symlink_to(source)

    def disable(self, site: str) -> None:
        """Disable the site by removing the symlink."""
        self.enabled_path(site).unlink(missing_ok=True)

    def remove(self, site: str) -> list[Path]:
        """Remove both the symlink and the configuration; return removed paths."""
        removed: list[Path] = []
        for path in (self.enabled_path(site), self.site_path(site)):
            if path.exists() or path.is_symlink():
                path.unlink()
                removed.append(path)
        return removed

    def is_enabled(self, site: str) -> bool:
        """Return True when the site is enabled via sites-enabled symlink."""
        target = self.enabled_path(site)
        if not target.is_symlink():
            return False
        try:
            return target.resolve() == self.site_path(site).resolve()
        except FileNotFoundError:
            return False

    def test_config(self) -> subprocess.CompletedProcess[str]:
        """Run ``nginx -t`` to validate the configuration."""
        try:
            return self._run_nginx(["-t"])
        except FileNotFoundError as exc:
            raise NginxError(f"{self.nginx_bin} not found; cannot validate configuration.") from exc

    # ------------------------------------------------------------------
    def _journal(self) -> str:
        try:
            return self.systemd.logs(self.unit).strip()
        except SystemdError:
            # journalctl missing; the activation error is reported on its own.
            return ""

    def _run_nginx(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        command = [self.nginx_bin, *args]
        result = subprocess.run(  # noqa: S603
            command,
            capture_output=True,
            text=True,
            check=False,
        )
        if result.returncode != 0:
            message = (result.stderr or result.stdout or "no output").strip()
            raise NginxError(
                f"{self.nginx_bin} {' '.join(args)} failed (exit {result.returncode}): {message}"
            )
        return result


__all__ = ["NginxError", "NginxProvider", "NginxRenderResult"]
