"""Recurring task registration via ``/etc/cron.d`` entries."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ..templates import TemplateEngine


@dataclass(slots=True)
class CronScheduler:
    """Register recurring commands as cron.d files (one file per task)."""

    templates: TemplateEngine
    cron_file: Path = Path("/etc/cron.d/miniosetup-renew")
    user: str = "root"

    def register(self, *, domain: str, schedule: str, command: str) -> bool:
        """Write the renewal entry; return ``True`` when the file changed."""
        return self.templates.render_to_path(
            "cron/renewal.j2",
            self.cron_file,
            {
                "domain": domain,
                "schedule": schedule,
                "user": self.user,
                "command": command,
            },
            mode=0o644,
        )

    def is_registered(self) -> bool:
        """Return ``True`` when the renewal entry exists."""
        return self.cron_file.exists()

    def unregister(self) -> bool:
        """Remove the renewal entry; return ``True`` when something was removed."""
        if not self.cron_file.exists():
            return False
        self.cron_file.unlink()
        return True


__all__ = ["CronScheduler"]
