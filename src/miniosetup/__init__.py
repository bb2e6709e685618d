"""miniosetup package bootstrap.

Exposes the package version used by the CLI and the Hatch build backend.
"""
from __future__ import annotations

__all__ = ["__version__", "get_version"]

# NOTE: Hatch reads the version from this file (see ``pyproject.toml``).
__version__ = "1.0.0"


def get_version() -> str:
    """Return the current package version."""
    return __version__
