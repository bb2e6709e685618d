"""Vendor package discovery and download.

The default resolver scrapes the vendor's directory listing, which depends on
markup outside our control. Callers only rely on
:meth:`PackageUrlResolver.resolve_latest_package_url`, so a versioned release
API can replace the scraper without touching provisioning logic.
"""
from __future__ import annotations

import logging
import platform
import re
import shutil
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from ..config import DownloadSourceConfig

LOGGER = logging.getLogger(__name__)

_DEB_LINK = re.compile(r'href="([^"]*\.deb)"')
_ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "ppc64le": "ppc64le",
    "s390x": "s390x",
}


class DownloadError(RuntimeError):
    """Raised when a package URL cannot be resolved or fetched."""


class PackageUrlResolver(Protocol):
    """Anything able to name the latest package URL for a product."""

    def resolve_latest_package_url(self, product: str) -> str:
        """Return a download URL for *product*."""


def host_arch(machine: str | None = None) -> str:
    """Return the Debian architecture name for this host."""
    raw = (machine or platform.machine()).lower()
    try:
        return _ARCH_ALIASES[raw]
    except KeyError as exc:
        raise DownloadError(f"Unsupported architecture '{raw}'.") from exc


def _fetch_text(url: str, timeout: float) -> str:
    request = urllib.request.Request(url, headers={"User-Agent": "miniosetup"})
    with urllib.request.urlopen(request, timeout=timeout) as response:  # noqa: S310
        return response.read().decode("utf-8", errors="replace")


@dataclass(slots=True)
class DirectoryIndexResolver:
    """Pick the newest ``.deb`` from the vendor's download directory listing.

    The first non-archive ``.deb`` link in the product index wins; failing
    that, the last ``.deb`` in ``archive/``. When neither yields a link the
    configured ``pinned_url`` is used, and without one resolution fails.
    """

    sources: Mapping[str, DownloadSourceConfig]
    arch: str
    timeout: float = 30.0
    fetch: Callable[[str, float], str] = _fetch_text

    def resolve_latest_package_url(self, product: str) -> str:
        """Return the download URL for *product* (``server`` or ``client``)."""
        try:
            source = self.sources[product]
        except KeyError as exc:
            raise DownloadError(f"Unknown product '{product}'.") from exc

        index_url = source.index_url.format(arch=self.arch)
        if not index_url.endswith("/"):
            index_url += "/"

        links = [link for link in self._links(index_url) if "archive" not in link]
        if links:
            return urllib.parse.urljoin(index_url, links[0])

        archive_url = urllib.parse.urljoin(index_url, "archive/")
        LOGGER.info("No current %s package in %s; trying %s", product, index_url, archive_url)
        archived = self._links(archive_url)
        if archived:
            return urllib.parse.urljoin(archive_url, archived[-1])

        if source.pinned_url:
            LOGGER.warning("Falling back to pinned %s package URL %s", product, source.pinned_url)
            return source.pinned_url
        raise DownloadError(
            f"Could not determine the latest {product} package from {index_url}; "
            "set downloads."
            f"{product}.pinned_url to install a known version."
        )

    def _links(self, url: str) -> list[str]:
        try:
            body = self.fetch(url, self.timeout)
        except (urllib.error.URLError, TimeoutError, OSError) as exc:
            LOGGER.warning("Failed to read package index %s: %s", url, exc)
            return []
        return _DEB_LINK.findall(body)


def download(url: str, destination: Path, *, timeout: float = 30.0) -> Path:
    """Download *url* to *destination*."""
    destination.parent.mkdir(parents=True, exist_ok=True)
    request = urllib.request.Request(url, headers={"User-Agent": "miniosetup"})
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:  # noqa: S310
            with destination.open("wb") as handle:
                shutil.copyfileobj(response, handle)
    except (urllib.error.URLError, TimeoutError, OSError) as exc:
        destination.unlink(missing_ok=True)
        raise DownloadError(f"Failed to download {url}: {exc}") from exc
    return destination


__all__ = [
    "DirectoryIndexResolver",
    "DownloadError",
    "PackageUrlResolver",
    "download",
    "host_arch",
]
