"""Wrappers around the external tools miniosetup drives."""
from __future__ import annotations

from .certbot import CertbotClient, CertbotError, IssuedCertificate
from .downloads import DirectoryIndexResolver, DownloadError, PackageUrlResolver
from .firewall import FirewallError, FirewallResult, UfwProvider
from .nginx import NginxError, NginxProvider, NginxRenderResult
from .packages import PackageError, PackageProvider
from .scheduler import CronScheduler
from .systemd import SystemdError, SystemdProvider

__all__ = [
    "CertbotClient",
    "CertbotError",
    "CronScheduler",
    "DirectoryIndexResolver",
    "DownloadError",
    "FirewallError",
    "FirewallResult",
    "IssuedCertificate",
    "NginxError",
    "NginxProvider",
    "NginxRenderResult",
    "PackageError",
    "PackageProvider",
    "PackageUrlResolver",
    "SystemdError",
    "SystemdProvider",
    "UfwProvider",
]
