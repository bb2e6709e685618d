"""Shared fixtures for the miniosetup test suite."""

from __future__ import annotations

import grp
import os
import pwd
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from miniosetup.config import AppConfig, load_config


def current_owner_group() -> tuple[str, str]:
    """Return the user and primary group running the tests."""
    owner = pwd.getpwuid(os.getuid()).pw_name
    group = grp.getgrgid(os.getgid()).gr_name
    return owner, group


def write_certificate_pair(
    cert_path: Path,
    key_path: Path,
    *,
    common_name: str = "example.test",
    issuer_name: str | None = None,
    days: int = 90,
) -> None:
    """Write a certificate and key; *issuer_name* makes it CA-signed."""
    now = datetime.now(UTC)
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    if issuer_name is None:
        issuer = subject
        signing_key = key
    else:
        issuer = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, issuer_name)])
        signing_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=days))
        .sign(signing_key, hashes.SHA256())
    )
    cert_path.parent.mkdir(parents=True, exist_ok=True)
    key_path.parent.mkdir(parents=True, exist_ok=True)
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(
        key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )


def config_overrides(tmp_path: Path) -> dict[str, object]:
    """Return overrides that keep every path of a run under *tmp_path*."""
    owner, group = current_owner_group()
    return {
        "logs_dir": str(tmp_path / "logs"),
        "runtime_dir": str(tmp_path / "run"),
        "templates_dir": str(tmp_path / "templates"),
        "lock_timeout": 1.0,
        "data_dir": str(tmp_path / "data"),
        "service": {
            "user": owner,
            "group": group,
            "env_file": str(tmp_path / "etc" / "default" / "minio"),
            "config_dir": str(tmp_path / "etc" / "minio"),
            "cert_dir": str(tmp_path / "etc" / "minio" / "certs"),
            "extra_env_files": [str(tmp_path / "etc" / "minio" / "config.env")],
            "unit_files": [str(tmp_path / "systemd" / "minio.service")],
        },
        "nginx": {
            "sites_available": str(tmp_path / "nginx" / "sites-available"),
            "sites_enabled": str(tmp_path / "nginx" / "sites-enabled"),
        },
        "tls": {
            "lets_encrypt": {"live_dir": str(tmp_path / "letsencrypt" / "live")},
            "renewal": {"cron_file": str(tmp_path / "cron.d" / "miniosetup-renew")},
        },
    }


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., AppConfig]:
    """Return a factory for configs rooted in the temporary directory."""

    def _factory(**extra: object) -> AppConfig:
        overrides = config_overrides(tmp_path)
        overrides.update(extra)
        return load_config(tmp_path / "missing.yml", env={}, overrides=overrides)

    return _factory


@pytest.fixture
def app_config(make_config: Callable[..., AppConfig]) -> AppConfig:
    """Return a config rooted in the temporary directory."""
    return make_config()
