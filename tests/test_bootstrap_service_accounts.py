"""Unit tests for the runtime account helpers."""
from __future__ import annotations

import subprocess
from types import SimpleNamespace

import pytest

from miniosetup.bootstrap import service_accounts
from miniosetup.bootstrap.service_accounts import (
    ServiceAccountError,
    ServiceAccountSpec,
    ensure_service_account,
    plan_service_account,
)


def _raise_key_error(*args: object, **kwargs: object) -> None:
    raise KeyError


def _missing_account(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(service_accounts.pwd, "getpwnam", _raise_key_error)
    monkeypatch.setattr(service_accounts.grp, "getgrnam", _raise_key_error)
    monkeypatch.setattr(service_accounts.grp, "getgrgid", _raise_key_error)


def test_plan_creates_group_and_user(monkeypatch: pytest.MonkeyPatch) -> None:
    """Plan should request group and user creation when missing."""
    _missing_account(monkeypatch)

    plan = plan_service_account(ServiceAccountSpec(name="minio-user", group="minio-user"))

    assert [action.kind for action in plan.actions] == ["create-group", "create-user"]
    assert plan.actions[0].command == ["groupadd", "--system", "minio-user"]
    assert plan.actions[1].command == [
        "useradd",
        "--no-create-home",
        "--system",
        "--shell",
        "/usr/sbin/nologin",
        "--gid",
        "minio-user",
        "minio-user",
    ]
    assert plan.warnings == []


def test_plan_no_actions_when_account_matches(monkeypatch: pytest.MonkeyPatch) -> None:
    """Plan should be empty when user and group already exist."""
    pw_entry = SimpleNamespace(pw_uid=1234, pw_gid=5678)
    group_entry = SimpleNamespace(gr_gid=5678, gr_name="minio-user")

    monkeypatch.setattr(service_accounts.pwd, "getpwnam", lambda name: pw_entry)
    monkeypatch.setattr(service_accounts.grp, "getgrnam", lambda name: group_entry)
    monkeypatch.setattr(service_accounts.grp, "getgrgid", lambda gid: group_entry)

    plan = plan_service_account(ServiceAccountSpec())

    assert plan.actions == []
    assert plan.warnings == []
    assert plan.status.uid == 1234


def test_plan_warns_on_mismatched_group(monkeypatch: pytest.MonkeyPatch) -> None:
    """Plan should warn if the existing account uses a different primary group."""
    pw_entry = SimpleNamespace(pw_uid=1234, pw_gid=100)
    minio_group = SimpleNamespace(gr_gid=5678, gr_name="minio-user")
    users_group = SimpleNamespace(gr_gid=100, gr_name="users")

    monkeypatch.setattr(service_accounts.pwd, "getpwnam", lambda name: pw_entry)
    monkeypatch.setattr(service_accounts.grp, "getgrnam", lambda name: minio_group)
    monkeypatch.setattr(service_accounts.grp, "getgrgid", lambda gid: users_group)

    plan = plan_service_account(ServiceAccountSpec())

    assert plan.actions == []
    assert plan.warnings == [
        "User 'minio-user' primary group is 'users', expected 'minio-user'."
    ]


def test_ensure_runs_planned_commands(monkeypatch: pytest.MonkeyPatch) -> None:
    _missing_account(monkeypatch)
    executed: list[list[str]] = []

    def runner(command: list[str]) -> subprocess.CompletedProcess[str]:
        executed.append(command)
        return subprocess.CompletedProcess(command, 0, "", "")

    ensure_service_account(ServiceAccountSpec(shell=None, system=False), runner=runner)

    assert executed == [
        ["groupadd", "minio-user"],
        ["useradd", "--no-create-home", "--gid", "minio-user", "minio-user"],
    ]


def test_command_failure_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    _missing_account(monkeypatch)

    def runner(command: list[str]) -> subprocess.CompletedProcess[str]:
        raise subprocess.CalledProcessError(9, command, stderr="group exists")

    with pytest.raises(ServiceAccountError, match="Create group 'minio-user'"):
        ensure_service_account(ServiceAccountSpec(), runner=runner)
