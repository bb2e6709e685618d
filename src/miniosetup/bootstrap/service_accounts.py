"""Plan and create the dedicated account the storage service runs as."""
from __future__ import annotations

import grp
import pwd
import subprocess
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Literal


class ServiceAccountError(RuntimeError):
    """Raised when the runtime account cannot be created."""


@dataclass(slots=True)
class ServiceAccountSpec:
    """Desired attributes for the runtime identity."""

    name: str = "minio-user"
    group: str = "minio-user"
    system: bool = True
    shell: str | None = "/usr/sbin/nologin"


@dataclass(slots=True)
class ServiceAccountStatus:
    """Current state of the account on the host."""

    user_exists: bool
    group_exists: bool
    uid: int | None = None
    gid: int | None = None
    primary_group: str | None = None


@dataclass(slots=True)
class ServiceAccountAction:
    """Single command required to satisfy the desired state."""

    kind: Literal["create-group", "create-user"]
    description: str
    command: list[str]


@dataclass(slots=True)
class ServiceAccountPlan:
    """Actions and warnings required to satisfy the spec."""

    spec: ServiceAccountSpec
    status: ServiceAccountStatus
    actions: list[ServiceAccountAction] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def inspect_service_account(spec: ServiceAccountSpec) -> ServiceAccountStatus:
    """Return the current status for *spec* from the passwd/group databases."""
    try:
        pw_entry = pwd.getpwnam(spec.name)
    except KeyError:
        user_exists = False
        uid = gid = None
        primary_group = None
    else:
        user_exists = True
        uid = pw_entry.pw_uid
        gid = pw_entry.pw_gid
        try:
            primary_group = grp.getgrgid(gid).gr_name
        except KeyError:
            primary_group = None

    try:
        grp.getgrnam(spec.group)
    except KeyError:
        group_exists = False
    else:
        group_exists = True

    return ServiceAccountStatus(
        user_exists=user_exists,
        group_exists=group_exists,
        uid=uid,
        gid=gid,
        primary_group=primary_group,
    )


def plan_service_account(spec: ServiceAccountSpec) -> ServiceAccountPlan:
    """Return the commands needed to create the group and user of *spec*."""
    status = inspect_service_account(spec)
    plan = ServiceAccountPlan(spec=spec, status=status)

    if not status.group_exists:
        command = ["groupadd"]
        if spec.system:
            command.append("--system")
        command.append(spec.group)
        plan.actions.append(
            ServiceAccountAction(
                kind="create-group",
                description=f"Create group '{spec.group}'.",
                command=command,
            )
        )

    if not status.user_exists:
        command = ["useradd", "--no-create-home"]
        if spec.system:
            command.append("--system")
        if spec.shell:
            command.extend(["--shell", spec.shell])
        command.extend(["--gid", spec.group, spec.name])
        plan.actions.append(
            ServiceAccountAction(
                kind="create-user",
                description=f"Create service user '{spec.name}'.",
                command=command,
            )
        )
    elif status.primary_group and status.primary_group != spec.group:
        plan.warnings.append(
            f"User '{spec.name}' primary group is '{status.primary_group}', "
            f"expected '{spec.group}'."
        )

    return plan


Runner = Callable[[list[str]], subprocess.CompletedProcess[str]]


def apply_service_account_plan(plan: ServiceAccountPlan, *, runner: Runner | None = None) -> None:
    """Execute the commands described by *plan*."""
    run = runner or _default_runner
    for action in plan.actions:
        try:
            run(action.command)
        except (subprocess.CalledProcessError, FileNotFoundError) as exc:
            raise ServiceAccountError(f"{action.description} failed: {exc}") from exc


def ensure_service_account(
    spec: ServiceAccountSpec,
    *,
    runner: Runner | None = None,
) -> ServiceAccountPlan:
    """Create whatever part of *spec* is missing and return the executed plan."""
    plan = plan_service_account(spec)
    apply_service_account_plan(plan, runner=runner)
    return plan


def _default_runner(command: list[str]) -> subprocess.CompletedProcess[str]:
    return subprocess.run(command, check=True, capture_output=True, text=True)  # noqa: S603


__all__ = [
    "ServiceAccountAction",
    "ServiceAccountError",
    "ServiceAccountPlan",
    "ServiceAccountSpec",
    "ServiceAccountStatus",
    "apply_service_account_plan",
    "ensure_service_account",
    "inspect_service_account",
    "plan_service_account",
]
