"""Helper utilities used to prepare the host before services start."""
from __future__ import annotations

from .filesystem import (
    DirectoryAction,
    DirectoryPlan,
    DirectorySpec,
    FilesystemError,
    apply_directory_plan,
    ensure_directories,
    plan_directories,
)
from .service_accounts import (
    ServiceAccountAction,
    ServiceAccountError,
    ServiceAccountPlan,
    ServiceAccountSpec,
    ServiceAccountStatus,
    apply_service_account_plan,
    ensure_service_account,
    inspect_service_account,
    plan_service_account,
)

__all__ = [
    # service account helpers
    "ServiceAccountAction",
    "ServiceAccountError",
    "ServiceAccountPlan",
    "ServiceAccountSpec",
    "ServiceAccountStatus",
    "inspect_service_account",
    "plan_service_account",
    "apply_service_account_plan",
    "ensure_service_account",
    # filesystem helpers
    "DirectoryAction",
    "DirectoryPlan",
    "DirectorySpec",
    "FilesystemError",
    "plan_directories",
    "apply_directory_plan",
    "ensure_directories",
]
