"""Validation rules for the MinIO admin credentials."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum

USERNAME_MIN_LENGTH = 3
PASSWORD_MIN_LENGTH = 8

_USERNAME_PATTERN = re.compile(r"[A-Za-z0-9_-]+")
_WHITESPACE = re.compile(r"\s")


class ViolationKind(Enum):
    """Individual credential rule failures."""

    USERNAME_TOO_SHORT = "username-too-short"
    PASSWORD_TOO_SHORT = "password-too-short"
    USERNAME_INVALID_CHARACTERS = "username-invalid-characters"
    CONTAINS_WHITESPACE = "contains-whitespace"

    @property
    def message(self) -> str:
        """Return an operator-facing explanation of the violation."""
        return _MESSAGES[self]


_MESSAGES = {
    ViolationKind.USERNAME_TOO_SHORT: (
        f"MinIO admin username must be at least {USERNAME_MIN_LENGTH} characters long."
    ),
    ViolationKind.PASSWORD_TOO_SHORT: (
        f"MinIO admin password must be at least {PASSWORD_MIN_LENGTH} characters long."
    ),
    ViolationKind.USERNAME_INVALID_CHARACTERS: (
        "MinIO admin username can only contain letters, numbers, underscores, and hyphens."
    ),
    ViolationKind.CONTAINS_WHITESPACE: "MinIO credentials cannot contain whitespace.",
}


@dataclass(frozen=True)
class Credentials:
    """Admin username and password for the storage service."""

    username: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of :func:`validate`."""

    violations: tuple[ViolationKind, ...] = ()

    @property
    def ok(self) -> bool:
        """Return ``True`` when no rule was violated."""
        return not self.violations

    @property
    def messages(self) -> list[str]:
        """Return the violation messages in rule order."""
        return [violation.message for violation in self.violations]


def validate(username: str, password: str) -> ValidationResult:
    """Check *username* and *password* against every rule, collecting all violations."""
    violations: list[ViolationKind] = []
    if len(username) < USERNAME_MIN_LENGTH:
        violations.append(ViolationKind.USERNAME_TOO_SHORT)
    if len(password) < PASSWORD_MIN_LENGTH:
        violations.append(ViolationKind.PASSWORD_TOO_SHORT)
    if not _USERNAME_PATTERN.fullmatch(username):
        violations.append(ViolationKind.USERNAME_INVALID_CHARACTERS)
    if _WHITESPACE.search(username) or _WHITESPACE.search(password):
        violations.append(ViolationKind.CONTAINS_WHITESPACE)
    return ValidationResult(violations=tuple(violations))


__all__ = [
    "Credentials",
    "PASSWORD_MIN_LENGTH",
    "USERNAME_MIN_LENGTH",
    "ValidationResult",
    "ViolationKind",
    "validate",
]
