"""Error taxonomy shared by the policy store, access checks and audit pipeline."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Tag carried on access decisions instead of raising across components."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    POLICY_MISCONFIGURATION = "policy_misconfiguration"
    AUDIT_WRITE_FAILURE = "audit_write_failure"
    TIMEOUT = "timeout"
    EVALUATION_FAILURE = "evaluation_failure"

    @property
    def category(self) -> str:
        """Generic category that may be shown to callers."""

        return _CATEGORIES[self]


_CATEGORIES = {
    ErrorKind.VALIDATION: "validation",
    ErrorKind.NOT_FOUND: "not_found",
    ErrorKind.CONFLICT: "conflict",
    ErrorKind.POLICY_MISCONFIGURATION: "validation",
    ErrorKind.AUDIT_WRITE_FAILURE: "unavailable",
    ErrorKind.TIMEOUT: "unavailable",
    ErrorKind.EVALUATION_FAILURE: "unavailable",
}


class AccessControlError(Exception):
    """Base class for access control service errors."""

    kind: ErrorKind = ErrorKind.VALIDATION


class ValidationError(AccessControlError):
    """Raised for malformed requests, rules or conditions."""

    kind = ErrorKind.VALIDATION


class NotFoundError(AccessControlError):
    """Raised when a referenced role, permission, rule or finding does not exist."""

    kind = ErrorKind.NOT_FOUND


class ConflictError(AccessControlError):
    """Raised on a stale version or a uniqueness violation."""

    kind = ErrorKind.CONFLICT


class PolicyMisconfiguration(AccessControlError):
    """Raised when a policy edit would leave the rule graph invalid."""

    kind = ErrorKind.POLICY_MISCONFIGURATION


class AuditWriteFailure(AccessControlError):
    """Raised when a durable audit write could not be guaranteed."""

    kind = ErrorKind.AUDIT_WRITE_FAILURE


class AccessTimeout(AccessControlError):
    """Raised when a deadline expires before a decision could be made."""

    kind = ErrorKind.TIMEOUT
