"""SQLAlchemy ORM models for the access control service."""

from clinic_access.models.base import Base  # noqa: F401
from clinic_access.models.permission import Permission  # noqa: F401
from clinic_access.models.role import Role  # noqa: F401
from clinic_access.models.role_permission import RolePermission  # noqa: F401
from clinic_access.models.user_assignment import UserPermission, UserRole  # noqa: F401
from clinic_access.models.data_access_rule import DataAccessRule  # noqa: F401
from clinic_access.models.audit_log import AuditLog  # noqa: F401
from clinic_access.models.retention_policy import AuditRetentionPolicy  # noqa: F401
from clinic_access.models.anomaly import AnomalyThreshold, SuspiciousActivity  # noqa: F401
from clinic_access.models.emergency_review import EmergencyAccessReview  # noqa: F401
