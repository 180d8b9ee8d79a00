"""Business logic service layer."""

from clinic_access.services.audit import AuditService  # noqa: F401
from clinic_access.services.audit_query import AuditQueryService  # noqa: F401
