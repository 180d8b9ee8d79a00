"""Temporal workflow definitions."""

from clinic_access.workflow_orchestration.workflows.anomaly_scan import AnomalyScanWorkflow  # noqa: F401
from clinic_access.workflow_orchestration.workflows.audit_retention import AuditRetentionWorkflow  # noqa: F401
