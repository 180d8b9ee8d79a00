"""Temporal workflow for the audit retention purge."""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from clinic_access.workflow_orchestration import activities


@workflow.defn(name="audit_retention")
class AuditRetentionWorkflow:
    """Archive and delete audit entries past their category's retention window."""

    @workflow.run
    async def run(self, payload: Dict[str, Any]) -> Dict[str, Any]:  # noqa: D401
        result = await workflow.execute_activity(
            activities.run_retention_activity,
            payload,
            start_to_close_timeout=timedelta(hours=1),
            retry_policy=RetryPolicy(
                maximum_attempts=3,
                initial_interval=timedelta(minutes=1),
            ),
        )
        workflow.logger.info("Audit retention completed: %s", result)
        return result
