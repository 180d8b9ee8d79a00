"""Temporal workflow for the suspicious activity scan."""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from clinic_access.workflow_orchestration import activities


@workflow.defn(name="anomaly_scan")
class AnomalyScanWorkflow:
    """Run the anomaly heuristics over the trailing audit window."""

    @workflow.run
    async def run(self, payload: Dict[str, Any]) -> Dict[str, Any]:  # noqa: D401
        return await workflow.execute_activity(
            activities.run_anomaly_scan_activity,
            payload,
            start_to_close_timeout=timedelta(minutes=10),
            retry_policy=RetryPolicy(
                maximum_attempts=3,
                initial_interval=timedelta(seconds=30),
            ),
        )
