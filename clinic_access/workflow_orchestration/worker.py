"""Temporal worker bootstrap."""

from __future__ import annotations

import logging

from temporalio.worker import Worker

from clinic_access.workflow_orchestration.activities import (
    run_anomaly_scan_activity,
    run_retention_activity,
)
from clinic_access.workflow_orchestration.config import get_temporal_config
from clinic_access.workflow_orchestration.starter import WorkflowStarter
from clinic_access.workflow_orchestration.workflows import AnomalyScanWorkflow, AuditRetentionWorkflow

logger = logging.getLogger("clinic_access.workflow.worker")

WORKFLOWS = [AuditRetentionWorkflow, AnomalyScanWorkflow]
ACTIVITIES = [run_retention_activity, run_anomaly_scan_activity]


async def run_worker() -> None:
    """Run the Temporal worker with the maintenance workflows and activities."""

    config = get_temporal_config()
    if not config.enabled:
        logger.error(
            "temporal_not_configured",
            extra={"required": ["CLINIC_ACCESS_TEMPORAL_HOST", "CLINIC_ACCESS_TEMPORAL_NAMESPACE", "CLINIC_ACCESS_TEMPORAL_API_KEY"]},
        )
        raise RuntimeError("Temporal service is not configured")

    client = await config.connect()
    await WorkflowStarter(config=config, client=client).ensure_schedules()

    worker = Worker(
        client,
        task_queue=config.task_queue,
        workflows=WORKFLOWS,
        activities=ACTIVITIES,
    )
    logger.info(
        "temporal_worker_started",
        extra={
            "host": config.host,
            "namespace": config.namespace,
            "task_queue": config.task_queue,
            "workflows": len(WORKFLOWS),
            "activities": len(ACTIVITIES),
        },
    )
    await worker.run()
