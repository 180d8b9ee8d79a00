"""Utilities for starting and scheduling the maintenance workflows."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, Optional, Type

from temporalio.client import (
    Client,
    Schedule,
    ScheduleActionStartWorkflow,
    ScheduleAlreadyRunningError,
    ScheduleIntervalSpec,
    ScheduleSpec,
)

from clinic_access.workflow_orchestration.config import TemporalConfig, get_temporal_config
from clinic_access.workflow_orchestration.workflows import AnomalyScanWorkflow, AuditRetentionWorkflow

logger = logging.getLogger("clinic_access.workflow.starter")


def workflow_name(workflow_class: Type) -> str:
    workflow_def = getattr(workflow_class, "__temporal_workflow_definition", None)
    if workflow_def and getattr(workflow_def, "name", None):
        return workflow_def.name
    return workflow_class.__name__


class WorkflowStarter:
    """Starts workflows and registers their recurring schedules."""

    def __init__(self, *, config: TemporalConfig | None = None, client: Client | None = None) -> None:
        self._config = config or get_temporal_config()
        self._client = client

    async def _get_client(self) -> Client:
        if not self._config.enabled:
            raise RuntimeError("Temporal service is not configured")
        if self._client is None:
            self._client = await self._config.connect()
        return self._client

    async def start_workflow(
        self,
        *,
        workflow_class: Type,
        workflow_id: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> str:
        client = await self._get_client()
        handle = await client.start_workflow(
            workflow_name(workflow_class),
            payload or {},
            id=workflow_id,
            task_queue=self._config.task_queue,
        )
        return handle.id

    async def ensure_schedules(self) -> None:
        """Create the retention and anomaly scan schedules when they do not exist yet."""

        client = await self._get_client()
        for workflow_class, every in (
            (AuditRetentionWorkflow, self._config.retention_interval),
            (AnomalyScanWorkflow, self._config.anomaly_scan_interval),
        ):
            await self._ensure_schedule(client, workflow_name(workflow_class), every)

    async def _ensure_schedule(self, client: Client, name: str, every: timedelta) -> None:
        schedule_id = f"{name}-schedule"
        try:
            await client.create_schedule(
                schedule_id,
                Schedule(
                    action=ScheduleActionStartWorkflow(
                        name,
                        {},
                        id=f"{name}-run",
                        task_queue=self._config.task_queue,
                    ),
                    spec=ScheduleSpec(intervals=[ScheduleIntervalSpec(every=every)]),
                ),
            )
        except ScheduleAlreadyRunningError:
            logger.debug("workflow_schedule_exists", extra={"schedule_id": schedule_id})
            return
        logger.info("workflow_schedule_created", extra={"schedule_id": schedule_id, "every_seconds": every.total_seconds()})
