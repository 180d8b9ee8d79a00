"""Temporal activities for the periodic audit maintenance jobs."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from temporalio import activity

from clinic_access.core.config import get_settings
from clinic_access.core.database import session_scope
from clinic_access.services.anomaly import AnomalyDetectionService
from clinic_access.services.notifications import get_alert_publisher
from clinic_access.services.retention import RetentionService

LOGGER = logging.getLogger("clinic_access.workflow.activities")


def _requested_time(payload: Dict[str, Any]) -> Optional[datetime]:
    value = payload.get("now")
    return datetime.fromisoformat(value) if value else None


def _run_retention(now: Optional[datetime]) -> Dict[str, Any]:
    settings = get_settings()
    with session_scope() as session:
        result = RetentionService(session, settings).run(now)
    return result.model_dump(mode="json")


def _run_anomaly_scan(now: Optional[datetime]) -> Dict[str, Any]:
    settings = get_settings()
    with session_scope() as session:
        result = AnomalyDetectionService(session, settings, alerts=get_alert_publisher()).scan(now)
    return result.model_dump(mode="json")


@activity.defn(name="run_retention_activity")
async def run_retention_activity(payload: Dict[str, Any]) -> Dict[str, Any]:
    LOGGER.info("workflow_run_retention", extra={"payload": payload})
    return await asyncio.to_thread(_run_retention, _requested_time(payload))


@activity.defn(name="run_anomaly_scan_activity")
async def run_anomaly_scan_activity(payload: Dict[str, Any]) -> Dict[str, Any]:
    LOGGER.info("workflow_run_anomaly_scan", extra={"payload": payload})
    return await asyncio.to_thread(_run_anomaly_scan, _requested_time(payload))
