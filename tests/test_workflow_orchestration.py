from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from temporalio.client import ScheduleAlreadyRunningError

from clinic_access.core.config import get_settings
from clinic_access.core.database import session_scope
from clinic_access.schemas.audit import AuditEntry
from clinic_access.services.audit import AuditService
from clinic_access.services.retention import RetentionService
from clinic_access.workflow_orchestration.activities import run_anomaly_scan_activity, run_retention_activity
from clinic_access.workflow_orchestration.config import TemporalConfig, get_temporal_config
from clinic_access.workflow_orchestration.starter import WorkflowStarter, workflow_name
from clinic_access.workflow_orchestration.workflows import AnomalyScanWorkflow, AuditRetentionWorkflow


class StubHandle:
    def __init__(self, workflow_id: str) -> None:
        self.id = workflow_id


class StubClient:
    def __init__(self, existing: set[str] | None = None) -> None:
        self.started: list[dict[str, object]] = []
        self.schedules: dict[str, object] = {}
        self.existing = existing or set()

    async def start_workflow(self, workflow, arg, *, id, task_queue):  # noqa: A002, ANN001
        self.started.append({"workflow": workflow, "arg": arg, "id": id, "task_queue": task_queue})
        return StubHandle(id)

    async def create_schedule(self, schedule_id, schedule):  # noqa: ANN001
        if schedule_id in self.existing:
            raise ScheduleAlreadyRunningError()
        self.schedules[schedule_id] = schedule


def _config(**overrides: object) -> TemporalConfig:
    values = {
        "host": "localhost:7233",
        "namespace": "test",
        "api_key": "dummy",
        "task_queue": "unit-tests",
        "tls_enabled": False,
    }
    values.update(overrides)
    return TemporalConfig(**values)


def test_workflow_names() -> None:
    assert workflow_name(AuditRetentionWorkflow) == "audit_retention"
    assert workflow_name(AnomalyScanWorkflow) == "anomaly_scan"


def test_config_reads_intervals_from_settings() -> None:
    config = get_temporal_config(get_settings())

    assert not config.enabled
    assert config.retention_interval == timedelta(minutes=get_settings().retention_interval_minutes)


@pytest.mark.asyncio
async def test_starter_starts_workflow_on_task_queue() -> None:
    client = StubClient()
    starter = WorkflowStarter(config=_config(), client=client)

    workflow_id = await starter.start_workflow(
        workflow_class=AuditRetentionWorkflow, workflow_id="retention-manual", payload={"now": "2026-10-19T12:00:00+00:00"}
    )

    assert workflow_id == "retention-manual"
    assert client.started == [
        {
            "workflow": "audit_retention",
            "arg": {"now": "2026-10-19T12:00:00+00:00"},
            "id": "retention-manual",
            "task_queue": "unit-tests",
        }
    ]


@pytest.mark.asyncio
async def test_ensure_schedules_tolerates_existing_schedules() -> None:
    client = StubClient(existing={"audit_retention-schedule"})
    starter = WorkflowStarter(config=_config(), client=client)

    await starter.ensure_schedules()

    assert list(client.schedules) == ["anomaly_scan-schedule"]


@pytest.mark.asyncio
async def test_starter_requires_configuration() -> None:
    starter = WorkflowStarter(config=_config(host=None), client=StubClient())

    with pytest.raises(RuntimeError):
        await starter.start_workflow(workflow_class=AnomalyScanWorkflow, workflow_id="scan")


@pytest.mark.asyncio
async def test_retention_activity_purges_expired_entries() -> None:
    now = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
    with session_scope() as session:
        service = RetentionService(session, get_settings())
        service.ensure_default_policies()
        AuditService(session).record_event(
            AuditEntry(
                idempotency_key="ancient",
                event_type="ACCESS_GRANTED",
                event_category="AUTHORIZATION",
                action="VIEW",
                resource_type="APPOINTMENT",
                correlation_id="ancient",
                timestamp=now - timedelta(days=get_settings().default_retention_days + 1),
            )
        )

    result = await run_retention_activity({"now": now.isoformat()})

    by_category = {item["event_category"]: item for item in result["categories"]}
    assert by_category["AUTHORIZATION"]["deleted"] == 1
    assert result["started_at"].startswith("2026-10-19T12:00:00")


@pytest.mark.asyncio
async def test_anomaly_scan_activity_returns_summary() -> None:
    result = await run_anomaly_scan_activity({})

    assert result["findings"] == 0


@pytest.mark.asyncio
async def test_connect_requires_configuration() -> None:
    with pytest.raises(RuntimeError):
        await _config(api_key=None).connect()
