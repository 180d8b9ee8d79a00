"""Temporal workflow orchestration configuration helpers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from temporalio.client import Client

from clinic_access.core.config import AppSettings, get_settings


@dataclass
class TemporalConfig:
    """Materialized Temporal connection settings."""

    host: str | None
    namespace: str | None
    api_key: str | None
    task_queue: str
    tls_enabled: bool
    retention_interval: timedelta = timedelta(days=1)
    anomaly_scan_interval: timedelta = timedelta(minutes=15)

    @property
    def enabled(self) -> bool:
        return bool(self.host and self.namespace and self.api_key)

    async def connect(self) -> Client:
        """Open a client for the configured namespace."""

        if not self.enabled:
            raise RuntimeError("Temporal service is not configured")
        return await Client.connect(
            self.host,
            namespace=self.namespace,
            api_key=self.api_key,
            tls=self.tls_enabled,
        )


def get_temporal_config(settings: AppSettings | None = None) -> TemporalConfig:
    settings = settings or get_settings()
    return TemporalConfig(
        host=settings.temporal_host,
        namespace=settings.temporal_namespace,
        api_key=settings.temporal_api_key,
        task_queue=settings.temporal_task_queue,
        tls_enabled=settings.temporal_tls_enabled,
        retention_interval=timedelta(minutes=settings.retention_interval_minutes),
        anomaly_scan_interval=timedelta(minutes=settings.anomaly_scan_interval_minutes),
    )
