"""Application configuration using Pydantic settings."""

from __future__ import annotations

from functools import lru_cache
from typing import List, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """Service configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="CLINIC_ACCESS_",
        extra="ignore",
    )

    environment: Literal["local", "test", "staging", "production"] = Field(default="local")
    service_name: str = Field(default="clinic-access-core")
    database_url: str = Field(default="sqlite:///./data/clinic_access.db")
    sql_echo: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=True)

    # Audit retention
    phi_retention_floor_days: int = Field(default=2190, ge=1)
    default_retention_days: int = Field(default=2555, ge=1)
    phi_event_categories: List[str] | str = Field(default_factory=lambda: ["PHI_ACCESS", "EMERGENCY"])
    retention_batch_size: int = Field(default=500, ge=1)

    # Audit pipeline
    audit_buffer_size: int = Field(default=10000, ge=1)
    audit_phi_enqueue_timeout_ms: int = Field(default=250, ge=0)
    audit_persist_attempts: int = Field(default=5, ge=1)
    audit_retry_backoff_ms: int = Field(default=50, ge=0)
    audit_consumer_autostart: bool = Field(default=True)

    # Emergency access
    emergency_audit_timeout_ms: int = Field(default=50, ge=1)
    emergency_justification_min_length: int = Field(default=10, ge=1)

    # Attribute sources
    attribute_lookup_timeout_ms: int = Field(default=30, ge=1)
    consent_service_url: str | None = Field(default=None)

    # Anomaly detection defaults
    anomaly_window_minutes: int = Field(default=60, ge=1)
    anomaly_phi_distinct_patients: int = Field(default=50, ge=1)
    anomaly_repeated_denials: int = Field(default=10, ge=1)
    anomaly_emergency_per_day: int = Field(default=3, ge=1)

    redis_url: str | None = Field(default=None)
    redis_token: str | None = Field(default=None)
    redis_cache_prefix: str = Field(default="clinic-access")
    redis_cache_ttl: int = Field(default=300)
    alert_topic_arn: str | None = Field(default=None)
    audit_sqs_url: str | None = Field(default=None)
    temporal_host: str | None = Field(default=None)
    temporal_namespace: str | None = Field(default=None)
    temporal_api_key: str | None = Field(default=None)
    temporal_task_queue: str = Field(default="clinic-access-maintenance")
    temporal_tls_enabled: bool = Field(default=True)
    retention_interval_minutes: int = Field(default=24 * 60, ge=1)
    anomaly_scan_interval_minutes: int = Field(default=15, ge=1)

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        return value.upper()

    @field_validator("phi_event_categories", mode="before")
    @classmethod
    def parse_categories(cls, value: str | List[str] | None) -> List[str]:
        if value is None or value == "":
            return []
        if isinstance(value, str):
            return [item.strip().upper() for item in value.split(",") if item.strip()]
        return [item.upper() for item in value]

    @field_validator(
        "redis_url",
        "redis_token",
        "consent_service_url",
        "alert_topic_arn",
        "audit_sqs_url",
        "temporal_host",
        "temporal_namespace",
        "temporal_api_key",
        mode="before",
    )
    @classmethod
    def empty_string_to_none(cls, value: str | None) -> str | None:
        if value == "":
            return None
        return value

    @field_validator("redis_cache_ttl", mode="before")
    @classmethod
    def ensure_int_ttl(cls, value: int | str | None) -> int | str | None:
        if value in (None, ""):
            return 300
        return value


@lru_cache
def get_settings() -> AppSettings:
    """Return cached application settings instance."""

    return AppSettings()
