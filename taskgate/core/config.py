"""
TaskGate: Configuration Management
===================================
Centralized, validated configuration with environment-based overrides.
All settings are loaded from environment variables with sensible defaults.

Usage:
    from taskgate.core.config import get_settings
    settings = get_settings()
"""

from __future__ import annotations

from enum import StrEnum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from taskgate.core.task_types import (
    DEFAULT_APPROVAL_CATEGORIES,
    DEFAULT_AUTO_APPROVE_CATEGORIES,
    DEFAULT_FINANCIAL_KEYWORDS,
    DEFAULT_LEGAL_KEYWORDS,
)


class Environment(StrEnum):
    """Deployment environment."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """
    Root configuration object.

    All values can be overridden via environment variables prefixed with ``TASKGATE_``.
    Example: ``TASKGATE_POLL_INTERVAL_SECONDS=0.5``

    List values are read as JSON, e.g.
    ``TASKGATE_FINANCIAL_KEYWORDS='["payment", "wire"]'``.
    """

    model_config = SettingsConfigDict(
        env_prefix="TASKGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── General ──────────────────────────────────────────────────────────
    app_name: str = "taskgate"
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = False

    # ── Operational Store ────────────────────────────────────────────────
    database_url: str = "sqlite+aiosqlite:///./data/taskgate.db"
    db_echo_sql: bool = False

    # ── Audit Log ────────────────────────────────────────────────────────
    audit_recent_actions: int = Field(default=10, ge=0, le=500)

    # ── Logging & Observability ──────────────────────────────────────────
    log_level: str = Field(
        default="INFO", pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    log_format: str = "json"  # "json" or "console"

    # ── Correlation ──────────────────────────────────────────────────────
    correlation_id_header: str = "X-Correlation-ID"

    # ── Identity ─────────────────────────────────────────────────────────
    user_header: str = "X-User"  # names the caller on decisions and pauses

    # ── Server ───────────────────────────────────────────────────────────
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)
    autostart_loop: bool = True

    # ── Execution Loop ───────────────────────────────────────────────────
    poll_interval_seconds: float = Field(default=2.0, gt=0)
    max_concurrent_tasks: int = Field(default=1, ge=1, le=64)
    executor_timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Executor calls exceeding this are recorded as failures.",
    )
    completed_history_max: int = Field(default=500, ge=1)
    dead_letter_max: int = Field(default=100, ge=1)

    # ── Priority Weights ─────────────────────────────────────────────────
    priority_weight_impact: float = 0.4
    priority_weight_urgency: float = 0.3
    priority_weight_effort: float = -0.2
    priority_weight_risk: float = -0.1

    # ── Policy ───────────────────────────────────────────────────────────
    approval_categories: list[str] = Field(
        default_factory=lambda: list(DEFAULT_APPROVAL_CATEGORIES))
    auto_approve_categories: list[str] = Field(
        default_factory=lambda: list(DEFAULT_AUTO_APPROVE_CATEGORIES))
    financial_keywords: list[str] = Field(
        default_factory=lambda: list(DEFAULT_FINANCIAL_KEYWORDS))
    legal_keywords: list[str] = Field(
        default_factory=lambda: list(DEFAULT_LEGAL_KEYWORDS))
    default_auto_approve: bool = True
    enforce_constraints: bool = True

    # ── Anomaly Monitor ──────────────────────────────────────────────────
    max_failure_rate: float = Field(default=0.3, ge=0.0, le=1.0)
    min_failure_sample: int = Field(default=5, ge=1)
    max_executions_per_hour: int = Field(default=100, ge=1)
    anomaly_check_interval_seconds: float = Field(default=60.0, gt=0)
    pause_on_anomaly: bool = True

    @property
    def priority_weights(self) -> dict[str, float]:
        """Weights keyed by the task score they multiply."""
        return {
            "impact": self.priority_weight_impact,
            "urgency": self.priority_weight_urgency,
            "effort": self.priority_weight_effort,
            "risk": self.priority_weight_risk,
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Return the singleton Settings instance.

    Cached so environment is read exactly once per process lifetime.
    Call ``get_settings.cache_clear()`` in tests to reset.
    """
    return Settings()
