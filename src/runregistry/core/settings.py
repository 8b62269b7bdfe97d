"""Process configuration for the run registry.

Configuration is explicit, validated and environment-driven. Every field
can be set with a ``RUNREGISTRY_``-prefixed environment variable or a
``.env`` file; defaults work out of the box for a single-node install backed
by SQLite.

Manifesto:
    - **Pydantic validation:** type-checked at startup, not on first use
    - **Environment-driven:** env vars and .env files
    - **Sensible defaults:** a fresh checkout runs without any configuration

Examples:
    >>> from runregistry.core.settings import RegistrySettings
    >>> settings = RegistrySettings(database_url="sqlite:///:memory:")
    >>> settings.reconcile_interval_seconds
    30.0

Tags:
    settings, configuration, pydantic, environment, run-registry

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SUBJECT_TEMPLATE = "Workflow run {run_id} finished with exit code {code}"
DEFAULT_BODY_TEMPLATE = (
    "Your workflow run {run_id} (owner: {owner}) has finished.\n"
    "Exit code: {code}\n"
    "Created: {created_at}\n"
    "Expires: {expiry}\n"
)


class RegistrySettings(BaseSettings):
    """Settings for the registry process.

    Fields
    ──────
    database_url                   : SQLAlchemy URL of the run store
    data_dir                       : Directory for the default SQLite file
    log_level / json_logs          : structlog configuration
    reconcile_interval_seconds     : Completion reconciliation period
    expiry_sweep_interval_seconds  : Expiry sweep period
    default_lifetime_minutes       : Lifetime of a new run before it expires
    max_runs                       : Upper bound on stored runs (None = unlimited)
    smtp_*                         : Outgoing mail for completion notifications
    """

    model_config = SettingsConfigDict(
        env_prefix="RUNREGISTRY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Storage ──────────────────────────────────────────────────
    data_dir: Path = Field(
        default_factory=lambda: Path.home() / ".runregistry",
        description="Directory holding the default SQLite database",
    )
    database_url: str | None = None

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None

    # ── Maintenance ──────────────────────────────────────────────
    reconcile_interval_seconds: float = Field(default=30.0, gt=0)
    expiry_sweep_interval_seconds: float = Field(default=300.0, gt=0)
    default_lifetime_minutes: int = Field(default=1440, gt=0)
    max_runs: int | None = Field(default=None, gt=0)

    # ── Notification ─────────────────────────────────────────────
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_use_tls: bool = True
    notification_from: str = "run-registry@localhost"
    subject_template: str = DEFAULT_SUBJECT_TEMPLATE
    body_template: str = DEFAULT_BODY_TEMPLATE

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {value}")
        return level

    @property
    def resolved_database_url(self) -> str:
        """The configured URL, or a SQLite file under ``data_dir``."""
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.data_dir / 'runregistry.db'}"


@lru_cache(maxsize=1)
def get_settings() -> RegistrySettings:
    """Return the process-wide settings (read once from the environment)."""
    return RegistrySettings()


__all__ = [
    "RegistrySettings",
    "get_settings",
    "DEFAULT_SUBJECT_TEMPLATE",
    "DEFAULT_BODY_TEMPLATE",
]
