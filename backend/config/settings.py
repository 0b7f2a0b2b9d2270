"""Centralized settings module — single source of truth for all config.

All secrets loaded exclusively from env vars. Never committed, never logged.
Business logic never reads Settings directly: the lifecycle engine and the
reconciliation jobs receive an EngineConfig built once at startup.
"""
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings

_ROOT = Path(__file__).resolve().parent.parent


@dataclass(frozen=True)
class EngineConfig:
    """Session lifecycle parameters, fixed for the lifetime of the process."""
    session_timeout_hours: float = 12
    heartbeat_minutes: float = 5
    heartbeat_grace_factor: float = 2.0
    location_proximity_meters: float = 100
    suspect_poor_heartbeat_threshold: int = 6
    reporting_timezone: str = "Asia/Kolkata"

    @property
    def heartbeat_timeout_minutes(self) -> float:
        return self.heartbeat_minutes * self.heartbeat_grace_factor

    @property
    def session_timeout_seconds(self) -> int:
        return int(self.session_timeout_hours * 3600)


class Settings(BaseSettings):
    # ── Environment ──────────────────────────────────────────────
    ENV: Literal["dev", "staging", "prod"] = Field(default="dev")

    # ── MongoDB ──────────────────────────────────────────────────
    MONGO_URL: str = Field(default="mongodb://localhost:27017")
    DB_NAME: str = Field(default="attendance_monitoring")

    # ── Session lifecycle ────────────────────────────────────────
    SESSION_TIMEOUT_HOURS: float = Field(default=12)
    HEARTBEAT_MINUTES: float = Field(default=5)
    # Number of heartbeat intervals tolerated before a session is stale.
    # Fractional values like 1.5 are allowed.
    HEARTBEAT_GRACE_FACTOR: float = Field(default=2.0)
    LOCATION_PROXIMITY_METERS: float = Field(default=100)
    SUSPECT_POOR_HEARTBEAT_THRESHOLD: int = Field(default=6)

    # ── Reconciliation ───────────────────────────────────────────
    SCHEDULER_ENABLED: bool = Field(default=True)
    AUTO_LOGOUT_CHECK_MINUTES: float = Field(default=5)
    STALE_SWEEP_MINUTES: float = Field(default=30)
    REPORTING_TIMEZONE: str = Field(default="Asia/Kolkata")

    # ── Internal cron triggers ───────────────────────────────────
    INTERNAL_CRON_SECRET: str = Field(default="")
    CRON_SECRET: str = Field(default="")

    # ── Observability ────────────────────────────────────────────
    LOG_LEVEL: str = Field(default="INFO")
    LOG_REDACTION_ENABLED: bool = Field(default=True)

    model_config = {
        "env_file": str(_ROOT / ".env"),
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    def engine_config(self) -> EngineConfig:
        return EngineConfig(
            session_timeout_hours=self.SESSION_TIMEOUT_HOURS,
            heartbeat_minutes=self.HEARTBEAT_MINUTES,
            heartbeat_grace_factor=self.HEARTBEAT_GRACE_FACTOR,
            location_proximity_meters=self.LOCATION_PROXIMITY_METERS,
            suspect_poor_heartbeat_threshold=self.SUSPECT_POOR_HEARTBEAT_THRESHOLD,
            reporting_timezone=self.REPORTING_TIMEZONE,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
