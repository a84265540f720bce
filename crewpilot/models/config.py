"""Application configuration models with Pydantic validation."""

from enum import Enum

from pydantic import BaseModel, Field


class NotifyMethod(str, Enum):
    """Where alerts are dispatched."""

    DESKTOP = "desktop"
    LOG = "log"
    BOTH = "both"

    @property
    def uses_desktop(self) -> bool:
        return self in (NotifyMethod.DESKTOP, NotifyMethod.BOTH)

    @property
    def uses_log(self) -> bool:
        return self in (NotifyMethod.LOG, NotifyMethod.BOTH)


class WatchConfig(BaseModel):
    """Watch loop configuration."""

    poll_interval: float = Field(
        default=5,
        gt=0,
        le=3600,
        description="Seconds between polls",
    )
    notify: NotifyMethod = Field(
        default=NotifyMethod.DESKTOP,
        description="Notification sink(s)",
    )
    rate_limit_minutes: float = Field(
        default=5,
        ge=0,
        le=1440,
        description="Minimum minutes between notifications with the same key",
    )
    capture_lines: int = Field(
        default=50,
        ge=10,
        le=1000,
        description="Lines of scrollback captured per pane",
    )
    log_file: str | None = Field(
        default=None,
        description="Notification log (default .team-config/watch-notifications.log)",
    )


class MonitorConfig(BaseModel):
    """Heartbeat monitor configuration.

    The stuck thresholds are tuning constants, not derived values.
    """

    interval: float = Field(
        default=30,
        gt=0,
        le=3600,
        description="Seconds between heartbeat checks",
    )
    notify: NotifyMethod = Field(default=NotifyMethod.BOTH)
    stuck_threshold: int = Field(
        default=3,
        ge=1,
        le=100,
        description="Unchanged polls while working before a pane is stuck",
    )
    frozen_threshold: int = Field(
        default=6,
        ge=2,
        le=200,
        description="Unchanged polls while working before a pane is frozen",
    )
    heartbeat_every: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Write a routine heartbeat entry every N unchanged polls",
    )
    capture_lines: int = Field(default=50, ge=10, le=1000)
    rate_limit_minutes: float = Field(default=5, ge=0, le=1440)


class NotificationConfig(BaseModel):
    """Rate-limit bookkeeping configuration."""

    stale_entry_hours: float = Field(
        default=24,
        gt=0,
        le=720,
        description="Evict rate-limit entries older than this",
    )
    cleanup_every_cycles: int = Field(
        default=100,
        ge=1,
        le=100000,
        description="Run eviction every N loop cycles",
    )


class SearchConfig(BaseModel):
    """Memory search configuration."""

    limit: int = Field(default=20, ge=1, le=1000, description="Max documents shown")
    max_file_size_mb: float = Field(default=10, gt=0, le=1024)
    context_lines: int = Field(default=2, ge=0, le=20)
    max_matches_per_file: int = Field(default=5, ge=1, le=100)
    max_query_length: int = Field(default=200, ge=2, le=10000)


class ResumeConfig(BaseModel):
    """Recovery analysis configuration."""

    review_after_hours: float = Field(
        default=24,
        gt=0,
        le=24 * 365,
        description="Snapshots older than this recommend human review",
    )
    large_file_mb: float = Field(
        default=10,
        gt=0,
        le=1024,
        description="Files above this size are flagged as possibly corrupted",
    )
    startup_delay_seconds: float = Field(
        default=4,
        ge=0,
        le=120,
        description="Wait after launching the agent before sending the recovery prompt",
    )


class DashboardConfig(BaseModel):
    """JSON API server configuration."""

    port: int = Field(default=3000, ge=1024, le=65535)
    capture_lines: int = Field(default=100, ge=10, le=1000)


class AppConfig(BaseModel):
    """Root configuration, loaded from .team-config/crewpilot.yaml."""

    watch: WatchConfig = Field(default_factory=WatchConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    resume: ResumeConfig = Field(default_factory=ResumeConfig)
    dashboard: DashboardConfig = Field(default_factory=DashboardConfig)
