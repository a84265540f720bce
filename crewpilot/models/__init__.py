"""Domain models for crewpilot."""

from crewpilot.models.config import (
    AppConfig,
    DashboardConfig,
    MonitorConfig,
    NotificationConfig,
    NotifyMethod,
    ResumeConfig,
    SearchConfig,
    WatchConfig,
)
from crewpilot.models.recovery import Recommendation, RecoveryAnalysis
from crewpilot.models.runner import (
    ClassificationResult,
    DetectedQuestion,
    HeartbeatEntry,
    QuestionType,
    RunnerState,
    RunnerStateSnapshot,
)
from crewpilot.models.search import (
    MemoryIndex,
    QueryValidation,
    SearchIndexEntry,
    SearchMatch,
    SearchResponse,
    SearchResult,
)

__all__ = [
    # Config
    "AppConfig",
    "DashboardConfig",
    "MonitorConfig",
    "NotificationConfig",
    "NotifyMethod",
    "ResumeConfig",
    "SearchConfig",
    "WatchConfig",
    # Runner
    "ClassificationResult",
    "DetectedQuestion",
    "HeartbeatEntry",
    "QuestionType",
    "RunnerState",
    "RunnerStateSnapshot",
    # Recovery
    "Recommendation",
    "RecoveryAnalysis",
    # Search
    "MemoryIndex",
    "QueryValidation",
    "SearchIndexEntry",
    "SearchMatch",
    "SearchResponse",
    "SearchResult",
]
