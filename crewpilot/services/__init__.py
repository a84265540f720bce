"""Services for crewpilot."""

from crewpilot.services.change_tracker import (
    AlertKind,
    AlertLatch,
    ChangeTracker,
    Detection,
    ProcessTracker,
    detect_dead,
    detect_stuck,
    hash_content,
)
from crewpilot.services.config_service import (
    ConfigService,
    get_config_service,
    reset_config_service,
)
from crewpilot.services.monitor_loop import HeartbeatMonitor, MonitorCycle, PaneHeartbeat
from crewpilot.services.notification_service import (
    DesktopSink,
    LogSink,
    NotificationManager,
)
from crewpilot.services.question_extractor import extract_question
from crewpilot.services.resume_analyzer import (
    ResumeFlow,
    ResumeOutcome,
    analyze,
    parse_timestamp,
    recommend,
)
from crewpilot.services.search_engine import (
    SearchEngine,
    calculate_score,
    levenshtein_distance,
    validate_query,
)
from crewpilot.services.state_classifier import StateClassifier, classify
from crewpilot.services.state_store import HeartbeatLog, RunnerStateStore
from crewpilot.services.watch_loop import RunnerObservation, WatchLoop, classify_panes

__all__ = [
    # Classification
    "StateClassifier",
    "classify",
    "extract_question",
    # Change tracking
    "AlertKind",
    "AlertLatch",
    "ChangeTracker",
    "Detection",
    "ProcessTracker",
    "detect_dead",
    "detect_stuck",
    "hash_content",
    # Config
    "ConfigService",
    "get_config_service",
    "reset_config_service",
    # Notifications
    "DesktopSink",
    "LogSink",
    "NotificationManager",
    # Persistence
    "HeartbeatLog",
    "RunnerStateStore",
    # Loops
    "HeartbeatMonitor",
    "MonitorCycle",
    "PaneHeartbeat",
    "RunnerObservation",
    "WatchLoop",
    "classify_panes",
    # Resume
    "ResumeFlow",
    "ResumeOutcome",
    "analyze",
    "parse_timestamp",
    "recommend",
    # Search
    "SearchEngine",
    "calculate_score",
    "levenshtein_distance",
    "validate_query",
]
