"""Session recovery analysis and the resume flow.

``analyze`` inspects the persisted memory of a project and recommends
whether to continue the previous agent conversation, start fresh, or ask a
human to review first. It is total: every file problem becomes a warning.
"""

import json
import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path

from crewpilot.backends.base import TerminalBackend
from crewpilot.models.config import ResumeConfig
from crewpilot.models.recovery import Recommendation, RecoveryAnalysis
from crewpilot.workspace import (
    MONITOR_LOCK,
    WATCH_LOCK,
    format_timestamp,
    get_session_name,
    get_team_config_dir,
    read_lockfile,
    require_team_config,
    resolve_project_name,
    utc_now,
)

logger = logging.getLogger(__name__)

STATE_SNAPSHOT_FILE = "state-snapshot.md"
SESSION_RECOVERY_FILE = "session-recovery.md"

# External progress artifacts, relative to the project root
PROGRESS_FILES = (".planning/STATE.md", ".planning/ROADMAP.md")
PROGRESS_GLOBS = ("docs/plans/*.md",)

BINARY_SNIFF_BYTES = 1024

RECOVERY_PROMPT = (
    "Read .team-config/session-recovery.md and follow the recovery instructions. "
    "Read .team-config/team-lead-persona.md to restore your Team Lead persona. "
    "Resume work from where you left off. IMPORTANT: Follow the Session Recovery "
    "section of your persona, NOT the Project Startup Workflow. Do not re-run the "
    "startup sequence."
)

PERMISSION_WARNING = (
    "WARNING: Crewpilot launches the agent with --dangerously-skip-permissions.\n"
    "This disables all permission gates. The agent will have unrestricted access\n"
    "to your file system and shell. Only proceed in a controlled environment."
)

AGENT_COMMAND = "claude --dangerously-skip-permissions"
AGENT_CONTINUE_COMMAND = "claude --continue --dangerously-skip-permissions"


# =============================================================================
# Timestamp parsing
# =============================================================================

STRUCTURED_KEYS = ("timestamp", "lastUpdated", "updatedAt")

_LABELED_LINE_RE = re.compile(
    r"^[\s>#*_-]*(?:last updated|updated|timestamp|date|saved)[*_]*\s*:[*_]*\s*(.+?)\s*$",
    re.IGNORECASE | re.MULTILINE,
)
_ISO_RE = re.compile(
    r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:Z|[+-]\d{2}:?\d{2})?"
)
_DATETIME_RE = re.compile(r"(\d{4})-(\d{2})-(\d{2}) (\d{2}):(\d{2}):(\d{2})")
_DATE_RE = re.compile(r"(\d{4})-(\d{2})-(\d{2})")
_US_DATE_RE = re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})(?:[ ,]+(\d{1,2}):(\d{2})(?::(\d{2}))?)?")
_EU_DATE_RE = re.compile(r"(\d{1,2})\.(\d{1,2})\.(\d{4})(?:[ ,]+(\d{1,2}):(\d{2})(?::(\d{2}))?)?")
_OFFSET_NO_COLON_RE = re.compile(r"([+-]\d{2})(\d{2})$")


def _localize(value: datetime) -> datetime:
    """Treat naive datetimes as local time and make them aware."""
    if value.tzinfo is None:
        return value.astimezone()
    return value


def _from_iso(value: str) -> datetime | None:
    value = value.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    value = _OFFSET_NO_COLON_RE.sub(r"\1:\2", value)
    try:
        return _localize(datetime.fromisoformat(value))
    except ValueError:
        return None


def _parse_structured(text: str) -> datetime | None:
    stripped = text.strip()
    if stripped.startswith("{"):
        try:
            data = json.loads(stripped)
        except (ValueError, RecursionError):
            data = None
        if isinstance(data, dict):
            for key in STRUCTURED_KEYS:
                value = data.get(key)
                if isinstance(value, str):
                    parsed = _from_iso(value)
                    if parsed is not None:
                        return parsed

    for match in _LABELED_LINE_RE.finditer(text):
        parsed = _from_iso(match.group(1).strip("*_` "))
        if parsed is not None:
            return parsed
    return None


def _build(year, month, day, hour=None, minute=None, second=None) -> datetime:
    return _localize(
        datetime(
            int(year),
            int(month),
            int(day),
            int(hour or 0),
            int(minute or 0),
            int(second or 0),
        )
    )


def _extract_iso(text: str) -> datetime | None:
    match = _ISO_RE.search(text)
    return _from_iso(match.group(0)) if match else None


def _extract_datetime(text: str) -> datetime | None:
    match = _DATETIME_RE.search(text)
    return _build(*match.groups()) if match else None


def _extract_date(text: str) -> datetime | None:
    match = _DATE_RE.search(text)
    return _build(*match.groups()) if match else None


def _extract_us_date(text: str) -> datetime | None:
    match = _US_DATE_RE.search(text)
    if not match:
        return None
    month, day, year, hour, minute, second = match.groups()
    return _build(year, month, day, hour, minute, second)


def _extract_eu_date(text: str) -> datetime | None:
    match = _EU_DATE_RE.search(text)
    if not match:
        return None
    day, month, year, hour, minute, second = match.groups()
    return _build(year, month, day, hour, minute, second)


# First successful extractor wins
TIMESTAMP_EXTRACTORS: tuple[Callable[[str], datetime | None], ...] = (
    _parse_structured,
    _extract_iso,
    _extract_datetime,
    _extract_date,
    _extract_us_date,
    _extract_eu_date,
)


def parse_timestamp(text: str) -> datetime | None:
    """Find the snapshot timestamp in free-form text.

    Tries a structured parse first (JSON keys or a labeled line such as
    ``Last Updated: ...``), then regex extractors for common layouts.
    Naive values are interpreted as local time.

    Args:
        text: Snapshot file content.

    Returns:
        Timezone-aware datetime, or None if no layout matched.
    """
    for extractor in TIMESTAMP_EXTRACTORS:
        try:
            parsed = extractor(text)
        except (ValueError, OverflowError):
            continue
        if parsed is not None:
            return parsed
    return None


# =============================================================================
# Analysis
# =============================================================================


def recommend(
    has_snapshot: bool,
    has_progress: bool,
    snapshot_age: timedelta | None,
    review_after: timedelta = timedelta(hours=24),
) -> Recommendation:
    """Decision table for the resume recommendation.

    Args:
        has_snapshot: A usable state snapshot exists.
        has_progress: An external progress artifact exists.
        snapshot_age: Age of the snapshot, None when unparseable.
        review_after: Snapshots older than this need review.

    Returns:
        The recommendation.
    """
    if not has_snapshot:
        return Recommendation.CONTINUE if has_progress else Recommendation.FRESH
    if snapshot_age is None:
        return Recommendation.CONTINUE
    if snapshot_age > review_after:
        return Recommendation.REVIEW
    return Recommendation.CONTINUE


def _read_snapshot(path: Path, large_file_bytes: float, warnings: list[str]) -> str | None:
    """Read the snapshot, skipping empty and binary files.

    Returns:
        The decoded text, or None if the snapshot is missing or unusable.
    """
    if not path.is_file():
        return None

    size = path.stat().st_size
    if size == 0:
        warnings.append("State snapshot file is empty")
        return None
    if size > large_file_bytes:
        warnings.append(
            f"State snapshot is unusually large ({size / (1024 * 1024):.1f} MB) and may be corrupted"
        )

    data = path.read_bytes()
    if b"\x00" in data[:BINARY_SNIFF_BYTES]:
        warnings.append("State snapshot appears to be binary and was ignored")
        return None

    return data.decode("utf-8", errors="replace")


def _has_progress_artifact(project_dir: Path) -> bool:
    for relative in PROGRESS_FILES:
        if (project_dir / relative).is_file():
            return True
    return any(any(project_dir.glob(pattern)) for pattern in PROGRESS_GLOBS)


def _lock_warnings(project_dir: Path, now: datetime) -> list[str]:
    warnings = []
    for name in (WATCH_LOCK, MONITOR_LOCK):
        info = read_lockfile(project_dir, name)
        if info is None:
            continue
        started = format_timestamp(info.started_at.astimezone())
        if info.is_stale(now):
            warnings.append(f"Stale {name} from pid {info.pid} (started {started}) can be removed")
        else:
            warnings.append(f"{name} is held by pid {info.pid} since {started}; a loop may still be running")
    return warnings


def analyze(
    project_dir: str | Path,
    now: datetime | None = None,
    config: ResumeConfig | None = None,
) -> RecoveryAnalysis:
    """Inspect a project's session memory and recommend how to resume.

    Never raises: any read or parse failure becomes a warning and the
    affected input is treated as absent.

    Args:
        project_dir: Project root.
        now: Reference time (defaults to the current time).
        config: Thresholds; defaults to ResumeConfig().

    Returns:
        RecoveryAnalysis with the recommendation set.
    """
    project_dir = Path(project_dir)
    now = now or utc_now()
    config = config or ResumeConfig()
    config_dir = get_team_config_dir(project_dir)
    review_after = timedelta(hours=config.review_after_hours)

    analysis = RecoveryAnalysis()
    warnings = analysis.warnings

    try:
        snapshot_text = _read_snapshot(
            config_dir / STATE_SNAPSHOT_FILE,
            config.large_file_mb * 1024 * 1024,
            warnings,
        )
    except Exception as e:
        warnings.append(f"Could not read state snapshot: {e}")
        snapshot_text = None
    analysis.has_state_snapshot = snapshot_text is not None

    try:
        analysis.has_recovery_instructions = (config_dir / SESSION_RECOVERY_FILE).is_file()
        analysis.has_external_progress_artifact = _has_progress_artifact(project_dir)
    except Exception as e:
        warnings.append(f"Could not check recovery files: {e}")

    if snapshot_text is not None:
        try:
            timestamp = parse_timestamp(snapshot_text)
        except Exception as e:
            logger.warning(f"Timestamp parsing failed: {e}")
            timestamp = None
        if timestamp is None:
            warnings.append("Could not parse a timestamp from the state snapshot")
        else:
            age = now - timestamp
            if age < timedelta(0):
                warnings.append("State snapshot timestamp is in the future")
                age = timedelta(0)
            analysis.snapshot_age = age

    try:
        warnings.extend(_lock_warnings(project_dir, now))
    except Exception as e:
        warnings.append(f"Could not inspect lockfiles: {e}")

    analysis.recommendation = recommend(
        analysis.has_state_snapshot,
        analysis.has_external_progress_artifact,
        analysis.snapshot_age,
        review_after,
    )
    if analysis.recommendation == Recommendation.REVIEW:
        warnings.append(
            f"State snapshot is {analysis.snapshot_age_hours:.0f}h old; review it before continuing"
        )

    logger.debug(f"Recovery analysis for {project_dir}: {analysis.recommendation.value}")
    return analysis


# =============================================================================
# Resume flow
# =============================================================================


@dataclass
class ResumeOutcome:
    """What the resume flow did."""

    action: str  # "attached", "aborted" or "launched"
    session_name: str
    fresh: bool = False
    analysis: RecoveryAnalysis | None = None


class ResumeFlow:
    """Reattach to a live session or relaunch the agent with recovery context."""

    def __init__(
        self,
        project_dir: str | Path,
        backend: TerminalBackend,
        config: ResumeConfig | None = None,
        confirm: Callable[[str], bool] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the flow.

        Args:
            project_dir: Project root.
            backend: Terminal backend.
            config: Resume settings.
            confirm: Asks the user to accept a warning; declining aborts.
                Defaults to always accepting.
            sleep: Sleep function, replaceable in tests.
        """
        self.project_dir = Path(project_dir)
        self.config = config or ResumeConfig()
        self._backend = backend
        self._confirm = confirm or (lambda message: True)
        self._sleep = sleep

    def run(
        self,
        fresh: bool = False,
        auto: bool = False,
        no_attach: bool = False,
        on_analysis: Callable[[RecoveryAnalysis], None] | None = None,
    ) -> ResumeOutcome:
        """Resume the project's session.

        Args:
            fresh: Start a new agent conversation instead of continuing.
            auto: Skip the confirmation and follow the recommendation.
            no_attach: Do not attach the terminal afterwards.
            on_analysis: Called with the analysis before anything is launched.

        Returns:
            ResumeOutcome.

        Raises:
            SetupError: If the project has no .team-config/.
        """
        require_team_config(self.project_dir)
        session_name = get_session_name(resolve_project_name(self.project_dir))

        if self._backend.session_exists(session_name) and self._backend.list_panes(session_name):
            logger.info(f"Session {session_name} is alive, attaching")
            if not no_attach:
                self._backend.attach_session(session_name)
            return ResumeOutcome(action="attached", session_name=session_name)

        analysis = analyze(self.project_dir, config=self.config)
        if on_analysis is not None:
            on_analysis(analysis)

        use_fresh = fresh or (auto and analysis.recommendation == Recommendation.FRESH)

        if not auto and not self._confirm(PERMISSION_WARNING):
            return ResumeOutcome(
                action="aborted",
                session_name=session_name,
                fresh=use_fresh,
                analysis=analysis,
            )

        logger.info(f"Creating session {session_name}")
        self._backend.create_session(session_name, str(self.project_dir))

        target = f"{session_name}:0"
        self._backend.send_text_input(target, AGENT_COMMAND if use_fresh else AGENT_CONTINUE_COMMAND)
        self._sleep(self.config.startup_delay_seconds)
        self._backend.send_text_input(target, RECOVERY_PROMPT)

        if not no_attach:
            self._backend.attach_session(session_name)

        return ResumeOutcome(
            action="launched",
            session_name=session_name,
            fresh=use_fresh,
            analysis=analysis,
        )
