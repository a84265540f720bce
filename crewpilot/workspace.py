"""Project workspace helpers.

Resolves the .team-config/ layout, the tmux session name for a project, and
the JSON lockfiles that give each persisted file a single writer.
"""

import json
import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

from crewpilot.exceptions import LockHeldError, SetupError

logger = logging.getLogger(__name__)

TEAM_CONFIG_DIR = ".team-config"
USER_CONTEXT_FILE = "USER-CONTEXT.md"
RUNNER_PANE_FILE = "runner-pane-id.txt"
RUNNER_STATE_FILE = "runner-state.json"
RUNNER_EVENTS_FILE = "runner-events.log"
HEARTBEAT_FILE = "heartbeat.log"
WATCH_LOG_FILE = "watch-notifications.log"
CONFIG_FILE = "crewpilot.yaml"

SESSION_PREFIX = "crewpilot-"
WATCH_LOCK = ".watch-lock"
MONITOR_LOCK = ".monitor-lock"
LOCK_STALE_AFTER = timedelta(hours=24)

_PROJECT_NAME_RE = re.compile(r"^## Project Name\n(.+)$", re.MULTILINE)


def get_team_config_dir(project_dir: str | Path) -> Path:
    """Return the .team-config directory for a project."""
    return Path(project_dir) / TEAM_CONFIG_DIR


def team_config_exists(project_dir: str | Path) -> bool:
    """Check whether the project has been initialised."""
    return get_team_config_dir(project_dir).is_dir()


def require_team_config(project_dir: str | Path) -> Path:
    """Return the .team-config directory or raise SetupError."""
    config_dir = get_team_config_dir(project_dir)
    if not config_dir.is_dir():
        raise SetupError("No .team-config/ found", hint="crewpilot init")
    return config_dir


def get_project_name(user_context: str) -> str | None:
    """Extract the project name from USER-CONTEXT.md content."""
    match = _PROJECT_NAME_RE.search(user_context)
    return match.group(1).strip() if match else None


def sanitize_session_name(name: str) -> str:
    """Make a string safe for use as a tmux session name."""
    name = re.sub(r"[^a-z0-9-]", "-", name.lower())
    name = re.sub(r"-+", "-", name)
    return name.strip("-")


def get_session_name(project_name: str) -> str:
    return f"{SESSION_PREFIX}{sanitize_session_name(project_name)}"


def resolve_project_name(project_dir: str | Path) -> str:
    """Read the project name, falling back to the directory name.

    Args:
        project_dir: Project root.

    Returns:
        Project name from USER-CONTEXT.md, or the directory basename when the
        file is missing or has no Project Name heading.
    """
    project_dir = Path(project_dir).resolve()
    context_path = get_team_config_dir(project_dir) / USER_CONTEXT_FILE
    try:
        name = get_project_name(context_path.read_text(encoding="utf-8"))
    except OSError:
        name = None
    return name or project_dir.name


def format_timestamp(dt: datetime | None = None) -> str:
    """Format a datetime as YYYY-MM-DD HH:MM:SS in local time."""
    dt = dt or datetime.now()
    return dt.strftime("%Y-%m-%d %H:%M:%S")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def read_runner_pane_id(project_dir: str | Path) -> str | None:
    """Return the pane ID recorded in runner-pane-id.txt, if any."""
    path = get_team_config_dir(project_dir) / RUNNER_PANE_FILE
    try:
        pane_id = path.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    return pane_id or None


def write_atomic(path: Path, content: str) -> None:
    """Write a whole file so readers only ever see a complete version.

    Args:
        path: Destination file.
        content: Full file content.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")
    tmp_path.write_text(content, encoding="utf-8")
    os.replace(tmp_path, path)


# =============================================================================
# Lockfiles
# =============================================================================


@dataclass
class LockInfo:
    """Contents of a <name>-lock file."""

    pane_id: str | None
    pid: int
    started_at: datetime

    def is_stale(self, now: datetime | None = None) -> bool:
        now = now or utc_now()
        return now - self.started_at > LOCK_STALE_AFTER


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


def lock_path(project_dir: str | Path, name: str) -> Path:
    return get_team_config_dir(project_dir) / name


def read_lockfile(project_dir: str | Path, name: str) -> LockInfo | None:
    """Read a lockfile.

    Returns:
        LockInfo, or None when the file is missing or cannot be parsed.
    """
    path = lock_path(project_dir, name)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        started_at = datetime.fromisoformat(data["startedAt"].replace("Z", "+00:00"))
        if started_at.tzinfo is None:
            started_at = started_at.astimezone()
        return LockInfo(
            pane_id=data.get("paneId"),
            pid=int(data["pid"]),
            started_at=started_at,
        )
    except FileNotFoundError:
        return None
    except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
        logger.warning(f"Ignoring unreadable lockfile {path}: {e}")
        return None


def write_lockfile(project_dir: str | Path, name: str, pane_id: str | None = None) -> LockInfo:
    """Write a lockfile owned by the current process."""
    info = LockInfo(pane_id=pane_id, pid=os.getpid(), started_at=utc_now())
    payload = {
        "paneId": info.pane_id,
        "pid": info.pid,
        "startedAt": info.started_at.isoformat(),
    }
    write_atomic(lock_path(project_dir, name), json.dumps(payload, indent=2))
    return info


def remove_lockfile(project_dir: str | Path, name: str) -> None:
    try:
        lock_path(project_dir, name).unlink()
    except FileNotFoundError:
        pass


def acquire_lock(project_dir: str | Path, name: str, pane_id: str | None = None) -> LockInfo:
    """Take a writer lock, replacing stale or orphaned ones.

    Raises:
        LockHeldError: If a fresh lock is held by another live process.
    """
    existing = read_lockfile(project_dir, name)
    if (
        existing is not None
        and existing.pid != os.getpid()
        and not existing.is_stale()
        and _pid_alive(existing.pid)
    ):
        raise LockHeldError(
            f"{name} is held by pid {existing.pid} since {format_timestamp(existing.started_at.astimezone())}",
            hint=f"stop that process or remove {lock_path(project_dir, name)}",
        )
    if existing is not None:
        logger.info(f"Replacing abandoned lock {name} (pid {existing.pid})")
    return write_lockfile(project_dir, name, pane_id)
