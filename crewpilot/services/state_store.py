"""Persistence of runner state, transition events and heartbeats.

Each file has exactly one writer role: the watch loop owns runner-state.json
and runner-events.log, the heartbeat monitor owns heartbeat.log. Structured
snapshots are replaced whole; logs are append-only.
"""

import json
import logging
from datetime import datetime
from pathlib import Path

from crewpilot.models.runner import HeartbeatEntry, RunnerStateSnapshot
from crewpilot.workspace import (
    HEARTBEAT_FILE,
    RUNNER_EVENTS_FILE,
    RUNNER_STATE_FILE,
    get_team_config_dir,
    utc_now,
    write_atomic,
)

logger = logging.getLogger(__name__)


class RunnerStateStore:
    """Reads and writes runner-state.json and runner-events.log."""

    def __init__(self, project_dir: str | Path):
        self.config_dir = get_team_config_dir(project_dir)
        self.state_file = self.config_dir / RUNNER_STATE_FILE
        self.events_file = self.config_dir / RUNNER_EVENTS_FILE

    def write_snapshot(self, snapshot: RunnerStateSnapshot) -> bool:
        """Replace runner-state.json with a new snapshot.

        Returns:
            True if written. Failures are logged, never raised, so a full
            disk cannot stop the watch loop.
        """
        try:
            write_atomic(self.state_file, snapshot.to_json())
            return True
        except OSError as e:
            logger.error(f"Could not write {self.state_file}: {e}")
            return False

    def read_snapshot(self) -> RunnerStateSnapshot | None:
        """Load the last snapshot, or None if missing or unreadable."""
        try:
            data = json.loads(self.state_file.read_text(encoding="utf-8"))
            return RunnerStateSnapshot.model_validate(data)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable {self.state_file}: {e}")
            return None

    def append_event(self, pane_id: str, event: str, when: datetime | None = None) -> bool:
        """Append ``[ISO8601] pane=<id> event=<state>`` to runner-events.log."""
        when = when or utc_now()
        line = f"[{when.isoformat()}] pane={pane_id} event={event}\n"
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            with open(self.events_file, "a", encoding="utf-8") as f:
                f.write(line)
            return True
        except OSError as e:
            logger.error(f"Could not append to {self.events_file}: {e}")
            return False


class HeartbeatLog:
    """The monitor's heartbeat.log: a comment header followed by JSON lines.

    Alert lines written through a LogSink pointing at the same file are
    plain text; readers skip any line that is not a JSON object.
    """

    def __init__(self, project_dir: str | Path):
        self.path = get_team_config_dir(project_dir) / HEARTBEAT_FILE

    def initialize(self) -> None:
        """Create the file with its header if it does not exist yet."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if not self.path.exists():
                header = (
                    "# Crewpilot Heartbeat Log\n"
                    f"# Started: {utc_now().isoformat()}\n"
                    "# Format: JSON lines\n\n"
                )
                self.path.write_text(header, encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to initialize heartbeat log: {e}")

    def write(self, entry: HeartbeatEntry) -> bool:
        try:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(entry.to_line() + "\n")
            return True
        except OSError as e:
            logger.error(f"Failed to write heartbeat log: {e}")
            return False

    def read_entries(self) -> list[HeartbeatEntry]:
        """Parse every JSON heartbeat line, skipping headers and alert lines."""
        entries = []
        try:
            with open(self.path, encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line.startswith("{"):
                        continue
                    try:
                        entries.append(HeartbeatEntry.model_validate_json(line))
                    except ValueError:
                        continue
        except OSError:
            return []
        return entries
