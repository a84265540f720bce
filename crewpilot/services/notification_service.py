"""Rate-limited alert dispatch to desktop notifications and log files."""

import logging
import platform
import shutil
import subprocess
import time
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from crewpilot.models.config import NotifyMethod

logger = logging.getLogger(__name__)


def detect_platform() -> str:
    """Return 'linux', 'macos', 'windows' or 'unknown'."""
    system = platform.system()
    if system == "Linux":
        return "linux"
    if system == "Darwin":
        return "macos"
    if system == "Windows":
        return "windows"
    return "unknown"


class DesktopSink:
    """Native desktop notifications.

    Uses notify-send on Linux, osascript on macOS and PowerShell BurntToast
    on Windows. The helper is spawned detached so a slow notification daemon
    never blocks the poll loop.
    """

    def __init__(self, platform_name: str | None = None):
        self.platform = platform_name or detect_platform()

    def is_available(self) -> bool:
        """Check whether a notification command exists for this platform."""
        if self.platform == "linux":
            return shutil.which("notify-send") is not None
        return self.platform in ("macos", "windows")

    def _build_command(self, title: str, message: str) -> list[str] | None:
        if self.platform == "linux":
            return ["notify-send", title, message]
        if self.platform == "macos":
            script = 'display notification "{}" with title "{}"'.format(
                message.replace('"', '\\"'),
                title.replace('"', '\\"'),
            )
            return ["osascript", "-e", script]
        if self.platform == "windows":
            script = (
                "New-BurntToastNotification -Text '{}', '{}' -ErrorAction SilentlyContinue".format(
                    title.replace("'", "''"),
                    message.replace("'", "''"),
                )
            )
            return ["powershell", "-Command", script]
        return None

    def send(self, title: str, message: str) -> bool:
        """Show a notification.

        Returns:
            True if the helper was spawned, False if the message fell back to
            the log.
        """
        cmd = self._build_command(title, message) if self.is_available() else None
        if cmd is None:
            logger.warning(f"🔔 {title}: {message}")
            return False

        try:
            subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
            logger.debug(f"Notification sent: {title}")
            return True
        except OSError as e:
            logger.warning(f"Notification failed ({e}); 🔔 {title}: {message}")
            return False


class LogSink:
    """Appends alerts to a plain-text log file."""

    def __init__(self, log_file: str | Path, prefix: str = ""):
        """Initialize the sink.

        Args:
            log_file: File to append to; its directory is created on demand.
            prefix: Text inserted before the title (e.g. "ALERT: ").
        """
        self.log_file = Path(log_file)
        self.prefix = prefix

    def write_line(self, line: str) -> bool:
        try:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_file, "a", encoding="utf-8") as f:
                f.write(line if line.endswith("\n") else line + "\n")
            return True
        except OSError as e:
            logger.error(f"Failed to write to log file {self.log_file}: {e}")
            return False

    def send(self, title: str, message: str) -> bool:
        timestamp = datetime.now(timezone.utc).isoformat()
        return self.write_line(f"[{timestamp}] {self.prefix}{title}: {message}")


class NotificationManager:
    """Dispatches alerts with per-key rate limiting.

    The rate-limit key is (alert kind, pane id), so alerts for different
    panes or different kinds never suppress each other.
    """

    def __init__(
        self,
        method: NotifyMethod = NotifyMethod.DESKTOP,
        rate_limit_seconds: float = 300.0,
        desktop: DesktopSink | None = None,
        log: LogSink | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the manager.

        Args:
            method: Which sinks receive alerts.
            rate_limit_seconds: Minimum gap between alerts with the same key.
            desktop: Desktop sink (created on demand when method needs it).
            log: Log sink; required for 'log' and 'both' to write anything.
            clock: Time source in epoch seconds.
        """
        self.method = method
        self.rate_limit_seconds = rate_limit_seconds
        self._desktop = desktop if desktop is not None else (DesktopSink() if method.uses_desktop else None)
        self._log = log
        self._clock = clock
        self._last_fired: dict[tuple[str, str], float] = {}

    @property
    def log_sink(self) -> LogSink | None:
        return self._log

    def should_send(self, kind: str, pane_id: str) -> bool:
        """Check the rate limit for a key without recording anything."""
        last = self._last_fired.get((kind, pane_id))
        if last is None:
            return True
        return self._clock() - last >= self.rate_limit_seconds

    def send(self, kind: str, pane_id: str, title: str, message: str) -> bool:
        """Dispatch an alert unless its key fired within the rate-limit window.

        Args:
            kind: Alert kind (e.g. "question", "stuck").
            pane_id: The pane the alert is about.
            title: Notification title.
            message: Notification body.

        Returns:
            True if the alert was dispatched, False if rate limited.
        """
        if not self.should_send(kind, pane_id):
            logger.debug(f"Rate limited {kind} alert for {pane_id}")
            return False

        self._last_fired[(kind, pane_id)] = self._clock()

        if self.method.uses_desktop and self._desktop is not None:
            self._desktop.send(title, message)
        if self.method.uses_log and self._log is not None:
            self._log.send(title, message)
        return True

    def clear_stale_entries(self, max_age_seconds: float) -> int:
        """Evict rate-limit entries older than max_age_seconds.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        stale = [key for key, fired in self._last_fired.items() if now - fired > max_age_seconds]
        for key in stale:
            del self._last_fired[key]
        return len(stale)

    def reset_cooldowns(self) -> None:
        """Clear all rate-limit entries."""
        self._last_fired.clear()

    def __len__(self) -> int:
        return len(self._last_fired)
