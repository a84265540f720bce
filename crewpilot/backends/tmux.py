"""tmux terminal backend."""

import logging
import shutil
import subprocess

from crewpilot.backends.base import PaneInfo, TerminalBackend
from crewpilot.exceptions import BackendError

logger = logging.getLogger(__name__)

PANE_FORMAT = "#{pane_id}\t#{pane_active}\t#{pane_current_command}"


def _run_tmux(*args: str, timeout: int = 10) -> tuple[int, str, str]:
    """Run a tmux command.

    Args:
        *args: Command arguments to pass to tmux.
        timeout: Command timeout in seconds.

    Returns:
        Tuple of (return_code, stdout, stderr).
    """
    cmd = ["tmux", *args]
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
        return (result.returncode, result.stdout or "", result.stderr or "")
    except subprocess.TimeoutExpired:
        return (1, "", "Command timed out")
    except FileNotFoundError:
        return (1, "", "tmux not found")


def parse_pane_listing(output: str) -> list[PaneInfo]:
    """Parse ``list-panes -F PANE_FORMAT`` output.

    Args:
        output: Raw stdout from tmux.

    Returns:
        Panes in listing order; malformed lines are skipped.
    """
    panes = []
    for line in output.strip().split("\n"):
        if not line:
            continue
        parts = line.split("\t")
        if not parts[0]:
            continue
        active = len(parts) > 1 and parts[1] == "1"
        command = parts[2] if len(parts) > 2 else ""
        panes.append(PaneInfo(id=parts[0], active=active, command=command))
    return panes


class TmuxBackend(TerminalBackend):
    """tmux-based terminal backend."""

    @property
    def backend_name(self) -> str:
        """Return the backend identifier."""
        return "tmux"

    def is_installed(self) -> bool:
        """Check if the tmux binary is on PATH."""
        return shutil.which("tmux") is not None

    def session_exists(self, name: str) -> bool:
        returncode, _, _ = _run_tmux("has-session", "-t", name)
        return returncode == 0

    def list_panes(self, session: str) -> list[PaneInfo]:
        returncode, stdout, stderr = _run_tmux("list-panes", "-t", session, "-F", PANE_FORMAT)
        if returncode != 0:
            logger.debug(f"list-panes failed for {session}: {stderr.strip()}")
            return []
        return parse_pane_listing(stdout)

    def capture_text(self, pane_id: str, lines: int = 50) -> str:
        returncode, stdout, stderr = _run_tmux("capture-pane", "-t", pane_id, "-p", "-S", str(-lines))
        if returncode != 0:
            raise BackendError(f"Could not capture pane {pane_id}: {stderr.strip()}")
        return stdout

    def send_literal(self, pane_id: str, text: str) -> None:
        # -l stops tmux from interpreting words like "Enter" as key names
        returncode, _, stderr = _run_tmux("send-keys", "-t", pane_id, "-l", text)
        if returncode != 0:
            raise BackendError(f"Could not send keys to {pane_id}: {stderr.strip()}")

    def send_confirm(self, pane_id: str) -> None:
        returncode, _, stderr = _run_tmux("send-keys", "-t", pane_id, "Enter")
        if returncode != 0:
            raise BackendError(f"Could not send Enter to {pane_id}: {stderr.strip()}")

    def create_session(self, name: str, cwd: str) -> None:
        returncode, _, stderr = _run_tmux("new-session", "-d", "-s", name, "-c", cwd)
        if returncode != 0:
            raise BackendError(f"Could not create session {name}: {stderr.strip()}")

    def attach_session(self, name: str) -> None:
        # Interactive: inherit the terminal instead of capturing output
        subprocess.run(["tmux", "attach-session", "-t", name])

    def kill_session(self, name: str) -> None:
        _run_tmux("kill-session", "-t", name)


# Singleton instance
_backend_instance: TmuxBackend | None = None


def get_tmux_backend() -> TmuxBackend:
    """Get the singleton tmux backend instance."""
    global _backend_instance
    if _backend_instance is None:
        _backend_instance = TmuxBackend()
    return _backend_instance


def reset_tmux_backend() -> None:
    """Reset the singleton instance (for testing)."""
    global _backend_instance
    _backend_instance = None
