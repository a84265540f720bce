"""Fakes and captured pane texts shared by the tests."""

from datetime import datetime, timedelta, timezone

from crewpilot.backends.base import PaneInfo, TerminalBackend
from crewpilot.exceptions import BackendError

PROJECT_NAME = "Demo App"
SESSION_NAME = "crewpilot-demo-app"

WORKING_TEXT = "Refactoring auth module\n⠋ Thinking about the session model"
IDLE_TEXT = "Done. All tests pass.\n\n❯ "
QUESTION_TEXT = (
    "Which database should we use?\n"
    "❯ 1. PostgreSQL\n"
    "  2. SQLite\n"
    "  3. MongoDB\n"
    "Enter to select · Tab/Arrow keys to navigate"
)
ERROR_TEXT = 'Traceback (most recent call last):\n  File "app.py", line 3\nValueError: bad input'
STOPPED_TEXT = "Session ended\nuser@host:~/demo$ "


class FakeBackend(TerminalBackend):
    """In-memory terminal backend.

    ``screens`` maps a pane id to either a string (returned on every capture)
    or a list of strings (one per capture; the last one repeats).
    """

    def __init__(self, sessions: dict[str, list[str]] | None = None):
        self.sessions = sessions if sessions is not None else {}
        self.screens: dict[str, str | list[str]] = {}
        self.failing_panes: set[str] = set()
        self.calls: list[tuple] = []

    @property
    def backend_name(self) -> str:
        return "fake"

    def session_exists(self, name: str) -> bool:
        return name in self.sessions

    def list_panes(self, session: str) -> list[PaneInfo]:
        return [PaneInfo(id=pane_id, active=i == 0) for i, pane_id in enumerate(self.sessions.get(session, []))]

    def capture_text(self, pane_id: str, lines: int = 50) -> str:
        if pane_id in self.failing_panes:
            raise BackendError(f"cannot capture {pane_id}")
        screen = self.screens.get(pane_id, "")
        if isinstance(screen, list):
            return screen.pop(0) if len(screen) > 1 else screen[0]
        return screen

    def send_literal(self, pane_id: str, text: str) -> None:
        self.calls.append(("literal", pane_id, text))

    def send_confirm(self, pane_id: str) -> None:
        self.calls.append(("confirm", pane_id))

    def create_session(self, name: str, cwd: str) -> None:
        self.calls.append(("create", name, cwd))
        self.sessions.setdefault(name, [])

    def attach_session(self, name: str) -> None:
        self.calls.append(("attach", name))

    def kill_session(self, name: str) -> None:
        self.calls.append(("kill", name))
        self.sessions.pop(name, None)


class FakeClock:
    """Controllable aware clock for loops."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


