"""Abstract base class for terminal backend implementations.

Defines the control surface crewpilot needs from a terminal multiplexer.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class PaneInfo:
    """Information about one pane in a session."""

    id: str  # Backend-specific pane identifier (e.g. "%3" for tmux)
    active: bool = False  # Whether the pane is the active pane of its window
    command: str = ""  # Current foreground command in the pane


class TerminalBackend(ABC):
    """Abstract interface for terminal backends.

    Terminal backends provide the ability to:
    - Check sessions and list their panes
    - Capture pane text
    - Send keystrokes to panes
    - Create, attach to and kill sessions
    """

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Return the backend identifier (e.g., 'tmux')."""

    @abstractmethod
    def session_exists(self, name: str) -> bool:
        """Check whether a session is running.

        Args:
            name: Session name.

        Returns:
            True if the session exists.
        """

    @abstractmethod
    def list_panes(self, session: str) -> list[PaneInfo]:
        """List the panes of a session.

        Must never raise. Any failure (dead session, missing binary,
        transient error) is reported as an empty list.

        Args:
            session: Session name.

        Returns:
            Panes in listing order.
        """

    @abstractmethod
    def capture_text(self, pane_id: str, lines: int = 50) -> str:
        """Capture the most recent lines of a pane, oldest first.

        Args:
            pane_id: The pane identifier.
            lines: Number of lines of scrollback to capture.

        Returns:
            Captured text.

        Raises:
            BackendError: If the pane could not be captured.
        """

    @abstractmethod
    def send_literal(self, pane_id: str, text: str) -> None:
        """Type text into a pane without submitting it."""

    @abstractmethod
    def send_confirm(self, pane_id: str) -> None:
        """Press Enter in a pane."""

    @abstractmethod
    def create_session(self, name: str, cwd: str) -> None:
        """Create a detached session rooted at cwd."""

    @abstractmethod
    def attach_session(self, name: str) -> None:
        """Attach the current terminal to a session (blocks until detach)."""

    @abstractmethod
    def kill_session(self, name: str) -> None:
        """Kill a session."""

    def send_option(self, pane_id: str, option: int) -> None:
        """Select a numbered option in a multiple-choice prompt.

        Args:
            pane_id: The pane identifier.
            option: 1-based option number.
        """
        self.send_literal(pane_id, str(option))
        self.send_confirm(pane_id)

    def send_text_input(self, pane_id: str, text: str) -> None:
        """Type text and submit it."""
        self.send_literal(pane_id, text)
        self.send_confirm(pane_id)
