"""Terminal backend implementations."""

from crewpilot.backends.base import PaneInfo, TerminalBackend
from crewpilot.backends.tmux import TmuxBackend, get_tmux_backend, reset_tmux_backend

__all__ = [
    "PaneInfo",
    "TerminalBackend",
    "TmuxBackend",
    "get_tmux_backend",
    "reset_tmux_backend",
]
