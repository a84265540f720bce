"""Exceptions raised by crewpilot.

Only environment and setup failures raise. Classification, recovery analysis
and search are total over their inputs and report problems as values.
"""


class CrewpilotError(Exception):
    """Base class for errors reported at the CLI boundary.

    Attributes:
        message: Short user-facing description.
        hint: Optional remediating command shown to the user.
    """

    def __init__(self, message: str, hint: str | None = None):
        super().__init__(message)
        self.message = message
        self.hint = hint


class SetupError(CrewpilotError):
    """Required project files or the tmux session are missing."""


class LockHeldError(CrewpilotError):
    """Another live process owns a writer lock."""


class SearchIndexError(CrewpilotError):
    """The memory index could not be written."""


class BackendError(CrewpilotError):
    """A terminal backend command that must succeed failed."""
