"""Runner state models.

ClassificationResult is transient (produced and consumed within one poll).
RunnerStateSnapshot is the document persisted to runner-state.json; its JSON
keys keep the camelCase names that the Team Lead's instructions read.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class RunnerState(str, Enum):
    """Semantic state of a monitored runner pane.

    Priority when several signals are present:
    ERROR > QUESTION > WORKING > IDLE > STOPPED > UNKNOWN
    """

    WORKING = "working"
    """Spinner glyphs, progress verbs or progress bars are visible."""

    IDLE = "idle"
    """Agent prompt is visible with no activity."""

    QUESTION = "question"
    """Agent is blocked waiting for a human answer."""

    ERROR = "error"
    """Error output dominates the recent window."""

    STOPPED = "stopped"
    """A plain shell prompt is showing; the agent is not running."""

    UNKNOWN = "unknown"
    """No signal matched."""


class QuestionType(str, Enum):
    """Shape of a detected question."""

    MULTIPLE_CHOICE = "multiple_choice"
    FREE_TEXT = "free_text"


@dataclass
class ClassificationResult:
    """Result of classifying one capture of terminal text."""

    state: RunnerState
    confidence: float  # 0.0 to 1.0, heuristic priority not probability
    detail: str = ""  # Last meaningful line, at most 100 chars


class DetectedQuestion(BaseModel):
    """A question extracted from a pane in the QUESTION state."""

    text: str = Field(..., description="The question line")
    options: list[str] = Field(
        default_factory=list,
        description="Ordered option labels (empty for free text)",
    )
    type: QuestionType = Field(..., description="multiple_choice or free_text")


class RunnerStateSnapshot(BaseModel):
    """Externally visible record of the primary runner, rewritten every cycle."""

    model_config = ConfigDict(populate_by_name=True)

    process_id: str = Field(..., alias="paneId", description="Terminal pane ID")
    state: RunnerState
    confidence: float = Field(..., ge=0.0, le=1.0)
    timestamp: datetime
    idle_since: datetime | None = Field(default=None, alias="idleSince")
    captured_content: str = Field(default="", alias="capturedContent")
    detected_question: DetectedQuestion | None = Field(
        default=None,
        alias="detectedQuestion",
    )
    detail: str | None = Field(default=None, alias="details")

    def to_json(self) -> str:
        """Serialize with the on-disk key names."""
        return self.model_dump_json(by_alias=True, indent=2)


class HeartbeatEntry(BaseModel):
    """One JSON line in heartbeat.log."""

    model_config = ConfigDict(populate_by_name=True)

    timestamp: str
    session_name: str = Field(..., alias="sessionName")
    pane_id: str | None = Field(default=None, alias="paneId")  # None for session-level entries
    state: str
    content_hash: str | None = Field(default=None, alias="contentHash")
    alert: str | None = None
    details: str | None = None

    def to_line(self) -> str:
        """Serialize as a single JSON line, omitting unset optional fields."""
        return self.model_dump_json(by_alias=True, exclude_none=True)
