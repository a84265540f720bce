"""Session recovery analysis models."""

from datetime import timedelta
from enum import Enum

from pydantic import BaseModel, Field


class Recommendation(str, Enum):
    """What the resume flow should do with the previous session."""

    CONTINUE = "continue"
    """Resume the previous conversation."""

    FRESH = "fresh"
    """Nothing to resume; start clean."""

    REVIEW = "review"
    """Memory exists but is old enough that a human should look first."""


class RecoveryAnalysis(BaseModel):
    """Outcome of inspecting a project's persisted session memory.

    Derived on demand, never persisted. The recommendation is a pure function
    of the three booleans and the snapshot age.
    """

    has_state_snapshot: bool = False
    has_recovery_instructions: bool = False
    has_external_progress_artifact: bool = False
    snapshot_age: timedelta | None = Field(
        default=None,
        description="Time since the snapshot timestamp, if it could be parsed",
    )
    recommendation: Recommendation = Recommendation.FRESH
    warnings: list[str] = Field(default_factory=list)

    @property
    def snapshot_age_hours(self) -> float | None:
        """Snapshot age in hours, or None when unknown."""
        if self.snapshot_age is None:
            return None
        return self.snapshot_age.total_seconds() / 3600
