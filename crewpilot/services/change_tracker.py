"""Per-pane change tracking for stuck and dead runner detection.

A pane that is really "thinking" redraws its spinner every frame, so an
unchanged capture while classified WORKING means no visible progress. The
tracker only counts; the classifier decides the state.
"""

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from crewpilot.models.runner import RunnerState
from crewpilot.services import patterns
from crewpilot.workspace import utc_now

logger = logging.getLogger(__name__)

DEAD_CONTENT_MIN_CHARS = 10


def hash_content(content: str) -> str:
    """Hash captured text exactly (no whitespace normalisation).

    Args:
        content: Captured pane text.

    Returns:
        Short hex digest; identical content always yields identical digests.
    """
    return hashlib.blake2b(content.encode("utf-8", "surrogatepass"), digest_size=8).hexdigest()


@dataclass
class ProcessTracker:
    """Rolling change state for one pane, owned by a single loop."""

    process_id: str
    content_hash: str
    last_change_at: datetime
    consecutive_no_change: int = 0
    last_state: RunnerState = RunnerState.UNKNOWN


@dataclass
class Observation:
    """What changed for a pane during one poll."""

    tracker: ProcessTracker
    is_new: bool
    content_changed: bool


class ChangeTracker:
    """Holds the ProcessTracker of every live pane for one loop instance.

    Trackers are created on first sight of a pane id and dropped as soon as
    the id disappears from the listing, since tmux may reuse ids.
    """

    def __init__(self):
        self._trackers: dict[str, ProcessTracker] = {}

    def __contains__(self, pane_id: str) -> bool:
        return pane_id in self._trackers

    def __len__(self) -> int:
        return len(self._trackers)

    def get(self, pane_id: str) -> ProcessTracker | None:
        return self._trackers.get(pane_id)

    def observe(
        self,
        pane_id: str,
        content: str,
        state: RunnerState,
        now: datetime | None = None,
    ) -> Observation:
        """Record one capture of a pane.

        Unchanged content increments ``consecutive_no_change``; any change
        resets it to 0 and stamps ``last_change_at``.

        Args:
            pane_id: The pane identifier.
            content: Captured text.
            state: Classified state for this capture.
            now: Observation time (defaults to current UTC time).

        Returns:
            Observation describing the update.
        """
        now = now or utc_now()
        content_hash = hash_content(content)
        tracker = self._trackers.get(pane_id)

        if tracker is None:
            tracker = ProcessTracker(
                process_id=pane_id,
                content_hash=content_hash,
                last_change_at=now,
                last_state=state,
            )
            self._trackers[pane_id] = tracker
            return Observation(tracker=tracker, is_new=True, content_changed=False)

        if tracker.content_hash == content_hash:
            tracker.consecutive_no_change += 1
            changed = False
        else:
            tracker.content_hash = content_hash
            tracker.last_change_at = now
            tracker.consecutive_no_change = 0
            changed = True

        tracker.last_state = state
        return Observation(tracker=tracker, is_new=False, content_changed=changed)

    def prune(self, live_ids: set[str]) -> list[str]:
        """Drop trackers for panes that are no longer listed.

        Returns:
            The removed pane ids.
        """
        removed = [pane_id for pane_id in self._trackers if pane_id not in live_ids]
        for pane_id in removed:
            del self._trackers[pane_id]
        if removed:
            logger.debug(f"Dropped trackers for vanished panes: {removed}")
        return removed


@dataclass
class Detection:
    """Outcome of a stuck or dead check."""

    detected: bool
    reason: str = ""
    severe: bool = False


def detect_stuck(
    tracker: ProcessTracker,
    state: RunnerState,
    interval_seconds: float,
    stuck_threshold: int = 3,
    frozen_threshold: int = 6,
) -> Detection:
    """Check whether a WORKING pane has shown no progress for too long.

    Args:
        tracker: The pane's tracker after this poll was observed.
        state: Classified state for this poll.
        interval_seconds: Poll interval, used to report elapsed time.
        stuck_threshold: Unchanged polls before the pane counts as stuck.
        frozen_threshold: Unchanged polls before the pane counts as frozen.

    Returns:
        Detection; ``severe`` is set for the frozen variant.
    """
    if state != RunnerState.WORKING:
        return Detection(detected=False)

    count = tracker.consecutive_no_change
    elapsed = _format_seconds(count * interval_seconds)

    if count >= frozen_threshold:
        return Detection(
            detected=True,
            reason=f"Runner appears frozen - no output change for {elapsed}s",
            severe=True,
        )
    if count >= stuck_threshold:
        return Detection(
            detected=True,
            reason=f"No visual progress for {elapsed}s while in working state",
        )
    return Detection(detected=False)


def detect_dead(state: RunnerState, content: str) -> Detection:
    """Check whether the agent has left its pane.

    Content-shape check only: a shell prompt without agent markers while
    STOPPED, or a nearly empty pane.
    """
    if state == RunnerState.STOPPED:
        last_few = "\n".join(content.split("\n")[-patterns.DETAIL_WINDOW_LINES :])
        has_prompt = "$" in last_few or ">" in last_few
        has_agent = any(marker in last_few for marker in patterns.AGENT_MARKERS)
        if has_prompt and not has_agent:
            return Detection(
                detected=True,
                reason="Pane shows shell prompt - the agent may have crashed",
            )

    if len(content.strip()) < DEAD_CONTENT_MIN_CHARS:
        return Detection(detected=True, reason="Pane content nearly empty - possible crash")

    return Detection(detected=False)


def _format_seconds(seconds: float) -> str:
    return str(int(seconds)) if float(seconds).is_integer() else f"{seconds:.1f}"


class AlertKind(str, Enum):
    """Kinds of edge-triggered runner alerts."""

    STUCK = "stuck"
    """No visual progress while working."""

    FROZEN = "frozen"
    """Escalation of STUCK after a longer run of unchanged captures."""

    DEAD = "dead"
    """Agent appears to have exited its pane."""


@dataclass
class AlertLatch:
    """Edge-triggered alert bookkeeping.

    An alert fires once when its condition first appears and stays latched
    until the pane's content changes again.
    """

    _active: dict[AlertKind, set[str]] = field(
        default_factory=lambda: {kind: set() for kind in AlertKind}
    )

    def is_active(self, kind: AlertKind, pane_id: str) -> bool:
        return pane_id in self._active[kind]

    def trigger(self, kind: AlertKind, pane_id: str) -> bool:
        """Latch an alert.

        Returns:
            True if the alert was not already active (i.e. it should fire).
        """
        if pane_id in self._active[kind]:
            return False
        self._active[kind].add(pane_id)
        return True

    def clear(self, pane_id: str) -> list[AlertKind]:
        """Release every alert for a pane.

        Returns:
            The kinds that were active, for "recovered" notices.
        """
        cleared = []
        for kind, panes in self._active.items():
            if pane_id in panes:
                panes.discard(pane_id)
                cleared.append(kind)
        return cleared
