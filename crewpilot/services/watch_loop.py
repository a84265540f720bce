"""Watch loop: poll runner panes, classify, notify on transitions, persist.

One WatchLoop instance owns all of its mutable state (trackers, question
episodes, rate limits), so several loops can run side by side in tests.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from crewpilot.backends.base import TerminalBackend
from crewpilot.models.config import NotificationConfig, WatchConfig
from crewpilot.models.runner import RunnerState, RunnerStateSnapshot
from crewpilot.services.change_tracker import ChangeTracker
from crewpilot.services.notification_service import LogSink, NotificationManager
from crewpilot.services.question_extractor import extract_question
from crewpilot.services.state_classifier import StateClassifier
from crewpilot.services.state_store import RunnerStateStore
from crewpilot.workspace import (
    WATCH_LOCK,
    WATCH_LOG_FILE,
    acquire_lock,
    get_team_config_dir,
    read_runner_pane_id,
    remove_lockfile,
    utc_now,
)

logger = logging.getLogger(__name__)

IDLE_LIKE_STATES = (RunnerState.IDLE, RunnerState.UNKNOWN)


@dataclass
class RunnerObservation:
    """Classification of one pane during one poll."""

    pane_id: str
    state: RunnerState
    confidence: float
    detail: str
    content: str
    previous_state: RunnerState | None = None
    is_new: bool = True
    idle_since: datetime | None = None
    consecutive_no_change: int = 0

    @property
    def changed(self) -> bool:
        """True on the first sighting of a pane or when its state differs."""
        return self.is_new or self.previous_state != self.state


def classify_panes(
    backend: TerminalBackend,
    session_name: str,
    lines: int = 50,
    classifier: StateClassifier | None = None,
) -> list[RunnerObservation]:
    """Classify every pane of a session once, without persistence.

    Used by the ``check`` command and the HTTP API. Panes that cannot be
    captured are skipped.
    """
    classifier = classifier if classifier is not None else StateClassifier()
    observations = []
    for pane in backend.list_panes(session_name):
        try:
            content = backend.capture_text(pane.id, lines)
        except Exception as e:
            logger.warning(f"Skipping pane {pane.id}: {e}")
            continue
        result = classifier.classify(content)
        observations.append(
            RunnerObservation(
                pane_id=pane.id,
                state=result.state,
                confidence=result.confidence,
                detail=result.detail,
                content=content,
            )
        )
    return observations


class WatchLoop:
    """Poll-classify-notify-persist loop over one tmux session.

    Per cycle:
    1. List panes (an empty listing is treated as "no data this cycle")
    2. Capture and classify each pane in listing order
    3. Update change trackers and detect transitions
    4. Fire rate-limited notifications and append transition events
    5. Rewrite runner-state.json for the primary runner pane
    """

    def __init__(
        self,
        project_dir: str | Path,
        session_name: str,
        backend: TerminalBackend,
        config: WatchConfig | None = None,
        notification_config: NotificationConfig | None = None,
        notifier: NotificationManager | None = None,
        classifier: StateClassifier | None = None,
        store: RunnerStateStore | None = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the loop.

        Args:
            project_dir: Project root containing .team-config/.
            session_name: tmux session to watch.
            backend: Terminal backend.
            config: Watch settings. Defaults to WatchConfig().
            notification_config: Rate-limit eviction settings.
            notifier: Notification manager. Built from config if not provided.
            classifier: State classifier.
            store: Runner state persistence.
            clock: Source of the current (aware) time.
            sleep: Sleep function, replaceable in tests.
        """
        self.project_dir = Path(project_dir)
        self.session_name = session_name
        self.config = config or WatchConfig()
        self.notification_config = notification_config or NotificationConfig()
        self._backend = backend
        self._classifier = classifier if classifier is not None else StateClassifier()
        self._store = store if store is not None else RunnerStateStore(self.project_dir)
        self._clock = clock
        self._sleep = sleep
        self._notifier = notifier if notifier is not None else NotificationManager(
            method=self.config.notify,
            rate_limit_seconds=self.config.rate_limit_minutes * 60,
            log=LogSink(self.log_file),
        )

        self._trackers = ChangeTracker()
        self._notified_questions: set[str] = set()
        self._cycle = 0

    @property
    def log_file(self) -> Path:
        if self.config.log_file:
            return Path(self.config.log_file)
        return get_team_config_dir(self.project_dir) / WATCH_LOG_FILE

    @property
    def trackers(self) -> ChangeTracker:
        return self._trackers

    @property
    def notifier(self) -> NotificationManager:
        return self._notifier

    def poll_once(self) -> list[RunnerObservation]:
        """Run one poll cycle.

        Returns:
            Observations for every pane that could be captured, in listing
            order.
        """
        now = self._clock()
        self._cycle += 1
        if self._cycle % self.notification_config.cleanup_every_cycles == 0:
            evicted = self._notifier.clear_stale_entries(self.notification_config.stale_entry_hours * 3600)
            logger.debug(f"Evicted {evicted} stale rate-limit entries")

        panes = self._backend.list_panes(self.session_name)
        observations: list[RunnerObservation] = []

        for pane in panes:
            try:
                content = self._backend.capture_text(pane.id, self.config.capture_lines)
            except Exception as e:
                logger.warning(f"Could not capture pane {pane.id}: {e}")
                continue

            observation = self._observe(pane.id, content, now)
            observations.append(observation)

            if observation.changed:
                logger.info(
                    f"Pane {pane.id}: "
                    f"{observation.previous_state.value if observation.previous_state else 'new'} → "
                    f"{observation.state.value}"
                )
                self._notify_transition(observation)
                self._store.append_event(pane.id, observation.state.value, now)

        removed = self._trackers.prune({pane.id for pane in panes})
        self._notified_questions.difference_update(removed)

        primary = self._select_primary(observations)
        if primary is not None:
            self._store.write_snapshot(self._build_snapshot(primary, now))

        return observations

    def run(
        self,
        once: bool = False,
        on_cycle: Callable[[list[RunnerObservation]], None] | None = None,
    ) -> int:
        """Run the loop until the session ends, or for a single cycle.

        Holds the .watch-lock writer lock for the duration.

        Args:
            once: Stop after exactly one cycle.
            on_cycle: Called with each cycle's observations (console display).

        Returns:
            Number of cycles completed.

        Raises:
            LockHeldError: If another watcher owns runner-state.json.
        """
        acquire_lock(self.project_dir, WATCH_LOCK)
        try:
            if self.config.notify.uses_log and self._notifier.log_sink is not None:
                self._notifier.log_sink.write_line(
                    f"\n[{utc_now().isoformat()}] Watch started for {self.session_name}"
                )

            cycles = 0
            while True:
                try:
                    observations = self.poll_once()
                    cycles += 1
                    if on_cycle is not None:
                        on_cycle(observations)
                    if not observations and not self._backend.session_exists(self.session_name):
                        logger.warning(f"Session {self.session_name} ended. Stopping watch.")
                        break
                except Exception as e:
                    logger.error(f"Error during watch: {e}")
                    if not self._backend.session_exists(self.session_name):
                        logger.warning(f"Session {self.session_name} ended. Stopping watch.")
                        break

                if once:
                    break
                self._sleep(self.config.poll_interval)

            return cycles
        finally:
            remove_lockfile(self.project_dir, WATCH_LOCK)

    def _observe(self, pane_id: str, content: str, now: datetime) -> RunnerObservation:
        result = self._classifier.classify(content)
        previous = self._trackers.get(pane_id)
        previous_state = previous.last_state if previous else None

        observed = self._trackers.observe(pane_id, content, result.state, now)
        tracker = observed.tracker

        idle_since = None
        if result.state in IDLE_LIKE_STATES and tracker.consecutive_no_change > 0:
            idle_since = tracker.last_change_at

        return RunnerObservation(
            pane_id=pane_id,
            state=result.state,
            confidence=result.confidence,
            detail=result.detail,
            content=content,
            previous_state=previous_state,
            is_new=observed.is_new,
            idle_since=idle_since,
            consecutive_no_change=tracker.consecutive_no_change,
        )

    def _notify_transition(self, observation: RunnerObservation) -> None:
        pane_id = observation.pane_id
        state = observation.state

        # A question episode ends when the pane leaves the QUESTION state
        if observation.previous_state == RunnerState.QUESTION and state != RunnerState.QUESTION:
            self._notified_questions.discard(pane_id)

        if state == RunnerState.QUESTION and pane_id not in self._notified_questions:
            self._notifier.send(
                "question",
                pane_id,
                "Crewpilot: Input Needed",
                f"Runner {pane_id} is waiting for your answer",
            )
            self._notified_questions.add(pane_id)

        elif state == RunnerState.ERROR:
            self._notifier.send(
                "error",
                pane_id,
                "Crewpilot: Error Detected",
                f"Runner {pane_id} encountered an error",
            )

        elif (
            state == RunnerState.STOPPED
            and observation.previous_state is not None
            and observation.previous_state != RunnerState.STOPPED
        ):
            self._notifier.send(
                "stopped",
                pane_id,
                "Crewpilot: Runner Stopped",
                f"Runner {pane_id} has stopped",
            )

    def _select_primary(self, observations: list[RunnerObservation]) -> RunnerObservation | None:
        """Pick the pane whose state goes to runner-state.json.

        The pane named in runner-pane-id.txt wins when it is live; otherwise
        the last pane in listing order.
        """
        if not observations:
            return None
        runner_pane = read_runner_pane_id(self.project_dir)
        if runner_pane:
            for observation in observations:
                if observation.pane_id == runner_pane:
                    return observation
        return observations[-1]

    def _build_snapshot(self, observation: RunnerObservation, now: datetime) -> RunnerStateSnapshot:
        question = None
        if observation.state == RunnerState.QUESTION:
            question = extract_question(observation.content)

        return RunnerStateSnapshot(
            process_id=observation.pane_id,
            state=observation.state,
            confidence=observation.confidence,
            timestamp=now,
            idle_since=observation.idle_since,
            captured_content=observation.content,
            detected_question=question,
            detail=observation.detail or None,
        )
