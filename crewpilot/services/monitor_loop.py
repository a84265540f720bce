"""Heartbeat monitor: liveness checks for runner panes.

Where the watch loop reports what a runner is doing, the monitor reports
whether it is still making progress at all. It writes heartbeat.log and
raises edge-triggered stuck, frozen and dead alerts.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from crewpilot.backends.base import TerminalBackend
from crewpilot.models.config import MonitorConfig, NotificationConfig
from crewpilot.models.runner import HeartbeatEntry, RunnerState
from crewpilot.services.change_tracker import (
    AlertKind,
    AlertLatch,
    ChangeTracker,
    detect_dead,
    detect_stuck,
    hash_content,
)
from crewpilot.services.notification_service import LogSink, NotificationManager
from crewpilot.services.state_classifier import StateClassifier
from crewpilot.services.state_store import HeartbeatLog
from crewpilot.workspace import MONITOR_LOCK, acquire_lock, remove_lockfile, utc_now

logger = logging.getLogger(__name__)

ALERT_TITLES = {
    AlertKind.STUCK: "Crewpilot: Runner Stuck",
    AlertKind.FROZEN: "Crewpilot: Runner Frozen",
    AlertKind.DEAD: "Crewpilot: Runner Dead",
}


@dataclass
class PaneHeartbeat:
    """Result of one monitor poll for one pane."""

    pane_id: str
    state: RunnerState
    consecutive_no_change: int
    alerts: list[tuple[AlertKind, str]] = field(default_factory=list)
    recovered: list[AlertKind] = field(default_factory=list)


@dataclass
class MonitorCycle:
    """Result of one monitor poll."""

    session_alive: bool
    panes: list[PaneHeartbeat] = field(default_factory=list)


class HeartbeatMonitor:
    """Polls a session and records heartbeats plus stuck/dead alerts."""

    def __init__(
        self,
        project_dir: str | Path,
        session_name: str,
        backend: TerminalBackend,
        config: MonitorConfig | None = None,
        notification_config: NotificationConfig | None = None,
        notifier: NotificationManager | None = None,
        classifier: StateClassifier | None = None,
        heartbeat_log: HeartbeatLog | None = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.project_dir = Path(project_dir)
        self.session_name = session_name
        self.config = config or MonitorConfig()
        self.notification_config = notification_config or NotificationConfig()
        self._backend = backend
        self._classifier = classifier if classifier is not None else StateClassifier()
        self._heartbeat = heartbeat_log if heartbeat_log is not None else HeartbeatLog(self.project_dir)
        self._clock = clock
        self._sleep = sleep
        # Alert lines share heartbeat.log with the JSON entries
        self._notifier = notifier if notifier is not None else NotificationManager(
            method=self.config.notify,
            rate_limit_seconds=self.config.rate_limit_minutes * 60,
            log=LogSink(self._heartbeat.path, prefix="ALERT: "),
        )

        self._trackers = ChangeTracker()
        self._latch = AlertLatch()
        self._cycle = 0

    @property
    def heartbeat_log(self) -> HeartbeatLog:
        return self._heartbeat

    @property
    def trackers(self) -> ChangeTracker:
        return self._trackers

    @property
    def latch(self) -> AlertLatch:
        return self._latch

    def poll_once(self) -> MonitorCycle:
        """Run one monitor cycle."""
        now = self._clock()
        self._cycle += 1
        if self._cycle % self.notification_config.cleanup_every_cycles == 0:
            self._notifier.clear_stale_entries(self.notification_config.stale_entry_hours * 3600)

        if not self._backend.session_exists(self.session_name):
            self._heartbeat.write(
                HeartbeatEntry(
                    timestamp=now.isoformat(),
                    session_name=self.session_name,
                    state="no_session",
                    details="Session not found",
                )
            )
            return MonitorCycle(session_alive=False)

        panes = self._backend.list_panes(self.session_name)
        cycle = MonitorCycle(session_alive=True)

        for pane in panes:
            try:
                content = self._backend.capture_text(pane.id, self.config.capture_lines)
            except Exception as e:
                logger.warning(f"Could not capture pane {pane.id}: {e}")
                continue
            cycle.panes.append(self._check_pane(pane.id, content, now))

        for pane_id in self._trackers.prune({pane.id for pane in panes}):
            self._latch.clear(pane_id)

        return cycle

    def run(
        self,
        once: bool = False,
        on_cycle: Callable[[MonitorCycle], None] | None = None,
    ) -> int:
        """Run until interrupted, or for a single cycle.

        Unlike the watch loop the monitor keeps running when the session is
        missing; it records ``no_session`` heartbeats until it comes back.

        Returns:
            Number of cycles completed.

        Raises:
            LockHeldError: If another monitor is running for this project.
        """
        acquire_lock(self.project_dir, MONITOR_LOCK)
        try:
            self._heartbeat.initialize()
            cycles = 0
            while True:
                try:
                    result = self.poll_once()
                    cycles += 1
                    if on_cycle is not None:
                        on_cycle(result)
                except Exception as e:
                    logger.error(f"Monitor error: {e}")
                    self._heartbeat.write(
                        HeartbeatEntry(
                            timestamp=utc_now().isoformat(),
                            session_name=self.session_name,
                            state="monitor_error",
                            details=str(e),
                        )
                    )

                if once:
                    break
                self._sleep(self.config.interval)
            return cycles
        finally:
            remove_lockfile(self.project_dir, MONITOR_LOCK)

    def _check_pane(self, pane_id: str, content: str, now: datetime) -> PaneHeartbeat:
        result = self._classifier.classify(content)
        observed = self._trackers.observe(pane_id, content, result.state, now)
        tracker = observed.tracker
        heartbeat = PaneHeartbeat(
            pane_id=pane_id,
            state=result.state,
            consecutive_no_change=tracker.consecutive_no_change,
        )

        if observed.content_changed:
            for kind in self._latch.clear(pane_id):
                logger.info(f"Pane {pane_id} recovered from {kind.value}")
                heartbeat.recovered.append(kind)

        stuck = detect_stuck(
            tracker,
            result.state,
            self.config.interval,
            stuck_threshold=self.config.stuck_threshold,
            frozen_threshold=self.config.frozen_threshold,
        )
        if stuck.detected:
            kind = AlertKind.FROZEN if stuck.severe else AlertKind.STUCK
            if self._latch.trigger(kind, pane_id):
                self._raise_alert(heartbeat, kind, stuck.reason, content, now)

        dead = detect_dead(result.state, content)
        if dead.detected and self._latch.trigger(AlertKind.DEAD, pane_id):
            self._raise_alert(heartbeat, AlertKind.DEAD, dead.reason, content, now)

        # Routine heartbeat on change, and every Nth unchanged poll
        count = tracker.consecutive_no_change
        if not heartbeat.alerts and (count == 0 or count % self.config.heartbeat_every == 0):
            self._heartbeat.write(
                HeartbeatEntry(
                    timestamp=now.isoformat(),
                    session_name=self.session_name,
                    pane_id=pane_id,
                    state=result.state.value,
                    content_hash=tracker.content_hash,
                )
            )

        return heartbeat

    def _raise_alert(
        self,
        heartbeat: PaneHeartbeat,
        kind: AlertKind,
        reason: str,
        content: str,
        now: datetime,
    ) -> None:
        logger.warning(f"Pane {heartbeat.pane_id}: {reason}")
        heartbeat.alerts.append((kind, reason))
        self._notifier.send(kind.value, heartbeat.pane_id, ALERT_TITLES[kind], reason)
        self._heartbeat.write(
            HeartbeatEntry(
                timestamp=now.isoformat(),
                session_name=self.session_name,
                pane_id=heartbeat.pane_id,
                state=heartbeat.state.value,
                content_hash=hash_content(content),
                alert=kind.value,
                details=reason,
            )
        )
