"""Tests for the watch loop."""

import json
import os
from unittest.mock import MagicMock

import pytest

from crewpilot.exceptions import LockHeldError
from crewpilot.models.config import NotifyMethod, WatchConfig
from crewpilot.models.runner import RunnerState
from crewpilot.services.notification_service import LogSink, NotificationManager
from crewpilot.services.watch_loop import WatchLoop, classify_panes
from crewpilot.workspace import WATCH_LOCK, lock_path, read_lockfile, utc_now
from fakes import ERROR_TEXT, IDLE_TEXT, QUESTION_TEXT, SESSION_NAME, STOPPED_TEXT, WORKING_TEXT


@pytest.fixture
def notifier():
    return MagicMock(spec=NotificationManager)


@pytest.fixture
def loop(project_dir, backend, notifier, clock):
    return WatchLoop(
        project_dir,
        SESSION_NAME,
        backend,
        notifier=notifier,
        clock=clock,
        sleep=lambda seconds: None,
    )


def _state_file(project_dir):
    return json.loads((project_dir / ".team-config" / "runner-state.json").read_text())


def _events(project_dir):
    return (project_dir / ".team-config" / "runner-events.log").read_text().splitlines()


def _alert_kinds(notifier):
    return [c.args[0] for c in notifier.send.call_args_list]


class TestClassifyPanes:
    """Tests for the one-shot classification pass."""

    def test_classifies_each_pane(self, backend):
        observations = classify_panes(backend, SESSION_NAME)

        assert [(o.pane_id, o.state) for o in observations] == [
            ("%1", RunnerState.IDLE),
            ("%2", RunnerState.WORKING),
        ]

    def test_skips_failing_pane(self, backend):
        backend.failing_panes.add("%1")

        observations = classify_panes(backend, SESSION_NAME)

        assert [o.pane_id for o in observations] == ["%2"]


class TestPollOnce:
    """Tests for a single watch cycle."""

    def test_first_cycle_records_every_pane(self, loop, project_dir):
        observations = loop.poll_once()

        assert all(o.changed for o in observations)
        events = _events(project_dir)
        assert events[0].endswith("pane=%1 event=idle")
        assert events[1].endswith("pane=%2 event=working")

    def test_unchanged_state_writes_no_event(self, loop, project_dir):
        loop.poll_once()
        loop.poll_once()

        assert len(_events(project_dir)) == 2

    def test_transition_appends_event(self, loop, backend, project_dir):
        loop.poll_once()
        backend.screens["%2"] = IDLE_TEXT

        observations = loop.poll_once()

        assert observations[1].previous_state == RunnerState.WORKING
        assert observations[1].state == RunnerState.IDLE
        assert _events(project_dir)[-1].endswith("pane=%2 event=idle")

    def test_snapshot_defaults_to_last_pane(self, loop, project_dir):
        loop.poll_once()

        data = _state_file(project_dir)
        assert data["paneId"] == "%2"
        assert data["state"] == "working"
        assert data["detectedQuestion"] is None

    def test_snapshot_prefers_runner_pane(self, loop, project_dir):
        (project_dir / ".team-config" / "runner-pane-id.txt").write_text("%1")

        loop.poll_once()

        assert _state_file(project_dir)["paneId"] == "%1"

    def test_stale_runner_pane_ignored(self, loop, project_dir):
        (project_dir / ".team-config" / "runner-pane-id.txt").write_text("%9")

        loop.poll_once()

        assert _state_file(project_dir)["paneId"] == "%2"

    def test_snapshot_carries_question(self, loop, backend, project_dir):
        backend.screens["%2"] = QUESTION_TEXT

        loop.poll_once()

        question = _state_file(project_dir)["detectedQuestion"]
        assert question["text"] == "Which database should we use?"
        assert question["options"] == ["PostgreSQL", "SQLite", "MongoDB"]

    def test_idle_since_set_after_unchanged_poll(self, loop, project_dir, clock):
        (project_dir / ".team-config" / "runner-pane-id.txt").write_text("%1")
        start = clock()

        loop.poll_once()
        assert _state_file(project_dir)["idleSince"] is None

        clock.advance(5)
        loop.poll_once()

        assert _state_file(project_dir)["idleSince"] == start.isoformat().replace("+00:00", "Z")

    def test_capture_failure_skips_pane(self, loop, backend):
        backend.failing_panes.add("%1")

        observations = loop.poll_once()

        assert [o.pane_id for o in observations] == ["%2"]

    def test_vanished_pane_tracker_dropped(self, loop, backend):
        loop.poll_once()
        backend.sessions[SESSION_NAME] = ["%2"]

        loop.poll_once()

        assert "%1" not in loop.trackers
        assert "%2" in loop.trackers

    def test_no_panes_writes_nothing(self, loop, backend, project_dir):
        backend.sessions[SESSION_NAME] = []

        assert loop.poll_once() == []
        assert not (project_dir / ".team-config" / "runner-state.json").exists()


class TestNotifications:
    """Tests for transition alerts."""

    def test_question_notified_once_per_episode(self, loop, backend, notifier):
        backend.screens["%2"] = QUESTION_TEXT
        loop.poll_once()
        loop.poll_once()

        assert _alert_kinds(notifier).count("question") == 1

    def test_new_episode_notifies_again(self, loop, backend, notifier):
        backend.screens["%2"] = QUESTION_TEXT
        loop.poll_once()
        backend.screens["%2"] = WORKING_TEXT
        loop.poll_once()
        backend.screens["%2"] = QUESTION_TEXT
        loop.poll_once()

        assert _alert_kinds(notifier).count("question") == 2

    def test_error_notified(self, loop, backend, notifier):
        backend.screens["%2"] = ERROR_TEXT
        loop.poll_once()

        kind, pane_id, title, _ = notifier.send.call_args.args
        assert (kind, pane_id, title) == ("error", "%2", "Crewpilot: Error Detected")

    def test_stopped_after_other_state_notified(self, loop, backend, notifier):
        loop.poll_once()
        backend.screens["%2"] = STOPPED_TEXT
        loop.poll_once()

        assert "stopped" in _alert_kinds(notifier)

    def test_stopped_on_first_sight_not_notified(self, loop, backend, notifier):
        backend.screens["%2"] = STOPPED_TEXT
        loop.poll_once()

        assert "stopped" not in _alert_kinds(notifier)

    def test_working_and_idle_never_notify(self, loop, notifier):
        loop.poll_once()

        notifier.send.assert_not_called()

    def test_real_rate_limit_suppresses_repeat_errors(self, project_dir, backend, clock):
        """Error flapping inside the window only alerts once."""
        config = WatchConfig(notify=NotifyMethod.LOG, rate_limit_minutes=5)
        loop = WatchLoop(project_dir, SESSION_NAME, backend, config=config, clock=clock)
        backend.screens["%2"] = [ERROR_TEXT, WORKING_TEXT, ERROR_TEXT]

        for _ in range(3):
            loop.poll_once()

        log_text = loop.log_file.read_text()
        assert log_text.count("Crewpilot: Error Detected") == 1

    def test_injected_manager_receives_alerts(self, project_dir, backend, clock, tmp_path):
        """A fresh manager has no rate-limit entries but is still used."""
        custom_log = tmp_path / "mine.log"
        manager = NotificationManager(method=NotifyMethod.LOG, log=LogSink(custom_log))
        loop = WatchLoop(project_dir, SESSION_NAME, backend, notifier=manager, clock=clock)
        backend.screens["%2"] = ERROR_TEXT

        loop.poll_once()

        assert len(manager) == 1
        assert "Crewpilot: Error Detected" in custom_log.read_text()
        assert not loop.log_file.exists()


class TestRun:
    """Tests for the outer loop."""

    def test_once_runs_single_cycle(self, loop):
        assert loop.run(once=True) == 1

    def test_lock_released_after_run(self, loop, project_dir):
        loop.run(once=True)

        assert read_lockfile(project_dir, WATCH_LOCK) is None

    def test_lock_held_during_cycle(self, loop, project_dir):
        seen = []
        loop.run(once=True, on_cycle=lambda obs: seen.append(read_lockfile(project_dir, WATCH_LOCK)))

        assert seen[0] is not None

    def test_refuses_foreign_lock(self, loop, project_dir):
        payload = {"paneId": None, "pid": os.getppid(), "startedAt": utc_now().isoformat()}
        lock_path(project_dir, WATCH_LOCK).write_text(json.dumps(payload))

        with pytest.raises(LockHeldError):
            loop.run(once=True)

    def test_stops_when_session_ends(self, loop, backend):
        cycles = []

        def end_session(observations):
            cycles.append(observations)
            if len(cycles) == 2:
                backend.sessions.pop(SESSION_NAME, None)

        assert loop.run(on_cycle=end_session) == 3
        assert cycles[-1] == []

    def test_cycle_error_keeps_running_while_session_alive(self, loop, backend):
        calls = []

        def flaky(observations):
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("display failed")
            backend.sessions.pop(SESSION_NAME, None)

        loop.run(on_cycle=flaky)

        assert len(calls) == 3
