"""Tests for workspace helpers and lockfiles."""

import json
import os
from datetime import timedelta

import pytest

from crewpilot.exceptions import LockHeldError, SetupError
from crewpilot.workspace import (
    WATCH_LOCK,
    acquire_lock,
    get_project_name,
    get_session_name,
    lock_path,
    read_lockfile,
    read_runner_pane_id,
    remove_lockfile,
    require_team_config,
    resolve_project_name,
    sanitize_session_name,
    utc_now,
    write_atomic,
)
from fakes import PROJECT_NAME, SESSION_NAME


class TestSessionNames:
    """Tests for project and session name resolution."""

    def test_project_name_from_user_context(self):
        assert get_project_name("# Ctx\n\n## Project Name\n  My App \n") == "My App"

    def test_missing_project_name(self):
        assert get_project_name("# Ctx\n") is None

    def test_sanitize(self):
        assert sanitize_session_name("My  App! v2") == "my-app-v2"
        assert sanitize_session_name("--x--") == "x"

    def test_session_name(self):
        assert get_session_name(PROJECT_NAME) == SESSION_NAME

    def test_resolve_from_user_context(self, project_dir):
        assert resolve_project_name(project_dir) == PROJECT_NAME

    def test_resolve_falls_back_to_dirname(self, tmp_path):
        target = tmp_path / "fallback-proj"
        target.mkdir()

        assert resolve_project_name(target) == "fallback-proj"


class TestTeamConfig:
    """Tests for .team-config/ helpers."""

    def test_require_team_config(self, project_dir):
        assert require_team_config(project_dir) == project_dir / ".team-config"

    def test_require_team_config_missing(self, tmp_path):
        with pytest.raises(SetupError) as exc_info:
            require_team_config(tmp_path)

        assert exc_info.value.hint == "crewpilot init"

    def test_runner_pane_id(self, project_dir):
        assert read_runner_pane_id(project_dir) is None

        (project_dir / ".team-config" / "runner-pane-id.txt").write_text("%3\n")

        assert read_runner_pane_id(project_dir) == "%3"

    def test_write_atomic(self, tmp_path):
        path = tmp_path / "sub" / "file.json"
        write_atomic(path, "one")
        write_atomic(path, "two")

        assert path.read_text() == "two"
        assert list(path.parent.iterdir()) == [path]


class TestLockfiles:
    """Tests for writer locks."""

    def test_acquire_writes_lock(self, project_dir):
        info = acquire_lock(project_dir, WATCH_LOCK, pane_id="%1")

        data = json.loads(lock_path(project_dir, WATCH_LOCK).read_text())
        assert data["pid"] == os.getpid() == info.pid
        assert data["paneId"] == "%1"

    def test_reacquire_by_same_process(self, project_dir):
        acquire_lock(project_dir, WATCH_LOCK)

        acquire_lock(project_dir, WATCH_LOCK)

    def test_live_foreign_lock_refused(self, project_dir):
        # The parent process is alive for the whole test run
        payload = {"paneId": None, "pid": os.getppid(), "startedAt": utc_now().isoformat()}
        lock_path(project_dir, WATCH_LOCK).write_text(json.dumps(payload))

        with pytest.raises(LockHeldError):
            acquire_lock(project_dir, WATCH_LOCK)

    def test_stale_lock_replaced(self, project_dir):
        started = utc_now() - timedelta(hours=25)
        payload = {"paneId": None, "pid": os.getppid(), "startedAt": started.isoformat()}
        lock_path(project_dir, WATCH_LOCK).write_text(json.dumps(payload))

        info = acquire_lock(project_dir, WATCH_LOCK)

        assert info.pid == os.getpid()

    def test_corrupt_lock_ignored(self, project_dir):
        lock_path(project_dir, WATCH_LOCK).write_text("garbage")

        assert read_lockfile(project_dir, WATCH_LOCK) is None
        acquire_lock(project_dir, WATCH_LOCK)

    def test_remove_lockfile(self, project_dir):
        acquire_lock(project_dir, WATCH_LOCK)
        remove_lockfile(project_dir, WATCH_LOCK)
        remove_lockfile(project_dir, WATCH_LOCK)

        assert read_lockfile(project_dir, WATCH_LOCK) is None
