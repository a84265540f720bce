"""Tests for the command-line interface."""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from crewpilot.cli import cli, format_state, highlight_terms
from crewpilot.models.runner import RunnerState
from crewpilot.services.resume_analyzer import RECOVERY_PROMPT
from crewpilot.services.watch_loop import RunnerObservation
from fakes import QUESTION_TEXT, SESSION_NAME, FakeBackend


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def invoke(runner, project_dir, backend):
    """Invoke the CLI against the test project with the fake backend."""

    def _invoke(*args, backend_override=None, **kwargs):
        with patch("crewpilot.cli.get_tmux_backend", return_value=backend_override or backend):
            return runner.invoke(cli, ["-C", str(project_dir), *args], obj={}, **kwargs)

    return _invoke


class TestGroup:
    """Tests for top-level options and error reporting."""

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert "crewpilot" in result.output

    def test_missing_team_config(self, runner, tmp_path):
        result = runner.invoke(cli, ["-C", str(tmp_path), "search", "react"], obj={})

        assert result.exit_code == 1
        assert "No .team-config/ found" in result.output
        assert "crewpilot init" in result.output


class TestCheck:
    """Tests for the check command."""

    def test_lists_panes(self, invoke):
        result = invoke("check")

        assert result.exit_code == 0
        assert "%1" in result.output
        assert "Working" in result.output
        assert "Idle" in result.output

    def test_shows_question_options(self, invoke, backend):
        backend.screens["%2"] = QUESTION_TEXT

        result = invoke("check")

        assert "Which database should we use?" in result.output
        assert "2. SQLite" in result.output

    def test_inactive_session(self, invoke):
        result = invoke("check", backend_override=FakeBackend())

        assert result.exit_code == 1
        assert "is not active" in result.output
        assert "crewpilot resume" in result.output


class TestWatch:
    """Tests for the watch command."""

    def test_once(self, invoke, project_dir):
        result = invoke("watch", "--once")

        assert result.exit_code == 0
        assert "Crewpilot Watch: Demo App" in result.output
        assert (project_dir / ".team-config" / "runner-state.json").exists()
        assert not (project_dir / ".team-config" / ".watch-lock").exists()

    def test_overrides(self, invoke, project_dir):
        log_file = project_dir / "alerts.log"

        result = invoke("watch", "--once", "--interval", "2", "--notify", "log", "--log-file", str(log_file))

        assert result.exit_code == 0
        assert "Poll interval: 2s" in result.output
        assert "Notifications: log" in result.output
        assert "Watch started for" in log_file.read_text()

    def test_invalid_notify(self, invoke):
        assert invoke("watch", "--notify", "pager").exit_code == 2

    @pytest.mark.parametrize(
        "args",
        [("--interval", "-1"), ("--interval", "0"), ("--rate-limit", "-5")],
    )
    def test_out_of_range_overrides_rejected(self, invoke, project_dir, args):
        result = invoke("watch", "--once", *args)

        assert result.exit_code == 2
        assert "Invalid value" in result.output
        assert not (project_dir / ".team-config" / "runner-state.json").exists()


class TestMonitor:
    """Tests for the monitor command."""

    def test_once(self, invoke, project_dir):
        result = invoke("monitor", "--once")

        assert result.exit_code == 0
        assert "working" in result.output
        assert (project_dir / ".team-config" / "heartbeat.log").exists()

    def test_missing_session_is_reported(self, invoke):
        result = invoke("monitor", "--once", backend_override=FakeBackend())

        assert result.exit_code == 0
        assert "not active" in result.output

    def test_zero_interval_rejected(self, invoke):
        assert invoke("monitor", "--once", "--interval", "0").exit_code == 2


class TestSearch:
    """Tests for the search command."""

    def test_finds_results(self, invoke, project_dir):
        (project_dir / ".team-config" / "project-context.md").write_text("Stack: React with TypeScript\n")

        result = invoke("search", "React")

        assert result.exit_code == 0
        assert "Found 1 file with 1 match" in result.output
        assert "project-context.md" in result.output

    def test_multi_word_query(self, invoke, project_dir):
        (project_dir / ".team-config" / "project-context.md").write_text("Stack: React with TypeScript\n")

        result = invoke("search", "React", "TypeScript")

        assert 'Searching for: "React TypeScript"' in result.output

    def test_invalid_query(self, invoke):
        result = invoke("search", "a")

        assert result.exit_code == 0
        assert "at least 2 characters" in result.output

    def test_no_results(self, invoke):
        result = invoke("search", "kubernetes")

        assert "No results found" in result.output

    def test_rebuild_index(self, invoke, project_dir):
        result = invoke("search", "Demo", "--rebuild-index")

        assert "Index rebuilt" in result.output
        assert (project_dir / ".team-config" / "memory-index.json").exists()


class TestResume:
    """Tests for the resume command."""

    @pytest.fixture(autouse=True)
    def no_startup_delay(self, project_dir):
        (project_dir / ".team-config" / "crewpilot.yaml").write_text("resume:\n  startup_delay_seconds: 0\n")

    def test_attaches_to_live_session(self, invoke, backend):
        result = invoke("resume")

        assert result.exit_code == 0
        assert "is alive" in result.output
        assert backend.calls == [("attach", SESSION_NAME)]

    def test_auto_launch(self, invoke):
        backend = FakeBackend()

        result = invoke("resume", "--auto", "--no-attach", backend_override=backend)

        assert result.exit_code == 0
        assert "Recommendation: fresh" in result.output
        assert "Mode: fresh start with recovery" in result.output
        assert ("literal", f"{SESSION_NAME}:0", RECOVERY_PROMPT) in backend.calls

    def test_declined_confirmation(self, invoke):
        backend = FakeBackend()

        result = invoke("resume", "--no-attach", backend_override=backend, input="n\n")

        assert "Aborted" in result.output
        assert backend.calls == []


class TestSendAnswer:
    """Tests for the send-answer command."""

    @pytest.fixture
    def runner_pane(self, project_dir):
        (project_dir / ".team-config" / "runner-pane-id.txt").write_text("%2\n")

    def test_option(self, invoke, backend, runner_pane):
        result = invoke("send-answer", "--option", "2")

        assert result.exit_code == 0
        assert backend.calls == [("literal", "%2", "2"), ("confirm", "%2")]

    def test_text(self, invoke, backend, runner_pane):
        result = invoke("send-answer", "--text", "Use PostgreSQL")

        assert result.exit_code == 0
        assert backend.calls == [("literal", "%2", "Use PostgreSQL"), ("confirm", "%2")]

    def test_both_rejected(self, invoke, runner_pane):
        result = invoke("send-answer", "--option", "1", "--text", "x")

        assert result.exit_code == 2
        assert "only one of" in result.output

    def test_neither_rejected(self, invoke, runner_pane):
        assert invoke("send-answer").exit_code == 2

    def test_option_must_be_positive(self, invoke, runner_pane):
        assert invoke("send-answer", "--option", "0").exit_code == 2

    def test_no_runner_pane(self, invoke, backend):
        result = invoke("send-answer", "--option", "1")

        assert result.exit_code == 1
        assert "no active runner" in result.output
        assert backend.calls == []


class TestServe:
    """Tests for the serve command."""

    def test_uses_configured_port(self, invoke):
        with patch("crewpilot.cli.create_app") as mock_create:
            result = invoke("serve")

        assert result.exit_code == 0
        mock_create.return_value.run.assert_called_once_with(host="127.0.0.1", port=3000, threaded=True)


class TestFormatting:
    """Tests for console formatting helpers."""

    def _observation(self, **overrides):
        values = {
            "pane_id": "%1",
            "state": RunnerState.IDLE,
            "confidence": 0.85,
            "detail": "",
            "content": "",
        }
        values.update(overrides)
        return RunnerObservation(**values)

    def test_plain_state(self):
        assert format_state(self._observation()) == "[yellow]○ Idle[/yellow]"

    def test_low_confidence(self):
        assert "(~60%)" in format_state(self._observation(confidence=0.6))

    def test_idle_minutes(self):
        now = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
        observation = self._observation(idle_since=now - timedelta(minutes=5))

        assert "(5m idle)" in format_state(observation, now=now)

    def test_highlight_terms(self):
        assert highlight_terms("Use React here", "react") == "Use [yellow]React[/yellow] here"

    def test_highlight_escapes_markup(self):
        assert highlight_terms("[b] React", "react") == "\\[b] [yellow]React[/yellow]"
