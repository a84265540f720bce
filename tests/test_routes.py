"""Tests for the JSON API routes."""

from datetime import datetime, timezone

import pytest

from crewpilot.app import create_app
from crewpilot.models.runner import RunnerState, RunnerStateSnapshot
from crewpilot.services.state_store import RunnerStateStore
from fakes import QUESTION_TEXT, SESSION_NAME


@pytest.fixture
def app(project_dir, backend):
    app = create_app(project_dir, backend=backend)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    """Create a test client."""
    return app.test_client()


class TestRunnersRoute:
    """Tests for GET /api/runners."""

    def test_lists_live_panes(self, client):
        response = client.get("/api/runners")

        data = response.get_json()
        assert response.status_code == 200
        assert data["session"] == SESSION_NAME
        assert data["active"] is True
        assert [(r["paneId"], r["state"]) for r in data["runners"]] == [("%1", "idle"), ("%2", "working")]
        assert data["runners"][0]["detectedQuestion"] is None

    def test_includes_question(self, client, backend):
        backend.screens["%2"] = QUESTION_TEXT

        runner = client.get("/api/runners").get_json()["runners"][1]

        assert runner["state"] == "question"
        assert runner["detectedQuestion"]["options"] == ["PostgreSQL", "SQLite", "MongoDB"]
        assert runner["detectedQuestion"]["type"] == "multiple_choice"

    def test_inactive_session(self, client, backend):
        backend.sessions.clear()

        data = client.get("/api/runners").get_json()

        assert data["active"] is False
        assert data["runners"] == []


class TestRunnerStateRoute:
    """Tests for GET /api/runner-state."""

    def test_missing_snapshot(self, client):
        assert client.get("/api/runner-state").status_code == 404

    def test_returns_snapshot(self, client, project_dir):
        RunnerStateStore(project_dir).write_snapshot(
            RunnerStateSnapshot(
                process_id="%2",
                state=RunnerState.WORKING,
                confidence=0.9,
                timestamp=datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc),
                detail="Thinking",
            )
        )

        response = client.get("/api/runner-state")

        data = response.get_json()
        assert response.status_code == 200
        assert data["paneId"] == "%2"
        assert data["state"] == "working"
        assert data["details"] == "Thinking"


class TestRecoveryRoute:
    """Tests for GET /api/recovery."""

    def test_fresh_project(self, client):
        data = client.get("/api/recovery").get_json()

        assert data["recommendation"] == "fresh"
        assert data["hasStateSnapshot"] is False
        assert data["snapshotAgeHours"] is None
        assert data["warnings"] == []

    def test_with_progress_artifact(self, client, project_dir):
        (project_dir / ".planning").mkdir()
        (project_dir / ".planning" / "STATE.md").write_text("# State\n")

        data = client.get("/api/recovery").get_json()

        assert data["recommendation"] == "continue"
        assert data["hasExternalProgressArtifact"] is True


class TestSearchRoute:
    """Tests for GET /api/search."""

    def test_search(self, client, project_dir):
        (project_dir / ".team-config" / "project-context.md").write_text("Stack: React with TypeScript\n")

        data = client.get("/api/search?q=react").get_json()

        assert data["query"] == "react"
        assert data["totalResults"] == 1
        result = data["results"][0]
        assert result["document"].endswith("project-context.md")
        assert result["matches"][0]["line"] == 1
        assert result["score"] == result["matches"][0]["score"]

    def test_invalid_query(self, client):
        response = client.get("/api/search?q=a")

        assert response.status_code == 400
        assert "at least 2 characters" in response.get_json()["error"]

    def test_missing_query(self, client):
        assert client.get("/api/search").status_code == 400

    def test_fuzzy_flag(self, client, project_dir):
        (project_dir / ".team-config" / "project-context.md").write_text("We use TypeScript daily\n")

        assert client.get("/api/search?q=TypeScipt").get_json()["totalResults"] == 0
        assert client.get("/api/search?q=TypeScipt&fuzzy=1").get_json()["totalResults"] == 1
