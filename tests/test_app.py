"""Tests for Flask application factory."""

from crewpilot.app import create_app
from fakes import SESSION_NAME


class TestCreateApp:
    """Tests for create_app factory."""

    def test_create_app_returns_flask_app(self, project_dir, backend):
        """create_app returns a Flask application."""
        app = create_app(project_dir, backend=backend)

        assert app.name == "crewpilot.app"

    def test_app_has_extensions(self, project_dir, backend):
        """App has required extensions."""
        app = create_app(project_dir, backend=backend)

        assert app.extensions["terminal_backend"] is backend
        assert app.extensions["session_name"] == SESSION_NAME
        assert app.extensions["project_dir"] == project_dir.resolve()
        assert "config" in app.extensions
        assert "config_service" in app.extensions

    def test_loads_project_config(self, project_dir, backend):
        (project_dir / ".team-config" / "crewpilot.yaml").write_text("dashboard:\n  capture_lines: 20\n")

        app = create_app(project_dir, backend=backend)

        assert app.extensions["config"].dashboard.capture_lines == 20

    def test_session_override(self, project_dir, backend):
        app = create_app(project_dir, backend=backend, session_name="other")

        assert app.extensions["session_name"] == "other"

    def test_health(self, project_dir, backend):
        client = create_app(project_dir, backend=backend).test_client()

        response = client.get("/health")

        assert response.status_code == 200
        assert response.get_json() == {"status": "ok", "session": SESSION_NAME}
