"""Flask application factory for crewpilot.

Serves read-only JSON about one project's runners. Services are resolved
once at startup and stored in ``app.extensions``:

- config: AppConfig loaded from .team-config/crewpilot.yaml
- project_dir: Project root
- terminal_backend: tmux backend (replaceable in tests)
- session_name: tmux session of the project

Usage:
    from crewpilot.app import create_app
    app = create_app(".")
    app.run(port=3000)
"""

import logging
from pathlib import Path

from flask import Flask, jsonify

from crewpilot.backends import TerminalBackend, get_tmux_backend
from crewpilot.routes import register_blueprints
from crewpilot.services.config_service import ConfigService
from crewpilot.workspace import get_session_name, resolve_project_name

logger = logging.getLogger(__name__)


def create_app(
    project_dir: str | Path = ".",
    backend: TerminalBackend | None = None,
    session_name: str | None = None,
) -> Flask:
    """Create and configure the Flask application.

    Args:
        project_dir: Project root containing .team-config/.
        backend: Terminal backend; defaults to the tmux singleton.
        session_name: Session to report on; derived from the project name
            when not given.

    Returns:
        Configured Flask application.
    """
    project_dir = Path(project_dir).resolve()
    config_service = ConfigService.for_project(project_dir)
    config = config_service.get_config()

    app = Flask(__name__)
    app.config["TESTING"] = False

    app.extensions["config"] = config
    app.extensions["config_service"] = config_service
    app.extensions["project_dir"] = project_dir
    app.extensions["terminal_backend"] = backend or get_tmux_backend()
    app.extensions["session_name"] = session_name or get_session_name(resolve_project_name(project_dir))

    register_blueprints(app)

    @app.route("/health")
    def health():
        return jsonify({"status": "ok", "session": app.extensions["session_name"]})

    logger.info(f"App created for {project_dir} (session {app.extensions['session_name']})")
    return app
