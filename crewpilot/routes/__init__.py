"""Flask routes for crewpilot."""

from crewpilot.routes.runners import runners_bp

__all__ = [
    "runners_bp",
]


def register_blueprints(app):
    """Register all blueprints with the Flask app.

    Args:
        app: The Flask application instance.
    """
    app.register_blueprint(runners_bp, url_prefix="/api")
