"""Runner routes for crewpilot.

Read-only JSON endpoints for dashboards and the Team Lead:
- Live classification of every runner pane
- The persisted runner-state.json snapshot
- Session recovery analysis
- Memory search
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from crewpilot.models.runner import RunnerState
from crewpilot.models.search import SearchResult
from crewpilot.services.question_extractor import extract_question
from crewpilot.services.resume_analyzer import analyze
from crewpilot.services.search_engine import SearchEngine
from crewpilot.services.state_store import RunnerStateStore
from crewpilot.services.watch_loop import classify_panes

logger = logging.getLogger(__name__)

runners_bp = Blueprint("runners", __name__)


def _project_dir():
    return current_app.extensions["project_dir"]


def _result_to_dict(result: SearchResult) -> dict:
    return {
        "document": result.document,
        "score": result.aggregate_score,
        "matches": [
            {
                "line": match.line_number,
                "context": match.context_text,
                "score": match.score,
            }
            for match in result.matches
        ],
    }


@runners_bp.route("/runners", methods=["GET"])
def list_runners():
    """Classify every pane of the project's session right now.

    Returns:
        JSON with the session name, whether it is alive, and one entry per
        pane: paneId, state, confidence, details and (for questions) the
        extracted question.
    """
    backend = current_app.extensions["terminal_backend"]
    session_name = current_app.extensions["session_name"]
    config = current_app.extensions["config"]

    if not backend.session_exists(session_name):
        return jsonify({"session": session_name, "active": False, "runners": []})

    runners = []
    for observation in classify_panes(backend, session_name, config.dashboard.capture_lines):
        question = None
        if observation.state == RunnerState.QUESTION:
            extracted = extract_question(observation.content)
            question = extracted.model_dump(mode="json") if extracted else None
        runners.append(
            {
                "paneId": observation.pane_id,
                "state": observation.state.value,
                "confidence": observation.confidence,
                "details": observation.detail,
                "detectedQuestion": question,
            }
        )

    logger.debug(f"[API] GET /runners - {len(runners)} panes in {session_name}")
    return jsonify({"session": session_name, "active": True, "runners": runners})


@runners_bp.route("/runner-state", methods=["GET"])
def get_runner_state():
    """Return the last snapshot written by the watch loop."""
    snapshot = RunnerStateStore(_project_dir()).read_snapshot()
    if snapshot is None:
        return jsonify({"error": "No runner state recorded yet"}), 404
    return current_app.response_class(snapshot.to_json(), mimetype="application/json")


@runners_bp.route("/recovery", methods=["GET"])
def get_recovery():
    """Return the resume analysis for the project."""
    config = current_app.extensions["config"]
    analysis = analyze(_project_dir(), config=config.resume)
    return jsonify(
        {
            "hasStateSnapshot": analysis.has_state_snapshot,
            "hasRecoveryInstructions": analysis.has_recovery_instructions,
            "hasExternalProgressArtifact": analysis.has_external_progress_artifact,
            "snapshotAgeHours": analysis.snapshot_age_hours,
            "recommendation": analysis.recommendation.value,
            "warnings": analysis.warnings,
        }
    )


@runners_bp.route("/search", methods=["GET"])
def search():
    """Search memory files.

    Query params:
        q: Search query (required)
        limit: Max documents
        fuzzy: "1"/"true" to enable fuzzy matching
        case_sensitive: "1"/"true" for exact case
    """
    config = current_app.extensions["config"]
    query = request.args.get("q", "")
    limit = request.args.get("limit", type=int)
    fuzzy = request.args.get("fuzzy", "").lower() in ("1", "true", "yes")
    case_sensitive = request.args.get("case_sensitive", "").lower() in ("1", "true", "yes")

    engine = SearchEngine(_project_dir(), config.search)
    response = engine.search(query, limit=limit, case_sensitive=case_sensitive, fuzzy=fuzzy)
    if not response.ok:
        return jsonify({"error": response.error}), 400

    return jsonify(
        {
            "query": response.query,
            "totalResults": response.total_results,
            "totalMatches": response.total_matches,
            "results": [_result_to_dict(result) for result in response.results],
        }
    )
