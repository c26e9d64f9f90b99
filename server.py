#!/usr/bin/env python3
"""buildgate HTTP API - pipeline state, transitions, verification and review summaries."""

import logging
import os

from flask import Flask, jsonify, request

from core.convergence import load_convergence_state, should_stop
from core.errors import ProfileRequiredError, TransitionError
from core.orchestrator import TRANSITIONS, PipelineOrchestrator
from core.state import Finding, Phase
from core.store import load_profile, review_dir
from core.verifier import verify_findings

logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config["PROJECT_DIR"] = os.environ.get("BUILDGATE_PROJECT_DIR", os.getcwd())


def _project_dir():
    return app.config["PROJECT_DIR"]


def _orchestrator():
    project_dir = _project_dir()
    return PipelineOrchestrator(project_dir, profile=load_profile(project_dir))


def _state_to_dict(orchestrator):
    state = orchestrator.get_state()
    result = state.to_dict()
    result["allowed_transitions"] = [p.value for p in TRANSITIONS.get(state.phase, [])]
    return result


@app.errorhandler(ProfileRequiredError)
def _profile_required(e):
    return jsonify({"error": str(e)}), 412


@app.errorhandler(TransitionError)
def _invalid_transition(e):
    return jsonify({"error": str(e)}), 409


@app.route("/api/status")
def api_status():
    return jsonify(_state_to_dict(_orchestrator()))


@app.route("/api/transition", methods=["POST"])
def api_transition():
    data = request.get_json(silent=True) or {}
    target = str(data.get("phase", "")).strip().upper()
    if not target:
        return jsonify({"error": "Missing phase"}), 400
    if target not in Phase.__members__:
        return jsonify({"error": f"Unknown phase: {target}"}), 400

    orchestrator = _orchestrator()
    orchestrator.transition(target)
    return jsonify(_state_to_dict(orchestrator))


@app.route("/api/advance", methods=["POST"])
def api_advance():
    orchestrator = _orchestrator()
    orchestrator.advance()
    return jsonify(_state_to_dict(orchestrator))


@app.route("/api/start-epic", methods=["POST"])
def api_start_epic():
    data = request.get_json(silent=True) or {}
    epic = data.get("epic")
    if not isinstance(epic, int) or isinstance(epic, bool) or epic < 0:
        return jsonify({"error": "epic must be a non-negative integer"}), 400

    orchestrator = _orchestrator()
    orchestrator.start_epic(epic)
    return jsonify(_state_to_dict(orchestrator))


@app.route("/api/reset", methods=["POST"])
def api_reset():
    orchestrator = _orchestrator()
    orchestrator.reset()
    return jsonify(_state_to_dict(orchestrator))


@app.route("/api/verify", methods=["POST"])
def api_verify():
    """Check posted findings against the project files; no agents involved."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        data = data.get("findings")
    if not isinstance(data, list):
        return jsonify({"error": "Expected a list of findings"}), 400

    try:
        findings = [Finding.from_dict(item) for item in data]
    except (KeyError, TypeError, AttributeError) as e:
        return jsonify({"error": f"Invalid finding: {e}"}), 400

    result = verify_findings(_project_dir(), findings)
    return jsonify({
        "stats": result.stats,
        "verified": [f.to_dict() for f in result.verified],
        "discarded": [{"finding": d.finding.to_dict(), "reason": d.reason} for d in result.discarded],
    })


@app.route("/api/reviews/<int:epic>/summary")
def api_review_summary(epic):
    path = os.path.join(review_dir(_project_dir(), epic, create=False), "summary.md")
    if not os.path.isfile(path):
        return jsonify({"error": f"No review summary for epic {epic}"}), 404
    with open(path) as f:
        return jsonify({"epic": epic, "markdown": f.read()})


@app.route("/api/convergence")
def api_convergence():
    state = load_convergence_state(_project_dir())
    if state is None:
        return jsonify({"error": "No improvement cycles recorded"}), 404
    decision = should_stop(state)
    result = state.to_dict()
    result["should_stop"] = decision.stop
    result["reason"] = decision.reason
    return jsonify(result)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    port = int(os.environ.get("PORT", 5001))
    print(f"buildgate API for {_project_dir()} at http://localhost:{port}")
    app.run(debug=False, port=port)
