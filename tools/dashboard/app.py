#!/usr/bin/env python3
"""Proposal API: thin Flask boundary over the proposal generator.

Routes:
    POST /api/v1/proposals/generate   - generate + persist a proposal (JSON body)
    GET  /api/v1/proposals/<id>       - fetch a stored proposal
    GET  /api/v1/proposals/health     - health check

All responses use the {ok, data, error} envelope. Pipeline errors are mapped
to status codes by their kind (see tools/proposal/errors.py).

Usage:
    python tools/dashboard/app.py [--port 5001] [--debug]
"""

import logging
import math
import sys
from datetime import datetime, timezone
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent.parent
sys.path.insert(0, str(BASE_DIR))

from flask import Flask, jsonify, request  # noqa: E402

from tools.config import load_proposal_config, resolve_db_path  # noqa: E402
from tools.db.stores import ProposalStore  # noqa: E402
from tools.proposal.errors import (  # noqa: E402
    PROVIDER_RATE_LIMITED, ProposalError, error_payload,
)
from tools.proposal.models import ProposalRequest  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)
logger = logging.getLogger("ecoproposal.api")

app = Flask(__name__)
app.config["PROPOSAL_GENERATOR"] = None
app.config["DB_PATH"] = None


def _now():
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _get_generator():
    generator = app.config.get("PROPOSAL_GENERATOR")
    if generator is None:
        from tools.proposal.generator import ProposalGenerator
        generator = ProposalGenerator.from_config(db_path=app.config.get("DB_PATH"))
        app.config["PROPOSAL_GENERATOR"] = generator
    return generator


def _error_response(err: ProposalError):
    response = jsonify(error_payload(err))
    response.status_code = err.http_status
    if err.kind == PROVIDER_RATE_LIMITED:
        retry_after = math.ceil(err.retry_after_seconds or 0)
        if retry_after > 0:
            response.headers["Retry-After"] = str(retry_after)
    return response


@app.before_request
def _log_request():
    logger.info("%s %s", request.method, request.path)


@app.errorhandler(404)
def not_found(e):
    return jsonify({"ok": False, "data": None, "error": "Endpoint not found"}), 404


@app.errorhandler(500)
def internal_server_error(e):
    logger.error("500 Internal Server Error: %s", e)
    return jsonify({"ok": False, "data": None, "error": "Internal server error"}), 500


@app.route("/api/v1/proposals/health")
def health():
    """Health check endpoint."""
    module = load_proposal_config()["module"]
    return jsonify({
        "ok": True,
        "data": {
            "status": "healthy",
            "module": f"{module['name']} v{module['version']}",
            "timestamp": _now(),
        },
        "error": None,
    })


@app.route("/api/v1/proposals/generate", methods=["POST"])
def api_generate():
    body = request.get_json(silent=True)
    try:
        proposal_request = ProposalRequest.from_payload(body)
        record = _get_generator().generate(proposal_request)
    except ProposalError as err:
        logger.error("Proposal generation failed [%s]: %s", err.kind, err.message)
        return _error_response(err)

    return jsonify({"ok": True, "data": record.to_dict(include_metadata=False), "error": None})


@app.route("/api/v1/proposals/<proposal_id>", methods=["GET"])
def api_get_proposal(proposal_id):
    try:
        record = ProposalStore(app.config.get("DB_PATH")).find_by_id(proposal_id)
    except ProposalError as err:
        return _error_response(err)
    if record is None:
        return jsonify({"ok": False, "data": None, "error": "Proposal not found"}), 404
    return jsonify({"ok": True, "data": record.to_dict(), "error": None})


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Proposal API")
    parser.add_argument("--port", type=int, default=5001)
    parser.add_argument("--debug", action="store_true")
    parser.add_argument("--host", default="127.0.0.1")
    args = parser.parse_args()

    print(f"Proposal API starting on http://{args.host}:{args.port}")
    print(f"Database: {resolve_db_path()}")
    app.run(host=args.host, port=args.port, debug=args.debug)
