"""
Certification Workflow Service
Attester blueprint — answer assigned certifications.

Blueprint: attester_bp
Prefix: /api/v1/attester

Endpoints:
    GET   /attestations                        -- My published certifications + status
    GET   /certifications/<cid>                -- Questions, my response, readonly/locked flags
    POST  /certifications/<cid>/save           -- Save progress (idempotent)
    POST  /certifications/<cid>/submit         -- Final, write-once submission
"""

import logging

from flask import Blueprint, jsonify

from app.auth import current_user_id, require_role
from app.blueprints import json_object_body
from app.services import response_service
from app.utils.errors import E, api_error, register_service_error_handlers
from app.utils.helpers import isoformat_utc

logger = logging.getLogger(__name__)

attester_bp = Blueprint("attester", __name__, url_prefix="/api/v1/attester")
register_service_error_handlers(attester_bp)


def _answers_from_body():
    data = json_object_body()
    if data is None or "answers" not in data:
        return None, api_error(E.VALIDATION_INVALID, "Request body must be a JSON object with 'answers'")
    return data["answers"], None


@attester_bp.route("/attestations", methods=["GET"])
@require_role("attester")
def list_attestations_route():
    items = response_service.list_attestations_for(current_user_id())
    return jsonify({"items": items, "total": len(items)}), 200


@attester_bp.route("/certifications/<int:certification_id>", methods=["GET"])
@require_role("attester")
def attester_view_route(certification_id):
    return jsonify(response_service.get_attester_view(certification_id, current_user_id())), 200


@attester_bp.route("/certifications/<int:certification_id>/save", methods=["POST"])
@require_role("attester")
def save_progress_route(certification_id):
    answers, err = _answers_from_body()
    if err:
        return err
    saved_at = response_service.save_progress(certification_id, current_user_id(), answers)
    return jsonify({"status": "in_progress", "last_saved_at": isoformat_utc(saved_at)}), 200


@attester_bp.route("/certifications/<int:certification_id>/submit", methods=["POST"])
@require_role("attester")
def submit_route(certification_id):
    answers, err = _answers_from_body()
    if err:
        return err
    result = response_service.submit(certification_id, current_user_id(), answers)
    return jsonify({
        "response": result.response.to_dict(),
        "level_unlocked": result.unlock.should_unlock,
    }), 200
