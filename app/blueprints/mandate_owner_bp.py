"""
Certification Workflow Service
Mandate owner blueprint — certification authoring, assignment and review.

Blueprint: mandate_owner_bp
Prefix: /api/v1/mandate-owner

Endpoints:
    GET         /mandates                                      -- Mandates the caller owns or backs up
    GET         /stats                                         -- Dashboard counters
    GET         /users                                         -- User directory (role) for assignment pickers
    GET/POST    /certifications                                -- List (mandate_id, status) / create draft
    GET/PATCH/DELETE /certifications/<cid>                     -- Single certification
    POST        /certifications/<cid>/publish                  -- draft → open
    POST        /certifications/<cid>/close                    -- open → closed
    GET/PUT     /certifications/<cid>/assignments              -- List / replace-all
    DELETE      /certifications/<cid>/assignments/<attester>   -- Unassign one attester
    GET         /certifications/<cid>/responses                -- Per-attester status + stats
    GET         /certifications/<cid>/responses/<attester>     -- One attester's answers

Service exceptions map to HTTP through register_service_error_handlers.
"""

import logging

from flask import Blueprint, jsonify, request

from app.auth import current_user_id, require_role
from app.blueprints import json_object_body
from app.services import (
    assignment_service,
    certification_service,
    mandate_service,
    response_service,
    user_service,
)
from app.utils.errors import E, api_error, register_service_error_handlers

logger = logging.getLogger(__name__)

mandate_owner_bp = Blueprint("mandate_owner", __name__, url_prefix="/api/v1/mandate-owner")
register_service_error_handlers(mandate_owner_bp)


def _bad_body():
    return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")


# ------------------------------------------------------------------
#  Dashboard
# ------------------------------------------------------------------


@mandate_owner_bp.route("/mandates", methods=["GET"])
@require_role("mandate_owner")
def list_mandates_route():
    mandates = mandate_service.list_managed_mandates(current_user_id())
    return jsonify({"items": [m.to_dict() for m in mandates], "total": len(mandates)}), 200


@mandate_owner_bp.route("/stats", methods=["GET"])
@require_role("mandate_owner")
def stats_route():
    return jsonify(certification_service.owner_stats(current_user_id())), 200


@mandate_owner_bp.route("/users", methods=["GET"])
@require_role("mandate_owner")
def list_users_route():
    """Directory lookup; ``?role=attester`` lists assignable users."""
    users = user_service.list_users(role=request.args.get("role") or None)
    items = [
        {"id": u.id, "full_name": u.full_name, "email": u.email, "role": u.role}
        for u in users
    ]
    return jsonify({"items": items, "total": len(items)}), 200


# ------------------------------------------------------------------
#  Certifications
# ------------------------------------------------------------------


@mandate_owner_bp.route("/certifications", methods=["GET"])
@require_role("mandate_owner")
def list_certifications_route():
    """List certifications across the caller's mandates."""
    raw_mandate = request.args.get("mandate_id")
    mandate_id = None
    if raw_mandate:
        try:
            mandate_id = int(raw_mandate)
        except ValueError:
            return api_error(E.VALIDATION_INVALID, "mandate_id must be an integer")

    items = certification_service.list_certifications(
        current_user_id(),
        mandate_id=mandate_id,
        status=request.args.get("status") or None,
    )
    return jsonify({"items": items, "total": len(items)}), 200


@mandate_owner_bp.route("/certifications", methods=["POST"])
@require_role("mandate_owner")
def create_certification_route():
    data = json_object_body()
    if data is None:
        return _bad_body()
    cert = certification_service.create_certification(data, actor_id=current_user_id())
    return jsonify(cert.to_dict()), 201


@mandate_owner_bp.route("/certifications/<int:certification_id>", methods=["GET"])
@require_role("mandate_owner")
def get_certification_route(certification_id):
    cert = certification_service.get_managed_certification(certification_id, current_user_id())
    return jsonify(cert.to_dict()), 200


@mandate_owner_bp.route("/certifications/<int:certification_id>", methods=["PATCH"])
@require_role("mandate_owner")
def update_certification_route(certification_id):
    """Partial update; only keys present in the body change."""
    data = json_object_body()
    if data is None:
        return _bad_body()
    cert = certification_service.update_certification(certification_id, data, actor_id=current_user_id())
    return jsonify(cert.to_dict()), 200


@mandate_owner_bp.route("/certifications/<int:certification_id>", methods=["DELETE"])
@require_role("mandate_owner")
def delete_certification_route(certification_id):
    certification_service.delete_certification(certification_id, actor_id=current_user_id())
    return jsonify({"message": "Certification deleted"}), 200


@mandate_owner_bp.route("/certifications/<int:certification_id>/publish", methods=["POST"])
@require_role("mandate_owner")
def publish_certification_route(certification_id):
    cert = certification_service.publish_certification(certification_id, actor_id=current_user_id())
    return jsonify(cert.to_dict()), 200


@mandate_owner_bp.route("/certifications/<int:certification_id>/close", methods=["POST"])
@require_role("mandate_owner")
def close_certification_route(certification_id):
    cert = certification_service.close_certification(certification_id, actor_id=current_user_id())
    return jsonify(cert.to_dict()), 200


# ------------------------------------------------------------------
#  Assignments
# ------------------------------------------------------------------


@mandate_owner_bp.route("/certifications/<int:certification_id>/assignments", methods=["GET"])
@require_role("mandate_owner")
def list_assignments_route(certification_id):
    items = assignment_service.list_assignments(certification_id, actor_id=current_user_id())
    return jsonify({"items": items, "total": len(items)}), 200


@mandate_owner_bp.route("/certifications/<int:certification_id>/assignments", methods=["PUT"])
@require_role("mandate_owner")
def replace_assignments_route(certification_id):
    """Replace every assignment: body is ``{"l1": [...], "l2": [...]}``."""
    data = json_object_body()
    if data is None:
        return _bad_body()
    items = assignment_service.replace_assignments(
        certification_id,
        data.get("l1"),
        data.get("l2"),
        actor_id=current_user_id(),
    )
    return jsonify({"items": items, "total": len(items)}), 200


@mandate_owner_bp.route(
    "/certifications/<int:certification_id>/assignments/<int:attester_id>", methods=["DELETE"]
)
@require_role("mandate_owner")
def unassign_route(certification_id, attester_id):
    assignment_service.unassign(certification_id, attester_id, actor_id=current_user_id())
    return jsonify({"message": "Attester unassigned"}), 200


# ------------------------------------------------------------------
#  Responses
# ------------------------------------------------------------------


@mandate_owner_bp.route("/certifications/<int:certification_id>/responses", methods=["GET"])
@require_role("mandate_owner")
def list_responses_route(certification_id):
    return jsonify(response_service.list_responses(certification_id, actor_id=current_user_id())), 200


@mandate_owner_bp.route(
    "/certifications/<int:certification_id>/responses/<int:attester_id>", methods=["GET"]
)
@require_role("mandate_owner")
def response_detail_route(certification_id, attester_id):
    detail = response_service.get_response_detail(certification_id, attester_id, actor_id=current_user_id())
    return jsonify(detail), 200
