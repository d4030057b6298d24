"""
Admin Blueprint — user directory and mandate set-up.

API Endpoints (JSON):
  GET    /api/v1/admin/stats               — User and mandate counters
  GET    /api/v1/admin/users               — List users (optional ?role=)
  POST   /api/v1/admin/users               — Create user
  PATCH  /api/v1/admin/users/<id>          — Change name / role
  DELETE /api/v1/admin/users/<id>          — Delete an unreferenced user
  GET    /api/v1/admin/mandates            — List mandates (optional ?status=)
  POST   /api/v1/admin/mandates            — Create mandate with owner / backup owner
  PATCH  /api/v1/admin/mandates/<id>       — Rename, reassign owners, open / close

All endpoints require the admin role.
"""

import logging

from flask import Blueprint, jsonify, request

from app.auth import current_user_id, require_role
from app.blueprints import json_object_body
from app.services import mandate_service, user_service
from app.utils.errors import E, api_error, register_service_error_handlers

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__, url_prefix="/api/v1/admin")
register_service_error_handlers(admin_bp)


def _bad_body():
    return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")


@admin_bp.route("/stats", methods=["GET"])
@require_role("admin")
def stats():
    return jsonify(user_service.admin_stats()), 200


# ═══════════════════════════════════════════════════════════════
# Users
# ═══════════════════════════════════════════════════════════════

@admin_bp.route("/users", methods=["GET"])
@require_role("admin")
def list_users():
    users = user_service.list_users(role=request.args.get("role") or None)
    return jsonify({"items": [u.to_dict() for u in users], "total": len(users)}), 200


@admin_bp.route("/users", methods=["POST"])
@require_role("admin")
def create_user():
    data = json_object_body()
    if data is None:
        return _bad_body()
    user = user_service.create_user(data)
    return jsonify(user.to_dict()), 201


@admin_bp.route("/users/<int:user_id>", methods=["PATCH"])
@require_role("admin")
def update_user(user_id):
    data = json_object_body()
    if data is None:
        return _bad_body()
    user = user_service.update_user(user_id, data)
    return jsonify(user.to_dict()), 200


@admin_bp.route("/users/<int:user_id>", methods=["DELETE"])
@require_role("admin")
def delete_user(user_id):
    user_service.delete_user(user_id, actor_id=current_user_id())
    return jsonify({"message": "User deleted"}), 200


# ═══════════════════════════════════════════════════════════════
# Mandates
# ═══════════════════════════════════════════════════════════════

@admin_bp.route("/mandates", methods=["GET"])
@require_role("admin")
def list_mandates():
    mandates = mandate_service.list_mandates(status=request.args.get("status") or None)
    return jsonify({"items": [m.to_dict() for m in mandates], "total": len(mandates)}), 200


@admin_bp.route("/mandates", methods=["POST"])
@require_role("admin")
def create_mandate():
    data = json_object_body()
    if data is None:
        return _bad_body()
    mandate = mandate_service.create_mandate(data)
    return jsonify(mandate.to_dict()), 201


@admin_bp.route("/mandates/<int:mandate_id>", methods=["PATCH"])
@require_role("admin")
def update_mandate(mandate_id):
    data = json_object_body()
    if data is None:
        return _bad_body()
    mandate = mandate_service.update_mandate(mandate_id, data)
    return jsonify(mandate.to_dict()), 200
