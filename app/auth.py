"""
Certification Workflow Service
Authentication & Authorization Middleware.

Provides:
    - Actor context from the upstream auth gateway (X-User-Id / X-User-Role)
    - Optional shared API key check via X-API-Key header
    - Role-based access control (RBAC) decorator
    - CSRF protection for state-changing requests (non-GET/HEAD/OPTIONS)

Security model:
    - Credential authentication happens upstream; this service trusts the
      identity headers the gateway forwards.
    - When API_AUTH_ENABLED is true, callers must also present one of the
      shared API keys so the headers can only come from the gateway.
    - Ownership of mandates is checked in the service layer, not here.

Configuration (env vars):
    API_KEYS          — comma-separated list of valid gateway keys
    API_AUTH_ENABLED  — set to "false" to disable the key check (development only)
"""

import functools
import logging
import os
from typing import Optional

from flask import current_app, g, request

from app.models.auth import USER_ROLES
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def _parse_api_keys() -> set[str]:
    """Parse API_KEYS env var into a set of keys."""
    raw = os.getenv("API_KEYS", "")
    return {entry.strip() for entry in raw.split(",") if entry.strip()}


def _is_auth_enabled() -> bool:
    """Check whether the gateway key check is enabled (env var or app config)."""
    env_val = os.getenv("API_AUTH_ENABLED", "")
    if env_val:
        return env_val.lower() not in ("false", "0", "no", "off")
    try:
        return str(current_app.config.get("API_AUTH_ENABLED", "true")).lower() not in ("false", "0", "no", "off")
    except RuntimeError:
        # Outside app context
        return True


def _get_api_key_from_request() -> Optional[str]:
    key = request.headers.get("X-API-Key", "").strip()
    return key or None


def _load_actor() -> None:
    """Copy the forwarded identity headers into ``g``.

    A malformed user id or an unknown role leaves the actor anonymous;
    ``require_role`` then answers 401.
    """
    g.current_user_id = None
    g.current_user_role = None

    raw_id = request.headers.get("X-User-Id", "").strip()
    raw_role = request.headers.get("X-User-Role", "").strip().lower()
    if not raw_id:
        return
    try:
        user_id = int(raw_id)
    except ValueError:
        logger.warning("Ignoring malformed X-User-Id header: %r", raw_id[:20])
        return
    if raw_role not in USER_ROLES:
        logger.warning("Ignoring unknown X-User-Role header: %r", raw_role[:20])
        return
    g.current_user_id = user_id
    g.current_user_role = raw_role


def current_user_id() -> Optional[int]:
    return getattr(g, "current_user_id", None)


# ── Authorization decorator ──────────────────────────────────────────────────

def require_role(*roles: str):
    """
    Decorator: require an authenticated actor holding one of ``roles``.

    Usage:
        @bp.route("/certifications", methods=["POST"])
        @require_role("mandate_owner")
        def create_certification(): ...

    The admin role passes every role check.
    """
    allowed = set(roles) | {"admin"}

    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user_role = getattr(g, "current_user_role", None)
            if not user_role or getattr(g, "current_user_id", None) is None:
                return api_error(E.UNAUTHORIZED, "Authentication required")

            if user_role not in allowed:
                logger.warning(
                    "Access denied: role '%s' tried to access %s (needs %s)",
                    user_role, request.path, "/".join(sorted(roles)),
                )
                return api_error(E.FORBIDDEN, "Insufficient permissions")

            return f(*args, **kwargs)
        return decorated
    return decorator


# ── CSRF protection for API ──────────────────────────────────────────────────

def _check_content_type():
    """
    For state-changing requests (POST/PUT/PATCH/DELETE), require
    Content-Type: application/json. HTML forms cannot send that type.
    """
    if request.method in ("POST", "PUT", "PATCH", "DELETE"):
        ct = request.content_type or ""
        if "application/json" not in ct and request.content_length and request.content_length > 0:
            return api_error(
                E.VALIDATION_INVALID,
                "Content-Type must be application/json for state-changing requests",
                status=415,
            )
    return None


# ── App-level before_request hook installer ──────────────────────────────────

def init_auth(app):
    """
    Install authentication middleware on the Flask app.

    - Attaches a before_request hook for API routes
    - Skips health routes and CORS pre-flight
    """
    @app.before_request
    def _before_request_auth():
        if not request.path.startswith("/api/v1/"):
            return None
        if request.path.startswith("/api/v1/health"):
            return None
        if request.method == "OPTIONS":
            return None

        csrf_error = _check_content_type()
        if csrf_error:
            return csrf_error

        if _is_auth_enabled():
            api_key = _get_api_key_from_request()
            if not api_key:
                return api_error(E.UNAUTHORIZED, "Authentication required. Provide X-API-Key header.")

            api_keys = _parse_api_keys()
            if not api_keys:
                logger.error("API_KEYS env var is not configured but API_AUTH_ENABLED=true")
                return api_error(E.INTERNAL, "Server authentication not configured")

            if api_key not in api_keys:
                logger.warning("Invalid API key attempt: %s...", api_key[:8])
                return api_error(E.UNAUTHORIZED, "Invalid API key")

        _load_actor()
        return None

    logger.info(
        "Auth middleware installed (enabled=%s)", _is_auth_enabled()
    )
