"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in app/__init__.py with no default limits;
this module applies granular limits per route category.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

AI_LIMIT = "10/minute"
WRITE_LIMIT = "60/minute"

_WRITE_BLUEPRINTS = ("mandate_owner", "attester", "admin")


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - AI endpoints:        10/minute  (LLM calls are expensive)
        - Workflow endpoints:  60/minute
        - Health check:        exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    # AI blueprint: strict limit (LLM calls)
    bp = app.blueprints.get("ai")
    if bp:
        limiter.limit(AI_LIMIT)(bp)

    for bp_name in _WRITE_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT)(bp)

    # Health checks are exempt
    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured — AI: %s, workflow: %s", AI_LIMIT, WRITE_LIMIT)
