"""
Startup diagnostics — runs once when the Flask app starts.

Checks the database and the question-generation provider and logs a
summary banner.
"""

import logging
import os
import sys

from flask import Flask
from sqlalchemy import inspect as sa_inspect

from app.models import db

logger = logging.getLogger(__name__)


def run_startup_diagnostics(app: Flask):
    """Run diagnostic checks during app startup (inside app context)."""
    if app.config.get("TESTING"):
        return  # skip during tests for speed

    issues: list[str] = []

    with app.app_context():
        py = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"

        # ── Database connectivity ────────────────────────────────────
        db_status = "ok"
        db_uri = str(app.config.get("SQLALCHEMY_DATABASE_URI", ""))
        db_type = "PostgreSQL" if "postgresql" in db_uri else "SQLite" if "sqlite" in db_uri else "unknown"
        try:
            db.session.execute(db.text("SELECT 1"))
        except Exception as exc:
            db_status = "FAILED"
            issues.append(f"Database unreachable: {exc}")

        # ── Table count ──────────────────────────────────────────────
        try:
            table_count = len(sa_inspect(db.engine).get_table_names())
            if table_count == 0:
                issues.append("No tables found — run 'flask db upgrade'")
        except Exception:
            table_count = "?"

        auth_enabled = str(app.config.get("API_AUTH_ENABLED", "false")).lower() == "true"

        # ── Question generation provider ─────────────────────────────
        if os.getenv("GEMINI_API_KEY"):
            llm_status = "gemini"
        elif app.config.get("LLM_ALLOW_STUB"):
            llm_status = "local stub"
        else:
            llm_status = "NOT CONFIGURED"
            issues.append("GEMINI_API_KEY not set — question generation will answer 503")

        banner = f"""
╔══════════════════════════════════════════════════════════════╗
║  Certification Workflow Service — Startup Diagnostics        ║
╠══════════════════════════════════════════════════════════════╣
║  Python      : {py:<46s}║
║  Debug       : {str(app.debug):<46s}║
║  Database    : {f"{db_type} ({db_status})":<46s}║
║  Tables      : {str(table_count):<46s}║
║  Auth        : {'ENABLED' if auth_enabled else 'DISABLED':<46s}║
║  LLM         : {llm_status:<46s}║
╚══════════════════════════════════════════════════════════════╝"""
        logger.info(banner)

        if issues:
            logger.warning("Startup issues detected:")
            for issue in issues:
                logger.warning("  ⚠ %s", issue)
        else:
            logger.info("All startup checks passed")
