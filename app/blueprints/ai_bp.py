"""
Certification Workflow Service
AI Blueprint — question drafting for certification authors.

Endpoints:
    GENERATE   /api/v1/ai/generate-questions     POST
    PROMPTS    /api/v1/ai/prompts                GET

Generated questions are a draft: nothing is persisted here. The author
edits the list and saves it onto a certification, where it is validated
like any hand-written question set.

Rate limit (10/minute) is applied to the whole blueprint in
app.middleware.rate_limiter.
"""

import logging

from flask import Blueprint, current_app, jsonify

from app.ai.assistants import QuestionGenerator
from app.ai.gateway import LLMGateway
from app.ai.prompt_registry import PromptRegistry
from app.auth import require_role
from app.blueprints import json_object_body
from app.utils.errors import E, api_error, register_service_error_handlers

logger = logging.getLogger(__name__)

ai_bp = Blueprint("ai", __name__, url_prefix="/api/v1/ai")
register_service_error_handlers(ai_bp)


# ── Lazy singletons stored on Flask app (test-isolation safe) ───────────────

def _get_prompt_registry():
    ext = current_app.extensions
    if "prompt_registry" not in ext:
        ext["prompt_registry"] = PromptRegistry(current_app.config.get("PROMPTS_DIR"))
    return ext["prompt_registry"]


def _get_question_generator():
    ext = current_app.extensions
    if "question_generator" not in ext:
        ext["question_generator"] = QuestionGenerator(
            gateway=LLMGateway.from_config(current_app.config),
            prompt_registry=_get_prompt_registry(),
            max_chars=current_app.config.get("AI_REQUIREMENT_MAX_CHARS", 2000),
            max_questions=current_app.config.get("MAX_QUESTIONS", 5),
        )
    return ext["question_generator"]


@ai_bp.route("/generate-questions", methods=["POST"])
@require_role("mandate_owner")
def generate_questions():
    """
    POST /api/v1/ai/generate-questions
    Body: { requirement: str }  (1..AI_REQUIREMENT_MAX_CHARS characters)
    """
    data = json_object_body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    requirement = data.get("requirement")
    if not isinstance(requirement, str) or not requirement.strip():
        return api_error(E.VALIDATION_REQUIRED, "requirement is required")

    questions = _get_question_generator().generate(requirement)
    logger.info("Generated %d draft questions", len(questions))
    return jsonify({"questions": questions, "total": len(questions)}), 200


@ai_bp.route("/prompts", methods=["GET"])
@require_role("admin")
def list_prompts():
    """List registered prompt templates."""
    templates = _get_prompt_registry().list_templates()
    return jsonify({"prompts": templates, "total": len(templates)}), 200
