"""
Certification Workflow Service
Question Generator Assistant.

Pipeline:
    1. Validate the requirement text (1..AI_REQUIREMENT_MAX_CHARS chars)
    2. Render the ``question_generator`` prompt
    3. Call the LLM gateway
    4. Parse the JSON array, normalise each item, keep at most 5

The result is a *draft*: the mandate owner edits it and saving it onto a
certification runs it through question_schema.validate_questions.
"""

import json
import logging
import re

from app.core.exceptions import AIUnavailableError, QuestionGenerationError, ValidationError
from app.models.certification import OPTION_QUESTION_TYPES, QUESTION_TYPES

logger = logging.getLogger(__name__)

MAX_GENERATED_QUESTIONS = 5


class QuestionGenerator:
    """AI-assisted drafting of certification questions."""

    def __init__(self, gateway=None, prompt_registry=None, *, max_chars: int = 2000,
                 max_questions: int = MAX_GENERATED_QUESTIONS):
        self.gateway = gateway
        self.prompt_registry = prompt_registry
        self.max_chars = max_chars
        self.max_questions = max_questions

    def generate(self, requirement) -> list[dict]:
        """
        Draft questions for a requirement.

        Raises:
            ValidationError: requirement empty or too long.
            AIUnavailableError: gateway or prompt missing.
            QuestionGenerationError: provider failure or unusable output.
        """
        if not isinstance(requirement, str) or not requirement.strip():
            raise ValidationError("Requirement text is required", details={"requirement": "required"})
        if len(requirement) > self.max_chars:
            raise ValidationError(
                f"Requirement text is too long (max {self.max_chars} characters)",
                details={"requirement": f"max {self.max_chars} characters"},
            )
        if self.gateway is None or self.prompt_registry is None:
            raise AIUnavailableError("Question generation is not configured")

        try:
            messages = self.prompt_registry.render(
                "question_generator",
                requirement=requirement.strip(),
                max_questions=self.max_questions,
            )
        except KeyError as exc:
            raise AIUnavailableError("question_generator prompt template not found") from exc

        try:
            llm_response = self.gateway.chat(messages=messages, purpose="question_generator")
        except AIUnavailableError:
            raise
        except Exception as exc:
            logger.error("QuestionGenerator LLM call failed: %s", exc)
            raise QuestionGenerationError(f"AI generation failed: {exc}") from exc

        items = self._parse_response(llm_response.get("content", ""))
        questions = [self._normalise(item) for item in items]
        return questions[: self.max_questions]

    @staticmethod
    def _parse_response(content: str) -> list:
        """Strip code fences and decode the JSON array."""
        cleaned = (content or "").strip()
        if cleaned.startswith("```"):
            cleaned = re.sub(r'^```\w*\n?', '', cleaned)
            cleaned = re.sub(r'\n?```$', '', cleaned)

        try:
            parsed = json.loads(cleaned)
        except json.JSONDecodeError:
            match = re.search(r"\[.*\]", cleaned, re.DOTALL)
            if not match:
                raise QuestionGenerationError("Failed to parse AI response as JSON")
            try:
                parsed = json.loads(match.group())
            except json.JSONDecodeError as exc:
                raise QuestionGenerationError("Failed to parse AI response as JSON") from exc

        if not isinstance(parsed, list):
            raise QuestionGenerationError("AI response is not an array")
        return parsed

    @staticmethod
    def _normalise(item) -> dict:
        if not isinstance(item, dict):
            raise QuestionGenerationError("Invalid question structure: item is not an object")
        text = item.get("question")
        if not isinstance(text, str) or not text.strip():
            raise QuestionGenerationError("Invalid question structure: missing or invalid question text")
        qtype = item.get("type")
        if qtype not in QUESTION_TYPES:
            raise QuestionGenerationError(f"Invalid question type: {qtype}")

        question = {"question": text.strip(), "type": qtype, "required": item.get("required") is True}
        if qtype == "yes_no" and "allow_comments" in item:
            question["allow_comments"] = item.get("allow_comments") is True
        if qtype in OPTION_QUESTION_TYPES:
            options = item.get("options")
            if not isinstance(options, list) or len(options) < 2:
                raise QuestionGenerationError("Dropdown/multiple choice must have at least 2 options")
            question["options"] = [str(o) for o in options]
        return question
