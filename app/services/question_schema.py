"""
Question schema validation.

Normalises a certification's question list before it is stored:

    {id, question, type, options?, allow_comments?, required}

- text accepted under ``question`` or ``text``; stored as ``question``
- ``options`` (≥2 non-blank strings) only for dropdown / multiple_choice
- ``allow_comments`` only for yes_no
- ``required`` is true only when the input is literally ``True``
- missing ids become ``q-<hex>``; ids must be unique in the list
"""

from __future__ import annotations

import uuid

from app.core.exceptions import ValidationError
from app.models.certification import OPTION_QUESTION_TYPES, QUESTION_TYPES

DEFAULT_MAX_QUESTIONS = 5


def _new_question_id() -> str:
    return f"q-{uuid.uuid4().hex[:12]}"


def _normalise_one(raw, index: int, errors: dict) -> dict | None:
    key = f"questions[{index}]"
    if not isinstance(raw, dict):
        errors[key] = "must be an object"
        return None

    text = raw.get("question", raw.get("text"))
    if not isinstance(text, str) or not text.strip():
        errors[f"{key}.question"] = "question text is required"
        return None

    qtype = raw.get("type")
    if qtype not in QUESTION_TYPES:
        errors[f"{key}.type"] = f"type must be one of {', '.join(QUESTION_TYPES)}"
        return None

    qid = raw.get("id")
    if qid is None or (isinstance(qid, str) and not qid.strip()):
        qid = _new_question_id()
    elif not isinstance(qid, (str, int)) or isinstance(qid, bool):
        errors[f"{key}.id"] = "id must be a string"
        return None

    question = {
        "id": str(qid).strip(),
        "question": text.strip(),
        "type": qtype,
        "required": raw.get("required") is True,
    }

    if qtype in OPTION_QUESTION_TYPES:
        options = raw.get("options")
        if not isinstance(options, list):
            errors[f"{key}.options"] = "options must be a list"
            return None
        cleaned = [o.strip() for o in options if isinstance(o, str) and o.strip()]
        if len(cleaned) < 2 or len(cleaned) != len(options):
            errors[f"{key}.options"] = "at least two non-blank text options are required"
            return None
        question["options"] = cleaned

    if qtype == "yes_no":
        question["allow_comments"] = raw.get("allow_comments") is True

    return question


def validate_questions(raw_questions, max_questions: int = DEFAULT_MAX_QUESTIONS) -> list[dict]:
    """
    Validate and normalise a question list.

    Returns:
        The normalised list, in input order.

    Raises:
        ValidationError: details keyed by ``questions[i].<field>``.
    """
    if raw_questions is None:
        return []
    if not isinstance(raw_questions, list):
        raise ValidationError("questions must be a list", details={"questions": "must be a list"})
    if len(raw_questions) > max_questions:
        raise ValidationError(
            f"A certification can have at most {max_questions} questions",
            details={"questions": f"at most {max_questions} allowed"},
        )

    errors: dict[str, str] = {}
    normalised = []
    seen: set[str] = set()
    for index, raw in enumerate(raw_questions):
        question = _normalise_one(raw, index, errors)
        if question is None:
            continue
        if question["id"] in seen:
            errors[f"questions[{index}].id"] = f"duplicate id {question['id']!r}"
        seen.add(question["id"])
        normalised.append(question)

    if errors:
        raise ValidationError("Invalid questions", details=errors)
    return normalised
