"""Tests: question list validation and normalisation."""

import pytest

from app.core.exceptions import ValidationError
from app.services.question_schema import validate_questions


def test_normalises_shape():
    result = validate_questions([
        {"id": "q1", "question": " Access reviewed? ", "type": "yes_no", "required": True, "allow_comments": True},
        {"question": "Frequency", "type": "dropdown", "options": ["Monthly", " Quarterly "]},
        {"id": "q3", "question": "Notes", "type": "text", "options": ["ignored", "too"], "allow_comments": True},
    ])

    assert result[0] == {
        "id": "q1", "question": "Access reviewed?", "type": "yes_no",
        "required": True, "allow_comments": True,
    }
    assert result[1]["id"].startswith("q-")
    assert result[1]["options"] == ["Monthly", "Quarterly"]
    assert result[1]["required"] is False
    assert "options" not in result[2]
    assert "allow_comments" not in result[2]


def test_none_and_empty():
    assert validate_questions(None) == []
    assert validate_questions([]) == []


def test_limit():
    with pytest.raises(ValidationError) as exc:
        validate_questions([{"question": f"Q{i}", "type": "text"} for i in range(6)])
    assert "questions" in exc.value.details


@pytest.mark.parametrize("item, field", [
    ({"type": "text"}, "questions[0].question"),
    ({"question": "Q", "type": "essay"}, "questions[0].type"),
    ({"question": "Q", "type": "multiple_choice", "options": ["only one"]}, "questions[0].options"),
    ({"question": "Q", "type": "dropdown", "options": ["a", " "]}, "questions[0].options"),
    ({"question": "Q", "type": "dropdown"}, "questions[0].options"),
    ("not an object", "questions[0]"),
])
def test_field_errors(item, field):
    with pytest.raises(ValidationError) as exc:
        validate_questions([item])
    assert field in exc.value.details


def test_duplicate_ids():
    with pytest.raises(ValidationError) as exc:
        validate_questions([
            {"id": "q1", "question": "A", "type": "text"},
            {"id": "q1", "question": "B", "type": "date"},
        ])
    assert "questions[1].id" in exc.value.details


def test_not_a_list():
    with pytest.raises(ValidationError):
        validate_questions({"question": "A"})
