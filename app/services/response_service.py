"""
Response Submission Pipeline.

An attester's answers live in one AttestationResponse row per
(certification, attester):

    (none) ──save──▶ in_progress ──submit──▶ submitted (write-once)
       └────────────────submit─────────────────┘

Shared preconditions for save and submit:
    - certification exists and is not closed
    - caller holds an assignment on it
    - no submitted response exists for the pair

Submit additionally checks every required question has a non-empty
answer, flushes, runs the Level-Unlock Engine in the same transaction and
commits. Notifications go out after the commit.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import NamedTuple

from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.models import db
from app.models.auth import User
from app.models.certification import AttestationResponse, Certification, CertificationAssignment
from app.models.mandate import Mandate
from app.services import cert_guards, level_unlock
from app.services.certification_service import get_managed_certification
from app.services.notification import (
    attestation_submitted_message,
    dispatch_notifications,
    level_unlocked_message,
)
from app.utils.helpers import ensure_utc, isoformat_utc, utcnow

logger = logging.getLogger(__name__)

_ANSWER_TYPES = (bool, str, list)


class SubmitResult(NamedTuple):
    response: AttestationResponse
    unlock: level_unlock.UnlockResult


# ── Private helpers ────────────────────────────────────────────────────────────


def _require_assignment(certification_id: int, attester_id: int) -> CertificationAssignment:
    assignment = db.session.execute(
        select(CertificationAssignment).where(
            CertificationAssignment.certification_id == certification_id,
            CertificationAssignment.attester_id == attester_id,
        )
    ).scalar_one_or_none()
    if assignment is None:
        raise ForbiddenError("Not assigned to this certification")
    return assignment


def _lock_response(certification_id: int, attester_id: int) -> AttestationResponse | None:
    return db.session.execute(
        select(AttestationResponse)
        .where(
            AttestationResponse.certification_id == certification_id,
            AttestationResponse.attester_id == attester_id,
        )
        .with_for_update()
    ).scalar_one_or_none()


def _write_once_violation() -> ConflictError:
    return ConflictError(
        resource="AttestationResponse",
        field="status",
        value="submitted",
        message="Cannot modify a submitted attestation",
    )


def _normalise_answers(answers) -> list[dict]:
    """Shape check only: a list of objects each carrying a string question_id."""
    if not isinstance(answers, list):
        raise ValidationError("answers must be a list", details={"answers": "must be a list"})

    cleaned = []
    errors = {}
    for index, item in enumerate(answers):
        if not isinstance(item, dict) or not isinstance(item.get("question_id"), str) or not item["question_id"]:
            errors[f"answers[{index}]"] = "must be an object with a string question_id"
            continue
        value = item.get("answer")
        if value is not None and not isinstance(value, _ANSWER_TYPES):
            errors[item["question_id"]] = "answer must be a boolean, text or list of text"
            continue
        if isinstance(value, list) and not all(isinstance(v, str) for v in value):
            errors[item["question_id"]] = "list answers must contain text only"
            continue
        entry = {"question_id": item["question_id"], "answer": value}
        comments = item.get("comments")
        if comments is not None:
            if not isinstance(comments, str):
                errors[item["question_id"]] = "comments must be text"
                continue
            entry["comments"] = comments
        cleaned.append(entry)

    if errors:
        raise ValidationError("Malformed answers", details=errors)
    return cleaned


def _missing_answers(questions: list[dict], answers: list[dict]) -> dict[str, str]:
    """Field errors keyed by question id for required questions left empty."""
    by_id = {a["question_id"]: a for a in answers}
    field_errors = {}
    for question in questions or []:
        answer = by_id.get(question["id"])
        value = answer.get("answer") if answer else None
        is_choice = question.get("type") == "multiple_choice"

        if not question.get("required"):
            if is_choice and value not in (None, "") and not isinstance(value, list):
                field_errors[question["id"]] = "Please select at least one option"
            continue

        if value is None or value == "":
            field_errors[question["id"]] = "This question is required"
        elif is_choice and (not isinstance(value, list) or not value):
            field_errors[question["id"]] = "Please select at least one option"
        elif value == []:
            field_errors[question["id"]] = "This question is required"
    return field_errors


def _next_saved_at(previous) -> datetime:
    """Now, nudged past ``previous`` so last_saved_at strictly increases."""
    now = utcnow()
    previous = ensure_utc(previous)
    if previous is not None and now <= previous:
        return previous + timedelta(microseconds=1)
    return now


def _commit_or_conflict(certification_id: int, attester_id: int) -> None:
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning(
            "Concurrent response write rejected: %s", exc.orig,
            extra={"certification_id": certification_id, "attester_id": attester_id},
        )
        raise ConflictError(
            resource="AttestationResponse",
            field="certification_id,attester_id",
            value=f"{certification_id},{attester_id}",
            message="Response was written concurrently; reload and try again",
        ) from exc


def _prepare(certification_id: int, attester_id: int, answers):
    cert = cert_guards.assert_mutable(certification_id)
    _require_assignment(cert.id, attester_id)
    cleaned = _normalise_answers(answers)
    response = _lock_response(cert.id, attester_id)
    if response is not None and response.is_submitted:
        raise _write_once_violation()
    return cert, cleaned, response


# ── Save / submit ─────────────────────────────────────────────────────────────


def save_progress(certification_id: int, attester_id: int, answers):
    """
    Upsert the attester's draft answers.

    Safe to retry: saving identical answers twice leaves them unchanged and
    only advances ``last_saved_at``.

    Returns:
        The new ``last_saved_at``.
    """
    cert, cleaned, response = _prepare(certification_id, attester_id, answers)

    if response is None:
        response = AttestationResponse(certification_id=cert.id, attester_id=attester_id)
        db.session.add(response)

    response.responses = cleaned
    response.status = "in_progress"
    saved_at = _next_saved_at(response.last_saved_at)
    response.last_saved_at = saved_at
    _commit_or_conflict(cert.id, attester_id)

    logger.debug(
        "Progress saved",
        extra={"certification_id": cert.id, "attester_id": attester_id},
    )
    return saved_at


def submit(certification_id: int, attester_id: int, answers) -> SubmitResult:
    """
    Validate and submit the attester's final answers.

    Raises:
        ValidationError: details map question id → message for every
            required question without an answer. No row is written.
        ConflictError: already submitted, or a concurrent duplicate insert.
    """
    cert, cleaned, response = _prepare(certification_id, attester_id, answers)

    field_errors = _missing_answers(cert.questions, cleaned)
    if field_errors:
        raise ValidationError("Validation failed", details=field_errors)

    if response is None:
        response = AttestationResponse(certification_id=cert.id, attester_id=attester_id)
        db.session.add(response)

    now = _next_saved_at(response.last_saved_at)
    response.responses = cleaned
    response.status = "submitted"
    response.submitted_at = now
    response.last_saved_at = now
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise _write_once_violation()

    unlock = level_unlock.check_level_unlock(cert.id, attester_id)
    _commit_or_conflict(cert.id, attester_id)
    logger.info(
        "Attestation submitted",
        extra={"certification_id": cert.id, "attester_id": attester_id, "event_type": "attestation_submitted"},
    )

    messages = []
    if unlock.should_unlock and unlock.l2_attester_id is not None:
        messages.append(level_unlocked_message(cert, unlock.l2_attester_id))
    attester = db.session.get(User, attester_id)
    for manager_id in cert.mandate.manager_ids():
        messages.append(attestation_submitted_message(cert, manager_id, attester))
    dispatch_notifications(messages)

    return SubmitResult(response, unlock)


# ── Read models ───────────────────────────────────────────────────────────────


def get_attester_view(certification_id: int, attester_id: int) -> dict:
    """
    What an assigned attester sees for one certification.

    ``readonly`` is true once submitted or closed. ``locked`` is true for a
    Level-2 reviewer whose group has not fully submitted; it is advisory.
    """
    cert = db.session.get(Certification, certification_id)
    if cert is None or cert.status == "draft":
        raise NotFoundError(resource="Certification", resource_id=certification_id)
    assignment = _require_assignment(cert.id, attester_id)

    response = db.session.execute(
        select(AttestationResponse).where(
            AttestationResponse.certification_id == cert.id,
            AttestationResponse.attester_id == attester_id,
        )
    ).scalar_one_or_none()

    submitted = response is not None and response.is_submitted
    return {
        "certification": {
            "id": cert.id,
            "title": cert.title,
            "description": cert.description,
            "status": cert.status,
            "deadline": isoformat_utc(cert.deadline),
            "questions": list(cert.questions or []),
            "mandate_name": cert.mandate.name,
        },
        "level": assignment.level,
        "response": response.to_dict() if response is not None else None,
        "readonly": submitted or cert.is_closed,
        "locked": not level_unlock.is_reviewer_unlocked(cert.id, attester_id),
    }


def list_attestations_for(attester_id: int) -> list[dict]:
    """The attester's published certifications with their own response status."""
    rows = db.session.execute(
        select(CertificationAssignment, Certification, Mandate.name, AttestationResponse)
        .join(Certification, CertificationAssignment.certification_id == Certification.id)
        .join(Mandate, Certification.mandate_id == Mandate.id)
        .outerjoin(
            AttestationResponse,
            and_(
                AttestationResponse.certification_id == CertificationAssignment.certification_id,
                AttestationResponse.attester_id == CertificationAssignment.attester_id,
            ),
        )
        .where(
            CertificationAssignment.attester_id == attester_id,
            Certification.status != "draft",
        )
        .order_by(Certification.deadline.is_(None), Certification.deadline, Certification.id)
    ).all()

    items = []
    for assignment, cert, mandate_name, response in rows:
        items.append({
            "certification_id": cert.id,
            "title": cert.title,
            "mandate_name": mandate_name,
            "certification_status": cert.status,
            "deadline": isoformat_utc(cert.deadline),
            "level": assignment.level,
            "response_status": response.status if response is not None else "pending",
            "last_saved_at": isoformat_utc(response.last_saved_at) if response is not None else None,
            "submitted_at": isoformat_utc(response.submitted_at) if response is not None else None,
            "locked": assignment.level == 2 and not level_unlock.is_reviewer_unlocked(cert.id, attester_id),
        })
    return items


def list_responses(certification_id: int, *, actor_id: int) -> dict:
    """Owner view: one row per assigned attester plus completion stats."""
    cert = get_managed_certification(certification_id, actor_id)

    rows = db.session.execute(
        select(CertificationAssignment, User, AttestationResponse)
        .join(User, CertificationAssignment.attester_id == User.id)
        .outerjoin(
            AttestationResponse,
            and_(
                AttestationResponse.certification_id == CertificationAssignment.certification_id,
                AttestationResponse.attester_id == CertificationAssignment.attester_id,
            ),
        )
        .where(CertificationAssignment.certification_id == cert.id)
        .order_by(CertificationAssignment.level, User.full_name, User.id)
    ).all()

    items = []
    for assignment, user, response in rows:
        items.append({
            "attester_id": user.id,
            "attester_name": user.full_name,
            "attester_email": user.email,
            "level": assignment.level,
            "status": response.status if response is not None else "pending",
            "last_saved_at": isoformat_utc(response.last_saved_at) if response is not None else None,
            "submitted_at": isoformat_utc(response.submitted_at) if response is not None else None,
        })

    total = len(items)
    submitted = sum(1 for item in items if item["status"] == "submitted")
    return {
        "certification": cert.to_dict(include_questions=False),
        "responses": items,
        "stats": {
            "total": total,
            "submitted": submitted,
            "percentage": round(submitted / total * 100) if total else 0,
        },
    }


def get_response_detail(certification_id: int, attester_id: int, *, actor_id: int) -> dict:
    """Owner view of one attester's answers alongside the questions."""
    cert = get_managed_certification(certification_id, actor_id)
    attester = db.session.get(User, attester_id)
    if attester is None:
        raise NotFoundError(resource="User", resource_id=attester_id)

    response = db.session.execute(
        select(AttestationResponse).where(
            AttestationResponse.certification_id == cert.id,
            AttestationResponse.attester_id == attester_id,
        )
    ).scalar_one_or_none()
    if response is None:
        raise NotFoundError(resource="AttestationResponse", resource_id=attester_id)

    return {
        "certification": cert.to_dict(),
        "attester": {"id": attester.id, "full_name": attester.full_name, "email": attester.email},
        "response": response.to_dict(),
    }
