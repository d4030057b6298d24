"""
Certification Service — create, edit, publish, close and report on
certification campaigns.

Transaction policy:
    - Every public mutator commits exactly once and rolls back on failure.
    - Notification events are dispatched only after the commit; a failed
      delivery never undoes the certification change.

Edit rules:
    - draft: every field may change.
    - open: title, description and questions may change (assigned attesters
      receive ``certification_updated``); an existing deadline may only move
      later.
    - closed: nothing may change.
"""

from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy import func, select

from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.models import db
from app.models.certification import (
    CERTIFICATION_STATUSES,
    AttestationResponse,
    Certification,
    CertificationAssignment,
)
from app.models.mandate import Mandate
from app.services import cert_guards, mandate_service
from app.services.notification import certification_updated_message, dispatch_notifications
from app.services.question_schema import validate_questions
from app.utils.helpers import ensure_utc, parse_datetime, utcnow

logger = logging.getLogger(__name__)


# ── Private helpers ────────────────────────────────────────────────────────────


def _max_questions() -> int:
    return current_app.config.get("MAX_QUESTIONS", 5)


def _clean_title(value) -> str:
    title = (value or "").strip() if isinstance(value, str) else ""
    if not title:
        raise ValidationError("title is required", details={"title": "required"})
    if len(title) > 255:
        raise ValidationError("title is too long", details={"title": "max 255 characters"})
    return title


def _parse_deadline(value):
    try:
        return parse_datetime(value)
    except ValueError as exc:
        raise ValidationError(str(exc), details={"deadline": "invalid datetime"}) from exc


def _completion(certification_id: int) -> dict:
    assigned = db.session.execute(
        select(func.count(CertificationAssignment.id))
        .where(CertificationAssignment.certification_id == certification_id)
    ).scalar_one()
    completed = db.session.execute(
        select(func.count(AttestationResponse.id))
        .where(
            AttestationResponse.certification_id == certification_id,
            AttestationResponse.status == "submitted",
        )
    ).scalar_one()
    percentage = round(completed / assigned * 100) if assigned else 0
    return {
        "assigned_count": assigned,
        "completed_count": completed,
        "completion_percentage": percentage,
    }


# ── Read ───────────────────────────────────────────────────────────────────────


def get_certification(certification_id: int) -> Certification:
    cert = db.session.get(Certification, certification_id)
    if cert is None:
        raise NotFoundError(resource="Certification", resource_id=certification_id)
    return cert


def get_managed_certification(certification_id: int, actor_id: int) -> Certification:
    """Fetch a certification and check the actor manages its mandate."""
    cert = get_certification(certification_id)
    mandate_service.require_manager(cert.mandate, actor_id)
    return cert


def list_certifications(actor_id: int, *, mandate_id: int | None = None, status: str | None = None) -> list[dict]:
    """
    Certifications under the actor's mandates, with completion counters.

    Args:
        mandate_id: optional filter; must be one of the actor's mandates.
        status: optional filter (draft/open/closed); ``all`` means no filter.

    Raises:
        NotFoundError: ``mandate_id`` does not exist.
        ForbiddenError: the actor does not manage ``mandate_id``.
    """
    if mandate_id is not None:
        mandate_service.get_managed_mandate(mandate_id, actor_id)

    mandate_ids = [m.id for m in mandate_service.list_managed_mandates(actor_id)]
    if not mandate_ids:
        return []

    stmt = (
        select(Certification, Mandate.name)
        .join(Mandate, Certification.mandate_id == Mandate.id)
        .where(Certification.mandate_id.in_(mandate_ids))
        .order_by(Certification.created_at.desc(), Certification.id.desc())
    )
    if mandate_id is not None:
        stmt = stmt.where(Certification.mandate_id == mandate_id)
    if status and status != "all":
        if status not in CERTIFICATION_STATUSES:
            raise ValidationError(f"Unknown status {status!r}", details={"status": status})
        stmt = stmt.where(Certification.status == status)

    items = []
    for cert, mandate_name in db.session.execute(stmt).all():
        d = cert.to_dict(include_questions=False)
        d["mandate_name"] = mandate_name
        d.update(_completion(cert.id))
        items.append(d)
    return items


def owner_stats(actor_id: int) -> dict:
    """Dashboard counters across the actor's mandates."""
    mandate_ids = [m.id for m in mandate_service.list_managed_mandates(actor_id)]
    if not mandate_ids:
        return {
            "total_mandates": 0,
            "total_certifications": 0,
            "active_certifications": 0,
            "completion_data": [],
        }

    total = db.session.execute(
        select(func.count(Certification.id)).where(Certification.mandate_id.in_(mandate_ids))
    ).scalar_one()
    open_certs = db.session.execute(
        select(Certification)
        .where(Certification.mandate_id.in_(mandate_ids), Certification.status == "open")
        .order_by(Certification.id)
    ).scalars().all()

    return {
        "total_mandates": len(mandate_ids),
        "total_certifications": total,
        "active_certifications": len(open_certs),
        "completion_data": [
            {
                "certification_id": c.id,
                "title": c.title,
                "completion_percentage": _completion(c.id)["completion_percentage"],
            }
            for c in open_certs
        ],
    }


# ── Create / update / delete ─────────────────────────────────────────────────


def create_certification(data: dict, *, actor_id: int) -> Certification:
    """
    Create a draft certification under a mandate the actor manages.

    Raises:
        ValidationError: bad title, questions or deadline.
        NotFoundError / ForbiddenError: mandate missing or not managed.
    """
    mandate_id = data.get("mandate_id")
    if not isinstance(mandate_id, int) or isinstance(mandate_id, bool):
        raise ValidationError("mandate_id is required", details={"mandate_id": "required"})
    mandate = mandate_service.get_managed_mandate(mandate_id, actor_id)

    cert = Certification(
        mandate_id=mandate.id,
        title=_clean_title(data.get("title")),
        description=data.get("description") or None,
        questions=validate_questions(data.get("questions") or [], _max_questions()),
        deadline=_parse_deadline(data.get("deadline")),
        status="draft",
        created_by_id=actor_id,
    )
    db.session.add(cert)
    db.session.commit()
    logger.info(
        "Certification created",
        extra={"certification_id": cert.id, "mandate_id": mandate.id, "actor_id": actor_id},
    )
    return cert


def update_certification(certification_id: int, data: dict, *, actor_id: int) -> Certification:
    """
    Apply a partial update.

    Only keys present in ``data`` change. Moving a certification to another
    mandate requires managing both mandates and is allowed in draft only.

    Raises:
        ClosedCertificationError: certification is closed.
        ValidationError: bad field, deadline moved earlier or cleared while open.
    """
    cert = cert_guards.assert_mutable(certification_id)
    mandate_service.require_manager(cert.mandate, actor_id)
    was_open = cert.status == "open"

    # Validate everything before touching the instance
    changes = {}
    if "mandate_id" in data and data["mandate_id"] != cert.mandate_id:
        if was_open:
            raise ValidationError(
                "Cannot move an open certification to another mandate",
                details={"mandate_id": "locked once published"},
            )
        changes["mandate_id"] = mandate_service.get_managed_mandate(data["mandate_id"], actor_id).id

    if "title" in data:
        changes["title"] = _clean_title(data.get("title"))
    if "description" in data:
        changes["description"] = data.get("description") or None
    if "questions" in data:
        questions = validate_questions(data.get("questions") or [], _max_questions())
        if was_open and not questions:
            raise ValidationError(
                "An open certification must keep at least one question",
                details={"questions": "at least one question is required"},
            )
        changes["questions"] = questions

    if "deadline" in data:
        new_deadline = _parse_deadline(data.get("deadline"))
        current = ensure_utc(cert.deadline)
        if was_open and current is not None:
            if new_deadline is None:
                raise ValidationError(
                    "The deadline of an open certification cannot be removed",
                    details={"deadline": "cannot be cleared once open"},
                )
            if new_deadline < current:
                raise ValidationError(
                    "The deadline of an open certification can only be extended",
                    details={"deadline": "must not be earlier than the current deadline"},
                )
        changes["deadline"] = new_deadline

    for field, value in changes.items():
        setattr(cert, field, value)
    cert.updated_at = utcnow()
    db.session.commit()
    logger.info("Certification updated", extra={"certification_id": cert.id, "actor_id": actor_id})

    if was_open:
        attester_ids = db.session.execute(
            select(CertificationAssignment.attester_id)
            .where(CertificationAssignment.certification_id == cert.id)
            .order_by(CertificationAssignment.id)
        ).scalars().all()
        dispatch_notifications(certification_updated_message(cert, uid) for uid in attester_ids)
    return cert


def delete_certification(certification_id: int, *, actor_id: int) -> None:
    """Delete a draft certification. Published campaigns are kept for audit."""
    cert = get_managed_certification(certification_id, actor_id)
    if cert.status != "draft":
        raise ConflictError(
            resource="Certification",
            field="status",
            value=cert.status,
            message="Only draft certifications can be deleted",
        )
    db.session.delete(cert)
    db.session.commit()
    logger.info("Certification deleted", extra={"certification_id": certification_id, "actor_id": actor_id})


# ── Lifecycle transitions ─────────────────────────────────────────────────────


def publish_certification(certification_id: int, *, actor_id: int) -> Certification:
    """
    draft → open.

    Raises:
        ClosedCertificationError: already closed.
        ConflictError: already open.
        ValidationError: no questions (or no deadline when required).
    """
    cert = cert_guards.assert_mutable(certification_id)
    mandate_service.require_manager(cert.mandate, actor_id)
    if cert.status == "open":
        raise ConflictError(
            resource="Certification",
            field="status",
            value=cert.status,
            message="Certification is already published",
        )
    cert_guards.assert_publishable(cert)

    now = utcnow()
    cert.status = "open"
    cert.published_at = now
    cert.updated_at = now
    db.session.commit()
    logger.info("Certification published", extra={"certification_id": cert.id, "actor_id": actor_id})
    return cert


def close_certification(certification_id: int, *, actor_id: int) -> Certification:
    """
    open → closed, once every assigned attester has submitted.

    Idempotent: closing a closed certification returns it unchanged.

    Raises:
        ValidationError: no assignments, or attesters pending (details.pending).
    """
    cert = get_managed_certification(certification_id, actor_id)
    if cert.is_closed:
        return cert
    if cert.status != "open":
        raise ConflictError(
            resource="Certification",
            field="status",
            value=cert.status,
            message="Only published certifications can be closed",
        )

    cert_guards.assert_closable(cert.id)

    now = utcnow()
    cert.status = "closed"
    cert.closed_at = now
    cert.updated_at = now
    db.session.commit()
    logger.info("Certification closed", extra={"certification_id": cert.id, "actor_id": actor_id})
    return cert
