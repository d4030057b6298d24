"""
Certification lifecycle guards.

    draft ──publish──▶ open ──close──▶ closed (terminal)

Every mutating operation on assignments or responses calls
``assert_mutable`` first. Publish and close call their own gate.
Guards never commit and never change state.
"""

from __future__ import annotations

import logging

from flask import current_app, has_app_context
from sqlalchemy import select

from app.core.exceptions import ClosedCertificationError, NotFoundError, ValidationError
from app.models import db
from app.models.certification import AttestationResponse, Certification, CertificationAssignment

logger = logging.getLogger(__name__)


def assert_mutable(certification_id: int) -> Certification:
    """
    Return the certification when it can still change.

    Raises:
        NotFoundError: no such certification.
        ClosedCertificationError: status is closed.
    """
    cert = db.session.get(Certification, certification_id)
    if cert is None:
        raise NotFoundError(resource="Certification", resource_id=certification_id)
    if cert.is_closed:
        raise ClosedCertificationError(certification_id)
    return cert


def assert_publishable(certification: Certification) -> None:
    """Publishing needs at least one question (and a deadline when configured)."""
    if not certification.questions:
        raise ValidationError(
            "Cannot publish a certification without questions",
            details={"questions": "at least one question is required"},
        )
    requires_deadline = has_app_context() and current_app.config.get("PUBLISH_REQUIRES_DEADLINE", False)
    if requires_deadline and certification.deadline is None:
        raise ValidationError(
            "Cannot publish a certification without a deadline",
            details={"deadline": "required to publish"},
        )


def pending_attester_ids(certification_id: int) -> list[int]:
    """Assigned attesters without a submitted response, sorted."""
    assigned = set(
        db.session.execute(
            select(CertificationAssignment.attester_id)
            .where(CertificationAssignment.certification_id == certification_id)
        ).scalars().all()
    )
    submitted = set(
        db.session.execute(
            select(AttestationResponse.attester_id)
            .where(
                AttestationResponse.certification_id == certification_id,
                AttestationResponse.status == "submitted",
            )
        ).scalars().all()
    )
    return sorted(assigned - submitted)


def assert_closable(certification_id: int) -> None:
    """
    Closing needs at least one assignment and every assigned attester
    submitted. Compares id sets, not counts.

    Raises:
        ValidationError: details.pending lists the attester ids still outstanding.
    """
    has_assignments = db.session.execute(
        select(CertificationAssignment.id)
        .where(CertificationAssignment.certification_id == certification_id)
        .limit(1)
    ).first()
    if has_assignments is None:
        raise ValidationError(
            "Cannot close a certification with no assignments",
            details={"assignments": "none"},
        )

    pending = pending_attester_ids(certification_id)
    if pending:
        logger.info(
            "Close refused, attesters pending",
            extra={"certification_id": certification_id, "pending": pending},
        )
        raise ValidationError(
            f"Cannot close: {len(pending)} assigned attester(s) have not submitted",
            details={"pending": pending},
        )
