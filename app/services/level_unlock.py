"""
Level-Unlock Engine.

A Level-2 reviewer's work becomes available once every Level-1 member of
their group has a submitted response. The check is a pure function of
persisted state: nothing is cached, so repeating it is safe and a repeat
after full submission returns the same positive result.
"""

from __future__ import annotations

import logging
from typing import NamedTuple

from sqlalchemy import and_, func, select

from app.models import db
from app.models.certification import AttestationGroup, AttestationResponse, CertificationAssignment

logger = logging.getLogger(__name__)


class UnlockResult(NamedTuple):
    should_unlock: bool
    l2_attester_id: int | None = None
    group_id: str | None = None


_LOCKED = UnlockResult(False)


def _group_l1_counts(certification_id: int, group_pk: int) -> tuple[int, int]:
    """(total Level-1 members, Level-1 members with a submitted response)."""
    total = db.session.execute(
        select(func.count(CertificationAssignment.id)).where(
            CertificationAssignment.certification_id == certification_id,
            CertificationAssignment.group_id == group_pk,
            CertificationAssignment.level == 1,
        )
    ).scalar_one()

    submitted = db.session.execute(
        select(func.count(CertificationAssignment.id))
        .join(
            AttestationResponse,
            and_(
                AttestationResponse.certification_id == CertificationAssignment.certification_id,
                AttestationResponse.attester_id == CertificationAssignment.attester_id,
            ),
        )
        .where(
            CertificationAssignment.certification_id == certification_id,
            CertificationAssignment.group_id == group_pk,
            CertificationAssignment.level == 1,
            AttestationResponse.status == "submitted",
        )
    ).scalar_one()
    return total, submitted


def check_group_unlock(certification_id: int, group_pk: int) -> UnlockResult:
    """Evaluate one group: unlocked when every Level-1 member has submitted."""
    total_l1, submitted_l1 = _group_l1_counts(certification_id, group_pk)
    if total_l1 == 0 or submitted_l1 != total_l1:
        return _LOCKED

    row = db.session.execute(
        select(CertificationAssignment.attester_id, AttestationGroup.group_key)
        .join(AttestationGroup, CertificationAssignment.group_id == AttestationGroup.id)
        .where(
            CertificationAssignment.certification_id == certification_id,
            CertificationAssignment.group_id == group_pk,
            CertificationAssignment.level == 2,
        )
    ).first()
    if row is None:
        return _LOCKED
    return UnlockResult(True, row.attester_id, row.group_key)


def check_level_unlock(certification_id: int, submitted_attester_id: int) -> UnlockResult:
    """
    Decide whether the submitter's submission unlocks their group's reviewer.

    Returns ``should_unlock=False`` when the submitter is unassigned, is a
    Level-2 reviewer, or has no group.
    """
    assignment = db.session.execute(
        select(CertificationAssignment).where(
            CertificationAssignment.certification_id == certification_id,
            CertificationAssignment.attester_id == submitted_attester_id,
        )
    ).scalar_one_or_none()
    if assignment is None or assignment.level != 1 or assignment.group_id is None:
        return _LOCKED

    result = check_group_unlock(certification_id, assignment.group_id)
    if result.should_unlock:
        logger.info(
            "Level 2 review unlocked",
            extra={
                "certification_id": certification_id,
                "attester_id": result.l2_attester_id,
                "event_type": "level_unlocked",
            },
        )
    return result


def is_reviewer_unlocked(certification_id: int, attester_id: int) -> bool:
    """
    True unless the attester is a Level-2 reviewer whose group is still waiting.

    Level-1 and standalone attesters are never locked.
    """
    assignment = db.session.execute(
        select(CertificationAssignment).where(
            CertificationAssignment.certification_id == certification_id,
            CertificationAssignment.attester_id == attester_id,
        )
    ).scalar_one_or_none()
    if assignment is None or assignment.level != 2 or assignment.group_id is None:
        return True
    return check_group_unlock(certification_id, assignment.group_id).should_unlock
