"""
Assignment Graph Manager.

Two-tier model:
    - Level 1 attesters answer directly.
    - A Level 2 reviewer owns one group; the group's Level 1 members must
      all submit before the reviewer is unlocked.

Saving assignments is replace-all, not append: the owner submits the
complete L1 and L2 lists, every existing row (and group) is deleted and
the new set is inserted in one commit. A failed save leaves the previous
assignments exactly as they were.

Only newly assigned Level 1 attesters are notified; reviewers hear from
the system when their group unlocks.
"""

from __future__ import annotations

import logging
from collections import Counter

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.models import db
from app.models.auth import User
from app.models.certification import AttestationGroup, AttestationResponse, CertificationAssignment
from app.services import cert_guards, level_unlock, mandate_service
from app.services.certification_service import get_managed_certification
from app.services.notification import (
    certification_assigned_message,
    dispatch_notifications,
    level_unlocked_message,
)
from app.utils.helpers import isoformat_utc

logger = logging.getLogger(__name__)

MAX_GROUP_KEY_LENGTH = 64


# ── Input parsing ─────────────────────────────────────────────────────────────


def _parse_entries(raw, label: str) -> list[tuple[int, str | None]]:
    """Turn ``[{user_id, group_id?}, ...]`` into ``[(user_id, group_key)]``."""
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError(f"{label} must be a list", details={label: "must be a list"})

    entries = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValidationError(
                f"{label}[{index}] must be an object",
                details={f"{label}[{index}]": "must be an object"},
            )
        user_id = item.get("user_id")
        if not isinstance(user_id, int) or isinstance(user_id, bool):
            raise ValidationError(
                f"{label}[{index}].user_id must be an integer",
                details={f"{label}[{index}].user_id": "must be an integer"},
            )
        group = item.get("group_id")
        if group is not None and not isinstance(group, bool) and isinstance(group, (str, int)):
            group = str(group).strip() or None
        elif group is not None:
            raise ValidationError(
                f"{label}[{index}].group_id must be a string",
                details={f"{label}[{index}].group_id": "must be a string"},
            )
        if group is not None and len(group) > MAX_GROUP_KEY_LENGTH:
            raise ValidationError(
                f"{label}[{index}].group_id is too long",
                details={f"{label}[{index}].group_id": f"max {MAX_GROUP_KEY_LENGTH} characters"},
            )
        entries.append((user_id, group))
    return entries


def _duplicates(values) -> list:
    return sorted(v for v, n in Counter(values).items() if n > 1)


def _validate_graph(l1: list[tuple[int, str | None]], l2: list[tuple[int, str | None]]) -> None:
    """All structural rules; raises before any row changes."""
    if not l1:
        raise ValidationError(
            "At least one Level 1 attester is required",
            details={"l1": "required"},
        )

    l1_ids = [uid for uid, _ in l1]
    l2_ids = [uid for uid, _ in l2]
    dupes = _duplicates(l1_ids) + _duplicates(l2_ids)
    if dupes:
        raise ValidationError(
            "An attester is listed more than once",
            details={"duplicates": sorted(set(dupes))},
        )

    both = sorted(set(l1_ids) & set(l2_ids))
    if both:
        raise ValidationError(
            "An attester cannot hold both levels on the same certification",
            details={"both_levels": both},
        )

    wanted = set(l1_ids) | set(l2_ids)
    roles = dict(
        db.session.execute(select(User.id, User.role).where(User.id.in_(wanted))).all()
    )
    missing = sorted(wanted - set(roles))
    if missing:
        raise NotFoundError(resource="User", resource_id=", ".join(str(m) for m in missing))

    # Only attesters can reach the save/submit endpoints.
    not_attesters = sorted(uid for uid, role in roles.items() if role != "attester")
    if not_attesters:
        raise ValidationError(
            "Only users with the attester role can be assigned",
            details={"not_attesters": not_attesters},
        )

    if not l2:
        return

    no_group = [uid for uid, key in l2 if key is None]
    if no_group:
        raise ValidationError(
            "Every Level 2 reviewer needs a group",
            details={"l2_missing_group": no_group},
        )
    dup_groups = _duplicates([key for _, key in l2])
    if dup_groups:
        raise ValidationError(
            "Each group can have only one Level 2 reviewer",
            details={"duplicate_groups": dup_groups},
        )

    l2_groups = {key for _, key in l2}
    orphans = [uid for uid, key in l1 if key is None or key not in l2_groups]
    if orphans:
        raise ValidationError(
            "Level 1 attesters must belong to a group with a Level 2 reviewer",
            details={"orphans": orphans},
        )


# ── Public API ────────────────────────────────────────────────────────────────


def replace_assignments(certification_id: int, l1_list, l2_list, *, actor_id: int) -> list[dict]:
    """
    Replace the certification's whole assignment graph.

    Args:
        l1_list: ``[{user_id, group_id?}]`` Level-1 attesters (non-empty).
        l2_list: ``[{user_id, group_id}]`` Level-2 reviewers, one per group.
                 When empty, Level-1 group ids are ignored.

    Returns:
        The stored assignments (``list_assignments`` shape).

    Raises:
        ClosedCertificationError, ForbiddenError, ValidationError,
        NotFoundError (unknown user), ConflictError (unique clash on insert).
    """
    cert = cert_guards.assert_mutable(certification_id)
    mandate_service.require_manager(cert.mandate, actor_id)

    l1 = _parse_entries(l1_list, "l1")
    l2 = _parse_entries(l2_list, "l2")
    _validate_graph(l1, l2)
    if not l2:
        l1 = [(uid, None) for uid, _ in l1]

    previous_ids = set(
        db.session.execute(
            select(CertificationAssignment.attester_id)
            .where(CertificationAssignment.certification_id == cert.id)
        ).scalars().all()
    )

    try:
        db.session.execute(
            delete(CertificationAssignment).where(CertificationAssignment.certification_id == cert.id)
        )
        db.session.execute(
            delete(AttestationGroup).where(AttestationGroup.certification_id == cert.id)
        )

        groups = {}
        for _, key in l2:
            group = AttestationGroup(certification_id=cert.id, group_key=key)
            db.session.add(group)
            groups[key] = group
        db.session.flush()

        for level, entries in ((1, l1), (2, l2)):
            for uid, key in entries:
                db.session.add(CertificationAssignment(
                    certification_id=cert.id,
                    attester_id=uid,
                    level=level,
                    group_id=groups[key].id if key is not None else None,
                ))
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning(
            "Assignment replace rejected by constraint: %s", exc.orig,
            extra={"certification_id": certification_id},
        )
        raise ConflictError(
            resource="CertificationAssignment",
            field="certification_id,attester_id",
            value=str(certification_id),
            message="Assignments changed concurrently; reload and try again",
        ) from exc
    except Exception:
        db.session.rollback()
        raise

    newly_assigned_l1 = [uid for uid, _ in l1 if uid not in previous_ids]
    logger.info(
        "Assignments replaced: %d L1, %d L2, %d new",
        len(l1), len(l2), len(newly_assigned_l1),
        extra={"certification_id": cert.id, "actor_id": actor_id},
    )
    dispatch_notifications(certification_assigned_message(cert, uid) for uid in newly_assigned_l1)
    return list_assignments(cert.id, actor_id=actor_id)


def unassign(certification_id: int, attester_id: int, *, actor_id: int) -> None:
    """
    Remove one attester from the certification.

    A group left without members is deleted. Removing a pending Level-1
    member can complete a group; the reviewer is then notified.
    """
    cert = cert_guards.assert_mutable(certification_id)
    mandate_service.require_manager(cert.mandate, actor_id)

    assignment = db.session.execute(
        select(CertificationAssignment).where(
            CertificationAssignment.certification_id == cert.id,
            CertificationAssignment.attester_id == attester_id,
        )
    ).scalar_one_or_none()
    if assignment is None:
        raise NotFoundError(resource="CertificationAssignment", resource_id=attester_id)

    group_pk = assignment.group_id
    was_pending_l1 = assignment.level == 1 and db.session.execute(
        select(AttestationResponse.id).where(
            AttestationResponse.certification_id == cert.id,
            AttestationResponse.attester_id == attester_id,
            AttestationResponse.status == "submitted",
        )
    ).first() is None

    db.session.delete(assignment)
    db.session.flush()

    unlock = level_unlock.UnlockResult(False)
    if group_pk is not None:
        remaining = db.session.execute(
            select(CertificationAssignment.id).where(CertificationAssignment.group_id == group_pk).limit(1)
        ).first()
        if remaining is None:
            db.session.execute(delete(AttestationGroup).where(AttestationGroup.id == group_pk))
        elif was_pending_l1:
            unlock = level_unlock.check_group_unlock(cert.id, group_pk)

    db.session.commit()
    logger.info(
        "Attester unassigned",
        extra={"certification_id": cert.id, "attester_id": attester_id, "actor_id": actor_id},
    )
    if unlock.should_unlock:
        dispatch_notifications([level_unlocked_message(cert, unlock.l2_attester_id)])


def list_assignments(certification_id: int, *, actor_id: int) -> list[dict]:
    """Assignments with attester identity and response status, L1 first."""
    cert = get_managed_certification(certification_id, actor_id)

    rows = db.session.execute(
        select(CertificationAssignment, User, AttestationResponse)
        .join(User, CertificationAssignment.attester_id == User.id)
        .outerjoin(
            AttestationResponse,
            (AttestationResponse.certification_id == CertificationAssignment.certification_id)
            & (AttestationResponse.attester_id == CertificationAssignment.attester_id),
        )
        .where(CertificationAssignment.certification_id == cert.id)
        .order_by(CertificationAssignment.level, User.full_name, User.id)
    ).all()

    items = []
    for assignment, user, response in rows:
        d = assignment.to_dict()
        d["attester_name"] = user.full_name
        d["attester_email"] = user.email
        d["response_status"] = response.status if response is not None else "pending"
        d["submitted_at"] = isoformat_utc(response.submitted_at) if response is not None else None
        items.append(d)
    return items
