"""
User directory service — admin-managed identities the workflow references.

Role changes and deletions are refused while they would break a live
reference: a mandate owner must keep the mandate_owner role while they
own or back up a mandate, and an attester must keep the attester role
while assigned to a certification that is not closed.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.models import db
from app.models.auth import USER_ROLES, User
from app.models.certification import AttestationResponse, Certification, CertificationAssignment
from app.models.mandate import MANDATE_STATUSES, Mandate

logger = logging.getLogger(__name__)


def _check_role(role) -> str:
    if role not in USER_ROLES:
        raise ValidationError(
            f"role must be one of {', '.join(USER_ROLES)}",
            details={"role": f"must be one of {', '.join(USER_ROLES)}"},
        )
    return role


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(resource="User", resource_id=user_id)
    return user


def create_user(data: dict) -> User:
    email = (data.get("email") or "").strip().lower()
    full_name = (data.get("full_name") or "").strip()
    role = data.get("role") or "attester"

    errors = {}
    if not email or "@" not in email:
        errors["email"] = "a valid email is required"
    if not full_name:
        errors["full_name"] = "required"
    if role not in USER_ROLES:
        errors["role"] = f"must be one of {', '.join(USER_ROLES)}"
    if errors:
        raise ValidationError("Invalid user", details=errors)

    existing = db.session.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if existing is not None:
        raise ConflictError(resource="User", field="email", value=email)

    user = User(email=email, full_name=full_name, role=role)
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(resource="User", field="email", value=email)
    logger.info("User created", extra={"user_id": user.id, "role": role})
    return user


def list_users(role: str | None = None) -> list[User]:
    stmt = select(User).order_by(User.full_name)
    if role:
        stmt = stmt.where(User.role == _check_role(role))
    return list(db.session.execute(stmt).scalars().all())


def _managed_mandate_ids(user_id: int) -> list[int]:
    return list(db.session.execute(
        select(Mandate.id)
        .where(or_(Mandate.owner_id == user_id, Mandate.backup_owner_id == user_id))
        .order_by(Mandate.id)
    ).scalars().all())


def _live_assignment_ids(user_id: int) -> list[int]:
    """Certifications (not closed) the user is assigned to."""
    return list(db.session.execute(
        select(CertificationAssignment.certification_id)
        .join(Certification, CertificationAssignment.certification_id == Certification.id)
        .where(CertificationAssignment.attester_id == user_id, Certification.status != "closed")
        .order_by(CertificationAssignment.certification_id)
    ).scalars().all())


def update_user(user_id: int, data: dict) -> User:
    """
    Change a user's full name and/or role.

    Raises:
        ValidationError: blank name or unknown role.
        ConflictError: the role change would orphan a mandate or an
            open assignment.
    """
    user = get_user(user_id)

    full_name = user.full_name
    if "full_name" in data:
        full_name = (data.get("full_name") or "").strip()
        if not full_name:
            raise ValidationError("full_name is required", details={"full_name": "required"})

    role = user.role
    if "role" in data:
        role = _check_role(data.get("role"))

    if role != user.role:
        if user.role == "mandate_owner" and _managed_mandate_ids(user.id):
            raise ConflictError(
                resource="User", field="role", value=role,
                message="User still owns or backs up mandates; reassign them first",
            )
        if user.role == "attester" and _live_assignment_ids(user.id):
            raise ConflictError(
                resource="User", field="role", value=role,
                message="User is assigned to certifications that are not closed",
            )

    user.full_name = full_name
    user.role = role
    db.session.commit()
    logger.info("User updated", extra={"user_id": user.id, "role": role})
    return user


def delete_user(user_id: int, *, actor_id: int | None = None) -> None:
    """
    Delete a user who holds no workflow references.

    Users that manage a mandate, hold an assignment or have answered a
    certification are kept so the attestation record stays complete.
    Certifications they authored keep ``created_by_id = NULL``.
    """
    user = get_user(user_id)
    if actor_id is not None and user.id == actor_id:
        raise ConflictError(
            resource="User", field="id", value=str(user_id),
            message="You cannot delete your own account",
        )

    if _managed_mandate_ids(user.id):
        raise ConflictError(
            resource="User", field="id", value=str(user_id),
            message="User still owns or backs up mandates",
        )
    has_history = db.session.execute(
        select(CertificationAssignment.id).where(CertificationAssignment.attester_id == user.id).limit(1)
    ).first() or db.session.execute(
        select(AttestationResponse.id).where(AttestationResponse.attester_id == user.id).limit(1)
    ).first()
    if has_history:
        raise ConflictError(
            resource="User", field="id", value=str(user_id),
            message="User has certification assignments or responses",
        )

    db.session.execute(
        update(Certification).where(Certification.created_by_id == user.id).values(created_by_id=None)
    )
    db.session.delete(user)
    db.session.commit()
    logger.info("User deleted", extra={"user_id": user_id, "actor_id": actor_id})


def admin_stats() -> dict:
    """User counts by role and mandate counts by status."""
    by_role = dict(db.session.execute(
        select(User.role, func.count(User.id)).group_by(User.role)
    ).all())
    by_status = dict(db.session.execute(
        select(Mandate.status, func.count(Mandate.id)).group_by(Mandate.status)
    ).all())
    return {
        "users": {
            "total": sum(by_role.values()),
            "by_role": {role: by_role.get(role, 0) for role in USER_ROLES},
        },
        "mandates": {
            "total": sum(by_status.values()),
            "by_status": {status: by_status.get(status, 0) for status in MANDATE_STATUSES},
        },
    }
