"""
Mandate Service — admin CRUD plus the ownership check every
certification operation depends on.

Ownership rule:
    The mandate owner and the optional backup owner are equally entitled
    to manage the mandate's certifications. Nobody else is, admin included.
"""

from __future__ import annotations

import logging

from sqlalchemy import or_, select

from app.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from app.models import db
from app.models.auth import User
from app.models.mandate import MANDATE_STATUSES, Mandate

logger = logging.getLogger(__name__)


def get_mandate(mandate_id: int) -> Mandate:
    mandate = db.session.get(Mandate, mandate_id)
    if mandate is None:
        raise NotFoundError(resource="Mandate", resource_id=mandate_id)
    return mandate


def require_manager(mandate: Mandate, actor_id: int | None) -> None:
    """Raise ForbiddenError unless the actor owns or backs up the mandate."""
    if not mandate.is_managed_by(actor_id):
        logger.warning(
            "Mandate access denied",
            extra={"mandate_id": mandate.id, "actor_id": actor_id},
        )
        raise ForbiddenError("You do not manage this mandate")


def get_managed_mandate(mandate_id: int, actor_id: int | None) -> Mandate:
    mandate = get_mandate(mandate_id)
    require_manager(mandate, actor_id)
    return mandate


def list_managed_mandates(actor_id: int) -> list[Mandate]:
    """Mandates the actor owns or backs up, by name."""
    stmt = (
        select(Mandate)
        .where(or_(Mandate.owner_id == actor_id, Mandate.backup_owner_id == actor_id))
        .order_by(Mandate.name)
    )
    return list(db.session.execute(stmt).scalars().all())


def list_mandates(status: str | None = None) -> list[Mandate]:
    stmt = select(Mandate).order_by(Mandate.name)
    if status:
        stmt = stmt.where(Mandate.status == status)
    return list(db.session.execute(stmt).scalars().all())


def _require_user(user_id, field: str) -> User:
    if not isinstance(user_id, int) or isinstance(user_id, bool):
        raise ValidationError(f"{field} must be an integer", details={field: "must be an integer"})
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(resource="User", resource_id=user_id)
    return user


def _require_owner_user(user_id, field: str) -> User:
    user = _require_user(user_id, field)
    if user.role != "mandate_owner":
        raise ValidationError(
            f"{field} must reference a mandate owner",
            details={field: "must have the mandate_owner role"},
        )
    return user


def _clean_name(raw) -> str:
    name = (raw or "").strip() if isinstance(raw, str) else ""
    if not name:
        raise ValidationError("name is required", details={"name": "required"})
    if len(name) > 255:
        raise ValidationError("name is too long", details={"name": "max 255 characters"})
    return name


def _check_status(status) -> str:
    if status not in MANDATE_STATUSES:
        raise ValidationError(
            f"status must be one of {', '.join(MANDATE_STATUSES)}",
            details={"status": status},
        )
    return status


def create_mandate(data: dict) -> Mandate:
    """
    Create a mandate.

    Args:
        data: name (required), description, owner_id (required),
              backup_owner_id, status (default open).

    Raises:
        ValidationError: missing name, bad status, owner without the
            mandate_owner role, backup equals owner.
        NotFoundError: owner or backup owner does not exist.
    """
    name = _clean_name(data.get("name"))
    status = _check_status(data.get("status") or "open")

    owner = _require_owner_user(data.get("owner_id"), "owner_id")
    backup_id = data.get("backup_owner_id")
    if backup_id is not None:
        backup = _require_owner_user(backup_id, "backup_owner_id")
        if backup.id == owner.id:
            raise ValidationError(
                "backup owner must differ from owner",
                details={"backup_owner_id": "same as owner"},
            )

    mandate = Mandate(
        name=name,
        description=data.get("description") or None,
        owner_id=owner.id,
        backup_owner_id=backup_id,
        status=status,
    )
    db.session.add(mandate)
    db.session.commit()
    logger.info("Mandate created", extra={"mandate_id": mandate.id, "owner_id": owner.id})
    return mandate


def update_mandate(mandate_id: int, data: dict) -> Mandate:
    """
    Partial update; only keys present in ``data`` change.

    ``backup_owner_id: null`` removes the backup owner. Closing a mandate
    does not touch its certifications. Every field is validated before
    anything is assigned.
    """
    mandate = get_mandate(mandate_id)

    changes = {}
    if "name" in data:
        changes["name"] = _clean_name(data["name"])
    if "description" in data:
        changes["description"] = data["description"] or None
    if "status" in data:
        changes["status"] = _check_status(data["status"])
    if "owner_id" in data:
        changes["owner_id"] = _require_owner_user(data["owner_id"], "owner_id").id
    if "backup_owner_id" in data:
        backup_id = data["backup_owner_id"]
        changes["backup_owner_id"] = (
            None if backup_id is None else _require_owner_user(backup_id, "backup_owner_id").id
        )

    owner_id = changes.get("owner_id", mandate.owner_id)
    backup_id = changes.get("backup_owner_id", mandate.backup_owner_id)
    if backup_id is not None and backup_id == owner_id:
        raise ValidationError(
            "backup owner must differ from owner",
            details={"backup_owner_id": "same as owner"},
        )

    for field, value in changes.items():
        setattr(mandate, field, value)
    db.session.commit()
    logger.info("Mandate updated", extra={"mandate_id": mandate.id, "owner_id": mandate.owner_id})
    return mandate
