"""
Mandate domain model.

A mandate is the accountable compliance unit. Its owner and optional
backup owner are both authorised to manage the mandate's certifications.
Mandate status (open/closed) is independent of certification status.
"""

from datetime import datetime, timezone

from app.models import db
from app.utils.helpers import isoformat_utc

MANDATE_STATUSES = ("open", "closed")


class Mandate(db.Model):
    __tablename__ = "mandates"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    owner_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=False, index=True,
    )
    backup_owner_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=True, index=True,
    )
    status = db.Column(db.String(10), nullable=False, default="open", comment="open | closed")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    owner = db.relationship("User", foreign_keys=[owner_id])
    backup_owner = db.relationship("User", foreign_keys=[backup_owner_id])
    certifications = db.relationship(
        "Certification",
        back_populates="mandate",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="dynamic",
    )

    def is_managed_by(self, user_id) -> bool:
        """True when the user is the owner or the backup owner."""
        if user_id is None:
            return False
        return user_id in (self.owner_id, self.backup_owner_id)

    def manager_ids(self) -> list[int]:
        """Owner first, then backup owner when set and distinct."""
        ids = [self.owner_id]
        if self.backup_owner_id and self.backup_owner_id != self.owner_id:
            ids.append(self.backup_owner_id)
        return ids

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "owner_id": self.owner_id,
            "backup_owner_id": self.backup_owner_id,
            "status": self.status,
            "created_at": isoformat_utc(self.created_at),
            "updated_at": isoformat_utc(self.updated_at),
        }

    def __repr__(self):
        return f"<Mandate {self.id}: {self.name[:40]}>"
