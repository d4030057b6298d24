"""
Certification Workflow Service
Notification domain model.

Models:
    - Notification: in-app notification record written by the default sink
"""

from datetime import datetime, timezone

from app.models import db
from app.utils.helpers import isoformat_utc


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_TYPES = {
    "certification_assigned",
    "certification_updated",
    "attestation_submitted",
    "level_unlocked",
}


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event.
    """

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    type = db.Column(db.String(40), nullable=False, comment="certification_assigned | level_unlocked | ...")
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    link = db.Column(db.String(500), nullable=True)

    # Read tracking
    is_read = db.Column(db.Boolean, default=False)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.Index("ix_notifications_user_unread", "user_id", "is_read"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "link": self.link,
            "is_read": self.is_read,
            "created_at": isoformat_utc(self.created_at),
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"
