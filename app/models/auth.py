"""
Auth Models — local user directory.

Credentials and sessions are owned by the upstream auth collaborator; this
table only holds the identity and role that foreign keys and ownership
checks need.
"""

from datetime import datetime, timezone

from app.models import db
from app.utils.helpers import isoformat_utc

# ── Constants ────────────────────────────────────────────────────────────────

USER_ROLES = ("admin", "mandate_owner", "attester")


# ═══════════════════════════════════════════════════════════════
# USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True)
    full_name = db.Column(db.String(255), nullable=False)
    role = db.Column(
        db.String(20),
        nullable=False,
        default="attester",
        comment="admin | mandate_owner | attester",
    )
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.Index("ix_users_role", "role"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "created_at": isoformat_utc(self.created_at),
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email} ({self.role})>"
