"""
Certification domain models.

Models:
    - Certification: one attestation campaign under a Mandate
    - AttestationGroup: one Level-2 slot plus its Level-1 members
    - CertificationAssignment: (certification, attester, level, group)
    - AttestationResponse: one attester's answer set for a certification

Lifecycle:
    draft ──publish──▶ open ──close──▶ closed (terminal)

Questions and answers are stored as JSON lists; their shape is enforced
in app.services.question_schema and app.services.response_service.
"""

from datetime import datetime, timezone

from app.models import db
from app.utils.helpers import isoformat_utc

# ── Constants ────────────────────────────────────────────────────────────────

CERTIFICATION_STATUSES = ("draft", "open", "closed")
QUESTION_TYPES = ("yes_no", "dropdown", "multiple_choice", "text", "date")
OPTION_QUESTION_TYPES = frozenset({"dropdown", "multiple_choice"})
ATTESTATION_LEVELS = (1, 2)
RESPONSE_STATUSES = ("in_progress", "submitted")


# ── Certification ────────────────────────────────────────────────────────────


class Certification(db.Model):
    """
    Attestation campaign.

    Business rules (enforced in services, not here):
    - draft → open requires at least one question.
    - Once open, an existing deadline may only move later.
    - open → closed requires every assigned attester to have submitted.
    - closed is terminal: no question, assignment or response changes.
    """

    __tablename__ = "certifications"

    id = db.Column(db.Integer, primary_key=True)
    mandate_id = db.Column(
        db.Integer,
        db.ForeignKey("mandates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(
        db.String(10),
        nullable=False,
        default="draft",
        index=True,
        comment="draft | open | closed",
    )
    questions = db.Column(db.JSON, nullable=False, default=list)
    deadline = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=True, index=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    published_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    mandate = db.relationship("Mandate", back_populates="certifications")
    assignments = db.relationship(
        "CertificationAssignment",
        back_populates="certification",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="dynamic",
    )
    groups = db.relationship(
        "AttestationGroup",
        back_populates="certification",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="dynamic",
    )
    responses = db.relationship(
        "AttestationResponse",
        back_populates="certification",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="dynamic",
    )

    @property
    def is_closed(self) -> bool:
        return self.status == "closed"

    def to_dict(self, include_questions=True):
        d = {
            "id": self.id,
            "mandate_id": self.mandate_id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "deadline": isoformat_utc(self.deadline),
            "created_by_id": self.created_by_id,
            "created_at": isoformat_utc(self.created_at),
            "updated_at": isoformat_utc(self.updated_at),
            "published_at": isoformat_utc(self.published_at),
            "closed_at": isoformat_utc(self.closed_at),
        }
        if include_questions:
            d["questions"] = list(self.questions or [])
        return d

    def __repr__(self):
        return f"<Certification {self.id}: {self.title[:40]} [{self.status}]>"


# ── Attestation group ────────────────────────────────────────────────────────


class AttestationGroup(db.Model):
    """
    Explicit group entity: one Level-2 reviewer slot owning many Level-1 slots.

    group_key is the identifier the mandate owner supplied when saving
    assignments; it is only unique within a certification.
    """

    __tablename__ = "attestation_groups"

    id = db.Column(db.Integer, primary_key=True)
    certification_id = db.Column(
        db.Integer,
        db.ForeignKey("certifications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    group_key = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    certification = db.relationship("Certification", back_populates="groups")
    members = db.relationship(
        "CertificationAssignment",
        back_populates="group",
        passive_deletes=True,
        lazy="dynamic",
    )

    __table_args__ = (
        db.UniqueConstraint("certification_id", "group_key", name="uq_group_certification_key"),
    )

    def __repr__(self):
        return f"<AttestationGroup {self.id}: cert={self.certification_id} key={self.group_key}>"


# ── Assignment ───────────────────────────────────────────────────────────────


class CertificationAssignment(db.Model):
    """
    (Certification, Attester, Level) with an optional group.

    One row per (certification, attester): an attester can never hold both
    levels on the same certification.
    """

    __tablename__ = "certification_assignments"

    id = db.Column(db.Integer, primary_key=True)
    certification_id = db.Column(
        db.Integer,
        db.ForeignKey("certifications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    attester_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    level = db.Column(db.SmallInteger, nullable=False, default=1, comment="1 = primary attester, 2 = reviewer")
    group_id = db.Column(
        db.Integer,
        db.ForeignKey("attestation_groups.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
        comment="NULL for a standalone Level-1 attester",
    )
    assigned_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    certification = db.relationship("Certification", back_populates="assignments")
    group = db.relationship("AttestationGroup", back_populates="members")
    attester = db.relationship("User")

    __table_args__ = (
        db.UniqueConstraint("certification_id", "attester_id", name="uq_assignment_certification_attester"),
        db.CheckConstraint("level IN (1, 2)", name="ck_assignment_level"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "certification_id": self.certification_id,
            "attester_id": self.attester_id,
            "level": self.level,
            "group_id": self.group.group_key if self.group is not None else None,
            "assigned_at": isoformat_utc(self.assigned_at),
        }

    def __repr__(self):
        return f"<CertificationAssignment cert={self.certification_id} attester={self.attester_id} L{self.level}>"


# ── Response ─────────────────────────────────────────────────────────────────


class AttestationResponse(db.Model):
    """
    One attester's answer set.

    Mutable while status=in_progress; write-once after status=submitted.
    """

    __tablename__ = "attestation_responses"

    id = db.Column(db.Integer, primary_key=True)
    certification_id = db.Column(
        db.Integer,
        db.ForeignKey("certifications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    attester_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    responses = db.Column(db.JSON, nullable=False, default=list)
    status = db.Column(
        db.String(20),
        nullable=False,
        default="in_progress",
        index=True,
        comment="in_progress | submitted",
    )
    last_saved_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc),
    )
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    certification = db.relationship("Certification", back_populates="responses")

    __table_args__ = (
        db.UniqueConstraint("certification_id", "attester_id", name="uq_response_certification_attester"),
    )

    @property
    def is_submitted(self) -> bool:
        return self.status == "submitted"

    def to_dict(self):
        return {
            "id": self.id,
            "certification_id": self.certification_id,
            "attester_id": self.attester_id,
            "status": self.status,
            "answers": list(self.responses or []),
            "last_saved_at": isoformat_utc(self.last_saved_at),
            "submitted_at": isoformat_utc(self.submitted_at),
        }

    def __repr__(self):
        return f"<AttestationResponse cert={self.certification_id} attester={self.attester_id} [{self.status}]>"
