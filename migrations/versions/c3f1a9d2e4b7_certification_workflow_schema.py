"""certification_workflow_schema

Create users, mandates, certifications, attestation_groups,
certification_assignments, attestation_responses and notifications.

Revision ID: c3f1a9d2e4b7
Revises:
Create Date: 2026-10-19 09:30:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "c3f1a9d2e4b7"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("full_name", sa.String(length=255), nullable=False),
            sa.Column("role", sa.String(length=20), nullable=False, server_default="attester"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("email"),
        )
        op.create_index("ix_users_role", "users", ["role"])

    if "mandates" not in existing_tables:
        op.create_table(
            "mandates",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("owner_id", sa.Integer(), nullable=False),
            sa.Column("backup_owner_id", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(length=10), nullable=False, server_default="open"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["owner_id"], ["users.id"]),
            sa.ForeignKeyConstraint(["backup_owner_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_mandates_owner_id", "mandates", ["owner_id"])
        op.create_index("ix_mandates_backup_owner_id", "mandates", ["backup_owner_id"])

    if "certifications" not in existing_tables:
        op.create_table(
            "certifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("mandate_id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=10), nullable=False, server_default="draft"),
            sa.Column("questions", sa.JSON(), nullable=False),
            sa.Column("deadline", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_by_id", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["mandate_id"], ["mandates.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["created_by_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_certifications_mandate_id", "certifications", ["mandate_id"])
        op.create_index("ix_certifications_status", "certifications", ["status"])
        op.create_index("ix_certifications_created_by_id", "certifications", ["created_by_id"])

    if "attestation_groups" not in existing_tables:
        op.create_table(
            "attestation_groups",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("certification_id", sa.Integer(), nullable=False),
            sa.Column("group_key", sa.String(length=64), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["certification_id"], ["certifications.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("certification_id", "group_key", name="uq_group_certification_key"),
        )
        op.create_index("ix_attestation_groups_certification_id", "attestation_groups", ["certification_id"])

    if "certification_assignments" not in existing_tables:
        op.create_table(
            "certification_assignments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("certification_id", sa.Integer(), nullable=False),
            sa.Column("attester_id", sa.Integer(), nullable=False),
            sa.Column("level", sa.SmallInteger(), nullable=False, server_default="1"),
            sa.Column("group_id", sa.Integer(), nullable=True),
            sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["certification_id"], ["certifications.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["attester_id"], ["users.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["group_id"], ["attestation_groups.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("certification_id", "attester_id", name="uq_assignment_certification_attester"),
            sa.CheckConstraint("level IN (1, 2)", name="ck_assignment_level"),
        )
        op.create_index(
            "ix_certification_assignments_certification_id", "certification_assignments", ["certification_id"]
        )
        op.create_index("ix_certification_assignments_attester_id", "certification_assignments", ["attester_id"])
        op.create_index("ix_certification_assignments_group_id", "certification_assignments", ["group_id"])

    if "attestation_responses" not in existing_tables:
        op.create_table(
            "attestation_responses",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("certification_id", sa.Integer(), nullable=False),
            sa.Column("attester_id", sa.Integer(), nullable=False),
            sa.Column("responses", sa.JSON(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="in_progress"),
            sa.Column("last_saved_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["certification_id"], ["certifications.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["attester_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("certification_id", "attester_id", name="uq_response_certification_attester"),
        )
        op.create_index(
            "ix_attestation_responses_certification_id", "attestation_responses", ["certification_id"]
        )
        op.create_index("ix_attestation_responses_attester_id", "attestation_responses", ["attester_id"])
        op.create_index("ix_attestation_responses_status", "attestation_responses", ["status"])

    if "notifications" not in existing_tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("type", sa.String(length=40), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("link", sa.String(length=500), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=True, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
        op.create_index("ix_notifications_user_unread", "notifications", ["user_id", "is_read"])


def downgrade():
    existing_tables = set(sa_inspect(op.get_bind()).get_table_names())

    for table in (
        "notifications",
        "attestation_responses",
        "certification_assignments",
        "attestation_groups",
        "certifications",
        "mandates",
        "users",
    ):
        if table in existing_tables:
            op.drop_table(table)
