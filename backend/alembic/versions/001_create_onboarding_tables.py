"""Create onboarding tables

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

What:  Creates `applications`, `users` and `audit_logs`.
How:   Ids are 24-char hex strings generated by the application. Nested KYC,
       bank, company and document data are PostgreSQL JSON columns.
       `applications` is created first because users.application_id points at it.

Rollback: downgrade() drops all three tables (destructive).
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

OPEN_STATUS_PREDICATE = "status NOT IN ('completed', 'rejected')"


def upgrade() -> None:
    op.create_table(
        "applications",
        sa.Column("id", sa.String(24), nullable=False),
        sa.Column("entity_type", sa.String(32), nullable=False),
        sa.Column("company_sub_type", sa.String(16), nullable=True),

        # Derived from completed_steps on every write unless terminal
        sa.Column(
            "status",
            sa.String(32),
            nullable=False,
            server_default=sa.text("'initiated'"),
        ),
        sa.Column("completed_steps", sa.JSON(), nullable=False),
        sa.Column("phone", sa.String(10), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),

        # Nested sub-documents
        sa.Column("kyc", sa.JSON(), nullable=False),
        sa.Column("bank", sa.JSON(), nullable=True),
        sa.Column("references", sa.JSON(), nullable=False),
        sa.Column("documents", sa.JSON(), nullable=False),
        sa.Column("partners", sa.JSON(), nullable=False),
        sa.Column("company", sa.JSON(), nullable=True),
        sa.Column("agreement", sa.JSON(), nullable=True),
        sa.Column("business", sa.JSON(), nullable=True),

        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_applications_phone", "applications", ["phone"])
    op.create_index("idx_applications_phone_status", "applications", ["phone", "status"])

    # At most one non-terminal application per phone
    op.create_index(
        "uq_applications_open_phone",
        "applications",
        ["phone"],
        unique=True,
        postgresql_where=sa.text(OPEN_STATUS_PREDICATE),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.String(24), nullable=False),
        sa.Column(
            "phone",
            sa.String(10),
            nullable=False,
            comment="10-digit Indian mobile number; login identity",
        ),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column(
            "application_id",
            sa.String(24),
            sa.ForeignKey("applications.id", ondelete="SET NULL"),
            nullable=True,
            comment="Application currently attached to this login",
        ),

        # sha256 digests only; plain values never stored
        sa.Column("otp_hash", sa.String(64), nullable=True),
        sa.Column("otp_expires_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("otp_attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("refresh_token_hash", sa.String(64), nullable=True),
        sa.Column("refresh_token_expires_at", sa.TIMESTAMP(timezone=True), nullable=True),

        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("last_login_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_phone", "users", ["phone"], unique=True)
    op.create_index("ix_users_refresh_token_hash", "users", ["refresh_token_hash"])

    # Append-only compliance trail
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(24), nullable=False),
        sa.Column("user_id", sa.String(24), nullable=True),
        sa.Column("application_id", sa.String(24), nullable=True),
        sa.Column("phone", sa.String(10), nullable=True),
        sa.Column("action", sa.String(300), nullable=False, comment="METHOD path"),
        sa.Column("category", sa.String(20), nullable=False),
        sa.Column("status", sa.String(10), nullable=False, comment="success | failure"),
        sa.Column("method", sa.String(10), nullable=False),
        sa.Column("path", sa.String(255), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=False),
        sa.Column("ip", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("request_data", sa.JSON(), nullable=True),
        sa.Column("response_data", sa.JSON(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("duration_ms", sa.Float(), nullable=False),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_user_id", "audit_logs", ["user_id"])
    op.create_index("ix_audit_logs_application_id", "audit_logs", ["application_id"])
    op.create_index("ix_audit_logs_phone", "audit_logs", ["phone"])
    op.create_index("idx_audit_logs_created_at", "audit_logs", [sa.text("created_at DESC")])
    op.create_index(
        "idx_audit_logs_category_created_at", "audit_logs", ["category", "created_at"]
    )


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_index("ix_users_refresh_token_hash", table_name="users")
    op.drop_index("ix_users_phone", table_name="users")
    op.drop_table("users")
    op.drop_index("uq_applications_open_phone", table_name="applications")
    op.drop_index("idx_applications_phone_status", table_name="applications")
    op.drop_index("ix_applications_phone", table_name="applications")
    op.drop_table("applications")
