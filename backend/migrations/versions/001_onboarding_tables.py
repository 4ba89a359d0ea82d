"""Create onboarding tables: child forms, trackers, verification codes.

Revision ID: 001_onboarding_tables
Revises: 000_enable_extensions
Create Date: 2026-10-18

Child forms are created first; the tracker references each of them with
a nullable SET NULL foreign key so a cleanup batch can delete children
before their trackers inside one transaction.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

revision: str = "001_onboarding_tables"
down_revision: str | None = "000_enable_extensions"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_FORM_TABLES = (
    "pre_qualifications",
    "application_forms",
    "policies_consents",
    "drive_tests",
    "drug_tests",
    "carriers_edge_trainings",
    "flatbed_trainings",
)

# Tracker column -> child table
_FORM_REFS = (
    ("pre_qualification_id", "pre_qualifications"),
    ("driver_application_id", "application_forms"),
    ("policies_consents_id", "policies_consents"),
    ("drive_test_id", "drive_tests"),
    ("drug_test_id", "drug_tests"),
    ("carriers_edge_training_id", "carriers_edge_trainings"),
    ("flatbed_training_id", "flatbed_trainings"),
)


def _uuid_pk() -> sa.Column:
    return sa.Column(
        "id",
        sa.UUID(),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    # =========================================================================
    # Child forms
    # =========================================================================

    for table in _FORM_TABLES:
        extra = []
        if table == "application_forms":
            extra.append(sa.Column("contact_email", sa.String(255), nullable=True))
        op.create_table(
            table,
            _uuid_pk(),
            sa.Column(
                "payload",
                JSONB(),
                nullable=False,
                server_default=sa.text("'{}'::jsonb"),
            ),
            *extra,
            *_timestamps(),
        )

    # =========================================================================
    # Trackers
    # =========================================================================

    op.create_table(
        "onboarding_trackers",
        _uuid_pk(),
        sa.Column("applicant_identity_hash", sa.String(64), nullable=False),
        sa.Column("applicant_identity_encrypted", sa.Text(), nullable=False),
        sa.Column("company_id", sa.String(40), nullable=False),
        sa.Column("application_type", sa.String(20), nullable=True),
        sa.Column("current_step", sa.String(40), nullable=False),
        sa.Column("completed_step", sa.String(40), nullable=True),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("terminated", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("termination_type", sa.String(20), nullable=True),
        sa.Column("terminated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "invitation_approved", sa.Boolean(), nullable=False, server_default="false"
        ),
        sa.Column(
            "needs_flatbed_training",
            sa.Boolean(),
            nullable=False,
            server_default="true",
        ),
        sa.Column("resume_expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "sessions_invalidated_before", sa.DateTime(timezone=True), nullable=True
        ),
        *[
            sa.Column(
                column,
                sa.UUID(),
                sa.ForeignKey(f"{table}.id", ondelete="SET NULL"),
                nullable=True,
            )
            for column, table in _FORM_REFS
        ],
        sa.Column(
            "completion_notice_status",
            sa.String(20),
            nullable=False,
            server_default="NOT_SENT",
        ),
        sa.Column(
            "completion_notice_attempts",
            sa.Integer(),
            nullable=False,
            server_default="0",
        ),
        sa.Column(
            "completion_notice_consent",
            sa.Boolean(),
            nullable=False,
            server_default="false",
        ),
        sa.Column(
            "completion_notice_sent_at", sa.DateTime(timezone=True), nullable=True
        ),
        sa.Column("completion_notice_last_error", sa.Text(), nullable=True),
        sa.Column(
            "completion_notice_claimed_at", sa.DateTime(timezone=True), nullable=True
        ),
        *_timestamps(),
        sa.UniqueConstraint(
            "applicant_identity_hash",
            name="onboarding_trackers_applicant_identity_hash_key",
        ),
        sa.CheckConstraint(
            "completion_notice_status IN "
            "('NOT_SENT', 'PENDING', 'SENDING', 'SENT', 'ERROR')",
            name="ck_onboarding_trackers_notice_status",
        ),
        sa.CheckConstraint(
            "completion_notice_attempts >= 0",
            name="ck_onboarding_trackers_notice_attempts",
        ),
        sa.CheckConstraint(
            "termination_type IS NULL OR "
            "termination_type IN ('resigned', 'terminated', 'rejected')",
            name="ck_onboarding_trackers_termination_type",
        ),
    )

    # Reaper scan: incomplete trackers by resume expiry
    op.create_index(
        "ix_onboarding_trackers_reaper",
        "onboarding_trackers",
        ["completed", "resume_expires_at"],
    )
    # Dispatcher scan: completed trackers by notice state, oldest first
    op.create_index(
        "ix_onboarding_trackers_notice",
        "onboarding_trackers",
        ["completed", "completion_notice_status", "updated_at"],
    )

    # =========================================================================
    # Verification codes
    # =========================================================================

    op.create_table(
        "verification_codes",
        _uuid_pk(),
        sa.Column(
            "tracker_id",
            sa.UUID(),
            sa.ForeignKey("onboarding_trackers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("purpose", sa.String(20), nullable=False, server_default="resume"),
        sa.Column("identity_hash", sa.String(64), nullable=False),
        sa.Column("contact_hash", sa.String(64), nullable=False),
        sa.Column("code_hash", sa.String(64), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint(
            "tracker_id", "purpose", name="uq_verification_codes_tracker_purpose"
        ),
    )


def downgrade() -> None:
    op.drop_table("verification_codes")
    op.drop_index("ix_onboarding_trackers_notice", table_name="onboarding_trackers")
    op.drop_index("ix_onboarding_trackers_reaper", table_name="onboarding_trackers")
    op.drop_table("onboarding_trackers")
    for table in reversed(_FORM_TABLES):
        op.drop_table(table)
