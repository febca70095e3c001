"""add scheduled_emails and workflow_dispatches

Revision ID: 3f1c9a7d2e10
Revises:
Create Date: 2026-10-17 09:12:44.301517

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3f1c9a7d2e10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "scheduled_emails",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("trigger_id", sa.String(), nullable=False),
        sa.Column("workflow_id", sa.Uuid(), nullable=False),
        sa.Column("action_id", sa.Uuid(), nullable=False),
        sa.Column("occurrence_index", sa.Integer(), nullable=False),
        sa.Column("occurrence_count", sa.Integer(), nullable=False),
        sa.Column("send_mode", sa.String(), nullable=False),
        sa.Column("deal_id", sa.Uuid(), nullable=False),
        sa.Column("patient_id", sa.Uuid(), nullable=False),
        sa.Column("from_stage_id", sa.String(), nullable=True),
        sa.Column("to_stage_id", sa.String(), nullable=False),
        sa.Column("pipeline", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("not_before", sa.DateTime(timezone=True), nullable=False),
        sa.Column("render_at_fire", sa.Boolean(), nullable=False),
        sa.Column("subject", sa.Text(), nullable=True),
        sa.Column("body_html", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("fired_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "trigger_id",
            "workflow_id",
            "action_id",
            "occurrence_index",
            name="uq_scheduled_emails_occurrence",
        ),
    )
    op.create_index(
        op.f("ix_scheduled_emails_id"), "scheduled_emails", ["id"], unique=False
    )
    op.create_index(
        op.f("ix_scheduled_emails_trigger_id"),
        "scheduled_emails",
        ["trigger_id"],
        unique=False,
    )
    op.create_index(
        op.f("ix_scheduled_emails_workflow_id"),
        "scheduled_emails",
        ["workflow_id"],
        unique=False,
    )
    op.create_index(
        op.f("ix_scheduled_emails_deal_id"),
        "scheduled_emails",
        ["deal_id"],
        unique=False,
    )
    op.create_index(
        op.f("ix_scheduled_emails_status"),
        "scheduled_emails",
        ["status"],
        unique=False,
    )
    op.create_index(
        op.f("ix_scheduled_emails_not_before"),
        "scheduled_emails",
        ["not_before"],
        unique=False,
    )

    op.create_table(
        "workflow_dispatches",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("dedup_key", sa.String(), nullable=False),
        sa.Column("workflow_id", sa.Uuid(), nullable=False),
        sa.Column("action_id", sa.Uuid(), nullable=False),
        sa.Column("occurrence_index", sa.Integer(), nullable=False),
        sa.Column("to_address", sa.String(), nullable=False),
        sa.Column("subject", sa.Text(), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("provider_message_id", sa.String(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_workflow_dispatches_id"), "workflow_dispatches", ["id"], unique=False
    )
    op.create_index(
        op.f("ix_workflow_dispatches_dedup_key"),
        "workflow_dispatches",
        ["dedup_key"],
        unique=True,
    )
    op.create_index(
        op.f("ix_workflow_dispatches_workflow_id"),
        "workflow_dispatches",
        ["workflow_id"],
        unique=False,
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(
        op.f("ix_workflow_dispatches_workflow_id"), table_name="workflow_dispatches"
    )
    op.drop_index(
        op.f("ix_workflow_dispatches_dedup_key"), table_name="workflow_dispatches"
    )
    op.drop_index(op.f("ix_workflow_dispatches_id"), table_name="workflow_dispatches")
    op.drop_table("workflow_dispatches")

    op.drop_index(op.f("ix_scheduled_emails_not_before"), table_name="scheduled_emails")
    op.drop_index(op.f("ix_scheduled_emails_status"), table_name="scheduled_emails")
    op.drop_index(op.f("ix_scheduled_emails_deal_id"), table_name="scheduled_emails")
    op.drop_index(
        op.f("ix_scheduled_emails_workflow_id"), table_name="scheduled_emails"
    )
    op.drop_index(op.f("ix_scheduled_emails_trigger_id"), table_name="scheduled_emails")
    op.drop_index(op.f("ix_scheduled_emails_id"), table_name="scheduled_emails")
    op.drop_table("scheduled_emails")
