"""stripe event dedupe + handler failure log

Revision ID: 0003_stripe_events
Revises: 0002_donations_ledger
Create Date: 2026-10-19

"""

from alembic import op
import sqlalchemy as sa

revision = "0003_stripe_events"
down_revision = "0002_donations_ledger"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "stripe_events",
        sa.Column("event_id", sa.Text(), primary_key=True),
        sa.Column("type", sa.Text(), nullable=False),
        sa.Column("raw", sa.dialects.postgresql.JSONB, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    )
    op.create_table(
        "webhook_event_failures",
        sa.Column(
            "event_id",
            sa.Text(),
            sa.ForeignKey("stripe_events.event_id"),
            primary_key=True,
        ),
        sa.Column("type", sa.Text(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    )
    op.create_index(
        "idx_webhook_failures_open",
        "webhook_event_failures",
        ["created_at"],
        postgresql_where=sa.text("resolved_at IS NULL"),
    )


def downgrade():
    op.drop_index("idx_webhook_failures_open", table_name="webhook_event_failures")
    op.drop_table("webhook_event_failures")
    op.drop_table("stripe_events")
