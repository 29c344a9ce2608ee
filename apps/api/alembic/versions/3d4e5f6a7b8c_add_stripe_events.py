"""add_stripe_events

Revision ID: 3d4e5f6a7b8c
Revises: 2c3d4e5f6a7b
Create Date: 2026-02-24

Processed Stripe event ids. Stripe redelivers webhooks; the primary key makes a
redelivery a no-op instead of a second subscription row.
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "3d4e5f6a7b8c"
down_revision = "2c3d4e5f6a7b"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "stripe_events",
        sa.Column("event_id", sa.Text(), primary_key=True, nullable=False),
        sa.Column("event_type", sa.Text(), nullable=False),
        sa.Column("stripe_created", sa.Integer(), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_stripe_events_event_type", "stripe_events", ["event_type"], unique=False)

    op.execute("ALTER TABLE stripe_events ENABLE ROW LEVEL SECURITY")
    op.execute(
        """
        CREATE POLICY "Service role can manage stripe events"
            ON stripe_events FOR ALL
            USING (app_current_role() = 'service_role')
        """
    )


def downgrade() -> None:
    op.drop_index("ix_stripe_events_event_type", table_name="stripe_events")
    op.drop_table("stripe_events")
