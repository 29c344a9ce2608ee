"""add_subscriptions_and_coaching_calls

Revision ID: 1b2c3d4e5f6a
Revises: 0a1b2c3d4e5f
Create Date: 2026-02-20

Stripe billing state:
- subscriptions (one row per checkout of a recurring tier)
- coaching_calls (one-time coaching call purchases)
- profiles.stripe_customer_id

Both billing tables: owners of the row may read; only the webhook (service role) writes.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "1b2c3d4e5f6a"
down_revision = "0a1b2c3d4e5f"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "subscriptions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=True),
        sa.Column("stripe_customer_id", sa.Text(), nullable=True),
        sa.Column("stripe_subscription_id", sa.Text(), nullable=True),
        sa.Column("customer_email", sa.Text(), nullable=True),
        sa.Column("tier", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="active"),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_at_period_end", sa.Boolean(), server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
        sa.CheckConstraint("tier IN ('blueprint', 'coaching_call', 'full_coaching')", name="ck_subscriptions_tier"),
        sa.CheckConstraint("status IN ('active', 'past_due', 'canceled', 'expired')", name="ck_subscriptions_status"),
    )
    op.create_index("idx_subs_user", "subscriptions", ["user_id"], unique=False)
    op.create_index("idx_subs_email", "subscriptions", ["customer_email"], unique=False)
    op.create_index("idx_subs_stripe_customer", "subscriptions", ["stripe_customer_id"], unique=False)
    op.create_index("idx_subs_stripe_sub", "subscriptions", ["stripe_subscription_id"], unique=False)

    op.create_table(
        "coaching_calls",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=True),
        sa.Column("customer_email", sa.Text(), nullable=True),
        sa.Column("stripe_payment_intent_id", sa.Text(), nullable=True),
        sa.Column("status", sa.Text(), nullable=False, server_default="purchased"),
        sa.Column("purchased_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
        sa.CheckConstraint("status IN ('purchased', 'scheduled', 'completed')", name="ck_coaching_calls_status"),
    )
    op.create_index("idx_coaching_user", "coaching_calls", ["user_id"], unique=False)
    op.create_index("idx_coaching_email", "coaching_calls", ["customer_email"], unique=False)

    op.add_column("profiles", sa.Column("stripe_customer_id", sa.Text(), nullable=True))

    for table, label in (("subscriptions", "subscriptions"), ("coaching_calls", "coaching calls")):
        op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
        op.execute(
            f"""
            CREATE POLICY "Users can view own {label}"
                ON {table} FOR SELECT
                USING (app_current_user_id() = user_id)
            """
        )
        op.execute(
            f"""
            CREATE POLICY "Service role can manage all {label}"
                ON {table} FOR ALL
                USING (app_current_role() = 'service_role')
            """
        )


def downgrade() -> None:
    op.drop_column("profiles", "stripe_customer_id")

    op.drop_index("idx_coaching_email", table_name="coaching_calls")
    op.drop_index("idx_coaching_user", table_name="coaching_calls")
    op.drop_table("coaching_calls")

    op.drop_index("idx_subs_stripe_sub", table_name="subscriptions")
    op.drop_index("idx_subs_stripe_customer", table_name="subscriptions")
    op.drop_index("idx_subs_email", table_name="subscriptions")
    op.drop_index("idx_subs_user", table_name="subscriptions")
    op.drop_table("subscriptions")
