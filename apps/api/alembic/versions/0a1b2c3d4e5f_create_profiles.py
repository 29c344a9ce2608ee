"""create_profiles

Revision ID: 0a1b2c3d4e5f
Revises:
Create Date: 2026-02-19

Base user table plus the RLS identity helpers every later policy uses.

Policies read the acting user from transaction-local settings that the API
sets per request (core.database.set_rls_context):
- app.current_user_id: profile id of the caller ('' for none)
- app.role: 'service_role' for the Stripe webhook, otherwise 'authenticated'
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0a1b2c3d4e5f"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    op.create_table(
        "profiles",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("email", sa.Text(), nullable=True, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )

    op.execute(
        """
        CREATE OR REPLACE FUNCTION app_current_user_id()
        RETURNS UUID AS $$
            SELECT NULLIF(current_setting('app.current_user_id', true), '')::uuid;
        $$ LANGUAGE SQL STABLE;
        """
    )
    op.execute(
        """
        CREATE OR REPLACE FUNCTION app_current_role()
        RETURNS TEXT AS $$
            SELECT COALESCE(NULLIF(current_setting('app.role', true), ''), 'anon');
        $$ LANGUAGE SQL STABLE;
        """
    )

    op.execute("ALTER TABLE profiles ENABLE ROW LEVEL SECURITY")
    op.execute(
        """
        CREATE POLICY "Users can view own profile"
            ON profiles FOR SELECT
            USING (app_current_user_id() = id)
        """
    )
    op.execute(
        """
        CREATE POLICY "Service role can manage all profiles"
            ON profiles FOR ALL
            USING (app_current_role() = 'service_role')
        """
    )


def downgrade() -> None:
    op.execute('DROP POLICY IF EXISTS "Service role can manage all profiles" ON profiles')
    op.execute('DROP POLICY IF EXISTS "Users can view own profile" ON profiles')
    op.drop_table("profiles")
    op.execute("DROP FUNCTION IF EXISTS app_current_role()")
    op.execute("DROP FUNCTION IF EXISTS app_current_user_id()")
