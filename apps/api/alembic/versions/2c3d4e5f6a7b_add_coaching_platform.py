"""add_coaching_platform

Revision ID: 2c3d4e5f6a7b
Revises: 1b2c3d4e5f6a
Create Date: 2026-02-21

Coach/owner roles and the coaching data model:
- profiles.role, profiles.display_name
- coach_athletes (assignment, unique per pair)
- coach_notes (private to the coach; owners read all)
- macro_change_log (coach + athlete visible)
- notifications
- is_coach() / is_assigned_coach() helpers and row-level policies
- assigned-coach policies on the athlete-owned client tables, where those exist
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "2c3d4e5f6a7b"
down_revision = "1b2c3d4e5f6a"
branch_labels = None
depends_on = None


UUID = postgresql.UUID(as_uuid=True)

# table -> (policy label, operations granted to an assigned coach)
CLIENT_TABLE_GRANTS = {
    "saved_macros": ("macros", ("select", "insert", "update")),
    "weight_log": ("weight", ("select", "insert", "update", "delete")),
    "body_composition": ("body comp", ("select", "insert")),
    "weekly_checkins": ("checkins", ("select", "insert")),
    "checklist_progress": ("checklist", ("select", "insert", "update", "delete")),
    "phase_history": ("phase history", ("select",)),
}

POLICIES = [
    # coach_athletes
    ("coach_athletes", "Coaches can view own assignments", "SELECT",
     "USING (app_current_user_id() = coach_id OR is_coach(app_current_user_id()))"),
    ("coach_athletes", "Coaches can insert assignments", "INSERT",
     "WITH CHECK (is_coach(app_current_user_id()))"),
    ("coach_athletes", "Coaches can delete own assignments", "DELETE",
     "USING (app_current_user_id() = coach_id OR is_owner(app_current_user_id()))"),
    # coach_notes
    ("coach_notes", "Coaches can view own notes", "SELECT",
     "USING (app_current_user_id() = coach_id OR is_owner(app_current_user_id()))"),
    ("coach_notes", "Coaches can insert notes", "INSERT",
     "WITH CHECK (is_coach(app_current_user_id()))"),
    ("coach_notes", "Coaches can update own notes", "UPDATE",
     "USING (app_current_user_id() = coach_id)"),
    # macro_change_log
    ("macro_change_log", "Athletes can view own macro changes", "SELECT",
     "USING (app_current_user_id() = athlete_id OR is_assigned_coach(app_current_user_id(), athlete_id))"),
    ("macro_change_log", "Coaches can insert macro changes for assigned athletes", "INSERT",
     "WITH CHECK (is_assigned_coach(app_current_user_id(), athlete_id))"),
    ("macro_change_log", "Athletes can update seen status on own macro changes", "UPDATE",
     "USING (app_current_user_id() = athlete_id) WITH CHECK (app_current_user_id() = athlete_id)"),
    # notifications
    ("notifications", "Users can view own notifications", "SELECT",
     "USING (app_current_user_id() = user_id)"),
    ("notifications", "Coaches can insert notifications for assigned athletes", "INSERT",
     "WITH CHECK (is_assigned_coach(app_current_user_id(), user_id) OR app_current_user_id() = user_id)"),
    ("notifications", "Users can update own notifications (mark read)", "UPDATE",
     "USING (app_current_user_id() = user_id) WITH CHECK (app_current_user_id() = user_id)"),
    # profiles
    ("profiles", "Coaches can view assigned athlete profiles", "SELECT",
     "USING (is_assigned_coach(app_current_user_id(), id) OR app_current_user_id() = id)"),
    ("profiles", "Owners can view all profiles", "SELECT",
     "USING (is_owner(app_current_user_id()))"),
]


def _client_table_policies():
    verbs = {"select": "view", "insert": "insert", "update": "update", "delete": "delete"}
    for table, (label, operations) in CLIENT_TABLE_GRANTS.items():
        for operation in operations:
            name = f"Coaches can {verbs[operation]} assigned athlete {label}"
            clause = "WITH CHECK" if operation == "insert" else "USING"
            yield table, name, operation.upper(), f"{clause} (is_assigned_coach(app_current_user_id(), user_id))"


def upgrade() -> None:
    op.add_column(
        "profiles",
        sa.Column("role", sa.Text(), server_default="athlete", nullable=True),
    )
    op.create_check_constraint("ck_profiles_role", "profiles", "role IN ('athlete', 'coach', 'owner')")
    op.add_column("profiles", sa.Column("display_name", sa.Text(), nullable=True))

    op.create_table(
        "coach_athletes",
        sa.Column("id", UUID, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("coach_id", UUID, sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("athlete_id", UUID, sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("assigned_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
        sa.Column("assigned_by", UUID, sa.ForeignKey("profiles.id"), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.UniqueConstraint("coach_id", "athlete_id", name="uq_coach_athletes_pair"),
    )
    op.create_index("idx_coach_athletes_coach", "coach_athletes", ["coach_id"], unique=False)
    op.create_index("idx_coach_athletes_athlete", "coach_athletes", ["athlete_id"], unique=False)

    op.create_table(
        "coach_notes",
        sa.Column("id", UUID, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("coach_id", UUID, sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("athlete_id", UUID, sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("note", sa.Text(), nullable=False),
        sa.Column("category", sa.Text(), server_default="general"),
        sa.Column("reference_id", UUID, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
        sa.CheckConstraint(
            "category IN ('general', 'checkin_review', 'macro_change', 'body_comp', 'phase_transition')",
            name="ck_coach_notes_category",
        ),
    )
    op.create_index("idx_coach_notes_athlete", "coach_notes", ["athlete_id"], unique=False)
    op.create_index("idx_coach_notes_coach", "coach_notes", ["coach_id"], unique=False)

    op.create_table(
        "macro_change_log",
        sa.Column("id", UUID, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("athlete_id", UUID, sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("changed_by", UUID, sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("phase", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("prev_calories", sa.Integer(), nullable=True),
        sa.Column("prev_protein", sa.Integer(), nullable=True),
        sa.Column("prev_carbs", sa.Integer(), nullable=True),
        sa.Column("prev_fat", sa.Integer(), nullable=True),
        sa.Column("new_calories", sa.Integer(), nullable=False),
        sa.Column("new_protein", sa.Integer(), nullable=False),
        sa.Column("new_carbs", sa.Integer(), nullable=False),
        sa.Column("new_fat", sa.Integer(), nullable=False),
        sa.Column("coach_note", sa.Text(), nullable=True),
        sa.Column("seen_by_athlete", sa.Boolean(), server_default=sa.text("false")),
        sa.Column("seen_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
    )
    op.create_index("idx_macro_log_athlete", "macro_change_log", ["athlete_id"], unique=False)

    op.create_table(
        "notifications",
        sa.Column("id", UUID, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("user_id", UUID, sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("reference_type", sa.Text(), nullable=True),
        sa.Column("reference_id", UUID, nullable=True),
        sa.Column("read", sa.Boolean(), server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
        sa.CheckConstraint(
            "type IN ('macro_update', 'coach_note', 'phase_reminder', 'system')",
            name="ck_notifications_type",
        ),
    )
    op.create_index("idx_notifications_user", "notifications", ["user_id"], unique=False)
    op.create_index(
        "idx_notifications_unread",
        "notifications",
        ["user_id", "read"],
        unique=False,
        postgresql_where=sa.text("read = false"),
    )

    # SECURITY DEFINER so the helpers can read profiles/coach_athletes regardless of the caller's policies.
    op.execute(
        """
        CREATE OR REPLACE FUNCTION is_coach(check_user_id UUID)
        RETURNS BOOLEAN AS $$
            SELECT EXISTS (
                SELECT 1 FROM profiles
                WHERE id = check_user_id AND role IN ('coach', 'owner')
            );
        $$ LANGUAGE SQL SECURITY DEFINER STABLE;
        """
    )
    op.execute(
        """
        CREATE OR REPLACE FUNCTION is_owner(check_user_id UUID)
        RETURNS BOOLEAN AS $$
            SELECT EXISTS (
                SELECT 1 FROM profiles
                WHERE id = check_user_id AND role = 'owner'
            );
        $$ LANGUAGE SQL SECURITY DEFINER STABLE;
        """
    )
    op.execute(
        """
        CREATE OR REPLACE FUNCTION is_assigned_coach(check_coach_id UUID, check_athlete_id UUID)
        RETURNS BOOLEAN AS $$
            SELECT EXISTS (
                SELECT 1 FROM coach_athletes
                WHERE coach_id = check_coach_id AND athlete_id = check_athlete_id
            )
            OR is_owner(check_coach_id);
        $$ LANGUAGE SQL SECURITY DEFINER STABLE;
        """
    )

    for table in ("coach_athletes", "coach_notes", "macro_change_log", "notifications"):
        op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
        op.execute(
            f"""
            CREATE POLICY "Service role can manage all {table}"
                ON {table} FOR ALL
                USING (app_current_role() = 'service_role')
            """
        )

    for table, name, command, clause in POLICIES:
        op.execute(f'CREATE POLICY "{name}" ON {table} FOR {command} {clause}')

    # Client-managed tables may not exist in every deployment.
    for table, name, command, clause in _client_table_policies():
        statement = f'CREATE POLICY "{name}" ON {table} FOR {command} {clause}'.replace("'", "''")
        op.execute(
            f"""
            DO $$
            BEGIN
                IF to_regclass('public.{table}') IS NOT NULL THEN
                    EXECUTE '{statement}';
                END IF;
            END $$;
            """
        )


def downgrade() -> None:
    for table, name, _command, _clause in _client_table_policies():
        op.execute(
            f"""
            DO $$
            BEGIN
                IF to_regclass('public.{table}') IS NOT NULL THEN
                    EXECUTE 'DROP POLICY IF EXISTS "{name}" ON {table}';
                END IF;
            END $$;
            """
        )
    for table, name, _command, _clause in POLICIES:
        if table == "profiles":
            op.execute(f'DROP POLICY IF EXISTS "{name}" ON profiles')

    op.drop_index("idx_notifications_unread", table_name="notifications")
    op.drop_index("idx_notifications_user", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("idx_macro_log_athlete", table_name="macro_change_log")
    op.drop_table("macro_change_log")
    op.drop_index("idx_coach_notes_coach", table_name="coach_notes")
    op.drop_index("idx_coach_notes_athlete", table_name="coach_notes")
    op.drop_table("coach_notes")
    op.drop_index("idx_coach_athletes_athlete", table_name="coach_athletes")
    op.drop_index("idx_coach_athletes_coach", table_name="coach_athletes")
    op.drop_table("coach_athletes")

    op.execute("DROP FUNCTION IF EXISTS is_assigned_coach(UUID, UUID)")
    op.execute("DROP FUNCTION IF EXISTS is_owner(UUID)")
    op.execute("DROP FUNCTION IF EXISTS is_coach(UUID)")

    op.drop_column("profiles", "display_name")
    op.drop_constraint("ck_profiles_role", "profiles", type_="check")
    op.drop_column("profiles", "role")
