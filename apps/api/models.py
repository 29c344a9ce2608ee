from sqlalchemy import Column, Integer, Boolean, CheckConstraint, DateTime, ForeignKey, Text, Index, UniqueConstraint, Uuid, text
from sqlalchemy.sql import func
from core.database import Base
import uuid


ROLES = ("athlete", "coach", "owner")
COACH_ROLES = ("coach", "owner")

TIERS = ("blueprint", "coaching_call", "full_coaching")
ONE_TIME_TIERS = ("coaching_call",)

SUBSCRIPTION_STATUSES = ("active", "past_due", "canceled", "expired")
COACHING_CALL_STATUSES = ("purchased", "scheduled", "completed")
NOTE_CATEGORIES = ("general", "checkin_review", "macro_change", "body_comp", "phase_transition")
NOTIFICATION_TYPES = ("macro_update", "coach_note", "phase_reminder", "system")


def _in(column: str, values: tuple) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


class Profile(Base):
    """
    Application user.

    One row per account; `id` is the identity carried in the bearer token `sub`.
    Billing rows link here by id, or by email until the buyer signs up.
    """

    __tablename__ = "profiles"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(Text, unique=True, nullable=True)
    display_name = Column(Text, nullable=True)
    role = Column(Text, default="athlete", server_default="athlete", nullable=True)
    stripe_customer_id = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint(_in("role", ROLES), name="ck_profiles_role"),
    )


class Subscription(Base):
    """
    Stripe subscription mirror.

    Stripe is the billing source of truth; rows are inserted on checkout and
    mutated by later subscription/invoice events keyed on `stripe_subscription_id`.
    `user_id` stays null until a profile with the purchase email exists.
    """

    __tablename__ = "subscriptions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=True)

    stripe_customer_id = Column(Text, nullable=True)
    stripe_subscription_id = Column(Text, nullable=True)
    customer_email = Column(Text, nullable=True)

    tier = Column(Text, nullable=False)
    status = Column(Text, default="active", server_default="active", nullable=False)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    cancel_at_period_end = Column(Boolean, default=False, server_default=text("false"))

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint(_in("tier", TIERS), name="ck_subscriptions_tier"),
        CheckConstraint(_in("status", SUBSCRIPTION_STATUSES), name="ck_subscriptions_status"),
        Index("idx_subs_user", "user_id"),
        Index("idx_subs_email", "customer_email"),
        Index("idx_subs_stripe_customer", "stripe_customer_id"),
        Index("idx_subs_stripe_sub", "stripe_subscription_id"),
    )


class CoachingCall(Base):
    """One-time coaching call purchase."""

    __tablename__ = "coaching_calls"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=True)
    customer_email = Column(Text, nullable=True)
    stripe_payment_intent_id = Column(Text, nullable=True)
    status = Column(Text, default="purchased", server_default="purchased", nullable=False)
    purchased_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint(_in("status", COACHING_CALL_STATUSES), name="ck_coaching_calls_status"),
        Index("idx_coaching_user", "user_id"),
        Index("idx_coaching_email", "customer_email"),
    )


class StripeEvent(Base):
    """
    Processed Stripe events (idempotency guard).

    Stripe retries webhook deliveries; the primary key turns a redelivery into a no-op.
    """

    __tablename__ = "stripe_events"

    event_id = Column(Text, primary_key=True)  # Stripe event id (e.g., evt_*)
    event_type = Column(Text, nullable=False, index=True)
    stripe_created = Column(Integer, nullable=True)

    received_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class CoachAthlete(Base):
    """Coach ↔ athlete assignment."""

    __tablename__ = "coach_athletes"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    coach_id = Column(Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    athlete_id = Column(Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    assigned_at = Column(DateTime(timezone=True), server_default=func.now())
    assigned_by = Column(Uuid, ForeignKey("profiles.id"), nullable=True)
    notes = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("coach_id", "athlete_id", name="uq_coach_athletes_pair"),
        Index("idx_coach_athletes_coach", "coach_id"),
        Index("idx_coach_athletes_athlete", "athlete_id"),
    )


class CoachNote(Base):
    """Private coach note about an athlete (never shown to the athlete)."""

    __tablename__ = "coach_notes"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    coach_id = Column(Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    athlete_id = Column(Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    note = Column(Text, nullable=False)
    category = Column(Text, default="general", server_default="general")
    reference_id = Column(Uuid, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint(_in("category", NOTE_CATEGORIES), name="ck_coach_notes_category"),
        Index("idx_coach_notes_athlete", "athlete_id"),
        Index("idx_coach_notes_coach", "coach_id"),
    )


class MacroChangeLog(Base):
    """
    Macro target change made by a coach.

    Visible to the athlete and their coaches; the athlete acknowledges it via `seen_by_athlete`.
    """

    __tablename__ = "macro_change_log"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    athlete_id = Column(Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    changed_by = Column(Uuid, ForeignKey("profiles.id"), nullable=False)
    phase = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)

    prev_calories = Column(Integer, nullable=True)
    prev_protein = Column(Integer, nullable=True)
    prev_carbs = Column(Integer, nullable=True)
    prev_fat = Column(Integer, nullable=True)

    new_calories = Column(Integer, nullable=False)
    new_protein = Column(Integer, nullable=False)
    new_carbs = Column(Integer, nullable=False)
    new_fat = Column(Integer, nullable=False)

    coach_note = Column(Text, nullable=True)
    seen_by_athlete = Column(Boolean, default=False, server_default=text("false"))
    seen_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_macro_log_athlete", "athlete_id"),
    )


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    type = Column(Text, nullable=False)
    title = Column(Text, nullable=False)
    message = Column(Text, nullable=True)
    reference_type = Column(Text, nullable=True)
    reference_id = Column(Uuid, nullable=True)
    read = Column(Boolean, default=False, server_default=text("false"))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint(_in("type", NOTIFICATION_TYPES), name="ck_notifications_type"),
        Index("idx_notifications_user", "user_id"),
        Index(
            "idx_notifications_unread",
            "user_id",
            "read",
            postgresql_where=text("read = false"),
            sqlite_where=text("read = 0"),
        ),
    )
