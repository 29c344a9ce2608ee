"""
Row-level authorization for the coaching tables.

These are the same rules the PostgreSQL row-level security policies install
(see the coaching platform migration). Those policies only bind when the API
connects as a non-owner role, so every endpoint that touches coaching data
also checks here before reading or writing.

Rules in brief:
- coaches (role coach/owner) may create assignments and notes
- an "assigned coach" has a coach_athletes row for the athlete, or is an owner
- athletes see their own billing rows, macro changes and notifications
- owners see every profile and every coach note
"""
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from core.exceptions import ForbiddenError
from models import COACH_ROLES, CoachAthlete, CoachNote, Profile


def _role_of(db: Session, user_id: Optional[UUID]) -> Optional[str]:
    if user_id is None:
        return None
    row = db.query(Profile.role).filter(Profile.id == user_id).first()
    return row[0] if row else None


def is_coach(db: Session, user_id: Optional[UUID]) -> bool:
    return _role_of(db, user_id) in COACH_ROLES


def is_owner(db: Session, user_id: Optional[UUID]) -> bool:
    return _role_of(db, user_id) == "owner"


def is_assigned_coach(db: Session, coach_id: Optional[UUID], athlete_id: Optional[UUID]) -> bool:
    """True when a coach_athletes row links the pair, or the caller is an owner."""
    if coach_id is None or athlete_id is None:
        return False
    assigned = (
        db.query(CoachAthlete.id)
        .filter(CoachAthlete.coach_id == coach_id, CoachAthlete.athlete_id == athlete_id)
        .first()
    )
    return assigned is not None or is_owner(db, coach_id)


def assigned_athlete_ids(db: Session, coach_id: UUID) -> list[UUID]:
    rows = db.query(CoachAthlete.athlete_id).filter(CoachAthlete.coach_id == coach_id).all()
    return [r[0] for r in rows]


# --- coach_athletes ---

def can_view_assignment(db: Session, actor_id: UUID, assignment: CoachAthlete) -> bool:
    return assignment.coach_id == actor_id or is_coach(db, actor_id)


def can_create_assignment(db: Session, actor_id: UUID) -> bool:
    return is_coach(db, actor_id)


def can_delete_assignment(db: Session, actor_id: UUID, assignment: CoachAthlete) -> bool:
    return assignment.coach_id == actor_id or is_owner(db, actor_id)


# --- coach_notes ---

def can_view_note(db: Session, actor_id: UUID, note: CoachNote) -> bool:
    return note.coach_id == actor_id or is_owner(db, actor_id)


def can_create_note(db: Session, actor_id: UUID) -> bool:
    return is_coach(db, actor_id)


def can_update_note(db: Session, actor_id: UUID, note: CoachNote) -> bool:
    return note.coach_id == actor_id


# --- macro_change_log ---

def can_view_macro_changes(db: Session, actor_id: UUID, athlete_id: UUID) -> bool:
    return actor_id == athlete_id or is_assigned_coach(db, actor_id, athlete_id)


def can_log_macro_change(db: Session, actor_id: UUID, athlete_id: UUID) -> bool:
    return is_assigned_coach(db, actor_id, athlete_id)


def can_mark_macro_change_seen(actor_id: UUID, athlete_id: UUID) -> bool:
    return actor_id == athlete_id


# --- notifications ---

def can_notify(db: Session, actor_id: UUID, user_id: UUID) -> bool:
    return actor_id == user_id or is_assigned_coach(db, actor_id, user_id)


def can_update_notification(actor_id: UUID, user_id: UUID) -> bool:
    return actor_id == user_id


# --- profiles ---

def can_view_profile(db: Session, actor_id: UUID, profile_id: UUID) -> bool:
    # is_assigned_coach already admits owners.
    return actor_id == profile_id or is_assigned_coach(db, actor_id, profile_id)


def require(allowed: bool, detail: str = "Access denied") -> None:
    """Raise ForbiddenError unless `allowed`."""
    if not allowed:
        raise ForbiddenError(detail)
