"""
Coaching workflows: assignments, private notes, macro changes and notifications.

Every function takes the acting profile and enforces the row-level rules from
`core.access_policy` before touching the database. Functions flush but do not
commit; the request's session dependency commits.
"""
from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from core import access_policy as policy
from core.exceptions import ConflictError, NotFoundError, ValidationError
from core.logging import log_fields
from models import (
    NOTE_CATEGORIES,
    NOTIFICATION_TYPES,
    CoachAthlete,
    CoachNote,
    MacroChangeLog,
    Notification,
    Profile,
)

logger = logging.getLogger(__name__)


def _profile_or_404(db: Session, profile_id: UUID) -> Profile:
    profile = db.query(Profile).filter(Profile.id == profile_id).first()
    if not profile:
        raise NotFoundError("Profile", profile_id)
    return profile


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------

def assign_athlete(
    db: Session,
    *,
    actor: Profile,
    athlete_id: UUID,
    coach_id: Optional[UUID] = None,
    notes: Optional[str] = None,
) -> CoachAthlete:
    policy.require(policy.can_create_assignment(db, actor.id), "Only coaches can assign athletes")

    coach_id = coach_id or actor.id
    if coach_id != actor.id:
        if not policy.is_coach(db, coach_id):
            raise ValidationError("Assignee is not a coach", field="coach_id")
    _profile_or_404(db, athlete_id)

    existing = (
        db.query(CoachAthlete)
        .filter(CoachAthlete.coach_id == coach_id, CoachAthlete.athlete_id == athlete_id)
        .first()
    )
    if existing:
        raise ConflictError("Athlete is already assigned to this coach")

    assignment = CoachAthlete(coach_id=coach_id, athlete_id=athlete_id, assigned_by=actor.id, notes=notes)
    db.add(assignment)
    db.flush()
    logger.info(
        "Athlete assigned to coach",
        extra=log_fields(coach_id=str(coach_id), athlete_id=str(athlete_id), assigned_by=str(actor.id)),
    )
    return assignment


def list_assignments(db: Session, *, actor: Profile, coach_id: Optional[UUID] = None) -> list[CoachAthlete]:
    """Assignments visible to the actor (coaches see all; others only their own)."""
    query = db.query(CoachAthlete)
    if not policy.is_coach(db, actor.id):
        query = query.filter(CoachAthlete.coach_id == actor.id)
    if coach_id:
        query = query.filter(CoachAthlete.coach_id == coach_id)
    return query.order_by(CoachAthlete.assigned_at.desc()).all()


def unassign(db: Session, *, actor: Profile, assignment_id: UUID) -> None:
    assignment = db.query(CoachAthlete).filter(CoachAthlete.id == assignment_id).first()
    if not assignment:
        raise NotFoundError("Assignment", assignment_id)
    policy.require(policy.can_delete_assignment(db, actor.id, assignment))
    db.delete(assignment)
    db.flush()


# ---------------------------------------------------------------------------
# Coach notes
# ---------------------------------------------------------------------------

def add_note(
    db: Session,
    *,
    actor: Profile,
    athlete_id: UUID,
    note: str,
    category: str = "general",
    reference_id: Optional[UUID] = None,
) -> CoachNote:
    policy.require(policy.can_create_note(db, actor.id), "Only coaches can write notes")
    if category not in NOTE_CATEGORIES:
        raise ValidationError(f"Unknown note category: {category}", field="category")
    _profile_or_404(db, athlete_id)

    row = CoachNote(coach_id=actor.id, athlete_id=athlete_id, note=note, category=category, reference_id=reference_id)
    db.add(row)
    db.flush()
    return row


def update_note(
    db: Session,
    *,
    actor: Profile,
    note_id: UUID,
    note: Optional[str] = None,
    category: Optional[str] = None,
) -> CoachNote:
    row = db.query(CoachNote).filter(CoachNote.id == note_id).first()
    if not row:
        raise NotFoundError("Coach note", note_id)
    policy.require(policy.can_update_note(db, actor.id, row), "Only the author can edit a note")

    if category is not None:
        if category not in NOTE_CATEGORIES:
            raise ValidationError(f"Unknown note category: {category}", field="category")
        row.category = category
    if note is not None:
        row.note = note
    row.updated_at = datetime.now(timezone.utc)
    db.add(row)
    db.flush()
    return row


def list_notes(db: Session, *, actor: Profile, athlete_id: Optional[UUID] = None) -> list[CoachNote]:
    """Own notes; owners see every coach's notes."""
    query = db.query(CoachNote)
    if not policy.is_owner(db, actor.id):
        query = query.filter(CoachNote.coach_id == actor.id)
    if athlete_id:
        query = query.filter(CoachNote.athlete_id == athlete_id)
    return query.order_by(CoachNote.created_at.desc()).all()


# ---------------------------------------------------------------------------
# Macro change log
# ---------------------------------------------------------------------------

def log_macro_change(
    db: Session,
    *,
    actor: Profile,
    athlete_id: UUID,
    phase: int,
    year: int,
    new: dict,
    previous: Optional[dict] = None,
    coach_note: Optional[str] = None,
) -> MacroChangeLog:
    """
    Record new macro targets for an athlete and notify them.

    `new` / `previous` carry calories, protein, carbs, fat.
    """
    policy.require(policy.can_log_macro_change(db, actor.id, athlete_id), "Not an assigned coach for this athlete")
    _profile_or_404(db, athlete_id)
    previous = previous or {}

    change = MacroChangeLog(
        athlete_id=athlete_id,
        changed_by=actor.id,
        phase=phase,
        year=year,
        prev_calories=previous.get("calories"),
        prev_protein=previous.get("protein"),
        prev_carbs=previous.get("carbs"),
        prev_fat=previous.get("fat"),
        new_calories=new["calories"],
        new_protein=new["protein"],
        new_carbs=new["carbs"],
        new_fat=new["fat"],
        coach_note=coach_note,
    )
    db.add(change)
    db.flush()

    db.add(
        Notification(
            user_id=athlete_id,
            type="macro_update",
            title="Your macros have been updated",
            message=coach_note,
            reference_type="macro_change_log",
            reference_id=change.id,
        )
    )
    db.flush()
    return change


def list_macro_changes(db: Session, *, actor: Profile, athlete_id: UUID) -> list[MacroChangeLog]:
    policy.require(policy.can_view_macro_changes(db, actor.id, athlete_id))
    return (
        db.query(MacroChangeLog)
        .filter(MacroChangeLog.athlete_id == athlete_id)
        .order_by(MacroChangeLog.created_at.desc())
        .all()
    )


def mark_macro_change_seen(db: Session, *, actor: Profile, change_id: UUID) -> MacroChangeLog:
    change = db.query(MacroChangeLog).filter(MacroChangeLog.id == change_id).first()
    if not change:
        raise NotFoundError("Macro change", change_id)
    policy.require(policy.can_mark_macro_change_seen(actor.id, change.athlete_id))

    if not change.seen_by_athlete:
        change.seen_by_athlete = True
        change.seen_at = datetime.now(timezone.utc)
        db.add(change)
        db.flush()
    return change


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

def create_notification(
    db: Session,
    *,
    actor: Profile,
    user_id: UUID,
    type: str,
    title: str,
    message: Optional[str] = None,
    reference_type: Optional[str] = None,
    reference_id: Optional[UUID] = None,
) -> Notification:
    policy.require(policy.can_notify(db, actor.id, user_id), "Cannot notify this user")
    _profile_or_404(db, user_id)
    if type not in NOTIFICATION_TYPES:
        raise ValidationError(f"Unknown notification type: {type}", field="type")

    row = Notification(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        reference_type=reference_type,
        reference_id=reference_id,
    )
    db.add(row)
    db.flush()
    return row


def list_notifications(db: Session, *, actor: Profile, unread_only: bool = False) -> list[Notification]:
    query = db.query(Notification).filter(Notification.user_id == actor.id)
    if unread_only:
        query = query.filter(Notification.read.is_(False))
    return query.order_by(Notification.created_at.desc()).all()


def mark_notification_read(db: Session, *, actor: Profile, notification_id: UUID) -> Notification:
    row = db.query(Notification).filter(Notification.id == notification_id).first()
    if not row:
        raise NotFoundError("Notification", notification_id)
    policy.require(policy.can_update_notification(actor.id, row.user_id))
    row.read = True
    db.add(row)
    db.flush()
    return row


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------

def get_visible_profile(db: Session, *, actor: Profile, profile_id: UUID) -> Profile:
    policy.require(policy.can_view_profile(db, actor.id, profile_id))
    return _profile_or_404(db, profile_id)


def list_visible_profiles(db: Session, *, actor: Profile) -> list[Profile]:
    """Owners: every profile. Coaches: their assigned athletes. Athletes: themselves."""
    if policy.is_owner(db, actor.id):
        return db.query(Profile).order_by(Profile.created_at.desc()).all()
    if policy.is_coach(db, actor.id):
        ids = policy.assigned_athlete_ids(db, actor.id)
        if not ids:
            return []
        return db.query(Profile).filter(Profile.id.in_(ids)).order_by(Profile.display_name).all()
    return [actor]
