"""
Coach API Endpoints

Coach/athlete assignments and private coach notes. Notes are never exposed
to athletes; owners can read every coach's notes.
"""
from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID

from core.auth import get_current_user, require_coach
from core.database import get_db
from models import Profile
from schemas import (
    AssignmentCreate,
    AssignmentResponse,
    CoachNoteCreate,
    CoachNoteResponse,
    CoachNoteUpdate,
)
from services import coaching_service

router = APIRouter(prefix="/v1/coach", tags=["coach"])


@router.get("/assignments", response_model=List[AssignmentResponse])
def list_assignments(
    coach_id: Optional[UUID] = None,
    current_user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return coaching_service.list_assignments(db, actor=current_user, coach_id=coach_id)


@router.post("/assignments", response_model=AssignmentResponse, status_code=201)
def create_assignment(
    request: AssignmentCreate,
    current_user: Profile = Depends(require_coach),
    db: Session = Depends(get_db),
):
    """Assign an athlete to a coach (the caller unless an owner names another coach)."""
    assignment = coaching_service.assign_athlete(
        db,
        actor=current_user,
        athlete_id=request.athlete_id,
        coach_id=request.coach_id,
        notes=request.notes,
    )
    db.commit()
    db.refresh(assignment)
    return assignment


@router.delete("/assignments/{assignment_id}", status_code=204)
def delete_assignment(
    assignment_id: UUID,
    current_user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    coaching_service.unassign(db, actor=current_user, assignment_id=assignment_id)
    db.commit()
    return Response(status_code=204)


@router.get("/notes", response_model=List[CoachNoteResponse])
def list_notes(
    athlete_id: Optional[UUID] = None,
    current_user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return coaching_service.list_notes(db, actor=current_user, athlete_id=athlete_id)


@router.post("/notes", response_model=CoachNoteResponse, status_code=201)
def create_note(
    request: CoachNoteCreate,
    current_user: Profile = Depends(require_coach),
    db: Session = Depends(get_db),
):
    note = coaching_service.add_note(
        db,
        actor=current_user,
        athlete_id=request.athlete_id,
        note=request.note,
        category=request.category,
        reference_id=request.reference_id,
    )
    db.commit()
    db.refresh(note)
    return note


@router.patch("/notes/{note_id}", response_model=CoachNoteResponse)
def update_note(
    note_id: UUID,
    request: CoachNoteUpdate,
    current_user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    note = coaching_service.update_note(
        db,
        actor=current_user,
        note_id=note_id,
        note=request.note,
        category=request.category,
    )
    db.commit()
    db.refresh(note)
    return note
