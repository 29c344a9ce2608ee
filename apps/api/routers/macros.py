"""
Macro change log endpoints.

Coaches record new macro targets for their athletes; athletes read the history
and acknowledge each change.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID

from core.auth import get_current_user
from core.database import get_db
from models import Profile
from schemas import MacroChangeCreate, MacroChangeResponse
from services import coaching_service

router = APIRouter(prefix="/v1/macros", tags=["macros"])


@router.get("/changes", response_model=List[MacroChangeResponse])
def list_changes(
    athlete_id: Optional[UUID] = None,
    current_user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Macro changes for `athlete_id` (defaults to the caller)."""
    return coaching_service.list_macro_changes(db, actor=current_user, athlete_id=athlete_id or current_user.id)


@router.post("/changes", response_model=MacroChangeResponse, status_code=201)
def create_change(
    request: MacroChangeCreate,
    current_user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    change = coaching_service.log_macro_change(
        db,
        actor=current_user,
        athlete_id=request.athlete_id,
        phase=request.phase,
        year=request.year,
        new=request.new.model_dump(),
        previous=request.previous.model_dump() if request.previous else None,
        coach_note=request.coach_note,
    )
    db.commit()
    db.refresh(change)
    return change


@router.post("/changes/{change_id}/seen", response_model=MacroChangeResponse)
def mark_seen(
    change_id: UUID,
    current_user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    change = coaching_service.mark_macro_change_seen(db, actor=current_user, change_id=change_id)
    db.commit()
    db.refresh(change)
    return change
