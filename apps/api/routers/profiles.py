from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List
from uuid import UUID

from core.auth import get_current_user
from core.database import get_db
from models import Profile
from schemas import ProfileResponse
from services import coaching_service

router = APIRouter(prefix="/v1/profiles", tags=["profiles"])


@router.get("/me", response_model=ProfileResponse)
def me(current_user: Profile = Depends(get_current_user)):
    return current_user


@router.get("", response_model=List[ProfileResponse])
def list_profiles(current_user: Profile = Depends(get_current_user), db: Session = Depends(get_db)):
    """Profiles the caller may see: everyone for owners, assigned athletes for coaches."""
    return coaching_service.list_visible_profiles(db, actor=current_user)


@router.get("/{profile_id}", response_model=ProfileResponse)
def get_profile(profile_id: UUID, current_user: Profile = Depends(get_current_user), db: Session = Depends(get_db)):
    return coaching_service.get_visible_profile(db, actor=current_user, profile_id=profile_id)
