from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List
from uuid import UUID

from core.auth import get_current_user
from core.database import get_db
from models import Profile
from schemas import NotificationCreate, NotificationResponse
from services import coaching_service

router = APIRouter(prefix="/v1/notifications", tags=["notifications"])


@router.get("", response_model=List[NotificationResponse])
def list_notifications(
    unread_only: bool = False,
    current_user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return coaching_service.list_notifications(db, actor=current_user, unread_only=unread_only)


@router.post("", response_model=NotificationResponse, status_code=201)
def create_notification(
    request: NotificationCreate,
    current_user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Notify yourself, or an athlete you coach."""
    row = coaching_service.create_notification(
        db,
        actor=current_user,
        user_id=request.user_id,
        type=request.type,
        title=request.title,
        message=request.message,
        reference_type=request.reference_type,
        reference_id=request.reference_id,
    )
    db.commit()
    db.refresh(row)
    return row


@router.post("/{notification_id}/read", response_model=NotificationResponse)
def mark_read(
    notification_id: UUID,
    current_user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    row = coaching_service.mark_notification_read(db, actor=current_user, notification_id=notification_id)
    db.commit()
    db.refresh(row)
    return row
