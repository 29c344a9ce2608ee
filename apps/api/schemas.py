from pydantic import BaseModel, ConfigDict, Field
from typing import List, Literal, Optional
from datetime import datetime
from uuid import UUID


NoteCategory = Literal["general", "checkin_review", "macro_change", "body_comp", "phase_transition"]
NotificationType = Literal["macro_update", "coach_note", "phase_reminder", "system"]


class ProfileResponse(BaseModel):
    id: UUID
    email: Optional[str] = None
    display_name: Optional[str] = None
    role: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SubscriptionResponse(BaseModel):
    id: UUID
    tier: str
    status: str
    customer_email: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: Optional[bool] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CoachingCallResponse(BaseModel):
    id: UUID
    status: str
    customer_email: Optional[str] = None
    purchased_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class BillingSummaryResponse(BaseModel):
    """The caller's own purchases."""
    subscriptions: List[SubscriptionResponse]
    coaching_calls: List[CoachingCallResponse]
    active_tiers: List[str]


class AssignmentCreate(BaseModel):
    athlete_id: UUID
    # Defaults to the caller; owners may assign on behalf of another coach.
    coach_id: Optional[UUID] = None
    notes: Optional[str] = None


class AssignmentResponse(BaseModel):
    id: UUID
    coach_id: UUID
    athlete_id: UUID
    assigned_by: Optional[UUID] = None
    assigned_at: Optional[datetime] = None
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class CoachNoteCreate(BaseModel):
    athlete_id: UUID
    note: str = Field(min_length=1)
    category: NoteCategory = "general"
    reference_id: Optional[UUID] = None


class CoachNoteUpdate(BaseModel):
    note: Optional[str] = Field(default=None, min_length=1)
    category: Optional[NoteCategory] = None


class CoachNoteResponse(BaseModel):
    id: UUID
    coach_id: UUID
    athlete_id: UUID
    note: str
    category: Optional[str] = None
    reference_id: Optional[UUID] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class MacroTargets(BaseModel):
    calories: int = Field(ge=0)
    protein: int = Field(ge=0)
    carbs: int = Field(ge=0)
    fat: int = Field(ge=0)


class MacroChangeCreate(BaseModel):
    athlete_id: UUID
    phase: int
    year: int
    new: MacroTargets
    previous: Optional[MacroTargets] = None
    coach_note: Optional[str] = None


class MacroChangeResponse(BaseModel):
    id: UUID
    athlete_id: UUID
    changed_by: UUID
    phase: int
    year: int
    prev_calories: Optional[int] = None
    prev_protein: Optional[int] = None
    prev_carbs: Optional[int] = None
    prev_fat: Optional[int] = None
    new_calories: int
    new_protein: int
    new_carbs: int
    new_fat: int
    coach_note: Optional[str] = None
    seen_by_athlete: Optional[bool] = None
    seen_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class NotificationCreate(BaseModel):
    user_id: UUID
    type: NotificationType
    title: str = Field(min_length=1)
    message: Optional[str] = None
    reference_type: Optional[str] = None
    reference_id: Optional[UUID] = None


class NotificationResponse(BaseModel):
    id: UUID
    user_id: UUID
    type: str
    title: str
    message: Optional[str] = None
    reference_type: Optional[str] = None
    reference_id: Optional[UUID] = None
    read: Optional[bool] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
