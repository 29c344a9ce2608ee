"""
Linking purchases to profiles.

Checkout can complete before the buyer has an account, in which case the
subscription / coaching call row is stored with only the customer email.
Once a profile with that email exists, the rows are claimed for it.
"""
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from core.logging import log_fields
from models import CoachingCall, Profile, Subscription

logger = logging.getLogger(__name__)


def find_profile_by_email(db: Session, email: Optional[str]) -> Optional[Profile]:
    """Case-insensitive profile lookup; None for a blank email."""
    if not email or not email.strip():
        return None
    return (
        db.query(Profile)
        .filter(func.lower(Profile.email) == email.strip().lower())
        .first()
    )


def link_purchases_for_profile(db: Session, profile: Profile) -> dict[str, int]:
    """
    Attach unowned subscriptions and coaching calls bought with the profile's email.

    Also backfills `profiles.stripe_customer_id` from the newest linked
    subscription when the profile has none. Flushes; the caller commits.
    """
    if not profile.email:
        return {"subscriptions": 0, "coaching_calls": 0}

    email = profile.email.strip().lower()

    subs = (
        db.query(Subscription)
        .filter(Subscription.user_id.is_(None), func.lower(Subscription.customer_email) == email)
        .order_by(Subscription.created_at.desc())
        .all()
    )
    calls = (
        db.query(CoachingCall)
        .filter(CoachingCall.user_id.is_(None), func.lower(CoachingCall.customer_email) == email)
        .all()
    )

    for sub in subs:
        sub.user_id = profile.id
        db.add(sub)
    for call in calls:
        call.user_id = profile.id
        db.add(call)

    if not profile.stripe_customer_id:
        customer_id = next((s.stripe_customer_id for s in subs if s.stripe_customer_id), None)
        if customer_id:
            profile.stripe_customer_id = customer_id
            db.add(profile)

    if subs or calls:
        db.flush()
        logger.info(
            "Linked purchases to profile",
            extra=log_fields(profile_id=str(profile.id), subscriptions=len(subs), coaching_calls=len(calls)),
        )

    return {"subscriptions": len(subs), "coaching_calls": len(calls)}
