from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from core.auth import get_current_user
from core.database import get_db, set_rls_context
from core.exceptions import ServiceUnavailableError, WebhookHandlerError, WebhookVerificationError
from core.logging import log_fields
from models import CoachingCall, Profile, Subscription
from schemas import BillingSummaryResponse
from services.purchase_linking import link_purchases_for_profile
from services.stripe_service import StripeService, event_type_of, process_stripe_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/billing", tags=["billing"])


@router.get("/me", response_model=BillingSummaryResponse)
def my_billing(current_user: Profile = Depends(get_current_user), db: Session = Depends(get_db)):
    """
    The caller's subscriptions and coaching calls.

    Purchases made with the caller's email before they had an account are
    linked to them first.
    """
    # Orphan rows (user_id IS NULL) are invisible to the caller under row-level security.
    set_rls_context(db, role="service_role")
    link_purchases_for_profile(db, current_user)
    db.commit()
    set_rls_context(db, user_id=current_user.id)

    subs = (
        db.query(Subscription)
        .filter(Subscription.user_id == current_user.id)
        .order_by(Subscription.created_at.desc())
        .all()
    )
    calls = (
        db.query(CoachingCall)
        .filter(CoachingCall.user_id == current_user.id)
        .order_by(CoachingCall.purchased_at.desc())
        .all()
    )
    active_tiers = sorted({s.tier for s in subs if s.status in ("active", "past_due")})
    return {"subscriptions": subs, "coaching_calls": calls, "active_tiers": active_tiers}


@router.options("/webhooks/stripe", include_in_schema=False)
def stripe_webhook_preflight():
    return PlainTextResponse("ok")


async def _raw_body(request: Request) -> bytes:
    return await request.body()


@router.post("/webhooks/stripe")
def stripe_webhook(request: Request, payload: bytes = Depends(_raw_body), db: Session = Depends(get_db)):
    """
    Stripe webhook endpoint.

    - 400: missing or invalid Stripe-Signature (Stripe will retry)
    - 500: the event verified but could not be applied (rolled back, Stripe will retry)
    - 200: applied, ignored (unhandled type) or already processed

    Sync so the Stripe API lookups made while handling run in the threadpool.
    """
    sig = request.headers.get("stripe-signature")
    if not sig:
        raise WebhookVerificationError("No signature")

    try:
        svc = StripeService()
        event = svc.construct_event(payload=payload, sig_header=sig)
    except RuntimeError as e:
        logger.error(f"Stripe webhook not configured: {e}")
        raise ServiceUnavailableError(str(e))
    except Exception as e:
        # Signature verification errors should return 400 so Stripe can retry appropriately.
        logger.warning(f"Webhook signature verification failed: {e}")
        raise WebhookVerificationError(f"Webhook Error: {e}")

    event_type = event_type_of(event)
    set_rls_context(db, role="service_role")
    try:
        result = process_stripe_event(db, event=event, stripe_api=svc)
    except Exception as e:
        db.rollback()
        logger.exception(f"Error handling {event_type}", extra=log_fields(event_type=event_type))
        raise WebhookHandlerError(f"Handler error: {e}")

    return {"received": True, "result": result}
