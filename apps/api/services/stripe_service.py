from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Any, Callable, Optional

import stripe
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.config import settings
from core.logging import log_fields
from models import ONE_TIME_TIERS, TIERS, CoachingCall, StripeEvent, Subscription
from services.purchase_linking import find_profile_by_email

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StripeConfig:
    secret_key: str
    webhook_secret: Optional[str]
    api_version: str
    webhook_tolerance_s: int


def _get_stripe_config() -> StripeConfig:
    """
    Load Stripe config from environment via Settings.

    Fail closed: if configuration is missing, billing endpoints should not proceed.
    """
    secret_key = settings.STRIPE_SECRET_KEY
    if not secret_key:
        raise RuntimeError("Stripe not configured (missing: STRIPE_SECRET_KEY)")

    return StripeConfig(
        secret_key=str(secret_key),
        webhook_secret=str(settings.STRIPE_WEBHOOK_SECRET) if settings.STRIPE_WEBHOOK_SECRET else None,
        api_version=settings.STRIPE_API_VERSION,
        webhook_tolerance_s=settings.STRIPE_WEBHOOK_TOLERANCE_S,
    )


def _get(obj: Any, key: str, default: Any = None) -> Any:
    """
    Field access that works for StripeObject (a dict), plain dicts and attribute objects.

    Dict lookup comes first: StripeObject inherits dict methods such as `items`,
    which would shadow payload fields of the same name under getattr.
    """
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _id_of(value: Any) -> Optional[str]:
    """Stripe references arrive either as an id string or as an expanded object."""
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    ref = _get(value, "id")
    return str(ref) if ref else None


def event_type_of(event: Any) -> str:
    return str(_get(event, "type") or "")


def _maybe_parse_period_end(ts: Any) -> Optional[datetime]:
    try:
        if ts is None:
            return None
        return datetime.fromtimestamp(int(ts), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def _extract_current_period_end_ts(obj: Any) -> Optional[int]:
    """
    Stripe API compatibility:
    - Older API versions: `subscription.current_period_end` (top-level)
    - Newer API versions: billing period fields live on `subscription.items.data[*].current_period_end`
    """
    ts = _get(obj, "current_period_end")
    if ts is not None:
        return int(ts)

    items = _get(obj, "items")
    ends = [int(_get(it, "current_period_end")) for it in (_get(items, "data") or []) if _get(it, "current_period_end") is not None]
    return max(ends) if ends else None


def _derive_cancel_at_period_end(obj: Any, *, current_period_end_ts: Optional[int]) -> bool:
    if bool(_get(obj, "cancel_at_period_end", False)):
        return True

    # Newer Stripe API uses `cancel_at` timestamps for scheduled cancellation.
    cancel_at = _get(obj, "cancel_at")
    if cancel_at is None:
        return False
    if current_period_end_ts is None:
        return True
    return int(cancel_at) == int(current_period_end_ts)


def subscription_status_for(stripe_status: Optional[str], *, cancel_at_period_end: bool) -> str:
    """
    Map a Stripe subscription status onto ours.

    A subscription scheduled to cancel stays active until the period ends.
    Anything other than active/past_due (incomplete, unpaid, paused, ...) is canceled.
    """
    if cancel_at_period_end:
        return "active"
    s = (stripe_status or "").lower()
    if s == "active":
        return "active"
    if s == "past_due":
        return "past_due"
    return "canceled"


def tier_from_session(session: Any) -> Optional[str]:
    """Tier stamped directly on the Checkout Session metadata, if any."""
    tier = _get(_get(session, "metadata"), "tier")
    return str(tier) if tier else None


def _invoice_subscription_id(invoice: Any) -> Optional[str]:
    sub_id = _id_of(_get(invoice, "subscription"))
    if sub_id:
        return sub_id
    # 2025+ API versions moved the reference under invoice.parent.
    details = _get(_get(invoice, "parent"), "subscription_details")
    return _id_of(_get(details, "subscription"))


class StripeService:
    def __init__(self) -> None:
        cfg = _get_stripe_config()
        stripe.api_key = cfg.secret_key
        stripe.api_version = cfg.api_version
        self.cfg = cfg

    def construct_event(self, *, payload: bytes, sig_header: str):
        if not self.cfg.webhook_secret:
            raise RuntimeError("Stripe webhook secret not configured")
        return stripe.Webhook.construct_event(
            payload=payload,
            sig_header=sig_header,
            secret=self.cfg.webhook_secret,
            tolerance=self.cfg.webhook_tolerance_s,
        )

    def tier_from_line_items(self, session_id: str) -> Optional[str]:
        """First `tier` found on a purchased product's metadata."""
        line_items = stripe.checkout.Session.list_line_items(
            session_id,
            expand=["data.price.product"],
        )
        for item in _get(line_items, "data") or []:
            product = _get(_get(item, "price"), "product")
            tier = _get(_get(product, "metadata"), "tier")
            if tier:
                return str(tier)
        return None

    def subscription_period_end(self, subscription_id: str) -> Optional[datetime]:
        sub = stripe.Subscription.retrieve(subscription_id)
        return _maybe_parse_period_end(_extract_current_period_end_ts(sub))


def _subscriptions_for(db: Session, subscription_id: str) -> list[Subscription]:
    return db.query(Subscription).filter(Subscription.stripe_subscription_id == subscription_id).all()


def _handle_checkout_completed(db: Session, session: Any, stripe_api: StripeService) -> dict[str, Any]:
    customer_email = _get(_get(session, "customer_details"), "email") or _get(session, "customer_email")
    customer_id = _id_of(_get(session, "customer"))
    session_id = _id_of(session)

    tier = tier_from_session(session)
    if not tier and session_id:
        tier = stripe_api.tier_from_line_items(session_id)
    if not tier:
        logger.error("No tier found for session", extra=log_fields(session_id=session_id))
        return {"written": False, "reason": "missing_tier"}
    if tier not in TIERS:
        logger.error("Unknown tier on session", extra=log_fields(session_id=session_id, tier=tier))
        return {"written": False, "reason": "unknown_tier", "tier": tier}

    user = find_profile_by_email(db, customer_email)
    user_id = user.id if user else None

    if tier in ONE_TIME_TIERS:
        call = CoachingCall(
            user_id=user_id,
            customer_email=customer_email,
            stripe_payment_intent_id=_id_of(_get(session, "payment_intent")),
            status="purchased",
        )
        db.add(call)
        return {"written": True, "table": "coaching_calls", "tier": tier, "matched_user": user is not None}

    stripe_subscription_id = _id_of(_get(session, "subscription"))
    current_period_end = None
    if stripe_subscription_id:
        current_period_end = stripe_api.subscription_period_end(stripe_subscription_id)

    db.add(
        Subscription(
            user_id=user_id,
            stripe_customer_id=customer_id,
            stripe_subscription_id=stripe_subscription_id,
            customer_email=customer_email,
            tier=tier,
            status="active",
            current_period_end=current_period_end,
        )
    )

    if user and customer_id:
        user.stripe_customer_id = customer_id
        db.add(user)

    return {"written": True, "table": "subscriptions", "tier": tier, "matched_user": user is not None}


def _handle_subscription_updated(db: Session, subscription: Any, stripe_api: StripeService) -> dict[str, Any]:
    subscription_id = _id_of(subscription)
    current_period_end_ts = _extract_current_period_end_ts(subscription)
    cancel_at_period_end = _derive_cancel_at_period_end(subscription, current_period_end_ts=current_period_end_ts)
    status = subscription_status_for(_get(subscription, "status"), cancel_at_period_end=cancel_at_period_end)
    current_period_end = _maybe_parse_period_end(current_period_end_ts)
    now = datetime.now(timezone.utc)

    rows = _subscriptions_for(db, subscription_id) if subscription_id else []
    for sub in rows:
        sub.status = status
        if current_period_end is not None:
            sub.current_period_end = current_period_end
        sub.cancel_at_period_end = cancel_at_period_end
        sub.updated_at = now
        db.add(sub)
    return {"rows": len(rows), "status": status}


def _handle_subscription_deleted(db: Session, subscription: Any, stripe_api: StripeService) -> dict[str, Any]:
    subscription_id = _id_of(subscription)
    now = datetime.now(timezone.utc)

    rows = _subscriptions_for(db, subscription_id) if subscription_id else []
    for sub in rows:
        sub.status = "canceled"
        sub.cancel_at_period_end = False
        sub.updated_at = now
        db.add(sub)
    return {"rows": len(rows), "status": "canceled"}


def _handle_invoice_payment_failed(db: Session, invoice: Any, stripe_api: StripeService) -> dict[str, Any]:
    subscription_id = _invoice_subscription_id(invoice)
    if not subscription_id:
        return {"rows": 0, "reason": "no_subscription"}

    now = datetime.now(timezone.utc)
    rows = _subscriptions_for(db, subscription_id)
    for sub in rows:
        sub.status = "past_due"
        sub.updated_at = now
        db.add(sub)
    return {"rows": len(rows), "status": "past_due"}


def _handle_invoice_paid(db: Session, invoice: Any, stripe_api: StripeService) -> dict[str, Any]:
    subscription_id = _invoice_subscription_id(invoice)
    if not subscription_id:
        return {"rows": 0, "reason": "no_subscription"}

    # Fresh period end comes from the subscription, not the invoice.
    current_period_end = stripe_api.subscription_period_end(subscription_id)
    now = datetime.now(timezone.utc)

    rows = _subscriptions_for(db, subscription_id)
    for sub in rows:
        sub.status = "active"
        if current_period_end is not None:
            sub.current_period_end = current_period_end
        sub.updated_at = now
        db.add(sub)
    return {"rows": len(rows), "status": "active"}


EVENT_HANDLERS: dict[str, Callable[[Session, Any, StripeService], dict[str, Any]]] = {
    "checkout.session.completed": _handle_checkout_completed,
    "customer.subscription.updated": _handle_subscription_updated,
    "customer.subscription.deleted": _handle_subscription_deleted,
    "invoice.payment_failed": _handle_invoice_payment_failed,
    "invoice.paid": _handle_invoice_paid,
}


def process_stripe_event(db: Session, *, event: Any, stripe_api: StripeService) -> dict[str, Any]:
    """
    Idempotently apply a verified Stripe webhook event to the billing tables.

    Exceptions from handlers propagate with the session left dirty; the caller
    rolls back so the event id is not recorded and Stripe's retry reprocesses it.
    """
    event_id = str(_get(event, "id") or "")
    event_type = event_type_of(event)
    stripe_created = _get(event, "created")

    if not event_id:
        return {"processed": False, "reason": "missing_event_id"}

    if db.get(StripeEvent, event_id) is not None:
        return {"processed": False, "idempotent": True, "event_id": event_id}

    db.add(StripeEvent(event_id=event_id, event_type=event_type or "unknown", stripe_created=int(stripe_created) if stripe_created else None))
    try:
        db.flush()
    except IntegrityError:
        # Concurrent delivery of the same event won the insert.
        db.rollback()
        return {"processed": False, "idempotent": True, "event_id": event_id}

    obj = _get(_get(event, "data"), "object")

    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.info(f"Unhandled event type: {event_type}", extra=log_fields(event_id=event_id))
        db.commit()
        return {"processed": True, "event_id": event_id, "event_type": event_type, "handled": False}

    outcome = handler(db, obj, stripe_api)
    db.commit()

    logger.info(
        f"Processed Stripe event {event_type}",
        extra=log_fields(event_id=event_id, event_type=event_type, **outcome),
    )
    return {"processed": True, "event_id": event_id, "event_type": event_type, "handled": True, **outcome}
