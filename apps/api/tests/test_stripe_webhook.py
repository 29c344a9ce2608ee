"""Stripe webhook endpoint: verification, event dispatch and billing row writes."""
import asyncio
import hashlib
import hmac
import json
import sys
import time
from datetime import datetime, timezone
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent))

from models import CoachingCall, Profile, StripeEvent, Subscription

WEBHOOK_URL = "/v1/billing/webhooks/stripe"
PERIOD_END = 1767225600  # 2026-01-01T00:00:00Z


def _utc(dt):
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _event(event_id: str, event_type: str, obj: dict) -> dict:
    return {"id": event_id, "type": event_type, "created": 1700000000, "data": {"object": obj}}


def _sign(payload: bytes, secret: str = "whsec_test_secret", ts: int = None) -> str:
    ts = ts or int(time.time())
    signed = f"{ts}.{payload.decode('utf-8')}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


@pytest.fixture
def deliver(client, monkeypatch):
    """Post a pre-built event, bypassing signature verification."""
    from services import stripe_service as ss

    calls = {"period_end": [], "line_items": []}

    def _period_end(self, subscription_id):
        calls["period_end"].append(subscription_id)
        return datetime.fromtimestamp(PERIOD_END, tz=timezone.utc)

    def _line_items(self, session_id):
        calls["line_items"].append(session_id)
        return None

    monkeypatch.setattr(ss.StripeService, "subscription_period_end", _period_end)
    monkeypatch.setattr(ss.StripeService, "tier_from_line_items", _line_items)

    def _deliver(event):
        monkeypatch.setattr(ss.StripeService, "construct_event", lambda self, payload, sig_header: event)
        return client.post(WEBHOOK_URL, content=b"{}", headers={"Stripe-Signature": "sig"})

    _deliver.calls = calls
    return _deliver


def _checkout(tier="blueprint", email="Buyer@Example.com", **extra) -> dict:
    obj = {
        "id": "cs_test_1",
        "object": "checkout.session",
        "customer": "cus_123",
        "customer_details": {"email": email},
        "customer_email": None,
        "subscription": "sub_123",
        "payment_intent": None,
        "metadata": {"tier": tier} if tier else {},
    }
    obj.update(extra)
    return obj


def _add_subscription(db, *, subscription_id="sub_123", status="active", **fields) -> Subscription:
    sub = Subscription(
        stripe_subscription_id=subscription_id,
        stripe_customer_id="cus_123",
        customer_email="buyer@example.com",
        tier=fields.pop("tier", "full_coaching"),
        status=status,
        **fields,
    )
    db.add(sub)
    db.commit()
    return sub


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------

def test_missing_signature_is_rejected(client):
    resp = client.post(WEBHOOK_URL, content=b"{}")
    assert resp.status_code == 400
    assert resp.json()["detail"] == "No signature"


def test_bad_signature_is_rejected(client, db_session):
    payload = json.dumps(_event("evt_bad", "invoice.paid", {"id": "in_1"})).encode()
    resp = client.post(WEBHOOK_URL, content=payload, headers={"Stripe-Signature": "t=123,v1=deadbeef"})

    assert resp.status_code == 400
    assert resp.json()["detail"].startswith("Webhook Error:")
    assert db_session.query(StripeEvent).count() == 0


def test_signed_payload_is_accepted_and_unhandled_type_ignored(client, db_session):
    payload = json.dumps(
        _event("evt_signed_1", "product.created", {"id": "prod_1", "object": "product"})
    ).encode()

    resp = client.post(WEBHOOK_URL, content=payload, headers={"Stripe-Signature": _sign(payload)})

    assert resp.status_code == 200
    body = resp.json()
    assert body["received"] is True
    assert body["result"]["handled"] is False
    assert db_session.query(StripeEvent).filter(StripeEvent.event_id == "evt_signed_1").count() == 1
    assert db_session.query(Subscription).count() == 0


def test_signature_with_wrong_secret_is_rejected(client):
    payload = json.dumps(_event("evt_x", "product.created", {"id": "prod_1"})).encode()
    resp = client.post(WEBHOOK_URL, content=payload, headers={"Stripe-Signature": _sign(payload, secret="whsec_other")})
    assert resp.status_code == 400


def test_missing_webhook_secret_fails_closed(client, monkeypatch):
    from services import stripe_service as ss

    cfg = ss.StripeConfig(secret_key="sk_test_dummy", webhook_secret=None, api_version="2024-04-10", webhook_tolerance_s=300)
    monkeypatch.setattr(ss, "_get_stripe_config", lambda: cfg)

    resp = client.post(WEBHOOK_URL, content=b"{}", headers={"Stripe-Signature": "sig"})
    assert resp.status_code == 503


def test_preflight_options_returns_ok(client):
    resp = client.options(WEBHOOK_URL)
    assert resp.status_code == 200
    assert resp.text == "ok"


# ---------------------------------------------------------------------------
# checkout.session.completed
# ---------------------------------------------------------------------------

def test_checkout_creates_subscription_and_links_profile(deliver, db_session, make_profile):
    buyer = make_profile("athlete", email="buyer@example.com")

    resp = deliver(_event("evt_co_1", "checkout.session.completed", _checkout()))

    assert resp.status_code == 200
    assert resp.json()["result"]["table"] == "subscriptions"

    sub = db_session.query(Subscription).one()
    assert sub.user_id == buyer.id
    assert sub.tier == "blueprint"
    assert sub.status == "active"
    assert sub.stripe_customer_id == "cus_123"
    assert sub.stripe_subscription_id == "sub_123"
    assert sub.customer_email == "Buyer@Example.com"
    assert _utc(sub.current_period_end) == datetime.fromtimestamp(PERIOD_END, tz=timezone.utc)

    db_session.expire_all()
    assert db_session.get(Profile, buyer.id).stripe_customer_id == "cus_123"
    assert deliver.calls["period_end"] == ["sub_123"]


def test_checkout_without_account_stores_email_only(deliver, db_session):
    resp = deliver(_event("evt_co_2", "checkout.session.completed", _checkout(tier="full_coaching", email="new@example.com")))

    assert resp.status_code == 200
    sub = db_session.query(Subscription).one()
    assert sub.user_id is None
    assert sub.customer_email == "new@example.com"
    assert sub.tier == "full_coaching"


def test_checkout_falls_back_to_customer_email(deliver, db_session):
    obj = _checkout(customer_details=None, customer_email="fallback@example.com")
    deliver(_event("evt_co_3", "checkout.session.completed", obj))

    assert db_session.query(Subscription).one().customer_email == "fallback@example.com"


def test_checkout_coaching_call_records_one_time_purchase(deliver, db_session, make_profile):
    buyer = make_profile("athlete", email="caller@example.com")
    obj = _checkout(tier="coaching_call", email="caller@example.com", subscription=None, payment_intent="pi_42")

    resp = deliver(_event("evt_co_4", "checkout.session.completed", obj))

    assert resp.status_code == 200
    call = db_session.query(CoachingCall).one()
    assert call.user_id == buyer.id
    assert call.stripe_payment_intent_id == "pi_42"
    assert call.status == "purchased"
    assert db_session.query(Subscription).count() == 0
    assert deliver.calls["period_end"] == []


def test_checkout_tier_from_line_items(deliver, db_session, monkeypatch):
    from services import stripe_service as ss

    monkeypatch.setattr(ss.StripeService, "tier_from_line_items", lambda self, session_id: "full_coaching")
    deliver(_event("evt_co_5", "checkout.session.completed", _checkout(tier=None)))

    assert db_session.query(Subscription).one().tier == "full_coaching"


def test_checkout_without_tier_writes_nothing(deliver, db_session):
    resp = deliver(_event("evt_co_6", "checkout.session.completed", _checkout(tier=None)))

    assert resp.status_code == 200
    assert resp.json()["result"]["reason"] == "missing_tier"
    assert deliver.calls["line_items"] == ["cs_test_1"]
    assert db_session.query(Subscription).count() == 0
    assert db_session.query(CoachingCall).count() == 0


def test_checkout_with_unknown_tier_writes_nothing(deliver, db_session):
    resp = deliver(_event("evt_co_7", "checkout.session.completed", _checkout(tier="platinum")))

    assert resp.status_code == 200
    assert resp.json()["result"]["reason"] == "unknown_tier"
    assert db_session.query(Subscription).count() == 0


def test_checkout_with_expanded_customer_object(deliver, db_session):
    deliver(_event("evt_co_8", "checkout.session.completed", _checkout(customer={"id": "cus_obj", "object": "customer"})))

    assert db_session.query(Subscription).one().stripe_customer_id == "cus_obj"


# ---------------------------------------------------------------------------
# Subscription lifecycle
# ---------------------------------------------------------------------------

def test_subscription_updated_mirrors_status_and_period(deliver, db_session):
    _add_subscription(db_session)
    obj = {"id": "sub_123", "status": "past_due", "cancel_at_period_end": False, "current_period_end": PERIOD_END}

    resp = deliver(_event("evt_su_1", "customer.subscription.updated", obj))

    assert resp.status_code == 200
    db_session.expire_all()
    sub = db_session.query(Subscription).one()
    assert sub.status == "past_due"
    assert sub.cancel_at_period_end is False
    assert _utc(sub.current_period_end) == datetime.fromtimestamp(PERIOD_END, tz=timezone.utc)


def test_subscription_scheduled_cancel_stays_active(deliver, db_session):
    _add_subscription(db_session)
    obj = {"id": "sub_123", "status": "active", "cancel_at_period_end": True, "current_period_end": PERIOD_END}

    deliver(_event("evt_su_2", "customer.subscription.updated", obj))

    db_session.expire_all()
    sub = db_session.query(Subscription).one()
    assert sub.status == "active"
    assert sub.cancel_at_period_end is True


def test_subscription_updated_reads_period_from_items(deliver, db_session):
    _add_subscription(db_session)
    obj = {
        "id": "sub_123",
        "status": "unpaid",
        "cancel_at_period_end": False,
        "cancel_at": None,
        "items": {"data": [{"current_period_end": PERIOD_END - 10}, {"current_period_end": PERIOD_END}]},
    }

    deliver(_event("evt_su_3", "customer.subscription.updated", obj))

    db_session.expire_all()
    sub = db_session.query(Subscription).one()
    assert sub.status == "canceled"
    assert _utc(sub.current_period_end) == datetime.fromtimestamp(PERIOD_END, tz=timezone.utc)


def test_subscription_deleted_cancels(deliver, db_session):
    _add_subscription(db_session, cancel_at_period_end=True)

    deliver(_event("evt_sd_1", "customer.subscription.deleted", {"id": "sub_123", "status": "canceled"}))

    db_session.expire_all()
    sub = db_session.query(Subscription).one()
    assert sub.status == "canceled"
    assert sub.cancel_at_period_end is False


def test_unknown_subscription_id_touches_nothing(deliver, db_session):
    _add_subscription(db_session)

    resp = deliver(_event("evt_sd_2", "customer.subscription.deleted", {"id": "sub_other"}))

    assert resp.status_code == 200
    assert resp.json()["result"]["rows"] == 0
    db_session.expire_all()
    assert db_session.query(Subscription).one().status == "active"


# ---------------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------------

def test_invoice_payment_failed_marks_past_due(deliver, db_session):
    _add_subscription(db_session)

    deliver(_event("evt_if_1", "invoice.payment_failed", {"id": "in_1", "subscription": "sub_123"}))

    db_session.expire_all()
    assert db_session.query(Subscription).one().status == "past_due"


def test_invoice_without_subscription_is_noop(deliver, db_session):
    _add_subscription(db_session)

    resp = deliver(_event("evt_if_2", "invoice.payment_failed", {"id": "in_2", "subscription": None}))

    assert resp.status_code == 200
    assert resp.json()["result"]["reason"] == "no_subscription"
    db_session.expire_all()
    assert db_session.query(Subscription).one().status == "active"


def test_invoice_paid_reactivates_with_fresh_period(deliver, db_session):
    _add_subscription(db_session, status="past_due")
    invoice = {
        "id": "in_3",
        "subscription": None,
        "parent": {"subscription_details": {"subscription": "sub_123"}},
    }

    deliver(_event("evt_ip_1", "invoice.paid", invoice))

    db_session.expire_all()
    sub = db_session.query(Subscription).one()
    assert sub.status == "active"
    assert _utc(sub.current_period_end) == datetime.fromtimestamp(PERIOD_END, tz=timezone.utc)
    assert deliver.calls["period_end"] == ["sub_123"]


# ---------------------------------------------------------------------------
# Idempotency and failures
# ---------------------------------------------------------------------------

def test_duplicate_delivery_is_idempotent(deliver, db_session):
    event = _event("evt_dup_1", "checkout.session.completed", _checkout())

    first = deliver(event)
    second = deliver(event)

    assert first.status_code == 200
    assert second.status_code == 200
    assert second.json()["result"]["idempotent"] is True
    assert db_session.query(Subscription).count() == 1
    assert db_session.query(StripeEvent).count() == 1


def test_handler_exception_returns_500_and_rolls_back(deliver, db_session, monkeypatch):
    from services import stripe_service as ss

    def _boom(self, subscription_id):
        raise ConnectionError("stripe unreachable")

    monkeypatch.setattr(ss.StripeService, "subscription_period_end", _boom)

    resp = deliver(_event("evt_fail_1", "checkout.session.completed", _checkout()))

    assert resp.status_code == 500
    assert resp.json()["detail"] == "Handler error: stripe unreachable"
    # Not recorded, so Stripe's retry gets processed.
    assert db_session.query(StripeEvent).count() == 0
    assert db_session.query(Subscription).count() == 0


def test_attribute_style_event_objects_are_supported(deliver, db_session):
    _add_subscription(db_session)

    class _DummyData:
        def __init__(self, o):
            self.object = o

    class _DummyEvent:
        def __init__(self):
            self.id = "evt_attr_1"
            self.type = "customer.subscription.deleted"
            self.created = 123
            self.data = _DummyData(type("sub", (), {"id": "sub_123"})())

    resp = deliver(_DummyEvent())

    assert resp.status_code == 200
    db_session.expire_all()
    assert db_session.query(Subscription).one().status == "canceled"


def test_stripe_lookups_run_off_the_event_loop(deliver, db_session, monkeypatch):
    from services import stripe_service as ss

    on_loop = []

    def _period_end(self, subscription_id):
        try:
            asyncio.get_running_loop()
            on_loop.append(True)
        except RuntimeError:
            on_loop.append(False)
        return datetime.fromtimestamp(PERIOD_END, tz=timezone.utc)

    monkeypatch.setattr(ss.StripeService, "subscription_period_end", _period_end)

    resp = deliver(_event("evt_thread_1", "checkout.session.completed", _checkout()))

    assert resp.status_code == 200
    assert on_loop == [False]
