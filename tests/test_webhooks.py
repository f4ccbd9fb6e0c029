import asyncio
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from core.use_cases import booking_use_cases, credit_use_cases
from core.use_cases.webhook_use_cases import reconcile_event, is_renewal, subscription_period
from core.entities.user import User
from core.services.notifier import Notifier
from main import create_app
from conftest import days_ahead, sign_payload

D = Decimal

PERIOD_1 = 1767225600  # 2026-01-01T00:00:00Z
PERIOD_2 = PERIOD_1 + 31 * 86400
PERIOD_3 = PERIOD_2 + 28 * 86400


def _at(epoch):
    return datetime.fromtimestamp(epoch, tz=timezone.utc)


def _event(event_id, event_type, obj):
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


def _subscription(user, plan, start, status="active", **extra):
    obj = {
        "id": "sub_123",
        "status": status,
        "metadata": {"user_id": str(user.id), "membership_plan_id": str(plan.id)},
        "current_period_start": start,
        "current_period_end": start + 30 * 86400,
    }
    obj.update(extra)
    return obj


def _invoice(start, reason="subscription_cycle"):
    return {
        "id": "in_1",
        "billing_reason": reason,
        "subscription": "sub_123",
        "lines": {"data": [{"period": {"start": start, "end": start + 30 * 86400}}]},
    }


def _allocations(uow, user_id):
    return [t for t in uow.users.list_credit_transactions(user_id, credit_type="meeting-room")
            if t.transaction_type == "allocation"]


@pytest.fixture
def subscriber(uow, notifier, make_user, make_plan):
    user = make_user()
    plan = make_plan(hours="10")
    result = reconcile_event(uow, notifier, _event("evt_created", "customer.subscription.created",
                                                   _subscription(user, plan, PERIOD_1)), now=_at(PERIOD_1))
    assert result.success
    return uow.users.get_by_id(user.id), plan


def test_subscription_created_activates_and_allocates(uow, subscriber):
    user, plan = subscriber

    assert user.membership_status == "active"
    assert user.membership_plan_id == plan.id
    assert user.stripe_subscription_id == "sub_123"
    assert user.membership_period_start == _at(PERIOD_1).isoformat()
    assert user.credit("meeting-room").available == D("10")
    assert user.credit("printing").available == D("50")
    assert user.credit("guest-pass").available == D("2")


def test_replayed_event_is_a_no_op(uow, notifier, make_user, make_plan):
    user = make_user()
    plan = make_plan()
    event = _event("evt_dup", "customer.subscription.created", _subscription(user, plan, PERIOD_1))

    first = reconcile_event(uow, notifier, event, now=_at(PERIOD_1))
    second = reconcile_event(uow, notifier, event, now=_at(PERIOD_1))

    assert first.success and not first.duplicate
    assert second.success and second.duplicate
    assert len(_allocations(uow, user.id)) == 1


def test_renewal_allocates_once_across_update_and_invoice(uow, notifier, subscriber):
    user, plan = subscriber
    credit_use_cases.deduct_credits(uow, user.id, "meeting-room", D("4"))

    updated = reconcile_event(uow, notifier, _event("evt_upd", "customer.subscription.updated",
                                                    _subscription(user, plan, PERIOD_2)), now=_at(PERIOD_2))
    paid = reconcile_event(uow, notifier, _event("evt_inv", "invoice.paid", _invoice(PERIOD_2)),
                           now=_at(PERIOD_2) + timedelta(minutes=3))

    assert updated.success and paid.success
    user = uow.users.get_by_id(user.id)
    assert user.credit("meeting-room").available == D("10")
    assert user.membership_period_start == _at(PERIOD_2).isoformat()
    assert len(_allocations(uow, user.id)) == 2
    expirations = [t for t in uow.users.list_credit_transactions(user.id, credit_type="meeting-room")
                   if t.transaction_type == "expiration"]
    assert [t.amount for t in expirations] == [D("-6")]
    assert credit_use_cases.verify_ledger(uow, user.id) == {}


def test_invoice_first_then_update_still_allocates_once(uow, notifier, subscriber):
    user, plan = subscriber

    reconcile_event(uow, notifier, _event("evt_inv3", "invoice.paid", _invoice(PERIOD_3)), now=_at(PERIOD_3))
    reconcile_event(uow, notifier, _event("evt_upd3", "customer.subscription.updated",
                                          _subscription(user, plan, PERIOD_3)), now=_at(PERIOD_3))

    assert len(_allocations(uow, user.id)) == 2


def test_update_within_period_does_not_allocate(uow, notifier, subscriber):
    user, plan = subscriber
    credit_use_cases.deduct_credits(uow, user.id, "meeting-room", D("4"))

    result = reconcile_event(uow, notifier, _event("evt_same", "customer.subscription.updated",
                                                   _subscription(user, plan, PERIOD_1, cancel_at_period_end=True)),
                             now=_at(PERIOD_1) + timedelta(minutes=10))

    assert result.success
    user = uow.users.get_by_id(user.id)
    assert user.membership_status == "cancelled"
    assert user.credit("meeting-room").available == D("6")
    assert len(_allocations(uow, user.id)) == 1


def test_non_cycle_invoice_is_ignored(uow, notifier, subscriber):
    user, _ = subscriber
    result = reconcile_event(uow, notifier, _event("evt_inv_create", "invoice.paid",
                                                   _invoice(PERIOD_2, reason="subscription_create")))
    assert result.success
    assert len(_allocations(uow, user.id)) == 1


def test_subscription_deleted_expires_credits(uow, notifier, subscriber):
    user, plan = subscriber
    obj = _subscription(user, plan, PERIOD_1, status="canceled")
    obj["metadata"] = {}

    result = reconcile_event(uow, notifier, _event("evt_del", "customer.subscription.deleted", obj))

    assert result.success
    user = uow.users.get_by_id(user.id)
    assert user.membership_status == "cancelled"
    assert all(b.available == 0 for b in user.credits.values())
    assert credit_use_cases.verify_ledger(uow, user.id) == {}


def test_domain_failure_is_reported_and_can_be_retried(uow, notifier, make_user):
    user = make_user()
    event = _event("evt_bad", "customer.subscription.created",
                   {"id": "sub_x", "metadata": {"user_id": str(user.id)}})

    result = reconcile_event(uow, notifier, event)

    assert not result.success
    assert "membership_plan_id" in result.error
    assert not uow.webhook_events.has_processed("evt_bad")
    assert uow.users.get_by_id(user.id).membership_status is None


def test_unhandled_event_type_is_acknowledged(uow, notifier):
    result = reconcile_event(uow, notifier, _event("evt_misc", "charge.dispute.created", {}))
    assert result.success
    assert uow.webhook_events.has_processed("evt_misc")


def _pending_booking(uow, notifier, make_user, make_workspace):
    user = make_user()
    receipt = booking_use_cases.create_booking(
        uow, notifier, user.id, make_workspace(category="desk").id, days_ahead(2), "10:00", "12:00"
    )
    assert receipt.booking.status == "pending"
    return receipt.booking


def test_payment_success_confirms_booking(uow, notifier, make_user, make_workspace):
    booking = _pending_booking(uow, notifier, make_user, make_workspace)

    result = reconcile_event(uow, notifier, _event("evt_pi", "payment_intent.succeeded", {
        "id": "pi_1", "metadata": {"booking_id": str(booking.id), "user_id": str(booking.user_id)},
    }))

    assert result.success
    booking = uow.bookings.get_by_id(booking.id)
    assert booking.status == "confirmed"
    assert booking.payment_status == "paid"
    assert booking.payment_intent_id == "pi_1"
    assert (f"private-user-{booking.user_id}", "booking.payment_succeeded") in notifier.names()


def test_payment_failure_after_success_keeps_paid(uow, notifier, make_user, make_workspace):
    booking = _pending_booking(uow, notifier, make_user, make_workspace)
    intent = {"id": "pi_2", "metadata": {"booking_id": str(booking.id)}}
    reconcile_event(uow, notifier, _event("evt_ok", "payment_intent.succeeded", intent))

    reconcile_event(uow, notifier, _event("evt_fail", "payment_intent.payment_failed", intent))

    assert uow.bookings.get_by_id(booking.id).payment_status == "paid"


def test_payment_for_unknown_booking_fails(uow, notifier):
    result = reconcile_event(uow, notifier, _event("evt_ghost", "payment_intent.succeeded", {
        "id": "pi_3", "metadata": {"booking_id": "4242"},
    }))
    assert not result.success
    assert not uow.webhook_events.has_processed("evt_ghost")


def test_renewal_detection():
    now = _at(PERIOD_2)
    fresh = User(id=1, email="a@example.com", password_hash="x")
    stored = User(id=1, email="a@example.com", password_hash="x", membership_period_start=_at(PERIOD_1).isoformat())

    assert is_renewal(stored, _at(PERIOD_2).isoformat(), now)
    assert not is_renewal(stored, _at(PERIOD_1).isoformat(), now)
    assert is_renewal(fresh, _at(PERIOD_2).isoformat(), now + timedelta(minutes=30))
    assert not is_renewal(fresh, _at(PERIOD_2).isoformat(), now + timedelta(hours=2))
    assert not is_renewal(stored, None, now)


def test_period_read_from_subscription_items():
    start, end = subscription_period({"items": {"data": [{"current_period_start": PERIOD_1,
                                                          "current_period_end": PERIOD_2}]}})
    assert start == "2026-01-01T00:00:00+00:00"
    assert end == _at(PERIOD_2).isoformat()


def test_signed_webhook_over_http(client, post_webhook, make_user, make_plan):
    user = make_user()
    plan = make_plan()
    event = _event("evt_http", "customer.subscription.created", _subscription(user, plan, PERIOD_1))

    response = post_webhook(event)
    replay = post_webhook(event)

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert response.json()["received"] is True
    assert replay.json()["duplicate"] is True


def test_bad_signature_is_rejected(client, post_webhook):
    event = _event("evt_forged", "customer.subscription.deleted", {"id": "sub_123"})

    forged = post_webhook(event, secret="whsec_wrong")
    stale = post_webhook(event, signature=sign_payload(json.dumps(event).encode(), timestamp=1000))
    missing = client.post("/webhooks/stripe", content=json.dumps(event).encode())

    for response in (forged, stale, missing):
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_SIGNATURE"


class LoopAwareNotifier(Notifier):
    """Remembers whether each publish ran with an asyncio loop in the current thread."""

    def __init__(self):
        self.contexts = []

    def publish(self, channel, event, data):
        try:
            asyncio.get_running_loop()
            self.contexts.append("event-loop")
        except RuntimeError:
            self.contexts.append("worker-thread")


def test_webhook_work_runs_off_the_event_loop(uow, notifier, settings, provider, tokens, make_user, make_workspace):
    booking = _pending_booking(uow, notifier, make_user, make_workspace)
    recorder = LoopAwareNotifier()
    app = create_app(settings, payment_provider=provider, notifier=recorder, token_service=tokens)
    event = _event("evt_thread", "payment_intent.succeeded", {
        "id": "pi_thread", "metadata": {"booking_id": str(booking.id)},
    })
    payload = json.dumps(event).encode()

    with TestClient(app) as client:
        response = client.post("/webhooks/stripe", content=payload,
                               headers={"Stripe-Signature": sign_payload(payload)})

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert recorder.contexts
    assert set(recorder.contexts) == {"worker-thread"}
