import threading
from decimal import Decimal

import pytest

from core.use_cases import booking_use_cases, payment_use_cases
from core.use_cases.errors import ConflictError, PaymentProviderError, ValidationError
from core.use_cases.webhook_use_cases import reconcile_event
from infrastructure.db.sqlite import connect, SQLiteUnitOfWork
from infrastructure.payments.stub_provider import StubPaymentProvider
from conftest import days_ahead

D = Decimal


class HeldRefundProvider(StubPaymentProvider):
    """Holds every refund until ``release`` is set."""

    def __init__(self):
        super().__init__()
        self.release = threading.Event()
        self.refund_calls = 0

    def create_refund(self, *args, **kwargs):
        self.refund_calls += 1
        self.release.wait(timeout=5)
        return super().create_refund(*args, **kwargs)


class BrokenRefundProvider(StubPaymentProvider):
    def create_refund(self, *args, **kwargs):
        raise PaymentProviderError("Payment provider error")


@pytest.fixture
def paid_cancelled_booking(uow, notifier, make_user, make_workspace):
    user = make_user()
    receipt = booking_use_cases.create_booking(
        uow, notifier, user.id, make_workspace(category="desk", rate="10").id, days_ahead(4), "10:00", "12:00"
    )
    uow.bookings.update(receipt.booking.id, payment_status="paid", status="confirmed", payment_intent_id="pi_paid")
    booking_use_cases.cancel_booking(uow, notifier, receipt.booking.id, user.id, "user")
    return uow.bookings.get_by_id(receipt.booking.id)


def test_refund_marks_booking_refunded(uow, provider, paid_cancelled_booking):
    booking = paid_cancelled_booking

    result = payment_use_cases.refund_booking_payment(uow, provider, booking.id, booking.user_id, "user")

    assert result["amount"] == D("20.58")
    assert result["booking"].payment_status == "refunded"
    assert provider.refunds_by_key[f"refund-{booking.id}"].amount_minor == 2058
    with pytest.raises(ConflictError) as exc:
        payment_use_cases.refund_booking_payment(uow, provider, booking.id, booking.user_id, "user")
    assert exc.value.code == "NOT_REFUNDABLE"


def test_concurrent_refunds_reach_provider_once(db_path, uow, paid_cancelled_booking):
    booking = paid_cancelled_booking
    provider = HeldRefundProvider()
    results = []
    barrier = threading.Barrier(2)

    def worker():
        conn = connect(db_path, timeout=10)
        try:
            barrier.wait()
            payment_use_cases.refund_booking_payment(
                SQLiteUnitOfWork(conn), provider, booking.id, booking.user_id, "user"
            )
            results.append("ok")
        except ConflictError as e:
            results.append(e.code)
            provider.release.set()
        finally:
            conn.close()

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(results) == ["NOT_REFUNDABLE", "ok"]
    assert provider.refund_calls == 1
    assert [r.amount_minor for r in provider.refunds] == [2058]
    assert uow.bookings.get_by_id(booking.id).payment_status == "refunded"


def test_provider_failure_releases_the_claim(uow, provider, paid_cancelled_booking):
    booking = paid_cancelled_booking

    with pytest.raises(PaymentProviderError):
        payment_use_cases.refund_booking_payment(uow, BrokenRefundProvider(), booking.id, booking.user_id, "user")
    assert uow.bookings.get_by_id(booking.id).payment_status == "paid"

    retried = payment_use_cases.refund_booking_payment(uow, provider, booking.id, booking.user_id, "user")
    assert retried["booking"].payment_status == "refunded"


def test_late_payment_event_does_not_undo_refund(uow, notifier, provider, paid_cancelled_booking):
    booking = paid_cancelled_booking
    payment_use_cases.refund_booking_payment(uow, provider, booking.id, booking.user_id, "user")

    result = reconcile_event(uow, notifier, {"id": "evt_late", "type": "payment_intent.succeeded", "data": {
        "object": {"id": "pi_paid", "metadata": {"booking_id": str(booking.id)}},
    }})

    assert result.success
    assert uow.bookings.get_by_id(booking.id).payment_status == "refunded"


def test_refund_over_total_is_rejected_before_claim(uow, provider, paid_cancelled_booking):
    booking = paid_cancelled_booking

    with pytest.raises(ValidationError):
        payment_use_cases.refund_booking_payment(uow, provider, booking.id, booking.user_id, "user",
                                                 amount=D("99"))
    assert uow.bookings.get_by_id(booking.id).payment_status == "paid"
    assert provider.refunds == []
