from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest

from core.use_cases import booking_use_cases, credit_use_cases
from core.use_cases.errors import ConflictError, ValidationError, NotFoundError, InsufficientCreditsError
from conftest import FailingNotifier, days_ahead

D = Decimal


def _book(uow, notifier, user, workspace, start="10:00", end="12:00", day=3, **kwargs):
    return booking_use_cases.create_booking(
        uow, notifier, user.id, workspace.id, days_ahead(day), start, end, **kwargs
    )


def _at(booking, hours_before=0, minutes_before=0):
    return booking.starts_at - timedelta(hours=hours_before, minutes=minutes_before)


def test_member_booking_is_paid_with_credits(uow, notifier, make_member, make_workspace):
    user = make_member(hours="5")
    room = make_workspace()

    receipt = _book(uow, notifier, user, room)

    assert receipt.booking.status == "confirmed"
    assert receipt.booking.payment_status == "paid"
    assert receipt.booking.credits_used == D("2")
    assert not receipt.payment_required
    assert credit_use_cases.get_balance(uow, user.id)["meeting-room"].available == D("3")
    tx = uow.users.list_credit_transactions(user.id)[0]
    assert tx.transaction_type == "deduction"
    assert tx.booking_id == receipt.booking.id
    assert ("availability", "seat.occupied") in notifier.names()
    assert ("bookings", "booking.created") in notifier.names()


def test_overage_booking_waits_for_payment(uow, notifier, make_member, make_workspace):
    user = make_member(hours="5")
    room = make_workspace(rate="20")

    receipt = _book(uow, notifier, user, room, start="09:00", end="16:00")

    assert receipt.booking.status == "pending"
    assert receipt.booking.payment_status == "pending"
    assert receipt.booking.total_price == D("41.16")
    assert receipt.payment_required
    assert credit_use_cases.get_balance(uow, user.id)["meeting-room"].available == 0


def test_failed_deduction_leaves_no_booking(uow, notifier, make_member, make_workspace):
    user = make_member(hours="5")
    room = make_workspace()

    with patch("core.use_cases.credit_use_cases.deduct_credits",
               side_effect=InsufficientCreditsError("balance changed")):
        with pytest.raises(InsufficientCreditsError):
            _book(uow, notifier, user, room)

    assert uow.bookings.list_for_user(user.id) == []
    assert credit_use_cases.get_balance(uow, user.id)["meeting-room"].available == D("5")
    assert notifier.events == []


def test_overlapping_slot_is_rejected(uow, notifier, make_member, make_workspace):
    first, second = make_member(hours="10"), make_member(hours="10")
    room = make_workspace()
    _book(uow, notifier, first, room, start="10:00", end="12:00")

    with pytest.raises(ConflictError) as exc:
        _book(uow, notifier, second, room, start="11:00", end="13:00")
    assert exc.value.code == "BOOKING_CONFLICT"

    adjacent = _book(uow, notifier, second, room, start="12:00", end="13:00")
    assert adjacent.booking.id is not None
    assert credit_use_cases.get_balance(uow, second.id)["meeting-room"].available == D("9")


def test_cancelled_booking_frees_the_slot(uow, notifier, make_member, make_workspace):
    user = make_member(hours="10")
    room = make_workspace()
    receipt = _book(uow, notifier, user, room)
    booking_use_cases.cancel_booking(uow, notifier, receipt.booking.id, user.id, "user")

    again = _book(uow, notifier, user, room)
    assert again.booking.status == "confirmed"


def test_booking_validation(uow, notifier, make_member, make_workspace):
    user = make_member()
    room = make_workspace(capacity=2)
    closed = make_workspace(available=False)

    with pytest.raises(ValidationError):
        _book(uow, notifier, user, room, start="12:00", end="10:00")
    with pytest.raises(ValidationError):
        _book(uow, notifier, user, room, attendees=3)
    with pytest.raises(ValidationError):
        _book(uow, notifier, user, room, day=-1)
    with pytest.raises(ValidationError):
        _book(uow, notifier, user, room, special_requests="x" * 501)
    with pytest.raises(NotFoundError):
        booking_use_cases.create_booking(uow, notifier, user.id, 999, days_ahead(3), "10:00", "11:00")
    with pytest.raises(ConflictError) as exc:
        _book(uow, notifier, user, closed)
    assert exc.value.code == "WORKSPACE_UNAVAILABLE"


def test_notifier_outage_does_not_fail_booking(uow, make_member, make_workspace):
    user = make_member(hours="5")
    room = make_workspace()

    receipt = _book(uow, FailingNotifier(), user, room)

    assert uow.bookings.get_by_id(receipt.booking.id).status == "confirmed"


def test_cancel_a_day_ahead_refunds_credits(uow, notifier, make_member, make_workspace):
    user = make_member(hours="5")
    receipt = _book(uow, notifier, user, make_workspace())

    result = booking_use_cases.cancel_booking(
        uow, notifier, receipt.booking.id, user.id, "user", now=_at(receipt.booking, hours_before=24)
    )

    assert result.refund_eligible
    assert result.hours_until_start == 24
    assert result.credits_refunded == D("2")
    assert result.booking.status == "cancelled"
    assert result.booking.cancelled_at
    assert result.policy.startswith("Full refund")
    assert credit_use_cases.get_balance(uow, user.id)["meeting-room"].available == D("5")
    assert ("availability", "seat.released") in notifier.names()
    assert credit_use_cases.verify_ledger(uow, user.id) == {}


def test_late_cancel_keeps_credits_spent(uow, notifier, make_member, make_workspace):
    user = make_member(hours="5")
    receipt = _book(uow, notifier, user, make_workspace())

    result = booking_use_cases.cancel_booking(
        uow, notifier, receipt.booking.id, user.id, "user", now=_at(receipt.booking, hours_before=23)
    )

    assert not result.refund_eligible
    assert result.refund_amount == 0
    assert result.credits_refunded == 0
    assert result.policy.startswith("No refund")
    assert credit_use_cases.get_balance(uow, user.id)["meeting-room"].available == D("3")


def test_paid_booking_refund_amount(uow, notifier, make_user, make_workspace):
    user = make_user()
    receipt = _book(uow, notifier, user, make_workspace(category="desk", rate="10"), day=5)

    result = booking_use_cases.cancel_booking(uow, notifier, receipt.booking.id, user.id, "user")

    assert result.refund_eligible
    assert result.refund_amount == receipt.booking.total_price


def test_cancel_rules(uow, notifier, make_member, make_user, make_workspace):
    owner = make_member(hours="5")
    stranger = make_user()
    staff = make_user(role="staff")
    receipt = _book(uow, notifier, owner, make_workspace())

    with pytest.raises(NotFoundError):
        booking_use_cases.cancel_booking(uow, notifier, receipt.booking.id, stranger.id, "user")

    booking_use_cases.cancel_booking(uow, notifier, receipt.booking.id, staff.id, "staff")
    with pytest.raises(ConflictError) as exc:
        booking_use_cases.cancel_booking(uow, notifier, receipt.booking.id, owner.id, "user")
    assert exc.value.code == "ALREADY_CANCELLED"


def test_check_in_window_and_check_out(uow, notifier, make_member, make_workspace):
    user = make_member(hours="5")
    booking = _book(uow, notifier, user, make_workspace()).booking

    with pytest.raises(ValidationError):
        booking_use_cases.check_in(uow, notifier, booking.id, user.id, now=_at(booking, minutes_before=20))

    checked_in = booking_use_cases.check_in(uow, notifier, booking.id, user.id,
                                            now=_at(booking, minutes_before=10))
    assert checked_in.status == "checked_in"

    with pytest.raises(ConflictError) as exc:
        booking_use_cases.cancel_booking(uow, notifier, booking.id, user.id, "user")
    assert exc.value.code == "BOOKING_ACTIVE"

    done = booking_use_cases.check_out(uow, notifier, booking.id, user.id,
                                       now=_at(booking) + timedelta(hours=1, minutes=50))
    assert done.status == "completed"
    assert done.actual_duration_hours == D("2.00")
    assert ("bookings", "booking.completed") in notifier.names()


def test_check_in_closes_an_hour_after_end(uow, notifier, make_member, make_workspace):
    user = make_member(hours="5")
    booking = _book(uow, notifier, user, make_workspace()).booking

    with pytest.raises(ValidationError):
        booking_use_cases.check_in(uow, notifier, booking.id, user.id,
                                   now=booking.ends_at + timedelta(hours=1, minutes=1))


def test_only_one_active_booking(uow, notifier, make_member, make_workspace):
    user = make_member(hours="10")
    first = _book(uow, notifier, user, make_workspace(name="A")).booking
    second = _book(uow, notifier, user, make_workspace(name="B")).booking
    booking_use_cases.check_in(uow, notifier, first.id, user.id, now=_at(first))

    with pytest.raises(ConflictError) as exc:
        booking_use_cases.check_in(uow, notifier, second.id, user.id, now=_at(second))
    assert exc.value.code == "ACTIVE_BOOKING_EXISTS"


def test_unpaid_booking_cannot_check_in(uow, notifier, make_user, make_workspace):
    user = make_user()
    booking = _book(uow, notifier, user, make_workspace(category="desk")).booking

    with pytest.raises(ConflictError):
        booking_use_cases.check_in(uow, notifier, booking.id, user.id, now=_at(booking))


def test_listing_with_summary_and_status_info(uow, notifier, make_member, make_workspace):
    user = make_member(hours="10")
    room = make_workspace()
    kept = _book(uow, notifier, user, room, start="08:00", end="09:00").booking
    dropped = _book(uow, notifier, user, room, start="14:00", end="15:00").booking
    booking_use_cases.cancel_booking(uow, notifier, dropped.id, user.id, "user")

    listing = booking_use_cases.list_bookings(uow, user.id)
    assert len(listing["bookings"]) == 2
    assert listing["summary"]["confirmed"] == 1
    assert listing["summary"]["cancelled"] == 1

    detail = booking_use_cases.get_booking(uow, kept.id, user.id, "user", now=datetime.now())
    assert detail["status_info"]["is_upcoming"]
    assert detail["status_info"]["can_cancel"]

    with pytest.raises(ValidationError):
        booking_use_cases.list_bookings(uow, user.id, status="lost")


def test_summary_counts_every_booking(uow, notifier, make_member, make_workspace):
    user = make_member(hours="10")
    room = make_workspace()
    for start, end in (("08:00", "09:00"), ("09:00", "10:00"), ("10:00", "11:00")):
        _book(uow, notifier, user, room, start=start, end=end)

    listing = booking_use_cases.list_bookings(uow, user.id, limit=1)

    assert len(listing["bookings"]) == 1
    assert listing["summary"]["confirmed"] == 3
    assert uow.bookings.count_by_status(user.id) == {"confirmed": 3}


def test_unknown_statuses_are_not_written(uow, notifier, make_member, make_workspace):
    user = make_member(hours="5")
    booking = _book(uow, notifier, user, make_workspace()).booking

    with pytest.raises(ValueError):
        uow.bookings.update(booking.id, payment_status="lost")
    with pytest.raises(ValueError):
        uow.bookings.update(booking.id, status="teleported")
    assert uow.bookings.get_by_id(booking.id).payment_status == "paid"
