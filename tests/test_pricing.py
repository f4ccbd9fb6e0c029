from decimal import Decimal

import pytest

from core.entities.user import User
from core.entities.workspace import Workspace
from core.use_cases.errors import ValidationError, AuthorizationError
from core.use_cases.pricing import (
    calculate_booking_price, calculate_duration_hours, calculate_order_totals, quote_booking,
    to_minor_units, pricing_summary_lines,
)

D = Decimal


def _member(hours="0", nft=False, active=True):
    user = User(id=1, email="m@example.com", password_hash="x", nft_holder=nft,
                membership_plan_id=1 if active else None, membership_status="active" if active else None)
    user.credits["meeting-room"].available = D(hours)
    return user


def _room(category="meeting-room", rate="20"):
    return Workspace(id=1, name="Room", resource_category=category, capacity=6, hourly_rate=D(rate))


def test_credits_cover_whole_booking():
    p = calculate_booking_price(D("3"), D("20"), D("5"), nft_holder=False)
    assert p.credits_used == D("3")
    assert p.overage_hours == 0
    assert p.overage_charge == 0
    assert p.total_price == 0
    assert p.payment_method == "credits"


def test_overage_is_billed_with_processing_fee():
    p = calculate_booking_price(D("7"), D("20"), D("5"), nft_holder=False)
    assert p.credits_used == D("5")
    assert p.overage_hours == D("2")
    assert p.overage_charge == D("40")
    assert p.nft_discount == 0
    assert p.processing_fee == D("1.16")
    assert p.total_price == D("41.16")


def test_nft_discount_halves_overage():
    p = calculate_booking_price(D("2"), D("25"), D("0"), nft_holder=True)
    assert p.overage_charge == D("50")
    assert p.nft_discount == D("25")
    assert p.subtotal == D("25")
    assert p.total_price == D("25.725")
    assert p.nft_discount_applied


def test_nft_discount_never_touches_credit_hours():
    p = calculate_booking_price(D("3"), D("25"), D("5"), nft_holder=True)
    assert p.nft_discount == 0
    assert p.total_price == 0


@pytest.mark.parametrize("duration,credits", [
    ("0.25", "0"), ("1.5", "0.75"), ("8", "3.33"), ("2.17", "10"), ("4.83", "4.82"),
])
def test_credit_and_overage_hours_sum_to_duration(duration, credits):
    p = calculate_booking_price(D(duration), D("17.50"), D(credits), nft_holder=False)
    assert p.credits_used + p.overage_hours == D(duration)
    assert p.total_price >= 0


def test_non_positive_duration_rejected():
    with pytest.raises(ValidationError):
        calculate_booking_price(D("0"), D("20"), D("5"), nft_holder=False)


def test_duration_from_times():
    assert calculate_duration_hours("09:00", "12:30") == D("3.50")
    assert calculate_duration_hours("09:00", "09:20") == D("0.33")
    with pytest.raises(ValidationError):
        calculate_duration_hours("12:00", "09:00")
    with pytest.raises(ValidationError):
        calculate_duration_hours("9am", "10:00")


def test_short_booking_bills_hundredths_of_an_hour():
    duration = calculate_duration_hours("09:00", "09:20")
    p = calculate_booking_price(duration, D("30"), D("0.25"), nft_holder=False)

    assert p.credits_used + p.overage_hours == D("0.33")
    assert p.overage_hours == D("0.08")
    assert p.overage_charge == D("2.40")


def test_quote_requires_membership_for_meeting_rooms():
    with pytest.raises(AuthorizationError) as exc:
        quote_booking(_room(), _member(hours="5", active=False), D("2"))
    assert exc.value.code == "MEMBERSHIP_REQUIRED"


def test_quote_desk_draws_no_credits():
    p = quote_booking(_room(category="desk", rate="10"), _member(hours="5", active=False), D("2"))
    assert p.credits_used == 0
    assert p.overage_charge == D("20")


def test_quote_rejects_unknown_category():
    with pytest.raises(ValidationError):
        quote_booking(_room(category="phone-booth"), _member(), D("1"))


def test_order_totals_rounded_to_cents():
    totals = calculate_order_totals([(2, D("4.50")), (1, D("3.25"))], nft_holder=True)
    assert totals["subtotal"] == D("12.25")
    assert totals["discount_amount"] == D("1.23")
    # (12.25 - 1.225) * 0.029 + 0.30
    assert totals["processing_fee"] == D("0.62")
    assert totals["total_price"] == D("11.64")


def test_minor_units_round_half_up():
    assert to_minor_units(D("25.725")) == 2573
    assert to_minor_units(D("41.16")) == 4116


def test_summary_lines_mention_discount():
    lines = pricing_summary_lines(calculate_booking_price(D("2"), D("25"), D("0"), nft_holder=True))
    assert any("NFT Holder Discount" in line for line in lines)
    assert lines[-1] == "Total: $25.73"
