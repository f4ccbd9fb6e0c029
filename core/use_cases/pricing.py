"""Booking and cafe pricing.

All amounts are ``Decimal``; nothing here rounds except where noted, so
``credits_used + overage_hours == duration_hours`` holds exactly.
"""
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional, Tuple, Dict

from core.entities.booking import PricingBreakdown
from core.entities.user import User
from core.entities.workspace import Workspace, WORKSPACE_CATEGORIES
from core.use_cases.errors import ValidationError, AuthorizationError

NFT_DISCOUNT_RATE = Decimal("0.5")
PROCESSING_FEE_RATE = Decimal("0.029")

CAFE_NFT_DISCOUNT_RATE = Decimal("0.1")
CAFE_PROCESSING_FEE_FIXED = Decimal("0.30")

ZERO = Decimal("0")
CENTS = Decimal("0.01")
# длительность считается в сотых долях часа: 20 минут = 0.33 ч
HOURS_QUANTUM = Decimal("0.01")

# какой тип кредитов расходует категория (None - только оплата)
CATEGORY_CREDIT_TYPE: Dict[str, Optional[str]] = {
    "desk": None,
    "meeting-room": "meeting-room",
}
MEMBERSHIP_REQUIRED_CATEGORIES = ("meeting-room",)


def _to_minutes(value: str) -> int:
    try:
        parsed = datetime.strptime(value, "%H:%M")
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid time '{value}', expected HH:MM")
    return parsed.hour * 60 + parsed.minute


def calculate_duration_hours(start_time: str, end_time: str) -> Decimal:
    minutes = _to_minutes(end_time) - _to_minutes(start_time)
    if minutes <= 0:
        raise ValidationError("End time must be after start time")
    return (Decimal(minutes) / Decimal(60)).quantize(HOURS_QUANTUM, rounding=ROUND_HALF_UP)


def calculate_actual_duration(check_in: datetime, check_out: datetime) -> Decimal:
    seconds = Decimal(str((check_out - check_in).total_seconds()))
    hours = (seconds / Decimal(3600)).quantize(HOURS_QUANTUM, rounding=ROUND_HALF_UP)
    return max(hours, ZERO)


def calculate_booking_price(duration_hours: Decimal, hourly_rate: Decimal,
                            available_credits: Decimal, nft_holder: bool) -> PricingBreakdown:
    """Credits first, then the NFT discount on the overage, then the fee."""
    duration_hours = Decimal(duration_hours)
    hourly_rate = Decimal(hourly_rate)
    available = max(Decimal(available_credits), ZERO)

    if duration_hours <= 0:
        raise ValidationError("Booking duration must be positive")
    if hourly_rate < 0:
        raise ValidationError("Hourly rate cannot be negative")

    if available >= duration_hours:
        credits_used = duration_hours
        overage_hours = ZERO
    else:
        credits_used = available
        overage_hours = duration_hours - available

    overage_charge = overage_hours * hourly_rate
    nft_discount = ZERO
    if nft_holder and overage_charge > 0:
        nft_discount = overage_charge * NFT_DISCOUNT_RATE
    subtotal = overage_charge - nft_discount

    processing_fee = subtotal * PROCESSING_FEE_RATE
    total_price = subtotal + processing_fee

    return PricingBreakdown(
        hourly_rate=hourly_rate,
        duration_hours=duration_hours,
        credits_used=credits_used,
        overage_hours=overage_hours,
        overage_charge=overage_charge,
        nft_discount=nft_discount,
        subtotal=subtotal,
        processing_fee=processing_fee,
        total_price=total_price,
    )


def credit_type_for(workspace: Workspace) -> Optional[str]:
    if workspace.resource_category not in WORKSPACE_CATEGORIES:
        raise ValidationError(f"Unrecognized workspace category '{workspace.resource_category}'")
    return CATEGORY_CREDIT_TYPE[workspace.resource_category]


def quote_booking(workspace: Workspace, user: User, duration_hours: Decimal) -> PricingBreakdown:
    """Validates the request against the workspace and user, then prices it
    from the user's current balance."""
    if Decimal(duration_hours) <= 0:
        raise ValidationError("Booking duration must be positive")
    credit_type = credit_type_for(workspace)
    if workspace.resource_category in MEMBERSHIP_REQUIRED_CATEGORIES and not user.has_active_membership:
        raise AuthorizationError(
            "Meeting room bookings require an active membership", code="MEMBERSHIP_REQUIRED"
        )
    available = user.credit(credit_type).available if credit_type else ZERO
    return calculate_booking_price(duration_hours, workspace.hourly_rate, available, user.nft_holder)


def calculate_order_totals(lines: Iterable[Tuple[int, Decimal]], nft_holder: bool = False) -> Dict[str, Decimal]:
    """Cafe totals from (quantity, unit_price) pairs, rounded to cents."""
    subtotal = sum((Decimal(q) * Decimal(p) for q, p in lines), ZERO)
    discount = subtotal * CAFE_NFT_DISCOUNT_RATE if nft_holder else ZERO
    after_discount = subtotal - discount
    processing_fee = after_discount * PROCESSING_FEE_RATE + CAFE_PROCESSING_FEE_FIXED
    total = after_discount + processing_fee
    return {
        "subtotal": round_money(subtotal),
        "discount_amount": round_money(discount),
        "processing_fee": round_money(processing_fee),
        "total_price": round_money(total),
    }


def round_money(amount: Decimal) -> Decimal:
    return Decimal(amount).quantize(CENTS, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_price(amount: Decimal) -> str:
    return f"${round_money(amount)}"


def pricing_summary_lines(pricing: PricingBreakdown) -> List[str]:
    lines = []
    if pricing.credits_used > 0:
        lines.append(f"Credits used: {pricing.credits_used} hours")
    if pricing.overage_hours > 0:
        lines.append(
            f"Overage: {pricing.overage_hours} hours @ {format_price(pricing.hourly_rate)}/hr"
            f" = {format_price(pricing.overage_charge)}"
        )
    if pricing.nft_discount_applied:
        lines.append(f"NFT Holder Discount (50%): -{format_price(pricing.nft_discount)}")
    if pricing.processing_fee > 0:
        lines.append(f"Processing Fee: {format_price(pricing.processing_fee)}")
    lines.append(f"Total: {format_price(pricing.total_price)}")
    return lines
