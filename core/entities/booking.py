from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import Optional

BOOKING_STATUSES = ("pending", "confirmed", "checked_in", "completed", "cancelled")
PAYMENT_STATUSES = ("pending", "paid", "refunding", "refunded")

# статусы меняются только вперед, отмена - до check-in
BOOKING_TRANSITIONS = {
    "pending": ("confirmed", "cancelled"),
    "confirmed": ("checked_in", "cancelled"),
    "checked_in": ("completed",),
    "completed": (),
    "cancelled": (),
}

ACTIVE_BOOKING_STATUSES = ("pending", "confirmed", "checked_in")


def can_transition(current: str, target: str) -> bool:
    return target in BOOKING_TRANSITIONS.get(current, ())


@dataclass
class PricingBreakdown:
    hourly_rate: Decimal
    duration_hours: Decimal
    credits_used: Decimal
    overage_hours: Decimal
    overage_charge: Decimal
    nft_discount: Decimal
    subtotal: Decimal
    processing_fee: Decimal
    total_price: Decimal

    @property
    def nft_discount_applied(self) -> bool:
        return self.nft_discount > 0

    @property
    def payment_method(self) -> str:
        if self.total_price > 0:
            return "card"
        return "credits" if self.credits_used > 0 else "card"


@dataclass
class Booking:
    id: Optional[int]
    user_id: Optional[int]
    workspace_id: int
    booking_date: str   # YYYY-MM-DD
    start_time: str     # HH:MM
    end_time: str       # HH:MM
    duration_hours: Decimal
    attendees: int
    subtotal: Decimal
    credits_used: Decimal
    overage_hours: Decimal
    overage_charge: Decimal
    nft_discount: Decimal
    processing_fee: Decimal
    total_price: Decimal
    status: str = "pending"
    payment_status: str = "pending"
    payment_intent_id: Optional[str] = None
    confirmation_code: Optional[str] = None
    special_requests: Optional[str] = None
    check_in_time: Optional[str] = None
    check_out_time: Optional[str] = None
    actual_duration_hours: Optional[Decimal] = None
    cancelled_at: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(date.fromisoformat(self.booking_date), time.fromisoformat(self.start_time))

    @property
    def ends_at(self) -> datetime:
        return datetime.combine(date.fromisoformat(self.booking_date), time.fromisoformat(self.end_time))
