import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional, List, Dict, Any

from core.entities.booking import Booking, PricingBreakdown, BOOKING_STATUSES, can_transition
from core.entities.user import STAFF_ROLES
from core.entities.workspace import Workspace
from core.repositories.unit_of_work import UnitOfWork
from core.services.notifier import Notifier
from core.use_cases import credit_use_cases
from core.use_cases.errors import ValidationError, NotFoundError, ConflictError
from core.use_cases.notifications import booking_event, seat_event
from core.use_cases.pricing import (
    calculate_duration_hours, calculate_actual_duration, quote_booking, credit_type_for,
)

logger = logging.getLogger(__name__)

REFUND_WINDOW_HOURS = 24
EARLY_CHECK_IN = timedelta(minutes=15)
LATE_CHECK_IN = timedelta(hours=1)
MAX_SPECIAL_REQUESTS = 500

ZERO = Decimal("0")


@dataclass
class BookingReceipt:
    booking: Booking
    pricing: PricingBreakdown
    workspace: Workspace

    @property
    def payment_required(self) -> bool:
        return self.pricing.total_price > 0


@dataclass
class Cancellation:
    booking: Booking
    refund_eligible: bool
    refund_amount: Decimal
    hours_until_start: float
    credits_refunded: Decimal = ZERO

    @property
    def policy(self) -> str:
        if self.refund_eligible:
            return f"Full refund (cancelled at least {REFUND_WINDOW_HOURS} hours before booking)"
        return f"No refund (cancelled less than {REFUND_WINDOW_HOURS} hours before booking)"


def _local_now() -> datetime:
    return datetime.now()


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_date(value: str) -> str:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date().isoformat()
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid date '{value}', expected YYYY-MM-DD")


def _parse_time(value: str) -> str:
    try:
        return datetime.strptime(value, "%H:%M").strftime("%H:%M")
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid time '{value}', expected HH:MM")


def _is_staff(role: Optional[str]) -> bool:
    return role in STAFF_ROLES


def _visible_booking(uow: UnitOfWork, booking_id: int, requester_id: int, requester_role: str) -> Booking:
    # чужое бронирование - 404, чтобы не раскрывать существование
    booking = uow.bookings.get_by_id(booking_id)
    if booking is None or (booking.user_id != requester_id and not _is_staff(requester_role)):
        raise NotFoundError("Booking not found")
    return booking


def _confirmation_code() -> str:
    return secrets.token_hex(4).upper()


def create_booking(uow: UnitOfWork, notifier: Optional[Notifier], user_id: int, workspace_id: int,
                   booking_date: str, start_time: str, end_time: str, attendees: int = 1,
                   special_requests: Optional[str] = None, now: Optional[datetime] = None) -> BookingReceipt:
    booking_date = _parse_date(booking_date)
    start_time = _parse_time(start_time)
    end_time = _parse_time(end_time)
    duration = calculate_duration_hours(start_time, end_time)
    if attendees is None or int(attendees) < 1:
        raise ValidationError("Attendees must be at least 1")
    if special_requests and len(special_requests) > MAX_SPECIAL_REQUESTS:
        raise ValidationError(f"Special requests must be at most {MAX_SPECIAL_REQUESTS} characters")
    now = now or _local_now()
    starts_at = datetime.fromisoformat(f"{booking_date}T{start_time}")
    if starts_at < now:
        raise ValidationError("Cannot book a time in the past")

    with uow.transaction():
        workspace = uow.catalog.get_workspace(workspace_id)
        if workspace is None:
            raise NotFoundError("Workspace not found")
        if not workspace.available:
            raise ConflictError("Workspace is not available for booking", code="WORKSPACE_UNAVAILABLE")
        if int(attendees) > workspace.capacity:
            raise ValidationError(f"Workspace capacity is {workspace.capacity}")

        user = uow.users.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")

        pricing = quote_booking(workspace, user, duration)

        if uow.bookings.find_overlapping(workspace.id, booking_date, start_time, end_time):
            raise ConflictError("Workspace is already booked for this time", code="BOOKING_CONFLICT")

        free = pricing.total_price == 0
        booking = uow.bookings.create(Booking(
            id=None,
            user_id=user.id,
            workspace_id=workspace.id,
            booking_date=booking_date,
            start_time=start_time,
            end_time=end_time,
            duration_hours=pricing.duration_hours,
            attendees=int(attendees),
            subtotal=pricing.subtotal,
            credits_used=pricing.credits_used,
            overage_hours=pricing.overage_hours,
            overage_charge=pricing.overage_charge,
            nft_discount=pricing.nft_discount,
            processing_fee=pricing.processing_fee,
            total_price=pricing.total_price,
            status="confirmed" if free else "pending",
            payment_status="paid" if free else "pending",
            confirmation_code=_confirmation_code(),
            special_requests=special_requests,
        ))

        if pricing.credits_used > 0:
            credit_use_cases.deduct_credits(
                uow, user.id, credit_type_for(workspace), pricing.credits_used,
                booking_id=booking.id,
                reason=f"{workspace.name} on {booking_date} {start_time}-{end_time}",
            )

    logger.info("Booking %s created for user %s (total %s)", booking.id, user_id, pricing.total_price)
    booking_event(notifier, "booking.created", booking)
    seat_event(notifier, "seat.occupied", booking)
    return BookingReceipt(booking=booking, pricing=pricing, workspace=workspace)


def get_booking(uow: UnitOfWork, booking_id: int, requester_id: int, requester_role: str,
                now: Optional[datetime] = None) -> Dict[str, Any]:
    booking = _visible_booking(uow, booking_id, requester_id, requester_role)
    now = now or _local_now()
    is_active = booking.status == "checked_in"
    return {
        "booking": booking,
        "status_info": {
            "is_upcoming": booking.starts_at > now,
            "is_active": is_active,
            "is_past": booking.ends_at < now or booking.status == "completed",
            "can_check_in": booking.status == "confirmed"
                            and booking.starts_at - EARLY_CHECK_IN <= now <= booking.ends_at + LATE_CHECK_IN,
            "can_cancel": booking.status not in ("cancelled", "completed", "checked_in"),
        },
    }


def list_bookings(uow: UnitOfWork, user_id: int, status: Optional[str] = None,
                  limit: int = 50, offset: int = 0) -> Dict[str, Any]:
    if status is not None and status not in BOOKING_STATUSES:
        raise ValidationError(f"Unknown booking status '{status}'")
    bookings = uow.bookings.list_for_user(user_id, status=status, limit=limit, offset=offset)
    summary = {s: 0 for s in BOOKING_STATUSES}
    summary.update(uow.bookings.count_by_status(user_id))
    return {"bookings": bookings, "summary": summary}


def list_all_bookings(uow: UnitOfWork, status: Optional[str] = None, booking_date: Optional[str] = None,
                      limit: int = 50, offset: int = 0) -> List[Booking]:
    if status is not None and status not in BOOKING_STATUSES:
        raise ValidationError(f"Unknown booking status '{status}'")
    if booking_date is not None:
        booking_date = _parse_date(booking_date)
    return uow.bookings.list_all(status=status, booking_date=booking_date, limit=limit, offset=offset)


def cancel_booking(uow: UnitOfWork, notifier: Optional[Notifier], booking_id: int, requester_id: int,
                   requester_role: str, now: Optional[datetime] = None) -> Cancellation:
    """Full refund when cancelled at least 24 hours before start, none after.

    The booking is re-read inside the write transaction, so a payment status
    written by the webhook reconciler is always the one acted on.
    """
    now = now or _local_now()
    credits_refunded = ZERO
    with uow.transaction():
        booking = _visible_booking(uow, booking_id, requester_id, requester_role)
        if booking.status == "cancelled":
            raise ConflictError("Booking is already cancelled", code="ALREADY_CANCELLED")
        if booking.status == "completed":
            raise ConflictError("Cannot cancel a completed booking", code="BOOKING_COMPLETED")
        if booking.status == "checked_in":
            raise ConflictError("Cannot cancel an active booking. Please check out first.", code="BOOKING_ACTIVE")

        hours_until = (booking.starts_at - now).total_seconds() / 3600
        eligible = hours_until >= REFUND_WINDOW_HOURS
        refund_amount = booking.total_price if eligible else ZERO

        booking = uow.bookings.update(booking.id, status="cancelled", cancelled_at=_utcnow())

        if eligible and booking.credits_used > 0 and booking.user_id is not None:
            workspace = uow.catalog.get_workspace(booking.workspace_id)
            credit_type = credit_type_for(workspace) if workspace else None
            if credit_type:
                credit_use_cases.refund_credits(
                    uow, booking.user_id, credit_type, booking.credits_used,
                    booking_id=booking.id, reason=f"Booking {booking.confirmation_code} cancelled",
                )
                credits_refunded = booking.credits_used

    logger.info("Booking %s cancelled by user %s (refund eligible: %s)", booking.id, requester_id, eligible)
    booking_event(notifier, "booking.cancelled", booking)
    seat_event(notifier, "seat.released", booking)
    return Cancellation(
        booking=booking,
        refund_eligible=eligible,
        refund_amount=refund_amount,
        hours_until_start=round(hours_until, 2),
        credits_refunded=credits_refunded,
    )


def check_in(uow: UnitOfWork, notifier: Optional[Notifier], booking_id: int, user_id: int,
             now: Optional[datetime] = None) -> Booking:
    now = now or _local_now()
    with uow.transaction():
        booking = _visible_booking(uow, booking_id, user_id, "user")
        if booking.status != "confirmed" or not can_transition(booking.status, "checked_in"):
            raise ConflictError(f"Cannot check in a {booking.status} booking", code="INVALID_STATUS")

        active = uow.bookings.get_active_for_user(user_id)
        if active is not None and active.id != booking.id:
            raise ConflictError("You have another active booking. Please check out first.",
                                code="ACTIVE_BOOKING_EXISTS")

        if now < booking.starts_at - EARLY_CHECK_IN:
            minutes = int((booking.starts_at - EARLY_CHECK_IN - now).total_seconds() // 60) + 1
            raise ValidationError(f"Check-in available in {minutes} minutes")
        if now > booking.ends_at + LATE_CHECK_IN:
            raise ValidationError("Check-in window has closed for this booking")

        booking = uow.bookings.update(booking.id, status="checked_in", check_in_time=now.isoformat())

    logger.info("Booking %s checked in", booking.id)
    booking_event(notifier, "booking.checked_in", booking)
    return booking


def check_out(uow: UnitOfWork, notifier: Optional[Notifier], booking_id: int, user_id: int,
              now: Optional[datetime] = None) -> Booking:
    now = now or _local_now()
    with uow.transaction():
        booking = _visible_booking(uow, booking_id, user_id, "user")
        if booking.status != "checked_in" or not booking.check_in_time:
            raise ConflictError("Booking is not checked in", code="INVALID_STATUS")
        actual = calculate_actual_duration(datetime.fromisoformat(booking.check_in_time), now)
        booking = uow.bookings.update(
            booking.id,
            status="completed",
            check_out_time=now.isoformat(),
            actual_duration_hours=actual,
        )

    logger.info("Booking %s checked out after %s hours", booking.id, actual)
    booking_event(notifier, "booking.completed", booking)
    seat_event(notifier, "seat.released", booking)
    return booking
