import logging
from decimal import Decimal
from typing import Optional, Dict, Any

from core.entities.booking import Booking
from core.entities.user import STAFF_ROLES
from core.repositories.unit_of_work import UnitOfWork
from core.services.payment_provider import PaymentProvider, PaymentIntent, Subscription
from core.use_cases.errors import ValidationError, NotFoundError, ConflictError
from core.use_cases.pricing import to_minor_units

logger = logging.getLogger(__name__)


def _user_or_404(uow: UnitOfWork, user_id: int):
    user = uow.users.get_by_id(user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def _ensure_customer(uow: UnitOfWork, provider: PaymentProvider, user_id: int) -> str:
    user = _user_or_404(uow, user_id)
    if user.stripe_customer_id:
        return user.stripe_customer_id
    customer_id = provider.ensure_customer(user)
    uow.users.update_user(user.id, stripe_customer_id=customer_id)
    return customer_id


def create_booking_payment_intent(uow: UnitOfWork, provider: PaymentProvider, booking_id: int,
                                  user_id: int, currency: str = "usd") -> PaymentIntent:
    """The charged amount always comes from the stored booking total."""
    booking = uow.bookings.get_by_id(booking_id)
    if booking is None or booking.user_id != user_id:
        raise NotFoundError("Booking not found")
    if booking.status == "cancelled":
        raise ConflictError("Cannot pay for a cancelled booking", code="BOOKING_CANCELLED")
    if booking.payment_status != "pending":
        raise ConflictError(f"Booking payment is already {booking.payment_status}", code="ALREADY_PAID")
    amount_minor = to_minor_units(booking.total_price)
    if amount_minor <= 0:
        raise ValidationError("Booking does not require payment")

    customer_id = _ensure_customer(uow, provider, user_id)
    intent = provider.create_payment_intent(
        amount_minor=amount_minor,
        currency=currency,
        customer_id=customer_id,
        metadata={
            "booking_id": str(booking.id),
            "user_id": str(user_id),
            "workspace_id": str(booking.workspace_id),
            "booking_date": booking.booking_date,
        },
    )
    uow.bookings.update(booking.id, payment_intent_id=intent.id)
    logger.info("Payment intent %s created for booking %s (%s minor units)", intent.id, booking.id, amount_minor)
    return intent


def refund_booking_payment(uow: UnitOfWork, provider: PaymentProvider, booking_id: int,
                           requester_id: int, requester_role: str, amount: Optional[Decimal] = None,
                           reason: Optional[str] = None, currency: str = "usd") -> Dict[str, Any]:
    """The booking is claimed as ``refunding`` before the provider is called.

    A second request for the same booking sees the claim and gets
    NOT_REFUNDABLE; a provider failure puts the booking back to ``paid``.
    """
    staff = requester_role in STAFF_ROLES
    with uow.transaction():
        booking = uow.bookings.get_by_id(booking_id)
        if booking is None or (booking.user_id != requester_id and not staff):
            raise NotFoundError("Booking not found")
        _check_refundable(booking, staff)

        if amount is None:
            amount = booking.total_price
        amount = Decimal(str(amount))
        if amount <= 0:
            raise ValidationError("Refund amount must be positive")
        if amount > booking.total_price:
            raise ValidationError("Refund amount cannot exceed the booking total")
        uow.bookings.update(booking_id, payment_status="refunding")

    # вызов провайдера - вне транзакции БД
    try:
        refund = provider.create_refund(
            booking.payment_intent_id, amount_minor=to_minor_units(amount), reason=reason,
            idempotency_key=f"refund-{booking_id}",
        )
    except Exception:
        uow.bookings.update(booking_id, payment_status="paid")
        logger.warning("Refund for booking %s failed, booking is paid again", booking_id)
        raise

    booking = uow.bookings.update(booking_id, payment_status="refunded")
    logger.info("Refund %s of %s issued for booking %s by user %s", refund.id, amount, booking_id, requester_id)
    return {"refund": refund, "booking": booking, "amount": amount, "currency": currency}


def _check_refundable(booking: Booking, staff: bool) -> None:
    if booking.payment_status != "paid" or not booking.payment_intent_id:
        raise ConflictError("Booking has no captured payment to refund", code="NOT_REFUNDABLE")
    if not staff and booking.status != "cancelled":
        raise ConflictError("Cancel the booking before requesting a refund", code="NOT_REFUNDABLE")


def subscribe_to_plan(uow: UnitOfWork, provider: PaymentProvider, user_id: int, plan_id: int) -> Subscription:
    user = _user_or_404(uow, user_id)
    plan = uow.catalog.get_plan(plan_id)
    if plan is None or not plan.active:
        raise NotFoundError("Membership plan not found")
    if user.has_active_membership and user.membership_plan_id == plan.id:
        raise ConflictError("Already subscribed to this plan", code="ALREADY_SUBSCRIBED")

    price_id = plan.nft_stripe_price_id if user.nft_holder and plan.nft_stripe_price_id else plan.stripe_price_id
    if not price_id:
        raise ValidationError("Membership plan is not available for online purchase")

    customer_id = _ensure_customer(uow, provider, user_id)
    subscription = provider.create_subscription(
        customer_id=customer_id,
        price_id=price_id,
        metadata={"user_id": str(user.id), "membership_plan_id": str(plan.id)},
    )
    # до вебхука подписка считается неоплаченной
    uow.users.update_user(
        user.id,
        membership_plan_id=plan.id,
        membership_status="incomplete",
        stripe_subscription_id=subscription.id,
    )
    logger.info("Subscription %s started for user %s on plan %s", subscription.id, user.id, plan.id)
    return subscription
