"""Applies payment-provider events to bookings, orders and memberships.

Every event is handled in one transaction together with the row that marks
its id as processed, so a redelivered event is a no-op.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List, Tuple, Callable

from core.entities.booking import Booking
from core.entities.user import User
from core.repositories.unit_of_work import UnitOfWork
from core.services.notifier import Notifier
from core.use_cases import credit_use_cases
from core.use_cases.errors import DomainError, ValidationError, NotFoundError
from core.use_cases.notifications import booking_event

logger = logging.getLogger(__name__)

DEFAULT_RENEWAL_WINDOW = timedelta(hours=1)

Outbox = List[Tuple[str, Booking]]


@dataclass
class ReconcileResult:
    event_id: str
    event_type: str
    success: bool
    duplicate: bool = False
    error: Optional[str] = None


def _metadata_id(metadata: Dict[str, Any], key: str, required: bool = False) -> Optional[int]:
    value = metadata.get(key)
    if value in (None, ""):
        if required:
            raise ValidationError(f"Missing {key} in metadata")
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {key} in metadata: {value!r}")


def _epoch_to_iso(value) -> Optional[str]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).isoformat()


def subscription_period(subscription: Dict[str, Any]) -> Tuple[Optional[str], Optional[str]]:
    # в новых версиях API период лежит в items.data[0]
    start = subscription.get("current_period_start")
    end = subscription.get("current_period_end")
    if start is None:
        items = (subscription.get("items") or {}).get("data") or []
        if items:
            start = items[0].get("current_period_start")
            end = items[0].get("current_period_end")
    return _epoch_to_iso(start), _epoch_to_iso(end)


def map_subscription_status(subscription: Dict[str, Any]) -> str:
    status = subscription.get("status")
    if status in ("canceled", "incomplete_expired") or subscription.get("cancel_at_period_end"):
        return "cancelled"
    if status == "paused":
        return "paused"
    return "active"


def is_renewal(user: User, period_start: Optional[str], now: datetime,
               window: timedelta = DEFAULT_RENEWAL_WINDOW) -> bool:
    """A new billing period: the period start moved past the stored one.

    Without a stored period, falls back to "started within ``window``".
    """
    if period_start is None:
        return False
    started = datetime.fromisoformat(period_start)
    if user.membership_period_start:
        return started > datetime.fromisoformat(user.membership_period_start)
    return abs(now - started) < window


def _find_subscriber(uow: UnitOfWork, subscription: Dict[str, Any]) -> User:
    metadata = subscription.get("metadata") or {}
    user_id = _metadata_id(metadata, "user_id")
    user = uow.users.get_by_id(user_id) if user_id is not None else None
    if user is None and subscription.get("id"):
        user = uow.users.get_by_subscription_id(subscription["id"])
    if user is None:
        if user_id is None:
            raise ValidationError("Missing user_id in subscription metadata")
        raise NotFoundError(f"User {user_id} not found")
    return user


def _load_booking(uow: UnitOfWork, booking_id: int) -> Booking:
    booking = uow.bookings.get_by_id(booking_id)
    if booking is None:
        raise NotFoundError(f"Booking {booking_id} not found")
    return booking


def handle_payment_succeeded(uow: UnitOfWork, intent: Dict[str, Any], now: datetime,
                             window: timedelta, outbox: Outbox) -> None:
    metadata = intent.get("metadata") or {}
    booking_id = _metadata_id(metadata, "booking_id")
    order_id = _metadata_id(metadata, "order_id")
    if booking_id is None and order_id is None:
        logger.warning("Payment intent %s has no booking_id or order_id in metadata", intent.get("id"))
        return

    if booking_id is not None:
        booking = _load_booking(uow, booking_id)
        fields = {"payment_intent_id": intent.get("id")}
        if booking.payment_status not in ("refunding", "refunded"):
            fields["payment_status"] = "paid"
        if booking.status == "pending":
            fields["status"] = "confirmed"
        elif booking.status == "cancelled":
            logger.warning("Payment %s succeeded for cancelled booking %s", intent.get("id"), booking_id)
        booking = uow.bookings.update(booking_id, **fields)
        outbox.append(("booking.payment_succeeded", booking))
        logger.info("Booking %s paid via %s", booking_id, intent.get("id"))

    if order_id is not None:
        order = uow.orders.get_by_id(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        uow.orders.update(order_id, payment_status="paid", payment_intent_id=intent.get("id"))
        logger.info("Order %s paid via %s", order_id, intent.get("id"))


def handle_payment_failed(uow: UnitOfWork, intent: Dict[str, Any], now: datetime,
                          window: timedelta, outbox: Outbox) -> None:
    metadata = intent.get("metadata") or {}
    booking_id = _metadata_id(metadata, "booking_id")
    if booking_id is None:
        logger.warning("Failed payment intent %s has no booking_id in metadata", intent.get("id"))
        return
    booking = _load_booking(uow, booking_id)
    if booking.payment_status in ("paid", "refunding", "refunded"):
        logger.info("Ignoring payment failure for booking %s already %s", booking_id, booking.payment_status)
        return
    # неудачный платеж можно повторить, статус остается pending
    booking = uow.bookings.update(booking_id, payment_status="pending")
    outbox.append(("booking.payment_failed", booking))
    logger.info("Payment %s failed for booking %s", intent.get("id"), booking_id)


def handle_subscription_created(uow: UnitOfWork, subscription: Dict[str, Any], now: datetime,
                                window: timedelta, outbox: Outbox) -> None:
    metadata = subscription.get("metadata") or {}
    user_id = _metadata_id(metadata, "user_id", required=True)
    plan_id = _metadata_id(metadata, "membership_plan_id", required=True)
    user = uow.users.get_by_id(user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")
    plan = uow.catalog.get_plan(plan_id)
    if plan is None:
        raise NotFoundError(f"Membership plan {plan_id} not found")

    start, end = subscription_period(subscription)
    period_key = start or now.isoformat()
    uow.users.update_user(
        user_id,
        membership_plan_id=plan_id,
        membership_status="active",
        membership_period_start=start,
        membership_period_end=end,
        stripe_subscription_id=subscription.get("id"),
    )
    credit_use_cases.allocate_plan_credits(uow, user_id, plan, period_key, now=now.isoformat())
    logger.info("Subscription %s created for user %s on plan %s", subscription.get("id"), user_id, plan_id)


def handle_subscription_updated(uow: UnitOfWork, subscription: Dict[str, Any], now: datetime,
                                window: timedelta, outbox: Outbox) -> None:
    user = _find_subscriber(uow, subscription)
    status = map_subscription_status(subscription)
    start, end = subscription_period(subscription)

    renewal = subscription.get("status") == "active" and is_renewal(user, start, now, window)
    fields = {"membership_status": status}
    if end:
        fields["membership_period_end"] = end
    if renewal:
        fields["membership_period_start"] = start
    uow.users.update_user(user.id, **fields)

    if renewal and user.membership_plan_id is not None:
        plan = uow.catalog.get_plan(user.membership_plan_id)
        if plan is None:
            raise NotFoundError(f"Membership plan {user.membership_plan_id} not found")
        logger.info("Subscription %s renewed for user %s", subscription.get("id"), user.id)
        credit_use_cases.allocate_plan_credits(uow, user.id, plan, start, now=now.isoformat())
    logger.info("Subscription %s updated for user %s: %s", subscription.get("id"), user.id, status)


def handle_subscription_deleted(uow: UnitOfWork, subscription: Dict[str, Any], now: datetime,
                                window: timedelta, outbox: Outbox) -> None:
    user = _find_subscriber(uow, subscription)
    uow.users.update_user(user.id, membership_status="cancelled")
    credit_use_cases.expire_credits(uow, user.id, reason="Membership cancelled")
    logger.info("Subscription %s deleted for user %s", subscription.get("id"), user.id)


def _invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    if invoice.get("subscription"):
        return invoice["subscription"]
    details = ((invoice.get("parent") or {}).get("subscription_details") or {})
    return details.get("subscription")


def handle_invoice_paid(uow: UnitOfWork, invoice: Dict[str, Any], now: datetime,
                        window: timedelta, outbox: Outbox) -> None:
    if invoice.get("billing_reason") != "subscription_cycle":
        return
    subscription_id = _invoice_subscription_id(invoice)
    user = uow.users.get_by_subscription_id(subscription_id) if subscription_id else None
    if user is None:
        raise NotFoundError(f"No member for subscription {subscription_id}")
    if user.membership_plan_id is None:
        raise ValidationError(f"User {user.id} has no membership plan")

    lines = (invoice.get("lines") or {}).get("data") or []
    period = lines[0].get("period", {}) if lines else {}
    start = _epoch_to_iso(period.get("start") or invoice.get("period_end"))
    end = _epoch_to_iso(period.get("end"))
    if start is None:
        raise ValidationError("Invoice carries no billing period")

    fields = {"membership_status": "active", "membership_period_start": start}
    if end:
        fields["membership_period_end"] = end
    uow.users.update_user(user.id, **fields)

    plan = uow.catalog.get_plan(user.membership_plan_id)
    if plan is None:
        raise NotFoundError(f"Membership plan {user.membership_plan_id} not found")
    credit_use_cases.allocate_plan_credits(uow, user.id, plan, start, now=now.isoformat())
    logger.info("Invoice %s renewed membership for user %s", invoice.get("id"), user.id)


EVENT_HANDLERS: Dict[str, Callable] = {
    "payment_intent.succeeded": handle_payment_succeeded,
    "payment_intent.payment_failed": handle_payment_failed,
    "customer.subscription.created": handle_subscription_created,
    "customer.subscription.updated": handle_subscription_updated,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.paid": handle_invoice_paid,
}


def reconcile_event(uow: UnitOfWork, notifier: Optional[Notifier], event: Dict[str, Any],
                    now: Optional[datetime] = None,
                    renewal_window: timedelta = DEFAULT_RENEWAL_WINDOW) -> ReconcileResult:
    event_id = event.get("id")
    event_type = event.get("type")
    if not event_id or not event_type:
        raise ValidationError("Event id and type are required")
    obj = (event.get("data") or {}).get("object") or {}
    now = now or datetime.now(timezone.utc)
    outbox: Outbox = []

    try:
        with uow.transaction():
            if uow.webhook_events.has_processed(event_id):
                logger.info("Webhook event %s already processed", event_id)
                return ReconcileResult(event_id, event_type, success=True, duplicate=True)
            handler = EVENT_HANDLERS.get(event_type)
            if handler is None:
                logger.info("Unhandled webhook event type %s", event_type)
            else:
                handler(uow, obj, now, renewal_window, outbox)
            uow.webhook_events.mark_processed(event_id, event_type)
    except DomainError as e:
        logger.error("Webhook event %s (%s) failed: %s", event_id, event_type, e.message)
        return ReconcileResult(event_id, event_type, success=False, error=e.message)

    for name, booking in outbox:
        booking_event(notifier, name, booking)
    logger.info("Webhook event %s (%s) processed", event_id, event_type)
    return ReconcileResult(event_id, event_type, success=True)
