import logging
from typing import Dict, Any, Optional

from core.entities.booking import Booking
from core.entities.order import Order
from core.services.notifier import (
    Notifier, BOOKINGS_CHANNEL, ORDERS_CHANNEL, AVAILABILITY_CHANNEL, user_channel,
)

logger = logging.getLogger(__name__)


def safe_publish(notifier: Optional[Notifier], channel: str, event: str, data: Dict[str, Any]) -> bool:
    """Publishes and swallows transport errors; a lost message only costs UI freshness."""
    if notifier is None:
        return False
    try:
        notifier.publish(channel, event, data)
    except Exception:
        logger.warning("Failed to publish %s on %s", event, channel, exc_info=True)
        return False
    return True


def _booking_payload(booking: Booking) -> Dict[str, Any]:
    return {
        "booking_id": booking.id,
        "user_id": booking.user_id,
        "workspace_id": booking.workspace_id,
        "booking_date": booking.booking_date,
        "start_time": booking.start_time,
        "end_time": booking.end_time,
        "status": booking.status,
        "payment_status": booking.payment_status,
    }


def booking_event(notifier: Optional[Notifier], event: str, booking: Booking) -> None:
    data = _booking_payload(booking)
    if booking.user_id is not None:
        safe_publish(notifier, user_channel(booking.user_id), event, data)
    safe_publish(notifier, BOOKINGS_CHANNEL, event, data)


def seat_event(notifier: Optional[Notifier], event: str, booking: Booking) -> None:
    safe_publish(notifier, AVAILABILITY_CHANNEL, event, {
        "workspace_id": booking.workspace_id,
        "booking_date": booking.booking_date,
        "start_time": booking.start_time,
        "end_time": booking.end_time,
    })


def order_event(notifier: Optional[Notifier], event: str, order: Order) -> None:
    data = {
        "order_id": order.id,
        "user_id": order.user_id,
        "status": order.status,
        "total_price": str(order.total_price),
    }
    if order.user_id is not None:
        safe_publish(notifier, user_channel(order.user_id), event, data)
    safe_publish(notifier, ORDERS_CHANNEL, event, data)
