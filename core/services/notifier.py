from abc import ABC, abstractmethod
from typing import Dict, Any

BOOKINGS_CHANNEL = "bookings"
ORDERS_CHANNEL = "orders"
AVAILABILITY_CHANNEL = "availability"
USER_CHANNEL_PREFIX = "private-user-"


def user_channel(user_id: int) -> str:
    return f"{USER_CHANNEL_PREFIX}{user_id}"


class Notifier(ABC):
    """Pub/sub transport. Delivery is best-effort, at most once."""

    @abstractmethod
    def publish(self, channel: str, event: str, data: Dict[str, Any]) -> None:...
