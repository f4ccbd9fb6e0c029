from abc import ABC, abstractmethod
from typing import ContextManager

from core.repositories.user_repository import UserRepository
from core.repositories.booking_repository import BookingRepository
from core.repositories.catalog_repository import CatalogRepository
from core.repositories.order_repository import OrderRepository
from core.repositories.webhook_event_repository import WebhookEventRepository


class UnitOfWork(ABC):
    """Repositories sharing one connection and one transaction boundary.

    ``transaction()`` holds the store's write lock until it exits; nested
    calls join the outer transaction, and an exception rolls back everything
    written inside it.
    """
    users: UserRepository
    bookings: BookingRepository
    catalog: CatalogRepository
    orders: OrderRepository
    webhook_events: WebhookEventRepository

    @abstractmethod
    def transaction(self) -> ContextManager["UnitOfWork"]:...
