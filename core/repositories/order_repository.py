from abc import ABC, abstractmethod
from typing import Optional, List, Any
from core.entities.order import Order


class OrderRepository(ABC):
    @abstractmethod
    def create(self, order: Order) -> Order:...

    @abstractmethod
    def get_by_id(self, order_id: int) -> Optional[Order]:...

    @abstractmethod
    def list_for_user(self, user_id: int, limit: int = 20, offset: int = 0) -> List[Order]:...

    @abstractmethod
    def list_all(self, status: Optional[str] = None, limit: int = 20, offset: int = 0) -> List[Order]:...

    @abstractmethod
    def update(self, order_id: int, **fields: Any) -> Order:...
