from abc import ABC, abstractmethod
from typing import Optional, List, Any, Dict
from core.entities.booking import Booking


class BookingRepository(ABC):
    @abstractmethod
    def create(self, booking: Booking) -> Booking:...

    @abstractmethod
    def get_by_id(self, booking_id: int) -> Optional[Booking]:...

    @abstractmethod
    def list_for_user(self, user_id: int, status: Optional[str] = None,
                      limit: int = 100, offset: int = 0) -> List[Booking]:...

    @abstractmethod
    def list_all(self, status: Optional[str] = None, booking_date: Optional[str] = None,
                 limit: int = 100, offset: int = 0) -> List[Booking]:...

    @abstractmethod
    def update(self, booking_id: int, **fields: Any) -> Booking:...

    @abstractmethod
    def find_overlapping(self, workspace_id: int, booking_date: str, start_time: str, end_time: str,
                         exclude_booking_id: Optional[int] = None) -> List[Booking]:...

    @abstractmethod
    def get_active_for_user(self, user_id: int) -> Optional[Booking]:...

    @abstractmethod
    def count_by_status(self, user_id: int) -> Dict[str, int]:...
