from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional, List, Dict, Any
from core.entities.user import User
from core.entities.transaction import CreditTransaction


class UserRepository(ABC):
    @abstractmethod
    def create_user(self, email: str, password_hash: str, role: str = "user",
                    full_name: Optional[str] = None) -> User:...

    @abstractmethod
    def get_by_email(self, email: str) -> Optional[User]:...

    @abstractmethod
    def get_by_id(self, user_id: int) -> Optional[User]:...

    @abstractmethod
    def get_by_subscription_id(self, subscription_id: str) -> Optional[User]:...

    @abstractmethod
    def list_users(self, limit: int = 50, offset: int = 0, role: Optional[str] = None) -> List[User]:...

    @abstractmethod
    def update_user(self, user_id: int, **fields: Any) -> User:...

    @abstractmethod
    def set_credit_balance(self, user_id: int, credit_type: str, available: Decimal,
                           last_allocated: Optional[str] = None) -> User:...

    @abstractmethod
    def log_credit_transaction(self, user_id: int, transaction_type: str, credit_type: str,
                               amount: Decimal, balance_after: Decimal,
                               description: Optional[str] = None,
                               booking_id: Optional[int] = None) -> CreditTransaction:...

    @abstractmethod
    def list_credit_transactions(self, user_id: int, credit_type: Optional[str] = None,
                                 limit: int = 100, offset: int = 0) -> List[CreditTransaction]:...

    @abstractmethod
    def sum_credit_transactions(self, user_id: int) -> Dict[str, Decimal]:...
