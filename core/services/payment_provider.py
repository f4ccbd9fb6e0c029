from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Dict, Any
from core.entities.user import User


@dataclass
class PaymentIntent:
    id: str
    client_secret: Optional[str]
    amount_minor: int
    currency: str
    customer_id: Optional[str]
    status: str


@dataclass
class Refund:
    id: str
    amount_minor: int
    currency: str
    status: str


@dataclass
class Subscription:
    id: str
    status: str
    client_secret: Optional[str] = None


class PaymentProvider(ABC):
    @abstractmethod
    def ensure_customer(self, user: User) -> str:...

    @abstractmethod
    def create_payment_intent(self, amount_minor: int, currency: str, customer_id: Optional[str],
                              metadata: Dict[str, str]) -> PaymentIntent:...

    @abstractmethod
    def create_refund(self, payment_intent_id: str, amount_minor: Optional[int] = None,
                      reason: Optional[str] = None, idempotency_key: Optional[str] = None) -> Refund:...

    @abstractmethod
    def create_subscription(self, customer_id: str, price_id: str,
                            metadata: Dict[str, str]) -> Subscription:...

    @abstractmethod
    def construct_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:...
