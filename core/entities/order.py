from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, List

ORDER_STATUSES = ("pending", "preparing", "ready", "completed", "cancelled")

ORDER_TRANSITIONS = {
    "pending": ("preparing", "cancelled"),
    "preparing": ("ready", "cancelled"),
    "ready": ("completed", "cancelled"),
    "completed": (),
    "cancelled": (),
}


def can_transition_order(current: str, target: str) -> bool:
    return target in ORDER_TRANSITIONS.get(current, ())


@dataclass
class MenuItem:
    id: Optional[int]
    title: str
    category: str
    price: Decimal
    orderable: bool = True


@dataclass
class OrderItem:
    id: Optional[int]
    menu_item_id: Optional[int]
    quantity: int
    unit_price: Decimal
    subtotal: Decimal
    title: Optional[str] = None


@dataclass
class Order:
    id: Optional[int]
    user_id: Optional[int]
    subtotal: Decimal
    discount_amount: Decimal
    nft_discount_applied: bool
    processing_fee: Decimal
    total_price: Decimal
    status: str = "pending"
    payment_status: str = "pending"
    payment_intent_id: Optional[str] = None
    special_instructions: Optional[str] = None
    items: List[OrderItem] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""
