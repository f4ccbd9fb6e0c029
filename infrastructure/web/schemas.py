from decimal import Decimal
from typing import Optional, List, Dict

from pydantic import BaseModel, ConfigDict, EmailStr


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class UserResponse(ORMModel):
    id: int
    email: EmailStr
    role: str
    full_name: Optional[str] = None
    nft_holder: bool
    wallet_address: Optional[str] = None
    membership_plan_id: Optional[int] = None
    membership_status: Optional[str] = None
    membership_period_end: Optional[str] = None
    created_at: str


class CreditBalanceResponse(BaseModel):
    available: Decimal
    last_allocated: Optional[str] = None


class CreditsResponse(BaseModel):
    meeting_room: CreditBalanceResponse
    printing: CreditBalanceResponse
    guest_passes: CreditBalanceResponse


class CreditTransactionResponse(ORMModel):
    id: int
    transaction_type: str
    credit_type: str
    amount: Decimal
    balance_after: Decimal
    description: Optional[str] = None
    booking_id: Optional[int] = None
    created_at: str


class WorkspaceResponse(ORMModel):
    id: int
    name: str
    resource_category: str
    capacity: int
    hourly_rate: Decimal
    available: bool


class PlanResponse(ORMModel):
    id: int
    name: str
    base_price: Decimal
    nft_holder_price: Decimal
    meeting_room_credits_hours: Decimal
    printing_credits: Decimal
    guest_passes: Decimal
    billing_period: str


class PricingResponse(ORMModel):
    hourly_rate: Decimal
    duration_hours: Decimal
    credits_used: Decimal
    overage_hours: Decimal
    overage_charge: Decimal
    nft_discount: Decimal
    nft_discount_applied: bool
    subtotal: Decimal
    processing_fee: Decimal
    total_price: Decimal
    payment_method: str


class BookingResponse(ORMModel):
    id: int
    user_id: Optional[int] = None
    workspace_id: int
    booking_date: str
    start_time: str
    end_time: str
    duration_hours: Decimal
    attendees: int
    subtotal: Decimal
    credits_used: Decimal
    overage_hours: Decimal
    overage_charge: Decimal
    nft_discount: Decimal
    processing_fee: Decimal
    total_price: Decimal
    status: str
    payment_status: str
    payment_intent_id: Optional[str] = None
    confirmation_code: Optional[str] = None
    special_requests: Optional[str] = None
    check_in_time: Optional[str] = None
    check_out_time: Optional[str] = None
    actual_duration_hours: Optional[Decimal] = None
    cancelled_at: Optional[str] = None
    created_at: str


class MenuItemResponse(ORMModel):
    id: int
    title: str
    category: str
    price: Decimal
    orderable: bool


class OrderItemResponse(ORMModel):
    id: int
    menu_item_id: Optional[int] = None
    title: Optional[str] = None
    quantity: int
    unit_price: Decimal
    subtotal: Decimal


class OrderResponse(ORMModel):
    id: int
    user_id: Optional[int] = None
    subtotal: Decimal
    discount_amount: Decimal
    nft_discount_applied: bool
    processing_fee: Decimal
    total_price: Decimal
    status: str
    payment_status: str
    special_instructions: Optional[str] = None
    items: List[OrderItemResponse]
    created_at: str


def credits_response(credits: Dict) -> CreditsResponse:
    def one(credit_type: str) -> CreditBalanceResponse:
        balance = credits[credit_type]
        return CreditBalanceResponse(available=balance.available, last_allocated=balance.last_allocated)

    return CreditsResponse(
        meeting_room=one("meeting-room"),
        printing=one("printing"),
        guest_passes=one("guest-pass"),
    )
