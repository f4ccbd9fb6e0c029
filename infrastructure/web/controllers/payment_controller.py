from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from config.settings import Settings
from core.services.payment_provider import PaymentProvider
from core.use_cases import payment_use_cases
from core.use_cases.auth_gate import AuthContext
from infrastructure.db.sqlite import SQLiteUnitOfWork
from infrastructure.web.dependencies import get_uow, get_payment_provider, get_settings, authenticated
from infrastructure.web.schemas import BookingResponse

router = APIRouter(prefix="/payments", tags=["payments"])


class CreateIntentRequest(BaseModel):
    booking_id: int = Field(..., alias="bookingId")

    model_config = {"populate_by_name": True}


class CreateIntentResponse(BaseModel):
    payment_intent_id: str
    client_secret: Optional[str] = None
    amount: int
    currency: str


class RefundRequest(BaseModel):
    booking_id: int = Field(..., alias="bookingId")
    amount: Optional[Decimal] = Field(None, gt=0)
    reason: Optional[str] = Field(None, max_length=500)

    model_config = {"populate_by_name": True}


class RefundResponse(BaseModel):
    refund_id: str
    status: str
    amount: Decimal
    currency: str
    booking: BookingResponse


@router.post("/create-intent", response_model=CreateIntentResponse)
def create_intent(
    payload: CreateIntentRequest,
    ctx: AuthContext = Depends(authenticated),
    uow: SQLiteUnitOfWork = Depends(get_uow),
    provider: PaymentProvider = Depends(get_payment_provider),
    settings: Settings = Depends(get_settings),
):
    intent = payment_use_cases.create_booking_payment_intent(
        uow, provider, payload.booking_id, ctx.user_id, currency=settings.STRIPE_CURRENCY,
    )
    return CreateIntentResponse(
        payment_intent_id=intent.id,
        client_secret=intent.client_secret,
        amount=intent.amount_minor,
        currency=intent.currency,
    )


@router.post("/refund", response_model=RefundResponse)
def refund(
    payload: RefundRequest,
    ctx: AuthContext = Depends(authenticated),
    uow: SQLiteUnitOfWork = Depends(get_uow),
    provider: PaymentProvider = Depends(get_payment_provider),
    settings: Settings = Depends(get_settings),
):
    result = payment_use_cases.refund_booking_payment(
        uow, provider, payload.booking_id, ctx.user_id, ctx.role,
        amount=payload.amount, reason=payload.reason, currency=settings.STRIPE_CURRENCY,
    )
    return RefundResponse(
        refund_id=result["refund"].id,
        status=result["refund"].status,
        amount=result["amount"],
        currency=result["currency"],
        booking=BookingResponse.model_validate(result["booking"]),
    )
