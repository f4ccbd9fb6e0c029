from decimal import Decimal
from typing import Optional, List, Dict

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from core.services.notifier import Notifier
from core.use_cases import booking_use_cases
from core.use_cases.auth_gate import AuthContext
from core.use_cases.pricing import pricing_summary_lines
from infrastructure.db.sqlite import SQLiteUnitOfWork
from infrastructure.web.dependencies import get_uow, get_notifier, authenticated
from infrastructure.web.schemas import BookingResponse, PricingResponse, WorkspaceResponse

router = APIRouter(prefix="/bookings", tags=["bookings"])


class BookingCreateRequest(BaseModel):
    workspace_id: int
    booking_date: str = Field(..., description="YYYY-MM-DD")
    start_time: str = Field(..., description="HH:MM")
    end_time: str = Field(..., description="HH:MM")
    attendees: int = Field(1, ge=1)
    special_requests: Optional[str] = Field(None, max_length=500)


class BookingCreatedResponse(BaseModel):
    booking: BookingResponse
    pricing: PricingResponse
    pricing_summary: List[str]
    payment_required: bool
    workspace: WorkspaceResponse


class StatusInfo(BaseModel):
    is_upcoming: bool
    is_active: bool
    is_past: bool
    can_check_in: bool
    can_cancel: bool


class BookingDetailResponse(BaseModel):
    booking: BookingResponse
    status_info: StatusInfo


class BookingListResponse(BaseModel):
    bookings: List[BookingResponse]
    summary: Dict[str, int]


class CancellationInfo(BaseModel):
    cancelled_at: Optional[str] = None
    refund_eligible: bool
    refund_amount: Decimal
    credits_refunded: Decimal
    hours_until_start: float
    cancellation_policy: str


class CancellationResponse(BaseModel):
    booking: BookingResponse
    cancellation: CancellationInfo


@router.post("", response_model=BookingCreatedResponse, status_code=201)
def create_booking(
    payload: BookingCreateRequest,
    ctx: AuthContext = Depends(authenticated),
    uow: SQLiteUnitOfWork = Depends(get_uow),
    notifier: Notifier = Depends(get_notifier),
):
    receipt = booking_use_cases.create_booking(
        uow, notifier,
        user_id=ctx.user_id,
        workspace_id=payload.workspace_id,
        booking_date=payload.booking_date,
        start_time=payload.start_time,
        end_time=payload.end_time,
        attendees=payload.attendees,
        special_requests=payload.special_requests,
    )
    return BookingCreatedResponse(
        booking=BookingResponse.model_validate(receipt.booking),
        pricing=PricingResponse.model_validate(receipt.pricing),
        pricing_summary=pricing_summary_lines(receipt.pricing),
        payment_required=receipt.payment_required,
        workspace=WorkspaceResponse.model_validate(receipt.workspace),
    )


@router.get("", response_model=BookingListResponse)
def list_bookings(
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    ctx: AuthContext = Depends(authenticated),
    uow: SQLiteUnitOfWork = Depends(get_uow),
):
    limit = max(1, min(100, int(limit)))
    offset = max(0, int(offset))
    result = booking_use_cases.list_bookings(uow, ctx.user_id, status=status, limit=limit, offset=offset)
    return BookingListResponse(
        bookings=[BookingResponse.model_validate(b) for b in result["bookings"]],
        summary=result["summary"],
    )


@router.get("/{booking_id}", response_model=BookingDetailResponse)
def get_booking(booking_id: int, ctx: AuthContext = Depends(authenticated), uow: SQLiteUnitOfWork = Depends(get_uow)):
    result = booking_use_cases.get_booking(uow, booking_id, ctx.user_id, ctx.role)
    return BookingDetailResponse(
        booking=BookingResponse.model_validate(result["booking"]),
        status_info=StatusInfo(**result["status_info"]),
    )


@router.delete("/{booking_id}", response_model=CancellationResponse)
def cancel_booking(
    booking_id: int,
    ctx: AuthContext = Depends(authenticated),
    uow: SQLiteUnitOfWork = Depends(get_uow),
    notifier: Notifier = Depends(get_notifier),
):
    outcome = booking_use_cases.cancel_booking(uow, notifier, booking_id, ctx.user_id, ctx.role)
    return CancellationResponse(
        booking=BookingResponse.model_validate(outcome.booking),
        cancellation=CancellationInfo(
            cancelled_at=outcome.booking.cancelled_at,
            refund_eligible=outcome.refund_eligible,
            refund_amount=outcome.refund_amount,
            credits_refunded=outcome.credits_refunded,
            hours_until_start=outcome.hours_until_start,
            cancellation_policy=outcome.policy,
        ),
    )


@router.post("/{booking_id}/check-in", response_model=BookingResponse)
def check_in(
    booking_id: int,
    ctx: AuthContext = Depends(authenticated),
    uow: SQLiteUnitOfWork = Depends(get_uow),
    notifier: Notifier = Depends(get_notifier),
):
    return BookingResponse.model_validate(booking_use_cases.check_in(uow, notifier, booking_id, ctx.user_id))


@router.post("/{booking_id}/check-out", response_model=BookingResponse)
def check_out(
    booking_id: int,
    ctx: AuthContext = Depends(authenticated),
    uow: SQLiteUnitOfWork = Depends(get_uow),
    notifier: Notifier = Depends(get_notifier),
):
    return BookingResponse.model_validate(booking_use_cases.check_out(uow, notifier, booking_id, ctx.user_id))
