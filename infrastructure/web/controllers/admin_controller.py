from decimal import Decimal
from typing import Optional, List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from core.use_cases import user_use_cases, credit_use_cases, booking_use_cases, catalog_use_cases
from core.use_cases.auth_gate import AuthContext
from infrastructure.db.sqlite import SQLiteUnitOfWork
from infrastructure.web.dependencies import get_uow, admin_only, staff_only
from infrastructure.web.schemas import (
    UserResponse, CreditTransactionResponse, BookingResponse, WorkspaceResponse, PlanResponse, MenuItemResponse,
)

router = APIRouter(prefix="/admin", tags=["admin"])


class UserUpdateRequest(BaseModel):
    role: Optional[str] = None
    nft_holder: Optional[bool] = None
    wallet_address: Optional[str] = None
    full_name: Optional[str] = None


class CreditGrantRequest(BaseModel):
    credit_type: str
    amount: Decimal = Field(..., gt=0)
    reason: Optional[str] = Field(None, max_length=500)


class WorkspaceCreateRequest(BaseModel):
    name: str
    resource_category: str
    capacity: int = Field(..., ge=1)
    hourly_rate: Decimal = Field(..., ge=0)
    available: bool = True


class WorkspaceUpdateRequest(BaseModel):
    name: Optional[str] = None
    resource_category: Optional[str] = None
    capacity: Optional[int] = Field(None, ge=1)
    hourly_rate: Optional[Decimal] = Field(None, ge=0)
    available: Optional[bool] = None


class PlanCreateRequest(BaseModel):
    name: str
    base_price: Decimal = Field(..., ge=0)
    nft_holder_price: Decimal = Field(..., ge=0)
    meeting_room_credits_hours: Decimal = Field(Decimal("0"), ge=0)
    printing_credits: Decimal = Field(Decimal("0"), ge=0)
    guest_passes: Decimal = Field(Decimal("0"), ge=0)
    billing_period: str = "monthly"
    stripe_price_id: Optional[str] = None
    nft_stripe_price_id: Optional[str] = None


class MenuItemCreateRequest(BaseModel):
    title: str
    category: str
    price: Decimal = Field(..., ge=0)
    orderable: bool = True


@router.get("/users", response_model=List[UserResponse])
def list_users(
    role: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    ctx: AuthContext = Depends(admin_only),
    uow: SQLiteUnitOfWork = Depends(get_uow),
):
    return [UserResponse.model_validate(u) for u in user_use_cases.list_users(uow.users, role, limit, offset)]


@router.patch("/users/{user_id}", response_model=UserResponse)
def update_user(
    user_id: int,
    payload: UserUpdateRequest,
    ctx: AuthContext = Depends(admin_only),
    uow: SQLiteUnitOfWork = Depends(get_uow),
):
    user = user_use_cases.update_user_admin(uow.users, user_id, **payload.model_dump())
    return UserResponse.model_validate(user)


@router.post("/users/{user_id}/credits", response_model=CreditTransactionResponse, status_code=201)
def grant_credits(
    user_id: int,
    payload: CreditGrantRequest,
    ctx: AuthContext = Depends(admin_only),
    uow: SQLiteUnitOfWork = Depends(get_uow),
):
    tx = credit_use_cases.grant_credits(uow, user_id, payload.credit_type, payload.amount, reason=payload.reason)
    return CreditTransactionResponse.model_validate(tx)


@router.get("/bookings", response_model=List[BookingResponse])
def list_bookings(
    status: Optional[str] = None,
    booking_date: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    ctx: AuthContext = Depends(staff_only),
    uow: SQLiteUnitOfWork = Depends(get_uow),
):
    limit = max(1, min(100, int(limit)))
    offset = max(0, int(offset))
    bookings = booking_use_cases.list_all_bookings(uow, status=status, booking_date=booking_date,
                                                   limit=limit, offset=offset)
    return [BookingResponse.model_validate(b) for b in bookings]


@router.post("/workspaces", response_model=WorkspaceResponse, status_code=201)
def create_workspace(
    payload: WorkspaceCreateRequest,
    ctx: AuthContext = Depends(admin_only),
    uow: SQLiteUnitOfWork = Depends(get_uow),
):
    return WorkspaceResponse.model_validate(catalog_use_cases.create_workspace(uow.catalog, **payload.model_dump()))


@router.patch("/workspaces/{workspace_id}", response_model=WorkspaceResponse)
def update_workspace(
    workspace_id: int,
    payload: WorkspaceUpdateRequest,
    ctx: AuthContext = Depends(admin_only),
    uow: SQLiteUnitOfWork = Depends(get_uow),
):
    workspace = catalog_use_cases.update_workspace(uow.catalog, workspace_id, **payload.model_dump())
    return WorkspaceResponse.model_validate(workspace)


@router.post("/membership-plans", response_model=PlanResponse, status_code=201)
def create_plan(
    payload: PlanCreateRequest,
    ctx: AuthContext = Depends(admin_only),
    uow: SQLiteUnitOfWork = Depends(get_uow),
):
    return PlanResponse.model_validate(catalog_use_cases.create_plan(uow.catalog, **payload.model_dump()))


@router.post("/menu", response_model=MenuItemResponse, status_code=201)
def create_menu_item(
    payload: MenuItemCreateRequest,
    ctx: AuthContext = Depends(staff_only),
    uow: SQLiteUnitOfWork = Depends(get_uow),
):
    return MenuItemResponse.model_validate(catalog_use_cases.create_menu_item(uow.catalog, **payload.model_dump()))
