from typing import Optional, List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from core.services.notifier import Notifier
from core.use_cases import order_use_cases
from core.use_cases.auth_gate import AuthContext
from infrastructure.db.sqlite import SQLiteUnitOfWork
from infrastructure.web.dependencies import get_uow, get_notifier, authenticated, staff_only
from infrastructure.web.schemas import OrderResponse

router = APIRouter(prefix="/orders", tags=["orders"])


class OrderLine(BaseModel):
    menu_item_id: int
    quantity: int = Field(..., ge=1, le=50)


class OrderCreateRequest(BaseModel):
    items: List[OrderLine] = Field(..., min_length=1)
    special_instructions: Optional[str] = Field(None, max_length=500)


class OrderStatusRequest(BaseModel):
    status: str


@router.post("", response_model=OrderResponse, status_code=201)
def create_order(
    payload: OrderCreateRequest,
    ctx: AuthContext = Depends(authenticated),
    uow: SQLiteUnitOfWork = Depends(get_uow),
    notifier: Notifier = Depends(get_notifier),
):
    order = order_use_cases.create_order(
        uow, notifier, ctx.user_id,
        items=[(line.menu_item_id, line.quantity) for line in payload.items],
        special_instructions=payload.special_instructions,
    )
    return OrderResponse.model_validate(order)


@router.get("", response_model=List[OrderResponse])
def list_orders(
    status: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
    ctx: AuthContext = Depends(authenticated),
    uow: SQLiteUnitOfWork = Depends(get_uow),
):
    orders = order_use_cases.list_orders(uow, ctx.user_id, ctx.role, status=status, limit=limit, offset=offset)
    return [OrderResponse.model_validate(o) for o in orders]


@router.get("/{order_id}", response_model=OrderResponse)
def get_order(order_id: int, ctx: AuthContext = Depends(authenticated), uow: SQLiteUnitOfWork = Depends(get_uow)):
    return OrderResponse.model_validate(order_use_cases.get_order(uow, order_id, ctx.user_id, ctx.role))


@router.delete("/{order_id}", response_model=OrderResponse)
def cancel_order(
    order_id: int,
    ctx: AuthContext = Depends(authenticated),
    uow: SQLiteUnitOfWork = Depends(get_uow),
    notifier: Notifier = Depends(get_notifier),
):
    return OrderResponse.model_validate(order_use_cases.cancel_order(uow, notifier, order_id, ctx.user_id))


@router.patch("/{order_id}/status", response_model=OrderResponse)
def update_status(
    order_id: int,
    payload: OrderStatusRequest,
    ctx: AuthContext = Depends(staff_only),
    uow: SQLiteUnitOfWork = Depends(get_uow),
    notifier: Notifier = Depends(get_notifier),
):
    return OrderResponse.model_validate(order_use_cases.update_order_status(uow, notifier, order_id, payload.status))
