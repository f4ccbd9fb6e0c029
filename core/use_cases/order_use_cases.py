import logging
from typing import Optional, List, Iterable, Tuple

from core.entities.order import Order, OrderItem, ORDER_STATUSES, can_transition_order
from core.entities.user import STAFF_ROLES
from core.repositories.unit_of_work import UnitOfWork
from core.services.notifier import Notifier
from core.use_cases.errors import ValidationError, NotFoundError, ConflictError
from core.use_cases.notifications import order_event
from core.use_cases.pricing import calculate_order_totals, round_money

logger = logging.getLogger(__name__)

MAX_INSTRUCTIONS = 500


def _visible_order(uow: UnitOfWork, order_id: int, requester_id: int, requester_role: str) -> Order:
    order = uow.orders.get_by_id(order_id)
    if order is None or (order.user_id != requester_id and requester_role not in STAFF_ROLES):
        raise NotFoundError("Order not found")
    return order


def create_order(uow: UnitOfWork, notifier: Optional[Notifier], user_id: int,
                 items: Iterable[Tuple[int, int]], special_instructions: Optional[str] = None) -> Order:
    """``items`` are (menu_item_id, quantity) pairs; unit prices come from the menu."""
    items = list(items)
    if not items:
        raise ValidationError("Order must contain at least one item")
    if special_instructions and len(special_instructions) > MAX_INSTRUCTIONS:
        raise ValidationError(f"Special instructions must be at most {MAX_INSTRUCTIONS} characters")
    for _, quantity in items:
        if int(quantity) < 1:
            raise ValidationError("Quantity must be at least 1")

    with uow.transaction():
        user = uow.users.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")

        lines: List[OrderItem] = []
        for menu_item_id, quantity in items:
            menu_item = uow.catalog.get_menu_item(menu_item_id)
            if menu_item is None:
                raise ValidationError(f"Menu item {menu_item_id} not found")
            if not menu_item.orderable:
                raise ValidationError(f"{menu_item.title} is not available for ordering")
            lines.append(OrderItem(
                id=None,
                menu_item_id=menu_item.id,
                quantity=int(quantity),
                unit_price=menu_item.price,
                subtotal=round_money(menu_item.price * int(quantity)),
                title=menu_item.title,
            ))

        totals = calculate_order_totals(((l.quantity, l.unit_price) for l in lines), user.nft_holder)
        order = uow.orders.create(Order(
            id=None,
            user_id=user.id,
            subtotal=totals["subtotal"],
            discount_amount=totals["discount_amount"],
            nft_discount_applied=totals["discount_amount"] > 0,
            processing_fee=totals["processing_fee"],
            total_price=totals["total_price"],
            special_instructions=special_instructions,
            items=lines,
        ))

    logger.info("Order %s created for user %s (total %s)", order.id, user_id, order.total_price)
    order_event(notifier, "order.created", order)
    return order


def list_orders(uow: UnitOfWork, requester_id: int, requester_role: str, status: Optional[str] = None,
                limit: int = 20, offset: int = 0) -> List[Order]:
    if status is not None and status not in ORDER_STATUSES:
        raise ValidationError(f"Unknown order status '{status}'")
    limit = max(1, min(100, int(limit)))
    offset = max(0, int(offset))
    if requester_role in STAFF_ROLES:
        return uow.orders.list_all(status=status, limit=limit, offset=offset)
    orders = uow.orders.list_for_user(requester_id, limit=limit, offset=offset)
    if status is not None:
        orders = [o for o in orders if o.status == status]
    return orders


def get_order(uow: UnitOfWork, order_id: int, requester_id: int, requester_role: str) -> Order:
    return _visible_order(uow, order_id, requester_id, requester_role)


def update_order_status(uow: UnitOfWork, notifier: Optional[Notifier], order_id: int, status: str) -> Order:
    if status not in ORDER_STATUSES:
        raise ValidationError(f"Unknown order status '{status}'")
    with uow.transaction():
        order = uow.orders.get_by_id(order_id)
        if order is None:
            raise NotFoundError("Order not found")
        if not can_transition_order(order.status, status):
            raise ConflictError(f"Cannot change order from {order.status} to {status}", code="INVALID_TRANSITION")
        order = uow.orders.update(order_id, status=status)

    logger.info("Order %s moved to %s", order_id, status)
    order_event(notifier, "order.status_updated", order)
    return order


def cancel_order(uow: UnitOfWork, notifier: Optional[Notifier], order_id: int, requester_id: int) -> Order:
    with uow.transaction():
        order = _visible_order(uow, order_id, requester_id, "user")
        if order.status != "pending":
            raise ConflictError("Only pending orders can be cancelled", code="INVALID_TRANSITION")
        order = uow.orders.update(order_id, status="cancelled")

    logger.info("Order %s cancelled by user %s", order_id, requester_id)
    order_event(notifier, "order.status_updated", order)
    return order
