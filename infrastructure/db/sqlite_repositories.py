import sqlite3
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List, Any, Dict, Iterable

from core.entities.booking import Booking, ACTIVE_BOOKING_STATUSES, BOOKING_STATUSES, PAYMENT_STATUSES
from core.entities.membership_plan import MembershipPlan
from core.entities.order import Order, OrderItem, MenuItem
from core.entities.workspace import Workspace
from core.repositories.booking_repository import BookingRepository
from core.repositories.catalog_repository import CatalogRepository
from core.repositories.order_repository import OrderRepository
from core.repositories.webhook_event_repository import WebhookEventRepository
from core.use_cases.errors import NotFoundError

# деньги и часы храним как TEXT, чтобы не терять точность
sqlite3.register_adapter(Decimal, str)


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def dec(value) -> Optional[Decimal]:
    return None if value is None else Decimal(str(value))


def update_row(conn: sqlite3.Connection, table: str, row_id: int, fields: Dict[str, Any],
               allowed: Iterable[str], touch: bool = True) -> None:
    allowed = set(allowed)
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Cannot update {table} columns: {sorted(unknown)}")
    fields = dict(fields)
    if touch:
        fields["updated_at"] = utcnow()
    if not fields:
        return
    assignments = ", ".join(f"{column} = ?" for column in fields)
    cur = conn.execute(
        f"UPDATE {table} SET {assignments} WHERE id = ?",
        [_to_db(v) for v in fields.values()] + [int(row_id)],
    )
    if cur.rowcount == 0:
        raise NotFoundError(f"{table} row {row_id} not found")


def _to_db(value):
    if isinstance(value, bool):
        return 1 if value else 0
    return value


class SQLiteBookingRepository(BookingRepository):
    UPDATABLE = (
        "status", "payment_status", "payment_intent_id", "check_in_time", "check_out_time",
        "actual_duration_hours", "cancelled_at", "special_requests", "user_id",
    )

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def _row_to_booking(self, row: sqlite3.Row) -> Booking:
        return Booking(
            id=row["id"],
            user_id=row["user_id"],
            workspace_id=row["workspace_id"],
            booking_date=row["booking_date"],
            start_time=row["start_time"],
            end_time=row["end_time"],
            duration_hours=dec(row["duration_hours"]),
            attendees=row["attendees"],
            subtotal=dec(row["subtotal"]),
            credits_used=dec(row["credits_used"]),
            overage_hours=dec(row["overage_hours"]),
            overage_charge=dec(row["overage_charge"]),
            nft_discount=dec(row["nft_discount"]),
            processing_fee=dec(row["processing_fee"]),
            total_price=dec(row["total_price"]),
            status=row["status"],
            payment_status=row["payment_status"],
            payment_intent_id=row["payment_intent_id"],
            confirmation_code=row["confirmation_code"],
            special_requests=row["special_requests"],
            check_in_time=row["check_in_time"],
            check_out_time=row["check_out_time"],
            actual_duration_hours=dec(row["actual_duration_hours"]),
            cancelled_at=row["cancelled_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def create(self, booking: Booking) -> Booking:
        now = utcnow()
        cur = self.conn.execute(
            """
            INSERT INTO bookings (
                user_id, workspace_id, booking_date, start_time, end_time, duration_hours, attendees,
                subtotal, credits_used, overage_hours, overage_charge, nft_discount, processing_fee,
                total_price, status, payment_status, payment_intent_id, confirmation_code,
                special_requests, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                booking.user_id, booking.workspace_id, booking.booking_date, booking.start_time,
                booking.end_time, booking.duration_hours, booking.attendees, booking.subtotal,
                booking.credits_used, booking.overage_hours, booking.overage_charge, booking.nft_discount,
                booking.processing_fee, booking.total_price, booking.status, booking.payment_status,
                booking.payment_intent_id, booking.confirmation_code, booking.special_requests, now, now,
            ),
        )
        return self.get_by_id(cur.lastrowid)

    def get_by_id(self, booking_id: int) -> Optional[Booking]:
        row = self.conn.execute("SELECT * FROM bookings WHERE id = ?", (int(booking_id),)).fetchone()
        return self._row_to_booking(row) if row else None

    def list_for_user(self, user_id: int, status: Optional[str] = None,
                      limit: int = 100, offset: int = 0) -> List[Booking]:
        query = "SELECT * FROM bookings WHERE user_id = ?"
        params: List[Any] = [int(user_id)]
        if status:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY booking_date DESC, start_time DESC LIMIT ? OFFSET ?"
        params += [int(limit), int(offset)]
        return [self._row_to_booking(r) for r in self.conn.execute(query, params).fetchall()]

    def list_all(self, status: Optional[str] = None, booking_date: Optional[str] = None,
                 limit: int = 100, offset: int = 0) -> List[Booking]:
        query = "SELECT * FROM bookings WHERE 1 = 1"
        params: List[Any] = []
        if status:
            query += " AND status = ?"
            params.append(status)
        if booking_date:
            query += " AND booking_date = ?"
            params.append(booking_date)
        query += " ORDER BY booking_date DESC, start_time DESC LIMIT ? OFFSET ?"
        params += [int(limit), int(offset)]
        return [self._row_to_booking(r) for r in self.conn.execute(query, params).fetchall()]

    def update(self, booking_id: int, **fields: Any) -> Booking:
        if "status" in fields and fields["status"] not in BOOKING_STATUSES:
            raise ValueError(f"Unknown booking status '{fields['status']}'")
        if "payment_status" in fields and fields["payment_status"] not in PAYMENT_STATUSES:
            raise ValueError(f"Unknown payment status '{fields['payment_status']}'")
        update_row(self.conn, "bookings", booking_id, fields, self.UPDATABLE)
        return self.get_by_id(booking_id)

    def find_overlapping(self, workspace_id: int, booking_date: str, start_time: str, end_time: str,
                         exclude_booking_id: Optional[int] = None) -> List[Booking]:
        placeholders = ", ".join("?" for _ in ACTIVE_BOOKING_STATUSES)
        # HH:MM с ведущими нулями сравниваются как строки
        query = (
            f"SELECT * FROM bookings WHERE workspace_id = ? AND booking_date = ? "
            f"AND status IN ({placeholders}) AND start_time < ? AND end_time > ?"
        )
        params: List[Any] = [int(workspace_id), booking_date, *ACTIVE_BOOKING_STATUSES, end_time, start_time]
        if exclude_booking_id is not None:
            query += " AND id != ?"
            params.append(int(exclude_booking_id))
        return [self._row_to_booking(r) for r in self.conn.execute(query, params).fetchall()]

    def get_active_for_user(self, user_id: int) -> Optional[Booking]:
        row = self.conn.execute(
            "SELECT * FROM bookings WHERE user_id = ? AND status = 'checked_in' ORDER BY id LIMIT 1",
            (int(user_id),),
        ).fetchone()
        return self._row_to_booking(row) if row else None

    def count_by_status(self, user_id: int) -> Dict[str, int]:
        rows = self.conn.execute(
            "SELECT status, COUNT(*) AS n FROM bookings WHERE user_id = ? GROUP BY status",
            (int(user_id),),
        ).fetchall()
        return {row["status"]: row["n"] for row in rows}


class SQLiteCatalogRepository(CatalogRepository):
    WORKSPACE_UPDATABLE = ("name", "resource_category", "capacity", "hourly_rate", "available")

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def _row_to_workspace(self, row: sqlite3.Row) -> Workspace:
        return Workspace(
            id=row["id"],
            name=row["name"],
            resource_category=row["resource_category"],
            capacity=row["capacity"],
            hourly_rate=dec(row["hourly_rate"]),
            available=bool(row["available"]),
            created_at=row["created_at"],
        )

    def _row_to_plan(self, row: sqlite3.Row) -> MembershipPlan:
        return MembershipPlan(
            id=row["id"],
            name=row["name"],
            base_price=dec(row["base_price"]),
            nft_holder_price=dec(row["nft_holder_price"]),
            meeting_room_credits_hours=dec(row["meeting_room_credits_hours"]),
            printing_credits=dec(row["printing_credits"]),
            guest_passes=dec(row["guest_passes"]),
            billing_period=row["billing_period"],
            stripe_price_id=row["stripe_price_id"],
            nft_stripe_price_id=row["nft_stripe_price_id"],
            active=bool(row["active"]),
        )

    def _row_to_menu_item(self, row: sqlite3.Row) -> MenuItem:
        return MenuItem(
            id=row["id"],
            title=row["title"],
            category=row["category"],
            price=dec(row["price"]),
            orderable=bool(row["orderable"]),
        )

    def create_workspace(self, workspace: Workspace) -> Workspace:
        cur = self.conn.execute(
            "INSERT INTO workspaces (name, resource_category, capacity, hourly_rate, available, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (workspace.name, workspace.resource_category, workspace.capacity, workspace.hourly_rate,
             1 if workspace.available else 0, utcnow()),
        )
        return self.get_workspace(cur.lastrowid)

    def get_workspace(self, workspace_id: int) -> Optional[Workspace]:
        row = self.conn.execute("SELECT * FROM workspaces WHERE id = ?", (int(workspace_id),)).fetchone()
        return self._row_to_workspace(row) if row else None

    def list_workspaces(self, category: Optional[str] = None, only_available: bool = True) -> List[Workspace]:
        query = "SELECT * FROM workspaces WHERE 1 = 1"
        params: List[Any] = []
        if category:
            query += " AND resource_category = ?"
            params.append(category)
        if only_available:
            query += " AND available = 1"
        query += " ORDER BY name"
        return [self._row_to_workspace(r) for r in self.conn.execute(query, params).fetchall()]

    def update_workspace(self, workspace_id: int, **fields: Any) -> Workspace:
        update_row(self.conn, "workspaces", workspace_id, fields, self.WORKSPACE_UPDATABLE, touch=False)
        return self.get_workspace(workspace_id)

    def create_plan(self, plan: MembershipPlan) -> MembershipPlan:
        cur = self.conn.execute(
            """
            INSERT INTO membership_plans (
                name, base_price, nft_holder_price, meeting_room_credits_hours, printing_credits,
                guest_passes, billing_period, stripe_price_id, nft_stripe_price_id, active, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (plan.name, plan.base_price, plan.nft_holder_price, plan.meeting_room_credits_hours,
             plan.printing_credits, plan.guest_passes, plan.billing_period, plan.stripe_price_id,
             plan.nft_stripe_price_id, 1 if plan.active else 0, utcnow()),
        )
        return self.get_plan(cur.lastrowid)

    def get_plan(self, plan_id: int) -> Optional[MembershipPlan]:
        row = self.conn.execute("SELECT * FROM membership_plans WHERE id = ?", (int(plan_id),)).fetchone()
        return self._row_to_plan(row) if row else None

    def list_plans(self, only_active: bool = True) -> List[MembershipPlan]:
        query = "SELECT * FROM membership_plans"
        if only_active:
            query += " WHERE active = 1"
        query += " ORDER BY id"
        return [self._row_to_plan(r) for r in self.conn.execute(query).fetchall()]

    def create_menu_item(self, item: MenuItem) -> MenuItem:
        cur = self.conn.execute(
            "INSERT INTO menu_items (title, category, price, orderable, created_at) VALUES (?, ?, ?, ?, ?)",
            (item.title, item.category, item.price, 1 if item.orderable else 0, utcnow()),
        )
        return self.get_menu_item(cur.lastrowid)

    def get_menu_item(self, item_id: int) -> Optional[MenuItem]:
        row = self.conn.execute("SELECT * FROM menu_items WHERE id = ?", (int(item_id),)).fetchone()
        return self._row_to_menu_item(row) if row else None

    def list_menu_items(self, category: Optional[str] = None) -> List[MenuItem]:
        query = "SELECT * FROM menu_items"
        params: List[Any] = []
        if category:
            query += " WHERE category = ?"
            params.append(category)
        query += " ORDER BY category, title"
        return [self._row_to_menu_item(r) for r in self.conn.execute(query, params).fetchall()]


class SQLiteOrderRepository(OrderRepository):
    UPDATABLE = ("status", "payment_status", "payment_intent_id", "special_instructions")

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def _row_to_item(self, row: sqlite3.Row) -> OrderItem:
        return OrderItem(
            id=row["id"],
            menu_item_id=row["menu_item_id"],
            quantity=row["quantity"],
            unit_price=dec(row["unit_price"]),
            subtotal=dec(row["subtotal"]),
            title=row["title"],
        )

    def _row_to_order(self, row: sqlite3.Row) -> Order:
        items = self.conn.execute(
            "SELECT oi.*, mi.title AS title FROM order_items oi "
            "LEFT JOIN menu_items mi ON mi.id = oi.menu_item_id WHERE oi.order_id = ? ORDER BY oi.id",
            (row["id"],),
        ).fetchall()
        return Order(
            id=row["id"],
            user_id=row["user_id"],
            subtotal=dec(row["subtotal"]),
            discount_amount=dec(row["discount_amount"]),
            nft_discount_applied=bool(row["nft_discount_applied"]),
            processing_fee=dec(row["processing_fee"]),
            total_price=dec(row["total_price"]),
            status=row["status"],
            payment_status=row["payment_status"],
            payment_intent_id=row["payment_intent_id"],
            special_instructions=row["special_instructions"],
            items=[self._row_to_item(i) for i in items],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def create(self, order: Order) -> Order:
        now = utcnow()
        cur = self.conn.execute(
            """
            INSERT INTO orders (
                user_id, subtotal, discount_amount, nft_discount_applied, processing_fee, total_price,
                status, payment_status, payment_intent_id, special_instructions, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (order.user_id, order.subtotal, order.discount_amount, 1 if order.nft_discount_applied else 0,
             order.processing_fee, order.total_price, order.status, order.payment_status,
             order.payment_intent_id, order.special_instructions, now, now),
        )
        order_id = cur.lastrowid
        self.conn.executemany(
            "INSERT INTO order_items (order_id, menu_item_id, quantity, unit_price, subtotal) VALUES (?, ?, ?, ?, ?)",
            [(order_id, i.menu_item_id, i.quantity, i.unit_price, i.subtotal) for i in order.items],
        )
        return self.get_by_id(order_id)

    def get_by_id(self, order_id: int) -> Optional[Order]:
        row = self.conn.execute("SELECT * FROM orders WHERE id = ?", (int(order_id),)).fetchone()
        return self._row_to_order(row) if row else None

    def list_for_user(self, user_id: int, limit: int = 20, offset: int = 0) -> List[Order]:
        rows = self.conn.execute(
            "SELECT * FROM orders WHERE user_id = ? ORDER BY id DESC LIMIT ? OFFSET ?",
            (int(user_id), int(limit), int(offset)),
        ).fetchall()
        return [self._row_to_order(r) for r in rows]

    def list_all(self, status: Optional[str] = None, limit: int = 20, offset: int = 0) -> List[Order]:
        query = "SELECT * FROM orders"
        params: List[Any] = []
        if status:
            query += " WHERE status = ?"
            params.append(status)
        query += " ORDER BY id DESC LIMIT ? OFFSET ?"
        params += [int(limit), int(offset)]
        return [self._row_to_order(r) for r in self.conn.execute(query, params).fetchall()]

    def update(self, order_id: int, **fields: Any) -> Order:
        update_row(self.conn, "orders", order_id, fields, self.UPDATABLE)
        return self.get_by_id(order_id)


class SQLiteWebhookEventRepository(WebhookEventRepository):
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def has_processed(self, event_id: str) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM processed_webhook_events WHERE event_id = ?", (event_id,)
        ).fetchone()
        return row is not None

    def mark_processed(self, event_id: str, event_type: str) -> None:
        # PRIMARY KEY на event_id не даст записать событие дважды
        self.conn.execute(
            "INSERT INTO processed_webhook_events (event_id, event_type, processed_at) VALUES (?, ?, ?)",
            (event_id, event_type, utcnow()),
        )
