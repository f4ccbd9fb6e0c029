import logging
import sqlite3
from contextlib import contextmanager
from decimal import Decimal
from pathlib import Path
from typing import Optional, List, Dict, Any, Iterator

from core.entities.credit import CreditBalance, CREDIT_TYPES
from core.entities.transaction import CreditTransaction
from core.entities.user import User
from core.repositories.unit_of_work import UnitOfWork
from core.repositories.user_repository import UserRepository
from infrastructure.db.sqlite_repositories import (
    SQLiteBookingRepository, SQLiteCatalogRepository, SQLiteOrderRepository,
    SQLiteWebhookEventRepository, dec, update_row, utcnow,
)

logger = logging.getLogger(__name__)

# тип кредитов -> (колонка баланса, колонка последнего начисления)
CREDIT_COLUMNS = {
    "meeting-room": ("meeting_room_credits_hours", "meeting_room_last_allocated"),
    "printing": ("printing_credits", "printing_last_allocated"),
    "guest-pass": ("guest_passes_remaining", "guest_passes_last_allocated"),
}

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS membership_plans (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        base_price TEXT NOT NULL,
        nft_holder_price TEXT NOT NULL,
        meeting_room_credits_hours TEXT NOT NULL DEFAULT '0',
        printing_credits TEXT NOT NULL DEFAULT '0',
        guest_passes TEXT NOT NULL DEFAULT '0',
        billing_period TEXT NOT NULL DEFAULT 'monthly',
        stripe_price_id TEXT,
        nft_stripe_price_id TEXT,
        active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        email TEXT UNIQUE NOT NULL,
        password_hash TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'user' CHECK (role IN ('user', 'staff', 'admin')),
        full_name TEXT,
        nft_holder INTEGER NOT NULL DEFAULT 0,
        wallet_address TEXT,
        membership_plan_id INTEGER REFERENCES membership_plans(id) ON DELETE SET NULL,
        membership_status TEXT,
        membership_period_start TEXT,
        membership_period_end TEXT,
        credits_cycle_start TEXT,
        stripe_customer_id TEXT,
        stripe_subscription_id TEXT,
        meeting_room_credits_hours TEXT NOT NULL DEFAULT '0'
            CHECK (CAST(meeting_room_credits_hours AS REAL) >= 0),
        meeting_room_last_allocated TEXT,
        printing_credits TEXT NOT NULL DEFAULT '0' CHECK (CAST(printing_credits AS REAL) >= 0),
        printing_last_allocated TEXT,
        guest_passes_remaining TEXT NOT NULL DEFAULT '0' CHECK (CAST(guest_passes_remaining AS REAL) >= 0),
        guest_passes_last_allocated TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_users_subscription ON users(stripe_subscription_id);",
    """
    CREATE TABLE IF NOT EXISTS workspaces (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        resource_category TEXT NOT NULL CHECK (resource_category IN ('desk', 'meeting-room')),
        capacity INTEGER NOT NULL,
        hourly_rate TEXT NOT NULL,
        available INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS bookings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER REFERENCES users(id) ON DELETE SET NULL,
        workspace_id INTEGER NOT NULL REFERENCES workspaces(id),
        booking_date TEXT NOT NULL,
        start_time TEXT NOT NULL,
        end_time TEXT NOT NULL,
        duration_hours TEXT NOT NULL,
        attendees INTEGER NOT NULL DEFAULT 1,
        subtotal TEXT NOT NULL,
        credits_used TEXT NOT NULL DEFAULT '0',
        overage_hours TEXT NOT NULL DEFAULT '0',
        overage_charge TEXT NOT NULL DEFAULT '0',
        nft_discount TEXT NOT NULL DEFAULT '0',
        processing_fee TEXT NOT NULL DEFAULT '0',
        total_price TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        payment_status TEXT NOT NULL DEFAULT 'pending',
        payment_intent_id TEXT,
        confirmation_code TEXT,
        special_requests TEXT,
        check_in_time TEXT,
        check_out_time TEXT,
        actual_duration_hours TEXT,
        cancelled_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_bookings_slot ON bookings(workspace_id, booking_date);",
    "CREATE INDEX IF NOT EXISTS idx_bookings_user ON bookings(user_id);",
    """
    CREATE TABLE IF NOT EXISTS credit_transactions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        transaction_type TEXT NOT NULL
            CHECK (transaction_type IN ('allocation', 'deduction', 'refund', 'expiration')),
        credit_type TEXT NOT NULL,
        amount TEXT NOT NULL,
        balance_after TEXT NOT NULL,
        description TEXT,
        booking_id INTEGER REFERENCES bookings(id) ON DELETE SET NULL,
        created_at TEXT NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_credit_tx_user ON credit_transactions(user_id, credit_type);",
    """
    CREATE TABLE IF NOT EXISTS menu_items (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        category TEXT NOT NULL,
        price TEXT NOT NULL,
        orderable INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS orders (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER REFERENCES users(id) ON DELETE SET NULL,
        subtotal TEXT NOT NULL,
        discount_amount TEXT NOT NULL DEFAULT '0',
        nft_discount_applied INTEGER NOT NULL DEFAULT 0,
        processing_fee TEXT NOT NULL DEFAULT '0',
        total_price TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        payment_status TEXT NOT NULL DEFAULT 'pending',
        payment_intent_id TEXT,
        special_instructions TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS order_items (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        order_id INTEGER NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
        menu_item_id INTEGER REFERENCES menu_items(id) ON DELETE SET NULL,
        quantity INTEGER NOT NULL CHECK (quantity > 0),
        unit_price TEXT NOT NULL,
        subtotal TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS processed_webhook_events (
        event_id TEXT PRIMARY KEY,
        event_type TEXT NOT NULL,
        processed_at TEXT NOT NULL
    );
    """,
]


def connect(db_path: str, timeout: float = 5.0) -> sqlite3.Connection:
    """Autocommit connection; ``SQLiteUnitOfWork.transaction`` opens explicit transactions."""
    conn = sqlite3.connect(db_path, timeout=timeout, check_same_thread=False, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db(db_path: str) -> None:
    if db_path != ":memory:" and not db_path.startswith("file:"):
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = connect(db_path)
    try:
        if db_path != ":memory:":
            conn.execute("PRAGMA journal_mode = WAL")
        for statement in SCHEMA:
            conn.execute(statement)
    finally:
        conn.close()
    logger.info("Database ready at %s", db_path)


class SQLiteUserRepository(UserRepository):
    UPDATABLE = (
        "role", "full_name", "nft_holder", "wallet_address", "membership_plan_id", "membership_status",
        "membership_period_start", "membership_period_end", "credits_cycle_start",
        "stripe_customer_id", "stripe_subscription_id",
    )

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.conn.row_factory = sqlite3.Row

    def _row_to_user(self, row: sqlite3.Row) -> User:
        credits = {
            credit_type: CreditBalance(
                credit_type=credit_type,
                available=dec(row[balance_col]),
                last_allocated=row[allocated_col],
            )
            for credit_type, (balance_col, allocated_col) in CREDIT_COLUMNS.items()
        }
        return User(
            id=row["id"],
            email=row["email"],
            password_hash=row["password_hash"],
            role=row["role"],
            full_name=row["full_name"],
            nft_holder=bool(row["nft_holder"]),
            wallet_address=row["wallet_address"],
            membership_plan_id=row["membership_plan_id"],
            membership_status=row["membership_status"],
            membership_period_start=row["membership_period_start"],
            membership_period_end=row["membership_period_end"],
            credits_cycle_start=row["credits_cycle_start"],
            stripe_customer_id=row["stripe_customer_id"],
            stripe_subscription_id=row["stripe_subscription_id"],
            created_at=row["created_at"],
            credits=credits,
        )

    def _row_to_tx(self, row: sqlite3.Row) -> CreditTransaction:
        return CreditTransaction(
            id=row["id"],
            user_id=row["user_id"],
            transaction_type=row["transaction_type"],
            credit_type=row["credit_type"],
            amount=dec(row["amount"]),
            balance_after=dec(row["balance_after"]),
            description=row["description"],
            booking_id=row["booking_id"],
            created_at=row["created_at"],
        )

    def create_user(self, email: str, password_hash: str, role: str = "user",
                    full_name: Optional[str] = None) -> User:
        now = utcnow()
        cur = self.conn.execute(
            "INSERT INTO users (email, password_hash, role, full_name, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (email, password_hash, role, full_name, now, now),
        )
        return self.get_by_id(cur.lastrowid)

    def get_by_email(self, email: str) -> Optional[User]:
        row = self.conn.execute("SELECT * FROM users WHERE email = ?", (email,)).fetchone()
        return self._row_to_user(row) if row else None

    def get_by_id(self, user_id: int) -> Optional[User]:
        row = self.conn.execute("SELECT * FROM users WHERE id = ?", (int(user_id),)).fetchone()
        return self._row_to_user(row) if row else None

    def get_by_subscription_id(self, subscription_id: str) -> Optional[User]:
        row = self.conn.execute(
            "SELECT * FROM users WHERE stripe_subscription_id = ?", (subscription_id,)
        ).fetchone()
        return self._row_to_user(row) if row else None

    def list_users(self, limit: int = 50, offset: int = 0, role: Optional[str] = None) -> List[User]:
        query = "SELECT * FROM users"
        params: List[Any] = []
        if role:
            query += " WHERE role = ?"
            params.append(role)
        query += " ORDER BY id LIMIT ? OFFSET ?"
        params += [int(limit), int(offset)]
        return [self._row_to_user(r) for r in self.conn.execute(query, params).fetchall()]

    def update_user(self, user_id: int, **fields: Any) -> User:
        update_row(self.conn, "users", user_id, fields, self.UPDATABLE)
        return self.get_by_id(user_id)

    def set_credit_balance(self, user_id: int, credit_type: str, available: Decimal,
                           last_allocated: Optional[str] = None) -> User:
        balance_col, allocated_col = CREDIT_COLUMNS[credit_type]
        fields = {balance_col: Decimal(available)}
        if last_allocated is not None:
            fields[allocated_col] = last_allocated
        update_row(self.conn, "users", user_id, fields, fields.keys())
        return self.get_by_id(user_id)

    def log_credit_transaction(self, user_id: int, transaction_type: str, credit_type: str,
                               amount: Decimal, balance_after: Decimal,
                               description: Optional[str] = None,
                               booking_id: Optional[int] = None) -> CreditTransaction:
        cur = self.conn.execute(
            "INSERT INTO credit_transactions (user_id, transaction_type, credit_type, amount, balance_after, "
            "description, booking_id, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (int(user_id), transaction_type, credit_type, Decimal(amount), Decimal(balance_after),
             description, booking_id, utcnow()),
        )
        row = self.conn.execute("SELECT * FROM credit_transactions WHERE id = ?", (cur.lastrowid,)).fetchone()
        return self._row_to_tx(row)

    def list_credit_transactions(self, user_id: int, credit_type: Optional[str] = None,
                                 limit: int = 100, offset: int = 0) -> List[CreditTransaction]:
        query = "SELECT * FROM credit_transactions WHERE user_id = ?"
        params: List[Any] = [int(user_id)]
        if credit_type:
            query += " AND credit_type = ?"
            params.append(credit_type)
        query += " ORDER BY id DESC LIMIT ? OFFSET ?"
        params += [int(limit), int(offset)]
        return [self._row_to_tx(r) for r in self.conn.execute(query, params).fetchall()]

    def sum_credit_transactions(self, user_id: int) -> Dict[str, Decimal]:
        totals = {t: Decimal("0") for t in CREDIT_TYPES}
        rows = self.conn.execute(
            "SELECT credit_type, amount FROM credit_transactions WHERE user_id = ?", (int(user_id),)
        ).fetchall()
        for row in rows:
            totals[row["credit_type"]] += dec(row["amount"])
        return totals


class SQLiteUnitOfWork(UnitOfWork):
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.conn.row_factory = sqlite3.Row
        self._depth = 0
        self.users = SQLiteUserRepository(conn)
        self.bookings = SQLiteBookingRepository(conn)
        self.catalog = SQLiteCatalogRepository(conn)
        self.orders = SQLiteOrderRepository(conn)
        self.webhook_events = SQLiteWebhookEventRepository(conn)

    @contextmanager
    def transaction(self) -> Iterator["SQLiteUnitOfWork"]:
        if self._depth:
            # вложенный вызов - часть внешней транзакции
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        # IMMEDIATE берет блокировку записи сразу, параллельные списания идут по очереди
        self.conn.execute("BEGIN IMMEDIATE")
        self._depth = 1
        try:
            yield self
        except BaseException:
            self.conn.execute("ROLLBACK")
            raise
        else:
            self.conn.execute("COMMIT")
        finally:
            self._depth = 0
