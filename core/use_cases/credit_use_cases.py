import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List, Dict

from core.entities.credit import CREDIT_TYPES, CreditBalance
from core.entities.membership_plan import MembershipPlan
from core.entities.transaction import CreditTransaction
from core.entities.user import User
from core.repositories.unit_of_work import UnitOfWork
from core.use_cases.errors import ValidationError, NotFoundError, InsufficientCreditsError

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

CREDIT_UNITS = {
    "meeting-room": "hours",
    "printing": "pages",
    "guest-pass": "passes",
}


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _check_credit_type(credit_type: str) -> None:
    if credit_type not in CREDIT_TYPES:
        raise ValidationError(f"Unknown credit type '{credit_type}'")


def _positive(amount) -> Decimal:
    amount = Decimal(str(amount))
    if amount <= 0:
        raise ValidationError("Credit amount must be positive")
    return amount


def _load_user(uow: UnitOfWork, user_id: int) -> User:
    user = uow.users.get_by_id(user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def _apply(uow: UnitOfWork, user_id: int, transaction_type: str, credit_type: str,
           new_balance: Decimal, amount: Decimal, description: str,
           booking_id: Optional[int] = None, allocated_at: Optional[str] = None) -> CreditTransaction:
    # баланс и запись в журнале меняются только вместе
    uow.users.set_credit_balance(user_id, credit_type, new_balance, last_allocated=allocated_at)
    return uow.users.log_credit_transaction(
        user_id=user_id,
        transaction_type=transaction_type,
        credit_type=credit_type,
        amount=amount,
        balance_after=new_balance,
        description=description,
        booking_id=booking_id,
    )


def get_balance(uow: UnitOfWork, user_id: int) -> Dict[str, CreditBalance]:
    return _load_user(uow, user_id).credits


def list_transactions(uow: UnitOfWork, user_id: int, credit_type: Optional[str] = None,
                      limit: int = 50, offset: int = 0) -> List[CreditTransaction]:
    if credit_type is not None:
        _check_credit_type(credit_type)
    limit = max(1, min(100, int(limit)))
    offset = max(0, int(offset))
    return uow.users.list_credit_transactions(user_id, credit_type=credit_type, limit=limit, offset=offset)


def summarize_transactions(transactions: List[CreditTransaction]) -> Dict[str, Dict[str, Decimal]]:
    summary = {t: {"allocated": ZERO, "used": ZERO, "refunded": ZERO, "expired": ZERO} for t in CREDIT_TYPES}
    keys = {"allocation": "allocated", "deduction": "used", "refund": "refunded", "expiration": "expired"}
    for tx in transactions:
        summary[tx.credit_type][keys[tx.transaction_type]] += abs(tx.amount)
    return summary


def deduct_credits(uow: UnitOfWork, user_id: int, credit_type: str, amount,
                   booking_id: Optional[int] = None, reason: Optional[str] = None) -> CreditTransaction:
    """Fails with InsufficientCreditsError before writing anything if the
    balance would go negative."""
    _check_credit_type(credit_type)
    amount = _positive(amount)
    with uow.transaction():
        user = _load_user(uow, user_id)
        balance = user.credit(credit_type).available
        if balance < amount:
            raise InsufficientCreditsError(
                f"Insufficient {credit_type} credits: {balance} available, {amount} required"
            )
        tx = _apply(
            uow, user_id, "deduction", credit_type,
            new_balance=balance - amount,
            amount=-amount,
            description=reason or f"Used {amount} {CREDIT_UNITS[credit_type]}",
            booking_id=booking_id,
        )
    logger.info("Deducted %s %s credits from user %s (booking %s)", amount, credit_type, user_id, booking_id)
    return tx


def refund_credits(uow: UnitOfWork, user_id: int, credit_type: str, amount,
                   booking_id: Optional[int] = None, reason: Optional[str] = None) -> CreditTransaction:
    _check_credit_type(credit_type)
    amount = _positive(amount)
    with uow.transaction():
        user = _load_user(uow, user_id)
        balance = user.credit(credit_type).available
        tx = _apply(
            uow, user_id, "refund", credit_type,
            new_balance=balance + amount,
            amount=amount,
            description=reason or f"Refunded {amount} {CREDIT_UNITS[credit_type]}",
            booking_id=booking_id,
        )
    logger.info("Refunded %s %s credits to user %s (booking %s)", amount, credit_type, user_id, booking_id)
    return tx


def grant_credits(uow: UnitOfWork, user_id: int, credit_type: str, amount,
                  reason: Optional[str] = None) -> CreditTransaction:
    """Manual top-up by an admin, recorded as an allocation."""
    _check_credit_type(credit_type)
    amount = _positive(amount)
    with uow.transaction():
        user = _load_user(uow, user_id)
        balance = user.credit(credit_type).available
        tx = _apply(
            uow, user_id, "allocation", credit_type,
            new_balance=balance + amount,
            amount=amount,
            description=reason or f"Granted {amount} {CREDIT_UNITS[credit_type]}",
            allocated_at=_utcnow(),
        )
    logger.info("Granted %s %s credits to user %s", amount, credit_type, user_id)
    return tx


def expire_credits(uow: UnitOfWork, user_id: int, reason: str = "Credits expired") -> List[CreditTransaction]:
    """Zeroes every non-zero balance, one expiration transaction each."""
    written = []
    with uow.transaction():
        user = _load_user(uow, user_id)
        for credit_type in CREDIT_TYPES:
            balance = user.credit(credit_type).available
            if balance == 0:
                continue
            written.append(_apply(
                uow, user_id, "expiration", credit_type,
                new_balance=ZERO, amount=-balance, description=reason,
            ))
    if written:
        logger.info("Expired %d credit balances for user %s", len(written), user_id)
    return written


def allocate_plan_credits(uow: UnitOfWork, user_id: int, plan: MembershipPlan,
                          period_start: str, now: Optional[str] = None) -> List[CreditTransaction]:
    """Gives the user a fresh entitlement for the billing period starting at
    ``period_start``. Leftovers from the previous period expire first.

    Repeated calls for the same period write nothing.
    """
    now = now or _utcnow()
    written = []
    with uow.transaction():
        user = _load_user(uow, user_id)
        if user.credits_cycle_start == period_start:
            logger.info("Credits for user %s period %s already allocated", user_id, period_start)
            return []
        for credit_type, entitled in plan.entitlements().items():
            balance = user.credit(credit_type).available
            if balance != 0:
                written.append(_apply(
                    uow, user_id, "expiration", credit_type,
                    new_balance=ZERO, amount=-balance,
                    description="Unused credits expired at end of billing period",
                ))
                balance = ZERO
            entitled = Decimal(str(entitled))
            if entitled > 0:
                written.append(_apply(
                    uow, user_id, "allocation", credit_type,
                    new_balance=entitled, amount=entitled,
                    description=f"{plan.name} plan: {entitled} {CREDIT_UNITS[credit_type]}",
                    allocated_at=now,
                ))
        uow.users.update_user(user_id, credits_cycle_start=period_start)
    logger.info("Allocated %s plan credits to user %s for period %s", plan.name, user_id, period_start)
    return written


def verify_ledger(uow: UnitOfWork, user_id: int) -> Dict[str, Dict[str, Decimal]]:
    """Compares each balance with the sum of its transactions.

    Returns only the credit types that do not reconcile.
    """
    user = _load_user(uow, user_id)
    totals = uow.users.sum_credit_transactions(user_id)
    mismatched = {}
    for credit_type in CREDIT_TYPES:
        balance = user.credit(credit_type).available
        ledger = totals.get(credit_type, ZERO)
        if balance != ledger:
            mismatched[credit_type] = {"balance": balance, "ledger": ledger}
    if mismatched:
        logger.warning("Ledger mismatch for user %s: %s", user_id, mismatched)
    return mismatched
