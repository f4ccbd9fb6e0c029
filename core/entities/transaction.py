from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

TRANSACTION_TYPES = ("allocation", "deduction", "refund", "expiration")


@dataclass
class CreditTransaction:
    id: Optional[int]
    user_id: int
    transaction_type: str   # allocation | deduction | refund | expiration
    credit_type: str        # meeting-room | printing | guest-pass
    amount: Decimal         # начисление: >0, списание: <0
    balance_after: Decimal  # баланс после операции
    description: Optional[str]
    booking_id: Optional[int]
    created_at: str

    @property
    def balance_before(self) -> Decimal:
        return self.balance_after - self.amount
