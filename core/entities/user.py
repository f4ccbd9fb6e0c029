from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Dict

from core.entities.credit import CreditBalance, CREDIT_TYPES

ROLES = ("user", "staff", "admin")
STAFF_ROLES = ("staff", "admin")

MEMBERSHIP_STATUSES = ("active", "paused", "cancelled", "incomplete")


def empty_credits() -> Dict[str, CreditBalance]:
    return {t: CreditBalance(credit_type=t, available=Decimal("0")) for t in CREDIT_TYPES}


@dataclass
class User:
    id: Optional[int]
    email: str
    password_hash: str
    role: str = "user"  # user | staff | admin
    full_name: Optional[str] = None
    nft_holder: bool = False
    wallet_address: Optional[str] = None
    membership_plan_id: Optional[int] = None
    membership_status: Optional[str] = None
    membership_period_start: Optional[str] = None
    membership_period_end: Optional[str] = None
    credits_cycle_start: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    created_at: str = ""
    credits: Dict[str, CreditBalance] = field(default_factory=empty_credits)

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def has_active_membership(self) -> bool:
        return self.membership_plan_id is not None and self.membership_status == "active"

    def credit(self, credit_type: str) -> CreditBalance:
        return self.credits[credit_type]
