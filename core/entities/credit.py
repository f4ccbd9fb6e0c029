from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

CREDIT_TYPES = ("meeting-room", "printing", "guest-pass")


@dataclass
class CreditBalance:
    credit_type: str
    available: Decimal
    last_allocated: Optional[str] = None
