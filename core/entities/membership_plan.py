from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Dict


@dataclass
class MembershipPlan:
    id: Optional[int]
    name: str
    base_price: Decimal
    nft_holder_price: Decimal
    meeting_room_credits_hours: Decimal = Decimal("0")
    printing_credits: Decimal = Decimal("0")
    guest_passes: Decimal = Decimal("0")
    billing_period: str = "monthly"
    stripe_price_id: Optional[str] = None
    nft_stripe_price_id: Optional[str] = None
    active: bool = True

    def entitlements(self) -> Dict[str, Decimal]:
        return {
            "meeting-room": self.meeting_room_credits_hours,
            "printing": self.printing_credits,
            "guest-pass": self.guest_passes,
        }

    def price_for(self, nft_holder: bool) -> Decimal:
        return self.nft_holder_price if nft_holder else self.base_price
