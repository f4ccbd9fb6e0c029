from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

WORKSPACE_CATEGORIES = ("desk", "meeting-room")


@dataclass
class Workspace:
    id: Optional[int]
    name: str
    resource_category: str  # desk | meeting-room
    capacity: int
    hourly_rate: Decimal
    available: bool = True
    created_at: str = ""
