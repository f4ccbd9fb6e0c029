import logging
from decimal import Decimal
from typing import Optional, List, Any, Dict

from core.entities.membership_plan import MembershipPlan
from core.entities.order import MenuItem
from core.entities.workspace import Workspace, WORKSPACE_CATEGORIES
from core.repositories.catalog_repository import CatalogRepository
from core.use_cases.errors import ValidationError, NotFoundError
from core.use_cases.pricing import NFT_DISCOUNT_RATE, CAFE_NFT_DISCOUNT_RATE

logger = logging.getLogger(__name__)


def _money(value: Any, field: str) -> Decimal:
    amount = Decimal(str(value))
    if amount < 0:
        raise ValidationError(f"{field} cannot be negative")
    return amount


def _check_category(category: str) -> None:
    if category not in WORKSPACE_CATEGORIES:
        raise ValidationError(f"Unknown workspace category '{category}'")


def list_workspaces(repo: CatalogRepository, category: Optional[str] = None,
                    include_unavailable: bool = False) -> List[Workspace]:
    if category is not None:
        _check_category(category)
    return repo.list_workspaces(category=category, only_available=not include_unavailable)


def get_workspace(repo: CatalogRepository, workspace_id: int) -> Workspace:
    workspace = repo.get_workspace(workspace_id)
    if workspace is None:
        raise NotFoundError("Workspace not found")
    return workspace


def create_workspace(repo: CatalogRepository, name: str, resource_category: str, capacity: int,
                     hourly_rate: Any, available: bool = True) -> Workspace:
    _check_category(resource_category)
    if not name or not name.strip():
        raise ValidationError("Workspace name is required")
    if int(capacity) < 1:
        raise ValidationError("Capacity must be at least 1")
    workspace = repo.create_workspace(Workspace(
        id=None,
        name=name.strip(),
        resource_category=resource_category,
        capacity=int(capacity),
        hourly_rate=_money(hourly_rate, "Hourly rate"),
        available=available,
    ))
    logger.info("Workspace %s created", workspace.id)
    return workspace


def update_workspace(repo: CatalogRepository, workspace_id: int, **fields: Any) -> Workspace:
    get_workspace(repo, workspace_id)
    fields = {k: v for k, v in fields.items() if v is not None}
    if "resource_category" in fields:
        _check_category(fields["resource_category"])
    if "capacity" in fields and int(fields["capacity"]) < 1:
        raise ValidationError("Capacity must be at least 1")
    if "hourly_rate" in fields:
        fields["hourly_rate"] = _money(fields["hourly_rate"], "Hourly rate")
    if not fields:
        raise ValidationError("Nothing to update")
    return repo.update_workspace(workspace_id, **fields)


def list_plans(repo: CatalogRepository) -> List[MembershipPlan]:
    return repo.list_plans(only_active=True)


def create_plan(repo: CatalogRepository, name: str, base_price: Any, nft_holder_price: Any,
                meeting_room_credits_hours: Any = 0, printing_credits: Any = 0, guest_passes: Any = 0,
                billing_period: str = "monthly", stripe_price_id: Optional[str] = None,
                nft_stripe_price_id: Optional[str] = None) -> MembershipPlan:
    if not name or not name.strip():
        raise ValidationError("Plan name is required")
    plan = repo.create_plan(MembershipPlan(
        id=None,
        name=name.strip(),
        base_price=_money(base_price, "Base price"),
        nft_holder_price=_money(nft_holder_price, "NFT holder price"),
        meeting_room_credits_hours=_money(meeting_room_credits_hours, "Meeting room credits"),
        printing_credits=_money(printing_credits, "Printing credits"),
        guest_passes=_money(guest_passes, "Guest passes"),
        billing_period=billing_period,
        stripe_price_id=stripe_price_id,
        nft_stripe_price_id=nft_stripe_price_id,
    ))
    logger.info("Membership plan %s created", plan.id)
    return plan


def list_menu(repo: CatalogRepository, category: Optional[str] = None) -> List[MenuItem]:
    return repo.list_menu_items(category=category)


def create_menu_item(repo: CatalogRepository, title: str, category: str, price: Any,
                     orderable: bool = True) -> MenuItem:
    if not title or not title.strip():
        raise ValidationError("Menu item title is required")
    return repo.create_menu_item(MenuItem(
        id=None, title=title.strip(), category=category, price=_money(price, "Price"), orderable=orderable,
    ))


def nft_holder_benefits(repo: CatalogRepository) -> Dict[str, Any]:
    """Discount rates and per-plan savings shown to verified NFT holders."""
    plans = [
        {
            "id": plan.id,
            "name": plan.name,
            "base_price": plan.base_price,
            "nft_holder_price": plan.nft_holder_price,
            "savings": max(plan.base_price - plan.nft_holder_price, Decimal("0")),
        }
        for plan in repo.list_plans()
    ]
    return {
        "booking_overage_discount": NFT_DISCOUNT_RATE,
        "cafe_discount": CAFE_NFT_DISCOUNT_RATE,
        "plans": plans,
    }
