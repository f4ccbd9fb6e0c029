from abc import ABC, abstractmethod
from typing import Optional, List, Any
from core.entities.workspace import Workspace
from core.entities.membership_plan import MembershipPlan
from core.entities.order import MenuItem


class CatalogRepository(ABC):
    """Workspaces, membership plans and the cafe menu."""

    @abstractmethod
    def create_workspace(self, workspace: Workspace) -> Workspace:...

    @abstractmethod
    def get_workspace(self, workspace_id: int) -> Optional[Workspace]:...

    @abstractmethod
    def list_workspaces(self, category: Optional[str] = None, only_available: bool = True) -> List[Workspace]:...

    @abstractmethod
    def update_workspace(self, workspace_id: int, **fields: Any) -> Workspace:...

    @abstractmethod
    def create_plan(self, plan: MembershipPlan) -> MembershipPlan:...

    @abstractmethod
    def get_plan(self, plan_id: int) -> Optional[MembershipPlan]:...

    @abstractmethod
    def list_plans(self, only_active: bool = True) -> List[MembershipPlan]:...

    @abstractmethod
    def create_menu_item(self, item: MenuItem) -> MenuItem:...

    @abstractmethod
    def get_menu_item(self, item_id: int) -> Optional[MenuItem]:...

    @abstractmethod
    def list_menu_items(self, category: Optional[str] = None) -> List[MenuItem]:...
