from typing import Optional, List

from fastapi import APIRouter, Depends

from core.use_cases import catalog_use_cases
from infrastructure.db.sqlite import SQLiteUnitOfWork
from infrastructure.web.dependencies import get_uow
from infrastructure.web.schemas import WorkspaceResponse, PlanResponse, MenuItemResponse

router = APIRouter(tags=["catalog"])


@router.get("/workspaces", response_model=List[WorkspaceResponse])
def list_workspaces(category: Optional[str] = None, uow: SQLiteUnitOfWork = Depends(get_uow)):
    return [WorkspaceResponse.model_validate(w) for w in catalog_use_cases.list_workspaces(uow.catalog, category)]


@router.get("/workspaces/{workspace_id}", response_model=WorkspaceResponse)
def get_workspace(workspace_id: int, uow: SQLiteUnitOfWork = Depends(get_uow)):
    return WorkspaceResponse.model_validate(catalog_use_cases.get_workspace(uow.catalog, workspace_id))


@router.get("/memberships/plans", response_model=List[PlanResponse])
def list_plans(uow: SQLiteUnitOfWork = Depends(get_uow)):
    return [PlanResponse.model_validate(p) for p in catalog_use_cases.list_plans(uow.catalog)]


@router.get("/menu", response_model=List[MenuItemResponse])
def list_menu(category: Optional[str] = None, uow: SQLiteUnitOfWork = Depends(get_uow)):
    return [MenuItemResponse.model_validate(m) for m in catalog_use_cases.list_menu(uow.catalog, category)]
