"""Project routes — project registry, dashboard overview and per-project estimates."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from budgeteer.api.deps import get_current_account_id
from budgeteer.db import get_db
from budgeteer.models.orm_models import Project
from budgeteer.services import catalog_service as catalog
from budgeteer.services import estimate_aggregator as estimates

router = APIRouter(prefix="/api/projects", tags=["Projects"])
logger = logging.getLogger("budgeteer-api")


class ProjectIn(BaseModel):
    name: Optional[str] = None
    client_id: Optional[int] = None
    status: Optional[str] = None


class EstimateIn(BaseModel):
    name: Optional[str] = None


@router.get("")
async def list_projects(
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    """Dashboard: every project with its approved estimate's totals."""
    return await estimates.project_overview(db, account_id)


@router.post("", status_code=201)
async def create_project(
    body: ProjectIn,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    row = await catalog.create_entity(db, Project, account_id, body.model_dump(exclude_unset=True))
    return catalog.as_dict(row)


@router.get("/{project_id}")
async def get_project(
    project_id: int,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    row = await catalog.get_owned(db, Project, account_id, project_id)
    return catalog.as_dict(row)


@router.put("/{project_id}")
async def update_project(
    project_id: int,
    body: ProjectIn,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    row = await catalog.update_entity(
        db, Project, account_id, project_id, body.model_dump(exclude_unset=True)
    )
    return catalog.as_dict(row)


@router.delete("/{project_id}")
async def delete_project(
    project_id: int,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    await catalog.delete_entity(db, Project, account_id, project_id)
    return {"deleted": project_id}


# ─── Estimates ──────────────────────────────────────────────────────────────

@router.get("/{project_id}/estimates")
async def list_estimates(
    project_id: int,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    await catalog.get_owned(db, Project, account_id, project_id)
    rows = await estimates.list_estimates(db, account_id, project_id)
    return [catalog.as_dict(r) for r in rows]


@router.post("/{project_id}/estimates", status_code=201)
async def create_estimate(
    project_id: int,
    body: EstimateIn,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    row = await estimates.create_estimate(db, account_id, project_id, body.name)
    return catalog.as_dict(row)


@router.post("/{project_id}/estimates/ensure")
async def ensure_estimate(
    project_id: int,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    """Latest estimate of the project, created on first access."""
    row = await estimates.ensure_estimate(db, account_id, project_id)
    return catalog.as_dict(row)


@router.get("/{project_id}/totals")
async def project_totals(
    project_id: int,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    await catalog.get_owned(db, Project, account_id, project_id)
    estimate = await estimates.authoritative_estimate(db, account_id, project_id)
    if estimate is None:
        return {"project_id": project_id, "estimate_id": None, "totals": None}
    result = await estimates.totals(db, account_id, estimate.id)
    return {"project_id": project_id, "estimate_id": estimate.id, "totals": result.to_dict()}
