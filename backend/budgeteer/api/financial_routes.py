"""Financial routes — reporting overlay, honorarium and the received-amount ledger."""
import logging
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from budgeteer.api.deps import get_current_account_id
from budgeteer.db import get_db
from budgeteer.services import catalog_service as catalog
from budgeteer.services import finance_engine as finance

router = APIRouter(prefix="/api/financial", tags=["Financial"])
logger = logging.getLogger("budgeteer-api")


class AdjustmentIn(BaseModel):
    line_item_id: Optional[int] = None      # None → whole project
    kind: str = "percent"
    value: Decimal
    note: Optional[str] = None
    propagate: bool = False


class BatchEntry(BaseModel):
    line_item_id: int
    kind: str = "percent"
    value: Optional[Decimal] = None        # None clears the line's rule
    note: Optional[str] = None
    propagate: bool = False


class BatchIn(BaseModel):
    items: List[BatchEntry] = Field(default_factory=list)


class HonorariumIn(BaseModel):
    pct: Optional[Decimal] = None
    note: Optional[str] = None


class LedgerIn(BaseModel):
    received_total: Optional[Decimal] = None
    notes: Optional[str] = None


@router.get("/projects/{project_id}")
async def financial_view(
    project_id: int,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    view = await finance.compute_financial_view(db, account_id, project_id)
    ledger = await finance.get_ledger(db, account_id, project_id)
    return {
        "project_id": project_id,
        **view.to_dict(),
        "ledger_notes": ledger.notes if ledger else None,
    }


@router.get("/projects/{project_id}/adjustments")
async def list_adjustments(
    project_id: int,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    rows = await finance.list_adjustments(db, account_id, project_id)
    return [catalog.as_dict(r) for r in rows]


@router.put("/projects/{project_id}/adjustments")
async def upsert_adjustment(
    project_id: int,
    body: AdjustmentIn,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    rows = await finance.upsert_adjustment(
        db, account_id, project_id, body.line_item_id,
        body.kind, body.value, note=body.note, propagate=body.propagate,
    )
    return [catalog.as_dict(r) for r in rows]


@router.put("/projects/{project_id}/adjustments/batch")
async def upsert_adjustments_batch(
    project_id: int,
    body: BatchIn,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    count = await finance.upsert_adjustments_batch(
        db, account_id, project_id, [entry.model_dump() for entry in body.items]
    )
    return {"ok": True, "processed": count}


@router.delete("/adjustments/{adjustment_id}")
async def delete_adjustment(
    adjustment_id: int,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    await finance.delete_adjustment(db, account_id, adjustment_id)
    return {"deleted": adjustment_id}


@router.put("/projects/{project_id}/honorarium")
async def set_honorarium(
    project_id: int,
    body: HonorariumIn,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    row = await finance.set_honorarium(db, account_id, project_id, body.pct, body.note)
    return {"project_id": project_id, "honorarium_pct": row.value if row else None}


@router.put("/projects/{project_id}/ledger")
async def save_ledger(
    project_id: int,
    body: LedgerIn,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    ledger = await finance.save_ledger(db, account_id, project_id, body.received_total, body.notes)
    return catalog.as_dict(ledger)
