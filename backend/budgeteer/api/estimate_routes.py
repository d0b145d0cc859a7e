"""Estimate routes — line items, approval, totals and the flat row view."""
import logging
from dataclasses import asdict
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from budgeteer.api.deps import get_current_account_id
from budgeteer.db import get_db
from budgeteer.services import catalog_service as catalog
from budgeteer.services import estimate_aggregator as estimates
from budgeteer.services import line_item_engine as line_items
from budgeteer.services.pricing_rules import Adjustment, make_adjustment, parse_adjustment

router = APIRouter(prefix="/api/estimates", tags=["Estimates"])
logger = logging.getLogger("budgeteer-api")


class AdjustmentIn(BaseModel):
    # Either the form string ("10%", "500") or an explicit kind/value pair
    adjustment: Optional[str] = None
    adjustment_kind: Optional[str] = None
    adjustment_value: Optional[Decimal] = None

    def to_adjustment(self) -> Optional[Adjustment]:
        if self.adjustment is not None:
            return parse_adjustment(self.adjustment)
        return make_adjustment(self.adjustment_kind, self.adjustment_value)


class LineItemIn(AdjustmentIn):
    product_id: int
    supplier_id: Optional[int] = None
    unit_id: Optional[int] = None
    quantity: Decimal
    material_tier: Optional[str] = None
    labor_tier: Optional[str] = None
    manual_material: Optional[Decimal] = None
    manual_labor: Optional[Decimal] = None
    similarity_group: Optional[str] = None


def _item_out(item) -> dict:
    data = catalog.as_dict(item)
    data["cost_total"] = line_items.cost_total(item)
    return data


async def _save_item(db, account_id, estimate_id, body: LineItemIn, line_item_id=None):
    return await line_items.upsert_line_item(
        db, account_id, estimate_id,
        product_id=body.product_id,
        supplier_id=body.supplier_id,
        unit_id=body.unit_id,
        quantity=body.quantity,
        material_tier=body.material_tier,
        labor_tier=body.labor_tier,
        adjustment=body.to_adjustment(),
        line_item_id=line_item_id,
        manual_material=body.manual_material,
        manual_labor=body.manual_labor,
        similarity_group=body.similarity_group,
    )


@router.post("/{estimate_id}/items", status_code=201)
async def add_item(
    estimate_id: int,
    body: LineItemIn,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    item = await _save_item(db, account_id, estimate_id, body)
    return _item_out(item)


@router.put("/{estimate_id}/items/{item_id}")
async def update_item(
    estimate_id: int,
    item_id: int,
    body: LineItemIn,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    """Re-edit a line; changing product, supplier or tiers re-freezes its prices."""
    item = await _save_item(db, account_id, estimate_id, body, line_item_id=item_id)
    return _item_out(item)


@router.patch("/{estimate_id}/items/{item_id}/adjustment")
async def update_item_adjustment(
    estimate_id: int,
    item_id: int,
    body: AdjustmentIn,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    await line_items.get_line_item(db, account_id, item_id, estimate_id)
    item = await line_items.update_line_adjustment(db, account_id, item_id, body.to_adjustment())
    return _item_out(item)


@router.delete("/{estimate_id}/items/{item_id}")
async def delete_item(
    estimate_id: int,
    item_id: int,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    removed = await line_items.delete_line_item(db, account_id, item_id, estimate_id)
    return {"deleted": item_id, "removed_total": removed}


@router.post("/{estimate_id}/toggle-approval")
async def toggle_approval(
    estimate_id: int,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    estimate = await estimates.toggle_approval(db, account_id, estimate_id)
    return catalog.as_dict(estimate)


@router.get("/{estimate_id}/totals")
async def estimate_totals(
    estimate_id: int,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    result = await estimates.totals(db, account_id, estimate_id)
    return {"estimate_id": estimate_id, **result.to_dict()}


@router.get("/{estimate_id}/rows")
async def estimate_rows(
    estimate_id: int,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    """Flat line view consumed by tables and export writers."""
    rows = await estimates.estimate_rows(db, account_id, estimate_id)
    return [asdict(r) for r in rows]
