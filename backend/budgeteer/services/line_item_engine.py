"""
LineItemEngine — one estimate line: quantity, frozen unit prices, optional
adjustment and the two derived totals.

Numeric policy:
  - quantity rounded half up to 3 decimals
  - unit prices and totals rounded half up to 2 decimals
  - cost total  = round2(quantity × (material_or_0 + labor_or_0)), derived
  - sale total  = adjustment applied to the cost total, persisted as total_item
  - quantity stays below 10^11 and every stored amount below 10^12

Unit prices are frozen when a line is created or when its product, supplier
or tier labels change. Later offer edits never reach existing lines.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from budgeteer.models.orm_models import (
    Estimate, FinancialAdjustment, LineItem, Product, Supplier, Unit,
)
from budgeteer.services.catalog_service import find_owned
from budgeteer.services.errors import NotFoundError, ValidationError
from budgeteer.services.price_selector import select_offer_price
from budgeteer.services.pricing_rules import (
    MAX_MONEY,
    MAX_QUANTITY,
    ZERO,
    Adjustment,
    LaborTier,
    MaterialTier,
    Number,
    make_adjustment,
    parse_labor_tier,
    check_range,
    parse_material_tier,
    round2,
    round3,
    to_money,
)

logger = logging.getLogger("budgeteer-line-items")


# ---------------------------------------------------------------------------
# Pure pricing
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LinePricing:
    quantity: Decimal
    unit_material: Optional[Decimal]
    unit_labor: Optional[Decimal]
    adjustment: Optional[Adjustment] = None

    @property
    def cost_total(self) -> Decimal:
        material = self.unit_material if self.unit_material is not None else ZERO
        labor = self.unit_labor if self.unit_labor is not None else ZERO
        return round2(self.quantity * (material + labor))

    @property
    def sale_total(self) -> Decimal:
        cost = self.cost_total
        if self.adjustment is None:
            return cost
        return self.adjustment.apply(cost)


def pricing_of(item: LineItem) -> LinePricing:
    return LinePricing(
        quantity=Decimal(item.quantity),
        unit_material=item.unit_material,
        unit_labor=item.unit_labor,
        adjustment=make_adjustment(item.adjustment_kind, item.adjustment_value),
    )


def cost_total(item: LineItem) -> Decimal:
    return pricing_of(item).cost_total


def validate_quantity(quantity: Number) -> Decimal:
    value = check_range(round3(quantity, "quantity"), MAX_QUANTITY, "quantity")
    if value <= 0:
        raise ValidationError("Quantity must be greater than zero", field="quantity")
    return value


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

async def _require(db: AsyncSession, model, account_id: int, entity_id, field: str, label: str):
    row = await find_owned(db, model, account_id, entity_id)
    if row is None:
        logger.warning(
            "Unresolved %s reference id=%s for account=%s", label, entity_id, account_id
        )
        raise ValidationError(f"{label} not found", field=field)
    return row


async def get_line_item(
    db: AsyncSession, account_id: int, line_item_id: int, estimate_id: Optional[int] = None
) -> LineItem:
    query = select(LineItem).where(
        LineItem.id == line_item_id, LineItem.account_id == account_id
    )
    if estimate_id is not None:
        query = query.where(LineItem.estimate_id == estimate_id)
    item = (await db.execute(query)).scalar_one_or_none()
    if item is None:
        logger.warning("Line item %s not found for account=%s", line_item_id, account_id)
        raise NotFoundError("Line item", line_item_id)
    return item


def _selection_changed(
    item: LineItem,
    product_id: int,
    supplier_id: Optional[int],
    material_tier: Optional[MaterialTier],
    labor_tier: Optional[LaborTier],
) -> bool:
    return (
        item.product_id != product_id
        or item.supplier_id != supplier_id
        or item.material_tier != material_tier
        or item.labor_tier != labor_tier
    )


def _manual_or_current(
    is_manual: bool, manual: Optional[Number], current: Optional[Decimal], resolved: Optional[Decimal]
) -> Optional[Decimal]:
    # MANUAL without a new value keeps the price already on the line
    if is_manual and manual is None:
        return current
    return resolved


async def upsert_line_item(
    db: AsyncSession,
    account_id: int,
    estimate_id: int,
    product_id: int,
    supplier_id: Optional[int],
    unit_id: Optional[int],
    quantity: Number,
    material_tier=None,
    labor_tier=None,
    adjustment: Optional[Adjustment] = None,
    line_item_id: Optional[int] = None,
    manual_material: Optional[Number] = None,
    manual_labor: Optional[Number] = None,
    similarity_group: Optional[str] = None,
) -> LineItem:
    """
    Create (line_item_id=None) or re-edit a line item.

    Every reference is validated before anything is written; the first
    failure raises ValidationError naming its field.
    """
    qty = validate_quantity(quantity)
    material_tier = parse_material_tier(material_tier)
    labor_tier = parse_labor_tier(labor_tier)

    await _require(db, Estimate, account_id, estimate_id, "estimate_id", "Estimate")
    product = await _require(db, Product, account_id, product_id, "product_id", "Product")
    if supplier_id is not None:
        await _require(db, Supplier, account_id, supplier_id, "supplier_id", "Supplier")
    if unit_id is None:
        unit_id = product.unit_id
    if unit_id is not None:
        await _require(db, Unit, account_id, unit_id, "unit_id", "Unit")

    item: Optional[LineItem] = None
    if line_item_id is not None:
        item = await get_line_item(db, account_id, line_item_id, estimate_id)

    is_manual_mat = material_tier is MaterialTier.MANUAL
    is_manual_lab = labor_tier is LaborTier.MANUAL

    if item is None or _selection_changed(item, product_id, supplier_id, material_tier, labor_tier):
        selected = await select_offer_price(
            db, account_id, supplier_id, product_id,
            material_tier, labor_tier, manual_material, manual_labor,
        )
        current_mat = item.unit_material if item is not None else None
        current_lab = item.unit_labor if item is not None else None
        unit_material = _manual_or_current(is_manual_mat, manual_material, current_mat, selected.unit_material)
        unit_labor = _manual_or_current(is_manual_lab, manual_labor, current_lab, selected.unit_labor)
    else:
        unit_material = item.unit_material
        unit_labor = item.unit_labor
        if is_manual_mat and manual_material is not None:
            unit_material = to_money(manual_material, "manual_material")
        if is_manual_lab and manual_labor is not None:
            unit_labor = to_money(manual_labor, "manual_labor")

    pricing = LinePricing(qty, unit_material, unit_labor, adjustment)
    check_range(pricing.sale_total, MAX_MONEY, "total_item")

    if item is None:
        item = LineItem(account_id=account_id, estimate_id=estimate_id)
        db.add(item)
    if similarity_group is None and (item.product_id != product_id or not item.similarity_group):
        similarity_group = product.name

    item.product_id = product_id
    item.supplier_id = supplier_id
    item.unit_id = unit_id
    item.quantity = qty
    item.material_tier = material_tier
    item.labor_tier = labor_tier
    item.unit_material = unit_material
    item.unit_labor = unit_labor
    item.adjustment_kind = adjustment.kind if adjustment else None
    item.adjustment_value = adjustment.value if adjustment else None
    if similarity_group is not None:
        item.similarity_group = similarity_group
    item.total_item = pricing.sale_total
    await db.flush()

    logger.info(
        "Line item %s saved on estimate %s: cost=%s sale=%s",
        item.id, estimate_id, pricing.cost_total, pricing.sale_total,
    )
    return item


async def update_line_adjustment(
    db: AsyncSession, account_id: int, line_item_id: int, adjustment: Optional[Adjustment]
) -> LineItem:
    """Change only the adjustment; frozen unit prices stay as they are."""
    item = await get_line_item(db, account_id, line_item_id)
    pricing = replace(pricing_of(item), adjustment=adjustment)
    item.total_item = check_range(pricing.sale_total, MAX_MONEY, "total_item")
    item.adjustment_kind = adjustment.kind if adjustment else None
    item.adjustment_value = adjustment.value if adjustment else None
    await db.flush()
    return item


async def delete_line_item(
    db: AsyncSession, account_id: int, line_item_id: int, estimate_id: Optional[int] = None
) -> Decimal:
    """Delete a line and its line-scoped financial adjustments; returns its prior sale total."""
    item = await get_line_item(db, account_id, line_item_id, estimate_id)
    removed = Decimal(item.total_item)
    await db.execute(
        delete(FinancialAdjustment).where(FinancialAdjustment.line_item_id == item.id)
    )
    await db.delete(item)
    await db.flush()
    logger.info("Line item %s deleted (sale total %s)", line_item_id, removed)
    return removed
