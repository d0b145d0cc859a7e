"""
test_line_item_engine.py — Line item pricing and persistence.

Tests cover:
  - LinePricing: cost total (unset prices count as zero) and sale total
  - upsert_line_item: the Paint scenario, freeze on offer edits, re-freeze on
    tier change, MANUAL prices, reference validation and quantity rules
  - update_line_adjustment / delete_line_item
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from budgeteer.models.orm_models import FinancialAdjustment, LineItem, Offer
from budgeteer.services.errors import NotFoundError, ValidationError
from budgeteer.services.line_item_engine import (
    LinePricing,
    cost_total,
    delete_line_item,
    update_line_adjustment,
    upsert_line_item,
    validate_quantity,
)
from budgeteer.services.pricing_rules import Adjustment, FinancialKind, LaborTier, MaterialTier


# ===========================================================================
# Pure pricing
# ===========================================================================

class TestLinePricing:

    def test_cost_total(self):
        pricing = LinePricing(Decimal("120.000"), Decimal("32.00"), Decimal("22.00"))
        assert pricing.cost_total == Decimal("6480.00")
        assert pricing.sale_total == Decimal("6480.00")

    def test_unset_prices_count_as_zero(self):
        pricing = LinePricing(Decimal("3"), None, Decimal("5.00"))
        assert pricing.cost_total == Decimal("15.00")
        assert LinePricing(Decimal("3"), None, None).cost_total == Decimal("0.00")

    def test_sale_total_keeps_cost_total(self):
        pricing = LinePricing(
            Decimal("10"), Decimal("100.00"), None, Adjustment.percent(10)
        )
        assert pricing.cost_total == Decimal("1000.00")
        assert pricing.sale_total == Decimal("1100.00")

    def test_cost_rounded_half_up(self):
        pricing = LinePricing(Decimal("0.333"), Decimal("1.50"), None)
        # 0.4995 → 0.50
        assert pricing.cost_total == Decimal("0.50")

    def test_quantity_validation(self):
        assert validate_quantity("2.5005") == Decimal("2.501")
        with pytest.raises(ValidationError) as exc:
            validate_quantity(0)
        assert exc.value.field == "quantity"
        with pytest.raises(ValidationError):
            validate_quantity("0.0004")

    @pytest.mark.parametrize("quantity", [Decimal("1e30"), "1e11", "-1e26"])
    def test_quantity_out_of_range(self, quantity):
        with pytest.raises(ValidationError) as exc:
            validate_quantity(quantity)
        assert exc.value.field == "quantity"
        assert validate_quantity("99999999999.999") == Decimal("99999999999.999")


# ===========================================================================
# Persistence
# ===========================================================================

async def _add_paint(db, account_id, cat, **overrides):
    params = dict(
        estimate_id=cat.estimate_id,
        product_id=cat.product_id,
        supplier_id=cat.acme_id,
        unit_id=None,
        quantity=120,
        material_tier="P2",
        labor_tier="M2",
    )
    params.update(overrides)
    return await upsert_line_item(db, account_id, **params)


class TestUpsertLineItem:

    async def test_paint_scenario(self, db, account_id, paint_catalog):
        item = await _add_paint(db, account_id, paint_catalog)
        assert item.unit_material == Decimal("32.00")
        assert item.unit_labor == Decimal("22.00")
        assert item.total_item == Decimal("6480.00")
        assert cost_total(item) == Decimal("6480.00")
        assert item.unit_id == paint_catalog.unit_id
        assert item.similarity_group == "Paint"

    async def test_offer_edit_does_not_reach_existing_line(self, db, account_id, paint_catalog):
        item = await _add_paint(db, account_id, paint_catalog)
        offer = (await db.execute(
            select(Offer).where(Offer.supplier_id == paint_catalog.acme_id)
        )).scalar_one()
        offer.material_p2 = Decimal("40.00")
        await db.flush()

        # Re-save with the same selection: prices stay frozen
        item = await _add_paint(db, account_id, paint_catalog, line_item_id=item.id)
        assert item.unit_material == Decimal("32.00")
        assert item.total_item == Decimal("6480.00")

    async def test_tier_change_refreezes(self, db, account_id, paint_catalog):
        item = await _add_paint(db, account_id, paint_catalog)
        offer = (await db.execute(
            select(Offer).where(Offer.supplier_id == paint_catalog.acme_id)
        )).scalar_one()
        offer.material_p3 = Decimal("36.00")
        await db.flush()

        item = await _add_paint(
            db, account_id, paint_catalog, line_item_id=item.id, material_tier="P3"
        )
        assert item.unit_material == Decimal("36.00")
        assert item.total_item == Decimal("6960.00")

    async def test_empty_slot_leaves_price_unset(self, db, account_id, paint_catalog):
        item = await _add_paint(
            db, account_id, paint_catalog, supplier_id=paint_catalog.brush_id,
            quantity=2, material_tier="P2", labor_tier="M1",
        )
        assert item.unit_material is None
        assert item.unit_labor == Decimal("21.00")
        assert item.total_item == Decimal("42.00")

    async def test_manual_prices(self, db, account_id, paint_catalog):
        item = await _add_paint(
            db, account_id, paint_catalog, quantity="2,5",
            material_tier=MaterialTier.MANUAL, labor_tier=LaborTier.M1,
            manual_material="10.005",
        )
        assert item.unit_material == Decimal("10.01")
        assert item.unit_labor == Decimal("20.00")
        assert item.total_item == Decimal("75.03")

    async def test_manual_without_value_keeps_current_price(self, db, account_id, paint_catalog):
        item = await _add_paint(db, account_id, paint_catalog)
        item = await _add_paint(
            db, account_id, paint_catalog, line_item_id=item.id,
            material_tier=MaterialTier.MANUAL,
        )
        assert item.material_tier is MaterialTier.MANUAL
        assert item.unit_material == Decimal("32.00")

    async def test_adjustment_sets_sale_total_only(self, db, account_id, paint_catalog):
        item = await _add_paint(
            db, account_id, paint_catalog, adjustment=Adjustment.percent(10)
        )
        assert cost_total(item) == Decimal("6480.00")
        assert item.total_item == Decimal("7128.00")

    async def test_quantity_rounded_before_pricing(self, db, account_id, paint_catalog):
        item = await _add_paint(db, account_id, paint_catalog, quantity="2.5005")
        assert item.quantity == Decimal("2.501")
        assert item.total_item == Decimal("135.05")

    @pytest.mark.parametrize("field, override", [
        ("estimate_id", {"estimate_id": 999}),
        ("product_id", {"product_id": 999}),
        ("supplier_id", {"supplier_id": 999}),
        ("unit_id", {"unit_id": 999}),
    ])
    async def test_unresolved_reference(self, db, account_id, paint_catalog, field, override):
        with pytest.raises(ValidationError) as exc:
            await _add_paint(db, account_id, paint_catalog, **override)
        assert exc.value.field == field
        count = (await db.execute(select(LineItem))).scalars().all()
        assert count == []

    async def test_huge_quantity_rejected_before_writing(self, db, account_id, paint_catalog):
        with pytest.raises(ValidationError) as exc:
            await _add_paint(db, account_id, paint_catalog, quantity="1e26")
        assert exc.value.field == "quantity"
        assert (await db.execute(select(LineItem))).scalars().all() == []

    async def test_line_total_out_of_range(self, db, account_id, paint_catalog):
        # 99999999999 × (32 + 22) does not fit a money column
        with pytest.raises(ValidationError) as exc:
            await _add_paint(db, account_id, paint_catalog, quantity="99999999999")
        assert exc.value.field == "total_item"
        assert (await db.execute(select(LineItem))).scalars().all() == []

    async def test_manual_price_out_of_range(self, db, account_id, paint_catalog):
        with pytest.raises(ValidationError) as exc:
            await _add_paint(
                db, account_id, paint_catalog, quantity=1,
                material_tier="MANUAL", manual_material="1e12",
            )
        assert exc.value.field == "manual_material"

    async def test_other_account_sees_nothing(self, db, other_account_id, paint_catalog):
        with pytest.raises(ValidationError) as exc:
            await _add_paint(db, other_account_id, paint_catalog)
        assert exc.value.field == "estimate_id"

    async def test_unknown_line_id(self, db, account_id, paint_catalog):
        with pytest.raises(NotFoundError):
            await _add_paint(db, account_id, paint_catalog, line_item_id=12345)


class TestLineAdjustmentAndDelete:

    async def test_update_adjustment(self, db, account_id, paint_catalog):
        item = await _add_paint(db, account_id, paint_catalog)
        item = await update_line_adjustment(db, account_id, item.id, Adjustment.fixed(5000))
        assert item.total_item == Decimal("5000.00")
        assert cost_total(item) == Decimal("6480.00")

        item = await update_line_adjustment(db, account_id, item.id, None)
        assert item.total_item == Decimal("6480.00")
        assert item.adjustment_kind is None

    async def test_delete_removes_line_scoped_overlay(self, db, account_id, paint_catalog):
        item = await _add_paint(db, account_id, paint_catalog)
        db.add(FinancialAdjustment(
            account_id=account_id, project_id=paint_catalog.project_id,
            line_item_id=item.id, kind=FinancialKind.PERCENT, value=Decimal("5"),
        ))
        await db.flush()

        removed = await delete_line_item(db, account_id, item.id)
        assert removed == Decimal("6480.00")
        assert (await db.execute(select(LineItem))).scalars().all() == []
        assert (await db.execute(select(FinancialAdjustment))).scalars().all() == []

    async def test_delete_unknown(self, db, account_id, paint_catalog):
        with pytest.raises(NotFoundError):
            await delete_line_item(db, account_id, 4242)
