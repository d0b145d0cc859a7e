"""
test_estimate_aggregator.py — Estimate totals, approval and the pick-one policy.
"""

from decimal import Decimal
from types import SimpleNamespace

import pytest

from budgeteer.services.errors import NotFoundError
from budgeteer.services.estimate_aggregator import (
    create_estimate,
    ensure_estimate,
    estimate_rows,
    latest_any,
    latest_approved,
    list_estimates,
    project_overview,
    project_totals,
    sum_totals,
    toggle_approval,
    totals,
)
from budgeteer.services.line_item_engine import LinePricing, delete_line_item, upsert_line_item
from budgeteer.services.pricing_rules import Adjustment


async def _add(db, account_id, cat, estimate_id=None, **overrides):
    params = dict(
        estimate_id=estimate_id or cat.estimate_id,
        product_id=cat.product_id,
        supplier_id=cat.acme_id,
        unit_id=None,
        quantity=120,
        material_tier="P2",
        labor_tier="M2",
    )
    params.update(overrides)
    return await upsert_line_item(db, account_id, **params)


class TestPolicies:

    def test_latest_approved_picks_highest_id(self):
        estimates = [
            SimpleNamespace(id=1, approved=True),
            SimpleNamespace(id=3, approved=True),
            SimpleNamespace(id=4, approved=False),
        ]
        assert latest_approved(estimates).id == 3
        assert latest_any(estimates).id == 4

    def test_no_approved(self):
        assert latest_approved([SimpleNamespace(id=1, approved=False)]) is None
        assert latest_any([]) is None

    def test_sum_totals(self):
        result = sum_totals([
            LinePricing(Decimal("1"), Decimal("10.00"), None, Adjustment.fixed(15)),
            LinePricing(Decimal("2"), Decimal("2.50"), Decimal("1.00")),
        ])
        assert result.cost_total == Decimal("17.00")
        assert result.sale_total == Decimal("22.00")
        assert result.item_count == 2


class TestTotals:

    async def test_totals_follow_adds_and_deletes(self, db, account_id, paint_catalog):
        first = await _add(db, account_id, paint_catalog)
        await _add(db, account_id, paint_catalog, quantity=10, adjustment=Adjustment.fixed(100))

        result = await totals(db, account_id, paint_catalog.estimate_id)
        assert result.cost_total == Decimal("7020.00")
        assert result.sale_total == Decimal("6580.00")
        assert result.item_count == 2

        await delete_line_item(db, account_id, first.id)
        result = await totals(db, account_id, paint_catalog.estimate_id)
        assert result.cost_total == Decimal("540.00")
        assert result.sale_total == Decimal("100.00")
        assert result.item_count == 1

    async def test_empty_estimate(self, db, account_id, paint_catalog):
        result = await totals(db, account_id, paint_catalog.estimate_id)
        assert result.to_dict() == {
            "cost_total": Decimal("0.00"), "sale_total": Decimal("0.00"), "item_count": 0,
        }

    async def test_unknown_estimate(self, db, account_id, paint_catalog):
        with pytest.raises(NotFoundError):
            await totals(db, account_id, 999)

    async def test_rows(self, db, account_id, paint_catalog):
        await _add(db, account_id, paint_catalog, adjustment=Adjustment.percent(10))
        rows = await estimate_rows(db, account_id, paint_catalog.estimate_id)
        assert len(rows) == 1
        row = rows[0]
        assert row.product_name == "Paint"
        assert row.supplier_name == "Acme"
        assert row.unit_label == "L"
        assert row.material_tier == "P2"
        assert row.adjustment == "+10.00%"
        assert row.cost_total == Decimal("6480.00")
        assert row.line_total == Decimal("7128.00")


class TestEstimateLifecycle:

    async def test_ensure_returns_existing(self, db, account_id, paint_catalog):
        estimate = await ensure_estimate(db, account_id, paint_catalog.project_id)
        assert estimate.id == paint_catalog.estimate_id

    async def test_ensure_creates_first(self, db, account_id, paint_catalog):
        from budgeteer.models.orm_models import Project

        project = Project(account_id=account_id, name="Empty")
        db.add(project)
        await db.flush()

        estimate = await ensure_estimate(db, account_id, project.id)
        assert estimate.name.startswith("Estimate ")
        assert estimate.approved is False
        again = await ensure_estimate(db, account_id, project.id)
        assert again.id == estimate.id

    async def test_ensure_for_foreign_project(self, db, other_account_id, paint_catalog):
        with pytest.raises(NotFoundError):
            await ensure_estimate(db, other_account_id, paint_catalog.project_id)

    async def test_multiple_approvals(self, db, account_id, paint_catalog):
        second = await create_estimate(db, account_id, paint_catalog.project_id, "Revision B")
        await toggle_approval(db, account_id, paint_catalog.estimate_id, exclusive=False)
        await toggle_approval(db, account_id, second.id, exclusive=False)

        approved = [e for e in await list_estimates(db, account_id, paint_catalog.project_id) if e.approved]
        assert len(approved) == 2

        await _add(db, account_id, paint_catalog, estimate_id=second.id, quantity=1)
        result = await project_totals(db, account_id, paint_catalog.project_id)
        assert result.sale_total == Decimal("54.00")

    async def test_toggle_twice_unapproves(self, db, account_id, paint_catalog):
        estimate = await toggle_approval(db, account_id, paint_catalog.estimate_id, exclusive=False)
        assert estimate.approved is True
        estimate = await toggle_approval(db, account_id, paint_catalog.estimate_id, exclusive=False)
        assert estimate.approved is False
        assert await project_totals(db, account_id, paint_catalog.project_id) is None

    async def test_exclusive_approval(self, db, account_id, paint_catalog):
        second = await create_estimate(db, account_id, paint_catalog.project_id)
        await toggle_approval(db, account_id, paint_catalog.estimate_id, exclusive=True)
        await toggle_approval(db, account_id, second.id, exclusive=True)

        estimates = await list_estimates(db, account_id, paint_catalog.project_id)
        assert [(e.id, e.approved) for e in estimates] == [
            (paint_catalog.estimate_id, False), (second.id, True),
        ]

    async def test_overview(self, db, account_id, paint_catalog):
        await _add(db, account_id, paint_catalog)
        overview = await project_overview(db, account_id)
        assert overview[0]["project_id"] == paint_catalog.project_id
        assert overview[0]["totals"] is None

        await toggle_approval(db, account_id, paint_catalog.estimate_id, exclusive=False)
        overview = await project_overview(db, account_id)
        assert overview[0]["estimate_id"] == paint_catalog.estimate_id
        assert overview[0]["totals"]["sale_total"] == Decimal("6480.00")
