"""
EstimateAggregator — estimate totals, approval state and the
"authoritative estimate" used outside the editing screen.

Approval is a set: any number of a project's estimates may be approved at
once. Consumers that need exactly one (dashboard, financial view, export)
go through a pick-one policy; the default is latest_approved (highest id
among approved estimates).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from budgeteer import config
from budgeteer.models.orm_models import (
    Estimate, LineItem, Product, Project, Supplier, Unit,
)
from budgeteer.services.catalog_service import get_owned
from budgeteer.services.errors import NotFoundError
from budgeteer.services.line_item_engine import LinePricing, pricing_of
from budgeteer.services.pricing_rules import ZERO

logger = logging.getLogger("budgeteer-estimates")

EstimatePolicy = Callable[[Sequence[Estimate]], Optional[Estimate]]


@dataclass(frozen=True)
class EstimateTotals:
    cost_total: Decimal = ZERO
    sale_total: Decimal = ZERO
    item_count: int = 0

    def to_dict(self) -> dict:
        return {
            "cost_total": self.cost_total,
            "sale_total": self.sale_total,
            "item_count": self.item_count,
        }


@dataclass
class LineItemRow:
    """Flat read model for tables and export writers."""
    id: int
    product_name: str
    supplier_name: Optional[str]
    unit_label: Optional[str]
    quantity: Decimal
    material_tier: Optional[str]
    labor_tier: Optional[str]
    unit_material: Optional[Decimal]
    unit_labor: Optional[Decimal]
    adjustment: Optional[str]
    cost_total: Decimal
    line_total: Decimal
    similarity_group: Optional[str] = None


def sum_totals(lines: Iterable[LinePricing]) -> EstimateTotals:
    cost = ZERO
    sale = ZERO
    count = 0
    for line in lines:
        cost += line.cost_total
        sale += line.sale_total
        count += 1
    return EstimateTotals(cost_total=cost, sale_total=sale, item_count=count)


def latest_approved(estimates: Sequence[Estimate]) -> Optional[Estimate]:
    """Pick-one policy: the most recently created approved estimate (highest id)."""
    approved = [e for e in estimates if e.approved]
    return max(approved, key=lambda e: e.id) if approved else None


def latest_any(estimates: Sequence[Estimate]) -> Optional[Estimate]:
    """Alternative policy: the newest estimate regardless of approval."""
    return max(estimates, key=lambda e: e.id) if estimates else None


# ---------------------------------------------------------------------------
# Estimates
# ---------------------------------------------------------------------------

async def get_estimate(db: AsyncSession, account_id: int, estimate_id: int) -> Estimate:
    result = await db.execute(
        select(Estimate).where(Estimate.id == estimate_id, Estimate.account_id == account_id)
    )
    estimate = result.scalar_one_or_none()
    if estimate is None:
        logger.warning("Estimate %s not found for account=%s", estimate_id, account_id)
        raise NotFoundError("Estimate", estimate_id)
    return estimate


async def list_estimates(db: AsyncSession, account_id: int, project_id: int) -> List[Estimate]:
    result = await db.execute(
        select(Estimate)
        .where(Estimate.account_id == account_id, Estimate.project_id == project_id)
        .order_by(Estimate.id)
    )
    return list(result.scalars().all())


async def create_estimate(
    db: AsyncSession, account_id: int, project_id: int, name: Optional[str] = None
) -> Estimate:
    await get_owned(db, Project, account_id, project_id)
    estimate = Estimate(
        account_id=account_id,
        project_id=project_id,
        name=(name or "").strip() or f"Estimate {date.today():%d/%m/%Y}",
        approved=False,
    )
    db.add(estimate)
    await db.flush()
    logger.info("Estimate %s created for project %s", estimate.id, project_id)
    return estimate


async def ensure_estimate(db: AsyncSession, account_id: int, project_id: int) -> Estimate:
    """Latest estimate of the project; creates the first one on demand."""
    await get_owned(db, Project, account_id, project_id)
    existing = latest_any(await list_estimates(db, account_id, project_id))
    if existing is not None:
        return existing
    return await create_estimate(db, account_id, project_id)


async def toggle_approval(
    db: AsyncSession, account_id: int, estimate_id: int, exclusive: Optional[bool] = None
) -> Estimate:
    """
    Flip the approval flag. With exclusive approval (EXCLUSIVE_APPROVAL),
    approving also clears the flag on the project's other estimates.
    """
    if exclusive is None:
        exclusive = config.EXCLUSIVE_APPROVAL
    estimate = await get_estimate(db, account_id, estimate_id)
    estimate.approved = not estimate.approved
    if exclusive and estimate.approved:
        await db.execute(
            update(Estimate)
            .where(
                Estimate.account_id == account_id,
                Estimate.project_id == estimate.project_id,
                Estimate.id != estimate.id,
            )
            .values(approved=False)
            .execution_options(synchronize_session="fetch")
        )
    await db.flush()
    logger.info("Estimate %s approved=%s", estimate.id, estimate.approved)
    return estimate


async def authoritative_estimate(
    db: AsyncSession,
    account_id: int,
    project_id: int,
    policy: EstimatePolicy = latest_approved,
) -> Optional[Estimate]:
    return policy(await list_estimates(db, account_id, project_id))


# ---------------------------------------------------------------------------
# Totals
# ---------------------------------------------------------------------------

async def estimate_items(db: AsyncSession, account_id: int, estimate_id: int) -> List[LineItem]:
    result = await db.execute(
        select(LineItem)
        .where(LineItem.account_id == account_id, LineItem.estimate_id == estimate_id)
        .order_by(LineItem.id)
    )
    return list(result.scalars().all())


async def totals(db: AsyncSession, account_id: int, estimate_id: int) -> EstimateTotals:
    await get_estimate(db, account_id, estimate_id)
    items = await estimate_items(db, account_id, estimate_id)
    return sum_totals(pricing_of(item) for item in items)


async def project_totals(
    db: AsyncSession,
    account_id: int,
    project_id: int,
    policy: EstimatePolicy = latest_approved,
) -> Optional[EstimateTotals]:
    """Totals of the authoritative estimate; None when the policy picks nothing."""
    estimate = await authoritative_estimate(db, account_id, project_id, policy)
    if estimate is None:
        return None
    return await totals(db, account_id, estimate.id)


async def estimate_rows(db: AsyncSession, account_id: int, estimate_id: int) -> List[LineItemRow]:
    await get_estimate(db, account_id, estimate_id)
    result = await db.execute(
        select(LineItem, Product.name, Supplier.name, Unit.symbol)
        .join(Product, Product.id == LineItem.product_id)
        .outerjoin(Supplier, Supplier.id == LineItem.supplier_id)
        .outerjoin(Unit, Unit.id == LineItem.unit_id)
        .where(LineItem.account_id == account_id, LineItem.estimate_id == estimate_id)
        .order_by(LineItem.id)
    )
    rows: List[LineItemRow] = []
    for item, product_name, supplier_name, unit_symbol in result.all():
        pricing = pricing_of(item)
        rows.append(LineItemRow(
            id=item.id,
            product_name=product_name,
            supplier_name=supplier_name,
            unit_label=unit_symbol,
            quantity=Decimal(item.quantity),
            material_tier=item.material_tier.value if item.material_tier else None,
            labor_tier=item.labor_tier.value if item.labor_tier else None,
            unit_material=item.unit_material,
            unit_labor=item.unit_labor,
            adjustment=pricing.adjustment.describe() if pricing.adjustment else None,
            cost_total=pricing.cost_total,
            line_total=Decimal(item.total_item),
            similarity_group=item.similarity_group,
        ))
    return rows


async def project_overview(
    db: AsyncSession, account_id: int, policy: EstimatePolicy = latest_approved
) -> List[Dict]:
    """Dashboard rows: each project with its authoritative estimate's totals."""
    result = await db.execute(
        select(Project).where(Project.account_id == account_id).order_by(Project.id.desc())
    )
    overview = []
    for project in result.scalars().all():
        estimate = await authoritative_estimate(db, account_id, project.id, policy)
        project_total = await totals(db, account_id, estimate.id) if estimate else None
        overview.append({
            "project_id": project.id,
            "name": project.name,
            "status": project.status,
            "estimate_id": estimate.id if estimate else None,
            "totals": project_total.to_dict() if project_total else None,
        })
    return overview
