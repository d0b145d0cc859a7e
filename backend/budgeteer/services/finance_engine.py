"""
Financial overlay — reporting-only adjustments on top of an estimate.

Rows in financial_adjustments never touch line items or estimates; they are
read back only when the financial view is computed:

  line base       = the line's sale total (total_item)
  line percent v  → max(0, base × (1 + v/100))
  line fixed v    → v
  adjusted_total  = Σ adjusted lines, then the project percent/fixed rule
  with_honorarium = adjusted_total × (1 + h/100)
  profit_estimate = with_honorarium − cost_total
  cash_balance    = received_total − cost_total

The view is computed against the project's authoritative estimate
(latest approved). Without an approved estimate every total is zero.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from budgeteer.models.orm_models import (
    Estimate, FinancialAdjustment, LineItem, Project, ProjectLedger,
)
from budgeteer.services.catalog_service import get_owned
from budgeteer.services.errors import NotFoundError, ValidationError
from budgeteer.services.estimate_aggregator import (
    EstimatePolicy,
    authoritative_estimate,
    estimate_items,
    latest_approved,
)
from budgeteer.services.line_item_engine import cost_total as line_cost_total
from budgeteer.services.pricing_rules import (
    MAX_QUANTITY,
    ZERO,
    FinancialKind,
    Number,
    check_range,
    optional_money,
    round2,
    round3,
    to_decimal,
    to_money,
)

logger = logging.getLogger("budgeteer-finance")

_HUNDRED = Decimal(100)
MAX_PERCENT = MAX_QUANTITY  # value column is Numeric(14, 3)


# ---------------------------------------------------------------------------
# Pure overlay math
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FinancialRule:
    kind: FinancialKind
    value: Decimal

    def apply(self, base: Decimal) -> Decimal:
        if self.kind is FinancialKind.FIXED:
            return round2(self.value)
        return max(ZERO, round2(base * (1 + self.value / _HUNDRED)))


@dataclass(frozen=True)
class FinancialView:
    base_total: Decimal
    adjusted_total: Decimal
    with_honorarium_total: Decimal
    profit_estimate: Decimal
    cost_total: Decimal
    honorarium_pct: Decimal
    received_total: Decimal
    cash_balance: Decimal
    has_approved_estimate: bool
    estimate_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base_total": self.base_total,
            "adjusted_total": self.adjusted_total,
            "with_honorarium_total": self.with_honorarium_total,
            "profit_estimate": self.profit_estimate,
            "cost_total": self.cost_total,
            "honorarium_pct": self.honorarium_pct,
            "received_total": self.received_total,
            "cash_balance": self.cash_balance,
            "has_approved_estimate": self.has_approved_estimate,
            "estimate_id": self.estimate_id,
        }


def normalize_value(kind: FinancialKind, value: Number) -> Decimal:
    """Fixed amounts are money (2 dp); percentages keep 3 dp."""
    if kind is FinancialKind.FIXED:
        number = to_money(value, "value")
        if number < 0:
            raise ValidationError("Fixed value cannot be negative", field="value")
        return number
    number = check_range(round3(value, "value"), MAX_PERCENT, "value")
    if kind is FinancialKind.HONORARIUM and number < 0:
        raise ValidationError("Honorarium cannot be negative", field="value")
    return number


def apply_honorarium(total: Decimal, pct: Decimal) -> Decimal:
    return round2(total * (1 + pct / _HUNDRED))


def compute_overlay(
    line_bases: Mapping[int, Decimal],
    line_rules: Mapping[int, FinancialRule],
    project_rule: Optional[FinancialRule] = None,
    honorarium_pct: Decimal = ZERO,
    cost: Decimal = ZERO,
    received: Decimal = ZERO,
    estimate_id: Optional[int] = None,
) -> FinancialView:
    base_total = ZERO
    adjusted = ZERO
    for line_id, base in line_bases.items():
        base_total += base
        rule = line_rules.get(line_id)
        adjusted += rule.apply(base) if rule else base
    if project_rule is not None:
        adjusted = project_rule.apply(adjusted)
    with_honorarium = apply_honorarium(adjusted, honorarium_pct)
    return FinancialView(
        base_total=round2(base_total),
        adjusted_total=round2(adjusted),
        with_honorarium_total=with_honorarium,
        profit_estimate=round2(with_honorarium - cost),
        cost_total=round2(cost),
        honorarium_pct=honorarium_pct,
        received_total=round2(received),
        cash_balance=round2(received - cost),
        has_approved_estimate=estimate_id is not None,
        estimate_id=estimate_id,
    )


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def _parse_kind(kind: Any) -> FinancialKind:
    try:
        return kind if isinstance(kind, FinancialKind) else FinancialKind(str(kind).strip().lower())
    except ValueError:
        raise ValidationError(f"Invalid adjustment kind: {kind!r}", field="kind")


async def list_adjustments(
    db: AsyncSession, account_id: int, project_id: int
) -> List[FinancialAdjustment]:
    result = await db.execute(
        select(FinancialAdjustment)
        .where(
            FinancialAdjustment.account_id == account_id,
            FinancialAdjustment.project_id == project_id,
        )
        .order_by(FinancialAdjustment.id)
    )
    return list(result.scalars().all())


async def _project_line(
    db: AsyncSession, account_id: int, project_id: int, line_item_id: int
) -> LineItem:
    result = await db.execute(
        select(LineItem)
        .join(Estimate, Estimate.id == LineItem.estimate_id)
        .where(
            LineItem.id == line_item_id,
            LineItem.account_id == account_id,
            Estimate.project_id == project_id,
        )
    )
    item = result.scalar_one_or_none()
    if item is None:
        logger.warning(
            "Line item %s is not part of project %s (account=%s)",
            line_item_id, project_id, account_id,
        )
        raise ValidationError("Line item does not belong to this project", field="line_item_id")
    return item


async def _find_row(
    db: AsyncSession,
    account_id: int,
    project_id: int,
    line_item_id: Optional[int],
    honorarium: bool,
) -> Optional[FinancialAdjustment]:
    query = select(FinancialAdjustment).where(
        FinancialAdjustment.account_id == account_id,
        FinancialAdjustment.project_id == project_id,
    )
    if line_item_id is not None:
        query = query.where(FinancialAdjustment.line_item_id == line_item_id)
    else:
        query = query.where(FinancialAdjustment.line_item_id.is_(None))
        if honorarium:
            query = query.where(FinancialAdjustment.kind == FinancialKind.HONORARIUM)
        else:
            query = query.where(FinancialAdjustment.kind != FinancialKind.HONORARIUM)
    return (await db.execute(query)).scalars().first()


async def _write_row(
    db: AsyncSession,
    account_id: int,
    project_id: int,
    line_item_id: Optional[int],
    kind: FinancialKind,
    value: Decimal,
    note: Optional[str],
    propagate: bool,
) -> FinancialAdjustment:
    row = await _find_row(
        db, account_id, project_id, line_item_id, kind is FinancialKind.HONORARIUM
    )
    if row is None:
        row = FinancialAdjustment(
            account_id=account_id, project_id=project_id, line_item_id=line_item_id
        )
        db.add(row)
    row.kind = kind
    row.value = value
    row.note = note
    row.propagate_to_similar = propagate
    return row


async def upsert_adjustment(
    db: AsyncSession,
    account_id: int,
    project_id: int,
    line_item_id: Optional[int],
    kind: Any,
    value: Number,
    note: Optional[str] = None,
    propagate: bool = False,
) -> List[FinancialAdjustment]:
    """
    Save one overlay rule. line_item_id=None targets the whole project.

    One row per line, plus at most one percent/fixed row and one honorarium
    row per project. With propagate=True the same rule is written to every
    other line of the same estimate sharing the line's similarity group.
    Returns the rows written, the targeted one first.
    """
    await get_owned(db, Project, account_id, project_id)
    kind = _parse_kind(kind)
    amount = normalize_value(kind, value)
    note = (note or "").strip() or None

    if line_item_id is None:
        if propagate:
            raise ValidationError("Only line adjustments can be propagated", field="propagate")
        row = await _write_row(db, account_id, project_id, None, kind, amount, note, False)
        await db.flush()
        logger.info("Project %s adjustment saved: %s %s", project_id, kind.value, amount)
        return [row]

    if kind is FinancialKind.HONORARIUM:
        raise ValidationError("Honorarium applies to the whole project", field="kind")

    item = await _project_line(db, account_id, project_id, line_item_id)
    rows = [await _write_row(db, account_id, project_id, item.id, kind, amount, note, propagate)]

    if propagate and item.similarity_group:
        result = await db.execute(
            select(LineItem.id).where(
                LineItem.account_id == account_id,
                LineItem.estimate_id == item.estimate_id,
                LineItem.similarity_group == item.similarity_group,
                LineItem.id != item.id,
            ).order_by(LineItem.id)
        )
        for similar_id in result.scalars().all():
            rows.append(await _write_row(
                db, account_id, project_id, similar_id, kind, amount, note, False
            ))
    await db.flush()
    logger.info(
        "Line %s adjustment saved: %s %s (applied to %d lines)",
        line_item_id, kind.value, amount, len(rows),
    )
    return rows


async def upsert_adjustments_batch(
    db: AsyncSession, account_id: int, project_id: int, entries: Iterable[Mapping[str, Any]]
) -> int:
    """
    Save the whole per-line table in one transaction.

    Each entry: {"line_item_id", "kind", "value", "note", "propagate"}; an
    entry whose value is empty clears that line's rule. Returns the number
    of entries processed.
    """
    count = 0
    for entry in entries:
        line_item_id = entry.get("line_item_id")
        if line_item_id is None:
            raise ValidationError("line_item_id is required", field="line_item_id")
        value = entry.get("value")
        if value is None or (isinstance(value, str) and not value.strip()):
            await _project_line(db, account_id, project_id, line_item_id)
            existing = await _find_row(db, account_id, project_id, line_item_id, False)
            if existing is not None:
                await db.delete(existing)
        else:
            await upsert_adjustment(
                db, account_id, project_id, line_item_id,
                entry.get("kind", FinancialKind.PERCENT), value,
                note=entry.get("note"), propagate=bool(entry.get("propagate")),
            )
        count += 1
    await db.flush()
    return count


async def delete_adjustment(db: AsyncSession, account_id: int, adjustment_id: int) -> None:
    result = await db.execute(
        select(FinancialAdjustment).where(
            FinancialAdjustment.id == adjustment_id,
            FinancialAdjustment.account_id == account_id,
        )
    )
    row = result.scalar_one_or_none()
    if row is None:
        raise NotFoundError("Financial adjustment", adjustment_id)
    await db.delete(row)
    await db.flush()


async def set_honorarium(
    db: AsyncSession,
    account_id: int,
    project_id: int,
    pct: Optional[Number],
    note: Optional[str] = None,
) -> Optional[FinancialAdjustment]:
    """Persist the project honorarium; None or zero removes it."""
    if pct is None or to_decimal(pct, field="value") == 0:
        await get_owned(db, Project, account_id, project_id)
        row = await _find_row(db, account_id, project_id, None, True)
        if row is not None:
            await db.delete(row)
            await db.flush()
        return None
    rows = await upsert_adjustment(
        db, account_id, project_id, None, FinancialKind.HONORARIUM, pct, note
    )
    return rows[0]


async def get_ledger(db: AsyncSession, account_id: int, project_id: int) -> Optional[ProjectLedger]:
    result = await db.execute(
        select(ProjectLedger).where(
            ProjectLedger.account_id == account_id,
            ProjectLedger.project_id == project_id,
        )
    )
    return result.scalar_one_or_none()


async def save_ledger(
    db: AsyncSession,
    account_id: int,
    project_id: int,
    received_total: Optional[Number] = None,
    notes: Optional[str] = None,
) -> ProjectLedger:
    received = optional_money(received_total, "received_total") or ZERO
    if received < 0:
        raise ValidationError("Received amount cannot be negative", field="received_total")
    await get_owned(db, Project, account_id, project_id)
    ledger = await get_ledger(db, account_id, project_id)
    if ledger is None:
        ledger = ProjectLedger(account_id=account_id, project_id=project_id)
        db.add(ledger)
    ledger.received_total = received
    ledger.notes = (notes or "").strip() or None
    await db.flush()
    return ledger


async def compute_financial_view(
    db: AsyncSession,
    account_id: int,
    project_id: int,
    policy: EstimatePolicy = latest_approved,
) -> FinancialView:
    await get_owned(db, Project, account_id, project_id)
    ledger = await get_ledger(db, account_id, project_id)
    received = Decimal(ledger.received_total) if ledger and ledger.received_total is not None else ZERO

    rows = await list_adjustments(db, account_id, project_id)
    honorarium = next(
        (r for r in rows if r.line_item_id is None and r.kind is FinancialKind.HONORARIUM), None
    )
    honorarium_pct = Decimal(honorarium.value) if honorarium else ZERO

    estimate = await authoritative_estimate(db, account_id, project_id, policy)
    if estimate is None:
        logger.info("Project %s has no approved estimate; financial view is empty", project_id)
        return compute_overlay({}, {}, None, honorarium_pct, ZERO, received)

    items = await estimate_items(db, account_id, estimate.id)
    bases = {item.id: Decimal(item.total_item) for item in items}
    cost = sum((line_cost_total(item) for item in items), ZERO)
    line_rules = {
        r.line_item_id: FinancialRule(r.kind, Decimal(r.value))
        for r in rows
        if r.line_item_id is not None and r.line_item_id in bases
    }
    project_row = next(
        (r for r in rows if r.line_item_id is None and r.kind is not FinancialKind.HONORARIUM), None
    )
    project_rule = FinancialRule(project_row.kind, Decimal(project_row.value)) if project_row else None

    return compute_overlay(
        bases, line_rules, project_rule, honorarium_pct, cost, received, estimate_id=estimate.id
    )
