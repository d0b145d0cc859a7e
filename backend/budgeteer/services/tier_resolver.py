"""
TierResolver — global min / mid / max price tiers across supplier offers.

Run once for materials (P1-P3) and once, independently, for labor (M1-M3).

Count policy on the sorted, non-null values:
  0  → None (no ranking)
  1  → min = mid = max
  2  → min = mid = lower, max = higher
  ≥3 → min = first, max = last, mid = values[n // 2]

mid is the element at the floored middle index, not an averaged median;
even and odd counts take the same path.

Each tier carries one back-reference (supplier, label): the first collected
point holding that value. Points are collected in supplier order, then slot
order, so the same input always yields the same reference.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, List, Optional, Sequence, Union

from budgeteer.services.pricing_rules import (
    LABOR_SLOTS,
    MATERIAL_SLOTS,
    LaborTier,
    MaterialTier,
)

TierLabel = Union[MaterialTier, LaborTier]


@dataclass(frozen=True)
class PricePoint:
    value: Decimal
    supplier_id: int
    label: TierLabel


@dataclass(frozen=True)
class Tiers:
    min: PricePoint
    mid: PricePoint
    max: PricePoint

    def to_dict(self) -> dict:
        return {
            name: {
                "value": point.value,
                "supplier_id": point.supplier_id,
                "tier": point.label.value,
            }
            for name, point in (("min", self.min), ("mid", self.mid), ("max", self.max))
        }


@dataclass(frozen=True)
class DefaultSelection:
    """Smart-add preselection for a product's add-item form."""
    supplier_id: int
    material_tier: Optional[MaterialTier] = None
    labor_tier: Optional[LaborTier] = None


def _collect(offers: Iterable[Any], slots: dict) -> List[PricePoint]:
    points: List[PricePoint] = []
    for offer in offers:
        for label, column in slots.items():
            value = getattr(offer, column)
            if value is not None:
                points.append(PricePoint(Decimal(value), offer.supplier_id, label))
    return points


def material_points(offers: Iterable[Any]) -> List[PricePoint]:
    """Non-null P1/P2/P3 prices, in offer order then slot order."""
    return _collect(offers, MATERIAL_SLOTS)


def labor_points(offers: Iterable[Any]) -> List[PricePoint]:
    """Non-null M1/M2/M3 prices, in offer order then slot order."""
    return _collect(offers, LABOR_SLOTS)


def tier_values(values: Sequence[Decimal]) -> Optional[tuple]:
    """(min, mid, max) of the values under the count policy; None when empty."""
    ordered = sorted(values)
    n = len(ordered)
    if n == 0:
        return None
    if n == 1:
        return ordered[0], ordered[0], ordered[0]
    if n == 2:
        return ordered[0], ordered[0], ordered[1]
    return ordered[0], ordered[n // 2], ordered[-1]


def _first_match(points: Sequence[PricePoint], value: Decimal) -> PricePoint:
    return next(p for p in points if p.value == value)


def compute_tiers(points: Sequence[PricePoint]) -> Optional[Tiers]:
    values = tier_values([p.value for p in points])
    if values is None:
        return None
    low, mid, high = values
    return Tiers(
        min=_first_match(points, low),
        mid=_first_match(points, mid),
        max=_first_match(points, high),
    )


def resolve_offer_tiers(offers: Sequence[Any]) -> dict:
    """Material and labor tiers for one product's offers (already ordered)."""
    return {
        "material": compute_tiers(material_points(offers)),
        "labor": compute_tiers(labor_points(offers)),
    }


def suggest_default_selection(
    material: Optional[Tiers], labor: Optional[Tiers]
) -> Optional[DefaultSelection]:
    """Cheapest material tier's supplier, else cheapest labor tier's."""
    if material is not None:
        return DefaultSelection(
            supplier_id=material.min.supplier_id,
            material_tier=material.min.label,
        )
    if labor is not None:
        return DefaultSelection(
            supplier_id=labor.min.supplier_id,
            labor_tier=labor.min.label,
        )
    return None


def summarize_price_ranges(offers_by_product: dict) -> dict:
    """
    Catalog "min/max by product" view.

    offers_by_product: {product_id: [offers ordered by supplier]}
    Returns {product_id: {"material": {"min", "max"} | None, "labor": ... }}.
    """
    summary = {}
    for product_id, offers in offers_by_product.items():
        entry = {}
        for side, points in (
            ("material", material_points(offers)),
            ("labor", labor_points(offers)),
        ):
            tiers = compute_tiers(points)
            entry[side] = None if tiers is None else {
                "min": tiers.min.value,
                "max": tiers.max.value,
                "point_count": len(points),
            }
        summary[product_id] = entry
    return summary
