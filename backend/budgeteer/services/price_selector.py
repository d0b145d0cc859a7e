"""
PriceSelector — projects a chosen supplier + tier pair onto unit prices.

Pure lookup: never mutates the offer. A missing offer or an empty slot
yields PriceSource.unset(); MANUAL bypasses the offer entirely and takes the
caller-supplied value.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from budgeteer.models.orm_models import Offer
from budgeteer.services.pricing_rules import (
    LABOR_SLOTS,
    MATERIAL_SLOTS,
    LaborTier,
    MaterialTier,
    Number,
    PriceSource,
)

logger = logging.getLogger("budgeteer-pricing")


@dataclass(frozen=True)
class SelectedPrice:
    material: PriceSource
    labor: PriceSource

    @property
    def unit_material(self) -> Optional[Decimal]:
        return self.material.stored

    @property
    def unit_labor(self) -> Optional[Decimal]:
        return self.labor.stored


def _from_slot(offer: Optional[Any], column: str) -> PriceSource:
    if offer is None:
        return PriceSource.unset()
    value = getattr(offer, column)
    if value is None:
        return PriceSource.unset()
    return PriceSource.resolved(value)


def select_material(
    offer: Optional[Any], tier: Optional[MaterialTier], manual: Optional[Number] = None
) -> PriceSource:
    if tier is None:
        return PriceSource.unset()
    if tier is MaterialTier.MANUAL:
        return PriceSource.manual(manual, "manual_material")
    return _from_slot(offer, MATERIAL_SLOTS[tier])


def select_labor(
    offer: Optional[Any], tier: Optional[LaborTier], manual: Optional[Number] = None
) -> PriceSource:
    if tier is None:
        return PriceSource.unset()
    if tier is LaborTier.MANUAL:
        return PriceSource.manual(manual, "manual_labor")
    return _from_slot(offer, LABOR_SLOTS[tier])


def select_price(
    offer: Optional[Any],
    material_tier: Optional[MaterialTier],
    labor_tier: Optional[LaborTier],
    manual_material: Optional[Number] = None,
    manual_labor: Optional[Number] = None,
) -> SelectedPrice:
    return SelectedPrice(
        material=select_material(offer, material_tier, manual_material),
        labor=select_labor(offer, labor_tier, manual_labor),
    )


async def find_offer(
    db: AsyncSession, account_id: int, supplier_id: Optional[int], product_id: int
) -> Optional[Offer]:
    if supplier_id is None:
        return None
    result = await db.execute(
        select(Offer).where(
            Offer.account_id == account_id,
            Offer.supplier_id == supplier_id,
            Offer.product_id == product_id,
        )
    )
    return result.scalar_one_or_none()


async def select_offer_price(
    db: AsyncSession,
    account_id: int,
    supplier_id: Optional[int],
    product_id: int,
    material_tier: Optional[MaterialTier],
    labor_tier: Optional[LaborTier],
    manual_material: Optional[Number] = None,
    manual_labor: Optional[Number] = None,
) -> SelectedPrice:
    """Load the (supplier, product) offer and project the chosen tiers onto it."""
    needs_offer = (
        material_tier not in (None, MaterialTier.MANUAL)
        or labor_tier not in (None, LaborTier.MANUAL)
    )
    offer = await find_offer(db, account_id, supplier_id, product_id) if needs_offer else None
    if needs_offer and offer is None:
        logger.info(
            "No offer for supplier=%s product=%s; tier prices left unset",
            supplier_id, product_id,
        )
    return select_price(offer, material_tier, labor_tier, manual_material, manual_labor)
