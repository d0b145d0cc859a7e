"""
Catalog service — account-owned registrations (clients, units, categories,
products, suppliers, projects) and the price catalog (offers).

Every query is filtered by the acting account; a row owned by another
account is indistinguishable from a missing one.
"""
from __future__ import annotations

import logging
import re
from datetime import date
from typing import Any, Dict, List, Optional, Type

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from budgeteer.models.orm_models import (
    Category, Client, Offer, Product, Project, Supplier, Unit,
)
from budgeteer.services.errors import ConflictError, NotFoundError, ValidationError
from budgeteer.services.price_selector import find_offer
from budgeteer.services.pricing_rules import ProductType, to_money
from budgeteer.services.tier_resolver import (
    resolve_offer_tiers,
    suggest_default_selection,
    summarize_price_ranges,
)

logger = logging.getLogger("budgeteer-catalog")

DEFAULT_CATEGORY = "General"

OFFER_PRICE_FIELDS = (
    "material_p1", "material_p2", "material_p3",
    "labor_m1", "labor_m2", "labor_m3",
)

# Columns a caller may set per entity; everything else is managed here.
_EDITABLE: Dict[Type, tuple] = {
    Client: ("name", "tax_id", "email", "phone", "address"),
    Unit: ("symbol", "name"),
    Category: ("name",),
    Product: ("name", "category", "category_id", "unit_id", "product_type"),
    Supplier: ("name", "tax_id", "contact"),
    Project: ("name", "client_id", "status"),
}

_LABELS: Dict[Type, str] = {
    Client: "Client",
    Unit: "Unit",
    Category: "Category",
    Product: "Product",
    Supplier: "Supplier",
    Project: "Project",
    Offer: "Offer",
}


def as_dict(row) -> Dict[str, Any]:
    """Column values of an ORM row, for JSON responses."""
    return {column.key: getattr(row, column.key) for column in row.__table__.columns}


def only_digits(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    digits = re.sub(r"\D+", "", value)
    return digits or None


async def find_owned(db: AsyncSession, model, account_id: int, entity_id) -> Optional[Any]:
    if entity_id is None:
        return None
    result = await db.execute(
        select(model).where(model.id == entity_id, model.account_id == account_id)
    )
    return result.scalar_one_or_none()


async def get_owned(db: AsyncSession, model, account_id: int, entity_id) -> Any:
    row = await find_owned(db, model, account_id, entity_id)
    if row is None:
        label = _LABELS.get(model, model.__name__)
        logger.warning("%s %s not found for account=%s", label, entity_id, account_id)
        raise NotFoundError(label, entity_id)
    return row


async def list_owned(db: AsyncSession, model, account_id: int, order_by=None) -> List[Any]:
    query = select(model).where(model.account_id == account_id)
    query = query.order_by(order_by if order_by is not None else model.id)
    return list((await db.execute(query)).scalars().all())


# ---------------------------------------------------------------------------
# Registrations
# ---------------------------------------------------------------------------

async def get_or_create_category(db: AsyncSession, account_id: int, name: Optional[str]) -> Category:
    """Registry lookup by name; an unknown name is registered on the fly."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("Name is required", field="name")
    result = await db.execute(
        select(Category).where(Category.account_id == account_id, Category.name == name)
    )
    category = result.scalar_one_or_none()
    if category is None:
        category = Category(account_id=account_id, name=name)
        db.add(category)
        await db.flush()
        logger.info("Category %s created for account=%s", category.id, account_id)
    return category


async def _clean(db: AsyncSession, model, account_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
    allowed = _EDITABLE[model]
    values = {k: v for k, v in data.items() if k in allowed}

    key = "symbol" if model is Unit else "name"
    if key in values:
        values[key] = (values[key] or "").strip()
        if not values[key]:
            raise ValidationError(f"{key.capitalize()} is required", field=key)
    if "tax_id" in values:
        values["tax_id"] = only_digits(values["tax_id"])
    if model is Product:
        if "product_type" in values and values["product_type"] is not None:
            try:
                values["product_type"] = ProductType(str(values["product_type"]).upper())
            except ValueError:
                raise ValidationError("Invalid product type", field="product_type")
        if values.get("category_id") is not None:
            category = await find_owned(db, Category, account_id, values["category_id"])
            if category is None:
                raise ValidationError("Category not found", field="category_id")
            values["category"] = category.name
        elif "category" in values or "category_id" in values:
            category = await get_or_create_category(
                db, account_id, (values.get("category") or "").strip() or DEFAULT_CATEGORY
            )
            values["category_id"] = category.id
            values["category"] = category.name
        if values.get("unit_id") is not None:
            if await find_owned(db, Unit, account_id, values["unit_id"]) is None:
                raise ValidationError("Unit not found", field="unit_id")
    if model is Project and values.get("client_id") is not None:
        if await find_owned(db, Client, account_id, values["client_id"]) is None:
            raise ValidationError("Client not found", field="client_id")
    return values


async def create_entity(db: AsyncSession, model, account_id: int, data: Dict[str, Any]) -> Any:
    if model is Product and not data.get("category_id"):
        data = {**data, "category": data.get("category") or DEFAULT_CATEGORY}
    values = await _clean(db, model, account_id, data)
    required = "symbol" if model is Unit else "name"
    if required not in values:
        raise ValidationError(f"{required.capitalize()} is required", field=required)
    row = model(account_id=account_id, **values)
    db.add(row)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"{_LABELS[model]} already exists", field=required)
    logger.info("%s %s created for account=%s", _LABELS[model], row.id, account_id)
    return row


async def update_entity(
    db: AsyncSession, model, account_id: int, entity_id: int, data: Dict[str, Any]
) -> Any:
    row = await get_owned(db, model, account_id, entity_id)
    values = await _clean(db, model, account_id, data)
    for key, value in values.items():
        setattr(row, key, value)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"{_LABELS[model]} already exists")
    if model is Category:
        # keep the denormalized name on products in step with the registry
        await db.execute(
            update(Product)
            .where(Product.account_id == account_id, Product.category_id == row.id)
            .values(category=row.name)
            .execution_options(synchronize_session="fetch")
        )
    return row


async def delete_entity(db: AsyncSession, model, account_id: int, entity_id: int) -> None:
    row = await get_owned(db, model, account_id, entity_id)
    if model is Category:
        in_use = await db.scalar(
            select(func.count(Product.id)).where(
                Product.account_id == account_id, Product.category_id == row.id
            )
        )
        if in_use:
            raise ConflictError("Category is still used by products and cannot be deleted")
    await db.delete(row)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"{_LABELS[model]} is still referenced and cannot be deleted")
    logger.info("%s %s deleted for account=%s", _LABELS[model], entity_id, account_id)


# ---------------------------------------------------------------------------
# Offers
# ---------------------------------------------------------------------------

def _offer_values(data: Dict[str, Any]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for name in OFFER_PRICE_FIELDS:
        raw = data.get(name)
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            values[name] = None
        else:
            values[name] = to_money(raw, name)
    values["last_updated"] = data.get("last_updated") or date.today()
    values["note"] = (data.get("note") or "").strip() or None
    return values


async def _check_offer_refs(db: AsyncSession, account_id: int, supplier_id: int, product_id: int) -> None:
    if await find_owned(db, Supplier, account_id, supplier_id) is None:
        raise ValidationError("Supplier not found", field="supplier_id")
    if await find_owned(db, Product, account_id, product_id) is None:
        raise ValidationError("Product not found", field="product_id")


async def upsert_offer(
    db: AsyncSession, account_id: int, supplier_id: int, product_id: int, data: Dict[str, Any]
) -> Offer:
    """Create or update the single offer for (account, supplier, product)."""
    await _check_offer_refs(db, account_id, supplier_id, product_id)
    values = _offer_values(data)

    offer = await find_offer(db, account_id, supplier_id, product_id)
    if offer is None:
        offer = Offer(account_id=account_id, supplier_id=supplier_id, product_id=product_id)
        db.add(offer)
    for key, value in values.items():
        setattr(offer, key, value)
    try:
        await db.flush()
    except IntegrityError:
        # Concurrent insert won the unique key
        await db.rollback()
        raise ConflictError("Offer already exists for this supplier and product", field="supplier_id")
    logger.info("Offer saved: supplier=%s product=%s", supplier_id, product_id)
    return offer


async def create_offer(
    db: AsyncSession, account_id: int, supplier_id: int, product_id: int, data: Dict[str, Any]
) -> Offer:
    """Strict create: an existing (supplier, product) offer is a conflict."""
    await _check_offer_refs(db, account_id, supplier_id, product_id)
    if await find_offer(db, account_id, supplier_id, product_id) is not None:
        raise ConflictError("Offer already exists for this supplier and product", field="supplier_id")
    return await upsert_offer(db, account_id, supplier_id, product_id, data)


async def delete_offer(db: AsyncSession, account_id: int, offer_id: int) -> None:
    offer = await get_owned(db, Offer, account_id, offer_id)
    await db.delete(offer)
    await db.flush()


async def product_offers(db: AsyncSession, account_id: int, product_id: int) -> List[tuple]:
    """(offer, supplier) pairs for a product, ordered by supplier name then id."""
    result = await db.execute(
        select(Offer, Supplier)
        .join(Supplier, Supplier.id == Offer.supplier_id)
        .where(Offer.account_id == account_id, Offer.product_id == product_id)
        .order_by(Supplier.name, Supplier.id)
    )
    return [(offer, supplier) for offer, supplier in result.all()]


async def product_price_panel(db: AsyncSession, account_id: int, product_id: int) -> Dict[str, Any]:
    """
    Everything the add-item form needs for one product: each supplier's six
    slots, the global material/labor tiers and the smart-add default.
    """
    product = await get_owned(db, Product, account_id, product_id)
    pairs = await product_offers(db, account_id, product_id)
    offers = [offer for offer, _ in pairs]
    tiers = resolve_offer_tiers(offers)
    default = suggest_default_selection(tiers["material"], tiers["labor"])

    unit = await find_owned(db, Unit, account_id, product.unit_id)
    return {
        "product_id": product.id,
        "unit": {"id": unit.id, "symbol": unit.symbol} if unit else None,
        "suppliers": [
            {
                "id": supplier.id,
                "name": supplier.name,
                "material": {"P1": offer.material_p1, "P2": offer.material_p2, "P3": offer.material_p3},
                "labor": {"M1": offer.labor_m1, "M2": offer.labor_m2, "M3": offer.labor_m3},
                "last_updated": offer.last_updated,
                "note": offer.note,
            }
            for offer, supplier in pairs
        ],
        "tiers": {
            side: (value.to_dict() if value is not None else None)
            for side, value in tiers.items()
        },
        "default_selection": None if default is None else {
            "supplier_id": default.supplier_id,
            "material_tier": default.material_tier.value if default.material_tier else None,
            "labor_tier": default.labor_tier.value if default.labor_tier else None,
        },
    }


async def price_ranges(db: AsyncSession, account_id: int) -> List[Dict[str, Any]]:
    """Min/max material and labor price per product across all suppliers."""
    products = await list_owned(db, Product, account_id, order_by=Product.name)
    result = await db.execute(
        select(Offer)
        .join(Supplier, Supplier.id == Offer.supplier_id)
        .where(Offer.account_id == account_id)
        .order_by(Offer.product_id, Supplier.name, Supplier.id)
    )
    grouped: Dict[int, list] = {p.id: [] for p in products}
    for offer in result.scalars().all():
        grouped.setdefault(offer.product_id, []).append(offer)
    summary = summarize_price_ranges(grouped)
    return [
        {"product_id": p.id, "product_name": p.name, **summary[p.id]}
        for p in products
    ]
