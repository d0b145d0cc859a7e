"""Catalog API routes — clients, units, categories, products, suppliers and supplier offers."""
import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from budgeteer.api.deps import get_current_account_id
from budgeteer.db import get_db
from budgeteer.models.orm_models import Category, Client, Product, Supplier, Unit
from budgeteer.services import catalog_service as catalog

router = APIRouter(prefix="/api/catalog", tags=["Catalog"])
logger = logging.getLogger("budgeteer-api")


# ─── Pydantic schemas ────────────────────────────────────────────────────────

class ClientIn(BaseModel):
    name: Optional[str] = None
    tax_id: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class UnitIn(BaseModel):
    symbol: Optional[str] = None
    name: Optional[str] = None


class CategoryIn(BaseModel):
    name: Optional[str] = None


class ProductIn(BaseModel):
    name: Optional[str] = None
    category: Optional[str] = None
    category_id: Optional[int] = None
    unit_id: Optional[int] = None
    product_type: Optional[str] = None


class SupplierIn(BaseModel):
    name: Optional[str] = None
    tax_id: Optional[str] = None
    contact: Optional[str] = None


class OfferIn(BaseModel):
    supplier_id: int
    product_id: int
    material_p1: Optional[Decimal] = None
    material_p2: Optional[Decimal] = None
    material_p3: Optional[Decimal] = None
    labor_m1: Optional[Decimal] = None
    labor_m2: Optional[Decimal] = None
    labor_m3: Optional[Decimal] = None
    last_updated: Optional[date] = None
    note: Optional[str] = None


# ─── Clients ────────────────────────────────────────────────────────────────

@router.get("/clients")
async def list_clients(
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    rows = await catalog.list_owned(db, Client, account_id, order_by=Client.name)
    return [catalog.as_dict(r) for r in rows]


@router.post("/clients", status_code=201)
async def create_client(
    body: ClientIn,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    row = await catalog.create_entity(db, Client, account_id, body.model_dump(exclude_unset=True))
    return catalog.as_dict(row)


@router.put("/clients/{client_id}")
async def update_client(
    client_id: int,
    body: ClientIn,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    row = await catalog.update_entity(
        db, Client, account_id, client_id, body.model_dump(exclude_unset=True)
    )
    return catalog.as_dict(row)


@router.delete("/clients/{client_id}")
async def delete_client(
    client_id: int,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    await catalog.delete_entity(db, Client, account_id, client_id)
    return {"deleted": client_id}


# ─── Units ──────────────────────────────────────────────────────────────────

@router.get("/units")
async def list_units(
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    rows = await catalog.list_owned(db, Unit, account_id, order_by=Unit.symbol)
    return [catalog.as_dict(r) for r in rows]


@router.post("/units", status_code=201)
async def create_unit(
    body: UnitIn,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    row = await catalog.create_entity(db, Unit, account_id, body.model_dump(exclude_unset=True))
    return catalog.as_dict(row)


@router.put("/units/{unit_id}")
async def update_unit(
    unit_id: int,
    body: UnitIn,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    row = await catalog.update_entity(db, Unit, account_id, unit_id, body.model_dump(exclude_unset=True))
    return catalog.as_dict(row)


@router.delete("/units/{unit_id}")
async def delete_unit(
    unit_id: int,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    await catalog.delete_entity(db, Unit, account_id, unit_id)
    return {"deleted": unit_id}


# ─── Categories ─────────────────────────────────────────────────────────────

@router.get("/categories")
async def list_categories(
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    rows = await catalog.list_owned(db, Category, account_id, order_by=Category.name)
    return [catalog.as_dict(r) for r in rows]


@router.post("/categories", status_code=201)
async def create_category(
    body: CategoryIn,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    """Register a category; an existing name returns the registered row."""
    row = await catalog.get_or_create_category(db, account_id, body.name)
    return catalog.as_dict(row)


@router.put("/categories/{category_id}")
async def rename_category(
    category_id: int,
    body: CategoryIn,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    row = await catalog.update_entity(
        db, Category, account_id, category_id, body.model_dump(exclude_unset=True)
    )
    return catalog.as_dict(row)


@router.delete("/categories/{category_id}")
async def delete_category(
    category_id: int,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    await catalog.delete_entity(db, Category, account_id, category_id)
    return {"deleted": category_id}


# ─── Products ───────────────────────────────────────────────────────────────

@router.get("/products")
async def list_products(
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    rows = await catalog.list_owned(db, Product, account_id, order_by=Product.name)
    return [catalog.as_dict(r) for r in rows]


@router.post("/products", status_code=201)
async def create_product(
    body: ProductIn,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    row = await catalog.create_entity(db, Product, account_id, body.model_dump(exclude_unset=True))
    return catalog.as_dict(row)


@router.put("/products/{product_id}")
async def update_product(
    product_id: int,
    body: ProductIn,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    row = await catalog.update_entity(
        db, Product, account_id, product_id, body.model_dump(exclude_unset=True)
    )
    return catalog.as_dict(row)


@router.delete("/products/{product_id}")
async def delete_product(
    product_id: int,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    await catalog.delete_entity(db, Product, account_id, product_id)
    return {"deleted": product_id}


@router.get("/products/{product_id}/offers")
async def product_offers(
    product_id: int,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    """Supplier prices, global tiers and the smart-add default for one product."""
    return await catalog.product_price_panel(db, account_id, product_id)


@router.get("/price-ranges")
async def price_ranges(
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    return await catalog.price_ranges(db, account_id)


# ─── Suppliers ──────────────────────────────────────────────────────────────

@router.get("/suppliers")
async def list_suppliers(
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    rows = await catalog.list_owned(db, Supplier, account_id, order_by=Supplier.name)
    return [catalog.as_dict(r) for r in rows]


@router.post("/suppliers", status_code=201)
async def create_supplier(
    body: SupplierIn,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    row = await catalog.create_entity(db, Supplier, account_id, body.model_dump(exclude_unset=True))
    return catalog.as_dict(row)


@router.put("/suppliers/{supplier_id}")
async def update_supplier(
    supplier_id: int,
    body: SupplierIn,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    row = await catalog.update_entity(
        db, Supplier, account_id, supplier_id, body.model_dump(exclude_unset=True)
    )
    return catalog.as_dict(row)


@router.delete("/suppliers/{supplier_id}")
async def delete_supplier(
    supplier_id: int,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    await catalog.delete_entity(db, Supplier, account_id, supplier_id)
    return {"deleted": supplier_id}


# ─── Offers ─────────────────────────────────────────────────────────────────

@router.put("/offers")
async def upsert_offer(
    body: OfferIn,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    """Create or replace the supplier's prices for a product."""
    data = body.model_dump(exclude={"supplier_id", "product_id"})
    offer = await catalog.upsert_offer(db, account_id, body.supplier_id, body.product_id, data)
    return catalog.as_dict(offer)


@router.post("/offers", status_code=201)
async def create_offer(
    body: OfferIn,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    data = body.model_dump(exclude={"supplier_id", "product_id"})
    offer = await catalog.create_offer(db, account_id, body.supplier_id, body.product_id, data)
    return catalog.as_dict(offer)


@router.delete("/offers/{offer_id}")
async def delete_offer(
    offer_id: int,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    await catalog.delete_offer(db, account_id, offer_id)
    return {"deleted": offer_id}
