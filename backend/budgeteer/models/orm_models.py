"""ORM Models for Budgeteer — SQLAlchemy 2.0"""
from datetime import datetime, date, timezone
from decimal import Decimal
from typing import Optional
from sqlalchemy import (
    String, Text, Boolean, Integer, Numeric, DateTime, Date, Enum,
    ForeignKey, UniqueConstraint, Index
)
from sqlalchemy.orm import Mapped, mapped_column
from budgeteer.db import Base
from budgeteer.services.pricing_rules import (
    AdjustmentKind, FinancialKind, LaborTier, MaterialTier, ProductType,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(enum_cls, length: int = 16):
    return Enum(enum_cls, native_enum=False, length=length, validate_strings=True)


# Money columns: 2 dp; quantities: 3 dp
Money = Numeric(14, 2)
Quantity = Numeric(14, 3)


# ── ACCOUNTS ──────────────────────────────────────────────────────────────────
class Account(Base):
    """Tenant. Resolved from the identity provider's external user id."""
    __tablename__ = "accounts"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_user_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255))
    full_name: Mapped[Optional[str]] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


# ── CATALOG ───────────────────────────────────────────────────────────────────
class Client(Base):
    __tablename__ = "clients"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(Integer, ForeignKey("accounts.id"), index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    tax_id: Mapped[Optional[str]] = mapped_column(String(20))     # digits only
    email: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    address: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Unit(Base):
    __tablename__ = "units"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(Integer, ForeignKey("accounts.id"), index=True)
    symbol: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(100))
    __table_args__ = (UniqueConstraint("account_id", "symbol", name="uq_unit_symbol"),)


class Category(Base):
    """Per-account product category registry."""
    __tablename__ = "categories"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(Integer, ForeignKey("accounts.id"), index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    __table_args__ = (UniqueConstraint("account_id", "name", name="uq_category_name"),)


class Product(Base):
    __tablename__ = "products"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(Integer, ForeignKey("accounts.id"), index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("categories.id"))
    category: Mapped[str] = mapped_column(String(100), default="General")   # registry name, denormalized
    unit_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("units.id"))
    product_type: Mapped[ProductType] = mapped_column(_enum(ProductType), default=ProductType.GOOD)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Supplier(Base):
    __tablename__ = "suppliers"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(Integer, ForeignKey("accounts.id"), index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    tax_id: Mapped[Optional[str]] = mapped_column(String(20))
    contact: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Offer(Base):
    """One supplier's prices for one product: 3 material tiers, 3 labor tiers."""
    __tablename__ = "offers"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(Integer, ForeignKey("accounts.id"), index=True)
    supplier_id: Mapped[int] = mapped_column(Integer, ForeignKey("suppliers.id", ondelete="CASCADE"))
    product_id: Mapped[int] = mapped_column(Integer, ForeignKey("products.id", ondelete="CASCADE"))
    material_p1: Mapped[Optional[Decimal]] = mapped_column(Money)
    material_p2: Mapped[Optional[Decimal]] = mapped_column(Money)
    material_p3: Mapped[Optional[Decimal]] = mapped_column(Money)
    labor_m1: Mapped[Optional[Decimal]] = mapped_column(Money)
    labor_m2: Mapped[Optional[Decimal]] = mapped_column(Money)
    labor_m3: Mapped[Optional[Decimal]] = mapped_column(Money)
    last_updated: Mapped[Optional[date]] = mapped_column(Date)
    note: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    __table_args__ = (
        UniqueConstraint("account_id", "supplier_id", "product_id", name="uq_offer_supplier_product"),
        Index("ix_offers_product", "product_id"),
    )


# ── PROJECTS & ESTIMATES ──────────────────────────────────────────────────────
class Project(Base):
    __tablename__ = "projects"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(Integer, ForeignKey("accounts.id"), index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    client_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("clients.id", ondelete="SET NULL"))
    status: Mapped[str] = mapped_column(String(50), default="draft")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Estimate(Base):
    __tablename__ = "estimates"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(Integer, ForeignKey("accounts.id"), index=True)
    project_id: Mapped[int] = mapped_column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    approved: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class LineItem(Base):
    """
    One estimate line. Unit prices are a frozen snapshot of the offer at
    selection time; total_item holds the sale total. The cost total is
    derived from quantity and the frozen prices and is not persisted.
    """
    __tablename__ = "line_items"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(Integer, ForeignKey("accounts.id"), index=True)
    estimate_id: Mapped[int] = mapped_column(Integer, ForeignKey("estimates.id", ondelete="CASCADE"), index=True)
    product_id: Mapped[int] = mapped_column(Integer, ForeignKey("products.id"))
    supplier_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("suppliers.id"))
    unit_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("units.id"))
    quantity: Mapped[Decimal] = mapped_column(Quantity, nullable=False)
    material_tier: Mapped[Optional[MaterialTier]] = mapped_column(_enum(MaterialTier, 8))
    labor_tier: Mapped[Optional[LaborTier]] = mapped_column(_enum(LaborTier, 8))
    unit_material: Mapped[Optional[Decimal]] = mapped_column(Money)
    unit_labor: Mapped[Optional[Decimal]] = mapped_column(Money)
    adjustment_kind: Mapped[Optional[AdjustmentKind]] = mapped_column(_enum(AdjustmentKind, 10))
    adjustment_value: Mapped[Optional[Decimal]] = mapped_column(Money)
    similarity_group: Mapped[Optional[str]] = mapped_column(String(255))
    total_item: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0.00"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


# ── FINANCIAL OVERLAY ─────────────────────────────────────────────────────────
class FinancialAdjustment(Base):
    """
    Reporting-only override. line_item_id set → line scope; NULL → project
    scope (discount/override on the whole project, or the honorarium).
    Never rewrites LineItem or Estimate rows.
    """
    __tablename__ = "financial_adjustments"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(Integer, ForeignKey("accounts.id"), index=True)
    project_id: Mapped[int] = mapped_column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), index=True)
    line_item_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("line_items.id", ondelete="CASCADE"), index=True
    )
    kind: Mapped[FinancialKind] = mapped_column(_enum(FinancialKind, 12), nullable=False)
    value: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text)
    propagate_to_similar: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class ProjectLedger(Base):
    """Amount received from the client plus free notes, one row per project."""
    __tablename__ = "project_ledgers"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(Integer, ForeignKey("accounts.id"), index=True)
    project_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), unique=True
    )
    received_total: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
