"""
Pricing value types shared by the tier resolver, price selector, line item
engine and the financial overlay.

Covers:
  - Closed tier-label enums (material P1-P3, labor M1-M3, MANUAL)
  - PriceSource — tagged unit price (RESOLVED / UNSET / MANUAL)
  - Adjustment rules (percent / fixed) and the form-string parser
  - Half-up rounding helpers (quantities 3 dp, money 2 dp)
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional, Union

from budgeteer.services.errors import ValidationError

Number = Union[Decimal, int, float, str]

_CENT = Decimal("0.01")
_MILLI = Decimal("0.001")
ZERO = Decimal("0.00")


# ---------------------------------------------------------------------------
# Tier labels
# ---------------------------------------------------------------------------

class MaterialTier(str, enum.Enum):
    P1 = "P1"
    P2 = "P2"
    P3 = "P3"
    MANUAL = "MANUAL"


class LaborTier(str, enum.Enum):
    M1 = "M1"
    M2 = "M2"
    M3 = "M3"
    MANUAL = "MANUAL"


# Offer column backing each non-manual tier label
MATERIAL_SLOTS: dict[MaterialTier, str] = {
    MaterialTier.P1: "material_p1",
    MaterialTier.P2: "material_p2",
    MaterialTier.P3: "material_p3",
}
LABOR_SLOTS: dict[LaborTier, str] = {
    LaborTier.M1: "labor_m1",
    LaborTier.M2: "labor_m2",
    LaborTier.M3: "labor_m3",
}


class ProductType(str, enum.Enum):
    GOOD = "GOOD"
    SERVICE = "SERVICE"
    BOTH = "BOTH"


class AdjustmentKind(str, enum.Enum):
    PERCENT = "percent"
    FIXED = "fixed"


class FinancialKind(str, enum.Enum):
    """Reporting-overlay rule kinds. HONORARIUM is project-scoped only."""
    PERCENT = "percent"
    FIXED = "fixed"
    HONORARIUM = "honorarium"


def parse_material_tier(value: Any) -> Optional[MaterialTier]:
    if value is None or isinstance(value, MaterialTier):
        return value
    raw = str(value).strip().upper()
    if not raw:
        return None
    try:
        return MaterialTier(raw)
    except ValueError:
        raise ValidationError(f"Invalid material tier: {value!r}", field="material_tier")


def parse_labor_tier(value: Any) -> Optional[LaborTier]:
    if value is None or isinstance(value, LaborTier):
        return value
    raw = str(value).strip().upper()
    if not raw:
        return None
    try:
        return LaborTier(raw)
    except ValueError:
        raise ValidationError(f"Invalid labor tier: {value!r}", field="labor_tier")


# ---------------------------------------------------------------------------
# Numbers
# ---------------------------------------------------------------------------

# Exclusive bounds matching the Numeric(14, 3) / Numeric(14, 2) columns
MAX_QUANTITY = Decimal("1e11")
MAX_MONEY = Decimal("1e12")


def to_decimal(value: Number, field: str = "value") -> Decimal:
    """
    Coerce user/DB input to a finite Decimal.

    Floats go through str() so 10.005 stays 10.005 rather than its binary
    expansion. Strings with a decimal comma use the local format: dots are
    thousands separators ("1.234,56" is 1234.56, "10,5" is 10.5); without a
    comma the dot is the decimal point.
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", field=field)
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    else:
        raw = str(value).strip()
        if "," in raw:
            raw = raw.replace(".", "").replace(",", ".")
        try:
            result = Decimal(raw)
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number", field=field)
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number", field=field)
    return result


def _quantize(value: Number, exp: Decimal, field: str) -> Decimal:
    try:
        return to_decimal(value, field=field).quantize(exp, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValidationError(f"{field} is out of range", field=field)


def round2(value: Number, field: str = "value") -> Decimal:
    """Money: round half up to 2 decimals (never banker's rounding)."""
    return _quantize(value, _CENT, field)


def round3(value: Number, field: str = "value") -> Decimal:
    """Quantities: round half up to 3 decimals."""
    return _quantize(value, _MILLI, field)


def check_range(value: Decimal, limit: Decimal, field: str) -> Decimal:
    if abs(value) >= limit:
        raise ValidationError(f"{field} is out of range", field=field)
    return value


def to_money(value: Number, field: str = "value") -> Decimal:
    """A money amount that fits a Numeric(14, 2) column."""
    return check_range(round2(value, field), MAX_MONEY, field)


def optional_money(value: Optional[Number], field: str = "value") -> Optional[Decimal]:
    return None if value is None else to_money(value, field)


# ---------------------------------------------------------------------------
# PriceSource
# ---------------------------------------------------------------------------

class PriceSourceKind(str, enum.Enum):
    RESOLVED = "resolved"   # taken from an offer slot
    UNSET = "unset"         # no source: missing offer, empty slot or no tier
    MANUAL = "manual"       # supplied by the caller


@dataclass(frozen=True)
class PriceSource:
    kind: PriceSourceKind
    value: Optional[Decimal] = None

    @classmethod
    def resolved(cls, value: Number) -> "PriceSource":
        return cls(PriceSourceKind.RESOLVED, round2(value))

    @classmethod
    def unset(cls) -> "PriceSource":
        return cls(PriceSourceKind.UNSET)

    @classmethod
    def manual(cls, value: Optional[Number], field: str = "manual_price") -> "PriceSource":
        return cls(PriceSourceKind.MANUAL, optional_money(value, field))

    @property
    def stored(self) -> Optional[Decimal]:
        """Value frozen onto the line; None means 'no price' (shown as '—')."""
        return self.value

    @property
    def for_totals(self) -> Decimal:
        return self.value if self.value is not None else ZERO


# ---------------------------------------------------------------------------
# Adjustments
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Adjustment:
    """
    Per-line sale adjustment.

    percent v → max(0, cost × (1 + v/100))
    fixed v   → v, regardless of quantity and unit prices; v ≥ 0
    """
    kind: AdjustmentKind
    value: Decimal

    def __post_init__(self):
        if self.kind is AdjustmentKind.FIXED and self.value < 0:
            raise ValidationError("Fixed adjustment cannot be negative", field="adjustment")

    @classmethod
    def percent(cls, value: Number) -> "Adjustment":
        return cls(AdjustmentKind.PERCENT, to_money(value, "adjustment"))

    @classmethod
    def fixed(cls, value: Number) -> "Adjustment":
        return cls(AdjustmentKind.FIXED, to_money(value, "adjustment"))

    def apply(self, base: Decimal) -> Decimal:
        if self.kind is AdjustmentKind.FIXED:
            return self.value
        adjusted = round2(base * (Decimal(1) + self.value / Decimal(100)))
        return max(ZERO, adjusted)

    def describe(self) -> str:
        if self.kind is AdjustmentKind.PERCENT:
            return f"{self.value:+}%"
        return f"fixed {self.value}"


def make_adjustment(kind: Optional[Any], value: Optional[Number]) -> Optional[Adjustment]:
    """Build an Adjustment from stored/posted (kind, value); None when either is missing."""
    if kind is None or value is None:
        return None
    try:
        adj_kind = AdjustmentKind(kind)
    except ValueError:
        raise ValidationError(f"Invalid adjustment kind: {kind!r}", field="adjustment_kind")
    return Adjustment(adj_kind, to_money(value, "adjustment_value"))


def parse_adjustment(raw: Optional[str]) -> Optional[Adjustment]:
    """
    Parse the single-field adjustment input used by item forms.

      "10%"  → percent 10
      "-5 %" → percent -5
      "500"  → fixed 500
      ""     → no adjustment
    """
    text = (raw or "").strip()
    if not text:
        return None
    is_percent = "%" in text
    number = to_decimal(text.replace("%", "").strip(), field="adjustment")
    return Adjustment.percent(number) if is_percent else Adjustment.fixed(number)
