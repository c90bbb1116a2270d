from __future__ import annotations
from datetime import datetime

from dataclasses import asdict, dataclass
from typing import Any, Iterable

from .errors import ValidationError
from ledgerpos.time_utils import normalize_datetime


# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999


@dataclass(frozen=True)
class SaleLineInput:
    """One requested sale line. unit_price_cents=None means "use the list price"."""
    product_id: int
    quantity: int
    unit_price_cents: int | None = None
    discount_cents: int = 0
    tax_cents: int = 0


@dataclass(frozen=True)
class PurchaseLineInput:
    product_id: int
    quantity: int
    unit_cost_cents: int
    shipping_cost_cents: int = 0
    tax_cents: int = 0


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion.

    Accepts ints (not bools) and plain digit strings with optional leading
    minus. Rejects floats, decimals and scientific notation.
    """
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    # Reject floats explicitly
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def coerce_positive_int(value: Any, field: str) -> int:
    n = coerce_int(value, field)
    if n <= 0:
        raise ValidationError(f"{field} must be > 0")
    return n


def coerce_cents(value: Any, field: str, *, default: int | None = 0) -> int | None:
    """Money amount in cents: integer, 0 <= value <= MAX_PRICE_CENTS."""
    if value is None:
        return default
    cents = coerce_int(value, field)
    if cents < 0:
        raise ValidationError(f"{field} must be >= 0")
    if cents > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_PRICE_CENTS}")
    return cents


def coerce_datetime(value: Any, field: str, *, default_now: bool = True) -> datetime | None:
    try:
        return normalize_datetime(value, default_now=default_now)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")


def require_text(value: Any, field: str, *, max_length: int = 255) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required")
    text = str(value).strip()
    if len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def optional_text(value: Any, field: str, *, max_length: int | None = 255) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def _line_dict(raw: Any, index: int) -> dict:
    if not isinstance(raw, dict):
        raise ValidationError(f"Line {index + 1}: expected an object")
    return raw


def _prefix(index: int, field: str) -> str:
    return f"lines[{index}].{field}"


def parse_sale_lines(lines: Iterable[Any] | None) -> list[SaleLineInput]:
    """
    Validate + normalize raw sale lines into SaleLineInput values.

    Accepts SaleLineInput instances as-is (re-validated) or dicts with
    product_id, quantity and optional unit_price_cents, discount_cents,
    tax_cents.
    """
    if lines is None:
        raise ValidationError("At least one sale line is required")

    parsed: list[SaleLineInput] = []
    for i, raw in enumerate(lines):
        if isinstance(raw, SaleLineInput):
            raw = asdict(raw)
        data = _line_dict(raw, i)
        if "product_id" not in data:
            raise ValidationError(f"{_prefix(i, 'product_id')} is required")
        if "quantity" not in data:
            raise ValidationError(f"{_prefix(i, 'quantity')} is required")

        parsed.append(SaleLineInput(
            product_id=coerce_positive_int(data["product_id"], _prefix(i, "product_id")),
            quantity=coerce_positive_int(data["quantity"], _prefix(i, "quantity")),
            unit_price_cents=coerce_cents(data.get("unit_price_cents"), _prefix(i, "unit_price_cents"), default=None),
            discount_cents=coerce_cents(data.get("discount_cents"), _prefix(i, "discount_cents")),
            tax_cents=coerce_cents(data.get("tax_cents"), _prefix(i, "tax_cents")),
        ))

    if not parsed:
        raise ValidationError("At least one sale line is required")
    return parsed


def parse_purchase_lines(lines: Iterable[Any] | None) -> list[PurchaseLineInput]:
    """Validate + normalize raw purchase lines into PurchaseLineInput values."""
    if lines is None:
        raise ValidationError("At least one purchase line is required")

    parsed: list[PurchaseLineInput] = []
    for i, raw in enumerate(lines):
        if isinstance(raw, PurchaseLineInput):
            raw = asdict(raw)
        data = _line_dict(raw, i)
        for required in ("product_id", "quantity", "unit_cost_cents"):
            if data.get(required) is None:
                raise ValidationError(f"{_prefix(i, required)} is required")

        parsed.append(PurchaseLineInput(
            product_id=coerce_positive_int(data["product_id"], _prefix(i, "product_id")),
            quantity=coerce_positive_int(data["quantity"], _prefix(i, "quantity")),
            unit_cost_cents=coerce_cents(data["unit_cost_cents"], _prefix(i, "unit_cost_cents")),
            shipping_cost_cents=coerce_cents(data.get("shipping_cost_cents"), _prefix(i, "shipping_cost_cents")),
            tax_cents=coerce_cents(data.get("tax_cents"), _prefix(i, "tax_cents")),
        ))

    if not parsed:
        raise ValidationError("At least one purchase line is required")
    return parsed


def validate_patch(patch: dict | None, writable_fields: set[str]) -> dict:
    """Reject unknown / non-writable fields in an update payload."""
    if patch is None:
        return {}
    if not isinstance(patch, dict):
        raise ValidationError("Invalid payload")
    for k in patch.keys():
        if k not in writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
    return dict(patch)
