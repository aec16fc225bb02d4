from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Iterable, Mapping

from ..stores import legacy_keys as keys
from ..stores.kv_store import KeyValueStore
from ..time_utils import format_sql_datetime, to_utc_z
from .aliases import ITEM_ALIASES
from .coerce import ONE, ZERO, FieldReader, quantize


MAX_RESERVATION_DAYS = 90


@dataclass
class InvoiceItemDTO:
    product_name: str = ""
    id: int | None = None
    invoice_id: int = 0
    product_id: int | None = None
    product_sku: str = ""
    quantity: Decimal = ONE
    unit_price: Decimal = ZERO
    line_total: Decimal = ZERO
    warranty: str = ""
    item_note: str = ""
    sort_order: int = 0
    reservation_expires_at: datetime | None = None
    created_at: datetime | None = None
    decode_errors: list[str] = field(default_factory=list, repr=False, compare=False)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any], *, reference_time: datetime | None = None) -> "InvoiceItemDTO":
        """
        Decode from any historical key layout.

        Defaults: quantity 1, price 0. A missing or zero line total becomes
        quantity x price when both are positive. Legacy `reservation_days`
        becomes an expiry relative to reference_time (capped at 90 days).
        """
        reader = FieldReader(raw, ITEM_ALIASES)
        quantity = reader.money("quantity", ONE)
        unit_price = reader.money("unit_price", ZERO)
        line_total = reader.money("line_total", ZERO)
        if line_total == ZERO and quantity > 0 and unit_price > 0:
            line_total = quantize(quantity * unit_price)

        expires_at = reader.timestamp("reservation_expires_at")
        if expires_at is None and "reservation_days" in raw:
            reservation = reader.integer("reservation_days", 0) or 0
            if reservation > 0 and reference_time is not None:
                expires_at = reference_time + timedelta(days=min(reservation, MAX_RESERVATION_DAYS))

        return cls(
            id=reader.integer("id"),
            invoice_id=reader.integer("invoice_id", 0) or 0,
            product_id=reader.integer("product_id"),
            product_name=reader.text("product_name"),
            product_sku=reader.text("product_sku"),
            quantity=quantity,
            unit_price=unit_price,
            line_total=line_total,
            warranty=reader.text("warranty"),
            item_note=reader.text("item_note"),
            sort_order=reader.integer("sort_order", 0) or 0,
            reservation_expires_at=expires_at,
            created_at=reader.timestamp("created_at"),
            decode_errors=reader.errors,
        )

    @classmethod
    def list_from_raw(cls, values: Any, *, reference_time: datetime | None = None) -> list["InvoiceItemDTO"]:
        if not isinstance(values, Iterable) or isinstance(values, (str, bytes, Mapping)):
            return []
        return [cls.from_dict(v, reference_time=reference_time) for v in values if isinstance(v, Mapping)]

    @classmethod
    def from_legacy_store(cls, kv: KeyValueStore, host_id: int) -> list["InvoiceItemDTO"]:
        info = kv.get_entity(host_id)
        if info is None or info.record_type != keys.INVOICE_RECORD_TYPE:
            return []
        return cls.list_from_raw(kv.get_field(host_id, keys.ITEMS), reference_time=info.created_at)

    def validate(self, *, require_invoice: bool = True) -> list[str]:
        errors = list(self.decode_errors)
        if require_invoice and self.invoice_id <= 0:
            errors.append("Invoice ID is required")
        if not self.product_name:
            errors.append("Product name is required")
        if self.quantity <= 0:
            errors.append("Quantity must be greater than 0")
        if self.unit_price < 0:
            errors.append("Price cannot be negative")
        if self.line_total < 0:
            errors.append("Line total cannot be negative")
        if len(self.warranty) > 20:
            errors.append("Warranty code is too long")
        return errors

    def to_row(self, include_id: bool = False) -> dict:
        row = {
            "invoice_id": self.invoice_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_sku": self.product_sku or None,
            "quantity": quantize(self.quantity),
            "unit_price": quantize(self.unit_price),
            "line_total": quantize(self.line_total),
            "warranty": self.warranty or None,
            "item_note": self.item_note or None,
            "sort_order": self.sort_order,
            "reservation_expires_at": self.reservation_expires_at,
            "created_at": self.created_at,
        }
        if include_id:
            row["id"] = self.id
        return row

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_sku": self.product_sku,
            "quantity": str(self.quantity),
            "unit_price": str(self.unit_price),
            "line_total": str(self.line_total),
            "warranty": self.warranty,
            "item_note": self.item_note,
            "sort_order": self.sort_order,
            "reservation_expires_at": to_utc_z(self.reservation_expires_at),
            "created_at": to_utc_z(self.created_at),
        }

    def to_legacy(self) -> dict:
        """Entry for the legacy `_invoice_items` list (historical key names)."""
        return {
            "product_id": self.product_id or 0,
            "name": self.product_name,
            "sku": self.product_sku,
            "qty": str(self.quantity),
            "price": str(self.unit_price),
            "total": str(self.line_total),
            "warranty": self.warranty,
            "note": self.item_note,
            "reservation_expires": format_sql_datetime(self.reservation_expires_at),
        }
