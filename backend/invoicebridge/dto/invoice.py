from __future__ import annotations

import re
from functools import lru_cache
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping

from ..stores import legacy_keys as keys
from ..stores.kv_store import KeyValueStore
from ..time_utils import format_sql_datetime, to_utc_z
from .aliases import INVOICE_ALIASES
from .coerce import ZERO, FieldReader, quantize
from .item import InvoiceItemDTO
from .payment import PaymentDTO


INVOICE_KINDS = ("standard", "fictive", "proforma")
WORKFLOW_STATUSES = ("unfinished", "completed", "cancelled", "reserved")
DEFAULT_NUMBER_PREFIX = "N"
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

MONEY_FIELDS = ("subtotal", "tax_amount", "discount_amount", "total_amount", "paid_amount", "balance")


@lru_cache(maxsize=8)
def invoice_number_pattern(prefix: str = DEFAULT_NUMBER_PREFIX) -> re.Pattern:
    """Prefix followed by exactly eight digits."""
    return re.compile(rf"^{re.escape(prefix.upper())}\d{{8}}$")


def kind_for_paid(paid_amount: Decimal) -> str:
    """paid > 0 makes an invoice standard, otherwise it is fictive."""
    return "standard" if paid_amount > 0 else "fictive"


@dataclass
class InvoiceDTO:
    """
    Invoice header.

    activation_date doubles as a latch: it is set once, on the first
    fictive -> standard transition, and cleared when the invoice reverts to
    fictive. An invoice born standard is never latched.
    """
    invoice_number: str = ""
    old_post_id: int = 0
    id: int | None = None
    buyer_name: str = ""
    buyer_tax_id: str = ""
    buyer_address: str = ""
    buyer_phone: str = ""
    buyer_email: str = ""
    customer_id: int | None = None
    kind: str = "fictive"
    workflow_status: str = "unfinished"
    rs_uploaded: bool = False
    subtotal: Decimal = ZERO
    tax_amount: Decimal = ZERO
    discount_amount: Decimal = ZERO
    total_amount: Decimal = ZERO
    paid_amount: Decimal = ZERO
    balance: Decimal = ZERO
    general_note: str = ""
    author_id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    activation_date: datetime | None = None
    decode_errors: list[str] = field(default_factory=list, repr=False, compare=False)

    @property
    def is_activated(self) -> bool:
        return self.activation_date is not None

    # ------------------------------------------------------------------
    # Decode
    # ------------------------------------------------------------------

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "InvoiceDTO":
        reader = FieldReader(raw, INVOICE_ALIASES)
        return cls(
            id=reader.integer("id"),
            old_post_id=reader.integer("old_post_id", 0) or 0,
            invoice_number=reader.text("invoice_number").upper(),
            buyer_name=reader.text("buyer_name"),
            buyer_tax_id=reader.text("buyer_tax_id"),
            buyer_address=reader.text("buyer_address"),
            buyer_phone=reader.text("buyer_phone"),
            buyer_email=reader.text("buyer_email"),
            customer_id=reader.integer("customer_id") or None,
            kind=reader.text("kind", "fictive").lower(),
            workflow_status=reader.text("workflow_status", "unfinished").lower(),
            rs_uploaded=reader.boolean("rs_uploaded"),
            subtotal=reader.money("subtotal"),
            tax_amount=reader.money("tax_amount"),
            discount_amount=reader.money("discount_amount"),
            total_amount=reader.money("total_amount"),
            paid_amount=reader.money("paid_amount"),
            balance=reader.money("balance"),
            general_note=reader.text("general_note"),
            author_id=reader.integer("author_id"),
            created_at=reader.timestamp("created_at"),
            updated_at=reader.timestamp("updated_at"),
            activation_date=reader.timestamp("activation_date"),
            decode_errors=reader.errors,
        )

    @classmethod
    def from_legacy_store(cls, kv: KeyValueStore, host_id: int) -> "InvoiceDTO | None":
        """
        Decode straight from the host record and its meta fields.

        Returns None when the host record is missing or is not an invoice.
        Totals that older records never stored are derived from the item and
        payment lists.
        """
        info = kv.get_entity(host_id)
        if info is None or info.record_type != keys.INVOICE_RECORD_TYPE:
            return None

        meta = kv.get_fields(host_id)
        invoice = cls.from_dict({
            "old_post_id": host_id,
            "invoice_number": meta.get(keys.INVOICE_NUMBER),
            "buyer_name": meta.get(keys.BUYER_NAME),
            "buyer_tax_id": meta.get(keys.BUYER_TAX_ID),
            "buyer_address": meta.get(keys.BUYER_ADDRESS),
            "buyer_phone": meta.get(keys.BUYER_PHONE),
            "buyer_email": meta.get(keys.BUYER_EMAIL),
            "customer_id": meta.get(keys.CUSTOMER_ID),
            "kind": meta.get(keys.INVOICE_KIND),
            "workflow_status": meta.get(keys.WORKFLOW_STATUS),
            "rs_uploaded": meta.get(keys.RS_UPLOADED),
            "subtotal": meta.get(keys.SUBTOTAL),
            "tax_amount": meta.get(keys.TAX_AMOUNT),
            "discount_amount": meta.get(keys.DISCOUNT_AMOUNT),
            "total_amount": meta.get(keys.TOTAL_AMOUNT),
            "paid_amount": meta.get(keys.PAID_AMOUNT),
            "balance": meta.get(keys.BALANCE),
            "general_note": meta.get(keys.GENERAL_NOTE),
            "author_id": info.author_id,
            "created_at": info.created_at,
            "updated_at": info.modified_at,
            "activation_date": meta.get(keys.ACTIVATION_DATE),
        })

        if _blank(meta.get(keys.TOTAL_AMOUNT)):
            items = InvoiceItemDTO.list_from_raw(meta.get(keys.ITEMS))
            if _blank(meta.get(keys.SUBTOTAL)):
                invoice.subtotal = quantize(sum((i.line_total for i in items if i.product_name), ZERO))
            invoice.total_amount = quantize(invoice.subtotal + invoice.tax_amount - invoice.discount_amount)
        if _blank(meta.get(keys.PAID_AMOUNT)):
            history = PaymentDTO.list_from_raw(meta.get(keys.PAYMENT_HISTORY))
            invoice.paid_amount = quantize(sum((p.amount for p in history if p.amount > 0), ZERO))
        return invoice

    # ------------------------------------------------------------------
    # Write preparation / validation
    # ------------------------------------------------------------------

    def prepared_for_write(self) -> "InvoiceDTO":
        """
        Copy with quantized money, balance recomputed from total - paid, and
        kind derived from paid (proforma is kept as set).
        A fictive result never carries an activation date.
        """
        values = {name: quantize(getattr(self, name)) for name in MONEY_FIELDS}
        values["balance"] = quantize(values["total_amount"] - values["paid_amount"])
        kind = self.kind if self.kind == "proforma" else kind_for_paid(values["paid_amount"])
        activation_date = None if kind == "fictive" else self.activation_date
        return replace(
            self, kind=kind, activation_date=activation_date, decode_errors=list(self.decode_errors), **values
        )

    def validate(self, number_prefix: str = DEFAULT_NUMBER_PREFIX) -> list[str]:
        errors = list(self.decode_errors)
        if not self.invoice_number:
            errors.append("Invoice number is required")
        elif not invoice_number_pattern(number_prefix).match(self.invoice_number.upper()):
            errors.append(f"Invoice number has an invalid format: {self.invoice_number}")
        if not self.buyer_name:
            errors.append("Buyer name is required")
        if not self.buyer_tax_id:
            errors.append("Buyer tax ID is required")
        if not self.buyer_phone:
            errors.append("Buyer phone is required")
        if self.buyer_email and not EMAIL_RE.match(self.buyer_email):
            errors.append("Buyer email is invalid")
        if self.old_post_id <= 0:
            errors.append("Host record ID must be a positive integer")
        if self.kind not in INVOICE_KINDS:
            errors.append(f"Invalid invoice kind: {self.kind}")
        if self.workflow_status not in WORKFLOW_STATUSES:
            errors.append(f"Invalid workflow status: {self.workflow_status}")
        # balance may go negative on overpayment; it always equals total - paid
        for name in MONEY_FIELDS[:-1]:
            if getattr(self, name) < 0:
                errors.append(f"{name.replace('_', ' ').capitalize()} cannot be negative")
        return errors

    # ------------------------------------------------------------------
    # Encode
    # ------------------------------------------------------------------

    def to_row(self, include_id: bool = False) -> dict:
        row = {
            "old_post_id": self.old_post_id,
            "invoice_number": self.invoice_number,
            "buyer_name": self.buyer_name,
            "buyer_tax_id": self.buyer_tax_id,
            "buyer_address": self.buyer_address or None,
            "buyer_phone": self.buyer_phone,
            "buyer_email": self.buyer_email or None,
            "customer_id": self.customer_id,
            "kind": self.kind,
            "workflow_status": self.workflow_status,
            "rs_uploaded": bool(self.rs_uploaded),
            "general_note": self.general_note or None,
            "author_id": self.author_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "activation_date": self.activation_date,
        }
        for name in MONEY_FIELDS:
            row[name] = quantize(getattr(self, name))
        if include_id:
            row["id"] = self.id
        return row

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "old_post_id": self.old_post_id,
            "invoice_number": self.invoice_number,
            "buyer": {
                "name": self.buyer_name,
                "tax_id": self.buyer_tax_id,
                "address": self.buyer_address,
                "phone": self.buyer_phone,
                "email": self.buyer_email,
            },
            "customer_id": self.customer_id,
            "kind": self.kind,
            "workflow_status": self.workflow_status,
            "rs_uploaded": self.rs_uploaded,
            "general_note": self.general_note,
            "author_id": self.author_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "activation_date": to_utc_z(self.activation_date),
        }
        for name in MONEY_FIELDS:
            data[name] = str(getattr(self, name))
        return data

    def to_legacy(self) -> dict:
        """Header meta fields under their legacy keys (activation marker excluded)."""
        return {
            keys.INVOICE_NUMBER: self.invoice_number,
            keys.BUYER_NAME: self.buyer_name,
            keys.BUYER_TAX_ID: self.buyer_tax_id,
            keys.BUYER_ADDRESS: self.buyer_address,
            keys.BUYER_PHONE: self.buyer_phone,
            keys.BUYER_EMAIL: self.buyer_email,
            keys.CUSTOMER_ID: self.customer_id or "",
            keys.INVOICE_KIND: self.kind,
            keys.WORKFLOW_STATUS: self.workflow_status,
            keys.RS_UPLOADED: "1" if self.rs_uploaded else "0",
            keys.GENERAL_NOTE: self.general_note,
            keys.SUBTOTAL: str(self.subtotal),
            keys.TAX_AMOUNT: str(self.tax_amount),
            keys.DISCOUNT_AMOUNT: str(self.discount_amount),
            keys.TOTAL_AMOUNT: str(self.total_amount),
            keys.PAID_AMOUNT: str(self.paid_amount),
            keys.BALANCE: str(self.balance),
        }

    def activation_marker(self) -> str | None:
        return format_sql_datetime(self.activation_date)


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())
