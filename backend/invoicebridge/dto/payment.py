from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Mapping

from ..stores import legacy_keys as keys
from ..stores.kv_store import KeyValueStore
from ..time_utils import to_utc_z, utcnow
from .aliases import PAYMENT_ALIASES, normalize_payment_method
from .coerce import ZERO, FieldReader, quantize


PAYMENT_METHODS = ("transfer", "cash", "consignment", "credit", "other")


@dataclass
class PaymentDTO:
    amount: Decimal = ZERO
    id: int | None = None
    invoice_id: int = 0
    payment_date: date | None = None
    payment_method: str = "other"
    transaction_ref: str = ""
    note: str = ""
    user_id: int | None = None
    created_at: datetime | None = None
    decode_errors: list[str] = field(default_factory=list, repr=False, compare=False)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any], *, today: date | None = None) -> "PaymentDTO":
        """
        Decode a payment. Any datetime-looking date is truncated to its
        calendar date; a missing date becomes today.
        """
        reader = FieldReader(raw, PAYMENT_ALIASES)
        payment_date = reader.calendar_date("payment_date")
        if payment_date is None and not reader.present("payment_date"):
            payment_date = today or utcnow().date()
        return cls(
            id=reader.integer("id"),
            invoice_id=reader.integer("invoice_id", 0) or 0,
            payment_date=payment_date,
            payment_method=normalize_payment_method(reader.raw_value("payment_method")),
            amount=reader.money("amount", ZERO),
            transaction_ref=reader.text("transaction_ref"),
            note=reader.text("note"),
            user_id=reader.integer("user_id"),
            created_at=reader.timestamp("created_at"),
            decode_errors=reader.errors,
        )

    @classmethod
    def list_from_raw(cls, values: Any, *, today: date | None = None) -> list["PaymentDTO"]:
        if not isinstance(values, Iterable) or isinstance(values, (str, bytes, Mapping)):
            return []
        return [cls.from_dict(v, today=today) for v in values if isinstance(v, Mapping)]

    @classmethod
    def from_legacy_store(cls, kv: KeyValueStore, host_id: int) -> list["PaymentDTO"]:
        info = kv.get_entity(host_id)
        if info is None or info.record_type != keys.INVOICE_RECORD_TYPE:
            return []
        return cls.list_from_raw(kv.get_field(host_id, keys.PAYMENT_HISTORY))

    def validate(self, *, require_invoice: bool = True) -> list[str]:
        errors = list(self.decode_errors)
        if require_invoice and self.invoice_id <= 0:
            errors.append("Invoice ID is required")
        if self.payment_date is None:
            errors.append("Payment date is required")
        if self.amount <= 0:
            errors.append("Payment amount must be greater than 0")
        if self.payment_method not in PAYMENT_METHODS:
            errors.append(f"Invalid payment method: {self.payment_method}")
        return errors

    def to_row(self, include_id: bool = False) -> dict:
        row = {
            "invoice_id": self.invoice_id,
            "payment_date": self.payment_date,
            "payment_method": self.payment_method,
            "amount": quantize(self.amount),
            "transaction_ref": self.transaction_ref or None,
            "note": self.note or None,
            "user_id": self.user_id,
            "created_at": self.created_at,
        }
        if include_id:
            row["id"] = self.id
        return row

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "payment_date": self.payment_date.isoformat() if self.payment_date else None,
            "payment_method": self.payment_method,
            "amount": str(self.amount),
            "transaction_ref": self.transaction_ref,
            "note": self.note,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }

    def to_legacy(self) -> dict:
        """Entry for the legacy `_payment_history` list (historical key names)."""
        return {
            "date": self.payment_date.isoformat() if self.payment_date else "",
            "amount": str(self.amount),
            "method": self.payment_method,
            "ref": self.transaction_ref,
            "comment": self.note,
            "user_id": self.user_id,
        }
