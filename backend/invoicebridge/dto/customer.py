from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

from ..time_utils import to_utc_z
from .aliases import CUSTOMER_ALIASES
from .coerce import FieldReader


@dataclass
class CustomerDTO:
    """Deduplicated buyer. Never created by the migration itself."""
    name: str = ""
    id: int | None = None
    tax_id: str = ""
    address: str = ""
    phone: str = ""
    email: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None
    decode_errors: list[str] = field(default_factory=list, repr=False, compare=False)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "CustomerDTO":
        reader = FieldReader(raw, CUSTOMER_ALIASES)
        return cls(
            id=reader.integer("id"),
            name=reader.text("name"),
            tax_id=reader.text("tax_id"),
            address=reader.text("address"),
            phone=reader.text("phone"),
            email=reader.text("email"),
            created_at=reader.timestamp("created_at"),
            updated_at=reader.timestamp("updated_at"),
            decode_errors=reader.errors,
        )

    @classmethod
    def from_invoice(cls, invoice) -> "CustomerDTO":
        """Buyer snapshot of an invoice as a customer candidate."""
        return cls(
            name=invoice.buyer_name,
            tax_id=invoice.buyer_tax_id,
            address=invoice.buyer_address,
            phone=invoice.buyer_phone,
            email=invoice.buyer_email,
        )

    def validate(self) -> list[str]:
        errors = list(self.decode_errors)
        if not self.name:
            errors.append("Customer name is required")
        if not self.tax_id:
            errors.append("Customer tax ID is required")
        if not self.phone:
            errors.append("Customer phone is required")
        return errors

    def to_row(self, include_id: bool = False) -> dict:
        row = {
            "name": self.name,
            "tax_id": self.tax_id,
            "address": self.address or None,
            "phone": self.phone,
            "email": self.email or None,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if include_id:
            row["id"] = self.id
        return row

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "tax_id": self.tax_id,
            "address": self.address,
            "phone": self.phone,
            "email": self.email,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
