# Overview: Historical field-name aliases, consulted once per field at decode time.

"""
Alias tables.

Every semantic field has exactly one canonical name (the relational column
name). Older code paths stored the same value under other keys; decode accepts
any of them, encode only ever writes the canonical name.

Lookup order is canonical name first, then aliases in the order listed. A key
whose value is None or "" counts as absent.
"""

from __future__ import annotations

from typing import Any, Mapping


class FieldAliases:
    def __init__(self, entity: str, aliases: Mapping[str, tuple[str, ...]]):
        self.entity = entity
        self._aliases = {field: tuple(names) for field, names in aliases.items()}

    def keys_for(self, field: str) -> tuple[str, ...]:
        return (field,) + self._aliases.get(field, ())

    def resolve(self, raw: Mapping[str, Any], field: str) -> tuple[str | None, Any]:
        """Return (key, value) for the first key present in raw, else (None, None)."""
        for key in self.keys_for(field):
            if key not in raw:
                continue
            value = raw[key]
            if value is None or (isinstance(value, str) and value.strip() == ""):
                continue
            return key, value
        return None, None

    def value(self, raw: Mapping[str, Any], field: str) -> Any:
        return self.resolve(raw, field)[1]


INVOICE_ALIASES = FieldAliases(
    "invoice",
    {
        "old_post_id": ("post_id",),
        "kind": ("type", "invoice_status"),
        "workflow_status": ("status", "lifecycle_status"),
        "author_id": ("created_by",),
        "activation_date": ("activated_at",),
    },
)

ITEM_ALIASES = FieldAliases(
    "invoice_item",
    {
        "product_name": ("name",),
        "product_sku": ("sku",),
        "quantity": ("qty",),
        "unit_price": ("price",),
        "line_total": ("total",),
        "item_note": ("note",),
        "reservation_expires_at": ("reservation_expires",),
    },
)

PAYMENT_ALIASES = FieldAliases(
    "payment",
    {
        "payment_date": ("date",),
        "payment_method": ("method",),
        "transaction_ref": ("ref",),
        "note": ("comment",),
        "user_id": ("created_by",),
    },
)

CUSTOMER_ALIASES = FieldAliases(
    "customer",
    {
        "name": ("customer_name",),
        "tax_id": ("customer_tax_id",),
    },
)

# Historical payment method values
PAYMENT_METHOD_ALIASES = {
    "company_transfer": "transfer",
    "bank_transfer": "transfer",
    "bank": "transfer",
}


def normalize_payment_method(value: Any) -> str:
    """Map historical method values onto the current enum. Unknown values pass through."""
    if value is None:
        return "other"
    method = str(value).strip().lower()
    if not method:
        return "other"
    return PAYMENT_METHOD_ALIASES.get(method, method)
