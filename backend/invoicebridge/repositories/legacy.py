# Overview: Read-only repositories over the legacy key-value representation.

"""
Legacy adapters.

Used while the relational tables are absent or still empty. They answer the
same read calls as the relational repositories by decoding host records on
the fly. Legacy invoices have no relational id, so find_by_id always misses
and items/payments are looked up through the invoice's host record id.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterator, Mapping

from ..dto.coerce import ZERO, quantize
from ..dto.invoice import InvoiceDTO
from ..dto.item import InvoiceItemDTO
from ..dto.payment import PaymentDTO
from ..errors import ValidationError
from ..stores import legacy_keys as keys
from ..stores.kv_store import KeyValueStore
from ..time_utils import to_utc_z
from .base import (
    INVOICE_FILTER_COLUMNS,
    SEARCH_COLUMNS,
    Page,
    is_descending,
    normalize_paging,
    ordering_key,
    parse_date_bound,
)
from .invoices import OUTSTANDING_THRESHOLD, build_statistics


def effective_date_of(invoice: InvoiceDTO) -> datetime | None:
    return invoice.activation_date or invoice.created_at


# Legacy rows have no relational id; the host record id stands in for it
INVOICE_SORT_VALUES = {
    "effective_date": lambda inv: effective_date_of(inv) or datetime.min,
    "created_at": lambda inv: inv.created_at or datetime.min,
    "invoice_number": lambda inv: inv.invoice_number,
    "total_amount": lambda inv: inv.total_amount,
    "balance": lambda inv: inv.balance,
    "id": lambda inv: inv.old_post_id,
}


def sort_invoices(found: list[InvoiceDTO], order_by: str | None = None, order: str | None = None) -> list[InvoiceDTO]:
    """Same ordering names and tiebreak as the relational reader."""
    value = INVOICE_SORT_VALUES[ordering_key(order_by)]
    return sorted(found, key=lambda inv: (value(inv), inv.old_post_id), reverse=is_descending(order))


def matches(invoice: InvoiceDTO, criteria: Mapping[str, Any] | None) -> bool:
    """Python rendition of the relational invoice filters."""
    effective = effective_date_of(invoice)
    for key, value in (criteria or {}).items():
        if value is None or value == "":
            continue
        if key == "date_from":
            if effective is None or effective < parse_date_bound(value):
                return False
        elif key == "date_to":
            bound = parse_date_bound(value, end=True)
            if effective is None:
                return False
            if bound.time() == datetime.min.time():
                if effective >= bound:
                    return False
            elif effective > bound:
                return False
        elif key == "search":
            needle = str(value).strip().lower()
            if not any(needle in str(getattr(invoice, name) or "").lower() for name in SEARCH_COLUMNS):
                return False
        elif key in INVOICE_FILTER_COLUMNS:
            actual = getattr(invoice, key)
            allowed = value if isinstance(value, (list, tuple, set)) else [value]
            if actual not in allowed and str(actual) not in {str(v) for v in allowed}:
                return False
        else:
            raise ValidationError(f"Unsupported filter: {key}")
    return True


class LegacyInvoiceRepository:
    def __init__(self, kv: KeyValueStore):
        self.kv = kv

    def _iter_invoices(self) -> Iterator[InvoiceDTO]:
        for host_id in self.kv.query_entities(keys.INVOICE_RECORD_TYPE, order_by="created_at", descending=True):
            invoice = InvoiceDTO.from_legacy_store(self.kv, host_id)
            if invoice is not None:
                yield invoice.prepared_for_write()

    def _matching(self, criteria, order_by: str | None = None, order: str | None = None) -> list[InvoiceDTO]:
        found = [inv for inv in self._iter_invoices() if matches(inv, criteria)]
        return sort_invoices(found, order_by, order)

    def find_by_id(self, invoice_id: int) -> InvoiceDTO | None:
        return None

    def find_by_host_id(self, host_id: int) -> InvoiceDTO | None:
        invoice = InvoiceDTO.from_legacy_store(self.kv, host_id)
        return invoice.prepared_for_write() if invoice is not None else None

    def find_by_invoice_number(self, invoice_number: str) -> InvoiceDTO | None:
        number = (invoice_number or "").strip().upper()
        host_ids = self.kv.query_entities(
            keys.INVOICE_RECORD_TYPE, equals={keys.INVOICE_NUMBER: number}, limit=1
        )
        return self.find_by_host_id(host_ids[0]) if host_ids else None

    def list_by_filter(
        self, criteria=None, page=1, page_size=None, *, order_by: str | None = None, order: str | None = None
    ) -> Page[InvoiceDTO]:
        page, page_size = normalize_paging(page, page_size)
        found = self._matching(criteria, order_by, order)
        start = (page - 1) * page_size
        return Page(found[start:start + page_size], len(found), page, page_size)

    def count(self, criteria=None) -> int:
        return len(self._matching(criteria))

    def statistics(self, criteria=None) -> dict:
        found = self._matching(criteria)
        methods: dict[str, dict] = {}
        item_count = 0
        for invoice in found:
            item_count += len([i for i in InvoiceItemDTO.from_legacy_store(self.kv, invoice.old_post_id) if i.product_name])
            for payment in PaymentDTO.from_legacy_store(self.kv, invoice.old_post_id):
                bucket = methods.setdefault(payment.payment_method, {"count": 0, "amount": ZERO})
                bucket["count"] += 1
                bucket["amount"] += payment.amount
        return build_statistics(
            count=len(found),
            revenue=sum((i.total_amount for i in found), ZERO),
            paid=sum((i.paid_amount for i in found), ZERO),
            outstanding=sum((i.balance for i in found), ZERO),
            standard=sum(1 for i in found if i.kind == "standard"),
            fictive=sum(1 for i in found if i.kind == "fictive"),
            outstanding_count=sum(1 for i in found if i.balance > OUTSTANDING_THRESHOLD),
            methods=methods,
            item_count=item_count,
        )

    def author_statistics(self, criteria=None) -> list[dict]:
        grouped: dict[Any, dict] = {}
        for invoice in self._matching(criteria):
            entry = grouped.setdefault(
                invoice.author_id,
                {"author_id": invoice.author_id, "invoice_count": 0, "revenue": ZERO, "paid": ZERO, "last": None},
            )
            entry["invoice_count"] += 1
            entry["revenue"] += invoice.total_amount
            entry["paid"] += invoice.paid_amount
            effective = effective_date_of(invoice)
            if effective and (entry["last"] is None or effective > entry["last"]):
                entry["last"] = effective
        return [
            {
                "author_id": e["author_id"],
                "invoice_count": e["invoice_count"],
                "revenue": str(quantize(e["revenue"])),
                "paid": str(quantize(e["paid"])),
                "last_invoice_date": to_utc_z(e["last"]),
            }
            for e in sorted(grouped.values(), key=lambda e: e["invoice_count"], reverse=True)
        ]


class LegacyItemRepository:
    def __init__(self, kv: KeyValueStore):
        self.kv = kv

    def list_for_host(self, host_id: int) -> list[InvoiceItemDTO]:
        items = [i for i in InvoiceItemDTO.from_legacy_store(self.kv, host_id) if i.product_name]
        for position, item in enumerate(items):
            item.sort_order = position
        return items


class LegacyPaymentRepository:
    def __init__(self, kv: KeyValueStore):
        self.kv = kv

    def list_for_host(self, host_id: int) -> list[PaymentDTO]:
        return [p for p in PaymentDTO.from_legacy_store(self.kv, host_id) if p.amount > 0]
