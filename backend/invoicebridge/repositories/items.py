# Overview: Relational repository for invoice line items.

from __future__ import annotations

from typing import Any, Iterable, Mapping

import sqlalchemy as sa

from ..database.schema import invoice_items, invoices
from ..dto.coerce import ZERO, parse_decimal
from ..dto.item import InvoiceItemDTO
from ..extensions import db
from ..time_utils import utcnow
from .base import RelationalRepository, WriteResult, invoice_filters, items_key


def _row_to_item(row) -> InvoiceItemDTO:
    return InvoiceItemDTO.from_dict(dict(row._mapping))


class RelationalItemRepository(RelationalRepository):
    table = invoice_items

    def find_by_id(self, item_id: int) -> InvoiceItemDTO | None:
        def _load():
            row = db.session.execute(sa.select(invoice_items).where(invoice_items.c.id == item_id)).first()
            return _row_to_item(row) if row else None

        return self._read("find_item_by_id", _load, item_id=item_id)

    def list_for_invoice(self, invoice_id: int) -> list[InvoiceItemDTO]:
        """Items in display order (sort_order, then id)."""

        def _load():
            rows = db.session.execute(
                sa.select(invoice_items)
                .where(invoice_items.c.invoice_id == invoice_id)
                .order_by(invoice_items.c.sort_order.asc(), invoice_items.c.id.asc())
            ).all()
            return [_row_to_item(r) for r in rows]

        return self._read(
            "list_items", lambda: self._cached(items_key(invoice_id), _load), invoice_id=invoice_id
        )

    def count_for_invoice(self, invoice_id: int) -> int:
        return self._read(
            "count_items",
            lambda: int(
                db.session.execute(
                    sa.select(sa.func.count(invoice_items.c.id)).where(invoice_items.c.invoice_id == invoice_id)
                ).scalar() or 0
            ),
            invoice_id=invoice_id,
        )

    def quantity_by_product(self, criteria: Mapping[str, Any] | None = None) -> list[dict]:
        clauses = invoice_filters(criteria)

        def _load():
            rows = db.session.execute(
                sa.select(
                    invoice_items.c.product_id,
                    sa.func.max(invoice_items.c.product_name),
                    sa.func.sum(invoice_items.c.quantity),
                    sa.func.sum(invoice_items.c.line_total),
                )
                .select_from(invoice_items.join(invoices, invoices.c.id == invoice_items.c.invoice_id))
                .where(*clauses)
                .group_by(invoice_items.c.product_id)
                .order_by(sa.func.sum(invoice_items.c.line_total).desc())
            ).all()
            return [
                {
                    "product_id": product_id,
                    "product_name": name,
                    "quantity": str(parse_decimal(qty) if qty is not None else ZERO),
                    "revenue": str(parse_decimal(revenue) if revenue is not None else ZERO),
                }
                for product_id, name, qty, revenue in rows
            ]

        return self._read("quantity_by_product", _load)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, item: InvoiceItemDTO) -> WriteResult:
        errors = item.validate()
        if errors:
            return WriteResult.failure(errors, "validation")

        def _op():
            if not self._invoice_exists(item.invoice_id):
                return WriteResult.failure(f"Invoice {item.invoice_id} does not exist", "integrity")
            row = item.to_row()
            row["created_at"] = item.created_at or utcnow()
            result = db.session.execute(sa.insert(invoice_items).values(**row))
            self.cache.delete(items_key(item.invoice_id))
            return WriteResult.success(result.inserted_primary_key[0])

        return self._write("create_item", _op, invoice_id=item.invoice_id)

    def bulk_insert(self, invoice_id: int, items: Iterable[InvoiceItemDTO]) -> WriteResult:
        """
        Insert all items for one invoice in a single statement.

        Every item is validated first; one bad item rejects the whole set.
        sort_order is renumbered from list position.
        """
        rows = []
        errors = []
        now = utcnow()
        for position, item in enumerate(items):
            item.invoice_id = invoice_id
            item_errors = item.validate()
            if item_errors:
                errors.extend(f"Item {position + 1}: {message}" for message in item_errors)
                continue
            row = item.to_row()
            row["sort_order"] = position
            row["created_at"] = item.created_at or now
            rows.append(row)
        if errors:
            return WriteResult.failure(errors, "validation")
        if not rows:
            return WriteResult.success(affected=0)

        def _op():
            if not self._invoice_exists(invoice_id):
                return WriteResult.failure(f"Invoice {invoice_id} does not exist", "integrity")
            db.session.execute(sa.insert(invoice_items), rows)
            self.cache.delete(items_key(invoice_id))
            return WriteResult.success(affected=len(rows))

        return self._write("bulk_insert_items", _op, invoice_id=invoice_id, count=len(rows))

    def update(self, item_id: int, item: InvoiceItemDTO) -> WriteResult:
        def _op():
            existing = self.find_by_id(item_id)
            if existing is None:
                return WriteResult.failure(f"Item {item_id} not found", "not_found")
            if item.invoice_id and item.invoice_id != existing.invoice_id:
                return WriteResult.failure("Invoice reference of an item cannot change", "validation")
            item.invoice_id = existing.invoice_id
            errors = item.validate()
            if errors:
                return WriteResult.failure(errors, "validation")
            row = item.to_row()
            row["created_at"] = existing.created_at
            db.session.execute(sa.update(invoice_items).where(invoice_items.c.id == item_id).values(**row))
            self.cache.delete(items_key(existing.invoice_id))
            return WriteResult.success(item_id)

        return self._write("update_item", _op, item_id=item_id)

    def delete(self, item_id: int) -> WriteResult:
        def _op():
            existing = self.find_by_id(item_id)
            if existing is None:
                return WriteResult.failure(f"Item {item_id} not found", "not_found")
            db.session.execute(sa.delete(invoice_items).where(invoice_items.c.id == item_id))
            self.cache.delete(items_key(existing.invoice_id))
            return WriteResult.success(item_id)

        return self._write("delete_item", _op, item_id=item_id)

    def delete_by_invoice(self, invoice_id: int) -> WriteResult:
        def _op():
            result = db.session.execute(sa.delete(invoice_items).where(invoice_items.c.invoice_id == invoice_id))
            self.cache.delete(items_key(invoice_id))
            return WriteResult.success(invoice_id, affected=result.rowcount or 0)

        return self._write("delete_items_by_invoice", _op, invoice_id=invoice_id)
