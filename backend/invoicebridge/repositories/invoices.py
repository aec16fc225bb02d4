# Overview: Relational invoice repository (CRUD, natural-key lookups, aggregates).

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping

import sqlalchemy as sa

from ..database.schema import effective_date, invoice_items, invoices, payments
from ..dto.coerce import ZERO, parse_decimal, quantize
from ..dto.invoice import DEFAULT_NUMBER_PREFIX, InvoiceDTO
from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .base import (
    Page,
    RelationalRepository,
    WriteResult,
    invoice_filters,
    invoice_host_key,
    invoice_key,
    invoice_number_key,
    invoice_ordering,
    items_key,
    normalize_paging,
    payments_key,
)


OUTSTANDING_THRESHOLD = parse_decimal("0.01")


def _money(value: Any):
    return parse_decimal(value) if value is not None else ZERO


def _row_to_invoice(row) -> InvoiceDTO | None:
    if row is None:
        return None
    return InvoiceDTO.from_dict(dict(row._mapping))


class RelationalInvoiceRepository(RelationalRepository):
    table = invoices

    def __init__(self, cache, number_prefix: str = DEFAULT_NUMBER_PREFIX):
        super().__init__(cache)
        self.number_prefix = number_prefix

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _fetch_one(self, *where) -> InvoiceDTO | None:
        row = db.session.execute(sa.select(invoices).where(*where).limit(1)).first()
        return _row_to_invoice(row)

    def find_by_id(self, invoice_id: int) -> InvoiceDTO | None:
        return self._read(
            "find_by_id",
            lambda: self._cached(invoice_key(invoice_id), lambda: self._fetch_one(invoices.c.id == invoice_id)),
            invoice_id=invoice_id,
        )

    def find_by_invoice_number(self, invoice_number: str) -> InvoiceDTO | None:
        number = (invoice_number or "").strip().upper()
        return self._read(
            "find_by_invoice_number",
            lambda: self._cached(
                invoice_number_key(number), lambda: self._fetch_one(invoices.c.invoice_number == number)
            ),
            invoice_number=number,
        )

    def find_by_host_id(self, host_id: int, *, use_cache: bool = True) -> InvoiceDTO | None:
        def _load():
            return self._fetch_one(invoices.c.old_post_id == host_id)

        if not use_cache:
            return self._read("find_by_host_id", _load, host_id=host_id)
        return self._read(
            "find_by_host_id", lambda: self._cached(invoice_host_key(host_id), _load), host_id=host_id
        )

    def exists(self, invoice_id: int) -> bool:
        return self._read("exists", lambda: self._invoice_exists(invoice_id), invoice_id=invoice_id)

    def list_by_filter(
        self,
        criteria: Mapping[str, Any] | None = None,
        page: int | None = 1,
        page_size: int | None = None,
        *,
        order_by: str | None = None,
        order: str | None = None,
    ) -> Page[InvoiceDTO]:
        page, page_size = normalize_paging(page, page_size)
        clauses = invoice_filters(criteria)
        ordering = invoice_ordering(order_by, order)

        def _load():
            total = db.session.execute(
                sa.select(sa.func.count(invoices.c.id)).where(*clauses)
            ).scalar() or 0
            rows = db.session.execute(
                sa.select(invoices)
                .where(*clauses)
                .order_by(*ordering)
                .limit(page_size)
                .offset((page - 1) * page_size)
            ).all()
            return Page([_row_to_invoice(r) for r in rows], int(total), page, page_size)

        return self._read("list_by_filter", _load, criteria=dict(criteria or {}))

    def count(self, criteria: Mapping[str, Any] | None = None) -> int:
        clauses = invoice_filters(criteria)
        return self._read(
            "count",
            lambda: int(db.session.execute(sa.select(sa.func.count(invoices.c.id)).where(*clauses)).scalar() or 0),
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _number_taken(self, invoice_number: str, *, exclude_id: int | None = None) -> bool:
        stmt = sa.select(invoices.c.id).where(invoices.c.invoice_number == invoice_number)
        if exclude_id is not None:
            stmt = stmt.where(invoices.c.id != exclude_id)
        return db.session.execute(stmt.limit(1)).first() is not None

    def _invalidate(self, invoice: InvoiceDTO, invoice_id: int | None) -> None:
        keys = [invoice_number_key(invoice.invoice_number), invoice_host_key(invoice.old_post_id)]
        if invoice_id is not None:
            keys.append(invoice_key(invoice_id))
        self.cache.delete(*keys)

    def create(self, invoice: InvoiceDTO) -> WriteResult:
        prepared = invoice.prepared_for_write()
        errors = prepared.validate(self.number_prefix)
        if errors:
            return WriteResult.failure(errors, "validation")

        def _op():
            if self._number_taken(prepared.invoice_number):
                return WriteResult.failure(
                    f"Invoice number already exists: {prepared.invoice_number}", "integrity"
                )
            now = utcnow()
            row = prepared.to_row()
            row["created_at"] = prepared.created_at or now
            row["updated_at"] = now
            result = db.session.execute(sa.insert(invoices).values(**row))
            new_id = result.inserted_primary_key[0]
            self._invalidate(prepared, new_id)
            return WriteResult.success(new_id)

        return self._write("create_invoice", _op, invoice_number=prepared.invoice_number, host_id=prepared.old_post_id)

    def update(self, invoice_id: int, invoice: InvoiceDTO) -> WriteResult:
        prepared = invoice.prepared_for_write()
        errors = prepared.validate(self.number_prefix)
        if errors:
            return WriteResult.failure(errors, "validation")

        def _op():
            existing = self._fetch_one(invoices.c.id == invoice_id)
            if existing is None:
                return WriteResult.failure(f"Invoice {invoice_id} not found", "not_found")
            if self._number_taken(prepared.invoice_number, exclude_id=invoice_id):
                return WriteResult.failure(
                    f"Invoice number already exists: {prepared.invoice_number}", "integrity"
                )
            row = prepared.to_row()
            row["created_at"] = prepared.created_at or existing.created_at
            row["updated_at"] = utcnow()
            db.session.execute(sa.update(invoices).where(invoices.c.id == invoice_id).values(**row))
            self._invalidate(existing, invoice_id)
            self._invalidate(prepared, invoice_id)
            return WriteResult.success(invoice_id)

        return self._write("update_invoice", _op, invoice_id=invoice_id)

    def delete(self, invoice_id: int) -> WriteResult:
        """Administrative delete. Items and payments go first."""

        def _op():
            existing = self._fetch_one(invoices.c.id == invoice_id)
            if existing is None:
                return WriteResult.failure(f"Invoice {invoice_id} not found", "not_found")
            db.session.execute(sa.delete(payments).where(payments.c.invoice_id == invoice_id))
            db.session.execute(sa.delete(invoice_items).where(invoice_items.c.invoice_id == invoice_id))
            db.session.execute(sa.delete(invoices).where(invoices.c.id == invoice_id))
            self._invalidate(existing, invoice_id)
            self.cache.delete(items_key(invoice_id), payments_key(invoice_id))
            return WriteResult.success(invoice_id)

        return self._write("delete_invoice", _op, invoice_id=invoice_id)

    def next_invoice_number(self, prefix: str, base: int) -> str:
        """prefix + (highest numeric suffix + 1), or base + 1 when none exist."""
        suffix = sa.cast(sa.func.substr(invoices.c.invoice_number, len(prefix) + 1), sa.Integer)

        def _load():
            current = db.session.execute(
                sa.select(sa.func.max(suffix)).where(invoices.c.invoice_number.like(f"{prefix}%"))
            ).scalar()
            return max(int(current or 0), base) + 1

        return f"{prefix}{self._read('next_invoice_number', _load):08d}"

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def statistics(self, criteria: Mapping[str, Any] | None = None) -> dict:
        clauses = invoice_filters(criteria)

        def _load():
            totals = db.session.execute(
                sa.select(
                    sa.func.count(invoices.c.id),
                    sa.func.sum(invoices.c.total_amount),
                    sa.func.sum(invoices.c.paid_amount),
                    sa.func.sum(invoices.c.balance),
                    sa.func.sum(sa.case((invoices.c.kind == "standard", 1), else_=0)),
                    sa.func.sum(sa.case((invoices.c.kind == "fictive", 1), else_=0)),
                    sa.func.sum(sa.case((invoices.c.balance > OUTSTANDING_THRESHOLD, 1), else_=0)),
                ).where(*clauses)
            ).one()
            count, revenue, paid, outstanding, standard, fictive, outstanding_count = totals

            methods = db.session.execute(
                sa.select(
                    payments.c.payment_method,
                    sa.func.count(payments.c.id),
                    sa.func.sum(payments.c.amount),
                )
                .select_from(payments.join(invoices, invoices.c.id == payments.c.invoice_id))
                .where(*clauses)
                .group_by(payments.c.payment_method)
            ).all()

            item_count = db.session.execute(
                sa.select(sa.func.count(invoice_items.c.id))
                .select_from(invoice_items.join(invoices, invoices.c.id == invoice_items.c.invoice_id))
                .where(*clauses)
            ).scalar()

            return build_statistics(
                count=int(count or 0),
                revenue=_money(revenue),
                paid=_money(paid),
                outstanding=_money(outstanding),
                standard=int(standard or 0),
                fictive=int(fictive or 0),
                outstanding_count=int(outstanding_count or 0),
                methods={m: {"count": int(c or 0), "amount": _money(a)} for m, c, a in methods},
                item_count=int(item_count or 0),
            )

        return self._read("statistics", _load)

    def author_statistics(self, criteria: Mapping[str, Any] | None = None) -> list[dict]:
        clauses = invoice_filters(criteria)
        eff = effective_date(invoices)

        def _load():
            rows = db.session.execute(
                sa.select(
                    invoices.c.author_id,
                    sa.func.count(invoices.c.id),
                    sa.func.sum(invoices.c.total_amount),
                    sa.func.sum(invoices.c.paid_amount),
                    sa.func.max(eff),
                )
                .where(*clauses)
                .group_by(invoices.c.author_id)
                .order_by(sa.func.count(invoices.c.id).desc())
            ).all()
            return [
                {
                    "author_id": author_id,
                    "invoice_count": int(count or 0),
                    "revenue": str(_money(revenue)),
                    "paid": str(_money(paid)),
                    "last_invoice_date": to_utc_z(last) if isinstance(last, datetime) else last,
                }
                for author_id, count, revenue, paid, last in rows
            ]

        return self._read("author_statistics", _load)


def build_statistics(
    *,
    count: int,
    revenue,
    paid,
    outstanding,
    standard: int,
    fictive: int,
    outstanding_count: int,
    methods: dict,
    item_count: int,
) -> dict:
    """Single shape for relational and legacy statistics."""
    average = quantize(revenue / count) if count else ZERO
    return {
        "invoice_count": count,
        "total_revenue": str(quantize(revenue)),
        "total_paid": str(quantize(paid)),
        "total_outstanding": str(quantize(outstanding)),
        "average_invoice": str(average),
        "standard_count": standard,
        "fictive_count": fictive,
        "outstanding_count": outstanding_count,
        "payment_methods": {
            method: {"count": data["count"], "amount": str(quantize(data["amount"]))}
            for method, data in sorted(methods.items())
        },
        "item_count": item_count,
    }
