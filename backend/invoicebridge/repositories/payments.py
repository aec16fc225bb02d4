# Overview: Relational repository for invoice payments.

from __future__ import annotations

from typing import Any, Mapping

import sqlalchemy as sa

from ..database.schema import invoices, payments
from ..dto.coerce import ZERO, parse_decimal, quantize
from ..dto.payment import PaymentDTO
from ..extensions import db
from ..time_utils import utcnow
from .base import RelationalRepository, WriteResult, invoice_filters, payments_key


def _row_to_payment(row) -> PaymentDTO:
    return PaymentDTO.from_dict(dict(row._mapping))


def _money(value: Any):
    return parse_decimal(value) if value is not None else ZERO


class RelationalPaymentRepository(RelationalRepository):
    table = payments

    def find_by_id(self, payment_id: int) -> PaymentDTO | None:
        def _load():
            row = db.session.execute(sa.select(payments).where(payments.c.id == payment_id)).first()
            return _row_to_payment(row) if row else None

        return self._read("find_payment_by_id", _load, payment_id=payment_id)

    def list_for_invoice(self, invoice_id: int) -> list[PaymentDTO]:
        def _load():
            rows = db.session.execute(
                sa.select(payments)
                .where(payments.c.invoice_id == invoice_id)
                .order_by(payments.c.payment_date.asc(), payments.c.id.asc())
            ).all()
            return [_row_to_payment(r) for r in rows]

        return self._read(
            "list_payments", lambda: self._cached(payments_key(invoice_id), _load), invoice_id=invoice_id
        )

    def total_paid(self, invoice_id: int):
        return self._read(
            "total_paid",
            lambda: _money(
                db.session.execute(
                    sa.select(sa.func.sum(payments.c.amount)).where(payments.c.invoice_id == invoice_id)
                ).scalar()
            ),
            invoice_id=invoice_id,
        )

    def summary(self, criteria: Mapping[str, Any] | None = None) -> dict:
        """Count / sum / average of payments on invoices matching criteria."""
        clauses = invoice_filters(criteria)

        def _load():
            count, total = db.session.execute(
                sa.select(sa.func.count(payments.c.id), sa.func.sum(payments.c.amount))
                .select_from(payments.join(invoices, invoices.c.id == payments.c.invoice_id))
                .where(*clauses)
            ).one()
            count = int(count or 0)
            total = _money(total)
            return {
                "payment_count": count,
                "total_amount": str(total),
                "average_amount": str(quantize(total / count) if count else ZERO),
            }

        return self._read("payment_summary", _load)

    def method_breakdown(self, criteria: Mapping[str, Any] | None = None) -> dict:
        clauses = invoice_filters(criteria)

        def _load():
            rows = db.session.execute(
                sa.select(payments.c.payment_method, sa.func.count(payments.c.id), sa.func.sum(payments.c.amount))
                .select_from(payments.join(invoices, invoices.c.id == payments.c.invoice_id))
                .where(*clauses)
                .group_by(payments.c.payment_method)
            ).all()
            return {method: {"count": int(c or 0), "amount": str(_money(a))} for method, c, a in rows}

        return self._read("payment_method_breakdown", _load)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, payment: PaymentDTO) -> WriteResult:
        errors = payment.validate()
        if errors:
            return WriteResult.failure(errors, "validation")

        def _op():
            if not self._invoice_exists(payment.invoice_id):
                return WriteResult.failure(f"Invoice {payment.invoice_id} does not exist", "integrity")
            row = payment.to_row()
            row["created_at"] = payment.created_at or utcnow()
            result = db.session.execute(sa.insert(payments).values(**row))
            self.cache.delete(payments_key(payment.invoice_id))
            return WriteResult.success(result.inserted_primary_key[0])

        return self._write("create_payment", _op, invoice_id=payment.invoice_id)

    def update(self, payment_id: int, payment: PaymentDTO) -> WriteResult:
        def _op():
            existing = self.find_by_id(payment_id)
            if existing is None:
                return WriteResult.failure(f"Payment {payment_id} not found", "not_found")
            if payment.invoice_id and payment.invoice_id != existing.invoice_id:
                return WriteResult.failure("Invoice reference of a payment cannot change", "validation")
            payment.invoice_id = existing.invoice_id
            errors = payment.validate()
            if errors:
                return WriteResult.failure(errors, "validation")
            row = payment.to_row()
            row["created_at"] = existing.created_at
            db.session.execute(sa.update(payments).where(payments.c.id == payment_id).values(**row))
            self.cache.delete(payments_key(existing.invoice_id))
            return WriteResult.success(payment_id)

        return self._write("update_payment", _op, payment_id=payment_id)

    def delete(self, payment_id: int) -> WriteResult:
        def _op():
            existing = self.find_by_id(payment_id)
            if existing is None:
                return WriteResult.failure(f"Payment {payment_id} not found", "not_found")
            db.session.execute(sa.delete(payments).where(payments.c.id == payment_id))
            self.cache.delete(payments_key(existing.invoice_id))
            return WriteResult.success(payment_id)

        return self._write("delete_payment", _op, payment_id=payment_id)

    def delete_by_invoice(self, invoice_id: int) -> WriteResult:
        def _op():
            result = db.session.execute(sa.delete(payments).where(payments.c.invoice_id == invoice_id))
            self.cache.delete(payments_key(invoice_id))
            return WriteResult.success(invoice_id, affected=result.rowcount or 0)

        return self._write("delete_payments_by_invoice", _op, invoice_id=invoice_id)
