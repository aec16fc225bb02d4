# Overview: Strangler-fig facades choosing the relational or legacy repository per call.

"""
Repository routing.

Call sites talk to these facades only. Each call asks the reconciler whether
the relational tables are ready and answers from the relational repository
if so, otherwise from the legacy key-value adapter:

- lookups by id go to the relational store only (legacy rows have no id);
- natural-key lookups try the relational store and fall back to the legacy
  record when it has not been migrated yet;
- lists and aggregates use the relational store once it exists and holds
  data, the legacy adapter before that;
- writes require the relational tables and fail with `unavailable` otherwise.
"""

from __future__ import annotations

from typing import Any, Mapping

from ..database.reconciler import SchemaReconciler
from ..dto.invoice import InvoiceDTO
from ..dto.item import InvoiceItemDTO
from ..dto.payment import PaymentDTO
from .base import Page, WriteResult
from .invoices import RelationalInvoiceRepository
from .items import RelationalItemRepository
from .legacy import LegacyInvoiceRepository, LegacyItemRepository, LegacyPaymentRepository
from .payments import RelationalPaymentRepository


TABLES_NOT_READY = "Relational tables are not ready"


class _Routed:
    def __init__(self, reconciler: SchemaReconciler):
        self.reconciler = reconciler

    def tables_ready(self) -> bool:
        return self.reconciler.tables_exist()

    def tables_populated(self) -> bool:
        return self.reconciler.tables_have_data()


class InvoiceRepository(_Routed):
    def __init__(self, relational: RelationalInvoiceRepository, legacy: LegacyInvoiceRepository, reconciler):
        super().__init__(reconciler)
        self.relational = relational
        self.legacy = legacy

    def find_by_id(self, invoice_id: int) -> InvoiceDTO | None:
        if not self.tables_ready():
            return self.legacy.find_by_id(invoice_id)
        return self.relational.find_by_id(invoice_id)

    def find_by_invoice_number(self, invoice_number: str) -> InvoiceDTO | None:
        if self.tables_ready():
            found = self.relational.find_by_invoice_number(invoice_number)
            if found is not None:
                return found
        return self.legacy.find_by_invoice_number(invoice_number)

    def find_by_host_id(self, host_id: int) -> InvoiceDTO | None:
        if self.tables_ready():
            found = self.relational.find_by_host_id(host_id)
            if found is not None:
                return found
        return self.legacy.find_by_host_id(host_id)

    def _reader(self):
        return self.relational if self.tables_populated() else self.legacy

    def list_by_filter(self, criteria: Mapping[str, Any] | None = None, page=1, page_size=None, **ordering) -> Page[InvoiceDTO]:
        return self._reader().list_by_filter(criteria, page, page_size, **ordering)

    def count(self, criteria: Mapping[str, Any] | None = None) -> int:
        return self._reader().count(criteria)

    def statistics(self, criteria: Mapping[str, Any] | None = None) -> dict:
        return self._reader().statistics(criteria)

    def author_statistics(self, criteria: Mapping[str, Any] | None = None) -> list[dict]:
        return self._reader().author_statistics(criteria)

    def create(self, invoice: InvoiceDTO) -> WriteResult:
        if not self.tables_ready():
            return WriteResult.failure(TABLES_NOT_READY, "unavailable")
        return self.relational.create(invoice)

    def update(self, invoice_id: int, invoice: InvoiceDTO) -> WriteResult:
        if not self.tables_ready():
            return WriteResult.failure(TABLES_NOT_READY, "unavailable")
        return self.relational.update(invoice_id, invoice)

    def delete(self, invoice_id: int) -> WriteResult:
        if not self.tables_ready():
            return WriteResult.failure(TABLES_NOT_READY, "unavailable")
        return self.relational.delete(invoice_id)


class ItemRepository(_Routed):
    def __init__(self, relational: RelationalItemRepository, legacy: LegacyItemRepository, reconciler):
        super().__init__(reconciler)
        self.relational = relational
        self.legacy = legacy

    def list_for_invoice(self, invoice: InvoiceDTO) -> list[InvoiceItemDTO]:
        if invoice.id is not None and self.tables_ready():
            return self.relational.list_for_invoice(invoice.id)
        return self.legacy.list_for_host(invoice.old_post_id)

    def count_for_invoice(self, invoice: InvoiceDTO) -> int:
        if invoice.id is not None and self.tables_ready():
            return self.relational.count_for_invoice(invoice.id)
        return len(self.legacy.list_for_host(invoice.old_post_id))

    def bulk_insert(self, invoice_id: int, items: list[InvoiceItemDTO]) -> WriteResult:
        if not self.tables_ready():
            return WriteResult.failure(TABLES_NOT_READY, "unavailable")
        return self.relational.bulk_insert(invoice_id, items)

    def delete_by_invoice(self, invoice_id: int) -> WriteResult:
        if not self.tables_ready():
            return WriteResult.failure(TABLES_NOT_READY, "unavailable")
        return self.relational.delete_by_invoice(invoice_id)


class PaymentRepository(_Routed):
    def __init__(self, relational: RelationalPaymentRepository, legacy: LegacyPaymentRepository, reconciler):
        super().__init__(reconciler)
        self.relational = relational
        self.legacy = legacy

    def list_for_invoice(self, invoice: InvoiceDTO) -> list[PaymentDTO]:
        if invoice.id is not None and self.tables_ready():
            return self.relational.list_for_invoice(invoice.id)
        return self.legacy.list_for_host(invoice.old_post_id)

    def create(self, payment: PaymentDTO) -> WriteResult:
        if not self.tables_ready():
            return WriteResult.failure(TABLES_NOT_READY, "unavailable")
        return self.relational.create(payment)

    def delete_by_invoice(self, invoice_id: int) -> WriteResult:
        if not self.tables_ready():
            return WriteResult.failure(TABLES_NOT_READY, "unavailable")
        return self.relational.delete_by_invoice(invoice_id)
