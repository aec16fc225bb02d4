# Overview: Repository bundle wiring relational, legacy and routing layers together.

from __future__ import annotations

from dataclasses import dataclass

from ..cache import TTLCache
from ..database.reconciler import SchemaReconciler
from ..stores.kv_store import KeyValueStore
from .base import Page, WriteResult
from .customers import RelationalCustomerRepository
from .invoices import RelationalInvoiceRepository
from .items import RelationalItemRepository
from .legacy import LegacyInvoiceRepository, LegacyItemRepository, LegacyPaymentRepository
from .payments import RelationalPaymentRepository
from .routing import InvoiceRepository, ItemRepository, PaymentRepository


@dataclass
class Repositories:
    invoices: InvoiceRepository
    items: ItemRepository
    payments: PaymentRepository
    customers: RelationalCustomerRepository


def build_repositories(
    kv: KeyValueStore, reconciler: SchemaReconciler, cache: TTLCache, *, number_prefix: str = "N"
) -> Repositories:
    return Repositories(
        invoices=InvoiceRepository(
            RelationalInvoiceRepository(cache, number_prefix), LegacyInvoiceRepository(kv), reconciler
        ),
        items=ItemRepository(RelationalItemRepository(cache), LegacyItemRepository(kv), reconciler),
        payments=PaymentRepository(RelationalPaymentRepository(cache), LegacyPaymentRepository(kv), reconciler),
        customers=RelationalCustomerRepository(cache),
    )


__all__ = [
    'Page', 'WriteResult', 'Repositories', 'build_repositories',
    'InvoiceRepository', 'ItemRepository', 'PaymentRepository',
    'RelationalInvoiceRepository', 'RelationalItemRepository', 'RelationalPaymentRepository',
    'RelationalCustomerRepository',
    'LegacyInvoiceRepository', 'LegacyItemRepository', 'LegacyPaymentRepository',
]
