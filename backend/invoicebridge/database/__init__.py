from .reconciler import ReconcileReport, SchemaReconciler
from .schema import (
    MIGRATION_TABLES,
    SCHEMA_VERSION,
    customers,
    effective_date,
    invoice_items,
    invoices,
    payments,
    target_metadata,
)

__all__ = [
    'ReconcileReport', 'SchemaReconciler',
    'MIGRATION_TABLES', 'SCHEMA_VERSION', 'target_metadata', 'effective_date',
    'invoices', 'invoice_items', 'payments', 'customers',
]
