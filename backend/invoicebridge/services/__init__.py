from .invoice_service import InvoiceService, ServiceResult
from .migration_service import BatchResult, EntityOutcome, MigrationEngine, MigrationState
from .ports import CustomerSync, InventoryHook, NullCustomerSync, NullInventoryHook, TaxIdCustomerSync

__all__ = [
    'InvoiceService', 'ServiceResult',
    'MigrationEngine', 'MigrationState', 'BatchResult', 'EntityOutcome',
    'CustomerSync', 'InventoryHook', 'NullCustomerSync', 'NullInventoryHook', 'TaxIdCustomerSync',
]
