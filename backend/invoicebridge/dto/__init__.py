from .aliases import (
    CUSTOMER_ALIASES,
    INVOICE_ALIASES,
    ITEM_ALIASES,
    PAYMENT_ALIASES,
    FieldAliases,
    normalize_payment_method,
)
from .customer import CustomerDTO
from .invoice import INVOICE_KINDS, WORKFLOW_STATUSES, InvoiceDTO, kind_for_paid
from .item import InvoiceItemDTO
from .payment import PAYMENT_METHODS, PaymentDTO

__all__ = [
    'FieldAliases', 'INVOICE_ALIASES', 'ITEM_ALIASES', 'PAYMENT_ALIASES', 'CUSTOMER_ALIASES',
    'normalize_payment_method',
    'InvoiceDTO', 'InvoiceItemDTO', 'PaymentDTO', 'CustomerDTO',
    'INVOICE_KINDS', 'WORKFLOW_STATUSES', 'PAYMENT_METHODS', 'kind_for_paid',
]
