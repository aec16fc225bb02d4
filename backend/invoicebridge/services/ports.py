# Overview: Pluggable collaborators the core calls into (customer dedup, stock side effects).

from __future__ import annotations

from typing import Protocol

from flask import current_app

from ..dto.customer import CustomerDTO
from ..dto.invoice import InvoiceDTO


class CustomerSync(Protocol):
    def sync(self, invoice: InvoiceDTO) -> int | None:
        """Return the customer id to store on the invoice (or None)."""


class InventoryHook(Protocol):
    def on_status_change(self, invoice: InvoiceDTO, old_status: str, new_status: str) -> None:
        """Called after an invoice's workflow status changed and was committed."""


class NullCustomerSync:
    """
    No deduplication. The matching key (tax id vs email) is a deployment
    decision, so nothing is created or matched here; an existing reference is
    kept as-is.
    """

    def sync(self, invoice: InvoiceDTO) -> int | None:
        return invoice.customer_id


class NullInventoryHook:
    def on_status_change(self, invoice: InvoiceDTO, old_status: str, new_status: str) -> None:
        return None


class TaxIdCustomerSync:
    """
    Deduplicates buyers on tax id: an invoice links to the oldest customer
    with the buyer's tax id, and a customer is created from the buyer
    snapshot when none exists. An invoice that already references a customer
    keeps it. Enabled with CUSTOMER_SYNC = "tax_id".
    """

    def __init__(self, customers):
        self.customers = customers

    def sync(self, invoice: InvoiceDTO) -> int | None:
        if invoice.customer_id:
            return invoice.customer_id
        if not (invoice.buyer_tax_id or "").strip():
            return None
        existing = self.customers.find_by_tax_id(invoice.buyer_tax_id)
        if existing is not None:
            return existing.id
        result = self.customers.create(CustomerDTO.from_invoice(invoice))
        if not result.ok:
            current_app.logger.warning(
                "Customer not created: %s", {"tax_id": invoice.buyer_tax_id, "errors": result.errors}
            )
            return None
        return result.id
