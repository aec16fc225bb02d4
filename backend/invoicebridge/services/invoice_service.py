# Overview: Invoice lifecycle operations; keeps relational rows and the legacy mirror consistent.

"""
Invoice Lifecycle Service

================================================================================
PURPOSE: Create/update invoices and reconcile the activation latch
================================================================================

KIND (derived at write time):
    paid_amount > 0  -> standard
    otherwise        -> fictive
    proforma is only ever set explicitly and is kept as set.

ACTIVATION LATCH (kind x activation_date):
    create                          -> activation_date NULL (even if born standard)
    fictive -> standard, NULL latch -> created_at = activation_date = realization timestamp
    fictive -> standard, latch set  -> no date change
    standard -> fictive             -> activation_date NULL, created_at NOT restored
    anything else                   -> no date change

REALIZATION TIMESTAMP:
    earliest dated positive payment; a date-only value gets the current time
    of day; no usable date -> now.

SIDE EFFECTS:
- When created_at moves, the host record's creation timestamp is rewritten
  to match (validated write; a rejected sync fails the update).
- Every create/update mirrors buyer/items/payments/note into the host
  record's meta fields. The legacy activation marker is set only when a
  non-null activation_date is persisted, deleted when kind is fictive, and
  otherwise left untouched.

Each public write is one unit of work: commit on success, rollback (and
cache clear) on any failure.
================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Any, Iterable, Mapping

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..cache import TTLCache
from ..database.reconciler import SchemaReconciler
from ..dto.aliases import PAYMENT_ALIASES
from ..dto.coerce import ZERO, parse_decimal, quantize
from ..dto.invoice import WORKFLOW_STATUSES, InvoiceDTO, kind_for_paid
from ..dto.item import InvoiceItemDTO
from ..dto.payment import PaymentDTO
from ..errors import NotFoundError, SchemaError, TransportError
from ..extensions import db
from ..repositories import Page, Repositories, WriteResult
from ..stores import legacy_keys as keys
from ..stores.kv_store import KeyValueStore
from ..time_utils import DATE_ONLY_RE, SQL_DATETIME_FORMAT, SQL_DATETIME_RE, coerce_datetime, format_sql_datetime, utcnow
from .ports import CustomerSync, InventoryHook, NullCustomerSync, NullInventoryHook


HEADER_FIELDS = (
    "invoice_number",
    "buyer_name",
    "buyer_tax_id",
    "buyer_address",
    "buyer_phone",
    "buyer_email",
    "customer_id",
    "kind",
    "workflow_status",
    "rs_uploaded",
    "general_note",
)

BUYER_FIELDS = ("name", "tax_id", "address", "phone", "email")


@dataclass
class ServiceResult:
    ok: bool
    invoice_id: int | None = None
    host_id: int | None = None
    errors: list[str] = field(default_factory=list)
    error_kind: str | None = None
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def from_write(cls, result: WriteResult) -> "ServiceResult":
        return cls(ok=False, errors=result.errors, error_kind=result.error_kind)

    def to_dict(self) -> dict:
        data = {"ok": self.ok, "invoice_id": self.invoice_id, "host_id": self.host_id}
        if self.errors:
            data["errors"] = self.errors
            data["error_kind"] = self.error_kind
        if self.warnings:
            data["warnings"] = self.warnings
        return data


def header_from_payload(payload: Mapping[str, Any]) -> dict:
    """Flatten the request payload into canonical header fields (absent keys stay absent)."""
    header = {name: payload[name] for name in HEADER_FIELDS if name in payload}
    buyer = payload.get("buyer")
    if isinstance(buyer, Mapping):
        for name in BUYER_FIELDS:
            if name in buyer:
                header[f"buyer_{name}"] = buyer[name]
    return header


def payment_entries(payload: Mapping[str, Any]) -> list | None:
    """Payment list under either key; None when the payload does not carry one."""
    for key in ("payments", "payment_history"):
        if key in payload:
            value = payload[key]
            return list(value) if isinstance(value, (list, tuple)) else []
    return None


class InvoiceService:
    def __init__(
        self,
        kv: KeyValueStore,
        repositories: Repositories,
        reconciler: SchemaReconciler,
        cache: TTLCache,
        *,
        customer_sync: CustomerSync | None = None,
        inventory_hook: InventoryHook | None = None,
        number_prefix: str = "N",
        number_base: int = 25000000,
    ):
        self.kv = kv
        self.repositories = repositories
        self.reconciler = reconciler
        self.cache = cache
        self.customer_sync = customer_sync or NullCustomerSync()
        self.inventory_hook = inventory_hook or NullInventoryHook()
        self.number_prefix = number_prefix
        self.number_base = number_base

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _rollback(self) -> None:
        db.session.rollback()
        self.cache.clear()

    def _fail(self, errors, kind: str) -> ServiceResult:
        self._rollback()
        return ServiceResult(ok=False, errors=[errors] if isinstance(errors, str) else list(errors), error_kind=kind)

    def sanitize_items(self, entries: Iterable[Any], *, reference_time: datetime | None = None) -> tuple[list[InvoiceItemDTO], list[str]]:
        """Decode submitted items; rows without a name are dropped."""
        items = []
        errors = []
        for item in InvoiceItemDTO.list_from_raw(list(entries or []), reference_time=reference_time):
            if not item.product_name:
                continue
            problems = item.validate(require_invoice=False)
            if problems:
                errors.extend(f"Item {len(items) + 1}: {p}" for p in problems)
            items.append(item)
        return items, errors

    def sanitize_payments(self, entries: Iterable[Any], *, today: date | None = None) -> tuple[list[PaymentDTO], list[str]]:
        """Decode submitted payments; non-positive amounts are dropped."""
        payments = []
        errors = []
        for payment in PaymentDTO.list_from_raw(list(entries or []), today=today):
            if payment.amount <= 0 and not payment.decode_errors:
                continue
            problems = payment.validate(require_invoice=False)
            if problems:
                errors.extend(f"Payment {len(payments) + 1}: {p}" for p in problems)
            payments.append(payment)
        return payments, errors

    @staticmethod
    def apply_totals(invoice: InvoiceDTO, items: list[InvoiceItemDTO], payments: list[PaymentDTO]) -> None:
        """Subtotal from line totals; tax and discount are not modelled yet (0)."""
        invoice.subtotal = quantize(sum((item.line_total for item in items), ZERO))
        invoice.tax_amount = ZERO
        invoice.discount_amount = ZERO
        invoice.total_amount = invoice.subtotal
        invoice.paid_amount = quantize(sum((payment.amount for payment in payments), ZERO))
        invoice.balance = quantize(invoice.total_amount - invoice.paid_amount)

    def realization_timestamp(self, entries: Iterable[Any], now: datetime) -> datetime:
        candidates = []
        for entry in entries or []:
            raw = entry.to_dict() if isinstance(entry, PaymentDTO) else entry
            if not isinstance(raw, Mapping):
                continue
            try:
                if parse_decimal(PAYMENT_ALIASES.value(raw, "amount") or 0) <= 0:
                    continue
            except ValueError:
                continue
            value = PAYMENT_ALIASES.value(raw, "payment_date")
            try:
                parsed = coerce_datetime(value)
            except ValueError:
                continue
            if parsed is None:
                continue
            date_only = (isinstance(value, date) and not isinstance(value, datetime)) or (
                isinstance(value, str) and DATE_ONLY_RE.match(value.strip())
            )
            if date_only:
                parsed = datetime.combine(parsed.date(), now.time())
            candidates.append(parsed)
        return min(candidates) if candidates else now

    @staticmethod
    def apply_activation(existing: InvoiceDTO, invoice: InvoiceDTO, realization: datetime) -> bool:
        """
        Apply the latch to `invoice` given the stored `existing` row.
        Returns True when created_at was moved.
        """
        invoice.created_at = existing.created_at
        invoice.activation_date = existing.activation_date
        if existing.kind == "fictive" and invoice.kind == "standard":
            if existing.activation_date is None:
                invoice.created_at = realization
                invoice.activation_date = realization
                return True
        elif existing.kind == "standard" and invoice.kind == "fictive":
            invoice.activation_date = None
        return False

    def generate_invoice_number(self) -> str:
        if self.reconciler.tables_exist():
            return self.repositories.invoices.relational.next_invoice_number(self.number_prefix, self.number_base)
        return f"{self.number_prefix}{self.number_base + 1:08d}"

    # ------------------------------------------------------------------
    # Host record sync / legacy mirror
    # ------------------------------------------------------------------

    def sync_host_created_at(self, host_id: Any, timestamp: Any) -> bool:
        """Rewrite the host record's creation timestamp. Rejects non-numeric ids and malformed timestamps."""
        if isinstance(host_id, bool):
            return False
        if isinstance(host_id, str) and host_id.strip().isdigit():
            host_id = int(host_id.strip())
        if not isinstance(host_id, int) or host_id <= 0:
            current_app.logger.warning("Host timestamp sync rejected: invalid host id %r", host_id)
            return False

        text = format_sql_datetime(timestamp) if isinstance(timestamp, datetime) else str(timestamp or "")
        if not SQL_DATETIME_RE.match(text):
            current_app.logger.warning("Host timestamp sync rejected: malformed timestamp %r", timestamp)
            return False
        try:
            parsed = datetime.strptime(text, SQL_DATETIME_FORMAT)
        except ValueError:
            current_app.logger.warning("Host timestamp sync rejected: invalid timestamp %r", timestamp)
            return False
        return self.kv.set_created_at(host_id, parsed)

    def save_to_legacy_store(
        self,
        host_id: int,
        invoice: InvoiceDTO,
        items: list[InvoiceItemDTO],
        payments: list[PaymentDTO],
    ) -> None:
        for key, value in invoice.to_legacy().items():
            self.kv.set_field(host_id, key, value)
        self.kv.set_field(host_id, keys.ITEMS, [item.to_legacy() for item in items])
        self.kv.set_field(host_id, keys.PAYMENT_HISTORY, [payment.to_legacy() for payment in payments])

        if invoice.activation_date is not None:
            self.kv.set_field(host_id, keys.ACTIVATION_DATE, invoice.activation_marker())
        elif invoice.kind == "fictive":
            self.kv.delete_field(host_id, keys.ACTIVATION_DATE)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _bundle(self, invoice: InvoiceDTO) -> dict:
        return {
            "invoice": invoice.to_dict(),
            "items": [item.to_dict() for item in self.repositories.items.list_for_invoice(invoice)],
            "payments": [payment.to_dict() for payment in self.repositories.payments.list_for_invoice(invoice)],
        }

    def get_invoice(self, invoice_id: int) -> dict:
        invoice = self.repositories.invoices.find_by_id(invoice_id)
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        return self._bundle(invoice)

    def get_invoice_by_host_id(self, host_id: int) -> dict:
        invoice = self.repositories.invoices.find_by_host_id(host_id)
        if invoice is None:
            raise NotFoundError(f"No invoice for host record {host_id}")
        return self._bundle(invoice)

    def list_invoices(self, criteria=None, page=1, page_size=None, **ordering) -> Page[InvoiceDTO]:
        return self.repositories.invoices.list_by_filter(criteria, page, page_size, **ordering)

    def statistics(self, criteria=None) -> dict:
        return {
            "summary": self.repositories.invoices.statistics(criteria),
            "authors": self.repositories.invoices.author_statistics(criteria),
        }

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_invoice(self, payload: Mapping[str, Any], *, user_id: int | None = None, now: datetime | None = None) -> ServiceResult:
        now = now or utcnow()
        try:
            self.reconciler.ensure_ready(strict=True)
        except SchemaError as exc:
            return self._fail(str(exc), "unavailable")

        header = header_from_payload(payload)
        items, item_errors = self.sanitize_items(payload.get("items") or [], reference_time=now)
        payments, payment_errors = self.sanitize_payments(payment_entries(payload) or [], today=now.date())
        if item_errors or payment_errors:
            return self._fail(item_errors + payment_errors, "validation")

        invoice = InvoiceDTO.from_dict(header)
        if invoice.decode_errors:
            return self._fail(invoice.decode_errors, "validation")
        self.apply_totals(invoice, items, payments)
        if invoice.kind != "proforma":
            invoice.kind = kind_for_paid(invoice.paid_amount)
        # Never latched on create, even when born standard
        invoice.activation_date = None
        invoice.created_at = now
        invoice.updated_at = now
        invoice.author_id = user_id

        try:
            if not invoice.invoice_number:
                invoice.invoice_number = self.generate_invoice_number()
            host_id = self.kv.create_entity(
                keys.INVOICE_RECORD_TYPE, author_id=user_id, title=invoice.invoice_number, created_at=now
            )
            invoice.old_post_id = host_id
            invoice.customer_id = self.customer_sync.sync(invoice)

            result = self.repositories.invoices.create(invoice)
            if not result.ok:
                return self._fail(result.errors, result.error_kind)
            invoice_id = result.id

            written = self._write_children(invoice_id, items, payments)
            if written is not None:
                return self._fail(written.errors, written.error_kind)

            self.save_to_legacy_store(host_id, invoice.prepared_for_write(), items, payments)
            self.kv.set_field(host_id, keys.MIGRATED_MARKER, format_sql_datetime(now))
            db.session.commit()
        except (SQLAlchemyError, TransportError) as exc:
            self._rollback()
            current_app.logger.exception("Invoice create failed: %s", {"invoice_number": invoice.invoice_number})
            return ServiceResult(ok=False, errors=[f"Database error: {exc.__class__.__name__}"], error_kind="transport")

        current_app.logger.info("Invoice created: %s", {"invoice_id": invoice_id, "host_id": host_id})
        return ServiceResult(ok=True, invoice_id=invoice_id, host_id=host_id)

    def _write_children(self, invoice_id: int, items: list[InvoiceItemDTO], payments: list[PaymentDTO]) -> WriteResult | None:
        """Insert items then payments; returns the first failed result, None on success."""
        result = self.repositories.items.bulk_insert(invoice_id, items)
        if not result.ok:
            return result
        for payment in payments:
            payment.invoice_id = invoice_id
            result = self.repositories.payments.create(payment)
            if not result.ok:
                return result
        return None

    def update_invoice(self, invoice_id: int, payload: Mapping[str, Any], *, now: datetime | None = None) -> ServiceResult:
        """
        Update header fields and (when the payload carries them) replace items
        and payments. Omitted items/payments keep their stored values.
        """
        now = now or utcnow()
        try:
            existing = self.repositories.invoices.find_by_id(invoice_id)
            if existing is None:
                return self._fail(f"Invoice {invoice_id} not found", "not_found")

            header = header_from_payload(payload)
            replace_items = "items" in payload
            submitted_payments = payment_entries(payload)
            replace_payments = submitted_payments is not None

            if replace_items:
                items, item_errors = self.sanitize_items(payload.get("items") or [], reference_time=now)
            else:
                items, item_errors = self.repositories.items.list_for_invoice(existing), []
            if replace_payments:
                payments, payment_errors = self.sanitize_payments(submitted_payments, today=now.date())
            else:
                payments, payment_errors = self.repositories.payments.list_for_invoice(existing), []
            if item_errors or payment_errors:
                return self._fail(item_errors + payment_errors, "validation")

            invoice = InvoiceDTO.from_dict({**existing.to_row(include_id=True), **header})
            if invoice.decode_errors:
                return self._fail(invoice.decode_errors, "validation")
            invoice.id = existing.id
            invoice.old_post_id = existing.old_post_id
            invoice.author_id = existing.author_id
            self.apply_totals(invoice, items, payments)

            explicit_kind = str(header.get("kind") or "").strip().lower() or None
            if explicit_kind == "proforma" or (existing.kind == "proforma" and explicit_kind is None):
                invoice.kind = "proforma"
            else:
                invoice.kind = kind_for_paid(invoice.paid_amount)

            realization = self.realization_timestamp(submitted_payments if replace_payments else payments, now)
            created_at_moved = self.apply_activation(existing, invoice, realization)

            result = self.repositories.invoices.update(invoice_id, invoice)
            if not result.ok:
                return self._fail(result.errors, result.error_kind)

            if replace_items:
                cleared = self.repositories.items.delete_by_invoice(invoice_id)
                if not cleared.ok:
                    return self._fail(cleared.errors, cleared.error_kind)
                written = self.repositories.items.bulk_insert(invoice_id, items)
                if not written.ok:
                    return self._fail(written.errors, written.error_kind)
            if replace_payments:
                cleared = self.repositories.payments.delete_by_invoice(invoice_id)
                if not cleared.ok:
                    return self._fail(cleared.errors, cleared.error_kind)
                for payment in payments:
                    payment.id = None
                    payment.invoice_id = invoice_id
                    written = self.repositories.payments.create(payment)
                    if not written.ok:
                        return self._fail(written.errors, written.error_kind)

            if created_at_moved and not self.sync_host_created_at(existing.old_post_id, invoice.created_at):
                return self._fail(
                    f"Could not synchronize host record {existing.old_post_id} creation timestamp", "integrity"
                )

            self.save_to_legacy_store(existing.old_post_id, invoice.prepared_for_write(), items, payments)
            db.session.commit()
        except (SQLAlchemyError, TransportError) as exc:
            self._rollback()
            current_app.logger.exception("Invoice update failed: %s", {"invoice_id": invoice_id})
            return ServiceResult(ok=False, errors=[f"Database error: {exc.__class__.__name__}"], error_kind="transport")

        if created_at_moved:
            current_app.logger.info(
                "Invoice activated: %s",
                {"invoice_id": invoice_id, "activation_date": format_sql_datetime(invoice.activation_date)},
            )
        return ServiceResult(ok=True, invoice_id=invoice_id, host_id=existing.old_post_id)

    def set_workflow_status(self, invoice_id: int, status: str) -> ServiceResult:
        status = (status or "").strip().lower()
        if status not in WORKFLOW_STATUSES:
            return ServiceResult(ok=False, errors=[f"Invalid workflow status: {status}"], error_kind="validation")
        try:
            existing = self.repositories.invoices.find_by_id(invoice_id)
            if existing is None:
                return self._fail(f"Invoice {invoice_id} not found", "not_found")
            old_status = existing.workflow_status
            updated = replace(existing, workflow_status=status)
            result = self.repositories.invoices.update(invoice_id, updated)
            if not result.ok:
                return self._fail(result.errors, result.error_kind)
            self.kv.set_field(existing.old_post_id, keys.WORKFLOW_STATUS, status)
            db.session.commit()
        except (SQLAlchemyError, TransportError) as exc:
            self._rollback()
            current_app.logger.exception("Status change failed: %s", {"invoice_id": invoice_id, "status": status})
            return ServiceResult(ok=False, errors=[f"Database error: {exc.__class__.__name__}"], error_kind="transport")

        outcome = ServiceResult(ok=True, invoice_id=invoice_id, host_id=existing.old_post_id)
        if old_status != status:
            try:
                self.inventory_hook.on_status_change(updated, old_status, status)
            except Exception as exc:
                # Status change is already committed; report the hook failure to the caller
                current_app.logger.exception("Inventory hook failed: %s", {"invoice_id": invoice_id})
                outcome.warnings.append(f"Inventory update failed: {exc}")
        return outcome

    def mark_completed(self, invoice_id: int) -> ServiceResult:
        return self.set_workflow_status(invoice_id, "completed")

    def delete_invoice(self, invoice_id: int) -> ServiceResult:
        """Administrative delete: items, payments, invoice, then the host record."""
        try:
            existing = self.repositories.invoices.find_by_id(invoice_id)
            if existing is None:
                return self._fail(f"Invoice {invoice_id} not found", "not_found")
            result = self.repositories.invoices.delete(invoice_id)
            if not result.ok:
                return self._fail(result.errors, result.error_kind)
            self.kv.delete_entity(existing.old_post_id)
            db.session.commit()
        except (SQLAlchemyError, TransportError) as exc:
            self._rollback()
            current_app.logger.exception("Invoice delete failed: %s", {"invoice_id": invoice_id})
            return ServiceResult(ok=False, errors=[f"Database error: {exc.__class__.__name__}"], error_kind="transport")
        current_app.logger.info("Invoice deleted: %s", {"invoice_id": invoice_id, "host_id": existing.old_post_id})
        return ServiceResult(ok=True, invoice_id=invoice_id, host_id=existing.old_post_id)
