# Overview: Batched, resumable migration of legacy invoices into the relational tables.

"""
Migration engine.

WHY: Legacy invoices live as host records with meta fields. They are moved
into invoices / invoice_items / payments a bounded batch at a time, while the
host system keeps accepting writes. Each call does one batch and returns; the
control surface re-invokes until the batch reports completion.

PIPELINE (per host record, isolated):
1. Decode from the key-value store (missing / wrong type -> validation failure)
2. Prepare (balance, kind) and validate
3. Update path if a relational invoice already points at the host record,
   insert path otherwise
4. Items (empty names skipped and logged), then payments
5. Set the migrated marker and commit

RULES:
- One entity's failure never aborts the batch: any exception is caught at
  the entity boundary, logged with context, rolled back, and counted.
- A failed entity gets a failure marker so later batches move past it;
  retry_failed() clears those markers.
- Completion means nothing remains unmigrated. An empty selection while
  failure markers remain reports completed=False.
- Progress is always recomputed from live counts.
- Batches are serialized by MigrationLock.
- Rollback truncates the relational tables and clears markers. Legacy meta
  fields are never modified.
"""

from __future__ import annotations

import traceback
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..cache import TTLCache
from ..database.reconciler import SchemaReconciler
from ..dto.invoice import InvoiceDTO
from ..dto.item import InvoiceItemDTO
from ..dto.payment import PaymentDTO
from ..errors import MigrationLockedError, TransportError
from ..extensions import db
from ..repositories import Repositories, WriteResult
from ..stores import legacy_keys as keys
from ..stores.kv_store import KeyValueStore
from ..stores.options import OptionStore
from ..time_utils import format_sql_datetime, utcnow
from .concurrency import MigrationLock, run_with_retry
from .ports import CustomerSync, NullCustomerSync


STATUS_PENDING = "pending"
STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"

DEFAULT_BATCH_SIZE = 50


@dataclass
class MigrationState:
    """Process-wide status and last progress snapshot, persisted as options."""
    status: str = STATUS_PENDING
    progress: dict = field(default_factory=dict)

    @classmethod
    def load(cls, options: OptionStore) -> "MigrationState":
        status = options.get(keys.MIGRATION_STATUS_OPTION) or STATUS_PENDING
        progress = options.get(keys.MIGRATION_PROGRESS_OPTION) or {}
        return cls(status=status, progress=progress if isinstance(progress, dict) else {})

    def save(self, options: OptionStore) -> None:
        options.set(keys.MIGRATION_STATUS_OPTION, self.status)
        options.set(keys.MIGRATION_PROGRESS_OPTION, self.progress)

    @staticmethod
    def clear(options: OptionStore) -> None:
        options.delete(keys.MIGRATION_STATUS_OPTION)
        options.delete(keys.MIGRATION_PROGRESS_OPTION)


@dataclass
class EntityOutcome:
    host_id: int | None
    success: bool
    invoice_id: int | None = None
    action: str | None = None
    validation_errors: list[str] = field(default_factory=list)
    error_detail: dict | None = None
    skipped_items: int = 0
    skipped_payments: int = 0
    dto: dict | None = None

    def to_dict(self, *, include_dto: bool = False) -> dict:
        data = {"host_id": self.host_id, "success": self.success}
        if self.invoice_id is not None:
            data["invoice_id"] = self.invoice_id
        if self.action:
            data["action"] = self.action
        if self.validation_errors:
            data["validation_errors"] = self.validation_errors
        if self.error_detail:
            data["error_detail"] = self.error_detail
        if self.skipped_items or self.skipped_payments:
            data["skipped"] = {"items": self.skipped_items, "payments": self.skipped_payments}
        if include_dto and self.dto is not None:
            data["dto"] = self.dto
        return data


@dataclass
class BatchResult:
    success: bool
    migrated_count: int = 0
    error_count: int = 0
    errors: list[dict] = field(default_factory=list)
    progress: dict = field(default_factory=dict)
    completed: bool = False
    locked: bool = False
    message: str = ""

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "migrated_count": self.migrated_count,
            "error_count": self.error_count,
            "errors": self.errors,
            "progress": self.progress,
            "completed": self.completed,
            "locked": self.locked,
            "message": self.message,
        }


def fault_detail(exc: BaseException) -> dict:
    """Type, message and innermost source location of an exception."""
    detail = {"type": exc.__class__.__name__, "message": str(exc)}
    frames = traceback.extract_tb(exc.__traceback__)
    if frames:
        detail["location"] = f"{frames[-1].filename}:{frames[-1].lineno}"
    return detail


class MigrationEngine:
    def __init__(
        self,
        kv: KeyValueStore,
        options: OptionStore,
        repositories: Repositories,
        reconciler: SchemaReconciler,
        cache: TTLCache,
        *,
        customer_sync: CustomerSync | None = None,
        lock_timeout_seconds: int = 300,
        verify_sample_size: int = 10,
        max_batch_size: int = 500,
    ):
        self.kv = kv
        self.options = options
        self.repositories = repositories
        self.reconciler = reconciler
        self.cache = cache
        self.customer_sync = customer_sync or NullCustomerSync()
        self.lock = MigrationLock(options, timeout_seconds=lock_timeout_seconds)
        self.verify_sample_size = verify_sample_size
        self.max_batch_size = max_batch_size

    # ------------------------------------------------------------------
    # State / progress
    # ------------------------------------------------------------------

    def load_state(self) -> MigrationState:
        return MigrationState.load(self.options)

    def get_progress(self) -> dict:
        total = self.kv.count_entities(keys.INVOICE_RECORD_TYPE)
        migrated = self.kv.count_entities(keys.INVOICE_RECORD_TYPE, present_keys=(keys.MIGRATED_MARKER,))
        failed = self.kv.count_entities(
            keys.INVOICE_RECORD_TYPE,
            present_keys=(keys.MIGRATION_FAILED_MARKER,),
            missing_keys=(keys.MIGRATED_MARKER,),
        )
        return {
            "total": total,
            "migrated": migrated,
            "failed": failed,
            "remaining": max(total - migrated, 0),
            "percentage": round(migrated / total * 100, 2) if total else 0,
        }

    def is_migrated(self) -> bool:
        return self.get_progress()["remaining"] == 0

    def get_status(self) -> dict:
        state = self.load_state()
        return {
            "status": state.status,
            "progress": self.get_progress(),
            "last_snapshot": state.progress,
            "schema": self.reconciler.health_status(),
            "lock": self.lock.holder(),
        }

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    def _clamp(self, batch_size: int | None) -> int:
        size = int(batch_size or DEFAULT_BATCH_SIZE)
        return min(max(size, 1), self.max_batch_size)

    def run_batch(self, batch_size: int | None = None) -> BatchResult:
        size = self._clamp(batch_size)
        if not self.lock.acquire():
            current_app.logger.info("Migration batch skipped: lock held by %s", self.lock.holder())
            return BatchResult(
                success=False,
                locked=True,
                progress=self.get_progress(),
                message="Another migration batch is already running",
            )
        try:
            return self._run_batch(size)
        finally:
            self.lock.release()

    def _run_batch(self, size: int) -> BatchResult:
        report = self.reconciler.maybe_reconcile()
        if not self.reconciler.tables_exist():
            failures = "; ".join(report.failures) if report else "unknown reason"
            return BatchResult(
                success=False,
                progress=self.get_progress(),
                message=f"Relational tables could not be created: {failures}",
            )

        state = self.load_state()
        host_ids = self.kv.query_entities(
            keys.INVOICE_RECORD_TYPE,
            missing_keys=(keys.MIGRATED_MARKER, keys.MIGRATION_FAILED_MARKER),
            order_by="id",
            limit=size,
        )

        if not host_ids:
            progress = self.get_progress()
            if progress["remaining"]:
                state.progress = {**progress, "updated_at": format_sql_datetime(utcnow())}
                state.save(self.options)
                db.session.commit()
                message = f"{progress['failed']} failed invoices remain unmigrated; retry them to finish"
                current_app.logger.warning("Migration stalled: %s", message)
                return BatchResult(success=True, completed=False, progress=progress, message=message)

            state.status = STATUS_COMPLETED
            state.progress = {**progress, "updated_at": format_sql_datetime(utcnow())}
            state.save(self.options)
            db.session.commit()
            current_app.logger.info("Migration completed: %s", progress)
            return BatchResult(success=True, completed=True, progress=progress, message="Migration completed")

        state.status = STATUS_RUNNING
        state.save(self.options)
        db.session.commit()

        migrated = 0
        failures = []
        for host_id in host_ids:
            outcome = self._migrate_entity(host_id)
            if outcome.success:
                migrated += 1
            else:
                failures.append(outcome.to_dict())

        progress = self.get_progress()
        state.progress = {**progress, "updated_at": format_sql_datetime(utcnow())}
        state.save(self.options)
        db.session.commit()

        message = f"Migrated {migrated} invoices with {len(failures)} errors"
        current_app.logger.info("Migration batch: %s (progress %s)", message, progress)
        return BatchResult(
            success=True,
            migrated_count=migrated,
            error_count=len(failures),
            errors=failures,
            progress=progress,
            message=message,
        )

    # ------------------------------------------------------------------
    # Single entity
    # ------------------------------------------------------------------

    def migrate_one(self, host_id: int | None = None) -> dict:
        """
        Diagnostic path: migrate one host record (first unmigrated when None)
        and return full structured detail.
        """
        if not self.lock.acquire():
            raise MigrationLockedError("Another migration batch is already running")
        try:
            self.reconciler.maybe_reconcile()
            if not self.reconciler.tables_exist():
                return {
                    "success": False,
                    "host_id": host_id,
                    "error_detail": {"type": "SchemaError", "message": "Relational tables are not ready"},
                }
            if host_id is None:
                candidates = self.kv.query_entities(
                    keys.INVOICE_RECORD_TYPE, missing_keys=(keys.MIGRATED_MARKER,), order_by="id", limit=1
                )
                if not candidates:
                    return {"success": False, "host_id": None, "message": "No unmigrated invoices found"}
                host_id = candidates[0]
            outcome = self._migrate_entity(host_id)
            result = outcome.to_dict(include_dto=True)
            result["progress"] = self.get_progress()
            return result
        finally:
            self.lock.release()

    def _migrate_entity(self, host_id: int) -> EntityOutcome:
        try:
            outcome = self._transfer(host_id)
        except Exception as exc:
            # Entity boundary: log, discard the partial unit of work, continue
            self._rollback()
            detail = fault_detail(exc)
            current_app.logger.exception(
                "Migration fault: %s", {"host_id": host_id, "operation": "migrate_entity", **detail}
            )
            outcome = EntityOutcome(host_id=host_id, success=False, error_detail=detail)
        if not outcome.success:
            self._record_failure(host_id, outcome)
        return outcome

    def _transfer(self, host_id: int) -> EntityOutcome:
        decoded = InvoiceDTO.from_legacy_store(self.kv, host_id)
        if decoded is None:
            return EntityOutcome(
                host_id=host_id, success=False, validation_errors=["Host record not found or not an invoice"]
            )

        invoice = decoded.prepared_for_write()
        errors = invoice.validate(self.repositories.invoices.relational.number_prefix)
        if errors:
            current_app.logger.warning("Invoice validation failed: %s", {"host_id": host_id, "errors": errors})
            return EntityOutcome(host_id=host_id, success=False, validation_errors=errors, dto=invoice.to_dict())

        invoice.customer_id = self.customer_sync.sync(invoice)

        items = []
        skipped_items = 0
        for position, item in enumerate(InvoiceItemDTO.from_legacy_store(self.kv, host_id)):
            if not item.product_name:
                skipped_items += 1
                current_app.logger.warning(
                    "Skipping item without a name: %s", {"host_id": host_id, "position": position}
                )
                continue
            items.append(item)

        payments = []
        skipped_payments = 0
        for position, payment in enumerate(PaymentDTO.from_legacy_store(self.kv, host_id)):
            if payment.amount <= 0:
                skipped_payments += 1
                current_app.logger.warning(
                    "Skipping non-positive payment: %s",
                    {"host_id": host_id, "position": position, "amount": str(payment.amount)},
                )
                continue
            payments.append(payment)

        relational = self.repositories
        existing = relational.invoices.relational.find_by_host_id(host_id, use_cache=False)
        if existing is not None:
            action = "updated"
            result = relational.invoices.relational.update(existing.id, invoice)
        else:
            action = "created"
            result = relational.invoices.relational.create(invoice)
        if not result.ok:
            return self._write_failed(host_id, result, invoice)
        invoice_id = result.id

        if existing is not None:
            for cleared in (
                relational.items.relational.delete_by_invoice(invoice_id),
                relational.payments.relational.delete_by_invoice(invoice_id),
            ):
                if not cleared.ok:
                    return self._write_failed(host_id, cleared, invoice)

        items_result = relational.items.relational.bulk_insert(invoice_id, items)
        if not items_result.ok:
            return self._write_failed(host_id, items_result, invoice)

        for payment in payments:
            payment.invoice_id = invoice_id
            payment_result = relational.payments.relational.create(payment)
            if not payment_result.ok:
                return self._write_failed(host_id, payment_result, invoice)

        self.kv.set_field(host_id, keys.MIGRATED_MARKER, format_sql_datetime(utcnow()))
        self.kv.delete_field(host_id, keys.MIGRATION_FAILED_MARKER)
        db.session.commit()

        current_app.logger.info(
            "Migrated invoice: %s", {"host_id": host_id, "invoice_id": invoice_id, "action": action}
        )
        return EntityOutcome(
            host_id=host_id,
            success=True,
            invoice_id=invoice_id,
            action=action,
            skipped_items=skipped_items,
            skipped_payments=skipped_payments,
            dto=invoice.to_dict(),
        )

    def _write_failed(self, host_id: int, result: WriteResult, invoice: InvoiceDTO) -> EntityOutcome:
        self._rollback()
        if result.error_kind == "validation":
            return EntityOutcome(
                host_id=host_id, success=False, validation_errors=result.errors, dto=invoice.to_dict()
            )
        current_app.logger.error(
            "Migration write rejected: %s", {"host_id": host_id, "error_kind": result.error_kind, "errors": result.errors}
        )
        return EntityOutcome(
            host_id=host_id,
            success=False,
            error_detail={"type": result.error_kind, "message": "; ".join(result.errors)},
            dto=invoice.to_dict(),
        )

    def _record_failure(self, host_id: int, outcome: EntityOutcome) -> None:
        marker = {
            "at": format_sql_datetime(utcnow()),
            "validation_errors": outcome.validation_errors,
            "error": (outcome.error_detail or {}).get("message"),
            "kind": (outcome.error_detail or {}).get("type", "validation"),
        }

        def _op():
            if self.kv.get_entity(host_id) is None:
                return
            self.kv.set_field(host_id, keys.MIGRATION_FAILED_MARKER, marker)
            db.session.commit()

        try:
            run_with_retry(_op)
        except SQLAlchemyError:
            self._rollback()
            current_app.logger.exception("Could not record migration failure: %s", {"host_id": host_id})

    def _rollback(self) -> None:
        db.session.rollback()
        self.cache.clear()

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def retry_failed(self) -> int:
        host_ids = self.kv.query_entities(keys.INVOICE_RECORD_TYPE, present_keys=(keys.MIGRATION_FAILED_MARKER,))
        for host_id in host_ids:
            self.kv.delete_field(host_id, keys.MIGRATION_FAILED_MARKER)
        db.session.commit()
        return len(host_ids)

    def rollback(self) -> bool:
        """
        Truncate the relational tables and clear every migration marker.
        Raises MigrationLockedError while a batch is running.
        """
        if not self.lock.acquire():
            raise MigrationLockedError("Cannot roll back while a migration batch is running")
        try:
            if self.reconciler.tables_exist():
                self.reconciler.truncate_tables()
            for marker in (keys.MIGRATED_MARKER, keys.MIGRATION_FAILED_MARKER):
                for host_id in self.kv.query_entities(keys.INVOICE_RECORD_TYPE, present_keys=(marker,)):
                    self.kv.delete_field(host_id, marker)
            MigrationState.clear(self.options)
            db.session.commit()
        except SQLAlchemyError:
            self._rollback()
            current_app.logger.exception("Migration rollback failed")
            return False
        finally:
            self.lock.release()
        self.cache.clear()
        current_app.logger.info("Migration rolled back")
        return True

    def verify_integrity(self) -> dict:
        """
        Soft consistency check: orphans plus a random sample of migrated host
        records compared against their relational rows.
        """
        try:
            if not self.reconciler.tables_exist():
                return {"status": "error", "issues": ["Relational tables do not exist"]}
            if not self.reconciler.tables_have_data():
                return {"status": "error", "issues": ["Relational tables are empty"]}

            integrity = self.reconciler.verify_integrity()
            issues = list(integrity["issues"])

            sample = self.kv.query_entities(
                keys.INVOICE_RECORD_TYPE,
                present_keys=(keys.MIGRATED_MARKER,),
                random_order=True,
                limit=self.verify_sample_size,
            )
            for host_id in sample:
                issues.extend(self._compare(host_id))
        except (SQLAlchemyError, TransportError) as exc:
            self._rollback()
            current_app.logger.exception("Integrity verification failed")
            return {"status": "error", "issues": [f"Verification failed: {exc.__class__.__name__}"]}

        return {
            "status": "warning" if issues else "ok",
            "issues": issues,
            "sampled": len(sample),
            "orphan_items": integrity["orphan_items"],
            "orphan_payments": integrity["orphan_payments"],
        }

    def _compare(self, host_id: int) -> list[str]:
        legacy = InvoiceDTO.from_legacy_store(self.kv, host_id)
        if legacy is None:
            return [f"Host record {host_id} is marked migrated but is not an invoice"]
        row = self.repositories.invoices.relational.find_by_host_id(host_id, use_cache=False)
        if row is None:
            return [f"Host record {host_id} is marked migrated but has no relational invoice"]
        issues = []
        if legacy.invoice_number != row.invoice_number:
            issues.append(
                f"Invoice number mismatch for host record {host_id}: "
                f"{legacy.invoice_number!r} vs {row.invoice_number!r}"
            )
        if legacy.buyer_name != row.buyer_name:
            issues.append(
                f"Buyer name mismatch for host record {host_id}: {legacy.buyer_name!r} vs {row.buyer_name!r}"
            )
        return issues
