# Overview: Builds services per request from app config and the registered collaborators.

from __future__ import annotations

from flask import current_app

from ..database.reconciler import SchemaReconciler
from ..extensions import repository_cache
from ..repositories import Repositories, build_repositories
from ..stores import DbOptionStore, PostMetaStore
from .invoice_service import InvoiceService
from .migration_service import MigrationEngine
from .ports import CustomerSync, NullCustomerSync, TaxIdCustomerSync


def _ports() -> dict:
    return current_app.extensions.get("invoicebridge", {})


def get_reconciler() -> SchemaReconciler:
    return SchemaReconciler(DbOptionStore())


def get_repositories(reconciler: SchemaReconciler | None = None) -> Repositories:
    return build_repositories(
        PostMetaStore(),
        reconciler or get_reconciler(),
        repository_cache,
        number_prefix=current_app.config["INVOICE_NUMBER_PREFIX"],
    )


def get_customer_sync(repositories: Repositories) -> CustomerSync:
    """Registered port first, then the CUSTOMER_SYNC setting."""
    port = _ports().get("customer_sync")
    if port is not None:
        return port
    mode = str(current_app.config.get("CUSTOMER_SYNC") or "none").strip().lower()
    if mode == "tax_id":
        return TaxIdCustomerSync(repositories.customers)
    if mode != "none":
        raise ValueError(f"Unknown CUSTOMER_SYNC mode: {mode}")
    return NullCustomerSync()


def get_migration_engine() -> MigrationEngine:
    config = current_app.config
    options = DbOptionStore()
    reconciler = SchemaReconciler(options)
    repositories = get_repositories(reconciler)
    return MigrationEngine(
        PostMetaStore(),
        options,
        repositories,
        reconciler,
        repository_cache,
        customer_sync=get_customer_sync(repositories),
        lock_timeout_seconds=config["MIGRATION_LOCK_TIMEOUT_SECONDS"],
        verify_sample_size=config["MIGRATION_VERIFY_SAMPLE_SIZE"],
        max_batch_size=config["MIGRATION_MAX_BATCH_SIZE"],
    )


def get_invoice_service() -> InvoiceService:
    config = current_app.config
    reconciler = get_reconciler()
    repositories = get_repositories(reconciler)
    return InvoiceService(
        PostMetaStore(),
        repositories,
        reconciler,
        repository_cache,
        customer_sync=get_customer_sync(repositories),
        inventory_hook=_ports().get("inventory_hook"),
        number_prefix=config["INVOICE_NUMBER_PREFIX"],
        number_base=config["INVOICE_NUMBER_BASE"],
    )
