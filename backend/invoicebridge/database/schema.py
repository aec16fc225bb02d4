# Overview: Declared shape of the relational target tables (single source for create and reconcile).

"""
Target tables for migrated invoices.

These live on their own MetaData so db.create_all() never touches them: only
the SchemaReconciler creates or alters them. Column names here are the
canonical ones; historical names (post_id, qty, method, ...) are accepted on
decode only and never written.

RULES:
- NOT NULL columns that may be added to an existing table carry a server
  default, otherwise the reconciler adds them as nullable.
- No database-level foreign keys: parent existence is checked by the
  repositories and orphans are reported by verify_integrity.
"""

from __future__ import annotations

import sqlalchemy as sa


SCHEMA_VERSION = "2.0.0"

target_metadata = sa.MetaData()


def _money(name: str) -> sa.Column:
    return sa.Column(name, sa.Numeric(12, 2), nullable=False, server_default="0.00")


invoices = sa.Table(
    "invoices",
    target_metadata,
    sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("old_post_id", sa.Integer, nullable=False, server_default="0"),
    sa.Column("invoice_number", sa.String(50), nullable=False, server_default=""),
    # Buyer snapshot (copied at write time)
    sa.Column("buyer_name", sa.String(255), nullable=False, server_default=""),
    sa.Column("buyer_tax_id", sa.String(50), nullable=False, server_default=""),
    sa.Column("buyer_address", sa.Text, nullable=True),
    sa.Column("buyer_phone", sa.String(50), nullable=False, server_default=""),
    sa.Column("buyer_email", sa.String(100), nullable=True),
    sa.Column("customer_id", sa.Integer, nullable=True),
    sa.Column("kind", sa.String(20), nullable=False, server_default="standard"),
    sa.Column("workflow_status", sa.String(20), nullable=False, server_default="unfinished"),
    sa.Column("rs_uploaded", sa.Boolean, nullable=False, server_default="0"),
    _money("subtotal"),
    _money("tax_amount"),
    _money("discount_amount"),
    _money("total_amount"),
    _money("paid_amount"),
    _money("balance"),
    sa.Column("general_note", sa.Text, nullable=True),
    sa.Column("author_id", sa.Integer, nullable=True),
    sa.Column("created_at", sa.DateTime, nullable=False),
    sa.Column("updated_at", sa.DateTime, nullable=False),
    # One-time latch: set on the first fictive -> standard transition
    sa.Column("activation_date", sa.DateTime, nullable=True),
    sa.Index("uq_invoices_invoice_number", "invoice_number", unique=True),
    sa.Index("ix_invoices_old_post_id", "old_post_id"),
    sa.Index("ix_invoices_customer_id", "customer_id"),
    sa.Index("ix_invoices_kind", "kind"),
    sa.Index("ix_invoices_workflow_status", "workflow_status"),
    sa.Index("ix_invoices_created_at", "created_at"),
    sa.Index("ix_invoices_activation_date", "activation_date"),
    sqlite_autoincrement=True,
)

invoice_items = sa.Table(
    "invoice_items",
    target_metadata,
    sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("invoice_id", sa.Integer, nullable=False, server_default="0"),
    sa.Column("product_id", sa.Integer, nullable=True),
    sa.Column("product_name", sa.String(255), nullable=False, server_default=""),
    sa.Column("product_sku", sa.String(100), nullable=True),
    sa.Column("quantity", sa.Numeric(10, 2), nullable=False, server_default="1.00"),
    sa.Column("unit_price", sa.Numeric(12, 2), nullable=False, server_default="0.00"),
    sa.Column("line_total", sa.Numeric(12, 2), nullable=False, server_default="0.00"),
    sa.Column("warranty", sa.String(20), nullable=True),
    sa.Column("item_note", sa.Text, nullable=True),
    sa.Column("sort_order", sa.Integer, nullable=False, server_default="0"),
    sa.Column("reservation_expires_at", sa.DateTime, nullable=True),
    sa.Column("created_at", sa.DateTime, nullable=False),
    sa.Index("ix_invoice_items_invoice_id", "invoice_id"),
    sa.Index("ix_invoice_items_product_id", "product_id"),
    sa.Index("ix_invoice_items_invoice_sort", "invoice_id", "sort_order"),
    sqlite_autoincrement=True,
)

payments = sa.Table(
    "payments",
    target_metadata,
    sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("invoice_id", sa.Integer, nullable=False, server_default="0"),
    sa.Column("payment_date", sa.Date, nullable=False),
    sa.Column("payment_method", sa.String(50), nullable=False, server_default="other"),
    sa.Column("amount", sa.Numeric(12, 2), nullable=False, server_default="0.00"),
    sa.Column("transaction_ref", sa.String(100), nullable=True),
    sa.Column("note", sa.Text, nullable=True),
    sa.Column("user_id", sa.Integer, nullable=True),
    sa.Column("created_at", sa.DateTime, nullable=False),
    sa.Index("ix_payments_invoice_id", "invoice_id"),
    sa.Index("ix_payments_payment_date", "payment_date"),
    sa.Index("ix_payments_payment_method", "payment_method"),
    sqlite_autoincrement=True,
)

customers = sa.Table(
    "customers",
    target_metadata,
    sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("name", sa.String(255), nullable=False, server_default=""),
    sa.Column("tax_id", sa.String(50), nullable=False, server_default=""),
    sa.Column("address", sa.Text, nullable=True),
    sa.Column("phone", sa.String(50), nullable=False, server_default=""),
    sa.Column("email", sa.String(100), nullable=True),
    sa.Column("created_at", sa.DateTime, nullable=False),
    sa.Column("updated_at", sa.DateTime, nullable=False),
    sa.Index("ix_customers_tax_id", "tax_id"),
    sqlite_autoincrement=True,
)

# Tables the migration writes and rollback truncates (children first)
MIGRATION_TABLES = (payments, invoice_items, invoices)


def effective_date(table: sa.Table = invoices):
    """activation_date if present, else created_at."""
    return sa.func.coalesce(table.c.activation_date, table.c.created_at)
