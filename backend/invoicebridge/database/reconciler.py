# Overview: Brings live target tables to the declared shape with additive DDL only.

"""
Schema reconciliation.

WHY: Deployed instances drift: some never had the tables, some have an older
shape with fewer columns. One code path covers both: create the table if it
is missing, then add whatever declared columns the live table lacks.

RULES:
- Additive only. Never drop, rename or retype an existing column.
- Existence is re-checked before every column add, so a partial failure is
  retried on the next call and already-added columns are left alone.
- Index failures are logged and ignored (the index may exist under a
  different name). Only table or column failures fail the run.
- The version marker is persisted only when the run had no failures.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import sqlalchemy as sa
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..errors import SchemaError
from ..extensions import db
from ..stores.legacy_keys import SCHEMA_VERSION_OPTION
from ..stores.options import OptionStore
from .schema import MIGRATION_TABLES, SCHEMA_VERSION, invoice_items, invoices, payments, target_metadata


@dataclass
class ReconcileReport:
    created_tables: list[str] = field(default_factory=list)
    added_columns: list[str] = field(default_factory=list)
    created_indexes: list[str] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)
    index_failures: list[str] = field(default_factory=list)
    version: str | None = None

    @property
    def ok(self) -> bool:
        return not self.failures

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "created_tables": self.created_tables,
            "added_columns": self.added_columns,
            "created_indexes": self.created_indexes,
            "failures": self.failures,
            "index_failures": self.index_failures,
            "version": self.version,
        }


def _version_tuple(value) -> tuple[int, ...]:
    try:
        return tuple(int(part) for part in str(value).split("."))
    except (TypeError, ValueError):
        return (0,)


def render_server_default(column: sa.Column) -> str | None:
    default = column.server_default
    if default is None:
        return None
    arg = default.arg
    if isinstance(arg, str):
        return "'" + arg.replace("'", "''") + "'"
    return str(getattr(arg, "text", arg))


class SchemaReconciler:
    def __init__(self, options: OptionStore, *, metadata: sa.MetaData = target_metadata, version: str = SCHEMA_VERSION):
        self.options = options
        self.metadata = metadata
        self.version = version

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def _inspector(self):
        # Fresh inspector per call; Inspector caches reflection results.
        return sa.inspect(db.session.connection())

    def stored_version(self) -> str | None:
        return self.options.get(SCHEMA_VERSION_OPTION)

    def needs_upgrade(self) -> bool:
        stored = self.stored_version()
        return stored is None or _version_tuple(stored) < _version_tuple(self.version)

    def table_exists(self, name: str) -> bool:
        return self._inspector().has_table(name)

    def tables_exist(self) -> bool:
        inspector = self._inspector()
        return all(inspector.has_table(table.name) for table in MIGRATION_TABLES)

    def tables_have_data(self) -> bool:
        if not self.tables_exist():
            return False
        row = db.session.execute(sa.select(invoices.c.id).limit(1)).first()
        return row is not None

    def live_columns(self, table_name: str) -> set[str]:
        return {col["name"] for col in self._inspector().get_columns(table_name)}

    def missing_columns(self, table: sa.Table) -> list[str]:
        live = self.live_columns(table.name)
        return [column.name for column in table.columns if column.name not in live]

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def maybe_reconcile(self) -> ReconcileReport | None:
        """Reconcile only when the stored version marker is behind."""
        if not self.needs_upgrade() and self.tables_exist():
            return None
        return self.reconcile()

    def ensure_ready(self, *, strict: bool = False) -> bool:
        report = self.maybe_reconcile()
        ready = self.tables_exist()
        if strict and not ready:
            detail = "; ".join(report.failures) if report else "tables missing"
            raise SchemaError(f"Relational tables are not ready: {detail}")
        return ready

    def reconcile(self) -> ReconcileReport:
        report = ReconcileReport()
        for table in self.metadata.sorted_tables:
            if not self._ensure_table(table, report):
                continue
            for column in table.columns:
                self._ensure_column(table, column, report)
            self._ensure_indexes(table, report)

        if report.ok:
            self.options.set(SCHEMA_VERSION_OPTION, self.version)
            db.session.commit()
            report.version = self.version
            current_app.logger.info(
                "Schema reconciled to %s (created=%s, added=%s)",
                self.version, report.created_tables, report.added_columns,
            )
        else:
            current_app.logger.error(
                "Schema reconciliation incomplete; version marker withheld: %s", report.failures
            )
        return report

    def _ensure_table(self, table: sa.Table, report: ReconcileReport) -> bool:
        try:
            if self.table_exists(table.name):
                return True
            table.create(bind=db.session.connection(), checkfirst=True)
            db.session.commit()
            report.created_tables.append(table.name)
            return True
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.exception("Failed to create table %s", table.name)
            report.failures.append(f"{table.name}: create failed: {exc}")
            return False

    def _ensure_column(self, table: sa.Table, column: sa.Column, report: ReconcileReport) -> None:
        qualified = f"{table.name}.{column.name}"
        try:
            if column.name in self.live_columns(table.name):
                return
        except SQLAlchemyError as exc:
            db.session.rollback()
            report.failures.append(f"{qualified}: inspection failed: {exc}")
            return

        if column.primary_key:
            report.failures.append(f"{qualified}: primary key column missing and cannot be added")
            return

        ddl = self.add_column_ddl(table, column)
        try:
            db.session.connection().exec_driver_sql(ddl)
            db.session.commit()
            report.added_columns.append(qualified)
            current_app.logger.info("Added column %s", qualified)
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.error("Failed to add column %s: %s", qualified, exc)
            report.failures.append(f"{qualified}: {exc}")

    def add_column_ddl(self, table: sa.Table, column: sa.Column) -> str:
        dialect = db.session.get_bind().dialect
        preparer = dialect.identifier_preparer
        parts = [
            "ALTER TABLE",
            preparer.format_table(table),
            "ADD COLUMN",
            preparer.format_column(column),
            column.type.compile(dialect=dialect),
        ]
        default = render_server_default(column)
        if default is not None:
            parts.append(f"DEFAULT {default}")
            if not column.nullable:
                parts.append("NOT NULL")
        return " ".join(parts)

    def _ensure_indexes(self, table: sa.Table, report: ReconcileReport) -> None:
        try:
            existing = {ix["name"] for ix in self._inspector().get_indexes(table.name)}
        except SQLAlchemyError:
            db.session.rollback()
            existing = set()
        for index in table.indexes:
            if index.name in existing:
                continue
            try:
                index.create(bind=db.session.connection())
                db.session.commit()
                report.created_indexes.append(index.name)
            except SQLAlchemyError as exc:
                db.session.rollback()
                current_app.logger.warning("Index %s not created (ignored): %s", index.name, exc)
                report.index_failures.append(f"{index.name}: {exc}")

    # ------------------------------------------------------------------
    # Health / integrity / administration
    # ------------------------------------------------------------------

    def health_status(self) -> dict:
        inspector = self._inspector()
        tables = {}
        for table in self.metadata.sorted_tables:
            exists = inspector.has_table(table.name)
            rows = None
            if exists:
                rows = int(db.session.execute(sa.select(sa.func.count()).select_from(table)).scalar() or 0)
            tables[table.name] = {"exists": exists, "rows": rows}
        return {
            "tables": tables,
            "ready": all(tables[t.name]["exists"] for t in MIGRATION_TABLES),
            "version": self.stored_version(),
            "expected_version": self.version,
        }

    def verify_integrity(self) -> dict:
        """Count items and payments whose invoice_id has no invoice row."""
        orphan_items = db.session.execute(
            sa.select(sa.func.count(invoice_items.c.id)).where(
                ~sa.exists().where(invoices.c.id == invoice_items.c.invoice_id)
            )
        ).scalar() or 0
        orphan_payments = db.session.execute(
            sa.select(sa.func.count(payments.c.id)).where(
                ~sa.exists().where(invoices.c.id == payments.c.invoice_id)
            )
        ).scalar() or 0

        issues = []
        if orphan_items:
            issues.append(f"Found {orphan_items} orphaned invoice items")
        if orphan_payments:
            issues.append(f"Found {orphan_payments} orphaned payments")
        return {
            "orphan_items": int(orphan_items),
            "orphan_payments": int(orphan_payments),
            "issues": issues,
        }

    def truncate_tables(self) -> None:
        """Delete every row from payments, items, invoices (children first). Flush only."""
        for table in MIGRATION_TABLES:
            db.session.execute(table.delete())

    def drop_tables(self) -> None:
        self.metadata.drop_all(bind=db.session.connection())
        self.options.delete(SCHEMA_VERSION_OPTION)
        db.session.commit()
