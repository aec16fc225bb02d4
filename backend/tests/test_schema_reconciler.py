# Overview: Pytest coverage for schema reconciliation, health and administration.

import sqlalchemy as sa

from invoicebridge.database.schema import SCHEMA_VERSION, invoices
from invoicebridge.extensions import db
from invoicebridge.stores import legacy_keys as keys


PARTIAL_INVOICES_DDL = """
CREATE TABLE invoices (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    old_post_id INTEGER NOT NULL DEFAULT 0,
    invoice_number VARCHAR(50) NOT NULL DEFAULT '',
    buyer_name VARCHAR(255) NOT NULL DEFAULT '',
    buyer_tax_id VARCHAR(50) NOT NULL DEFAULT '',
    buyer_address TEXT,
    buyer_phone VARCHAR(50) NOT NULL DEFAULT '',
    buyer_email VARCHAR(100),
    customer_id INTEGER,
    kind VARCHAR(20) NOT NULL DEFAULT 'standard',
    workflow_status VARCHAR(20) NOT NULL DEFAULT 'unfinished',
    subtotal NUMERIC(12, 2) NOT NULL DEFAULT 0,
    total_amount NUMERIC(12, 2) NOT NULL DEFAULT 0,
    paid_amount NUMERIC(12, 2) NOT NULL DEFAULT 0,
    balance NUMERIC(12, 2) NOT NULL DEFAULT 0,
    author_id INTEGER,
    created_at DATETIME NOT NULL,
    updated_at DATETIME NOT NULL
)
"""

CUSTOMERS_WITHOUT_INDEX_DDL = """
CREATE TABLE customers (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name VARCHAR(255) NOT NULL DEFAULT '',
    tax_id VARCHAR(50) NOT NULL DEFAULT '',
    address TEXT,
    phone VARCHAR(50) NOT NULL DEFAULT '',
    email VARCHAR(100),
    created_at DATETIME NOT NULL,
    updated_at DATETIME NOT NULL
)
"""

MISSING_COLUMNS = ["activation_date", "discount_amount", "general_note", "rs_uploaded", "tax_amount"]


class TestReconcile:
    def test_fresh_database_gets_every_table(self, reconciler, options):
        """First reconcile creates all tables and records the version."""
        assert reconciler.needs_upgrade()
        assert not reconciler.tables_exist()

        report = reconciler.reconcile()

        assert report.ok
        assert sorted(report.created_tables) == ["customers", "invoice_items", "invoices", "payments"]
        assert report.added_columns == []
        assert reconciler.tables_exist()
        assert options.get(keys.SCHEMA_VERSION_OPTION) == SCHEMA_VERSION
        assert not reconciler.needs_upgrade()

    def test_missing_columns_are_added_once(self, reconciler):
        """A table missing 5 declared columns converges in one call; the next call is a no-op."""
        db.session.execute(sa.text(PARTIAL_INVOICES_DDL))
        db.session.execute(sa.text(
            "INSERT INTO invoices (invoice_number, created_at, updated_at) "
            "VALUES ('N25000001', '2024-01-10 09:00:00', '2024-01-10 09:00:00')"
        ))
        db.session.commit()
        assert sorted(reconciler.missing_columns(invoices)) == MISSING_COLUMNS

        first = reconciler.reconcile()

        assert first.ok
        assert "invoices" not in first.created_tables
        assert sorted(first.added_columns) == [f"invoices.{name}" for name in MISSING_COLUMNS]
        assert reconciler.missing_columns(invoices) == []
        assert reconciler.live_columns("invoices") == {c.name for c in invoices.columns}

        # Declared defaults applied to the existing row
        row = db.session.execute(
            sa.select(invoices.c.tax_amount, invoices.c.discount_amount, invoices.c.activation_date)
        ).one()
        assert row.tax_amount == 0
        assert row.discount_amount == 0
        assert row.activation_date is None

        second = reconciler.reconcile()
        assert second.ok
        assert second.created_tables == []
        assert second.added_columns == []
        assert second.created_indexes == []

    def test_failed_column_withholds_version_until_retry(self, reconciler, options, monkeypatch):
        db.session.execute(sa.text(PARTIAL_INVOICES_DDL))
        db.session.commit()
        add_column_ddl = reconciler.add_column_ddl

        def broken_for_tax(table, column):
            if column.name == "tax_amount":
                return "ALTER TABLE invoices ADD COLUMN"
            return add_column_ddl(table, column)

        monkeypatch.setattr(reconciler, "add_column_ddl", broken_for_tax)

        failed = reconciler.reconcile()

        assert failed.ok is False
        assert failed.version is None
        assert [f.split(":")[0] for f in failed.failures] == ["invoices.tax_amount"]
        assert "invoices.discount_amount" in failed.added_columns
        assert options.get(keys.SCHEMA_VERSION_OPTION) is None
        assert reconciler.needs_upgrade()
        assert reconciler.missing_columns(invoices) == ["tax_amount"]

        monkeypatch.undo()
        retried = reconciler.maybe_reconcile()

        assert retried.ok
        assert retried.added_columns == ["invoices.tax_amount"]
        assert options.get(keys.SCHEMA_VERSION_OPTION) == SCHEMA_VERSION
        assert reconciler.missing_columns(invoices) == []

    def test_index_failure_is_not_fatal(self, reconciler, options):
        """An object already holding the index name blocks only that index."""
        db.session.execute(sa.text(CUSTOMERS_WITHOUT_INDEX_DDL))
        db.session.execute(sa.text("CREATE TABLE ix_customers_tax_id (id INTEGER PRIMARY KEY)"))
        db.session.commit()

        report = reconciler.reconcile()

        assert report.ok
        assert [f.split(":")[0] for f in report.index_failures] == ["ix_customers_tax_id"]
        assert "ix_customers_tax_id" not in report.created_indexes
        assert report.to_dict()["index_failures"] == report.index_failures
        assert options.get(keys.SCHEMA_VERSION_OPTION) == SCHEMA_VERSION
        assert reconciler.tables_exist()

    def test_maybe_reconcile_skips_when_current(self, reconciled):
        assert reconciled.maybe_reconcile() is None

    def test_stale_version_marker_triggers_reconcile(self, reconciled, options):
        options.set(keys.SCHEMA_VERSION_OPTION, "1.9.0")
        db.session.commit()
        assert reconciled.needs_upgrade()

        report = reconciled.maybe_reconcile()

        assert report is not None and report.ok
        assert options.get(keys.SCHEMA_VERSION_OPTION) == SCHEMA_VERSION

    def test_ensure_ready(self, reconciler):
        assert reconciler.ensure_ready(strict=True) is True
        assert reconciler.tables_exist()


class TestColumnDdl:
    def test_not_null_with_default(self, reconciler):
        ddl = reconciler.add_column_ddl(invoices, invoices.c.workflow_status)
        assert ddl.startswith("ALTER TABLE invoices ADD COLUMN workflow_status VARCHAR(20)")
        assert "DEFAULT 'unfinished' NOT NULL" in ddl

    def test_not_null_without_default_is_added_nullable(self, reconciler):
        ddl = reconciler.add_column_ddl(invoices, invoices.c.created_at)
        assert "NOT NULL" not in ddl
        assert "DEFAULT" not in ddl

    def test_nullable_column(self, reconciler):
        ddl = reconciler.add_column_ddl(invoices, invoices.c.activation_date)
        assert ddl == "ALTER TABLE invoices ADD COLUMN activation_date DATETIME"


class TestAdministration:
    def test_health_status(self, reconciler):
        before = reconciler.health_status()
        assert before["ready"] is False
        assert before["version"] is None
        assert before["tables"]["invoices"] == {"exists": False, "rows": None}

        reconciler.reconcile()
        after = reconciler.health_status()
        assert after["ready"] is True
        assert after["version"] == SCHEMA_VERSION
        assert after["tables"]["payments"] == {"exists": True, "rows": 0}

    def test_tables_have_data(self, reconciled):
        assert not reconciled.tables_have_data()
        db.session.execute(sa.insert(invoices).values(
            invoice_number="N25000001", created_at=sa.func.current_timestamp(), updated_at=sa.func.current_timestamp()
        ))
        db.session.commit()
        assert reconciled.tables_have_data()

        reconciled.truncate_tables()
        db.session.commit()
        assert not reconciled.tables_have_data()

    def test_drop_tables_clears_version(self, reconciled, options):
        reconciled.drop_tables()
        assert not reconciled.tables_exist()
        assert options.get(keys.SCHEMA_VERSION_OPTION) is None
        assert reconciled.needs_upgrade()
