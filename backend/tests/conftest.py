"""
Pytest fixtures for invoicebridge tests.

Every test gets its own app bound to a fresh in-memory SQLite database with
the host store tables created. The relational invoice tables are created
only through the reconciler (see the `reconciled` fixture).
"""

from datetime import datetime

import pytest

from invoicebridge import create_app
from invoicebridge.database.reconciler import SchemaReconciler
from invoicebridge.database.schema import target_metadata
from invoicebridge.extensions import db
from invoicebridge.services.registry import get_invoice_service, get_migration_engine, get_repositories
from invoicebridge.stores import DbOptionStore, PostMetaStore
from invoicebridge.stores import legacy_keys as keys


@pytest.fixture(scope='function')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'ADMIN_API_TOKEN': None,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        target_metadata.drop_all(bind=db.engine)
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def kv(app):
    return PostMetaStore()


@pytest.fixture(scope='function')
def options(app):
    return DbOptionStore()


@pytest.fixture(scope='function')
def reconciler(options):
    return SchemaReconciler(options)


@pytest.fixture(scope='function')
def reconciled(reconciler):
    """Relational tables created at the current schema version."""
    report = reconciler.reconcile()
    assert report.ok, report.failures
    return reconciler


@pytest.fixture(scope='function')
def repositories(reconciler):
    return get_repositories(reconciler)


@pytest.fixture(scope='function')
def engine(app):
    return get_migration_engine()


@pytest.fixture(scope='function')
def service(app):
    return get_invoice_service()


@pytest.fixture(scope='function')
def make_legacy_invoice(kv):
    """
    Factory for a legacy invoice: one host record plus its meta fields,
    committed. Pass a meta value of None to leave that field out.
    """

    def _make(
        number="N25000001",
        *,
        buyer_name="Acme LLC",
        tax_id="204567891",
        phone="555-0100",
        items=None,
        payments=None,
        created_at=datetime(2024, 1, 10, 9, 0, 0),
        record_type=keys.INVOICE_RECORD_TYPE,
        meta=None,
    ):
        host_id = kv.create_entity(record_type, author_id=7, title=number or "", created_at=created_at)
        fields = {
            keys.INVOICE_NUMBER: number,
            keys.BUYER_NAME: buyer_name,
            keys.BUYER_TAX_ID: tax_id,
            keys.BUYER_PHONE: phone,
            keys.ITEMS: [{"name": "Chair", "qty": 2, "price": "40.00"}] if items is None else items,
            keys.PAYMENT_HISTORY: [] if payments is None else payments,
        }
        fields.update(meta or {})
        for key, value in fields.items():
            if value is not None:
                kv.set_field(host_id, key, value)
        db.session.commit()
        return host_id

    return _make


@pytest.fixture(scope='function')
def invoice_payload():
    """Factory for a create/update request body."""

    def _payload(**overrides):
        payload = {
            "invoice_number": "N25000100",
            "buyer": {"name": "Acme LLC", "tax_id": "204567891", "phone": "555-0100", "email": "ap@acme.test"},
            "items": [{"name": "Desk", "qty": 1, "price": "150.00"}],
            "payments": [],
        }
        payload.update(overrides)
        return payload

    return _payload
