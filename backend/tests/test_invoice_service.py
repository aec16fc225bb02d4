# Overview: Pytest coverage for invoice create/update, the activation latch, and the legacy mirror.

"""
Invoice Lifecycle Service Tests

Test Coverage:
- Kind derived from payments on every write (proforma kept)
- Activation latch: set once on fictive -> standard, cleared on revert
- created_at moves to the realization timestamp and the host record follows
- Legacy meta fields mirror every committed write
- Status changes and the post-commit inventory hook
"""

from datetime import date, datetime
from decimal import Decimal

import pytest

from invoicebridge.errors import SchemaError
from invoicebridge.extensions import db, repository_cache
from invoicebridge.services import InvoiceService
from invoicebridge.services.registry import get_invoice_service
from invoicebridge.stores import legacy_keys as keys


JAN_10 = datetime(2024, 1, 10, 9, 0, 0)
JAN_14 = datetime(2024, 1, 14, 15, 30, 0)


def _stored(service, invoice_id):
    return service.repositories.invoices.relational.find_by_id(invoice_id)


class RecordingHook:
    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    def on_status_change(self, invoice, old_status, new_status):
        self.calls.append((invoice.id, old_status, new_status))
        if self.fail:
            raise RuntimeError("stock service down")


@pytest.fixture
def fictive_invoice(service, invoice_payload):
    result = service.create_invoice(invoice_payload(), user_id=7, now=JAN_10)
    assert result.ok, result.errors
    return result


class TestCreate:
    def test_paid_invoice_is_born_standard_without_activation(self, service, invoice_payload, kv):
        result = service.create_invoice(
            invoice_payload(payments=[{"date": "2024-01-10", "amount": "100", "method": "cash"}]),
            user_id=7,
            now=JAN_10,
        )

        assert result.ok
        invoice = _stored(service, result.invoice_id)
        assert invoice.kind == "standard"
        assert invoice.activation_date is None
        assert invoice.created_at == JAN_10
        assert invoice.total_amount == Decimal("150.00")
        assert invoice.paid_amount == Decimal("100.00")
        assert invoice.balance == Decimal("50.00")
        assert invoice.author_id == 7
        assert kv.get_entity(result.host_id).created_at == JAN_10
        assert kv.get_field(result.host_id, keys.ACTIVATION_DATE) is None

    def test_unpaid_invoice_is_fictive(self, service, fictive_invoice):
        invoice = _stored(service, fictive_invoice.invoice_id)
        assert invoice.kind == "fictive"
        assert invoice.buyer_email == "ap@acme.test"

    def test_legacy_mirror_written(self, service, fictive_invoice, kv):
        host_id = fictive_invoice.host_id
        assert kv.get_field(host_id, keys.INVOICE_NUMBER) == "N25000100"
        assert kv.get_field(host_id, keys.BUYER_NAME) == "Acme LLC"
        assert kv.get_field(host_id, keys.INVOICE_KIND) == "fictive"
        assert kv.get_field(host_id, keys.TOTAL_AMOUNT) == "150.00"
        assert kv.get_field(host_id, keys.MIGRATED_MARKER) == "2024-01-10 09:00:00"
        items = kv.get_field(host_id, keys.ITEMS)
        assert len(items) == 1
        assert kv.get_field(host_id, keys.PAYMENT_HISTORY) == []

    def test_nameless_items_and_empty_payments_dropped(self, service, invoice_payload):
        result = service.create_invoice(
            invoice_payload(
                items=[{"name": "Desk", "qty": 1, "price": "150.00"}, {"name": "", "qty": 3, "price": "1"}],
                payments=[{"date": "2024-01-10", "amount": "0"}],
            ),
            now=JAN_10,
        )

        assert result.ok
        invoice = _stored(service, result.invoice_id)
        assert len(service.repositories.items.relational.list_for_invoice(invoice.id)) == 1
        assert service.repositories.payments.relational.list_for_invoice(invoice.id) == []
        assert invoice.kind == "fictive"

    def test_invoice_number_generated_when_missing(self, service, invoice_payload):
        payload = invoice_payload()
        del payload["invoice_number"]

        first = service.create_invoice(payload, now=JAN_10)
        second = service.create_invoice(payload, now=JAN_10)

        assert _stored(service, first.invoice_id).invoice_number == "N25000001"
        assert _stored(service, second.invoice_id).invoice_number == "N25000002"

    def test_generated_number_uses_configured_prefix(self, app, invoice_payload):
        app.config["INVOICE_NUMBER_PREFIX"] = "INV"
        service = get_invoice_service()
        payload = invoice_payload()
        del payload["invoice_number"]

        result = service.create_invoice(payload, now=JAN_10)

        assert result.ok, result.errors
        assert _stored(service, result.invoice_id).invoice_number == "INV25000001"
        # Numbers under another prefix no longer validate
        other = service.create_invoice(invoice_payload(invoice_number="N25000005"), now=JAN_10)
        assert other.error_kind == "validation"
        assert other.errors == ["Invoice number has an invalid format: N25000005"]

    def test_validation_failures(self, service, invoice_payload, kv):
        bad_item = service.create_invoice(invoice_payload(items=[{"name": "Desk", "qty": 0, "price": "1"}]))
        assert not bad_item.ok
        assert bad_item.error_kind == "validation"
        assert "Item 1: Quantity must be greater than 0" in bad_item.errors

        no_buyer = service.create_invoice(invoice_payload(buyer={"tax_id": "1", "phone": "2"}))
        assert not no_buyer.ok
        assert no_buyer.error_kind == "validation"
        assert "Buyer name is required" in no_buyer.errors
        # Nothing was left behind in the host store
        assert kv.count_entities(keys.INVOICE_RECORD_TYPE) == 0

    def test_duplicate_number_is_integrity_failure(self, service, fictive_invoice, invoice_payload):
        result = service.create_invoice(invoice_payload(), now=JAN_10)
        assert not result.ok
        assert result.error_kind == "integrity"

    def test_unavailable_when_tables_cannot_be_made_ready(self, service, invoice_payload, monkeypatch):
        def not_ready(*, strict=False):
            raise SchemaError("Relational tables are not ready: disk full")

        monkeypatch.setattr(service.reconciler, "ensure_ready", not_ready)

        result = service.create_invoice(invoice_payload())

        assert not result.ok
        assert result.error_kind == "unavailable"


class TestActivationLatch:
    def test_first_payment_activates_and_moves_created_at(self, service, fictive_invoice, kv):
        result = service.update_invoice(
            fictive_invoice.invoice_id,
            {"payments": [{"date": "2024-01-14", "amount": "50", "method": "cash"}]},
            now=JAN_14,
        )

        assert result.ok, result.errors
        invoice = _stored(service, fictive_invoice.invoice_id)
        assert invoice.kind == "standard"
        assert invoice.created_at == JAN_14
        assert invoice.activation_date == JAN_14
        assert invoice.balance == Decimal("100.00")
        assert kv.get_entity(fictive_invoice.host_id).created_at == JAN_14
        assert kv.get_field(fictive_invoice.host_id, keys.ACTIVATION_DATE) == "2024-01-14 15:30:00"

    def test_full_payment_timestamp_wins_over_now(self, service, fictive_invoice):
        service.update_invoice(
            fictive_invoice.invoice_id,
            {"payments": [
                {"date": "2024-01-13 11:00:00", "amount": "20"},
                {"date": "2024-01-12 08:15:00", "amount": "30"},
            ]},
            now=JAN_14,
        )

        invoice = _stored(service, fictive_invoice.invoice_id)
        assert invoice.activation_date == datetime(2024, 1, 12, 8, 15, 0)
        assert invoice.created_at == datetime(2024, 1, 12, 8, 15, 0)

    def test_later_edits_leave_dates_alone(self, service, fictive_invoice):
        service.update_invoice(
            fictive_invoice.invoice_id,
            {"payments": [{"date": "2024-01-14", "amount": "50"}]},
            now=JAN_14,
        )

        result = service.update_invoice(
            fictive_invoice.invoice_id,
            {"buyer": {"name": "Acme Holdings"}, "payments": [
                {"date": "2024-01-14", "amount": "50"},
                {"date": "2024-01-20", "amount": "100"},
            ]},
            now=datetime(2024, 1, 20, 12, 0, 0),
        )

        assert result.ok
        invoice = _stored(service, fictive_invoice.invoice_id)
        assert invoice.buyer_name == "Acme Holdings"
        assert invoice.created_at == JAN_14
        assert invoice.activation_date == JAN_14
        assert invoice.balance == Decimal("0.00")

    def test_edit_without_payments_keeps_stored_payments(self, service, fictive_invoice):
        service.update_invoice(
            fictive_invoice.invoice_id,
            {"payments": [{"date": "2024-01-14", "amount": "50"}]},
            now=JAN_14,
        )

        service.update_invoice(fictive_invoice.invoice_id, {"general_note": "call first"}, now=datetime(2024, 2, 1))

        invoice = _stored(service, fictive_invoice.invoice_id)
        assert invoice.kind == "standard"
        assert invoice.paid_amount == Decimal("50.00")
        assert invoice.general_note == "call first"
        assert invoice.created_at == JAN_14
        assert len(service.repositories.payments.relational.list_for_invoice(invoice.id)) == 1

    def test_removing_payments_reverts_to_fictive(self, service, fictive_invoice, kv):
        service.update_invoice(
            fictive_invoice.invoice_id,
            {"payments": [{"date": "2024-01-14", "amount": "50"}]},
            now=JAN_14,
        )

        result = service.update_invoice(fictive_invoice.invoice_id, {"payments": []}, now=datetime(2024, 1, 21))

        assert result.ok
        invoice = _stored(service, fictive_invoice.invoice_id)
        assert invoice.kind == "fictive"
        assert invoice.activation_date is None
        assert invoice.created_at == JAN_14
        assert kv.get_field(fictive_invoice.host_id, keys.ACTIVATION_DATE) is None
        assert kv.get_field(fictive_invoice.host_id, keys.INVOICE_KIND) == "fictive"

    def test_reactivation_after_revert_latches_again(self, service, fictive_invoice):
        service.update_invoice(fictive_invoice.invoice_id, {"payments": [{"date": "2024-01-14", "amount": "50"}]}, now=JAN_14)
        service.update_invoice(fictive_invoice.invoice_id, {"payments": []}, now=datetime(2024, 1, 21))

        service.update_invoice(
            fictive_invoice.invoice_id,
            {"payments": [{"date": "2024-02-02", "amount": "10"}]},
            now=datetime(2024, 2, 2, 10, 0, 0),
        )

        invoice = _stored(service, fictive_invoice.invoice_id)
        assert invoice.activation_date == datetime(2024, 2, 2, 10, 0, 0)
        assert invoice.created_at == datetime(2024, 2, 2, 10, 0, 0)

    def test_proforma_is_preserved(self, service, invoice_payload):
        created = service.create_invoice(
            invoice_payload(kind="proforma", payments=[{"date": "2024-01-10", "amount": "10"}]), now=JAN_10
        )
        assert _stored(service, created.invoice_id).kind == "proforma"

        service.update_invoice(created.invoice_id, {"payments": [{"date": "2024-01-11", "amount": "20"}]}, now=JAN_14)

        invoice = _stored(service, created.invoice_id)
        assert invoice.kind == "proforma"
        assert invoice.activation_date is None
        assert invoice.created_at == JAN_10

    def test_update_missing_invoice(self, service, reconciled):
        result = service.update_invoice(999, {"general_note": "x"})
        assert not result.ok
        assert result.error_kind == "not_found"


class TestHostTimestampSync:
    @pytest.mark.parametrize("host_id", [True, "abc", 0, -4, None, "12a"])
    def test_rejects_bad_host_ids(self, service, host_id):
        assert service.sync_host_created_at(host_id, "2024-01-14 15:30:00") is False

    @pytest.mark.parametrize("timestamp", ["2024-01-14", "2024-13-45 99:00:00", "yesterday", "", None])
    def test_rejects_bad_timestamps(self, service, make_legacy_invoice, timestamp):
        host_id = make_legacy_invoice()
        assert service.sync_host_created_at(host_id, timestamp) is False

    def test_accepts_numeric_string_id(self, service, make_legacy_invoice, kv):
        host_id = make_legacy_invoice()
        assert service.sync_host_created_at(str(host_id), "2024-02-01 10:00:00") is True
        assert kv.get_entity(host_id).created_at == datetime(2024, 2, 1, 10, 0, 0)


class TestRealizationTimestamp:
    def test_date_only_uses_time_of_now(self, service):
        stamp = service.realization_timestamp([{"payment_date": date(2024, 1, 14), "amount": "5"}], JAN_14)
        assert stamp == JAN_14

    def test_ignores_non_positive_and_undated(self, service):
        now = datetime(2024, 3, 1, 12, 0, 0)
        entries = [{"date": "2024-01-01 10:00:00", "amount": "0"}, {"amount": "5"}, "junk"]
        assert service.realization_timestamp(entries, now) == now


class TestWorkflowStatus:
    @pytest.fixture
    def hooked(self, kv, repositories, reconciler):
        hook = RecordingHook()
        return InvoiceService(kv, repositories, reconciler, repository_cache, inventory_hook=hook), hook

    def test_status_change_calls_hook_after_commit(self, hooked, invoice_payload, kv):
        service, hook = hooked
        created = service.create_invoice(invoice_payload(), now=JAN_10)

        result = service.mark_completed(created.invoice_id)

        assert result.ok
        assert result.warnings == []
        assert hook.calls == [(created.invoice_id, "unfinished", "completed")]
        assert _stored(service, created.invoice_id).workflow_status == "completed"
        assert kv.get_field(created.host_id, keys.WORKFLOW_STATUS) == "completed"

        # Same status again: no side effect
        service.mark_completed(created.invoice_id)
        assert len(hook.calls) == 1

    def test_hook_failure_is_reported_not_raised(self, hooked, invoice_payload):
        service, hook = hooked
        hook.fail = True
        created = service.create_invoice(invoice_payload(), now=JAN_10)

        result = service.set_workflow_status(created.invoice_id, "reserved")

        assert result.ok
        assert result.warnings == ["Inventory update failed: stock service down"]
        db.session.rollback()
        assert _stored(service, created.invoice_id).workflow_status == "reserved"

    def test_invalid_status_rejected(self, service, fictive_invoice):
        result = service.set_workflow_status(fictive_invoice.invoice_id, "shipped")

        assert not result.ok
        assert result.error_kind == "validation"
        assert result.errors == ["Invalid workflow status: shipped"]
        assert _stored(service, fictive_invoice.invoice_id).workflow_status == "unfinished"


class TestReadsAndDelete:
    def test_get_invoice_bundle(self, service, fictive_invoice):
        bundle = service.get_invoice(fictive_invoice.invoice_id)
        assert bundle["invoice"]["invoice_number"] == "N25000100"
        assert bundle["invoice"]["kind"] == "fictive"
        assert [item["product_name"] for item in bundle["items"]] == ["Desk"]
        assert bundle["payments"] == []

        assert service.get_invoice_by_host_id(fictive_invoice.host_id)["invoice"]["id"] == fictive_invoice.invoice_id

    def test_delete_removes_host_record(self, service, fictive_invoice, kv):
        result = service.delete_invoice(fictive_invoice.invoice_id)

        assert result.ok
        assert _stored(service, fictive_invoice.invoice_id) is None
        assert kv.get_entity(fictive_invoice.host_id) is None
        assert service.repositories.items.relational.list_for_invoice(fictive_invoice.invoice_id) == []
