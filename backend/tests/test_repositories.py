# Overview: Pytest coverage for relational repositories, the read cache, and legacy fallback routing.

from datetime import date, datetime
from decimal import Decimal

import pytest
import sqlalchemy as sa

from invoicebridge.database.schema import invoice_items
from invoicebridge.dto import CustomerDTO, InvoiceDTO, InvoiceItemDTO, PaymentDTO
from invoicebridge.errors import ValidationError
from invoicebridge.extensions import db, repository_cache
from invoicebridge.repositories.base import invoice_key
from invoicebridge.services.ports import TaxIdCustomerSync


def _invoice(number="N25000001", host_id=1, **fields):
    raw = {
        "invoice_number": number,
        "old_post_id": host_id,
        "buyer_name": "Acme LLC",
        "buyer_tax_id": "204567891",
        "buyer_phone": "555-0100",
        "total_amount": "100.00",
        "created_at": "2024-01-10 09:00:00",
    }
    raw.update(fields)
    return InvoiceDTO.from_dict(raw)


class TestRelationalInvoices:
    def test_create_recomputes_balance(self, reconciled, repositories):
        """Stored balance is total - paid whatever the input says."""
        result = repositories.invoices.create(_invoice(paid_amount="30.00", balance="5.00"))
        db.session.commit()

        assert result.ok
        stored = repositories.invoices.find_by_id(result.id)
        assert stored.balance == Decimal("70.00")
        assert stored.balance == stored.total_amount - stored.paid_amount
        assert stored.kind == "standard"
        assert stored.created_at == datetime(2024, 1, 10, 9, 0, 0)

    def test_duplicate_invoice_number_is_an_integrity_failure(self, reconciled, repositories):
        assert repositories.invoices.create(_invoice(host_id=1)).ok
        db.session.commit()

        duplicate = repositories.invoices.create(_invoice(host_id=2))

        assert not duplicate.ok
        assert duplicate.error_kind == "integrity"

    def test_validation_failure_lists_errors(self, reconciled, repositories):
        result = repositories.invoices.create(_invoice(number="BAD", buyer_name=""))
        assert not result.ok
        assert result.error_kind == "validation"
        assert "Buyer name is required" in result.errors

    def test_update_missing_invoice(self, reconciled, repositories):
        result = repositories.invoices.update(999, _invoice())
        assert result.error_kind == "not_found"

    def test_lookups(self, reconciled, repositories):
        created = repositories.invoices.create(_invoice(host_id=41))
        db.session.commit()

        assert repositories.invoices.find_by_invoice_number("n25000001").id == created.id
        assert repositories.invoices.find_by_host_id(41).id == created.id
        assert repositories.invoices.relational.exists(created.id)
        assert repositories.invoices.find_by_id(created.id + 100) is None

    def test_update_invalidates_cache(self, reconciled, repositories):
        created = repositories.invoices.create(_invoice())
        db.session.commit()
        repositories.invoices.find_by_id(created.id)
        assert repository_cache.contains(invoice_key(created.id))

        changed = _invoice(buyer_name="Beta Inc")
        assert repositories.invoices.update(created.id, changed).ok
        db.session.commit()

        assert not repository_cache.contains(invoice_key(created.id))
        assert repositories.invoices.find_by_id(created.id).buyer_name == "Beta Inc"

    def test_next_invoice_number(self, reconciled, repositories):
        relational = repositories.invoices.relational
        assert relational.next_invoice_number("N", 25000000) == "N25000001"

        repositories.invoices.create(_invoice(number="N25000041"))
        db.session.commit()
        assert relational.next_invoice_number("N", 25000000) == "N25000042"

    def test_list_filters_on_effective_date(self, reconciled, repositories):
        repositories.invoices.create(_invoice("N25000001", 1, created_at="2024-01-10 09:00:00"))
        repositories.invoices.create(_invoice(
            "N25000002", 2, created_at="2024-01-14 15:30:00", activation_date="2024-01-14 15:30:00", paid_amount="10.00"
        ))
        repositories.invoices.create(_invoice("N25000003", 3, created_at="2024-02-01 08:00:00"))
        db.session.commit()

        page = repositories.invoices.list_by_filter({"date_from": "2024-01-11", "date_to": "2024-01-31"})
        assert [inv.invoice_number for inv in page.items] == ["N25000002"]

        everything = repositories.invoices.list_by_filter(order_by="effective_date", order="asc")
        assert [inv.invoice_number for inv in everything.items] == ["N25000001", "N25000002", "N25000003"]
        assert everything.total == 3

    def test_statistics(self, reconciled, repositories):
        first = repositories.invoices.create(_invoice("N25000001", 1, paid_amount="100.00"))
        repositories.invoices.create(_invoice("N25000002", 2, total_amount="50.00"))
        payment = PaymentDTO.from_dict({"invoice_id": first.id, "date": "2024-01-10", "amount": 100, "method": "cash"})
        assert repositories.payments.create(payment).ok
        db.session.commit()

        stats = repositories.invoices.statistics()

        assert stats["invoice_count"] == 2
        assert stats["total_revenue"] == "150.00"
        assert stats["total_outstanding"] == "50.00"
        assert stats["average_invoice"] == "75.00"
        assert stats["standard_count"] == 1
        assert stats["fictive_count"] == 1
        assert stats["payment_methods"] == {"cash": {"count": 1, "amount": "100.00"}}


class TestChildren:
    def test_bulk_insert_renumbers_sort_order(self, reconciled, repositories):
        invoice_id = repositories.invoices.create(_invoice()).id
        items = [InvoiceItemDTO.from_dict({"name": n, "qty": 1, "price": 5, "sort_order": 9}) for n in ("A", "B")]

        result = repositories.items.bulk_insert(invoice_id, items)
        db.session.commit()

        assert result.ok and result.affected == 2
        stored = repositories.items.relational.list_for_invoice(invoice_id)
        assert [(i.product_name, i.sort_order) for i in stored] == [("A", 0), ("B", 1)]

    def test_one_bad_item_rejects_the_batch(self, reconciled, repositories):
        invoice_id = repositories.invoices.create(_invoice()).id
        items = [InvoiceItemDTO.from_dict({"name": "A"}), InvoiceItemDTO.from_dict({"name": "B", "qty": 0})]

        result = repositories.items.bulk_insert(invoice_id, items)

        assert result.error_kind == "validation"
        assert repositories.items.relational.count_for_invoice(invoice_id) == 0

    def test_orphan_item_is_rejected(self, reconciled, repositories):
        """Writes against a missing parent fail instead of leaving orphans."""
        result = repositories.items.relational.create(InvoiceItemDTO.from_dict({"invoice_id": 404, "name": "A"}))
        assert not result.ok
        assert result.error_kind == "integrity"

        payment = PaymentDTO.from_dict({"invoice_id": 404, "date": "2024-01-10", "amount": 5})
        assert repositories.payments.create(payment).error_kind == "integrity"

    def test_orphans_are_reported_by_verify(self, reconciled):
        db.session.execute(sa.insert(invoice_items).values(
            invoice_id=404, product_name="Ghost", created_at=datetime(2024, 1, 10)
        ))
        db.session.commit()

        report = reconciled.verify_integrity()

        assert report["orphan_items"] == 1
        assert report["orphan_payments"] == 0
        assert report["issues"] == ["Found 1 orphaned invoice items"]

    def test_payments_ordered_by_date(self, reconciled, repositories):
        invoice_id = repositories.invoices.create(_invoice()).id
        for day in (14, 10):
            repositories.payments.create(
                PaymentDTO.from_dict({"invoice_id": invoice_id, "date": f"2024-01-{day}", "amount": 10})
            )
        db.session.commit()

        stored = repositories.payments.relational.list_for_invoice(invoice_id)
        assert [p.payment_date for p in stored] == [date(2024, 1, 10), date(2024, 1, 14)]
        assert repositories.payments.relational.total_paid(invoice_id) == Decimal("20.00")

    def test_child_aggregates(self, reconciled, repositories):
        invoice_id = repositories.invoices.create(_invoice()).id
        repositories.items.bulk_insert(invoice_id, [
            InvoiceItemDTO.from_dict({"product_id": 3, "name": "Chair", "qty": 2, "price": 5}),
            InvoiceItemDTO.from_dict({"product_id": 4, "name": "Desk", "qty": 1, "price": 30}),
        ])
        for amount, method in ((10, "cash"), (20, "company_transfer")):
            repositories.payments.create(PaymentDTO.from_dict(
                {"invoice_id": invoice_id, "date": "2024-01-11", "amount": amount, "method": method}
            ))
        db.session.commit()

        products = repositories.items.relational.quantity_by_product()
        assert [(p["product_id"], p["quantity"], p["revenue"]) for p in products] == [
            (4, "1.00", "30.00"),
            (3, "2.00", "10.00"),
        ]

        summary = repositories.payments.relational.summary()
        assert summary == {"payment_count": 2, "total_amount": "30.00", "average_amount": "15.00"}

        breakdown = repositories.payments.relational.method_breakdown({"date_from": "2024-01-01"})
        assert breakdown == {
            "cash": {"count": 1, "amount": "10.00"},
            "transfer": {"count": 1, "amount": "20.00"},
        }
        assert repositories.payments.relational.method_breakdown({"date_from": "2024-02-01"}) == {}


class TestLegacyFallback:
    def test_reads_fall_back_before_tables_exist(self, repositories, make_legacy_invoice):
        host_id = make_legacy_invoice(payments=[{"date": "2024-01-12", "amount": "30"}])

        assert not repositories.invoices.tables_ready()
        invoice = repositories.invoices.find_by_host_id(host_id)
        assert invoice.invoice_number == "N25000001"
        assert invoice.balance == Decimal("50.00")
        assert invoice.kind == "standard"
        assert repositories.invoices.find_by_invoice_number("N25000001").old_post_id == host_id
        assert repositories.invoices.find_by_id(1) is None

        assert [i.product_name for i in repositories.items.list_for_invoice(invoice)] == ["Chair"]
        assert [p.amount for p in repositories.payments.list_for_invoice(invoice)] == [Decimal("30.00")]

    def test_writes_need_relational_tables(self, repositories):
        result = repositories.invoices.create(_invoice())
        assert result.error_kind == "unavailable"

    def test_lists_use_legacy_until_relational_has_data(self, reconciled, repositories, make_legacy_invoice):
        make_legacy_invoice("N25000001")
        make_legacy_invoice("N25000002", created_at=datetime(2024, 1, 12, 9, 0, 0))

        page = repositories.invoices.list_by_filter()
        assert [inv.invoice_number for inv in page.items] == ["N25000002", "N25000001"]
        assert repositories.invoices.statistics()["invoice_count"] == 2

        repositories.invoices.create(_invoice("N25000009", 99))
        db.session.commit()
        assert repositories.invoices.count() == 1

    def test_unmigrated_natural_key_lookup_falls_back(self, reconciled, repositories, make_legacy_invoice):
        host_id = make_legacy_invoice("N25000007")
        found = repositories.invoices.find_by_host_id(host_id)
        assert found is not None and found.id is None

    def test_ordering_is_the_same_before_and_after_migration(self, repositories, engine, make_legacy_invoice):
        for number, price, day in (("N25000001", "40", 10), ("N25000002", "10", 12), ("N25000003", "25", 11)):
            make_legacy_invoice(
                number, items=[{"name": "Chair", "qty": 1, "price": price}], created_at=datetime(2024, 1, day, 9, 0, 0)
            )
        orderings = [
            ({}, ["N25000002", "N25000003", "N25000001"]),
            ({"order_by": "total_amount", "order": "asc"}, ["N25000002", "N25000003", "N25000001"]),
            ({"order_by": "total_amount"}, ["N25000001", "N25000003", "N25000002"]),
            ({"order_by": "invoice_number", "order": "asc"}, ["N25000001", "N25000002", "N25000003"]),
        ]

        def listed(**ordering):
            return [inv.invoice_number for inv in repositories.invoices.list_by_filter(**ordering).items]

        assert not repositories.invoices.tables_populated()
        for ordering, expected in orderings:
            assert listed(**ordering) == expected
        with pytest.raises(ValidationError):
            listed(order_by="bogus")

        assert engine.run_batch().migrated_count == 3
        assert repositories.invoices.tables_populated()
        for ordering, expected in orderings:
            assert listed(**ordering) == expected
        with pytest.raises(ValidationError):
            listed(order_by="bogus")


class TestCustomers:
    def test_create_and_find_by_tax_id(self, reconciled, repositories):
        customer = CustomerDTO.from_dict({"name": "Acme LLC", "tax_id": "204567891", "phone": "555-0100"})

        result = repositories.customers.create(customer)
        db.session.commit()

        assert result.ok
        found = repositories.customers.find_by_tax_id(" 204567891 ")
        assert found.id == result.id
        assert found.name == "Acme LLC"
        assert repositories.customers.find_by_id(result.id).phone == "555-0100"
        assert repositories.customers.find_by_tax_id("") is None

    def test_invalid_customer_is_rejected(self, reconciled, repositories):
        result = repositories.customers.create(CustomerDTO.from_dict({"name": "Acme LLC"}))
        assert result.error_kind == "validation"
        assert "Customer tax ID is required" in result.errors
        assert repositories.customers.count() == 0

    def test_tax_id_sync_reuses_customers(self, reconciled, repositories):
        sync = TaxIdCustomerSync(repositories.customers)

        first = sync.sync(_invoice())
        second = sync.sync(_invoice("N25000002", 2))
        other = sync.sync(_invoice("N25000003", 3, buyer_tax_id="999"))
        db.session.commit()

        assert first == second
        assert other != first
        assert repositories.customers.count() == 2
        # An existing reference is kept
        assert sync.sync(_invoice(customer_id=41)) == 41
