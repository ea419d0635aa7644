import json
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from database import check_connection, session_scope
from models import Invoice, InvoiceItem, InvoiceStatus, Payment
from services import record_store


def _invoice(number="INV-1"):
    return Invoice(
        invoice_number=number,
        client_name="Alice",
        client_hive_address="alice",
        subtotal=Decimal("10"),
        tax=Decimal("0"),
        total=Decimal("10"),
        currency="USD",
        hive_conversion_data=json.dumps({"hive_amount": "40", "hbd_amount": "10"}),
        due_date=datetime(2026, 12, 31),
    )


def _items(*descriptions):
    return [
        InvoiceItem(description=d, quantity=Decimal("1"), unit_price=Decimal("5"), total=Decimal("5"))
        for d in descriptions
    ]


def _pay(db, invoice_id, tx="aa", amount="1", currency="HIVE", block=1):
    return record_store.record_payment(
        db,
        invoice_id=invoice_id,
        from_account="alice",
        amount=Decimal(amount),
        currency=currency,
        block_number=block,
        transaction_id=tx,
    )


class TestInvoices:

    def test_items_keep_order(self, session_factory):
        with session_scope(session_factory) as db:
            invoice_id = record_store.insert_invoice(db, _invoice(), _items("c", "a", "b")).id

        with session_scope(session_factory) as db:
            invoice = record_store.get_invoice(db, invoice_id)
            assert [i.description for i in invoice.items] == ["c", "a", "b"]
            assert [i.position for i in invoice.items] == [0, 1, 2]

    def test_lookup_by_number_ignores_case(self, session_factory):
        with session_scope(session_factory) as db:
            record_store.insert_invoice(db, _invoice("INV-77"), _items("x"))
        with session_scope(session_factory) as db:
            assert record_store.get_invoice_by_number(db, "inv-77").invoice_number == "INV-77"
            assert record_store.get_invoice_by_number(db, "INV-78") is None

    def test_new_invoice_is_pending_with_defaults(self, session_factory):
        with session_scope(session_factory) as db:
            invoice = record_store.insert_invoice(db, _invoice(), _items("x"))
            assert invoice.status == InvoiceStatus.PENDING
            assert invoice.created_at is not None
            assert len(invoice.id) == 36

    def test_duplicate_number_rejected(self, session_factory):
        with session_scope(session_factory) as db:
            record_store.insert_invoice(db, _invoice("INV-1"), _items("x"))
        with pytest.raises(IntegrityError):
            with session_scope(session_factory) as db:
                record_store.insert_invoice(db, _invoice("INV-1"), _items("x"))

    def test_attach_ledger_reference(self, session_factory):
        with session_scope(session_factory) as db:
            invoice = record_store.insert_invoice(db, _invoice(), _items("x"))
            record_store.attach_ledger_reference(db, invoice, "tx1", "#cipher", "@op/link")
            invoice_id = invoice.id
        with session_scope(session_factory) as db:
            invoice = record_store.get_invoice(db, invoice_id)
            assert (invoice.hive_transaction_id, invoice.encrypted_data, invoice.shareable_link) == (
                "tx1", "#cipher", "@op/link"
            )

    def test_delete_cascades(self, session_factory):
        with session_scope(session_factory) as db:
            invoice_id = record_store.insert_invoice(db, _invoice(), _items("x", "y")).id
            _pay(db, invoice_id)
        with session_scope(session_factory) as db:
            assert record_store.delete_invoice(db, invoice_id)
            assert not record_store.delete_invoice(db, invoice_id)
        with session_scope(session_factory) as db:
            assert db.query(InvoiceItem).count() == 0
            assert db.query(Payment).count() == 0

    def test_list_newest_first_with_filter(self, session_factory):
        with session_scope(session_factory) as db:
            first = _invoice("INV-1")
            first.created_at = datetime(2026, 1, 1)
            second = _invoice("INV-2")
            second.created_at = datetime(2026, 2, 1)
            second.status = InvoiceStatus.PAID
            record_store.insert_invoice(db, first, _items("x"))
            record_store.insert_invoice(db, second, _items("x"))

        with session_scope(session_factory) as db:
            assert [i.invoice_number for i in record_store.list_invoices(db)] == ["INV-2", "INV-1"]
            assert [i.invoice_number for i in record_store.list_invoices(db, InvoiceStatus.PENDING)] == ["INV-1"]
            assert len(record_store.list_invoices(db, limit=1)) == 1

    def test_status_only_advances(self, session_factory):
        with session_scope(session_factory) as db:
            invoice = record_store.insert_invoice(db, _invoice(), _items("x"))
            assert record_store.update_invoice_status(db, invoice, InvoiceStatus.PAID)
            assert not record_store.update_invoice_status(db, invoice, InvoiceStatus.PARTIAL)
            assert invoice.status == InvoiceStatus.PAID


class TestPayments:

    def test_recorded_once_per_transaction_and_invoice(self, session_factory):
        with session_scope(session_factory) as db:
            invoice_id = record_store.insert_invoice(db, _invoice(), _items("x")).id
            assert _pay(db, invoice_id, tx="aa") is not None
            assert _pay(db, invoice_id, tx="aa") is None
            assert _pay(db, invoice_id, tx="bb") is not None

    def test_payment_exists(self, session_factory):
        with session_scope(session_factory) as db:
            invoice_id = record_store.insert_invoice(db, _invoice(), _items("x")).id
            assert not record_store.payment_exists(db, "aa", invoice_id)
            _pay(db, invoice_id, tx="aa")
            assert record_store.payment_exists(db, "aa", invoice_id)
            assert not record_store.payment_exists(db, "aa", "other-invoice")

    def test_unique_constraint_backs_up_check(self, session_factory):
        with session_scope(session_factory) as db:
            invoice_id = record_store.insert_invoice(db, _invoice(), _items("x")).id
            _pay(db, invoice_id, tx="aa")
        with pytest.raises(IntegrityError):
            with session_scope(session_factory) as db:
                db.add(Payment(
                    invoice_id=invoice_id, from_account="alice", amount=Decimal("1"),
                    currency="HIVE", block_number=1, transaction_id="aa",
                ))

    def test_totals_per_unit(self, session_factory):
        with session_scope(session_factory) as db:
            invoice_id = record_store.insert_invoice(db, _invoice(), _items("x")).id
            assert record_store.payment_totals(db, invoice_id) == {"HIVE": 0, "HBD": 0}
            _pay(db, invoice_id, tx="aa", amount="6")
            _pay(db, invoice_id, tx="bb", amount="4")
            _pay(db, invoice_id, tx="cc", amount="1.5", currency="HBD")
            assert record_store.payment_totals(db, invoice_id) == {"HIVE": Decimal("10"), "HBD": Decimal("1.5")}

    def test_list_newest_block_first(self, session_factory):
        with session_scope(session_factory) as db:
            invoice_id = record_store.insert_invoice(db, _invoice(), _items("x")).id
            _pay(db, invoice_id, tx="aa", block=5)
            _pay(db, invoice_id, tx="bb", block=9)
            assert [p.block_number for p in record_store.list_payments(db, invoice_id)] == [9, 5]


class TestState:

    def test_config_values(self, session_factory):
        with session_scope(session_factory) as db:
            assert record_store.get_config_value(db, "k") is None
            record_store.set_config_value(db, "k", "1")
            record_store.set_config_value(db, "k", "2")
        with session_scope(session_factory) as db:
            assert record_store.get_config_value(db, "k") == "2"

    def test_checkpoint(self, session_factory):
        with session_scope(session_factory) as db:
            assert record_store.get_last_processed_block(db) is None
            assert record_store.save_last_processed_block(db, 10) == 10
            assert record_store.save_last_processed_block(db, 12) == 12
            assert record_store.save_last_processed_block(db, 11) == 12
            assert record_store.get_last_processed_block(db) == 12

    def test_check_connection(self, engine):
        assert check_connection(engine)
