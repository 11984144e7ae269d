"""Tests for invoicing an order: totals, payment lines and close-out."""

import pytest
from decimal import Decimal

from app.core.errors import Forbidden, NotFound, StateConflict, ValidationError
from app.core.rbac import UserRole
from app.models.invoice import Invoice, InvoicePayment
from app.models.restaurant import Order, Table
from app.services.invoice_service import InvoiceService, legacy_method, normalize_payments
from app.services.order_item_service import OrderItemService
from app.services.order_service import OrderService

WAITER = UserRole.WAITER
KITCHEN = UserRole.KITCHEN


@pytest.fixture
def order(db_session, table, product):
    """Open order on T1 with one 2 x 1000 item."""
    order, _ = OrderService(db_session).open_table(table.id, WAITER)
    OrderItemService(db_session).add_item(order.id, product.id, Decimal("2"), Decimal("1000"), WAITER)
    return order


@pytest.fixture
def invoices(db_session) -> InvoiceService:
    return InvoiceService(db_session)


def _reload(db_session, model, pk):
    db_session.expire_all()
    return db_session.get(model, pk)


class TestInvoiceOrder:

    def test_single_cash_payment(self, db_session, invoices, order, customer, table):
        invoice = invoices.invoice_order(
            order.id, customer.id, WAITER, payments=[{"method": "cash", "amount": "2000"}]
        )
        assert invoice.total == Decimal("2000")
        assert invoice.payment_method == "cash"
        assert len(invoice.lines) == 1
        assert invoice.lines[0].subtotal == Decimal("2000")
        assert [p.amount for p in invoice.payments] == [Decimal("2000")]

        closed = _reload(db_session, Order, order.id)
        assert closed.status == "closed"
        assert closed.total == Decimal("2000")
        assert _reload(db_session, Table, table.id).status == "free"

    def test_mixed_payments(self, invoices, order, customer):
        invoice = invoices.invoice_order(order.id, customer.id, WAITER, payments=[
            {"method": "cash", "amount": "1000"},
            {"method": "card", "amount": "1000", "reference": " 4242 "},
        ])
        assert invoice.payment_method == "mixed"
        assert sorted(p.method for p in invoice.payments) == ["card", "cash"]
        assert {p.reference for p in invoice.payments} == {None, "4242"}
        assert sum(p.amount for p in invoice.payments) == invoice.total

    def test_payment_within_tolerance(self, invoices, order, customer):
        invoice = invoices.invoice_order(
            order.id, customer.id, WAITER, payments=[{"method": "transfer", "amount": "1999.995"}]
        )
        assert invoice.payment_method == "transfer"

    def test_payment_mismatch_rolls_back(self, db_session, invoices, order, customer, table):
        with pytest.raises(StateConflict):
            invoices.invoice_order(order.id, customer.id, WAITER, payments=[
                {"method": "cash", "amount": "1000"},
                {"method": "card", "amount": "900"},
            ])
        assert db_session.query(Invoice).count() == 0
        assert db_session.query(InvoicePayment).count() == 0
        assert _reload(db_session, Order, order.id).status == "open"
        assert _reload(db_session, Table, table.id).status == "occupied"

    def test_cancelled_items_are_not_invoiced(self, db_session, invoices, order, customer, second_product):
        extra = OrderItemService(db_session).add_item(
            order.id, second_product.id, Decimal("1"), Decimal("500"), WAITER
        )
        OrderItemService(db_session).cancel_item(extra.id, WAITER)
        invoice = invoices.invoice_order(order.id, customer.id, WAITER)
        assert invoice.total == Decimal("2000")
        assert len(invoice.lines) == 1

    def test_no_active_items(self, db_session, invoices, table, product, customer):
        order, _ = OrderService(db_session).open_table(table.id, WAITER)
        with pytest.raises(ValidationError):
            invoices.invoice_order(order.id, customer.id, WAITER)

    def test_customer_required(self, invoices, order):
        with pytest.raises(ValidationError):
            invoices.invoice_order(order.id, None, WAITER)

    def test_unknown_customer(self, invoices, order):
        with pytest.raises(NotFound):
            invoices.invoice_order(order.id, 999, WAITER)

    def test_unknown_order(self, invoices, customer):
        with pytest.raises(NotFound):
            invoices.invoice_order(999, customer.id, WAITER)

    def test_already_closed(self, invoices, order, customer):
        invoices.invoice_order(order.id, customer.id, WAITER)
        with pytest.raises(StateConflict):
            invoices.invoice_order(order.id, customer.id, WAITER)

    def test_kitchen_cannot_invoice(self, invoices, order, customer):
        with pytest.raises(Forbidden):
            invoices.invoice_order(order.id, customer.id, KITCHEN)


class TestLegacySingleMethod:

    def test_defaults_to_cash(self, invoices, order, customer):
        invoice = invoices.invoice_order(order.id, customer.id, WAITER)
        assert invoice.payment_method == "cash"
        assert len(invoice.payments) == 1
        assert invoice.payments[0].amount == Decimal("2000")

    def test_card_tag(self, invoices, order, customer):
        invoice = invoices.invoice_order(order.id, customer.id, WAITER, payment_method="CARD")
        assert invoice.payment_method == "card"
        assert invoice.payments[0].method == "card"

    def test_mixed_tag_records_cash_row(self, invoices, order, customer):
        invoice = invoices.invoice_order(order.id, customer.id, WAITER, payment_method="mixed")
        assert invoice.payment_method == "mixed"
        assert invoice.payments[0].method == "cash"

    def test_unknown_method_falls_back(self):
        assert legacy_method("bitcoin") == "cash"
        assert legacy_method(None) == "cash"
        assert legacy_method(" Transfer ") == "transfer"


class TestNormalizePayments:

    def test_rejects_unknown_method(self):
        with pytest.raises(ValidationError):
            normalize_payments([{"method": "cheque", "amount": 10}])

    def test_rejects_zero_amount(self):
        with pytest.raises(ValidationError):
            normalize_payments([{"method": "cash", "amount": 0}])

    def test_normalizes(self):
        lines = normalize_payments([{"method": " Cash ", "amount": "10.50", "reference": ""}])
        assert lines == [{"method": "cash", "amount": Decimal("10.50"), "reference": None}]
