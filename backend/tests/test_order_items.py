"""Tests for the order item state engine (add/edit/delete/send/advance/deliver/cancel)."""

import pytest
from decimal import Decimal

from app.core.errors import Forbidden, NotFound, StateConflict, ValidationError
from app.core.rbac import UserRole
from app.models.restaurant import Order, OrderItem, Table
from app.services.order_item_service import OrderItemService, compute_subtotal
from app.services.order_service import OrderService

ADMIN = UserRole.ADMIN
WAITER = UserRole.WAITER
KITCHEN = UserRole.KITCHEN


@pytest.fixture
def order(db_session, table) -> Order:
    order, _ = OrderService(db_session).open_table(table.id, WAITER)
    return order


@pytest.fixture
def items(db_session) -> OrderItemService:
    return OrderItemService(db_session)


def _table_status(db_session, table_id):
    db_session.expire_all()
    return db_session.get(Table, table_id).status


def _add(items, order, product, qty="2", price="1000", **kw):
    return items.add_item(order.id, product.id, Decimal(qty), Decimal(price), WAITER, **kw)


# ============== Add ==============

class TestAddItem:

    def test_add_creates_pending_with_subtotal(self, db_session, items, order, product, table):
        item = _add(items, order, product)
        assert item.status == "pending"
        assert item.subtotal == Decimal("2000")
        assert item.unit == "UND"
        assert _table_status(db_session, table.id) == "occupied"

    def test_subtotal_rounds_to_cents(self, items, order, product):
        item = _add(items, order, product, qty="1.333", price="10.00")
        assert item.subtotal == Decimal("13.33")
        assert compute_subtotal(Decimal("0.5"), Decimal("0.05")) == Decimal("0.03")

    def test_note_is_trimmed_and_unit_kept(self, items, order, product):
        item = _add(items, order, product, unit="KG", note="  sin cebolla  ")
        assert item.unit == "KG"
        assert item.note == "sin cebolla"

    @pytest.mark.parametrize("qty", ["0", "-1"])
    def test_rejects_non_positive_quantity(self, items, order, product, qty):
        with pytest.raises(ValidationError):
            _add(items, order, product, qty=qty)

    def test_rejects_missing_price(self, items, order, product):
        with pytest.raises(ValidationError):
            items.add_item(order.id, product.id, Decimal("1"), None, WAITER)

    def test_rejects_zero_price(self, items, order, product):
        with pytest.raises(ValidationError):
            _add(items, order, product, price="0")

    def test_rejects_missing_product(self, items, order):
        with pytest.raises(ValidationError):
            items.add_item(order.id, None, Decimal("1"), Decimal("10"), WAITER)

    def test_unknown_product(self, items, order):
        with pytest.raises(NotFound):
            items.add_item(order.id, 9999, Decimal("1"), Decimal("10"), WAITER)

    def test_unknown_order(self, items, product):
        with pytest.raises(NotFound):
            items.add_item(9999, product.id, Decimal("1"), Decimal("10"), WAITER)

    def test_closed_order_refuses_items(self, db_session, items, order, product):
        order.status = "closed"
        db_session.commit()
        with pytest.raises(StateConflict):
            _add(items, order, product)

    def test_kitchen_cannot_add(self, items, order, product):
        with pytest.raises(Forbidden):
            items.add_item(order.id, product.id, Decimal("1"), Decimal("10"), KITCHEN)

    def test_failed_add_leaves_table_free(self, db_session, items, order, table):
        with pytest.raises(NotFound):
            items.add_item(order.id, 9999, Decimal("1"), Decimal("10"), WAITER)
        assert _table_status(db_session, table.id) == "free"
        assert db_session.query(OrderItem).count() == 0


# ============== Edit / delete ==============

class TestEditAndDelete:

    def test_edit_quantity_recomputes_subtotal(self, items, order, product):
        item = _add(items, order, product)
        edited = items.edit_item(item.id, WAITER, quantity=Decimal("3"))
        assert edited.quantity == Decimal("3")
        assert edited.subtotal == Decimal("3000")

    def test_edit_note_only(self, items, order, product):
        item = _add(items, order, product, note="old")
        edited = items.edit_item(item.id, WAITER, note="   ")
        assert edited.note is None
        assert edited.quantity == Decimal("2")

    def test_edit_to_zero_is_invalid(self, items, order, product):
        item = _add(items, order, product)
        with pytest.raises(ValidationError):
            items.edit_item(item.id, WAITER, quantity=Decimal("0"))

    def test_edit_after_send_conflicts_and_leaves_item(self, db_session, items, order, product):
        item = _add(items, order, product)
        items.send_item(item.id, WAITER)
        with pytest.raises(StateConflict):
            items.edit_item(item.id, WAITER, quantity=Decimal("5"))
        db_session.expire_all()
        unchanged = db_session.get(OrderItem, item.id)
        assert unchanged.quantity == Decimal("2")
        assert unchanged.subtotal == Decimal("2000")

    def test_delete_pending(self, db_session, items, order, product, table):
        item = _add(items, order, product)
        items.delete_item(item.id, WAITER)
        assert db_session.get(OrderItem, item.id) is None
        assert _table_status(db_session, table.id) == "free"

    def test_delete_sent_conflicts(self, db_session, items, order, product):
        item = _add(items, order, product)
        items.send_item(item.id, WAITER)
        with pytest.raises(StateConflict):
            items.delete_item(item.id, WAITER)
        assert db_session.get(OrderItem, item.id) is not None

    def test_missing_item(self, items):
        with pytest.raises(NotFound):
            items.delete_item(12345, WAITER)


# ============== State transitions ==============

class TestTransitions:

    def test_full_kitchen_cycle_stamps_times(self, items, order, product):
        item = _add(items, order, product)
        item = items.send_item(item.id, WAITER)
        assert item.status == "sent" and item.sent_at is not None
        item = items.advance_item(item.id, "preparing", KITCHEN)
        assert item.status == "preparing" and item.prepared_at is not None
        item = items.advance_item(item.id, "ready", KITCHEN)
        assert item.status == "ready" and item.ready_at is not None
        item = items.deliver_item(item.id, WAITER)
        assert item.status == "served" and item.served_at is not None

    def test_send_twice_conflicts(self, items, order, product):
        item = _add(items, order, product)
        items.send_item(item.id, WAITER)
        with pytest.raises(StateConflict):
            items.send_item(item.id, WAITER)

    def test_advance_rejects_other_targets(self, items, order, product):
        item = _add(items, order, product)
        items.send_item(item.id, WAITER)
        with pytest.raises(StateConflict):
            items.advance_item(item.id, "served", KITCHEN)
        with pytest.raises(StateConflict):
            items.advance_item(item.id, "ready", KITCHEN)

    def test_advance_pending_conflicts(self, items, order, product):
        item = _add(items, order, product)
        with pytest.raises(StateConflict):
            items.advance_item(item.id, "preparing", KITCHEN)

    def test_waiter_cannot_advance(self, items, order, product):
        item = _add(items, order, product)
        items.send_item(item.id, WAITER)
        with pytest.raises(Forbidden):
            items.advance_item(item.id, "preparing", WAITER)

    def test_deliver_before_ready_conflicts(self, items, order, product):
        item = _add(items, order, product)
        items.send_item(item.id, WAITER)
        with pytest.raises(StateConflict):
            items.deliver_item(item.id, WAITER)

    def test_send_pending_sends_all(self, db_session, items, order, product, second_product):
        _add(items, order, product)
        _add(items, order, second_product, qty="1", price="500")
        assert items.send_pending(order.id, WAITER) == 2
        db_session.expire_all()
        statuses = {i.status for i in db_session.query(OrderItem).all()}
        assert statuses == {"sent"}
        assert items.send_pending(order.id, WAITER) == 0


class TestSetItemStatus:

    def _ready_item(self, items, order, product):
        item = _add(items, order, product)
        items.send_item(item.id, WAITER)
        items.advance_item(item.id, "preparing", KITCHEN)
        return items.advance_item(item.id, "ready", KITCHEN)

    def test_waiter_marks_ready_as_served(self, items, order, product):
        item = self._ready_item(items, order, product)
        assert items.set_item_status(item.id, "served", WAITER).status == "served"

    def test_waiter_other_target_forbidden(self, items, order, product):
        item = _add(items, order, product)
        items.send_item(item.id, WAITER)
        with pytest.raises(Forbidden):
            items.set_item_status(item.id, "preparing", WAITER)

    def test_waiter_served_from_preparing_conflicts(self, items, order, product):
        item = _add(items, order, product)
        items.send_item(item.id, WAITER)
        items.advance_item(item.id, "preparing", KITCHEN)
        with pytest.raises(StateConflict):
            items.set_item_status(item.id, "served", WAITER)

    def test_admin_dispatches_to_transitions(self, items, order, product):
        item = _add(items, order, product)
        assert items.set_item_status(item.id, "sent", ADMIN).status == "sent"
        assert items.set_item_status(item.id, "preparing", ADMIN).status == "preparing"
        assert items.set_item_status(item.id, "rejected", ADMIN).status == "rejected"

    def test_cannot_go_back_to_pending(self, items, order, product):
        item = _add(items, order, product)
        items.send_item(item.id, WAITER)
        with pytest.raises(StateConflict):
            items.set_item_status(item.id, "pending", ADMIN)

    def test_unknown_status(self, items, order, product):
        item = _add(items, order, product)
        with pytest.raises(ValidationError):
            items.set_item_status(item.id, "flambé", ADMIN)


class TestCancel:

    @pytest.mark.parametrize("steps", [0, 1, 2, 3])
    def test_waiter_cancels_any_live_item(self, items, order, product, steps):
        item = _add(items, order, product)
        if steps >= 1:
            items.send_item(item.id, WAITER)
        if steps >= 2:
            items.advance_item(item.id, "preparing", KITCHEN)
        if steps >= 3:
            items.advance_item(item.id, "ready", KITCHEN)
        assert items.cancel_item(item.id, WAITER).status == "rejected"

    def test_cancel_twice_conflicts(self, items, order, product):
        item = _add(items, order, product)
        items.cancel_item(item.id, WAITER)
        with pytest.raises(StateConflict):
            items.cancel_item(item.id, WAITER)

    def test_cannot_cancel_served(self, items, order, product):
        item = _add(items, order, product)
        items.send_item(item.id, WAITER)
        items.advance_item(item.id, "preparing", KITCHEN)
        items.advance_item(item.id, "ready", KITCHEN)
        items.deliver_item(item.id, WAITER)
        with pytest.raises(StateConflict):
            items.cancel_item(item.id, WAITER)

    def test_kitchen_rejects_only_received_items(self, items, order, product):
        item = _add(items, order, product)
        with pytest.raises(StateConflict):
            items.cancel_item(item.id, KITCHEN)
        items.send_item(item.id, WAITER)
        assert items.kitchen_reject(item.id, KITCHEN).status == "rejected"

    def test_cancelling_all_items_frees_table(self, db_session, items, order, product, second_product, table):
        a = _add(items, order, product)
        b = _add(items, order, second_product, qty="1", price="500")
        assert _table_status(db_session, table.id) == "occupied"
        items.cancel_item(a.id, WAITER)
        assert _table_status(db_session, table.id) == "occupied"
        items.cancel_item(b.id, WAITER)
        assert _table_status(db_session, table.id) == "free"
        db_session.expire_all()
        assert db_session.get(Order, order.id).status == "open"
