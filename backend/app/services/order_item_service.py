"""Order item service - moves order lines through their lifecycle.

Each public method is one transaction: the table row and then the item
row are read with ``FOR UPDATE`` before the item state is checked, the
change is written, the table's occupancy is recomputed, and only then is
the transaction committed. Any error rolls the whole operation back.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import Forbidden, NotFound, StateConflict, ValidationError
from app.core.rbac import UserRole, ensure_role
from app.db.base import utcnow
from app.db.session import atomic
from app.models.product import Product
from app.models.restaurant import ItemStatus, Order, OrderItem
from app.services.item_workflow import (
    ACTION_ROLES,
    ADVANCE_ACTIONS,
    ItemAction,
    next_status,
    timestamp_field,
)
from app.services.table_occupancy_service import TableOccupancyService

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

FLOOR_ROLES = frozenset({UserRole.WAITER, UserRole.ADMIN})


def compute_subtotal(quantity: Decimal, unit_price: Decimal) -> Decimal:
    return (quantity * unit_price).quantize(CENT, rounding=ROUND_HALF_UP)


def to_decimal(field: str, value) -> Decimal:
    """Coerce numeric input to Decimal, raising ValidationError on garbage."""
    if value is None or value == "":
        raise ValidationError(f"{field} is required")
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not result.is_finite():
        raise ValidationError(f"{field} must be a number")
    return result


def _clean_note(note: Optional[str]) -> Optional[str]:
    if note is None:
        return None
    note = str(note).strip()
    return note or None


class OrderItemService:
    """State engine for individual order items."""

    def __init__(self, db: Session):
        self.db = db
        self.occupancy = TableOccupancyService(db)

    # ===== LOOKUPS =====

    def _lock_item(self, item_id: int) -> OrderItem:
        """Lock the item's table, then the item itself."""
        order_id = self.db.query(OrderItem.order_id).filter(OrderItem.id == item_id).scalar()
        if order_id is None:
            raise NotFound.for_entity("Item", item_id)
        self.occupancy.lock_order_table(order_id)
        item = (
            self.db.query(OrderItem)
            .filter(OrderItem.id == item_id)
            .with_for_update()
            .first()
        )
        if item is None:
            raise NotFound.for_entity("Item", item_id)
        return item

    def _lock_order(self, order_id: int) -> Order:
        """Lock the order's table, then the order."""
        self.occupancy.lock_order_table(order_id)
        order = self.db.query(Order).filter(Order.id == order_id).with_for_update().first()
        if order is None:
            raise NotFound.for_entity("Order", order_id)
        return order

    def _table_id_for(self, item: OrderItem) -> Optional[int]:
        return self.db.query(Order.table_id).filter(Order.id == item.order_id).scalar()

    # ===== WAITER: BUILD THE ORDER =====

    def add_item(
        self,
        order_id: int,
        product_id: Optional[int],
        quantity,
        unit_price,
        role: UserRole,
        unit: Optional[str] = None,
        note: Optional[str] = None,
    ) -> OrderItem:
        """Add a pending line to an open order."""
        ensure_role(role, FLOOR_ROLES, "add items")
        if not product_id:
            raise ValidationError("product_id is required")
        qty = to_decimal("quantity", quantity)
        price = to_decimal("unit_price", unit_price)
        if qty <= 0:
            raise ValidationError("quantity must be greater than 0")
        if price <= 0:
            raise ValidationError("unit_price must be greater than 0")

        with atomic(self.db):
            order = self._lock_order(order_id)
            if order.is_terminal:
                raise StateConflict(f"Order {order_id} is {order.status}; items can no longer be added")
            if self.db.get(Product, product_id) is None:
                raise NotFound.for_entity("Product", product_id)

            item = OrderItem(
                order_id=order.id,
                product_id=product_id,
                quantity=qty,
                unit=(unit or "").strip() or settings.default_unit,
                unit_price=price,
                subtotal=compute_subtotal(qty, price),
                note=_clean_note(note),
                status=ItemStatus.PENDING.value,
            )
            self.db.add(item)
            self.db.flush()
            self.occupancy.recompute(order.table_id)

        logger.info(f"Item {item.id} added to order {order_id} (product {product_id}, qty {qty})")
        return item

    def edit_item(
        self,
        item_id: int,
        role: UserRole,
        quantity=None,
        note: Optional[str] = None,
    ) -> OrderItem:
        """Change quantity and/or note of a pending item; subtotal follows."""
        ensure_role(role, FLOOR_ROLES, "edit items")
        with atomic(self.db):
            item = self._lock_item(item_id)
            if item.status != ItemStatus.PENDING.value:
                raise StateConflict("Only pending items (not yet sent to the kitchen) can be edited")

            new_qty = to_decimal("quantity", quantity) if quantity not in (None, "") else item.quantity
            if new_qty <= 0:
                raise ValidationError("quantity must be greater than 0")

            item.quantity = new_qty
            item.subtotal = compute_subtotal(new_qty, item.unit_price)
            if note is not None:
                item.note = _clean_note(note)
            self.db.flush()
            self.occupancy.recompute(self._table_id_for(item))

        logger.info(f"Item {item_id} edited (qty {new_qty})")
        return item

    def delete_item(self, item_id: int, role: UserRole) -> None:
        """Remove a pending item from its order."""
        ensure_role(role, FLOOR_ROLES, "delete items")
        with atomic(self.db):
            item = self._lock_item(item_id)
            if item.status != ItemStatus.PENDING.value:
                raise StateConflict("Only pending items (not yet sent to the kitchen) can be deleted")
            table_id = self._table_id_for(item)
            self.db.delete(item)
            self.db.flush()
            self.occupancy.recompute(table_id)

        logger.info(f"Item {item_id} deleted")

    # ===== STATE TRANSITIONS =====

    def _transition(self, item_id: int, action: ItemAction, role: UserRole) -> OrderItem:
        ensure_role(role, ACTION_ROLES[action], f"{action.value.replace('_', ' ')} items")
        with atomic(self.db):
            item = self._lock_item(item_id)
            previous = item.status
            target = next_status(previous, action)
            item.status = target.value
            stamp = timestamp_field(target)
            if stamp:
                setattr(item, stamp, utcnow())
            self.db.flush()
            self.occupancy.recompute(self._table_id_for(item))

        logger.info(f"Item {item_id}: {previous} -> {item.status} ({action.value} by {UserRole(role).value})")
        return item

    def send_item(self, item_id: int, role: UserRole) -> OrderItem:
        """pending -> sent."""
        return self._transition(item_id, ItemAction.SEND, role)

    def advance_item(self, item_id: int, target: str, role: UserRole) -> OrderItem:
        """Kitchen progress: sent -> preparing, preparing -> ready."""
        try:
            action = ADVANCE_ACTIONS[ItemStatus(target)]
        except (KeyError, ValueError):
            raise StateConflict(f"Kitchen cannot move an item to '{target}'")
        return self._transition(item_id, action, role)

    def deliver_item(self, item_id: int, role: UserRole) -> OrderItem:
        """ready -> served."""
        return self._transition(item_id, ItemAction.DELIVER, role)

    def cancel_item(self, item_id: int, role: UserRole) -> OrderItem:
        """Mark an item rejected.

        Floor staff may cancel anything not yet served; the kitchen may
        only reject what it has already received.
        """
        if UserRole(role) == UserRole.KITCHEN:
            return self.kitchen_reject(item_id, role)
        return self._transition(item_id, ItemAction.CANCEL, role)

    def kitchen_reject(self, item_id: int, role: UserRole) -> OrderItem:
        """sent|preparing|ready -> rejected, from the kitchen screen."""
        return self._transition(item_id, ItemAction.KITCHEN_REJECT, role)

    def set_item_status(self, item_id: int, target: str, role: UserRole) -> OrderItem:
        """Generic status endpoint used from the floor and kitchen screens.

        Waiters may only mark a ready item as served. Other roles are
        routed to the matching transition.
        """
        try:
            wanted = ItemStatus(target)
        except ValueError:
            raise ValidationError(f"Unknown item status '{target}'")

        if UserRole(role) == UserRole.WAITER and wanted != ItemStatus.SERVED:
            raise Forbidden("Waiters can only mark items as served")

        if wanted == ItemStatus.SERVED:
            return self.deliver_item(item_id, role)
        if wanted in ADVANCE_ACTIONS:
            return self.advance_item(item_id, wanted.value, role)
        if wanted == ItemStatus.SENT:
            return self.send_item(item_id, role)
        if wanted in (ItemStatus.REJECTED, ItemStatus.CANCELLED):
            return self.cancel_item(item_id, role)
        raise StateConflict(f"Items cannot be moved back to '{wanted.value}'")

    def send_pending(self, order_id: int, role: UserRole) -> int:
        """Send every pending item of an order to the kitchen at once."""
        ensure_role(role, ACTION_ROLES[ItemAction.SEND], "send items")
        with atomic(self.db):
            order = self._lock_order(order_id)
            if order.is_terminal:
                raise StateConflict(f"Order {order_id} is {order.status}")
            pending = (
                self.db.query(OrderItem)
                .filter(OrderItem.order_id == order_id, OrderItem.status == ItemStatus.PENDING.value)
                .with_for_update()
                .all()
            )
            now = utcnow()
            for item in pending:
                item.status = next_status(item.status, ItemAction.SEND).value
                item.sent_at = now
            self.db.flush()
            self.occupancy.recompute(order.table_id)

        logger.info(f"Order {order_id}: {len(pending)} pending items sent to kitchen")
        return len(pending)
