"""Order aggregate service - open, move, release and clean up table orders."""

import logging
from decimal import Decimal
from typing import Optional, Tuple

from sqlalchemy.orm import Session, joinedload

from app.core.errors import NotFound, StateConflict
from app.core.rbac import UserRole, ensure_role
from app.db.session import atomic
from app.models.customer import Customer
from app.models.restaurant import (
    INACTIVE_ITEM_STATUSES,
    TERMINAL_ORDER_STATUSES,
    ItemStatus,
    Order,
    OrderItem,
    OrderStatus,
    Table,
    TableStatus,
)
from app.services.table_occupancy_service import TableOccupancyService

logger = logging.getLogger(__name__)

FLOOR_ROLES = frozenset({UserRole.WAITER, UserRole.ADMIN})


class OrderService:
    """Order lifecycle operations. Every mutation is a single transaction."""

    def __init__(self, db: Session):
        self.db = db
        self.occupancy = TableOccupancyService(db)

    def _lock_table(self, table_id: int) -> Table:
        locked = self.occupancy.lock_tables(table_id)
        if not locked:
            raise NotFound.for_entity("Table", table_id)
        return locked[0]

    def _lock_order(self, order_id: int, *also_tables: int) -> Order:
        """Lock the order's table (and ``also_tables``) first, then the order."""
        self.occupancy.lock_order_table(order_id, *also_tables)
        order = self.db.query(Order).filter(Order.id == order_id).with_for_update().first()
        if order is None:
            raise NotFound.for_entity("Order", order_id)
        return order

    def _open_orders_query(self, table_id: int):
        return self.db.query(Order).filter(
            Order.table_id == table_id,
            Order.status.notin_(TERMINAL_ORDER_STATUSES),
        )

    # ===== READ =====

    def get_order(self, order_id: int, role: UserRole) -> Order:
        """Order with its items and their products loaded."""
        ensure_role(role, FLOOR_ROLES, "view orders")
        order = (
            self.db.query(Order)
            .options(joinedload(Order.items).joinedload(OrderItem.product))
            .filter(Order.id == order_id)
            .first()
        )
        if order is None:
            raise NotFound.for_entity("Order", order_id)
        return order

    # ===== OPEN =====

    def open_table(
        self,
        table_id: int,
        role: UserRole,
        customer_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Tuple[Order, bool]:
        """Return the table's non-terminal order, creating one if needed.

        The table row is locked first so two terminals opening the same
        table at once end up sharing one order. Returns ``(order, created)``.
        """
        ensure_role(role, FLOOR_ROLES, "open tables")
        with atomic(self.db):
            self._lock_table(table_id)
            order = self._open_orders_query(table_id).order_by(Order.id).first()
            created = order is None
            if created:
                if customer_id is not None and self.db.get(Customer, customer_id) is None:
                    raise NotFound.for_entity("Customer", customer_id)
                order = Order(
                    table_id=table_id,
                    customer_id=customer_id,
                    status=OrderStatus.OPEN.value,
                    total=Decimal("0"),
                    notes=(notes or "").strip() or None,
                )
                self.db.add(order)
                self.db.flush()
            self.occupancy.recompute(table_id)

        if created:
            logger.info(f"Order {order.id} opened on table {table_id}")
        return order, created

    # ===== MOVE =====

    def move_order(self, order_id: int, dest_table_id: int, role: UserRole) -> Order:
        """Reassign a non-terminal order to an empty table."""
        ensure_role(role, FLOOR_ROLES, "move orders")
        with atomic(self.db):
            order = self._lock_order(order_id, dest_table_id)
            if order.is_terminal:
                raise StateConflict(f"Order {order_id} is {order.status} and cannot be moved")
            origin_id = order.table_id
            if origin_id == dest_table_id:
                raise StateConflict("The order is already on that table")

            self._lock_table(dest_table_id)
            busy = self._open_orders_query(dest_table_id).with_for_update().first()
            if busy is not None:
                logger.warning(f"Move of order {order_id} refused: table {dest_table_id} has order {busy.id}")
                raise StateConflict(f"Table {dest_table_id} already has an open order")

            order.table_id = dest_table_id
            self.db.flush()
            self.occupancy.recompute(origin_id)
            self.occupancy.force_status(dest_table_id, TableStatus.OCCUPIED)

        logger.info(f"Order {order_id} moved from table {origin_id} to table {dest_table_id}")
        return order

    # ===== RELEASE =====

    def release_table(self, table_id: int, role: UserRole) -> int:
        """Free a table whose orders hold no active items.

        Leftover non-terminal orders become ``rejected`` together with
        their cancelled items, so the kitchen history still shows them.
        Returns the number of orders rejected.
        """
        ensure_role(role, FLOOR_ROLES, "release tables")
        with atomic(self.db):
            self._lock_table(table_id)
            orders = self._open_orders_query(table_id).with_for_update().all()
            order_ids = [o.id for o in orders]

            if order_ids:
                active = (
                    self.db.query(OrderItem.id)
                    .filter(
                        OrderItem.order_id.in_(order_ids),
                        OrderItem.status.notin_(INACTIVE_ITEM_STATUSES),
                    )
                    .first()
                )
                if active is not None:
                    logger.warning(f"Release of table {table_id} refused: active items remain")
                    raise StateConflict("The table still has active items; invoice or cancel them first")

                self.db.query(OrderItem).filter(
                    OrderItem.order_id.in_(order_ids),
                    OrderItem.status == ItemStatus.CANCELLED.value,
                ).update({OrderItem.status: ItemStatus.REJECTED.value}, synchronize_session="fetch")
                for order in orders:
                    order.status = OrderStatus.REJECTED.value

            self.occupancy.force_status(table_id, TableStatus.FREE)

        logger.info(f"Table {table_id} released ({len(order_ids)} orders rejected)")
        return len(order_ids)

    # ===== CLEANUP =====

    def clear_rejected(self, order_id: int, role: UserRole) -> dict:
        """Drop inactive items; an order left empty is cancelled."""
        ensure_role(role, FLOOR_ROLES, "clear rejected items")
        with atomic(self.db):
            order = self._lock_order(order_id)
            deleted = (
                self.db.query(OrderItem)
                .filter(
                    OrderItem.order_id == order_id,
                    OrderItem.status.in_(INACTIVE_ITEM_STATUSES),
                )
                .delete(synchronize_session="fetch")
            )
            remaining = self.db.query(OrderItem.id).filter(OrderItem.order_id == order_id).count()

            auto_cancelled = False
            if remaining == 0 and not order.is_terminal:
                order.status = OrderStatus.CANCELLED.value
                order.total = Decimal("0")
                auto_cancelled = True

            self.db.flush()
            self.occupancy.recompute(order.table_id)

        logger.info(f"Order {order_id}: {deleted} inactive items cleared (auto-cancelled: {auto_cancelled})")
        return {"deleted_count": deleted, "order_auto_cancelled": auto_cancelled}
