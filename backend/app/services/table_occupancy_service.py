"""Table occupancy synchronizer.

A table's free/occupied status is a cache of "does it have active items
in a non-terminal order". Every service that changes items or orders
calls ``recompute`` inside its own transaction, before commit, so the
cached status never disagrees with the items for longer than one
transaction. Reserved and blocked tables are left alone.
"""

import logging
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.db.base import utcnow
from app.models.restaurant import (
    DERIVED_TABLE_STATUSES,
    INACTIVE_ITEM_STATUSES,
    TERMINAL_ORDER_STATUSES,
    Order,
    OrderItem,
    Table,
    TableStatus,
)

logger = logging.getLogger(__name__)


def active_items_filter():
    """WHERE clause for active items of non-terminal orders."""
    return (
        Order.status.notin_(TERMINAL_ORDER_STATUSES),
        OrderItem.status.notin_(INACTIVE_ITEM_STATUSES),
    )


class TableOccupancyService:
    """Derives table status from the active items on the table."""

    def __init__(self, db: Session):
        self.db = db

    def lock_tables(self, *table_ids: Optional[int]) -> List[Table]:
        """Lock table rows in ascending id order.

        Every writer takes the table lock before any order or item lock of
        that table.
        """
        ids = sorted({t for t in table_ids if t is not None})
        if not ids:
            return []
        return (
            self.db.query(Table)
            .filter(Table.id.in_(ids))
            .order_by(Table.id)
            .with_for_update()
            .all()
        )

    def lock_order_table(self, order_id: int, *also: Optional[int]) -> Optional[int]:
        """Lock the table currently holding an order (plus any extra tables).

        The order row is re-read under the table lock; if the order was
        moved in the meantime the new table is locked too. Returns the table
        id, or None when the order does not exist.
        """
        table_id = self.db.query(Order.table_id).filter(Order.id == order_id).scalar()
        while table_id is not None:
            self.lock_tables(table_id, *also)
            current = (
                self.db.query(Order.table_id)
                .filter(Order.id == order_id)
                .with_for_update()
                .scalar()
            )
            if current == table_id:
                return table_id
            table_id = current
        return None

    def active_item_count(self, table_id: int) -> int:
        self.db.flush()
        return (
            self.db.query(func.count(OrderItem.id))
            .join(Order, Order.id == OrderItem.order_id)
            .filter(Order.table_id == table_id, *active_items_filter())
            .scalar()
        ) or 0

    def recompute(self, table_id: Optional[int]) -> Optional[str]:
        """Set free/occupied from the active item count.

        Returns the derived status, or None when the table is reserved,
        blocked or missing and was left untouched.
        """
        if table_id is None:
            return None
        derived = (
            TableStatus.OCCUPIED.value
            if self.active_item_count(table_id) > 0
            else TableStatus.FREE.value
        )
        updated = (
            self.db.query(Table)
            .filter(Table.id == table_id, Table.status.in_(DERIVED_TABLE_STATUSES))
            .update({Table.status: derived, Table.updated_at: utcnow()}, synchronize_session="fetch")
        )
        if not updated:
            return None
        logger.debug(f"Table {table_id} recomputed as {derived}")
        return derived

    def force_status(self, table_id: int, status: TableStatus) -> None:
        """Overwrite the status regardless of items (release, invoice, move)."""
        self.db.query(Table).filter(Table.id == table_id).update(
            {Table.status: status.value, Table.updated_at: utcnow()},
            synchronize_session="fetch",
        )
        logger.debug(f"Table {table_id} forced to {status.value}")
