"""Table administration and the floor overview."""

import logging
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.errors import NotFound, StateConflict, ValidationError
from app.core.rbac import UserRole, ensure_role
from app.db.session import atomic
from app.models.restaurant import (
    DERIVED_TABLE_STATUSES,
    TERMINAL_ORDER_STATUSES,
    Order,
    OrderItem,
    Table,
    TableStatus,
)
from app.services.table_occupancy_service import TableOccupancyService, active_items_filter

logger = logging.getLogger(__name__)

ADMIN_ONLY = frozenset({UserRole.ADMIN})
FLOOR_ROLES = frozenset({UserRole.WAITER, UserRole.ADMIN})


def _clean_number(number) -> str:
    number = str(number).strip() if number is not None else ""
    if not number:
        raise ValidationError("Table number is required")
    return number


def _check_status(status: str) -> str:
    try:
        return TableStatus(status).value
    except ValueError:
        raise ValidationError(f"Invalid table status '{status}'")


class TableService:
    def __init__(self, db: Session):
        self.db = db
        self.occupancy = TableOccupancyService(db)

    def list_tables(self, role: UserRole) -> List[dict]:
        """Every table with its open order and active item counts.

        ``status`` is the effective one: reserved/blocked as stored,
        otherwise derived from the active items.
        """
        ensure_role(role, FLOOR_ROLES, "view tables")
        open_orders = dict(
            self.db.query(Order.table_id, func.count(Order.id))
            .filter(Order.status.notin_(TERMINAL_ORDER_STATUSES))
            .group_by(Order.table_id)
            .all()
        )
        active_items = dict(
            self.db.query(Order.table_id, func.count(OrderItem.id))
            .join(OrderItem, OrderItem.order_id == Order.id)
            .filter(*active_items_filter())
            .group_by(Order.table_id)
            .all()
        )

        result = []
        for table in self.db.query(Table).order_by(Table.number).all():
            items = active_items.get(table.id, 0)
            if table.status in DERIVED_TABLE_STATUSES:
                effective = TableStatus.OCCUPIED.value if items > 0 else TableStatus.FREE.value
            else:
                effective = table.status
            result.append({
                "id": table.id,
                "number": table.number,
                "description": table.description,
                "status": effective,
                "stored_status": table.status,
                "open_orders": open_orders.get(table.id, 0),
                "active_items": items,
            })
        return result

    def _ensure_unique(self, number: str, exclude_id: Optional[int] = None) -> None:
        query = self.db.query(Table.id).filter(Table.number == number)
        if exclude_id is not None:
            query = query.filter(Table.id != exclude_id)
        if query.first() is not None:
            raise StateConflict(f"A table with number '{number}' already exists")

    def create_table(self, number, role: UserRole, description: Optional[str] = None) -> Table:
        ensure_role(role, ADMIN_ONLY, "create tables")
        number = _clean_number(number)
        with atomic(self.db):
            self._ensure_unique(number)
            table = Table(
                number=number,
                description=(description or "").strip() or None,
                status=TableStatus.FREE.value,
            )
            self.db.add(table)
            self.db.flush()

        logger.info(f"Table {table.id} created (number {number})")
        return table

    def update_table(
        self,
        table_id: int,
        number,
        role: UserRole,
        description: Optional[str] = None,
        status: Optional[str] = None,
    ) -> Table:
        """Rename a table and/or set its status.

        A manual free/occupied is immediately replaced by the derived value.
        """
        ensure_role(role, ADMIN_ONLY, "edit tables")
        number = _clean_number(number)
        new_status = _check_status(status) if status else None

        with atomic(self.db):
            table = self.db.query(Table).filter(Table.id == table_id).with_for_update().first()
            if table is None:
                raise NotFound.for_entity("Table", table_id)
            self._ensure_unique(number, exclude_id=table_id)

            table.number = number
            table.description = (description or "").strip() or None
            if new_status is not None:
                table.status = new_status
            self.db.flush()
            if table.status in DERIVED_TABLE_STATUSES:
                self.occupancy.recompute(table_id)

        logger.info(f"Table {table_id} updated (number {number}, status {table.status})")
        return table

    def delete_table(self, table_id: int, role: UserRole) -> None:
        """Delete a table that has never had an order."""
        ensure_role(role, ADMIN_ONLY, "delete tables")
        with atomic(self.db):
            table = self.db.query(Table).filter(Table.id == table_id).with_for_update().first()
            if table is None:
                raise NotFound.for_entity("Table", table_id)
            orders = self.db.query(func.count(Order.id)).filter(Order.table_id == table_id).scalar()
            if orders:
                raise StateConflict(f"Table {table.number} has {orders} orders and cannot be deleted")
            self.db.delete(table)

        logger.info(f"Table {table_id} deleted")
