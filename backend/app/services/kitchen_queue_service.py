"""Kitchen queue projections - live queue plus served/rejected history.

Read-only. Each row is an order item joined with its table number and
product name.
"""

import re
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.rbac import UserRole, ensure_role
from app.models.product import Product
from app.models.restaurant import (
    KITCHEN_ITEM_STATUSES,
    ItemStatus,
    Order,
    OrderItem,
    OrderStatus,
    Table,
)

QUEUE_ROLES = frozenset({UserRole.KITCHEN, UserRole.WAITER, UserRole.ADMIN})

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_date_bound(value: Optional[str]) -> Optional[date]:
    """Parse a strict YYYY-MM-DD bound. Anything else means "no bound"."""
    if value is None:
        return None
    value = str(value).strip()
    if not _DATE_RE.match(value):
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def day_start(day: date) -> datetime:
    """Local midnight of ``day`` as the naive UTC timestamp the columns store."""
    local = datetime.combine(day, time.min, ZoneInfo(settings.business_timezone))
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def _row_to_dict(row) -> dict:
    item, table_id, table_number, product_name = row
    return {
        "id": item.id,
        "order_id": item.order_id,
        "table_id": table_id,
        "table_number": table_number,
        "product_id": item.product_id,
        "product_name": product_name,
        "quantity": item.quantity,
        "unit": item.unit,
        "unit_price": item.unit_price,
        "subtotal": item.subtotal,
        "note": item.note,
        "status": item.status,
        "sent_at": item.sent_at,
        "prepared_at": item.prepared_at,
        "ready_at": item.ready_at,
        "served_at": item.served_at,
        "created_at": item.created_at,
        "updated_at": item.updated_at,
    }


class KitchenQueueService:
    """Point-in-time queries for the kitchen and floor screens."""

    def __init__(self, db: Session):
        self.db = db

    def _base_query(self):
        return (
            self.db.query(OrderItem, Order.table_id, Table.number, Product.name)
            .join(Order, Order.id == OrderItem.order_id)
            .join(Table, Table.id == Order.table_id)
            .join(Product, Product.id == OrderItem.product_id)
        )

    @staticmethod
    def _date_range(query, column, date_from: Optional[str], date_to: Optional[str]):
        """Inclusive range of business days on ``column``; a malformed bound is ignored."""
        start = parse_date_bound(date_from)
        end = parse_date_bound(date_to)
        if start is not None:
            query = query.filter(column >= day_start(start))
        if end is not None:
            query = query.filter(column < day_start(end + timedelta(days=1)))
        return query

    def live_queue(self, role: UserRole) -> List[dict]:
        """Items in the kitchen right now, first in first out."""
        ensure_role(role, QUEUE_ROLES, "view the kitchen queue")
        arrived = func.coalesce(OrderItem.sent_at, OrderItem.created_at)
        rows = (
            self._base_query()
            .filter(OrderItem.status.in_(KITCHEN_ITEM_STATUSES))
            .order_by(arrived.asc(), OrderItem.id.asc())
            .all()
        )
        return [_row_to_dict(r) for r in rows]

    def delivered_history(
        self,
        role: UserRole,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
    ) -> List[dict]:
        """Served items, newest first."""
        ensure_role(role, QUEUE_ROLES, "view kitchen history")
        served = func.coalesce(OrderItem.served_at, OrderItem.updated_at, OrderItem.created_at)
        query = self._base_query().filter(OrderItem.status == ItemStatus.SERVED.value)
        query = self._date_range(query, served, date_from, date_to)
        rows = (
            query.order_by(served.desc(), OrderItem.id.desc())
            .limit(settings.kitchen_history_limit)
            .all()
        )
        return [_row_to_dict(r) for r in rows]

    def rejected_history(
        self,
        role: UserRole,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
    ) -> List[dict]:
        """Rejected items, plus every item of a rejected order, newest first."""
        ensure_role(role, QUEUE_ROLES, "view kitchen history")
        touched = func.coalesce(OrderItem.updated_at, OrderItem.created_at)
        query = self._base_query().filter(
            or_(
                OrderItem.status == ItemStatus.REJECTED.value,
                Order.status == OrderStatus.REJECTED.value,
            )
        )
        query = self._date_range(query, touched, date_from, date_to)
        rows = (
            query.order_by(touched.desc(), OrderItem.id.desc())
            .limit(settings.kitchen_history_limit)
            .all()
        )
        return [_row_to_dict(r) for r in rows]
