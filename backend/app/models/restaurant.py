"""Restaurant floor models - tables, orders and order items."""

from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from app.db.base import Base, TimestampMixin
from app.models.validators import non_negative, one_of, positive


class TableStatus(str, enum.Enum):
    FREE = "free"
    OCCUPIED = "occupied"
    RESERVED = "reserved"
    BLOCKED = "blocked"


# free/occupied are recomputed from active items; reserved/blocked are set by hand.
DERIVED_TABLE_STATUSES = frozenset({TableStatus.FREE.value, TableStatus.OCCUPIED.value})


class OrderStatus(str, enum.Enum):
    OPEN = "open"
    CLOSED = "closed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


TERMINAL_ORDER_STATUSES = frozenset({
    OrderStatus.CLOSED.value,
    OrderStatus.CANCELLED.value,
    OrderStatus.REJECTED.value,
})


class ItemStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    PREPARING = "preparing"
    READY = "ready"
    SERVED = "served"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


INACTIVE_ITEM_STATUSES = frozenset({ItemStatus.CANCELLED.value, ItemStatus.REJECTED.value})
KITCHEN_ITEM_STATUSES = (ItemStatus.SENT.value, ItemStatus.PREPARING.value, ItemStatus.READY.value)


class Table(Base, TimestampMixin):
    """Physical restaurant table."""

    __tablename__ = "tables"

    id: Mapped[int] = mapped_column(primary_key=True)
    number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=TableStatus.FREE.value, nullable=False)

    orders: Mapped[List["Order"]] = relationship("Order", back_populates="table")

    @validates("status")
    def _validate_status(self, key, value):
        return one_of(key, value, {s.value for s in TableStatus})


class Order(Base, TimestampMixin):
    """Order for one table; at most one non-terminal order per table."""

    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(primary_key=True)
    table_id: Mapped[int] = mapped_column(ForeignKey("tables.id"), nullable=False, index=True)
    customer_id: Mapped[Optional[int]] = mapped_column(ForeignKey("customers.id"), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=OrderStatus.OPEN.value, nullable=False, index=True)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    table: Mapped["Table"] = relationship("Table", back_populates="orders")
    items: Mapped[List["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_ORDER_STATUSES

    @validates("status")
    def _validate_status(self, key, value):
        return one_of(key, value, {s.value for s in OrderStatus})

    @validates("total")
    def _validate_total(self, key, value):
        return non_negative(key, value)


class OrderItem(Base, TimestampMixin):
    """One line of an order, tracked through the kitchen workflow."""

    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id"), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(Numeric(10, 3), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), default="UND", nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # may list chosen child items

    status: Mapped[str] = mapped_column(String(20), default=ItemStatus.PENDING.value, nullable=False, index=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    prepared_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    ready_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    served_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    order: Mapped["Order"] = relationship("Order", back_populates="items")
    product: Mapped["Product"] = relationship("Product")

    @property
    def is_active(self) -> bool:
        return self.status not in INACTIVE_ITEM_STATUSES

    @validates("quantity")
    def _validate_quantity(self, key, value):
        return positive(key, value)

    @validates("unit_price", "subtotal")
    def _validate_amounts(self, key, value):
        return non_negative(key, value)

    @validates("status")
    def _validate_status(self, key, value):
        return one_of(key, value, {s.value for s in ItemStatus})
