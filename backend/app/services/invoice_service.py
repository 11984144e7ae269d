"""Invoicing - closes an order into an immutable invoice snapshot.

The whole close-out runs in one transaction: invoice header, one detail
line per active item, payment lines, order closed with its total, and the
table set back to free. A failure at any point leaves nothing behind.
"""

import logging
from decimal import Decimal
from typing import Any, Iterable, List, Mapping, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import NotFound, StateConflict, ValidationError
from app.core.rbac import UserRole, ensure_role
from app.db.session import atomic
from app.models.customer import Customer
from app.models.invoice import (
    MIXED_PAYMENT,
    PAYMENT_METHODS,
    Invoice,
    InvoiceLine,
    InvoicePayment,
    PaymentMethod,
)
from app.models.restaurant import INACTIVE_ITEM_STATUSES, Order, OrderItem, OrderStatus, TableStatus
from app.services.order_item_service import to_decimal
from app.services.table_occupancy_service import TableOccupancyService

logger = logging.getLogger(__name__)

INVOICE_ROLES = frozenset({UserRole.WAITER, UserRole.ADMIN})


def normalize_payments(payments: Optional[Iterable[Mapping[str, Any]]]) -> List[dict]:
    """Validate payment lines: known method, positive amount, trimmed reference."""
    result = []
    for index, line in enumerate(payments or [], start=1):
        method = str(line.get("method") or "").strip().lower()
        if method not in PAYMENT_METHODS:
            raise ValidationError(f"Payment {index}: unknown method '{method}'")
        amount = to_decimal(f"Payment {index} amount", line.get("amount"))
        if amount <= 0:
            raise ValidationError(f"Payment {index}: amount must be greater than 0")
        reference = line.get("reference")
        reference = str(reference).strip() if reference is not None else ""
        result.append({"method": method, "amount": amount, "reference": reference or None})
    return result


def legacy_method(payment_method: Optional[str]) -> str:
    """Single-method tag for calls without payment lines. Unknown falls back to cash."""
    method = str(payment_method or "").strip().lower()
    if method in PAYMENT_METHODS or method == MIXED_PAYMENT:
        return method
    return PaymentMethod.CASH.value


class InvoiceService:
    def __init__(self, db: Session):
        self.db = db
        self.occupancy = TableOccupancyService(db)

    def _lock_order(self, order_id: int) -> Order:
        self.occupancy.lock_order_table(order_id)
        order = self.db.query(Order).filter(Order.id == order_id).with_for_update().first()
        if order is None:
            raise NotFound.for_entity("Order", order_id)
        return order

    def invoice_order(
        self,
        order_id: int,
        customer_id: Optional[int],
        role: UserRole,
        payments: Optional[Iterable[Mapping[str, Any]]] = None,
        payment_method: Optional[str] = None,
    ) -> Invoice:
        """Invoice the order's active items and close it.

        With payment lines, their sum must match the total within
        ``settings.payment_tolerance``; the tag is the single method or
        ``mixed``. Without them, ``payment_method`` is used and one payment
        row carries the whole total.
        """
        ensure_role(role, INVOICE_ROLES, "invoice orders")
        if not customer_id:
            raise ValidationError("customer_id is required to invoice")
        lines = normalize_payments(payments)

        with atomic(self.db):
            order = self._lock_order(order_id)
            if order.is_terminal:
                raise StateConflict(f"Order {order_id} is {order.status} and cannot be invoiced")
            if self.db.get(Customer, customer_id) is None:
                raise NotFound.for_entity("Customer", customer_id)

            items = (
                self.db.query(OrderItem)
                .filter(
                    OrderItem.order_id == order_id,
                    OrderItem.status.notin_(INACTIVE_ITEM_STATUSES),
                )
                .order_by(OrderItem.id)
                .with_for_update()
                .all()
            )
            if not items:
                raise ValidationError(f"Order {order_id} has no active items to invoice")

            total = sum((item.subtotal for item in items), Decimal("0"))

            if lines:
                paid = sum((line["amount"] for line in lines), Decimal("0"))
                if abs(paid - total) >= settings.payment_tolerance:
                    logger.warning(f"Invoice for order {order_id} refused: payments {paid} != total {total}")
                    raise StateConflict(f"Payments add up to {paid} but the order total is {total}")
                tag = lines[0]["method"] if len(lines) == 1 else MIXED_PAYMENT
            else:
                tag = legacy_method(payment_method)
                lines = [{
                    "method": PaymentMethod.CASH.value if tag == MIXED_PAYMENT else tag,
                    "amount": total,
                    "reference": None,
                }]

            invoice = Invoice(
                customer_id=customer_id,
                order_id=order.id,
                total=total,
                payment_method=tag,
            )
            invoice.lines = [
                InvoiceLine(
                    product_id=item.product_id,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    unit=item.unit,
                    subtotal=item.subtotal,
                )
                for item in items
            ]
            invoice.payments = [InvoicePayment(**line) for line in lines]
            self.db.add(invoice)

            order.status = OrderStatus.CLOSED.value
            order.total = total
            if order.customer_id is None:
                order.customer_id = customer_id
            self.db.flush()
            self.occupancy.force_status(order.table_id, TableStatus.FREE)

        logger.info(f"Invoice {invoice.id} created for order {order_id}: total {total} ({tag})")
        return invoice

    def get_invoice(self, invoice_id: int) -> Invoice:
        invoice = self.db.get(Invoice, invoice_id)
        if invoice is None:
            raise NotFound.for_entity("Invoice", invoice_id)
        return invoice
