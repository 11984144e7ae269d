"""SQLAlchemy models."""

from app.models.customer import Customer
from app.models.product import Product
from app.models.restaurant import (
    Table,
    Order,
    OrderItem,
    TableStatus,
    OrderStatus,
    ItemStatus,
)
from app.models.invoice import Invoice, InvoiceLine, InvoicePayment, PaymentMethod

__all__ = [
    "Customer",
    "Product",
    "Table",
    "Order",
    "OrderItem",
    "TableStatus",
    "OrderStatus",
    "ItemStatus",
    "Invoice",
    "InvoiceLine",
    "InvoicePayment",
    "PaymentMethod",
]
