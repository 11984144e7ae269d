"""Floor, order and kitchen schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


# ===== TABLES =====

class TableCreate(BaseModel):
    number: str
    description: Optional[str] = None


class TableUpdate(BaseModel):
    number: str
    description: Optional[str] = None
    status: Optional[str] = None


class TableResponse(BaseModel):
    id: int
    number: str
    description: Optional[str] = None
    status: str

    model_config = {"from_attributes": True}


class FloorTableResponse(TableResponse):
    """Table as shown on the floor plan, with live counts."""

    stored_status: str
    open_orders: int = 0
    active_items: int = 0


# ===== ORDERS =====

class OpenTableRequest(BaseModel):
    table_id: int
    customer_id: Optional[int] = None
    notes: Optional[str] = None


class MoveOrderRequest(BaseModel):
    table_id: int = Field(..., description="Destination table")


class OrderItemCreate(BaseModel):
    """Quantity and price are checked by the service so that missing or
    non-positive values come back as validation errors."""

    product_id: Optional[int] = None
    quantity: Optional[Decimal] = None
    unit: Optional[str] = None
    unit_price: Optional[Decimal] = None
    note: Optional[str] = None


class OrderItemUpdate(BaseModel):
    quantity: Optional[Decimal] = None
    note: Optional[str] = None


class ItemStatusUpdate(BaseModel):
    status: str


class OrderItemResponse(BaseModel):
    id: int
    order_id: int
    product_id: int
    product_name: Optional[str] = None
    quantity: Decimal
    unit: str
    unit_price: Decimal
    subtotal: Decimal
    note: Optional[str] = None
    status: str
    sent_at: Optional[datetime] = None
    prepared_at: Optional[datetime] = None
    ready_at: Optional[datetime] = None
    served_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @classmethod
    def from_item(cls, item) -> "OrderItemResponse":
        response = cls.model_validate(item)
        if item.product is not None:
            response.product_name = item.product.name
        return response


class OrderResponse(BaseModel):
    id: int
    table_id: int
    customer_id: Optional[int] = None
    status: str
    total: Decimal
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    items: List[OrderItemResponse] = []

    model_config = {"from_attributes": True}

    @classmethod
    def from_order(cls, order) -> "OrderResponse":
        return cls(
            id=order.id,
            table_id=order.table_id,
            customer_id=order.customer_id,
            status=order.status,
            total=order.total,
            notes=order.notes,
            created_at=order.created_at,
            items=[OrderItemResponse.from_item(i) for i in order.items],
        )


class OpenTableResponse(BaseModel):
    order: OrderResponse
    created: bool


class SendPendingResponse(BaseModel):
    sent_count: int


class ClearRejectedResponse(BaseModel):
    deleted_count: int
    order_auto_cancelled: bool


class ReleaseTableResponse(BaseModel):
    table_id: int
    rejected_orders: int


# ===== INVOICING =====

class PaymentLine(BaseModel):
    method: str
    amount: Decimal
    reference: Optional[str] = None


class InvoiceCreate(BaseModel):
    customer_id: Optional[int] = None
    payments: List[PaymentLine] = []
    payment_method: Optional[str] = None  # used only when no payment lines are sent


class InvoicePaymentResponse(BaseModel):
    method: str
    amount: Decimal
    reference: Optional[str] = None

    model_config = {"from_attributes": True}


class InvoiceLineResponse(BaseModel):
    product_id: int
    quantity: Decimal
    unit_price: Decimal
    unit: str
    subtotal: Decimal

    model_config = {"from_attributes": True}


class InvoiceResponse(BaseModel):
    id: int
    order_id: Optional[int] = None
    customer_id: int
    total: Decimal
    payment_method: str
    lines: List[InvoiceLineResponse] = []
    payments: List[InvoicePaymentResponse] = []
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


# ===== KITCHEN =====

class KitchenItemResponse(BaseModel):
    id: int
    order_id: int
    table_id: int
    table_number: str
    product_id: int
    product_name: str
    quantity: Decimal
    unit: str
    unit_price: Decimal
    subtotal: Decimal
    note: Optional[str] = None
    status: str
    sent_at: Optional[datetime] = None
    prepared_at: Optional[datetime] = None
    ready_at: Optional[datetime] = None
    served_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
