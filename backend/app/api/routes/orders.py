"""Order routes - items, state changes, move, cleanup and invoicing."""

from fastapi import APIRouter, status

from app.core.rbac import RequireAnyStaff, RequireFloor
from app.db.session import DbSession
from app.schemas.restaurant import (
    ClearRejectedResponse,
    InvoiceCreate,
    InvoiceResponse,
    ItemStatusUpdate,
    MoveOrderRequest,
    OrderItemCreate,
    OrderItemResponse,
    OrderItemUpdate,
    OrderResponse,
    SendPendingResponse,
)
from app.services.invoice_service import InvoiceService
from app.services.order_item_service import OrderItemService
from app.services.order_service import OrderService

router = APIRouter()


# ===== ORDERS =====

@router.get("/{order_id}", response_model=OrderResponse)
def get_order(order_id: int, db: DbSession, current_user: RequireFloor):
    order = OrderService(db).get_order(order_id, current_user.role)
    return OrderResponse.from_order(order)


@router.put("/{order_id}/move", response_model=OrderResponse)
def move_order(order_id: int, body: MoveOrderRequest, db: DbSession, current_user: RequireFloor):
    """Move an open order to an empty table."""
    service = OrderService(db)
    service.move_order(order_id, body.table_id, current_user.role)
    return OrderResponse.from_order(service.get_order(order_id, current_user.role))


@router.delete("/{order_id}/items/rejected", response_model=ClearRejectedResponse)
def clear_rejected_items(order_id: int, db: DbSession, current_user: RequireFloor):
    """Remove cancelled/rejected lines; an emptied order is cancelled."""
    return OrderService(db).clear_rejected(order_id, current_user.role)


@router.post("/{order_id}/send", response_model=SendPendingResponse)
def send_pending_items(order_id: int, db: DbSession, current_user: RequireFloor):
    sent = OrderItemService(db).send_pending(order_id, current_user.role)
    return SendPendingResponse(sent_count=sent)


@router.post("/{order_id}/invoice", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
def invoice_order(order_id: int, body: InvoiceCreate, db: DbSession, current_user: RequireFloor):
    """Invoice the active items and close the order.

    Send ``payments`` for split settlement; their amounts must add up to
    the order total. Without them ``payment_method`` tags a single payment.
    """
    return InvoiceService(db).invoice_order(
        order_id,
        body.customer_id,
        current_user.role,
        payments=[p.model_dump() for p in body.payments],
        payment_method=body.payment_method,
    )


# ===== ITEMS =====

@router.post("/{order_id}/items", response_model=OrderItemResponse, status_code=status.HTTP_201_CREATED)
def add_item(order_id: int, body: OrderItemCreate, db: DbSession, current_user: RequireFloor):
    item = OrderItemService(db).add_item(
        order_id,
        body.product_id,
        body.quantity,
        body.unit_price,
        current_user.role,
        unit=body.unit,
        note=body.note,
    )
    return OrderItemResponse.from_item(item)


@router.put("/items/{item_id}", response_model=OrderItemResponse)
def edit_item(item_id: int, body: OrderItemUpdate, db: DbSession, current_user: RequireFloor):
    """Edit quantity and note of an item not yet sent to the kitchen."""
    item = OrderItemService(db).edit_item(
        item_id, current_user.role, quantity=body.quantity, note=body.note
    )
    return OrderItemResponse.from_item(item)


@router.delete("/items/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_item(item_id: int, db: DbSession, current_user: RequireFloor):
    OrderItemService(db).delete_item(item_id, current_user.role)


@router.put("/items/{item_id}/send", response_model=OrderItemResponse)
def send_item(item_id: int, db: DbSession, current_user: RequireFloor):
    return OrderItemResponse.from_item(OrderItemService(db).send_item(item_id, current_user.role))


@router.put("/items/{item_id}/cancel", response_model=OrderItemResponse)
def cancel_item(item_id: int, db: DbSession, current_user: RequireFloor):
    return OrderItemResponse.from_item(OrderItemService(db).cancel_item(item_id, current_user.role))


@router.put("/items/{item_id}/status", response_model=OrderItemResponse)
def set_item_status(item_id: int, body: ItemStatusUpdate, db: DbSession, current_user: RequireAnyStaff):
    """Floor-side status change. Waiters may only mark ready items as served."""
    item = OrderItemService(db).set_item_status(item_id, body.status, current_user.role)
    return OrderItemResponse.from_item(item)
