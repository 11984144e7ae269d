"""Kitchen Display System (KDS) routes - queue, history and kitchen actions."""

from typing import Optional

from fastapi import APIRouter, Query, Request

from app.core.config import settings
from app.core.rate_limit import limiter
from app.core.rbac import RequireAnyStaff, RequireCook
from app.core.responses import list_response
from app.db.session import DbSession
from app.schemas.restaurant import ItemStatusUpdate, KitchenItemResponse, OrderItemResponse
from app.services.kitchen_queue_service import KitchenQueueService
from app.services.order_item_service import OrderItemService

router = APIRouter()


@router.get("/queue")
@limiter.limit(settings.kitchen_poll_rate)
def get_queue(request: Request, db: DbSession, current_user: RequireAnyStaff):
    """Items sent, preparing or ready, oldest first."""
    items = KitchenQueueService(db).live_queue(current_user.role)
    return list_response([KitchenItemResponse(**i) for i in items])


@router.get("/delivered")
@limiter.limit(settings.kitchen_poll_rate)
def get_delivered(
    request: Request,
    db: DbSession,
    current_user: RequireAnyStaff,
    date_from: Optional[str] = Query(None, alias="from", description="YYYY-MM-DD"),
    date_to: Optional[str] = Query(None, alias="to", description="YYYY-MM-DD"),
):
    """Served items, newest first. Malformed dates are ignored."""
    items = KitchenQueueService(db).delivered_history(current_user.role, date_from, date_to)
    return list_response([KitchenItemResponse(**i) for i in items])


@router.get("/rejected")
@limiter.limit(settings.kitchen_poll_rate)
def get_rejected(
    request: Request,
    db: DbSession,
    current_user: RequireAnyStaff,
    date_from: Optional[str] = Query(None, alias="from", description="YYYY-MM-DD"),
    date_to: Optional[str] = Query(None, alias="to", description="YYYY-MM-DD"),
):
    """Rejected items and items of rejected orders, newest first."""
    items = KitchenQueueService(db).rejected_history(current_user.role, date_from, date_to)
    return list_response([KitchenItemResponse(**i) for i in items])


@router.put("/items/{item_id}/status", response_model=OrderItemResponse)
def advance_item(item_id: int, body: ItemStatusUpdate, db: DbSession, current_user: RequireCook):
    """Move an item to ``preparing`` or ``ready``."""
    item = OrderItemService(db).advance_item(item_id, body.status, current_user.role)
    return OrderItemResponse.from_item(item)


@router.put("/items/{item_id}/reject", response_model=OrderItemResponse)
def reject_item(item_id: int, db: DbSession, current_user: RequireCook):
    item = OrderItemService(db).kitchen_reject(item_id, current_user.role)
    return OrderItemResponse.from_item(item)
