"""Tables routes - floor overview, table admin, open and release."""

from fastapi import APIRouter, status

from app.core.rbac import RequireAdmin, RequireFloor
from app.core.responses import list_response
from app.db.session import DbSession
from app.schemas.restaurant import (
    FloorTableResponse,
    OpenTableRequest,
    OpenTableResponse,
    OrderResponse,
    ReleaseTableResponse,
    TableCreate,
    TableResponse,
    TableUpdate,
)
from app.services.order_service import OrderService
from app.services.table_service import TableService

router = APIRouter()


@router.get("/")
def list_tables(db: DbSession, current_user: RequireFloor):
    """All tables with live status, open orders and active item counts."""
    tables = TableService(db).list_tables(current_user.role)
    return list_response([FloorTableResponse(**t) for t in tables])


@router.post("/", response_model=TableResponse, status_code=status.HTTP_201_CREATED)
def create_table(body: TableCreate, db: DbSession, current_user: RequireAdmin):
    return TableService(db).create_table(body.number, current_user.role, description=body.description)


@router.put("/{table_id}", response_model=TableResponse)
def update_table(table_id: int, body: TableUpdate, db: DbSession, current_user: RequireAdmin):
    return TableService(db).update_table(
        table_id,
        body.number,
        current_user.role,
        description=body.description,
        status=body.status,
    )


@router.delete("/{table_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_table(table_id: int, db: DbSession, current_user: RequireAdmin):
    TableService(db).delete_table(table_id, current_user.role)


@router.post("/open", response_model=OpenTableResponse)
def open_table(body: OpenTableRequest, db: DbSession, current_user: RequireFloor):
    """Open the table, or return the order already open on it."""
    service = OrderService(db)
    order, created = service.open_table(
        body.table_id,
        current_user.role,
        customer_id=body.customer_id,
        notes=body.notes,
    )
    order = service.get_order(order.id, current_user.role)
    return OpenTableResponse(order=OrderResponse.from_order(order), created=created)


@router.put("/{table_id}/release", response_model=ReleaseTableResponse)
def release_table(table_id: int, db: DbSession, current_user: RequireFloor):
    rejected = OrderService(db).release_table(table_id, current_user.role)
    return ReleaseTableResponse(table_id=table_id, rejected_orders=rejected)
