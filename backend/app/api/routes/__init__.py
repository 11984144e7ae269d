"""API routes."""

from fastapi import APIRouter

from app.api.routes import tables, orders, kitchen, invoices

api_router = APIRouter()

# Floor (waiter/admin)
api_router.include_router(tables.router, prefix="/tables", tags=["tables"])
api_router.include_router(orders.router, prefix="/orders", tags=["orders", "items"])
api_router.include_router(invoices.router, prefix="/invoices", tags=["invoices"])

# Kitchen display
api_router.include_router(kitchen.router, prefix="/kitchen", tags=["kitchen", "kds"])
