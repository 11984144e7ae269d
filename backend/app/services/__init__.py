# Services module

from app.services.table_occupancy_service import TableOccupancyService
from app.services.order_item_service import OrderItemService
from app.services.order_service import OrderService
from app.services.invoice_service import InvoiceService
from app.services.kitchen_queue_service import KitchenQueueService
from app.services.table_service import TableService

__all__ = [
    "TableOccupancyService",
    "OrderItemService",
    "OrderService",
    "InvoiceService",
    "KitchenQueueService",
    "TableService",
]
