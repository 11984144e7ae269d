"""Invoice routes - read back an issued invoice."""

from fastapi import APIRouter

from app.core.rbac import RequireFloor
from app.db.session import DbSession
from app.schemas.restaurant import InvoiceResponse
from app.services.invoice_service import InvoiceService

router = APIRouter()


@router.get("/{invoice_id}", response_model=InvoiceResponse)
def get_invoice(invoice_id: int, db: DbSession, current_user: RequireFloor):
    return InvoiceService(db).get_invoice(invoice_id)
