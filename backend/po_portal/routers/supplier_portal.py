"""
Supplier Portal Router - public endpoints reached through the emailed link

No session is required; the portal token in the path is the only credential.
"""
import logging

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.orm import Session

from po_portal.config import Settings
from po_portal.database import get_db
from po_portal.dependencies import get_settings, get_storage
from po_portal.schemas.supplier_portal import (
    SupplierInvoiceResult,
    SupplierPOLine,
    SupplierPOView,
    SupplierResponseRequest,
    SupplierResponseResult,
)
from po_portal.services.po_lifecycle import respond_by_token, upload_invoice_by_token
from po_portal.services.storage_service import StorageService
from po_portal.services.token_gate import find_by_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/supplier-portal", tags=["supplier-portal"])


@router.get("/{token}", response_model=SupplierPOView)
def view_purchase_order(token: str, db: Session = Depends(get_db)):
    """Supplier-facing view of an order; carries no internal identifiers"""
    po = find_by_token(db, token)
    return SupplierPOView(
        po_number=po.po_number,
        company_name=po.company.name,
        supplier_name=po.supplier_name,
        status=po.status,
        currency=po.currency,
        amount=po.amount,
        issue_date=po.issue_date,
        delivery_date=po.delivery_date,
        notes=po.notes,
        lines=[SupplierPOLine.model_validate(line) for line in po.po_lines],
        has_invoice=bool(po.uploaded_invoices),
    )


@router.post("/{token}/respond", response_model=SupplierResponseResult)
def respond(token: str, body: SupplierResponseRequest, db: Session = Depends(get_db)):
    """Accept or reject a purchase order"""
    po = respond_by_token(db, token, body.action)
    return SupplierResponseResult(po_number=po.po_number, status=po.status)


@router.post("/{token}/invoice", response_model=SupplierInvoiceResult, status_code=201)
async def upload_invoice(
    token: str,
    invoice_file: UploadFile = File(...),
    supplier_invoice_number: str = Form(...),
    supplier_invoice_amount: str = Form(...),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    settings: Settings = Depends(get_settings),
):
    """Upload the supplier's invoice for an accepted order"""
    file_content = await invoice_file.read()
    logger.info(f"Supplier invoice upload: {invoice_file.filename}, {len(file_content)} bytes")

    invoice = upload_invoice_by_token(
        db,
        token,
        file_content=file_content,
        filename=invoice_file.filename,
        content_type=invoice_file.content_type,
        supplier_invoice_number=supplier_invoice_number,
        supplier_invoice_amount=supplier_invoice_amount,
        storage=storage,
        max_bytes=settings.max_invoice_upload_bytes,
    )
    return SupplierInvoiceResult(
        po_number=invoice.purchase_order.po_number,
        status=invoice.purchase_order.status,
        supplier_invoice_number=invoice.supplier_invoice_number,
        supplier_invoice_amount=invoice.supplier_invoice_amount,
        filename=invoice.filename,
        uploaded_at=invoice.uploaded_at,
    )
