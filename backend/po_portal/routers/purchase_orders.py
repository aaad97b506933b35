from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID
import logging

from po_portal.auth import CurrentTenant, get_current_tenant
from po_portal.config import Settings
from po_portal.database import get_db
from po_portal.dependencies import get_client_factory, get_email_sender, get_settings, get_storage
from po_portal.errors import NotFoundError
from po_portal.schemas.po import POCreate, POListResponse, POResponse, SendPOResponse
from po_portal.services import po_lifecycle
from po_portal.services.freeagent_client import FreeAgentClientFactory
from po_portal.services.freeagent_mirror import bill_purchase_order
from po_portal.services.storage_service import ALLOWED_INVOICE_TYPES, StorageService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/purchase-orders", tags=["purchase-orders"])


@router.get("", response_model=List[POListResponse])
def list_purchase_orders(
    status: Optional[str] = Query(None, description="Filter by status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    tenant: CurrentTenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """List the company's purchase orders, newest first"""
    return po_lifecycle.list_purchase_orders(db, tenant.company_id, status=status, skip=skip, limit=limit)


@router.post("", response_model=POResponse, status_code=201)
def create_purchase_order(
    po_data: POCreate,
    tenant: CurrentTenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """Create a new Draft purchase order"""
    return po_lifecycle.create_purchase_order(db, tenant.company_id, tenant.user_id, po_data)


@router.get("/{po_id}", response_model=POResponse)
def get_purchase_order(
    po_id: UUID,
    tenant: CurrentTenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    return po_lifecycle.get_purchase_order(db, tenant.company_id, po_id)


@router.post("/{po_id}/send", response_model=SendPOResponse)
def send_purchase_order(
    po_id: UUID,
    tenant: CurrentTenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
    email_sender=Depends(get_email_sender),
    settings: Settings = Depends(get_settings),
):
    """Email the supplier a link to the supplier portal"""
    return po_lifecycle.send_purchase_order(
        db, tenant.company_id, po_id, email_sender, settings, user_id=tenant.user_id
    )


@router.post("/{po_id}/submit-invoice", response_model=POResponse)
def submit_invoice_for_approval(
    po_id: UUID,
    tenant: CurrentTenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    return po_lifecycle.submit_invoice_for_approval(db, tenant.company_id, po_id)


@router.post("/{po_id}/approve-invoice", response_model=POResponse)
def approve_invoice(
    po_id: UUID,
    tenant: CurrentTenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    return po_lifecycle.approve_invoice(db, tenant.company_id, po_id, tenant.user_id)


@router.post("/{po_id}/bill", response_model=POResponse)
def bill_in_freeagent(
    po_id: UUID,
    tenant: CurrentTenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
    client_factory: FreeAgentClientFactory = Depends(get_client_factory),
    settings: Settings = Depends(get_settings),
):
    """Create a bill in FreeAgent for an order whose invoice has been approved"""
    return bill_purchase_order(db, tenant.company_id, po_id, client_factory, settings)


@router.post("/{po_id}/close", response_model=POResponse)
def close_purchase_order(
    po_id: UUID,
    tenant: CurrentTenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    return po_lifecycle.close_purchase_order(db, tenant.company_id, po_id)


@router.post("/{po_id}/cancel", response_model=POResponse)
def cancel_purchase_order(
    po_id: UUID,
    tenant: CurrentTenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    return po_lifecycle.cancel_purchase_order(db, tenant.company_id, po_id)


@router.get("/{po_id}/invoices/{invoice_id}/file")
def download_invoice_file(
    po_id: UUID,
    invoice_id: UUID,
    tenant: CurrentTenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
):
    """Serve an uploaded supplier invoice"""
    invoice = po_lifecycle.get_uploaded_invoice(db, tenant.company_id, po_id, invoice_id)
    try:
        file_content = storage.download_file(invoice.storage_path)
    except FileNotFoundError:
        logger.error(f"Invoice {invoice.id} points at missing file {invoice.storage_path}")
        raise NotFoundError("File not found")

    disposition = "inline" if invoice.content_type in ALLOWED_INVOICE_TYPES else "attachment"
    return Response(
        content=file_content,
        media_type=invoice.content_type,
        headers={
            "Content-Disposition": f'{disposition}; filename="{invoice.filename}"',
            "X-Content-Type-Options": "nosniff",
        }
    )
