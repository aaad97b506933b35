from pydantic import BaseModel, EmailStr, Field
from typing import List, Optional
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from po_portal.schemas.invoice import UploadedInvoiceResponse


class POLineCreate(BaseModel):
    description: str
    quantity: Decimal
    unit_price: Decimal
    freeagent_category_url: Optional[str] = None


class POCreate(BaseModel):
    po_number: str
    supplier_name: Optional[str] = None
    supplier_email: Optional[EmailStr] = None
    freeagent_contact_url: Optional[str] = None
    freeagent_project_url: Optional[str] = None
    currency: str = "GBP"
    issue_date: date = Field(default_factory=date.today)
    delivery_date: Optional[date] = None
    notes: Optional[str] = None
    line_items: List[POLineCreate] = []


class POLineResponse(BaseModel):
    id: UUID
    line_no: int
    description: str
    quantity: Decimal
    unit_price: Decimal
    line_total: Decimal
    freeagent_category_url: Optional[str] = None

    class Config:
        from_attributes = True


class POResponse(BaseModel):
    id: UUID
    po_number: str
    supplier_name: str
    supplier_email: Optional[str]
    freeagent_contact_url: Optional[str]
    freeagent_project_url: Optional[str]
    currency: str
    amount: Decimal
    issue_date: date
    delivery_date: Optional[date]
    notes: Optional[str]
    status: str
    pending_transition: Optional[str]
    supplier_portal_token: str
    freeagent_bill_url: Optional[str]
    created_by: str
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    po_lines: List[POLineResponse] = []
    uploaded_invoices: List[UploadedInvoiceResponse] = []

    class Config:
        from_attributes = True


class POListResponse(BaseModel):
    id: UUID
    po_number: str
    supplier_name: str
    currency: str
    amount: Decimal
    issue_date: date
    status: str
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class SendPOResponse(BaseModel):
    """Result of emailing a purchase order to its supplier"""
    purchase_order: POResponse
    message_id: Optional[str] = None
    status_updated: bool  # False if the email went out but the status write did not
