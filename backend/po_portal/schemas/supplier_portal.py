"""
Schemas for the public supplier portal.

These deliberately carry no internal identifiers: no order id, company id
or portal token.
"""
from pydantic import BaseModel
from typing import List, Optional
from datetime import date, datetime
from decimal import Decimal


class SupplierPOLine(BaseModel):
    description: str
    quantity: Decimal
    unit_price: Decimal
    line_total: Decimal

    class Config:
        from_attributes = True


class SupplierPOView(BaseModel):
    po_number: str
    company_name: str
    supplier_name: str
    status: str
    currency: str
    amount: Decimal
    issue_date: date
    delivery_date: Optional[date] = None
    notes: Optional[str] = None
    lines: List[SupplierPOLine] = []
    has_invoice: bool = False


class SupplierResponseRequest(BaseModel):
    action: str  # 'accept' or 'reject'


class SupplierResponseResult(BaseModel):
    po_number: str
    status: str


class SupplierInvoiceResult(BaseModel):
    po_number: str
    status: str
    supplier_invoice_number: str
    supplier_invoice_amount: Decimal
    filename: str
    uploaded_at: Optional[datetime] = None
