from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from decimal import Decimal
from uuid import UUID


class UploadedInvoiceResponse(BaseModel):
    id: UUID
    filename: str
    content_type: str
    size_bytes: int
    supplier_invoice_number: str
    supplier_invoice_amount: Decimal
    status: str
    uploaded_at: Optional[datetime]
    approved_or_rejected_at: Optional[datetime] = None
    approved_or_rejected_by: Optional[str] = None

    class Config:
        from_attributes = True
