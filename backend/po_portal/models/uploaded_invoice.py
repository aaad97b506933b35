from enum import Enum

from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from po_portal.database import Base
import uuid


class InvoiceUploadStatus(str, Enum):
    PENDING_APPROVAL = "PendingApproval"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class UploadedInvoice(Base):
    """An invoice file a supplier uploaded through the portal"""
    __tablename__ = "uploaded_invoices"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    purchase_order_id = Column(Uuid, ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    company_id = Column(Uuid, ForeignKey("companies.id"), nullable=False, index=True)

    # File metadata
    storage_path = Column(String, nullable=False)
    filename = Column(String, nullable=False)
    content_type = Column(String, nullable=False)
    size_bytes = Column(Integer, nullable=False)

    supplier_invoice_number = Column(String, nullable=False)
    supplier_invoice_amount = Column(Numeric(12, 2), nullable=False)

    status = Column(String, nullable=False, default=InvoiceUploadStatus.PENDING_APPROVAL.value, index=True)
    uploaded_at = Column(DateTime(timezone=True), server_default=func.now())
    approved_or_rejected_at = Column(DateTime(timezone=True), nullable=True)
    approved_or_rejected_by = Column(String, nullable=True)

    # Relationships
    purchase_order = relationship("PurchaseOrder", back_populates="uploaded_invoices")
