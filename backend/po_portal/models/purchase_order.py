from enum import Enum

from sqlalchemy import Column, String, Text, Numeric, ForeignKey, DateTime, Date, Uuid, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from po_portal.database import Base
import uuid


class POStatus(str, Enum):
    """Purchase order lifecycle states"""
    DRAFT = "Draft"
    SENT_TO_SUPPLIER = "SentToSupplier"
    ACCEPTED_BY_SUPPLIER = "AcceptedBySupplier"
    REJECTED_BY_SUPPLIER = "RejectedBySupplier"
    INVOICE_UPLOADED = "InvoiceUploaded"
    INVOICE_PENDING_APPROVAL = "InvoicePendingApproval"
    INVOICE_APPROVED = "InvoiceApproved"
    BILLED_IN_FREEAGENT = "BilledInFreeAgent"
    CLOSED = "Closed"
    CANCELLED = "Cancelled"


class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"
    __table_args__ = (
        UniqueConstraint("company_id", "po_number", name="uq_purchase_orders_company_po_number"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    company_id = Column(Uuid, ForeignKey("companies.id"), nullable=False, index=True)
    po_number = Column(String, nullable=False, index=True)

    # Supplier (a FreeAgent contact)
    supplier_name = Column(String, nullable=False)
    supplier_email = Column(String, nullable=True)
    freeagent_contact_url = Column(String, nullable=True)
    freeagent_project_url = Column(String, nullable=True)

    currency = Column(String(3), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    issue_date = Column(Date, nullable=False)
    delivery_date = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)

    status = Column(String, nullable=False, default=POStatus.DRAFT.value, index=True)
    # Target status of a transition whose remote side effect (email, bill) is in flight
    pending_transition = Column(String, nullable=True)

    supplier_portal_token = Column(String, unique=True, nullable=False, index=True)
    freeagent_bill_url = Column(String, nullable=True)

    created_by = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    company = relationship("Company")
    po_lines = relationship("POLine", back_populates="purchase_order", cascade="all, delete-orphan", order_by="POLine.line_no")
    uploaded_invoices = relationship("UploadedInvoice", back_populates="purchase_order", cascade="all, delete-orphan")
