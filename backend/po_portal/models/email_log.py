from sqlalchemy import Column, String, Text, DateTime, ForeignKey, JSON, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from po_portal.database import Base
import uuid


class EmailLog(Base):
    """Tracks purchase order emails sent to suppliers"""
    __tablename__ = "email_log"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    purchase_order_id = Column(Uuid, ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    company_id = Column(Uuid, ForeignKey("companies.id"), nullable=False)

    # Email details
    to_addresses = Column(JSON, nullable=False)
    subject = Column(String, nullable=False)
    body_html = Column(Text, nullable=True)
    status = Column(String, default='sent', index=True)  # sent/failed

    # Gmail API details
    gmail_message_id = Column(String, nullable=True)
    gmail_thread_id = Column(String, nullable=True)

    # Tracking
    sent_at = Column(DateTime(timezone=True), nullable=True)
    sent_by = Column(String, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    purchase_order = relationship("PurchaseOrder", backref="emails")
