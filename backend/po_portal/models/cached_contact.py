from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, JSON, Uuid, UniqueConstraint
from sqlalchemy.sql import func
from po_portal.database import Base
import uuid


class CachedContact(Base):
    """Local copy of a FreeAgent contact (suppliers and customers)"""
    __tablename__ = "cached_contacts"
    __table_args__ = (
        UniqueConstraint("company_id", "freeagent_url", name="uq_cached_contacts_company_url"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    company_id = Column(Uuid, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    freeagent_url = Column(String, nullable=False)
    name = Column(String, nullable=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    billing_email = Column(String, nullable=True)
    is_supplier = Column(Boolean, default=False)
    is_customer = Column(Boolean, default=False)
    raw_data = Column(JSON, nullable=True)
    synced_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
