from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, JSON, Uuid, UniqueConstraint
from sqlalchemy.sql import func
from po_portal.database import Base
import uuid


class CachedCategory(Base):
    """FreeAgent accounting category used on PO lines and bills"""
    __tablename__ = "cached_categories"
    __table_args__ = (
        UniqueConstraint("company_id", "freeagent_url", name="uq_cached_categories_company_url"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    company_id = Column(Uuid, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    freeagent_url = Column(String, nullable=False)
    nominal_code = Column(String, nullable=True)
    description = Column(String, nullable=True)
    category_type = Column(String, nullable=True)  # 'Admin Expense', 'Cost of Sales'
    allowable_for_tax = Column(Boolean, nullable=True)
    raw_data = Column(JSON, nullable=True)
    synced_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
