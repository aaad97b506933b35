from sqlalchemy import Column, String, Text, DateTime, ForeignKey, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from po_portal.database import Base


class CompanyDetails(Base):
    """Letterhead details pulled from FreeAgent plus the uploaded logo"""
    __tablename__ = "company_details"

    company_id = Column(Uuid, ForeignKey("companies.id", ondelete="CASCADE"), primary_key=True)
    name = Column(String, nullable=False)
    address = Column(Text, nullable=True)  # Address lines joined with newlines
    registration_number = Column(String, nullable=True)
    sales_tax_registration_number = Column(String, nullable=True)
    logo_storage_path = Column(String, nullable=True)
    last_synced_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    company = relationship("Company", back_populates="details")
