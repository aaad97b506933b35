from sqlalchemy import Column, String, DateTime, ForeignKey, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from po_portal.database import Base
import uuid


class Company(Base):
    """A tenant. Every other table is scoped by company_id."""
    __tablename__ = "companies"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, nullable=False, index=True)

    # Filled in by the FreeAgent sync
    fa_company_url = Column(String, nullable=True)
    fa_company_name = Column(String, nullable=True)
    fa_default_currency = Column(String(3), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    users = relationship("CompanyUser", back_populates="company", cascade="all, delete-orphan")
    details = relationship("CompanyDetails", back_populates="company", uselist=False, cascade="all, delete-orphan")


class CompanyUser(Base):
    __tablename__ = "company_users"

    company_id = Column(Uuid, ForeignKey("companies.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(String, primary_key=True, index=True)  # Subject of the auth provider's JWT
    role = Column(String, nullable=False, default="member")
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    company = relationship("Company", back_populates="users")
