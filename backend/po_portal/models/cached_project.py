from sqlalchemy import Column, String, Boolean, Numeric, DateTime, ForeignKey, JSON, Uuid, UniqueConstraint
from sqlalchemy.sql import func
from po_portal.database import Base
import uuid


class CachedProject(Base):
    """
    A FreeAgent project. Projects created in the app are stored here first with
    a null freeagent_url, which is filled in once FreeAgent accepts them.
    """
    __tablename__ = "cached_projects"
    __table_args__ = (
        UniqueConstraint("company_id", "freeagent_url", name="uq_cached_projects_company_url"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    company_id = Column(Uuid, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    freeagent_url = Column(String, nullable=True)
    name = Column(String, nullable=True)
    status = Column(String, nullable=True)
    budget_units = Column(String, nullable=True)
    is_ir35 = Column(Boolean, nullable=True)
    freeagent_contact_url = Column(String, nullable=True)
    currency = Column(String(3), nullable=True)
    initial_invoicing_amount = Column(Numeric(12, 2), nullable=True)
    sync_error = Column(String, nullable=True)  # Last mirroring failure, cleared on success
    created_by = Column(String, nullable=True)
    raw_data = Column(JSON, nullable=True)
    synced_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
