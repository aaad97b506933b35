from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, Uuid
from sqlalchemy.orm import relationship
from po_portal.database import Base
import uuid


class POLine(Base):
    __tablename__ = "po_lines"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    purchase_order_id = Column(Uuid, ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    company_id = Column(Uuid, ForeignKey("companies.id"), nullable=False)
    line_no = Column(Integer, nullable=False)
    description = Column(String, nullable=False)
    quantity = Column(Numeric(10, 2), nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    line_total = Column(Numeric(12, 2), nullable=False)
    freeagent_category_url = Column(String, nullable=True)

    # Relationships
    purchase_order = relationship("PurchaseOrder", back_populates="po_lines")
