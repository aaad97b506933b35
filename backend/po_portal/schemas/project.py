from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from decimal import Decimal
from uuid import UUID


class ProjectCreate(BaseModel):
    name: str
    contact_url: str
    currency: str = "GBP"
    budget_units: str = "Hours"
    initial_invoicing_amount: Optional[Decimal] = None


class ProjectResponse(BaseModel):
    id: UUID
    name: Optional[str]
    freeagent_url: Optional[str]
    freeagent_contact_url: Optional[str]
    status: Optional[str]
    currency: Optional[str]
    budget_units: Optional[str]
    sync_error: Optional[str] = None
    synced_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
