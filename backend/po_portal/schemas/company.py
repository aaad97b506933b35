from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from uuid import UUID


class CompanyDetailsResponse(BaseModel):
    name: str
    address: Optional[str] = None
    registration_number: Optional[str] = None
    sales_tax_registration_number: Optional[str] = None
    logo_storage_path: Optional[str] = None
    last_synced_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CompanyResponse(BaseModel):
    id: UUID
    name: str
    slug: str
    role: str
    fa_company_url: Optional[str] = None
    fa_company_name: Optional[str] = None
    fa_default_currency: Optional[str] = None
    details: Optional[CompanyDetailsResponse] = None
