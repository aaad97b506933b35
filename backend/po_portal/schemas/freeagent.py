from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime
from uuid import UUID


class AuthorizeResponse(BaseModel):
    authorization_url: str


class OAuthCallbackRequest(BaseModel):
    code: str


class ConnectionStatus(BaseModel):
    connected: bool
    expires_at: Optional[datetime] = None
    fa_company_name: Optional[str] = None


class SyncResult(BaseModel):
    """Counts of upserted records per source, plus any fetch failures"""
    company_updated: bool
    contacts: int
    projects: int
    categories: int
    errors: List[str] = []


class ContactResponse(BaseModel):
    id: UUID
    freeagent_url: str
    name: Optional[str]
    email: Optional[str]
    billing_email: Optional[str] = None
    is_supplier: Optional[bool] = None

    class Config:
        from_attributes = True


class CategoryResponse(BaseModel):
    id: UUID
    freeagent_url: str
    nominal_code: Optional[str]
    description: Optional[str]
    category_type: Optional[str]

    class Config:
        from_attributes = True


class CallbackResponse(BaseModel):
    connected: bool
    expires_at: datetime
