"""
FreeAgent Router - connection management and cached FreeAgent data
"""
import logging
import secrets
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from po_portal.auth import CurrentTenant, get_current_tenant
from po_portal.database import get_db
from po_portal.dependencies import get_client_factory, get_oauth
from po_portal.models.cached_category import CachedCategory
from po_portal.models.cached_contact import CachedContact
from po_portal.models.company import Company
from po_portal.models.freeagent_credential import FreeAgentCredential
from po_portal.schemas.freeagent import (
    AuthorizeResponse,
    CallbackResponse,
    CategoryResponse,
    ConnectionStatus,
    ContactResponse,
    OAuthCallbackRequest,
    SyncResult,
)
from po_portal.services.freeagent_client import FreeAgentClientFactory
from po_portal.services.freeagent_oauth import FreeAgentOAuth, store_credentials
from po_portal.services.freeagent_sync import sync_company

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/freeagent", tags=["freeagent"])


@router.get("/authorize", response_model=AuthorizeResponse)
def authorize(
    tenant: CurrentTenant = Depends(get_current_tenant),
    oauth: FreeAgentOAuth = Depends(get_oauth),
):
    """URL to send the user to for approving FreeAgent access"""
    return AuthorizeResponse(authorization_url=oauth.authorization_url(secrets.token_urlsafe(16)))


@router.post("/oauth/callback", response_model=CallbackResponse)
def oauth_callback(
    body: OAuthCallbackRequest,
    tenant: CurrentTenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
    oauth: FreeAgentOAuth = Depends(get_oauth),
):
    """Exchange the authorization code FreeAgent redirected back with"""
    logger.info(f"FreeAgent OAuth callback for company {tenant.company_id}")
    token_data = oauth.exchange_code(body.code)
    credential = store_credentials(db, tenant.company_id, token_data)
    return CallbackResponse(connected=True, expires_at=credential.expires_at)


@router.post("/sync", response_model=SyncResult)
def sync(
    tenant: CurrentTenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
    client_factory: FreeAgentClientFactory = Depends(get_client_factory),
):
    """Refresh the local copies of company info, contacts, projects and categories"""
    with client_factory.for_company(db, tenant.company_id) as client:
        return sync_company(db, tenant.company_id, client)


@router.get("/status", response_model=ConnectionStatus)
def connection_status(
    tenant: CurrentTenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    credential = db.query(FreeAgentCredential).filter(
        FreeAgentCredential.company_id == tenant.company_id
    ).first()
    company = db.query(Company).filter(Company.id == tenant.company_id).first()
    return ConnectionStatus(
        connected=credential is not None,
        expires_at=credential.expires_at if credential else None,
        fa_company_name=company.fa_company_name if company else None,
    )


@router.get("/contacts", response_model=List[ContactResponse])
def list_contacts(
    suppliers_only: bool = Query(False, description="Only contacts flagged as suppliers"),
    tenant: CurrentTenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    query = db.query(CachedContact).filter(CachedContact.company_id == tenant.company_id)
    if suppliers_only:
        query = query.filter(CachedContact.is_supplier.is_(True))
    return query.order_by(CachedContact.name).all()


@router.get("/categories", response_model=List[CategoryResponse])
def list_categories(
    tenant: CurrentTenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    return db.query(CachedCategory).filter(
        CachedCategory.company_id == tenant.company_id
    ).order_by(CachedCategory.nominal_code).all()
