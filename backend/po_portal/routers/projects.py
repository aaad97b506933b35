from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List
from uuid import UUID

from po_portal.auth import CurrentTenant, get_current_tenant
from po_portal.database import get_db
from po_portal.dependencies import get_client_factory
from po_portal.schemas.project import ProjectCreate, ProjectResponse
from po_portal.services.freeagent_client import FreeAgentClientFactory
from po_portal.services.freeagent_mirror import create_project, list_projects, retry_project_sync

router = APIRouter(prefix="/api/projects", tags=["projects"])


@router.get("", response_model=List[ProjectResponse])
def get_projects(
    tenant: CurrentTenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """Projects synced from FreeAgent plus those created here"""
    return list_projects(db, tenant.company_id)


@router.post("", response_model=ProjectResponse, status_code=201)
def post_project(
    project_data: ProjectCreate,
    tenant: CurrentTenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
    client_factory: FreeAgentClientFactory = Depends(get_client_factory),
):
    """
    Create a project. It is saved locally first; if FreeAgent then rejects it the
    response is a 502 whose details carry the local project_id for a retry.
    """
    return create_project(db, tenant.company_id, tenant.user_id, project_data, client_factory)


@router.post("/{project_id}/sync", response_model=ProjectResponse)
def sync_project(
    project_id: UUID,
    tenant: CurrentTenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
    client_factory: FreeAgentClientFactory = Depends(get_client_factory),
):
    """Retry mirroring a project that never reached FreeAgent"""
    return retry_project_sync(db, tenant.company_id, project_id, client_factory)
