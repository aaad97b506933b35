import logging

from fastapi import APIRouter, Depends, File, UploadFile
from sqlalchemy.orm import Session

from po_portal.auth import CurrentTenant, get_current_tenant
from po_portal.database import get_db
from po_portal.dependencies import get_storage
from po_portal.errors import NotFoundError, ValidationError
from po_portal.models.company import Company
from po_portal.models.company_details import CompanyDetails
from po_portal.schemas.company import CompanyDetailsResponse, CompanyResponse
from po_portal.services.po_lifecycle import commit
from po_portal.services.storage_service import StorageService, logo_key

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/company", tags=["company"])

ALLOWED_LOGO_TYPES = {"image/png", "image/jpeg", "image/gif", "image/webp", "image/svg+xml"}
MAX_LOGO_BYTES = 2 * 1024 * 1024


def _get_company(db: Session, company_id) -> Company:
    company = db.query(Company).filter(Company.id == company_id).first()
    if not company:
        raise NotFoundError("Company not found")
    return company


@router.get("", response_model=CompanyResponse)
def get_company(
    tenant: CurrentTenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    company = _get_company(db, tenant.company_id)
    return CompanyResponse(
        id=company.id,
        name=company.name,
        slug=company.slug,
        role=tenant.role,
        fa_company_url=company.fa_company_url,
        fa_company_name=company.fa_company_name,
        fa_default_currency=company.fa_default_currency,
        details=CompanyDetailsResponse.model_validate(company.details) if company.details else None,
    )


@router.post("/logo", response_model=CompanyDetailsResponse)
async def upload_logo(
    logo: UploadFile = File(...),
    tenant: CurrentTenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
):
    """Upload the company logo shown on purchase orders"""
    content_type = logo.content_type or storage.content_type_for(logo.filename or "")
    if content_type not in ALLOWED_LOGO_TYPES:
        raise ValidationError(f"Unsupported logo type: {content_type}")
    content = await logo.read()
    if not content:
        raise ValidationError("Logo file is empty")
    if len(content) > MAX_LOGO_BYTES:
        raise ValidationError("Logo file is too large (limit 2 MB)")

    company = _get_company(db, tenant.company_id)
    storage_key = storage.upload_file(content, logo_key(company.id, logo.filename), content_type)

    details = company.details
    if not details:
        details = CompanyDetails(company_id=company.id, name=company.name)
        db.add(details)
    details.logo_storage_path = storage_key
    commit(db, "save company logo")
    db.refresh(details)
    logger.info(f"Logo for company {company.id} stored at {storage_key}")
    return details
