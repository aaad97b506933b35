"""
Local-first mirroring of records into FreeAgent.

The local row is always committed before FreeAgent is called, so a remote
failure never loses what the user entered. Such failures surface as
MirrorSyncError carrying the local id so the client can retry.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from po_portal.config import Settings
from po_portal.errors import (
    ConflictError,
    MirrorSyncError,
    NotFoundError,
    PersistenceError,
    UpstreamError,
    ValidationError,
)
from po_portal.models.cached_project import CachedProject
from po_portal.models.purchase_order import POStatus, PurchaseOrder
from po_portal.schemas.project import ProjectCreate
from po_portal.services.freeagent_client import FreeAgentClientFactory
from po_portal.services.po_lifecycle import (
    claim,
    commit,
    compare_and_set_status,
    get_purchase_order,
    release_claim,
)

logger = logging.getLogger(__name__)

PROJECT_STATUS_ACTIVE = "Active"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def list_projects(db: Session, company_id) -> List[CachedProject]:
    return db.query(CachedProject).filter(
        CachedProject.company_id == company_id
    ).order_by(CachedProject.name).all()


def create_project(
    db: Session,
    company_id,
    user_id: str,
    payload: ProjectCreate,
    client_factory: FreeAgentClientFactory,
) -> CachedProject:
    """Save the project locally, then create it in FreeAgent"""
    name = (payload.name or "").strip()
    if not name:
        raise ValidationError("Missing required field: name")
    if not payload.contact_url:
        raise ValidationError("Missing required field: contact_url")
    currency = (payload.currency or "").strip().upper()
    if len(currency) != 3 or not currency.isalpha():
        raise ValidationError("currency must be a 3-letter ISO 4217 code")

    project = CachedProject(
        company_id=company_id,
        name=name,
        freeagent_contact_url=payload.contact_url,
        currency=currency,
        budget_units=payload.budget_units or "Hours",
        initial_invoicing_amount=payload.initial_invoicing_amount,
        status=PROJECT_STATUS_ACTIVE,
        created_by=user_id,
    )
    db.add(project)
    commit(db, "save project")
    db.refresh(project)
    logger.info(f"Saved project {project.id} locally for company {company_id}")

    return _mirror_project(db, project, client_factory)


def retry_project_sync(db: Session, company_id, project_id, client_factory: FreeAgentClientFactory) -> CachedProject:
    """Re-attempt mirroring a locally saved project that never reached FreeAgent"""
    project = db.query(CachedProject).filter(
        CachedProject.id == project_id,
        CachedProject.company_id == company_id,
    ).first()
    if not project:
        raise NotFoundError("Project not found")
    if project.freeagent_url:
        raise ConflictError("Project is already synced with FreeAgent")
    return _mirror_project(db, project, client_factory)


def _project_body(project: CachedProject) -> Dict[str, Any]:
    body = {
        "name": project.name,
        "contact": project.freeagent_contact_url,
        "currency": project.currency,
        "status": PROJECT_STATUS_ACTIVE,
        "budget_units": project.budget_units or "Hours",
    }
    if project.initial_invoicing_amount is not None:
        body["initial_invoicing_amount"] = str(project.initial_invoicing_amount)
    return {"project": body}


def _record_project_failure(db: Session, project: CachedProject, message: str):
    project.sync_error = message
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to record sync error on project {project.id}: {e}")


def _mirror_project(db: Session, project: CachedProject, client_factory: FreeAgentClientFactory) -> CachedProject:
    project_id = project.id
    try:
        with client_factory.for_company(db, project.company_id) as client:
            data = client.post("/projects", _project_body(project))
        remote = (data or {}).get("project") or {}
        if not remote.get("url"):
            raise UpstreamError("FreeAgent did not return a project URL")
    except UpstreamError as e:
        logger.error(f"Failed to create project {project_id} in FreeAgent: {e.message}")
        _record_project_failure(db, project, e.message)
        raise MirrorSyncError(
            "Project saved locally but could not be created in FreeAgent. "
            f"Retry the sync later. ({e.message})",
            details={"project_id": str(project_id), "reason": e.code},
        )

    project.freeagent_url = remote["url"]
    project.status = remote.get("status", PROJECT_STATUS_ACTIVE)
    project.raw_data = remote
    project.synced_at = utcnow()
    project.sync_error = None
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Project {project_id} created in FreeAgent as {remote['url']} but the link was not saved: {e}")
        raise PersistenceError(
            "Project created in FreeAgent but the local record could not be updated.",
            details={"project_id": str(project_id), "freeagent_url": remote["url"]},
        )
    db.refresh(project)
    logger.info(f"Project {project_id} mirrored to FreeAgent: {project.freeagent_url}")
    return project


def _bill_body(po: PurchaseOrder, settings: Settings) -> Dict[str, Any]:
    items = []
    for line in po.po_lines:
        items.append({
            "description": line.description,
            "total_value": str(Decimal(line.line_total).quantize(Decimal("0.01"))),
            "category": line.freeagent_category_url or settings.freeagent_default_category_url,
            "sales_tax_rate": "0.0",
            "sales_tax_status": "OUT_OF_SCOPE",
        })

    bill = {
        "contact": po.freeagent_contact_url,
        "dated_on": po.issue_date.isoformat(),
        "reference": po.po_number,
        "currency": po.currency,
        "bill_items": items,
    }
    if po.delivery_date:
        bill["due_on"] = po.delivery_date.isoformat()
    if po.notes:
        bill["comments"] = po.notes
    if po.freeagent_project_url:
        bill["project"] = po.freeagent_project_url
    return {"bill": bill}


def bill_purchase_order(
    db: Session,
    company_id,
    po_id,
    client_factory: FreeAgentClientFactory,
    settings: Settings,
) -> PurchaseOrder:
    """Create a FreeAgent bill for an approved order and move it to BilledInFreeAgent"""
    po = get_purchase_order(db, company_id, po_id)
    if POStatus(po.status) != POStatus.INVOICE_APPROVED:
        raise ConflictError(
            f"Purchase order {po.po_number} is {po.status}; only orders with an approved invoice can be billed."
        )
    if not po.freeagent_contact_url:
        raise ValidationError("Purchase order has no FreeAgent contact to bill")

    claim(db, po.id, POStatus.INVOICE_APPROVED, POStatus.BILLED_IN_FREEAGENT)
    db.refresh(po)

    try:
        with client_factory.for_company(db, company_id) as client:
            data = client.post("/bills", _bill_body(po, settings))
        bill_url = ((data or {}).get("bill") or {}).get("url")
        if not bill_url:
            raise UpstreamError("FreeAgent did not return a bill URL")
    except UpstreamError as e:
        logger.error(f"Failed to create FreeAgent bill for {po.po_number}: {e.message}")
        release_claim(db, po.id, POStatus.BILLED_IN_FREEAGENT)
        raise MirrorSyncError(
            f"Failed to create bill in FreeAgent: {e.message}",
            details={"purchase_order_id": str(po.id), "reason": e.code},
        )
    except Exception:
        logger.exception(f"Unexpected error creating FreeAgent bill for {po.po_number}")
        release_claim(db, po.id, POStatus.BILLED_IN_FREEAGENT)
        raise

    try:
        moved = compare_and_set_status(
            db, po.id, POStatus.INVOICE_APPROVED, POStatus.BILLED_IN_FREEAGENT,
            extra={"freeagent_bill_url": bill_url},
            pending=POStatus.BILLED_IN_FREEAGENT,
        )
        if not moved:
            raise ConflictError(
                f"Purchase order {po.po_number} was changed while it was being billed.",
                details={"purchase_order_id": str(po.id), "freeagent_bill_url": bill_url},
            )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Bill {bill_url} created for {po.po_number} but the order was not updated: {e}")
        raise PersistenceError(
            "Bill created in FreeAgent but the purchase order could not be updated.",
            details={"purchase_order_id": str(po.id), "freeagent_bill_url": bill_url},
        )
    except ConflictError:
        db.rollback()
        logger.error(f"Bill {bill_url} created for {po.po_number} but the order changed meanwhile")
        raise

    db.refresh(po)
    logger.info(f"Purchase order {po.po_number} billed in FreeAgent: {bill_url}")
    return po
