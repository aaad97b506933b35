"""
Pull company info, contacts, projects and categories from FreeAgent into the
local cache tables.

Each source is fetched independently; a failing source is reported in the
result and the others are still stored.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from po_portal.errors import PersistenceError, UpstreamError
from po_portal.models.cached_category import CachedCategory
from po_portal.models.cached_contact import CachedContact
from po_portal.models.cached_project import CachedProject
from po_portal.models.company import Company
from po_portal.models.company_details import CompanyDetails
from po_portal.services.freeagent_client import FreeAgentClient

logger = logging.getLogger(__name__)

CATEGORY_GROUPS = {
    "admin_expenses_categories": "Admin Expense",
    "cost_of_sales_categories": "Cost of Sales",
}

ADDRESS_FIELDS = ("address1", "address2", "address3", "town", "region", "postcode", "country")


def contact_display_name(contact: Dict[str, Any]) -> str:
    if contact.get("organisation_name"):
        return contact["organisation_name"]
    full_name = f"{contact.get('first_name') or ''} {contact.get('last_name') or ''}".strip()
    return full_name or "Unnamed Contact"


def format_address(company_info: Dict[str, Any]) -> Optional[str]:
    parts = [company_info.get(field) for field in ADDRESS_FIELDS]
    return "\n".join(part for part in parts if part) or None


def _upsert(db: Session, model, company_id, freeagent_url: str, values: Dict[str, Any]):
    record = db.query(model).filter(
        model.company_id == company_id,
        model.freeagent_url == freeagent_url,
    ).first()
    if not record:
        record = model(company_id=company_id, freeagent_url=freeagent_url)
        db.add(record)
    for key, value in values.items():
        setattr(record, key, value)
    return record


class FreeAgentSync:
    """One sync run for one company"""

    def __init__(self, db: Session, company_id, client: FreeAgentClient):
        self.db = db
        self.company_id = company_id
        self.client = client
        self.errors: List[str] = []

    def _fetch(self, source: str, fetcher):
        try:
            return fetcher()
        except UpstreamError as e:
            logger.error(f"Sync fetch failed for {source} (company {self.company_id}): {e.message}")
            self.errors.append(f"{source}: {e.message}")
            return None

    def fetch_categories(self) -> List[Dict[str, Any]]:
        data = self.client.get("/categories") or {}
        categories = []
        for key, category_type in CATEGORY_GROUPS.items():
            for category in data.get(key) or []:
                categories.append(dict(category, category_type=category_type))
        return categories

    def run(self) -> Dict[str, Any]:
        """
        Returns:
            {
                'company_updated': bool,
                'contacts': int,
                'projects': int,
                'categories': int,
                'errors': List[str]
            }
        """
        logger.info(f"Starting FreeAgent sync for company {self.company_id}")
        company_data = self._fetch("Company Info", lambda: self.client.get("/company"))
        company_info = (company_data or {}).get("company")
        contacts = self._fetch("Contacts", lambda: self.client.get_paginated("/contacts", "contacts")) or []
        projects = self._fetch(
            "Projects", lambda: self.client.get_paginated("/projects", "projects", params={"view": "active"})
        ) or []
        categories = self._fetch("Categories", self.fetch_categories) or []

        logger.info(f"Data fetched - Company: {bool(company_info)}, Contacts: {len(contacts)}, "
                    f"Projects: {len(projects)}, Categories: {len(categories)}")

        synced_at = datetime.now(timezone.utc)
        try:
            if company_info:
                self._store_company(company_info, synced_at)
            for contact in contacts:
                self._store_contact(contact, synced_at)
            for project in projects:
                self._store_project(project, synced_at)
            for category in categories:
                self._store_category(category, synced_at)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to store FreeAgent data for company {self.company_id}: {e}")
            raise PersistenceError("Failed to save synced FreeAgent data.")

        if self.errors:
            logger.warning(f"FreeAgent sync for company {self.company_id} finished with errors: {self.errors}")
        else:
            logger.info(f"FreeAgent sync for company {self.company_id} complete")

        return {
            'company_updated': bool(company_info),
            'contacts': len(contacts),
            'projects': len(projects),
            'categories': len(categories),
            'errors': self.errors,
        }

    def _store_company(self, info: Dict[str, Any], synced_at: datetime):
        company = self.db.query(Company).filter(Company.id == self.company_id).first()
        if company:
            company.fa_company_url = info.get("url")
            company.fa_company_name = info.get("name")
            company.fa_default_currency = info.get("currency")

        details = self.db.query(CompanyDetails).filter(CompanyDetails.company_id == self.company_id).first()
        if not details:
            details = CompanyDetails(company_id=self.company_id)
            self.db.add(details)
        details.name = info.get("name") or (company.name if company else "")
        details.address = format_address(info)
        details.registration_number = info.get("company_registration_number")
        details.sales_tax_registration_number = info.get("sales_tax_registration_number")
        details.last_synced_at = synced_at

    def _store_contact(self, contact: Dict[str, Any], synced_at: datetime):
        if not contact.get("url"):
            return
        _upsert(self.db, CachedContact, self.company_id, contact["url"], {
            "name": contact_display_name(contact),
            "first_name": contact.get("first_name"),
            "last_name": contact.get("last_name"),
            "email": contact.get("email"),
            "billing_email": contact.get("billing_email"),
            "is_supplier": bool(contact.get("is_supplier", False)),
            "is_customer": bool(contact.get("is_customer", False)),
            "raw_data": contact,
            "synced_at": synced_at,
        })

    def _store_project(self, project: Dict[str, Any], synced_at: datetime):
        if not project.get("url"):
            return
        _upsert(self.db, CachedProject, self.company_id, project["url"], {
            "name": project.get("name"),
            "status": project.get("status"),
            "budget_units": project.get("budget_units"),
            "is_ir35": project.get("is_ir35"),
            "freeagent_contact_url": project.get("contact"),
            "currency": project.get("currency"),
            "raw_data": project,
            "synced_at": synced_at,
            "sync_error": None,
        })

    def _store_category(self, category: Dict[str, Any], synced_at: datetime):
        if not category.get("url"):
            return
        _upsert(self.db, CachedCategory, self.company_id, category["url"], {
            "nominal_code": category.get("nominal_code"),
            "description": category.get("description"),
            "category_type": category.get("category_type"),
            "allowable_for_tax": category.get("allowable_for_tax"),
            "raw_data": category,
            "synced_at": synced_at,
        })


def sync_company(db: Session, company_id, client: FreeAgentClient) -> Dict[str, Any]:
    return FreeAgentSync(db, company_id, client).run()
