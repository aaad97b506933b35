"""
Seed script to create a demo company with cached FreeAgent contacts and
categories plus a few draft purchase orders

Usage:
    python scripts/seed_data.py [user-id]

Prints a development access token for the user so the API can be called
straight away.
"""
import sys
import os
import uuid
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Load environment variables from .env file if it exists
from dotenv import load_dotenv
load_dotenv(Path(__file__).parent.parent / '.env')

from sqlalchemy.orm import Session
from po_portal.auth import create_access_token
from po_portal.config import settings
from po_portal.database import SessionLocal, engine, Base
from po_portal.models import CachedCategory, CachedContact, Company, CompanyUser
from po_portal.schemas.po import POCreate, POLineCreate
from po_portal.services.po_lifecycle import create_purchase_order
from decimal import Decimal
from datetime import date, timedelta
from faker import Faker

fake = Faker('en_GB')

DEMO_SLUG = "demo-company"
FA_BASE = settings.freeagent_api_base_url.rstrip('/')


def create_company(db: Session, user_id: str) -> Company:
    """Create the demo company and make the user a member"""
    company = db.query(Company).filter(Company.slug == DEMO_SLUG).first()
    if not company:
        company = Company(name="Demo Company Ltd", slug=DEMO_SLUG, fa_default_currency="GBP")
        db.add(company)
        db.flush()  # Get the ID

    membership = db.query(CompanyUser).filter(
        CompanyUser.company_id == company.id,
        CompanyUser.user_id == user_id
    ).first()
    if not membership:
        db.add(CompanyUser(company_id=company.id, user_id=user_id, role="owner"))
    db.commit()
    return company


def create_contacts(db: Session, company: Company, count: int = 6) -> list[CachedContact]:
    """Create synthetic supplier contacts as if synced from FreeAgent"""
    contacts = []
    for _ in range(count):
        contact = CachedContact(
            company_id=company.id,
            freeagent_url=f"{FA_BASE}/contacts/{fake.unique.random_int(min=1000, max=99999)}",
            name=fake.company(),
            first_name=fake.first_name(),
            last_name=fake.last_name(),
            email=fake.company_email(),
            is_supplier=True,
            is_customer=False,
        )
        db.add(contact)
        contacts.append(contact)
    db.commit()
    return contacts


def create_categories(db: Session, company: Company) -> list[CachedCategory]:
    """Create the FreeAgent categories most often used on purchase orders"""
    seeds = [
        ("250", "Office Costs", "Admin Expense"),
        ("285", "Accommodation and Meals", "Admin Expense"),
        ("096", "Cost of Sales", "Cost of Sales"),
    ]
    categories = []
    for nominal_code, description, category_type in seeds:
        url = f"{FA_BASE}/categories/{nominal_code}"
        if db.query(CachedCategory).filter(
            CachedCategory.company_id == company.id,
            CachedCategory.freeagent_url == url
        ).first():
            continue
        category = CachedCategory(
            company_id=company.id,
            freeagent_url=url,
            nominal_code=nominal_code,
            description=description,
            category_type=category_type,
        )
        db.add(category)
        categories.append(category)
    db.commit()
    return categories


def create_purchase_orders(db: Session, company: Company, contacts: list[CachedContact], user_id: str, count: int = 4):
    """Create draft purchase orders through the normal creation path"""
    pos = []
    for _ in range(count):
        contact = fake.random_element(elements=contacts)
        lines = [
            POLineCreate(
                description=fake.catch_phrase(),
                quantity=Decimal(str(fake.random_int(min=1, max=20))),
                unit_price=Decimal(str(round(fake.random.uniform(10.0, 500.0), 2))),
            )
            for _ in range(fake.random_int(min=1, max=4))
        ]
        payload = POCreate(
            po_number=f"PO-{fake.unique.random_int(min=1000, max=9999)}",
            freeagent_contact_url=contact.freeagent_url,
            currency="GBP",
            issue_date=date.today(),
            delivery_date=date.today() + timedelta(days=fake.random_int(min=7, max=30)),
            notes=fake.sentence(),
            line_items=lines,
        )
        pos.append(create_purchase_order(db, company.id, user_id, payload))
    return pos


def main():
    """Main seeding function"""
    user_id = sys.argv[1] if len(sys.argv) > 1 else str(uuid.uuid4())

    print("Creating database tables...")
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        print("Creating company...")
        company = create_company(db, user_id)

        print("Creating contacts...")
        contacts = create_contacts(db, company)
        print(f"Created {len(contacts)} contacts")

        print("Creating categories...")
        categories = create_categories(db, company)
        print(f"Created {len(categories)} categories")

        print("Creating purchase orders...")
        pos = create_purchase_orders(db, company, contacts, user_id)
        print(f"Created {len(pos)} purchase orders")

        print("\nSeeding complete!")
        print(f"Summary:")
        print(f"  - Company: {company.name} ({company.id})")
        print(f"  - Contacts: {len(contacts)}")
        print(f"  - Purchase Orders: {len(pos)}")
        for po in pos:
            print(f"    - {po.po_number}: {po.amount} {po.currency}, portal token {po.supplier_portal_token}")
        print(f"\nUser {user_id} access token (valid 24h):")
        print(create_access_token(user_id, settings, expires_minutes=24 * 60))
    finally:
        db.close()


if __name__ == "__main__":
    main()
