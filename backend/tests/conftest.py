"""
Pytest configuration and shared fixtures for the PO portal test suite.

The environment is pointed at an in-memory SQLite database and a temporary
storage directory before anything from ``po_portal`` is imported, because the
engine and the module-level app are built at import time.
"""
import os
import sys
import tempfile
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Generator

import httpx
import pytest

BACKEND_DIR = Path(__file__).parent.parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOCAL_STORAGE_DIR"] = tempfile.mkdtemp(prefix="po_portal_test_")
os.environ["JWT_SECRET"] = "test-secret"

from fastapi.testclient import TestClient  # noqa: E402

from po_portal.auth import create_access_token  # noqa: E402
from po_portal.config import Settings  # noqa: E402
from po_portal.database import Base, SessionLocal, engine, get_db  # noqa: E402
from po_portal.errors import EmailDeliveryError  # noqa: E402
from po_portal.main import create_app  # noqa: E402
from po_portal.models import Company, CompanyUser, FreeAgentCredential  # noqa: E402
from po_portal.schemas.po import POCreate, POLineCreate  # noqa: E402
from po_portal.services.freeagent_client import FreeAgentClientFactory  # noqa: E402
from po_portal.services.freeagent_oauth import FreeAgentOAuth  # noqa: E402
from po_portal.services.storage_service import StorageService  # noqa: E402

FA_BASE = "https://api.freeagent.test/v2"
SUPPLIER_CONTACT_URL = f"{FA_BASE}/contacts/1"
USER_ID = "8f14e45f-ceea-467f-a8f9-3f7c2a9d0b11"


class FakeEmailSender:
    """Records every send; raises EmailDeliveryError when ``fail`` is set"""

    def __init__(self):
        self.sent = []
        self.fail = False

    def send_email(self, to_addresses, subject, body_html, body_text=None, cc_addresses=None, attachments=None):
        if self.fail:
            raise EmailDeliveryError("Failed to send email via Gmail API: quota exceeded")
        self.sent.append({
            'to_addresses': to_addresses,
            'subject': subject,
            'body_html': body_html,
            'body_text': body_text,
        })
        return {'message_id': f"msg-{len(self.sent)}", 'thread_id': f"thread-{len(self.sent)}"}


class FakeFreeAgent:
    """
    Routes for an httpx.MockTransport standing in for the FreeAgent API.

    A route's body may be a dict or a callable taking the request and
    returning an httpx.Response.
    """

    def __init__(self):
        self.requests = []
        self.routes = {}

    def add(self, method: str, path: str, body=None, status: int = 200):
        self.routes[(method, f"/v2{path}")] = (status, body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"errors": {"error": {"message": "Resource not found"}}})
        status, body = route
        if callable(body):
            return body(request)
        return httpx.Response(status, json=body)

    def calls(self, method: str, path: str):
        return [r for r in self.requests if r.method == method and r.url.path == f"/v2{path}"]


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    with tempfile.TemporaryDirectory(prefix="po_portal_storage_") as tmp_path:
        yield Path(tmp_path)


@pytest.fixture
def test_settings(temp_dir: Path) -> Settings:
    return Settings(
        database_url="sqlite://",
        jwt_secret="test-secret",
        app_base_url="https://portal.test",
        freeagent_api_base_url=FA_BASE,
        freeagent_client_id="client-id",
        freeagent_client_secret="client-secret",
        freeagent_default_category_url=f"{FA_BASE}/categories/250",
        local_storage_dir=str(temp_dir),
        storage_access_key_id=None,
        storage_secret_access_key=None,
        gmail_credentials_json=None,
        gmail_client_id=None,
    )


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def company(db_session) -> Company:
    company = Company(name="Acme Widgets Ltd", slug="acme-widgets")
    db_session.add(company)
    db_session.flush()
    db_session.add(CompanyUser(company_id=company.id, user_id=USER_ID, role="owner"))
    db_session.commit()
    return company


@pytest.fixture
def other_company(db_session) -> Company:
    company = Company(name="Other Co", slug="other-co")
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture
def email_sender() -> FakeEmailSender:
    return FakeEmailSender()


@pytest.fixture
def storage(test_settings) -> StorageService:
    return StorageService(test_settings)


@pytest.fixture
def fake_freeagent() -> FakeFreeAgent:
    return FakeFreeAgent()


@pytest.fixture
def transport(fake_freeagent) -> httpx.MockTransport:
    return httpx.MockTransport(fake_freeagent.handler)


@pytest.fixture
def oauth(test_settings, transport) -> FreeAgentOAuth:
    return FreeAgentOAuth(test_settings, transport=transport)


@pytest.fixture
def client_factory(test_settings, oauth, transport) -> FreeAgentClientFactory:
    return FreeAgentClientFactory(test_settings, oauth, transport=transport)


@pytest.fixture
def credential(db_session, company) -> FreeAgentCredential:
    """A FreeAgent connection that is valid for another hour"""
    credential = FreeAgentCredential(
        company_id=company.id,
        access_token="access-1",
        refresh_token="refresh-1",
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
    )
    db_session.add(credential)
    db_session.commit()
    return credential


@pytest.fixture
def app(test_settings, storage, email_sender, oauth, client_factory, db_session):
    app = create_app(
        settings=test_settings,
        storage=storage,
        email_sender=email_sender,
        oauth=oauth,
        client_factory=client_factory,
    )
    app.dependency_overrides[get_db] = lambda: db_session
    return app


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


@pytest.fixture
def auth_headers(test_settings, company) -> dict:
    token = create_access_token(USER_ID, test_settings)
    return {"Authorization": f"Bearer {token}"}


def make_po_payload(po_number: str = "PO-1001", **overrides) -> POCreate:
    data = dict(
        po_number=po_number,
        supplier_name="Bolt Supplies",
        supplier_email="orders@boltsupplies.co.uk",
        freeagent_contact_url=SUPPLIER_CONTACT_URL,
        currency="GBP",
        issue_date=date(2026, 10, 1),
        delivery_date=date(2026, 10, 31),
        line_items=[POLineCreate(description="Widgets", quantity=Decimal("2"), unit_price=Decimal("50.00"))],
    )
    data.update(overrides)
    return POCreate(**data)
