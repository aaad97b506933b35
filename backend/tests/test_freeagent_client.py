"""
Tests for the FreeAgent REST client and its factory.
"""
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from conftest import FA_BASE
from po_portal.errors import FreeAgentAPIError, ReconnectRequiredError
from po_portal.models import FreeAgentCredential
from po_portal.services.freeagent_client import MAX_PER_PAGE, FreeAgentClient


def _client(transport):
    return FreeAgentClient(FA_BASE, "access-1", transport=transport)


def test_requests_carry_bearer_token_and_json_accept(fake_freeagent, transport):
    fake_freeagent.add("GET", "/company", {"company": {"name": "Acme"}})

    with _client(transport) as client:
        data = client.get("/company")

    request = fake_freeagent.requests[0]
    assert data == {"company": {"name": "Acme"}}
    assert request.headers["Authorization"] == "Bearer access-1"
    assert request.headers["Accept"] == "application/json"
    assert request.headers["User-Agent"] == "PO Portal/1.0"


def test_absolute_resource_urls_are_used_as_is(fake_freeagent, transport):
    fake_freeagent.add("GET", "/contacts/1", {"contact": {"url": f"{FA_BASE}/contacts/1"}})

    with _client(transport) as client:
        data = client.get(f"{FA_BASE}/contacts/1")

    assert data["contact"]["url"].endswith("/contacts/1")


def test_get_paginated_follows_pages_until_short_page(fake_freeagent, transport):
    def contacts(request: httpx.Request):
        page = int(request.url.params["page"])
        assert request.url.params["per_page"] == str(MAX_PER_PAGE)
        size = MAX_PER_PAGE if page == 1 else 5
        return httpx.Response(200, json={"contacts": [{"url": f"c-{page}-{i}"} for i in range(size)]})

    fake_freeagent.add("GET", "/contacts", contacts)

    with _client(transport) as client:
        results = client.get_paginated("/contacts", "contacts")

    assert len(results) == MAX_PER_PAGE + 5
    assert len(fake_freeagent.calls("GET", "/contacts")) == 2


def test_get_paginated_keeps_extra_params(fake_freeagent, transport):
    def projects(request: httpx.Request):
        assert request.url.params["view"] == "active"
        return httpx.Response(200, json={"projects": []})

    fake_freeagent.add("GET", "/projects", projects)

    with _client(transport) as client:
        assert client.get_paginated("/projects", "projects", params={"view": "active"}) == []


def test_error_response_raises_with_detail(fake_freeagent, transport):
    fake_freeagent.add(
        "POST", "/bills",
        {"errors": [{"message": "Contact can't be blank"}, {"message": "Dated on is invalid"}]},
        status=422,
    )

    with _client(transport) as client:
        with pytest.raises(FreeAgentAPIError) as exc_info:
            client.post("/bills", {"bill": {}})

    error = exc_info.value
    assert error.remote_status == 422
    assert error.status_code == 502
    assert "Contact can't be blank; Dated on is invalid" in error.message


def test_oauth_style_error_detail(fake_freeagent, transport):
    fake_freeagent.add("GET", "/company", {"error": "invalid_token", "error_description": "Token expired"}, status=401)

    with _client(transport) as client:
        with pytest.raises(FreeAgentAPIError, match="Token expired"):
            client.get("/company")


def test_transport_failure_raises(fake_freeagent, transport):
    def boom(request):
        raise httpx.ReadTimeout("timed out", request=request)

    fake_freeagent.add("GET", "/company", boom)

    with _client(transport) as client:
        with pytest.raises(FreeAgentAPIError):
            client.get("/company")


class TestClientFactory:
    def test_builds_client_with_current_token(self, db_session, company, credential, client_factory, fake_freeagent):
        fake_freeagent.add("GET", "/company", {"company": {}})

        with client_factory.for_company(db_session, company.id) as client:
            client.get("/company")

        assert fake_freeagent.calls("GET", "/company")[0].headers["Authorization"] == "Bearer access-1"
        assert fake_freeagent.calls("POST", "/token_endpoint") == []

    def test_refreshes_before_building(self, db_session, company, credential, client_factory, fake_freeagent):
        credential.expires_at = datetime.now(timezone.utc) + timedelta(seconds=60)
        db_session.commit()
        fake_freeagent.add("POST", "/token_endpoint", {"access_token": "access-2", "expires_in": 3600})
        fake_freeagent.add("GET", "/company", {"company": {}})

        with client_factory.for_company(db_session, company.id) as client:
            client.get("/company")

        assert fake_freeagent.calls("GET", "/company")[0].headers["Authorization"] == "Bearer access-2"
        assert db_session.query(FreeAgentCredential).one().access_token == "access-2"

    def test_not_connected(self, db_session, company, client_factory):
        with pytest.raises(ReconnectRequiredError):
            client_factory.for_company(db_session, company.id)
