"""
Tests for FreeAgent access-token refresh and the authorization-code exchange.

The FreeAgent token endpoint is an httpx.MockTransport; every test counts the
token requests it received.
"""
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from po_portal.errors import ReconnectRequiredError, ValidationError
from po_portal.models import FreeAgentCredential
from po_portal.services.freeagent_oauth import (
    get_valid_access_token,
    needs_refresh,
    store_credentials,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _token_response(access_token="access-2", refresh_token="refresh-2", expires_in=3600):
    body = {"access_token": access_token, "token_type": "bearer", "expires_in": expires_in}
    if refresh_token:
        body["refresh_token"] = refresh_token
    return body


def _set_expiry(db_session, credential, expires_at):
    credential.expires_at = expires_at
    db_session.commit()


def _form(request: httpx.Request) -> dict:
    return {key: values[0] for key, values in parse_qs(request.content.decode()).items()}


class TestNeedsRefresh:
    def test_outside_buffer(self):
        assert not needs_refresh(NOW + timedelta(seconds=301), NOW, 300)

    def test_inside_buffer(self):
        assert needs_refresh(NOW + timedelta(seconds=299), NOW, 300)

    def test_exactly_at_buffer(self):
        assert needs_refresh(NOW + timedelta(seconds=300), NOW, 300)

    def test_naive_expiry_treated_as_utc(self):
        assert not needs_refresh(datetime(2026, 10, 19, 13, 0), NOW, 300)


class TestGetValidAccessToken:
    def test_fresh_token_used_without_refresh(self, db_session, company, credential, oauth, fake_freeagent):
        _set_expiry(db_session, credential, NOW + timedelta(seconds=301))

        token = get_valid_access_token(db_session, company.id, oauth, now=NOW)

        assert token == "access-1"
        assert fake_freeagent.calls("POST", "/token_endpoint") == []

    @pytest.mark.parametrize("seconds_left", [299, 0, -3600])
    def test_expiring_token_refreshed_once(self, db_session, company, credential, oauth, fake_freeagent, seconds_left):
        _set_expiry(db_session, credential, NOW + timedelta(seconds=seconds_left))
        fake_freeagent.add("POST", "/token_endpoint", _token_response())

        token = get_valid_access_token(db_session, company.id, oauth, now=NOW)

        assert token == "access-2"
        calls = fake_freeagent.calls("POST", "/token_endpoint")
        assert len(calls) == 1
        form = _form(calls[0])
        assert form["grant_type"] == "refresh_token"
        assert form["refresh_token"] == "refresh-1"
        assert form["client_id"] == "client-id"
        assert form["client_secret"] == "client-secret"

        stored = db_session.query(FreeAgentCredential).one()
        assert stored.access_token == "access-2"
        assert stored.refresh_token == "refresh-2"
        assert needs_refresh(stored.expires_at, NOW + timedelta(seconds=3000), 300) is False

    def test_refresh_token_kept_when_not_rotated(self, db_session, company, credential, oauth, fake_freeagent):
        _set_expiry(db_session, credential, NOW)
        fake_freeagent.add("POST", "/token_endpoint", _token_response(refresh_token=None))

        get_valid_access_token(db_session, company.id, oauth, now=NOW)

        assert db_session.query(FreeAgentCredential).one().refresh_token == "refresh-1"

    def test_rejected_refresh_requires_reconnect(self, db_session, company, credential, oauth, fake_freeagent):
        _set_expiry(db_session, credential, NOW)
        fake_freeagent.add("POST", "/token_endpoint", {"error": "invalid_grant"}, status=400)

        with pytest.raises(ReconnectRequiredError) as exc_info:
            get_valid_access_token(db_session, company.id, oauth, now=NOW)

        assert exc_info.value.status_code == 503
        assert exc_info.value.code == "reconnect_required"
        assert db_session.query(FreeAgentCredential).one().access_token == "access-1"
        assert len(fake_freeagent.calls("POST", "/token_endpoint")) == 1

    def test_malformed_refresh_response_requires_reconnect(self, db_session, company, credential, oauth, fake_freeagent):
        _set_expiry(db_session, credential, NOW)
        fake_freeagent.add("POST", "/token_endpoint", {"token_type": "bearer"})

        with pytest.raises(ReconnectRequiredError):
            get_valid_access_token(db_session, company.id, oauth, now=NOW)

    def test_network_failure_requires_reconnect(self, db_session, company, credential, oauth, fake_freeagent):
        _set_expiry(db_session, credential, NOW)

        def boom(request):
            raise httpx.ConnectError("connection refused", request=request)

        fake_freeagent.add("POST", "/token_endpoint", boom)

        with pytest.raises(ReconnectRequiredError):
            get_valid_access_token(db_session, company.id, oauth, now=NOW)

    def test_missing_credential_requires_reconnect(self, db_session, company, oauth, fake_freeagent):
        with pytest.raises(ReconnectRequiredError):
            get_valid_access_token(db_session, company.id, oauth, now=NOW)
        assert fake_freeagent.requests == []


class TestAuthorizationCode:
    def test_authorization_url(self, oauth):
        url = urlparse(oauth.authorization_url("state-123"))
        query = parse_qs(url.query)

        assert url.path == "/v2/approve_app"
        assert query["client_id"] == ["client-id"]
        assert query["response_type"] == ["code"]
        assert query["redirect_uri"] == ["https://portal.test/settings"]
        assert query["state"] == ["state-123"]

    def test_exchange_and_store_creates_credential(self, db_session, company, oauth, fake_freeagent):
        fake_freeagent.add("POST", "/token_endpoint", _token_response("new-access", "new-refresh", 604800))

        token_data = oauth.exchange_code("auth-code")
        credential = store_credentials(db_session, company.id, token_data, now=NOW)

        form = _form(fake_freeagent.calls("POST", "/token_endpoint")[0])
        assert form["grant_type"] == "authorization_code"
        assert form["code"] == "auth-code"
        assert form["redirect_uri"] == "https://portal.test/settings"
        assert credential.access_token == "new-access"
        assert credential.refresh_token == "new-refresh"

    def test_store_replaces_existing_credential(self, db_session, company, credential):
        store_credentials(db_session, company.id, _token_response("again", "again-refresh"), now=NOW)

        stored = db_session.query(FreeAgentCredential).all()
        assert len(stored) == 1
        assert stored[0].access_token == "again"

    def test_rejected_code(self, oauth, fake_freeagent):
        fake_freeagent.add(
            "POST", "/token_endpoint",
            {"error": "invalid_grant", "error_description": "The authorization code has expired"},
            status=400,
        )
        with pytest.raises(ValidationError) as exc_info:
            oauth.exchange_code("stale")
        assert "authorization code has expired" in exc_info.value.message
