"""
FreeAgent OAuth - authorization-code exchange and access-token refresh.

Every outbound FreeAgent call goes through get_valid_access_token(), which
refreshes and persists the tenant's credential when it is within the expiry
buffer. Refreshes are not serialized: two concurrent callers may both refresh,
and the last write to the credential row wins.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from po_portal.config import Settings
from po_portal.errors import (
    PersistenceError,
    ReconnectRequiredError,
    UpstreamError,
    ValidationError,
)
from po_portal.models.freeagent_credential import FreeAgentCredential

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; they are stored as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def needs_refresh(expires_at: datetime, now: datetime, buffer_seconds: int) -> bool:
    return now + timedelta(seconds=buffer_seconds) >= as_utc(expires_at)


class FreeAgentOAuth:
    """Talks to FreeAgent's OAuth endpoints"""

    def __init__(self, settings: Settings, transport: Optional[httpx.BaseTransport] = None):
        self.base_url = settings.freeagent_api_base_url.rstrip('/')
        self.token_url = f"{self.base_url}/token_endpoint"
        self.client_id = settings.freeagent_client_id
        self.client_secret = settings.freeagent_client_secret
        self.redirect_uri = f"{settings.app_base_url.rstrip('/')}{settings.freeagent_redirect_path}"
        self.buffer_seconds = settings.freeagent_token_expiry_buffer_seconds
        self.timeout = settings.http_timeout_seconds
        self.transport = transport

    def _require_client_credentials(self):
        if not self.client_id or not self.client_secret:
            logger.error("Missing FREEAGENT_CLIENT_ID or FREEAGENT_CLIENT_SECRET")
            raise UpstreamError("Server configuration error: Missing FreeAgent credentials.", status_code=503)

    def authorization_url(self, state: str) -> str:
        """URL the user is sent to in order to approve access to their FreeAgent account"""
        self._require_client_credentials()
        query = urlencode({
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
            "state": state,
        })
        return f"{self.base_url}/approve_app?{query}"

    def _post_token(self, data: Dict[str, str]) -> httpx.Response:
        payload = dict(data, client_id=self.client_id, client_secret=self.client_secret)
        with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
            return client.post(
                self.token_url,
                data=payload,
                headers={"Accept": "application/json"},
            )

    def exchange_code(self, code: str) -> Dict[str, Any]:
        """Exchange an authorization code for access and refresh tokens"""
        self._require_client_credentials()
        try:
            response = self._post_token({
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri,
            })
        except httpx.HTTPError as e:
            logger.error(f"FreeAgent token exchange request failed: {e}")
            raise UpstreamError(f"FreeAgent token exchange failed: {e}")

        token_data = _json_or_empty(response)
        if response.status_code >= 400:
            detail = token_data.get("error_description") or token_data.get("error") or f"status {response.status_code}"
            logger.error(f"FreeAgent token exchange rejected: {detail}")
            raise ValidationError(f"FreeAgent Error: {detail}")

        if not token_data.get("access_token") or not token_data.get("refresh_token") or not token_data.get("expires_in"):
            logger.error("Token exchange succeeded but the response is missing tokens")
            raise UpstreamError("Failed to retrieve access token from FreeAgent.")

        return token_data

    def refresh(self, refresh_token: str) -> Dict[str, Any]:
        """
        Perform a refresh-token grant.

        Raises:
            ReconnectRequiredError on any failure; callers must not fall back to the stale token
        """
        self._require_client_credentials()
        try:
            response = self._post_token({
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            })
        except httpx.HTTPError as e:
            logger.error(f"FreeAgent token refresh request failed: {e}")
            raise ReconnectRequiredError("FreeAgent token refresh failed. Please reconnect FreeAgent in settings.")

        if response.status_code >= 400:
            logger.error(f"FreeAgent token refresh failed ({response.status_code}): {response.text}")
            raise ReconnectRequiredError("FreeAgent token refresh failed. Please reconnect FreeAgent in settings.")

        token_data = _json_or_empty(response)
        if not token_data.get("access_token") or not token_data.get("expires_in"):
            logger.error("Invalid token response received from FreeAgent during refresh")
            raise ReconnectRequiredError("Invalid token response from FreeAgent. Please reconnect FreeAgent in settings.")

        return token_data


def _json_or_empty(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def store_credentials(
    db: Session,
    company_id,
    token_data: Dict[str, Any],
    now: Optional[datetime] = None,
) -> FreeAgentCredential:
    """Create or replace the company's credential from an authorization-code response"""
    now = now or utcnow()
    credential = db.query(FreeAgentCredential).filter(FreeAgentCredential.company_id == company_id).first()
    if not credential:
        credential = FreeAgentCredential(company_id=company_id)
        db.add(credential)

    credential.access_token = token_data["access_token"]
    credential.refresh_token = token_data["refresh_token"]
    credential.expires_at = now + timedelta(seconds=int(token_data["expires_in"]))
    credential.updated_at = now

    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to save FreeAgent credentials for company {company_id}: {e}")
        raise PersistenceError("Failed to save FreeAgent credentials.")
    db.refresh(credential)
    logger.info(f"FreeAgent connected for company {company_id}")
    return credential


def get_valid_access_token(
    db: Session,
    company_id,
    oauth: FreeAgentOAuth,
    now: Optional[datetime] = None,
) -> str:
    """
    Return an access token that is valid for at least the expiry buffer,
    refreshing and persisting it first when necessary.
    """
    now = now or utcnow()
    credential = db.query(FreeAgentCredential).filter(FreeAgentCredential.company_id == company_id).first()
    if not credential:
        logger.warning(f"No FreeAgent credentials found for company {company_id}")
        raise ReconnectRequiredError("FreeAgent is not connected for this company. Please connect in settings.")

    if not needs_refresh(credential.expires_at, now, oauth.buffer_seconds):
        return credential.access_token

    logger.info(f"Token expired or nearing expiry for company {company_id}. Refreshing...")
    token_data = oauth.refresh(credential.refresh_token)

    credential.access_token = token_data["access_token"]
    # FreeAgent may rotate the refresh token
    credential.refresh_token = token_data.get("refresh_token") or credential.refresh_token
    credential.expires_at = now + timedelta(seconds=int(token_data["expires_in"]))
    credential.updated_at = now

    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to save refreshed tokens for company {company_id}: {e}")
        raise PersistenceError("Failed to save refreshed FreeAgent tokens.")

    logger.info(f"Token refreshed successfully for company {company_id}")
    return credential.access_token
