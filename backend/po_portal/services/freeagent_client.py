"""
Thin FreeAgent REST client bound to one access token.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx
from sqlalchemy.orm import Session

from po_portal.config import Settings
from po_portal.errors import FreeAgentAPIError
from po_portal.services.freeagent_oauth import FreeAgentOAuth, get_valid_access_token

logger = logging.getLogger(__name__)

MAX_PER_PAGE = 100


class FreeAgentClient:
    def __init__(
        self,
        base_url: str,
        access_token: str,
        user_agent: str = "PO Portal/1.0",
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self._http = httpx.Client(
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/json",
                "User-Agent": user_agent,
            },
        )

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        self._http.close()

    def _url(self, endpoint: str) -> str:
        if endpoint.startswith("http://") or endpoint.startswith("https://"):
            return endpoint
        return f"{self.base_url}{endpoint if endpoint.startswith('/') else '/' + endpoint}"

    def request(self, method: str, endpoint: str, json: Any = None, params: Optional[Dict[str, Any]] = None) -> Any:
        url = self._url(endpoint)
        logger.info(f"FreeAgent request: {method} {url}")
        try:
            response = self._http.request(method, url, json=json, params=params)
        except httpx.HTTPError as e:
            logger.error(f"FreeAgent request failed ({method} {url}): {e}")
            raise FreeAgentAPIError(f"FreeAgent API Error: request to {endpoint} failed: {e}")

        data = None
        if response.content:
            try:
                data = response.json()
            except ValueError:
                if response.is_success:
                    raise FreeAgentAPIError(f"FreeAgent API Error: Invalid JSON response from {endpoint}")
                data = {"error": response.text}

        logger.info(f"FreeAgent response status ({method} {url}): {response.status_code}")

        if not response.is_success:
            detail = _error_detail(data) or f"API request failed with status {response.status_code}"
            logger.error(f"FreeAgent API Error ({url}): Status {response.status_code}, Detail: {detail}")
            raise FreeAgentAPIError(f"FreeAgent API Error: {detail}", remote_status=response.status_code, data=data)

        return data

    def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("GET", endpoint, params=params)

    def post(self, endpoint: str, body: Dict[str, Any]) -> Any:
        return self.request("POST", endpoint, json=body)

    def get_paginated(self, endpoint: str, data_key: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Fetch every page of a list resource, stopping at the first short page"""
        results: List[Dict[str, Any]] = []
        page = 1
        while True:
            page_params = dict(params or {}, page=page, per_page=MAX_PER_PAGE)
            data = self.get(endpoint, params=page_params) or {}
            items = data.get(data_key) if isinstance(data, dict) else data
            if not isinstance(items, list) or not items:
                break
            results.extend(items)
            logger.info(f"Fetched {len(items)} {data_key} on page {page}. Total: {len(results)}")
            if len(items) < MAX_PER_PAGE:
                break
            page += 1
        return results


def _error_detail(data: Any) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    if data.get("error_description") or isinstance(data.get("error"), str):
        return data.get("error_description") or data.get("error")
    # Resource errors: {"errors": {"error": {"message": ...}}} or a list of them
    errors = data.get("errors")
    if isinstance(errors, dict):
        errors = errors.get("error", errors)
    if isinstance(errors, dict):
        errors = [errors]
    if isinstance(errors, list):
        messages = [e.get("message") for e in errors if isinstance(e, dict) and e.get("message")]
        if messages:
            return "; ".join(messages)
    return None


class FreeAgentClientFactory:
    """Builds a client for a tenant once its access token is known to be valid"""

    def __init__(self, settings: Settings, oauth: FreeAgentOAuth, transport: Optional[httpx.BaseTransport] = None):
        self.settings = settings
        self.oauth = oauth
        self.transport = transport

    def for_company(self, db: Session, company_id) -> FreeAgentClient:
        access_token = get_valid_access_token(db, company_id, self.oauth)
        return FreeAgentClient(
            self.settings.freeagent_api_base_url,
            access_token,
            user_agent=self.settings.freeagent_user_agent,
            timeout=self.settings.http_timeout_seconds,
            transport=self.transport,
        )
