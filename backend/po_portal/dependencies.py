"""
FastAPI dependencies for the clients built by ``create_app``.

Tests swap any of these through ``app.dependency_overrides``.
"""
from fastapi import Request

from po_portal.config import Settings
from po_portal.services.freeagent_client import FreeAgentClientFactory
from po_portal.services.freeagent_oauth import FreeAgentOAuth
from po_portal.services.gmail_service import GmailService
from po_portal.services.storage_service import StorageService


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_storage(request: Request) -> StorageService:
    return request.app.state.storage


def get_email_sender(request: Request) -> GmailService:
    return request.app.state.email_sender


def get_oauth(request: Request) -> FreeAgentOAuth:
    return request.app.state.oauth


def get_client_factory(request: Request) -> FreeAgentClientFactory:
    return request.app.state.client_factory
