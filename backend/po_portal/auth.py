"""
Bearer-token authentication and tenant resolution.

Access tokens are HS256 JWTs issued by the auth provider; ``sub`` is the
user id. The company comes from ``company_users`` membership, optionally
narrowed by the ``X-Company-Id`` header.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from po_portal.config import Settings
from po_portal.database import get_db
from po_portal.dependencies import get_settings
from po_portal.errors import AuthError, ForbiddenError, ValidationError
from po_portal.models.company import CompanyUser

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


@dataclass
class CurrentTenant:
    user_id: str
    company_id: uuid.UUID
    role: str


def create_access_token(user_id: str, settings: Settings, expires_minutes: int = 60, **claims) -> str:
    """Issue a token the way the auth provider does; used by scripts and tests"""
    payload = dict(claims)
    payload['sub'] = user_id
    payload['aud'] = settings.jwt_audience
    payload['exp'] = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str, settings: Settings) -> dict:
    try:
        return jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
        )
    except JWTError as e:
        logger.warning(f"Rejected access token: {e}")
        raise AuthError("Invalid or expired token")


def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    settings: Settings = Depends(get_settings),
) -> str:
    if credentials is None or not credentials.credentials:
        raise AuthError("Missing authorization header")
    payload = decode_access_token(credentials.credentials, settings)
    user_id = payload.get('sub')
    if not user_id:
        raise AuthError("Invalid token structure")
    return str(user_id)


def get_current_tenant(
    user_id: str = Depends(get_current_user_id),
    x_company_id: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> CurrentTenant:
    query = db.query(CompanyUser).filter(CompanyUser.user_id == user_id)

    if x_company_id:
        try:
            requested = uuid.UUID(x_company_id)
        except ValueError:
            raise ForbiddenError("User is not a member of the requested company")
        membership = query.filter(CompanyUser.company_id == requested).first()
        if not membership:
            logger.warning(f"User {user_id} requested company {x_company_id} without membership")
            raise ForbiddenError("User is not a member of the requested company")
    else:
        memberships = query.limit(2).all()
        if not memberships:
            raise ForbiddenError("User is not associated with a company")
        if len(memberships) > 1:
            raise ValidationError("User belongs to several companies; send the X-Company-Id header")
        membership = memberships[0]

    return CurrentTenant(user_id=user_id, company_id=membership.company_id, role=membership.role)
