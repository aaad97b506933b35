"""
Supplier portal token gate.

Possession of a purchase order's ``supplier_portal_token`` is the only thing
that authorizes the public portal endpoints. Lookups are exact-match and every
miss produces the same message, so a caller cannot tell an unknown token from
one whose order was deleted.
"""
import logging
import re
import secrets

from sqlalchemy.orm import Session

from po_portal.errors import NotFoundError
from po_portal.models.purchase_order import PurchaseOrder

logger = logging.getLogger(__name__)

INVALID_LINK_MESSAGE = "Invalid or expired link. Purchase order not found."

TOKEN_BYTES = 32
# token_urlsafe(32) yields 43 url-safe characters; anything far outside that is not one of ours
TOKEN_PATTERN = re.compile(r"[A-Za-z0-9_-]{16,128}")


def generate_portal_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


def _looks_like_token(token: str) -> bool:
    return bool(TOKEN_PATTERN.fullmatch(token))


def find_by_token(db: Session, token: str) -> PurchaseOrder:
    """Return the purchase order owning ``token`` or raise the generic NotFoundError."""
    if not isinstance(token, str) or not _looks_like_token(token):
        logger.warning("Rejected malformed supplier portal token")
        raise NotFoundError(INVALID_LINK_MESSAGE)

    po = db.query(PurchaseOrder).filter(PurchaseOrder.supplier_portal_token == token).first()

    if not po:
        logger.warning("Supplier portal token did not match any purchase order")
        raise NotFoundError(INVALID_LINK_MESSAGE)
    return po
