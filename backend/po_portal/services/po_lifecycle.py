"""
Purchase order lifecycle

Draft -> SentToSupplier -> AcceptedBySupplier -> InvoiceUploaded
      -> InvoicePendingApproval -> InvoiceApproved -> BilledInFreeAgent -> Closed

Every status change is a single conditional UPDATE filtered on the expected
current status. The affected row count decides the winner of a race; the
loser gets a ConflictError. Transitions with a remote side effect (email,
FreeAgent bill) first claim the order through ``pending_transition``.
"""
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from po_portal.config import Settings
from po_portal.errors import (
    ConflictError,
    EmailDeliveryError,
    NotFoundError,
    PersistenceError,
    UpstreamError,
    ValidationError,
)
from po_portal.models.cached_contact import CachedContact
from po_portal.models.email_log import EmailLog
from po_portal.models.po_line import POLine
from po_portal.models.purchase_order import POStatus, PurchaseOrder
from po_portal.models.uploaded_invoice import InvoiceUploadStatus, UploadedInvoice
from po_portal.schemas.po import POCreate
from po_portal.services.email_template_service import EmailTemplateService, portal_url
from po_portal.services.storage_service import ALLOWED_INVOICE_TYPES, StorageService, invoice_key, safe_filename
from po_portal.services.token_gate import find_by_token, generate_portal_token

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
UNKNOWN_SUPPLIER = "Unknown Supplier"

ALLOWED_TRANSITIONS = {
    POStatus.DRAFT: {POStatus.SENT_TO_SUPPLIER},
    POStatus.SENT_TO_SUPPLIER: {POStatus.ACCEPTED_BY_SUPPLIER, POStatus.REJECTED_BY_SUPPLIER},
    POStatus.ACCEPTED_BY_SUPPLIER: {POStatus.INVOICE_UPLOADED},
    POStatus.INVOICE_UPLOADED: {POStatus.INVOICE_PENDING_APPROVAL},
    POStatus.INVOICE_PENDING_APPROVAL: {POStatus.INVOICE_APPROVED},
    POStatus.INVOICE_APPROVED: {POStatus.BILLED_IN_FREEAGENT},
    POStatus.BILLED_IN_FREEAGENT: {POStatus.CLOSED},
}

TERMINAL_STATUSES = {POStatus.REJECTED_BY_SUPPLIER, POStatus.CLOSED, POStatus.CANCELLED}

SUPPLIER_ACTIONS = {
    "accept": POStatus.ACCEPTED_BY_SUPPLIER,
    "reject": POStatus.REJECTED_BY_SUPPLIER,
}


def can_transition(current: POStatus, target: POStatus) -> bool:
    if current in TERMINAL_STATUSES:
        return False
    if target == POStatus.CANCELLED:
        return True
    return target in ALLOWED_TRANSITIONS.get(current, set())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def commit(db: Session, action: str):
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error while trying to {action}: {e}")
        raise PersistenceError(f"Failed to {action}.")


def compare_and_set_status(
    db: Session,
    po_id,
    expected: POStatus,
    target: POStatus,
    extra: Optional[Dict[str, Any]] = None,
    pending: Optional[POStatus] = None,
    unclaimed: bool = False,
) -> bool:
    """
    Conditionally move an order from ``expected`` to ``target``.

    When ``pending`` is given the order must also carry that claim, and the
    claim is cleared by the same update. With ``unclaimed`` the order must
    carry no claim at all. Does not commit.
    """
    if not can_transition(expected, target):
        raise ConflictError(f"Cannot move purchase order from {expected.value} to {target.value}.")

    query = db.query(PurchaseOrder).filter(
        PurchaseOrder.id == po_id,
        PurchaseOrder.status == expected.value,
    )
    values = {"status": target.value, "updated_at": utcnow()}
    if pending is not None:
        query = query.filter(PurchaseOrder.pending_transition == pending.value)
        values["pending_transition"] = None
    elif unclaimed:
        query = query.filter(PurchaseOrder.pending_transition.is_(None))
    if extra:
        values.update(extra)

    updated = query.update(values, synchronize_session=False)
    return updated == 1


def claim(db: Session, po_id, expected: POStatus, target: POStatus) -> None:
    """Record ``target`` as the in-flight transition; commits"""
    updated = db.query(PurchaseOrder).filter(
        PurchaseOrder.id == po_id,
        PurchaseOrder.status == expected.value,
        PurchaseOrder.pending_transition.is_(None),
    ).update({"pending_transition": target.value}, synchronize_session=False)
    if updated != 1:
        db.rollback()
        raise ConflictError(
            f"Purchase order is not {expected.value} or a change to {target.value} is already in progress."
        )
    commit(db, "claim purchase order")


def release_claim(db: Session, po_id, target: POStatus) -> None:
    """Clear an in-flight claim after its side effect failed; commits"""
    db.query(PurchaseOrder).filter(
        PurchaseOrder.id == po_id,
        PurchaseOrder.pending_transition == target.value,
    ).update({"pending_transition": None}, synchronize_session=False)
    commit(db, "release purchase order claim")


def _transition(db: Session, po: PurchaseOrder, expected: POStatus, target: POStatus, action: str) -> PurchaseOrder:
    if POStatus(po.status) != expected:
        raise ConflictError(
            f"Purchase order {po.po_number} is {po.status}; it must be {expected.value} to {action}."
        )
    if po.pending_transition:
        raise ConflictError(
            f"Purchase order {po.po_number} has a change to {po.pending_transition} in progress; cannot {action}."
        )
    if not compare_and_set_status(db, po.id, expected, target, unclaimed=True):
        db.rollback()
        raise ConflictError(f"Purchase order {po.po_number} was changed by another request.")
    commit(db, action)
    db.refresh(po)
    logger.info(f"Purchase order {po.po_number} moved {expected.value} -> {target.value}")
    return po


def get_purchase_order(db: Session, company_id, po_id) -> PurchaseOrder:
    po = db.query(PurchaseOrder).filter(
        PurchaseOrder.id == po_id,
        PurchaseOrder.company_id == company_id,
    ).first()
    if not po:
        raise NotFoundError("Purchase order not found")
    return po


def list_purchase_orders(
    db: Session,
    company_id,
    status: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[PurchaseOrder]:
    query = db.query(PurchaseOrder).filter(PurchaseOrder.company_id == company_id)
    if status:
        query = query.filter(PurchaseOrder.status == status)
    return query.order_by(PurchaseOrder.created_at.desc()).offset(skip).limit(limit).all()


def _validate_create(payload: POCreate) -> str:
    if not payload.po_number or not payload.po_number.strip():
        raise ValidationError("Missing required field: po_number")
    currency = (payload.currency or "").strip().upper()
    if len(currency) != 3 or not currency.isalpha():
        raise ValidationError("currency must be a 3-letter ISO 4217 code")
    if not payload.line_items:
        raise ValidationError("At least one line item is required")
    for index, item in enumerate(payload.line_items, start=1):
        if not item.description or not item.description.strip():
            raise ValidationError(f"Line {index}: description is required")
        if item.quantity <= 0:
            raise ValidationError(f"Line {index}: quantity must be greater than zero")
        if item.unit_price < 0:
            raise ValidationError(f"Line {index}: unit_price must not be negative")
    if payload.delivery_date and payload.delivery_date < payload.issue_date:
        raise ValidationError("delivery_date must not be before issue_date")
    return currency


def _resolve_supplier(db: Session, company_id, payload: POCreate):
    name = payload.supplier_name
    email = payload.supplier_email
    if payload.freeagent_contact_url and (not name or not email):
        contact = db.query(CachedContact).filter(
            CachedContact.company_id == company_id,
            CachedContact.freeagent_url == payload.freeagent_contact_url,
        ).first()
        if contact:
            name = name or contact.name
            email = email or contact.email
        else:
            logger.warning(f"Contact {payload.freeagent_contact_url} not in cache for company {company_id}")
    return name or UNKNOWN_SUPPLIER, email


def create_purchase_order(db: Session, company_id, user_id: str, payload: POCreate) -> PurchaseOrder:
    """
    Create a Draft purchase order and its lines in one transaction.

    Nothing is sent to FreeAgent at this point.
    """
    currency = _validate_create(payload)
    po_number = payload.po_number.strip()

    existing = db.query(PurchaseOrder.id).filter(
        PurchaseOrder.company_id == company_id,
        PurchaseOrder.po_number == po_number,
    ).first()
    if existing:
        raise ConflictError(f"Purchase order with number {po_number} already exists")

    supplier_name, supplier_email = _resolve_supplier(db, company_id, payload)

    line_totals = [
        (Decimal(item.quantity) * Decimal(item.unit_price)).quantize(CENT)
        for item in payload.line_items
    ]
    amount = sum(line_totals, Decimal("0.00")).quantize(CENT)

    po = PurchaseOrder(
        company_id=company_id,
        po_number=po_number,
        supplier_name=supplier_name,
        supplier_email=supplier_email,
        freeagent_contact_url=payload.freeagent_contact_url,
        freeagent_project_url=payload.freeagent_project_url,
        currency=currency,
        amount=amount,
        issue_date=payload.issue_date,
        delivery_date=payload.delivery_date,
        notes=payload.notes,
        status=POStatus.DRAFT.value,
        supplier_portal_token=generate_portal_token(),
        created_by=user_id,
    )
    db.add(po)
    try:
        db.flush()  # Get the ID

        for line_no, (item, line_total) in enumerate(zip(payload.line_items, line_totals), start=1):
            db.add(POLine(
                purchase_order_id=po.id,
                company_id=company_id,
                line_no=line_no,
                description=item.description.strip(),
                quantity=item.quantity,
                unit_price=item.unit_price,
                line_total=line_total,
                freeagent_category_url=item.freeagent_category_url,
            ))

        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"Purchase order with number {po_number} already exists")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to create purchase order {po_number}: {e}")
        raise PersistenceError("Failed to create purchase order.")

    db.refresh(po)
    logger.info(f"Created purchase order {po.po_number} ({po.id}) for company {company_id}, amount {amount} {currency}")
    return po


def _log_email(db: Session, po: PurchaseOrder, to_addresses: List[str], rendered: Dict[str, str],
               user_id: Optional[str], result: Optional[Dict[str, Any]] = None,
               error_message: Optional[str] = None) -> EmailLog:
    entry = EmailLog(
        purchase_order_id=po.id,
        company_id=po.company_id,
        to_addresses=to_addresses,
        subject=rendered['subject'],
        body_html=rendered['body_html'],
        status='failed' if error_message else 'sent',
        gmail_message_id=(result or {}).get('message_id'),
        gmail_thread_id=(result or {}).get('thread_id'),
        sent_at=None if error_message else utcnow(),
        sent_by=user_id,
        error_message=error_message,
    )
    db.add(entry)
    return entry


def send_purchase_order(
    db: Session,
    company_id,
    po_id,
    email_sender,
    settings: Settings,
    user_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Email the supplier a link to the portal and move the order to SentToSupplier.

    Returns:
        {
            'purchase_order': PurchaseOrder,
            'message_id': str,
            'status_updated': bool   # False when the email went out but the status write failed
        }
    """
    po = get_purchase_order(db, company_id, po_id)
    if POStatus(po.status) != POStatus.DRAFT:
        raise ConflictError(f"Purchase order {po.po_number} is {po.status}; only Draft orders can be sent.")
    if not po.supplier_email:
        raise ValidationError("Supplier email is required to send a purchase order")

    claim(db, po.id, POStatus.DRAFT, POStatus.SENT_TO_SUPPLIER)
    db.refresh(po)

    to_addresses = [po.supplier_email]
    try:
        link = portal_url(settings.app_base_url, po.supplier_portal_token)
        rendered = EmailTemplateService().render_purchase_order_email(po, po.company.name, link)
    except Exception:
        release_claim(db, po.id, POStatus.SENT_TO_SUPPLIER)
        raise

    try:
        try:
            result = email_sender.send_email(
                to_addresses=to_addresses,
                subject=rendered['subject'],
                body_html=rendered['body_html'],
                body_text=rendered['body_text'],
            )
        except UpstreamError:
            raise
        except Exception as e:
            logger.exception(f"Unexpected error sending purchase order {po.po_number}")
            raise EmailDeliveryError(f"Failed to send email: {e}")
    except UpstreamError as e:
        logger.error(f"Sending purchase order {po.po_number} failed: {e.message}")
        release_claim(db, po.id, POStatus.SENT_TO_SUPPLIER)
        _log_email(db, po, to_addresses, rendered, user_id, error_message=e.message)
        try:
            db.commit()
        except SQLAlchemyError as log_error:
            db.rollback()
            logger.error(f"Failed to record email failure for {po.po_number}: {log_error}")
        raise UpstreamError(f"Failed to send purchase order email: {e.message}", status_code=e.status_code)

    _log_email(db, po, to_addresses, rendered, user_id, result=result)
    status_updated = False
    try:
        status_updated = compare_and_set_status(
            db, po.id, POStatus.DRAFT, POStatus.SENT_TO_SUPPLIER, pending=POStatus.SENT_TO_SUPPLIER
        )
        if status_updated:
            db.commit()
        else:
            db.rollback()
    except SQLAlchemyError as e:
        db.rollback()
        status_updated = False
        logger.error(f"Email for {po.po_number} was sent but the status update failed: {e}")

    if not status_updated:
        # The pending marker stays on the order for reconciliation
        logger.error(f"Purchase order {po.po_number} emailed (message {result.get('message_id')}) "
                     f"but still recorded as {POStatus.DRAFT.value}")
        try:
            _log_email(db, po, to_addresses, rendered, user_id, result=result)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to record sent email for {po.po_number}: {e}")

    db.refresh(po)
    logger.info(f"Purchase order {po.po_number} sent to {po.supplier_email}")
    return {
        'purchase_order': po,
        'message_id': result.get('message_id'),
        'status_updated': status_updated,
    }


def respond_by_token(db: Session, token: str, action: str) -> PurchaseOrder:
    """Supplier accepts or rejects an order through the portal link"""
    po = find_by_token(db, token)
    target = SUPPLIER_ACTIONS.get((action or "").strip().lower())
    if target is None:
        raise ValidationError("action must be 'accept' or 'reject'")

    if POStatus(po.status) != POStatus.SENT_TO_SUPPLIER:
        raise ConflictError(f"This purchase order has already been responded to (status: {po.status}).")

    if not compare_and_set_status(db, po.id, POStatus.SENT_TO_SUPPLIER, target):
        db.rollback()
        raise ConflictError("This purchase order has already been responded to.")
    commit(db, "record supplier response")
    db.refresh(po)
    logger.info(f"Supplier {action}ed purchase order {po.po_number}")
    return po


def _parse_invoice_amount(value) -> Decimal:
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError("supplier_invoice_amount must be a number")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("supplier_invoice_amount must be greater than zero")
    return amount.quantize(CENT)


def upload_invoice_by_token(
    db: Session,
    token: str,
    file_content: bytes,
    filename: str,
    content_type: Optional[str],
    supplier_invoice_number: str,
    supplier_invoice_amount,
    storage: StorageService,
    max_bytes: Optional[int] = None,
) -> UploadedInvoice:
    """
    Store a supplier's invoice file and move the order to InvoiceUploaded.

    The order must be AcceptedBySupplier before anything is written to storage.
    """
    po = find_by_token(db, token)

    if not file_content:
        raise ValidationError("invoice_file is required")
    if max_bytes and len(file_content) > max_bytes:
        raise ValidationError(f"Invoice file is too large (limit {max_bytes} bytes)")
    if not supplier_invoice_number or not supplier_invoice_number.strip():
        raise ValidationError("supplier_invoice_number is required")
    amount = _parse_invoice_amount(supplier_invoice_amount)

    if POStatus(po.status) != POStatus.ACCEPTED_BY_SUPPLIER:
        raise ConflictError(
            f"Invoices can only be uploaded for accepted purchase orders (status: {po.status})."
        )

    name = safe_filename(filename)
    stored_type = storage.content_type_for(name)
    if stored_type not in ALLOWED_INVOICE_TYPES:
        raise ValidationError("Invoice file must be a PDF or an image (png, jpeg, gif, webp, tiff)")
    if content_type and content_type != stored_type:
        logger.info(f"Invoice upload for {po.po_number} claimed {content_type}; storing as {stored_type}")
    content_type = stored_type

    invoice_id = uuid.uuid4()
    storage_key = invoice_key(po.company_id, po.id, invoice_id, name)
    storage.upload_file(file_content, storage_key, content_type)

    invoice = UploadedInvoice(
        id=invoice_id,
        purchase_order_id=po.id,
        company_id=po.company_id,
        storage_path=storage_key,
        filename=name,
        content_type=content_type,
        size_bytes=len(file_content),
        supplier_invoice_number=supplier_invoice_number.strip(),
        supplier_invoice_amount=amount,
        status=InvoiceUploadStatus.PENDING_APPROVAL.value,
    )
    db.add(invoice)
    try:
        db.flush()
        moved = compare_and_set_status(db, po.id, POStatus.ACCEPTED_BY_SUPPLIER, POStatus.INVOICE_UPLOADED)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to record invoice for {po.po_number}: {e}")
        raise PersistenceError("Failed to record uploaded invoice.")
    if not moved:
        db.rollback()
        logger.warning(f"Invoice upload for {po.po_number} lost a race; file left at {storage_key}")
        raise ConflictError("An invoice has already been uploaded for this purchase order.")

    commit(db, "record uploaded invoice")
    db.refresh(invoice)
    logger.info(f"Invoice {invoice.supplier_invoice_number} uploaded for purchase order {po.po_number}")
    return invoice


def submit_invoice_for_approval(db: Session, company_id, po_id) -> PurchaseOrder:
    po = get_purchase_order(db, company_id, po_id)
    return _transition(db, po, POStatus.INVOICE_UPLOADED, POStatus.INVOICE_PENDING_APPROVAL,
                       "submit invoice for approval")


def latest_invoice(db: Session, po: PurchaseOrder) -> Optional[UploadedInvoice]:
    return db.query(UploadedInvoice).filter(
        UploadedInvoice.purchase_order_id == po.id,
    ).order_by(UploadedInvoice.uploaded_at.desc()).first()


def approve_invoice(db: Session, company_id, po_id, user_id: str) -> PurchaseOrder:
    """Approve the uploaded invoice; the order and the invoice change together"""
    po = get_purchase_order(db, company_id, po_id)
    if POStatus(po.status) != POStatus.INVOICE_PENDING_APPROVAL:
        raise ConflictError(
            f"Purchase order {po.po_number} is {po.status}; it must be "
            f"{POStatus.INVOICE_PENDING_APPROVAL.value} to approve invoice."
        )

    invoice = latest_invoice(db, po)
    if not invoice:
        raise NotFoundError("No uploaded invoice found for this purchase order")

    if not compare_and_set_status(db, po.id, POStatus.INVOICE_PENDING_APPROVAL, POStatus.INVOICE_APPROVED):
        db.rollback()
        raise ConflictError(f"Purchase order {po.po_number} was changed by another request.")

    invoice.status = InvoiceUploadStatus.APPROVED.value
    invoice.approved_or_rejected_at = utcnow()
    invoice.approved_or_rejected_by = user_id
    commit(db, "approve invoice")
    db.refresh(po)
    logger.info(f"Invoice {invoice.supplier_invoice_number} approved for {po.po_number} by {user_id}")
    return po


def close_purchase_order(db: Session, company_id, po_id) -> PurchaseOrder:
    po = get_purchase_order(db, company_id, po_id)
    return _transition(db, po, POStatus.BILLED_IN_FREEAGENT, POStatus.CLOSED, "close")


def cancel_purchase_order(db: Session, company_id, po_id) -> PurchaseOrder:
    po = get_purchase_order(db, company_id, po_id)
    current = POStatus(po.status)
    if current in TERMINAL_STATUSES:
        raise ConflictError(f"Purchase order {po.po_number} is {po.status} and cannot be cancelled.")
    return _transition(db, po, current, POStatus.CANCELLED, "cancel")


def get_uploaded_invoice(db: Session, company_id, po_id, invoice_id) -> UploadedInvoice:
    invoice = db.query(UploadedInvoice).filter(
        UploadedInvoice.id == invoice_id,
        UploadedInvoice.purchase_order_id == po_id,
        UploadedInvoice.company_id == company_id,
    ).first()
    if not invoice:
        raise NotFoundError("Invoice not found")
    return invoice
