"""
Tests for purchase order creation and status transitions.
"""
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy.exc import SQLAlchemyError

from conftest import SUPPLIER_CONTACT_URL, USER_ID, make_po_payload
from po_portal.errors import ConflictError, NotFoundError, UpstreamError, ValidationError
from po_portal.models import (
    CachedContact,
    EmailLog,
    InvoiceUploadStatus,
    POStatus,
    PurchaseOrder,
    UploadedInvoice,
)
from po_portal.schemas.po import POLineCreate
from po_portal.services import po_lifecycle
from po_portal.services.token_gate import INVALID_LINK_MESSAGE


def _send(db_session, company, po, email_sender, test_settings):
    return po_lifecycle.send_purchase_order(db_session, company.id, po.id, email_sender, test_settings, user_id=USER_ID)


def _accepted_po(db_session, company, email_sender, test_settings, po_number="PO-1001"):
    po = po_lifecycle.create_purchase_order(db_session, company.id, USER_ID, make_po_payload(po_number))
    _send(db_session, company, po, email_sender, test_settings)
    po_lifecycle.respond_by_token(db_session, po.supplier_portal_token, "accept")
    return po


def _upload(db_session, po, storage, number="INV-9", amount="100.00", content=b"%PDF-1.4 invoice"):
    return po_lifecycle.upload_invoice_by_token(
        db_session,
        po.supplier_portal_token,
        file_content=content,
        filename="invoice.pdf",
        content_type="application/pdf",
        supplier_invoice_number=number,
        supplier_invoice_amount=amount,
        storage=storage,
    )


def _stored_files(storage):
    return [path for path in Path(storage.local_storage_dir).rglob("*") if path.is_file()]


class UnreachableSender:
    """Fails below the email client, before Gmail is ever reached"""

    def send_email(self, **kwargs):
        raise RuntimeError("Unable to find the server at gmail.googleapis.com")


class RacingStorage:
    """Storage whose first write lets a competing upload finish before it lands"""

    def __init__(self, storage, before_first_write):
        self.storage = storage
        self.before_first_write = before_first_write
        self.keys = []

    def content_type_for(self, name):
        return self.storage.content_type_for(name)

    def upload_file(self, file_content, storage_key, content_type=None):
        self.keys.append(storage_key)
        if len(self.keys) == 1:
            self.before_first_write()
        return self.storage.upload_file(file_content, storage_key, content_type)


class TestTransitionTable:
    def test_forward_transitions_allowed(self):
        assert po_lifecycle.can_transition(POStatus.DRAFT, POStatus.SENT_TO_SUPPLIER)
        assert po_lifecycle.can_transition(POStatus.SENT_TO_SUPPLIER, POStatus.REJECTED_BY_SUPPLIER)
        assert po_lifecycle.can_transition(POStatus.INVOICE_APPROVED, POStatus.BILLED_IN_FREEAGENT)

    def test_backward_and_skipping_transitions_refused(self):
        assert not po_lifecycle.can_transition(POStatus.SENT_TO_SUPPLIER, POStatus.DRAFT)
        assert not po_lifecycle.can_transition(POStatus.DRAFT, POStatus.ACCEPTED_BY_SUPPLIER)
        assert not po_lifecycle.can_transition(POStatus.INVOICE_UPLOADED, POStatus.INVOICE_APPROVED)

    def test_any_open_status_can_be_cancelled(self):
        for status in POStatus:
            expected = status not in po_lifecycle.TERMINAL_STATUSES
            assert po_lifecycle.can_transition(status, POStatus.CANCELLED) is expected

    def test_terminal_statuses_go_nowhere(self):
        for status in po_lifecycle.TERMINAL_STATUSES:
            assert not any(po_lifecycle.can_transition(status, target) for target in POStatus)


class TestCreatePurchaseOrder:
    def test_creates_draft_with_lines_and_amount(self, db_session, company):
        payload = make_po_payload(line_items=[
            POLineCreate(description="Widgets", quantity=Decimal("2"), unit_price=Decimal("50.00")),
            POLineCreate(description="Bolts", quantity=Decimal("3"), unit_price=Decimal("0.333")),
        ])

        po = po_lifecycle.create_purchase_order(db_session, company.id, USER_ID, payload)

        assert po.status == POStatus.DRAFT.value
        assert po.amount == Decimal("101.00")
        assert [line.line_no for line in po.po_lines] == [1, 2]
        assert po.po_lines[1].line_total == Decimal("1.00")
        assert po.created_by == USER_ID
        assert len(po.supplier_portal_token) == 43
        assert po.pending_transition is None

    def test_currency_is_normalised(self, db_session, company):
        po = po_lifecycle.create_purchase_order(db_session, company.id, USER_ID, make_po_payload(currency="eur"))
        assert po.currency == "EUR"

    @pytest.mark.parametrize("overrides", [
        {"po_number": "  "},
        {"currency": "POUNDS"},
        {"line_items": []},
        {"line_items": [POLineCreate(description="Widgets", quantity=Decimal("0"), unit_price=Decimal("1"))]},
        {"line_items": [POLineCreate(description="Widgets", quantity=Decimal("1"), unit_price=Decimal("-1"))]},
    ])
    def test_invalid_payload_rejected(self, db_session, company, overrides):
        with pytest.raises(ValidationError):
            po_lifecycle.create_purchase_order(db_session, company.id, USER_ID, make_po_payload(**overrides))
        assert db_session.query(PurchaseOrder).count() == 0

    def test_duplicate_number_within_company_conflicts(self, db_session, company):
        po_lifecycle.create_purchase_order(db_session, company.id, USER_ID, make_po_payload("PO-7"))
        with pytest.raises(ConflictError):
            po_lifecycle.create_purchase_order(db_session, company.id, USER_ID, make_po_payload("PO-7"))

    def test_same_number_allowed_in_another_company(self, db_session, company, other_company):
        po_lifecycle.create_purchase_order(db_session, company.id, USER_ID, make_po_payload("PO-7"))
        po = po_lifecycle.create_purchase_order(db_session, other_company.id, USER_ID, make_po_payload("PO-7"))
        assert po.company_id == other_company.id

    def test_supplier_details_resolved_from_cached_contact(self, db_session, company):
        db_session.add(CachedContact(
            company_id=company.id,
            freeagent_url=SUPPLIER_CONTACT_URL,
            name="Cached Supplier Ltd",
            email="cached@supplier.co.uk",
        ))
        db_session.commit()

        po = po_lifecycle.create_purchase_order(
            db_session, company.id, USER_ID, make_po_payload(supplier_name=None, supplier_email=None)
        )

        assert po.supplier_name == "Cached Supplier Ltd"
        assert po.supplier_email == "cached@supplier.co.uk"

    def test_unknown_contact_falls_back_to_placeholder_name(self, db_session, company):
        po = po_lifecycle.create_purchase_order(
            db_session, company.id, USER_ID, make_po_payload(supplier_name=None, supplier_email=None)
        )
        assert po.supplier_name == po_lifecycle.UNKNOWN_SUPPLIER
        assert po.supplier_email is None

    def test_lookup_is_tenant_scoped(self, db_session, company, other_company):
        po = po_lifecycle.create_purchase_order(db_session, company.id, USER_ID, make_po_payload())
        with pytest.raises(NotFoundError):
            po_lifecycle.get_purchase_order(db_session, other_company.id, po.id)


class TestSendPurchaseOrder:
    def test_send_emails_supplier_and_moves_status(self, db_session, company, email_sender, test_settings):
        po = po_lifecycle.create_purchase_order(db_session, company.id, USER_ID, make_po_payload())

        result = _send(db_session, company, po, email_sender, test_settings)

        assert result['status_updated'] is True
        assert result['message_id'] == "msg-1"
        assert result['purchase_order'].status == POStatus.SENT_TO_SUPPLIER.value
        assert result['purchase_order'].pending_transition is None

        sent = email_sender.sent[0]
        assert sent['to_addresses'] == ["orders@boltsupplies.co.uk"]
        assert sent['subject'] == "Purchase Order PO-1001 from Acme Widgets Ltd"
        assert f"https://portal.test/supplier/{po.supplier_portal_token}" in sent['body_html']

        log = db_session.query(EmailLog).one()
        assert log.status == 'sent'
        assert log.gmail_message_id == "msg-1"

    def test_email_failure_leaves_draft_and_logs_failure(self, db_session, company, email_sender, test_settings):
        po = po_lifecycle.create_purchase_order(db_session, company.id, USER_ID, make_po_payload())
        email_sender.fail = True

        with pytest.raises(UpstreamError):
            _send(db_session, company, po, email_sender, test_settings)

        db_session.refresh(po)
        assert po.status == POStatus.DRAFT.value
        assert po.pending_transition is None
        log = db_session.query(EmailLog).one()
        assert log.status == 'failed'
        assert "quota exceeded" in log.error_message

    def test_failed_send_can_be_retried(self, db_session, company, email_sender, test_settings):
        po = po_lifecycle.create_purchase_order(db_session, company.id, USER_ID, make_po_payload())
        email_sender.fail = True
        with pytest.raises(UpstreamError):
            _send(db_session, company, po, email_sender, test_settings)

        email_sender.fail = False
        result = _send(db_session, company, po, email_sender, test_settings)
        assert result['purchase_order'].status == POStatus.SENT_TO_SUPPLIER.value

    def test_unexpected_sender_error_releases_claim(self, db_session, company, email_sender, test_settings):
        po = po_lifecycle.create_purchase_order(db_session, company.id, USER_ID, make_po_payload())

        with pytest.raises(UpstreamError) as exc_info:
            _send(db_session, company, po, UnreachableSender(), test_settings)
        assert "Unable to find the server" in exc_info.value.message

        db_session.refresh(po)
        assert po.status == POStatus.DRAFT.value
        assert po.pending_transition is None
        log = db_session.query(EmailLog).one()
        assert log.status == 'failed'
        assert "Unable to find the server" in log.error_message

        result = _send(db_session, company, po, email_sender, test_settings)
        assert result['status_updated'] is True
        assert result['purchase_order'].status == POStatus.SENT_TO_SUPPLIER.value

    @pytest.mark.parametrize("status_write", ["lost_race", "database_error"])
    def test_status_write_failure_after_delivery(
        self, db_session, company, email_sender, test_settings, monkeypatch, status_write
    ):
        po = po_lifecycle.create_purchase_order(db_session, company.id, USER_ID, make_po_payload())

        def failing_status_write(*args, **kwargs):
            if status_write == "database_error":
                raise SQLAlchemyError("database is locked")
            return False

        monkeypatch.setattr(po_lifecycle, "compare_and_set_status", failing_status_write)

        result = _send(db_session, company, po, email_sender, test_settings)

        assert result['status_updated'] is False
        assert result['message_id'] == "msg-1"
        db_session.refresh(po)
        assert po.status == POStatus.DRAFT.value
        assert po.pending_transition == POStatus.SENT_TO_SUPPLIER.value
        assert db_session.query(EmailLog).filter(EmailLog.status == 'sent').count() == 1

        with pytest.raises(ConflictError):
            _send(db_session, company, po, email_sender, test_settings)
        assert len(email_sender.sent) == 1

    def test_missing_supplier_email_rejected(self, db_session, company, email_sender, test_settings):
        po = po_lifecycle.create_purchase_order(
            db_session, company.id, USER_ID, make_po_payload(supplier_email=None, freeagent_contact_url=None)
        )
        with pytest.raises(ValidationError):
            _send(db_session, company, po, email_sender, test_settings)
        assert email_sender.sent == []

    def test_second_send_conflicts(self, db_session, company, email_sender, test_settings):
        po = po_lifecycle.create_purchase_order(db_session, company.id, USER_ID, make_po_payload())
        _send(db_session, company, po, email_sender, test_settings)

        with pytest.raises(ConflictError):
            _send(db_session, company, po, email_sender, test_settings)
        assert len(email_sender.sent) == 1

    def test_send_in_progress_blocks_a_concurrent_send(self, db_session, company, email_sender, test_settings):
        po = po_lifecycle.create_purchase_order(db_session, company.id, USER_ID, make_po_payload())
        po_lifecycle.claim(db_session, po.id, POStatus.DRAFT, POStatus.SENT_TO_SUPPLIER)

        with pytest.raises(ConflictError):
            _send(db_session, company, po, email_sender, test_settings)
        assert email_sender.sent == []


class TestSupplierResponse:
    def test_accept(self, db_session, company, email_sender, test_settings):
        po = _accepted_po(db_session, company, email_sender, test_settings)
        db_session.refresh(po)
        assert po.status == POStatus.ACCEPTED_BY_SUPPLIER.value

    def test_reject_is_terminal(self, db_session, company, email_sender, test_settings):
        po = po_lifecycle.create_purchase_order(db_session, company.id, USER_ID, make_po_payload())
        _send(db_session, company, po, email_sender, test_settings)

        po = po_lifecycle.respond_by_token(db_session, po.supplier_portal_token, "reject")

        assert po.status == POStatus.REJECTED_BY_SUPPLIER.value
        with pytest.raises(ConflictError):
            po_lifecycle.cancel_purchase_order(db_session, company.id, po.id)

    @pytest.mark.parametrize("second_action", ["accept", "reject"])
    def test_second_response_conflicts(self, db_session, company, email_sender, test_settings, second_action):
        po = _accepted_po(db_session, company, email_sender, test_settings)
        with pytest.raises(ConflictError):
            po_lifecycle.respond_by_token(db_session, po.supplier_portal_token, second_action)

    def test_draft_cannot_be_accepted(self, db_session, company):
        po = po_lifecycle.create_purchase_order(db_session, company.id, USER_ID, make_po_payload())
        with pytest.raises(ConflictError):
            po_lifecycle.respond_by_token(db_session, po.supplier_portal_token, "accept")

    def test_unknown_action_rejected(self, db_session, company, email_sender, test_settings):
        po = po_lifecycle.create_purchase_order(db_session, company.id, USER_ID, make_po_payload())
        _send(db_session, company, po, email_sender, test_settings)
        with pytest.raises(ValidationError):
            po_lifecycle.respond_by_token(db_session, po.supplier_portal_token, "maybe")

    def test_unknown_token_not_found(self, db_session, company):
        with pytest.raises(NotFoundError) as exc_info:
            po_lifecycle.respond_by_token(db_session, "x" * 43, "accept")
        assert exc_info.value.message == INVALID_LINK_MESSAGE

    def test_unknown_token_with_unknown_action_not_found(self, db_session, company):
        with pytest.raises(NotFoundError) as exc_info:
            po_lifecycle.respond_by_token(db_session, "x" * 43, "maybe")
        assert exc_info.value.message == INVALID_LINK_MESSAGE


class TestInvoiceUpload:
    def test_upload_records_invoice_and_moves_status(self, db_session, company, email_sender, test_settings, storage):
        po = _accepted_po(db_session, company, email_sender, test_settings)

        invoice = _upload(db_session, po, storage)

        db_session.refresh(po)
        assert po.status == POStatus.INVOICE_UPLOADED.value
        assert invoice.status == InvoiceUploadStatus.PENDING_APPROVAL.value
        assert invoice.supplier_invoice_amount == Decimal("100.00")
        assert invoice.storage_path == f"supplier-invoices/{company.id}/{po.id}/{invoice.id}/invoice.pdf"
        assert invoice.content_type == "application/pdf"
        assert storage.download_file(invoice.storage_path) == b"%PDF-1.4 invoice"

    def test_upload_before_acceptance_conflicts_without_storage_write(
        self, db_session, company, email_sender, test_settings, storage
    ):
        po = po_lifecycle.create_purchase_order(db_session, company.id, USER_ID, make_po_payload())
        _send(db_session, company, po, email_sender, test_settings)

        with pytest.raises(ConflictError):
            _upload(db_session, po, storage)

        assert _stored_files(storage) == []
        assert db_session.query(UploadedInvoice).count() == 0

    def test_second_upload_conflicts(self, db_session, company, email_sender, test_settings, storage):
        po = _accepted_po(db_session, company, email_sender, test_settings)
        _upload(db_session, po, storage)

        with pytest.raises(ConflictError):
            _upload(db_session, po, storage, number="INV-10")
        assert db_session.query(UploadedInvoice).count() == 1

    @pytest.mark.parametrize("number,amount", [("", "100.00"), ("INV-9", "abc"), ("INV-9", "0")])
    def test_invalid_metadata_rejected(self, db_session, company, email_sender, test_settings, storage, number, amount):
        po = _accepted_po(db_session, company, email_sender, test_settings)
        with pytest.raises(ValidationError):
            _upload(db_session, po, storage, number=number, amount=amount)
        assert _stored_files(storage) == []

    def test_oversized_file_rejected(self, db_session, company, email_sender, test_settings, storage):
        po = _accepted_po(db_session, company, email_sender, test_settings)
        with pytest.raises(ValidationError):
            po_lifecycle.upload_invoice_by_token(
                db_session, po.supplier_portal_token, b"x" * 11, "big.pdf", "application/pdf",
                "INV-1", "1.00", storage, max_bytes=10,
            )

    def test_filename_is_reduced_to_basename(self, db_session, company, email_sender, test_settings, storage):
        po = _accepted_po(db_session, company, email_sender, test_settings)
        invoice = po_lifecycle.upload_invoice_by_token(
            db_session, po.supplier_portal_token, b"data", "../../etc/scan.pdf", None,
            "INV-1", "1.00", storage,
        )
        assert invoice.filename == "scan.pdf"
        assert invoice.storage_path.endswith(f"/{po.id}/{invoice.id}/scan.pdf")

    @pytest.mark.parametrize("filename,content_type", [
        ("invoice.html", "text/html"),
        ("drawing.svg", "image/svg+xml"),
        ("invoice.html", "application/pdf"),
        ("invoice", None),
    ])
    def test_non_invoice_file_type_rejected(
        self, db_session, company, email_sender, test_settings, storage, filename, content_type
    ):
        po = _accepted_po(db_session, company, email_sender, test_settings)

        with pytest.raises(ValidationError):
            po_lifecycle.upload_invoice_by_token(
                db_session, po.supplier_portal_token, b"<script>alert(1)</script>", filename, content_type,
                "INV-1", "1.00", storage,
            )

        assert _stored_files(storage) == []
        db_session.refresh(po)
        assert po.status == POStatus.ACCEPTED_BY_SUPPLIER.value

    def test_stored_type_follows_file_extension(self, db_session, company, email_sender, test_settings, storage):
        po = _accepted_po(db_session, company, email_sender, test_settings)
        invoice = po_lifecycle.upload_invoice_by_token(
            db_session, po.supplier_portal_token, b"\x89PNG", "scan.png", "text/html",
            "INV-1", "1.00", storage,
        )
        assert invoice.content_type == "image/png"

    def test_racing_uploads_with_same_filename_keep_winning_file(
        self, db_session, company, email_sender, test_settings, storage
    ):
        po = _accepted_po(db_session, company, email_sender, test_settings)
        winners = []
        racing = RacingStorage(storage, lambda: winners.append(_upload(db_session, po, storage, number="INV-9")))

        with pytest.raises(ConflictError):
            _upload(db_session, po, racing, number="INV-10", content=b"%PDF-1.4 late copy")

        winner = winners[0]
        assert racing.keys[0] != winner.storage_path
        assert storage.download_file(winner.storage_path) == b"%PDF-1.4 invoice"
        assert db_session.query(UploadedInvoice).one().supplier_invoice_number == "INV-9"
        db_session.refresh(po)
        assert po.status == POStatus.INVOICE_UPLOADED.value


class TestApprovalAndClosing:
    def test_submit_and_approve(self, db_session, company, email_sender, test_settings, storage):
        po = _accepted_po(db_session, company, email_sender, test_settings)
        invoice = _upload(db_session, po, storage)

        po = po_lifecycle.submit_invoice_for_approval(db_session, company.id, po.id)
        assert po.status == POStatus.INVOICE_PENDING_APPROVAL.value

        po = po_lifecycle.approve_invoice(db_session, company.id, po.id, USER_ID)
        assert po.status == POStatus.INVOICE_APPROVED.value
        db_session.refresh(invoice)
        assert invoice.status == InvoiceUploadStatus.APPROVED.value
        assert invoice.approved_or_rejected_by == USER_ID
        assert invoice.approved_or_rejected_at is not None

    def test_approve_requires_submission(self, db_session, company, email_sender, test_settings, storage):
        po = _accepted_po(db_session, company, email_sender, test_settings)
        _upload(db_session, po, storage)
        with pytest.raises(ConflictError):
            po_lifecycle.approve_invoice(db_session, company.id, po.id, USER_ID)

    def test_close_requires_billing(self, db_session, company):
        po = po_lifecycle.create_purchase_order(db_session, company.id, USER_ID, make_po_payload())
        with pytest.raises(ConflictError):
            po_lifecycle.close_purchase_order(db_session, company.id, po.id)

    def test_close_after_billing(self, db_session, company):
        po = po_lifecycle.create_purchase_order(db_session, company.id, USER_ID, make_po_payload())
        db_session.query(PurchaseOrder).filter(PurchaseOrder.id == po.id).update(
            {"status": POStatus.BILLED_IN_FREEAGENT.value}, synchronize_session=False
        )
        db_session.commit()

        po = po_lifecycle.close_purchase_order(db_session, company.id, po.id)
        assert po.status == POStatus.CLOSED.value

    def test_cancel_draft_then_replay_conflicts(self, db_session, company):
        po = po_lifecycle.create_purchase_order(db_session, company.id, USER_ID, make_po_payload())

        po = po_lifecycle.cancel_purchase_order(db_session, company.id, po.id)
        assert po.status == POStatus.CANCELLED.value

        with pytest.raises(ConflictError):
            po_lifecycle.cancel_purchase_order(db_session, company.id, po.id)

    def test_cancel_refused_while_send_in_progress(self, db_session, company):
        po = po_lifecycle.create_purchase_order(db_session, company.id, USER_ID, make_po_payload())
        po_lifecycle.claim(db_session, po.id, POStatus.DRAFT, POStatus.SENT_TO_SUPPLIER)

        with pytest.raises(ConflictError):
            po_lifecycle.cancel_purchase_order(db_session, company.id, po.id)

        db_session.refresh(po)
        assert po.status == POStatus.DRAFT.value
        assert po.pending_transition == POStatus.SENT_TO_SUPPLIER.value

    def test_unclaimed_update_skips_claimed_order(self, db_session, company):
        po = po_lifecycle.create_purchase_order(db_session, company.id, USER_ID, make_po_payload())
        po_lifecycle.claim(db_session, po.id, POStatus.DRAFT, POStatus.SENT_TO_SUPPLIER)

        moved = po_lifecycle.compare_and_set_status(
            db_session, po.id, POStatus.DRAFT, POStatus.CANCELLED, unclaimed=True
        )
        db_session.rollback()
        assert moved is False

    def test_stale_expected_status_loses(self, db_session, company):
        po = po_lifecycle.create_purchase_order(db_session, company.id, USER_ID, make_po_payload())
        po_lifecycle.cancel_purchase_order(db_session, company.id, po.id)

        moved = po_lifecycle.compare_and_set_status(
            db_session, po.id, POStatus.DRAFT, POStatus.SENT_TO_SUPPLIER
        )
        db_session.rollback()
        assert moved is False


def test_po_1001_end_to_end(db_session, company, email_sender, test_settings, storage):
    po = po_lifecycle.create_purchase_order(db_session, company.id, USER_ID, make_po_payload("PO-1001"))

    result = _send(db_session, company, po, email_sender, test_settings)
    po = result['purchase_order']
    assert po.status == POStatus.SENT_TO_SUPPLIER.value
    assert po.amount == Decimal("100.00")
    assert po.currency == "GBP"

    po = po_lifecycle.respond_by_token(db_session, po.supplier_portal_token, "accept")
    assert po.status == POStatus.ACCEPTED_BY_SUPPLIER.value

    _upload(db_session, po, storage, number="INV-9", amount="100.00")
    db_session.refresh(po)
    assert po.status == POStatus.INVOICE_UPLOADED.value
    assert db_session.query(UploadedInvoice).filter(UploadedInvoice.purchase_order_id == po.id).count() == 1

    with pytest.raises(ConflictError):
        po_lifecycle.respond_by_token(db_session, po.supplier_portal_token, "accept")
