"""
Gmail API Service for sending emails

Handles OAuth2 authentication and email sending via Gmail API.
"""
import base64
import json
import logging
import re
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, List, Optional

import httplib2
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from po_portal.config import Settings
from po_portal.errors import EmailDeliveryError

logger = logging.getLogger(__name__)

# Gmail API scopes
SCOPES = ['https://www.googleapis.com/auth/gmail.send']
GOOGLE_TOKEN_URI = 'https://oauth2.googleapis.com/token'


class GmailService:
    """Service for sending emails via Gmail API"""

    def __init__(self, settings: Settings):
        """Initialize Gmail API client"""
        self.sender_email = settings.gmail_sender_email
        self.creds = None
        self.service = None
        self.init_error = None

        has_user_creds = bool(settings.gmail_credentials_json) or bool(
            settings.gmail_client_id and settings.gmail_client_secret and settings.gmail_refresh_token
        )

        logger.info(f"Gmail credentials check: "
                    f"GMAIL_CREDENTIALS_JSON={'set' if settings.gmail_credentials_json else 'not set'}, "
                    f"GMAIL_CLIENT_ID={'set' if settings.gmail_client_id else 'not set'}, "
                    f"GMAIL_REFRESH_TOKEN={'set' if settings.gmail_refresh_token else 'not set'}, "
                    f"GMAIL_SENDER_EMAIL={'set' if self.sender_email else 'not set'}")

        if not has_user_creds:
            self.init_error = "Gmail credentials not configured"
            logger.warning("Gmail user credentials not set - purchase order emails cannot be sent")
            return

        self.creds = self._load_credentials(settings)
        if self.creds:
            try:
                self.service = build('gmail', 'v1', credentials=self.creds, cache_discovery=False)
                logger.info("Gmail service initialized successfully")
            except Exception as e:
                self.init_error = f"Failed to build Gmail service: {e}"
                logger.error(self.init_error)
                self.service = None

    def _load_credentials(self, settings: Settings) -> Optional[Credentials]:
        """Load Gmail API credentials from configuration"""
        if settings.gmail_credentials_json:
            try:
                creds_data = json.loads(settings.gmail_credentials_json)
                creds = Credentials.from_authorized_user_info(creds_data, SCOPES)

                # Refresh token if expired
                if creds.expired and creds.refresh_token:
                    creds.refresh(Request())

                return creds
            except (ValueError, GoogleAuthError) as e:
                self.init_error = f"Failed to load credentials from GMAIL_CREDENTIALS_JSON: {e}"
                logger.error(self.init_error)
                return None

        try:
            creds = Credentials(
                token=None,
                refresh_token=settings.gmail_refresh_token,
                token_uri=GOOGLE_TOKEN_URI,
                client_id=settings.gmail_client_id,
                client_secret=settings.gmail_client_secret,
                scopes=SCOPES
            )
            # Refresh to get access token
            creds.refresh(Request())
            logger.info("Successfully loaded and refreshed OAuth2 credentials")
            return creds
        except GoogleAuthError as e:
            self.init_error = f"Failed to load credentials from OAuth2 tokens: {e}"
            logger.error(self.init_error)
            if 'invalid_grant' in str(e).lower():
                logger.error("INVALID_GRANT error - The refresh token has expired or been revoked")
            return None

    def _build_message(
        self,
        to_addresses: List[str],
        subject: str,
        body_html: str,
        body_text: Optional[str],
        cc_addresses: Optional[List[str]],
        attachments: Optional[List[Dict[str, Any]]],
    ) -> MIMEMultipart:
        body = MIMEMultipart('alternative')
        body.attach(MIMEText(body_text or re.sub(r'<[^>]+>', '', body_html), 'plain'))
        body.attach(MIMEText(body_html, 'html'))

        if attachments:
            message = MIMEMultipart('mixed')
            message.attach(body)
            for attachment in attachments:
                part = MIMEApplication(attachment['content'], Name=attachment['filename'])
                part['Content-Disposition'] = f'attachment; filename="{attachment["filename"]}"'
                message.attach(part)
        else:
            message = body

        message['To'] = ', '.join(to_addresses)
        message['From'] = self.sender_email
        message['Subject'] = subject
        if cc_addresses:
            message['Cc'] = ', '.join(cc_addresses)
        return message

    def send_email(
        self,
        to_addresses: List[str],
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
        cc_addresses: Optional[List[str]] = None,
        attachments: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        """
        Send email via Gmail API

        Args:
            to_addresses: List of recipient email addresses
            subject: Email subject line
            body_html: HTML email body
            body_text: Plain text email body (optional, defaults to HTML stripped)
            cc_addresses: List of CC email addresses (optional)
            attachments: dicts with 'filename' and 'content' (bytes)

        Returns:
            dict with 'message_id', 'thread_id'

        Raises:
            EmailDeliveryError if the service is not configured or Gmail rejects the message
        """
        if not self.service:
            error_detail = self.init_error or "Gmail service not initialized - check credentials"
            raise EmailDeliveryError(f"Email service unavailable: {error_detail}", status_code=503)

        if not self.sender_email:
            raise EmailDeliveryError("Email service unavailable: GMAIL_SENDER_EMAIL not configured", status_code=503)

        message = self._build_message(to_addresses, subject, body_html, body_text, cc_addresses, attachments)
        raw_message = base64.urlsafe_b64encode(message.as_bytes()).decode('utf-8')

        try:
            send_message = self.service.users().messages().send(
                userId='me',
                body={'raw': raw_message}
            ).execute()
        except HttpError as error:
            logger.error(f'Gmail API error: {error}')
            raise EmailDeliveryError(f"Failed to send email via Gmail API: {error}")
        except (GoogleAuthError, httplib2.HttpLib2Error, OSError) as e:
            logger.error(f'Unexpected error sending email: {e}')
            raise EmailDeliveryError(f"Failed to send email: {e}")

        logger.info(f"Email sent successfully: message_id={send_message['id']}")

        return {
            'message_id': send_message['id'],
            'thread_id': send_message.get('threadId'),
        }
