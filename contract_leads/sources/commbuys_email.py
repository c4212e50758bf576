"""
COMMBUYS notification inbox (Gmail API).

COMMBUYS sends a notification email per bid to a subscribed mailbox. The
mailbox is read through the Gmail API with a service account that uses
domain-wide delegation to impersonate the mailbox owner.

Messages are only marked read by the caller after they have been processed,
so a crash mid-batch leaves them unread for the next run.
"""

import base64
import binascii
import logging
from dataclasses import dataclass
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Any, Optional

from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..config import GmailConfig
from ..errors import ConfigurationError, GmailApiError
from ..models import ContractSource, utcnow

logger = logging.getLogger(__name__)

GMAIL_SCOPES = [
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/gmail.modify",
]
TOKEN_URI = "https://oauth2.googleapis.com/token"


@dataclass
class InboxMessage:
    """One decoded notification email."""
    id: str
    thread_id: str
    subject: str
    sender: str
    date: datetime
    body: str
    snippet: str = ""


def format_private_key(raw_key: str) -> str:
    """
    Turn the configured key into PEM text.

    The key may be stored base64 encoded, or as PEM with literal ``\\n``
    escapes (common when pasted into an env var).
    """
    key = raw_key.strip()
    if "-----BEGIN" not in key:
        try:
            key = base64.b64decode(key).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise ConfigurationError(f"GOOGLE_SERVICE_ACCOUNT_KEY is not PEM or base64: {e}") from e
    return key.replace("\\n", "\n")


def _decode_part(data: Optional[str]) -> str:
    if not data:
        return ""
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")


def extract_body(payload: Optional[dict]) -> str:
    """
    Extract the message body, preferring HTML over plain text.

    Multipart messages are searched one level at a time, recursing into
    nested parts when neither HTML nor plain text is found directly.
    """
    if not payload:
        return ""

    body_data = (payload.get("body") or {}).get("data")
    if body_data:
        return _decode_part(body_data)

    parts = payload.get("parts") or []
    for mime_type in ("text/html", "text/plain"):
        for part in parts:
            if part.get("mimeType") == mime_type and (part.get("body") or {}).get("data"):
                return _decode_part(part["body"]["data"])

    for part in parts:
        if part.get("parts"):
            nested = extract_body(part)
            if nested:
                return nested

    return ""


def _header(headers: list[dict], name: str) -> str:
    for header in headers:
        if (header.get("name") or "").lower() == name.lower():
            return header.get("value") or ""
    return ""


def _parse_header_date(value: str) -> datetime:
    if value:
        try:
            return parsedate_to_datetime(value)
        except (TypeError, ValueError):
            logger.debug(f"Unparseable Date header: {value!r}")
    return utcnow()


def parse_gmail_message(message: dict) -> Optional[InboxMessage]:
    """Convert a Gmail API ``format=full`` message into an InboxMessage."""
    if not message.get("id") or not message.get("threadId"):
        return None

    payload = message.get("payload") or {}
    headers = payload.get("headers") or []

    return InboxMessage(
        id=message["id"],
        thread_id=message["threadId"],
        subject=_header(headers, "Subject"),
        sender=_header(headers, "From"),
        date=_parse_header_date(_header(headers, "Date")),
        body=extract_body(payload),
        snippet=message.get("snippet") or "",
    )


class CommbuysInbox:
    """
    Reads unread COMMBUYS notifications from a Gmail mailbox.

    Usage:
        inbox = CommbuysInbox(settings.gmail)
        for message in inbox.fetch(limit=50):
            ...
            inbox.mark_read(message.id)
    """

    source = ContractSource.COMMBUYS_EMAIL

    def __init__(self, config: GmailConfig, service: Any = None):
        self.config = config
        self._service = service

    @property
    def service(self):
        """Gmail API resource, built on first use."""
        if self._service is None:
            self._service = self._build_service()
        return self._service

    def _build_service(self):
        missing = self.config.missing
        if missing:
            raise ConfigurationError(
                f"Missing Gmail service account configuration: {', '.join(missing)}"
            )

        info = {
            "type": "service_account",
            "client_email": self.config.service_account_email,
            "private_key": format_private_key(self.config.service_account_key),
            "token_uri": TOKEN_URI,
        }
        try:
            credentials = service_account.Credentials.from_service_account_info(
                info,
                scopes=GMAIL_SCOPES,
                subject=self.config.user_email,
            )
        except (ValueError, GoogleAuthError) as e:
            raise ConfigurationError(f"Invalid Gmail service account credentials: {e}") from e

        return build("gmail", "v1", credentials=credentials, cache_discovery=False)

    def fetch(self, limit: int) -> list[InboxMessage]:
        """
        Fetch unread notification emails matching the inbox query.

        Args:
            limit: Maximum number of messages to list

        Returns:
            Decoded messages, newest first as returned by Gmail
        """
        messages_api = self.service.users().messages()
        try:
            listing = messages_api.list(
                userId="me",
                q=self.config.query,
                maxResults=limit,
            ).execute()

            messages = []
            for ref in listing.get("messages") or []:
                if not ref.get("id"):
                    continue
                raw = messages_api.get(userId="me", id=ref["id"], format="full").execute()
                parsed = parse_gmail_message(raw)
                if parsed:
                    messages.append(parsed)
        except (HttpError, GoogleAuthError) as e:
            logger.error(f"Gmail fetch failed: {e}")
            status = getattr(getattr(e, "resp", None), "status", None)
            raise GmailApiError(f"Failed to fetch emails: {e}", status_code=status, response=e) from e

        logger.info(f"Fetched {len(messages)} unread COMMBUYS emails")
        return messages

    def mark_read(self, message_id: str) -> None:
        """Remove the UNREAD label from a message."""
        try:
            self.service.users().messages().modify(
                userId="me",
                id=message_id,
                body={"removeLabelIds": ["UNREAD"]},
            ).execute()
        except (HttpError, GoogleAuthError) as e:
            status = getattr(getattr(e, "resp", None), "status", None)
            raise GmailApiError(
                f"Failed to mark email {message_id} as read: {e}",
                status_code=status,
                response=e,
            ) from e
