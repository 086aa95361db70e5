"""
Email Service - Agent notifications over the Resend REST API

Emails are best-effort: every public method logs and returns False on
failure instead of raising, so a mail outage never fails a lifecycle
operation.
"""
import logging
from html import escape
from typing import List, Optional

import httpx

from app.config.constants import PROVIDER_HTTP_TIMEOUT_SEC

logger = logging.getLogger(__name__)


class EmailService:
    """EmailSenderProtocol implementation plus the desk's email templates."""

    def __init__(
        self,
        api_key: Optional[str],
        sender: str,
        api_url: str = "https://api.resend.com/emails",
        dashboard_url: str = "http://localhost:3000",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._api_key = api_key
        self._sender = sender
        self._api_url = api_url
        self._dashboard_url = dashboard_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=PROVIDER_HTTP_TIMEOUT_SEC)

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    def _query_link(self, query_id: str) -> str:
        return f"{self._dashboard_url}/queries/{query_id}"

    async def send_email(self, to: List[str], subject: str, html: str) -> bool:
        recipients = [address for address in to if address]
        if not recipients:
            logger.debug(f"[Email] No recipients for '{subject}', skipping")
            return False
        if not self.is_configured:
            logger.warning(f"[Email] EMAIL_API_KEY not set, dropping '{subject}'")
            return False

        try:
            response = await self._client.post(
                self._api_url,
                headers={"Authorization": f"Bearer {self._api_key}"},
                json={"from": self._sender, "to": recipients, "subject": subject, "html": html},
            )
            response.raise_for_status()
            logger.info(f"[Email] Sent '{subject}' to {len(recipients)} recipient(s)")
            return True
        except httpx.HTTPError as e:
            logger.error(f"[Email] Failed to send '{subject}': {e}")
            return False

    # === Templates ===

    async def send_new_query_email(self, recipients: List[str], query) -> bool:
        subject = f"New Query #{query.id}: {query.test} from {query.donor}"
        html = (
            f"<h2>New donor query</h2>"
            f"<p><strong>Donor:</strong> {escape(query.donor)}</p>"
            f"<p><strong>Test:</strong> {escape(query.test)} &middot; "
            f"<strong>Stage:</strong> {escape(query.stage)} &middot; "
            f"<strong>Device:</strong> {escape(query.device)}</p>"
            f"<blockquote>{escape(query.content or '')}</blockquote>"
            f'<p><a href="{self._query_link(query.id)}">Open in dashboard</a></p>'
        )
        return await self.send_email(recipients, subject, html)

    async def send_call_request_email(self, recipients: List[str], query, mode: str, message: Optional[str]) -> bool:
        subject = f"Call Request: Query #{query.id} from {query.donor}"
        html = (
            f"<h2>{escape(query.donor)} requested a {mode.lower()} call</h2>"
            f"<blockquote>{escape(message or '')}</blockquote>"
            f'<p><a href="{self._query_link(query.id)}">Review the request</a></p>'
        )
        return await self.send_email(recipients, subject, html)

    async def send_transfer_email(self, recipient: str, query, transferred_by: str, note: Optional[str]) -> bool:
        subject = f"Query #{query.id} transferred to you by {transferred_by}"
        html = (
            f"<h2>A query was transferred to you</h2>"
            f"<p><strong>Donor:</strong> {escape(query.donor)} &middot; "
            f"<strong>Test:</strong> {escape(query.test)}</p>"
            f"<p><strong>Note:</strong> {escape(note or '-')}</p>"
            f'<p><a href="{self._query_link(query.id)}">Open in dashboard</a></p>'
        )
        return await self.send_email([recipient], subject, html)

    async def send_reminder_email(self, recipient: str, query, sent_by: str) -> bool:
        subject = f"Reminder: Query #{query.id} is waiting for you"
        html = (
            f"<p>{escape(sent_by)} sent a reminder about the query from "
            f"{escape(query.donor)} ({escape(query.test)}).</p>"
            f'<p><a href="{self._query_link(query.id)}">Open in dashboard</a></p>'
        )
        return await self.send_email([recipient], subject, html)

    async def close(self) -> None:
        await self._client.aclose()
