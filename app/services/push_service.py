"""Device push notifications via the FCM HTTP API.

Push is best-effort: failures are logged and reported as None.
"""
import logging
import re
from typing import Dict, Optional

import httpx

from app.config.constants import PROVIDER_HTTP_TIMEOUT_SEC

logger = logging.getLogger(__name__)

_TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9:_\-]+$")

# Placeholders that client builds send before a real token exists
_PLACEHOLDER_TOKENS = {"test-token", "RECIPIENT_TOKEN"}


def is_valid_notification_token(token: Optional[str]) -> bool:
    """Cheap shape check before handing a token to the provider."""
    if not token or not isinstance(token, str):
        return False
    if token in _PLACEHOLDER_TOKENS or len(token) < 10:
        return False
    return bool(_TOKEN_PATTERN.match(token))


class PushService:
    """PushSenderProtocol implementation."""

    def __init__(
        self,
        server_key: Optional[str],
        api_url: str = "https://fcm.googleapis.com/fcm/send",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._server_key = server_key
        self._api_url = api_url
        self._client = client or httpx.AsyncClient(timeout=PROVIDER_HTTP_TIMEOUT_SEC)

    async def send_notification(
        self,
        token: str,
        title: str,
        body: str,
        data: Optional[Dict[str, str]] = None
    ) -> Optional[str]:
        if not self._server_key:
            logger.debug("[Push] FCM_SERVER_KEY not set, skipping notification")
            return None
        if not is_valid_notification_token(token):
            logger.warning("[Push] Invalid device token, skipping notification")
            return None

        payload = {
            "to": token,
            "priority": "high",
            "notification": {"title": title, "body": body},
            # FCM data values must be strings
            "data": {key: str(value) for key, value in (data or {}).items()},
        }
        try:
            response = await self._client.post(
                self._api_url,
                headers={"Authorization": f"key={self._server_key}"},
                json=payload,
            )
            response.raise_for_status()
            result = response.json()
        except httpx.HTTPError as e:
            logger.error(f"[Push] Failed to send '{title}': {e}")
            return None
        except ValueError as e:
            logger.error(f"[Push] Unreadable provider response for '{title}': {e}")
            return None

        if result.get("failure"):
            logger.warning(f"[Push] Provider rejected '{title}': {result.get('results')}")
            return None

        message_id = None
        results = result.get("results") or []
        if results:
            message_id = results[0].get("message_id")
        logger.info(f"[Push] Sent '{title}' ({message_id})")
        return message_id

    async def close(self) -> None:
        await self._client.aclose()
