"""Daily video room provider.

Creates private two-party rooms, issues per-participant meeting tokens and
deletes rooms through the Daily REST API. The rest of the service treats
rooms as opaque handles; see RoomProviderProtocol.
"""
import logging
import time
from typing import Any, Dict, Optional

import httpx

from app.config.constants import (
    MEETING_TOKEN_EXPIRY_MINUTES,
    PROVIDER_HTTP_TIMEOUT_SEC,
    ROOM_MAX_PARTICIPANTS,
)
from app.models.call_session import CallMode
from app.services.exceptions import ExternalServiceError
from app.services.protocols import RoomInfo

logger = logging.getLogger(__name__)


class DailyRoomProvider:
    """RoomProviderProtocol implementation backed by api.daily.co."""

    def __init__(
        self,
        api_key: Optional[str],
        domain: Optional[str],
        api_url: str = "https://api.daily.co/v1",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._api_key = api_key
        self._domain = self._normalize_domain(domain)
        self._client = client or httpx.AsyncClient(base_url=api_url, timeout=PROVIDER_HTTP_TIMEOUT_SEC)

        if not api_key:
            logger.error("DAILY_API_KEY is not set; call rooms cannot be created")
        if not domain:
            logger.error("DAILY_DOMAIN is not set; room URLs cannot be built")

    @staticmethod
    def _normalize_domain(domain: Optional[str]) -> Optional[str]:
        if domain and ".daily.co" not in domain:
            return f"{domain}.daily.co"
        return domain

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key and self._domain)

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}"}

    def _ensure_configured(self) -> None:
        if not self.is_configured:
            raise ExternalServiceError("Video provider is not configured")

    def room_url(self, room_name: str) -> str:
        return f"https://{self._domain}/{room_name}"

    async def _request(self, method: str, path: str, context: str, json: Any = None) -> httpx.Response:
        try:
            response = await self._client.request(method, path, json=json, headers=self._headers())
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            logger.error(
                f"[Provider] {context}: HTTP {e.response.status_code} "
                f"{e.request.method} {e.request.url} body={e.response.text[:300]}"
            )
            raise ExternalServiceError(f"{context}: provider returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error(f"[Provider] {context}: {e}")
            raise ExternalServiceError(f"{context}: provider unreachable") from e

    async def create_room(self, mode: str, expiry_minutes: int) -> RoomInfo:
        self._ensure_configured()
        logger.info(f"[Provider] Creating private room (mode={mode}, expiry={expiry_minutes}m)")

        payload = {
            "privacy": "private",
            "properties": {
                "max_participants": ROOM_MAX_PARTICIPANTS,
                "enable_screenshare": True,
                "enable_chat": True,
                "start_video_off": mode == CallMode.AUDIO.value,
                "start_audio_off": False,
                "exp": int(time.time()) + expiry_minutes * 60,
            },
        }
        response = await self._request("POST", "/rooms", "Error creating private room", json=payload)
        data = response.json() or {}
        name = data.get("name")
        if not name:
            raise ExternalServiceError("Error creating private room: response has no room name")

        logger.info(f"[Provider] Room created: {name}")
        return RoomInfo(name=name, url=data.get("url") or self.room_url(name))

    async def create_token(self, room_name: str, is_owner: bool, mode: str) -> str:
        self._ensure_configured()
        payload = {
            "properties": {
                "room_name": room_name,
                "is_owner": is_owner,
                "enable_screenshare": True,
                "start_video_off": mode == CallMode.AUDIO.value,
                "start_audio_off": False,
                "exp": int(time.time()) + MEETING_TOKEN_EXPIRY_MINUTES * 60,
            },
        }
        response = await self._request(
            "POST", "/meeting-tokens", f"Error creating meeting token for room {room_name}", json=payload
        )
        token = (response.json() or {}).get("token")
        if not token:
            raise ExternalServiceError(f"No meeting token returned for room {room_name}")
        return token

    async def delete_room(self, room_name: str) -> None:
        self._ensure_configured()
        logger.info(f"[Provider] Deleting room: {room_name}")
        try:
            await self._request("DELETE", f"/rooms/{room_name}", f"Error deleting room {room_name}")
        except ExternalServiceError as e:
            # Already gone (expired at the provider) counts as deleted
            cause = e.__cause__
            if isinstance(cause, httpx.HTTPStatusError) and cause.response.status_code == 404:
                logger.info(f"[Provider] Room {room_name} already deleted")
                return
            raise

    async def close(self) -> None:
        await self._client.aclose()
