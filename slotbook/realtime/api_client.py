from datetime import datetime
from typing import List, Optional

import httpx

from slotbook.config import MESSAGE_PAGE_SIZE
from slotbook.realtime.errors import ChatRequestError, TransientChatError
from slotbook.logger import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 10.0


class ChatApiClient:
    """Thin async client for the conversation endpoints"""

    def __init__(self, base_url: str, token: str, client: Optional[httpx.AsyncClient] = None,
                 timeout: float = DEFAULT_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)
        self._headers = {"Authorization": f"Bearer {token}"}

    async def aclose(self):
        await self._client.aclose()

    async def _request(self, method: str, path: str, json: Optional[dict] = None, params: Optional[dict] = None):
        try:
            resp = await self._client.request(method, path, json=json, params=params, headers=self._headers)
        except httpx.TimeoutException:
            raise TransientChatError(f"Timeout calling {path}")
        except httpx.HTTPError as e:
            raise TransientChatError(f"Network error calling {path}: {str(e)}")

        if resp.status_code >= 500:
            raise TransientChatError(f"Server error {resp.status_code} calling {path}")
        if resp.status_code >= 400:
            try:
                detail = resp.json().get("detail", resp.text)
            except ValueError:
                detail = resp.text
            raise ChatRequestError(resp.status_code, str(detail))

        if resp.content:
            return resp.json()
        return {}

    async def open_conversation(self, participant_id: str, booking_id: Optional[str] = None) -> dict:
        return await self._request(
            "POST", "/api/conversations", json={"participant_id": participant_id, "booking_id": booking_id}
        )

    async def list_conversations(self) -> List[dict]:
        return await self._request("GET", "/api/conversations")

    async def get_messages(self, conversation_id: str, limit: int = MESSAGE_PAGE_SIZE,
                           before: Optional[datetime] = None) -> List[dict]:
        params = {"limit": limit}
        if before is not None:
            params["before"] = before.isoformat()
        return await self._request("GET", f"/api/conversations/{conversation_id}/messages", params=params)

    async def send_message(self, conversation_id: str, content: str) -> dict:
        return await self._request(
            "POST", f"/api/conversations/{conversation_id}/messages", json={"content": content}
        )

    async def mark_as_read(self, conversation_id: str) -> dict:
        return await self._request("POST", f"/api/conversations/{conversation_id}/read")
