"""HTTP consumer of the chat event stream.

Reads the NDJSON stream of ``POST /api/chat/stream`` the way a UI would: it
skips lines it does not understand, stops on ``error`` or ``done`` and, when
the stream ends without ``done``, treats the persisted conversation as the
truth instead of whatever text it had buffered.
"""

import json
import logging
from typing import Any
from uuid import UUID

import httpx
from pydantic import BaseModel, Field

from app.domains.chat.events import StreamEvent, parse_stream_line


logger = logging.getLogger(__name__)


class StreamTurnResult(BaseModel):
    """Client-side view of one streamed turn."""

    events: list[StreamEvent] = Field(default_factory=list)
    segments: list[str] = Field(default_factory=list)
    title: str | None = None
    error: str | None = None
    completed: bool = False
    recovered: bool = False
    messages: list[dict[str, Any]] | None = None

    @property
    def text(self) -> str:
        return "".join(self.segments)


class ChatStreamClient:
    """Posts a turn and folds the event stream into a ``StreamTurnResult``."""

    def __init__(self, client: httpx.AsyncClient, token: str | None = None):
        """Initialize the stream client.

        Args:
            client: httpx client pointed at the API base URL.
            token: Bearer session token.
        """
        self.client = client
        self.headers = {"Authorization": f"Bearer {token}"} if token else {}

    async def send(
        self,
        chat_id: UUID,
        message: str = "",
        *,
        regenerate_from_index: int | None = None,
        edit_from_message_index: int | None = None,
    ) -> StreamTurnResult:
        payload: dict[str, Any] = {"chatId": str(chat_id), "message": message}
        if regenerate_from_index is not None:
            payload["regenerate"] = True
            payload["regenerateFromIndex"] = regenerate_from_index
        if edit_from_message_index is not None:
            payload["editFromMessageIndex"] = edit_from_message_index

        result = StreamTurnResult()
        buffer: list[str] = []
        async with self.client.stream(
            "POST", "/api/chat/stream", json=payload, headers=self.headers
        ) as response:
            if response.status_code != 200:
                body = await response.aread()
                result.error = _error_message(body, response.status_code)
                return result

            try:
                async for line in response.aiter_lines():
                    event = parse_stream_line(line)
                    if event is None:
                        continue
                    result.events.append(event)
                    buffer = self._apply(event, result, buffer)
                    if event.is_terminal:
                        break
            except httpx.HTTPError as e:
                logger.warning(f"Chat stream interrupted: {str(e)}")

        if buffer:
            result.segments.append("".join(buffer))
        if not result.completed and result.error is None:
            await self._recover(chat_id, result)
        return result

    @staticmethod
    def _apply(event: StreamEvent, result: StreamTurnResult, buffer: list[str]) -> list[str]:
        if event.text is not None:
            buffer.append(event.text)
        if event.finalize_message and buffer:
            result.segments.append("".join(buffer))
            buffer = []
        if event.title is not None:
            result.title = event.title
        if event.error is not None:
            result.error = event.error
        if event.done:
            result.completed = True
        return buffer

    async def _recover(self, chat_id: UUID, result: StreamTurnResult) -> None:
        """Replace local state with the stored conversation."""
        logger.info(f"Stream for {chat_id} ended without done, re-fetching conversation")
        response = await self.client.get(f"/api/chat/conversations/{chat_id}", headers=self.headers)
        response.raise_for_status()
        data = response.json()["data"]
        result.messages = data["messages"]
        result.title = data.get("title") or result.title
        result.recovered = True


def _error_message(body: bytes, status_code: int) -> str:
    try:
        payload = json.loads(body)
    except ValueError:
        return f"HTTP {status_code}"
    if isinstance(payload, dict) and payload.get("message"):
        return payload["message"]
    return f"HTTP {status_code}"
