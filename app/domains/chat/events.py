"""Client-facing stream events and the per-request event channel.

Events are newline-delimited JSON objects:

    {"text": "..."}
    {"searching": true, "query": "..."}
    {"finalizeMessage": true}
    {"searching": false, "newMessage": true}
    {"title": "..."}
    {"error": "..."}
    {"done": true}

``error`` and ``done`` are terminal.
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator

from pydantic import BaseModel, ConfigDict, Field


logger = logging.getLogger(__name__)


class StreamEvent(BaseModel):
    """One server-to-client event. Only set fields are serialized."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    text: str | None = None
    searching: bool | None = None
    query: str | None = None
    finalize_message: bool | None = Field(default=None, alias="finalizeMessage")
    new_message: bool | None = Field(default=None, alias="newMessage")
    title: str | None = None
    error: str | None = None
    done: bool | None = None

    @property
    def is_terminal(self) -> bool:
        return bool(self.done) or self.error is not None

    def to_line(self) -> str:
        return json.dumps(self.model_dump(by_alias=True, exclude_none=True)) + "\n"

    @classmethod
    def text_fragment(cls, text: str) -> "StreamEvent":
        return cls(text=text)

    @classmethod
    def searching_started(cls, query: str) -> "StreamEvent":
        return cls(searching=True, query=query)

    @classmethod
    def searching_finished(cls) -> "StreamEvent":
        return cls(searching=False, new_message=True)

    @classmethod
    def finalize(cls) -> "StreamEvent":
        return cls(finalize_message=True)

    @classmethod
    def title_set(cls, title: str) -> "StreamEvent":
        return cls(title=title)

    @classmethod
    def failed(cls, message: str) -> "StreamEvent":
        return cls(error=message)

    @classmethod
    def completed(cls) -> "StreamEvent":
        return cls(done=True)


def parse_stream_line(line: str) -> StreamEvent | None:
    """Decode one NDJSON line. Malformed or unknown lines return ``None``."""
    line = (line or "").strip()
    if not line:
        return None
    try:
        payload = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    try:
        event = StreamEvent.model_validate(payload)
    except ValueError:
        return None
    if not event.model_fields_set:
        return None
    return event


class EventChannel:
    """One-way push channel between a running turn and the HTTP response.

    The producer never blocks on a slow or departed consumer: the turn keeps
    running and persisting even after the client goes away.
    """

    def __init__(self):
        self._queue: asyncio.Queue[StreamEvent] = asyncio.Queue()
        self.closed = False

    async def send(self, event: StreamEvent) -> None:
        if self.closed:
            return
        self._queue.put_nowait(event)
        if event.is_terminal:
            self.closed = True

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Yield events until (and including) the terminal one."""
        while True:
            event = await self._queue.get()
            yield event
            if event.is_terminal:
                return

    async def ndjson(self) -> AsyncIterator[str]:
        async for event in self.events():
            yield event.to_line()
