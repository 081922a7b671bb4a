"""Model bridge: Anthropic streaming translated into normalized turn events.

The bridge is a pure translation layer. It does not persist anything, does not
look at quota and does not retry: a provider error ends the current turn and is
yielded as a ``StreamFailure`` event.
"""

import logging
from collections.abc import AsyncIterator
from typing import Annotated, Any, Literal

import anthropic
import httpx
from pydantic import BaseModel, ConfigDict, Field

from app.core.config import settings
from app.exceptions.provider import ProviderConfigurationError, ProviderError, map_provider_error


logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Working message list (in-memory only, never persisted as-is)
# ---------------------------------------------------------------------------


class TextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ToolUseBlock(BaseModel):
    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(BaseModel):
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: str


ContentBlock = Annotated[TextBlock | ToolUseBlock | ToolResultBlock, Field(discriminator="type")]


class WorkingTurn(BaseModel):
    """One role-tagged entry of the working message list."""

    role: Literal["user", "assistant"]
    content: list[ContentBlock]

    @classmethod
    def text(cls, role: str, text: str) -> "WorkingTurn":
        return cls(role=role, content=[TextBlock(text=text)])


def to_provider_messages(turns: list[WorkingTurn]) -> list[dict[str, Any]]:
    """Convert working turns to Anthropic ``messages`` params.

    Consecutive turns with the same role (e.g. two persisted assistant segments)
    are merged into one message, and empty text blocks are dropped.
    """
    messages: list[dict[str, Any]] = []
    for turn in turns:
        blocks = [
            block.model_dump()
            for block in turn.content
            if not (isinstance(block, TextBlock) and not block.text.strip())
        ]
        if not blocks:
            continue
        if messages and messages[-1]["role"] == turn.role:
            messages[-1]["content"].extend(blocks)
        else:
            messages.append({"role": turn.role, "content": blocks})
    return messages


# ---------------------------------------------------------------------------
# Normalized events
# ---------------------------------------------------------------------------


class _Event(BaseModel):
    model_config = ConfigDict(frozen=True)


class TextFragment(_Event):
    kind: Literal["text_fragment"] = "text_fragment"
    text: str


class ToolOpen(_Event):
    kind: Literal["tool_open"] = "tool_open"
    id: str
    name: str


class ToolArgFragment(_Event):
    kind: Literal["tool_arg_fragment"] = "tool_arg_fragment"
    partial_json: str


class ToolClose(_Event):
    kind: Literal["tool_close"] = "tool_close"


class TurnEnd(_Event):
    kind: Literal["turn_end"] = "turn_end"
    stop_reason: str | None = None


class StreamFailure(_Event):
    kind: Literal["error"] = "error"
    message: str
    error_code: str

    @classmethod
    def from_error(cls, error: ProviderError) -> "StreamFailure":
        return cls(message=error.message, error_code=error.error_code)


BridgeEvent = TextFragment | ToolOpen | ToolArgFragment | ToolClose | TurnEnd | StreamFailure


class ModelBridge:
    """Wraps the provider's streaming completion call."""

    def __init__(
        self,
        client: anthropic.AsyncAnthropic | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
    ):
        """Initialize the bridge.

        Args:
            client: Preconfigured SDK client; built from settings when omitted.
            model: Model name override.
            max_tokens: Per-turn output cap override.
        """
        if client is None and settings.anthropic_api_key:
            client = anthropic.AsyncAnthropic(
                api_key=settings.anthropic_api_key,
                timeout=settings.ai_request_timeout,
                max_retries=0,
            )
        self.client = client
        self.model = model or settings.anthropic_model
        self.max_tokens = max_tokens or settings.anthropic_max_tokens

    async def stream_turn(
        self,
        messages: list[WorkingTurn],
        tools: list[dict[str, Any]],
        system_prompt: str,
    ) -> AsyncIterator[BridgeEvent]:
        """Stream one model turn as normalized events.

        Always ends with either ``TurnEnd`` or ``StreamFailure``.
        """
        if self.client is None:
            yield StreamFailure.from_error(
                ProviderConfigurationError("Anthropic API key not configured")
            )
            return

        open_blocks: dict[int, str] = {}
        stop_reason: str | None = None
        try:
            stream = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=system_prompt,
                messages=to_provider_messages(messages),
                tools=tools,
                stream=True,
            )
            async for event in stream:
                if event.type == "message_delta":
                    stop_reason = event.delta.stop_reason or stop_reason
                    continue
                if event.type == "message_stop":
                    yield TurnEnd(stop_reason=stop_reason)
                    return
                normalized = self._translate(event, open_blocks)
                if normalized is not None:
                    yield normalized
        except (anthropic.APIError, httpx.HTTPError) as e:
            error = map_provider_error(e)
            logger.error(f"Model provider call failed: {error.error_code}: {error.message}")
            yield StreamFailure.from_error(error)
            return

        # Stream closed without message_stop; treat what we have as the whole turn.
        logger.warning("Provider stream ended without message_stop")
        yield TurnEnd(stop_reason=stop_reason)

    @staticmethod
    def _translate(event: Any, open_blocks: dict[int, str]) -> BridgeEvent | None:
        if event.type == "content_block_start":
            block = event.content_block
            open_blocks[event.index] = block.type
            if block.type == "tool_use":
                return ToolOpen(id=block.id, name=block.name)
            if block.type == "text" and block.text:
                return TextFragment(text=block.text)
            return None

        if event.type == "content_block_delta":
            delta = event.delta
            if delta.type == "text_delta":
                return TextFragment(text=delta.text)
            if delta.type == "input_json_delta":
                return ToolArgFragment(partial_json=delta.partial_json)
            return None

        if event.type == "content_block_stop":
            if open_blocks.pop(event.index, None) == "tool_use":
                return ToolClose()
            return None

        return None
