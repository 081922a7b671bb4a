"""Streaming orchestrator: the model/tool loop behind one chat turn.

A turn alternates between streaming assistant text and executing tool calls
until the model ends a turn without asking for a tool. Text is forwarded to the
client as it arrives and persisted afterwards, one assistant row per segment.
Tool calls and their results live only in the in-memory working list.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.domains.chat.events import EventChannel, StreamEvent
from app.domains.chat.history import TurnPlan
from app.domains.chat.service import ChatService
from app.domains.quota.service import QuotaService
from app.exceptions.base import PersistenceError
from app.services.model_bridge import (
    ModelBridge,
    StreamFailure,
    TextBlock,
    TextFragment,
    ToolArgFragment,
    ToolClose,
    ToolOpen,
    ToolResultBlock,
    ToolUseBlock,
    TurnEnd,
    WorkingTurn,
)
from app.services.search_service import (
    WEB_SEARCH_TOOL_NAME,
    WebSearchService,
    parse_tool_input,
    query_from_input,
)
from app.services.title_service import TitleSummarizer, fallback_title


logger = logging.getLogger(__name__)

Emit = Callable[[StreamEvent], Awaitable[None]]


# Running turns are referenced here so they are not garbage collected
# while detached from the request that started them.
_running_turns: set[asyncio.Task] = set()


class OrchestratorState(str, Enum):
    STREAMING_TEXT = "streaming_text"
    TOOL_CALL_DETECTED = "tool_call_detected"
    EXECUTING_TOOL = "executing_tool"
    DONE = "done"
    ERROR = "error"


class PendingToolCall(BaseModel):
    """A tool call announced by the model during the current model turn."""

    id: str
    name: str
    raw_arguments: str = ""
    input: dict[str, Any] | None = None

    def close(self) -> None:
        self.input = parse_tool_input(self.raw_arguments)

    @property
    def resolved_input(self) -> dict[str, Any]:
        if self.input is None:
            self.close()
        return self.input or {}


class TurnProgress(BaseModel):
    """Text produced so far in a running turn."""

    segments: list[str] = Field(default_factory=list)
    buffer: list[str] = Field(default_factory=list)
    persisted: bool = False

    def drain(self) -> str:
        """Take the open segment out of the buffer."""
        segment = "".join(self.buffer)
        self.buffer.clear()
        return segment

    def keep(self, segment: str) -> None:
        if segment.strip():
            self.segments.append(segment)


class TurnOutcome(BaseModel):
    """What a finished turn produced."""

    state: OrchestratorState
    segments: list[str] = Field(default_factory=list)
    tool_calls: int = 0
    title: str | None = None
    error: str | None = None


class StreamingOrchestrator:
    """Drives one turn from the working history to persisted segments."""

    def __init__(
        self,
        bridge: ModelBridge,
        search_service: WebSearchService,
        title_summarizer: TitleSummarizer,
        session_factory: async_sessionmaker[AsyncSession],
        max_tool_iterations: int | None = None,
        system_prompt: str | None = None,
    ):
        self.bridge = bridge
        self.search_service = search_service
        self.title_summarizer = title_summarizer
        self.session_factory = session_factory
        self.max_tool_iterations = max_tool_iterations or settings.chat_max_tool_iterations
        self.system_prompt = system_prompt or settings.system_prompt

    def start(self, plan: TurnPlan, user_id: UUID) -> EventChannel:
        """Run the turn in the background and return its event channel.

        The turn is not tied to the HTTP response: if the client disconnects,
        it still runs to completion and persists its output.
        """
        channel = EventChannel()
        task = asyncio.create_task(self.run_guarded(plan, user_id, channel.send))
        _running_turns.add(task)
        task.add_done_callback(_running_turns.discard)
        return channel

    async def run_guarded(self, plan: TurnPlan, user_id: UUID, emit: Emit) -> TurnOutcome:
        """Run the turn and make sure the client always receives a terminal event."""
        progress = TurnProgress()
        try:
            return await self.run(plan, user_id, emit, progress)
        except Exception as e:
            logger.exception(f"Chat turn crashed for conversation {plan.conversation_id}: {str(e)}")
            progress.keep(progress.drain())
            if not progress.persisted:
                await self._persist_partial(plan, user_id, progress)
            await emit(StreamEvent.failed("Something went wrong while generating a response"))
            return TurnOutcome(state=OrchestratorState.ERROR, segments=progress.segments, error=str(e))

    async def run(
        self, plan: TurnPlan, user_id: UUID, emit: Emit, progress: TurnProgress | None = None
    ) -> TurnOutcome:
        """Execute the streaming loop for one turn.

        Args:
            plan: Prepared turn (user row already persisted)
            user_id: Owner of the conversation
            emit: Sink for client events
            progress: Collects the text produced so far; created when omitted

        Returns:
            TurnOutcome with the persisted segments and final state
        """
        working = plan.working_history
        tools = [self.search_service.definition]
        if progress is None:
            progress = TurnProgress()
        segments = progress.segments
        tool_rounds = 0
        state = OrchestratorState.STREAMING_TEXT

        while True:
            pending: list[PendingToolCall] = []
            current: PendingToolCall | None = None
            failure: StreamFailure | None = None

            async for event in self.bridge.stream_turn(working, tools, self.system_prompt):
                if isinstance(event, TextFragment):
                    progress.buffer.append(event.text)
                    await emit(StreamEvent.text_fragment(event.text))
                elif isinstance(event, ToolOpen):
                    state = self._transition(state, OrchestratorState.TOOL_CALL_DETECTED)
                    current = PendingToolCall(id=event.id, name=event.name)
                    pending.append(current)
                elif isinstance(event, ToolArgFragment):
                    if current is not None:
                        current.raw_arguments += event.partial_json
                elif isinstance(event, ToolClose):
                    if current is not None:
                        current.close()
                        current = None
                elif isinstance(event, StreamFailure):
                    failure = event
                    break
                elif isinstance(event, TurnEnd):
                    break

            segment = progress.drain()

            if failure is not None:
                self._transition(state, OrchestratorState.ERROR)
                progress.keep(segment)
                return await self._fail(plan, user_id, progress, failure, emit)

            if not pending:
                progress.keep(segment)
                break

            if tool_rounds >= self.max_tool_iterations:
                logger.warning(
                    f"Tool iteration ceiling ({self.max_tool_iterations}) reached in "
                    f"conversation {plan.conversation_id}; ending turn"
                )
                progress.keep(segment)
                break

            tool_rounds += 1
            state = self._transition(state, OrchestratorState.EXECUTING_TOOL)
            if segment.strip():
                segments.append(segment)
                await emit(StreamEvent.finalize())

            results = []
            for call in pending:
                results.append(await self._execute_tool(call, emit))

            assistant_blocks: list[Any] = [TextBlock(text=segment)] if segment.strip() else []
            assistant_blocks.extend(
                ToolUseBlock(id=call.id, name=call.name, input=call.resolved_input) for call in pending
            )
            working.append(WorkingTurn(role="assistant", content=assistant_blocks))
            working.append(WorkingTurn(role="user", content=results))

            await emit(StreamEvent.searching_finished())
            state = self._transition(state, OrchestratorState.STREAMING_TEXT)

        self._transition(state, OrchestratorState.DONE)
        title = await self._complete(plan, user_id, progress, emit)
        logger.info(
            f"Turn complete for conversation {plan.conversation_id}: "
            f"{len(segments)} segments, {tool_rounds} tool rounds"
        )
        return TurnOutcome(
            state=OrchestratorState.DONE, segments=segments, tool_calls=tool_rounds, title=title
        )

    # Private helper methods

    @staticmethod
    def _transition(current: OrchestratorState, target: OrchestratorState) -> OrchestratorState:
        if current != target:
            logger.debug(f"Orchestrator {current.value} -> {target.value}")
        return target

    async def _execute_tool(self, call: PendingToolCall, emit: Emit) -> ToolResultBlock:
        query = query_from_input(call.resolved_input)
        await emit(StreamEvent.searching_started(query))

        if call.name != WEB_SEARCH_TOOL_NAME:
            logger.warning(f"Model requested unknown tool {call.name!r}")
            return ToolResultBlock(tool_use_id=call.id, content=f"Unknown tool: {call.name}")

        logger.info(f"Executing {call.name} with query {query!r}")
        content = await self.search_service.execute(query)
        return ToolResultBlock(tool_use_id=call.id, content=content)

    async def _complete(
        self, plan: TurnPlan, user_id: UUID, progress: TurnProgress, emit: Emit
    ) -> str | None:
        """Persist segments, count the turn, title a new conversation and emit ``done``."""
        try:
            async with self.session_factory() as db:
                await ChatService(db).append_assistant_segments(plan.conversation_id, progress.segments)
                progress.persisted = True
                await QuotaService(db).record_turn(user_id)
        except PersistenceError as e:
            logger.error(f"Failed to persist turn for conversation {plan.conversation_id}: {e.message}")
            await emit(StreamEvent.failed("Your response could not be saved"))
            return None

        title = None
        if plan.is_first_turn:
            title = await self._save_title(plan)

        if title:
            await emit(StreamEvent.title_set(title))
        await emit(StreamEvent.completed())
        return title

    async def _save_title(self, plan: TurnPlan) -> str | None:
        """Title a new conversation. The answer is already stored, so failures only log."""
        title = await self._make_title(plan.user_text)
        try:
            async with self.session_factory() as db:
                await ChatService(db).set_title(plan.conversation_id, title)
        except PersistenceError as e:
            logger.error(f"Failed to save title for conversation {plan.conversation_id}: {e.message}")
            return None
        return title

    async def _fail(
        self,
        plan: TurnPlan,
        user_id: UUID,
        progress: TurnProgress,
        failure: StreamFailure,
        emit: Emit,
    ) -> TurnOutcome:
        """Keep what was produced before a provider failure, then end the stream."""
        logger.error(
            f"Provider failure in conversation {plan.conversation_id}: "
            f"{failure.error_code}: {failure.message}"
        )
        await self._persist_partial(plan, user_id, progress)
        await emit(StreamEvent.failed(failure.message))
        return TurnOutcome(state=OrchestratorState.ERROR, segments=progress.segments, error=failure.message)

    async def _persist_partial(self, plan: TurnPlan, user_id: UUID, progress: TurnProgress) -> None:
        try:
            async with self.session_factory() as db:
                await ChatService(db).append_assistant_segments(plan.conversation_id, progress.segments)
                progress.persisted = True
                await QuotaService(db).record_turn(user_id)
        except PersistenceError as e:
            logger.error(f"Failed to persist partial turn for conversation {plan.conversation_id}: {e.message}")

    async def _make_title(self, user_text: str) -> str:
        try:
            return await asyncio.wait_for(
                self.title_summarizer.generate_title(user_text),
                timeout=settings.title_timeout + 1,
            )
        except TimeoutError:
            logger.warning("Title generation timed out, using fallback")
            return fallback_title(user_text)
