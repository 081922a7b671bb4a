"""
End-to-end tests for complete chat workflows.

These tests drive the API through ChatStreamClient the way a UI would and
check both the event sequence the user sees and what ends up stored.
"""

import httpx
import pytest
import pytest_asyncio
from conftest import failing_turn, text_turn, tool_turn
from httpx import ASGITransport, AsyncClient

from app.domains.chat.stream_client import ChatStreamClient
from app.main import app


class DroppedDoneTransport(httpx.AsyncBaseTransport):
    """Delivers the stream body without its final ``done`` line."""

    def __init__(self, inner: httpx.AsyncBaseTransport):
        self.inner = inner

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        response = await self.inner.handle_async_request(request)
        if request.url.path != "/api/chat/stream":
            return response
        body = (await response.aread()).decode()
        kept = [line for line in body.splitlines(keepends=True) if '"done"' not in line]
        return httpx.Response(
            response.status_code,
            headers={"content-type": response.headers.get("content-type", "application/x-ndjson")},
            content="".join(kept).encode(),
        )


@pytest_asyncio.fixture
async def dropping_client(authenticated_client):
    """Client sharing the authenticated overrides whose streams lose ``done``."""
    transport = DroppedDoneTransport(ASGITransport(app=app))
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def _conversation(client):
    response = await client.get(
        f"/api/chat/conversations/{(await client.post('/api/chat/conversations')).json()['data']['id']}"
    )
    return response.json()["data"]


class TestChatWorkflows:
    """End-to-end chat scenarios."""

    @pytest.mark.asyncio
    async def test_weather_question_with_search(
        self, authenticated_client: AsyncClient, fake_bridge, fake_search, fake_titles
    ):
        """A question needing fresh data: search, answer, title, done."""
        conversation = await _conversation(authenticated_client)
        fake_bridge.turns = [
            tool_turn("Accra weather today"),
            text_turn("It is 31°C and partly cloudy in Accra."),
        ]

        result = await ChatStreamClient(authenticated_client).send(
            conversation["id"], "What's the weather in Accra today?"
        )

        assert result.completed is True
        assert result.error is None
        shapes = [e.model_dump(by_alias=True, exclude_none=True) for e in result.events]
        assert shapes == [
            {"searching": True, "query": "Accra weather today"},
            {"searching": False, "newMessage": True},
            {"text": "It is 31°C and partly cloudy in Accra."},
            {"title": "Weather in Accra"},
            {"done": True},
        ]
        assert result.text == "It is 31°C and partly cloudy in Accra."
        assert fake_search.queries == ["Accra weather today"]
        assert fake_titles.inputs == ["What's the weather in Accra today?"]

        # The second model turn sees the tool call and its result
        second_history = fake_bridge.calls[1]["messages"]
        assert len(second_history) == 3

        stored = (await authenticated_client.get(f"/api/chat/conversations/{conversation['id']}")).json()["data"]
        assert stored["title"] == "Weather in Accra"
        assert [(m["role"], m["content"]) for m in stored["messages"]] == [
            ("user", "What's the weather in Accra today?"),
            ("assistant", "It is 31°C and partly cloudy in Accra."),
        ]

    @pytest.mark.asyncio
    async def test_follow_up_keeps_title(self, authenticated_client: AsyncClient, fake_bridge, fake_titles):
        conversation = await _conversation(authenticated_client)
        stream = ChatStreamClient(authenticated_client)
        fake_bridge.turns = [text_turn("Hello!"), text_turn("Sure, here you go.")]

        first = await stream.send(conversation["id"], "Hi")
        second = await stream.send(conversation["id"], "Tell me more")

        assert first.title == "Weather in Accra"
        assert second.title is None
        assert fake_titles.inputs == ["Hi"]
        assert len(fake_bridge.calls[1]["messages"]) == 3

    @pytest.mark.asyncio
    async def test_daily_limit_reached(
        self, authenticated_client: AsyncClient, fake_bridge, test_db, test_user, today_utc
    ):
        conversation = await _conversation(authenticated_client)
        test_user.messages_used_today = 10
        test_user.last_reset_date = today_utc
        await test_db.commit()

        result = await ChatStreamClient(authenticated_client).send(conversation["id"], "Hello")

        assert result.completed is False
        assert "daily limit" in result.error
        assert result.recovered is False
        assert fake_bridge.calls == []

    @pytest.mark.asyncio
    async def test_provider_failure_keeps_partial_answer(self, authenticated_client: AsyncClient, fake_bridge):
        conversation = await _conversation(authenticated_client)
        fake_bridge.turns = [failing_turn("Accra is ")]

        result = await ChatStreamClient(authenticated_client).send(conversation["id"], "Tell me about Accra")

        assert result.error == "The model provider is temporarily unavailable"
        assert result.text == "Accra is "
        stored = (await authenticated_client.get(f"/api/chat/conversations/{conversation['id']}")).json()["data"]
        assert [m["content"] for m in stored["messages"]] == ["Tell me about Accra", "Accra is "]

    @pytest.mark.asyncio
    async def test_edit_then_regenerate(self, authenticated_client: AsyncClient, fake_bridge):
        conversation = await _conversation(authenticated_client)
        stream = ChatStreamClient(authenticated_client)
        fake_bridge.turns = [
            text_turn("Kumasi is inland."),
            text_turn("Cape Coast has the castle."),
            text_turn("Cape Coast Castle dates from the 1650s."),
        ]

        await stream.send(conversation["id"], "Tell me about Kumasi")
        await stream.send(conversation["id"], "Tell me about Cape Coast", edit_from_message_index=0)
        regenerated = await stream.send(conversation["id"], regenerate_from_index=0)

        assert regenerated.completed is True
        stored = (await authenticated_client.get(f"/api/chat/conversations/{conversation['id']}")).json()["data"]
        assert [m["content"] for m in stored["messages"]] == [
            "Tell me about Cape Coast",
            "Cape Coast Castle dates from the 1650s.",
        ]

    @pytest.mark.asyncio
    async def test_stream_without_done_recovers_from_store(
        self, authenticated_client: AsyncClient, dropping_client: AsyncClient, fake_bridge
    ):
        """When the stream ends early the stored conversation wins."""
        conversation = await _conversation(authenticated_client)
        fake_bridge.turns = [text_turn("Stored ", "answer.")]

        result = await ChatStreamClient(dropping_client).send(conversation["id"], "Question")

        assert result.completed is False
        assert result.recovered is True
        assert [m["content"] for m in result.messages] == ["Question", "Stored answer."]
        assert result.title == "Weather in Accra"
