"""Web search tool backed by the Tavily search API."""

import json
import logging
from typing import Any

import httpx
from pydantic import BaseModel, Field
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.core.config import settings


logger = logging.getLogger(__name__)

WEB_SEARCH_TOOL_NAME = "web_search"

WEB_SEARCH_TOOL: dict[str, Any] = {
    "name": WEB_SEARCH_TOOL_NAME,
    "description": (
        "Search the web for current information: news, prices, weather, recent "
        "events, or anything that may have changed after training. Returns the top "
        "results with title, URL and an extract."
    ),
    "input_schema": {
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "The search query"},
        },
        "required": ["query"],
    },
}


class SearchResult(BaseModel):
    title: str = ""
    url: str = ""
    content: str = ""


class SearchResponse(BaseModel):
    query: str
    results: list[SearchResult] = Field(default_factory=list)


def parse_tool_input(raw_arguments: str) -> dict[str, Any]:
    """Parse the accumulated argument buffer of a tool call.

    Malformed or non-object JSON yields an empty input instead of an error.
    """
    if not raw_arguments or not raw_arguments.strip():
        return {}
    try:
        parsed = json.loads(raw_arguments)
    except json.JSONDecodeError:
        logger.warning(f"Malformed tool arguments, using empty input: {raw_arguments[:200]!r}")
        return {}
    return parsed if isinstance(parsed, dict) else {}


def query_from_input(tool_input: dict[str, Any]) -> str:
    query = tool_input.get("query")
    return query.strip() if isinstance(query, str) else ""


def format_search_results(response: SearchResponse) -> str:
    """Format search results as the tool-result text fed back to the model."""
    if not response.results:
        return f'No search results found for: "{response.query}"'

    lines = [f'Web search results for: "{response.query}"', ""]
    for index, result in enumerate(response.results, start=1):
        lines.append(f"[{index}] {result.title}")
        lines.append(f"URL: {result.url}")
        lines.append(result.content)
        lines.append("")
    return "\n".join(lines)


def format_search_failure(query: str) -> str:
    return (
        f'Web search failed for: "{query}". The search service is unavailable right '
        "now; answer from your own knowledge and say that live results could not be fetched."
    )


class WebSearchService:
    """Executes the ``web_search`` tool."""

    definition = WEB_SEARCH_TOOL

    def __init__(
        self,
        api_key: str | None = None,
        api_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the search service.

        Args:
            api_key: Tavily API key; read from settings when omitted.
            api_url: Search endpoint override.
            transport: Optional httpx transport (used to stub the network).
        """
        self.api_key = api_key if api_key is not None else settings.tavily_api_key
        self.api_url = api_url or str(settings.tavily_api_url)
        self.transport = transport

    async def execute(self, query: str) -> str:
        """Run a search and return provider-ready result text.

        Never raises: network and provider failures become a result block
        stating that the search failed, so the turn can continue.
        """
        query = (query or "").strip()
        if not query:
            return format_search_results(SearchResponse(query=query))

        try:
            response = await self.search(query)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Web search failed for {query!r}: {str(e)}")
            return format_search_failure(query)

        logger.info(f"Web search for {query!r} returned {len(response.results)} results")
        return format_search_results(response)

    async def search(self, query: str) -> SearchResponse:
        """Query Tavily. A missing API key yields an empty result set."""
        if not self.api_key:
            logger.error("TAVILY_API_KEY not configured")
            return SearchResponse(query=query)

        data = await self._post_search(query)
        results = [
            SearchResult(
                title=item.get("title") or "",
                url=item.get("url") or "",
                content=item.get("content") or "",
            )
            for item in data.get("results") or []
            if isinstance(item, dict)
        ]
        return SearchResponse(query=query, results=results)

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(settings.search_max_attempts),
        wait=wait_exponential(multiplier=0.2, max=2),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _post_search(self, query: str) -> dict[str, Any]:
        async with httpx.AsyncClient(
            transport=self.transport, timeout=settings.search_timeout
        ) as client:
            response = await client.post(
                self.api_url,
                json={
                    "api_key": self.api_key,
                    "query": query,
                    "search_depth": "basic",
                    "include_answer": False,
                    "include_raw_content": False,
                    "max_results": settings.search_max_results,
                },
            )
            response.raise_for_status()
            data = response.json()
        if not isinstance(data, dict):
            raise ValueError("Unexpected search response payload")
        return data
