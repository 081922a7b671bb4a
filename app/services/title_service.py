"""Conversation title summarizer."""

import asyncio
import html
import logging
import re

import anthropic

from app.core.config import settings


logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]*>")
_MARKDOWN_RE = re.compile(r"[*_`#~>\[\]|]")
_QUOTES_RE = re.compile(r"[\"'\u2018\u2019\u201c\u201d\u00ab\u00bb`]")
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f-\x9f\u200b-\u200f\u2028-\u202e\u2060-\u2064\ufeff]")
_WHITESPACE_RE = re.compile(r"\s+")
_TITLE_PREFIX_RE = re.compile(r"^(title)\s*:\s*", re.IGNORECASE)


def sanitize_title(raw: str, max_length: int | None = None) -> str:
    """Make model output safe to store and render as plain UI text."""
    max_length = max_length or settings.title_max_length
    text = html.unescape(raw or "")
    text = _TAG_RE.sub(" ", text)
    text = _CONTROL_RE.sub(" ", text)
    text = _MARKDOWN_RE.sub("", text)
    text = _QUOTES_RE.sub("", text)
    text = _WHITESPACE_RE.sub(" ", text).strip()
    text = _TITLE_PREFIX_RE.sub("", text).strip(" .:-")
    if len(text) > max_length:
        text = text[:max_length].rstrip() + "..."
    return text


def fallback_title(user_input: str, length: int | None = None) -> str:
    """Truncate the user's raw input into a title."""
    length = length or settings.fallback_title_length
    text = _WHITESPACE_RE.sub(" ", _CONTROL_RE.sub(" ", user_input or "")).strip()
    if not text:
        return settings.default_chat_title
    return text[:length].rstrip() + "..." if len(text) > length else text


class TitleSummarizer:
    """Produces a short conversation title with a small, fast model."""

    def __init__(self, client: anthropic.AsyncAnthropic | None = None, model: str | None = None):
        if client is None and settings.anthropic_api_key:
            client = anthropic.AsyncAnthropic(
                api_key=settings.anthropic_api_key,
                timeout=settings.title_timeout,
                max_retries=0,
            )
        self.client = client
        self.model = model or settings.title_model

    async def summarize(self, first_message: str) -> str:
        """Ask the model for a title; raises on any provider problem."""
        if self.client is None:
            raise RuntimeError("Title model not configured")

        response = await asyncio.wait_for(
            self.client.messages.create(
                model=self.model,
                max_tokens=settings.title_max_tokens,
                messages=[
                    {
                        "role": "user",
                        "content": (
                            "Generate a short, descriptive title (3-6 words) for a conversation "
                            f'that starts with: "{first_message[:2000]}". '
                            "Respond with ONLY the title, no quotes or explanation."
                        ),
                    }
                ],
            ),
            timeout=settings.title_timeout,
        )
        text = "".join(block.text for block in response.content if block.type == "text")
        return sanitize_title(text)

    async def generate_title(self, first_message: str) -> str:
        """Best-effort title: model output when usable, truncated input otherwise."""
        try:
            title = await self.summarize(first_message)
        except (anthropic.APIError, TimeoutError, RuntimeError) as e:
            logger.warning(f"Title generation failed, using fallback: {str(e)}")
            return fallback_title(first_message)

        if not title:
            logger.warning("Title model returned nothing usable, using fallback")
            return fallback_title(first_message)
        return title
