"""Utility-model capabilities: conversation titles and prompt rewriting."""

from __future__ import annotations

import asyncio
from typing import Iterable

import aiohttp

from agent.exceptions import OllamaConnectionError, OllamaModelError
from agent.models import OllamaClient
from agent.response import Message

_FAILURES = (OllamaConnectionError, OllamaModelError, aiohttp.ClientError, asyncio.TimeoutError)

TITLE_PROMPT = (
    "Generate a short, snappy title (max 5 words) for this conversation. "
    "Reply with the title only.\n\n{transcript}"
)

OPTIMIZE_PROMPT = (
    "You are a prompt engineer. Rewrite the following user prompt to be more descriptive, "
    "clear, and effective for a large language model. Keep the original intent but improve "
    "the structure. Only return the optimized prompt, no conversation.\n\n"
    'User Prompt: "{prompt}"'
)


async def generate_title(client: OllamaClient, model: str, messages: Iterable[Message]) -> str:
    """Short title from the first three messages. Falls back instead of raising."""
    head = [m for m in messages if m.role in ("user", "assistant") and m.content][:3]
    if not head:
        return "New Chat"

    transcript = "\n".join(f"{m.role}: {m.content}" for m in head)
    try:
        text = await client.generate(model, TITLE_PROMPT.format(transcript=transcript), temperature=0.5)
    except _FAILURES:
        return "Chat Session"

    title = text.strip().splitlines()[0].strip().strip('"').strip() if text.strip() else ""
    return title[:60] or "Chat Session"


async def optimize_prompt(client: OllamaClient, model: str, prompt: str) -> str:
    """Rewrite `prompt` for clarity. Returns the original prompt on any failure."""
    if not prompt.strip():
        return prompt
    try:
        text = await client.generate(model, OPTIMIZE_PROMPT.format(prompt=prompt), temperature=0.7)
    except _FAILURES:
        return prompt
    return text.strip() or prompt
