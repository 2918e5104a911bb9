"""Chat stream decoder — turn NDJSON chat records into incremental output."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import AsyncIterable, Callable

from agent.response import ChatResult, ToolCall, generate_id

ContentCallback = Callable[[str], None]
StatusCallback = Callable[[str], None]


@dataclass
class StreamRecord:
    """One decoded /api/chat record, classified by the fields it carries."""
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    status: str | None = None
    done: bool = False

    @property
    def kinds(self) -> list[str]:
        kinds = []
        if self.status is not None:
            kinds.append("status")
        if self.content:
            kinds.append("content")
        if self.tool_calls:
            kinds.append("tool_call")
        if self.done:
            kinds.append("terminal")
        return kinds


@dataclass
class StreamAccumulator:
    """Content and tool calls collected during one pass."""
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)

    def result(self) -> ChatResult:
        return ChatResult(content=self.content, tool_calls=list(self.tool_calls) or None)


def parse_record(line: str) -> StreamRecord | None:
    """Parse one NDJSON line. Returns None when the line is not a usable record."""
    try:
        data = json.loads(line)
    except (ValueError, TypeError, RecursionError):
        return None
    if not isinstance(data, dict):
        return None

    record = StreamRecord(done=bool(data.get("done", False)))

    status = data.get("status")
    if status is not None:
        record.status = str(status)

    message = data.get("message")
    if isinstance(message, dict):
        content = message.get("content")
        if isinstance(content, str):
            record.content = content
        for raw in message.get("tool_calls") or []:
            call = _parse_tool_call(raw)
            if call is not None:
                record.tool_calls.append(call)

    return record


def _parse_tool_call(raw: object) -> ToolCall | None:
    if not isinstance(raw, dict):
        return None
    function = raw.get("function")
    if not isinstance(function, dict) or not function.get("name"):
        return None

    arguments = function.get("arguments", "")
    if not isinstance(arguments, str):
        arguments = json.dumps(arguments)

    call_id = raw.get("id") or f"call_{generate_id()[:12]}"
    return ToolCall(id=str(call_id), name=str(function["name"]), arguments=arguments)


class ChatStreamDecoder:
    """Consumes the lines of one chat pass and reports progress through callbacks."""

    def __init__(self, logger: logging.Logger | None = None):
        self._logger = logger or logging.getLogger(__name__)

    async def decode(
        self,
        lines: AsyncIterable[str],
        on_content: ContentCallback | None = None,
        on_status: StatusCallback | None = None,
    ) -> ChatResult:
        """
        Feed every record to the accumulator until the terminal record.
        Records after `done` are never read.
        """
        acc = StreamAccumulator()
        iterator = lines.__aiter__()
        try:
            async for line in iterator:
                record = parse_record(line)
                if record is None:
                    self._logger.debug("Skipping malformed stream line: %r", line[:200])
                    continue
                if self._apply(acc, record, on_content, on_status):
                    break
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()
        return acc.result()

    @staticmethod
    def _apply(
        acc: StreamAccumulator,
        record: StreamRecord,
        on_content: ContentCallback | None,
        on_status: StatusCallback | None,
    ) -> bool:
        if record.status is not None and on_status:
            on_status(record.status)
        if record.content:
            acc.content += record.content
            if on_content:
                on_content(record.content)
        if record.tool_calls:
            acc.tool_calls.extend(record.tool_calls)
        return record.done
