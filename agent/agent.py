"""AgentLoop — alternates streamed model passes with tool execution."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable

from agent.cancellation import CancellationToken
from agent.config import AgentConfig
from agent.exceptions import ChatCancelled, ChatError
from agent.log import build_file_logger
from agent.models import OllamaClient
from agent.response import Message, ToolCall
from agent.session import ChatSession
from agent.utility import generate_title
from tools.tool_registry import ToolRegistry

TitleGenerator = Callable[[list[Message]], Awaitable[str]]


class LoopPhase(str, Enum):
    IDLE = "idle"
    DISPATCHING = "dispatching"
    AWAITING_STREAM = "awaiting_stream"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"
    LOOP_EXHAUSTED = "loop_exhausted"


TERMINAL_PHASES = frozenset({
    LoopPhase.DONE, LoopPhase.CANCELLED, LoopPhase.FAILED, LoopPhase.LOOP_EXHAUSTED,
})


@dataclass
class LoopState:
    """Per-run bookkeeping, discarded once the run is terminal."""
    pass_cap: int
    token: CancellationToken = field(default_factory=CancellationToken)
    pass_count: int = 0
    phase: LoopPhase = LoopPhase.IDLE
    server_status: str | None = None
    active_tool: ToolCall | None = None
    final_content: str = ""
    error: str | None = None

    @property
    def finished(self) -> bool:
        return self.phase in TERMINAL_PHASES


class LoopObserver:
    """Receives the visible side effects of a run. Override what you need."""

    def on_message(self, message: Message) -> None:
        """A message was appended to the session."""

    def on_message_update(self, message: Message) -> None:
        """An existing message (the streaming placeholder) changed in place."""

    def on_status(self, text: str) -> None:
        pass

    def on_server_status(self, text: str | None) -> None:
        pass

    def on_tool_start(self, call: ToolCall) -> None:
        pass

    def on_title(self, title: str) -> None:
        pass

    def on_finish(self, state: LoopState) -> None:
        pass


class AgentLoop:
    """
    Drives one exchange for a session:
    pass -> (tools -> pass)* -> Done | Cancelled | Failed | LoopExhausted.
    """

    def __init__(
        self,
        config: AgentConfig,
        client: OllamaClient | None = None,
        registry: ToolRegistry | None = None,
        observer: LoopObserver | None = None,
        title_generator: TitleGenerator | None = None,
        logger: logging.Logger | None = None,
    ):
        self.config = config
        self._logger = logger or build_file_logger("agent_loop", config.log_dir, "agent_loop.log")
        self.client = client or OllamaClient.from_config(config, logger=self._logger)
        if registry is None:
            registry = ToolRegistry(config, logger=self._logger).discover_tools()
        self.registry = registry
        self.observer = observer or LoopObserver()
        self._title_generator = title_generator or self._default_title_generator
        self._background: set[asyncio.Task] = set()

    async def run(
        self,
        session: ChatSession,
        text: str,
        token: CancellationToken | None = None,
        model: str | None = None,
        supports_tools: bool = False,
        system_instruction: str | None = None,
    ) -> LoopState:
        """
        Append the user's message and loop until a terminal phase.
        Raises SessionBusyError if another live run owns the session.
        """
        token = token or CancellationToken()
        session.claim(token)
        state = LoopState(pass_cap=self.config.max_passes, token=token)
        model = model or session.model or self.config.chat_model.model_name
        system = system_instruction or self.config.system_instruction

        try:
            user_message = Message(role="user", content=text)
            if not self._emit(session, state, user_message):
                return state
            conversation = [m for m in session.messages if self._for_model(m)]
            tools = self.registry.schemas() if supports_tools else None
            await self._drive(session, state, conversation, model, system, tools)
        except asyncio.CancelledError:
            state.phase = LoopPhase.CANCELLED
            raise
        finally:
            superseded = session.superseded(token)
            session.release(token)
            state.active_tool = None
            self._logger.info(
                "Run on session %s ended %s after %d pass(es)%s",
                session.id, state.phase.value, state.pass_count,
                " (superseded)" if superseded else "",
            )
            # The observer belongs to whichever run holds the session now.
            if not superseded:
                self.observer.on_status("Idle")
                self.observer.on_finish(state)
        return state

    async def _drive(
        self,
        session: ChatSession,
        state: LoopState,
        conversation: list[Message],
        model: str,
        system: str,
        tools: list[dict] | None,
    ) -> None:
        token = state.token
        while state.pass_count < state.pass_cap:
            if token.cancelled:
                state.phase = LoopPhase.CANCELLED
                return

            state.pass_count += 1
            state.phase = LoopPhase.DISPATCHING
            self.observer.on_status(f"Thinking... (Pass {state.pass_count})")
            placeholder = Message(role="assistant", content="")
            if not self._emit(session, state, placeholder):
                return

            state.phase = LoopPhase.AWAITING_STREAM
            self._logger.info("Pass %d/%d on session %s", state.pass_count, state.pass_cap, session.id)
            try:
                result = await self.client.chat(
                    model,
                    [{"role": "system", "content": system}] + [m.to_wire() for m in conversation],
                    on_content=lambda delta: self._on_content(session, state, placeholder, delta),
                    on_status=lambda status: self._on_server_status(state, status),
                    tools=tools,
                    options=self.config.chat_model.options(),
                    keep_alive=self.config.chat_model.keep_alive,
                    token=token,
                )
            except ChatCancelled:
                state.phase = LoopPhase.CANCELLED
                return
            except ChatError as e:
                if token.cancelled:
                    state.phase = LoopPhase.CANCELLED
                    return
                self._logger.warning("Pass %d failed: %s", state.pass_count, e)
                placeholder.content = f"Error: {e}"
                self.observer.on_message_update(placeholder)
                state.error = str(e)
                state.phase = LoopPhase.FAILED
                return

            if token.cancelled:
                state.phase = LoopPhase.CANCELLED
                return

            if not result.tool_calls:
                state.final_content = result.content
                state.phase = LoopPhase.DONE
                self._maybe_request_title(session)
                return

            placeholder.tool_calls = result.tool_calls
            self.observer.on_message_update(placeholder)

            state.phase = LoopPhase.EXECUTING_TOOLS
            tool_messages = await self._execute_tools(session, state, result.tool_calls)
            if tool_messages is None:
                state.phase = LoopPhase.CANCELLED
                return

            state.active_tool = None
            state.final_content = result.content
            conversation.append(Message(
                role="assistant",
                content=result.content,
                tool_calls=result.tool_calls,
                id=placeholder.id,
            ))
            conversation.extend(tool_messages)

        state.phase = LoopPhase.LOOP_EXHAUSTED

    async def _execute_tools(
        self,
        session: ChatSession,
        state: LoopState,
        calls: list[ToolCall],
    ) -> list[Message] | None:
        """Run calls in model order. Returns None if the run was cancelled."""
        token = state.token
        results: list[Message] = []
        for call in calls:
            if token.cancelled:
                return None
            state.active_tool = call
            self.observer.on_status(f"Running {call.name}...")
            self.observer.on_tool_start(call)
            try:
                response = await token.run(self.registry.dispatch(call))
            except ChatCancelled:
                return None

            if token.cancelled:
                return None
            message = Message.tool_result(call, response.message)
            if not self._emit(session, state, message):
                return None
            results.append(message)
        return results

    def _emit(self, session: ChatSession, state: LoopState, message: Message) -> bool:
        """Append to the session and notify. False means the run lost ownership."""
        if not session.append(state.token, message):
            state.phase = LoopPhase.CANCELLED
            return False
        self.observer.on_message(message)
        return True

    def _on_content(self, session: ChatSession, state: LoopState, placeholder: Message, delta: str) -> None:
        if state.token.cancelled:
            return
        if state.server_status is not None:
            state.server_status = None
            self.observer.on_server_status(None)
        placeholder.content += delta
        session.touch()
        self.observer.on_message_update(placeholder)

    def _on_server_status(self, state: LoopState, status: str) -> None:
        if state.token.cancelled:
            return
        state.server_status = status
        self.observer.on_server_status(status)

    @staticmethod
    def _for_model(message: Message) -> bool:
        # Empty placeholders left by cancelled or failed runs carry nothing.
        return not (message.role == "assistant" and not message.content and not message.tool_calls)

    # ── Title generation ─────────────────────────────────────────────

    def _maybe_request_title(self, session: ChatSession) -> None:
        if session.title_requested or len(session.messages) > self.config.title_history_limit:
            return
        session.title_requested = True
        task = asyncio.create_task(self._generate_title(session, list(session.messages)))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _generate_title(self, session: ChatSession, messages: list[Message]) -> None:
        try:
            title = await self._title_generator(messages)
        except Exception as e:
            self._logger.warning("Title generation failed for session %s: %s", session.id, e)
            return
        if title:
            session.set_title(title)
            self.observer.on_title(title)

    async def _default_title_generator(self, messages: list[Message]) -> str:
        client = OllamaClient.from_config(
            self.config, base_url=self.config.utility_model.base_url, logger=self._logger
        )
        return await generate_title(client, self.config.utility_model.model_name, messages)

    async def wait_background(self) -> None:
        """Let detached work (title generation) finish. For hosts that close their event loop."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
