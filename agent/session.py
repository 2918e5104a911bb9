"""ChatSession — one conversation and the run that currently owns it."""

from __future__ import annotations

import threading
import time
import uuid

from agent.cancellation import CancellationToken
from agent.exceptions import SessionBusyError
from agent.response import Message


class ChatSession:
    """
    A conversation plus an exclusive-ownership slot for agent runs.

    Only the run holding the session may write to `messages`. A run whose
    token was cancelled loses that right immediately, so a new run can
    claim the session while the old one is still tearing down; writes
    from the stale run are dropped.
    """

    def __init__(self, session_id: str | None = None, model: str = "", title: str = "New Conversation"):
        self.id: str = session_id or uuid.uuid4().hex[:12]
        self.title = title
        self.model = model
        self.messages: list[Message] = []
        self.last_updated = time.time()
        self.title_requested = False
        self._owner: CancellationToken | None = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        owner = self._owner
        return owner is not None and not owner.cancelled

    def claim(self, token: CancellationToken) -> None:
        with self._lock:
            if self._owner is not None and self._owner is not token and not self._owner.cancelled:
                raise SessionBusyError(f"Session {self.id} already has an active run")
            self._owner = token

    def release(self, token: CancellationToken) -> None:
        with self._lock:
            if self._owner is token:
                self._owner = None

    def superseded(self, token: CancellationToken) -> bool:
        """Whether another run has claimed the session since `token` did."""
        owner = self._owner
        return owner is not None and owner is not token

    def owns(self, token: CancellationToken) -> bool:
        return self._owner is token and not token.cancelled

    def append(self, token: CancellationToken, message: Message) -> bool:
        """Append `message` if `token` owns the session. Returns whether it was written."""
        with self._lock:
            if not self.owns(token):
                return False
            self.messages.append(message)
            self.last_updated = time.time()
            return True

    def touch(self) -> None:
        self.last_updated = time.time()

    def set_title(self, title: str) -> None:
        self.title = title
        self.touch()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "model": self.model,
            "last_updated": self.last_updated,
            "is_running": self.is_running,
            "messages": [
                {
                    "id": m.id,
                    "role": m.role,
                    "content": m.content,
                    "timestamp": m.timestamp,
                    "tool_calls": [tc.to_wire() for tc in m.tool_calls] if m.tool_calls else None,
                    "tool_call_id": m.tool_call_id,
                    "name": m.name,
                }
                for m in self.messages
            ],
        }
