"""Flask application factory for the Ollama agent loop web API."""

import asyncio
import queue
import threading
from flask import Flask
from flask_cors import CORS

from agent.agent import AgentLoop, LoopObserver, LoopState
from agent.cancellation import CancellationToken
from agent.config import AgentConfig
from agent.exceptions import SessionBusyError
from agent.response import Message, ToolCall
from agent.session import ChatSession


def create_app(config: AgentConfig) -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)
    CORS(app)

    # Shared state
    app.config["agent_config"] = config
    app.config["sessions"] = {}  # session_id -> SessionState
    app.config["models"] = {}  # model name -> ModelInfo, filled by /api/models

    from web.routes.chat import chat_bp
    from web.routes.models import models_bp

    app.register_blueprint(chat_bp, url_prefix="/api")
    app.register_blueprint(models_bp, url_prefix="/api")

    return app


def _message_event(kind: str, message: Message) -> dict:
    return {
        "type": kind,
        "id": message.id,
        "role": message.role,
        "content": message.content,
        "name": message.name,
        "tool_call_id": message.tool_call_id,
        "tool_calls": [tc.to_wire() for tc in message.tool_calls] if message.tool_calls else None,
    }


class SessionState(LoopObserver):
    """Holds one chat session and relays its run events to an SSE queue."""

    def __init__(self, config: AgentConfig, session_id: str | None = None):
        self.config = config
        self.session = ChatSession(session_id, model=config.chat_model.model_name)
        self.stream_queue: queue.Queue = queue.Queue()
        self.token: CancellationToken | None = None

    @property
    def is_running(self) -> bool:
        return self.session.is_running

    # ── LoopObserver ─────────────────────────────────────────────────

    def on_message(self, message: Message) -> None:
        self.stream_queue.put(_message_event("message", message))

    def on_message_update(self, message: Message) -> None:
        self.stream_queue.put(_message_event("update", message))

    def on_status(self, text: str) -> None:
        self.stream_queue.put({"type": "status", "content": text})

    def on_server_status(self, text: str | None) -> None:
        self.stream_queue.put({"type": "server_status", "content": text})

    def on_tool_start(self, call: ToolCall) -> None:
        self.stream_queue.put({"type": "tool", "name": call.name, "arguments": call.arguments})

    def on_title(self, title: str) -> None:
        self.stream_queue.put({"type": "title", "content": title})

    def on_finish(self, state: LoopState) -> None:
        self.stream_queue.put({
            "type": "done",
            "phase": state.phase.value,
            "passes": state.pass_count,
            "content": state.final_content,
            "error": state.error,
        })

    # ── Runs ─────────────────────────────────────────────────────────

    def send_message(self, message: str, supports_tools: bool = False) -> CancellationToken:
        """Claim the session and run the agent loop in a background thread."""
        token = CancellationToken()
        self.session.claim(token)
        self.token = token

        def run_in_thread():
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
            agent = AgentLoop(self.config, observer=self)
            try:
                loop.run_until_complete(
                    agent.run(self.session, message, token=token, supports_tools=supports_tools)
                )
                loop.run_until_complete(agent.wait_background())
            except SessionBusyError as e:
                self.stream_queue.put({"type": "error", "content": str(e)})
            finally:
                self.session.release(token)
                loop.close()

        thread = threading.Thread(target=run_in_thread, daemon=True)
        thread.start()
        return token

    def stop(self) -> bool:
        """Cancel the active run, if any."""
        if self.token is None or not self.is_running:
            return False
        self.token.cancel()
        return True
