"""Chat API routes — send messages, stream run events via SSE, stop runs."""

import asyncio
import json
import queue
from flask import Blueprint, request, jsonify, Response, current_app

from agent.exceptions import SessionBusyError
from agent.models import OllamaClient
from agent.utility import optimize_prompt
from web.app import SessionState

chat_bp = Blueprint("chat", __name__)


@chat_bp.route("/chat/send", methods=["POST"])
def send_message():
    """Send a user message and start an agent run."""
    data = request.get_json(silent=True) or {}
    message = (data.get("message") or "").strip()
    session_id = data.get("session_id")

    if not message:
        return jsonify({"error": "No message provided"}), 400

    config = current_app.config["agent_config"]
    sessions = current_app.config["sessions"]

    session = sessions.get(session_id) if session_id else None
    if session is None:
        session = SessionState(config, session_id=session_id)
        sessions[session.session.id] = session

    model_name = (data.get("model") or "").strip()
    if model_name:
        session.session.model = model_name
    model = current_app.config["models"].get(session.session.model)
    supports_tools = bool(model and model.has_tools)

    try:
        session.send_message(message, supports_tools=supports_tools)
    except SessionBusyError:
        return jsonify({"error": "Agent is already processing"}), 409

    return jsonify({"session_id": session.session.id, "status": "processing"})


@chat_bp.route("/chat/stream/<session_id>")
def stream_response(session_id):
    """SSE endpoint — streams run events in real time."""
    sessions = current_app.config["sessions"]
    session = sessions.get(session_id)

    if session is None:
        return jsonify({"error": "Session not found"}), 404

    def generate():
        while True:
            try:
                event = session.stream_queue.get(timeout=30)
            except queue.Empty:
                yield f"data: {json.dumps({'type': 'keepalive'})}\n\n"
                if not session.is_running:
                    break
                continue
            yield f"data: {json.dumps(event)}\n\n"
            if event.get("type") in ("done", "error"):
                break

    return Response(
        generate(),
        mimetype="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )


@chat_bp.route("/chat/stop/<session_id>", methods=["POST"])
def stop_run(session_id):
    """Cancel the session's active run."""
    session = current_app.config["sessions"].get(session_id)
    if session is None:
        return jsonify({"error": "Session not found"}), 404
    stopped = session.stop()
    return jsonify({"status": "stopping" if stopped else "idle"})


@chat_bp.route("/chat/history/<session_id>")
def get_history(session_id):
    """Get conversation history for a session."""
    session = current_app.config["sessions"].get(session_id)
    if session is None:
        return jsonify({"error": "Session not found"}), 404
    return jsonify(session.session.to_dict())


@chat_bp.route("/optimize", methods=["POST"])
def optimize():
    """Rewrite a prompt with the utility model."""
    data = request.get_json(silent=True) or {}
    prompt = data.get("prompt") or ""
    if not prompt.strip():
        return jsonify({"error": "prompt is required"}), 400

    config = current_app.config["agent_config"]
    client = OllamaClient.from_config(config, base_url=config.utility_model.base_url)
    optimized = _run_async(optimize_prompt(client, config.utility_model.model_name, prompt))
    return jsonify({"prompt": optimized})


def _run_async(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()
