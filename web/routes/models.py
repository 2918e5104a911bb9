"""Models API routes — connection status and local model listing."""

import asyncio
from dataclasses import asdict
from flask import Blueprint, jsonify, current_app

from agent.capabilities import discover_models
from agent.exceptions import OllamaConnectionError
from agent.models import ConnectionStatus, OllamaClient

models_bp = Blueprint("models", __name__)


@models_bp.route("/status", methods=["GET"])
def status():
    """Classify reachability of the configured Ollama endpoint."""
    config = current_app.config["agent_config"]
    client = OllamaClient.from_config(config)

    loop = asyncio.new_event_loop()
    try:
        result = loop.run_until_complete(client.probe())
    finally:
        loop.close()
    return jsonify({"status": result.value, "endpoint": client.base_url})


@models_bp.route("/models", methods=["GET"])
def list_models():
    """List local models with their tool-support classification."""
    config = current_app.config["agent_config"]
    client = OllamaClient.from_config(config)

    loop = asyncio.new_event_loop()
    try:
        if loop.run_until_complete(client.probe()) != ConnectionStatus.CONNECTED:
            return jsonify({
                "error": "Cannot connect to Ollama",
                "models": [],
            }), 503

        models = loop.run_until_complete(discover_models(client))
    except OllamaConnectionError as e:
        return jsonify({"error": str(e), "models": []}), 503
    finally:
        loop.close()

    current_app.config["models"] = {m.name: m for m in models}
    return jsonify({"models": [asdict(m) for m in models]})
