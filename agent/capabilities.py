"""Tool-support classification for local models."""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod

from agent.models import ModelInfo, OllamaClient

# Families whose chat templates are known to render a tools block.
TOOL_FAMILIES = (
    "llama3.1", "llama3.2", "llama3.3", "qwen2", "qwen2.5", "qwen3",
    "mistral", "mixtral", "command-r", "firefunction", "hermes", "granite",
)

_TEMPLATE_MARKERS = (
    re.compile(r"\.Tools\b"),
    re.compile(r"<tool_call>"),
    re.compile(r"\[TOOL_CALLS\]"),
    re.compile(r"\.ToolCalls\b"),
)


class ToolSupportProbe(ABC):
    """Decides whether a model accepts a `tools` array."""

    @abstractmethod
    def supports_tools(self, model: ModelInfo, show: dict) -> bool:
        """`show` is the /api/show payload for `model`."""
        ...


class DeclaredCapabilityProbe(ToolSupportProbe):
    """Trust the `capabilities` list newer Ollama servers report."""

    def supports_tools(self, model: ModelInfo, show: dict) -> bool:
        capabilities = show.get("capabilities") or []
        return "tools" in capabilities


class TemplateToolProbe(ToolSupportProbe):
    """Heuristic: look for tool markers in the prompt template, then the family name."""

    def supports_tools(self, model: ModelInfo, show: dict) -> bool:
        template = show.get("template") or ""
        if any(marker.search(template) for marker in _TEMPLATE_MARKERS):
            return True

        details = show.get("details") or {}
        families = [model.family, details.get("family", "")] + list(details.get("families") or [])
        name = model.name.split(":", 1)[0].lower()
        for family in filter(None, families + [name]):
            family = family.lower()
            if any(family.startswith(known) for known in TOOL_FAMILIES):
                return True
        return False


class ChainedProbe(ToolSupportProbe):
    """Declared capabilities when present, template heuristic otherwise."""

    def __init__(self, declared: ToolSupportProbe | None = None, fallback: ToolSupportProbe | None = None):
        self.declared = declared or DeclaredCapabilityProbe()
        self.fallback = fallback or TemplateToolProbe()

    def supports_tools(self, model: ModelInfo, show: dict) -> bool:
        if "capabilities" in show:
            return self.declared.supports_tools(model, show)
        return self.fallback.supports_tools(model, show)


async def discover_models(
    client: OllamaClient,
    probe: ToolSupportProbe | None = None,
    logger: logging.Logger | None = None,
) -> list[ModelInfo]:
    """
    List models and classify tool support for each one.

    Listing failures propagate as OllamaConnectionError. Classification is
    best effort: any failure while enriching a model leaves has_tools False.
    """
    probe = probe or ChainedProbe()
    logger = logger or logging.getLogger(__name__)

    models = [ModelInfo.from_tags(raw) for raw in await client.list_models()]
    for model in models:
        try:
            show = await client.show_model(model.name)
            model.has_tools = bool(probe.supports_tools(model, show or {}))
        except Exception as exc:
            model.has_tools = False
            logger.warning("Tool support probe failed for %s: %s", model.name, exc)
    return models
