"""Normalisation of model-supplied tool arguments."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field

_FENCE = re.compile(r"```(?:json)?")
_BARE_KEY = re.compile(r"([{,])\s*([A-Za-z0-9_]+)\s*:")


@dataclass
class ParsedArguments:
    """Arguments ready for a tool call and how they were obtained.

    strategy is one of "object", "json", "repaired" or "fallback".
    """
    args: dict = field(default_factory=dict)
    strategy: str = "fallback"

    @property
    def degraded(self) -> bool:
        return self.strategy in ("repaired", "fallback")


def parse_tool_arguments(raw: object) -> ParsedArguments:
    """
    Best-effort conversion of raw argument text to a dict.

    1. strict JSON;
    2. JSON after quoting bare object keys;
    3. an empty dict.
    """
    if isinstance(raw, dict):
        return ParsedArguments(dict(raw), "object")
    if not isinstance(raw, str):
        return ParsedArguments({}, "fallback")

    text = _FENCE.sub("", raw).strip()
    args = _loads_object(text)
    if args is not None:
        return ParsedArguments(args, "json")

    args = _loads_object(_BARE_KEY.sub(r'\1"\2":', text))
    if args is not None:
        return ParsedArguments(args, "repaired")

    return ParsedArguments({}, "fallback")


def _loads_object(text: str) -> dict | None:
    try:
        data = json.loads(text)
    except (ValueError, RecursionError):
        return None
    return data if isinstance(data, dict) else None
