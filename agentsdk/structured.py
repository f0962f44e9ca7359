"""Structured output: response formats and JSON payload extraction."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel


@dataclass(frozen=True)
class ResponseFormat:
    """JSON schema the engine is asked to answer in."""

    name: str
    schema: dict[str, Any] = field(default_factory=dict)
    type: str = "json_schema"

    @classmethod
    def from_model(cls, model: type[BaseModel], name: str | None = None) -> ResponseFormat:
        return cls(name=name or model.__name__, schema=model.model_json_schema())


def find_json_object(text: str) -> str | None:
    """
    Return the first balanced ``{...}`` span in ``text``.

    Braces inside JSON string literals are ignored. Returns None when no
    opening brace is ever closed.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]
        start = text.find("{", start + 1)
    return None


def extract_json_payload(text: str) -> dict[str, Any] | None:
    """Parse the first balanced JSON object in ``text``; None if absent or invalid."""
    raw = find_json_object(text)
    if raw is None:
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None
