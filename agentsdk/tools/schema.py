"""Tool schemas: Pydantic-based and raw JSON Schema parameter validation."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class PydanticSchema:
    """ToolSchema implementation backed by a Pydantic model."""

    def __init__(self, model: type[BaseModel]) -> None:
        self._model = model

    @property
    def model(self) -> type[BaseModel]:
        return self._model

    def parse(self, raw: Any) -> Any:
        if isinstance(raw, str):
            return self._model.model_validate_json(raw)
        return self._model.model_validate(raw)

    def to_json_schema(self) -> dict:
        return self._model.model_json_schema()


class DictSchema:
    """ToolSchema backed by a raw JSON Schema dict, used for external tool servers."""

    def __init__(self, schema: dict[str, Any] | None = None) -> None:
        self._schema = schema or {"type": "object", "properties": {}}

    def parse(self, raw: Any) -> Any:
        if isinstance(raw, dict):
            missing = [k for k in self._schema.get("required", []) if k not in raw]
            if missing:
                raise ValueError(f"missing required parameters: {', '.join(missing)}")
            return raw
        return {}

    def to_json_schema(self) -> dict:
        return self._schema


def describe_parameters(schema: dict[str, Any]) -> list[str]:
    """Human-readable ``name (type, required): description`` lines for a JSON schema."""
    props = schema.get("properties") or {}
    required = set(schema.get("required") or [])
    lines = []
    for name, prop in props.items():
        kind = prop.get("type", "any") if isinstance(prop, dict) else "any"
        flag = ", required" if name in required else ""
        desc = prop.get("description", "") if isinstance(prop, dict) else ""
        line = f"{name} ({kind}{flag})"
        lines.append(f"{line}: {desc}" if desc else line)
    return lines
