"""JSON schema helpers for structured capability replies."""

from __future__ import annotations

from typing import Any

Schema = dict[str, Any]


def create_schema(sample: dict[str, Any]) -> Schema:
    """Infer an object schema from a sample attribute mapping."""
    properties = {key: infer_schema(value) for key, value in sample.items()}
    return {"type": "object", "properties": properties}


def infer_schema(value: Any) -> Schema:
    """Infer the schema of a single JSON value.

    Arrays take the schema of their first item (strings when empty);
    ``None`` maps to an untyped object.
    """
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return {"type": "boolean"}
    if isinstance(value, (int, float)):
        return {"type": "number"}
    if isinstance(value, str):
        return {"type": "string"}
    if isinstance(value, (list, tuple)):
        items = infer_schema(value[0]) if value else {"type": "string"}
        return {"type": "array", "items": items}
    if isinstance(value, dict):
        return create_schema(value)
    if value is None:
        return {"type": "object"}
    return {"type": "string"}


def encapsulate_schema(properties: dict[str, Schema]) -> Schema:
    """Wrap a property map into an object schema."""
    return {"type": "object", "properties": dict(properties)}
