"""Convert MCP tool schemas into OpenAI function-calling declarations."""

from typing import Any, Dict, Mapping

from ..models import ToolDescriptor

UNSUPPORTED_KEYS = frozenset(
    {"additionalProperties", "$schema", "$defs", "definitions", "title"}
)


def _resolve_ref(ref: str, defs: Mapping[str, Any]) -> Any:
    for prefix in ("#/$defs/", "#/definitions/"):
        if ref.startswith(prefix):
            return defs.get(ref[len(prefix):])
    return None


def _sanitize(node: Any, defs: Mapping[str, Any], seen: frozenset) -> Any:
    if not isinstance(node, dict):
        return node

    ref = node.get("$ref")
    if isinstance(ref, str):
        target = _resolve_ref(ref, defs)
        if target is not None and ref not in seen:
            merged = {**target, **{k: v for k, v in node.items() if k != "$ref"}}
            return _sanitize(merged, defs, seen | {ref})
        # Unresolvable or recursive reference: degrade to an untyped object.
        return {"type": "object"}

    out: Dict[str, Any] = {}
    for key, value in node.items():
        if key in UNSUPPORTED_KEYS:
            continue
        if key == "properties" and isinstance(value, dict):
            out[key] = {name: _sanitize(sub, defs, seen) for name, sub in value.items()}
        elif key == "items" and isinstance(value, list):
            # Tuple form: one schema per position.
            out[key] = [_sanitize(sub, defs, seen) for sub in value]
        elif key == "items":
            out[key] = _sanitize(value, defs, seen)
        elif key in ("anyOf", "oneOf", "allOf") and isinstance(value, list):
            out[key] = [_sanitize(sub, defs, seen) for sub in value]
        else:
            out[key] = value
    return out


def sanitize_schema(schema: Any) -> Any:
    """Strip JSON Schema features the function-calling format cannot express.

    Local `$ref`s are inlined from `$defs` / `definitions` first, then
    `additionalProperties`, `$schema`, definition tables and titles are
    dropped, recursing through object properties, array items and unions.
    The transform is pure and idempotent.
    """
    if not isinstance(schema, dict):
        return schema
    defs: Dict[str, Any] = {**schema.get("definitions", {}), **schema.get("$defs", {})}
    return _sanitize(schema, defs, frozenset())


def adapt_tool(descriptor: ToolDescriptor) -> Dict[str, Any]:
    """Build the OpenAI `tools` entry for one MCP tool."""
    input_schema = descriptor.input_schema or {}
    parameters = {
        **input_schema,
        "type": "object",
        "properties": input_schema.get("properties", {}),
    }
    if input_schema.get("required"):
        parameters["required"] = list(input_schema["required"])
    return {
        "type": "function",
        "function": {
            "name": descriptor.name,
            "description": descriptor.description or "",
            "parameters": sanitize_schema(parameters),
        },
    }
