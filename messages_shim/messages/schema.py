"""JSON Schema sanitization for tool parameter definitions.

Completion providers that enforce strict function schemas reject a number of
JSON Schema keywords that Anthropic tool definitions commonly carry. This
module strips them and closes every object schema with
``additionalProperties: false``.
"""

from __future__ import annotations

from typing import Any, Mapping

from ..core.exceptions import SchemaTooDeepError

# Keywords the provider's strict schema validator does not accept
UNSUPPORTED_SCHEMA_FIELDS = frozenset({
    "format",
    "pattern",
    "minLength",
    "maxLength",
    "minimum",
    "maximum",
    "exclusiveMinimum",
    "exclusiveMaximum",
    "multipleOf",
    "minItems",
    "maxItems",
    "uniqueItems",
    "minProperties",
    "maxProperties",
    "const",
    "contentEncoding",
    "contentMediaType",
    "$schema",
    "$id",
    "$ref",
    "$defs",
    "definitions",
    "title",
    "examples",
    "default",
    "deprecated",
})

_COMBINATORS = ("anyOf", "oneOf", "allOf")

MAX_SCHEMA_DEPTH = 64

EMPTY_PARAMETERS: dict[str, Any] = {
    "type": "object",
    "properties": {},
    "additionalProperties": False,
}


def _sanitize_list(items: list[Any], depth: int) -> list[Any]:
    return [
        _sanitize(item, depth + 1) if isinstance(item, Mapping) else item
        for item in items
    ]


def _sanitize(schema: Mapping[str, Any], depth: int) -> dict[str, Any]:
    if depth > MAX_SCHEMA_DEPTH:
        raise SchemaTooDeepError(MAX_SCHEMA_DEPTH)

    result: dict[str, Any] = {}
    for key, value in schema.items():
        if key in UNSUPPORTED_SCHEMA_FIELDS:
            continue

        if key == "properties" and isinstance(value, Mapping):
            # Keys here are property names, so only the values get cleaned
            result[key] = {
                prop_name: _sanitize(prop_schema, depth + 1)
                if isinstance(prop_schema, Mapping)
                else prop_schema
                for prop_name, prop_schema in value.items()
            }
        elif key in _COMBINATORS and isinstance(value, list):
            result[key] = _sanitize_list(value, depth)
        elif isinstance(value, Mapping):
            # items, additionalProperties and any other nested schema object
            result[key] = _sanitize(value, depth + 1)
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value

    if result.get("type") == "object":
        result["additionalProperties"] = False
        if not any(k in result for k in ("properties", *_COMBINATORS)):
            result["properties"] = {}

    return result


def sanitize_schema(schema: Mapping[str, Any]) -> dict[str, Any]:
    """Return a cleaned copy of ``schema`` that strict providers accept.

    The walk recurses through ``properties``, ``items``, ``anyOf``,
    ``oneOf``, ``allOf`` and any other nested object. The input is never
    modified.

    Raises:
        SchemaTooDeepError: If the schema nests deeper than
            ``MAX_SCHEMA_DEPTH`` levels.
    """
    return _sanitize(schema, 0)


def tool_parameters(input_schema: Mapping[str, Any] | None) -> dict[str, Any]:
    """Build the provider ``parameters`` object for an Anthropic input_schema.

    Tools without parameters collapse to an empty closed object. Otherwise
    only ``properties`` and ``required`` are carried over from the top level.
    """
    if not input_schema:
        return dict(EMPTY_PARAMETERS, properties={})

    properties = input_schema.get("properties")
    if not isinstance(properties, Mapping) or not properties:
        return dict(EMPTY_PARAMETERS, properties={})

    schema: dict[str, Any] = {"type": "object", "properties": properties}
    required = input_schema.get("required")
    if required is not None:
        schema["required"] = required
    return sanitize_schema(schema)
