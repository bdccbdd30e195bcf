"""JSON Schema helpers for tool input validation."""

import copy
from typing import Any, Optional

from jsonschema import Draft7Validator

EMPTY_OBJECT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {},
    "required": [],
}


def normalize_input_schema(schema: Optional[dict[str, Any]]) -> dict[str, Any]:
    """
    Fill in the parts of a tool input schema a model request needs.

    Tools that declare no schema get an empty-object schema with no required
    fields.
    """
    if not schema:
        return copy.deepcopy(EMPTY_OBJECT_SCHEMA)

    normalized = copy.deepcopy(schema)
    normalized.setdefault("type", "object")
    normalized.setdefault("properties", {})
    normalized.setdefault("required", [])
    return normalized


def first_missing_required(data: Any, schema: Optional[dict[str, Any]]) -> Optional[str]:
    """
    Return the first required field absent from the input, if any.

    A field counts as absent when it is missing, None, or an empty string.
    Input that is not a mapping (e.g. an unparsed argument string) is
    missing every required field.
    """
    if not schema:
        return None

    for field in schema.get("required") or []:
        if not isinstance(data, dict):
            return field
        value = data.get(field)
        if value is None or value == "":
            return field
    return None


def validate_schema(data: Any, schema: dict[str, Any]) -> tuple[bool, list[str]]:
    """
    Validate data against a JSON Schema.

    Args:
        data: The data to validate
        schema: JSON Schema to validate against

    Returns:
        Tuple of (is_valid, list of error messages)
    """
    if not schema:
        return True, []

    validator = Draft7Validator(schema)
    errors = sorted(validator.iter_errors(data), key=lambda e: list(e.path))

    if not errors:
        return True, []

    error_messages = [
        f"{'.'.join(str(p) for p in e.path)}: {e.message}" if e.path else e.message
        for e in errors
    ]

    return False, error_messages
