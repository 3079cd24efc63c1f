"""
Argument validation against a tool's declared input schema.

Only the subset of JSON Schema that tools actually declare is checked:
required fields and the primitive ``type`` of each top-level property.
"""

from typing import Any, Dict, Optional

from ..mcp.exceptions import ToolValidationError
from ..mcp.models import Tool


_TYPE_CHECKS = {
    "string": lambda value: isinstance(value, str),
    # bool is an int subclass but never a JSON number
    "number": lambda value: isinstance(value, (int, float)) and not isinstance(value, bool),
    "integer": lambda value: (
        (isinstance(value, int) and not isinstance(value, bool))
        or (isinstance(value, float) and value.is_integer())
    ),
    "boolean": lambda value: isinstance(value, bool),
    "object": lambda value: isinstance(value, dict),
    "array": lambda value: isinstance(value, list),
    "null": lambda value: value is None,
}


def _matches_type(value: Any, declared: Any) -> bool:
    if isinstance(declared, list):
        return any(_matches_type(value, item) for item in declared)
    check = _TYPE_CHECKS.get(declared)
    # Undeclared or unknown types are not enforced
    return check is None or check(value)


def validate_arguments(tool: Tool, arguments: Optional[Dict[str, Any]]) -> None:
    """
    Validate arguments against the tool's input schema.

    Args:
        tool: Tool declaration fetched from the server
        arguments: Arguments the caller intends to send

    Raises:
        ToolValidationError: Naming the first missing or mistyped field
    """
    arguments = arguments or {}

    for field in tool.required_arguments:
        if field not in arguments:
            raise ToolValidationError(
                f"Missing required argument '{field}' for tool {tool.name}",
                field=field,
                tool_name=tool.name
            )

    for field, value in arguments.items():
        schema = tool.properties.get(field)
        if not isinstance(schema, dict) or "type" not in schema:
            continue
        declared = schema["type"]
        if not _matches_type(value, declared):
            raise ToolValidationError(
                f"Argument '{field}' for tool {tool.name} must be of type {declared}, "
                f"got {type(value).__name__}",
                field=field,
                tool_name=tool.name
            )
