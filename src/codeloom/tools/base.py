"""Tool contract and JSON-schema argument validation.

Tool arguments arrive from model output as untyped JSON. They are
validated once, at the agent boundary, against the tool's
``input_schema`` using a pydantic model generated from that schema.
"""

from __future__ import annotations

from typing import Any, Protocol, TypeAlias

from pydantic import BaseModel, ConfigDict, Field, ValidationError, create_model

from codeloom.resilience.errors import ToolExecutionError

JsonSchema: TypeAlias = dict[str, Any]

_JSON_TYPES: dict[str, Any] = {
    "string": str,
    "integer": int,
    "number": float,
    "boolean": bool,
    "array": list[Any],
    "object": dict[str, Any],
}


class Tool(Protocol):
    name: str
    description: str
    input_schema: JsonSchema

    async def execute(self, args: dict[str, Any]) -> str: ...


class ToolDefinition(BaseModel):
    """Serializable description of a tool, as shown to the planner."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    input_schema: JsonSchema


def definition_of(tool: Tool) -> ToolDefinition:
    return ToolDefinition(
        name=tool.name,
        description=tool.description,
        input_schema=tool.input_schema,
    )


def _args_model(tool: Tool) -> type[BaseModel]:
    properties: dict[str, Any] = tool.input_schema.get("properties", {})
    required = set(tool.input_schema.get("required", []))
    fields: dict[str, Any] = {}
    for prop, spec in properties.items():
        py_type = _JSON_TYPES.get(spec.get("type", ""), Any)
        if prop in required:
            fields[prop] = (py_type, Field(...))
        else:
            fields[prop] = (py_type | None, Field(default=None))
    return create_model(  # type: ignore[call-overload]
        f"{tool.name}_args",
        __config__=ConfigDict(strict=True, extra="allow"),
        **fields,
    )


def validate_tool_args(tool: Tool, args: Any) -> dict[str, Any]:
    """Check ``args`` against the tool's input schema.

    Skipped when the schema declares no required properties. The error
    message names the tool and the first offending field.
    """
    if not isinstance(args, dict):
        raise ToolExecutionError(
            f"Invalid arguments for tool {tool.name}: expected an object",
            tool_name=tool.name,
        )
    if not tool.input_schema.get("required"):
        return dict(args)
    try:
        _args_model(tool).model_validate(args)
    except ValidationError as exc:
        err = exc.errors()[0]
        field = ".".join(str(p) for p in err["loc"]) or "<root>"
        raise ToolExecutionError(
            f"Invalid arguments for tool {tool.name}: "
            f"field '{field}': {err['msg']}",
            tool_name=tool.name,
            args=args,
            cause=exc,
        ) from exc
    return dict(args)
