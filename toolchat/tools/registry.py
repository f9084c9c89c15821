"""Registry for safe tool registration and execution."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Literal, Mapping

from pydantic import ValidationError, create_model

from toolchat.db import Database
from toolchat.errors import HandlerFailure, InvalidArguments, UnknownTool
from toolchat.models import ExecutionMode
from toolchat.tools.base import Tool, ToolContext

ALL_TOOLS: Literal["all"] = "all"


@dataclass(slots=True, frozen=True)
class ToolDefinition:
    """A registered tool; the execution mode is fixed at registration."""

    name: str
    description: str
    parameters_schema: dict[str, Any]
    execution_mode: ExecutionMode
    handler: Tool


class ToolRegistry:
    """Explicit registry of safe tools."""

    def __init__(self, db: Database) -> None:
        self._db = db
        self._tools: dict[str, ToolDefinition] = {}

    def register(self, tool: Tool, mode: ExecutionMode | None = None) -> ToolDefinition:
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        definition = ToolDefinition(
            name=tool.name,
            description=tool.description,
            parameters_schema=tool.parameters_schema,
            execution_mode=mode or tool.execution_mode,
            handler=tool,
        )
        self._tools[tool.name] = definition
        return definition

    def names(self) -> list[str]:
        return list(self._tools)

    def get(self, name: str) -> ToolDefinition:
        definition = self._tools.get(name)
        if definition is None:
            raise UnknownTool(f"Unknown tool: {name}")
        return definition

    def resolve(self, subset: Iterable[str] | Literal["all"]) -> dict[str, ToolDefinition]:
        """Return definitions for ``subset`` (or every tool for ``"all"``)."""

        if subset == ALL_TOOLS:
            return dict(self._tools)
        return {name: self.get(name) for name in subset}

    def list_tool_specs(self, definitions: Mapping[str, ToolDefinition] | None = None) -> list[dict[str, Any]]:
        selected = self._tools if definitions is None else definitions
        return [
            {
                "type": "function",
                "function": {
                    "name": definition.name,
                    "description": definition.description,
                    "parameters": definition.parameters_schema,
                },
            }
            for definition in selected.values()
        ]

    async def execute(
        self,
        conversation_id: str,
        tool_name: str,
        arguments: dict[str, Any],
        context: ToolContext | None = None,
    ) -> Any:
        definition = self.get(tool_name)
        validated = _validate_json_schema(definition.parameters_schema, arguments)
        context = context or ToolContext(conversation_id=conversation_id)
        try:
            result = await definition.handler.run(context, **validated)
        except Exception as exc:  # noqa: BLE001
            self._db.log_tool_execution(conversation_id, tool_name, validated, {"error": str(exc)}, succeeded=False)
            raise HandlerFailure(tool_name, exc) from exc
        self._db.log_tool_execution(conversation_id, tool_name, validated, result, succeeded=True)
        return result


def _validate_json_schema(schema: dict[str, Any], payload: dict[str, Any]) -> dict[str, Any]:
    props = schema.get("properties", {})
    required = set(schema.get("required", []))
    unexpected = set(payload) - set(props)
    if unexpected and schema.get("additionalProperties") is False:
        raise InvalidArguments(f"Invalid input for tool: unexpected fields {sorted(unexpected)}")

    fields: dict[str, tuple[type[Any], Any]] = {}
    for name, config in props.items():
        typ = _python_type(config.get("type", "string"))
        default = ... if name in required else None
        fields[name] = (typ, default)

    model = create_model("ToolInputModel", **fields)
    try:
        value = model(**{key: val for key, val in payload.items() if key in props})
    except ValidationError as exc:
        raise InvalidArguments(f"Invalid input for tool: {exc}") from exc
    return value.model_dump(exclude_none=True)


def _python_type(schema_type: str) -> type[Any]:
    mapping: dict[str, type[Any]] = {
        "string": str,
        "integer": int,
        "number": float,
        "boolean": bool,
        "object": dict,
        "array": list,
    }
    return mapping.get(schema_type, str)
