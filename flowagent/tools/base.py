"""Base types and definitions for tools."""

import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Literal

from langchain_core.tools import StructuredTool
from pydantic import BaseModel, Field, ValidationError, create_model

from flowagent.errors import InvalidToolSchemaError
from flowagent.models.credentials import Credentials, CredentialType

ToolFunc = Callable[[dict[str, Any]], Awaitable[Any]]
ToolSource = Literal["custom", "registry", "capability", "delegation", "memory"]

# JSON schema type name -> python annotation
_SCHEMA_TYPES: dict[str, Any] = {
    "string": str,
    "number": float,
    "integer": int,
    "boolean": bool,
    "array": list[Any],
    "object": dict[str, Any],
    "string[]": list[str],
}


@dataclass
class ToolDefinition:
    """Definition of a tool available to the agent for one run."""

    name: str
    description: str
    args_schema: type[BaseModel]
    func: ToolFunc
    source: ToolSource = "custom"

    def get_json_schema(self) -> dict[str, Any]:
        """Get JSON schema for this tool's input."""
        return self.args_schema.model_json_schema()

    def parse_input(self, raw_input: dict[str, Any]) -> BaseModel:
        """Parse and validate tool input."""
        return self.args_schema.model_validate(raw_input)

    async def invoke(self, raw_input: dict[str, Any]) -> Any:
        """Validate the input and run the tool function."""
        parsed = self.parse_input(raw_input)
        return await self.func(parsed.model_dump(exclude_none=True))

    def to_langchain_tool(self) -> StructuredTool:
        """Convert to a StructuredTool for binding to a chat model."""

        async def _run(**kwargs: Any) -> Any:
            return await self.func(kwargs)

        return StructuredTool.from_function(
            coroutine=_run,
            name=self.name,
            description=self.description,
            args_schema=self.args_schema,
        )


@dataclass
class CustomTool:
    """A caller-defined tool registered for a single run.

    ``parameters`` is either a pydantic model class, a JSON schema object or a
    structural mapping of ``field -> {"type", "required", "description"}``.
    """

    name: str
    description: str
    func: ToolFunc
    parameters: type[BaseModel] | dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolBubble:
    """A pre-registered tool factory resolved by name from the registry."""

    name: str
    description: str
    parameters: type[BaseModel] | dict[str, Any]
    create: Callable[[Credentials, dict[str, Any]], ToolFunc]
    credential_types: list[CredentialType] = field(default_factory=list)
    type: str = "tool"

    def to_tool(self, credentials: Credentials, config: dict[str, Any] | None = None) -> ToolDefinition:
        """Instantiate the tool with only the credentials it declares."""
        return ToolDefinition(
            name=self.name,
            description=self.description,
            args_schema=build_args_schema(self.name, self.parameters),
            func=self.create(credentials, config or {}),
            source="registry",
        )


def _model_name(tool_name: str) -> str:
    parts = [p for p in tool_name.replace("-", "_").split("_") if p]
    return "".join(p[:1].upper() + p[1:] for p in parts) + "Input" if parts else "ToolInput"


def _annotation_for(type_name: Any, tool_name: str, field_name: str) -> Any:
    if type_name is None:
        return Any
    if isinstance(type_name, list):
        # e.g. ["string", "null"]
        non_null = [t for t in type_name if t != "null"]
        return _annotation_for(non_null[0] if non_null else None, tool_name, field_name)
    if not isinstance(type_name, str) or type_name not in _SCHEMA_TYPES:
        raise InvalidToolSchemaError(f"Tool {tool_name}: unsupported type {type_name!r} for field {field_name!r}")
    return _SCHEMA_TYPES[type_name]


def _field_spec(
    tool_name: str,
    field_name: str,
    prop: Any,
    required: bool,
) -> tuple[Any, Any]:
    if isinstance(prop, str):
        prop = {"type": prop}
    if not isinstance(prop, dict):
        raise InvalidToolSchemaError(f"Tool {tool_name}: field {field_name!r} must be a mapping")

    annotation = _annotation_for(prop.get("type"), tool_name, field_name)
    if "enum" in prop and isinstance(prop["enum"], list) and prop["enum"]:
        annotation = Literal[tuple(prop["enum"])]

    description = prop.get("description")
    if required:
        return annotation, Field(..., description=description)
    return annotation | None, Field(default=prop.get("default"), description=description)


def is_json_schema(parameters: dict[str, Any]) -> bool:
    """Whether ``parameters`` looks like a JSON schema object rather than a field map."""
    return parameters.get("type") == "object" or "properties" in parameters


def build_args_schema(tool_name: str, parameters: type[BaseModel] | dict[str, Any] | str | None) -> type[BaseModel]:
    """Build a pydantic input model from a tool's parameter description.

    Args:
        tool_name: Name of the tool, used for the model name and errors
        parameters: Pydantic model class, JSON schema (dict or string) or structural field map

    Returns:
        Pydantic model class validating the tool input

    Raises:
        InvalidToolSchemaError: If the parameters cannot be turned into a model
    """
    if isinstance(parameters, type) and issubclass(parameters, BaseModel):
        return parameters

    if isinstance(parameters, str):
        try:
            parameters = json.loads(parameters)
        except json.JSONDecodeError as e:
            raise InvalidToolSchemaError(f"Tool {tool_name}: parameter schema is not valid JSON") from e

    if parameters is None:
        parameters = {}
    if not isinstance(parameters, dict):
        raise InvalidToolSchemaError(f"Tool {tool_name}: parameter schema must be a mapping")

    fields: dict[str, Any] = {}
    if is_json_schema(parameters):
        properties = parameters.get("properties") or {}
        required = parameters.get("required") or []
        if not isinstance(properties, dict) or not isinstance(required, list):
            raise InvalidToolSchemaError(f"Tool {tool_name}: malformed JSON schema")
        for name, prop in properties.items():
            fields[name] = _field_spec(tool_name, name, prop, name in required)
    else:
        for name, prop in parameters.items():
            required = prop.get("required", True) if isinstance(prop, dict) else True
            fields[name] = _field_spec(tool_name, name, prop, bool(required))

    try:
        return create_model(_model_name(tool_name), **fields)
    except (NameError, TypeError, ValueError, ValidationError) as e:
        raise InvalidToolSchemaError(f"Tool {tool_name}: {e}") from e


def stringify_tool_output(output: Any) -> str:
    """Render a tool result as message content."""
    if isinstance(output, str):
        return output
    return json.dumps(output, default=str)
