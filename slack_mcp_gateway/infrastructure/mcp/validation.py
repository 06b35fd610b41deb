"""Pydantic-based validation for MCP tool arguments.

Tool input schemas are compiled into Pydantic models when tools are
registered, then used to check LLM-supplied arguments before any call
reaches a transport. The supported JSON Schema subset is ``type``,
``properties``, ``required``, ``enum``, ``items`` and nested objects.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any, Literal, Union

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    PydanticUserError,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    ValidationError,
    create_model,
)

from slack_mcp_gateway.domain.exceptions.mcp import BadToolArgsError

logger = logging.getLogger(__name__)


# JSON Schema type to strict Python type mapping (no "1" -> 1 coercion)
_JSON_TYPE_MAP: dict[str, Any] = {
    "string": StrictStr,
    "number": Union[StrictInt, StrictFloat],
    "integer": StrictInt,
    "boolean": StrictBool,
    "null": type(None),
}

_LITERAL_TYPES = (str, int, bool, type(None))


def _safe_name(name: str) -> str:
    return "".join(c if c.isalnum() else "_" for c in name) or "tool"


def _enum_type(values: list[Any]) -> Any:
    if values and all(isinstance(v, _LITERAL_TYPES) for v in values):
        return Literal[tuple(values)]  # type: ignore[valid-type]

    def _check(value: Any) -> Any:
        if value not in values:
            raise ValueError(f"Input should be one of {values!r}")
        return value

    return Annotated[Any, AfterValidator(_check)]


def _field_type(model_name: str, field_name: str, schema: dict[str, Any]) -> Any:
    """Translate one property schema into a type annotation."""
    if not isinstance(schema, dict):
        return Any

    if "enum" in schema and isinstance(schema["enum"], list):
        return _enum_type(schema["enum"])

    json_type = schema.get("type")
    if isinstance(json_type, list):
        members = [
            _field_type(model_name, field_name, {**schema, "type": t}) for t in json_type
        ]
        return Union[tuple(members)] if members else Any

    if json_type == "array":
        items = schema.get("items")
        if isinstance(items, dict) and items:
            return list[_field_type(model_name, f"{field_name}_item", items)]  # type: ignore[misc]
        return list[Any]

    if json_type == "object":
        if isinstance(schema.get("properties"), dict):
            return _schema_to_model(f"{model_name}_{_safe_name(field_name)}", schema)
        return dict[str, Any]

    return _JSON_TYPE_MAP.get(json_type, Any) if isinstance(json_type, str) else Any


def _schema_to_model(model_name: str, schema: dict[str, Any]) -> type[BaseModel]:
    """Convert an object JSON Schema to a Pydantic model.

    Handles:
    - Required vs optional fields
    - Strict type mapping (string, number, integer, boolean, null)
    - Enums as ``Literal`` values
    - Arrays with typed items
    - Nested object schemas as nested models

    Property names are mapped onto safe attribute names with the original
    name as the alias, so names like ``_id`` or ``model_name`` survive.
    """
    properties = schema.get("properties")
    if not isinstance(properties, dict):
        properties = {}
    required = schema.get("required")
    required_fields = (
        {name for name in required if isinstance(name, str)} if isinstance(required, list) else set()
    )

    field_definitions: dict[str, Any] = {}
    for index, (prop_name, prop_schema) in enumerate(properties.items()):
        py_type = _field_type(model_name, prop_name, prop_schema)
        description = prop_schema.get("description", "") if isinstance(prop_schema, dict) else ""

        if prop_name in required_fields:
            field_definitions[f"f_{index}"] = (
                py_type,
                Field(alias=prop_name, description=description),
            )
        else:
            field_definitions[f"f_{index}"] = (
                py_type | None,
                Field(default=None, alias=prop_name, description=description),
            )

    # Required keys without a property definition still have to be present
    for extra_index, prop_name in enumerate(sorted(required_fields - set(properties))):
        field_definitions[f"r_{extra_index}"] = (Any, Field(alias=prop_name))

    return create_model(
        model_name,
        __config__=ConfigDict(extra="allow", populate_by_name=False),
        **field_definitions,
    )


class ToolArgumentValidator:
    """Validates MCP tool arguments using auto-generated Pydantic models.

    Converts JSON Schema definitions from MCP servers into Pydantic
    models at registration time, then uses those models for argument
    validation at call time.
    """

    def __init__(self) -> None:
        self._models: dict[str, type[BaseModel]] = {}

    def __contains__(self, tool_name: object) -> bool:
        return tool_name in self._models

    def register_schema(self, tool_name: str, schema: dict[str, Any] | None) -> type[BaseModel]:
        """Register a JSON Schema and generate a Pydantic model.

        Schemas that cannot be compiled fall back to a model that only
        enforces the required keys.
        """
        if not isinstance(schema, dict):
            if schema:
                logger.warning(
                    "Input schema for tool '%s' is not an object; accepting any arguments",
                    tool_name,
                )
            schema = {}
        model_name = f"ToolArgs_{_safe_name(tool_name)}"
        try:
            model = _schema_to_model(model_name, schema)
        except (TypeError, ValueError, PydanticUserError) as e:
            logger.warning(
                "Could not compile input schema for tool '%s' (%s); checking required keys only",
                tool_name,
                e,
            )
            model = _schema_to_model(model_name, {"required": schema.get("required")})
        self._models[tool_name] = model
        return model

    def unregister(self, tool_name: str) -> None:
        self._models.pop(tool_name, None)

    def validate(self, tool_name: str, args: Any) -> dict[str, Any]:
        """Validate arguments against a registered schema.

        Returns:
            The arguments exactly as given, once they conform.

        Raises:
            BadToolArgsError: If validation fails.
        """
        if not isinstance(args, dict):
            raise BadToolArgsError(
                tool_name,
                [{"loc": (), "msg": f"arguments must be an object, got {type(args).__name__}"}],
            )

        model_cls = self._models.get(tool_name)
        if model_cls is None:
            logger.warning("No schema registered for tool '%s'; skipping validation", tool_name)
            return args

        try:
            model_cls.model_validate(args)
        except ValidationError as exc:
            raise BadToolArgsError(tool_name, exc.errors()) from exc  # type: ignore[arg-type]
        return args

    def get_model(self, tool_name: str) -> type[BaseModel] | None:
        """Get the Pydantic model for a registered tool."""
        return self._models.get(tool_name)

    def has_schema(self, tool_name: str) -> bool:
        """Check if a tool has a registered schema."""
        return tool_name in self._models
