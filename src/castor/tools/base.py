"""Tool abstraction: schemas, results and the base class concrete tools extend."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol
import uuid

from castor.errors import ToolValidationError
from castor.providers.models import FunctionTool


class ToolCategory(str, Enum):
    API = "api"
    FILE = "file"
    WEB = "web"
    DATA = "data"
    SYSTEM = "system"
    CALCULATION = "calculation"
    TEXT = "text"
    IMAGE = "image"
    CUSTOM = "custom"


@dataclass(frozen=True)
class PropertySchema:
    """JSON-Schema description of one tool parameter."""

    type: str
    description: str = ""
    enum: tuple[Any, ...] | None = None
    default: Any = None
    format: str | None = None
    minimum: float | None = None
    maximum: float | None = None
    items: PropertySchema | None = None

    def to_json_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": self.type}
        if self.description:
            schema["description"] = self.description
        if self.enum is not None:
            schema["enum"] = list(self.enum)
        if self.default is not None:
            schema["default"] = self.default
        if self.format is not None:
            schema["format"] = self.format
        if self.minimum is not None:
            schema["minimum"] = self.minimum
        if self.maximum is not None:
            schema["maximum"] = self.maximum
        if self.items is not None:
            schema["items"] = self.items.to_json_schema()
        return schema


@dataclass(frozen=True)
class ParameterSchema:
    properties: dict[str, PropertySchema] = field(default_factory=dict)
    required: tuple[str, ...] = ()

    def to_json_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                name: prop.to_json_schema() for name, prop in self.properties.items()
            },
            "required": list(self.required),
        }


@dataclass
class ToolResult:
    """Outcome of one tool execution.

    Expected failures are ``success=False`` with ``error`` set; the registry
    fills ``execution_id``, ``timestamp`` and ``duration_s``.
    """

    success: bool
    data: Any = None
    error: str | None = None
    message: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    execution_id: str = ""
    timestamp: datetime | None = None
    duration_s: float = 0.0

    @classmethod
    def ok(cls, data: Any = None, message: str = "", **metadata: Any) -> ToolResult:
        return cls(success=True, data=data, message=message, metadata=metadata)

    @classmethod
    def failure(cls, error: str, message: str = "", **metadata: Any) -> ToolResult:
        return cls(success=False, error=error, message=message, metadata=metadata)


@dataclass(frozen=True)
class ToolExecution:
    """A request to run one tool."""

    tool_name: str
    parameters: dict[str, Any] = field(default_factory=dict)
    request_id: str = ""
    user_id: str = ""
    session_id: str = ""
    confirmed: bool = False
    timestamp: datetime = field(default_factory=datetime.now)


def new_execution_id(now: datetime | None = None) -> str:
    """Return an id like ``exec_20250101_120000_a1b2c3``."""
    now = now or datetime.now()
    return f"exec_{now:%Y%m%d_%H%M%S}_{uuid.uuid4().hex[:6]}"


class ParameterValidator(Protocol):
    def __call__(self, params: dict[str, Any]) -> None:
        """Raise ``ToolValidationError`` if *params* are invalid."""
        ...


_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "number": (int, float),
    "integer": (int,),
    "boolean": (bool,),
    "array": (list, tuple),
    "object": (dict,),
}


def _check_type(name: str, value: Any, prop: PropertySchema) -> None:
    expected = _JSON_TYPES.get(prop.type)
    if expected is None:
        return
    # bool is an int subclass; never accept it for numbers.
    if isinstance(value, bool) and prop.type in ("number", "integer"):
        ok = False
    else:
        ok = isinstance(value, expected)
    if not ok:
        raise ToolValidationError(
            f"parameter '{name}' must be of type {prop.type}, got {type(value).__name__}",
            field=name,
        )
    if prop.enum is not None and value not in prop.enum:
        allowed = ", ".join(map(str, prop.enum))
        raise ToolValidationError(
            f"parameter '{name}' must be one of: {allowed}", field=name
        )
    if prop.type in ("number", "integer"):
        if prop.minimum is not None and value < prop.minimum:
            raise ToolValidationError(
                f"parameter '{name}' must be >= {prop.minimum:g}", field=name
            )
        if prop.maximum is not None and value > prop.maximum:
            raise ToolValidationError(
                f"parameter '{name}' must be <= {prop.maximum:g}", field=name
            )
    if prop.type == "array" and prop.items is not None:
        for i, item in enumerate(value):
            _check_type(f"{name}[{i}]", item, prop.items)


class SchemaValidator:
    """Validate parameters against a ``ParameterSchema``."""

    def __init__(self, schema: ParameterSchema) -> None:
        self.schema = schema

    def __call__(self, params: dict[str, Any]) -> None:
        for name in self.schema.required:
            if params.get(name) is None:
                raise ToolValidationError(
                    f"required parameter '{name}' is missing", field=name
                )
        for name, value in params.items():
            prop = self.schema.properties.get(name)
            if prop is None:
                raise ToolValidationError(f"unknown parameter '{name}'", field=name)
            if value is None:
                continue
            _check_type(name, value, prop)


class Tool:
    """Base class for tools.

    Subclasses set the descriptive attributes and implement ``execute``.
    ``execute`` returns ``ToolResult.failure(...)`` for expected problems and
    raises only for bugs or system errors.
    """

    name: str = ""
    description: str = ""
    category: ToolCategory = ToolCategory.CUSTOM
    requires_confirmation: bool = False
    estimated_cost: int = 0
    #: None means the tool takes no declared parameters and is not validated.
    parameter_schema: ParameterSchema | None = None

    async def execute(self, params: dict[str, Any]) -> ToolResult:
        raise NotImplementedError

    async def is_available(self) -> bool:
        return True

    def parameter_validator(self) -> ParameterValidator | None:
        """Return the validator the registry should apply, if any.

        The default validates against ``parameter_schema``; override to add
        cross-field rules or return None to opt out.
        """
        if self.parameter_schema is None:
            return None
        return SchemaValidator(self.parameter_schema)

    def function_definition(self) -> FunctionTool:
        schema = self.parameter_schema or ParameterSchema()
        return FunctionTool(
            name=self.name,
            description=self.description,
            parameters=schema.to_json_schema(),
        )

    def apply_defaults(self, params: dict[str, Any]) -> dict[str, Any]:
        """Return *params* with schema defaults filled in."""
        if self.parameter_schema is None:
            return dict(params)
        merged = {
            name: prop.default
            for name, prop in self.parameter_schema.properties.items()
            if prop.default is not None
        }
        merged.update({k: v for k, v in params.items() if v is not None})
        return merged
