"""Tool catalog: typed parameter schemas and the registry the model sees.

Parameter schemas are trees of field nodes rather than loose dicts, so an
unsupported schema type is rejected when the catalog is built instead of
surfacing later as a malformed request.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from functools import cached_property
from pathlib import Path
from typing import Any, ClassVar, Iterable, Iterator, Union

import jsonschema
import yaml


@dataclass(frozen=True)
class StringField:
    kind: ClassVar[str] = "string"
    description: str = ""
    enum: tuple[str, ...] | None = None

    def to_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": self.kind}
        if self.description:
            schema["description"] = self.description
        if self.enum:
            schema["enum"] = list(self.enum)
        return schema


@dataclass(frozen=True)
class IntegerField:
    kind: ClassVar[str] = "integer"
    description: str = ""

    def to_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": self.kind}
        if self.description:
            schema["description"] = self.description
        return schema


@dataclass(frozen=True)
class NumberField:
    kind: ClassVar[str] = "number"
    description: str = ""

    def to_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": self.kind}
        if self.description:
            schema["description"] = self.description
        return schema


@dataclass(frozen=True)
class BooleanField:
    kind: ClassVar[str] = "boolean"
    description: str = ""

    def to_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": self.kind}
        if self.description:
            schema["description"] = self.description
        return schema


@dataclass(frozen=True)
class ArrayField:
    kind: ClassVar[str] = "array"
    items: "FieldNode" = field(default_factory=StringField)
    description: str = ""

    def to_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": self.kind, "items": self.items.to_schema()}
        if self.description:
            schema["description"] = self.description
        return schema


@dataclass(frozen=True)
class ObjectField:
    kind: ClassVar[str] = "object"
    properties: dict[str, "FieldNode"] = field(default_factory=dict)
    required: tuple[str, ...] = ()
    description: str = ""

    def __post_init__(self) -> None:
        missing = [name for name in self.required if name not in self.properties]
        if missing:
            raise ValueError(f"Required properties not declared: {', '.join(missing)}")

    def to_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {
            "type": self.kind,
            "properties": {name: node.to_schema() for name, node in self.properties.items()},
            "required": list(self.required),
        }
        if self.description:
            schema["description"] = self.description
        return schema


FieldNode = Union[StringField, IntegerField, NumberField, BooleanField, ArrayField, ObjectField]

_SCALAR_FIELDS: dict[str, type] = {
    "string": StringField,
    "integer": IntegerField,
    "number": NumberField,
    "boolean": BooleanField,
}


def field_from_schema(schema: dict[str, Any], *, path: str = "(root)") -> FieldNode:
    """Convert a JSON-schema-shaped dict into field nodes."""
    if not isinstance(schema, dict):
        raise ValueError(f"[{path}] schema must be a mapping")

    kind = schema.get("type")
    description = str(schema.get("description", ""))

    if kind == "string":
        enum = schema.get("enum")
        return StringField(description=description, enum=tuple(str(v) for v in enum) if enum else None)
    if kind in _SCALAR_FIELDS:
        return _SCALAR_FIELDS[kind](description=description)
    if kind == "array":
        items = schema.get("items", {"type": "string"})
        return ArrayField(items=field_from_schema(items, path=f"{path}.items"), description=description)
    if kind == "object":
        raw_props = schema.get("properties") or {}
        if not isinstance(raw_props, dict):
            raise ValueError(f"[{path}] properties must be a mapping")
        properties = {
            str(name): field_from_schema(prop, path=f"{path}.{name}") for name, prop in raw_props.items()
        }
        required = tuple(str(name) for name in schema.get("required") or ())
        return ObjectField(properties=properties, required=required, description=description)

    raise ValueError(f"[{path}] unsupported schema type: {kind!r}")


@dataclass(frozen=True)
class ToolDefinition:
    """A tool the model may call."""

    name: str
    description: str
    parameters: ObjectField = field(default_factory=ObjectField)

    def to_schema(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters.to_schema(),
        }


class ToolCatalog:
    """Ordered, name-unique set of tool definitions.

    Built once at startup; duplicate names are a configuration error.
    """

    def __init__(self, tools: Iterable[ToolDefinition]):
        ordered: dict[str, ToolDefinition] = {}
        for tool in tools:
            name = tool.name.strip()
            if not name:
                raise ValueError("Tool name must be non-empty")
            if name in ordered:
                raise ValueError(f"Duplicate tool name in catalog: {name}")
            ordered[name] = tool
        self._tools = ordered
        self._validators: dict[str, jsonschema.Draft7Validator] = {}

    def all_tools(self) -> tuple[ToolDefinition, ...]:
        return tuple(self._tools.values())

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def get(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ToolDefinition]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)

    def to_json_schemas(self) -> list[dict[str, Any]]:
        return [tool.to_schema() for tool in self._tools.values()]

    @cached_property
    def prompt_text(self) -> str:
        """Catalog rendered as plain text for embedding in a system prompt."""
        sections = []
        for tool in self._tools.values():
            schema = json.dumps(tool.parameters.to_schema(), ensure_ascii=False)
            sections.append(f"### {tool.name}\n{tool.description.strip()}\nParameters: {schema}")
        return "\n\n".join(sections)

    def _validator(self, name: str) -> jsonschema.Draft7Validator:
        validator = self._validators.get(name)
        if validator is None:
            validator = jsonschema.Draft7Validator(self._tools[name].parameters.to_schema())
            self._validators[name] = validator
        return validator

    def validate_arguments(self, name: str, arguments_json: str) -> list[str]:
        """
        Validate raw argument JSON against the named tool's schema.
        Returns a list of error messages (empty if valid).
        """
        if name not in self._tools:
            return [f"unknown tool: {name}"]
        try:
            arguments = json.loads(arguments_json or "{}")
        except (json.JSONDecodeError, ValueError) as e:
            return [f"arguments are not valid JSON: {e}"]
        if not isinstance(arguments, dict):
            return ["arguments must be a JSON object"]

        errors = []
        for error in sorted(self._validator(name).iter_errors(arguments), key=lambda e: list(e.path)):
            path = ".".join(str(p) for p in error.absolute_path) or "(root)"
            errors.append(f"[{path}] {error.message}")
        return errors


def catalog_from_dict(payload: dict[str, Any] | list[Any]) -> ToolCatalog:
    """Build a catalog from `{"tools": [...]}` or a bare list of tool mappings."""
    raw_tools = payload.get("tools") if isinstance(payload, dict) else payload
    if not isinstance(raw_tools, list):
        raise ValueError("Catalog must define a list of tools")

    tools = []
    for idx, raw in enumerate(raw_tools):
        if not isinstance(raw, dict):
            raise ValueError(f"[tools.{idx}] tool must be a mapping")
        name = str(raw.get("name", "")).strip()
        params = raw.get("parameters") or {"type": "object", "properties": {}}
        node = field_from_schema(params, path=f"tools.{idx}.parameters")
        if not isinstance(node, ObjectField):
            raise ValueError(f"[tools.{idx}.parameters] tool parameters must be an object schema")
        tools.append(ToolDefinition(name=name, description=str(raw.get("description", "")), parameters=node))
    return ToolCatalog(tools)


def load_catalog_file(path: str | Path) -> ToolCatalog:
    """Load a tool catalog YAML (or JSON) file."""
    with open(path) as f:
        payload = yaml.safe_load(f)
    if payload is None:
        raise ValueError(f"Catalog file is empty: {path}")
    return catalog_from_dict(payload)
