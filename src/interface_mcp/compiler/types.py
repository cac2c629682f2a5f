# types.py
"""
Data model shared by the compiler passes and the runtime dispatcher.

    CapabilityDeclaration   what a marker-derived class declares
    ParameterSchema         recursive validation schema for params/args
    ImplementationBinding   where the implementation of a declaration lives
    CapabilityTable         the linked, read-only result of one compile pass
"""

from __future__ import annotations

import ast
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple


class CapabilityKind(str, Enum):
    TOOL = "tool"
    PROMPT = "prompt"
    RESOURCE = "resource"
    SERVER = "server"
    ROUTER = "router"
    SUBSCRIPTION = "subscription"
    ELICITATION = "elicitation"
    ROOTS = "roots"
    COMPLETION = "completion"

    @property
    def keyed_by_uri(self) -> bool:
        return self in (CapabilityKind.RESOURCE, CapabilityKind.SUBSCRIPTION)


# Marker base-class names -> kind. Matching is by final identifier only.
MARKERS: Dict[str, CapabilityKind] = {
    "Tool": CapabilityKind.TOOL,
    "ITool": CapabilityKind.TOOL,
    "Prompt": CapabilityKind.PROMPT,
    "IPrompt": CapabilityKind.PROMPT,
    "Resource": CapabilityKind.RESOURCE,
    "IResource": CapabilityKind.RESOURCE,
    "Server": CapabilityKind.SERVER,
    "IServer": CapabilityKind.SERVER,
    "Router": CapabilityKind.ROUTER,
    "IToolRouter": CapabilityKind.ROUTER,
    "Subscription": CapabilityKind.SUBSCRIPTION,
    "ISubscription": CapabilityKind.SUBSCRIPTION,
    "Elicitation": CapabilityKind.ELICITATION,
    "IElicit": CapabilityKind.ELICITATION,
    "Roots": CapabilityKind.ROOTS,
    "IRoots": CapabilityKind.ROOTS,
    "Completion": CapabilityKind.COMPLETION,
    "ICompletion": CapabilityKind.COMPLETION,
}


class _Unset:
    """Sentinel for 'no value could be extracted'."""

    _instance: Optional["_Unset"] = None

    def __new__(cls) -> "_Unset":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


@dataclass(frozen=True)
class MemberValue:
    """ One member of a declaration class body, after literal reduction. """
    name: str
    literal: bool
    value: Any = UNSET
    type_signature: str = ""
    node: Optional[ast.AST] = field(default=None, compare=False, repr=False)


# ---------------------------------------------------------------------
# Parameter schema
# ---------------------------------------------------------------------

PRIMITIVE_TAGS = ("string", "number", "integer", "boolean", "null", "object", "array", "any")


@dataclass(frozen=True)
class ParameterSchema:
    """Recursive validation schema node.

    `type` is one of PRIMITIVE_TAGS. Object nodes carry `properties`
    (ordered as declared), array nodes carry `items`. Constraint fields
    map one-to-one onto JSON Schema keywords in `to_json_schema()`.
    """
    type: str = "any"
    optional: bool = False
    description: Optional[str] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    exclusive_minimum: Optional[float] = None
    exclusive_maximum: Optional[float] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    pattern: Optional[str] = None
    enum: Optional[Tuple[Any, ...]] = None
    properties: Optional[Mapping[str, "ParameterSchema"]] = None
    items: Optional["ParameterSchema"] = None
    min_items: Optional[int] = None
    max_items: Optional[int] = None
    default: Any = UNSET

    @property
    def required_names(self) -> List[str]:
        if not self.properties:
            return []
        return [name for name, prop in self.properties.items() if not prop.optional]

    def to_json_schema(self) -> Dict[str, Any]:
        """Emit the JSON-Schema-like wire form of this node."""
        schema: Dict[str, Any] = {}
        if self.type != "any":
            schema["type"] = self.type
        if self.description:
            schema["description"] = self.description
        if self.type == "object":
            props = self.properties or {}
            schema["properties"] = {name: prop.to_json_schema() for name, prop in props.items()}
            required = self.required_names
            if required:
                schema["required"] = required
        if self.items is not None:
            schema["items"] = self.items.to_json_schema()
        for attr, keyword in (
            ("minimum", "minimum"),
            ("maximum", "maximum"),
            ("exclusive_minimum", "exclusiveMinimum"),
            ("exclusive_maximum", "exclusiveMaximum"),
            ("min_length", "minLength"),
            ("max_length", "maxLength"),
            ("pattern", "pattern"),
            ("min_items", "minItems"),
            ("max_items", "maxItems"),
        ):
            value = getattr(self, attr)
            if value is not None:
                schema[keyword] = value
        if self.enum is not None:
            schema["enum"] = list(self.enum)
        if self.default is not UNSET:
            schema["default"] = self.default
        return schema


EMPTY_OBJECT_SCHEMA = ParameterSchema(type="object", properties=MappingProxyType({}))


# ---------------------------------------------------------------------
# Declarations
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class CapabilityDeclaration:
    """ A marker-derived class, reduced to data. """
    kind: CapabilityKind
    declared_type: str
    key: str
    metadata: Mapping[str, Any]
    signatures: Mapping[str, str]
    dynamic: bool
    explicit_dynamic: Optional[bool] = None
    data: Any = UNSET
    hidden: Any = None
    hidden_is_predicate: bool = False
    structure_signature: str = ""
    structure: Optional[ast.AST] = field(default=None, compare=False, repr=False)
    lineno: int = 0

    @property
    def name(self) -> str:
        return self.metadata.get("name") or self.key

    @property
    def description(self) -> str:
        return self.metadata.get("description") or ""

    @property
    def uri(self) -> Optional[str]:
        return self.metadata.get("uri")

    @property
    def template(self) -> Optional[str]:
        value = self.metadata.get("template")
        return value if isinstance(value, str) else None

    @property
    def mime_type(self) -> str:
        value = self.metadata.get("mime_type") or self.metadata.get("mimeType")
        if value:
            return value
        if isinstance(self.data, (dict, list)):
            return "application/json"
        return "text/plain"

    @property
    def router_tools(self) -> List[str]:
        tools = self.metadata.get("tools")
        return [t for t in tools if isinstance(t, str)] if isinstance(tools, list) else []

    @property
    def completion_ref(self) -> Optional[Tuple[str, str]]:
        """(ref type, ref name) a completion answers for, e.g. ("argument", "city")."""
        ref = self.metadata.get("ref")
        if isinstance(ref, dict) and isinstance(ref.get("name"), str):
            return ref.get("type", "argument"), ref["name"]
        return None

    @property
    def static(self) -> bool:
        return not self.dynamic


@dataclass(frozen=True)
class ServerDeclaration:
    declared_type: str
    name: str
    version: str = "1.0.0"
    description: str = ""
    flatten_routers: Optional[bool] = None
    class_name: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))


# ---------------------------------------------------------------------
# Bindings
# ---------------------------------------------------------------------

class BindingSource(str, Enum):
    TOP_LEVEL = "top-level"
    CLASS_MEMBER = "class-member"
    OBJECT_PROPERTY = "object-property"


class BindingShape(str, Enum):
    CALLABLE = "callable"
    VALUE = "value"
    DATA_OBJECT = "data-object"
    INSTANCE = "instance"


@dataclass(frozen=True)
class ImplementationBinding:
    """ Where a capability's implementation lives in the module. """
    source: BindingSource
    symbol: str
    shape: BindingShape
    owner: Optional[str] = None
    declared_type: Optional[str] = None
    arity: Optional[int] = None
    is_async: bool = False
    instance_of: Optional[str] = None
    lineno: int = 0

    @property
    def qualified_name(self) -> str:
        if self.source is BindingSource.CLASS_MEMBER:
            return f"{self.owner}.{self.symbol}"
        if self.source is BindingSource.OBJECT_PROPERTY:
            return f"{self.owner}[{self.symbol!r}]"
        return self.symbol


# ---------------------------------------------------------------------
# Capability table
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class CapabilityEntry:
    declaration: CapabilityDeclaration
    binding: Optional[ImplementationBinding]
    schema: ParameterSchema = EMPTY_OBJECT_SCHEMA
    router: Optional[str] = None
    linking_key: str = ""

    @property
    def kind(self) -> CapabilityKind:
        return self.declaration.kind

    @property
    def key(self) -> str:
        return self.declaration.key

    def describe(self) -> Dict[str, Any]:
        """MCP-style listing record for this entry."""
        decl = self.declaration
        if decl.kind.keyed_by_uri:
            record: Dict[str, Any] = {"uri": decl.key, "name": decl.metadata.get("name") or decl.key}
            if decl.description:
                record["description"] = decl.description
            if decl.kind is CapabilityKind.RESOURCE:
                record["mimeType"] = decl.mime_type
            return record
        record = {"name": decl.key, "description": decl.description}
        if decl.kind in (CapabilityKind.TOOL, CapabilityKind.ROUTER):
            record["inputSchema"] = self.schema.to_json_schema()
            annotations = decl.metadata.get("annotations")
            if isinstance(annotations, dict):
                record["annotations"] = dict(annotations)
        elif decl.kind in (CapabilityKind.PROMPT, CapabilityKind.ELICITATION):
            props = self.schema.properties or {}
            record["arguments"] = [
                {"name": n, "description": p.description or "", "required": not p.optional}
                for n, p in props.items()
            ]
        elif decl.kind is CapabilityKind.COMPLETION and decl.completion_ref:
            ref_type, ref_name = decl.completion_ref
            record["ref"] = {"type": ref_type, "name": ref_name}
        return record


class CapabilityTable:
    """Read-only map kind -> key -> CapabilityEntry, built once per load."""

    def __init__(self, entries: Mapping[CapabilityKind, Mapping[str, CapabilityEntry]],
                 server: Optional[ServerDeclaration] = None):
        self._entries = MappingProxyType(
            {kind: MappingProxyType(dict(entries.get(kind, {}))) for kind in CapabilityKind}
        )
        # linking key -> wire key, so both spellings find the same entry
        self._aliases = MappingProxyType({
            kind: MappingProxyType({
                e.linking_key: key for key, e in self._entries[kind].items()
                if e.linking_key and e.linking_key != key
            })
            for kind in CapabilityKind
        })
        self.server = server

    def of_kind(self, kind: CapabilityKind | str) -> Mapping[str, CapabilityEntry]:
        return self._entries[CapabilityKind(kind)]

    def get(self, kind: CapabilityKind | str, key: str) -> Optional[CapabilityEntry]:
        entries = self.of_kind(kind)
        if key in entries:
            return entries[key]
        alias = self._aliases[CapabilityKind(kind)].get(key)
        return entries.get(alias) if alias is not None else None

    def __iter__(self) -> Iterator[CapabilityEntry]:
        for kind in CapabilityKind:
            yield from self._entries[kind].values()

    def __len__(self) -> int:
        return sum(len(v) for v in self._entries.values())

    def router_of(self, tool_name: str) -> Optional[str]:
        entry = self.get(CapabilityKind.TOOL, tool_name)
        return entry.router if entry else None

    def __repr__(self) -> str:
        counts = ", ".join(f"{k.value}s={len(v)}" for k, v in self._entries.items() if v)
        return f"CapabilityTable({counts})"
