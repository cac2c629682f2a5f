# schema_compiler.py
"""
Compile parameter annotations into ParameterSchema trees.

Works on annotation ASTs, so nothing in the declaration module needs to be
importable. Anything that cannot be resolved becomes an `any` node.
"""

from __future__ import annotations

import ast
import logging
import re
from dataclasses import replace
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Set

from interface_mcp.compiler.errors import Diagnostic, DiagnosticCode, Severity
from interface_mcp.compiler.extractor import reduce_literal, terminal_name
from interface_mcp.compiler.types import (
    EMPTY_OBJECT_SCHEMA,
    UNSET,
    CapabilityDeclaration,
    CapabilityKind,
    ParameterSchema,
)

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")

_SCALARS = {
    "str": "string",
    "int": "integer",
    "float": "number",
    "bool": "boolean",
    "None": "null",
    "NoneType": "null",
    "Any": "any",
    "object": "any",
}
_ARRAYS = {"list", "List", "Sequence", "MutableSequence", "Iterable", "set", "Set", "frozenset", "FrozenSet"}
_OBJECTS = {"dict", "Dict", "Mapping", "MutableMapping", "TypedDict"}
_CONSTRAINT_CALLS = {"Param", "Field"}

# Param(...) / Field(...) keyword -> ParameterSchema attribute
_CONSTRAINT_KEYWORDS = {
    "description": "description",
    "min": "minimum",
    "ge": "minimum",
    "minimum": "minimum",
    "max": "maximum",
    "le": "maximum",
    "maximum": "maximum",
    "gt": "exclusive_minimum",
    "exclusive_min": "exclusive_minimum",
    "exclusive_minimum": "exclusive_minimum",
    "lt": "exclusive_maximum",
    "exclusive_max": "exclusive_maximum",
    "exclusive_maximum": "exclusive_maximum",
    "min_length": "min_length",
    "minLength": "min_length",
    "max_length": "max_length",
    "maxLength": "max_length",
    "pattern": "pattern",
    "min_items": "min_items",
    "minItems": "min_items",
    "max_items": "max_items",
    "maxItems": "max_items",
}


def _enum_type(values: List[Any]) -> str:
    if values and all(isinstance(v, bool) for v in values):
        return "boolean"
    if values and all(isinstance(v, str) for v in values):
        return "string"
    if values and all(isinstance(v, int) and not isinstance(v, bool) for v in values):
        return "integer"
    if values and all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in values):
        return "number"
    return "any"


class SchemaCompiler:
    """
    Maps annotation nodes to ParameterSchema nodes.

    Args:
        classes: Module-level class definitions, used to resolve class-name
                 references into object schemas.
    """

    def __init__(self, classes: Mapping[str, ast.ClassDef]):
        self.classes = classes
        self._stack: Set[str] = set()
        self.warnings: List[str] = []

    # -----------------------------------------------------------------
    # structures
    # -----------------------------------------------------------------

    def compile_class(self, cls: ast.ClassDef) -> ParameterSchema:
        """Object schema whose properties are the class's annotated fields."""
        if cls.name in self._stack:
            # recursive reference; stop at a free object
            return ParameterSchema(type="object")
        self._stack.add(cls.name)
        local = {s.name: s for s in cls.body if isinstance(s, ast.ClassDef)}
        saved = self.classes
        if local:
            self.classes = {**saved, **local}
        try:
            props: Dict[str, ParameterSchema] = {}
            for stmt in cls.body:
                if not (isinstance(stmt, ast.AnnAssign) and isinstance(stmt.target, ast.Name)):
                    continue
                prop = self.compile_annotation(stmt.annotation)
                if stmt.value is not None:
                    prop = self._apply_default(prop, stmt.value)
                props[stmt.target.id] = prop
        finally:
            self.classes = saved
            self._stack.discard(cls.name)
        description = ast.get_docstring(cls)
        return ParameterSchema(type="object", properties=MappingProxyType(props),
                               description=description or None)

    def compile_structure(self, node: Optional[ast.AST]) -> ParameterSchema:
        if node is None:
            return EMPTY_OBJECT_SCHEMA
        if isinstance(node, ast.ClassDef):
            return self.compile_class(node)
        schema = self.compile_annotation(node)
        if schema.type != "object":
            logger.warning("⚠️ Parameter structure %r is not an object type; accepting any object",
                           ast.unparse(node))
            return ParameterSchema(type="object")
        return schema

    # -----------------------------------------------------------------
    # annotations
    # -----------------------------------------------------------------

    def compile_annotation(self, node: Optional[ast.AST]) -> ParameterSchema:
        if node is None:
            return ParameterSchema()

        if isinstance(node, ast.Constant):
            if node.value is None:
                return ParameterSchema(type="null")
            if isinstance(node.value, str):
                try:
                    return self.compile_annotation(ast.parse(node.value, mode="eval").body)
                except SyntaxError:
                    return ParameterSchema()
            return ParameterSchema()

        if isinstance(node, ast.BinOp) and isinstance(node.op, ast.BitOr):
            return self._union(self._flatten_union(node))

        if isinstance(node, (ast.Name, ast.Attribute)):
            return self._named(terminal_name(node) or "")

        if isinstance(node, ast.Subscript):
            return self._subscript(node)

        return ParameterSchema()

    def _named(self, name: str) -> ParameterSchema:
        if name in _SCALARS:
            return ParameterSchema(type=_SCALARS[name])
        if name in _ARRAYS or name in ("tuple", "Tuple"):
            return ParameterSchema(type="array", items=ParameterSchema())
        if name in _OBJECTS:
            return ParameterSchema(type="object")
        cls = self.classes.get(name)
        if cls is not None:
            return self.compile_class(cls)
        return ParameterSchema()

    def _subscript(self, node: ast.Subscript) -> ParameterSchema:
        head = terminal_name(node.value) or ""
        args = list(node.slice.elts) if isinstance(node.slice, ast.Tuple) else [node.slice]

        if head == "Optional":
            return replace(self.compile_annotation(args[0]), optional=True)
        if head == "Union":
            return self._union(args)
        if head == "NotRequired":
            return replace(self.compile_annotation(args[0]), optional=True)
        if head == "Required":
            return replace(self.compile_annotation(args[0]), optional=False)
        if head == "Literal":
            values = [reduce_literal(a) for a in args]
            if any(v is UNSET for v in values):
                return ParameterSchema()
            return ParameterSchema(type=_enum_type(values), enum=tuple(values))
        if head in _ARRAYS:
            return ParameterSchema(type="array", items=self.compile_annotation(args[0]))
        if head in ("tuple", "Tuple"):
            if len(args) == 2 and isinstance(args[1], ast.Constant) and args[1].value is Ellipsis:
                return ParameterSchema(type="array", items=self.compile_annotation(args[0]))
            return ParameterSchema(type="array", items=ParameterSchema(),
                                   min_items=len(args), max_items=len(args))
        if head in _OBJECTS:
            return ParameterSchema(type="object")
        if head == "Annotated":
            return self._annotated(args)
        return ParameterSchema()

    def _flatten_union(self, node: ast.AST) -> List[ast.AST]:
        if isinstance(node, ast.BinOp) and isinstance(node.op, ast.BitOr):
            return self._flatten_union(node.left) + self._flatten_union(node.right)
        return [node]

    def _union(self, members: List[ast.AST]) -> ParameterSchema:
        optional = False
        rest = []
        for member in members:
            if (isinstance(member, ast.Constant) and member.value is None) or terminal_name(member) == "None":
                optional = True
            else:
                rest.append(member)
        if len(rest) == 1:
            schema = self.compile_annotation(rest[0])
        else:
            compiled = [self.compile_annotation(m) for m in rest]
            # int | float widens to number; other mixes stay open
            types = {s.type for s in compiled}
            schema = ParameterSchema(type="number") if types == {"integer", "number"} else ParameterSchema()
        return replace(schema, optional=schema.optional or optional)

    def _annotated(self, args: List[ast.AST]) -> ParameterSchema:
        schema = self.compile_annotation(args[0])
        for meta in args[1:]:
            if isinstance(meta, ast.Constant) and isinstance(meta.value, str):
                schema = replace(schema, description=meta.value)
            elif isinstance(meta, ast.Call) and terminal_name(meta.func) in _CONSTRAINT_CALLS:
                schema = self._apply_constraints(schema, meta)
        return schema

    def _apply_constraints(self, schema: ParameterSchema, call: ast.Call) -> ParameterSchema:
        changes: Dict[str, Any] = {}
        # Field("default", ...) positional default
        if call.args and terminal_name(call.func) == "Field":
            default = reduce_literal(call.args[0])
            if default is not UNSET and not (isinstance(call.args[0], ast.Constant)
                                             and call.args[0].value is Ellipsis):
                changes["default"] = default
                changes["optional"] = True
        for kw in call.keywords:
            if kw.arg is None:
                continue
            value = reduce_literal(kw.value)
            if value is UNSET:
                logger.debug("Ignoring non-literal constraint %s=%s", kw.arg, ast.unparse(kw.value))
                continue
            if kw.arg in _CONSTRAINT_KEYWORDS:
                changes[_CONSTRAINT_KEYWORDS[kw.arg]] = value
            elif kw.arg == "required":
                changes["optional"] = not bool(value)
            elif kw.arg == "enum" and isinstance(value, list):
                changes["enum"] = tuple(value)
            elif kw.arg == "int" and value is True:
                changes["type"] = "integer"
            elif kw.arg == "default":
                changes["default"] = value
                changes["optional"] = True
        if "pattern" in changes:
            self._check_pattern(changes)
        return replace(schema, **changes)

    def _check_pattern(self, changes: Dict[str, Any]) -> None:
        pattern = changes["pattern"]
        try:
            if not isinstance(pattern, str):
                raise TypeError(f"pattern must be a string, got {type(pattern).__name__}")
            re.compile(pattern)
        except (re.error, TypeError) as e:
            message = f"dropping invalid pattern {pattern!r}: {e}"
            logger.warning("⚠️ %s", message)
            self.warnings.append(message)
            del changes["pattern"]

    def _apply_default(self, schema: ParameterSchema, value: ast.AST) -> ParameterSchema:
        if isinstance(value, ast.Call) and terminal_name(value.func) in _CONSTRAINT_CALLS:
            return self._apply_constraints(schema, value)
        default = reduce_literal(value)
        if default is UNSET:
            return replace(schema, optional=True)
        return replace(schema, optional=True, default=default)


def infer_template_schema(template: str) -> ParameterSchema:
    """Required string properties for each distinct `{placeholder}` in order."""
    names = list(dict.fromkeys(PLACEHOLDER_RE.findall(template)))
    return ParameterSchema(
        type="object",
        properties=MappingProxyType({n: ParameterSchema(type="string") for n in names}),
    )


def compile_declaration_schema(
    decl: CapabilityDeclaration,
    classes: Mapping[str, ast.ClassDef],
    diagnostics: Optional[List[Diagnostic]] = None,
) -> ParameterSchema:
    """
    Input schema for one declaration.

    Args:
        decl: The declaration.
        classes: Module-level classes for reference resolution.
        diagnostics: Receives a warning for each constraint that was dropped.

    Returns:
        An object schema. Never raises; an unreadable structure compiles to
        a free object.
    """
    if decl.structure is not None:
        compiler = SchemaCompiler(classes)
        try:
            schema = compiler.compile_structure(decl.structure)
        except (RecursionError, ValueError, TypeError) as e:
            logger.warning("⚠️ Could not compile parameters of %s: %s", decl.key, e)
            schema = ParameterSchema(type="object")
        if diagnostics is not None:
            diagnostics.extend(
                Diagnostic(decl.key, decl.structure_signature or "params", message,
                           Severity.WARNING, DiagnosticCode.SCHEMA)
                for message in compiler.warnings
            )
        return schema
    if decl.kind is CapabilityKind.PROMPT and decl.template:
        return infer_template_schema(decl.template)
    return EMPTY_OBJECT_SCHEMA
