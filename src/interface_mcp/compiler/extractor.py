# extractor.py
"""
Literal reduction of declaration class bodies.

Everything here works on `ast` nodes only; the declaration module is never
imported. A member whose value (or single-value `Literal[...]` annotation)
reduces to plain Python data is *literal*; anything else is kept as a
textual type signature for the schema compiler and the classifier.
"""

from __future__ import annotations

import ast
import logging
from types import MappingProxyType
from typing import Any, Dict, List, Optional, Tuple

from interface_mcp.compiler.classifier import classify
from interface_mcp.compiler.errors import DeclarationError, Diagnostic, DiagnosticCode, Severity
from interface_mcp.compiler.types import (
    UNSET,
    CapabilityDeclaration,
    CapabilityKind,
    MemberValue,
    ServerDeclaration,
)

logger = logging.getLogger(__name__)

# Nested structure classes, by kind.
STRUCTURE_CLASS = {
    CapabilityKind.TOOL: ("params", "Params"),
    CapabilityKind.PROMPT: ("args", "Args"),
    CapabilityKind.ELICITATION: ("args", "Args"),
}

# Members that are classification inputs rather than listing metadata.
_RESERVED = {"dynamic", "hidden", "data", "params", "args", "Params", "Args"}

# Static prompts and elicitations are served from one literal string member.
_STATIC_TEXT = {CapabilityKind.PROMPT: "template", CapabilityKind.ELICITATION: "prompt"}
_COMPLETION_REFS = ("argument", "resource")


def terminal_name(node: Optional[ast.AST]) -> Optional[str]:
    """Final identifier of `Name` / `Attribute` chains (`a.b.Tool` -> `Tool`)."""
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        return node.attr
    return None


def reduce_literal(node: Optional[ast.AST]) -> Any:
    """
    Reduce an expression node to plain data.

    Args:
        node: Any expression node.

    Returns:
        The reduced value, or UNSET when any part of the expression is not
        a literal. Containers are all-or-nothing.
    """
    if node is None:
        return UNSET

    if isinstance(node, ast.Constant):
        if node.value is None or isinstance(node.value, (str, bool, int, float)):
            return node.value
        return UNSET

    if isinstance(node, ast.UnaryOp) and isinstance(node.op, (ast.USub, ast.UAdd)):
        operand = node.operand
        if (isinstance(operand, ast.Constant) and isinstance(operand.value, (int, float))
                and not isinstance(operand.value, bool)):
            return -operand.value if isinstance(node.op, ast.USub) else operand.value
        return UNSET

    if isinstance(node, ast.Dict):
        out: Dict[str, Any] = {}
        for key_node, value_node in zip(node.keys, node.values):
            # `**spread` has key None
            if not (isinstance(key_node, ast.Constant) and isinstance(key_node.value, str)):
                return UNSET
            value = reduce_literal(value_node)
            if value is UNSET:
                return UNSET
            out[key_node.value] = value
        return out

    if isinstance(node, (ast.List, ast.Tuple)):
        items = []
        for elt in node.elts:
            value = reduce_literal(elt)
            if value is UNSET:
                return UNSET
            items.append(value)
        return items

    return UNSET


def literal_annotation_value(annotation: Optional[ast.AST]) -> Any:
    """`Literal["x"]` -> "x". Multi-value Literals and other types -> UNSET."""
    if not isinstance(annotation, ast.Subscript):
        return UNSET
    if terminal_name(annotation.value) != "Literal":
        return UNSET
    if isinstance(annotation.slice, ast.Tuple):
        if len(annotation.slice.elts) != 1:
            return UNSET
        return reduce_literal(annotation.slice.elts[0])
    return reduce_literal(annotation.slice)


def _member(name: str, value_node: Optional[ast.AST], annotation: Optional[ast.AST]) -> MemberValue:
    value = reduce_literal(value_node)
    if value is UNSET and value_node is None:
        value = literal_annotation_value(annotation)
    if value is not UNSET:
        return MemberValue(name=name, literal=True, value=value, node=value_node or annotation)
    sig_node = annotation if annotation is not None else value_node
    return MemberValue(name=name, literal=False, type_signature=ast.unparse(sig_node),
                       node=value_node if value_node is not None else annotation)


def extract_members(cls: ast.ClassDef) -> Dict[str, MemberValue]:
    """
    Collect the members of one class body in declaration order.

    Args:
        cls: The class definition node.

    Returns:
        Map of member name -> MemberValue. Methods and nested classes are
        non-literal members whose node is the definition itself.
    """
    members: Dict[str, MemberValue] = {}
    for stmt in cls.body:
        if isinstance(stmt, ast.Assign):
            for target in stmt.targets:
                if isinstance(target, ast.Name):
                    members[target.id] = _member(target.id, stmt.value, None)
        elif isinstance(stmt, ast.AnnAssign) and isinstance(stmt.target, ast.Name):
            members[stmt.target.id] = _member(stmt.target.id, stmt.value, stmt.annotation)
        elif isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef)):
            members[stmt.name] = MemberValue(name=stmt.name, literal=False,
                                             type_signature="callable", node=stmt)
        elif isinstance(stmt, ast.ClassDef):
            members[stmt.name] = MemberValue(name=stmt.name, literal=False,
                                             type_signature=stmt.name, node=stmt)
    return members


def _literal_str(members: Dict[str, MemberValue], field: str) -> Tuple[Optional[str], bool]:
    """(value, present). Value is None when absent or not a literal str."""
    member = members.get(field)
    if member is None:
        return None, False
    if member.literal and isinstance(member.value, str):
        return member.value, True
    return None, True


def _structure(kind: CapabilityKind, members: Dict[str, MemberValue]) -> Tuple[Optional[ast.AST], str]:
    names = STRUCTURE_CLASS.get(kind)
    if not names:
        return None, ""
    for name in names:
        member = members.get(name)
        if member is None or member.literal:
            continue
        if isinstance(member.node, ast.ClassDef):
            return member.node, member.node.name
        # `params: AddParams` naming a class nested in the declaration
        nested = members.get(member.type_signature)
        if nested is not None and isinstance(nested.node, ast.ClassDef):
            return nested.node, member.type_signature
        return member.node, member.type_signature
    return None, ""


def build_declaration(
    cls: ast.ClassDef,
    kind: CapabilityKind,
    diagnostics: List[Diagnostic],
) -> Optional[CapabilityDeclaration]:
    """
    Reduce one marker-derived class to a CapabilityDeclaration.

    Required-field problems are appended to `diagnostics` as
    DeclarationErrors and the declaration is dropped (None). Classification
    warnings are appended and the declaration is kept.
    """
    members = extract_members(cls)
    key_field = "uri" if kind.keyed_by_uri else "name"
    key, present = _literal_str(members, key_field)

    if kind is CapabilityKind.ROOTS and not key:
        key = cls.name
    if not key:
        reason = "must be a literal string" if present else "is required"
        if present and key == "":
            reason = "must not be empty"
        diagnostics.append(DeclarationError(cls.name, key_field, f"'{key_field}' {reason}").to_diagnostic())
        return None

    metadata: Dict[str, Any] = {}
    signatures: Dict[str, str] = {}
    for name, member in members.items():
        if name in _RESERVED:
            if not member.literal:
                signatures[name] = member.type_signature
            continue
        if member.literal:
            metadata[name] = member.value
        elif member.type_signature != "callable" and not isinstance(member.node, ast.ClassDef):
            signatures[name] = member.type_signature
    if "description" not in metadata:
        metadata["description"] = ast.get_docstring(cls) or ""

    if kind is CapabilityKind.ROUTER:
        tools = metadata.get("tools")
        if "tools" in signatures or (tools is not None and not all(isinstance(t, str) for t in tools)):
            diagnostics.append(DeclarationError(
                key, "tools", "router 'tools' must be a literal list of tool names").to_diagnostic())
            return None

    if kind is CapabilityKind.COMPLETION and "ref" in members:
        ref = metadata.get("ref")
        if not (isinstance(ref, dict) and ref.get("type", "argument") in _COMPLETION_REFS
                and isinstance(ref.get("name"), str) and ref["name"]):
            diagnostics.append(DeclarationError(
                key, "ref", "completion 'ref' must be a literal {'type': 'argument' | 'resource', 'name': str}",
            ).to_diagnostic())
            return None

    hidden: Any = None
    hidden_is_predicate = False
    hidden_member = members.get("hidden")
    if hidden_member is not None:
        if hidden_member.literal:
            if hidden_member.value is not None and not isinstance(hidden_member.value, bool):
                diagnostics.append(DeclarationError(
                    key, "hidden", "'hidden' must be a bool or a predicate").to_diagnostic())
                return None
            hidden = hidden_member.value
        else:
            hidden_is_predicate = True

    data_member = members.get("data")
    data = data_member.value if data_member is not None and data_member.literal else UNSET

    verdict = classify(kind, members)
    served = _STATIC_TEXT.get(kind)
    if served and verdict.explicit is False and not isinstance(metadata.get(served), str):
        diagnostics.append(DeclarationError(
            key, served, f"'dynamic = False' needs a literal string '{served}' to serve").to_diagnostic())
        return None
    if verdict.ambiguity:
        logger.warning("⚠️ %s: %s", key, verdict.ambiguity)
        diagnostics.append(Diagnostic(key, "dynamic", verdict.ambiguity, Severity.WARNING,
                                      DiagnosticCode.CLASSIFICATION_AMBIGUITY))

    structure, structure_sig = _structure(kind, members)

    return CapabilityDeclaration(
        kind=kind,
        declared_type=cls.name,
        key=key,
        metadata=MappingProxyType(metadata),
        signatures=MappingProxyType(signatures),
        dynamic=verdict.dynamic,
        explicit_dynamic=verdict.explicit,
        data=data,
        hidden=hidden,
        hidden_is_predicate=hidden_is_predicate,
        structure_signature=structure_sig,
        structure=structure,
        lineno=cls.lineno,
    )


def build_server(cls: ast.ClassDef, diagnostics: List[Diagnostic]) -> Optional[ServerDeclaration]:
    """Server identity from a `class X(Server)` body."""
    members = extract_members(cls)
    return server_from_values(
        cls.name,
        {n: m.value for n, m in members.items() if m.literal},
        ast.get_docstring(cls) or "",
        diagnostics,
        class_name=cls.name,
    )


def server_from_values(
    declared_type: str,
    values: Dict[str, Any],
    docstring: str,
    diagnostics: List[Diagnostic],
    class_name: Optional[str] = None,
) -> Optional[ServerDeclaration]:
    name = values.get("name")
    if not isinstance(name, str) or not name:
        diagnostics.append(DeclarationError(declared_type, "name",
                                            "server 'name' must be a non-empty literal string").to_diagnostic())
        return None
    flatten = values.get("flatten_routers", values.get("flattenRouters"))
    version = values.get("version")
    return ServerDeclaration(
        declared_type=declared_type,
        name=name,
        version=version if isinstance(version, str) else "1.0.0",
        description=values.get("description") or docstring,
        flatten_routers=flatten if isinstance(flatten, bool) else None,
        class_name=class_name,
        metadata=MappingProxyType(dict(values)),
    )
