# scanner.py
"""
Single pass over a declaration module's AST.

Finds marker-derived classes (routed to the extractor) and records every
candidate implementation binding: top-level functions and assignments,
members of ordinary classes (and of the server class), and string-keyed
entries of top-level dict literals.
"""

from __future__ import annotations

import ast
import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional

from interface_mcp.compiler.errors import Diagnostic, DiagnosticCode, Severity
from interface_mcp.compiler.extractor import (
    build_declaration,
    build_server,
    reduce_literal,
    server_from_values,
    terminal_name,
)
from interface_mcp.compiler.types import (
    MARKERS,
    UNSET,
    BindingShape,
    BindingSource,
    CapabilityDeclaration,
    CapabilityKind,
    ImplementationBinding,
    ServerDeclaration,
)

logger = logging.getLogger(__name__)

# Identity members of a server class; never implementation bindings.
_SERVER_FIELDS = frozenset({"name", "version", "description", "flatten_routers", "flattenRouters"})


@dataclass
class ScanResult:
    declarations: List[CapabilityDeclaration] = field(default_factory=list)
    server: Optional[ServerDeclaration] = None
    bindings: List[ImplementationBinding] = field(default_factory=list)
    classes: Dict[str, ast.ClassDef] = field(default_factory=dict)
    diagnostics: List[Diagnostic] = field(default_factory=list)


def marker_kind(cls: ast.ClassDef) -> Optional[CapabilityKind]:
    """First base whose final identifier names a marker; None otherwise."""
    for base in cls.bases:
        # Generic[...] style bases: look at the subscripted name
        if isinstance(base, ast.Subscript):
            base = base.value
        kind = MARKERS.get(terminal_name(base) or "")
        if kind is not None:
            return kind
    return None


def declared_type_of(annotation: Optional[ast.AST]) -> Optional[str]:
    """`AddNumbers` / `mod.AddNumbers` / `Handler[AddNumbers]` -> 'AddNumbers'."""
    if annotation is None:
        return None
    if isinstance(annotation, ast.Constant) and isinstance(annotation.value, str):
        # string forward reference
        try:
            annotation = ast.parse(annotation.value, mode="eval").body
        except SyntaxError:
            return None
    if isinstance(annotation, ast.Subscript) and terminal_name(annotation.value) == "Handler":
        return terminal_name(annotation.slice)
    return terminal_name(annotation)


def _arity(args: ast.arguments, drop_first: bool = False) -> Optional[int]:
    if args.vararg is not None:
        return None
    count = len(args.posonlyargs) + len(args.args)
    if drop_first and count:
        count -= 1
    return count


def _is_staticmethod(fn: ast.AST) -> bool:
    return any(terminal_name(d) == "staticmethod" for d in getattr(fn, "decorator_list", []))


def _value_shape(value: Optional[ast.AST], class_names: set, function_names: set):
    """(shape, arity, is_async, instance_of) for an assigned value."""
    if isinstance(value, ast.Lambda):
        return BindingShape.CALLABLE, _arity(value.args), False, None
    if isinstance(value, ast.Dict):
        keys = {k.value for k in value.keys if isinstance(k, ast.Constant)}
        if "data" in keys:
            return BindingShape.DATA_OBJECT, None, False, None
        return BindingShape.VALUE, None, False, None
    if isinstance(value, ast.Call):
        callee = terminal_name(value.func)
        if callee in class_names:
            return BindingShape.INSTANCE, None, False, callee
    if isinstance(value, ast.Name) and value.id in function_names:
        return BindingShape.CALLABLE, None, False, None
    return BindingShape.VALUE, None, False, None


class DeclarationScanner:
    """
    Walks top-level statements once.

    Args:
        tree: Parsed module.
    """

    def __init__(self, tree: ast.Module):
        self.tree = tree
        self.result = ScanResult()
        self._class_names = {s.name for s in tree.body if isinstance(s, ast.ClassDef)}
        self._function_names = {
            s.name for s in tree.body if isinstance(s, (ast.FunctionDef, ast.AsyncFunctionDef))
        }

    def scan(self) -> ScanResult:
        for stmt in self.tree.body:
            if isinstance(stmt, ast.ClassDef):
                self._visit_class(stmt)
            elif isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef)):
                self.result.bindings.append(ImplementationBinding(
                    source=BindingSource.TOP_LEVEL,
                    symbol=stmt.name,
                    shape=BindingShape.CALLABLE,
                    arity=_arity(stmt.args),
                    is_async=isinstance(stmt, ast.AsyncFunctionDef),
                    lineno=stmt.lineno,
                ))
            elif isinstance(stmt, ast.Assign):
                for target in stmt.targets:
                    if isinstance(target, ast.Name):
                        self._visit_assignment(target.id, None, stmt.value, stmt.lineno)
            elif isinstance(stmt, ast.AnnAssign) and isinstance(stmt.target, ast.Name):
                self._visit_assignment(stmt.target.id, stmt.annotation, stmt.value, stmt.lineno)
        return self.result

    # -----------------------------------------------------------------
    # classes
    # -----------------------------------------------------------------

    def _visit_class(self, cls: ast.ClassDef) -> None:
        self.result.classes[cls.name] = cls
        kind = marker_kind(cls)

        if kind is CapabilityKind.SERVER:
            if self.result.server is not None:
                self._duplicate_server(cls.name, cls.lineno)
                self._collect_members(cls, skip=_SERVER_FIELDS)
                return
            self.result.server = build_server(cls, self.result.diagnostics)
            self._collect_members(cls, skip=_SERVER_FIELDS)
            return

        if kind is not None:
            decl = build_declaration(cls, kind, self.result.diagnostics)
            if decl is not None:
                self.result.declarations.append(decl)
            return

        server = self.result.server
        if server is not None and any(terminal_name(b) == server.declared_type for b in cls.bases):
            # implementation class of the server declaration
            self.result.server = replace(server, class_name=cls.name)
        self._collect_members(cls)

    def _duplicate_server(self, name: str, lineno: int) -> None:
        message = (f"second Server declaration at line {lineno} ignored (first one wins); "
                   "its methods still link as class members")
        logger.warning("⚠️ %s: %s", name, message)
        self.result.diagnostics.append(
            Diagnostic(name, "", message, Severity.WARNING, DiagnosticCode.DUPLICATE_SERVER)
        )

    def _collect_members(self, cls: ast.ClassDef, skip: frozenset = frozenset()) -> None:
        for stmt in cls.body:
            if isinstance(stmt, (ast.Assign, ast.AnnAssign)):
                targets = stmt.targets if isinstance(stmt, ast.Assign) else [stmt.target]
                if any(isinstance(t, ast.Name) and t.id in skip for t in targets):
                    continue
            if isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef)):
                if stmt.name.startswith("__"):
                    continue
                self.result.bindings.append(ImplementationBinding(
                    source=BindingSource.CLASS_MEMBER,
                    symbol=stmt.name,
                    shape=BindingShape.CALLABLE,
                    owner=cls.name,
                    arity=_arity(stmt.args, drop_first=not _is_staticmethod(stmt)),
                    is_async=isinstance(stmt, ast.AsyncFunctionDef),
                    lineno=stmt.lineno,
                ))
            elif isinstance(stmt, ast.AnnAssign) and isinstance(stmt.target, ast.Name):
                self._member_assignment(cls.name, stmt.target.id, stmt.annotation, stmt.value, stmt.lineno)
            elif isinstance(stmt, ast.Assign):
                for target in stmt.targets:
                    if isinstance(target, ast.Name):
                        self._member_assignment(cls.name, target.id, None, stmt.value, stmt.lineno)

    def _member_assignment(self, owner, name, annotation, value, lineno) -> None:
        shape, arity, is_async, instance_of = _value_shape(value, self._class_names, self._function_names)
        self.result.bindings.append(ImplementationBinding(
            source=BindingSource.CLASS_MEMBER,
            symbol=name,
            shape=shape,
            owner=owner,
            declared_type=declared_type_of(annotation),
            arity=arity,
            is_async=is_async,
            instance_of=instance_of,
            lineno=lineno,
        ))

    # -----------------------------------------------------------------
    # top-level assignments
    # -----------------------------------------------------------------

    def _visit_assignment(self, name: str, annotation: Optional[ast.AST],
                          value: Optional[ast.AST], lineno: int) -> None:
        declared = declared_type_of(annotation)

        # `server: Server = {...}`
        if MARKERS.get(declared or "") is CapabilityKind.SERVER and isinstance(value, ast.Dict):
            values = reduce_literal(value)
            if self.result.server is not None:
                self._duplicate_server(name, lineno)
            elif values is not UNSET:
                self.result.server = server_from_values(name, values, "", self.result.diagnostics)
            return

        shape, arity, is_async, instance_of = _value_shape(value, self._class_names, self._function_names)
        self.result.bindings.append(ImplementationBinding(
            source=BindingSource.TOP_LEVEL,
            symbol=name,
            shape=shape,
            declared_type=declared,
            arity=arity,
            is_async=is_async,
            instance_of=instance_of,
            lineno=lineno,
        ))

        if isinstance(value, ast.Dict) and shape is not BindingShape.DATA_OBJECT:
            for key_node, entry in zip(value.keys, value.values):
                if not (isinstance(key_node, ast.Constant) and isinstance(key_node.value, str)):
                    continue
                e_shape, e_arity, e_async, e_instance = _value_shape(
                    entry, self._class_names, self._function_names)
                self.result.bindings.append(ImplementationBinding(
                    source=BindingSource.OBJECT_PROPERTY,
                    symbol=key_node.value,
                    shape=e_shape,
                    owner=name,
                    arity=e_arity,
                    is_async=e_async,
                    instance_of=e_instance,
                    lineno=key_node.lineno,
                ))


def scan_module(tree: ast.Module) -> ScanResult:
    """Convenience wrapper: `DeclarationScanner(tree).scan()`."""
    return DeclarationScanner(tree).scan()
