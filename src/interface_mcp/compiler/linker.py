# linker.py
"""
Match declarations to implementation bindings and build table entries.

Linking keys:
    tool / prompt / elicitation / router  ->  camelCase of the declared name
    resource / subscription               ->  the exact uri

A binding annotated with the declaration's class (`add: AddNumbers = ...`
or `Handler[AddNumbers]`) wins over a binding that merely has the right
name. Among name matches: top-level, then class members (server class
first), then entries of top-level dict literals.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

from interface_mcp.compiler.errors import DeclarationError, Diagnostic, DiagnosticCode, LinkError, Severity
from interface_mcp.compiler.scanner import ScanResult
from interface_mcp.compiler.schema_compiler import compile_declaration_schema
from interface_mcp.compiler.types import (
    BindingSource,
    CapabilityDeclaration,
    CapabilityEntry,
    CapabilityKind,
    ImplementationBinding,
)

logger = logging.getLogger(__name__)

_SEPARATORS = re.compile(r"[_\-\s]+")

# Kinds that may carry an implementation binding at all.
_LINKABLE = {
    CapabilityKind.TOOL,
    CapabilityKind.PROMPT,
    CapabilityKind.RESOURCE,
    CapabilityKind.ELICITATION,
    CapabilityKind.SUBSCRIPTION,
    CapabilityKind.COMPLETION,
}


def to_camel_case(name: str) -> str:
    """
    snake_case / kebab-case -> camelCase. Names without separators are
    returned unchanged.

    Args:
        name: Declared capability name.

    Returns:
        The linking key.
    """
    parts = [p for p in _SEPARATORS.split(name) if p]
    if len(parts) <= 1:
        return name
    return parts[0] + "".join(p[:1].upper() + p[1:] for p in parts[1:])


def linking_key(decl: CapabilityDeclaration) -> str:
    if decl.kind.keyed_by_uri:
        return decl.key
    return to_camel_case(decl.key)


def requires_binding(decl: CapabilityDeclaration) -> bool:
    if decl.kind in (CapabilityKind.TOOL, CapabilityKind.COMPLETION):
        return True
    if decl.kind in (CapabilityKind.PROMPT, CapabilityKind.RESOURCE,
                     CapabilityKind.ELICITATION, CapabilityKind.SUBSCRIPTION):
        return decl.dynamic
    return False


@dataclass
class LinkResult:
    entries: Dict[CapabilityKind, Dict[str, CapabilityEntry]] = field(default_factory=dict)
    diagnostics: List[Diagnostic] = field(default_factory=list)


class Linker:
    """
    Resolve bindings for every scanned declaration.

    Args:
        scan: Output of the declaration scanner.
    """

    def __init__(self, scan: ScanResult):
        self.scan = scan
        self._server_owners: List[str] = []
        if scan.server is not None:
            self._server_owners = [o for o in (scan.server.class_name, scan.server.declared_type) if o]

    # -----------------------------------------------------------------
    # binding lookup
    # -----------------------------------------------------------------

    def _by_declared_type(self, decl: CapabilityDeclaration) -> Optional[ImplementationBinding]:
        matches = [b for b in self.scan.bindings if b.declared_type == decl.declared_type]
        return self._first_in_order(matches)

    def _by_name(self, key: str) -> Optional[ImplementationBinding]:
        matches = [b for b in self.scan.bindings if b.symbol == key]
        return self._first_in_order(matches)

    def _first_in_order(self, matches: List[ImplementationBinding]) -> Optional[ImplementationBinding]:
        if not matches:
            return None

        def rank(b: ImplementationBinding):
            if b.source is BindingSource.TOP_LEVEL:
                return (0, 0)
            if b.source is BindingSource.CLASS_MEMBER:
                if b.owner in self._server_owners:
                    return (1, self._server_owners.index(b.owner))
                return (2, 0)
            return (3, 0)

        # sorted() is stable, so declaration order breaks ties
        return sorted(matches, key=rank)[0]

    def _missing_binding(self, decl: CapabilityDeclaration, key: str) -> LinkError:
        if not decl.kind.keyed_by_uri and key != decl.key and self._by_name(decl.key) is not None:
            return LinkError(
                decl.key,
                f"no implementation found for {decl.kind.value} '{decl.key}': expected a binding "
                f"named '{key}' but found snake_case '{decl.key}'; rename it to '{key}'",
            )
        return LinkError(
            decl.key,
            f"no implementation found for {decl.kind.value} '{decl.key}': expected a binding "
            f"named '{key}' or one annotated as '{decl.declared_type}'",
        )

    # -----------------------------------------------------------------
    # linking
    # -----------------------------------------------------------------

    def link(self) -> LinkResult:
        result = LinkResult(entries={kind: {} for kind in CapabilityKind})
        seen_keys: Dict[CapabilityKind, Dict[str, str]] = {kind: {} for kind in CapabilityKind}

        for decl in self.scan.declarations:
            key = linking_key(decl)
            field_name = "uri" if decl.kind.keyed_by_uri else "name"
            kind_seen = seen_keys[decl.kind]
            if key in kind_seen:
                other = kind_seen[key]
                result.diagnostics.append(DeclarationError(
                    decl.key, field_name,
                    f"duplicate {decl.kind.value} '{decl.key}' (already declared by {other})",
                ).to_diagnostic())
                continue
            kind_seen[key] = decl.declared_type

            binding = None
            if decl.kind in _LINKABLE and (requires_binding(decl) or decl.kind is CapabilityKind.SUBSCRIPTION):
                binding = self._by_declared_type(decl) or self._by_name(key)
                if binding is None and requires_binding(decl):
                    error = self._missing_binding(decl, key)
                    logger.error("❌ %s", error)
                    result.diagnostics.append(error.to_diagnostic(field_name))
                    continue

            result.entries[decl.kind][decl.key] = CapabilityEntry(
                declaration=decl,
                binding=binding,
                schema=compile_declaration_schema(decl, self.scan.classes, result.diagnostics),
                linking_key=key,
            )

        self._link_routers(result)
        self._check_completion_refs(result)
        return result

    def _check_completion_refs(self, result: LinkResult) -> None:
        owners: Dict[Tuple[str, str], str] = {}
        completions = result.entries[CapabilityKind.COMPLETION]
        for name in list(completions):
            ref = completions[name].declaration.completion_ref
            if ref is None:
                continue
            if ref in owners:
                result.diagnostics.append(DeclarationError(
                    name, "ref", f"{ref[0]} '{ref[1]}' is already completed by '{owners[ref]}'",
                ).to_diagnostic())
                del completions[name]
                continue
            owners[ref] = name

    def _link_routers(self, result: LinkResult) -> None:
        tools = result.entries[CapabilityKind.TOOL]
        routers = result.entries[CapabilityKind.ROUTER]

        tool_names = {d.key for d in self.scan.declarations if d.kind is CapabilityKind.TOOL}
        for name in list(routers):
            if name in tool_names:
                result.diagnostics.append(DeclarationError(
                    name, "name", f"router name '{name}' collides with a tool of the same name",
                ).to_diagnostic())
                del routers[name]

        for name, router in routers.items():
            for tool_name in router.declaration.router_tools:
                entry = tools.get(tool_name)
                if entry is None:
                    message = f"router '{name}' lists unknown tool '{tool_name}'"
                elif entry.router is not None and entry.router != name:
                    message = f"tool '{tool_name}' already belongs to router '{entry.router}'"
                else:
                    tools[tool_name] = replace(entry, router=name)
                    continue
                logger.warning("⚠️ %s", message)
                result.diagnostics.append(Diagnostic(name, "tools", message, Severity.WARNING,
                                                     DiagnosticCode.ROUTER_MEMBER))


def link(scan: ScanResult) -> LinkResult:
    return Linker(scan).link()
