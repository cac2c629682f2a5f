# main_compiler.py
"""
One synchronous pass: parse -> scan/extract/classify -> link/schema.

    compiled = compile_file("server.py")
    compiled.raise_for_errors()
    compiled.table.get("tool", "add_numbers")
"""

from __future__ import annotations

import ast
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

from interface_mcp.compiler.errors import CompilationError, Diagnostic, DiagnosticCode, Severity
from interface_mcp.compiler.linker import link
from interface_mcp.compiler.scanner import scan_module
from interface_mcp.compiler.types import CapabilityKind, CapabilityTable

logger = logging.getLogger(__name__)

_REPORTED_KINDS = [k for k in CapabilityKind if k is not CapabilityKind.SERVER]


@dataclass
class CompiledModule:
    filename: str
    table: CapabilityTable
    diagnostics: List[Diagnostic] = field(default_factory=list)

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.is_error]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if not d.is_error]

    @property
    def ok(self) -> bool:
        return not self.errors

    def raise_for_errors(self) -> None:
        """Raise one CompilationError carrying every hard diagnostic."""
        if self.errors:
            raise CompilationError(self.errors)

    def report(self) -> Dict[str, Any]:
        """Dry-run summary, JSON-serialisable."""
        server = self.table.server
        return {
            "module": self.filename,
            "ok": self.ok,
            "server": {"name": server.name, "version": server.version} if server else None,
            "capabilities": {
                kind.value: sorted(entries)
                for kind, entries in ((k, self.table.of_kind(k)) for k in _REPORTED_KINDS)
                if entries
            },
            "diagnostics": [d.to_dict() for d in self.diagnostics],
        }


def compile_source(text: str, filename: str = "<declarations>") -> CompiledModule:
    """
    Compile declaration source text into a CapabilityTable.

    Args:
        text: Python source of one declaration module.
        filename: Used in diagnostics and syntax errors.

    Returns:
        CompiledModule. Errors are collected, not raised; call
        `raise_for_errors()` to fail on them.
    """
    try:
        tree = ast.parse(text, filename=filename)
    except SyntaxError as e:
        logger.error("❌ Could not parse %s: %s", filename, e)
        diag = Diagnostic(filename, f"line {e.lineno}", e.msg or str(e), Severity.ERROR, DiagnosticCode.SYNTAX)
        return CompiledModule(filename=filename, table=CapabilityTable({}), diagnostics=[diag])

    scan = scan_module(tree)
    linked = link(scan)
    table = CapabilityTable(linked.entries, server=scan.server)
    diagnostics = scan.diagnostics + linked.diagnostics

    errors = sum(1 for d in diagnostics if d.is_error)
    if errors:
        logger.error("❌ %s: %d capabilities, %d error(s)", filename, len(table), errors)
    else:
        logger.info("✅ %s: compiled %r", filename, table)
    return CompiledModule(filename=filename, table=table, diagnostics=diagnostics)


def compile_file(path: str | Path) -> CompiledModule:
    p = Path(path)
    return compile_source(p.read_text(encoding="utf-8"), filename=str(p))
