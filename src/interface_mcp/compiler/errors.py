# errors.py
"""
Exception types and diagnostic records for the declaration compiler
and the runtime dispatcher.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Iterable, List


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class DiagnosticCode(str, Enum):
    DECLARATION = "DeclarationError"
    LINK = "LinkError"
    CLASSIFICATION_AMBIGUITY = "ClassificationAmbiguity"
    ROUTER_MEMBER = "RouterMemberWarning"
    DUPLICATE_SERVER = "DuplicateServer"
    SCHEMA = "SchemaWarning"
    SYNTAX = "SyntaxError"


@dataclass(frozen=True)
class Diagnostic:
    """ One finding from a compile pass, in the flat dry-run report format. """
    capability_name: str
    field_path: str
    message: str
    severity: Severity = Severity.ERROR
    code: DiagnosticCode = DiagnosticCode.DECLARATION

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["severity"] = self.severity.value
        data["code"] = self.code.value
        return data

    def __str__(self) -> str:
        where = f"{self.capability_name}.{self.field_path}" if self.field_path else self.capability_name
        return f"[{self.code.value}] {where}: {self.message}"


class InterfaceMcpError(Exception):
    """Base class for every error raised by interface_mcp."""


class DeclarationError(InterfaceMcpError):
    """A declaration is missing a required literal field or clashes with another."""

    def __init__(self, capability_name: str, field_path: str, message: str):
        super().__init__(f"{capability_name}.{field_path}: {message}")
        self.capability_name = capability_name
        self.field_path = field_path
        self.message = message

    def to_diagnostic(self) -> Diagnostic:
        return Diagnostic(self.capability_name, self.field_path, self.message,
                          Severity.ERROR, DiagnosticCode.DECLARATION)


class LinkError(InterfaceMcpError):
    """A declared capability has no resolvable implementation."""

    def __init__(self, capability_name: str, message: str):
        super().__init__(f"{capability_name}: {message}")
        self.capability_name = capability_name
        self.message = message

    def to_diagnostic(self, field_path: str = "") -> Diagnostic:
        return Diagnostic(self.capability_name, field_path, self.message,
                          Severity.ERROR, DiagnosticCode.LINK)


class CompilationError(InterfaceMcpError):
    """Raised once per load, carrying every hard diagnostic of the pass."""

    def __init__(self, diagnostics: Iterable[Diagnostic]):
        self.diagnostics: List[Diagnostic] = [d for d in diagnostics if d.is_error]
        lines = "\n".join(f"  - {d}" for d in self.diagnostics)
        super().__init__(f"{len(self.diagnostics)} error(s) while compiling declarations:\n{lines}")

    @property
    def link_errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.code is DiagnosticCode.LINK]

    @property
    def declaration_errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.code is DiagnosticCode.DECLARATION]


class CoercionError(InterfaceMcpError):
    """Bad parameters for one invocation. Never fatal to the server."""

    def __init__(self, issues: list):
        self.issues = list(issues)
        summary = "; ".join(str(i) for i in self.issues)
        super().__init__(f"Invalid parameters: {summary}")


class CapabilityNotFound(InterfaceMcpError, KeyError):
    """No capability of the requested kind under the given name or uri."""

    def __init__(self, kind: str, key: str):
        InterfaceMcpError.__init__(self, f"Unknown {kind} '{key}'")
        self.kind = kind
        self.key = key

    def __str__(self) -> str:
        return str(self.args[0])


class CapabilityUnavailable(InterfaceMcpError):
    """The collaborator runtime did not supply a context callable."""
