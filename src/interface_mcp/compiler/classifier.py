# classifier.py
"""
Static/dynamic classification of declarations.

A static capability is served straight from its extracted literals; a
dynamic one needs a bound implementation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

from interface_mcp.compiler.types import CapabilityKind, MemberValue

# The member a kind is served from when static.
_SERVED_FROM = {
    CapabilityKind.RESOURCE: "data",
    CapabilityKind.PROMPT: "template",
    CapabilityKind.ELICITATION: "prompt",
}

# Kinds for which an explicit `dynamic` flag is honoured.
_OVERRIDABLE = set(_SERVED_FROM) | {CapabilityKind.SUBSCRIPTION}


@dataclass(frozen=True)
class Classification:
    dynamic: bool
    explicit: Optional[bool] = None
    ambiguity: Optional[str] = None


def _inferred(kind: CapabilityKind, members: Mapping[str, MemberValue]) -> bool:
    if kind in (CapabilityKind.TOOL, CapabilityKind.COMPLETION):
        return True
    if kind is CapabilityKind.SUBSCRIPTION:
        handler = members.get("handler")
        return handler is not None and not handler.literal
    field = _SERVED_FROM.get(kind)
    if field is None:
        # server, router, roots
        return False
    member = members.get(field)
    if member is None or not member.literal:
        return True
    if kind is not CapabilityKind.RESOURCE and not isinstance(member.value, str):
        return True
    return False


def classify(kind: CapabilityKind, members: Mapping[str, MemberValue]) -> Classification:
    """
    Decide whether a declaration is dynamic.

    Args:
        kind: Capability kind.
        members: Extracted class members.

    Returns:
        Classification. An explicit literal `dynamic` flag wins over what
        extraction alone would decide; a contradiction between the two is
        reported in `ambiguity`.
    """
    inferred = _inferred(kind, members)
    flag = members.get("dynamic")
    if flag is None or not flag.literal or not isinstance(flag.value, bool):
        return Classification(dynamic=inferred)

    explicit = flag.value
    if kind not in _OVERRIDABLE:
        if explicit != inferred:
            return Classification(
                dynamic=inferred,
                explicit=explicit,
                ambiguity=f"'dynamic = {explicit}' has no effect on a {kind.value}",
            )
        return Classification(dynamic=inferred, explicit=explicit)

    ambiguity = None
    if explicit != inferred:
        field = _SERVED_FROM.get(kind, "handler")
        if explicit:
            ambiguity = f"'dynamic = True' overrides literal '{field}'; the binding is used instead"
        else:
            ambiguity = f"'dynamic = False' but '{field}' is not literal; serving it as empty"
    return Classification(dynamic=explicit, explicit=explicit, ambiguity=ambiguity)
