# dispatcher.py
"""
Runtime dispatch over a compiled CapabilityTable.

The Dispatcher owns the table, the resolved implementation objects and
the hidden specs for one loaded module. It never mutates the table.

    dispatcher = load_server("calculator.py")
    result = await dispatcher.execute("add_numbers", {"a": "2", "b": "3"})
    result.content   # 5
"""

from __future__ import annotations

import asyncio
import copy
import functools
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from interface_mcp.compiler.errors import CapabilityNotFound, CapabilityUnavailable, CoercionError
from interface_mcp.compiler.schema_compiler import PLACEHOLDER_RE
from interface_mcp.compiler.types import (
    EMPTY_OBJECT_SCHEMA,
    UNSET,
    BindingShape,
    CapabilityEntry,
    CapabilityKind,
    CapabilityTable,
    ParameterSchema,
)
from interface_mcp.runtime.coercion import CoercionIssue, coerce
from interface_mcp.runtime.context import ExecutionContext
from interface_mcp.runtime.hidden import VISIBLE, HiddenEvaluator, HiddenSpec, is_async_callable
from interface_mcp.utils.settings import Settings

logger = logging.getLogger(__name__)

ImplKey = Tuple[CapabilityKind, str]

_CONTEXT_NAMES = ("context", "ctx")

# Suggestions per completion response.
MAX_COMPLETION_VALUES = 100


@dataclass
class CallResult:
    """ Outcome of one tool call. `errors` is only set on coercion failure. """
    is_error: bool = False
    content: Any = None
    errors: List[CoercionIssue] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"isError": self.is_error, "content": self.content}
        if self.errors:
            out["errors"] = [e.to_dict() for e in self.errors]
        return out


async def invoke(fn: Any, params: Mapping[str, Any], context: Any,
                 schema: ParameterSchema = EMPTY_OBJECT_SCHEMA, first: Any = UNSET) -> Any:
    """
    Call an implementation with coerced params.

    If `fn` names any schema property (or takes **kwargs) it is called
    with keyword arguments, plus `context`/`ctx` when it declares one.
    Otherwise it gets `(params, context)` positionally, cut to its arity.
    Sync callables run in a worker thread.

    Args:
        fn: Resolved implementation.
        params: Coerced parameter object.
        context: ExecutionContext (or None).
        schema: The schema `params` was coerced against.
        first: Replaces `params` as the first positional argument.

    Returns:
        Whatever the implementation returns (awaited if needed).
    """
    try:
        parameters = inspect.signature(fn).parameters
    except (TypeError, ValueError):
        parameters = None

    head = params if first is UNSET else first
    if parameters is None:
        call = functools.partial(fn, head, context)
    else:
        names = set(parameters)
        takes_var_kw = any(p.kind is p.VAR_KEYWORD for p in parameters.values())
        props = set((schema.properties or {}).keys()) | set(params)
        # `def fn(ctx)` / `def fn(context=None)`: nothing positional to fill
        only_context = bool(names) and all(
            n in _CONTEXT_NAMES or p.default is not p.empty or p.kind in (p.VAR_POSITIONAL, p.VAR_KEYWORD)
            for n, p in parameters.items()
        ) and bool(names & set(_CONTEXT_NAMES))
        if takes_var_kw or (props & names) or only_context:
            if takes_var_kw:
                kwargs = dict(params)
            else:
                kwargs = {k: v for k, v in params.items() if k in names}
            for ctx_name in _CONTEXT_NAMES:
                if ctx_name in names and ctx_name not in props:
                    kwargs[ctx_name] = context
            call = functools.partial(fn, **kwargs)
        else:
            positional = [p for p in parameters.values()
                          if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)]
            arity = 2 if any(p.kind is p.VAR_POSITIONAL for p in parameters.values()) else len(positional)
            call = functools.partial(fn, *(head, context)[:arity])

    if is_async_callable(fn):
        return await call()
    result = await asyncio.to_thread(call)
    if inspect.isawaitable(result):
        result = await result
    return result


class Dispatcher:
    """
    Args:
        table: Compiled capabilities.
        implementations: (kind, key) -> resolved runtime object.
        hidden: (kind, key) -> HiddenSpec for predicate-valued `hidden`.
        settings: Timeouts, fail-open default, router flattening, coercion.
    """

    def __init__(
        self,
        table: CapabilityTable,
        implementations: Optional[Mapping[ImplKey, Any]] = None,
        hidden: Optional[Mapping[ImplKey, HiddenSpec]] = None,
        settings: Optional[Settings] = None,
    ):
        self.table = table
        self.settings = settings or Settings()
        self._implementations = dict(implementations or {})
        self._hidden = dict(hidden or {})
        self.evaluator = HiddenEvaluator(
            timeout_s=self.settings.hidden_timeout_s,
            slow_warn_s=self.settings.hidden_slow_warn_s,
            error_default=self.settings.hidden_error_default,
        )

    # -----------------------------------------------------------------
    # helpers
    # -----------------------------------------------------------------

    @property
    def server(self):
        return self.table.server

    def _entry(self, kind: CapabilityKind, key: str) -> CapabilityEntry:
        entry = self.table.get(kind, key)
        if entry is None:
            raise CapabilityNotFound(kind.value, key)
        return entry

    def _implementation(self, entry: CapabilityEntry) -> Any:
        try:
            return self._implementations[(entry.kind, entry.key)]
        except KeyError:
            raise CapabilityUnavailable(
                f"no runtime implementation loaded for {entry.kind.value} '{entry.key}'") from None

    def _context(self, context: Optional[ExecutionContext]) -> ExecutionContext:
        ctx = context if context is not None else ExecutionContext()
        if ctx.dispatcher is None:
            ctx.dispatcher = self
        return ctx

    def _coerce(self, raw: Any, schema: ParameterSchema):
        return coerce({} if raw is None else raw, schema, allow_non_finite=self.settings.allow_non_finite)

    def hidden_spec(self, entry: CapabilityEntry) -> HiddenSpec:
        resolved = self._hidden.get((entry.kind, entry.key))
        if resolved is not None:
            return resolved
        decl = entry.declaration
        if decl.hidden_is_predicate:
            logger.debug("hidden predicate of %s not loaded; listing it as visible", entry.key)
            return VISIBLE
        return HiddenSpec.static(bool(decl.hidden))

    def flatten_routers(self, override: Optional[bool] = None) -> bool:
        for choice in (override, self.settings.flatten_routers,
                       self.server.flatten_routers if self.server else None):
            if choice is not None:
                return choice
        return False

    # -----------------------------------------------------------------
    # listing
    # -----------------------------------------------------------------

    async def visible_entries(
        self,
        kind: CapabilityKind | str,
        context: Optional[ExecutionContext] = None,
        flatten_routers: Optional[bool] = None,
    ) -> List[CapabilityEntry]:
        """Entries of `kind` that are listed for `context`, in declaration order."""
        kind = CapabilityKind(kind)
        entries = list(self.table.of_kind(kind).values())
        if kind is CapabilityKind.TOOL and not self.flatten_routers(flatten_routers):
            entries = [e for e in entries if e.router is None]
            entries += list(self.table.of_kind(CapabilityKind.ROUTER).values())

        ctx = self._context(context)
        flags = await self.evaluator.evaluate_all(
            [(e.key, self.hidden_spec(e)) for e in entries], ctx)
        return [e for e, hidden in zip(entries, flags) if not hidden]

    async def list_capabilities(
        self,
        kind: CapabilityKind | str,
        context: Optional[ExecutionContext] = None,
        flatten_routers: Optional[bool] = None,
    ) -> List[Dict[str, Any]]:
        """
        Listing records for one kind.

        Args:
            kind: "tool", "prompt", "resource", ...
            context: Passed to hidden predicates.
            flatten_routers: Overrides settings and the server declaration.

        Returns:
            MCP-style descriptors. Tools assigned to a router are left out
            unless routers are flattened; routers themselves are listed
            as tools.
        """
        return [e.describe() for e in await self.visible_entries(kind, context, flatten_routers)]

    # -----------------------------------------------------------------
    # tools
    # -----------------------------------------------------------------

    async def execute(self, name: str, raw_params: Any = None,
                      context: Optional[ExecutionContext] = None) -> CallResult:
        """
        Coerce then invoke one tool. A router name returns its member tools.

        Raises:
            CapabilityNotFound: no tool or router by that name.
        """
        entry = self.table.get(CapabilityKind.TOOL, name)
        if entry is None:
            router = self.table.get(CapabilityKind.ROUTER, name)
            if router is None:
                raise CapabilityNotFound(CapabilityKind.TOOL.value, name)
            return CallResult(content=self._router_listing(router))

        params, issues = self._coerce(raw_params, entry.schema)
        if issues:
            logger.info("Rejected call to %s: %s", name, "; ".join(str(i) for i in issues))
            return CallResult(is_error=True, errors=issues)

        impl = self._implementation(entry)
        logger.debug("Calling %s with %s", name, params)
        content = await invoke(impl, params, self._context(context), entry.schema)
        return CallResult(content=content)

    def _router_listing(self, router: CapabilityEntry) -> Dict[str, Any]:
        tools = []
        for tool_name in router.declaration.router_tools:
            entry = self.table.get(CapabilityKind.TOOL, tool_name)
            if entry is not None:
                tools.append(entry.describe())
        return {"router": router.key, "description": router.declaration.description, "tools": tools}

    # -----------------------------------------------------------------
    # resources / prompts
    # -----------------------------------------------------------------

    async def read_resource(self, uri: str, context: Optional[ExecutionContext] = None) -> Any:
        entry = self._entry(CapabilityKind.RESOURCE, uri)
        decl = entry.declaration
        if decl.static:
            return copy.deepcopy(None if decl.data is UNSET else decl.data)

        impl = self._implementation(entry)
        if entry.binding is not None and entry.binding.shape is BindingShape.DATA_OBJECT:
            impl = impl["data"] if isinstance(impl, Mapping) else getattr(impl, "data")
        if callable(impl):
            return await invoke(impl, {"uri": uri}, self._context(context))
        return copy.deepcopy(impl)

    async def render_prompt(self, name: str, raw_args: Any = None,
                            context: Optional[ExecutionContext] = None) -> Any:
        """
        Static prompts fill `{placeholder}`s from the coerced args; dynamic
        prompts return whatever their binding builds.

        Raises:
            CoercionError: bad arguments.
        """
        entry = self._entry(CapabilityKind.PROMPT, name)
        args, issues = self._coerce(raw_args, entry.schema)
        if issues:
            raise CoercionError(issues)

        decl = entry.declaration
        if decl.static:
            template = decl.template or ""
            return PLACEHOLDER_RE.sub(
                lambda m: str(args[m.group(1)]) if m.group(1) in args else m.group(0), template)
        return await invoke(self._implementation(entry), args, self._context(context), entry.schema)

    # -----------------------------------------------------------------
    # elicitation / subscriptions / roots
    # -----------------------------------------------------------------

    async def elicit(self, name: str, context: Optional[ExecutionContext] = None) -> Any:
        """
        Ask the client for input shaped by the elicitation's Args.

        A static elicitation sends its literal `prompt`; a dynamic one asks
        its binding for the message first. The response is coerced against
        the Args schema.
        """
        entry = self._entry(CapabilityKind.ELICITATION, name)
        ctx = self._context(context)
        decl = entry.declaration
        if decl.static:
            message = decl.metadata.get("prompt")
            if not isinstance(message, str):
                raise CapabilityUnavailable(f"elicitation '{name}' has no literal prompt to send")
        else:
            message = await invoke(self._implementation(entry), {}, ctx, entry.schema)
        response = await ctx.elicit(str(message), entry.schema.to_json_schema())
        if not isinstance(response, Mapping):
            return response
        values, issues = self._coerce(response, entry.schema)
        if issues:
            raise CoercionError(issues)
        return values

    async def subscribe(self, uri: str, context: Optional[ExecutionContext] = None) -> Dict[str, Any]:
        entry = self._entry(CapabilityKind.SUBSCRIPTION, uri)
        impl = self._implementations.get((entry.kind, entry.key))
        if impl is None and entry.declaration.dynamic:
            impl = self._implementation(entry)
        if impl is not None and callable(impl):
            await invoke(impl, {"uri": uri}, self._context(context))
        logger.info("Subscribed to %s", uri)
        return {"uri": uri, "subscribed": True}

    async def list_roots(self, context: Optional[ExecutionContext] = None) -> List[Any]:
        """Client roots, for servers that declare a Roots capability."""
        if not self.table.of_kind(CapabilityKind.ROOTS):
            raise CapabilityNotFound(CapabilityKind.ROOTS.value, "*")
        return await self._context(context).list_roots()

    # -----------------------------------------------------------------
    # completions
    # -----------------------------------------------------------------

    def _completion_for(self, target: str, ref_type: Optional[str]) -> CapabilityEntry:
        if ref_type is None:
            entry = self.table.get(CapabilityKind.COMPLETION, target)
            if entry is not None:
                return entry
        for entry in self.table.of_kind(CapabilityKind.COMPLETION).values():
            ref = entry.declaration.completion_ref
            if ref is not None and ref[1] == target and ref_type in (None, ref[0]):
                return entry
        raise CapabilityNotFound(CapabilityKind.COMPLETION.value, target)

    async def complete(
        self,
        target: str,
        value: str = "",
        context: Optional[ExecutionContext] = None,
        *,
        ref_type: Optional[str] = None,
        arguments: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Suggestions for a partially typed value.

        The binding is called as `fn(value, context)` unless it names
        `value`, `argument` or `arguments`, in which case those are passed
        by keyword.

        Args:
            target: A completion's name, or the argument name / resource uri
                its `ref` points at.
            value: What has been typed so far.
            context: Passed to the binding.
            ref_type: "argument" or "resource"; matches on `ref` only.
            arguments: Argument values already supplied.

        Returns:
            {"values": [...], "total": n, "hasMore": bool}, with at most
            MAX_COMPLETION_VALUES values.

        Raises:
            CapabilityNotFound: nothing completes `target`.
            TypeError: the binding returned a bare string.
        """
        entry = self._completion_for(target, ref_type)
        ref = entry.declaration.completion_ref
        params = {"value": value, "argument": ref[1] if ref else target, "arguments": dict(arguments or {})}
        suggestions = await invoke(self._implementation(entry), params, self._context(context), first=value)
        if suggestions is None:
            suggestions = []
        elif isinstance(suggestions, str):
            raise TypeError(f"completion '{entry.key}' returned a str; return a list of suggestions")
        values = [s if isinstance(s, str) else str(s) for s in suggestions]
        return {
            "values": values[:MAX_COMPLETION_VALUES],
            "total": len(values),
            "hasMore": len(values) > MAX_COMPLETION_VALUES,
        }
