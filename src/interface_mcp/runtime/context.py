# context.py
"""
ExecutionContext: what an implementation sees of the protocol session.

The collaborator runtime (the FastMCP adapter, or a test) supplies the
callables. A callable it does not supply raises CapabilityUnavailable when
used, except progress reporting, which is dropped.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from interface_mcp.compiler.errors import CapabilityUnavailable

logger = logging.getLogger(__name__)

AnyCallable = Callable[..., Any]


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


@dataclass
class ExecutionContext:
    """ Per-request context handed to implementations and hidden predicates. """
    elicit_fn: Optional[AnyCallable] = None
    sample_fn: Optional[AnyCallable] = None
    progress_fn: Optional[AnyCallable] = None
    roots_fn: Optional[AnyCallable] = None
    session_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    dispatcher: Any = field(default=None, repr=False)

    def _require(self, fn: Optional[AnyCallable], what: str) -> AnyCallable:
        if fn is None:
            raise CapabilityUnavailable(f"{what} is not available in this context")
        return fn

    async def elicit(self, message: str, schema: Optional[Dict[str, Any]] = None) -> Any:
        fn = self._require(self.elicit_fn, "elicitation")
        return await _maybe_await(fn(message, schema))

    async def sample(self, messages: Any, **options: Any) -> Any:
        fn = self._require(self.sample_fn, "sampling")
        return await _maybe_await(fn(messages, **options))

    async def list_roots(self) -> List[Any]:
        fn = self._require(self.roots_fn, "roots")
        return list(await _maybe_await(fn()))

    async def report_progress(self, progress: float, total: Optional[float] = None,
                              message: Optional[str] = None) -> None:
        if self.progress_fn is None:
            logger.debug("progress %s/%s dropped: no progress channel", progress, total)
            return
        await _maybe_await(self.progress_fn(progress, total, message))

    async def elicit_declared(self, name: str) -> Any:
        """Run a declared Elicitation by name through the owning dispatcher."""
        if self.dispatcher is None:
            raise CapabilityUnavailable("no dispatcher attached to this context")
        return await self.dispatcher.elicit(name, self)

    def get(self, key: str, default: Any = None) -> Any:
        """Shortcut for `metadata.get`, handy inside hidden predicates."""
        return self.metadata.get(key, default)
