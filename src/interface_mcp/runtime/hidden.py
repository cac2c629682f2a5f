# hidden.py
"""
Visibility predicates for listings.

A capability's `hidden` member is a static bool, a sync predicate or an
async predicate. All three go through `HiddenEvaluator.is_hidden`, and a
listing evaluates every item concurrently. A predicate that times out,
raises or returns a non-bool falls back to the configured error default
(visible unless configured otherwise); the failure is logged, never
raised.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


class HiddenKind(str, Enum):
    STATIC = "static"
    SYNC = "sync"
    ASYNC = "async"


def is_async_callable(fn: Any) -> bool:
    if inspect.iscoroutinefunction(fn):
        return True
    call = getattr(fn, "__call__", None)
    return call is not None and inspect.iscoroutinefunction(call)


@dataclass(frozen=True)
class HiddenSpec:
    kind: HiddenKind
    value: bool = False
    predicate: Optional[Callable[..., Any]] = None

    @classmethod
    def static(cls, value: bool) -> "HiddenSpec":
        return cls(HiddenKind.STATIC, value=bool(value))

    @classmethod
    def from_value(cls, value: Any) -> "HiddenSpec":
        """
        Args:
            value: None, a bool, or a callable taking the execution context.

        Raises:
            TypeError: for any other value.
        """
        if value is None:
            return VISIBLE
        if isinstance(value, bool):
            return cls.static(value)
        if is_async_callable(value):
            return cls(HiddenKind.ASYNC, predicate=value)
        if callable(value):
            return cls(HiddenKind.SYNC, predicate=value)
        raise TypeError(f"hidden must be a bool or a predicate, got {type(value).__name__}")


VISIBLE = HiddenSpec(HiddenKind.STATIC, value=False)


def _predicate_args(predicate: Callable[..., Any], context: Any) -> tuple:
    try:
        params = inspect.signature(predicate).parameters.values()
    except (TypeError, ValueError):
        return (context,)
    positional = [p for p in params if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD, p.VAR_POSITIONAL)]
    return (context,) if positional else ()


class HiddenEvaluator:
    """
    Args:
        timeout_s: Per-predicate time limit.
        slow_warn_s: Predicates slower than this log a warning.
        error_default: "visible" (fail-open) or "hidden" (fail-closed).
        max_workers: Threads for sync predicates. The pool is separate from
                     the loop's default executor used by sync tool calls.
    """

    def __init__(self, timeout_s: float = 1.0, slow_warn_s: float = 0.1, error_default: str = "visible",
                 max_workers: int = 8):
        if error_default not in ("visible", "hidden"):
            raise ValueError(f"error_default must be 'visible' or 'hidden' (got {error_default!r})")
        self.timeout_s = timeout_s
        self.slow_warn_s = slow_warn_s
        self.error_default = error_default
        self.max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None

    def _pool(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self.max_workers,
                                                thread_name_prefix="hidden-predicate")
        return self._executor

    def shutdown(self) -> None:
        """Drop queued predicate calls; running ones finish in the background."""
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    @property
    def _fallback(self) -> bool:
        return self.error_default == "hidden"

    async def _run(self, spec: HiddenSpec, context: Any) -> Any:
        args = _predicate_args(spec.predicate, context)
        if spec.kind is HiddenKind.ASYNC:
            return await spec.predicate(*args)
        # worker thread, so a blocking predicate can still be timed out
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(self._pool(), functools.partial(spec.predicate, *args))
        if inspect.isawaitable(result):
            result = await result
        return result

    async def is_hidden(self, spec: HiddenSpec, context: Any = None, label: str = "") -> bool:
        """Evaluate one spec. Never raises."""
        if spec.kind is HiddenKind.STATIC:
            return spec.value

        started = time.perf_counter()
        try:
            result = await asyncio.wait_for(self._run(spec, context), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            logger.warning("⚠️ hidden predicate for '%s' timed out after %.3fs; treating as %s",
                           label, self.timeout_s, self.error_default)
            return self._fallback
        except Exception as e:
            logger.error("❌ hidden predicate for '%s' raised %s: %s; treating as %s",
                         label, type(e).__name__, e, self.error_default)
            return self._fallback

        elapsed = time.perf_counter() - started
        if elapsed > self.slow_warn_s:
            logger.warning("⚠️ hidden predicate for '%s' is slow (%.3fs)", label, elapsed)

        if not isinstance(result, bool):
            logger.warning("⚠️ hidden predicate for '%s' returned %s, not bool; treating as %s",
                           label, type(result).__name__, self.error_default)
            return self._fallback
        return result

    async def evaluate_all(self, items: Sequence[Tuple[str, HiddenSpec]], context: Any = None) -> List[bool]:
        """
        Evaluate every (label, spec) pair concurrently.

        Returns:
            One hidden flag per item, in input order.
        """
        if not items:
            return []
        return list(await asyncio.gather(
            *(self.is_hidden(spec, context, label) for label, spec in items)
        ))
