"""
After-commit side effects.

Lifecycle operations collect their notifications (gateway broadcasts,
push, email, provider cleanup) while they build the transaction and only
run them once the commit succeeded. A failing effect is logged and never
turns a committed operation into an error.

Usage:
    effects = AfterCommitEffects("resolve_query")
    effects.add(gateway.query_resolved, query.id, agent.id)
    await db.commit()
    await effects.run()
"""

import logging
from typing import Any, Awaitable, Callable, List, Tuple

logger = logging.getLogger(__name__)


class AfterCommitEffects:
    """Ordered list of awaitable callables executed after a successful commit."""

    def __init__(self, operation: str):
        self.operation = operation
        self._effects: List[Tuple[Callable[..., Awaitable[Any]], tuple, dict]] = []

    def add(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> None:
        self._effects.append((func, args, kwargs))

    def discard(self) -> None:
        """Forget pending effects (the transaction was rolled back)."""
        self._effects = []

    async def run(self) -> int:
        """Run every effect in order. Returns how many failed."""
        failures = 0
        effects, self._effects = self._effects, []
        for func, args, kwargs in effects:
            try:
                await func(*args, **kwargs)
            except Exception as e:
                failures += 1
                name = getattr(func, "__qualname__", repr(func))
                logger.error(f"[Effects] {self.operation}: {name} failed: {e}", exc_info=True)
        return failures

    def __len__(self) -> int:
        return len(self._effects)
