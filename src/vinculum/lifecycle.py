"""Singleton instances and teardown of built values."""

import logging
from typing import Any

from vinculum.providers import Cleanup, Provider
from vinculum.tracing import NopTracer, Tracer

__all__ = ["LifecycleManager"]

logger = logging.getLogger(__name__)

_MISSING = object()


class LifecycleManager:
    """Keeps built singletons and the cleanups registered while building.

    Cleanups are pushed as values are built. A value is only built once all
    of its dependencies are, so its cleanup always lands after theirs, and
    running the stack backwards tears dependents down before what they use.
    """

    def __init__(self, tracer: Tracer = NopTracer()):
        self._tracer = tracer
        self._instances: dict[Provider, Any] = {}
        self._cleanups: list[Cleanup] = []

    def is_cached(self, provider: Provider) -> bool:
        return provider.cacheable and provider in self._instances

    def cached(self, provider: Provider, default: Any = _MISSING) -> Any:
        if not provider.cacheable:
            return default
        return self._instances.get(provider, default)

    def store(self, provider: Provider, value: Any) -> None:
        if provider.cacheable:
            self._instances[provider] = value

    def defer(self, cleanup: Cleanup) -> None:
        self._cleanups.append(cleanup)

    def cleanup(self) -> None:
        """Run every cleanup, last registered first, then forget all instances.

        A failing cleanup does not stop the others; the first failure is
        re-raised once all have run.
        """
        cleanups, self._cleanups = self._cleanups, []
        self._instances.clear()
        self._tracer.trace("Running %d cleanups", len(cleanups))

        first_error = None
        for cleanup in reversed(cleanups):
            try:
                cleanup()
            except Exception as exc:
                logger.exception("Cleanup %r failed", cleanup)
                if first_error is None:
                    first_error = exc
        if first_error is not None:
            raise first_error
