"""Building values from providers.

Module for turning a requested identity into a value: the provider is
looked up, the graph below it validated, its parameters resolved bottom-up,
and the result cached and its cleanup recorded.
"""

import logging
import threading
from typing import Any, Optional

from vinculum.domain import Identity, Parameter
from vinculum.errors import ConstructionError, DependencyError, InternalError, NotFoundError
from vinculum.graph import CycleDetector
from vinculum.lifecycle import LifecycleManager
from vinculum.providers import Provider
from vinculum.registry import Registry
from vinculum.tracing import NopTracer, Tracer

__all__ = ["Resolver"]

logger = logging.getLogger(__name__)


class Resolver:
    """Resolves identities against one registry, falling back to parent resolvers.

    A provider found in a parent is built by that parent, so its value is
    cached and cleaned up there and shared with every child.
    """

    def __init__(
        self,
        registry: Registry,
        lifecycle: LifecycleManager,
        tracer: Tracer = NopTracer(),
        lock=None,
    ):
        self.registry = registry
        self.lifecycle = lifecycle
        self.parents: list["Resolver"] = []
        self.lock = lock or threading.RLock()
        self._tracer = tracer
        self._detector = CycleDetector(self._locate_parameter)

    def ancestors(self) -> list["Resolver"]:
        found = []
        for parent in self.parents:
            for resolver in [parent, *parent.ancestors()]:
                if resolver not in found:
                    found.append(resolver)
        return found

    def locate(self, identity: Identity) -> tuple[Provider, "Resolver"]:
        """Find the provider for ``identity`` and the resolver that owns it.

        Local providers win; parents are searched in the order they were added.

        Raises:
            NotFoundError: If neither this registry nor any ancestor provides it.
            AmbiguousError: If the first registry with candidates has several.
        """
        try:
            return self.registry.find(identity), self
        except NotFoundError:
            for parent in self.parents:
                try:
                    return parent.locate(identity)
                except NotFoundError:
                    continue
            raise

    def validate(self, provider: Provider) -> None:
        """Check the graph below ``provider`` for cycles and missing dependencies."""
        self._detector.check(provider)

    def resolve(self, parameter: Parameter) -> Any:
        """Resolve a top-level request, validating its graph first."""
        with self.lock:
            try:
                provider, owner = self.locate(parameter.identity)
            except NotFoundError:
                if parameter.optional:
                    self._tracer.trace("Skip optional %s", parameter)
                    return parameter.default
                raise
            return owner.resolve_provider(provider)

    def resolve_provider(self, provider: Provider) -> Any:
        with self.lock:
            if self.lifecycle.is_cached(provider):
                self._tracer.trace("%s already built", provider.identity)
                return self.lifecycle.cached(provider)
            self.validate(provider)
            return self._build(provider)

    def _locate_parameter(self, parameter: Parameter) -> Optional[tuple[Provider, bool]]:
        if parameter.provider is not None:
            return parameter.provider, True
        try:
            provider, owner = self.locate(parameter.identity)
        except NotFoundError:
            return None
        return provider, owner is self

    def _resolve_dependency(self, parameter: Parameter) -> Any:
        if parameter.provider is not None:
            return self._build(parameter.provider)
        try:
            provider, owner = self.locate(parameter.identity)
        except NotFoundError:
            if parameter.optional:
                self._tracer.trace("Skip optional %s", parameter)
                return parameter.default
            raise
        if owner is not self:
            return owner.resolve_provider(provider)
        return self._build(provider)

    def _build(self, provider: Provider) -> Any:
        if self.lifecycle.is_cached(provider):
            return self.lifecycle.cached(provider)
        self._tracer.trace("%s requested", provider.identity)

        parameters = provider.parameters()
        try:
            values = [self._resolve_dependency(parameter) for parameter in parameters]
        except DependencyError as err:
            err.add_context(provider.identity)
            raise

        value, cleanup = self._call(provider, provider.provide, values)
        try:
            self._inject_fields(provider, value)
            for decorator in provider.decorators:
                self._call(provider, decorator, value)
        except Exception:
            if cleanup is not None:
                try:
                    cleanup()
                except Exception:
                    logger.exception("Cleanup of partially built %s failed", provider.identity)
            raise

        if parameters:
            self._tracer.trace(
                "%s resolved with: %s", provider.identity, ", ".join(map(str, parameters))
            )
        else:
            self._tracer.trace("%s resolved", provider.identity)
        self.lifecycle.store(provider, value)
        if cleanup is not None:
            self.lifecycle.defer(cleanup)
        return value

    def _inject_fields(self, provider: Provider, value: Any) -> None:
        if value is None:
            return
        for field in provider.injected_fields():
            try:
                setattr(value, field.attribute, self._resolve_dependency(field.parameter))
            except DependencyError as err:
                err.add_context(provider.identity)
                raise

    @staticmethod
    def _call(provider: Provider, func, *args) -> Any:
        try:
            return func(*args)
        except (DependencyError, InternalError):
            raise
        except Exception as exc:
            raise ConstructionError(provider.identity, exc) from exc
