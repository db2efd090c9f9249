"""Validation of provider graphs before anything is built.

The graph is walked over declared parameters, not over built values, so a
cycle or a missing dependency is reported before any factory runs.
"""

import enum
from typing import Callable, Optional

from vinculum.domain import Parameter
from vinculum.errors import CycleError, DependencyError, NotFoundError
from vinculum.providers import Provider

__all__ = ["CycleDetector", "Locator", "dependencies_of"]

Locator = Callable[[Parameter], Optional[tuple[Provider, bool]]]
"""Finds the provider for a parameter, and whether it belongs to this graph.

Returns None when nothing provides the parameter. Providers that belong to
another container's graph are treated as leaves.
"""


class _Mark(enum.Enum):
    IN_PROGRESS = 1
    DONE = 2


def dependencies_of(provider: Provider) -> list[Parameter]:
    """Parameters of a provider plus the fields injected into its value."""
    return provider.parameters() + [field.parameter for field in provider.injected_fields()]


class CycleDetector:
    """Depth-first check that the providers reachable from a root are acyclic.

    Each provider is unvisited, in progress or done. Reaching a provider that
    is in progress closes a cycle; reaching one that is done is skipped. The
    check reads the registry through ``locate`` and changes nothing.
    """

    def __init__(self, locate: Locator):
        self._locate = locate

    def check(self, root: Provider) -> None:
        """Validate everything reachable from ``root``.

        Raises:
            CycleError: With the identities forming the loop, e.g.
                ``[A B C A] cycle detected``.
            NotFoundError: If a required dependency has no provider.
            AmbiguousError: If a dependency matches several providers.
        """
        self._visit(root, {}, [])

    def _visit(self, provider: Provider, marks: dict[Provider, _Mark], stack: list[Provider]):
        mark = marks.get(provider)
        if mark is _Mark.DONE:
            return
        if mark is _Mark.IN_PROGRESS:
            start = stack.index(provider)
            raise CycleError([p.identity for p in stack[start:]] + [provider.identity])

        marks[provider] = _Mark.IN_PROGRESS
        stack.append(provider)
        for parameter in dependencies_of(provider):
            try:
                located = self._locate(parameter)
            except DependencyError as err:
                raise self._in_context(err, stack)
            if located is None:
                if parameter.optional:
                    continue
                raise self._in_context(NotFoundError(f"{parameter} not found"), stack)
            dependency, local = located
            if local:
                self._visit(dependency, marks, stack)
        stack.pop()
        marks[provider] = _Mark.DONE

    @staticmethod
    def _in_context(error: DependencyError, stack: list[Provider]) -> DependencyError:
        for provider in reversed(stack):
            error.add_context(provider.identity)
        return error
