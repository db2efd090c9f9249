"""Option structures accepted by the container's registration and lookup calls."""

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from vinculum.domain import Identity
from vinculum.providers import Decorator

__all__ = ["ProvideOptions", "ResolveOptions"]


@dataclass(frozen=True)
class ProvideOptions:
    """How a provider is registered.

    Attributes:
        name: Name distinguishing this provider from others of its type.
        tags: Labels a lookup can filter on.
        interfaces: Types the provided value may also be requested as.
            Each must be implemented by the value's type.
        prototype: Build a new value on every resolution instead of once.
        decorators: Callables run on each newly built value before it is
            handed out.
    """

    name: Optional[str] = None
    tags: Mapping[str, str] = field(default_factory=dict)
    interfaces: tuple[type, ...] = ()
    prototype: bool = False
    decorators: tuple[Decorator, ...] = ()


@dataclass(frozen=True)
class ResolveOptions:
    """Which provider a lookup selects.

    Attributes:
        name: Only providers registered with this name match.
        tags: Only providers carrying all these tags match; a value of
            ``"*"`` accepts any value for its key.
    """

    name: Optional[str] = None
    tags: Mapping[str, str] = field(default_factory=dict)

    def identity(self, type_: Any) -> Identity:
        return Identity.of(type_, self.name, self.tags)
