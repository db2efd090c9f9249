"""Domain models used throughout the container."""

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, TYPE_CHECKING, get_args, get_origin

if TYPE_CHECKING:
    from vinculum.providers import Provider

__all__ = ["Tags", "Identity", "Parameter", "type_name", "member_type"]

Tags = Mapping[str, str]
"""Key/value labels attached to a provider and used to filter lookups."""

WILDCARD = "*"


def type_name(target: Any) -> str:
    """Readable name of a type or typing form, used in error messages.

    Example:
        >>> type_name(int)          # 'int'
        >>> type_name(list[Closer]) # 'list[Closer]'
    """
    origin = get_origin(target)
    if origin is not None:
        args = ", ".join(type_name(arg) for arg in get_args(target))
        return f"{type_name(origin)}[{args}]"
    if isinstance(target, type):
        return target.__qualname__
    return repr(target)


def member_type(target: Any) -> Optional[Any]:
    """Element type of a ``list[T]`` group type, or None for anything else."""
    if get_origin(target) is list:
        args = get_args(target)
        if len(args) == 1:
            return args[0]
    return None


@dataclass(frozen=True)
class Identity:
    """Key naming a requested or provided dependency.

    Attributes:
        type: The type (or typing form such as ``list[Handler]``) of the value.
        name: Optional name distinguishing several providers of one type.
        tags: Optional labels; stored as a sorted tuple of pairs so the
            identity stays hashable.
    """

    type: Any
    name: Optional[str] = None
    tags: tuple[tuple[str, str], ...] = field(default=())

    @staticmethod
    def of(type_: Any, name: Optional[str] = None, tags: Optional[Tags] = None) -> "Identity":
        return Identity(type_, name, tuple(sorted((tags or {}).items())))

    @property
    def tag_map(self) -> dict[str, str]:
        return dict(self.tags)

    def matches(self, requested: "Identity") -> bool:
        """Check whether this stored identity satisfies a requested one.

        Types must be equal. A requested name must equal the stored name; no
        requested name matches any. Every requested tag must be present with an
        equal value, where ``"*"`` on either side matches any value.

        Example:
            >>> stored = Identity.of(Server, tags={"server": "one"})
            >>> stored.matches(Identity.of(Server, tags={"server": "*"}))  # True
            >>> stored.matches(Identity.of(Server, tags={"http": "*"}))    # False
        """
        if self.type != requested.type:
            return False
        if requested.name is not None and requested.name != self.name:
            return False
        stored_tags = self.tag_map
        for key, value in requested.tags:
            if key not in stored_tags:
                return False
            stored = stored_tags[key]
            if WILDCARD not in (value, stored) and stored != value:
                return False
        return True

    def retyped(self, type_: Any) -> "Identity":
        return Identity(type_, self.name, self.tags)

    def __str__(self) -> str:
        text = type_name(self.type)
        if self.name is not None:
            text += f"[{self.name}]"
        if self.tags:
            text += "[" + ";".join(f"{k}:{v}" for k, v in self.tags) + "]"
        return text


@dataclass(frozen=True)
class Parameter:
    """A dependency declared by a provider.

    Attributes:
        identity: What the provider asks for.
        optional: Whether a missing provider is acceptable.
        default: Value used when an optional dependency has no provider.
        provider: If set, the parameter is bound to this exact provider
            rather than looked up by identity.
    """

    identity: Identity
    optional: bool = False
    default: Any = None
    provider: Optional["Provider"] = field(default=None, compare=False)

    def __str__(self) -> str:
        return str(self.identity)
