"""Declaring dependencies on parameters and fields.

Dependencies are read from standard type hints. A bare annotation asks for
the unique provider of that type; ``Annotated`` qualifies the request:

    >>> def make_service(
    ...     db: Database,                                   # by type
    ...     cache: Annotated[Cache, "redis"],               # by name
    ...     mux: Annotated[Mux, Inject(tags={"http": "public"})],
    ...     tracer: Optional[Tracer],                       # optional
    ... ) -> Service: ...

Classes deriving from :class:`Injectable` additionally get the attributes
marked with :class:`Inject` set after construction:

    >>> class Application(Injectable):
    ...     server: Server = Inject()
    ...     metrics: Metrics = Inject(optional=True)
"""

import inspect
import types
from dataclasses import dataclass
from typing import (
    Annotated,
    Any,
    Callable,
    Optional,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)

from vinculum.domain import Identity, Parameter, Tags
from vinculum.errors import RegistrationError

__all__ = [
    "Inject",
    "Injectable",
    "InjectedField",
    "Argument",
    "is_injectable",
    "injectable_fields",
    "inspect_arguments",
    "make_parameter",
]

_MISSING = inspect.Parameter.empty


class Inject:
    """Qualifies a dependency, either inside ``Annotated`` or as a class field.

    Args:
        name: Name of the provider to use.
        tags: Tags the provider must carry (``"*"`` matches any value).
        optional: Leave the default in place instead of failing when nothing
            provides the dependency.
        type_: Explicit dependency type for fields without an annotation.
        default: Value of an optional field left unresolved.
    """

    def __init__(
        self,
        name: Optional[str] = None,
        *,
        tags: Optional[Tags] = None,
        optional: bool = False,
        type_: Any = None,
        default: Any = None,
    ):
        self.name = name
        self.tags = dict(tags or {})
        self.optional = optional
        self.type = type_
        self.default = default
        self.attribute: Optional[str] = None

    def __set_name__(self, owner: type, attribute: str):
        self.attribute = attribute

    def __get__(self, instance, owner=None):
        if instance is None:
            return self
        try:
            return instance.__dict__[self.attribute]
        except KeyError:
            raise AttributeError(
                f"'{type(instance).__name__}.{self.attribute}' has not been injected"
            ) from None

    def __set__(self, instance, value):
        instance.__dict__[self.attribute] = value

    def __repr__(self) -> str:
        return f"Inject(name={self.name!r}, tags={self.tags!r}, optional={self.optional!r})"


class Injectable:
    """Base class for objects whose :class:`Inject` fields are set by the container.

    An injectable class may be returned from a constructor, in which case its
    fields are populated after the constructor runs, or requested directly
    without being provided, in which case the container instantiates it with
    no arguments and populates it.
    """


@dataclass(frozen=True)
class InjectedField:
    attribute: str
    parameter: Parameter


@dataclass(frozen=True)
class Argument:
    """How a resolved parameter is passed to a callable."""

    name: str
    positional: bool
    parameter: Parameter


def is_injectable(target: Any) -> bool:
    return (
        inspect.isclass(target)
        and get_origin(target) is None
        and issubclass(target, Injectable)
    )


def injectable_fields(cls: type) -> list[InjectedField]:
    """List the :class:`Inject` fields of an injectable class.

    Fields are collected from base classes first, then in definition order.
    Attributes without an ``Inject`` marker are not injected.

    Raises:
        RegistrationError: If a field has neither an annotation nor ``type_``,
            or the class annotations cannot be resolved.
    """
    if not is_injectable(cls):
        return []
    hints = _hints(cls, cls.__qualname__)
    fields: dict[str, InjectedField] = {}
    for klass in reversed(cls.__mro__):
        for attribute, marker in vars(klass).items():
            if not isinstance(marker, Inject):
                continue
            annotation = marker.type if marker.type is not None else hints.get(attribute)
            if annotation is None:
                raise RegistrationError(
                    f"Field '{cls.__qualname__}.{attribute}' is not annotated"
                )
            parameter = make_parameter(annotation, f"{cls.__qualname__}.{attribute}")
            fields[attribute] = InjectedField(
                attribute,
                _qualified(parameter, marker, _MISSING),
            )
    return list(fields.values())


def inspect_arguments(func: Callable) -> list[Argument]:
    """Describe how to call ``func`` with resolved dependencies.

    For classes the ``__init__`` signature is used.

    Raises:
        RegistrationError: If a parameter is unannotated or variadic, or a
            type hint cannot be resolved.

    Example:
        >>> def service(db: Database, cache: Annotated[Cache, "redis"]) -> Service:
        ...     pass
        >>> inspect_arguments(service)
        >>> # [Argument("db", False, Parameter(Identity(Database))),
        >>> #  Argument("cache", False, Parameter(Identity(Cache, "redis")))]
    """
    if inspect.isclass(func):
        if func.__init__ is object.__init__:
            return []
        hints = _hints(func.__init__, _callable_name(func))
    else:
        hints = _hints(func, _callable_name(func))
    signature = inspect.signature(func)

    arguments = []
    for name, declared in signature.parameters.items():
        if declared.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            raise RegistrationError(
                f"Dependency '{name}' of {_callable_name(func)} is variadic"
            )
        annotation = hints.get(name)
        if annotation is None:
            raise RegistrationError(
                f"Dependency '{name}' of {_callable_name(func)} is not annotated"
            )
        parameter = make_parameter(annotation, name, declared.default)
        arguments.append(
            Argument(name, declared.kind == inspect.Parameter.POSITIONAL_ONLY, parameter)
        )
    return arguments


def make_parameter(annotation: Any, name: str, default: Any = _MISSING) -> Parameter:
    """Turn a type hint into a :class:`Parameter`.

    ``Annotated`` metadata may be a string (the provider name) or an
    :class:`Inject`. ``Optional[T]`` and a default value both make the
    dependency optional.
    """
    marker = None
    provider_name = None
    if get_origin(annotation) is Annotated:
        annotation, *metadata = get_args(annotation)
        for item in metadata:
            if isinstance(item, str):
                provider_name = item
            elif isinstance(item, Inject):
                marker = item

    optional = default is not _MISSING
    inner = _unwrap_optional(annotation)
    if inner is not None:
        annotation = inner
        optional = True

    parameter = Parameter(
        Identity.of(annotation, provider_name),
        optional,
        None if default is _MISSING else default,
    )
    if marker is None:
        return parameter
    return _qualified(parameter, marker, default)


def _qualified(parameter: Parameter, marker: Inject, default: Any) -> Parameter:
    if default is _MISSING and marker.optional:
        default = marker.default
    identity = parameter.identity
    return Parameter(
        Identity.of(
            marker.type if marker.type is not None else identity.type,
            marker.name if marker.name is not None else identity.name,
            {**identity.tag_map, **marker.tags},
        ),
        parameter.optional or marker.optional,
        parameter.default if default is _MISSING else default,
    )


def _unwrap_optional(annotation: Any) -> Optional[Any]:
    if get_origin(annotation) not in (Union, types.UnionType):
        return None
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if len(args) != len(get_args(annotation)) - 1:
        return None
    if len(args) == 1:
        return args[0]
    return Union[tuple(args)]


def _hints(target: Any, owner: str) -> dict[str, Any]:
    try:
        return get_type_hints(target, include_extras=True)
    except (NameError, TypeError) as exc:
        raise RegistrationError(f"Type hints of {owner} cannot be resolved: {exc}") from exc


def _callable_name(func: Callable) -> str:
    return getattr(func, "__qualname__", repr(func))
