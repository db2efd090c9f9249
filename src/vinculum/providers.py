"""Providers: the units that build one dependency each.

Every provider exposes the parameters it needs and a ``provide`` method that
turns resolved parameter values into a value plus an optional cleanup
callable. The variants are:

    - ConstructorProvider: calls a function or class.
    - ValueProvider: hands out a value supplied at registration.
    - InterfaceProvider: exposes another provider's value under an interface.
    - GroupProvider: collects every provider of a type into a list.
    - StructFieldProvider: instantiates an :class:`~vinculum.inject.Injectable`
      and fills its fields.
"""

import collections.abc
import enum
import inspect
from abc import ABC, abstractmethod
from typing import Any, Callable, Iterable, Optional, Sequence, get_args, get_origin, get_type_hints

from vinculum.domain import Identity, Parameter, type_name
from vinculum.errors import InternalError, RegistrationError
from vinculum.inject import Argument, InjectedField, inspect_arguments, injectable_fields, is_injectable

__all__ = [
    "Cleanup",
    "Decorator",
    "Provider",
    "ConstructorKind",
    "ConstructorProvider",
    "ValueProvider",
    "InterfaceProvider",
    "GroupProvider",
    "StructFieldProvider",
]

Cleanup = Callable[[], None]
"""Zero-argument teardown callable returned alongside a value."""

Decorator = Callable[[Any], None]
"""Callable run on a freshly built value before it is cached."""

_CONSTRUCTOR_SHAPES = "-> T, -> tuple[T, Cleanup] or a generator annotated -> Iterator[T]"


class Provider(ABC):
    """Builds the value for one :class:`~vinculum.domain.Identity`.

    Attributes:
        identity: What this provider produces.
        prototype: If True a new value is built on every resolution.
        decorators: Callables applied to each freshly built value.
    """

    def __init__(
        self,
        identity: Identity,
        prototype: bool = False,
        decorators: Sequence[Decorator] = (),
    ):
        self.identity = identity
        self.prototype = prototype
        self.decorators = tuple(decorators)

    @property
    def cacheable(self) -> bool:
        return not self.prototype

    @abstractmethod
    def parameters(self) -> list[Parameter]:
        """Dependencies to resolve before calling :meth:`provide`, in call order."""

    @abstractmethod
    def provide(self, values: list[Any]) -> tuple[Any, Optional[Cleanup]]:
        """Build the value from resolved parameter values."""

    def injected_fields(self) -> list[InjectedField]:
        """Fields to inject into the built value once :meth:`provide` returns."""
        return []

    def implements(self, interface: type) -> bool:
        return inspect.isclass(self.identity.type) and issubclass(self.identity.type, interface)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.identity})"


class ConstructorKind(enum.Enum):
    """Result shape of a constructor, decided once at registration."""

    VALUE = "value"
    """``-> T``"""

    VALUE_CLEANUP = "value_cleanup"
    """``-> tuple[T, Cleanup]``"""

    GENERATOR = "generator"
    """A generator yielding ``T`` once; the code after ``yield`` is the cleanup."""


class ConstructorProvider(Provider):
    """Provides the result of calling a function or class.

    A factory signals failure by raising; the container wraps the exception
    in :class:`~vinculum.errors.ConstructionError`.

    Example:
        >>> def make_server(mux: Mux) -> tuple[Server, Cleanup]:
        ...     server = Server(mux)
        ...     return server, server.close
        >>> provider = ConstructorProvider.from_factory(make_server)
        >>> provider.kind      # ConstructorKind.VALUE_CLEANUP
        >>> provider.identity  # Identity(Server)
    """

    def __init__(
        self,
        factory: Callable,
        identity: Identity,
        kind: ConstructorKind,
        arguments: list[Argument],
        prototype: bool = False,
        decorators: Sequence[Decorator] = (),
    ):
        super().__init__(identity, prototype, decorators)
        self.factory = factory
        self.kind = kind
        self.arguments = arguments
        self.fields = injectable_fields(identity.type)

    @staticmethod
    def from_factory(
        factory: Callable,
        name: Optional[str] = None,
        tags: Optional[dict[str, str]] = None,
        prototype: bool = False,
        decorators: Sequence[Decorator] = (),
    ) -> "ConstructorProvider":
        """Inspect ``factory`` and build a provider for it.

        Raises:
            RegistrationError: If the factory is not callable, has an
                unsupported result shape, unannotated parameters or type
                hints that cannot be resolved, or if its result type is an
                injectable with misdeclared fields.
        """
        if factory is None or not callable(factory):
            raise RegistrationError(
                f"Constructor must be a function or class ({_CONSTRUCTOR_SHAPES}), got {factory!r}"
            )
        kind, result_type = determine_kind(factory)
        return ConstructorProvider(
            factory,
            Identity.of(result_type, name, tags),
            kind,
            inspect_arguments(factory),
            prototype,
            decorators,
        )

    def parameters(self) -> list[Parameter]:
        return [argument.parameter for argument in self.arguments]

    def provide(self, values: list[Any]) -> tuple[Any, Optional[Cleanup]]:
        args = []
        kwargs = {}
        for argument, value in zip(self.arguments, values):
            if argument.positional:
                args.append(value)
            else:
                kwargs[argument.name] = value
        result = self.factory(*args, **kwargs)

        if self.kind is ConstructorKind.VALUE:
            return result, None
        if self.kind is ConstructorKind.VALUE_CLEANUP:
            value, cleanup = result
            return value, cleanup
        if self.kind is ConstructorKind.GENERATOR:
            return _start_generator(result, self.identity)
        raise InternalError(f"Unhandled constructor kind {self.kind}")

    def injected_fields(self) -> list[InjectedField]:
        return self.fields


class ValueProvider(Provider):
    """Provides a value given at registration, unchanged."""

    def __init__(
        self,
        value: Any,
        identity: Identity,
        decorators: Sequence[Decorator] = (),
    ):
        super().__init__(identity, False, decorators)
        self.value = value
        self.fields = injectable_fields(type(value))

    def parameters(self) -> list[Parameter]:
        return []

    def provide(self, values: list[Any]) -> tuple[Any, Optional[Cleanup]]:
        return self.value, None

    def injected_fields(self) -> list[InjectedField]:
        return self.fields

    def implements(self, interface: type) -> bool:
        return isinstance(self.value, interface)


class InterfaceProvider(Provider):
    """Exposes a concrete provider's value under an interface type.

    The single parameter is bound to the concrete provider, so an interface
    consumer receives the very same instance as a consumer of the concrete type.
    """

    def __init__(self, concrete: Provider, interface: type):
        super().__init__(concrete.identity.retyped(interface), concrete.prototype)
        self.concrete = concrete

    def parameters(self) -> list[Parameter]:
        return [Parameter(self.concrete.identity, provider=self.concrete)]

    def provide(self, values: list[Any]) -> tuple[Any, Optional[Cleanup]]:
        return values[0], None


class GroupProvider(Provider):
    """Provides a list built from every member provider of a type.

    Membership is read through ``members`` on each call, so providers
    registered after the first resolution are included in later ones.
    Groups are never cached; their members are.
    """

    def __init__(self, identity: Identity, members: Callable[[], Iterable[Provider]]):
        super().__init__(identity, prototype=True)
        self._members = members

    def members(self) -> list[Provider]:
        return list(self._members())

    def parameters(self) -> list[Parameter]:
        return [Parameter(member.identity, provider=member) for member in self.members()]

    def provide(self, values: list[Any]) -> tuple[Any, Optional[Cleanup]]:
        return list(values), None


class StructFieldProvider(Provider):
    """Instantiates an injectable class with no arguments and fills its fields."""

    def __init__(self, cls: type):
        if not is_injectable(cls):
            raise InternalError(f"{type_name(cls)} is not injectable")
        super().__init__(Identity.of(cls), prototype=True)
        self.cls = cls
        self.fields = injectable_fields(cls)

    def parameters(self) -> list[Parameter]:
        return [field.parameter for field in self.fields]

    def provide(self, values: list[Any]) -> tuple[Any, Optional[Cleanup]]:
        instance = self.cls()
        for field, value in zip(self.fields, values):
            setattr(instance, field.attribute, value)
        return instance, None


def determine_kind(factory: Callable) -> tuple[ConstructorKind, Any]:
    """Work out a constructor's result shape and result type.

    Raises:
        RegistrationError: For any shape other than those listed in
            :class:`ConstructorKind`.
    """
    if inspect.isclass(factory):
        return ConstructorKind.VALUE, factory

    try:
        result = get_type_hints(factory).get("return")
    except NameError as exc:
        raise RegistrationError(
            f"Type hints of {_factory_name(factory)} cannot be resolved: {exc}"
        ) from exc
    except TypeError as exc:
        raise RegistrationError(
            f"Constructor must be a function or class, got {factory!r}"
        ) from exc
    if result is None or result is type(None):
        raise RegistrationError(
            f"Constructor {_factory_name(factory)} must declare its result type "
            f"({_CONSTRUCTOR_SHAPES})"
        )

    origin = get_origin(result)
    args = get_args(result)
    if inspect.isgeneratorfunction(factory):
        if origin in (collections.abc.Iterator, collections.abc.Generator) and args:
            return ConstructorKind.GENERATOR, args[0]
        raise RegistrationError(
            f"Generator constructor {_factory_name(factory)} must be annotated "
            f"-> Iterator[T] or -> Generator[T, None, None], got {type_name(result)}"
        )
    if origin is tuple:
        if len(args) == 2 and _is_cleanup(args[1]):
            return ConstructorKind.VALUE_CLEANUP, args[0]
        raise RegistrationError(
            f"Invalid constructor signature {_factory_name(factory)} -> {type_name(result)}, "
            f"expected {_CONSTRUCTOR_SHAPES}"
        )
    return ConstructorKind.VALUE, result


def _is_cleanup(annotation: Any) -> bool:
    candidates = [arg for arg in get_args(annotation) if arg is not type(None)]
    if get_origin(annotation) is not collections.abc.Callable and len(candidates) == 1:
        annotation = candidates[0]
    if annotation is collections.abc.Callable:
        return True
    if get_origin(annotation) is not collections.abc.Callable:
        return False
    args = get_args(annotation)
    return not args or args[0] == []


def _start_generator(generator, identity: Identity) -> tuple[Any, Cleanup]:
    try:
        value = next(generator)
    except StopIteration:
        raise RuntimeError(f"Generator constructor for {identity} did not yield a value") from None

    def cleanup():
        try:
            next(generator)
        except StopIteration:
            return
        generator.close()
        raise RuntimeError(f"Generator constructor for {identity} yielded more than once")

    return value, cleanup


def _factory_name(factory: Callable) -> str:
    return getattr(factory, "__qualname__", repr(factory))
