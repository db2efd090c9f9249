"""High level entry point: the :class:`Container`.

A container holds the providers registered with it and builds values from
them on demand. Nothing is constructed at registration time; the first
request for a value validates the providers it needs, builds them bottom-up
and keeps singletons for later requests.

Example:
    >>> container = Container()
    >>>
    >>> @container.provides()
    ... def make_database(config: Config) -> Iterator[Database]:
    ...     db = Database(config.url)
    ...     yield db
    ...     db.close()
    >>>
    >>> container.provide_value(Config(url="sqlite://"))
    >>> db = container.resolve(Database)
    >>> container.cleanup()  # closes db
"""

import inspect
import threading
from typing import Any, Callable, Iterable, Mapping, Optional, TypeVar

from vinculum.domain import Identity, Parameter, member_type, type_name
from vinculum.errors import CycleError, DependencyError, InvocationError, NotFoundError, RegistrationError
from vinculum.inject import inspect_arguments
from vinculum.lifecycle import LifecycleManager
from vinculum.options import ProvideOptions, ResolveOptions
from vinculum.providers import ConstructorProvider, Decorator, GroupProvider, Provider, ValueProvider
from vinculum.registry import Registry
from vinculum.resolver import Resolver
from vinculum.tracing import NopTracer, Tracer

__all__ = ["Container"]

T = TypeVar("T")

IterateFunc = Callable[[dict[str, str], Callable[[], Any]], None]
"""Called with a group member's tags and a function that builds the member."""


class Container:
    """Dependency injection container.

    Args:
        strict: Reject registering a second provider with an identical
            identity instead of deferring the conflict to lookup time.
        tracer: Observer notified of registrations, builds and cleanups.

    The container provides itself, so factories and invocations may depend on
    :class:`Container`, for instance to register providers conditionally.
    """

    def __init__(self, strict: bool = False, tracer: Optional[Tracer] = None):
        self._tracer = tracer or NopTracer()
        self._lock = threading.RLock()
        self._registry = Registry(strict)
        self._lifecycle = LifecycleManager(self._tracer)
        self._resolver = Resolver(self._registry, self._lifecycle, self._tracer, self._lock)
        self.provide_value(self)

    def provide(
        self,
        factory: Callable,
        *,
        name: Optional[str] = None,
        tags: Optional[Mapping[str, str]] = None,
        as_: Iterable[type] = (),
        prototype: bool = False,
        decorators: Iterable[Decorator] = (),
    ) -> None:
        """Register a function or class that builds a value lazily.

        The factory's annotated parameters are its dependencies. Its result
        type comes from the return annotation (or is the class itself) and
        may be declared as ``T``, ``tuple[T, Cleanup]`` or, for generators,
        ``Iterator[T]`` with teardown after the ``yield``.

        Raises:
            RegistrationError: If the factory's signature is unsupported, an
                interface is not implemented, or the identity is a duplicate
                in strict mode.
        """
        self.apply(
            factory,
            ProvideOptions(name, dict(tags or {}), tuple(as_), prototype, tuple(decorators)),
        )

    def provides(
        self,
        name: Optional[str] = None,
        *,
        tags: Optional[Mapping[str, str]] = None,
        as_: Iterable[type] = (),
        prototype: bool = False,
        decorators: Iterable[Decorator] = (),
    ) -> Callable:
        """Decorator form of :meth:`provide`; returns the factory unchanged.

        Example:
            @container.provides(as_=[Controller])
            def make_user_controller(repository: UserRepository) -> UserController:
                return UserController(repository)
        """

        def decorator(factory):
            self.provide(
                factory,
                name=name,
                tags=tags,
                as_=as_,
                prototype=prototype,
                decorators=decorators,
            )
            return factory

        return decorator

    def provide_value(
        self,
        value: Any,
        *,
        type_: Any = None,
        name: Optional[str] = None,
        tags: Optional[Mapping[str, str]] = None,
        as_: Iterable[type] = (),
        decorators: Iterable[Decorator] = (),
    ) -> None:
        """Register a ready-made value, provided as ``type_`` or its own type."""
        if value is None:
            raise RegistrationError("Invalid value, got None")
        options = ProvideOptions(name, dict(tags or {}), tuple(as_), False, tuple(decorators))
        identity = Identity.of(type_ if type_ is not None else type(value), name, options.tags)
        self._register(ValueProvider(value, identity, options.decorators), options)

    def apply(self, factory: Callable, options: ProvideOptions) -> None:
        """Register a factory with a prepared :class:`ProvideOptions`."""
        provider = ConstructorProvider.from_factory(
            factory, options.name, dict(options.tags), options.prototype, options.decorators
        )
        self._register(provider, options)

    def resolve(
        self,
        type_: type[T],
        *,
        name: Optional[str] = None,
        tags: Optional[Mapping[str, str]] = None,
    ) -> T:
        """Build (or fetch) the value registered for ``type_``.

        Raises:
            NotFoundError: If nothing provides the type or one of its dependencies.
            AmbiguousError: If several providers match without a qualifier.
            CycleError: If the dependencies loop.
            ConstructionError: If a factory raised.
        """
        identity = ResolveOptions(name, dict(tags or {})).identity(type_)
        return self._resolver.resolve(Parameter(identity))

    def has(
        self,
        type_: Any,
        *,
        name: Optional[str] = None,
        tags: Optional[Mapping[str, str]] = None,
    ) -> bool:
        """Check that ``type_`` can be resolved, without building anything.

        Returns False only when no provider matches. A provider whose
        dependencies are broken makes the corresponding error propagate.
        """
        identity = ResolveOptions(name, dict(tags or {})).identity(type_)
        with self._lock:
            try:
                provider, owner = self._resolver.locate(identity)
            except NotFoundError:
                return False
            owner.validate(provider)
            return True

    def invoke(self, fn: Callable[..., T]) -> T:
        """Call ``fn`` with its annotated parameters resolved from the container.

        Whatever ``fn`` returns or raises is passed through unchanged.

        Raises:
            InvocationError: If ``fn`` is not a function or its parameters
                cannot be interpreted as dependencies.
        """
        if fn is None or inspect.isclass(fn) or not callable(fn):
            raise InvocationError(f"Invalid invocation signature, got {fn!r}")
        try:
            arguments = inspect_arguments(fn)
        except (RegistrationError, TypeError, ValueError) as exc:
            raise InvocationError(f"Invalid invocation signature of {fn!r}: {exc}") from exc

        args = []
        kwargs = {}
        with self._lock:
            for argument in arguments:
                value = self._resolver.resolve(argument.parameter)
                if argument.positional:
                    args.append(value)
                else:
                    kwargs[argument.name] = value
        return fn(*args, **kwargs)

    def iterate(
        self,
        target: Any,
        fn: IterateFunc,
        *,
        name: Optional[str] = None,
        tags: Optional[Mapping[str, str]] = None,
    ) -> None:
        """Visit the members of the group ``target`` (a ``list[T]`` type) one by one.

        ``fn`` receives each member's tags and a zero-argument ``load`` that
        builds the member, so members can be skipped without being built.

        Raises:
            InvocationError: If ``target`` is not a group.
            DependencyError: If ``fn`` raises, naming the member index.
        """
        if member_type(target) is None:
            raise InvocationError(f"Iteration can be used with groups only, got {type_name(target)}")
        identity = ResolveOptions(name, dict(tags or {})).identity(target)
        with self._lock:
            provider, owner = self._resolver.locate(identity)
            if not isinstance(provider, GroupProvider):
                raise InvocationError(
                    f"Iteration can be used with groups only, {identity} is provided directly"
                )
            for index, member in enumerate(provider.members()):
                try:
                    fn(member.identity.tag_map, _loader(owner, member))
                except Exception as exc:
                    raise DependencyError(f"{identity} with index {index} failed: {exc}") from exc

    def cleanup(self) -> None:
        """Tear down built values, dependents before their dependencies.

        Singletons are forgotten, so a later request builds them again.
        """
        with self._lock:
            self._lifecycle.cleanup()

    def add_parent(self, parent: "Container") -> None:
        """Resolve from ``parent`` whatever this container does not provide.

        Values built by the parent stay cached and cleaned up in the parent.

        Raises:
            CycleError: If this container is already an ancestor of ``parent``.
        """
        with self._lock:
            chain = [parent._resolver, *parent._resolver.ancestors()]
            if self._resolver in chain:
                raise CycleError(
                    [self, parent, self], f"Adding {parent!r} as parent of {self!r} creates a cycle"
                )
            self._resolver.parents.append(parent._resolver)

    def _register(self, provider: Provider, options: ProvideOptions) -> None:
        with self._lock:
            registered = self._registry.register(provider, options.interfaces)
        for each in registered:
            self._tracer.trace("Registered %r", each)

    def __repr__(self) -> str:
        return f"<Container {id(self):#x}>"


def _loader(resolver: Resolver, member: Provider) -> Callable[[], Any]:
    def load():
        return resolver.resolve_provider(member)

    return load
