"""Registration and lookup of providers."""

from collections import defaultdict
from typing import Any, Iterable

from vinculum.domain import Identity, member_type, type_name
from vinculum.errors import AmbiguousError, NotFoundError, RegistrationError
from vinculum.inject import is_injectable
from vinculum.providers import GroupProvider, InterfaceProvider, Provider, StructFieldProvider

__all__ = ["Registry"]


class Registry:
    """Providers keyed by the type they produce, in registration order.

    Several providers may share a type. A lookup narrows them down by name
    and tags; it must end with exactly one provider. Two kinds of provider
    are synthesised on lookup rather than registered:

        - ``list[T]`` with no provider of its own becomes a group of every
          matching ``T`` provider, read afresh on each lookup.
        - An :class:`~vinculum.inject.Injectable` subclass nobody provides
          is instantiated and populated by a struct-field provider.

    Args:
        strict: Reject a provider whose identity (type, name and tags) is
            already registered. By default duplicates are accepted and only
            an unqualified lookup of them fails, as ambiguous.
    """

    def __init__(self, strict: bool = False):
        self.strict = strict
        self._providers: dict[Any, list[Provider]] = defaultdict(list)
        self._struct_providers: dict[type, StructFieldProvider] = {}

    def register(self, provider: Provider, interfaces: Iterable[type] = ()) -> list[Provider]:
        """Register a provider, and an alias for each interface it implements.

        Everything is validated before anything is registered.

        Returns:
            The registered providers: ``provider`` followed by its aliases.

        Raises:
            RegistrationError: On a duplicate identity in strict mode, or an
                interface the provider's type does not implement.
        """
        if self.strict and any(
            existing.identity == provider.identity
            for existing in self._providers.get(provider.identity.type, [])
        ):
            raise RegistrationError(f"{provider.identity} is already provided")
        aliases = [self._make_alias(provider, interface) for interface in interfaces]

        for registered in [provider, *aliases]:
            self._providers[registered.identity.type].append(registered)
        return [provider, *aliases]

    def register_interface(self, provider: Provider, interface: type) -> InterfaceProvider:
        """Expose an already registered provider under ``interface`` as well."""
        alias = self._make_alias(provider, interface)
        self._providers[interface].append(alias)
        return alias

    def matching(self, identity: Identity) -> list[Provider]:
        """Registered providers satisfying ``identity``, in registration order."""
        return [
            provider
            for provider in self._providers.get(identity.type, [])
            if provider.identity.matches(identity)
        ]

    def find(self, identity: Identity) -> Provider:
        """Find the single provider for ``identity``.

        Raises:
            NotFoundError: If nothing matches.
            AmbiguousError: If several providers match.
        """
        matched = self.matching(identity)
        if len(matched) == 1:
            return matched[0]
        if len(matched) > 1:
            raise AmbiguousError(
                f"Multiple definitions of {identity}, "
                f"maybe you need to use group type: {identity.retyped(list[identity.type])}"
            )

        group = self._group(identity)
        if group is not None:
            return group
        if is_injectable(identity.type) and identity.name is None and not identity.tags:
            return self._struct_provider(identity.type)
        raise NotFoundError(f"{identity} not found")

    def exists(self, identity: Identity) -> bool:
        try:
            self.find(identity)
        except NotFoundError:
            return False
        except AmbiguousError:
            return True
        return True

    def providers(self) -> list[Provider]:
        return [provider for providers in self._providers.values() for provider in providers]

    def _group(self, identity: Identity):
        member = member_type(identity.type)
        if member is None:
            return None
        member_identity = identity.retyped(member)
        if not self.matching(member_identity):
            return None
        return GroupProvider(identity, lambda: self.matching(member_identity))

    def _struct_provider(self, cls: type) -> StructFieldProvider:
        if cls not in self._struct_providers:
            self._struct_providers[cls] = StructFieldProvider(cls)
        return self._struct_providers[cls]

    @staticmethod
    def _make_alias(provider: Provider, interface: Any) -> InterfaceProvider:
        if not isinstance(interface, type):
            raise RegistrationError(f"{interface!r} is not an interface type")
        try:
            implemented = provider.implements(interface)
        except TypeError as exc:
            raise RegistrationError(
                f"{type_name(interface)} cannot be checked as an interface: {exc}"
            ) from exc
        if not implemented:
            raise RegistrationError(
                f"{provider.identity} does not implement {type_name(interface)}"
            )
        return InterfaceProvider(provider, interface)
