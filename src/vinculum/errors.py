"""Exceptions raised by the container.

Every error a caller can provoke derives from :class:`DependencyError`.
:class:`InternalError` stands apart: it means the engine reached a state it
should never reach, and is a bug rather than a misuse.
"""

from typing import Any, Optional, Sequence

__all__ = [
    "DependencyError",
    "RegistrationError",
    "NotFoundError",
    "AmbiguousError",
    "CycleError",
    "ConstructionError",
    "InvocationError",
    "InternalError",
]


class DependencyError(Exception):
    """Raised when a dependency cannot be registered, found or built.

    As the error propagates through nested resolutions, each dependent
    identity is prepended to ``context``, so the message reads from the
    outermost request down to the failing one.
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
        self.context: list[Any] = []

    def add_context(self, identity: Any) -> "DependencyError":
        self.context.insert(0, identity)
        return self

    def __str__(self) -> str:
        if not self.context:
            return self.message
        trail = ": ".join(str(identity) for identity in self.context)
        return f"{trail}: {self.message}"


class RegistrationError(DependencyError):
    """A provider could not be registered (bad shape, duplicate, bad interface)."""


class NotFoundError(DependencyError):
    """No provider matches the requested identity."""


class AmbiguousError(DependencyError):
    """Several providers match an identity that needs exactly one."""


class CycleError(DependencyError):
    """The providers reachable from a request depend on each other in a loop.

    Attributes:
        path: The identities forming the loop, starting and ending with the
            repeated one.
    """

    def __init__(self, path: Sequence[Any], message: Optional[str] = None):
        self.path = list(path)
        super().__init__(
            message or f"[{' '.join(str(identity) for identity in self.path)}] cycle detected"
        )


class ConstructionError(DependencyError):
    """A factory raised while building a value.

    The factory's exception is available as ``__cause__``.
    """

    def __init__(self, identity: Any, error: BaseException):
        self.identity = identity
        self.error = error
        super().__init__(f"{identity}: {type(error).__name__}: {error}")


class InvocationError(DependencyError):
    """A function passed to ``invoke`` or ``iterate`` cannot be used."""


class InternalError(Exception):
    """The engine reached a state that should be unreachable."""
