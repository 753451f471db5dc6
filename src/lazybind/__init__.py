"""Lazy, lock-on-first-use dependency injection container.

Registrations are declared up front, objects are built on demand by
constructor injection, and the container tears them down in registration order.

Exports:
- `Container`: registration table, resolution, runnables and shutdown.
- `inject`: marks the constructor to use when a class has more than one.
- The `ContainerError` hierarchy raised by the container.
"""

from ._container import Container
from ._errors import (
    AlreadyRegisteredError,
    CircularDependencyError,
    ContainerError,
    DependencyNotFoundError,
    LockedError,
    NoUsableConstructorError,
    ReleaseError,
    ResolutionError,
)
from ._recipe import inject


__all__ = [
    "AlreadyRegisteredError",
    "CircularDependencyError",
    "Container",
    "ContainerError",
    "DependencyNotFoundError",
    "LockedError",
    "NoUsableConstructorError",
    "ReleaseError",
    "ResolutionError",
    "inject",
]
