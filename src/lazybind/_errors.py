from __future__ import annotations

from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from collections.abc import Sequence


def describe(key: Any) -> str:
    """Human readable name of a component key or callable."""
    if isinstance(key, str):
        return repr(key)
    qualname = getattr(key, "__qualname__", None)
    if qualname is None:
        return repr(key)
    module = getattr(key, "__module__", None)
    if module in (None, "builtins"):
        return qualname
    return f"{module}.{qualname}"


class ContainerError(RuntimeError):
    pass


class AlreadyRegisteredError(ContainerError):
    def __init__(self, key: Any) -> None:
        super().__init__(
            f"{describe(key)} is already registered. Pass overwrite=True to replace the existing registration."
        )
        self.key = key


class NoUsableConstructorError(ContainerError):
    pass


class LockedError(ContainerError):
    def __init__(self) -> None:
        super().__init__("Can't register dependency because the container is locked")


class ResolutionError(ContainerError):
    pass


class DependencyNotFoundError(ResolutionError):
    def __init__(self, key: Any) -> None:
        super().__init__(f"Dependency {describe(key)} is not registered")
        self.key = key


class CircularDependencyError(ResolutionError):
    def __init__(self, chain: Sequence[Any]) -> None:
        super().__init__("Circular dependency detected: " + " -> ".join(describe(k) for k in chain))
        self.chain = tuple(chain)


class ReleaseError(ContainerError):
    """Raised by `Container.shutdown` once every release hook has been attempted."""

    def __init__(self, errors: Sequence[tuple[Any, BaseException]]) -> None:
        failed = ", ".join(describe(key) for key, _ in errors)
        super().__init__(f"{len(errors)} release hook(s) failed: {failed}")
        self.errors = list(errors)
