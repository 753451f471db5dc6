from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from ._errors import AlreadyRegisteredError, CircularDependencyError, DependencyNotFoundError, LockedError, describe


logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Iterator

    from ._recipe import Parameter, Recipe


class Dependency(ABC):
    """How to produce the value bound to one key."""

    @abstractmethod
    def resolve(self) -> Any: ...

    def held(self) -> tuple[bool, Any]:
        """(True, value) when this descriptor owns a value to release at shutdown."""
        return False, None


class InstanceDependency(Dependency):
    def __init__(self, instance: object) -> None:
        self._instance = instance

    def resolve(self) -> Any:
        return self._instance

    def held(self) -> tuple[bool, Any]:
        return True, self._instance


class ScopedDependency(Dependency):
    """Builds a new value on every resolution."""

    def __init__(self, recipe: Recipe, registry: Registry) -> None:
        self._recipe = recipe
        self._registry = registry

    @property
    def recipe(self) -> Recipe:
        return self._recipe

    def resolve(self) -> Any:
        return self._construct()

    def _construct(self) -> Any:
        with self._registry.guard.enter(self._recipe.origin):
            args: list[Any] = []
            kwargs: dict[str, Any] = {}

            for param in self._recipe.parameters:
                value = self._registry.resolve_parameter(param, self._recipe.origin)
                if param.keyword_only:
                    kwargs[param.name] = value
                else:
                    args.append(value)

            return self._recipe(args, kwargs)


_UNSET = object()


class SingletonDependency(ScopedDependency):
    """Builds its value once, on first resolution, and caches it.

    The cached slot is read without locking once set; first construction is
    serialized on a lock owned by this descriptor only, so unrelated
    singletons never wait on each other.
    """

    def __init__(self, recipe: Recipe, registry: Registry) -> None:
        super().__init__(recipe, registry)
        self._instance: Any = _UNSET
        # re-entrant: a cycle through this singleton is reported by the guard
        self._lock = threading.RLock()

    @property
    def constructed(self) -> bool:
        return self._instance is not _UNSET

    def resolve(self) -> Any:
        instance = self._instance
        if instance is not _UNSET:
            return instance

        with self._lock:
            if self._instance is _UNSET:
                instance = self._construct()
                logger.debug("Constructed singleton %s", describe(self._recipe.origin))
                self._instance = instance
            return self._instance

    def held(self) -> tuple[bool, Any]:
        instance = self._instance
        if instance is _UNSET:
            return False, None
        return True, instance


class ResolutionGuard:
    """Per-thread stack of the recipes currently being constructed.

    Entering a recipe that is already on the current thread's stack means the
    binding graph has a cycle.
    """

    def __init__(self, *, enabled: bool = True) -> None:
        self.enabled = enabled
        self._local = threading.local()

    def enter(self, origin: Any) -> _GuardFrame:
        return _GuardFrame(self, origin)

    def _stack(self) -> list[Any]:
        stack = getattr(self._local, "stack", None)
        if stack is None:
            stack = self._local.stack = []
        return stack


class _GuardFrame:
    def __init__(self, guard: ResolutionGuard, origin: Any) -> None:
        self._guard = guard
        self._origin = origin

    def __enter__(self) -> None:
        if not self._guard.enabled:
            return
        stack = self._guard._stack()  # noqa: SLF001
        if any(o is self._origin for o in stack):
            start = next(i for i, o in enumerate(stack) if o is self._origin)
            raise CircularDependencyError([*stack[start:], self._origin])
        stack.append(self._origin)

    def __exit__(self, *exc_info: object) -> None:
        if self._guard.enabled:
            self._guard._stack().pop()  # noqa: SLF001


class Registry:
    """Insertion-ordered table of key -> dependency, owned by one container."""

    def __init__(self, *, detect_cycles: bool = True) -> None:
        self._dependencies: dict[Any, Dependency] = {}
        self._locked = threading.Event()
        self.guard = ResolutionGuard(enabled=detect_cycles)

    @property
    def locked(self) -> bool:
        return self._locked.is_set()

    def lock(self) -> None:
        if not self._locked.is_set():
            self._locked.set()
            logger.debug("Container locked with %d registration(s)", len(self._dependencies))

    def ensure_unlocked(self) -> None:
        if self._locked.is_set():
            raise LockedError

    def ensure_available(self, key: Any, *, overwrite: bool = False) -> None:
        self.ensure_unlocked()
        if key in self._dependencies and not overwrite:
            raise AlreadyRegisteredError(key)

    def register(self, key: Any, dependency: Dependency, *, overwrite: bool = False) -> None:
        """Bind `key`; replacing keeps the key's original position."""
        self.ensure_available(key, overwrite=overwrite)

        replaced = key in self._dependencies
        self._dependencies[key] = dependency
        logger.debug(
            "%s %s as %s", "Replaced" if replaced else "Registered", describe(key), type(dependency).__name__
        )

    def lookup(self, key: Any) -> Dependency:
        try:
            return self._dependencies[key]
        except KeyError:
            raise DependencyNotFoundError(key) from None
        except TypeError as exc:  # unhashable key
            msg = f"Invalid component key {key!r}"
            raise TypeError(msg) from exc

    def resolve_parameter(self, param: Parameter, owner: Any) -> Any:
        if param.key is None:
            return param.default

        dependency = self._dependencies.get(param.key)
        if dependency is None:
            if not param.required:
                return param.default
            logger.debug(
                "Missing dependency %s for parameter '%s' of %s", describe(param.key), param.name, describe(owner)
            )
            raise DependencyNotFoundError(param.key)

        return dependency.resolve()

    def __contains__(self, key: object) -> bool:
        return key in self._dependencies

    def __len__(self) -> int:
        return len(self._dependencies)

    def __iter__(self) -> Iterator[tuple[Any, Dependency]]:
        # snapshot
        return iter(list(self._dependencies.items()))
