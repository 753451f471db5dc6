from __future__ import annotations

import inspect
import logging
from typing import TYPE_CHECKING, Any, TypeVar, overload

from ._dependency import Dependency, InstanceDependency, Registry, ScopedDependency, SingletonDependency
from ._errors import ReleaseError, describe
from ._recipe import default_key, provided_type, recipe_for, validate_binding, validate_instance


logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from types import TracebackType

    T = TypeVar("T")

    Key = type[T] | str


class Container:
    """Dependency injection container.

    Register dependencies, then call `get_instance` / `run_all`.

    - `register_instance`: a value built outside the container
    - `register_singleton`: one lazily built, thread-safe instance
    - `register_scoped`: a new instance for every resolution
    - `register_runnable` / `register_runnable_instance`: objects with a
      `run()` method started, in registration order, by `run_all`

    Constructor parameters are injected by the base type of their annotation.
    A binding may use an alias key (usually a base class or protocol the
    implementation conforms to), which makes it easy to swap in a fake in tests.

    The first `get_instance`, `run_all` or `shutdown` call locks the container;
    no registration is accepted afterwards. Only `get_instance` is safe to call
    from several threads.
    """

    def __init__(self, *, detect_cycles: bool = True) -> None:
        self._registry = Registry(detect_cycles=detect_cycles)
        self._runnables: list[Dependency] = []
        self._shut_down = False

    @property
    def locked(self) -> bool:
        return self._registry.locked

    def register_instance(self, instance: object, key: Key[Any] | None = None, *, overwrite: bool = False) -> None:
        """Register a pre-built value; it is never constructed, only released on shutdown."""
        self._registry.ensure_unlocked()
        if key is None:
            key = type(instance)
        else:
            validate_instance(_check_key(key), instance)

        self._registry.register(key, InstanceDependency(instance), overwrite=overwrite)

    def register_singleton(self, target: Any, key: Key[Any] | None = None, *, overwrite: bool = False) -> None:
        """Register a class or factory whose single instance is built on first use."""
        self._registry.ensure_unlocked()
        key = self._binding_key(target, key)
        self._registry.ensure_available(key, overwrite=overwrite)
        recipe = recipe_for(target)
        self._registry.register(key, SingletonDependency(recipe, self._registry), overwrite=overwrite)

    def register_scoped(self, target: Any, key: Key[Any] | None = None, *, overwrite: bool = False) -> None:
        """Register a class or factory built anew for every resolution."""
        self._registry.ensure_unlocked()
        key = self._binding_key(target, key)
        self._registry.ensure_available(key, overwrite=overwrite)
        recipe = recipe_for(target)
        self._registry.register(key, ScopedDependency(recipe, self._registry), overwrite=overwrite)

    def register_runnable(self, runnable_cls: type) -> None:
        """Register a class with a `run()` method; it is built once, by `run_all`."""
        self._registry.ensure_unlocked()
        if not inspect.isclass(runnable_cls) or not callable(getattr(runnable_cls, "run", None)):
            msg = f"{runnable_cls!r} must be a class defining a run() method"
            raise TypeError(msg)

        self._runnables.append(SingletonDependency(recipe_for(runnable_cls), self._registry))
        logger.debug("Registered runnable %s", describe(runnable_cls))

    def register_runnable_instance(self, runnable: object) -> None:
        self._registry.ensure_unlocked()
        if not callable(getattr(runnable, "run", None)):
            msg = f"{runnable!r} has no run() method"
            raise TypeError(msg)

        self._runnables.append(InstanceDependency(runnable))
        logger.debug("Registered runnable instance of %s", describe(type(runnable)))

    def run_all(self) -> None:
        """Run every registered runnable in registration order, on the calling thread.

        The first failure stops the remaining runnables and propagates.
        """
        self._registry.lock()
        for dependency in self._runnables:
            runnable = dependency.resolve()
            logger.debug("Running %s", describe(type(runnable)))
            runnable.run()

    @overload
    def get_instance(self, key: type[T]) -> T: ...

    @overload
    def get_instance(self, key: str) -> Any: ...

    def get_instance(self, key: Key[T]) -> object:
        """Resolve the value bound to `key`, building it and its dependencies as needed."""
        self._registry.lock()
        return self._registry.lookup(key).resolve()

    def __contains__(self, key: object) -> bool:
        return key in self._registry

    def shutdown(self) -> None:
        """Release held values in registration order.

        Instances and singletons that were actually built get their `close()`
        called; scoped bindings and never-built singletons are skipped. A
        failing hook does not stop the others: failures are logged and raised
        together as a `ReleaseError` once every hook ran. Only the first call
        releases anything.

        Used as a context manager, a `ReleaseError` raised while another
        exception is propagating is logged instead, so the original error
        reaches the caller.
        """
        self._registry.lock()
        if self._shut_down:
            logger.debug("Container already shut down")
            return
        self._shut_down = True

        errors: list[tuple[Any, BaseException]] = []
        for key, dependency in self._registry:
            has_value, value = dependency.held()
            if not has_value:
                continue

            # class objects bound as values are never released
            if inspect.isclass(value):
                continue

            close = getattr(value, "close", None)
            if not callable(close):
                continue

            try:
                close()
            except Exception as exc:
                logger.exception("Failed to release %s", describe(key))
                errors.append((key, exc))
            else:
                logger.debug("Released %s", describe(key))

        if errors:
            raise ReleaseError(errors) from errors[0][1]

    def __enter__(self) -> Container:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc is None:
            self.shutdown()
            return

        try:
            self.shutdown()
        except ReleaseError:
            logger.exception("Release failed while handling %s", type(exc).__name__)

    def _binding_key(self, target: Any, key: Any) -> Any:
        if key is None:
            return default_key(target)

        impl = provided_type(target)
        if impl is not None:
            validate_binding(_check_key(key), impl)
        return _check_key(key)


def _check_key(key: Any) -> Any:
    if not (inspect.isclass(key) or isinstance(key, str)):
        msg = f"Component keys must be classes or strings, got {key!r}"
        raise TypeError(msg)
    return key
