import unittest
from unittest.mock import MagicMock

import pytest

from lazybind import Container, LockedError, ReleaseError


def _closeable(name, log):
    class Resource:
        def close(self) -> None:
            log.append(name)

    Resource.__name__ = Resource.__qualname__ = name
    return Resource


class TestShutdownOrder(unittest.TestCase):
    def setUp(self):
        self.closed = []
        self.cont = Container()

    def test_releases_in_registration_order(self):
        First = _closeable("First", self.closed)
        Second = _closeable("Second", self.closed)
        Third = _closeable("Third", self.closed)

        self.cont.register_singleton(First)
        self.cont.register_instance(Second())
        self.cont.register_singleton(Third)

        # built in reverse order, released in registration order
        self.cont.get_instance(Third)
        self.cont.get_instance(First)
        self.cont.shutdown()

        assert self.closed == ["First", "Second", "Third"]

    def test_scoped_and_unbuilt_singletons_are_skipped(self):
        Scoped = _closeable("Scoped", self.closed)
        Lazy = _closeable("Lazy", self.closed)
        Held = _closeable("Held", self.closed)

        self.cont.register_scoped(Scoped)
        self.cont.register_singleton(Lazy)
        self.cont.register_instance(Held())

        self.cont.get_instance(Scoped)
        self.cont.shutdown()

        assert self.closed == ["Held"]

    def test_overwritten_key_keeps_its_position(self):
        closed = self.closed
        First = _closeable("First", closed)
        Second = _closeable("Second", closed)

        class Replacement(First):
            def close(self) -> None:
                closed.append("Replacement")

        self.cont.register_instance(First())
        self.cont.register_instance(Second())
        self.cont.register_instance(Replacement(), First, overwrite=True)
        self.cont.shutdown()

        assert closed == ["Replacement", "Second"]

    def test_values_without_close_are_ignored(self):
        class Plain: ...

        Closeable = _closeable("Closeable", self.closed)

        self.cont.register_instance(Plain())
        self.cont.register_instance(Closeable())
        self.cont.register_instance(42)
        self.cont.shutdown()

        assert self.closed == ["Closeable"]

    def test_runnables_are_not_released(self):
        log = []

        class Job:
            def run(self) -> None:
                pass

            def close(self) -> None:
                log.append("job")

        self.cont.register_runnable(Job)
        self.cont.register_runnable_instance(Job())
        self.cont.run_all()
        self.cont.shutdown()

        assert log == []


class TestShutdownErrors(unittest.TestCase):
    def test_failing_hook_does_not_stop_the_others(self):
        closed = []

        class Broken:
            def close(self) -> None:
                msg = "disk gone"
                raise OSError(msg)

        After = _closeable("After", closed)

        c = Container()
        c.register_instance(Broken())
        c.register_instance(After())

        with pytest.raises(ReleaseError) as ctx:
            c.shutdown()

        assert closed == ["After"]
        assert len(ctx.value.errors) == 1
        key, error = ctx.value.errors[0]
        assert key is Broken
        assert isinstance(error, OSError)
        assert ctx.value.__cause__ is error

    def test_all_failures_are_collected(self):
        class BrokenA:
            def close(self) -> None:
                raise ValueError

        class BrokenB:
            def close(self) -> None:
                raise KeyError

        c = Container()
        c.register_instance(BrokenA())
        c.register_instance(BrokenB())

        with pytest.raises(ReleaseError) as ctx:
            c.shutdown()

        assert [key for key, _ in ctx.value.errors] == [BrokenA, BrokenB]


class TestShutdownLifecycle(unittest.TestCase):
    def test_second_shutdown_is_a_no_op(self):
        resource = MagicMock()

        c = Container()
        c.register_instance(resource, "resource")
        c.shutdown()
        c.shutdown()

        resource.close.assert_called_once_with()

    def test_shutdown_locks_container(self):
        c = Container()
        c.shutdown()

        with pytest.raises(LockedError):
            c.register_instance(object())

    def test_context_manager_shuts_down_on_exit(self):
        resource = MagicMock()

        with Container() as c:
            c.register_instance(resource, "resource")
            assert c.get_instance("resource") is resource
            resource.close.assert_not_called()

        resource.close.assert_called_once_with()

    def test_context_manager_shuts_down_on_error(self):
        resource = MagicMock()

        with pytest.raises(RuntimeError), Container() as c:
            c.register_instance(resource, "resource")
            msg = "boom"
            raise RuntimeError(msg)

        resource.close.assert_called_once_with()

    def test_context_manager_keeps_original_error_when_release_fails(self):
        class Broken:
            def close(self) -> None:
                msg = "disk gone"
                raise OSError(msg)

        with pytest.raises(KeyError), Container() as c:
            c.register_instance(Broken())
            msg = "lookup"
            raise KeyError(msg)

    def test_context_manager_raises_release_error_on_clean_exit(self):
        class Broken:
            def close(self) -> None:
                raise OSError

        with pytest.raises(ReleaseError), Container() as c:
            c.register_instance(Broken())


class TestShutdownClassValues(unittest.TestCase):
    def test_class_object_bound_as_value_is_not_released(self):
        closed = []

        class Strategy:
            def close(self) -> None:
                closed.append(self)

        c = Container()
        c.register_instance(Strategy, "strategy")

        assert c.get_instance("strategy") is Strategy
        c.shutdown()

        assert closed == []
