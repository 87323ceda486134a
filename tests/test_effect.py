"""Tests for Effect, effect() and on_cleanup()."""

import pytest

from basestate import Signal, signal, effect, on_cleanup, current_tracker, Computed


class TestEffect:
    def test_runs_immediately(self):
        s = Signal(10)
        log = []
        effect(lambda: log.append(s.get()))
        assert log == [10]

    def test_reruns_on_change(self):
        s = Signal(10)
        log = []
        effect(lambda: log.append(s.get()))
        s.set(20)
        assert log == [10, 20]

    def test_dispose_stops(self):
        s = Signal(10)
        log = []
        e = effect(lambda: log.append(s.get()))
        e.dispose()
        s.set(20)
        assert log == [10]
        assert e.disposed

    def test_dispose_is_idempotent(self):
        e = effect(lambda: None)
        e.dispose()
        e.dispose()
        assert e.disposed

    def test_run_after_dispose_is_noop(self):
        runs = []
        e = effect(lambda: runs.append(1))
        e.dispose()
        e.run()
        assert runs == [1]

    def test_end_to_end(self):
        get, set_ = signal(0)
        seen = []
        e = effect(lambda: seen.append(get()))
        set_(1)
        assert len(seen) == 2
        e.dispose()
        set_(2)
        assert len(seen) == 2

    def test_multiple_dependencies(self):
        a = Signal(1)
        b = Signal(2)
        log = []
        effect(lambda: log.append(a.get() + b.get()))
        a.set(10)
        b.set(20)
        assert log == [3, 12, 30]

    def test_repr(self):
        def render():
            pass

        e = effect(render)
        assert repr(e) == "Effect(render, active)"
        e.dispose()
        assert repr(e) == "Effect(render, disposed)"


class TestDynamicDependencies:
    def test_dependencies_follow_latest_run(self):
        flag = Signal(True)
        a = Signal(1)
        b = Signal(2)
        log = []
        effect(lambda: log.append(a.get() if flag.get() else b.get()))
        assert log == [1]

        flag.set(False)
        assert log == [1, 2]

        a.set(10)  # no longer read
        assert log == [1, 2]
        assert a.dependent_count == 0

        b.set(3)
        assert log == [1, 2, 3]

    def test_dependencies_can_grow(self):
        flag = Signal(False)
        a = Signal(1)
        log = []
        effect(lambda: log.append(a.get() if flag.get() else None))
        a.set(2)
        assert log == [None]
        flag.set(True)
        a.set(3)
        assert log == [None, 2, 3]


class TestNesting:
    def test_parent_dispose_cascades(self):
        outer = Signal(0)
        inner = Signal(0)
        inner_log = []

        def parent():
            outer.get()
            effect(lambda: inner_log.append(inner.get()))

        p = effect(parent)
        inner.set(1)
        assert inner_log == [0, 1]

        p.dispose()
        inner.set(2)
        assert inner_log == [0, 1]
        assert inner.dependent_count == 0

    def test_parent_rerun_replaces_children(self):
        outer = Signal(0)
        inner = Signal(0)
        inner_log = []

        def parent():
            outer.get()
            effect(lambda: inner_log.append(inner.get()))

        effect(parent)
        outer.set(1)
        assert inner_log == [0, 0]

        inner.set(5)
        # Only the child from the latest parent run reacts.
        assert inner_log == [0, 0, 5]
        assert inner.dependent_count == 1

    def test_cascade_reaches_grandchildren_and_computeds(self):
        s = Signal(1)
        made = {}

        def parent():
            def child():
                made["computed"] = Computed(lambda: s.get() * 2)
                made["grandchild"] = effect(lambda: s.get())

            made["child"] = effect(child)

        p = effect(parent)
        p.dispose()
        assert made["child"].disposed
        assert made["grandchild"].disposed
        assert made["computed"].disposed
        assert s.dependent_count == 0


class TestErrors:
    def test_body_error_propagates_to_setter(self):
        s = Signal(0)

        def body():
            if s.get() > 0:
                raise ValueError("boom")

        effect(body)
        with pytest.raises(ValueError, match="boom"):
            s.set(1)
        assert current_tracker().active is None

    def test_body_error_propagates_from_creation(self):
        def body():
            raise RuntimeError("bad start")

        with pytest.raises(RuntimeError, match="bad start"):
            effect(body)
        assert current_tracker().active is None

    def test_still_subscribed_after_error(self):
        s = Signal(0)
        log = []

        def body():
            value = s.get()
            log.append(value)
            if value == 1:
                raise ValueError("one")

        effect(body)
        with pytest.raises(ValueError):
            s.set(1)
        s.set(2)
        assert log == [0, 1, 2]


class TestOnCleanup:
    def test_runs_before_rerun_and_on_dispose(self):
        s = Signal(0)
        log = []

        def body():
            value = s.get()
            log.append(("run", value))
            on_cleanup(lambda: log.append(("cleanup", value)))

        e = effect(body)
        s.set(1)
        e.dispose()
        assert log == [("run", 0), ("cleanup", 0), ("run", 1), ("cleanup", 1)]

    def test_outside_effect_raises(self):
        with pytest.raises(RuntimeError):
            on_cleanup(lambda: None)

    def test_failing_cleanup_still_unsubscribes(self):
        s = Signal(0)

        def body():
            s.get()
            on_cleanup(lambda: 1 / 0)

        e = effect(body)
        with pytest.raises(ZeroDivisionError):
            e.dispose()
        assert s.dependent_count == 0
        assert e.disposed
