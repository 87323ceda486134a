"""Tests for Tracker and the ambient tracker context."""

import threading

import pytest

from basestate import Tracker, current_tracker, use_tracker, untracked, Signal, effect


class TestTracker:
    def test_run_sets_and_restores_active(self):
        t = Tracker()
        marker = object()
        seen = []
        t.run(marker, lambda: seen.append(t.active))
        assert seen == [marker]
        assert t.active is None

    def test_run_returns_body_result(self):
        t = Tracker()
        assert t.run(None, lambda: 42) == 42

    def test_nested_runs_restore_outer(self):
        t = Tracker()
        outer, inner = object(), object()
        seen = []

        def body():
            seen.append(t.active)
            t.run(inner, lambda: seen.append(t.active))
            seen.append(t.active)

        t.run(outer, body)
        assert seen == [outer, inner, outer]

    def test_restores_on_exception(self):
        t = Tracker()

        def boom():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            t.run(object(), boom)
        assert t.active is None

    def test_untracked_clears_active(self):
        t = Tracker()
        seen = []
        t.run(object(), lambda: t.untracked(lambda: seen.append(t.active)))
        assert seen == [None]


class TestAmbientTracker:
    def test_use_tracker_installs_and_resets(self):
        default = current_tracker()
        t = Tracker()
        with use_tracker(t) as installed:
            assert installed is t
            assert current_tracker() is t
        assert current_tracker() is default

    def test_signals_bind_tracker_at_creation(self):
        log = []
        with use_tracker(Tracker()):
            s = Signal(0)
            effect(lambda: log.append(s.get()))
        # Outside the block the pair still shares its tracker.
        s.set(1)
        assert log == [0, 1]

    def test_explicit_tracker(self):
        t = Tracker()
        s = Signal(0, tracker=t)
        log = []
        effect(lambda: log.append(s.get()), tracker=t)
        s.set(1)
        assert log == [0, 1]
        assert current_tracker() is not t

    def test_untracked_read_does_not_subscribe(self):
        s = Signal(0)
        log = []
        effect(lambda: log.append(untracked(s.get)))
        s.set(1)
        assert log == [0]
        assert s.dependent_count == 0


class TestThreads:
    def test_active_is_per_thread(self):
        t = Tracker()
        seen = []

        def body():
            worker = threading.Thread(target=lambda: seen.append(t.active))
            worker.start()
            worker.join()
            seen.append(t.active)

        marker = object()
        t.run(marker, body)
        assert seen == [None, marker]

    def test_worker_run_leaves_main_active_alone(self):
        t = Tracker()
        inner = object()
        seen = []

        def body():
            worker = threading.Thread(target=lambda: t.run(inner, lambda: seen.append(t.active)))
            worker.start()
            worker.join()
            seen.append(t.active)

        outer = object()
        t.run(outer, body)
        assert seen == [inner, outer]

    def test_worker_read_does_not_subscribe_main_effect(self):
        s = Signal(0)
        log = []

        def body():
            log.append("run")
            worker = threading.Thread(target=s.get)
            worker.start()
            worker.join()

        effect(body)
        assert s.dependent_count == 0
        s.set(1)
        assert log == ["run"]

    def test_signal_from_worker_tracked_on_main(self):
        made = []
        worker = threading.Thread(target=lambda: made.append(Signal(1)))
        worker.start()
        worker.join()
        s = made[0]
        log = []
        effect(lambda: log.append(s.get()))
        s.set(2)
        assert log == [1, 2]
