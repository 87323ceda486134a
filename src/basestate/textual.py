"""Textual integration for basestate. Opt-in — requires textual.

Guard + NoMatches + thread-marshal are enforced here, not at callsites, and
the Textual coupling stays in this module so the core remains UI-agnostic.
_paused_apps has a single owner (this module): an id is present exactly while
inside a pause() block.
"""

import threading
from contextlib import contextmanager

from textual.css.query import NoMatches

from basestate.effect import Effect
from basestate.effect import effect as _effect

# Module-owned pause state — keyed by id(app) so multiple apps work in tests.
_paused_apps: set[int] = set()


@contextmanager
def pause(app):
    """Suspend guarded effects and listeners during widget replacement."""
    key = id(app)
    _paused_apps.add(key)
    try:
        yield
    finally:
        _paused_apps.discard(key)


def is_safe(app) -> bool:
    """Is the widget tree in a queryable state?"""
    return app.is_running and id(app) not in _paused_apps


def _guard(app, fn):
    """Wrap fn so it only runs while app is safe, on the thread it was guarded on."""
    _main = threading.get_ident()

    def _safe(*args):
        try:
            fn(*args)
        except NoMatches:
            pass

    def _guarded(*args):
        if not is_safe(app):
            return
        if threading.get_ident() != _main:
            app.call_from_thread(_safe, *args)
        else:
            _safe(*args)

    return _guarded


class _AppEffect(Effect):
    """An Effect whose runs always happen on the app's thread.

    A change from a worker thread re-dispatches the whole run, tracking
    included, so the body's reads are registered when it actually executes.
    """

    __slots__ = ("_app", "_main")

    def __init__(self, app, fn) -> None:
        self._app = app
        self._main = threading.get_ident()
        super().__init__(fn)

    def run(self) -> None:
        if threading.get_ident() != self._main:
            self._app.call_from_thread(super().run)
        else:
            super().run()


def effect(app, fn):
    """effect() that safely bridges to Textual widgets.

    Guards against running during pause/not-running, catches NoMatches from
    widget queries, and marshals cross-thread runs via call_from_thread.
    A skipped run reads no signals, so prefer bind() when the effect must
    resume after a pause.
    """

    def _body():
        if not is_safe(app):
            return
        try:
            fn()
        except NoMatches:
            pass

    e = _AppEffect(app, _body)
    e.run()
    return e


def bind(app, data_fn, render_fn):
    """Track data_fn on every change; push its result to render_fn when safe.

    data_fn runs unguarded inside the effect, so its dependencies survive
    pauses. render_fn(value) gets the same guards as effect().
    """
    guarded = _guard(app, render_fn)
    return _effect(lambda: guarded(data_fn()))


def listener(app, fn):
    """Wrap a Store listener callback with the same guards.

    Usage:
        store.add_value_listener("count", stx.listener(app, update_label))
    """
    return _guard(app, fn)
