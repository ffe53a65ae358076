"""Coalesce bursts of editor edits into one component sync.

The editor calls ``edit`` on every keystroke; only the last state of a burst
is pushed, ``interval`` seconds after the final edit. ``close`` drops a
pending sync without sending it, which is what leaving the editor does.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

from studio.models import ComponentState

log = logging.getLogger(__name__)

DEFAULT_INTERVAL = 1.0

PushFn = Callable[[ComponentState], Any]
TimerFactory = Callable[[float, Callable[[], None]], Any]


class DebouncedSync:
    def __init__(
        self,
        push: PushFn,
        interval: float = DEFAULT_INTERVAL,
        timer_factory: TimerFactory = threading.Timer,
        initial: Optional[ComponentState] = None,
    ) -> None:
        self._push = push
        self.interval = interval
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._timer: Any = None
        self._state = initial.model_copy() if initial is not None else ComponentState()
        self._closed = False
        self._generation = 0

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    @property
    def state(self) -> ComponentState:
        with self._lock:
            return self._state.model_copy()

    def edit(self, jsx: Optional[str] = None, css: Optional[str] = None) -> None:
        with self._lock:
            if self._closed:
                return
            changes = {}
            if jsx is not None:
                changes["jsx"] = jsx
            if css is not None:
                changes["css"] = css
            self._state = self._state.model_copy(update=changes)
            if self._timer is not None:
                self._timer.cancel()
            self._generation += 1
            generation = self._generation
            timer = self._timer_factory(self.interval, lambda: self._fire(generation))
            if hasattr(timer, "daemon"):
                timer.daemon = True
            self._timer = timer
        timer.start()

    def _fire(self, generation: int) -> None:
        with self._lock:
            # A cancelled timer that already started must not push a superseded state.
            if self._closed or self._timer is None or generation != self._generation:
                return
            self._timer = None
            state = self._state.model_copy()
        try:
            self._push(state)
        except Exception as exc:
            log.warning("debounce: component sync failed: %r", exc)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
            log.debug("debounce: dropped pending sync on close")
