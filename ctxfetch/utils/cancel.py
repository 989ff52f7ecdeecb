from __future__ import annotations

import logging
import threading
import time
import weakref
from typing import Callable


logger = logging.getLogger(__name__)


CAUSE_CANCELLED = "cancelled"
CAUSE_DEADLINE_EXCEEDED = "deadline_exceeded"


class CancelledError(RuntimeError):
    """Raised when a cancellation request should abort the current call."""

    cause = CAUSE_CANCELLED


class DeadlineExceededError(CancelledError):
    """Raised when a token fired because its deadline elapsed."""

    cause = CAUSE_DEADLINE_EXCEEDED


def _run_callback(fn: Callable[[], None]) -> None:
    try:
        fn()
    except Exception:
        logger.exception("Cancellation callback %r failed", fn)


def error_for_cause(cause: str, message: str | None = None) -> CancelledError:
    if cause == CAUSE_DEADLINE_EXCEEDED:
        return DeadlineExceededError(message or "Deadline exceeded")
    return CancelledError(message or "Cancelled")


class CancellationToken:
    """Cancellation/deadline signal that can be derived into a tree.

    A child fires when its parent fires (inheriting the parent's cause) or when its
    own deadline elapses, whichever comes first. Firing is one-way: the first cause
    recorded wins and later requests are no-ops.

    Deadlines are observed lazily: `cancelled`, `cause` and `check()` fire the token
    once the clock has passed the effective deadline. Explicit cancellation is pushed
    down to live children and registered callbacks.
    """

    def __init__(
        self,
        *,
        parent: CancellationToken | None = None,
        deadline: float | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._clock = clock or (parent._clock if parent is not None else time.monotonic)
        self._parent = parent
        self._own_deadline = deadline
        self._cause: str | None = None
        self._lock = threading.Lock()
        self._callbacks: dict[int, Callable[[], None]] = {}
        self._next_callback_id = 0
        # Notification only; children are owned by whoever derived them.
        self._children: weakref.WeakSet[CancellationToken] = weakref.WeakSet()

        if parent is not None:
            parent._attach(self)

    @classmethod
    def with_deadline_in(cls, timeout_s: float, *, clock: Callable[[], float] | None = None) -> CancellationToken:
        """Root token that expires `timeout_s` seconds from now."""
        c = clock or time.monotonic
        return cls(deadline=c() + float(timeout_s), clock=c)

    # Derivation

    def child(self) -> CancellationToken:
        return CancellationToken(parent=self)

    def with_timeout(self, timeout_s: float) -> CancellationToken:
        if timeout_s < 0:
            raise ValueError(f"timeout_s must be >= 0, got {timeout_s}")
        return CancellationToken(parent=self, deadline=self._clock() + float(timeout_s))

    def _attach(self, child: CancellationToken) -> None:
        with self._lock:
            fired = self._cause
            if fired is None:
                self._children.add(child)
        if fired is not None:
            child.request_cancel(fired)
        elif self._deadline_passed():
            # Born under an expired parent: fire both now rather than on first observation.
            self._observe()

    def release(self) -> None:
        """Detach from the parent. Safe to call more than once."""
        parent = self._parent
        if parent is None:
            return
        with parent._lock:
            parent._children.discard(self)

    def __enter__(self) -> CancellationToken:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()

    # State

    @property
    def deadline(self) -> float | None:
        parent_deadline = self._parent.deadline if self._parent is not None else None
        if parent_deadline is None:
            return self._own_deadline
        if self._own_deadline is None:
            return parent_deadline
        return min(parent_deadline, self._own_deadline)

    @property
    def n_children(self) -> int:
        """Live children still attached for notification."""
        with self._lock:
            return len(self._children)

    def remaining(self) -> float | None:
        d = self.deadline
        if d is None:
            return None
        return max(0.0, d - self._clock())

    @property
    def cancelled(self) -> bool:
        return self._observe() is not None

    @property
    def cause(self) -> str | None:
        return self._observe()

    def check(self) -> None:
        cause = self._observe()
        if cause is not None:
            raise error_for_cause(cause)

    def _deadline_passed(self) -> bool:
        d = self._own_deadline
        return d is not None and self._clock() >= d

    def _observe(self) -> str | None:
        if self._cause is not None:
            return self._cause
        if self._parent is not None:
            parent_cause = self._parent._observe()
            if parent_cause is not None:
                self.request_cancel(parent_cause)
                return self._cause
        if self._deadline_passed():
            self.request_cancel(CAUSE_DEADLINE_EXCEEDED)
        return self._cause

    # Firing

    def request_cancel(self, cause: str = CAUSE_CANCELLED) -> None:
        with self._lock:
            if self._cause is not None:
                return
            self._cause = cause
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()
            children = list(self._children)
            self._children.clear()

        # Children first; callback errors are logged, not raised.
        for c in children:
            c.request_cancel(cause)
        for fn in callbacks:
            _run_callback(fn)

    def add_callback(self, fn: Callable[[], None]) -> Callable[[], None]:
        """Run `fn` once when the token fires; returns an idempotent unregister function.

        If the token has already fired, `fn` runs immediately.
        """
        self._observe()
        with self._lock:
            if self._cause is None:
                cb_id = self._next_callback_id
                self._next_callback_id += 1
                self._callbacks[cb_id] = fn
            else:
                cb_id = None

        if cb_id is None:
            fn()
            return lambda: None

        def _unregister() -> None:
            with self._lock:
                self._callbacks.pop(cb_id, None)

        return _unregister

    def __repr__(self) -> str:
        return f"CancellationToken(cause={self._cause!r}, deadline={self.deadline!r})"
