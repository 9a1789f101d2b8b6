"""Cancellation - handles the caller uses to cancel an in-flight dispatch.

The token returned by ``Dispatcher.dispatch`` exists before the dispatcher
knows whether the call is stubbed or live. Once the real operation starts,
its cancellable is bound into the token. ``cancel`` always reaches whichever
cancellable is bound at the time of the call, and a cancel that happens
before binding is forwarded to the cancellable when it is bound.
"""

from __future__ import annotations

from threading import Lock
from typing import Callable, Protocol, runtime_checkable


@runtime_checkable
class Cancellable(Protocol):
    """Anything that can be cancelled once."""

    @property
    def is_cancelled(self) -> bool:
        ...

    def cancel(self) -> None:
        ...


class SimpleCancellable:
    """A flag, optionally running ``on_cancel`` the first time it is set."""

    def __init__(self, on_cancel: Callable[[], None] | None = None) -> None:
        self._on_cancel = on_cancel
        self._cancelled = False
        self._lock = Lock()

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
        if self._on_cancel is not None:
            self._on_cancel()


class CancellationToken:
    """Caller-facing handle with a rebindable inner cancellable.

    Binding and cancelling share one lock, so a cancel racing a bind is never
    lost: either the old inner is cancelled before the swap, or the new inner
    is cancelled right after it.
    """

    def __init__(self, inner: Cancellable | None = None) -> None:
        self._lock = Lock()
        self._inner: Cancellable = inner if inner is not None else SimpleCancellable()
        self._cancelled = False

    @property
    def is_cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    def bind(self, inner: Cancellable) -> None:
        """Make ``inner`` the cancellable that ``cancel`` reaches."""
        with self._lock:
            self._inner = inner
            already_cancelled = self._cancelled
        if already_cancelled:
            inner.cancel()

    def cancel(self) -> None:
        """Cancel the dispatch. Repeated calls have no further effect."""
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            inner = self._inner
        inner.cancel()

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.is_cancelled})"
