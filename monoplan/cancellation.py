"""Cooperative cancellation."""

from __future__ import annotations

import threading

from .errors import CancelledError


class CancellationToken:
    """A flag the caller sets and the engine polls.

    The engine checks the token at every component boundary and after each
    provider call; it never interrupts a call in progress. Safe to cancel
    from another thread or a signal handler.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Raise :class:`CancelledError` once :meth:`cancel` has been called."""
        if self._event.is_set():
            raise CancelledError()
