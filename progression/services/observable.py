from __future__ import annotations

import itertools
import logging
from collections.abc import Callable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Listener = Callable[[T], None]


class Subscription:
    """Token returned by ``Observable.subscribe``.

    ``unsubscribe()`` is idempotent.
    """

    __slots__ = ("_observable", "_token")

    def __init__(self, observable: Observable, token: int) -> None:
        self._observable: Observable | None = observable
        self._token = token

    @property
    def active(self) -> bool:
        return self._observable is not None

    def unsubscribe(self) -> None:
        if self._observable is None:
            return
        self._observable._remove(self._token)
        self._observable = None


class Observable(Generic[T]):
    """Ordered listener registry.

    Listeners are called synchronously, in the order they subscribed.  A
    listener that raises is logged and skipped; the others still run.
    ``on_change`` receives the listener count after every add or remove.
    """

    def __init__(self, on_change: Callable[[int], None] | None = None) -> None:
        self._listeners: dict[int, Listener[T]] = {}
        self._tokens = itertools.count(1)
        self._on_change = on_change

    def __len__(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: Listener[T]) -> Subscription:
        token = next(self._tokens)
        self._listeners[token] = listener
        self._changed()
        return Subscription(self, token)

    def emit(self, value: T) -> None:
        # copy so a listener may unsubscribe itself mid-notification
        for listener in list(self._listeners.values()):
            try:
                listener(value)
            except Exception:
                logger.exception("Listener %r failed", listener)

    def clear(self) -> None:
        self._listeners.clear()
        self._changed()

    def _remove(self, token: int) -> None:
        if self._listeners.pop(token, None) is not None:
            self._changed()

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change(len(self._listeners))
