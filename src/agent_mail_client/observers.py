"""Observer lists for fan-out of transport and mail notifications.

One ``ObserverList`` per notification category. Observers run in
registration order; a failing observer is logged and never blocks the
ones after it. Observers may be plain callables or coroutine functions.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

Observer = Callable[..., Any]


class ObserverList:
    """Ordered, error-isolated list of callbacks for one notification."""

    def __init__(self, name: str):
        self.name = name
        self._observers: list[Observer] = []

    def add(self, observer: Observer) -> Callable[[], None]:
        """Register an observer.

        Returns:
            Function that removes the observer again
        """
        self._observers.append(observer)

        def unsubscribe() -> None:
            self.remove(observer)

        return unsubscribe

    def remove(self, observer: Observer) -> bool:
        """Remove an observer. Returns False if it was not registered."""
        if observer in self._observers:
            self._observers.remove(observer)
            return True
        return False

    def clear(self) -> None:
        self._observers.clear()

    def __len__(self) -> int:
        return len(self._observers)

    def __contains__(self, observer: object) -> bool:
        return observer in self._observers

    async def notify(self, *args: Any) -> None:
        """Call every observer with ``args``."""
        # Copy so observers may unsubscribe themselves while being notified
        for observer in list(self._observers):
            try:
                result = observer(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Error in {self.name} observer")
