"""
Typed publish/subscribe stream used by every service to broadcast state
"""

import logging
from typing import Callable, Generic, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


class EventStream(Generic[T]):
    """
    Ordered list of listeners receiving events of one type.

    A listener that raises is logged and skipped; the remaining listeners
    still receive the event.
    """

    def __init__(self, name: str):
        self.name = name
        self._listeners: List[Callable[[T], None]] = []

    def subscribe(self, listener: Callable[[T], None], replay: Optional[T] = None) -> Callable[[], None]:
        """Register listener; when replay is given it is delivered synchronously first"""
        self._listeners.append(listener)

        if replay is not None:
            self._deliver(listener, replay)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: T) -> None:
        # Copy so listeners may unsubscribe while being notified
        for listener in list(self._listeners):
            self._deliver(listener, event)

    def clear(self) -> None:
        self._listeners.clear()

    def __len__(self) -> int:
        return len(self._listeners)

    def _deliver(self, listener: Callable[[T], None], event: T) -> None:
        try:
            listener(event)
        except Exception as e:
            logger.error(f"Listener on '{self.name}' stream failed: {e}")
