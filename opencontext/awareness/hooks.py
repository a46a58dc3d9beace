"""Write notifications from the note store.

The store calls ``WriteNotifier.notify`` after each write. Subscribers
decide what to do with it; ``CacheRefresher`` rebuilds the self-model cache
every Nth write. Subscriber failures are logged with a traceback and handed
back to the store, never swallowed, and never abort the store's own write.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from opencontext.awareness.observer import Observer
from opencontext.awareness.self_model import refresh_cache
from opencontext.protocols import ContextStoreProtocol
from opencontext.types import Schema

logger = logging.getLogger(__name__)

# Writes between self-model cache refreshes
DEFAULT_REFRESH_EVERY = 10


@dataclass(frozen=True)
class WriteEvent:
    """A write the store just committed."""

    operation: str  # "save", "update", "delete", ...
    entry_id: Optional[str] = None
    context_type: Optional[str] = None


WriteSubscriber = Callable[[WriteEvent], None]


class WriteNotifier:
    def __init__(self) -> None:
        self._subscribers: List[WriteSubscriber] = []

    def subscribe(self, callback: WriteSubscriber) -> None:
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: WriteSubscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def notify(self, event: WriteEvent) -> List[Tuple[WriteSubscriber, Exception]]:
        """Deliver ``event`` to every subscriber in order.

        Returns the (subscriber, error) pairs for subscribers that raised.
        """
        failures = []
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.exception(f"Write subscriber {callback!r} failed on {event.operation}")
                failures.append((callback, e))
        return failures


class CacheRefresher:
    """Refreshes the cached self-model after every ``every`` writes."""

    def __init__(
        self,
        store: ContextStoreProtocol,
        schema: Optional[Schema],
        observer: Observer,
        every: int = DEFAULT_REFRESH_EVERY,
    ):
        if every < 1:
            raise ValueError("every must be at least 1")
        self._store = store
        self._schema = schema
        self._observer = observer
        self.every = every
        self.writes_seen = 0
        self.refreshes = 0

    def __call__(self, event: WriteEvent) -> None:
        self.writes_seen += 1
        if self.writes_seen % self.every != 0:
            return
        refresh_cache(self._store, self._schema, self._observer)
        self.refreshes += 1
