"""Change notification plumbing between the store and its observers."""

import itertools
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

# Event kinds
CREATED = "created"
APPENDED = "appended"
DELETED = "deleted"
CLEARED = "cleared"
REMOVED = "removed"


@dataclass(frozen=True)
class ChangeEvent:
    """Something changed for one subscription."""
    subscription_id: str
    kind: str


@dataclass(frozen=True)
class ObserverHandle:
    """Returned by subscribe(); pass it back to unsubscribe_observer()."""
    token: int
    subscription_id: Optional[str]


class ChangeNotifier:
    """
    Delivers change events to registered callbacks.

    Callbacks run on a single dedicated worker thread (the observer context),
    in the order events were published. Publishing never blocks on a callback.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._observers: Dict[int, tuple] = {}
        self._tokens = itertools.count(1)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ntfy-observer")
        self._closed = False
        self._worker_ident: Optional[int] = None

    def subscribe(
        self,
        subscription_id: Optional[str],
        on_change: Callable[[ChangeEvent], None],
    ) -> ObserverHandle:
        """
        Register a callback.

        Args:
            subscription_id: Only events for this subscription are delivered.
                None observes every subscription.
            on_change: Called with a ChangeEvent on the observer thread.

        Returns:
            A handle for unsubscribe().
        """
        with self._lock:
            token = next(self._tokens)
            self._observers[token] = (subscription_id, on_change)
        return ObserverHandle(token=token, subscription_id=subscription_id)

    def unsubscribe(self, handle: ObserverHandle) -> None:
        with self._lock:
            self._observers.pop(handle.token, None)

    def publish(self, event: ChangeEvent) -> None:
        """Queue an event for delivery. Callers hold the subscription's lock."""
        with self._lock:
            if self._closed:
                return
            # Observers current at publish time; later registrations miss it
            targets = [
                callback for sub_id, callback in self._observers.values()
                if sub_id is None or sub_id == event.subscription_id
            ]
            self._executor.submit(self._deliver, event, targets)

    def _deliver(self, event: ChangeEvent, targets: List[Callable[[ChangeEvent], None]]) -> None:
        self._worker_ident = threading.get_ident()
        for callback in targets:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Observer failed handling {event}: {e}", exc_info=True)

    def drain(self, timeout: Optional[float] = None) -> None:
        """
        Block until every event published so far has been delivered.

        Called from inside an observer callback it returns at once, since the
        single worker would otherwise wait on itself.
        """
        if threading.get_ident() == self._worker_ident:
            logger.debug("drain() called on the observer thread, not waiting")
            return
        with self._lock:
            if self._closed:
                return
            marker = self._executor.submit(lambda: None)
        marker.result(timeout=timeout)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._executor.shutdown(wait=True)
