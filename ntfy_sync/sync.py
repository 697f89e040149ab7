"""Background poll, publish and unsubscribe for subscriptions."""

import logging
import random
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Dict, Iterable, List, Optional

from .errors import NotFound, TransportError
from .models import NotificationRecord, SubscriptionRecord
from .store import Store
from .transport import MessageTransport

logger = logging.getLogger(__name__)

TEST_TAGS = [
    "warning", "skull", "success", "triangular_flag_on_post", "de", "us", "dog", "cat",
    "rotating_light", "bike", "backup", "rsync", "this-s-a-tag", "ios",
]
TEST_TITLE = "Test: You can set a title if you like"
TEST_MESSAGE = (
    "This is a test notification from ntfy-sync. It has a priority of {priority}. "
    "If you send another one, it may look different."
)


class SubscriptionSyncManager:
    """
    Runs transport work for subscriptions on a background worker pool.

    Every operation returns a Future right away; results reach observers
    through the store's change events. At most one poll per subscription is
    in flight, extra requests are coalesced into the active one.
    """

    def __init__(
        self,
        store: Store,
        transport: MessageTransport,
        max_workers: int = 4,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.transport = transport
        self._clock = clock
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="ntfy-sync")
        self._polls_lock = threading.Lock()
        self._polls: Dict[str, Future] = {}

    def __enter__(self) -> "SubscriptionSyncManager":
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    # Poll

    def poll(self, subscription_id: str, raise_errors: bool = False) -> Future:
        """
        Fetch new messages for a subscription in the background.

        Args:
            subscription_id: Subscription to poll.
            raise_errors: Set for user-initiated refreshes; transport failures
                are then raised from the future instead of being logged only.

        Returns:
            Future resolving to the number of new notifications stored. If a
            poll for this subscription is already running, its future is
            returned instead of starting another one.

        Raises:
            NotFound: If the subscription does not exist.
        """
        self.store.get_subscription(subscription_id)
        with self._polls_lock:
            active = self._polls.get(subscription_id)
            # A finished future can linger until its done-callback clears it
            if active is not None and not active.done():
                logger.debug(f"Poll for {subscription_id} already in flight, coalescing")
                return active
            future = self._executor.submit(self._poll, subscription_id, raise_errors)
            self._polls[subscription_id] = future
        future.add_done_callback(lambda f: self._poll_finished(subscription_id, f))
        return future

    def poll_all(self, raise_errors: bool = False) -> List[Future]:
        """Poll every subscription; returns one future per subscription."""
        futures = []
        for subscription in self.store.subscriptions():
            try:
                futures.append(self.poll(subscription.id, raise_errors=raise_errors))
            except NotFound:
                continue
        return futures

    def _poll_finished(self, subscription_id: str, future: Future) -> None:
        with self._polls_lock:
            if self._polls.get(subscription_id) is future:
                del self._polls[subscription_id]

    def _poll(self, subscription_id: str, raise_errors: bool) -> int:
        try:
            subscription = self.store.get_subscription(subscription_id)
        except NotFound:
            logger.debug(f"Subscription {subscription_id} was removed before polling")
            return 0

        try:
            messages = self.transport.fetch(
                subscription.base_url,
                subscription.topic,
                since=subscription.last_notification_time,
            )
        except TransportError as e:
            logger.error(f"Polling {subscription.topic_url()} failed: {e}")
            if raise_errors:
                raise
            return 0

        records = self._to_records(subscription, messages)
        try:
            added = self.store.append_notifications(subscription_id, records)
        except NotFound:
            logger.debug(f"Subscription {subscription_id} was removed during poll, discarding result")
            return 0
        if added:
            logger.info(f"Stored {added} new notification(s) for {subscription.topic_url()}")
        return added

    def _to_records(self, subscription: SubscriptionRecord, messages: Iterable) -> List[NotificationRecord]:
        # Locally stamped times never go behind what the subscription already has
        received_at = int(self._clock())
        if subscription.last_notification_time is not None:
            received_at = max(received_at, subscription.last_notification_time)
        return [
            NotificationRecord.from_raw(message, subscription.id, received_at)
            for message in messages
        ]

    # Publish

    def publish(
        self,
        subscription_id: str,
        message: str,
        title: Optional[str] = None,
        priority: Optional[int] = None,
        tags: Optional[Iterable[str]] = None,
        click: Optional[str] = None,
    ) -> Future:
        """
        Publish a message to the subscription's topic in the background.

        The store is not touched; the message shows up once a poll fetches it.

        Returns:
            Future resolving to None once the transport accepted the message;
            it raises TransportError if publishing failed.

        Raises:
            NotFound: If the subscription does not exist.
        """
        subscription = self.store.get_subscription(subscription_id)
        tags = list(tags) if tags else []
        return self._executor.submit(
            self._publish, subscription, message, title, priority, tags, click
        )

    def publish_test(self, subscription_id: str) -> Future:
        """Publish a test message with a random priority and a few random tags."""
        priority = random.randint(1, 5)
        tags = random.sample(TEST_TAGS, random.randint(0, 3))
        return self.publish(
            subscription_id,
            TEST_MESSAGE.format(priority=priority),
            title=TEST_TITLE,
            priority=priority,
            tags=tags,
        )

    def _publish(self, subscription, message, title, priority, tags, click) -> None:
        try:
            self.transport.publish(
                subscription.base_url,
                subscription.topic,
                message,
                title=title,
                priority=priority,
                tags=tags,
                click=click,
            )
        except TransportError as e:
            logger.error(f"Publishing to {subscription.topic_url()} failed: {e}")
            raise

    # Unsubscribe

    def unsubscribe(self, subscription_id: str) -> Future:
        """
        Stop tracking a subscription.

        Remote deregistration is best-effort; the local subscription and all of
        its notifications are removed regardless.

        Returns:
            Future resolving to None once the local removal is done.
        """
        return self._executor.submit(self._unsubscribe, subscription_id)

    def _unsubscribe(self, subscription_id: str) -> None:
        try:
            subscription = self.store.get_subscription(subscription_id)
        except NotFound:
            logger.debug(f"Subscription {subscription_id} already removed")
            return

        try:
            self.transport.deregister(subscription.base_url, subscription.topic)
        except TransportError as e:
            logger.warning(f"Could not deregister {subscription.topic_url()}, removing locally anyway: {e}")

        self.store.delete_subscription(subscription_id)
