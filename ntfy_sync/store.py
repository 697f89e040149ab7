"""Thread-safe store owning all subscriptions and their notifications."""

import logging
import re
import threading
import time
from contextlib import contextmanager
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from . import db
from .errors import DuplicateSubscription, NotFound, StoreInvariantError
from .models import (
    NotificationRecord,
    SubscriptionRecord,
    SubscriptionState,
    new_id,
    normalize_base_url,
)
from .observers import (
    APPENDED,
    CLEARED,
    CREATED,
    DELETED,
    REMOVED,
    ChangeEvent,
    ChangeNotifier,
    ObserverHandle,
)

logger = logging.getLogger(__name__)

TOPIC_PATTERN = re.compile(r"^[-_A-Za-z0-9]{1,64}$")


class Store:
    """
    Single source of truth for subscriptions and notifications.

    Mutations on one subscription are serialized by that subscription's lock;
    different subscriptions proceed independently. Lock order is always
    subscription lock, then registry lock, then database lock. Every mutation
    queues a ChangeEvent before releasing the subscription lock.
    """

    def __init__(
        self,
        db_path: Optional[str] = None,
        notifier: Optional[ChangeNotifier] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Create a store.

        Args:
            db_path: SQLite file to load from and write through to. None keeps
                everything in memory.
            notifier: Change notifier; a new one is created if omitted.
            clock: Source of the current time, unix seconds.
        """
        self.notifier = notifier or ChangeNotifier()
        self._clock = clock
        self._registry_lock = threading.Lock()
        self._db_lock = threading.Lock()
        self._subscriptions: Dict[str, SubscriptionState] = {}
        self._by_topic: Dict[Tuple[str, str], str] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._owners: Dict[str, str] = {}  # notification id -> subscription id
        self._conn = db.init_db(db_path) if db_path else None
        if self._conn is not None:
            for state in db.load_subscriptions(self._conn):
                self._register(state)
            logger.info(f"Loaded {len(self._subscriptions)} subscription(s) from {db_path}")

    # Registry helpers

    def _register(self, state: SubscriptionState) -> None:
        self._subscriptions[state.id] = state
        self._by_topic[(state.topic, state.base_url)] = state.id
        self._locks[state.id] = threading.Lock()
        for notification_id in state.notifications:
            self._owners[notification_id] = state.id

    @contextmanager
    def _locked(self, subscription_id: str) -> Iterator[SubscriptionState]:
        """Hold the subscription's lock; raises NotFound if it is gone."""
        with self._registry_lock:
            lock = self._locks.get(subscription_id)
        if lock is None:
            raise NotFound(f"Subscription {subscription_id} does not exist")
        with lock:
            with self._registry_lock:
                state = self._subscriptions.get(subscription_id)
            if state is None:
                # Deleted while we were waiting for the lock
                raise NotFound(f"Subscription {subscription_id} does not exist")
            yield state

    def _persist(self, operation, *args) -> None:
        if self._conn is None:
            return
        with self._db_lock:
            operation(self._conn, *args)

    def _publish(self, subscription_id: str, kind: str) -> None:
        self.notifier.publish(ChangeEvent(subscription_id=subscription_id, kind=kind))

    # Subscriptions

    def create_subscription(
        self,
        topic: str,
        base_url: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> SubscriptionRecord:
        """
        Start tracking a topic.

        Args:
            topic: Topic name on the server.
            base_url: Server identity; defaults to https://ntfy.sh.
            display_name: Optional name override shown to the user.

        Returns:
            Snapshot of the new subscription.

        Raises:
            ValueError: If the topic name is invalid.
            DuplicateSubscription: If the topic is already tracked on that server.
        """
        if not topic or not TOPIC_PATTERN.match(topic):
            raise ValueError(f"Invalid topic name: {topic!r}")
        base_url = normalize_base_url(base_url)
        state = SubscriptionState(
            id=new_id(),
            topic=topic,
            base_url=base_url,
            display_name=display_name or None,
            created_at=int(self._clock()),
        )
        with self._registry_lock:
            if (topic, base_url) in self._by_topic:
                raise DuplicateSubscription(topic, base_url)
            self._persist(db.save_subscription, state)
            self._register(state)
            # Nobody can hold the lock of a subscription that was just registered
            self._publish(state.id, CREATED)
        logger.info(f"Subscribed to {state.base_url}/{topic} ({state.id})")
        return state.snapshot()

    def get_subscription(self, subscription_id: str) -> SubscriptionRecord:
        with self._locked(subscription_id) as state:
            return state.snapshot()

    def find_subscription(self, topic: str, base_url: Optional[str] = None) -> Optional[SubscriptionRecord]:
        with self._registry_lock:
            subscription_id = self._by_topic.get((topic, normalize_base_url(base_url)))
        if subscription_id is None:
            return None
        try:
            return self.get_subscription(subscription_id)
        except NotFound:
            return None

    def subscriptions(self) -> List[SubscriptionRecord]:
        """Snapshots of all subscriptions, oldest first."""
        with self._registry_lock:
            ids = list(self._subscriptions)
        snapshots = []
        for subscription_id in ids:
            try:
                snapshots.append(self.get_subscription(subscription_id))
            except NotFound:
                continue
        return snapshots

    def delete_subscription(self, subscription_id: str) -> bool:
        """
        Remove a subscription and all of its notifications.

        In-flight appends for it fail with NotFound afterwards, so a late poll
        cannot bring it back.

        Returns:
            True if it was removed, False if it did not exist.
        """
        try:
            with self._locked(subscription_id) as state:
                with self._registry_lock:
                    self._persist(db.delete_subscription, subscription_id)
                    del self._subscriptions[subscription_id]
                    del self._by_topic[(state.topic, state.base_url)]
                    del self._locks[subscription_id]
                    for notification_id in state.notifications:
                        self._owners.pop(notification_id, None)
                self._publish(subscription_id, REMOVED)
        except NotFound:
            return False
        logger.info(
            f"Removed subscription {state.base_url}/{state.topic} "
            f"with {len(state.notifications)} notification(s)"
        )
        return True

    # Notifications

    def append_notifications(self, subscription_id: str, records: Iterable[NotificationRecord]) -> int:
        """
        Insert a batch of notifications atomically.

        Records already present, or deleted locally before, are skipped so that
        re-delivery is harmless.

        Args:
            subscription_id: Owning subscription.
            records: Records to insert.

        Returns:
            The number of records actually inserted.

        Raises:
            NotFound: If the subscription does not exist (anymore).
            StoreInvariantError: If a record belongs to another subscription or
                reuses an id owned by another subscription. Nothing is applied.
        """
        records = list(records)
        with self._locked(subscription_id) as state:
            fresh: List[NotificationRecord] = []
            seen = set()
            with self._registry_lock:
                for record in records:
                    if record.subscription_id != subscription_id:
                        raise StoreInvariantError(
                            f"Notification {record.id} belongs to {record.subscription_id}, "
                            f"not {subscription_id}"
                        )
                    owner = self._owners.get(record.id)
                    if owner is not None and owner != subscription_id:
                        raise StoreInvariantError(
                            f"Notification id {record.id} is already used by subscription {owner}"
                        )
                    if record.id in seen or record.id in state.notifications or record.id in state.deleted_ids:
                        continue
                    seen.add(record.id)
                    fresh.append(record)
            if not fresh:
                return 0

            newest = max(record.time for record in fresh)
            if state.last_notification_time is not None:
                newest = max(newest, state.last_notification_time)
            self._persist(db.insert_notifications, subscription_id, fresh, newest)

            for record in fresh:
                state.notifications[record.id] = record
            state.last_notification_time = newest
            with self._registry_lock:
                for record in fresh:
                    self._owners[record.id] = subscription_id
            self._publish(subscription_id, APPENDED)
        logger.debug(f"Appended {len(fresh)} of {len(records)} notification(s) to {subscription_id}")
        return len(fresh)

    def _delete_ids(self, subscription_id: str, notification_ids: Optional[Iterable[str]], kind: str) -> int:
        """Delete the given ids (all current ones if None). Missing ids are ignored."""
        try:
            with self._locked(subscription_id) as state:
                if notification_ids is None:
                    # Snapshot boundary: only what exists now, later appends survive
                    doomed = list(state.notifications)
                else:
                    doomed = [nid for nid in dict.fromkeys(notification_ids) if nid in state.notifications]
                if not doomed:
                    return 0
                self._persist(db.delete_notifications, subscription_id, doomed)
                for notification_id in doomed:
                    del state.notifications[notification_id]
                    state.deleted_ids.add(notification_id)
                with self._registry_lock:
                    for notification_id in doomed:
                        self._owners.pop(notification_id, None)
                self._publish(subscription_id, kind)
        except NotFound:
            return 0
        logger.debug(f"Deleted {len(doomed)} notification(s) from {subscription_id}")
        return len(doomed)

    def delete_notification(self, notification_id: str) -> bool:
        """Delete one notification. Returns False if it was already gone."""
        with self._registry_lock:
            subscription_id = self._owners.get(notification_id)
        if subscription_id is None:
            return False
        return self._delete_ids(subscription_id, [notification_id], DELETED) == 1

    def delete_notifications(self, notification_ids: Iterable[str]) -> int:
        """Delete exactly the named notifications, across subscriptions."""
        grouped: Dict[str, List[str]] = {}
        with self._registry_lock:
            for notification_id in set(notification_ids):
                subscription_id = self._owners.get(notification_id)
                if subscription_id is not None:
                    grouped.setdefault(subscription_id, []).append(notification_id)
        return sum(self._delete_ids(sid, ids, DELETED) for sid, ids in grouped.items())

    def delete_all_notifications(self, subscription_id: str) -> int:
        """Delete every notification the subscription holds right now."""
        return self._delete_ids(subscription_id, None, CLEARED)

    def sorted_notifications(self, subscription_id: str) -> List[NotificationRecord]:
        """Notifications newest first, ties broken by id descending."""
        try:
            with self._locked(subscription_id) as state:
                records = list(state.notifications.values())
        except NotFound:
            return []
        return sorted(records, key=NotificationRecord.sort_key, reverse=True)

    def get_notification(self, notification_id: str) -> NotificationRecord:
        with self._registry_lock:
            subscription_id = self._owners.get(notification_id)
        if subscription_id is not None:
            with self._locked(subscription_id) as state:
                record = state.notifications.get(notification_id)
            if record is not None:
                return record
        raise NotFound(f"Notification {notification_id} does not exist")

    # Observers

    def subscribe(
        self,
        subscription_id: Optional[str],
        on_change: Callable[[ChangeEvent], None],
    ) -> ObserverHandle:
        """Observe changes to one subscription (or all of them with None)."""
        return self.notifier.subscribe(subscription_id, on_change)

    def unsubscribe_observer(self, handle: ObserverHandle) -> None:
        self.notifier.unsubscribe(handle)

    # Metadata

    def get_meta(self, key: str) -> Optional[str]:
        if self._conn is None:
            return None
        with self._db_lock:
            return db.get_meta(self._conn, key)

    def set_meta(self, key: str, value: str) -> None:
        self._persist(db.set_meta, key, value)

    def close(self) -> None:
        """Deliver pending change events and close the database."""
        self.notifier.close()
        if self._conn is not None:
            with self._db_lock:
                self._conn.close()
            self._conn = None
