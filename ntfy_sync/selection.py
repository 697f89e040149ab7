"""Edit-mode selection of notifications for batch deletion."""

import logging
from typing import FrozenSet, Set

from .errors import NotFound
from .store import Store

logger = logging.getLogger(__name__)


class SelectionController:
    """
    Tracks which notifications of one subscription are marked for deletion.

    Lives on the observer context and is not thread-safe. All deletions are
    delegated to the store.
    """

    def __init__(self, store: Store, subscription_id: str):
        self.store = store
        self.subscription_id = subscription_id
        self.edit_mode = False
        self._selection: Set[str] = set()

    @property
    def selection(self) -> FrozenSet[str]:
        return frozenset(self._selection)

    def has_notifications(self) -> bool:
        """Selecting and clearing only make sense when there is something to act on."""
        try:
            return self.store.get_subscription(self.subscription_id).notification_count > 0
        except NotFound:
            return False

    def begin_editing(self) -> None:
        self.edit_mode = True
        self._selection.clear()

    def end_editing(self) -> None:
        self.edit_mode = False
        self._selection.clear()

    def select(self, notification_id: str) -> None:
        self._selection.add(notification_id)

    def deselect(self, notification_id: str) -> None:
        self._selection.discard(notification_id)

    def toggle(self, notification_id: str) -> bool:
        """Flip the selection state of a notification; returns the new state."""
        if notification_id in self._selection:
            self._selection.discard(notification_id)
            return False
        self._selection.add(notification_id)
        return True

    def is_selected(self, notification_id: str) -> bool:
        return notification_id in self._selection

    def delete_selected(self) -> int:
        """Delete the selected notifications and leave edit mode."""
        ids = set(self._selection)
        try:
            deleted = self.store.delete_notifications(ids)
        finally:
            self.end_editing()
        logger.info(f"Deleted {deleted} of {len(ids)} selected notification(s)")
        return deleted

    def delete_all(self) -> int:
        """Delete every notification of the subscription and leave edit mode."""
        try:
            deleted = self.store.delete_all_notifications(self.subscription_id)
        finally:
            self.end_editing()
        logger.info(f"Cleared {deleted} notification(s) from {self.subscription_id}")
        return deleted

    def delete_one(self, notification_id: str) -> bool:
        """Delete a single notification (swipe to delete); the rest of the selection stays."""
        self._selection.discard(notification_id)
        return self.store.delete_notification(notification_id)
