"""Data models for subscriptions and notifications."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional, Tuple
from urllib.parse import urlparse

DEFAULT_BASE_URL = "https://ntfy.sh"
DEFAULT_PRIORITY = 3
MIN_PRIORITY = 1
MAX_PRIORITY = 5


def new_id() -> str:
    """Generate a fresh identifier for a subscription or notification."""
    return uuid.uuid4().hex


def normalize_base_url(base_url: Optional[str]) -> str:
    """Strip trailing slashes so "https://ntfy.sh/" and "https://ntfy.sh" match."""
    if not base_url:
        return DEFAULT_BASE_URL
    return base_url.strip().rstrip("/")


def clamp_priority(priority: Optional[int]) -> int:
    if priority is None:
        return DEFAULT_PRIORITY
    return max(MIN_PRIORITY, min(MAX_PRIORITY, int(priority)))


def normalize_tags(tags: Optional[Iterable[str]]) -> Tuple[str, ...]:
    """Keep tag order, drop empty and repeated tags."""
    if not tags:
        return ()
    seen = []
    for tag in tags:
        tag = str(tag).strip()
        if tag and tag not in seen:
            seen.append(tag)
    return tuple(seen)


@dataclass(frozen=True)
class RawMessage:
    """A message as returned by the transport, before it gets a local identity."""
    topic: str
    message: str = ""
    id: Optional[str] = None     # server message id, if the server sent one
    time: Optional[int] = None   # unix seconds
    title: Optional[str] = None
    priority: Optional[int] = None
    tags: Tuple[str, ...] = ()
    click: Optional[str] = None


@dataclass(frozen=True)
class NotificationRecord:
    """One received message. Immutable once created."""
    id: str
    subscription_id: str
    time: int                    # receipt timestamp, unix seconds
    message: str = ""
    title: Optional[str] = None
    priority: int = DEFAULT_PRIORITY
    tags: Tuple[str, ...] = ()
    click: Optional[str] = None

    @classmethod
    def from_raw(
        cls,
        raw: RawMessage,
        subscription_id: str,
        received_at: int,
    ) -> "NotificationRecord":
        """
        Build a record from a transport message.

        Args:
            raw: The message as delivered by the transport.
            subscription_id: Owning subscription.
            received_at: Timestamp to use when the server did not send one.

        Returns:
            A new NotificationRecord. The server id is kept when present so
            re-delivery of the same message is detected as a duplicate.
        """
        return cls(
            id=raw.id or new_id(),
            subscription_id=subscription_id,
            time=raw.time if raw.time is not None else received_at,
            message=raw.message or "",
            title=raw.title,
            priority=clamp_priority(raw.priority),
            tags=normalize_tags(raw.tags),
            click=raw.click,
        )

    def display_title(self) -> Optional[str]:
        return self.title or None

    def short_date_time(self, now: Optional[datetime] = None) -> str:
        """Format the receipt time for list rows; only the time if it was today."""
        received = datetime.fromtimestamp(self.time)
        now = now or datetime.now()
        if received.date() == now.date():
            return received.strftime("%H:%M")
        return received.strftime("%Y-%m-%d %H:%M")

    def sort_key(self) -> Tuple[int, str]:
        return (self.time, self.id)


@dataclass(frozen=True)
class SubscriptionRecord:
    """Read-only snapshot of a subscription as held by the store."""
    id: str
    topic: str
    base_url: str = DEFAULT_BASE_URL
    display_name: Optional[str] = None
    notification_ids: Tuple[str, ...] = ()
    last_notification_time: Optional[int] = None
    created_at: int = 0

    @property
    def notification_count(self) -> int:
        return len(self.notification_ids)

    def topic_url(self) -> str:
        return f"{self.base_url}/{self.topic}"

    def name(self) -> str:
        """Name shown to the user: the override, the topic, or host/topic."""
        if self.display_name:
            return self.display_name
        if self.base_url == DEFAULT_BASE_URL:
            return self.topic
        host = urlparse(self.base_url).netloc or self.base_url
        return f"{host}/{self.topic}"


@dataclass
class SubscriptionState:
    """Mutable aggregate behind a SubscriptionRecord. Only the store touches it."""
    id: str
    topic: str
    base_url: str
    display_name: Optional[str]
    created_at: int
    notifications: dict = field(default_factory=dict)  # id -> NotificationRecord, insertion ordered
    deleted_ids: set = field(default_factory=set)      # ids removed locally, never re-added
    last_notification_time: Optional[int] = None

    def snapshot(self) -> SubscriptionRecord:
        return SubscriptionRecord(
            id=self.id,
            topic=self.topic,
            base_url=self.base_url,
            display_name=self.display_name,
            notification_ids=tuple(self.notifications),
            last_notification_time=self.last_notification_time,
            created_at=self.created_at,
        )
