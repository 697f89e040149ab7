import threading
from typing import Dict, List, Optional, Union

from ntfy_sync.errors import TransportError
from ntfy_sync.models import NotificationRecord, RawMessage
from ntfy_sync.transport import MessageTransport, parse_message_line


class FakeTransport(MessageTransport):
    """In-memory transport. Fetches can be held open with `gate` to test overlap."""

    def __init__(self):
        self.messages: Dict[str, List[Union[RawMessage, str]]] = {}
        self.published: List[dict] = []
        self.deregistered: List[str] = []
        self.fetch_calls: List[tuple] = []
        self.fetch_error: Optional[TransportError] = None
        self.publish_error: Optional[TransportError] = None
        self.deregister_error: Optional[TransportError] = None
        self.gate: Optional[threading.Event] = None
        self.fetch_started = threading.Event()
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def add(self, topic: str, **fields) -> RawMessage:
        message = RawMessage(topic=topic, **fields)
        self.messages.setdefault(topic, []).append(message)
        return message

    def add_line(self, topic: str, line: str) -> None:
        """Queue a raw JSON line; it is parsed the way the HTTP transport parses it."""
        self.messages.setdefault(topic, []).append(line)

    def publish(self, base_url, topic, message, title=None, priority=None, tags=None, click=None):
        if self.publish_error:
            raise self.publish_error
        self.published.append({
            "base_url": base_url, "topic": topic, "message": message,
            "title": title, "priority": priority, "tags": list(tags or []), "click": click,
        })

    def fetch(self, base_url, topic, since=None):
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            self.fetch_calls.append((base_url, topic, since))
        self.fetch_started.set()
        try:
            if self.gate is not None:
                assert self.gate.wait(timeout=5), "gate was never opened"
            if self.fetch_error:
                raise self.fetch_error
            messages = [
                parse_message_line(m) if isinstance(m, str) else m
                for m in self.messages.get(topic, [])
            ]
            return [
                m for m in messages
                if m is not None and (since is None or m.time is None or m.time >= since)
            ]
        finally:
            with self._lock:
                self.in_flight -= 1

    def deregister(self, base_url, topic):
        if self.deregister_error:
            raise self.deregister_error
        self.deregistered.append(topic)


def make_record(subscription_id: str, notification_id: str, time: int, **fields) -> NotificationRecord:
    return NotificationRecord(
        id=notification_id,
        subscription_id=subscription_id,
        time=time,
        message=fields.pop("message", f"message {notification_id}"),
        **fields,
    )

