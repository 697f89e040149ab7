"""Message transport: publish to and fetch from an ntfy server."""

import json
import logging
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

import requests

from .config import ServerConfig
from .errors import TransportError
from .models import RawMessage

logger = logging.getLogger(__name__)


class MessageTransport(ABC):
    """Abstract base class for transports. No caching, no retries."""

    @abstractmethod
    def publish(
        self,
        base_url: str,
        topic: str,
        message: str,
        title: Optional[str] = None,
        priority: Optional[int] = None,
        tags: Optional[Iterable[str]] = None,
        click: Optional[str] = None,
    ) -> None:
        """
        Publish one message to a topic.

        Raises:
            TransportError: If the server could not be reached or rejected the message.
        """
        pass

    @abstractmethod
    def fetch(self, base_url: str, topic: str, since: Optional[int] = None) -> List[RawMessage]:
        """
        Fetch cached messages for a topic.

        Args:
            base_url: Server the topic lives on.
            topic: Topic name.
            since: Unix timestamp; None fetches everything the server still has.

        Returns:
            Messages in the order the server sent them.

        Raises:
            TransportError: If the fetch failed.
        """
        pass

    @abstractmethod
    def deregister(self, base_url: str, topic: str) -> None:
        """
        Tell the server we no longer follow the topic.

        Raises:
            TransportError: If deregistration failed.
        """
        pass


def _field(data: dict, name: str, kind: type, default=None):
    value = data.get(name)
    if value is None:
        return default
    # bool is an int subclass but never a valid time or priority
    if not isinstance(value, kind) or isinstance(value, bool):
        raise TransportError(f"Invalid message from server: '{name}' is {value!r}")
    return value


def parse_message_line(line: str) -> Optional[RawMessage]:
    """
    Parse one line of ntfy's JSON stream.

    Returns:
        A RawMessage, or None for non-message events (open, keepalive, ...).

    Raises:
        TransportError: If the line is not valid JSON or a field has the wrong type.
    """
    try:
        data = json.loads(line)
    except ValueError as e:
        raise TransportError(f"Invalid message from server: {e}") from e
    if not isinstance(data, dict) or data.get("event", "message") != "message":
        return None

    tags = _field(data, "tags", list, default=[])
    if not all(isinstance(tag, str) for tag in tags):
        raise TransportError(f"Invalid message from server: tags {tags!r}")

    return RawMessage(
        id=_field(data, "id", str),
        time=_field(data, "time", int),
        topic=_field(data, "topic", str, default=""),
        message=_field(data, "message", str, default=""),
        title=_field(data, "title", str),
        priority=_field(data, "priority", int),
        tags=tuple(tags),
        click=_field(data, "click", str),
    )


class HTTPMessageTransport(MessageTransport):
    """Transport talking to an ntfy server over its JSON HTTP API."""

    def __init__(self, config: ServerConfig, session: Optional[requests.Session] = None):
        """
        Initialize the HTTP transport.

        Args:
            config: Server configuration (credentials, timeout, user agent).
            session: Optional session to reuse; one is created otherwise.
        """
        self.config = config
        self.session = session or requests.Session()
        self.session.headers["User-Agent"] = config.user_agent
        if config.token:
            self.session.headers["Authorization"] = f"Bearer {config.token}"
        elif config.username and config.password:
            self.session.auth = (config.username, config.password)

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            response = self.session.request(method, url, timeout=self.config.timeout, **kwargs)
            response.raise_for_status()
            return response
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            logger.error(f"{method} {url} failed with status {status}: {e}")
            raise TransportError(f"{method} {url} failed: {e}", status_code=status) from e
        except requests.RequestException as e:
            logger.error(f"{method} {url} failed: {e}")
            raise TransportError(f"{method} {url} failed: {e}") from e

    def publish(
        self,
        base_url: str,
        topic: str,
        message: str,
        title: Optional[str] = None,
        priority: Optional[int] = None,
        tags: Optional[Iterable[str]] = None,
        click: Optional[str] = None,
    ) -> None:
        payload = {"topic": topic, "message": message}
        if title:
            payload["title"] = title
        if priority is not None:
            payload["priority"] = priority
        if tags:
            payload["tags"] = list(tags)
        if click:
            payload["click"] = click

        self._request("POST", base_url, json=payload)
        logger.info(f"Published message to {base_url}/{topic}")

    def fetch(self, base_url: str, topic: str, since: Optional[int] = None) -> List[RawMessage]:
        url = f"{base_url}/{topic}/json"
        params = {"poll": "1", "since": str(since) if since is not None else "all"}
        response = self._request("GET", url, params=params)

        messages = []
        for line in response.text.splitlines():
            if not line.strip():
                continue
            message = parse_message_line(line)
            if message is not None:
                messages.append(message)
        logger.info(f"Fetched {len(messages)} message(s) from {url}")
        return messages

    def deregister(self, base_url: str, topic: str) -> None:
        # Poll subscriptions keep no state on the server
        logger.debug(f"Nothing to deregister for {base_url}/{topic}")
