from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from threading import RLock
from typing import Any, Dict, List, Optional, Protocol

try:  # pragma: no cover - optional dependency
    import redis  # type: ignore
except Exception:  # pragma: no cover - optional dependency
    redis = None  # type: ignore

_logger = logging.getLogger("cass.events")


class NotificationSink(Protocol):
    def send(self, event: str, payload: Any = None) -> None: ...


@dataclass(frozen=True)
class Notification:
    event: str
    payload: Any = None

    def as_dict(self) -> Dict[str, Any]:
        return {"event": self.event, "payload": self.payload}


class _RedisPublisher:
    def __init__(self, url: str) -> None:
        self._url = url
        self._client = None
        self._connect()

    def _connect(self) -> None:
        if redis is None:
            return
        try:
            self._client = redis.Redis.from_url(self._url, socket_timeout=0.5)
            self._client.ping()
        except Exception as exc:
            _logger.debug("redis_connect_failed url=%s err=%s", self._url, exc)
            self._client = None

    def publish(self, channel: str, payload: Any) -> None:
        if not self._client:
            self._connect()
        if not self._client:
            return
        try:
            self._client.publish(channel, json.dumps(payload))
        except Exception as exc:
            _logger.debug("redis_publish_failed channel=%s err=%s", channel, exc)
            self._client = None


_publisher: Optional[_RedisPublisher] = None


def _get_publisher() -> Optional[_RedisPublisher]:
    global _publisher
    if _publisher is not None:
        return _publisher
    url = os.getenv("REDIS_URL")
    if not url:
        return None
    _publisher = _RedisPublisher(url)
    return _publisher


def publish_event(event_type: str, payload: Any) -> None:
    publisher = _get_publisher()
    if not publisher:
        return
    channel = f"cass.events.{event_type}"
    publisher.publish(channel, payload)


def load_event_client() -> Optional[_RedisPublisher]:
    return _get_publisher()


class BroadcastNotificationSink:
    """Fan notifications out to in-process subscribers and mirror them to Redis.

    Delivery is ordered per sink: subscribers see events in ``send`` order.
    A bounded history is kept for late joiners and diagnostics.
    """

    def __init__(self, history_limit: int = 200, mirror: bool = True) -> None:
        self._subscribers: List[asyncio.Queue] = []
        self._history: List[Notification] = []
        self._history_limit = history_limit
        self._mirror = mirror
        self._lock = RLock()

    def send(self, event: str, payload: Any = None) -> None:
        notification = Notification(event=event, payload=payload)
        with self._lock:
            self._history.append(notification)
            if len(self._history) > self._history_limit:
                del self._history[0 : len(self._history) - self._history_limit]
            subscribers = list(self._subscribers)
        for queue in subscribers:
            queue.put_nowait(notification)
        _logger.debug("notification event=%s", event)
        if self._mirror:
            publish_event(event, notification.as_dict())

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        with self._lock:
            self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        with self._lock:
            if queue in self._subscribers:
                self._subscribers.remove(queue)

    def history(self, limit: int = 50) -> List[Notification]:
        if limit <= 0:
            return []
        with self._lock:
            return list(self._history[-limit:])

    def events(self) -> List[str]:
        with self._lock:
            return [n.event for n in self._history]


_sink = BroadcastNotificationSink()


def get_notification_sink() -> BroadcastNotificationSink:
    return _sink
