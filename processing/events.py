"""
Addressed event channel.

Each connected client owns an opaque destination address. Events are delivered
only to the address named in the processing request, never broadcast. An
absent or disconnected address makes publish a no-op; nothing is replayed.

publish() is called from request threads and from video monitor threads, so
the registry and every subscriber buffer are lock-protected.
"""
import json
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from uuid import uuid4

from django.db import models

logger = logging.getLogger(__name__)


class EventType(models.TextChoices):
    STARTED = "processing_started"
    PROGRESS = "processing_progress"
    DONE = "processing_done"
    ERROR = "processing_error"


@dataclass(frozen=True)
class ProcessingEvent:
    type: EventType
    job_id: str
    address: Optional[str]
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.type in (EventType.DONE, EventType.ERROR)

    def payload(self) -> Dict[str, Any]:
        return {"jobId": self.job_id, **self.data}


def format_sse(event: str, data) -> str:
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


class Subscriber:
    """Pending events for one address. Progress is dropped when the buffer is full."""

    def __init__(self, address: str, max_pending: int):
        self.address = address
        self.max_pending = max_pending
        self.dropped = 0
        self._pending = deque()
        self._cond = threading.Condition()
        self._closed = False

    def offer(self, event: ProcessingEvent) -> bool:
        with self._cond:
            if self._closed:
                return False
            if event.type == EventType.PROGRESS and len(self._pending) >= self.max_pending:
                self.dropped += 1
                return False
            self._pending.append(event)
            self._cond.notify()
            return True

    def get(self, timeout: Optional[float] = None) -> Optional[ProcessingEvent]:
        """Next event, or None on timeout or once closed and drained."""
        with self._cond:
            if not self._pending and not self._closed:
                self._cond.wait(timeout)
            if self._pending:
                return self._pending.popleft()
            return None

    def close(self):
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed


class EventChannel:
    def __init__(self, max_pending: int = 256):
        self.max_pending = max_pending
        self._subscribers: Dict[str, Subscriber] = {}
        self._lock = threading.Lock()

    def connect(self, address: Optional[str] = None) -> Subscriber:
        address = address or uuid4().hex
        sub = Subscriber(address, self.max_pending)
        with self._lock:
            previous = self._subscribers.get(address)
            self._subscribers[address] = sub
        if previous is not None:
            previous.close()
        logger.info("Event subscriber connected: %s", address)
        return sub

    def disconnect(self, address: str, subscriber: Optional[Subscriber] = None) -> None:
        with self._lock:
            current = self._subscribers.get(address)
            # a reconnect may already have replaced this subscriber
            if current is None or (subscriber is not None and current is not subscriber):
                current = None
            else:
                del self._subscribers[address]
        if current is not None:
            current.close()
            logger.info("Event subscriber disconnected: %s", address)

    def is_connected(self, address: Optional[str]) -> bool:
        if not address:
            return False
        with self._lock:
            return address in self._subscribers

    def publish(self, address: Optional[str], event: ProcessingEvent) -> bool:
        """Deliver event to address; returns False when it was dropped."""
        if not address:
            logger.debug("No destination for %s of job %s", event.type.value, event.job_id)
            return False
        with self._lock:
            sub = self._subscribers.get(address)
        if sub is None:
            logger.debug("Destination %s gone, dropping %s of job %s",
                         address, event.type.value, event.job_id)
            return False
        delivered = sub.offer(event)
        if not delivered:
            logger.debug("Dropped %s for %s (buffer full or closed)", event.type.value, address)
        return delivered

    def stream(self, subscriber: Subscriber, keepalive: float = 15.0):
        """
        Server-Sent Events generator for one subscriber.

        Opens with a ``registered`` frame carrying the address the client must
        send as ``socketId`` with its processing requests.
        """
        try:
            yield format_sse("registered", {"socketId": subscriber.address})
            while not subscriber.closed:
                event = subscriber.get(timeout=keepalive)
                if event is None:
                    yield ": keep-alive\n\n"
                    continue
                yield format_sse(event.type.value, event.payload())
        finally:
            self.disconnect(subscriber.address, subscriber)
