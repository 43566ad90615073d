"""Request event distribution.

Every datagram the server reads produces one ``RequestEvent``. Events are
kept in a bounded history and fanned out to subscribers. Delivery is best
effort: a subscriber whose buffer is full misses the event instead of
slowing down the receive loop.
"""

import queue
import threading
from collections import deque
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Deque, Dict, Iterator, List, Optional, Set

DEFAULT_HISTORY_SIZE = 500
DEFAULT_BUFFER_SIZE = 128

# Marks the end of a subscription's stream
_CLOSED = object()


@dataclass(frozen=True)
class RequestEvent:
    """A single UDP request as observed by the server."""

    at: datetime
    client_addr: str = ""
    client_ip: str = ""
    client_port: int = 0
    version: int = 0
    mode: int = 0
    packet_valid: bool = False
    responded: bool = False
    error: str = ""
    processing_usec: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["at"] = self.at.isoformat()
        if not self.error:
            del data["error"]
        return data


class Subscription:
    """Bounded, receive-only stream of events for one subscriber.

    The underlying queue keeps one spare slot so the end-of-stream marker
    always fits, even when the subscriber has fallen behind.

    Example:
        with hub.subscribe() as events:
            for event in events:
                print(event.client_ip)
    """

    def __init__(self, hub: "EventHub", buffer_size: int):
        self.buffer_size = buffer_size
        self._hub = hub
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=buffer_size + 1)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def get(self, timeout: Optional[float] = None) -> Optional[RequestEvent]:
        """Wait for the next event.

        Args:
            timeout: Seconds to wait, None to wait forever

        Returns:
            The next event, or None once the stream is closed and drained

        Raises:
            TimeoutError: If no event arrived within ``timeout``
        """
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            raise TimeoutError("no event received") from None
        if item is _CLOSED:
            # Leave the marker for any later reader
            self._queue.put_nowait(_CLOSED)
            return None
        return item  # type: ignore[return-value]

    def cancel(self) -> None:
        """Stop receiving events. Safe to call more than once."""
        self._hub._unsubscribe(self)

    def __iter__(self) -> Iterator[RequestEvent]:
        while True:
            event = self.get()
            if event is None:
                return
            yield event

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.cancel()

    def _offer(self, event: RequestEvent) -> bool:
        # Only called under the hub lock, so the size check cannot race
        # another producer.
        if self._closed or self._queue.qsize() >= self.buffer_size:
            return False
        self._queue.put_nowait(event)
        return True

    def _close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)


class EventHub:
    """In-process publish/subscribe with a bounded replay history."""

    def __init__(self, history_size: int = DEFAULT_HISTORY_SIZE):
        if history_size <= 0:
            history_size = DEFAULT_HISTORY_SIZE
        self.history_size = history_size
        self._history: Deque[RequestEvent] = deque(maxlen=history_size)
        self._subscribers: Set[Subscription] = set()
        self._lock = threading.Lock()
        self._dropped = 0

    def publish(self, event: RequestEvent) -> None:
        """Record an event and deliver it to every subscriber without blocking."""
        with self._lock:
            self._history.append(event)
            for subscription in self._subscribers:
                if not subscription._offer(event):
                    self._dropped += 1

    def subscribe(self, buffer_size: int = DEFAULT_BUFFER_SIZE) -> Subscription:
        """Register a new subscriber.

        Args:
            buffer_size: Events buffered before new ones are dropped
                (values <= 0 select the default of 128)
        """
        if buffer_size <= 0:
            buffer_size = DEFAULT_BUFFER_SIZE
        subscription = Subscription(self, buffer_size)
        with self._lock:
            self._subscribers.add(subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscribers.discard(subscription)
            subscription._close()

    def snapshot_history(self) -> List[RequestEvent]:
        """Return a copy of the retained events, oldest first."""
        with self._lock:
            return list(self._history)

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    @property
    def dropped(self) -> int:
        """Total deliveries skipped because a subscriber buffer was full."""
        with self._lock:
            return self._dropped
