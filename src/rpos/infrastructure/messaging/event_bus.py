from __future__ import annotations

import logging
import queue
import threading
from collections import defaultdict
from typing import Any

from rpos.application.ports.publisher import EventCallback
from rpos.domain.order.events import PosEvent

logger = logging.getLogger(__name__)


class EventSubscription:
    def __init__(self, bus: InProcessEventBus, topic: str, callback: EventCallback) -> None:
        self._bus = bus
        self.topic = topic
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        self._bus._remove(self)

    def __enter__(self) -> EventSubscription:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.unsubscribe()


class _FlushMarker:
    def __init__(self) -> None:
        self.done = threading.Event()


_STOP = object()


class InProcessEventBus:
    def __init__(self, max_pending: int = 10_000) -> None:
        self._subscriptions: dict[str, list[EventSubscription]] = defaultdict(list)
        self._lock = threading.Lock()
        self._queue: queue.Queue[Any] = queue.Queue(maxsize=max_pending)
        self._closed = False
        self._thread = threading.Thread(
            target=self._dispatch_loop,
            name="rpos-event-dispatcher",
            daemon=True,
        )
        self._thread.start()

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, topic: str, callback: EventCallback) -> EventSubscription:
        subscription = EventSubscription(self, topic, callback)
        with self._lock:
            self._subscriptions[topic].append(subscription)
        logger.debug("event_subscriber_added", extra={"topic": topic})
        return subscription

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._subscriptions.get(topic, ()))

    def publish(self, event: PosEvent) -> None:
        if self._closed:
            logger.warning("event_dropped", extra={"topic": event.topic, "reason": "closed"})
            return
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            logger.warning("event_dropped", extra={"topic": event.topic, "reason": "queue_full"})

    def flush(self, timeout: float | None = 5.0) -> bool:
        if self._closed:
            return True
        marker = _FlushMarker()
        self._queue.put(marker, timeout=timeout)
        return marker.done.wait(timeout)

    def close(self, timeout: float | None = 5.0) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put(_STOP)
        self._thread.join(timeout)
        with self._lock:
            for subscriptions in self._subscriptions.values():
                for subscription in subscriptions:
                    subscription.active = False
            self._subscriptions.clear()

    def _remove(self, subscription: EventSubscription) -> None:
        with self._lock:
            subscriptions = self._subscriptions.get(subscription.topic)
            if subscriptions and subscription in subscriptions:
                subscriptions.remove(subscription)
                if not subscriptions:
                    self._subscriptions.pop(subscription.topic, None)
            subscription.active = False

    def _dispatch_loop(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            if isinstance(item, _FlushMarker):
                item.done.set()
                continue
            self._deliver(item)

    def _deliver(self, event: PosEvent) -> None:
        with self._lock:
            targets = list(self._subscriptions.get(event.topic, ()))

        for subscription in targets:
            if not subscription.active:
                continue
            try:
                subscription.callback(event)
            except Exception:
                logger.exception("event_observer_failed", extra={"topic": event.topic})
