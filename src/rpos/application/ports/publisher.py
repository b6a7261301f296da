from __future__ import annotations

from typing import Callable, Protocol

from rpos.domain.order.events import PosEvent

EventCallback = Callable[[PosEvent], None]


class Subscription(Protocol):
    def unsubscribe(self) -> None: ...


class EventPublisher(Protocol):
    def publish(self, event: PosEvent) -> None: ...


class EventBus(EventPublisher, Protocol):
    def subscribe(self, topic: str, callback: EventCallback) -> Subscription: ...
