from __future__ import annotations

from collections import defaultdict
from typing import Any, Callable

from .logging import get_logger

Listener = Callable[[Any], None]


class EventHub:
    """Synchronous publish/subscribe hub.

    Listeners run in subscription order on the emitting call stack, straight
    after the state change they describe. A failing listener is logged and
    skipped so it cannot interrupt the emitter or the remaining listeners.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self.logger = get_logger(component="event_hub", hub=name)

    def subscribe(self, event_name: str, listener: Listener) -> Callable[[], None]:
        self._listeners[event_name].append(listener)

        def _unsubscribe() -> None:
            self.unsubscribe(event_name, listener)

        return _unsubscribe

    def unsubscribe(self, event_name: str, listener: Listener) -> None:
        listeners = self._listeners.get(event_name)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def emit(self, event_name: str, payload: Any) -> None:
        for listener in list(self._listeners.get(event_name, ())):
            try:
                listener(payload)
            except Exception:
                self.logger.exception("listener_failed", event_name=event_name)


__all__ = ["EventHub", "Listener"]
