from contextlib import contextmanager
from typing import Type, Callable, List, Dict, Any, Iterator, Optional
from vbudget.domain.events import Event


class EventBus:
    """A simple synchronous event bus for decoupled communication."""

    def __init__(self):
        self._subscribers: Dict[Type[Event], List[Callable[[Any], None]]] = {}

    def subscribe(self, event_type: Type[Event], callback: Optional[Callable[[Any], None]] = None):
        """Subscribes a callback to a specific event type. Can be used as a decorator."""
        if callback is None:
            def decorator(func: Callable[[Any], None]):
                self.subscribe(event_type, func)
                return func
            return decorator

        self._subscribers.setdefault(event_type, []).append(callback)
        return callback

    def unsubscribe(self, event_type: Type[Event], callback: Callable[[Any], None]) -> bool:
        """Removes a callback; returns False if it was not subscribed."""
        callbacks = self._subscribers.get(event_type, [])
        if callback not in callbacks:
            return False
        callbacks.remove(callback)
        return True

    @contextmanager
    def subscription(self, event_type: Type[Event], callback: Callable[[Any], None]) -> Iterator[None]:
        """Subscribes for the duration of a with-block, unsubscribing on every exit path."""
        self.subscribe(event_type, callback)
        try:
            yield
        finally:
            self.unsubscribe(event_type, callback)

    def publish(self, event: Event):
        """Publishes an event to all interested subscribers."""
        # Copy so callbacks may unsubscribe while being dispatched
        for callback in list(self._subscribers.get(type(event), [])):
            callback(event)
