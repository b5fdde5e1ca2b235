"""Event bus for run observability.

A simple synchronous event bus carrying domain events from the execution
engine to CLI formatters, keeping domain logic separate from presentation.

The engine emits from worker threads, so EventBus serializes dispatch with a
lock: handlers never run concurrently with each other.
"""

import threading
from collections.abc import Callable
from typing import Any, Protocol, TypeVar

T = TypeVar("T")


class EventBusProtocol(Protocol):
    """Protocol for event bus implementations.

    Allows both EventBus and NullEventBus to satisfy the interface
    without inheritance.
    """

    def subscribe(self, event_type: type[T], handler: Callable[[T], None]) -> None:
        """Subscribe a handler to an event type."""
        ...

    def emit(self, event: T) -> None:
        """Emit an event to all subscribers."""
        ...


class EventBus:
    """Synchronous event bus.

    Handler exceptions propagate to the caller: formatters are our own code,
    so bugs should surface immediately.

    Example:
        bus = EventBus()
        bus.subscribe(TaskCompleted, lambda e: print(f"{e.processor_key} done"))
        bus.emit(TaskCompleted(run_id="r1", processor_key="charter", duration_ms=12.0, cache_hit=False))
    """

    def __init__(self) -> None:
        self._subscribers: dict[type, list[Callable[[Any], None]]] = {}
        self._lock = threading.RLock()

    def subscribe(self, event_type: type[T], handler: Callable[[T], None]) -> None:
        """Subscribe a handler to an event type.

        Args:
            event_type: The event class to subscribe to
            handler: Callable that receives the event instance
        """
        with self._lock:
            self._subscribers.setdefault(event_type, []).append(handler)

    def emit(self, event: T) -> None:
        """Emit an event to all subscribers, in subscription order.

        Events with no subscribers are silently ignored.
        """
        with self._lock:
            handlers = list(self._subscribers.get(type(event), []))
            for handler in handlers:
                handler(event)


class NullEventBus:
    """No-op event bus for library use where no CLI is present.

    Does NOT inherit from EventBus: subscribing to it is a no-op, and
    inheritance would hide that from a caller expecting callbacks.
    """

    def subscribe(self, event_type: type[T], handler: Callable[[T], None]) -> None:
        """No-op subscription - handler will never be called."""
        pass

    def emit(self, event: T) -> None:
        """No-op emission - no handlers to call."""
        pass


class RecordingEventBus(EventBus):
    """EventBus that also keeps every emitted event, in emission order.

    Useful for programmatic callers that want the full event stream after a
    run, and for tests.
    """

    def __init__(self) -> None:
        super().__init__()
        self.events: list[Any] = []

    def emit(self, event: T) -> None:
        with self._lock:
            self.events.append(event)
        super().emit(event)

    def of_type(self, event_type: type[T]) -> list[T]:
        return [e for e in self.events if isinstance(e, event_type)]
