"""The optimization event class."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from regopt.enums import EventType, OptimizerState


@dataclass(frozen=True, slots=True)
class Event:
    """The `Event` class stores optimization event data.

    While running an optimization, callbacks can be connected to react to events
    triggered by the optimizer. These callbacks accept a single `Event` object
    containing information about the event.

    For [`ITERATION`][regopt.enums.EventType.ITERATION] events, `iteration` is
    the zero-based index of the iteration that just completed and `value` is
    the metric value evaluated during that iteration.

    Attributes:
        event_type: The type of the event
        iteration:  The iteration index
        value:      The current metric value
        state:      The state of the optimizer when the event was emitted
    """

    event_type: EventType
    iteration: int
    value: float
    state: OptimizerState


class EventBroker:
    """Dispatch optimizer events to registered observers.

    Observers are called synchronously, in registration order, on the thread
    that runs the optimizer. An exception raised by an observer propagates
    into the optimization loop.
    """

    def __init__(self) -> None:
        self._subscribers: dict[EventType, list[Callable[[Event], None]]] = {
            event: [] for event in EventType
        }

    def add_observer(
        self,
        event: EventType,
        callback: Callable[[Event], None],
    ) -> None:
        """Register a callable for one event type.

        Args:
            event:    The event type to observe
            callback: Called with the `Event` object on each emission
        """
        self._subscribers[event].append(callback)

    def emit(self, event_type: EventType, /, **kwargs: Any) -> None:  # noqa: ANN401
        """Build an [`Event`][regopt.events.Event] and pass it to the observers.

        Args:
            event_type: The type of event to emit
            kwargs:     The remaining fields of the event
        """
        event = Event(event_type=event_type, **kwargs)
        for callback in self._subscribers[event_type]:
            callback(event)
