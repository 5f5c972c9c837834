"""
Event bus for fatelog session and replay notifications.

Provides decoupled communication between the session engine and whoever
is watching it (a debugger view, a narrator, tests). The caller creates
and owns the bus and hands it to the components that publish; there is
no process-wide instance.

Usage:
    bus = EventBus()
    bus.on(EventType.TURN_COMMITTED, my_handler)

    manager = SessionManager(store, snapshots, bus=bus)

    def my_handler(event: GameEvent):
        print(f"Turn {event.data['turn_id']} committed")
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Notifications that can be published."""

    # Session events
    SESSION_CREATED = "session.created"
    TURN_COMMITTED = "turn.committed"
    SNAPSHOT_SAVED = "snapshot.saved"

    # Conflict events
    CONFLICT_STARTED = "conflict.started"
    CONFLICT_RESOLVED = "conflict.resolved"

    # Replay events
    REPLAY_STEPPED = "replay.stepped"
    REPLAY_BREAK = "replay.break"


@dataclass
class GameEvent:
    """
    Event payload for the event bus.

    Attributes:
        type: The event type (from EventType enum)
        data: Event-specific payload as dict
        session_id: Session this event belongs to
        turn: Turn number when the event occurred
        timestamp: When the event was emitted
    """

    type: EventType
    data: dict = field(default_factory=dict)
    session_id: str = ""
    turn: int = 0
    timestamp: datetime = field(default_factory=datetime.now)

    def __str__(self) -> str:
        return f"[{self.type.value}] {self.data}"


EventHandler = Callable[[GameEvent], None]


class EventBus:
    """
    Synchronous event bus.

    Listeners are called immediately on emit(), in subscription order.
    A failing listener is logged and does not stop the others.
    """

    def __init__(self, history_limit: int = 100):
        self._listeners: dict[EventType, list[EventHandler]] = {}
        self._history: list[GameEvent] = []
        self._history_limit = history_limit

    def on(self, event_type: EventType, handler: EventHandler) -> None:
        """Subscribe to an event type."""
        if event_type not in self._listeners:
            self._listeners[event_type] = []
        if handler not in self._listeners[event_type]:
            self._listeners[event_type].append(handler)

    def off(self, event_type: EventType, handler: EventHandler) -> None:
        """Unsubscribe from an event type."""
        if event_type in self._listeners and handler in self._listeners[event_type]:
            self._listeners[event_type].remove(handler)

    def emit(
        self,
        event_type: EventType,
        session_id: str = "",
        turn: int = 0,
        **data,
    ) -> GameEvent:
        """
        Emit an event to all subscribers.

        Returns:
            The emitted GameEvent (for chaining/testing)
        """
        event = GameEvent(type=event_type, data=data, session_id=session_id, turn=turn)

        self._history.append(event)
        if len(self._history) > self._history_limit:
            self._history = self._history[-self._history_limit:]

        for handler in list(self._listeners.get(event_type, [])):
            try:
                handler(event)
            except Exception:
                logger.exception(f"Error in handler for {event_type.value}")

        return event

    def clear(self) -> None:
        """Clear all listeners. Useful for testing."""
        self._listeners.clear()

    def get_history(self, event_type: EventType | None = None) -> list[GameEvent]:
        """Recent events, optionally filtered by type."""
        if event_type is None:
            return list(self._history)
        return [e for e in self._history if e.type == event_type]

    def listener_count(self, event_type: EventType) -> int:
        return len(self._listeners.get(event_type, []))
