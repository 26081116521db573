"""Domain events — what changed, and which room hears about it."""

from taskroom.events.domain import DomainEvent, EventPublisher, RoomKey, RoomKind

__all__ = ["DomainEvent", "EventPublisher", "RoomKey", "RoomKind"]
