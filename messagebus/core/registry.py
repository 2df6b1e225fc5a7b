"""
Handler and subscriber registries.

Both are plain dict-backed tables keyed by routing type. They are written
only during setup and read on every send/publish, so they carry no locks.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from messagebus.errors import type_name
from messagebus.types import HandlerDescriptor, SubscriberDescriptor

logger = logging.getLogger(__name__)


class HandlerRegistry:
    """At most one handler descriptor per message type; later registrations replace."""

    def __init__(self) -> None:
        self._handlers: dict[Any, HandlerDescriptor] = {}

    def register(self, message_type: Any, descriptor: HandlerDescriptor) -> Optional[HandlerDescriptor]:
        """Upsert the descriptor; return the one it replaced, if any."""
        previous = self._handlers.get(message_type)
        self._handlers[message_type] = descriptor
        if previous is not None:
            logger.debug(
                f"Replaced handler for {type_name(message_type)}: "
                f"{type_name(previous.handler_key)} -> {type_name(descriptor.handler_key)}"
            )
        else:
            logger.debug(
                f"Registered handler {type_name(descriptor.handler_key)} "
                f"for {type_name(message_type)}"
            )
        return previous

    def lookup(self, message_type: Any) -> Optional[HandlerDescriptor]:
        return self._handlers.get(message_type)

    def message_types(self) -> list[Any]:
        return list(self._handlers)

    def __contains__(self, message_type: Any) -> bool:
        return message_type in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)


class SubscriberRegistry:
    """
    Ordered subscriber descriptors per event type.

    A subscriber key appears at most once per event type; registering it again
    is a no-op. Insertion order only fixes iteration order, subscribers still
    run concurrently.
    """

    def __init__(self) -> None:
        self._subscribers: dict[Any, list[SubscriberDescriptor]] = {}

    def register(self, event_type: Any, descriptor: SubscriberDescriptor) -> bool:
        """Append the descriptor unless its key is already present. True if added."""
        entries = self._subscribers.setdefault(event_type, [])
        if any(d.subscriber_key == descriptor.subscriber_key for d in entries):
            logger.debug(
                f"Subscriber {type_name(descriptor.subscriber_key)} already registered "
                f"for {type_name(event_type)}"
            )
            return False
        entries.append(descriptor)
        logger.debug(
            f"Registered subscriber {type_name(descriptor.subscriber_key)} "
            f"for {type_name(event_type)}"
        )
        return True

    def lookup(self, event_type: Any) -> tuple[SubscriberDescriptor, ...]:
        return tuple(self._subscribers.get(event_type, ()))

    def count(self, event_type: Any) -> int:
        return len(self._subscribers.get(event_type, ()))

    def event_types(self) -> list[Any]:
        return [t for t, entries in self._subscribers.items() if entries]
