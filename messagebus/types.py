"""
Shared types, descriptors, and aliases for the message bus.

This module contains types used across the registries, the pipeline and
the bus itself.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Union

if TYPE_CHECKING:
    from messagebus.core.cancellation import CancellationToken

# A pipeline stage: (message, cancellation) -> awaitable result
Stage = Callable[[Any, "CancellationToken"], Awaitable[Any]]

# Given the next stage, return a stage wrapping it
MiddlewareFactory = Callable[[Stage], Stage]

# Thunks always take the resolved instance, the message and the token.
# They may return a plain value or an awaitable.
HandlerInvoker = Callable[[Any, Any, "CancellationToken"], Union[Any, Awaitable[Any]]]
SubscriberInvoker = Callable[[Any, Any, "CancellationToken"], Union[None, Awaitable[None]]]


def invoke_handle(instance: Any, message: Any, cancellation: CancellationToken) -> Any:
    """Default handler thunk: instance.handle(message, cancellation)."""
    return instance.handle(message, cancellation)


def invoke_consume(instance: Any, event: Any, cancellation: CancellationToken) -> Any:
    """Default subscriber thunk: instance.consume(event, cancellation)."""
    return instance.consume(event, cancellation)


@dataclass(frozen=True)
class HandlerDescriptor:
    """The single active handler for a message type."""

    message_type: Any
    handler_key: Any
    invoke: HandlerInvoker = field(default=invoke_handle, compare=False)


@dataclass(frozen=True)
class SubscriberDescriptor:
    """One subscriber of an event type; identity is the subscriber key."""

    event_type: Any
    subscriber_key: Any
    invoke: SubscriberInvoker = field(default=invoke_consume, compare=False)


@dataclass
class BusStats:
    """Counters for dispatch and fan-out activity."""

    sent: int = 0
    send_failures: int = 0
    published: int = 0
    subscriber_invocations: int = 0
    subscriber_failures: int = 0
    subscribers_skipped: int = 0
    by_message_type: dict[str, int] = field(default_factory=dict)
