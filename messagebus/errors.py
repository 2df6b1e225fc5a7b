"""
Custom exceptions for the message bus.

Exception hierarchy:
- MessageBusError (base)
  - NoHandlerRegistered: message type has no handler
  - HandlerResolutionFailed: resolver returned nothing for a handler key
  - HandlerInvocationFailed: the handler itself raised
  - SubscriberResolutionFailed: resolver miss for one subscriber (non-fatal)
  - SubscriberInvocationFailed: one subscriber raised (collected)
  - AggregateSubscriberError: every subscriber failure of one publish
  - ResultTypeMismatch: typed send got a result of the wrong type
  - DuplicateHandlerError: second handler for a type under the "error" policy
  - BusFrozenError: setup call after freeze()
  - PipelineBuildError: a middleware factory returned something unusable
  - MiddlewareResolutionFailed: resolver miss for class-based middleware
  - OperationCancelledError: the cancellation token fired
  - ConfigurationError: invalid configuration
"""

from __future__ import annotations

from typing import Any, Optional, Sequence


def type_name(tp: Any) -> str:
    """Readable name for a routing key (types and plain keys alike)."""
    if isinstance(tp, type):
        return tp.__qualname__
    return str(tp)


class MessageBusError(Exception):
    """Base exception for all message bus errors."""

    def __init__(
        self,
        message: str,
        *,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.component = component
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.component:
            parts.append(f"[component={self.component}]")
        if self.details:
            parts.append(f"[details={self.details}]")
        return " ".join(parts)


# --- Send path ---


class NoHandlerRegistered(MessageBusError):
    """Raised when a message is sent for a type without a handler."""

    def __init__(
        self,
        message_type: Any,
        *,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.message_type = message_type
        details = details or {}
        details["message_type"] = type_name(message_type)
        super().__init__(
            f"No handler registered for message type {type_name(message_type)}",
            component=component,
            details=details,
        )


class HandlerResolutionFailed(MessageBusError):
    """Raised when the resolver cannot produce the registered handler."""

    def __init__(
        self,
        handler_key: Any,
        *,
        message_type: Any = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.handler_key = handler_key
        self.message_type = message_type
        details = details or {}
        details["handler_key"] = type_name(handler_key)
        if message_type is not None:
            details["message_type"] = type_name(message_type)
        super().__init__(
            f"Cannot resolve handler {type_name(handler_key)}",
            component=component,
            details=details,
        )


class HandlerInvocationFailed(MessageBusError):
    """Raised when a handler raises while processing a message."""

    def __init__(
        self,
        message_type: Any,
        handler_key: Any,
        cause: BaseException,
        *,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.message_type = message_type
        self.handler_key = handler_key
        self.cause = cause
        details = details or {}
        details["message_type"] = type_name(message_type)
        details["handler_key"] = type_name(handler_key)
        super().__init__(
            f"Handler {type_name(handler_key)} failed for {type_name(message_type)}: {cause!r}",
            component=component,
            details=details,
        )


class ResultTypeMismatch(MessageBusError):
    """Raised by a typed send when the handler result has an unexpected type."""

    def __init__(
        self,
        expected: type,
        actual: Any,
        *,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.expected = expected
        self.actual = actual
        details = details or {}
        details["expected"] = type_name(expected)
        details["actual"] = type_name(type(actual))
        super().__init__(
            f"Expected result of type {type_name(expected)}, got {type_name(type(actual))}",
            component=component,
            details=details,
        )


# --- Publish path ---


class SubscriberResolutionFailed(MessageBusError):
    """Resolver miss for one subscriber. Recorded and skipped, never raised by publish."""

    def __init__(
        self,
        event_type: Any,
        subscriber_key: Any,
        *,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.event_type = event_type
        self.subscriber_key = subscriber_key
        details = details or {}
        details["event_type"] = type_name(event_type)
        details["subscriber_key"] = type_name(subscriber_key)
        super().__init__(
            f"Cannot resolve subscriber {type_name(subscriber_key)}",
            component=component,
            details=details,
        )


class SubscriberInvocationFailed(MessageBusError):
    """One subscriber raised while consuming an event."""

    def __init__(
        self,
        event_type: Any,
        subscriber_key: Any,
        cause: BaseException,
        *,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.event_type = event_type
        self.subscriber_key = subscriber_key
        self.cause = cause
        details = details or {}
        details["event_type"] = type_name(event_type)
        details["subscriber_key"] = type_name(subscriber_key)
        super().__init__(
            f"Subscriber {type_name(subscriber_key)} failed for "
            f"{type_name(event_type)}: {cause!r}",
            component=component,
            details=details,
        )


class AggregateSubscriberError(MessageBusError):
    """Raised by publish when at least one subscriber failed."""

    def __init__(
        self,
        event_type: Any,
        failures: Sequence[SubscriberInvocationFailed],
        *,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.event_type = event_type
        self.failures: tuple[SubscriberInvocationFailed, ...] = tuple(failures)
        details = details or {}
        details["event_type"] = type_name(event_type)
        details["failed_subscribers"] = [type_name(k) for k in self.subscriber_keys]
        super().__init__(
            f"{len(self.failures)} subscriber(s) failed for {type_name(event_type)}",
            component=component,
            details=details,
        )

    @property
    def subscriber_keys(self) -> list[Any]:
        return [f.subscriber_key for f in self.failures]

    @property
    def exceptions(self) -> list[BaseException]:
        """The original exceptions raised by the failing subscribers."""
        return [f.cause for f in self.failures]


# --- Setup path ---


class DuplicateHandlerError(MessageBusError):
    """Raised when a second handler is registered under the "error" policy."""

    def __init__(
        self,
        message_type: Any,
        existing_key: Any,
        new_key: Any,
        *,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.message_type = message_type
        self.existing_key = existing_key
        self.new_key = new_key
        details = details or {}
        details["message_type"] = type_name(message_type)
        details["existing_key"] = type_name(existing_key)
        details["new_key"] = type_name(new_key)
        super().__init__(
            f"Handler already registered for {type_name(message_type)}",
            component=component,
            details=details,
        )


class BusFrozenError(MessageBusError):
    """Raised when setup APIs are called after the bus was frozen."""


class PipelineBuildError(MessageBusError):
    """Raised when the middleware chain cannot be composed."""

    def __init__(
        self,
        message: str,
        *,
        position: Optional[int] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.position = position
        details = details or {}
        if position is not None:
            details["position"] = position
        super().__init__(message, component=component, details=details)


class MiddlewareResolutionFailed(MessageBusError):
    """Raised when class-based middleware cannot be resolved at send time."""

    def __init__(
        self,
        middleware_key: Any,
        *,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.middleware_key = middleware_key
        details = details or {}
        details["middleware_key"] = type_name(middleware_key)
        super().__init__(
            f"Cannot resolve middleware {type_name(middleware_key)}",
            component=component,
            details=details,
        )


# --- Cancellation ---


class OperationCancelledError(MessageBusError):
    """Raised when a cancellation token fires or its deadline passes."""

    def __init__(
        self,
        message: str = "Operation was cancelled",
        *,
        reason: Optional[str] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.reason = reason
        details = details or {}
        if reason:
            details["reason"] = reason
        super().__init__(message, component=component, details=details)


# --- Config ---


class ConfigurationError(MessageBusError):
    """Raised when configuration is invalid."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.field = field
        self.value = value
        details = details or {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, component=component, details=details)
