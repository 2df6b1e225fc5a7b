"""
In-process message bus.

Routes a command/query to exactly one handler through a composable
middleware pipeline, and publishes events to every subscriber concurrently.

Components:
- MessageBus: composition root exposing the setup and runtime APIs
- HandlerRegistry / SubscriberRegistry: type-keyed descriptor tables
- build_pipeline: middleware composition around the terminal dispatcher
- TerminalDispatcher: resolves and invokes the one handler
- EventBroadcaster: concurrent fan-out with failure aggregation
- CancellationToken: cooperative cancellation threaded through every stage

Usage:
    from messagebus import MessageBus, ServiceResolver

    resolver = ServiceResolver().add_type(PingHandler)
    bus = MessageBus(resolver)
    bus.register_handler(Ping, PingHandler)
    bus.use_middleware(logging_middleware())
    pong = await bus.send(Ping())
"""

from messagebus.adapters.resolver import ServiceResolver
from messagebus.config import BusConfig, ConfigLoader, load_bus_config
from messagebus.core.bus import MessageBus
from messagebus.core.cancellation import CancellationToken
from messagebus.errors import (
    AggregateSubscriberError,
    BusFrozenError,
    ConfigurationError,
    DuplicateHandlerError,
    HandlerInvocationFailed,
    HandlerResolutionFailed,
    MessageBusError,
    MiddlewareResolutionFailed,
    NoHandlerRegistered,
    OperationCancelledError,
    PipelineBuildError,
    ResultTypeMismatch,
    SubscriberInvocationFailed,
    SubscriberResolutionFailed,
)
from messagebus.middleware import (
    cancellation_middleware,
    logging_middleware,
    resolved_middleware,
    telemetry_middleware,
    timeout_middleware,
)
from messagebus.types import BusStats, HandlerDescriptor, SubscriberDescriptor

__all__ = [
    # Main entry point
    "MessageBus",
    "BusConfig",
    "ConfigLoader",
    "load_bus_config",
    "ServiceResolver",
    "CancellationToken",
    # Types
    "BusStats",
    "HandlerDescriptor",
    "SubscriberDescriptor",
    # Middleware
    "logging_middleware",
    "telemetry_middleware",
    "timeout_middleware",
    "cancellation_middleware",
    "resolved_middleware",
    # Errors
    "MessageBusError",
    "NoHandlerRegistered",
    "HandlerResolutionFailed",
    "HandlerInvocationFailed",
    "SubscriberResolutionFailed",
    "SubscriberInvocationFailed",
    "AggregateSubscriberError",
    "ResultTypeMismatch",
    "DuplicateHandlerError",
    "BusFrozenError",
    "PipelineBuildError",
    "MiddlewareResolutionFailed",
    "OperationCancelledError",
    "ConfigurationError",
]
