from __future__ import annotations

import logging
from typing import Any, Optional, Type, TypeVar

from messagebus.config import BusConfig
from messagebus.core.broadcaster import EventBroadcaster, PublishOutcome
from messagebus.core.cancellation import CancellationToken
from messagebus.core.dispatcher import TerminalDispatcher
from messagebus.core.pipeline import build_pipeline
from messagebus.core.registry import HandlerRegistry, SubscriberRegistry
from messagebus.errors import (
    BusFrozenError,
    DuplicateHandlerError,
    ResultTypeMismatch,
    type_name,
)
from messagebus.middleware import resolved_middleware
from messagebus.ports.resolver import Resolver
from messagebus.types import (
    BusStats,
    HandlerDescriptor,
    HandlerInvoker,
    MiddlewareFactory,
    Stage,
    SubscriberDescriptor,
    SubscriberInvoker,
    invoke_consume,
    invoke_handle,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MessageBus:
    """
    In-process command/query and event bus.

    Lifecycle:
    - Setup: register handlers/subscribers and middleware (single writer)
    - Optionally freeze(), after which setup calls raise BusFrozenError
    - Runtime: concurrent send()/publish() calls; registries are only read

    send() runs through the middleware pipeline and ends in exactly one handler.
    publish() bypasses the pipeline and fans out to every subscriber.
    """

    def __init__(self, resolver: Resolver, config: Optional[BusConfig] = None) -> None:
        self._cfg = config or BusConfig()
        self._name = self._cfg.name
        self._resolver = resolver

        self._handlers = HandlerRegistry()
        self._subscribers = SubscriberRegistry()
        self._middleware: list[MiddlewareFactory] = []

        self._dispatcher = TerminalDispatcher(self._handlers, resolver, name=self._name)
        self._broadcaster = EventBroadcaster(self._subscribers, resolver, name=self._name)
        self._pipeline: Stage = build_pipeline(self._middleware, self._dispatcher.dispatch)

        self._frozen = False
        self._stats = BusStats()

    # --- Properties ---

    @property
    def name(self) -> str:
        return self._name

    @property
    def config(self) -> BusConfig:
        return self._cfg

    @property
    def resolver(self) -> Resolver:
        return self._resolver

    @property
    def stats(self) -> BusStats:
        return self._stats

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def middleware_count(self) -> int:
        return len(self._middleware)

    # --- Setup API ---

    def register_handler(
        self,
        message_type: Type[Any],
        handler_key: Any,
        invoke: Optional[HandlerInvoker] = None,
    ) -> HandlerDescriptor:
        """
        Route `message_type` to the instance resolved under `handler_key`.

        `invoke(instance, message, cancellation)` defaults to
        `instance.handle(message, cancellation)`. Re-registering a type replaces
        the previous handler unless the config says duplicate_handlers="error".
        """
        self._check_not_frozen("register_handler")
        existing = self._handlers.lookup(message_type)
        if existing is not None and self._cfg.duplicate_handlers == "error":
            raise DuplicateHandlerError(
                message_type, existing.handler_key, handler_key, component=self._name
            )

        descriptor = HandlerDescriptor(
            message_type=message_type,
            handler_key=handler_key,
            invoke=invoke or invoke_handle,
        )
        self._handlers.register(message_type, descriptor)
        return descriptor

    def register_subscriber(
        self,
        event_type: Type[Any],
        subscriber_key: Any,
        invoke: Optional[SubscriberInvoker] = None,
    ) -> bool:
        """
        Add a subscriber for `event_type`. Returns False if `subscriber_key`
        was already registered for that event (the call is then a no-op).
        """
        self._check_not_frozen("register_subscriber")
        descriptor = SubscriberDescriptor(
            event_type=event_type,
            subscriber_key=subscriber_key,
            invoke=invoke or invoke_consume,
        )
        return self._subscribers.register(event_type, descriptor)

    def use_middleware(self, factory: MiddlewareFactory) -> None:
        """Append a middleware factory and rebuild the pipeline."""
        self._check_not_frozen("use_middleware")
        if not callable(factory):
            raise TypeError(f"middleware factory must be callable, got {type(factory).__name__}")
        # compose first so a failing factory leaves the old chain in place
        candidate = [*self._middleware, factory]
        self._pipeline = build_pipeline(candidate, self._dispatcher.dispatch)
        self._middleware = candidate
        logger.debug(f"[{self._name}] Middleware #{len(self._middleware)} added")

    def use_middleware_type(self, middleware_key: Any) -> None:
        """Append class-based middleware resolved from the resolver on every send."""
        self.use_middleware(
            resolved_middleware(middleware_key, self._resolver, component=self._name)
        )

    def freeze(self) -> None:
        """End the setup phase. Idempotent."""
        if not self._frozen:
            self._frozen = True
            logger.info(
                f"[{self._name}] Frozen with {len(self._handlers)} handler(s), "
                f"{len(self._subscribers.event_types())} event type(s), "
                f"{len(self._middleware)} middleware"
            )

    # --- Runtime API ---

    async def send(self, message: Any, cancellation: Optional[CancellationToken] = None) -> Any:
        """Run `message` through the pipeline to its handler and return the result."""
        token = cancellation if cancellation is not None else CancellationToken()
        type_key = type_name(type(message))
        self._stats.sent += 1
        self._stats.by_message_type[type_key] = self._stats.by_message_type.get(type_key, 0) + 1

        if self._cfg.log_dispatch:
            logger.debug(f"[{self._name}] send {type_key}")

        try:
            token.raise_if_cancelled()
            return await self._pipeline(message, token)
        except BaseException:
            self._stats.send_failures += 1
            raise

    async def send_typed(
        self,
        message: Any,
        result_type: Type[T],
        cancellation: Optional[CancellationToken] = None,
    ) -> Optional[T]:
        """
        send() and narrow the result to `result_type`.

        A None result is returned as None. Any other mismatch returns None, or
        raises ResultTypeMismatch when the config says result_mismatch="raise".
        """
        result = await self.send(message, cancellation)
        if result is None or isinstance(result, result_type):
            return result
        if self._cfg.result_mismatch == "raise":
            raise ResultTypeMismatch(result_type, result, component=self._name)
        logger.debug(
            f"[{self._name}] Result {type_name(type(result))} is not "
            f"{type_name(result_type)}; returning None"
        )
        return None

    async def publish(self, event: Any, cancellation: Optional[CancellationToken] = None) -> None:
        """
        Deliver `event` to every subscriber concurrently.

        Raises AggregateSubscriberError after all subscribers finished if any failed.
        """
        token = cancellation if cancellation is not None else CancellationToken()
        self._stats.published += 1

        if self._cfg.log_dispatch:
            logger.debug(f"[{self._name}] publish {type_name(type(event))}")

        token.raise_if_cancelled()
        outcome = PublishOutcome()
        try:
            await self._broadcaster.publish(event, token, outcome)
        finally:
            self._stats.subscriber_invocations += outcome.invoked
            self._stats.subscribers_skipped += len(outcome.skipped)
            self._stats.subscriber_failures += len(outcome.failures)

    # --- Introspection ---

    def has_handler(self, message_type: Type[Any]) -> bool:
        return message_type in self._handlers

    def handler_for(self, message_type: Type[Any]) -> Optional[HandlerDescriptor]:
        return self._handlers.lookup(message_type)

    def subscriber_count(self, event_type: Type[Any]) -> int:
        return self._subscribers.count(event_type)

    def reset_stats(self) -> None:
        self._stats = BusStats()

    # --- Internals ---

    def rebuild_pipeline(self) -> None:
        """Recompose the pipeline from the current middleware list."""
        self._pipeline = build_pipeline(self._middleware, self._dispatcher.dispatch)

    def _check_not_frozen(self, op: str) -> None:
        if self._frozen:
            raise BusFrozenError(f"Cannot {op}: bus is frozen", component=self._name)
