import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import pytest

from messagebus.adapters.resolver import ServiceResolver
from messagebus.config import BusConfig
from messagebus.core.bus import MessageBus
from messagebus.core.cancellation import CancellationToken
from messagebus.errors import (
    AggregateSubscriberError,
    BusFrozenError,
    DuplicateHandlerError,
    HandlerInvocationFailed,
    MiddlewareResolutionFailed,
    NoHandlerRegistered,
    OperationCancelledError,
    PipelineBuildError,
    ResultTypeMismatch,
)

# --- Messages and handlers ---


@dataclass(frozen=True)
class Ping:
    pass


@dataclass(frozen=True)
class Pong:
    pass


@dataclass(frozen=True)
class Tick:
    pass


class PingHandler:
    calls = 0

    async def handle(self, message: Ping, cancellation: CancellationToken) -> Pong:
        PingHandler.calls += 1
        return Pong()


class OtherPingHandler:
    async def handle(self, message: Ping, cancellation: CancellationToken) -> str:
        return "other"


class TickCounter:
    def __init__(self) -> None:
        self.count = 0

    async def consume(self, event: Tick, cancellation: CancellationToken) -> None:
        self.count += 1


def recording(name: str, trace: list[str]):
    def factory(next):
        async def stage(message: Any, cancellation: CancellationToken) -> Any:
            trace.append(f"{name}-enter")
            result = await next(message, cancellation)
            trace.append(f"{name}-exit")
            return result

        return stage

    return factory


@pytest.fixture
def resolver() -> ServiceResolver:
    return ServiceResolver().add_type(PingHandler).add_type(OtherPingHandler)


@pytest.fixture
def bus(resolver: ServiceResolver) -> MessageBus:
    PingHandler.calls = 0
    return MessageBus(resolver, BusConfig(name="test-bus"))


# --- Send ---


@pytest.mark.asyncio
async def test_send_invokes_handler_once_and_returns_result(bus: MessageBus):
    bus.register_handler(Ping, PingHandler)

    result = await bus.send(Ping())

    assert result == Pong()
    assert PingHandler.calls == 1
    assert bus.stats.sent == 1
    assert bus.stats.by_message_type == {"Ping": 1}


@pytest.mark.asyncio
async def test_reregistering_handler_replaces_previous(bus: MessageBus):
    bus.register_handler(Ping, PingHandler)
    bus.register_handler(Ping, OtherPingHandler)

    assert await bus.send(Ping()) == "other"
    assert PingHandler.calls == 0
    assert bus.handler_for(Ping).handler_key is OtherPingHandler


@pytest.mark.asyncio
async def test_duplicate_policy_error_rejects_second_handler(resolver: ServiceResolver):
    bus = MessageBus(resolver, BusConfig(duplicate_handlers="error"))
    bus.register_handler(Ping, PingHandler)

    with pytest.raises(DuplicateHandlerError) as excinfo:
        bus.register_handler(Ping, OtherPingHandler)

    assert excinfo.value.existing_key is PingHandler
    assert bus.handler_for(Ping).handler_key is PingHandler


@pytest.mark.asyncio
async def test_send_unregistered_raises_and_counts_failure(bus: MessageBus):
    bus.register_handler(Ping, PingHandler)

    with pytest.raises(NoHandlerRegistered):
        await bus.send(Tick())

    assert PingHandler.calls == 0
    assert bus.stats.send_failures == 1


@pytest.mark.asyncio
async def test_send_with_cancelled_token_never_reaches_handler(bus: MessageBus):
    bus.register_handler(Ping, PingHandler)
    token = CancellationToken()
    token.cancel()

    with pytest.raises(OperationCancelledError):
        await bus.send(Ping(), token)

    assert PingHandler.calls == 0


@pytest.mark.asyncio
async def test_token_cancelled_inside_middleware_stops_before_handler(bus: MessageBus):
    def cancels_then_continues(next):
        async def stage(message: Any, cancellation: CancellationToken) -> Any:
            cancellation.cancel("stop")
            await asyncio.sleep(0)
            return await next(message, cancellation)

        return stage

    bus.register_handler(Ping, PingHandler)
    bus.use_middleware(cancels_then_continues)

    with pytest.raises(OperationCancelledError) as excinfo:
        await bus.send(Ping())

    assert excinfo.value.reason == "stop"
    assert PingHandler.calls == 0
    assert bus.stats.send_failures == 1


@pytest.mark.asyncio
async def test_handler_failure_is_wrapped(bus: MessageBus, resolver: ServiceResolver):
    class Broken:
        async def handle(self, message: Any, cancellation: CancellationToken) -> Any:
            raise ValueError("nope")

    resolver.add_type(Broken)
    bus.register_handler(Ping, Broken)

    with pytest.raises(HandlerInvocationFailed) as excinfo:
        await bus.send(Ping())

    assert isinstance(excinfo.value.cause, ValueError)
    assert excinfo.value.component == "test-bus"


# --- Typed send ---


@pytest.mark.asyncio
async def test_send_typed_returns_matching_result(bus: MessageBus):
    bus.register_handler(Ping, PingHandler)

    assert await bus.send_typed(Ping(), Pong) == Pong()


@pytest.mark.asyncio
async def test_send_typed_mismatch_defaults_to_none(bus: MessageBus):
    bus.register_handler(Ping, OtherPingHandler)

    assert await bus.send_typed(Ping(), Pong) is None


@pytest.mark.asyncio
async def test_send_typed_mismatch_raises_when_configured(resolver: ServiceResolver):
    bus = MessageBus(resolver, BusConfig(result_mismatch="raise"))
    bus.register_handler(Ping, OtherPingHandler)

    with pytest.raises(ResultTypeMismatch) as excinfo:
        await bus.send_typed(Ping(), Pong)

    assert excinfo.value.expected is Pong
    assert excinfo.value.actual == "other"


@pytest.mark.asyncio
async def test_send_typed_none_result_is_not_a_mismatch(resolver: ServiceResolver):
    bus = MessageBus(resolver, BusConfig(result_mismatch="raise"))
    resolver.add_instance("void", object())
    bus.register_handler(Ping, "void", invoke=lambda inst, msg, tok: None)

    assert await bus.send_typed(Ping(), Pong) is None


# --- Middleware ---


@pytest.mark.asyncio
async def test_middleware_order_inbound_and_outbound(bus: MessageBus):
    trace: list[str] = []
    bus.register_handler(
        Ping, PingHandler, invoke=lambda inst, msg, tok: trace.append("handler") or Pong()
    )
    bus.use_middleware(recording("A", trace))
    bus.use_middleware(recording("B", trace))

    await bus.send(Ping())

    assert trace == ["A-enter", "B-enter", "handler", "B-exit", "A-exit"]
    assert bus.middleware_count == 2


@pytest.mark.asyncio
async def test_rebuild_pipeline_keeps_ordering(bus: MessageBus):
    trace: list[str] = []
    bus.register_handler(Ping, PingHandler)
    bus.use_middleware(recording("A", trace))
    bus.use_middleware(recording("B", trace))

    await bus.send(Ping())
    first = list(trace)
    trace.clear()
    bus.rebuild_pipeline()
    bus.rebuild_pipeline()
    await bus.send(Ping())

    assert trace == first


@pytest.mark.asyncio
async def test_middleware_added_after_send_applies_to_next_send(bus: MessageBus):
    trace: list[str] = []
    bus.register_handler(Ping, PingHandler)
    await bus.send(Ping())

    bus.use_middleware(recording("late", trace))
    await bus.send(Ping())

    assert trace == ["late-enter", "late-exit"]


def test_broken_middleware_factory_leaves_pipeline_intact(bus: MessageBus):
    with pytest.raises(PipelineBuildError):
        bus.use_middleware(lambda next: None)

    assert bus.middleware_count == 0


def test_non_callable_middleware_rejected(bus: MessageBus):
    with pytest.raises(TypeError):
        bus.use_middleware("not-a-factory")  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_class_based_middleware_resolved_per_send(bus: MessageBus, resolver: ServiceResolver):
    created: list[object] = []

    class Audit:
        def __init__(self) -> None:
            created.append(self)

        async def invoke(self, message: Any, cancellation: CancellationToken, next) -> Any:
            result = await next(message, cancellation)
            return ("audited", result)

    resolver.add_type(Audit)
    bus.register_handler(Ping, PingHandler)
    bus.use_middleware_type(Audit)

    assert await bus.send(Ping()) == ("audited", Pong())
    await bus.send(Ping())
    assert len(created) == 2


@pytest.mark.asyncio
async def test_class_based_middleware_resolution_miss(bus: MessageBus):
    bus.register_handler(Ping, PingHandler)
    bus.use_middleware_type("unknown-middleware")

    with pytest.raises(MiddlewareResolutionFailed) as excinfo:
        await bus.send(Ping())

    assert excinfo.value.middleware_key == "unknown-middleware"
    assert excinfo.value.component == "test-bus"


# --- Publish ---


@pytest.mark.asyncio
async def test_publish_without_subscribers_succeeds(bus: MessageBus):
    await bus.publish(Tick())

    assert bus.stats.published == 1
    assert bus.stats.subscriber_invocations == 0


@pytest.mark.asyncio
async def test_publish_bypasses_middleware(bus: MessageBus, resolver: ServiceResolver):
    trace: list[str] = []
    counter = TickCounter()
    resolver.add_instance(TickCounter, counter)
    bus.register_subscriber(Tick, TickCounter)
    bus.use_middleware(recording("A", trace))

    await bus.publish(Tick())

    assert counter.count == 1
    assert trace == []


@pytest.mark.asyncio
async def test_duplicate_subscriber_invoked_once(bus: MessageBus, resolver: ServiceResolver):
    counter = TickCounter()
    resolver.add_instance(TickCounter, counter)

    assert bus.register_subscriber(Tick, TickCounter) is True
    assert bus.register_subscriber(Tick, TickCounter) is False
    await bus.publish(Tick())

    assert counter.count == 1
    assert bus.subscriber_count(Tick) == 1


@pytest.mark.asyncio
async def test_publish_failure_stats(bus: MessageBus, resolver: ServiceResolver):
    def boom(instance: Any, event: Any, token: CancellationToken) -> None:
        raise RuntimeError("boom")

    counter = TickCounter()
    resolver.add_instance("bad", object()).add_instance(TickCounter, counter)
    bus.register_subscriber(Tick, "bad", invoke=boom)
    bus.register_subscriber(Tick, TickCounter)
    bus.register_subscriber(Tick, "ghost")

    with pytest.raises(AggregateSubscriberError):
        await bus.publish(Tick())

    assert counter.count == 1
    assert bus.stats.subscriber_invocations == 2
    assert bus.stats.subscriber_failures == 1
    assert bus.stats.subscribers_skipped == 1


@pytest.mark.asyncio
async def test_publish_with_cancelled_token_raises(bus: MessageBus, resolver: ServiceResolver):
    counter = TickCounter()
    resolver.add_instance(TickCounter, counter)
    bus.register_subscriber(Tick, TickCounter)
    token = CancellationToken()
    token.cancel()

    with pytest.raises(OperationCancelledError):
        await bus.publish(Tick(), token)
    assert counter.count == 0


# --- Lifecycle ---


def test_freeze_blocks_setup(bus: MessageBus):
    bus.register_handler(Ping, PingHandler)
    bus.freeze()
    bus.freeze()

    assert bus.frozen
    with pytest.raises(BusFrozenError):
        bus.register_handler(Tick, PingHandler)
    with pytest.raises(BusFrozenError):
        bus.register_subscriber(Tick, TickCounter)
    with pytest.raises(BusFrozenError):
        bus.use_middleware(recording("A", []))


@pytest.mark.asyncio
async def test_frozen_bus_serves_concurrent_sends(bus: MessageBus):
    bus.register_handler(Ping, PingHandler)
    bus.freeze()

    results = await asyncio.gather(*(bus.send(Ping()) for _ in range(20)))

    assert results == [Pong()] * 20
    assert PingHandler.calls == 20


def test_reset_stats(bus: MessageBus):
    bus.stats.sent = 10
    bus.reset_stats()
    assert bus.stats.sent == 0


def test_default_config(resolver: ServiceResolver):
    bus = MessageBus(resolver)
    assert bus.name == "messagebus"
    assert bus.config.duplicate_handlers == "replace"
    assert bus.resolver is resolver
    assert not bus.has_handler(Ping)


@pytest.mark.asyncio
async def test_log_dispatch_writes_debug_lines(resolver: ServiceResolver, caplog):
    bus = MessageBus(resolver, BusConfig(name="traced", log_dispatch=True))
    bus.register_handler(Ping, PingHandler)

    with caplog.at_level(logging.DEBUG, logger="messagebus.core.bus"):
        await bus.send(Ping())
        await bus.publish(Tick())

    assert "[traced] send Ping" in caplog.text
    assert "[traced] publish Tick" in caplog.text


@pytest.mark.asyncio
async def test_dispatch_lines_silent_by_default(bus: MessageBus, caplog):
    bus.register_handler(Ping, PingHandler)

    with caplog.at_level(logging.DEBUG, logger="messagebus.core.bus"):
        await bus.send(Ping())

    assert "send Ping" not in caplog.text


@pytest.mark.asyncio
async def test_subscriber_factory_failure_counted(bus: MessageBus, resolver: ServiceResolver):
    def broken_factory():
        raise RuntimeError("cannot construct")

    counter = TickCounter()
    resolver.add_factory("broken", broken_factory).add_instance(TickCounter, counter)
    bus.register_subscriber(Tick, "broken")
    bus.register_subscriber(Tick, TickCounter)

    with pytest.raises(AggregateSubscriberError):
        await bus.publish(Tick())

    assert counter.count == 1
    assert bus.stats.subscriber_invocations == 1
    assert bus.stats.subscriber_failures == 1
