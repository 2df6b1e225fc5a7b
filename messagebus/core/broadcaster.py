"""
Event fan-out: every subscriber of an event type, concurrently.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from messagebus.core.cancellation import CancellationToken
from messagebus.core.registry import SubscriberRegistry
from messagebus.errors import (
    AggregateSubscriberError,
    SubscriberInvocationFailed,
    SubscriberResolutionFailed,
    type_name,
)
from messagebus.ports.resolver import Resolver
from messagebus.types import SubscriberDescriptor

logger = logging.getLogger(__name__)


@dataclass
class PublishOutcome:
    """What happened during one publish; consumed by the bus for statistics."""

    invoked: int = 0
    skipped: list[SubscriberResolutionFailed] = field(default_factory=list)
    failures: list[SubscriberInvocationFailed] = field(default_factory=list)


class EventBroadcaster:
    """
    Resolves every subscriber of an event and runs them as parallel tasks.

    - A resolver miss skips that subscriber (logged, not fatal)
    - A resolver that raises counts as that subscriber failing
    - All tasks are joined even if some fail; a failure never stops a sibling
    - Failures are raised together as AggregateSubscriberError, in
      registration order
    """

    def __init__(
        self, registry: SubscriberRegistry, resolver: Resolver, name: str = "messagebus"
    ) -> None:
        self._registry = registry
        self._resolver = resolver
        self._name = name

    async def publish(
        self,
        event: Any,
        cancellation: CancellationToken,
        outcome: Optional[PublishOutcome] = None,
    ) -> None:
        outcome = outcome if outcome is not None else PublishOutcome()
        event_type = type(event)

        descriptors = self._registry.lookup(event_type)
        if not descriptors:
            logger.debug(f"[{self._name}] No subscribers for {type_name(event_type)}")
            return

        resolved: list[tuple[SubscriberDescriptor, Any]] = []
        for descriptor in descriptors:
            try:
                instance = self._resolver.resolve(descriptor.subscriber_key)
            except Exception as e:
                # resolver fault counts against this subscriber only
                failure = SubscriberInvocationFailed(
                    event_type, descriptor.subscriber_key, e, component=self._name
                )
                failure.__cause__ = e
                outcome.failures.append(failure)
                logger.error(
                    f"[{self._name}] Resolving subscriber {type_name(descriptor.subscriber_key)} "
                    f"raised for {type_name(event_type)}: {e!r}",
                    exc_info=e,
                )
                continue
            if instance is None:
                miss = SubscriberResolutionFailed(
                    event_type, descriptor.subscriber_key, component=self._name
                )
                outcome.skipped.append(miss)
                logger.warning(f"[{self._name}] Skipping subscriber: {miss}")
                continue
            resolved.append((descriptor, instance))

        if not resolved:
            if outcome.failures:
                raise AggregateSubscriberError(event_type, outcome.failures, component=self._name)
            return

        outcome.invoked = len(resolved)
        results = await asyncio.gather(
            *(self._invoke(d, instance, event, cancellation) for d, instance in resolved),
            return_exceptions=True,
        )

        for (descriptor, _), result in zip(resolved, results):
            if isinstance(result, asyncio.CancelledError):
                # A subscriber task was cancelled on its own; report it like any failure
                result = SubscriberInvocationFailed(
                    event_type, descriptor.subscriber_key, result, component=self._name
                )
            if isinstance(result, SubscriberInvocationFailed):
                outcome.failures.append(result)
                logger.error(
                    f"[{self._name}] Subscriber {type_name(descriptor.subscriber_key)} "
                    f"failed for {type_name(event_type)}: {result.cause!r}",
                    exc_info=result.cause,
                )

        if outcome.failures:
            positions = [d.subscriber_key for d in descriptors]
            outcome.failures.sort(key=lambda f: positions.index(f.subscriber_key))
            raise AggregateSubscriberError(event_type, outcome.failures, component=self._name)

    async def _invoke(
        self,
        descriptor: SubscriberDescriptor,
        instance: Any,
        event: Any,
        cancellation: CancellationToken,
    ) -> None:
        try:
            result = descriptor.invoke(instance, event, cancellation)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            raise SubscriberInvocationFailed(
                type(event), descriptor.subscriber_key, e, component=self._name
            ) from e
