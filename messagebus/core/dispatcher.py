"""
Terminal dispatch: the innermost stage of every send pipeline.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any

from messagebus.core.cancellation import CancellationToken
from messagebus.core.registry import HandlerRegistry
from messagebus.errors import (
    HandlerInvocationFailed,
    HandlerResolutionFailed,
    NoHandlerRegistered,
    OperationCancelledError,
    type_name,
)
from messagebus.ports.resolver import Resolver

logger = logging.getLogger(__name__)


class TerminalDispatcher:
    """
    Resolves and invokes the single handler for a message.

    Steps:
    1. Route on type(message)
    2. Lookup the descriptor (NoHandlerRegistered on miss)
    3. Ask the resolver for a live instance (HandlerResolutionFailed on miss)
    4. Check the token, then call the thunk with (instance, message, cancellation),
       awaiting if needed
    5. Wrap handler faults in HandlerInvocationFailed; cancellation passes through
    """

    def __init__(self, registry: HandlerRegistry, resolver: Resolver, name: str = "messagebus") -> None:
        self._registry = registry
        self._resolver = resolver
        self._name = name

    async def dispatch(self, message: Any, cancellation: CancellationToken) -> Any:
        message_type = type(message)

        descriptor = self._registry.lookup(message_type)
        if descriptor is None:
            raise NoHandlerRegistered(message_type, component=self._name)

        instance = self._resolver.resolve(descriptor.handler_key)
        if instance is None:
            raise HandlerResolutionFailed(
                descriptor.handler_key, message_type=message_type, component=self._name
            )

        # middleware may have suspended since send() checked the token
        cancellation.raise_if_cancelled()

        try:
            result = descriptor.invoke(instance, message, cancellation)
            if inspect.isawaitable(result):
                result = await result
        except (OperationCancelledError, asyncio.CancelledError):
            raise
        except Exception as e:
            logger.debug(
                f"[{self._name}] Handler {type_name(descriptor.handler_key)} raised "
                f"for {type_name(message_type)}: {e!r}"
            )
            raise HandlerInvocationFailed(
                message_type, descriptor.handler_key, e, component=self._name
            ) from e

        return result
