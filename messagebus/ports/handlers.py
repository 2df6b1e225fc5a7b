"""Handler Port Interfaces.

Contract: the shapes the default registration thunks expect. Every method
receives the cancellation token; there is no optional-argument variant.
Handlers and subscribers may be sync or async.
"""
from __future__ import annotations
from typing import TYPE_CHECKING, Any, Awaitable, Protocol, Union

if TYPE_CHECKING:
    from messagebus.core.cancellation import CancellationToken
    from messagebus.types import Stage


class Handler(Protocol):
    def handle(
        self, message: Any, cancellation: CancellationToken
    ) -> Union[Any, Awaitable[Any]]:
        """Process a command/query and return its result (or None)."""
        ...


class EventSubscriber(Protocol):
    def consume(
        self, event: Any, cancellation: CancellationToken
    ) -> Union[None, Awaitable[None]]:
        """React to a published event."""
        ...


class MessageMiddleware(Protocol):
    async def invoke(self, message: Any, cancellation: CancellationToken, next: Stage) -> Any:
        """Wrap the rest of the chain; call `next` to continue."""
        ...
