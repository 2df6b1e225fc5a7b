"""
Built-in middleware factories.

Each factory takes the next stage and returns a stage wrapping it; register
them with MessageBus.use_middleware(). All of them re-raise whatever the inner
chain raised after observing it.

- logging_middleware: enter/exit/failure lines on a stdlib logger
- telemetry_middleware: one structured record per send on a Telemetry port
- timeout_middleware: bound the inner chain's wall time
- cancellation_middleware: abort the inner chain as soon as the token fires
- resolved_middleware: adapter for class-based MessageMiddleware instances
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any, Optional

from messagebus.errors import MiddlewareResolutionFailed, OperationCancelledError, type_name
from messagebus.types import MiddlewareFactory, Stage

if TYPE_CHECKING:
    from messagebus.core.cancellation import CancellationToken
    from messagebus.ports.resolver import Resolver
    from messagebus.ports.telemetry import Telemetry

logger = logging.getLogger(__name__)


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)


def logging_middleware(
    log: Optional[logging.Logger] = None, level: int = logging.INFO
) -> MiddlewareFactory:
    """Log every send on the way in, on the way out, and on failure."""
    target = log or logger

    def factory(next: Stage) -> Stage:
        async def stage(message: Any, cancellation: CancellationToken) -> Any:
            name = type_name(type(message))
            target.log(level, f"-> {name}")
            start = time.perf_counter()
            try:
                result = await next(message, cancellation)
            except Exception as e:
                target.warning(f"x  {name} failed after {_elapsed_ms(start)}ms: {e}")
                raise
            target.log(level, f"<- {name} ({_elapsed_ms(start)}ms)")
            return result

        return stage

    return factory


def telemetry_middleware(telemetry: Telemetry) -> MiddlewareFactory:
    """Emit message_handled / message_failed records with timing."""

    def factory(next: Stage) -> Stage:
        async def stage(message: Any, cancellation: CancellationToken) -> Any:
            name = type_name(type(message))
            start = time.perf_counter()
            try:
                result = await next(message, cancellation)
            except Exception as e:
                telemetry.log(
                    "message_failed",
                    message_type=name,
                    duration_ms=_elapsed_ms(start),
                    error_type=type(e).__name__,
                    error=str(e),
                )
                raise
            telemetry.log(
                "message_handled",
                message_type=name,
                duration_ms=_elapsed_ms(start),
                has_result=result is not None,
            )
            return result

        return stage

    return factory


def timeout_middleware(seconds: float) -> MiddlewareFactory:
    """Cancel the inner chain after `seconds` and raise OperationCancelledError."""
    if seconds <= 0:
        raise ValueError(f"timeout must be positive, got {seconds}")

    def factory(next: Stage) -> Stage:
        async def stage(message: Any, cancellation: CancellationToken) -> Any:
            try:
                return await asyncio.wait_for(next(message, cancellation), timeout=seconds)
            except asyncio.TimeoutError as e:
                raise OperationCancelledError(
                    f"{type_name(type(message))} timed out after {seconds}s",
                    reason="timeout",
                ) from e

        return stage

    return factory


def cancellation_middleware() -> MiddlewareFactory:
    """
    Race the inner chain against the cancellation token.

    If the token fires first the inner chain is cancelled at its current
    suspension point, drained, and OperationCancelledError is raised.
    """

    def factory(next: Stage) -> Stage:
        async def stage(message: Any, cancellation: CancellationToken) -> Any:
            cancellation.raise_if_cancelled()
            work = asyncio.ensure_future(next(message, cancellation))
            watcher = asyncio.ensure_future(cancellation.wait())
            try:
                done, _ = await asyncio.wait(
                    {work, watcher}, return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                watcher.cancel()
                if not work.done():
                    work.cancel()
                    # drain: inner outbound code finishes before this stage returns
                    await asyncio.gather(work, return_exceptions=True)

            if work in done:
                return work.result()

            raise OperationCancelledError(reason=cancellation.reason)

        return stage

    return factory


def resolved_middleware(
    middleware_key: Any, resolver: Resolver, component: Optional[str] = None
) -> MiddlewareFactory:
    """
    Adapter for class-based middleware.

    The instance is resolved on every send (so the resolver decides its
    lifetime) and called as instance.invoke(message, cancellation, next).
    """

    def factory(next: Stage) -> Stage:
        async def stage(message: Any, cancellation: CancellationToken) -> Any:
            instance = resolver.resolve(middleware_key)
            if instance is None:
                raise MiddlewareResolutionFailed(middleware_key, component=component)
            return await instance.invoke(message, cancellation, next)

        return stage

    return factory
