"""
Cancellation signal threaded through every pipeline stage and subscriber.

A token is cancelled either explicitly (cancel()) or implicitly once its
deadline passes. Stages check it at their suspension points; the bus checks
it once before starting a send or a publish.
"""

from __future__ import annotations

import asyncio
import time
from typing import Optional

from messagebus.errors import OperationCancelledError


class CancellationToken:
    """Cooperative cancellation flag with an optional monotonic deadline."""

    def __init__(self, deadline: Optional[float] = None) -> None:
        # deadline is expressed in time.monotonic() seconds
        self._deadline = deadline
        self._event = asyncio.Event()
        self._reason: Optional[str] = None

    @classmethod
    def with_timeout(cls, seconds: float) -> CancellationToken:
        """Token that reports cancelled once `seconds` have elapsed."""
        if seconds < 0:
            raise ValueError(f"timeout must be non-negative, got {seconds}")
        return cls(deadline=time.monotonic() + seconds)

    @property
    def deadline(self) -> Optional[float]:
        return self._deadline

    @property
    def reason(self) -> Optional[str]:
        if self._reason is None and self._deadline_passed():
            return "deadline exceeded"
        return self._reason

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set() or self._deadline_passed()

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline, or None when there is no deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def cancel(self, reason: str = "cancelled") -> None:
        """Cancel the token (idempotent; the first reason sticks)."""
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self.is_cancelled:
            raise OperationCancelledError(reason=self.reason)

    async def wait(self) -> None:
        """Suspend until the token is cancelled or its deadline passes."""
        if self.is_cancelled:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=self.remaining())
        except asyncio.TimeoutError:
            # deadline reached
            pass

    def _deadline_passed(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.is_cancelled}, deadline={self._deadline})"
