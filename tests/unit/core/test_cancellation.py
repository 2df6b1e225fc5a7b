"""
Unit tests for CancellationToken.
"""

import asyncio

import pytest

from messagebus.core.cancellation import CancellationToken
from messagebus.errors import OperationCancelledError


class TestCancellationToken:
    """Tests for CancellationToken."""

    def test_fresh_token_not_cancelled(self) -> None:
        token = CancellationToken()

        assert not token.is_cancelled
        assert token.reason is None
        assert token.remaining() is None
        token.raise_if_cancelled()

    def test_cancel_is_idempotent_and_keeps_first_reason(self) -> None:
        token = CancellationToken()

        token.cancel("first")
        token.cancel("second")

        assert token.is_cancelled
        assert token.reason == "first"

    def test_raise_if_cancelled(self) -> None:
        token = CancellationToken()
        token.cancel("shutdown")

        with pytest.raises(OperationCancelledError) as excinfo:
            token.raise_if_cancelled()

        assert excinfo.value.reason == "shutdown"
        assert excinfo.value.details == {"reason": "shutdown"}

    def test_zero_timeout_is_cancelled_immediately(self) -> None:
        token = CancellationToken.with_timeout(0)

        assert token.is_cancelled
        assert token.reason == "deadline exceeded"
        assert token.remaining() == 0.0

    def test_negative_timeout_rejected(self) -> None:
        with pytest.raises(ValueError):
            CancellationToken.with_timeout(-1)

    def test_future_deadline_not_cancelled(self) -> None:
        token = CancellationToken.with_timeout(60)

        assert not token.is_cancelled
        assert 0 < token.remaining() <= 60

    @pytest.mark.asyncio
    async def test_wait_returns_on_cancel(self) -> None:
        token = CancellationToken()

        async def cancel_soon() -> None:
            await asyncio.sleep(0.01)
            token.cancel()

        asyncio.create_task(cancel_soon())
        await asyncio.wait_for(token.wait(), timeout=1.0)

        assert token.is_cancelled

    @pytest.mark.asyncio
    async def test_wait_returns_on_deadline(self) -> None:
        token = CancellationToken.with_timeout(0.01)

        await asyncio.wait_for(token.wait(), timeout=1.0)

        assert token.is_cancelled
