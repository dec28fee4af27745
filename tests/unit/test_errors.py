import asyncio

import pytest

from unillm.cancellation import CancellationToken, run_cancellable
from unillm.errors import (
    AuthError,
    CancelledStreamError,
    ErrorKind,
    InvalidRequestError,
    RateLimitError,
    RequestTimeoutError,
    TransportError,
    error_message,
    map_status_code,
)


class TestMapStatusCode:
    @pytest.mark.parametrize("status, cls", [
        (401, AuthError),
        (403, AuthError),
        (429, RateLimitError),
        (408, RequestTimeoutError),
        (400, InvalidRequestError),
        (422, InvalidRequestError),
        (500, TransportError),
    ])
    def test_status_classes(self, status, cls):
        error = map_status_code(status, "nope", provider="p")
        assert type(error) is cls
        assert error.status_code == status
        assert error.provider == "p"
        assert error.message == f"HTTP {status}: nope"

    def test_kinds(self):
        assert map_status_code(429, "").kind is ErrorKind.RATE_LIMIT
        assert map_status_code(503, "").kind is ErrorKind.TRANSPORT


class TestErrorMessage:
    def test_openai_shape(self):
        assert error_message({"error": {"message": "bad key", "type": "auth"}}) == "bad key"

    def test_flat_shape(self):
        assert error_message({"message": "overloaded"}) == "overloaded"

    def test_string(self):
        assert error_message("plain") == "plain"


class TestCancellationToken:
    def test_cancel_is_idempotent(self):
        token = CancellationToken()
        token.cancel("first")
        token.cancel("second")
        assert token.cancelled
        assert token.reason == "first"

    def test_raise_if_cancelled(self):
        token = CancellationToken()
        token.raise_if_cancelled()
        token.cancel()
        with pytest.raises(CancelledStreamError) as exc_info:
            token.raise_if_cancelled()
        assert exc_info.value.kind is ErrorKind.CANCELLED


class TestRunCancellable:
    @pytest.mark.asyncio
    async def test_returns_result(self):
        async def work():
            return 42

        assert await run_cancellable(work(), CancellationToken()) == 42
        assert await run_cancellable(work(), None) == 42

    @pytest.mark.asyncio
    async def test_cancel_abandons_pending_work(self):
        token = CancellationToken()
        started = asyncio.Event()
        cancelled = asyncio.Event()

        async def slow():
            started.set()
            try:
                await asyncio.sleep(60)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        async def cancel_soon():
            await started.wait()
            token.cancel("stop")

        asyncio.ensure_future(cancel_soon())
        with pytest.raises(CancelledStreamError, match="stop"):
            await run_cancellable(slow(), token)
        assert cancelled.is_set()
