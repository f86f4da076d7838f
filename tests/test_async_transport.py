"""Tests for the asynchronous AsyncTransportClient and AsyncFileUploader."""

import asyncio
import io
import json
from typing import Any, Dict, List
from unittest import mock

import httpx
import pytest

from pangea import (
    AcceptedRequestException,
    AsyncFileUploader,
    AsyncTransportClient,
    PangeaConfig,
    PangeaTimedOutError,
    PangeaTransportError,
    RetryConfig,
    TransferMethod,
    ValidationException,
)


def _envelope(status: str = "Success", result: Any = None, request_id: str = "prq_a") -> Dict:
    return {"request_id": request_id, "status": status, "summary": "ok", "result": result}


def _client(handler, **config: Any) -> AsyncTransportClient:
    config.setdefault("retry_config", RetryConfig(enabled=False))
    return AsyncTransportClient(
        "redact", PangeaConfig(token="pts_test", transport=httpx.MockTransport(handler), **config)
    )


class TestAsyncTransportClient:
    """Test suite for AsyncTransportClient."""

    @pytest.mark.asyncio
    async def test_post_success(self) -> None:
        """Test a plain successful POST."""
        seen: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_envelope(result={"redacted_text": "<PHONE>"}))

        async with _client(handler) as client:
            response = await client.post("v1/redact", {"text": "555-0100", "debug": None})

        assert response.result == {"redacted_text": "<PHONE>"}
        assert str(seen[0].url) == "https://redact.aws.us.pangea.cloud/v1/redact"
        assert seen[0].headers["Authorization"] == "Bearer pts_test"
        assert json.loads(seen[0].content) == {"text": "555-0100"}

    @pytest.mark.asyncio
    async def test_error_status(self) -> None:
        """Test a typed API exception."""
        client = _client(lambda r: httpx.Response(400, json=_envelope(status="ValidationError")))
        with pytest.raises(ValidationException):
            await client.post("v1/redact", {})
        await client.close()

    @pytest.mark.asyncio
    async def test_polls_until_success(self) -> None:
        """Test in-line polling of a long-running request."""
        replies = [
            httpx.Response(202, json=_envelope(status="Accepted")),
            httpx.Response(202, json=_envelope(status="Accepted")),
            httpx.Response(200, json=_envelope(result={"count": 1})),
        ]
        client = _client(lambda r: replies.pop(0))
        with mock.patch("pangea.poller._async_wait", new=mock.AsyncMock()):
            response = await client.post("v1/redact", {})
        assert response.result == {"count": 1}
        assert client.pending_request_ids() == []
        await client.close()

    @pytest.mark.asyncio
    async def test_poll_timeout(self) -> None:
        """Test that polling gives up after poll_result_timeout."""
        client = _client(lambda r: httpx.Response(202, json=_envelope(status="Accepted")), poll_result_timeout=5)
        with mock.patch("pangea.poller._async_wait", new=mock.AsyncMock()):
            with pytest.raises(PangeaTimedOutError):
                await client.post("v1/redact", {})
        assert client.pending_request_ids() == ["prq_a"]
        await client.close()

    @pytest.mark.asyncio
    async def test_queued_retry_disabled(self) -> None:
        """Test surfacing the 202 and resuming it."""
        replies = [
            httpx.Response(202, json=_envelope(status="Accepted")),
            httpx.Response(200, json=_envelope(result={"count": 5})),
        ]
        client = _client(lambda r: replies.pop(0), queued_retry_enabled=False)
        with pytest.raises(AcceptedRequestException) as exc_info:
            await client.post("v1/redact", {})
        response = await client.poll_result_by_accepted_error(exc_info.value)
        assert response.result == {"count": 5}
        await client.close()

    @pytest.mark.asyncio
    async def test_task_cancellation_stops_polling(self) -> None:
        """Test that cancelling the task ends the wait with CancelledError."""
        seen: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(202, json=_envelope(status="Accepted"))

        client = _client(handler)
        task = asyncio.ensure_future(client.post("v1/redact", {}))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert len(seen) == 1
        await client.close()

    @pytest.mark.asyncio
    async def test_multipart_upload(self) -> None:
        """Test the single-request multipart upload."""
        seen: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_envelope(result={}))

        async with _client(handler) as client:
            await client.post_with_file("v1/scan", {}, io.BytesIO(b"bytes"), file_name="a.txt")
        content = seen[0].content
        assert b'name="request"' in content
        assert b'name="upload"; filename="a.txt"' in content


class TestAsyncFileUploader:
    """Test suite for AsyncFileUploader."""

    @pytest.mark.asyncio
    async def test_put(self) -> None:
        """Test a presigned PUT without auth."""
        seen: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200)

        config = PangeaConfig(token="pts_test", transport=httpx.MockTransport(handler))
        async with AsyncFileUploader(config) as uploader:
            await uploader.upload_file("https://storage.example.com/o", io.BytesIO(b"data"), TransferMethod.PUT_URL)
        assert seen[0].method == "PUT"
        assert seen[0].content == b"data"
        assert "Authorization" not in seen[0].headers

    @pytest.mark.asyncio
    async def test_post_form_order(self) -> None:
        """Test that form fields precede the file."""
        seen: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204)

        config = PangeaConfig(transport=httpx.MockTransport(handler))
        async with AsyncFileUploader(config) as uploader:
            await uploader.upload_file(
                "https://storage.example.com/o",
                io.BytesIO(b"data"),
                TransferMethod.POST_URL,
                {"key": "k", "policy": "p"},
            )
        content = seen[0].content
        assert content.index(b'name="key"') < content.index(b'name="policy"') < content.index(b'name="file"')

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self) -> None:
        """Test that a 429 from storage fails on the first attempt."""
        seen: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(429, headers={"Retry-After": "0"})

        config = PangeaConfig(transport=httpx.MockTransport(handler), retry_config=RetryConfig(max_retries=2))
        async with AsyncFileUploader(config) as uploader:
            with pytest.raises(PangeaTransportError):
                await uploader.upload_file("https://storage.example.com/o", io.BytesIO(b"data"), TransferMethod.PUT_URL)
        assert len(seen) == 1
