"""End-to-end flows through TransportClient against a mocked Pangea service."""

import io
import json
import os
from typing import List
from unittest import mock

import httpx
import pytest
from pydantic import BaseModel

from pangea import (
    PangeaAPIException,
    PangeaConfig,
    PangeaTimedOutError,
    RetryConfig,
    TransportClient,
    ValidationException,
    get_file_upload_params,
)


class RedactResult(BaseModel):
    redacted_text: str
    count: int


class Server:
    """Scripted replies keyed by (method, path); the last reply for a key repeats."""

    def __init__(self, routes) -> None:
        self.routes = {key: list(replies) for key, replies in routes.items()}
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        replies = self.routes[(request.method, request.url.host, request.url.path)]
        return replies.pop(0) if len(replies) > 1 else replies[0]


def _client(server: Server, service: str, **config) -> TransportClient:
    config.setdefault("retry_config", RetryConfig(max_retries=4))
    return TransportClient(service, PangeaConfig(token="pts_test", transport=httpx.MockTransport(server), **config))


def _env(status: str, result=None, request_id: str = "r1", **extra) -> dict:
    return {"request_id": request_id, "status": status, "summary": status, "result": result, **extra}


HOST = "redact.aws.us.pangea.cloud"


class TestScenarios:
    """Test suite for the core request flows."""

    def test_inline_success(self) -> None:
        """Test a 200 answered in-line: no retries, no polling."""
        result = {"redacted_text": "hello <PHONE_NUMBER>", "count": 1}
        server = Server({("POST", HOST, "/v1/redact"): [httpx.Response(200, json=_env("Success", result))]})
        with _client(server, "redact") as client:
            response = client.post("v1/redact", {"text": "hello 555-1212"}, RedactResult)

        assert response.result == RedactResult(**result)
        assert len(server.requests) == 1
        assert json.loads(server.requests[0].content) == {"text": "hello 555-1212"}

    def test_accepted_then_inline_poll(self) -> None:
        """Test a 202 resolved after three polls."""
        result = {"redacted_text": "done", "count": 0}
        server = Server(
            {
                ("POST", HOST, "/v1/redact"): [httpx.Response(202, json=_env("Accepted", {}))],
                ("GET", HOST, "/request/r1"): [
                    httpx.Response(202, json=_env("Accepted", {})),
                    httpx.Response(202, json=_env("Accepted", {})),
                    httpx.Response(200, json=_env("Success", result)),
                ],
            }
        )
        with _client(server, "redact") as client:
            with mock.patch("pangea.poller._wait"):
                response = client.post("v1/redact", {"text": "x"}, RedactResult)

        assert response.result.redacted_text == "done"
        assert response.request_id == "r1"
        assert sum(1 for r in server.requests if r.method == "GET") == 3

    def test_accepted_timeout_then_resume(self) -> None:
        """Test a timeout followed by a successful resume."""
        pending = httpx.Response(202, json=_env("Accepted", {}))
        server = Server(
            {
                ("POST", HOST, "/v1/redact"): [httpx.Response(202, json=_env("Accepted", {}))],
                ("GET", HOST, "/request/r1"): [pending],
            }
        )
        with _client(server, "redact", poll_result_timeout=5) as client:
            with mock.patch("pangea.poller._wait"):
                with pytest.raises(PangeaTimedOutError) as exc_info:
                    client.post("v1/redact", {"text": "x"}, RedactResult)
            assert exc_info.value.accepted_error.request_id == "r1"

            result = {"redacted_text": "late", "count": 2}
            server.routes[("GET", HOST, "/request/r1")] = [httpx.Response(200, json=_env("Success", result))]
            response = client.poll_result_by_accepted_error(exc_info.value)

        assert isinstance(response.result, RedactResult)
        assert response.result.count == 2

    def test_presigned_post_upload(self) -> None:
        """Test the post-url flow with a 1 MiB stream."""
        data = os.urandom(1024 * 1024)
        expected = get_file_upload_params(io.BytesIO(data))
        storage = "storage.example.com"
        server = Server(
            {
                ("POST", "sanitize.aws.us.pangea.cloud", "/v1/sanitize"): [
                    httpx.Response(
                        202,
                        json=_env("Accepted", {"post_url": f"https://{storage}/up", "post_form_data": {"k1": "v1"}}),
                    )
                ],
                ("POST", storage, "/up"): [httpx.Response(204)],
                ("GET", "sanitize.aws.us.pangea.cloud", "/request/r1"): [
                    httpx.Response(200, json=_env("Success", {"dest_url": "https://x/y"}))
                ],
            }
        )
        with _client(server, "sanitize") as client:
            with mock.patch("pangea.poller._wait"):
                response = client.post_with_file("v1/sanitize", {"transfer_method": "post-url"}, io.BytesIO(data))

        assert response.result == {"dest_url": "https://x/y"}
        first, upload, poll = server.requests
        assert json.loads(first.content) == {
            "transfer_method": "post-url",
            "sha256": expected.sha256,
            "crc32c": expected.crc32c,
            "size": 1024 * 1024,
        }
        assert upload.url.host == storage
        assert upload.content.index(b'name="k1"') < upload.content.index(b'name="file"')
        assert data in upload.content
        assert poll.url.path == "/request/r1"

    def test_multipart_response_saved(self, tmp_path) -> None:
        """Test a multipart GET whose attachment is saved byte for byte."""
        archive = os.urandom(4096)
        envelope = json.dumps(_env("Success", {"count": 1})).encode()
        body = (
            b"--xyz\r\n"
            b'Content-Disposition: form-data; name="pangea_json"\r\n'
            b"Content-Type: application/json\r\n\r\n" + envelope + b"\r\n"
            b"--xyz\r\n"
            b'Content-Disposition: form-data; name="file"; filename="archive.zip"\r\n'
            b"Content-Type: application/zip\r\n\r\n" + archive + b"\r\n"
            b"--xyz--\r\n"
        )
        headers = {"Content-Type": "multipart/form-data; boundary=xyz"}
        server = Server({("GET", "share.aws.us.pangea.cloud", "/v1/get_archive"): [httpx.Response(200, headers=headers, content=body)]})
        with _client(server, "share") as client:
            response = client.get("v1/get_archive", {"ids": "pos_1"})

        assert response.result == {"count": 1}
        assert [f.filename for f in response.attached_files] == ["archive.zip"]
        path = response.attached_files[0].save(str(tmp_path))
        with open(path, "rb") as f:
            assert f.read() == archive

    def test_validation_failure(self) -> None:
        """Test a 400 surfaced without retry, with structured errors."""
        errors = [{"source": "/field", "code": "BelowMinLength", "detail": "too short"}]
        server = Server(
            {("POST", HOST, "/v1/redact"): [httpx.Response(400, json=_env("ValidationError", None, errors=errors))]}
        )
        with _client(server, "redact") as client:
            with pytest.raises(PangeaAPIException) as exc_info:
                client.post("v1/redact", {"text": ""})

        error = exc_info.value
        assert isinstance(error, ValidationException)
        assert error.request_id == "r1"
        assert error.errors[0].source == "/field"
        assert error.errors[0].code == "BelowMinLength"
        assert len(server.requests) == 1
