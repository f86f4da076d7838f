"""Async HTTP transport for Pangea services."""

import json
import logging
import uuid
from typing import Any, BinaryIO, Dict, List, Optional, Set, Type, TypeVar, Union

import httpx

from .config import PangeaConfig
from .endpoint import resolve_url
from .exceptions import AcceptedRequestException, PangeaTimedOutError, PangeaValidationError
from .poller import AsyncPoller
from .response import AttachedFile, PangeaResponse, TransferMethod
from .retry import AsyncRetryer
from .transport import (
    IDEMPOTENCY_KEY_HEADER,
    UPLOAD_PART_NAME,
    FileField,
    RequestData,
    _has_upload_params,
    _unwrap_accepted,
    build_headers,
    get_transfer_method,
    multipart_fields,
    parse_response,
    serialize_request,
    stream_offsets,
    with_upload_params,
)
from .uploader import AsyncFileUploader

T = TypeVar("T")


class AsyncTransportClient:
    """Async twin of :class:`pangea.transport.TransportClient`.

    Cancel a call by cancelling its task; ``asyncio.CancelledError``
    propagates and no further attempts or polls are made.

    Example:
        >>> async with AsyncTransportClient("redact", config) as transport:
        ...     response = await transport.post("v1/redact", {"text": "..."})
    """

    def __init__(self, service_name: str, config: PangeaConfig, logger: Optional[logging.Logger] = None) -> None:
        self.service_name = service_name
        self.config = config
        self.logger = logger or config.logger
        transport = config.transport if isinstance(config.transport, httpx.AsyncBaseTransport) else None
        self._http = httpx.AsyncClient(timeout=config.http_timeout, transport=transport)
        self._retryer = AsyncRetryer(config.retry_config, config.http_timeout, self.logger)
        self._poller = AsyncPoller(self._fetch_result, config.poll_result_timeout, self.logger)
        self._uploader: Optional[AsyncFileUploader] = None
        # Mutated only from the event loop thread.
        self._pending: Set[str] = set()

    @property
    def uploader(self) -> AsyncFileUploader:
        if self._uploader is None:
            self._uploader = AsyncFileUploader(self.config, self.logger)
        return self._uploader

    def url(self, path: str) -> str:
        return resolve_url(self.config, self.service_name, path)

    def pending_request_ids(self) -> List[str]:
        return sorted(self._pending)

    async def _send(
        self,
        method: str,
        path: str,
        *,
        body: Optional[Dict[str, Any]] = None,
        config_id: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
        files: Optional[List[FileField]] = None,
        idempotent: bool = False,
    ) -> httpx.Response:
        url = self.url(path)
        content_type = "application/json" if body is not None and not files else None
        headers = build_headers(self.config, self.service_name, config_id, content_type)
        if method == "POST" and idempotent:
            headers[IDEMPOTENCY_KEY_HEADER] = str(uuid.uuid4())

        self.logger.info("%s %s", method, url)
        self.logger.debug("%s %s body=%s params=%s", method, url, body, params)

        offsets = stream_offsets(files)
        content = json.dumps(body).encode("utf-8") if body is not None and not files else None

        async def send() -> httpx.Response:
            fields = multipart_fields(body, files, offsets) if files else None
            return await self._http.request(
                method, url, headers=headers, content=content, params=params, files=fields
            )

        response = await self._retryer.call(send, idempotent=method == "GET" or idempotent)
        self.logger.debug("%s %s -> HTTP %d", method, url, response.status_code)
        return response

    async def _handle(
        self, response: httpx.Response, result_class: Optional[Type[T]], poll_result: bool
    ) -> PangeaResponse[T]:
        try:
            return parse_response(response, result_class)
        except AcceptedRequestException as e:
            self._pending.add(e.request_id)
            if not (poll_result and self.config.queued_retry_enabled):
                raise
            return await self._poller.poll(e)

    async def _fetch_result(self, request_id: str, result_class: Optional[Type[T]]) -> PangeaResponse[T]:
        response = await self._send("GET", f"request/{request_id}")
        parsed = parse_response(response, result_class)
        self._pending.discard(request_id)
        return parsed

    async def post(
        self,
        path: str,
        data: RequestData = None,
        result_class: Optional[Type[T]] = dict,
        *,
        files: Optional[List[FileField]] = None,
        poll_result: bool = True,
        idempotent: bool = False,
    ) -> PangeaResponse[T]:
        """POST ``data`` to ``path``. See :meth:`TransportClient.post`."""
        body, config_id = serialize_request(data)
        response = await self._send("POST", path, body=body, config_id=config_id, files=files, idempotent=idempotent)
        return await self._handle(response, result_class, poll_result)

    async def get(
        self,
        path: str,
        query: RequestData = None,
        result_class: Optional[Type[T]] = dict,
        *,
        poll_result: bool = True,
    ) -> PangeaResponse[T]:
        params, config_id = serialize_request(query)
        response = await self._send("GET", path, params=params or None, config_id=config_id)
        return await self._handle(response, result_class, poll_result)

    async def poll_result_by_id(self, request_id: str, result_class: Optional[Type[T]] = dict) -> PangeaResponse[T]:
        return await self._fetch_result(request_id, result_class)

    async def poll_result_by_accepted_error(
        self, error: Union[AcceptedRequestException, PangeaTimedOutError]
    ) -> PangeaResponse[Any]:
        accepted = _unwrap_accepted(error)
        if not accepted.request_id:
            raise PangeaValidationError("Accepted error carries no request_id")
        return await self._fetch_result(accepted.request_id, accepted.result_class or dict)

    async def poll_result_raw(self, request_id: str) -> PangeaResponse[Dict[str, Any]]:
        return await self._fetch_result(request_id, dict)

    async def request_upload_url(
        self, path: str, data: RequestData, result_class: Optional[Type[T]] = dict
    ) -> PangeaResponse[T]:
        """Ask the service for a presigned upload URL. See :meth:`TransportClient.request_upload_url`."""
        transfer_method = get_transfer_method(data)
        if transfer_method not in (TransferMethod.POST_URL, TransferMethod.PUT_URL):
            raise PangeaValidationError(
                f"request_upload_url needs transfer_method post-url or put-url, got {transfer_method}"
            )
        if transfer_method == TransferMethod.POST_URL and not _has_upload_params(data):
            raise PangeaValidationError("post-url uploads need sha256, crc32c and size; see get_file_upload_params()")

        try:
            return await self.post(path, data, result_class, poll_result=False)
        except AcceptedRequestException as e:
            if e.upload_url:
                return e.response
            return await self._poller.poll(e, ready=lambda pending: bool(pending.upload_url))

    async def post_with_file(
        self,
        path: str,
        data: RequestData,
        file: BinaryIO,
        result_class: Optional[Type[T]] = dict,
        file_name: str = "file",
    ) -> PangeaResponse[T]:
        """Send a request together with a file. See :meth:`TransportClient.post_with_file`."""
        transfer_method = get_transfer_method(data) or TransferMethod.MULTIPART

        if transfer_method == TransferMethod.MULTIPART:
            upload: FileField = (UPLOAD_PART_NAME, (file_name, file, "application/octet-stream"))
            return await self.post(path, data, result_class, files=[upload])

        if transfer_method == TransferMethod.POST_URL:
            data = with_upload_params(data, file)
            accepted = await self.request_upload_url(path, data, result_class)
            if accepted.accepted_result is None or not accepted.accepted_result.post_url:
                return accepted
            await self.uploader.upload_file(
                accepted.accepted_result.post_url,
                file,
                TransferMethod.POST_URL,
                accepted.accepted_result.post_form_data,
                file_name,
            )
            pending = AcceptedRequestException(accepted, result_class)
            if not self.config.queued_retry_enabled:
                raise pending
            return await self._poller.poll(pending)

        raise PangeaValidationError(
            f"post_with_file does not support transfer_method {transfer_method.value}; "
            "use request_upload_url() and AsyncFileUploader for put-url"
        )

    async def download_file(self, url: str) -> AttachedFile:
        return await self.uploader.download_file(url)

    async def close(self) -> None:
        """Close the HTTP clients."""
        await self._http.aclose()
        if self._uploader is not None:
            await self._uploader.close()

    async def __aenter__(self) -> "AsyncTransportClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
