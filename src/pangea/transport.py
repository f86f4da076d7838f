"""HTTP transport for Pangea services.

:class:`TransportClient` builds authenticated requests, runs them through
the retry policy, parses the response envelope and, when the service answers
HTTP 202, polls for the final result. The module-level helpers are shared
with :mod:`pangea.async_transport`.
"""

import json
import logging
import re
import threading
import uuid
from typing import Any, BinaryIO, Dict, List, Mapping, Optional, Set, Tuple, Type, TypeVar, Union

import httpx
from pydantic import ValidationError

from .config import PangeaConfig, get_user_agent
from .endpoint import resolve_url
from .exceptions import (
    AcceptedRequestException,
    PangeaProtocolError,
    PangeaTimedOutError,
    PangeaValidationError,
    api_exception_for,
)
from .hashing import get_file_upload_params
from .multipart import is_multipart, parse_multipart_response
from .poller import Poller
from .response import (
    AcceptedResult,
    APIRequestModel,
    AttachedFile,
    PangeaResponse,
    ResponseHeader,
    ResponseStatus,
    TransferMethod,
    decode_result,
)
from .retry import Retryer
from .uploader import FileUploader, file_field_content

T = TypeVar("T")

RequestData = Union[APIRequestModel, Mapping[str, Any], None]
FileField = Tuple[str, Tuple[Optional[str], Any, str]]

REQUEST_PART_NAME = "request"
UPLOAD_PART_NAME = "upload"
IDEMPOTENCY_KEY_HEADER = "Idempotency-Key"


def config_id_header_name(service: str) -> str:
    """``file-scan`` -> ``X-Pangea-File-Scan-Config-ID``."""
    words = [w.capitalize() for w in re.split(r"[-_.]", service) if w]
    return f"X-Pangea-{'-'.join(words)}-Config-ID"


def build_headers(
    config: PangeaConfig,
    service: str,
    config_id: Optional[str] = None,
    content_type: Optional[str] = None,
) -> httpx.Headers:
    """Headers for a request to a Pangea service.

    Additional headers from the config are merged last and never replace a
    header the SDK already set.
    """
    headers = httpx.Headers({"User-Agent": get_user_agent(config)})
    if config.token:
        headers["Authorization"] = f"Bearer {config.token}"
    if content_type:
        headers["Content-Type"] = content_type
    config_id = config_id or config.config_id
    if config_id:
        headers[config_id_header_name(service)] = config_id
    for name, value in config.additional_headers.items():
        if name not in headers:
            headers[name] = value
    return headers


def _drop_none(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _drop_none(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [_drop_none(v) for v in value]
    return value


def serialize_request(data: RequestData) -> Tuple[Dict[str, Any], Optional[str]]:
    """Turn a request into a JSON-ready dict with ``None`` fields removed.

    Returns:
        The body and the ``config_id`` lifted out of it.
    """
    if data is None:
        return {}, None
    if isinstance(data, APIRequestModel):
        body = data.model_dump(mode="json", exclude_none=True, by_alias=True)
    else:
        body = _drop_none(dict(data))
    config_id = body.pop("config_id", None)
    return body, config_id


def get_transfer_method(data: RequestData) -> Optional[TransferMethod]:
    if data is None:
        return None
    value = data.get("transfer_method") if isinstance(data, Mapping) else getattr(data, "transfer_method", None)
    if value is None:
        return None
    try:
        return TransferMethod(value)
    except ValueError:
        raise PangeaValidationError(f"Unknown transfer method: {value!r}") from None


def _has_upload_params(data: RequestData) -> bool:
    body, _ = serialize_request(data)
    return all(body.get(key) is not None for key in ("sha256", "crc32c", "size"))


def with_upload_params(data: RequestData, file: BinaryIO) -> RequestData:
    """Return ``data`` with ``sha256``, ``crc32c`` and ``size`` filled from ``file`` if missing."""
    if _has_upload_params(data):
        return data
    params = get_file_upload_params(file).model_dump()
    if isinstance(data, APIRequestModel):
        return data.model_copy(update=params)
    return {**dict(data or {}), **params}


def stream_offsets(files: Optional[List[FileField]]) -> List[Optional[int]]:
    """Starting offset of every seekable file object in ``files``."""
    return [f[1][1].tell() if hasattr(f[1][1], "seek") else None for f in files or []]


def multipart_fields(
    body: Optional[Dict[str, Any]], files: List[FileField], offsets: List[Optional[int]]
) -> List[FileField]:
    """JSON ``request`` part followed by ``files``, each rewound to its starting offset."""
    fields: List[FileField] = [(REQUEST_PART_NAME, (None, json.dumps(body or {}), "application/json"))]
    for (name, (filename, fileobj, content_type)), offset in zip(files, offsets):
        if offset is not None:
            fileobj.seek(offset)
            fileobj = file_field_content(fileobj, offset)
        fields.append((name, (filename, fileobj, content_type)))
    return fields


def _load_json(body: bytes, status_code: int) -> Dict[str, Any]:
    try:
        envelope = json.loads(body)
    except ValueError as e:
        raise PangeaProtocolError(f"Response body is not valid JSON: {e}", body, status_code) from e
    if not isinstance(envelope, dict):
        raise PangeaProtocolError("Response body is not a JSON object", body, status_code)
    return envelope


def _error_fields(envelope: Dict[str, Any]) -> List[Any]:
    errors = envelope.get("errors")
    result = envelope.get("result")
    if errors is None and isinstance(result, dict):
        errors = result.get("errors")
    return errors if isinstance(errors, list) else []


def parse_response(response: httpx.Response, result_class: Optional[Type[T]] = dict) -> PangeaResponse[T]:
    """Parse an HTTP response into a :class:`PangeaResponse` and dispatch on status.

    Raises:
        AcceptedRequestException: On HTTP 202 / status ``Accepted``.
        PangeaAPIException: A typed subclass for any non-success status.
        PangeaProtocolError: If the body or envelope is malformed.
    """
    content_type = response.headers.get("content-type")
    attached_files: List[AttachedFile] = []
    body = response.content
    if is_multipart(content_type):
        body, attached_files = parse_multipart_response(content_type, body)

    envelope = _load_json(body, response.status_code)
    try:
        header = ResponseHeader.model_validate(envelope)
        raw_result = envelope.get("result")
        accepted = response.status_code == 202 or header.status == ResponseStatus.ACCEPTED.value
        parsed: PangeaResponse[Any] = PangeaResponse(
            **header.model_dump(),
            raw_result=raw_result,
            accepted_result=AcceptedResult.model_validate(raw_result) if accepted and isinstance(raw_result, dict) else None,
            errors=_error_fields(envelope),
            status_code=response.status_code,
            attached_files=attached_files,
        )
    except ValidationError as e:
        raise PangeaProtocolError(f"Malformed response envelope: {e}", body, response.status_code) from e

    if accepted:
        raise AcceptedRequestException(parsed, result_class)
    if not parsed.success:
        raise api_exception_for(parsed)

    try:
        parsed.result = decode_result(result_class, raw_result)
    except ValidationError as e:
        raise PangeaProtocolError(
            f"Result does not match {getattr(result_class, '__name__', result_class)}: {e}",
            body,
            response.status_code,
        ) from e
    return parsed


def _unwrap_accepted(error: Union[AcceptedRequestException, PangeaTimedOutError]) -> AcceptedRequestException:
    if isinstance(error, PangeaTimedOutError):
        return error.accepted_error
    return error


class TransportClient:
    """Synchronous HTTP client for one Pangea service.

    Safe to share between threads: the config is immutable and ``httpx.Client``
    pools connections across calls.
    """

    def __init__(self, service_name: str, config: PangeaConfig, logger: Optional[logging.Logger] = None) -> None:
        """Initialize the transport.

        Args:
            service_name: Service name used for URLs and config-id headers.
            config: Client configuration.
            logger: Overrides ``config.logger``.
        """
        self.service_name = service_name
        self.config = config
        self.logger = logger or config.logger
        transport = config.transport if isinstance(config.transport, httpx.BaseTransport) else None
        self._http = httpx.Client(timeout=config.http_timeout, transport=transport)
        self._retryer = Retryer(config.retry_config, config.http_timeout, self.logger)
        self._poller = Poller(self._fetch_result, config.poll_result_timeout, self.logger)
        self._uploader: Optional[FileUploader] = None
        self._pending: Set[str] = set()
        self._pending_lock = threading.Lock()

    @property
    def uploader(self) -> FileUploader:
        """Uploader for presigned URLs, created on first use."""
        if self._uploader is None:
            self._uploader = FileUploader(self.config, self.logger)
        return self._uploader

    def url(self, path: str) -> str:
        return resolve_url(self.config, self.service_name, path)

    def pending_request_ids(self) -> List[str]:
        """Request ids that answered 202 and have not been resolved yet."""
        with self._pending_lock:
            return sorted(self._pending)

    def _add_pending(self, request_id: str) -> None:
        with self._pending_lock:
            self._pending.add(request_id)

    def _remove_pending(self, request_id: str) -> None:
        with self._pending_lock:
            self._pending.discard(request_id)

    def _send(
        self,
        method: str,
        path: str,
        *,
        body: Optional[Dict[str, Any]] = None,
        config_id: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
        files: Optional[List[FileField]] = None,
        idempotent: bool = False,
        cancel: Optional[threading.Event] = None,
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

        def send() -> httpx.Response:
            fields = multipart_fields(body, files, offsets) if files else None
            return self._http.request(method, url, headers=headers, content=content, params=params, files=fields)

        response = self._retryer.call(send, idempotent=method == "GET" or idempotent, cancel=cancel)
        self.logger.debug("%s %s -> HTTP %d", method, url, response.status_code)
        return response

    def _handle(
        self,
        response: httpx.Response,
        result_class: Optional[Type[T]],
        poll_result: bool,
        cancel: Optional[threading.Event],
    ) -> PangeaResponse[T]:
        try:
            return parse_response(response, result_class)
        except AcceptedRequestException as e:
            self._add_pending(e.request_id)
            if not (poll_result and self.config.queued_retry_enabled):
                raise
            return self._poller.poll(e, cancel)

    def _fetch_result(
        self, request_id: str, result_class: Optional[Type[T]], cancel: Optional[threading.Event] = None
    ) -> PangeaResponse[T]:
        response = self._send("GET", f"request/{request_id}", cancel=cancel)
        parsed = parse_response(response, result_class)
        self._remove_pending(request_id)
        return parsed

    def post(
        self,
        path: str,
        data: RequestData = None,
        result_class: Optional[Type[T]] = dict,
        *,
        files: Optional[List[FileField]] = None,
        poll_result: bool = True,
        idempotent: bool = False,
        cancel: Optional[threading.Event] = None,
    ) -> PangeaResponse[T]:
        """POST ``data`` to ``path`` and decode the result into ``result_class``.

        Args:
            path: Path relative to the service base URL, e.g. ``v1/redact``.
            data: Request model or mapping; ``None`` fields are omitted.
            result_class: Type the ``result`` field is decoded into.
            files: Extra multipart file fields. When given, the JSON body is
                sent as a part named ``request``.
            poll_result: Set to False to surface a 202 even when in-line
                polling is enabled in the config.
            idempotent: The endpoint is safe to repeat; sends an
                ``Idempotency-Key`` and allows retries after the server may
                have received the request.
            cancel: Optional event that aborts retries and polling.

        Raises:
            AcceptedRequestException: On 202 when polling is disabled.
            PangeaTimedOutError: When polling exhausted ``poll_result_timeout``.
            PangeaAPIException: On any non-success envelope.
            PangeaTransportError: When the HTTP exchange failed.
        """
        body, config_id = serialize_request(data)
        response = self._send(
            "POST", path, body=body, config_id=config_id, files=files, idempotent=idempotent, cancel=cancel
        )
        return self._handle(response, result_class, poll_result, cancel)

    def get(
        self,
        path: str,
        query: RequestData = None,
        result_class: Optional[Type[T]] = dict,
        *,
        poll_result: bool = True,
        cancel: Optional[threading.Event] = None,
    ) -> PangeaResponse[T]:
        """GET ``path`` with ``query`` as URL parameters."""
        params, config_id = serialize_request(query)
        response = self._send("GET", path, params=params or None, config_id=config_id, cancel=cancel)
        return self._handle(response, result_class, poll_result, cancel)

    def poll_result_by_id(
        self,
        request_id: str,
        result_class: Optional[Type[T]] = dict,
        cancel: Optional[threading.Event] = None,
    ) -> PangeaResponse[T]:
        """Fetch the result of an accepted request once.

        Raises:
            AcceptedRequestException: If the result is still not ready.
        """
        return self._fetch_result(request_id, result_class, cancel)

    def poll_result_by_accepted_error(
        self,
        error: Union[AcceptedRequestException, PangeaTimedOutError],
        cancel: Optional[threading.Event] = None,
    ) -> PangeaResponse[Any]:
        """Fetch the result for a 202 previously raised to the caller."""
        accepted = _unwrap_accepted(error)
        if not accepted.request_id:
            raise PangeaValidationError("Accepted error carries no request_id")
        return self._fetch_result(accepted.request_id, accepted.result_class or dict, cancel)

    def poll_result_raw(self, request_id: str, cancel: Optional[threading.Event] = None) -> PangeaResponse[Dict[str, Any]]:
        """Fetch the result of an accepted request as a plain mapping."""
        return self._fetch_result(request_id, dict, cancel)

    def request_upload_url(
        self,
        path: str,
        data: RequestData,
        result_class: Optional[Type[T]] = dict,
        cancel: Optional[threading.Event] = None,
    ) -> PangeaResponse[T]:
        """Ask the service for a presigned upload URL.

        ``data.transfer_method`` must be ``post-url`` (with ``sha256``,
        ``crc32c`` and ``size`` set) or ``put-url``. Returns the 202 envelope
        whose ``accepted_result`` carries the URL.
        """
        transfer_method = get_transfer_method(data)
        if transfer_method not in (TransferMethod.POST_URL, TransferMethod.PUT_URL):
            raise PangeaValidationError(
                f"request_upload_url needs transfer_method post-url or put-url, got {transfer_method}"
            )
        if transfer_method == TransferMethod.POST_URL and not _has_upload_params(data):
            raise PangeaValidationError("post-url uploads need sha256, crc32c and size; see get_file_upload_params()")

        try:
            return self.post(path, data, result_class, poll_result=False, cancel=cancel)
        except AcceptedRequestException as e:
            if e.upload_url:
                return e.response
            return self._poller.poll(e, cancel, ready=lambda pending: bool(pending.upload_url))

    def post_with_file(
        self,
        path: str,
        data: RequestData,
        file: BinaryIO,
        result_class: Optional[Type[T]] = dict,
        file_name: str = "file",
        cancel: Optional[threading.Event] = None,
    ) -> PangeaResponse[T]:
        """Send a request together with a file.

        ``multipart`` (the default) sends both in one request. ``post-url``
        hashes the file when needed, requests a presigned URL, uploads to it
        and then waits for the result.

        Raises:
            PangeaValidationError: For transfer methods this entry point
                does not drive (``put-url``, ``source-url``, ``dest-url``).
        """
        transfer_method = get_transfer_method(data) or TransferMethod.MULTIPART

        if transfer_method == TransferMethod.MULTIPART:
            upload: FileField = (UPLOAD_PART_NAME, (file_name, file, "application/octet-stream"))
            return self.post(path, data, result_class, files=[upload], cancel=cancel)

        if transfer_method == TransferMethod.POST_URL:
            data = with_upload_params(data, file)
            accepted = self.request_upload_url(path, data, result_class, cancel)
            if accepted.accepted_result is None or not accepted.accepted_result.post_url:
                return accepted
            self.uploader.upload_file(
                accepted.accepted_result.post_url,
                file,
                TransferMethod.POST_URL,
                accepted.accepted_result.post_form_data,
                file_name,
                cancel,
            )
            pending = AcceptedRequestException(accepted, result_class)
            if not self.config.queued_retry_enabled:
                raise pending
            return self._poller.poll(pending, cancel)

        raise PangeaValidationError(
            f"post_with_file does not support transfer_method {transfer_method.value}; "
            "use request_upload_url() and FileUploader for put-url"
        )

    def download_file(self, url: str, cancel: Optional[threading.Event] = None) -> AttachedFile:
        """Download a file the service stored at a presigned URL."""
        return self.uploader.download_file(url, cancel)

    def close(self) -> None:
        """Close the HTTP clients."""
        self._http.close()
        if self._uploader is not None:
            self._uploader.close()

    def __enter__(self) -> "TransportClient":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
