"""Uploads to, and downloads from, presigned storage URLs.

Presigned URLs point at an object store, not at a Pangea service, so these
clients never send the Pangea token and keep their own connection pool.
Only transport failures and 5xx responses are retried; a 4xx (usually an
expired URL) fails on the first attempt.
"""

import logging
import threading
from typing import Any, BinaryIO, Dict, Mapping, Optional, Union

import httpx

from .config import PangeaConfig, get_user_agent
from .exceptions import PangeaTransportError, PangeaValidationError
from .hashing import get_file_size
from .multipart import header_param
from .response import AttachedFile, TransferMethod
from .retry import AsyncRetryer, Retryer, is_retryable_storage_response

DEFAULT_DOWNLOAD_FILENAME = "download_file"
UPLOAD_FILE_FIELD = "file"


def _check_transfer_method(transfer_method: TransferMethod) -> TransferMethod:
    transfer_method = TransferMethod(transfer_method)
    if transfer_method == TransferMethod.MULTIPART:
        raise PangeaValidationError(
            "multipart is not supported by the file uploader; send the file through the service client instead"
        )
    if transfer_method not in (TransferMethod.POST_URL, TransferMethod.PUT_URL):
        raise PangeaValidationError(f"{transfer_method.value} is not an upload transfer method")
    return transfer_method


def file_field_content(file: BinaryIO, offset: int) -> Union[BinaryIO, bytes]:
    """Content for a multipart file field, starting at ``offset``.

    httpx rewinds file objects in multipart bodies to byte 0, so a stream
    positioned mid-file is sent as the remaining bytes instead.
    """
    if offset == 0:
        return file
    return file.read()


def _host(url: str) -> str:
    # Presigned URLs carry credentials in the query string; only log the host.
    return httpx.URL(url).host


def _raise_for_upload_status(response: httpx.Response, action: str) -> None:
    if response.is_error:
        raise PangeaTransportError(
            f"{action} failed with HTTP {response.status_code}",
            {"status_code": response.status_code, "host": response.request.url.host, "body": response.text[:512]},
        )


def _attached_file_from(response: httpx.Response, url: str) -> AttachedFile:
    filename = None
    disposition = response.headers.get("content-disposition")
    if disposition:
        filename = header_param(disposition, "content-disposition", "filename")
    if not filename:
        filename = httpx.URL(url).path.rstrip("/").rsplit("/", 1)[-1] or DEFAULT_DOWNLOAD_FILENAME
    return AttachedFile(
        filename=filename,
        file=response.content,
        content_type=response.headers.get("content-type", "application/octet-stream"),
    )


class FileUploader:
    """Synchronous client for presigned upload and download URLs."""

    def __init__(self, config: Optional[PangeaConfig] = None, logger: Optional[logging.Logger] = None) -> None:
        """Initialize the uploader.

        Args:
            config: Supplies timeouts, retry policy and an optional transport.
                The token and additional headers are ignored.
            logger: Overrides ``config.logger``.
        """
        self._config = config or PangeaConfig()
        self._logger = logger or self._config.logger
        transport = self._config.transport if isinstance(self._config.transport, httpx.BaseTransport) else None
        self._http = httpx.Client(timeout=self._config.http_timeout, transport=transport)
        self._retryer = Retryer(self._config.retry_config, self._config.http_timeout, self._logger)

    def upload_file(
        self,
        url: str,
        file: BinaryIO,
        transfer_method: TransferMethod = TransferMethod.PUT_URL,
        file_details: Optional[Mapping[str, Any]] = None,
        file_name: str = "file",
        cancel: Optional[threading.Event] = None,
    ) -> None:
        """Send ``file`` to a presigned URL.

        ``post-url`` sends ``multipart/form-data`` with every entry of
        ``file_details`` before the ``file`` field; storage backends reject
        the form otherwise. ``put-url`` sends the raw bytes.

        The stream is rewound to its starting offset before each attempt and
        is never closed.

        Raises:
            PangeaValidationError: For ``multipart`` or a non-upload method.
            PangeaTransportError: If the storage backend rejected the upload.
        """
        transfer_method = _check_transfer_method(transfer_method)
        offset = file.tell()
        headers = {"User-Agent": get_user_agent(self._config)}
        form: Dict[str, str] = {k: str(v) for k, v in (file_details or {}).items()}

        def send() -> httpx.Response:
            file.seek(offset)
            if transfer_method == TransferMethod.POST_URL:
                content = file_field_content(file, offset)
                return self._http.post(
                    url,
                    headers=headers,
                    data=form,
                    files={UPLOAD_FILE_FIELD: (file_name, content, "application/octet-stream")},
                )
            # httpx measures file objects from byte 0.
            put_headers = {
                **headers,
                "Content-Type": "application/octet-stream",
                "Content-Length": str(get_file_size(file)),
            }
            return self._http.put(url, headers=put_headers, content=file)

        self._logger.info("Uploading %s via %s to %s", file_name, transfer_method.value, _host(url))
        response = self._retryer.call(
            send, idempotent=True, cancel=cancel, retry_response=is_retryable_storage_response
        )
        _raise_for_upload_status(response, "Upload")
        self._logger.debug("Upload to %s finished with HTTP %d", _host(url), response.status_code)

    def download_file(self, url: str, cancel: Optional[threading.Event] = None) -> AttachedFile:
        """Download ``url`` into an :class:`AttachedFile`.

        The filename comes from ``Content-Disposition``, then from the last
        segment of the URL path.
        """
        self._logger.info("Downloading file from %s", _host(url))
        headers = {"User-Agent": get_user_agent(self._config)}
        response = self._retryer.call(
            lambda: self._http.get(url, headers=headers),
            idempotent=True,
            cancel=cancel,
            retry_response=is_retryable_storage_response,
        )
        _raise_for_upload_status(response, "Download")
        return _attached_file_from(response, url)

    def close(self) -> None:
        """Close the HTTP client."""
        self._http.close()

    def __enter__(self) -> "FileUploader":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


class AsyncFileUploader:
    """Asynchronous client for presigned upload and download URLs."""

    def __init__(self, config: Optional[PangeaConfig] = None, logger: Optional[logging.Logger] = None) -> None:
        self._config = config or PangeaConfig()
        self._logger = logger or self._config.logger
        transport = self._config.transport if isinstance(self._config.transport, httpx.AsyncBaseTransport) else None
        self._http = httpx.AsyncClient(timeout=self._config.http_timeout, transport=transport)
        self._retryer = AsyncRetryer(self._config.retry_config, self._config.http_timeout, self._logger)

    async def upload_file(
        self,
        url: str,
        file: BinaryIO,
        transfer_method: TransferMethod = TransferMethod.PUT_URL,
        file_details: Optional[Mapping[str, Any]] = None,
        file_name: str = "file",
    ) -> None:
        """Send ``file`` to a presigned URL. See :meth:`FileUploader.upload_file`."""
        transfer_method = _check_transfer_method(transfer_method)
        offset = file.tell()
        headers = {"User-Agent": get_user_agent(self._config)}
        form: Dict[str, str] = {k: str(v) for k, v in (file_details or {}).items()}

        async def send() -> httpx.Response:
            file.seek(offset)
            if transfer_method == TransferMethod.POST_URL:
                return await self._http.post(
                    url,
                    headers=headers,
                    data=form,
                    files={UPLOAD_FILE_FIELD: (file_name, file_field_content(file, offset), "application/octet-stream")},
                )
            # AsyncClient cannot stream a blocking file object.
            return await self._http.put(
                url, headers={**headers, "Content-Type": "application/octet-stream"}, content=file.read()
            )

        self._logger.info("Uploading %s via %s to %s", file_name, transfer_method.value, _host(url))
        response = await self._retryer.call(send, idempotent=True, retry_response=is_retryable_storage_response)
        _raise_for_upload_status(response, "Upload")

    async def download_file(self, url: str) -> AttachedFile:
        self._logger.info("Downloading file from %s", _host(url))
        headers = {"User-Agent": get_user_agent(self._config)}

        async def send() -> httpx.Response:
            return await self._http.get(url, headers=headers)

        response = await self._retryer.call(send, idempotent=True, retry_response=is_retryable_storage_response)
        _raise_for_upload_status(response, "Download")
        return _attached_file_from(response, url)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._http.aclose()

    async def __aenter__(self) -> "AsyncFileUploader":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
