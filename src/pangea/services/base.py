"""Thin base classes every Pangea service client derives from.

A service subclass only sets :attr:`service_name` and calls :meth:`post` or
:meth:`get` with its paths and models::

    class Redact(ServiceBase):
        service_name = "redact"

        def redact(self, text: str) -> PangeaResponse[RedactResult]:
            return self.post("v1/redact", RedactRequest(text=text), RedactResult)
"""

import logging
import threading
from typing import Any, BinaryIO, Dict, List, Optional, Type, TypeVar, Union

from ..async_transport import AsyncTransportClient
from ..config import PangeaConfig, with_config_id, with_token
from ..exceptions import AcceptedRequestException, PangeaConfigError, PangeaTimedOutError
from ..response import AttachedFile, PangeaResponse
from ..transport import FileField, RequestData, TransportClient

T = TypeVar("T")


def _service_config(
    service_name: str,
    token: Optional[str],
    config: Optional[PangeaConfig],
    config_id: Optional[str],
) -> PangeaConfig:
    if not service_name:
        raise PangeaConfigError("service_name must be set on the service class")
    config = config or PangeaConfig()
    options = []
    if token is not None:
        options.append(with_token(token))
    if config_id is not None:
        options.append(with_config_id(config_id))
    return config.with_options(*options) if options else config


class ServiceBase:
    """Base for synchronous service clients.

    Attributes:
        service_name: Service identifier, e.g. ``"file-scan"``. Used as the
            host prefix and in the config-id header name.
    """

    service_name: str = ""

    def __init__(
        self,
        token: Optional[str] = None,
        config: Optional[PangeaConfig] = None,
        config_id: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        """Initialize the service client.

        Args:
            token: Pangea API token. Overrides ``config.token``.
            config: Client configuration; defaults to :class:`PangeaConfig()`.
            config_id: Service config id. Overrides ``config.config_id``.
            logger: Overrides ``config.logger``.
        """
        self.config = _service_config(self.service_name, token, config, config_id)
        self.logger = logger or self.config.logger
        self.request = TransportClient(self.service_name, self.config, self.logger)

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
        return self.request.post(
            path, data, result_class, files=files, poll_result=poll_result, idempotent=idempotent, cancel=cancel
        )

    def get(
        self,
        path: str,
        query: RequestData = None,
        result_class: Optional[Type[T]] = dict,
        *,
        poll_result: bool = True,
        cancel: Optional[threading.Event] = None,
    ) -> PangeaResponse[T]:
        return self.request.get(path, query, result_class, poll_result=poll_result, cancel=cancel)

    def post_with_file(
        self,
        path: str,
        data: RequestData,
        file: BinaryIO,
        result_class: Optional[Type[T]] = dict,
        file_name: str = "file",
        cancel: Optional[threading.Event] = None,
    ) -> PangeaResponse[T]:
        return self.request.post_with_file(path, data, file, result_class, file_name, cancel)

    def request_upload_url(
        self,
        path: str,
        data: RequestData,
        result_class: Optional[Type[T]] = dict,
        cancel: Optional[threading.Event] = None,
    ) -> PangeaResponse[T]:
        return self.request.request_upload_url(path, data, result_class, cancel)

    def poll_result(
        self,
        error: Union[AcceptedRequestException, PangeaTimedOutError],
        cancel: Optional[threading.Event] = None,
    ) -> PangeaResponse[Any]:
        """Fetch the result for a 202 this service raised earlier."""
        return self.request.poll_result_by_accepted_error(error, cancel)

    def poll_result_by_id(
        self, request_id: str, result_class: Optional[Type[T]] = dict, cancel: Optional[threading.Event] = None
    ) -> PangeaResponse[T]:
        return self.request.poll_result_by_id(request_id, result_class, cancel)

    def poll_result_raw(
        self, request_id: str, cancel: Optional[threading.Event] = None
    ) -> PangeaResponse[Dict[str, Any]]:
        return self.request.poll_result_raw(request_id, cancel)

    def pending_request_ids(self) -> List[str]:
        return self.request.pending_request_ids()

    def download_file(self, url: str, cancel: Optional[threading.Event] = None) -> AttachedFile:
        return self.request.download_file(url, cancel)

    def close(self) -> None:
        self.request.close()

    def __enter__(self) -> "ServiceBase":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


class AsyncServiceBase:
    """Async twin of :class:`ServiceBase`."""

    service_name: str = ""

    def __init__(
        self,
        token: Optional[str] = None,
        config: Optional[PangeaConfig] = None,
        config_id: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = _service_config(self.service_name, token, config, config_id)
        self.logger = logger or self.config.logger
        self.request = AsyncTransportClient(self.service_name, self.config, self.logger)

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
        return await self.request.post(
            path, data, result_class, files=files, poll_result=poll_result, idempotent=idempotent
        )

    async def get(
        self,
        path: str,
        query: RequestData = None,
        result_class: Optional[Type[T]] = dict,
        *,
        poll_result: bool = True,
    ) -> PangeaResponse[T]:
        return await self.request.get(path, query, result_class, poll_result=poll_result)

    async def post_with_file(
        self,
        path: str,
        data: RequestData,
        file: BinaryIO,
        result_class: Optional[Type[T]] = dict,
        file_name: str = "file",
    ) -> PangeaResponse[T]:
        return await self.request.post_with_file(path, data, file, result_class, file_name)

    async def request_upload_url(
        self, path: str, data: RequestData, result_class: Optional[Type[T]] = dict
    ) -> PangeaResponse[T]:
        return await self.request.request_upload_url(path, data, result_class)

    async def poll_result(self, error: Union[AcceptedRequestException, PangeaTimedOutError]) -> PangeaResponse[Any]:
        return await self.request.poll_result_by_accepted_error(error)

    async def poll_result_by_id(self, request_id: str, result_class: Optional[Type[T]] = dict) -> PangeaResponse[T]:
        return await self.request.poll_result_by_id(request_id, result_class)

    async def poll_result_raw(self, request_id: str) -> PangeaResponse[Dict[str, Any]]:
        return await self.request.poll_result_raw(request_id)

    def pending_request_ids(self) -> List[str]:
        return self.request.pending_request_ids()

    async def download_file(self, url: str) -> AttachedFile:
        return await self.request.download_file(url)

    async def close(self) -> None:
        await self.request.close()

    async def __aenter__(self) -> "AsyncServiceBase":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
