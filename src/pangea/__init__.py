"""Pangea SDK core - shared runtime for Pangea service clients.

The core turns typed requests into authenticated HTTP calls, retries
transient failures, waits for long-running (HTTP 202) requests, uploads
files through presigned URLs and decodes the response envelope into typed
results.

Quick Start:
    >>> from pangea import PangeaConfig, ServiceBase
    >>> class Redact(ServiceBase):
    ...     service_name = "redact"
    >>> redact = Redact(token="pts_...", config=PangeaConfig(domain="aws.us.pangea.cloud"))
    >>> response = redact.post("v1/redact", {"text": "Jenny Jenny... 555-867-5309"})
    >>> response.result["redacted_text"]

Option functions:
    >>> from pangea import new_config, with_domain, with_poll_result_timeout
    >>> config = new_config(with_domain("aws.us.pangea.cloud"), with_poll_result_timeout(60))

Async:
    >>> async with AsyncRedact(token="pts_...") as redact:
    ...     response = await redact.post("v1/redact", {"text": "..."})

Long-running requests:
    - queued_retry_enabled=True (default): 202 responses are polled in-line
    - queued_retry_enabled=False: AcceptedRequestException is raised and can
      be resumed later with poll_result()
"""

from ._version import __version__, __version_info__
from .async_transport import AsyncTransportClient
from .config import (
    DEFAULT_DOMAIN,
    DEFAULT_HTTP_TIMEOUT,
    DEFAULT_POLL_RESULT_TIMEOUT,
    Environment,
    PangeaConfig,
    RetryConfig,
    get_user_agent,
    new_config,
    with_additional_headers,
    with_base_url_template,
    with_config_id,
    with_domain,
    with_environment,
    with_http_timeout,
    with_insecure,
    with_logger,
    with_poll_result_timeout,
    with_queued_retry_enabled,
    with_retries,
    with_retries_disabled,
    with_retry_config,
    with_token,
    with_transport,
    with_user_agent,
)
from .endpoint import base_url, resolve_url
from .exceptions import (
    AcceptedRequestException,
    InternalServerError,
    NoCreditException,
    NotFound,
    PangeaAPIException,
    PangeaCancelledError,
    PangeaConfigError,
    PangeaException,
    PangeaProtocolError,
    PangeaTimedOutError,
    PangeaTransportError,
    PangeaValidationError,
    PermissionDeniedException,
    ProviderErrorException,
    RateLimitException,
    ServiceNotAvailableException,
    ServiceNotEnabledException,
    UnauthorizedException,
    ValidationException,
)
from .hashing import FileUploadParams, get_file_size, get_file_upload_params
from .response import (
    AcceptedResult,
    APIRequestModel,
    AttachedFile,
    ErrorField,
    PangeaResponse,
    ResponseStatus,
    TransferMethod,
    TransferRequest,
)
from .services import AsyncServiceBase, ServiceBase
from .transport import TransportClient
from .uploader import AsyncFileUploader, FileUploader

__all__ = [
    # Service base classes
    "ServiceBase",
    "AsyncServiceBase",
    # Low-level clients
    "TransportClient",
    "AsyncTransportClient",
    "FileUploader",
    "AsyncFileUploader",
    # Configuration
    "PangeaConfig",
    "RetryConfig",
    "Environment",
    "new_config",
    "with_token",
    "with_domain",
    "with_base_url_template",
    "with_insecure",
    "with_environment",
    "with_http_timeout",
    "with_retries",
    "with_retries_disabled",
    "with_retry_config",
    "with_queued_retry_enabled",
    "with_poll_result_timeout",
    "with_additional_headers",
    "with_user_agent",
    "with_config_id",
    "with_transport",
    "with_logger",
    "get_user_agent",
    "base_url",
    "resolve_url",
    "DEFAULT_DOMAIN",
    "DEFAULT_HTTP_TIMEOUT",
    "DEFAULT_POLL_RESULT_TIMEOUT",
    # Models
    "PangeaResponse",
    "APIRequestModel",
    "TransferRequest",
    "TransferMethod",
    "AcceptedResult",
    "AttachedFile",
    "ErrorField",
    "ResponseStatus",
    # Files
    "FileUploadParams",
    "get_file_upload_params",
    "get_file_size",
    # Exceptions
    "PangeaException",
    "PangeaConfigError",
    "PangeaTransportError",
    "PangeaProtocolError",
    "PangeaValidationError",
    "PangeaCancelledError",
    "PangeaTimedOutError",
    "AcceptedRequestException",
    "PangeaAPIException",
    "ValidationException",
    "PermissionDeniedException",
    "NotFound",
    "UnauthorizedException",
    "InternalServerError",
    "ServiceNotEnabledException",
    "ServiceNotAvailableException",
    "ProviderErrorException",
    "RateLimitException",
    "NoCreditException",
    # Version
    "__version__",
    "__version_info__",
]
