"""Custom exceptions for the Pangea SDK."""

from typing import TYPE_CHECKING, Any, Dict, List, Optional, Type

if TYPE_CHECKING:
    from .response import AcceptedResult, ErrorField, PangeaResponse


class PangeaException(Exception):
    """Base exception for all Pangea SDK errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class PangeaConfigError(PangeaException):
    """Raised when a configuration value is invalid or inconsistent."""

    pass


class PangeaTransportError(PangeaException):
    """Raised when the HTTP exchange itself fails.

    This covers connect and TLS failures, timeouts, and connections dropped
    before a response arrived, once the retry budget is spent. The original
    ``httpx`` exception is chained as ``__cause__``.
    """

    pass


class PangeaProtocolError(PangeaException):
    """Raised when a response cannot be understood.

    This exception is raised when:
    - The body is not valid JSON
    - The envelope lacks ``status`` or ``request_id``
    - A multipart response has no boundary or no JSON part

    Attributes:
        body: The raw bytes that failed to parse (may be truncated in ``details``).
        status_code: The HTTP status code of the offending response.
    """

    def __init__(self, message: str, body: bytes = b"", status_code: Optional[int] = None) -> None:
        super().__init__(message, {"status_code": status_code, "body": body[:512].decode("utf-8", "replace")})
        self.body = body
        self.status_code = status_code


class PangeaValidationError(PangeaException):
    """Raised before any request is sent when the call itself is invalid.

    For example a presigned POST upload without hash and size, or a transfer
    method that the chosen entry point does not support.
    """

    pass


class PangeaCancelledError(PangeaException):
    """Raised when the caller cancelled an in-progress call."""

    def __init__(self, message: str = "Request cancelled by caller") -> None:
        super().__init__(message)


class AcceptedRequestException(PangeaException):
    """Raised when the service answered HTTP 202 and the result is not ready yet.

    It carries what is needed to resume later with
    ``poll_result_by_accepted_error`` and, for split uploads, the presigned
    URL to send the file to.

    Attributes:
        request_id: Identifier to poll with.
        accepted_result: Upload metadata from the 202 body, if any.
        response: The parsed 202 envelope.
        result_class: Model the final result should be decoded into.
    """

    def __init__(
        self,
        response: "PangeaResponse[Any]",
        result_class: Optional[Type[Any]] = None,
    ) -> None:
        request_id = response.request_id
        super().__init__(
            f"Request scheduled on Pangea side: please check the status of request {request_id} later",
            {"request_id": request_id, "status": response.status},
        )
        self.response = response
        self.request_id = request_id
        self.accepted_result: Optional["AcceptedResult"] = response.accepted_result
        self.result_class = result_class

    @property
    def upload_url(self) -> Optional[str]:
        """Presigned POST or PUT URL carried by this 202, if any."""
        if self.accepted_result is None:
            return None
        return self.accepted_result.post_url or self.accepted_result.put_url


class PangeaTimedOutError(PangeaException):
    """Raised when a 202 did not resolve within ``poll_result_timeout``.

    The latest :class:`AcceptedRequestException` is kept so the caller can
    resume with ``poll_result_by_accepted_error`` or ``poll_result_by_id``.
    """

    def __init__(self, accepted_error: AcceptedRequestException, elapsed: float) -> None:
        super().__init__(
            f"Result for request {accepted_error.request_id} was not ready after {elapsed:.1f}s",
            {"request_id": accepted_error.request_id, "elapsed": elapsed},
        )
        self.accepted_error = accepted_error
        self.request_id = accepted_error.request_id


class PangeaAPIException(PangeaException):
    """Raised when the service returned a non-success envelope.

    Attributes:
        response: The parsed envelope.
        status: Envelope status string, e.g. ``"ValidationError"``.
        summary: Human readable summary from the service.
        request_id: Identifier of the failed request.
        errors: Structured field errors, possibly empty.
        status_code: HTTP status code.
    """

    def __init__(self, message: str, response: "PangeaResponse[Any]") -> None:
        self.response = response
        self.status = response.status
        self.summary = response.summary
        self.request_id = response.request_id
        self.status_code = response.status_code
        self.errors: List["ErrorField"] = response.errors
        super().__init__(
            message,
            {
                "request_id": self.request_id,
                "status": self.status,
                "status_code": self.status_code,
                "errors": [e.model_dump(exclude_none=True) for e in self.errors],
            },
        )

    def __str__(self) -> str:
        lines = [f"{self.message} (request_id={self.request_id}, status={self.status})"]
        lines.extend(f"  {error}" for error in self.errors)
        return "\n".join(lines)


class ValidationException(PangeaAPIException):
    """The service rejected one or more request fields."""

    pass


class PermissionDeniedException(PangeaAPIException):
    """The token is valid but not allowed to perform this operation."""

    pass


class NotFound(PangeaAPIException):
    """The requested resource or request id does not exist."""

    pass


class UnauthorizedException(PangeaAPIException):
    """The token is missing, invalid or expired."""

    pass


class InternalServerError(PangeaAPIException):
    pass


class ServiceNotEnabledException(PangeaAPIException):
    pass


class ServiceNotAvailableException(PangeaAPIException):
    pass


class ProviderErrorException(PangeaAPIException):
    pass


class RateLimitException(PangeaAPIException):
    pass


class NoCreditException(PangeaAPIException):
    pass


API_EXCEPTIONS_BY_STATUS: Dict[str, Type[PangeaAPIException]] = {
    "ValidationError": ValidationException,
    "PermissionError": PermissionDeniedException,
    "NotFound": NotFound,
    "Unauthorized": UnauthorizedException,
    "InternalError": InternalServerError,
    "ServiceNotEnabled": ServiceNotEnabledException,
    "ServiceNotAvailable": ServiceNotAvailableException,
    "ProviderError": ProviderErrorException,
    "TooManyRequests": RateLimitException,
    "NoCredit": NoCreditException,
}


def api_exception_for(response: "PangeaResponse[Any]") -> PangeaAPIException:
    """Build the typed exception matching ``response.status``."""
    exc_class = API_EXCEPTIONS_BY_STATUS.get(response.status, PangeaAPIException)
    return exc_class(f"API error: {response.summary or response.status}", response)
