"""Request and response models shared by every Pangea service.

Every JSON response is wrapped in the same envelope::

    {
        "request_id": "prq_...",
        "request_time": "2024-01-01T00:00:00.000Z",
        "response_time": "2024-01-01T00:00:00.100Z",
        "status": "Success",
        "summary": "...",
        "result": {...}
    }

:class:`PangeaResponse` models that envelope and is generic over the type the
``result`` field is decoded into.
"""

import os
from enum import Enum
from functools import lru_cache
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

T = TypeVar("T")


class TransferMethod(str, Enum):
    """How file bytes move between the caller, the service and storage."""

    MULTIPART = "multipart"
    POST_URL = "post-url"
    PUT_URL = "put-url"
    SOURCE_URL = "source-url"
    DEST_URL = "dest-url"


# Methods that describe the client sending bytes itself.
UPLOAD_TRANSFER_METHODS = frozenset({TransferMethod.MULTIPART, TransferMethod.POST_URL, TransferMethod.PUT_URL})


class APIRequestModel(BaseModel):
    """Base for every request body.

    ``config_id`` never reaches the JSON body; the transport moves it to the
    ``X-Pangea-<Service>-Config-ID`` header.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True, use_enum_values=True)

    config_id: Optional[str] = None


class TransferRequest(APIRequestModel):
    """Request base for upload-capable endpoints."""

    transfer_method: Optional[TransferMethod] = None
    sha256: Optional[str] = None
    crc32c: Optional[str] = None
    size: Optional[int] = None


class ErrorField(BaseModel):
    """One structured error from a failed request."""

    model_config = ConfigDict(extra="allow")

    code: Optional[str] = None
    detail: Optional[str] = None
    source: Optional[str] = None
    path: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.source or self.path or '<root>'}: {self.code} - {self.detail}"


class AcceptedResult(BaseModel):
    """Body of an HTTP 202 result.

    For split uploads it carries the presigned URL to send the file to.
    """

    model_config = ConfigDict(extra="allow")

    ttl_mins: Optional[int] = None
    retry_counter: Optional[int] = None
    location: Optional[str] = None
    post_url: Optional[str] = None
    post_form_data: Dict[str, Any] = Field(default_factory=dict)
    put_url: Optional[str] = None

    @model_validator(mode="after")
    def _single_upload_url(self) -> "AcceptedResult":
        if self.post_url and self.put_url:
            raise ValueError("accepted result cannot carry both post_url and put_url")
        return self

    @property
    def has_upload_url(self) -> bool:
        return bool(self.post_url or self.put_url)


class AttachedFile(BaseModel):
    """A binary part returned next to the JSON envelope of a multipart response."""

    filename: str
    file: bytes
    content_type: str = "application/octet-stream"

    def save(self, dest_folder: Optional[str] = None, dest_filename: Optional[str] = None) -> str:
        """Write the file to disk and return the path used.

        The folder is created if missing. If the target name is taken a
        numeric suffix is added: ``report.pdf``, ``report_1.pdf``, ...
        """
        folder = dest_folder or "./"
        os.makedirs(folder, exist_ok=True)
        path = find_available_path(os.path.join(folder, dest_filename or self.filename))
        with open(path, "wb") as fh:
            fh.write(self.file)
        return path


def find_available_path(path: str) -> str:
    """Return ``path`` or the first ``<stem>_<n><ext>`` variant that does not exist."""
    if not os.path.exists(path):
        return path
    stem, ext = os.path.splitext(path)
    counter = 1
    while os.path.exists(f"{stem}_{counter}{ext}"):
        counter += 1
    return f"{stem}_{counter}{ext}"


class ResponseHeader(BaseModel):
    """Fields present in every envelope."""

    model_config = ConfigDict(extra="ignore")

    request_id: str
    request_time: Optional[str] = None
    response_time: Optional[str] = None
    status: str
    summary: Optional[str] = None

    def __str__(self) -> str:
        return (
            f"request_id: {self.request_id}, request_time: {self.request_time}, "
            f"response_time: {self.response_time}, status: {self.status}, summary: {self.summary}"
        )


class PangeaResponse(ResponseHeader, Generic[T]):
    """A parsed envelope with its result decoded into ``T``."""

    result: Optional[T] = None
    raw_result: Optional[Any] = Field(default=None, exclude=True)
    accepted_result: Optional[AcceptedResult] = None
    errors: List[ErrorField] = Field(default_factory=list)
    status_code: Optional[int] = Field(default=None, exclude=True)
    attached_files: List[AttachedFile] = Field(default_factory=list, exclude=True)

    @property
    def success(self) -> bool:
        return self.status == ResponseStatus.SUCCESS.value


class ResponseStatus(str, Enum):
    """Wire-level envelope statuses the core handles specially."""

    SUCCESS = "Success"
    ACCEPTED = "Accepted"
    FAILED = "Failed"


@lru_cache(maxsize=256)
def _adapter(result_class: Any) -> TypeAdapter:
    return TypeAdapter(result_class)


def decode_result(result_class: Optional[Type[T]], raw: Any) -> Optional[T]:
    """Decode a raw ``result`` value into ``result_class``.

    ``None`` or ``dict`` as ``result_class`` leaves the value untouched.
    Raises ``pydantic.ValidationError`` on a shape mismatch.
    """
    if raw is None or result_class is None or result_class is dict:
        return raw
    return _adapter(result_class).validate_python(raw)
