"""Integrity parameters for file uploads."""

import hashlib
import io
from typing import BinaryIO

import google_crc32c
from pydantic import BaseModel

READ_CHUNK_SIZE = 64 * 1024


class FileUploadParams(BaseModel):
    """Size and checksums a presigned POST upload must declare up front."""

    sha256: str
    crc32c: str
    size: int


def _ensure_seekable(stream: BinaryIO) -> int:
    seekable = getattr(stream, "seekable", None)
    if seekable is not None and not seekable():
        raise io.UnsupportedOperation("stream is not seekable")
    try:
        return stream.tell()
    except (AttributeError, ValueError) as e:
        raise OSError(f"cannot determine stream position: {e}") from e


def get_file_upload_params(stream: BinaryIO) -> FileUploadParams:
    """Hash ``stream`` from its current offset to EOF in a single pass.

    The stream is left at the offset it had on entry, so it can be handed to
    the uploader right after.

    Returns:
        SHA-256 and CRC32C (Castagnoli) as lowercase hex, and the byte count.

    Raises:
        OSError: If the stream is not seekable or cannot be rewound.
    """
    offset = _ensure_seekable(stream)
    sha256 = hashlib.sha256()
    crc = 0
    size = 0
    try:
        while True:
            chunk = stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            sha256.update(chunk)
            crc = google_crc32c.extend(crc, chunk)
            size += len(chunk)
    finally:
        stream.seek(offset)

    return FileUploadParams(sha256=sha256.hexdigest(), crc32c=f"{crc:08x}", size=size)


def get_file_size(stream: BinaryIO) -> int:
    """Return the number of bytes from the current offset to EOF, restoring the offset."""
    offset = _ensure_seekable(stream)
    try:
        end = stream.seek(0, io.SEEK_END)
    finally:
        stream.seek(offset)
    return end - offset
