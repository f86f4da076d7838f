"""Parsing of ``multipart/form-data`` responses.

Some endpoints answer with a multipart body instead of plain JSON: one part
holds the usual envelope (named ``pangea_json``) and every other part is a
file produced by the service.
"""

from email.message import Message
from typing import Dict, List, NamedTuple, Optional, Tuple

from .exceptions import PangeaProtocolError
from .response import AttachedFile

JSON_PART_NAME = "pangea_json"


class _Part(NamedTuple):
    headers: Dict[str, str]
    body: bytes


def is_multipart(content_type: Optional[str]) -> bool:
    return bool(content_type) and content_type.strip().lower().startswith("multipart/")


def header_param(value: str, header: str, param: str) -> Optional[str]:
    """Read a parameter such as ``boundary`` or ``filename`` from a header value."""
    msg = Message()
    msg[header] = value
    result = msg.get_param(param, header=header)
    if result is None:
        return None
    if isinstance(result, tuple):
        # RFC 2231 encoded value: (charset, language, value)
        return result[2]
    return str(result)


def get_boundary(content_type: str) -> str:
    boundary = header_param(content_type, "content-type", "boundary")
    if not boundary:
        raise PangeaProtocolError(f"Boundary parameter not found in Content-Type: {content_type!r}")
    return boundary


def _parse_part(raw: bytes) -> _Part:
    for separator in (b"\r\n\r\n", b"\n\n"):
        head, sep, body = raw.partition(separator)
        if sep:
            break
    else:
        raise PangeaProtocolError("Multipart part has no header/body separator", body=raw)

    headers: Dict[str, str] = {}
    for line in head.decode("latin-1").splitlines():
        if not line.strip():
            continue
        name, colon, value = line.partition(":")
        if not colon:
            raise PangeaProtocolError(f"Malformed multipart header line: {line!r}", body=raw)
        headers[name.strip().lower()] = value.strip()
    return _Part(headers, body)


def _find_delimiter(body: bytes, delimiter: bytes, start: int) -> int:
    """Offset of the next delimiter line at or after ``start``, or -1.

    A boundary only counts at the start of a line and when followed by a
    line break, transport padding or the closing ``--``.
    """
    pos = body.find(delimiter, start)
    while pos != -1:
        after = body[pos + len(delimiter) : pos + len(delimiter) + 2]
        at_line_start = pos == 0 or body[pos - 1 : pos] == b"\n"
        if at_line_start and (after == b"--" or after[:1] in (b"\r", b"\n", b" ", b"\t")):
            return pos
        pos = body.find(delimiter, pos + 1)
    return -1


def _split_parts(body: bytes, boundary: str) -> List[_Part]:
    delimiter = b"--" + boundary.encode("latin-1")
    start = _find_delimiter(body, delimiter, 0)
    if start == -1:
        raise PangeaProtocolError("Multipart body does not contain any part", body=body)

    parts = []
    # Everything before the first delimiter is preamble.
    while not body.startswith(b"--", start + len(delimiter)):
        line_end = body.find(b"\n", start + len(delimiter))
        end = _find_delimiter(body, delimiter, line_end + 1) if line_end != -1 else -1
        if end == -1:
            raise PangeaProtocolError("Multipart body is missing its closing boundary", body=body)
        chunk = body[line_end + 1 : end]
        # The line break before a delimiter belongs to the delimiter.
        if chunk.endswith(b"\r\n"):
            chunk = chunk[:-2]
        elif chunk.endswith(b"\n"):
            chunk = chunk[:-1]
        parts.append(_parse_part(chunk))
        start = end

    if not parts:
        raise PangeaProtocolError("Multipart body does not contain any part", body=body)
    return parts


def _is_json(part: _Part) -> bool:
    content_type = part.headers.get("content-type", "").split(";")[0].strip().lower()
    return content_type == "application/json" or content_type.endswith("+json")


def _part_name(part: _Part) -> Optional[str]:
    disposition = part.headers.get("content-disposition")
    if not disposition:
        return None
    return header_param(disposition, "content-disposition", "name")


def parse_multipart_response(content_type: str, body: bytes) -> Tuple[bytes, List[AttachedFile]]:
    """Split a multipart response into the JSON envelope and attached files.

    The envelope is the part named ``pangea_json``; failing that, the first
    part with a JSON content type. Every other part becomes an
    :class:`AttachedFile`, named after ``Content-Disposition``'s ``filename``
    or ``attachment_<n>`` when the part has none, where ``n`` is the
    0-based position of the file among the attached files.

    Returns:
        The raw JSON bytes of the envelope and the attached files in order.

    Raises:
        PangeaProtocolError: If the boundary is missing, the body is malformed,
            or no JSON part can be found.
    """
    parts = _split_parts(body, get_boundary(content_type))

    json_index = next((i for i, p in enumerate(parts) if _part_name(p) == JSON_PART_NAME), None)
    if json_index is None:
        json_index = next((i for i, p in enumerate(parts) if _is_json(p)), None)
    if json_index is None:
        raise PangeaProtocolError("Multipart response has no JSON part", body=body)

    files: List[AttachedFile] = []
    for i, part in enumerate(parts):
        if i == json_index:
            continue
        disposition = part.headers.get("content-disposition", "")
        filename = header_param(disposition, "content-disposition", "filename") if disposition else None
        files.append(
            AttachedFile(
                filename=filename or f"attachment_{len(files)}",
                file=part.body,
                content_type=part.headers.get("content-type", "application/octet-stream"),
            )
        )
    return parts[json_index].body, files
