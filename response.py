"""HTTP response model and serializer."""

from dataclasses import dataclass, field
from email.utils import formatdate
from typing import BinaryIO

from config import SERVER_NAME

REASON_PHRASES: dict[int, str] = {
    200: "OK",
    206: "Partial Content",
    301: "Moved Permanently",
    304: "Not Modified",
    400: "Bad Request",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    408: "Request Timeout",
    412: "Precondition Failed",
    413: "Payload Too Large",
    414: "URI Too Long",
    416: "Range Not Satisfiable",
    431: "Request Header Fields Too Large",
    500: "Internal Server Error",
    501: "Not Implemented",
    503: "Service Unavailable",
    505: "HTTP Version Not Supported",
}


@dataclass(slots=True)
class HTTPResponse:
    """A response carrying either an in-memory body or a region of an open file."""

    status_code: int
    reason_phrase: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes | str = b""
    file_obj: BinaryIO | None = None
    file_offset: int = 0
    file_length: int = 0
    content_length_override: int | None = None

    def __post_init__(self) -> None:
        if isinstance(self.body, str):
            self.body = self.body.encode("utf-8")
        if self.file_obj is not None and self.body:
            raise ValueError("Response cannot set both body and file_obj")
        if self.file_offset < 0 or self.file_length < 0:
            raise ValueError("File region cannot be negative")

    @property
    def content_length(self) -> int:
        if self.content_length_override is not None:
            return self.content_length_override
        if self.file_obj is not None:
            return self.file_length
        return len(self.body)

    def head_bytes(self) -> bytes:
        """Serialize the status line and headers, terminated by a blank line."""
        reason = self.reason_phrase or REASON_PHRASES.get(self.status_code, "Unknown")
        normalized_headers = dict(self.headers)
        normalized_headers.setdefault(
            "Date",
            formatdate(timeval=None, localtime=False, usegmt=True),
        )
        normalized_headers.setdefault("Server", SERVER_NAME)
        if self.status_code != 304:
            normalized_headers.setdefault("Content-Type", "text/plain; charset=utf-8")
            normalized_headers["Content-Length"] = str(self.content_length)

        header_lines = [f"HTTP/1.1 {self.status_code} {reason}"]
        header_lines.extend(f"{key}: {value}" for key, value in normalized_headers.items())
        return "\r\n".join(header_lines).encode("iso-8859-1") + b"\r\n\r\n"

    def close(self) -> None:
        if self.file_obj is not None:
            self.file_obj.close()
            self.file_obj = None


def error_response(status_code: int, headers: dict[str, str] | None = None) -> HTTPResponse:
    reason = REASON_PHRASES.get(status_code, "Error")
    return HTTPResponse(status_code=status_code, headers=dict(headers or {}), body=reason)
