"""HTTP request model and parser."""

import string
from dataclasses import dataclass, field

from config import MAX_BODY_BYTES, MAX_TARGET_LENGTH

ALLOWED_HTTP_VERSIONS = {"HTTP/1.1", "HTTP/1.0"}
TOKEN_CHARS = frozenset(string.ascii_letters + string.digits + "!#$%&'*+-.^_`|~")


class HTTPRequestParseError(ValueError):
    """Request parse error carrying an HTTP status code."""

    def __init__(self, message: str, *, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(slots=True)
class HTTPRequest:
    method: str
    path: str
    http_version: str
    query: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    keep_alive: bool = False

    @classmethod
    def from_bytes(cls, raw: bytes) -> "HTTPRequest":
        """Parse one framed request; any body is validated and discarded."""
        head, separator, body = raw.partition(b"\r\n\r\n")
        if not separator:
            raise HTTPRequestParseError("Missing CRLF CRLF request separator")

        request_line, *header_lines = head.decode("iso-8859-1").split("\r\n")
        method, target, http_version = _parse_request_line(request_line)
        headers = _parse_header_lines(header_lines)

        if http_version == "HTTP/1.1" and "host" not in headers:
            raise HTTPRequestParseError("Host header required for HTTP/1.1")
        _check_body(headers, body)

        # Split by hand: urlsplit would read "//host/x" as a network location.
        path, _sep, query = target.partition("?")
        return cls(
            method=method,
            path=path,
            http_version=http_version,
            query=query,
            headers=headers,
            keep_alive=_is_keep_alive(http_version, headers.get("connection", "")),
        )


def _parse_request_line(request_line: str) -> tuple[str, str, str]:
    if not request_line:
        raise HTTPRequestParseError("Missing request line")

    parts = request_line.split(" ")
    if len(parts) != 3:
        raise HTTPRequestParseError("Invalid request line")
    method, target, http_version = parts
    if not method or not target or not http_version:
        raise HTTPRequestParseError("Request line contains empty tokens")

    if not set(method) <= TOKEN_CHARS:
        raise HTTPRequestParseError("Invalid method token")
    if http_version not in ALLOWED_HTTP_VERSIONS:
        raise HTTPRequestParseError("Unsupported HTTP version", status_code=505)
    if len(target) > MAX_TARGET_LENGTH:
        raise HTTPRequestParseError("Request target too long", status_code=414)
    if not target.startswith("/"):
        raise HTTPRequestParseError("Request target must be in origin form")
    return method, target, http_version


def _parse_header_lines(header_lines: list[str]) -> dict[str, str]:
    headers: dict[str, str] = {}
    for line in filter(None, header_lines):
        name, colon, value = line.partition(":")
        if not colon:
            raise HTTPRequestParseError("Malformed header line")
        name = name.strip().lower()
        if not name:
            raise HTTPRequestParseError("Header name cannot be empty")
        headers[name] = value.strip()
    return headers


def _check_body(headers: dict[str, str], body: bytes) -> None:
    if "transfer-encoding" in headers:
        raise HTTPRequestParseError(
            "Transfer-Encoding request bodies are not supported",
            status_code=501,
        )

    declared = headers.get("content-length")
    if declared is not None:
        try:
            declared_length = int(declared)
        except ValueError as exc:
            raise HTTPRequestParseError("Invalid Content-Length") from exc
        if declared_length < 0:
            raise HTTPRequestParseError("Negative Content-Length is invalid")
        if declared_length != len(body):
            raise HTTPRequestParseError("Body length does not match Content-Length")

    if len(body) > MAX_BODY_BYTES:
        raise HTTPRequestParseError("Body exceeded MAX_BODY_BYTES", status_code=413)


def _is_keep_alive(http_version: str, connection_header: str) -> bool:
    token = connection_header.lower()
    if http_version == "HTTP/1.1":
        return "close" not in token
    return "keep-alive" in token
