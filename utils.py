"""Path, content-type and validator helpers for static file serving."""

import errno
import mimetypes
import os
from email.utils import formatdate, parsedate_to_datetime
from pathlib import Path
from urllib.parse import unquote


class UnsafePathError(ValueError):
    """Raised when a request path would resolve outside the serving root."""


def get_content_type(file_path: Path) -> str:
    content_type, _encoding = mimetypes.guess_type(file_path.name)
    if content_type is None:
        return "application/octet-stream"
    if content_type.startswith("text/"):
        return f"{content_type}; charset=utf-8"
    return content_type


def decode_request_path(request_path: str) -> str:
    """Percent-decode a request path, rejecting values that cannot name a file."""
    decoded = unquote(request_path, errors="strict")
    if not decoded.startswith("/"):
        raise ValueError("Request path must start with '/'")
    if "\x00" in decoded:
        raise ValueError("Request path contains a NUL byte")
    return decoded


def resolve_static_path(decoded_path: str, root: Path) -> Path:
    """Resolve a decoded request path against ``root``.

    ``root`` must already be resolved. Symlinks are followed, so a link
    pointing outside the root is refused the same way as a ``..`` escape.
    """
    return ensure_within_root(root / decoded_path.lstrip("/"), root)


def ensure_within_root(path: Path, root: Path) -> Path:
    try:
        candidate = path.resolve()
    except RuntimeError as exc:
        raise OSError(errno.ELOOP, "Symlink loop", str(path)) from exc

    try:
        candidate.relative_to(root)
    except ValueError as exc:
        raise UnsafePathError(f"{str(path)!r} escapes the serving root") from exc

    return candidate


def http_date(timestamp: float) -> str:
    return formatdate(timestamp, usegmt=True)


def parse_http_date(value: str) -> int | None:
    """Return the epoch seconds of an HTTP date, or None when unparseable."""
    try:
        parsed = parsedate_to_datetime(value.strip())
    except (TypeError, ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        return None
    return int(parsed.timestamp())


def make_etag(file_stat: os.stat_result) -> str:
    return f'"{file_stat.st_mtime_ns:x}-{file_stat.st_size:x}"'


def parse_etag_list(header_value: str) -> list[str]:
    """Split an If-Match/If-None-Match value into its entity tags."""
    return [token.strip() for token in header_value.split(",") if token.strip()]


def etag_matches(candidates: list[str], etag: str, *, weak: bool) -> bool:
    if "*" in candidates:
        return True
    if weak:
        opaque = etag.removeprefix("W/")
        return any(candidate.removeprefix("W/") == opaque for candidate in candidates)
    if etag.startswith("W/"):
        return False
    return etag in candidates
