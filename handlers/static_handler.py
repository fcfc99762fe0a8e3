"""Static file handler: files, directories, conditional and range requests."""

from __future__ import annotations

import errno
import html
import logging
import os
import stat
from pathlib import Path
from urllib.parse import quote

from config import DIRECTORY_LISTING, INDEX_FILE, STATIC_DIR
from request import HTTPRequest
from response import HTTPResponse, error_response
from utils import (
    UnsafePathError,
    decode_request_path,
    ensure_within_root,
    etag_matches,
    get_content_type,
    http_date,
    make_etag,
    parse_etag_list,
    parse_http_date,
    resolve_static_path,
)

logger = logging.getLogger(__name__)

NOT_FOUND_ERRNOS = {errno.ENOENT, errno.ENOTDIR, errno.ENAMETOOLONG, errno.ELOOP}
FORBIDDEN_ERRNOS = {errno.EACCES, errno.EPERM}


class RangeNotSatisfiableError(ValueError):
    """Raised when a syntactically valid byte range lies outside the file."""


def serve_static(
    request: HTTPRequest,
    root: str | Path | None = None,
    *,
    index_file: str = INDEX_FILE,
    directory_listing: bool = DIRECTORY_LISTING,
) -> HTTPResponse:
    """Map ``request.path`` onto ``root`` and build the GET response for it.

    HEAD requests get the same response; the caller drops the body.
    """
    static_root = Path(STATIC_DIR if root is None else root).resolve()

    try:
        decoded_path = decode_request_path(request.path)
    except ValueError:
        return error_response(400)

    if decoded_path.endswith("/" + index_file):
        return _redirect(request, quote(decoded_path[: -len(index_file)]))

    try:
        target = resolve_static_path(decoded_path, static_root)
        target_stat = target.stat()
        if stat.S_ISDIR(target_stat.st_mode):
            if not request.path.endswith("/"):
                return _redirect(request, request.path + "/")
            return _serve_directory(request, target, static_root, index_file, directory_listing)
        if not stat.S_ISREG(target_stat.st_mode):
            return error_response(404)
        if request.path.endswith("/"):
            return _redirect(request, request.path.rstrip("/"))
        return _serve_file(request, target, target_stat)
    except UnsafePathError:
        logger.warning("Refused path outside root: %s", request.path)
        return error_response(403)
    except OSError as exc:
        return error_response(_status_for_os_error(exc))


def _status_for_os_error(exc: OSError) -> int:
    if exc.errno in NOT_FOUND_ERRNOS:
        return 404
    if exc.errno in FORBIDDEN_ERRNOS:
        return 403
    logger.error("Filesystem error while serving: %s", exc)
    return 500


def _redirect(request: HTTPRequest, location: str) -> HTTPResponse:
    # Collapse leading slashes so the Location can never be protocol-relative.
    location = "/" + location.lstrip("/")
    if request.query:
        location = f"{location}?{request.query}"
    return error_response(301, {"Location": location})


def _serve_directory(
    request: HTTPRequest,
    directory: Path,
    static_root: Path,
    index_file: str,
    directory_listing: bool,
) -> HTTPResponse:
    index_path = ensure_within_root(directory / index_file, static_root)
    if index_path.is_file():
        return _serve_file(request, index_path, index_path.stat())

    if not directory_listing:
        return error_response(403)

    directory_stat = directory.stat()
    last_modified = http_date(directory_stat.st_mtime)
    if_modified_since = request.headers.get("if-modified-since")
    if if_modified_since is not None:
        since_ts = parse_http_date(if_modified_since)
        if since_ts is not None and int(directory_stat.st_mtime) <= since_ts:
            return HTTPResponse(status_code=304, headers={"Last-Modified": last_modified})

    return HTTPResponse(
        status_code=200,
        headers={
            "Content-Type": "text/html; charset=utf-8",
            "Last-Modified": last_modified,
        },
        body=render_directory_listing(directory),
    )


def render_directory_listing(directory: Path) -> str:
    entries: list[str] = []
    with os.scandir(directory) as scanned:
        for entry in sorted(scanned, key=lambda item: item.name):
            name = entry.name + "/" if entry.is_dir() else entry.name
            entries.append(f'<a href="{quote(name)}">{html.escape(name)}</a>')

    lines = [
        "<!doctype html>",
        '<meta name="viewport" content="width=device-width">',
        "<pre>",
        *entries,
        "</pre>",
    ]
    return "\n".join(lines) + "\n"


def _serve_file(request: HTTPRequest, file_path: Path, file_stat: os.stat_result) -> HTTPResponse:
    etag = make_etag(file_stat)
    validators = {
        "ETag": etag,
        "Last-Modified": http_date(file_stat.st_mtime),
    }

    precondition_status = evaluate_preconditions(request, etag, file_stat.st_mtime)
    if precondition_status == 304:
        return HTTPResponse(status_code=304, headers=validators)
    if precondition_status == 412:
        return error_response(412)

    file_size = file_stat.st_size
    headers = {
        "Content-Type": get_content_type(file_path),
        "Accept-Ranges": "bytes",
        **validators,
    }

    status_code = 200
    offset = 0
    length = file_size
    range_header = request.headers.get("range")
    if range_header is not None and _if_range_allows(request, etag, file_stat.st_mtime):
        try:
            byte_range = parse_byte_range(range_header, file_size)
        except RangeNotSatisfiableError:
            return error_response(416, {"Content-Range": f"bytes */{file_size}"})
        if byte_range is not None:
            start, end = byte_range
            status_code = 206
            offset = start
            length = end - start + 1
            headers["Content-Range"] = f"bytes {start}-{end}/{file_size}"

    file_obj = file_path.open("rb")
    return HTTPResponse(
        status_code=status_code,
        headers=headers,
        file_obj=file_obj,
        file_offset=offset,
        file_length=length,
    )


def evaluate_preconditions(request: HTTPRequest, etag: str, mtime: float) -> int | None:
    """Return 304 or 412 when a conditional header decides the response."""
    modified_ts = int(mtime)

    if_match = request.headers.get("if-match")
    if if_match is not None:
        if not etag_matches(parse_etag_list(if_match), etag, weak=False):
            return 412
    else:
        if_unmodified_since = request.headers.get("if-unmodified-since")
        if if_unmodified_since is not None:
            since_ts = parse_http_date(if_unmodified_since)
            if since_ts is not None and modified_ts > since_ts:
                return 412

    if_none_match = request.headers.get("if-none-match")
    if if_none_match is not None:
        if etag_matches(parse_etag_list(if_none_match), etag, weak=True):
            return 304
        return None

    if_modified_since = request.headers.get("if-modified-since")
    if if_modified_since is not None:
        since_ts = parse_http_date(if_modified_since)
        if since_ts is not None and modified_ts <= since_ts:
            return 304
    return None


def _if_range_allows(request: HTTPRequest, etag: str, mtime: float) -> bool:
    if_range = request.headers.get("if-range")
    if if_range is None:
        return True
    if_range = if_range.strip()
    if if_range.startswith(('"', "W/")):
        return etag_matches([if_range], etag, weak=False)
    since_ts = parse_http_date(if_range)
    return since_ts is not None and int(mtime) == since_ts


def _is_digits(value: str) -> bool:
    return value.isascii() and value.isdigit()


def parse_byte_range(header_value: str, file_size: int) -> tuple[int, int] | None:
    """Parse a single ``bytes=`` range into inclusive (start, end) offsets.

    Returns None when the header should be ignored: other units, bad syntax,
    or more than one range. Raises RangeNotSatisfiableError when the range
    does not overlap the file.
    """
    units, _sep, range_set = header_value.partition("=")
    if units.strip().lower() != "bytes" or not range_set.strip():
        return None

    specs = [spec.strip() for spec in range_set.split(",")]
    if len(specs) != 1:
        return None

    first, sep, last = specs[0].partition("-")
    first = first.strip()
    last = last.strip()
    if not sep:
        return None

    if not first:
        if not _is_digits(last):
            return None
        suffix_length = int(last)
        if suffix_length == 0 or file_size == 0:
            raise RangeNotSatisfiableError(header_value)
        return max(0, file_size - suffix_length), file_size - 1

    if not _is_digits(first):
        return None
    start = int(first)
    if last:
        if not _is_digits(last):
            return None
        end = int(last)
        if end < start:
            return None
    else:
        end = file_size - 1

    if start >= file_size:
        raise RangeNotSatisfiableError(header_value)
    return start, min(end, file_size - 1)
