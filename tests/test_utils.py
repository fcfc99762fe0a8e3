"""Unit tests for path resolution, content types and validators."""

import os
from pathlib import Path

import pytest

from utils import (
    UnsafePathError,
    decode_request_path,
    etag_matches,
    get_content_type,
    parse_etag_list,
    parse_http_date,
    resolve_static_path,
)


def test_content_type_from_extension() -> None:
    assert get_content_type(Path("logo.png")) == "image/png"
    assert get_content_type(Path("index.html")) == "text/html; charset=utf-8"
    assert get_content_type(Path("blob.unknownext")) == "application/octet-stream"


def test_decode_request_path_handles_percent_encoding() -> None:
    assert decode_request_path("/a%20b.txt") == "/a b.txt"


@pytest.mark.parametrize("raw_path", ["/bad%00name", "/%ff%fe", "relative"])
def test_decode_request_path_rejects_unusable_paths(raw_path: str) -> None:
    with pytest.raises(ValueError):
        decode_request_path(raw_path)


def test_resolve_inside_root(tmp_path: Path) -> None:
    root = tmp_path.resolve()
    (root / "img").mkdir()

    assert resolve_static_path("/img/logo.png", root) == root / "img" / "logo.png"
    assert resolve_static_path("/img/../index.html", root) == root / "index.html"
    assert resolve_static_path("/", root) == root


@pytest.mark.parametrize("escape", ["/../etc/passwd", "/../../etc/passwd", "/img/../../x"])
def test_resolve_rejects_traversal(tmp_path: Path, escape: str) -> None:
    with pytest.raises(UnsafePathError):
        resolve_static_path(escape, tmp_path.resolve())


def test_resolve_rejects_symlink_out_of_root(tmp_path: Path) -> None:
    root = tmp_path / "root"
    root.mkdir()
    secret = tmp_path / "secret.txt"
    secret.write_text("secret")
    os.symlink(secret, root / "link.txt")

    with pytest.raises(UnsafePathError):
        resolve_static_path("/link.txt", root.resolve())


def test_parse_http_date() -> None:
    assert parse_http_date("Thu, 01 Jan 1970 00:00:10 GMT") == 10
    assert parse_http_date("not a date") is None


def test_etag_comparison() -> None:
    candidates = parse_etag_list('"a", W/"b"')

    assert etag_matches(candidates, '"a"', weak=False)
    assert etag_matches(candidates, '"b"', weak=True)
    assert not etag_matches(candidates, '"b"', weak=False)
    assert etag_matches(["*"], '"z"', weak=False)
