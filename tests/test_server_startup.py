"""Tests for listener startup, bind failures and the CLI entry point."""

import errno
import logging
import socket
import threading
import time
from pathlib import Path

import pytest

from config import LOG_FORMAT, PORT, STATIC_DIR
from server import HTTPServer, _parse_args, main


def _occupied_port() -> socket.socket:
    blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    blocker.bind(("127.0.0.1", 0))
    blocker.listen(1)
    return blocker


def test_defaults_match_hard_coded_configuration() -> None:
    args = _parse_args([])

    assert args.port == PORT
    assert args.root == STATIC_DIR
    assert args.directory_listing is True
    assert args.log_format == LOG_FORMAT


def test_no_listing_flag_disables_directory_listing() -> None:
    args = _parse_args(["--no-listing", "--root", "public", "--port", "9000"])

    assert args.directory_listing is False
    assert args.root == "public"
    assert args.port == 9000


def test_bind_failure_raises_from_start(tmp_path: Path) -> None:
    with _occupied_port() as blocker:
        port = blocker.getsockname()[1]
        server = HTTPServer(host="127.0.0.1", port=port, root=tmp_path)

        with pytest.raises(OSError):
            server.start()


def test_main_reports_bind_failure_and_returns_1(
    tmp_path: Path,
    caplog: pytest.LogCaptureFixture,
) -> None:
    with _occupied_port() as blocker:
        port = blocker.getsockname()[1]
        with caplog.at_level(logging.ERROR, logger="server"):
            exit_code = main(["--host", "127.0.0.1", "--port", str(port), "--root", str(tmp_path)])

    assert exit_code == 1
    assert "Could not listen" in caplog.text


def test_start_logs_serving_line_and_binds_ephemeral_port(
    tmp_path: Path,
    caplog: pytest.LogCaptureFixture,
) -> None:
    server = HTTPServer(host="127.0.0.1", port=0, root=tmp_path)
    with caplog.at_level(logging.INFO, logger="server"):
        thread = threading.Thread(target=server.start, daemon=True)
        thread.start()
        deadline = time.time() + 2
        while server.port == 0 and time.time() < deadline:
            time.sleep(0.01)
        server.stop()
        thread.join(timeout=2)

    assert server.port != 0
    assert f"Serving {tmp_path.resolve()}" in caplog.text


def test_json_access_log(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    (tmp_path / "a.txt").write_text("a")
    server = HTTPServer(host="127.0.0.1", port=0, root=tmp_path, log_format="json")
    thread = threading.Thread(target=server.start, daemon=True)
    thread.start()
    deadline = time.time() + 2
    while server.port == 0 and time.time() < deadline:
        time.sleep(0.01)

    try:
        with caplog.at_level(logging.INFO, logger="server"):
            with socket.create_connection((server.host, server.port), timeout=2) as sock:
                sock.sendall(b"GET /a.txt HTTP/1.1\r\nHost: localhost\r\nConnection: close\r\n\r\n")
                while sock.recv(4096):
                    pass
            deadline = time.time() + 2
            while '"path": "/a.txt"' not in caplog.text and time.time() < deadline:
                time.sleep(0.01)
    finally:
        server.stop()
        thread.join(timeout=2)

    assert '"path": "/a.txt"' in caplog.text
    assert '"status": 200' in caplog.text


def _serve_in_thread(server: HTTPServer) -> threading.Thread:
    thread = threading.Thread(target=server.start, daemon=True)
    thread.start()
    deadline = time.time() + 2
    while server.port == 0 and time.time() < deadline:
        time.sleep(0.01)
    return thread


def _fetch(address: tuple[str, int]) -> bytes:
    with socket.create_connection(address, timeout=2) as sock:
        sock.sendall(b"GET /a.txt HTTP/1.1\r\nHost: localhost\r\nConnection: close\r\n\r\n")
        chunks = []
        while True:
            chunk = sock.recv(4096)
            if not chunk:
                break
            chunks.append(chunk)
    return b"".join(chunks)


def test_accept_error_does_not_stop_the_server(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    (tmp_path / "a.txt").write_text("a")
    real_accept = socket.socket.accept
    failures = []

    def flaky_accept(self: socket.socket) -> tuple[socket.socket, tuple[str, int]]:
        if not failures:
            failures.append(True)
            raise OSError(errno.EMFILE, "Too many open files")
        return real_accept(self)

    monkeypatch.setattr(socket.socket, "accept", flaky_accept)
    server = HTTPServer(host="127.0.0.1", port=0, root=tmp_path)
    with caplog.at_level(logging.WARNING, logger="server"):
        thread = _serve_in_thread(server)
        try:
            response = _fetch((server.host, server.port))
            still_running = thread.is_alive()
        finally:
            server.stop()
            thread.join(timeout=2)

    assert failures == [True]
    assert "accept() failed" in caplog.text
    assert response.startswith(b"HTTP/1.1 200 OK")
    assert still_running
    assert not thread.is_alive()


@pytest.mark.skipif(not socket.has_dualstack_ipv6(), reason="no dual-stack IPv6 support")
def test_dual_stack_listener_still_answers_ipv4(tmp_path: Path) -> None:
    (tmp_path / "a.txt").write_text("a")
    server = HTTPServer(host="", port=0, root=tmp_path)
    thread = _serve_in_thread(server)
    try:
        listener_family = server._server_socket.family
        over_ipv4 = _fetch(("127.0.0.1", server.port))
    finally:
        server.stop()
        thread.join(timeout=2)

    assert listener_family == socket.AF_INET6
    assert over_ipv4.startswith(b"HTTP/1.1 200 OK")


def test_empty_host_falls_back_to_ipv4_without_dual_stack(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    (tmp_path / "a.txt").write_text("a")
    monkeypatch.setattr(socket, "has_dualstack_ipv6", lambda: False)
    server = HTTPServer(host="", port=0, root=tmp_path)
    thread = _serve_in_thread(server)
    try:
        response = _fetch(("127.0.0.1", server.port))
    finally:
        server.stop()
        thread.join(timeout=2)

    assert response.startswith(b"HTTP/1.1 200 OK")
