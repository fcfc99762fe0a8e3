"""Static file server entry point and connection lifecycle orchestration."""

from __future__ import annotations

import argparse
import json
import logging
import socket
import time
from pathlib import Path

from config import (
    DIRECTORY_LISTING,
    HOST,
    INDEX_FILE,
    KEEPALIVE_TIMEOUT_SECS,
    LOG_FORMAT,
    MAX_KEEPALIVE_REQUESTS,
    PORT,
    REQUEST_QUEUE_SIZE,
    SOCKET_TIMEOUT_SECS,
    STATIC_DIR,
    WORKER_COUNT,
)
from handlers.static_handler import serve_static
from request import HTTPRequest, HTTPRequestParseError
from response import HTTPResponse, error_response
from socket_handler import (
    HeaderTooLargeError,
    MalformedRequestError,
    PayloadTooLargeError,
    SocketTimeoutError,
    read_http_request_message,
    write_http_response_message,
)
from thread_pool import ThreadPool

logger = logging.getLogger(__name__)

ALLOWED_METHODS = ("GET", "HEAD")
ACCEPT_RETRY_DELAY_SECS = 0.05

READ_ERROR_STATUS: dict[type[Exception], int] = {
    PayloadTooLargeError: 413,
    HeaderTooLargeError: 431,
    SocketTimeoutError: 408,
    MalformedRequestError: 400,
}


class HTTPServer:
    def __init__(
        self,
        host: str = HOST,
        port: int = PORT,
        root: str | Path = STATIC_DIR,
        worker_count: int = WORKER_COUNT,
        request_queue_size: int = REQUEST_QUEUE_SIZE,
        *,
        index_file: str = INDEX_FILE,
        directory_listing: bool = DIRECTORY_LISTING,
        keepalive_timeout_secs: int = KEEPALIVE_TIMEOUT_SECS,
        log_format: str = LOG_FORMAT,
    ) -> None:
        self.host = host
        self.port = port
        self.root = Path(root).resolve()
        self.worker_count = worker_count
        self.request_queue_size = request_queue_size
        self.index_file = index_file
        self.directory_listing = directory_listing
        self.keepalive_timeout_secs = keepalive_timeout_secs
        self.log_format = log_format

        self._server_socket: socket.socket | None = None
        self._pool: ThreadPool | None = None
        self._running = False

    def start(self) -> None:
        """Bind, listen and serve until stop(); bind errors propagate as OSError."""
        self._running = True
        try:
            server_socket = self._create_listener()
        except OSError:
            self._running = False
            raise

        with server_socket:
            server_socket.settimeout(0.2)
            self._server_socket = server_socket
            self.port = server_socket.getsockname()[1]
            if not self.root.is_dir():
                logger.warning("Root directory %s does not exist", self.root)
            logger.info("Serving %s on http://%s:%d", self.root, self._display_host(), self.port)

            self._pool = ThreadPool(
                worker_count=self.worker_count,
                queue_size=self.request_queue_size,
                handler=self._handle_client,
            )
            self._pool.start()

            try:
                while self._running:
                    try:
                        client_socket, address = server_socket.accept()
                    except socket.timeout:
                        continue
                    except OSError as exc:
                        if not self._running:
                            break
                        # Out of descriptors or an aborted handshake: retry, do not exit.
                        logger.warning("accept() failed: %s", exc)
                        time.sleep(ACCEPT_RETRY_DELAY_SECS)
                        continue

                    if self._pool is None or not self._pool.submit(client_socket, address):
                        self._send_queue_full_response(client_socket, address)
            finally:
                if self._pool is not None:
                    self._pool.shutdown()
                    self._pool = None

    def _create_listener(self) -> socket.socket:
        """Open the listening socket; an empty host or "::" listens on IPv4 and IPv6."""
        if self.host in ("", "::") and socket.has_dualstack_ipv6():
            return socket.create_server(
                ("::", self.port),
                family=socket.AF_INET6,
                backlog=128,
                dualstack_ipv6=True,
            )
        host = self.host or "0.0.0.0"
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        # create_server sets SO_REUSEADDR on POSIX.
        return socket.create_server((host, self.port), family=family, backlog=128)

    def _display_host(self) -> str:
        host = self.host or "0.0.0.0"
        return f"[{host}]" if ":" in host else host

    def stop(self) -> None:
        self._running = False
        if self._server_socket is not None:
            self._server_socket.close()
            self._server_socket = None
        if self._pool is not None:
            self._pool.shutdown()
            self._pool = None

    def _send_queue_full_response(
        self,
        client_socket: socket.socket,
        address: tuple[str, int],
    ) -> None:
        with client_socket:
            started_at = time.perf_counter()
            response = error_response(503, {"Connection": "close"})
            try:
                bytes_sent = write_http_response_message(client_socket, response)
            except OSError:
                return
            self._log_access(address, "-", "-", response, bytes_sent, 0, started_at, False)

    def _handle_client(self, client_socket: socket.socket, address: tuple[str, int]) -> None:
        with client_socket:
            client_socket.settimeout(min(SOCKET_TIMEOUT_SECS, self.keepalive_timeout_secs))
            request_count = 0
            carry = b""
            while request_count < MAX_KEEPALIVE_REQUESTS:
                started_at = time.perf_counter()
                try:
                    raw_request, carry = read_http_request_message(client_socket, carry)
                except tuple(READ_ERROR_STATUS) as exc:
                    logger.debug("Read error from %s: %s", address[0], exc)
                    self._send_final_error(
                        client_socket,
                        address,
                        READ_ERROR_STATUS[type(exc)],
                        started_at,
                    )
                    return
                except OSError:
                    return

                if not raw_request:
                    return

                try:
                    request = HTTPRequest.from_bytes(raw_request)
                except HTTPRequestParseError as exc:
                    logger.debug("Rejected request from %s: %s", address[0], exc)
                    self._send_final_error(
                        client_socket,
                        address,
                        exc.status_code,
                        started_at,
                        bytes_in=len(raw_request),
                    )
                    return

                request_count += 1
                response = self._dispatch(request)
                should_close = (
                    (not request.keep_alive)
                    or request_count >= MAX_KEEPALIVE_REQUESTS
                )
                if should_close:
                    response.headers.setdefault("Connection", "close")
                else:
                    response.headers.setdefault("Connection", "keep-alive")
                    response.headers.setdefault(
                        "Keep-Alive",
                        (
                            f"timeout={self.keepalive_timeout_secs}, "
                            f"max={MAX_KEEPALIVE_REQUESTS - request_count}"
                        ),
                    )

                try:
                    bytes_sent = write_http_response_message(client_socket, response)
                except OSError as exc:
                    logger.warning(
                        "Aborted response for %s %s to %s: %s",
                        request.method,
                        request.path,
                        address[0],
                        exc,
                    )
                    return
                finally:
                    response.close()

                self._log_access(
                    address,
                    request.method,
                    request.path,
                    response,
                    bytes_sent,
                    len(raw_request),
                    started_at,
                    request_count > 1,
                )
                if should_close:
                    return

    def _send_final_error(
        self,
        client_socket: socket.socket,
        address: tuple[str, int],
        status_code: int,
        started_at: float,
        *,
        bytes_in: int = 0,
    ) -> None:
        response = error_response(status_code, {"Connection": "close"})
        try:
            bytes_sent = write_http_response_message(client_socket, response)
        except OSError:
            return
        self._log_access(address, "-", "-", response, bytes_sent, bytes_in, started_at, False)

    def _dispatch(self, request: HTTPRequest) -> HTTPResponse:
        if request.method not in ALLOWED_METHODS:
            return error_response(405, {"Allow": ", ".join(ALLOWED_METHODS)})

        try:
            response = serve_static(
                request,
                self.root,
                index_file=self.index_file,
                directory_listing=self.directory_listing,
            )
        except Exception:
            logger.exception("Unhandled error while serving %s", request.path)
            response = error_response(500)

        if request.method == "HEAD":
            return self._as_head_response(response)
        return response

    def _as_head_response(self, get_response: HTTPResponse) -> HTTPResponse:
        content_length = get_response.content_length
        get_response.close()
        return HTTPResponse(
            status_code=get_response.status_code,
            reason_phrase=get_response.reason_phrase,
            headers=dict(get_response.headers),
            body=b"",
            content_length_override=content_length,
        )

    def _log_access(
        self,
        address: tuple[str, int],
        method: str,
        path: str,
        response: HTTPResponse,
        bytes_out: int,
        bytes_in: int,
        started_at: float,
        connection_reused: bool,
    ) -> None:
        duration_ms = (time.perf_counter() - started_at) * 1000
        if self.log_format == "json":
            event = {
                "client": address[0],
                "method": method,
                "path": path,
                "status": response.status_code,
                "bytes_in": bytes_in,
                "bytes_out": bytes_out,
                "latency_ms": round(duration_ms, 3),
                "connection_reused": connection_reused,
            }
            logger.info(json.dumps(event, sort_keys=True))
            return

        logger.info(
            (
                "client=%s method=%s path=%s status=%s bytes_in=%s bytes_out=%s "
                "duration_ms=%.2f connection_reused=%s"
            ),
            address[0],
            method,
            path,
            response.status_code,
            bytes_in,
            bytes_out,
            duration_ms,
            connection_reused,
        )


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve a directory of static files over HTTP")
    parser.add_argument("--host", default=HOST, help="address to bind; empty means every interface")
    parser.add_argument("--port", type=int, default=PORT)
    parser.add_argument("--root", default=STATIC_DIR, help="directory to serve")
    parser.add_argument(
        "--no-listing",
        dest="directory_listing",
        action="store_false",
        default=DIRECTORY_LISTING,
        help="answer 403 for directories without an index document",
    )
    parser.add_argument("--log-format", choices=["plain", "json"], default=LOG_FORMAT)
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(level=logging.INFO)
    server = HTTPServer(
        host=args.host,
        port=args.port,
        root=args.root,
        directory_listing=args.directory_listing,
        log_format=args.log_format,
    )
    try:
        server.start()
    except OSError as exc:
        logger.error("Could not listen on %s:%s: %s", args.host, args.port, exc)
        return 1
    except KeyboardInterrupt:
        server.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
