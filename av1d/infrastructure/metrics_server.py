"""Read-only metrics endpoint.

Serves the latest MetricsSnapshot as JSON at ``GET /metrics``. Runs on a
daemon thread and stops with the process.

Uses stdlib http.server + socketserver only.
"""
from __future__ import annotations

import logging
import socketserver
import threading
from http.server import BaseHTTPRequestHandler
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from av1d.pipeline.metrics import MetricsAggregator

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 7878


class MetricsRequestHandler(BaseHTTPRequestHandler):
    """HTTP request handler for the metrics endpoint.

    Class attribute ``aggregator`` is set by MetricsServer before the server starts.
    """

    aggregator: "MetricsAggregator"  # Injected by MetricsServer.start()

    def log_message(self, format: str, *args) -> None:  # noqa: A002
        """Suppress default access log."""

    def _send(self, body: bytes, status: int = 200, content_type: str = "application/json") -> None:
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
        self.end_headers()
        self.wfile.write(body)

    def do_GET(self) -> None:
        path = self.path.split("?")[0]
        if path != "/metrics":
            self._send(b'{"error": "not found"}', status=404)
            return
        snapshot = self.__class__.aggregator.latest()
        self._send(snapshot.model_dump_json().encode("utf-8"))


class _ThreadingHTTPServer(socketserver.ThreadingMixIn, socketserver.TCPServer):
    """Thread-per-request HTTP server with address reuse and daemon threads."""

    allow_reuse_address = True
    daemon_threads = True  # request threads die when main thread exits


class MetricsServer:
    """Pull-based metrics endpoint for dashboards and the TUI."""

    def __init__(self, aggregator: "MetricsAggregator", port: int = DEFAULT_PORT, host: str = DEFAULT_HOST) -> None:
        self.aggregator = aggregator
        self.port = port
        self.host = host
        self._server: Optional[_ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def bound_port(self) -> Optional[int]:
        if self._server is None:
            return None
        return self._server.server_address[1]

    def start(self) -> bool:
        """Start the server in a daemon background thread. Returns False if the port is unavailable."""
        handler = type("BoundMetricsRequestHandler", (MetricsRequestHandler,), {"aggregator": self.aggregator})
        try:
            self._server = _ThreadingHTTPServer((self.host, self.port), handler)
        except OSError as exc:
            logger.warning("Metrics server: could not bind to %s:%d: %s", self.host, self.port, exc)
            return False

        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name="av1d-metrics-http",
            daemon=True,
        )
        self._thread.start()
        logger.info("Metrics server: http://%s:%d/metrics", self.host, self.bound_port)
        return True

    def stop(self) -> None:
        """Gracefully stop the server."""
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._thread:
            self._thread.join(timeout=2.0)
            self._thread = None
