from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

from prometheus_client import CONTENT_TYPE_LATEST, generate_latest


class _ProbeHandler(BaseHTTPRequestHandler):
    """Serve ``/healthz``, ``/readyz`` and Prometheus ``/metrics``."""

    ready_event: threading.Event
    depth_fn: Callable[[], int] | None

    def _send(self, status: int, body: bytes = b"", content_type: str = "text/plain") -> None:
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        if body:
            self.wfile.write(body)

    def _readiness_body(self, ready: bool) -> bytes:
        parts = [f"ready={'true' if ready else 'false'}"]
        if self.depth_fn is not None:
            parts.append(f"queue_depth={self.depth_fn()}")
        return " ".join(parts).encode()

    def do_GET(self) -> None:
        path = self.path.split("?", 1)[0]
        if path == "/healthz":
            self._send(200, b"ok")
        elif path == "/readyz":
            ready = self.ready_event.is_set()
            self._send(200 if ready else 503, self._readiness_body(ready))
        elif path == "/metrics":
            self._send(200, generate_latest(), CONTENT_TYPE_LATEST)
        else:
            self._send(404, b"not found")

    def log_message(self, fmt: str, *args: Any) -> None:
        logging.getLogger("labeler.health").debug(fmt, *args)


def make_probe_handler(
    ready: threading.Event,
    queue_depth: Callable[[], int] | None = None,
) -> type[_ProbeHandler]:
    """Return a handler class bound to the controller's readiness state.

    The stdlib server instantiates handlers without constructor arguments,
    so the state is bound as class attributes.
    """

    class _BoundProbeHandler(_ProbeHandler):
        ready_event = ready
        depth_fn = staticmethod(queue_depth) if queue_depth is not None else None

    return _BoundProbeHandler


def start_health_server(
    ready: threading.Event,
    port: int,
    queue_depth: Callable[[], int] | None = None,
    host: str = "0.0.0.0",  # noqa: S104
) -> ThreadingHTTPServer:
    """Start the probe server in a daemon thread and return it."""
    server = ThreadingHTTPServer((host, port), make_probe_handler(ready, queue_depth))
    server.daemon_threads = True
    server.block_on_close = False
    threading.Thread(target=server.serve_forever, name="labeler-health", daemon=True).start()
    logging.getLogger(__name__).info("Health server listening on :%d", server.server_address[1])
    return server
