from __future__ import annotations

import threading
import urllib.error
import urllib.request

from labeler.src.health import start_health_server


def _get(url: str, timeout: float = 2) -> tuple[int, str]:
    """Helper to make a GET request and return (status_code, body)."""
    try:
        with urllib.request.urlopen(url, timeout=timeout) as response:  # noqa: S310
            return response.status, response.read().decode()
    except urllib.error.HTTPError as exc:
        return exc.code, exc.read().decode()


class TestHealthServer:
    """Probe endpoints backed by the controller's readiness event and queue depth."""

    def setup_method(self) -> None:
        self.ready = threading.Event()
        self.depth = 0
        self.server = start_health_server(
            ready=self.ready,
            port=0,
            queue_depth=lambda: self.depth,
            host="127.0.0.1",
        )
        self.base_url = f"http://127.0.0.1:{self.server.server_address[1]}"

    def teardown_method(self) -> None:
        self.server.shutdown()
        self.server.server_close()

    def test_healthz_always_returns_200(self) -> None:
        assert _get(f"{self.base_url}/healthz") == (200, "ok")

    def test_readyz_returns_503_until_synced(self) -> None:
        status, body = _get(f"{self.base_url}/readyz")

        assert status == 503
        assert body == "ready=false queue_depth=0"

    def test_readyz_reports_queue_depth_once_ready(self) -> None:
        self.ready.set()
        self.depth = 3

        status, body = _get(f"{self.base_url}/readyz")

        assert status == 200
        assert body == "ready=true queue_depth=3"

    def test_readyz_ignores_query_string(self) -> None:
        self.ready.set()

        status, _ = _get(f"{self.base_url}/readyz?verbose=1")

        assert status == 200

    def test_metrics_exposes_reconcile_counter(self) -> None:
        status, body = _get(f"{self.base_url}/metrics")

        assert status == 200
        assert "labeler_cr_reconcile_total" in body

    def test_unknown_path_returns_404(self) -> None:
        status, _ = _get(f"{self.base_url}/nope")

        assert status == 404


def test_readyz_without_queue_depth() -> None:
    ready = threading.Event()
    ready.set()
    server = start_health_server(ready=ready, port=0, host="127.0.0.1")
    try:
        status, body = _get(f"http://127.0.0.1:{server.server_address[1]}/readyz")
    finally:
        server.shutdown()
        server.server_close()

    assert (status, body) == (200, "ready=true")
