from __future__ import annotations

import logging
import os
import signal
import threading

from labeler.src.config import ConfigError, load_config
from labeler.src.controller import build_controller
from labeler.src.health import start_health_server
from labeler.src.kube import build_clients, load_kube_configuration
from labeler.src.logs import configure_logging
from labeler.src.metrics import METRICS

RUNTIME_VERSION = "0.1.0"


def main() -> int:
    """Controller entrypoint: configure logging, build the controller, run until signalled."""
    configure_logging(os.getenv("LOG_LEVEL", "INFO"))
    logger = logging.getLogger(__name__)
    METRICS.build_info.info(
        {
            "version": os.getenv("APP_VERSION", RUNTIME_VERSION),
            "revision": os.getenv("GIT_SHA", "unknown"),
        }
    )

    try:
        config = load_config()
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2

    load_kube_configuration()
    apps_api, custom_api = build_clients()
    controller = build_controller(apps_api=apps_api, custom_api=custom_api, config=config)

    health_server = start_health_server(
        ready=controller.ready,
        port=config.health_port,
        queue_depth=controller.queue_depth,
    )

    shutdown_event = threading.Event()

    def _handle_signal(signum: int, frame: object) -> None:
        logger.info("Received signal %d, shutting down", signum)
        shutdown_event.set()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    try:
        controller.run(stop_event=shutdown_event)
    finally:
        health_server.shutdown()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
