from __future__ import annotations

import signal
import threading
from collections.abc import Callable, Iterator
from unittest.mock import MagicMock, patch

import pytest

from labeler.src.__main__ import main
from labeler.src.config import ControllerConfig


@pytest.fixture
def patched_runtime() -> Iterator[dict[str, MagicMock]]:
    controller = MagicMock()
    controller.ready = threading.Event()
    with (
        patch("labeler.src.__main__.configure_logging") as configure_logging,
        patch("labeler.src.__main__.load_kube_configuration") as load_kube,
        patch(
            "labeler.src.__main__.build_clients",
            return_value=(MagicMock(name="apps"), MagicMock(name="custom")),
        ),
        patch("labeler.src.__main__.build_controller", return_value=controller) as build,
        patch("labeler.src.__main__.start_health_server") as start_health,
        patch("labeler.src.__main__.signal.signal") as signal_fn,
        patch("labeler.src.__main__.load_config", return_value=ControllerConfig(health_port=9000)),
    ):
        yield {
            "controller": controller,
            "configure_logging": configure_logging,
            "load_kube": load_kube,
            "build": build,
            "start_health": start_health,
            "signal": signal_fn,
        }


def test_main_runs_controller_until_it_returns(patched_runtime: dict[str, MagicMock]) -> None:
    assert main() == 0

    controller = patched_runtime["controller"]
    controller.run.assert_called_once()
    patched_runtime["load_kube"].assert_called_once()
    patched_runtime["start_health"].assert_called_once_with(
        ready=controller.ready,
        port=9000,
        queue_depth=controller.queue_depth,
    )
    patched_runtime["start_health"].return_value.shutdown.assert_called_once()


def test_signal_handler_sets_controller_stop_event(patched_runtime: dict[str, MagicMock]) -> None:
    main()

    handlers: dict[int, Callable[[int, object], None]] = {
        call.args[0]: call.args[1] for call in patched_runtime["signal"].call_args_list
    }
    assert set(handlers) == {signal.SIGTERM, signal.SIGINT}

    stop_event = patched_runtime["controller"].run.call_args.kwargs["stop_event"]
    assert not stop_event.is_set()
    handlers[signal.SIGTERM](signal.SIGTERM, None)
    assert stop_event.is_set()


def test_health_server_stopped_when_controller_crashes(patched_runtime: dict[str, MagicMock]) -> None:
    patched_runtime["controller"].run.side_effect = RuntimeError("boom")

    with pytest.raises(RuntimeError):
        main()

    patched_runtime["start_health"].return_value.shutdown.assert_called_once()


def test_invalid_configuration_exits_with_status_2() -> None:
    from labeler.src.config import ConfigError

    with (
        patch("labeler.src.__main__.configure_logging"),
        patch("labeler.src.__main__.load_config", side_effect=ConfigError("WORKER_COUNT bad")),
        patch("labeler.src.__main__.load_kube_configuration") as load_kube,
    ):
        assert main() == 2

    load_kube.assert_not_called()
