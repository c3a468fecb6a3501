from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from labeler.src.resolver import DEFAULT_OWNER_LABEL


class ConfigError(RuntimeError):
    """Raised when the controller configuration is invalid."""


@dataclass(frozen=True)
class ControllerConfig:
    """Immutable controller configuration loaded at startup.

    Attributes:
        namespace:            Namespace to watch; ``None`` watches all namespaces.
        workers:              Number of concurrent reconcile workers.
        skip_status_updates:  Do not write reconcile status back to the Labeler.
        backoff_base_seconds: First retry delay after a transient failure.
        backoff_cap_seconds:  Upper bound for retry delays.
        labeler_group:        API group of the Labeler custom resource.
        labeler_version:      API version of the Labeler custom resource.
        labeler_plural:       Plural resource name of the Labeler custom resource.
        owner_label:          Deployment label naming the Labeler that manages it.
        event_buffer_size:    Capacity of each per-kind event channel.
        resync_seconds:       Interval for replaying cached objects; ``0`` disables it.
        watch_timeout_seconds: Server-side timeout of a single watch request.
        health_port:          Port of the health and metrics HTTP server.
    """

    namespace: str | None = None
    workers: int = 2
    skip_status_updates: bool = True
    backoff_base_seconds: float = 0.005
    backoff_cap_seconds: float = 1000.0
    labeler_group: str = "clusterops.dev"
    labeler_version: str = "v1alpha1"
    labeler_plural: str = "labelers"
    owner_label: str = DEFAULT_OWNER_LABEL
    event_buffer_size: int = 1024
    resync_seconds: float = 0.0
    watch_timeout_seconds: int = 30
    health_port: int = 8080


def parse_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def env_int(
    values: Mapping[str, str],
    name: str,
    default: int,
    *,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int:
    raw = values.get(name)
    if raw is None or not raw.strip():
        value = default
    else:
        try:
            value = int(raw)
        except ValueError as exc:
            raise ConfigError(f"{name} must be an integer, got: {raw!r}") from exc

    if minimum is not None and value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got: {value}")
    if maximum is not None and value > maximum:
        raise ConfigError(f"{name} must be <= {maximum}, got: {value}")
    return value


def env_float(
    values: Mapping[str, str],
    name: str,
    default: float,
    *,
    minimum: float | None = None,
) -> float:
    raw = values.get(name)
    if raw is None or not raw.strip():
        value = default
    else:
        try:
            value = float(raw)
        except ValueError as exc:
            raise ConfigError(f"{name} must be a number, got: {raw!r}") from exc

    if minimum is not None and value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got: {value}")
    return value


def _env_str(values: Mapping[str, str], name: str, default: str) -> str:
    value = values.get(name, default).strip()
    if not value:
        raise ConfigError(f"{name} must be a non-empty string")
    return value


def load_config(env: Mapping[str, str] | None = None) -> ControllerConfig:
    """Load controller configuration from the environment.

    Environment variables (with defaults):
        ``WATCH_NAMESPACE``       Namespace to watch (empty: all namespaces).
        ``WORKER_COUNT``          Reconcile workers (``2``).
        ``SKIP_STATUS_UPDATES``   Skip status sub-resource writes (``true``).
        ``BACKOFF_BASE_SECONDS``  First retry delay (``0.005``).
        ``BACKOFF_CAP_SECONDS``   Maximum retry delay (``1000``).
        ``LABELER_GROUP`` / ``LABELER_VERSION`` / ``LABELER_PLURAL``
                                  Labeler resource coordinates
                                  (``clusterops.dev`` / ``v1alpha1`` / ``labelers``).
        ``OWNER_LABEL``           Deployment label naming its Labeler
                                  (``clusterops.dev/labeler``).
        ``EVENT_BUFFER_SIZE``     Per-kind event channel capacity (``1024``).
        ``RESYNC_SECONDS``        Cache replay interval, ``0`` disables (``0``).
        ``WATCH_TIMEOUT_SECONDS`` Watch request timeout (``30``).
        ``HEALTH_PORT``           Health server port (``8080``).
    """
    values = env if env is not None else os.environ

    namespace = values.get("WATCH_NAMESPACE", "").strip() or None
    backoff_base = env_float(values, "BACKOFF_BASE_SECONDS", 0.005, minimum=0.0)
    if backoff_base <= 0:
        raise ConfigError("BACKOFF_BASE_SECONDS must be > 0")
    backoff_cap = env_float(values, "BACKOFF_CAP_SECONDS", 1000.0, minimum=0.0)
    if backoff_cap < backoff_base:
        raise ConfigError(
            f"BACKOFF_CAP_SECONDS ({backoff_cap}) must be >= BACKOFF_BASE_SECONDS ({backoff_base})"
        )

    owner_label = _env_str(values, "OWNER_LABEL", DEFAULT_OWNER_LABEL)
    if "=" in owner_label or "," in owner_label:
        raise ConfigError(f"OWNER_LABEL must be a bare label key, got: {owner_label!r}")

    return ControllerConfig(
        namespace=namespace,
        workers=env_int(values, "WORKER_COUNT", 2, minimum=1, maximum=256),
        skip_status_updates=parse_bool(values.get("SKIP_STATUS_UPDATES"), default=True),
        backoff_base_seconds=backoff_base,
        backoff_cap_seconds=backoff_cap,
        labeler_group=_env_str(values, "LABELER_GROUP", "clusterops.dev"),
        labeler_version=_env_str(values, "LABELER_VERSION", "v1alpha1"),
        labeler_plural=_env_str(values, "LABELER_PLURAL", "labelers"),
        owner_label=owner_label,
        event_buffer_size=env_int(values, "EVENT_BUFFER_SIZE", 1024, minimum=1),
        resync_seconds=env_float(values, "RESYNC_SECONDS", 0.0, minimum=0.0),
        watch_timeout_seconds=env_int(values, "WATCH_TIMEOUT_SECONDS", 30, minimum=1),
        health_port=env_int(values, "HEALTH_PORT", 8080, minimum=1, maximum=65535),
    )
