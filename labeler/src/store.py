from __future__ import annotations

import logging
from typing import Any, Protocol

from kubernetes.client import ApiException, CustomObjectsApi

from labeler.src.model import ObjectKey

LOGGER = logging.getLogger(__name__)


class ObjectStore(Protocol):
    def get(self, key: ObjectKey) -> Any | None: ...

    def update_status(self, key: ObjectKey, status: dict[str, Any]) -> None: ...


class LabelerStore:
    """Reads and status-patches Labeler custom objects through ``CustomObjectsApi``.

    ``get`` returns ``None`` for objects that no longer exist; any other API
    failure propagates so the caller can treat it as retryable.
    """

    def __init__(
        self,
        custom_api: CustomObjectsApi,
        group: str,
        version: str,
        plural: str,
    ) -> None:
        self.custom_api = custom_api
        self.group = group
        self.version = version
        self.plural = plural

    def get(self, key: ObjectKey) -> dict[str, Any] | None:
        if not key.name:
            return None
        try:
            return self.custom_api.get_namespaced_custom_object(
                group=self.group,
                version=self.version,
                namespace=key.namespace,
                plural=self.plural,
                name=key.name,
            )
        except ApiException as exc:
            if exc.status == 404:
                return None
            raise

    def update_status(self, key: ObjectKey, status: dict[str, Any]) -> None:
        self.custom_api.patch_namespaced_custom_object_status(
            group=self.group,
            version=self.version,
            namespace=key.namespace,
            plural=self.plural,
            name=key.name,
            body={"status": status},
        )
        LOGGER.debug("Patched status of %s", key)
