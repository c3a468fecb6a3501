from __future__ import annotations

import logging
from typing import Any

from kubernetes.client import ApiException, AppsV1Api

from labeler.src.model import (
    PermanentError,
    ReconcileResult,
    TransientError,
    extract_identity,
)

LOGGER = logging.getLogger(__name__)

_RETRYABLE_STATUSES = {409, 429, 500, 502, 503, 504}


def _custom_labels(labeler: dict[str, Any]) -> dict[str, str]:
    spec = labeler.get("spec") or {}
    if not isinstance(spec, dict):
        raise PermanentError("spec must be an object")
    labels = spec.get("customLabels") or {}
    if not isinstance(labels, dict):
        raise PermanentError("spec.customLabels must be a map of strings")
    for key, value in labels.items():
        if not isinstance(key, str) or not isinstance(value, str):
            raise PermanentError(f"spec.customLabels entry {key!r} must map a string to a string")
    return labels


def _classify(exc: ApiException, action: str) -> Exception:
    if exc.status in _RETRYABLE_STATUSES or exc.status is None:
        return TransientError(f"{action} failed with status {exc.status}: {exc.reason}")
    return PermanentError(f"{action} failed with status {exc.status}: {exc.reason}")


class DeploymentLabeler:
    """Apply a Labeler's ``spec.customLabels`` to every Deployment in its namespace.

    Each patched Deployment is also stamped with the owner label, which is
    what lets later Deployment changes resolve back to this Labeler.  The
    first Labeler to stamp a Deployment keeps it: Deployments whose owner
    label names another Labeler are skipped.
    Deployments that already carry every label are left alone, so repeated
    reconciliations converge without writes.
    """

    def __init__(self, apps_api: AppsV1Api, owner_label: str) -> None:
        self.apps_api = apps_api
        self.owner_label = owner_label

    def __call__(self, labeler: dict[str, Any]) -> ReconcileResult:
        identity = extract_identity(labeler)
        if not identity.namespace or not identity.name:
            raise PermanentError("Labeler is missing metadata.namespace or metadata.name")

        desired = {**_custom_labels(labeler), self.owner_label: identity.name}
        try:
            deployments = self.apps_api.list_namespaced_deployment(namespace=identity.namespace)
        except ApiException as exc:
            raise _classify(exc, "listing deployments") from exc

        labeled = 0
        for deployment in deployments.items or []:
            current = extract_identity(deployment)
            if not current.name:
                continue
            claimed_by = current.labels.get(self.owner_label)
            if claimed_by and claimed_by != identity.name:
                LOGGER.debug(
                    "Skipping deployment %s/%s: already labeled by Labeler %s",
                    identity.namespace,
                    current.name,
                    claimed_by,
                )
                continue
            if all(current.labels.get(k) == v for k, v in desired.items()):
                continue
            try:
                self.apps_api.patch_namespaced_deployment(
                    name=current.name,
                    namespace=identity.namespace,
                    body={"metadata": {"labels": desired}},
                )
            except ApiException as exc:
                raise _classify(exc, f"patching deployment {current.name}") from exc
            labeled += 1
            LOGGER.info(
                "Labeled deployment %s/%s for Labeler %s",
                identity.namespace,
                current.name,
                identity.name,
            )

        generation = (labeler.get("metadata") or {}).get("generation")
        return ReconcileResult(
            status={"labeledDeployments": labeled, "observedGeneration": generation},
        )
