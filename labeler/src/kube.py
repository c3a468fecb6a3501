from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from kubernetes import client, config
from kubernetes.client import AppsV1Api, CustomObjectsApi
from kubernetes.config.config_exception import ConfigException

LOGGER = logging.getLogger(__name__)

ListSource = tuple[Callable[..., Any], dict[str, Any]]


def load_kube_configuration() -> None:
    """Load Kubernetes client configuration.

    Attempts in-cluster config first (running inside a pod), falling back
    to the local kubeconfig for development.
    """
    try:
        config.load_incluster_config()
        LOGGER.info("Loaded in-cluster Kubernetes configuration")
    except ConfigException:
        config.load_kube_config()
        LOGGER.info("Loaded local kubeconfig")


def build_clients() -> tuple[AppsV1Api, CustomObjectsApi]:
    """Return AppsV1 and CustomObjects API clients using the active kube configuration."""
    return client.AppsV1Api(), client.CustomObjectsApi()


def labeler_list_source(
    custom_api: CustomObjectsApi,
    group: str,
    version: str,
    plural: str,
    namespace: str | None,
) -> ListSource:
    """Return the list call (and its arguments) that the Labeler watch streams from."""
    if namespace:
        return custom_api.list_namespaced_custom_object, {
            "group": group,
            "version": version,
            "namespace": namespace,
            "plural": plural,
        }
    return custom_api.list_cluster_custom_object, {
        "group": group,
        "version": version,
        "plural": plural,
    }


def deployment_list_source(apps_api: AppsV1Api, namespace: str | None) -> ListSource:
    """Return the list call (and its arguments) that the Deployment watch streams from."""
    if namespace:
        return apps_api.list_namespaced_deployment, {"namespace": namespace}
    return apps_api.list_deployment_for_all_namespaces, {}
