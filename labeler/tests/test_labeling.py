from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import pytest
from kubernetes.client import ApiException

from labeler.src.labeling import DeploymentLabeler
from labeler.src.model import Outcome, PermanentError, TransientError

OWNER_LABEL = "clusterops.dev/labeler"


class FakeAppsApi:
    def __init__(
        self,
        deployments: dict[str, dict[str, str]],
        list_error: ApiException | None = None,
        patch_error: ApiException | None = None,
    ) -> None:
        self.deployments = deployments
        self.list_error = list_error
        self.patch_error = patch_error
        self.patches: list[tuple[str, dict[str, Any]]] = []

    def list_namespaced_deployment(self, namespace: str) -> SimpleNamespace:
        if self.list_error is not None:
            raise self.list_error
        return SimpleNamespace(
            items=[
                SimpleNamespace(metadata=SimpleNamespace(name=name, namespace=namespace, labels=labels))
                for name, labels in self.deployments.items()
            ]
        )

    def patch_namespaced_deployment(self, name: str, namespace: str, body: dict[str, Any]) -> None:
        if self.patch_error is not None:
            raise self.patch_error
        self.patches.append((name, body))


def make_labeler(custom_labels: Any = None, generation: int = 3) -> dict[str, Any]:
    return {
        "metadata": {"name": "foo", "namespace": "default", "generation": generation},
        "spec": {"customLabels": custom_labels if custom_labels is not None else {"team": "platform"}},
    }


def test_labels_deployments_missing_desired_labels() -> None:
    api = FakeAppsApi(
        {
            "web": {"app": "web"},
            "done": {"team": "platform", OWNER_LABEL: "foo"},
        }
    )

    result = DeploymentLabeler(api, OWNER_LABEL)(make_labeler())

    assert result.outcome is Outcome.SUCCESS
    assert api.patches == [
        ("web", {"metadata": {"labels": {"team": "platform", OWNER_LABEL: "foo"}}}),
    ]
    assert result.status == {"labeledDeployments": 1, "observedGeneration": 3}


def test_deployments_owned_by_another_labeler_are_skipped() -> None:
    api = FakeAppsApi(
        {
            "web": {OWNER_LABEL: "bar"},
            "api": {},
        }
    )

    result = DeploymentLabeler(api, OWNER_LABEL)(make_labeler())

    assert [name for name, _ in api.patches] == ["api"]
    assert result.status == {"labeledDeployments": 1, "observedGeneration": 3}


def test_second_pass_converges_without_writes() -> None:
    api = FakeAppsApi({"web": {"team": "platform", OWNER_LABEL: "foo"}})

    result = DeploymentLabeler(api, OWNER_LABEL)(make_labeler())

    assert api.patches == []
    assert result.status == {"labeledDeployments": 0, "observedGeneration": 3}


@pytest.mark.parametrize("custom_labels", [["team"], {"team": 1}])
def test_invalid_custom_labels_are_permanent(custom_labels: Any) -> None:
    with pytest.raises(PermanentError):
        DeploymentLabeler(FakeAppsApi({}), OWNER_LABEL)(make_labeler(custom_labels))


def test_missing_identity_is_permanent() -> None:
    with pytest.raises(PermanentError):
        DeploymentLabeler(FakeAppsApi({}), OWNER_LABEL)({"metadata": {}, "spec": {}})


@pytest.mark.parametrize("status", [409, 429, 503])
def test_retryable_api_errors_are_transient(status: int) -> None:
    api = FakeAppsApi({"web": {}}, patch_error=ApiException(status=status, reason="busy"))

    with pytest.raises(TransientError):
        DeploymentLabeler(api, OWNER_LABEL)(make_labeler())


def test_forbidden_list_is_permanent() -> None:
    api = FakeAppsApi({}, list_error=ApiException(status=403, reason="Forbidden"))

    with pytest.raises(PermanentError, match="403"):
        DeploymentLabeler(api, OWNER_LABEL)(make_labeler())
