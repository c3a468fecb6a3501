from __future__ import annotations

from types import SimpleNamespace

from labeler.src.model import (
    ChangeEvent,
    EventType,
    ObjectKey,
    Outcome,
    ReconcileResult,
    TransientError,
    extract_identity,
    key_for,
)


def test_object_key_renders_kind_namespace_name() -> None:
    assert str(ObjectKey(namespace="default", name="foo")) == "labeler/default/foo"


def test_object_key_is_hashable_and_immutable() -> None:
    key = ObjectKey(namespace="default", name="foo")

    assert {key, ObjectKey("default", "foo")} == {key}


def test_change_event_equality_ignores_body() -> None:
    key = ObjectKey(namespace="default", name="foo")

    assert ChangeEvent("Labeler", key, EventType.ADDED, obj={"a": 1}) == ChangeEvent(
        "Labeler", key, EventType.ADDED, obj={"b": 2}
    )


def test_extract_identity_from_dict_body() -> None:
    identity = extract_identity(
        {
            "metadata": {
                "name": "foo",
                "namespace": "default",
                "resourceVersion": 42,
                "labels": {"team": "platform"},
                "ownerReferences": [{"kind": "Labeler", "name": "bar"}, {"kind": "X"}],
            }
        }
    )

    assert identity.name == "foo"
    assert identity.namespace == "default"
    assert identity.resource_version == "42"
    assert identity.labels == {"team": "platform"}
    assert identity.owner_references == (("Labeler", "bar"),)


def test_extract_identity_from_model_object() -> None:
    obj = SimpleNamespace(
        metadata=SimpleNamespace(
            name="web",
            namespace="team-a",
            resource_version="7",
            labels=None,
            owner_references=[SimpleNamespace(kind="ReplicaSet", name="web-1")],
        )
    )

    identity = extract_identity(obj)

    assert identity.labels == {}
    assert identity.owner_references == (("ReplicaSet", "web-1"),)


def test_key_for_tolerates_missing_metadata() -> None:
    assert key_for("Deployment", None) == ObjectKey(namespace="", name="", kind="Deployment")


def test_result_requeue_flag() -> None:
    assert ReconcileResult().requeue is False
    assert ReconcileResult(requeue_after=5).requeue is True
    assert ReconcileResult(outcome=Outcome.TRANSIENT_ERROR).requeue is True
    assert ReconcileResult(outcome=Outcome.PERMANENT_ERROR, requeue_after=5).requeue is False


def test_transient_error_keeps_requested_delay() -> None:
    assert TransientError("later", requeue_after=3).requeue_after == 3
