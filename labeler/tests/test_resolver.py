from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import pytest

from labeler.src.metrics import METRICS
from labeler.src.model import ChangeEvent, EventType, ObjectKey, key_for
from labeler.src.resolver import KeyResolver


def make_deployment(
    name: str = "web",
    namespace: str = "default",
    labels: dict[str, str] | None = None,
    owners: list[tuple[str, str]] | None = None,
) -> SimpleNamespace:
    owner_references = [SimpleNamespace(kind=kind, name=owner) for kind, owner in owners or []]
    return SimpleNamespace(
        metadata=SimpleNamespace(
            name=name,
            namespace=namespace,
            labels=labels or {},
            owner_references=owner_references or None,
            resource_version="7",
        )
    )


def deployment_event(obj: Any, event_type: EventType = EventType.UPDATED) -> ChangeEvent:
    return ChangeEvent(
        kind="Deployment",
        key=key_for("Deployment", obj),
        event_type=event_type,
        obj=obj,
    )


def _dropped(kind: str) -> float:
    return METRICS.dropped_events_total.labels(kind=kind)._value.get()


def test_primary_event_resolves_to_its_own_key() -> None:
    resolver = KeyResolver()
    key = ObjectKey(namespace="default", name="foo")
    event = ChangeEvent(kind="Labeler", key=key, event_type=EventType.ADDED)

    assert resolver.resolve(event) == {key}


def test_secondary_event_resolves_through_owner_reference() -> None:
    resolver = KeyResolver()
    deployment = make_deployment(owners=[("Labeler", "foo"), ("ReplicaSet", "web-123")])

    keys = resolver.resolve(deployment_event(deployment))

    assert keys == {ObjectKey(namespace="default", name="foo", kind="Labeler")}


def test_secondary_event_resolves_through_owner_label() -> None:
    resolver = KeyResolver(owner_label="clusterops.dev/labeler")
    deployment = make_deployment(namespace="team-a", labels={"clusterops.dev/labeler": "foo"})

    keys = resolver.resolve(deployment_event(deployment))

    assert keys == {ObjectKey(namespace="team-a", name="foo")}


def test_owner_reference_and_label_are_unioned() -> None:
    resolver = KeyResolver()
    deployment = make_deployment(
        labels={"clusterops.dev/labeler": "bar"},
        owners=[("Labeler", "foo")],
    )

    keys = resolver.resolve(deployment_event(deployment))

    assert keys == {
        ObjectKey(namespace="default", name="foo"),
        ObjectKey(namespace="default", name="bar"),
    }


def test_same_owner_from_both_relationships_yields_one_key() -> None:
    resolver = KeyResolver()
    deployment = make_deployment(
        labels={"clusterops.dev/labeler": "foo"},
        owners=[("Labeler", "foo")],
    )

    assert resolver.resolve(deployment_event(deployment)) == {ObjectKey("default", "foo")}


def test_secondary_dict_body_with_camel_case_owner_references() -> None:
    resolver = KeyResolver()
    deployment = {
        "metadata": {
            "name": "web",
            "namespace": "default",
            "ownerReferences": [{"kind": "Labeler", "name": "foo", "uid": "abc"}],
        }
    }

    keys = resolver.resolve(deployment_event(deployment, EventType.DELETED))

    assert keys == {ObjectKey(namespace="default", name="foo")}


def test_orphan_secondary_event_is_dropped_and_counted() -> None:
    resolver = KeyResolver()
    before = _dropped("Deployment")

    keys = resolver.resolve(deployment_event(make_deployment(owners=[("ReplicaSet", "x")])))

    assert keys == set()
    assert _dropped("Deployment") == before + 1


def test_blank_owner_label_is_ignored() -> None:
    resolver = KeyResolver()
    deployment = make_deployment(labels={"clusterops.dev/labeler": "  "})

    assert resolver.resolve(deployment_event(deployment)) == set()


@pytest.mark.parametrize("obj", [None, SimpleNamespace(), {"metadata": "garbage"}])
def test_malformed_secondary_object_is_dropped_without_raising(obj: Any) -> None:
    resolver = KeyResolver()

    assert resolver.resolve(deployment_event(obj)) == set()


def test_unknown_kind_is_dropped() -> None:
    resolver = KeyResolver()
    before = _dropped("ConfigMap")
    event = ChangeEvent(
        kind="ConfigMap",
        key=ObjectKey(namespace="default", name="cfg", kind="ConfigMap"),
        event_type=EventType.UPDATED,
    )

    assert resolver.resolve(event) == set()
    assert _dropped("ConfigMap") == before + 1
