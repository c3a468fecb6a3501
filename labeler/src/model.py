from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any

PRIMARY_KIND = "Labeler"
SECONDARY_KIND = "Deployment"


@dataclass(frozen=True)
class ObjectKey:
    """Identity of a watched object and the work queue's deduplication unit."""

    namespace: str
    name: str
    kind: str = PRIMARY_KIND

    def __str__(self) -> str:
        return f"{self.kind.lower()}/{self.namespace}/{self.name}"


class EventType(enum.Enum):
    ADDED = "Added"
    UPDATED = "Updated"
    DELETED = "Deleted"


@dataclass(frozen=True)
class ChangeEvent:
    """A normalized watch notification for one object of one kind."""

    kind: str
    key: ObjectKey
    event_type: EventType
    obj: Any = field(default=None, compare=False, repr=False)


class Outcome(enum.Enum):
    SUCCESS = "success"
    TRANSIENT_ERROR = "transient_error"
    PERMANENT_ERROR = "permanent_error"


@dataclass(frozen=True)
class ReconcileResult:
    """What a reconcile function reports back to the engine.

    ``requeue_after`` asks for another pass after that many seconds even on
    success.  ``status`` is written to the status sub-resource unless status
    updates are disabled.
    """

    outcome: Outcome = Outcome.SUCCESS
    requeue_after: float | None = None
    status: dict[str, Any] | None = None
    error: str | None = None

    @property
    def requeue(self) -> bool:
        """Whether the key should go back on the queue.  Permanent errors never do."""
        if self.outcome is Outcome.PERMANENT_ERROR:
            return False
        return self.outcome is Outcome.TRANSIENT_ERROR or self.requeue_after is not None


class ReconcileError(Exception):
    """Base class for errors a reconcile function may raise."""


class TransientError(ReconcileError):
    """Retryable condition, e.g. a dependent resource is not ready yet."""

    def __init__(self, message: str, requeue_after: float | None = None) -> None:
        super().__init__(message)
        self.requeue_after = requeue_after


class PermanentError(ReconcileError):
    """Non-retryable condition; the key is forgotten until a new event arrives."""


@dataclass(frozen=True)
class ObjectIdentity:
    """Metadata fields the engine needs, extracted from any object shape."""

    namespace: str
    name: str
    resource_version: str | None
    labels: dict[str, str]
    owner_references: tuple[tuple[str, str], ...]


def _field(source: Any, attr: str, camel: str | None = None) -> Any:
    if source is None:
        return None
    if isinstance(source, dict):
        if attr in source:
            return source[attr]
        return source.get(camel) if camel else None
    return getattr(source, attr, None)


def extract_identity(obj: Any) -> ObjectIdentity:
    """Pull namespace, name, labels and owner references out of *obj*.

    Works for both ``kubernetes`` model objects (snake_case attributes) and
    raw dict bodies (camelCase keys, as returned for custom objects).  Missing
    or malformed fields degrade to empty values rather than raising.
    """
    metadata = _field(obj, "metadata")

    raw_labels = _field(metadata, "labels")
    labels = (
        {k: str(v) for k, v in raw_labels.items() if isinstance(k, str)}
        if isinstance(raw_labels, dict)
        else {}
    )

    owners: list[tuple[str, str]] = []
    raw_owners = _field(metadata, "owner_references", "ownerReferences")
    if isinstance(raw_owners, (list, tuple)):
        for ref in raw_owners:
            kind = _field(ref, "kind")
            name = _field(ref, "name")
            if isinstance(kind, str) and isinstance(name, str) and name:
                owners.append((kind, name))

    namespace = _field(metadata, "namespace")
    name = _field(metadata, "name")
    resource_version = _field(metadata, "resource_version", "resourceVersion")
    return ObjectIdentity(
        namespace=namespace if isinstance(namespace, str) else "",
        name=name if isinstance(name, str) else "",
        resource_version=str(resource_version) if resource_version else None,
        labels=labels,
        owner_references=tuple(owners),
    )


def key_for(kind: str, obj: Any) -> ObjectKey:
    identity = extract_identity(obj)
    return ObjectKey(namespace=identity.namespace, name=identity.name, kind=kind)
