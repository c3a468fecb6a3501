from __future__ import annotations

import logging

from labeler.src.metrics import METRICS
from labeler.src.model import (
    PRIMARY_KIND,
    SECONDARY_KIND,
    ChangeEvent,
    ObjectKey,
    extract_identity,
)

DEFAULT_OWNER_LABEL = "clusterops.dev/labeler"


class KeyResolver:
    """Map a change on either watched kind to the Labeler keys it affects.

    A Labeler change resolves to its own key.  A Deployment change resolves
    through two relationships, both scoped to the Deployment's namespace:

    * ``metadata.ownerReferences`` entries whose kind is the primary kind;
    * the owner label (``clusterops.dev/labeler=<name>`` by default), which
      the labeling logic stamps on every Deployment it manages.

    Changes with no discoverable owner are dropped: logged and counted, never
    enqueued or retried.
    """

    def __init__(
        self,
        primary_kind: str = PRIMARY_KIND,
        secondary_kind: str = SECONDARY_KIND,
        owner_label: str = DEFAULT_OWNER_LABEL,
        logger: logging.Logger | None = None,
    ) -> None:
        self.primary_kind = primary_kind
        self.secondary_kind = secondary_kind
        self.owner_label = owner_label
        self.logger = logger or logging.getLogger(__name__)

    def resolve(self, event: ChangeEvent) -> set[ObjectKey]:
        if event.kind == self.primary_kind:
            return {event.key}

        if event.kind != self.secondary_kind:
            self._drop(event, "unknown kind")
            return set()

        keys = self._owners_of(event)
        if not keys:
            self._drop(event, "no owning Labeler")
        return keys

    def _owners_of(self, event: ChangeEvent) -> set[ObjectKey]:
        identity = extract_identity(event.obj)
        namespace = identity.namespace or event.key.namespace

        names = {name for kind, name in identity.owner_references if kind == self.primary_kind}
        labelled_owner = identity.labels.get(self.owner_label, "").strip()
        if labelled_owner:
            names.add(labelled_owner)

        return {
            ObjectKey(namespace=namespace, name=name, kind=self.primary_kind)
            for name in names
        }

    def _drop(self, event: ChangeEvent, reason: str) -> None:
        METRICS.dropped_events_total.labels(kind=event.kind).inc()
        self.logger.info(
            "Dropping %s event for %s: %s",
            event.event_type.value,
            event.key,
            reason,
            extra={"fields": {"kind": event.kind, "reason": reason}},
        )
