"""Create / update-if-different / no-op reconciliation of one derived object.

The same algorithm runs for every kind the operator manages. What differs
per kind is captured by a KindHandler: which top-level sections the
operator owns, which fields the platform assigns and must be carried over
from the observed object, and any API defaulting applied before comparison.
"""

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from kubernetes.client import V1OwnerReference

from compare import diff, labels_diff, subset_diff
from kube_client import KubeClient
from metrics import OBJECT_ACTIONS
from utils import serialize

logger = logging.getLogger(__name__)


def _noop(*_: Any) -> None:
    return None


@dataclass(frozen=True)
class KindHandler:
    """Kind-specific behaviour plugged into ObjectReconciler.

    Attributes:
        kind: Kubernetes kind, also the KubeClient dispatch key
        sections: model attributes owned by the operator (e.g. ``spec``,
            ``rules``); copied from desired onto observed on update
        copy_immutable: ``(observed, desired)`` hook copying platform-assigned
            fields into desired before comparison
        apply_defaults: hook filling API defaults into desired so the
            comparison does not flag them
        manage_annotations: whether metadata.annotations is compared and
            written
        defaulted: paths inside the sections that the API server fills in
            when the operator leaves them unset (see ``compare``)
    """

    kind: str
    sections: tuple[str, ...] = ()
    copy_immutable: Callable[[Any, Any], None] = _noop
    apply_defaults: Callable[[Any], None] = _noop
    manage_annotations: bool = True
    defaulted: frozenset[str] = frozenset()


def owner_reference(owner: dict[str, Any]) -> V1OwnerReference:
    """Build a controller owner reference to the VarnishCluster ``owner`` body."""
    meta = owner["metadata"]
    return V1OwnerReference(
        api_version=owner["apiVersion"],
        kind=owner["kind"],
        name=meta["name"],
        uid=meta["uid"],
        controller=True,
        block_owner_deletion=True,
    )


def set_controller_reference(owner: dict[str, Any], obj: Any) -> None:
    """Make ``owner`` the single controller of ``obj``, keeping other owners."""
    reference = owner_reference(owner)
    others = [
        ref
        for ref in (obj.metadata.owner_references or [])
        if ref.uid != reference.uid and not ref.controller
    ]
    obj.metadata.owner_references = others + [reference]


def _api_name(obj: Any, attribute: str) -> str:
    return getattr(obj, "attribute_map", {}).get(attribute, attribute)


def object_diff(handler: KindHandler, observed: Any, desired: Any) -> list[dict[str, Any]]:
    """Return the structured differences in the sections the operator owns."""
    changes = labels_diff(
        observed.metadata.labels, desired.metadata.labels, "metadata.labels"
    )
    if handler.manage_annotations:
        changes.extend(
            subset_diff(
                observed.metadata.annotations or {},
                desired.metadata.annotations or {},
                "metadata.annotations",
            )
        )
    changes.extend(
        diff(
            serialize(observed.metadata.owner_references) or [],
            serialize(desired.metadata.owner_references) or [],
            "metadata.ownerReferences",
        )
    )
    for section in handler.sections:
        changes.extend(
            diff(
                serialize(getattr(observed, section)),
                serialize(getattr(desired, section)),
                _api_name(desired, section),
                handler.defaulted,
            )
        )
    return changes


def copy_managed(handler: KindHandler, observed: Any, desired: Any) -> None:
    """Copy desired's owned sections onto the observed object."""
    observed.metadata.labels = desired.metadata.labels
    observed.metadata.owner_references = desired.metadata.owner_references
    if handler.manage_annotations:
        # Annotations added by other writers (kubectl, controllers) are kept.
        observed.metadata.annotations = {
            **(observed.metadata.annotations or {}),
            **(desired.metadata.annotations or {}),
        }
    for section in handler.sections:
        setattr(observed, section, getattr(desired, section))


class ObjectReconciler:
    """Converge one derived object of a given kind towards its desired state."""

    def __init__(self, client: KubeClient, handler: KindHandler) -> None:
        self.client = client
        self.handler = handler

    def reconcile(self, owner: dict[str, Any], desired: Any) -> Any:
        """Create, update or leave alone the object described by ``desired``.

        Returns the object as stored in the cluster after this pass. A 409 on
        create or replace surfaces as ConflictError; any other API failure
        propagates as KubernetesAPIError.
        """
        kind = self.handler.kind
        name = desired.metadata.name
        namespace = desired.metadata.namespace

        set_controller_reference(owner, desired)
        self.handler.apply_defaults(desired)

        observed = self.client.get(kind, name, namespace)
        if observed is None:
            created = self.client.create(kind, desired)
            OBJECT_ACTIONS.labels(kind=kind, action="create").inc()
            logger.info("Created %s %s", kind, name)
            return created

        self.handler.copy_immutable(observed, desired)
        changes = object_diff(self.handler, observed, desired)
        if not changes:
            OBJECT_ACTIONS.labels(kind=kind, action="noop").inc()
            logger.debug("No updates for %s %s", kind, name)
            return observed

        logger.info(
            "Updating %s %s, diff: %s", kind, name, json.dumps(changes, default=str)
        )
        copy_managed(self.handler, observed, desired)
        updated = self.client.replace(kind, observed)
        OBJECT_ACTIONS.labels(kind=kind, action="update").inc()
        return updated
