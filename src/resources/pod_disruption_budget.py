"""PodDisruptionBudget protecting the varnish pods."""

import logging
from typing import Any

from kubernetes.client import (
    V1LabelSelector,
    V1ObjectMeta,
    V1PodDisruptionBudget,
    V1PodDisruptionBudgetSpec,
)

from constants import COMPONENT_POD_DISRUPTION_BUDGET
from kube_client import KubeClient
from labels import combined_labels
from metrics import OBJECT_ACTIONS
from resources.generic import KindHandler, ObjectReconciler

logger = logging.getLogger(__name__)

POD_DISRUPTION_BUDGET = KindHandler("PodDisruptionBudget", sections=("spec",))


def pod_disruption_budget_name(owner_name: str) -> str:
    return f"{owner_name}-varnish-pdb"


def _is_owned_by(obj: Any, owner_uid: str) -> bool:
    return any(ref.uid == owner_uid for ref in obj.metadata.owner_references or [])


def desired_pod_disruption_budget(
    owner: dict[str, Any], budget: dict[str, Any], pod_selector: dict[str, str]
) -> V1PodDisruptionBudget:
    meta = owner["metadata"]
    return V1PodDisruptionBudget(
        api_version="policy/v1",
        kind="PodDisruptionBudget",
        metadata=V1ObjectMeta(
            name=pod_disruption_budget_name(meta["name"]),
            namespace=meta["namespace"],
            labels=combined_labels(meta, COMPONENT_POD_DISRUPTION_BUDGET),
        ),
        spec=V1PodDisruptionBudgetSpec(
            selector=V1LabelSelector(match_labels=dict(pod_selector)),
            min_available=budget.get("minAvailable"),
            max_unavailable=budget.get("maxUnavailable"),
        ),
    )


def ensure_pod_disruption_budget(
    client: KubeClient,
    owner: dict[str, Any],
    spec: dict[str, Any],
    pod_selector: dict[str, str],
) -> V1PodDisruptionBudget | None:
    """Reconcile the budget, or delete it when the VarnishCluster no longer asks for one."""
    meta = owner["metadata"]
    budget = spec.get("podDisruptionBudget")
    if not budget:
        name = pod_disruption_budget_name(meta["name"])
        observed = client.get("PodDisruptionBudget", name, meta["namespace"])
        if observed is not None and _is_owned_by(observed, meta["uid"]):
            logger.info("PodDisruptionBudget not requested, removing %s", name)
            client.delete("PodDisruptionBudget", name, meta["namespace"])
            OBJECT_ACTIONS.labels(kind="PodDisruptionBudget", action="delete").inc()
        return None

    desired = desired_pod_disruption_budget(owner, budget, pod_selector)
    return ObjectReconciler(client, POD_DISRUPTION_BUDGET).reconcile(owner, desired)
