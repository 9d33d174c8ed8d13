"""Reconciliation of every object derived from one VarnishCluster.

Objects are reconciled in a fixed order because later steps consume names
and selectors produced by earlier ones: the Deployment needs the no-cache
Service's selector, and the cached Service selects the Deployment's pods.
"""

import copy
import logging
from typing import Any

from compare import is_equal, merge_patch
from config import OperatorConfig
from constants import COMPONENT_NO_CACHE_SERVICE, COMPONENT_VARNISH
from defaults import apply_defaults, validate_spec
from kube_client import KubeClient
from labels import component_labels, format_selector
from models import ClusterStatus, ConditionStatus, ServiceStatus
from resources.config_map import ensure_config_map
from resources.deployment import ensure_deployment
from resources.pod_disruption_budget import ensure_pod_disruption_budget
from resources.rbac import (
    ensure_cluster_role,
    ensure_cluster_role_binding,
    ensure_role,
    ensure_role_binding,
    ensure_service_account,
)
from resources.service import ensure_cached_service, ensure_no_cache_service
from utils import serialize, set_condition

logger = logging.getLogger(__name__)


def owner_body(body: dict[str, Any]) -> dict[str, Any]:
    """The parts of a VarnishCluster body needed for labels and owner references."""
    meta = body["metadata"]
    return {
        "apiVersion": body["apiVersion"],
        "kind": body["kind"],
        "metadata": {
            "name": meta["name"],
            "namespace": meta["namespace"],
            "uid": meta["uid"],
            "labels": dict(meta.get("labels") or {}),
        },
    }


def service_status(service: Any) -> ServiceStatus:
    return ServiceStatus(
        ip=service.spec.cluster_ip or "",
        status=serialize(service.status) or {},
    )


def status_update(
    observed: dict[str, Any], computed: ClusterStatus
) -> dict[str, Any] | None:
    """Return the status patch to write, or None when ``observed`` already matches.

    Sets the Ready condition. Each section the operator computes is compared
    exactly, and keys that vanished from it (such as
    ``deployment.unavailableReplicas`` once every pod is ready) are set to
    None in the patch so the merge patch removes them. Top-level status keys
    written by others are left alone.
    """
    desired = computed.to_dict()
    conditions = {"conditions": copy.deepcopy(observed.get("conditions") or [])}
    set_condition(conditions, "Ready", ConditionStatus.TRUE.value, "Reconciled", "")
    desired["conditions"] = conditions["conditions"]
    owned = {key: copy.deepcopy(observed[key]) for key in desired if key in observed}
    if is_equal(owned, desired):
        return None
    return merge_patch(owned, desired)


class ClusterReconciler:
    """Converge all derived objects of a VarnishCluster in dependency order."""

    def __init__(self, client: KubeClient, config: OperatorConfig) -> None:
        self.client = client
        self.config = config

    def reconcile(self, body: dict[str, Any]) -> ClusterStatus:
        """Run one full pass and return the freshly computed status.

        Raises ValidationError before touching the cluster if the
        VarnishCluster is unusable. Any other error aborts the pass; objects
        already applied stay applied and the next pass resumes from scratch.
        """
        owner = owner_body(body)
        meta = owner["metadata"]
        spec = apply_defaults(meta["name"], body.get("spec") or {}, self.config)
        validate_spec(spec)

        service_account = ensure_service_account(self.client, owner)
        role = ensure_role(self.client, owner)
        ensure_role_binding(self.client, owner, role, service_account)
        cluster_role = ensure_cluster_role(self.client, owner)
        ensure_cluster_role_binding(self.client, owner, cluster_role, service_account)

        no_cache_service = ensure_no_cache_service(self.client, owner, spec)
        endpoint_selector = component_labels(meta, COMPONENT_NO_CACHE_SERVICE)

        deployment = ensure_deployment(
            self.client, owner, spec, service_account, endpoint_selector
        )
        pod_selector = component_labels(meta, COMPONENT_VARNISH)

        config_map = ensure_config_map(self.client, owner, spec)
        ensure_pod_disruption_budget(self.client, owner, spec, pod_selector)
        cached_service = ensure_cached_service(self.client, owner, spec)

        logger.debug("Reconciled all objects of %s/%s", meta["namespace"], meta["name"])
        return ClusterStatus(
            no_cache_service=service_status(no_cache_service),
            cached_service=service_status(cached_service),
            deployment=serialize(deployment.status) or {},
            varnish_pods_selector=format_selector(cached_service.spec.selector or {}),
            config_map_version=config_map.metadata.resource_version or "",
        )
