"""Kubernetes API wrapper with error translation and per-kind dispatch."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from kubernetes import client as k8s_client
from kubernetes.client.exceptions import ApiException

from constants import GROUP, PLURAL, VERSION
from metrics import KUBE_API_CALLS, KUBE_API_DURATION
from models import ConflictError, KubernetesAPIError, ResourceNotFoundError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def translate_api_error(exc: ApiException, operation: str) -> Exception:
    """Map an ApiException onto the operator's error classes."""
    if exc.status == 404:
        return ResourceNotFoundError(f"{operation}: not found")
    if exc.status == 409:
        return ConflictError(f"{operation}: conflict ({exc.reason})")
    return KubernetesAPIError(f"{operation} failed with status {exc.status}: {exc.reason}")


@dataclass(frozen=True)
class KindAPI:
    """Where the read/create/replace/delete calls of one kind live."""

    api: str
    suffix: str
    namespaced: bool = True


KIND_APIS: dict[str, KindAPI] = {
    "ServiceAccount": KindAPI("core", "namespaced_service_account"),
    "Role": KindAPI("rbac", "namespaced_role"),
    "RoleBinding": KindAPI("rbac", "namespaced_role_binding"),
    "ClusterRole": KindAPI("rbac", "cluster_role", namespaced=False),
    "ClusterRoleBinding": KindAPI("rbac", "cluster_role_binding", namespaced=False),
    "Service": KindAPI("core", "namespaced_service"),
    "Deployment": KindAPI("apps", "namespaced_deployment"),
    "ConfigMap": KindAPI("core", "namespaced_config_map"),
    "PodDisruptionBudget": KindAPI("policy", "namespaced_pod_disruption_budget"),
    "Pod": KindAPI("core", "namespaced_pod"),
}


class KubeClient:
    """Thin wrapper around the generated Kubernetes API classes.

    Every call is timed and counted. ``get`` returns None for a missing
    object; all other calls raise ResourceNotFoundError, ConflictError or
    KubernetesAPIError.
    """

    def __init__(
        self,
        core: Any = None,
        apps: Any = None,
        rbac: Any = None,
        policy: Any = None,
        custom: Any = None,
    ) -> None:
        self.core = core if core is not None else k8s_client.CoreV1Api()
        self.apps = apps if apps is not None else k8s_client.AppsV1Api()
        self.rbac = rbac if rbac is not None else k8s_client.RbacAuthorizationV1Api()
        self.policy = policy if policy is not None else k8s_client.PolicyV1Api()
        self.custom = custom if custom is not None else k8s_client.CustomObjectsApi()

    def _call(
        self,
        kind: str,
        operation: str,
        method: Callable[..., T],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        start = time.monotonic()
        status = "success"
        try:
            return method(*args, **kwargs)
        except ApiException as e:
            status = str(e.status)
            raise translate_api_error(e, f"{operation} {kind}") from e
        finally:
            KUBE_API_CALLS.labels(kind=kind, operation=operation, status=status).inc()
            KUBE_API_DURATION.labels(kind=kind, operation=operation).observe(
                time.monotonic() - start
            )

    def _method(self, kind: str, operation: str) -> tuple[KindAPI, Callable[..., Any]]:
        try:
            kind_api = KIND_APIS[kind]
        except KeyError as e:
            raise KubernetesAPIError(f"Unsupported kind: {kind}") from e
        api = getattr(self, kind_api.api)
        return kind_api, getattr(api, f"{operation}_{kind_api.suffix}")

    # -------------------------------------------------------------------------
    # Generic object operations
    # -------------------------------------------------------------------------

    def get(self, kind: str, name: str, namespace: str | None = None) -> Any | None:
        """Read an object, or return None if it does not exist."""
        kind_api, method = self._method(kind, "read")
        args = (name, namespace) if kind_api.namespaced else (name,)
        try:
            return self._call(kind, "read", method, *args)
        except ResourceNotFoundError:
            return None

    def create(self, kind: str, body: Any) -> Any:
        """Create an object. Namespaced kinds use ``body.metadata.namespace``."""
        kind_api, method = self._method(kind, "create")
        args = (body.metadata.namespace, body) if kind_api.namespaced else (body,)
        logger.info("Creating %s %s", kind, body.metadata.name)
        return self._call(kind, "create", method, *args)

    def replace(self, kind: str, body: Any) -> Any:
        """Replace an object. ``body`` must carry the observed resourceVersion."""
        kind_api, method = self._method(kind, "replace")
        name = body.metadata.name
        args = (name, body.metadata.namespace, body) if kind_api.namespaced else (name, body)
        return self._call(kind, "replace", method, *args)

    def delete(self, kind: str, name: str, namespace: str | None = None) -> None:
        """Delete an object. Deleting an absent object is not an error."""
        kind_api, method = self._method(kind, "delete")
        args = (name, namespace) if kind_api.namespaced else (name,)
        logger.info("Deleting %s %s", kind, name)
        try:
            self._call(kind, "delete", method, *args)
        except ResourceNotFoundError:
            logger.debug("%s %s already deleted", kind, name)

    # -------------------------------------------------------------------------
    # Topology lookups
    # -------------------------------------------------------------------------

    def list_endpoints(self, namespace: str, label_selector: str) -> list[Any]:
        """List Endpoints objects matching ``label_selector``."""
        result = self._call(
            "Endpoints",
            "list",
            self.core.list_namespaced_endpoints,
            namespace,
            label_selector=label_selector,
        )
        return list(result.items or [])

    def read_node_labels(self, name: str) -> dict[str, str]:
        """Return the labels of a node."""
        node = self._call("Node", "read", self.core.read_node, name)
        return dict(node.metadata.labels or {})

    # -------------------------------------------------------------------------
    # Pods and the VarnishCluster resource
    # -------------------------------------------------------------------------

    def patch_pod_annotations(
        self, name: str, namespace: str, annotations: dict[str, str]
    ) -> None:
        """Merge-patch annotations onto a pod."""
        body = {"metadata": {"annotations": annotations}}
        self._call("Pod", "patch", self.core.patch_namespaced_pod, name, namespace, body)

    def get_varnish_cluster(self, name: str, namespace: str) -> dict[str, Any] | None:
        """Read a VarnishCluster, or return None if it does not exist."""
        try:
            return self._call(
                "VarnishCluster",
                "read",
                self.custom.get_namespaced_custom_object,
                GROUP,
                VERSION,
                namespace,
                PLURAL,
                name,
            )
        except ResourceNotFoundError:
            return None
