"""ServiceAccount and RBAC objects used by the varnish-controller sidecar."""

from typing import Any

from kubernetes.client import (
    RbacV1Subject,
    V1ClusterRole,
    V1ClusterRoleBinding,
    V1ObjectMeta,
    V1PolicyRule,
    V1Role,
    V1RoleBinding,
    V1RoleRef,
    V1ServiceAccount,
)

from constants import (
    COMPONENT_CLUSTER_ROLE,
    COMPONENT_CLUSTER_ROLE_BINDING,
    COMPONENT_ROLE,
    COMPONENT_ROLE_BINDING,
    COMPONENT_SERVICE_ACCOUNT,
    GROUP,
    PLURAL,
)
from kube_client import KubeClient
from labels import combined_labels
from resources.generic import KindHandler, ObjectReconciler

RBAC_API_GROUP = "rbac.authorization.k8s.io"

SERVICE_ACCOUNT = KindHandler("ServiceAccount")
ROLE = KindHandler("Role", sections=("rules",))
ROLE_BINDING = KindHandler("RoleBinding", sections=("role_ref", "subjects"))
CLUSTER_ROLE = KindHandler("ClusterRole", sections=("rules",))
CLUSTER_ROLE_BINDING = KindHandler(
    "ClusterRoleBinding", sections=("role_ref", "subjects")
)

# What the sidecar reads and writes in its own namespace
ROLE_RULES = [
    V1PolicyRule(
        api_groups=[""], resources=["endpoints", "configmaps"], verbs=["get", "list", "watch"]
    ),
    V1PolicyRule(api_groups=[""], resources=["events"], verbs=["create", "patch"]),
    V1PolicyRule(
        api_groups=[""], resources=["pods"], verbs=["get", "list", "watch", "patch"]
    ),
    V1PolicyRule(api_groups=[GROUP], resources=[PLURAL], verbs=["get", "list", "watch"]),
]

# Node labels are exposed to VCL templates
CLUSTER_ROLE_RULES = [
    V1PolicyRule(api_groups=[""], resources=["nodes"], verbs=["get", "list", "watch"]),
]


def _meta(
    owner: dict[str, Any], name: str, component: str, namespaced: bool = True
) -> V1ObjectMeta:
    meta = owner["metadata"]
    return V1ObjectMeta(
        name=name,
        namespace=meta["namespace"] if namespaced else None,
        labels=combined_labels(meta, component),
    )


def service_account_name(owner_name: str) -> str:
    return f"{owner_name}-varnish-serviceaccount"


def role_name(owner_name: str) -> str:
    return f"{owner_name}-varnish-role"


def cluster_role_name(owner_name: str, namespace: str) -> str:
    # Cluster-scoped names must be unique across namespaces.
    return f"{owner_name}-{namespace}-varnish-clusterrole"


def desired_service_account(owner: dict[str, Any]) -> V1ServiceAccount:
    name = service_account_name(owner["metadata"]["name"])
    return V1ServiceAccount(
        api_version="v1",
        kind="ServiceAccount",
        metadata=_meta(owner, name, COMPONENT_SERVICE_ACCOUNT),
    )


def desired_role(owner: dict[str, Any]) -> V1Role:
    name = role_name(owner["metadata"]["name"])
    return V1Role(
        api_version=f"{RBAC_API_GROUP}/v1",
        kind="Role",
        metadata=_meta(owner, name, COMPONENT_ROLE),
        rules=list(ROLE_RULES),
    )


def desired_role_binding(
    owner: dict[str, Any], role: str, service_account: str
) -> V1RoleBinding:
    meta = owner["metadata"]
    return V1RoleBinding(
        api_version=f"{RBAC_API_GROUP}/v1",
        kind="RoleBinding",
        metadata=_meta(owner, f"{meta['name']}-varnish-rolebinding", COMPONENT_ROLE_BINDING),
        role_ref=V1RoleRef(api_group=RBAC_API_GROUP, kind="Role", name=role),
        subjects=[
            RbacV1Subject(
                kind="ServiceAccount", name=service_account, namespace=meta["namespace"]
            )
        ],
    )


def desired_cluster_role(owner: dict[str, Any]) -> V1ClusterRole:
    meta = owner["metadata"]
    return V1ClusterRole(
        api_version=f"{RBAC_API_GROUP}/v1",
        kind="ClusterRole",
        metadata=_meta(
            owner,
            cluster_role_name(meta["name"], meta["namespace"]),
            COMPONENT_CLUSTER_ROLE,
            namespaced=False,
        ),
        rules=list(CLUSTER_ROLE_RULES),
    )


def desired_cluster_role_binding(
    owner: dict[str, Any], cluster_role: str, service_account: str
) -> V1ClusterRoleBinding:
    meta = owner["metadata"]
    return V1ClusterRoleBinding(
        api_version=f"{RBAC_API_GROUP}/v1",
        kind="ClusterRoleBinding",
        metadata=_meta(
            owner,
            f"{meta['name']}-{meta['namespace']}-varnish-clusterrolebinding",
            COMPONENT_CLUSTER_ROLE_BINDING,
            namespaced=False,
        ),
        role_ref=V1RoleRef(api_group=RBAC_API_GROUP, kind="ClusterRole", name=cluster_role),
        subjects=[
            RbacV1Subject(
                kind="ServiceAccount", name=service_account, namespace=meta["namespace"]
            )
        ],
    )


def ensure_service_account(client: KubeClient, owner: dict[str, Any]) -> str:
    """Ensure the sidecar's ServiceAccount exists. Returns its name."""
    desired = desired_service_account(owner)
    ObjectReconciler(client, SERVICE_ACCOUNT).reconcile(owner, desired)
    return desired.metadata.name


def ensure_role(client: KubeClient, owner: dict[str, Any]) -> str:
    """Ensure the namespaced Role exists. Returns its name."""
    desired = desired_role(owner)
    ObjectReconciler(client, ROLE).reconcile(owner, desired)
    return desired.metadata.name


def ensure_role_binding(
    client: KubeClient, owner: dict[str, Any], role: str, service_account: str
) -> str:
    """Bind ``role`` to ``service_account``. Returns the binding name."""
    desired = desired_role_binding(owner, role, service_account)
    ObjectReconciler(client, ROLE_BINDING).reconcile(owner, desired)
    return desired.metadata.name


def ensure_cluster_role(client: KubeClient, owner: dict[str, Any]) -> str:
    """Ensure the ClusterRole for node reads exists. Returns its name."""
    desired = desired_cluster_role(owner)
    ObjectReconciler(client, CLUSTER_ROLE).reconcile(owner, desired)
    return desired.metadata.name


def ensure_cluster_role_binding(
    client: KubeClient, owner: dict[str, Any], cluster_role: str, service_account: str
) -> str:
    """Bind ``cluster_role`` to ``service_account``. Returns the binding name."""
    desired = desired_cluster_role_binding(owner, cluster_role, service_account)
    ObjectReconciler(client, CLUSTER_ROLE_BINDING).reconcile(owner, desired)
    return desired.metadata.name
