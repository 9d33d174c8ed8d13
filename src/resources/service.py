"""The backend-facing (no-cache) and client-facing (cached) Services."""

from typing import Any

from kubernetes.client import V1ObjectMeta, V1Service, V1ServicePort, V1ServiceSpec

from constants import (
    COMPONENT_CACHE_SERVICE,
    COMPONENT_NO_CACHE_SERVICE,
    COMPONENT_VARNISH,
    VARNISH_PORT_NAME,
)
from defaults import application_port
from kube_client import KubeClient
from labels import combined_labels, component_labels
from resources.generic import KindHandler, ObjectReconciler

NODE_PORT_TYPES = ("NodePort", "LoadBalancer")


def inherit_node_ports(
    to_ports: list[V1ServicePort], from_ports: list[V1ServicePort]
) -> None:
    """Fill unset node ports in ``to_ports`` from the allocated ``from_ports``.

    Ports are matched by port number. A node port set by the user wins.
    """
    for to_port in to_ports:
        if to_port.node_port:
            continue
        for from_port in from_ports:
            if from_port.port == to_port.port:
                to_port.node_port = from_port.node_port


def copy_service_immutable(observed: V1Service, desired: V1Service) -> None:
    """Carry the allocated cluster IPs and node ports over to desired."""
    desired.spec.cluster_ip = observed.spec.cluster_ip
    desired.spec.cluster_i_ps = observed.spec.cluster_i_ps
    if desired.spec.type in NODE_PORT_TYPES:
        inherit_node_ports(desired.spec.ports or [], observed.spec.ports or [])


def apply_service_defaults(service: V1Service) -> None:
    if service.spec.session_affinity is None:
        service.spec.session_affinity = "None"
    for port in service.spec.ports or []:
        if port.protocol is None:
            port.protocol = "TCP"
        if port.target_port is None:
            port.target_port = port.port


SERVICE = KindHandler(
    "Service",
    sections=("spec",),
    copy_immutable=copy_service_immutable,
    apply_defaults=apply_service_defaults,
    defaulted=frozenset(
        {
            "spec.allocateLoadBalancerNodePorts",
            "spec.clusterIP",
            "spec.clusterIPs",
            "spec.externalTrafficPolicy",
            "spec.healthCheckNodePort",
            "spec.internalTrafficPolicy",
            "spec.ipFamilies",
            "spec.ipFamilyPolicy",
            "spec.ports[].nodePort",
        }
    ),
)


def no_cache_service_name(owner_name: str) -> str:
    return f"{owner_name}-no-cache"


def desired_no_cache_service(owner: dict[str, Any], spec: dict[str, Any]) -> V1Service:
    """Service selecting the backend pods directly, bypassing the cache.

    Its Endpoints inherit the service's generated labels, which is how the
    sidecar finds the backend addresses.
    """
    meta = owner["metadata"]
    port = application_port(spec)
    return V1Service(
        api_version="v1",
        kind="Service",
        metadata=V1ObjectMeta(
            name=no_cache_service_name(meta["name"]),
            namespace=meta["namespace"],
            labels=combined_labels(meta, COMPONENT_NO_CACHE_SERVICE),
        ),
        spec=V1ServiceSpec(
            type="ClusterIP",
            selector=dict(spec["backend"]["selector"]),
            session_affinity="None",
            ports=[
                V1ServicePort(
                    name=port.get("name") or "backend",
                    protocol=port.get("protocol", "TCP"),
                    port=port["port"],
                    target_port=spec["backend"].get("port", port.get("targetPort")),
                )
            ],
        ),
    )


def desired_cached_service(owner: dict[str, Any], spec: dict[str, Any]) -> V1Service:
    """Client-facing Service selecting the varnish pods."""
    meta = owner["metadata"]
    port = application_port(spec)
    service_spec = spec.get("service") or {}
    return V1Service(
        api_version="v1",
        kind="Service",
        metadata=V1ObjectMeta(
            name=meta["name"],
            namespace=meta["namespace"],
            labels=combined_labels(meta, COMPONENT_CACHE_SERVICE),
            annotations=dict(service_spec.get("annotations") or {}),
        ),
        spec=V1ServiceSpec(
            type=service_spec.get("type", "ClusterIP"),
            selector=component_labels(meta, COMPONENT_VARNISH),
            session_affinity="None",
            ports=[
                V1ServicePort(
                    name=VARNISH_PORT_NAME,
                    protocol=port.get("protocol", "TCP"),
                    port=port["port"],
                    target_port=VARNISH_PORT_NAME,
                    node_port=port.get("nodePort"),
                )
            ],
        ),
    )


def ensure_no_cache_service(
    client: KubeClient, owner: dict[str, Any], spec: dict[str, Any]
) -> V1Service:
    """Reconcile the no-cache Service and return it as stored."""
    desired = desired_no_cache_service(owner, spec)
    return ObjectReconciler(client, SERVICE).reconcile(owner, desired)


def ensure_cached_service(
    client: KubeClient, owner: dict[str, Any], spec: dict[str, Any]
) -> V1Service:
    """Reconcile the cached Service and return it as stored."""
    desired = desired_cached_service(owner, spec)
    return ObjectReconciler(client, SERVICE).reconcile(owner, desired)
