"""The Deployment running varnishd with the varnish-controller sidecar."""

from typing import Any

from kubernetes.client import (
    V1Container,
    V1ContainerPort,
    V1Deployment,
    V1DeploymentSpec,
    V1EmptyDirVolumeSource,
    V1EnvVar,
    V1EnvVarSource,
    V1LabelSelector,
    V1ObjectFieldSelector,
    V1ObjectMeta,
    V1PodSpec,
    V1PodTemplateSpec,
    V1Volume,
    V1VolumeMount,
)

from constants import (
    COMPONENT_VARNISH,
    GROUP,
    KIND,
    VARNISH_CONTAINER_NAME,
    VARNISH_CONTROLLER_CONTAINER_NAME,
    VARNISH_CONTROLLER_METRICS_PORT,
    VARNISH_PORT,
    VARNISH_PORT_NAME,
    VCL_CONFIG_DIR,
    VERSION,
)
from kube_client import KubeClient
from labels import combined_labels, component_labels, format_selector
from resources.generic import KindHandler, ObjectReconciler
from utils import memory_limit_bytes
from varnish_args import synthesize_args

VCL_VOLUME_NAME = "vcl-files"


def copy_deployment_immutable(observed: V1Deployment, desired: V1Deployment) -> None:
    """The pod selector is immutable once set, so always keep the existing one."""
    desired.spec.selector = observed.spec.selector
    desired.spec.template.metadata.labels = observed.spec.template.metadata.labels


DEPLOYMENT = KindHandler(
    "Deployment",
    sections=("spec",),
    copy_immutable=copy_deployment_immutable,
    manage_annotations=False,
    defaulted=frozenset(
        {
            "spec.progressDeadlineSeconds",
            "spec.revisionHistoryLimit",
            "spec.strategy",
            "spec.template.metadata.creationTimestamp",
            "spec.template.spec.dnsPolicy",
            "spec.template.spec.schedulerName",
            "spec.template.spec.securityContext",
            "spec.template.spec.serviceAccount",
            "spec.template.spec.terminationGracePeriodSeconds",
            "spec.template.spec.containers[].resources.requests",
            "spec.template.spec.containers[].terminationMessagePath",
            "spec.template.spec.containers[].terminationMessagePolicy",
            "spec.template.spec.containers[].env[].valueFrom.fieldRef.apiVersion",
        }
    ),
)


def deployment_name(owner_name: str) -> str:
    return f"{owner_name}-varnish"


def _controller_env(
    owner: dict[str, Any], spec: dict[str, Any], endpoint_selector: dict[str, str]
) -> list[V1EnvVar]:
    meta = owner["metadata"]
    return [
        V1EnvVar(name="ENDPOINT_SELECTOR_STRING", value=format_selector(endpoint_selector)),
        V1EnvVar(name="CONFIGMAP_NAME", value=spec["vcl"]["configMapName"]),
        V1EnvVar(name="NAMESPACE", value=meta["namespace"]),
        V1EnvVar(
            name="POD_NAME",
            value_from=V1EnvVarSource(
                field_ref=V1ObjectFieldSelector(field_path="metadata.name")
            ),
        ),
        V1EnvVar(name="VARNISH_CLUSTER_NAME", value=meta["name"]),
        V1EnvVar(name="VARNISH_CLUSTER_UID", value=str(meta["uid"])),
        V1EnvVar(name="VARNISH_CLUSTER_GROUP", value=GROUP),
        V1EnvVar(name="VARNISH_CLUSTER_VERSION", value=VERSION),
        V1EnvVar(name="VARNISH_CLUSTER_KIND", value=KIND),
        V1EnvVar(name="LOG_FORMAT", value=spec["logFormat"]),
        V1EnvVar(name="LOG_LEVEL", value=spec["logLevel"]),
    ]


def desired_deployment(
    owner: dict[str, Any],
    spec: dict[str, Any],
    service_account: str,
    endpoint_selector: dict[str, str],
) -> V1Deployment:
    """Build the cache Deployment.

    ``endpoint_selector`` is the no-cache Service's generated label set, which
    its Endpoints inherit; the sidecar uses it to discover backends.
    """
    meta = owner["metadata"]
    varnish = spec["varnish"]
    controller = varnish["controller"]
    pod_selector = component_labels(meta, COMPONENT_VARNISH)
    vcl_mount = V1VolumeMount(name=VCL_VOLUME_NAME, mount_path=VCL_CONFIG_DIR)

    args = synthesize_args(
        varnish.get("args"),
        memory_limit_bytes(varnish.get("resources")),
        VARNISH_PORT,
        spec["vcl"]["entrypointFileName"],
    )

    varnish_container = V1Container(
        name=VARNISH_CONTAINER_NAME,
        image=varnish["image"],
        image_pull_policy=varnish["imagePullPolicy"],
        args=args,
        ports=[
            V1ContainerPort(
                name=VARNISH_PORT_NAME, container_port=VARNISH_PORT, protocol="TCP"
            )
        ],
        resources=varnish.get("resources") or {},
        volume_mounts=[vcl_mount],
    )
    controller_container = V1Container(
        name=VARNISH_CONTROLLER_CONTAINER_NAME,
        image=controller["image"],
        image_pull_policy=controller["imagePullPolicy"],
        env=_controller_env(owner, spec, endpoint_selector),
        ports=[
            V1ContainerPort(
                name="metrics", container_port=VARNISH_CONTROLLER_METRICS_PORT, protocol="TCP"
            )
        ],
        volume_mounts=[vcl_mount],
    )

    return V1Deployment(
        api_version="apps/v1",
        kind="Deployment",
        metadata=V1ObjectMeta(
            name=deployment_name(meta["name"]),
            namespace=meta["namespace"],
            labels=combined_labels(meta, COMPONENT_VARNISH),
        ),
        spec=V1DeploymentSpec(
            replicas=spec["replicas"],
            selector=V1LabelSelector(match_labels=dict(pod_selector)),
            template=V1PodTemplateSpec(
                metadata=V1ObjectMeta(labels=dict(pod_selector)),
                spec=V1PodSpec(
                    containers=[varnish_container, controller_container],
                    volumes=[
                        V1Volume(name=VCL_VOLUME_NAME, empty_dir=V1EmptyDirVolumeSource())
                    ],
                    service_account_name=service_account,
                    restart_policy=varnish["restartPolicy"],
                    affinity=spec.get("affinity"),
                    tolerations=spec.get("tolerations"),
                ),
            ),
        ),
    )


def ensure_deployment(
    client: KubeClient,
    owner: dict[str, Any],
    spec: dict[str, Any],
    service_account: str,
    endpoint_selector: dict[str, str],
) -> V1Deployment:
    """Reconcile the cache Deployment and return it as stored."""
    desired = desired_deployment(owner, spec, service_account, endpoint_selector)
    return ObjectReconciler(client, DEPLOYMENT).reconcile(owner, desired)
