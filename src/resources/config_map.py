"""The ConfigMap holding the VCL sources rendered by the sidecar.

The operator seeds it with a working default VCL when it creates it. After
that the data belongs to the user: only labels and the owner reference are
reconciled.
"""

from typing import Any

from kubernetes.client import V1ConfigMap, V1ObjectMeta

from constants import BACKENDS_TEMPLATE_FILE, COMPONENT_VCL_FILE_CONFIGMAP
from kube_client import KubeClient
from labels import combined_labels
from resources.generic import KindHandler, ObjectReconciler

CONFIG_MAP = KindHandler("ConfigMap", manage_annotations=False)

DEFAULT_ENTRYPOINT_VCL = """\
vcl 4.1;

import directors;

include "backends.vcl";

sub vcl_recv {
    set req.backend_hint = backends_director.backend();
}
"""

DEFAULT_BACKENDS_TEMPLATE = """\
{% for backend in backends %}
backend be_{{ loop.index0 }} {
    .host = "{{ backend.ip }}";
    .port = "{{ target_port }}";
}
{% endfor %}

sub vcl_init {
    new backends_director = directors.round_robin();
{% for backend in backends %}
    backends_director.add_backend(be_{{ loop.index0 }});
{% endfor %}
}
"""


def default_vcl_files(entrypoint: str) -> dict[str, str]:
    return {
        entrypoint: DEFAULT_ENTRYPOINT_VCL,
        BACKENDS_TEMPLATE_FILE: DEFAULT_BACKENDS_TEMPLATE,
    }


def desired_config_map(owner: dict[str, Any], spec: dict[str, Any]) -> V1ConfigMap:
    meta = owner["metadata"]
    vcl = spec["vcl"]
    return V1ConfigMap(
        api_version="v1",
        kind="ConfigMap",
        metadata=V1ObjectMeta(
            name=vcl["configMapName"],
            namespace=meta["namespace"],
            labels=combined_labels(meta, COMPONENT_VCL_FILE_CONFIGMAP),
        ),
        data=default_vcl_files(vcl["entrypointFileName"]),
    )


def ensure_config_map(
    client: KubeClient, owner: dict[str, Any], spec: dict[str, Any]
) -> V1ConfigMap:
    """Reconcile the VCL ConfigMap and return it as stored."""
    desired = desired_config_map(owner, spec)
    return ObjectReconciler(client, CONFIG_MAP).reconcile(owner, desired)
