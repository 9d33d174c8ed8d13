"""Per-pod reconciliation of VCL files and the running varnishd.

One pass reads the VarnishCluster, the pod and the VCL ConfigMap, renders
the templates against the current backend and varnish peer addresses,
writes the result into the shared VCL directory and reloads varnishd when
the files changed or the active configuration lags behind the ConfigMap.
Passes for the pod are serialized by a lock.
"""

import logging
import subprocess
import threading
from collections.abc import Callable
from typing import Any

import kopf

from backends import resolve_backends
from config import ControllerConfig
from constants import (
    ANNOTATION_ACTIVE_VCL_CONFIGMAP_VERSION,
    ANNOTATION_CONFIGMAP_VERSION,
    COMPONENT_CACHE_SERVICE,
    VARNISH_PORT,
    VCL_FILE_SUFFIX,
)
from defaults import apply_topology_defaults, validate_spec
from events import pod_reference, report_vcl_failure
from kube_client import KubeClient
from labels import component_labels
from metrics import VCL_RELOADS_TOTAL
from models import ResourceNotFoundError, VCLCompilationError, VCLError
from templates import (
    merge_rendered,
    render_templates,
    split_files,
    template_context,
    verify_entrypoint,
)
from vcl import (
    create_vcl_config_name,
    describe,
    extract_config_map_version,
    find_active_vcl_config,
    get_active_vcl_config,
    list_vcl_configs,
    reload_vcl,
)
from vcl_files import get_current_files, sync_files

logger = logging.getLogger(__name__)


class VarnishController:
    """Keeps one pod's VCL directory and varnishd in sync with the cluster."""

    def __init__(
        self,
        client: KubeClient,
        config: ControllerConfig,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
        warn: Callable[..., None] = kopf.warn,
    ) -> None:
        self.client = client
        self.config = config
        self.runner = runner
        self.warn = warn
        self._lock = threading.Lock()

    def reconcile(self) -> bool:
        """Run one pass. Returns True if varnishd was reloaded."""
        with self._lock:
            return self._reconcile()

    def _read_inputs(self) -> tuple[dict[str, Any], Any, Any]:
        config = self.config
        cluster = self.client.get_varnish_cluster(
            config.varnish_cluster_name, config.namespace
        )
        if cluster is None:
            raise ResourceNotFoundError(
                f"VarnishCluster {config.namespace}/{config.varnish_cluster_name} not found"
            )
        pod = self.client.get("Pod", config.pod_name, config.namespace)
        if pod is None:
            raise ResourceNotFoundError(
                f"Pod {config.namespace}/{config.pod_name} not found"
            )
        config_map = self.client.get("ConfigMap", config.config_map_name, config.namespace)
        if config_map is None:
            raise ResourceNotFoundError(
                f"ConfigMap {config.namespace}/{config.config_map_name} must exist "
                "to reconcile Varnish"
            )
        return cluster, pod, config_map

    def desired_files(self, cluster: dict[str, Any], config_map: Any) -> dict[str, str]:
        """Render the ConfigMap into the file set the VCL directory should hold."""
        meta = cluster["metadata"]
        spec = apply_topology_defaults(meta["name"], cluster.get("spec") or {})
        validate_spec(spec)

        files, templates = split_files(config_map.data)
        verify_entrypoint(files, templates, spec["vcl"]["entrypointFileName"])

        node_labels: dict[str, dict[str, str]] = {}
        backends, target_port = resolve_backends(
            self.client,
            self.config.namespace,
            self.config.endpoint_selector,
            spec["backend"]["port"],
            node_labels,
        )
        varnish_nodes, varnish_port = resolve_backends(
            self.client,
            self.config.namespace,
            component_labels(meta, COMPONENT_CACHE_SERVICE),
            VARNISH_PORT,
            node_labels,
        )

        rendered = render_templates(
            templates, template_context(backends, target_port, varnish_nodes, varnish_port)
        )
        desired = merge_rendered(files, rendered)

        skipped = sorted(name for name in desired if not name.endswith(VCL_FILE_SUFFIX))
        if skipped:
            logger.warning(
                "Ignoring ConfigMap entries without %s suffix: %s", VCL_FILE_SUFFIX, skipped
            )
        return {name: text for name, text in desired.items() if name.endswith(VCL_FILE_SUFFIX)}

    def _reload(self, pod: Any, config_map: Any, loaded: set[str]) -> None:
        name = create_vcl_config_name(config_map.metadata.resource_version, loaded=loaded)
        try:
            reload_vcl(name, self.runner, self.config.reload_timeout_seconds)
        except VCLError as e:
            if isinstance(e, VCLCompilationError):
                outcome = "compilation_error"
            else:
                outcome = "reload_error"
            VCL_RELOADS_TOTAL.labels(outcome=outcome).inc()
            pod_ref = pod_reference(
                pod.metadata.name, pod.metadata.namespace, pod.metadata.uid
            )
            report_vcl_failure(e, pod_ref, self.config.owner_reference, self.warn)
            raise
        VCL_RELOADS_TOTAL.labels(outcome="success").inc()

    def _annotate_pod(
        self, pod: Any, config_map_version: str, active_version: str
    ) -> None:
        wanted = {
            ANNOTATION_CONFIGMAP_VERSION: config_map_version,
            ANNOTATION_ACTIVE_VCL_CONFIGMAP_VERSION: active_version,
        }
        current = pod.metadata.annotations or {}
        if all(current.get(key) == value for key, value in wanted.items()):
            return
        logger.info("Annotating pod %s with %s", pod.metadata.name, wanted)
        self.client.patch_pod_annotations(pod.metadata.name, pod.metadata.namespace, wanted)

    def _reconcile(self) -> bool:
        cluster, pod, config_map = self._read_inputs()
        version = config_map.metadata.resource_version

        desired = self.desired_files(cluster, config_map)
        current = get_current_files(self.config.vcl_dir)
        touched = sync_files(self.config.vcl_dir, current, desired)

        configs = list_vcl_configs(self.runner)
        active = find_active_vcl_config(configs)
        logger.debug("Active VCL: %s", describe(active))
        reloaded = False
        if touched or extract_config_map_version(active.name) != version:
            logger.info(
                "Reloading varnish: files changed=%s, active=%s, configmap version=%s",
                touched,
                active.name,
                version,
            )
            self._reload(pod, config_map, {config.name for config in configs})
            active = get_active_vcl_config(self.runner)
            reloaded = True

        self._annotate_pod(pod, version, extract_config_map_version(active.name))
        return reloaded
