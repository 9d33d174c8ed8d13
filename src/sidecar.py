"""Kopf handlers for the varnish-controller sidecar.

Runs next to varnishd in every cache pod (``kopf run --standalone
src/sidecar.py``). Changes to the VCL ConfigMap, the VarnishCluster or the
Endpoints of the backends and varnish peers trigger a pass; a timer on the
pod itself resyncs periodically and retries failed passes.
"""

import logging
import os
import sys
import time
from pathlib import Path
from typing import Any

# Add src directory to path for imports when run as script by Kopf
_src_dir = Path(__file__).parent
if str(_src_dir) not in sys.path:
    sys.path.insert(0, str(_src_dir))

import kopf
from prometheus_client import start_http_server

from config import ControllerConfig, env_int, log_level_number
from constants import COMPONENT_CACHE_SERVICE, GROUP, PLURAL, VERSION
from labels import component_labels
from metrics import (
    RECONCILE_TOTAL,
    RECONCILE_DURATION,
    RECONCILE_IN_PROGRESS,
    set_operator_info,
    init_metrics,
)
from models import ConflictError, ResourceNotFoundError, ValidationError, VCLError
from state import state, get_kube_client
from varnish_controller import VarnishController

logger = logging.getLogger(__name__)

CONTROLLER_VERSION = "0.1.0"
RESOURCE = "VarnishPod"

# Timer intervals are fixed when the handlers are registered.
RESYNC_INTERVAL_SECONDS = env_int(os.environ, "RESYNC_INTERVAL_SECONDS", 60, minimum=1)


def _matches(labels: dict[str, str], selector: dict[str, str]) -> bool:
    return all(labels.get(key) == value for key, value in selector.items())


def peer_selector(config: ControllerConfig) -> dict[str, str]:
    """Labels of the cached Service's Endpoints, which list the varnish pods."""
    owner_meta = {"name": config.varnish_cluster_name, "uid": config.varnish_cluster_uid}
    return component_labels(owner_meta, COMPONENT_CACHE_SERVICE)


def is_own_pod(name: str, memo: kopf.Memo, **_: Any) -> bool:
    return name == memo.config.pod_name


def is_vcl_config_map(name: str, memo: kopf.Memo, **_: Any) -> bool:
    return name == memo.config.config_map_name


def is_own_cluster(name: str, memo: kopf.Memo, **_: Any) -> bool:
    return name == memo.config.varnish_cluster_name


def is_watched_endpoints(labels: dict[str, str], memo: kopf.Memo, **_: Any) -> bool:
    config: ControllerConfig = memo.config
    return _matches(labels, config.endpoint_selector) or _matches(
        labels, peer_selector(config)
    )


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, memo: kopf.Memo, **_: Any) -> None:
    """Load the sidecar configuration and build the pod controller."""
    config = ControllerConfig.from_env(os.environ)
    memo.config = config
    memo.controller = VarnishController(get_kube_client(), config)
    logging.getLogger().setLevel(log_level_number(config.log_level))

    settings.posting.level = logging.WARNING
    settings.watching.namespaces = [config.namespace]

    try:
        start_http_server(config.metrics_port)
        logger.info("Prometheus metrics server started on port %d", config.metrics_port)
    except OSError as e:
        logger.warning(
            "Failed to start metrics server on port %d: %s", config.metrics_port, e
        )

    init_metrics(RESOURCE)
    set_operator_info(CONTROLLER_VERSION, "varnish-controller")

    logger.info(
        "varnish-controller started for pod %s/%s (version %s)",
        config.namespace,
        config.pod_name,
        CONTROLLER_VERSION,
    )


@kopf.on.cleanup()
def cleanup(**_: Any) -> None:
    logger.info("varnish-controller shutting down")
    state.close()


def run_pass(controller: VarnishController, trigger: str) -> None:
    """Run one pod pass and log its outcome.

    Failures are not raised: the resync timer retries them, and event
    handlers are never retried by kopf anyway.
    """
    logger.debug(f"Reconciling pod ({trigger})")
    start_time = time.monotonic()
    RECONCILE_IN_PROGRESS.labels(resource=RESOURCE).inc()

    try:
        reloaded = controller.reconcile()
        RECONCILE_TOTAL.labels(resource=RESOURCE, status="success").inc()
        RECONCILE_DURATION.labels(resource=RESOURCE).observe(time.monotonic() - start_time)
        if reloaded:
            logger.info(f"VCL reloaded ({trigger})")
    except ConflictError as e:
        logger.info(f"Conflict occurred, retrying on next pass: {e}")
        RECONCILE_TOTAL.labels(resource=RESOURCE, status="conflict").inc()
    except ResourceNotFoundError as e:
        logger.info(f"Not ready yet, retrying on next pass: {e}")
        RECONCILE_TOTAL.labels(resource=RESOURCE, status="not_found").inc()
    except ValidationError as e:
        logger.error(f"Invalid VCL configuration: {e}")
        RECONCILE_TOTAL.labels(resource=RESOURCE, status="permanent_error").inc()
    except VCLError as e:
        # Already reported through events on the pod and the VarnishCluster.
        logger.warning(f"VCL reload failed: {e}")
        RECONCILE_TOTAL.labels(resource=RESOURCE, status="error").inc()
    except Exception:
        logger.exception(f"Pod reconciliation failed ({trigger})")
        RECONCILE_TOTAL.labels(resource=RESOURCE, status="error").inc()
    finally:
        RECONCILE_IN_PROGRESS.labels(resource=RESOURCE).dec()


@kopf.on.event("", "v1", "configmaps", when=is_vcl_config_map)
def config_map_event(name: str, memo: kopf.Memo, **_: Any) -> None:
    """React to VCL source changes."""
    run_pass(memo.controller, f"configmap {name}")


@kopf.on.event("", "v1", "endpoints", when=is_watched_endpoints)
def endpoints_event(name: str, memo: kopf.Memo, **_: Any) -> None:
    """React to backend or varnish peer topology changes."""
    run_pass(memo.controller, f"endpoints {name}")


@kopf.on.event(GROUP, VERSION, PLURAL, when=is_own_cluster)
def varnish_cluster_event(name: str, memo: kopf.Memo, **_: Any) -> None:
    """React to VarnishCluster changes such as a new backend port."""
    run_pass(memo.controller, f"varnishcluster {name}")


@kopf.timer("", "v1", "pods", interval=RESYNC_INTERVAL_SECONDS, when=is_own_pod)
def periodic_resync(memo: kopf.Memo, **_: Any) -> None:
    """Periodic resync; also retries passes that failed."""
    run_pass(memo.controller, "timer")
