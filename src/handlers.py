"""Kopf handlers for the VarnishCluster CRD."""

import copy
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

from cluster import ClusterReconciler, status_update
from config import OperatorConfig, env_int, log_level_number
from constants import GROUP, KIND, PLURAL, VERSION
from metrics import (
    RECONCILE_TOTAL,
    RECONCILE_DURATION,
    RECONCILE_IN_PROGRESS,
    set_operator_info,
    init_metrics,
)
from models import ConflictError, ResourceNotFoundError, ValidationError
from state import state, get_kube_client
from utils import set_condition

logger = logging.getLogger(__name__)

# Operator version
OPERATOR_VERSION = "0.1.0"

# Timer intervals are fixed when the handlers are registered.
RECONCILE_INTERVAL_SECONDS = env_int(
    os.environ, "RECONCILE_INTERVAL_SECONDS", 300, minimum=1
)


def _set_not_ready(
    status: dict[str, Any], patch: kopf.Patch, reason: str, message: str
) -> None:
    """Flip the Ready condition to False in patch.status."""
    conditions = {"conditions": copy.deepcopy(status.get("conditions") or [])}
    set_condition(conditions, "Ready", "False", reason, message[:200])
    patch.status["conditions"] = conditions["conditions"]


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, memo: kopf.Memo, **_: Any) -> None:
    """Configure operator settings on startup."""
    config = OperatorConfig.from_env(os.environ)
    memo.config = config
    logging.getLogger().setLevel(log_level_number(config.log_level))

    # Reduce logging noise
    settings.posting.level = logging.WARNING
    # Keep kopf's bookkeeping under our own annotation prefix
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(prefix=GROUP)
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage(prefix=GROUP)
    # Set watching namespace - explicit cluster-wide or specific namespace
    if config.watch_namespace:
        settings.watching.namespaces = [config.watch_namespace]
    else:
        settings.watching.clusterwide = True

    # Start Prometheus metrics server
    try:
        start_http_server(config.metrics_port)
        logger.info("Prometheus metrics server started on port %d", config.metrics_port)
    except OSError as e:
        logger.warning(
            "Failed to start metrics server on port %d: %s", config.metrics_port, e
        )

    init_metrics(KIND)
    set_operator_info(OPERATOR_VERSION, "operator")

    logger.info("Varnish operator started (version %s)", OPERATOR_VERSION)


@kopf.on.cleanup()
def cleanup(**_: Any) -> None:
    """Clean up resources on operator shutdown."""
    logger.info("Varnish operator shutting down")
    state.close()


def reconcile_varnish_cluster(
    body: kopf.Body,
    status: dict[str, Any],
    patch: kopf.Patch,
    namespace: str,
    name: str,
    config: OperatorConfig,
    trigger: str,
) -> None:
    """Run one reconcile pass and map its outcome onto kopf's retry model.

    Conflicts are retried quickly and are not counted as errors. An invalid
    spec is permanent until the object changes. Everything else is retried
    after the configured delay.
    """
    logger.info(f"Reconciling VarnishCluster {namespace}/{name} ({trigger})")
    start_time = time.monotonic()
    RECONCILE_IN_PROGRESS.labels(resource=KIND).inc()

    try:
        computed = ClusterReconciler(get_kube_client(), config).reconcile(body)

        update = status_update(status, computed)
        if update is not None:
            patch.status.update(update)
        else:
            logger.debug(f"Status of {namespace}/{name} unchanged")

        RECONCILE_TOTAL.labels(resource=KIND, status="success").inc()
        RECONCILE_DURATION.labels(resource=KIND).observe(time.monotonic() - start_time)
        logger.info(f"Successfully reconciled VarnishCluster {namespace}/{name}")

    except ConflictError as e:
        logger.info(f"Conflict while reconciling {namespace}/{name}, retrying: {e}")
        RECONCILE_TOTAL.labels(resource=KIND, status="conflict").inc()
        raise kopf.TemporaryError(
            f"Conflict: {e}", delay=config.conflict_retry_delay_seconds
        )
    except ValidationError as e:
        logger.error(f"Invalid VarnishCluster {namespace}/{name}: {e}")
        _set_not_ready(status, patch, "InvalidSpec", str(e))
        RECONCILE_TOTAL.labels(resource=KIND, status="permanent_error").inc()
        kopf.warn(body, reason="InvalidSpec", message=str(e)[:200])
        raise kopf.PermanentError(f"Invalid spec: {e}")
    except ResourceNotFoundError as e:
        logger.warning(f"Prerequisite missing for {namespace}/{name}: {e}")
        RECONCILE_TOTAL.labels(resource=KIND, status="not_found").inc()
        raise kopf.TemporaryError(str(e), delay=config.retry_delay_seconds)
    except Exception as e:
        logger.error(f"Failed to reconcile VarnishCluster {namespace}/{name}: {e}")
        _set_not_ready(status, patch, "Error", str(e))
        RECONCILE_TOTAL.labels(resource=KIND, status="error").inc()
        kopf.warn(body, reason="ReconcileFailed", message=str(e)[:200])
        raise kopf.TemporaryError(
            f"Reconciliation failed: {e}", delay=config.retry_delay_seconds
        )
    finally:
        RECONCILE_IN_PROGRESS.labels(resource=KIND).dec()


@kopf.on.create(GROUP, VERSION, PLURAL)
def create_varnish_cluster(
    body: kopf.Body,
    status: dict[str, Any],
    patch: kopf.Patch,
    namespace: str,
    name: str,
    memo: kopf.Memo,
    **_: Any,
) -> None:
    """Handle VarnishCluster creation."""
    reconcile_varnish_cluster(body, status, patch, namespace, name, memo.config, "create")


@kopf.on.update(GROUP, VERSION, PLURAL)
def update_varnish_cluster(
    body: kopf.Body,
    status: dict[str, Any],
    patch: kopf.Patch,
    namespace: str,
    name: str,
    memo: kopf.Memo,
    **_: Any,
) -> None:
    """Handle VarnishCluster spec or metadata changes."""
    reconcile_varnish_cluster(body, status, patch, namespace, name, memo.config, "update")


@kopf.on.resume(GROUP, VERSION, PLURAL)
def resume_varnish_cluster(
    body: kopf.Body,
    status: dict[str, Any],
    patch: kopf.Patch,
    namespace: str,
    name: str,
    memo: kopf.Memo,
    **_: Any,
) -> None:
    """Reconcile existing VarnishClusters when the operator starts."""
    reconcile_varnish_cluster(body, status, patch, namespace, name, memo.config, "resume")


@kopf.timer(GROUP, VERSION, PLURAL, interval=RECONCILE_INTERVAL_SECONDS, idle=10)
def periodic_reconcile(
    body: kopf.Body,
    status: dict[str, Any],
    patch: kopf.Patch,
    namespace: str,
    name: str,
    memo: kopf.Memo,
    **_: Any,
) -> None:
    """Periodic reconciliation to detect and repair drift in derived objects."""
    reconcile_varnish_cluster(body, status, patch, namespace, name, memo.config, "timer")


def main() -> None:
    """Entry point for running the operator."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Kopf will be run via the CLI, but this allows direct invocation for testing
    logger.info("Starting Varnish operator...")
    logger.info("Use 'kopf run src/handlers.py' to run the operator")
    sys.exit(0)


if __name__ == "__main__":
    main()
