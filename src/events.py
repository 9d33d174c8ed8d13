"""Warning events raised by the varnish-controller sidecar."""

import logging
from collections.abc import Callable
from typing import Any

import kopf

from constants import EVENT_REASON_RELOAD_ERROR, EVENT_REASON_VCL_COMPILATION_ERROR
from models import VCLCompilationError, VCLError

logger = logging.getLogger(__name__)

Warn = Callable[..., None]


def pod_reference(name: str, namespace: str, uid: str) -> dict[str, Any]:
    """Minimal object body of a pod, enough to attach events to it."""
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {"name": name, "namespace": namespace, "uid": uid},
    }


def report_vcl_failure(
    error: VCLError,
    pod: dict[str, Any],
    owner: dict[str, Any],
    warn: Warn = kopf.warn,
) -> None:
    """Post a warning on the pod and on the owning VarnishCluster.

    Compilation failures point at the user's VCL; anything else is an
    operational problem with the pod.
    """
    pod_name = pod["metadata"]["name"]
    if isinstance(error, VCLCompilationError):
        reason = EVENT_REASON_VCL_COMPILATION_ERROR
        pod_message = "VCL compilation failed. See logs for details"
        owner_message = f"VCL compilation failed for pod {pod_name}. See pod logs for details"
    else:
        reason = EVENT_REASON_RELOAD_ERROR
        pod_message = f"Varnish reload failed for pod {pod_name}. See pod logs for details"
        owner_message = "Varnish reload failed. See logs for details"

    logger.error("%s on pod %s: %s\n%s", reason, pod_name, error, error.output)
    warn(pod, reason=reason, message=pod_message)
    warn(owner, reason=reason, message=owner_message)
