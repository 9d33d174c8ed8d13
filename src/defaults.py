"""Defaulting and validation of the VarnishCluster spec.

Defaults that depend on operator settings take the OperatorConfig as a
parameter. Nothing here reads process-wide state.
"""

import copy
from typing import Any

from config import OperatorConfig
from constants import DEFAULT_ENTRYPOINT_FILE
from models import ValidationError


def apply_topology_defaults(name: str, spec: dict[str, Any]) -> dict[str, Any]:
    """Return a deep copy of ``spec`` with service, backend and VCL defaults.

    None of these depend on operator settings, which is what lets the
    sidecar default the spec it renders VCL from.
    """
    spec = copy.deepcopy(dict(spec))

    service = spec.setdefault("service", {})
    service.setdefault("type", "ClusterIP")
    for port in service.get("ports") or []:
        if port.get("targetPort") in (None, "", 0):
            port["targetPort"] = port.get("port")
        port.setdefault("protocol", "TCP")

    backend = spec.setdefault("backend", {})
    backend.setdefault("selector", {})
    ports = service.get("ports") or []
    if backend.get("port") in (None, "") and len(ports) == 1:
        backend["port"] = ports[0]["targetPort"]

    vcl = spec.setdefault("vcl", {})
    if not vcl.get("configMapName"):
        vcl["configMapName"] = f"{name}-vcl-files"
    if not vcl.get("entrypointFileName"):
        vcl["entrypointFileName"] = DEFAULT_ENTRYPOINT_FILE

    return spec


def apply_defaults(
    name: str, spec: dict[str, Any], config: OperatorConfig
) -> dict[str, Any]:
    """Return a defaulted deep copy of ``spec``. The input is left untouched."""
    spec = apply_topology_defaults(name, spec)

    if spec.get("replicas") is None:
        spec["replicas"] = config.default_replicas
    spec.setdefault("logLevel", config.log_level)
    spec.setdefault("logFormat", config.log_format)

    varnish = spec.setdefault("varnish", {})
    if not varnish.get("image"):
        varnish["image"] = config.varnish_image
    varnish.setdefault("imagePullPolicy", "Always")
    varnish.setdefault("restartPolicy", "Always")
    varnish.setdefault("args", [])
    if varnish.get("resources") is None:
        varnish["resources"] = {}
    controller = varnish.setdefault("controller", {})
    if not controller.get("image"):
        controller["image"] = config.varnish_controller_image
    controller.setdefault("imagePullPolicy", varnish["imagePullPolicy"])

    return spec


def validate_spec(spec: dict[str, Any]) -> None:
    """Reject specs the reconciler cannot act on."""
    ports = (spec.get("service") or {}).get("ports") or []
    if len(ports) != 1:
        raise ValidationError("must specify exactly one port in service spec")
    if not isinstance(ports[0].get("port"), int):
        raise ValidationError("service port must be an integer")
    if not (spec.get("backend") or {}).get("selector"):
        raise ValidationError("backend.selector must not be empty")

    pdb = spec.get("podDisruptionBudget")
    if pdb and ("minAvailable" in pdb) == ("maxUnavailable" in pdb):
        raise ValidationError(
            "podDisruptionBudget must set exactly one of minAvailable or maxUnavailable"
        )


def application_port(spec: dict[str, Any]) -> dict[str, Any]:
    """Return the single application port of a defaulted, validated spec."""
    return spec["service"]["ports"][0]
