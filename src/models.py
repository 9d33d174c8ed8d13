"""Domain models for the Varnish operator.

This module defines typed data structures for all operator concepts,
making illegal states unrepresentable at the type level.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, TypedDict, NotRequired


# =============================================================================
# Enums for constrained values
# =============================================================================


class VCLStatus(Enum):
    """Status of a VCL configuration loaded in varnishd."""

    AVAILABLE = "available"
    ACTIVE = "active"


class ConditionStatus(Enum):
    """Kubernetes condition status."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


# =============================================================================
# TypedDicts for CRD spec (external data from Kubernetes)
# =============================================================================


class ServicePortSpec(TypedDict):
    """The single application port exposed by both services."""

    port: int
    name: NotRequired[str]
    targetPort: NotRequired[int | str]
    protocol: NotRequired[Literal["TCP", "UDP", "SCTP"]]
    nodePort: NotRequired[int]


class ServiceSpec(TypedDict, total=False):
    """Client-facing service settings from the CRD."""

    ports: list[ServicePortSpec]
    type: Literal["ClusterIP", "NodePort", "LoadBalancer"]
    annotations: dict[str, str]


class BackendSpec(TypedDict):
    """Backend pods the cache fronts."""

    selector: dict[str, str]
    port: NotRequired[int | str]


class VCLSpec(TypedDict, total=False):
    """Reference to the ConfigMap holding VCL sources."""

    configMapName: str
    entrypointFileName: str


class VarnishControllerSpec(TypedDict, total=False):
    """Sidecar container settings."""

    image: str
    imagePullPolicy: str


class VarnishSpec(TypedDict, total=False):
    """Varnish container settings."""

    image: str
    imagePullPolicy: str
    args: list[str]
    resources: dict[str, Any]
    restartPolicy: str
    controller: VarnishControllerSpec


class PodDisruptionBudgetSpec(TypedDict, total=False):
    """PodDisruptionBudget settings. Exactly one field should be set."""

    minAvailable: int | str
    maxUnavailable: int | str


class VarnishClusterSpec(TypedDict):
    """Full VarnishCluster CRD spec."""

    backend: BackendSpec
    service: ServiceSpec
    replicas: NotRequired[int]
    vcl: NotRequired[VCLSpec]
    varnish: NotRequired[VarnishSpec]
    podDisruptionBudget: NotRequired[PodDisruptionBudgetSpec]
    affinity: NotRequired[dict[str, Any]]
    tolerations: NotRequired[list[dict[str, Any]]]
    logLevel: NotRequired[str]
    logFormat: NotRequired[str]


# =============================================================================
# Dataclasses for internal state and status
# =============================================================================


@dataclass(frozen=True)
class PodInfo:
    """A pod address as seen by VCL templates."""

    ip: str
    node_labels: dict[str, str] = field(default_factory=dict)
    pod_name: str = ""

    def to_template_dict(self) -> dict[str, Any]:
        """Convert to the mapping exposed to VCL templates."""
        return {
            "ip": self.ip,
            "node_labels": dict(self.node_labels),
            "pod_name": self.pod_name,
        }


@dataclass(frozen=True)
class VCLConfig:
    """One entry of ``vcl.list`` output."""

    name: str
    status: str
    temperature: str
    label: bool = False
    referenced_vcl: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == VCLStatus.ACTIVE.value


@dataclass(frozen=True)
class ServiceStatus:
    """Snapshot of one derived service."""

    ip: str = ""
    status: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for Kubernetes status."""
        return {"ip": self.ip, "status": self.status}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ServiceStatus":
        """Create from Kubernetes status dict."""
        data = data or {}
        return cls(ip=data.get("ip", "") or "", status=data.get("status") or {})


@dataclass
class ClusterStatus:
    """Status of a VarnishCluster resource."""

    no_cache_service: ServiceStatus = field(default_factory=ServiceStatus)
    cached_service: ServiceStatus = field(default_factory=ServiceStatus)
    deployment: dict[str, Any] = field(default_factory=dict)
    varnish_pods_selector: str = ""
    config_map_version: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for Kubernetes status."""
        return {
            "service": {
                "noCache": self.no_cache_service.to_dict(),
                "cached": self.cached_service.to_dict(),
            },
            "deployment": self.deployment,
            "varnishPodsSelector": self.varnish_pods_selector,
            "vcl": {"configMapVersion": self.config_map_version},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ClusterStatus":
        """Create from Kubernetes status dict."""
        data = data or {}
        service = data.get("service") or {}
        return cls(
            no_cache_service=ServiceStatus.from_dict(service.get("noCache")),
            cached_service=ServiceStatus.from_dict(service.get("cached")),
            deployment=data.get("deployment") or {},
            varnish_pods_selector=data.get("varnishPodsSelector", "") or "",
            config_map_version=(data.get("vcl") or {}).get("configMapVersion", "") or "",
        )


# =============================================================================
# Exceptions
# =============================================================================


class OperatorError(Exception):
    """Base exception for operator errors."""

    pass


class ResourceNotFoundError(OperatorError):
    """A prerequisite is absent. Retry later rather than proceed."""

    pass


class ConflictError(OperatorError):
    """Optimistic-concurrency conflict while writing an object."""

    pass


class ValidationError(OperatorError):
    """The VarnishCluster spec or VCL sources are invalid."""

    pass


class ConfigurationError(ValidationError):
    """Invalid or missing environment configuration."""

    pass


class KubernetesAPIError(OperatorError):
    """Error communicating with the Kubernetes API."""

    pass


class VCLFileError(OperatorError):
    """A VCL file could not be read, written or removed."""

    pass


class VCLError(OperatorError):
    """A varnish admin script failed."""

    def __init__(self, message: str, output: str = "") -> None:
        super().__init__(message)
        self.output = output


class VCLCompilationError(VCLError):
    """varnishd rejected the VCL sources."""

    pass


class VCLReloadError(VCLError):
    """varnishd could not be reloaded for operational reasons."""

    pass
