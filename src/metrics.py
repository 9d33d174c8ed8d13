"""Prometheus metrics for the Varnish operator and the varnish-controller sidecar."""

from prometheus_client import Counter, Histogram, Gauge, Info

# Reconciliation metrics
RECONCILE_TOTAL = Counter(
    "varnish_operator_reconcile_total",
    "Total number of reconciliations",
    ["resource", "status"],
)

RECONCILE_DURATION = Histogram(
    "varnish_operator_reconcile_duration_seconds",
    "Time spent in reconciliation",
    ["resource"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)

RECONCILE_IN_PROGRESS = Gauge(
    "varnish_operator_reconcile_in_progress",
    "Number of reconciliations currently in progress",
    ["resource"],
)

# Derived object metrics
OBJECT_ACTIONS = Counter(
    "varnish_operator_object_actions_total",
    "Actions taken on derived objects",
    ["kind", "action"],
)

# Kubernetes API metrics
KUBE_API_CALLS = Counter(
    "varnish_operator_kube_api_calls_total",
    "Total number of Kubernetes API calls",
    ["kind", "operation", "status"],
)

KUBE_API_DURATION = Histogram(
    "varnish_operator_kube_api_duration_seconds",
    "Time spent in Kubernetes API calls",
    ["kind", "operation"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# VCL metrics (sidecar)
VCL_RELOADS_TOTAL = Counter(
    "varnish_controller_vcl_reloads_total",
    "VCL reloads by outcome",
    ["outcome"],
)

VCL_FILE_OPERATIONS = Counter(
    "varnish_controller_vcl_file_operations_total",
    "VCL file writes, rewrites and deletions",
    ["action"],
)

# Operator info
OPERATOR_INFO = Info(
    "varnish_operator",
    "Information about the Varnish operator",
)

RECONCILE_STATUSES = ["success", "error", "conflict", "not_found", "permanent_error"]
OBJECT_KINDS = [
    "ServiceAccount",
    "Role",
    "RoleBinding",
    "ClusterRole",
    "ClusterRoleBinding",
    "Service",
    "Deployment",
    "ConfigMap",
    "PodDisruptionBudget",
]


def set_operator_info(version: str, component: str) -> None:
    """Set operator info labels."""
    OPERATOR_INFO.info({"version": version, "component": component})


def init_metrics(resource: str) -> None:
    """Initialize all metrics with zero values.

    Prometheus metrics with labels don't appear until used.
    This ensures all metrics are visible immediately at startup.
    """
    RECONCILE_IN_PROGRESS.labels(resource=resource).set(0)
    RECONCILE_DURATION.labels(resource=resource)
    for status in RECONCILE_STATUSES:
        RECONCILE_TOTAL.labels(resource=resource, status=status)

    for kind in OBJECT_KINDS:
        for action in ("create", "update", "noop", "delete"):
            OBJECT_ACTIONS.labels(kind=kind, action=action)

    for outcome in ("success", "compilation_error", "reload_error"):
        VCL_RELOADS_TOTAL.labels(outcome=outcome)
    for action in ("write", "rewrite", "delete"):
        VCL_FILE_OPERATIONS.labels(action=action)
