"""Discovery of backend and varnish peer addresses from Endpoints."""

import logging

from kube_client import KubeClient
from labels import format_selector
from models import PodInfo, ResourceNotFoundError

logger = logging.getLogger(__name__)


def _port_matches(port: object, target_port: int | str) -> bool:
    if isinstance(target_port, int):
        return port.port == target_port
    return port.name == target_port


def normalize_port(target_port: int | str) -> int | str:
    """Numeric strings ("8080") are treated as port numbers."""
    if isinstance(target_port, str) and target_port.isdigit():
        return int(target_port)
    return target_port


def resolve_backends(
    client: KubeClient,
    namespace: str,
    selector: dict[str, str],
    target_port: int | str,
    node_labels_cache: dict[str, dict[str, str]] | None = None,
) -> tuple[list[PodInfo], int]:
    """List the pod addresses behind the Endpoints matching ``selector``.

    Not-ready addresses are included so the rendered VCL can already list
    pods that are still starting; varnish health probes decide readiness.
    Node labels are looked up once per node through ``node_labels_cache``,
    which callers can share across lookups within one pass.

    Returns the addresses sorted by IP and the resolved port number. Raises
    ResourceNotFoundError when nothing matches.
    """
    label_selector = format_selector(selector)
    target_port = normalize_port(target_port)
    cache = node_labels_cache if node_labels_cache is not None else {}

    endpoints_list = client.list_endpoints(namespace, label_selector)
    if not endpoints_list:
        raise ResourceNotFoundError(
            f"No endpoints in namespace {namespace} matching labels {label_selector}"
        )

    backends: list[PodInfo] = []
    port_number = 0
    for endpoints in endpoints_list:
        for subset in endpoints.subsets or []:
            addresses = list(subset.addresses or []) + list(subset.not_ready_addresses or [])
            for address in addresses:
                for port in subset.ports or []:
                    if not _port_matches(port, target_port):
                        continue
                    port_number = port.port
                    node_name = address.node_name
                    if node_name and node_name not in cache:
                        cache[node_name] = client.read_node_labels(node_name)
                    backends.append(
                        PodInfo(
                            ip=address.ip,
                            node_labels=dict(cache.get(node_name, {})) if node_name else {},
                            pod_name=address.target_ref.name if address.target_ref else "",
                        )
                    )
                    break

    if not backends:
        raise ResourceNotFoundError(
            f"No addresses on port {target_port} in namespace {namespace} "
            f"matching labels {label_selector}"
        )

    # Stable order keeps rendered VCL unchanged when only list order changes.
    backends.sort(key=lambda backend: backend.ip)
    logger.debug("Resolved %d addresses for %s", len(backends), label_selector)
    return backends, port_number
