"""Utility functions for the Varnish operator."""

import datetime
from typing import Any

from kubernetes.client import ApiClient
from kubernetes.utils import parse_quantity

_api_client = ApiClient()


def now_iso() -> str:
    """Return current UTC time in ISO format."""
    return datetime.datetime.now(datetime.UTC).isoformat()


def serialize(obj: Any) -> Any:
    """Convert a kubernetes client model into plain JSON-compatible data.

    Keys use the API's camelCase names and ``None`` fields are dropped, so
    the result compares cleanly against CR status or observed objects.
    """
    return _api_client.sanitize_for_serialization(obj)


def memory_limit_bytes(resources: dict[str, Any] | None) -> int | None:
    """Return the container memory limit in bytes, or None if unset.

    Example: {'limits': {'memory': '2Gi'}} -> 2147483648
    """
    limits = (resources or {}).get("limits") or {}
    memory = limits.get("memory")
    if memory in (None, ""):
        return None
    return int(parse_quantity(str(memory)))


def set_condition(
    status: dict[str, Any],
    condition_type: str,
    condition_status: str,
    reason: str = "",
    message: str = "",
) -> None:
    """Set or update a condition in the status conditions list."""
    conditions: list[dict[str, str]] = status.setdefault("conditions", [])

    for condition in conditions:
        if condition["type"] == condition_type:
            if condition["status"] != condition_status:
                condition["status"] = condition_status
                condition["lastTransitionTime"] = now_iso()
            condition["reason"] = reason
            condition["message"] = message
            return

    conditions.append(
        {
            "type": condition_type,
            "status": condition_status,
            "reason": reason,
            "message": message,
            "lastTransitionTime": now_iso(),
        }
    )
