"""Label sets stamped on derived objects and used as their selectors.

The same functions build object labels and selectors so the two can never
disagree. Generated labels depend only on the owner's name and UID plus the
component role, which never change for the lifetime of the owner, so
selectors built from them never need rewriting after creation.
"""

from typing import Any

from constants import LABEL_VARNISH_COMPONENT, LABEL_VARNISH_OWNER, LABEL_VARNISH_UID


def inherit_labels(owner_meta: dict[str, Any]) -> dict[str, str]:
    """Copy the owner's own labels."""
    return dict(owner_meta.get("labels") or {})


def component_labels(owner_meta: dict[str, Any], component: str) -> dict[str, str]:
    """Return the generated labels identifying one component of an owner."""
    return {
        LABEL_VARNISH_OWNER: owner_meta["name"],
        LABEL_VARNISH_COMPONENT: component,
        LABEL_VARNISH_UID: str(owner_meta["uid"]),
    }


def combined_labels(owner_meta: dict[str, Any], component: str) -> dict[str, str]:
    """Merge inherited and generated labels. Generated keys win."""
    labels = inherit_labels(owner_meta)
    labels.update(component_labels(owner_meta, component))
    return labels


def format_selector(labels: dict[str, str]) -> str:
    """Render a label mapping as a sorted ``k=v,k2=v2`` selector string."""
    return ",".join(f"{key}={labels[key]}" for key in sorted(labels))


def parse_selector(selector: str) -> dict[str, str]:
    """Parse a Kubernetes label selector string (``k=v,k2=v2``) into a dict."""
    result: dict[str, str] = {}
    for part in selector.split(","):
        part = part.strip()
        if "=" in part:
            key, _, value = part.partition("==" if "==" in part else "=")
            result[key.strip()] = value.strip()
    return result
