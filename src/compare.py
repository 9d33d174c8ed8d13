"""Semantic comparison of desired and observed Kubernetes objects.

Sections the operator manages are compared exactly: a field present in the
observed object but missing from desired is a difference, so removing a
toleration or a selector key from the VarnishCluster is noticed. The only
exceptions are fields the API server fills in on its own (defaults,
allocated addresses), which each kind lists by path. Paths use the API
field names with list indices written as ``[]``, e.g.
``spec.template.spec.containers[].terminationMessagePath``.

Annotations are compared with subset semantics instead, because other
writers (kubectl, controllers) add their own.
"""

import re
from collections.abc import Collection
from decimal import Decimal, InvalidOperation
from typing import Any

from kubernetes.utils import parse_quantity

_INDEX = re.compile(r"\[\d+\]")


def _path(parent: str, key: str) -> str:
    return f"{parent}.{key}" if parent else key


def _pattern(path: str) -> str:
    return _INDEX.sub("[]", path)


def _is_empty(value: Any) -> bool:
    return value is None or value == {} or value == []


def _quantities_equal(observed: Any, desired: Any) -> bool:
    """Compare resource quantities by value, so '1024Mi' equals '1Gi'."""
    try:
        return parse_quantity(observed) == parse_quantity(desired)
    except (ValueError, TypeError, InvalidOperation):
        return False


def _scalars_equal(path: str, observed: Any, desired: Any) -> bool:
    if observed == desired:
        return True
    if ".resources." in f".{path}." and isinstance(desired, (str, int, float, Decimal)):
        return observed is not None and _quantities_equal(observed, desired)
    return False


def _diff(
    observed: Any, desired: Any, path: str, defaulted: Collection[str] | None
) -> list[dict[str, Any]]:
    # defaulted=None selects subset semantics
    record = {"path": path, "observed": observed, "desired": desired}

    if desired is None:
        if defaulted is None or _is_empty(observed) or _pattern(path) in defaulted:
            return []
        return [record]

    if isinstance(desired, dict):
        if observed is None:
            observed = {}
        if not isinstance(observed, dict):
            return [record]
        keys = set(desired) if defaulted is None else set(desired) | set(observed)
        records: list[dict[str, Any]] = []
        for key in sorted(keys):
            records.extend(
                _diff(observed.get(key), desired.get(key), _path(path, key), defaulted)
            )
        return records

    if isinstance(desired, list):
        if observed is None and not desired:
            return []
        if not isinstance(observed, list) or len(observed) != len(desired):
            return [record]
        records = []
        for index, (observed_item, desired_item) in enumerate(zip(observed, desired)):
            records.extend(
                _diff(observed_item, desired_item, f"{path}[{index}]", defaulted)
            )
        return records

    if _scalars_equal(path, observed, desired):
        return []
    return [record]


def diff(
    observed: Any,
    desired: Any,
    path: str = "",
    defaulted: Collection[str] = frozenset(),
) -> list[dict[str, Any]]:
    """Return a record for every field where ``observed`` differs from ``desired``.

    Both arguments are plain serialized data (see ``utils.serialize``).
    Fields only present in ``observed`` count unless their path is in
    ``defaulted``. Records are ``{"path", "observed", "desired"}`` and are
    ordered by path.
    """
    return _diff(observed, desired, path, defaulted)


def subset_diff(observed: Any, desired: Any, path: str = "") -> list[dict[str, Any]]:
    """Like ``diff``, but fields not set in ``desired`` are ignored."""
    return _diff(observed, desired, path, None)


def labels_diff(
    observed: dict[str, str] | None, desired: dict[str, str] | None, path: str
) -> list[dict[str, Any]]:
    """Labels are owned entirely by the operator and compared exactly."""
    observed = observed or {}
    desired = desired or {}
    if observed == desired:
        return []
    return [{"path": path, "observed": observed, "desired": desired}]


def is_equal(observed: Any, desired: Any) -> bool:
    return not diff(observed, desired)


def merge_patch(observed: Any, desired: Any) -> Any:
    """Turn ``desired`` into a JSON merge patch over ``observed``.

    Keys of ``observed`` that ``desired`` no longer has are set to None,
    which tells the API server to delete them.
    """
    if not isinstance(desired, dict) or not isinstance(observed, dict):
        return desired
    patch = {key: merge_patch(observed.get(key), value) for key, value in desired.items()}
    for key in observed:
        if key not in desired:
            patch[key] = None
    return patch
