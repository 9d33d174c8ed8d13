"""Shared fixtures."""

from types import SimpleNamespace

import pytest

from config import ControllerConfig, OperatorConfig
from defaults import apply_defaults


@pytest.fixture
def owner():
    """Owner body of a VarnishCluster named ``web``."""
    return {
        "apiVersion": "caching.varnish-operator.io/v1alpha1",
        "kind": "VarnishCluster",
        "metadata": {
            "name": "web",
            "namespace": "default",
            "uid": "uid-1",
            "labels": {"team": "a"},
        },
    }


@pytest.fixture
def raw_spec():
    return {
        "backend": {"selector": {"app": "web"}},
        "service": {"ports": [{"port": 80, "targetPort": 8080}]},
        "varnish": {"resources": {"limits": {"memory": "1Gi"}}},
    }


@pytest.fixture
def spec(raw_spec):
    """Defaulted spec of the ``web`` VarnishCluster."""
    return apply_defaults("web", raw_spec, OperatorConfig())


@pytest.fixture
def controller_config(tmp_path):
    return ControllerConfig(
        endpoint_selector={
            "varnish-component": "no-cache-service",
            "varnish-owner": "web",
            "varnish-uid": "uid-1",
        },
        config_map_name="web-vcl-files",
        namespace="default",
        pod_name="web-varnish-abc",
        varnish_cluster_name="web",
        varnish_cluster_uid="uid-1",
        varnish_cluster_group="caching.varnish-operator.io",
        varnish_cluster_version="v1alpha1",
        varnish_cluster_kind="VarnishCluster",
        log_format="json",
        log_level="info",
        vcl_dir=str(tmp_path),
    )


def _address(ip, node_name=None, pod_name=None):
    target_ref = SimpleNamespace(name=pod_name) if pod_name else None
    return SimpleNamespace(ip=ip, node_name=node_name, target_ref=target_ref)


def _endpoints(addresses, ports, not_ready=None):
    return SimpleNamespace(
        subsets=[
            SimpleNamespace(
                addresses=addresses,
                not_ready_addresses=not_ready,
                ports=[SimpleNamespace(name=name, port=port) for name, port in ports],
            )
        ]
    )


@pytest.fixture
def make_address():
    """Factory for Endpoints addresses as returned by the API client."""
    return _address


@pytest.fixture
def make_endpoints():
    """Factory for Endpoints objects with a single subset.

    ``ports`` is a list of ``(name, number)`` pairs.
    """
    return _endpoints
