"""Tests for the per-pod VCL reconciliation pass."""

import subprocess
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from models import ResourceNotFoundError, ValidationError, VCLCompilationError
from resources.config_map import DEFAULT_BACKENDS_TEMPLATE, DEFAULT_ENTRYPOINT_VCL
from varnish_controller import VarnishController

CONFIGMAP_ANNOTATION = "caching.varnish-operator.io/configmap-version"
ACTIVE_ANNOTATION = "caching.varnish-operator.io/active-vcl-configmap-version"


class FakeVarnish:
    """Stands in for the vcl_list / vcl_reload scripts."""

    def __init__(self, active="boot", reload_returncode=0, reload_output=""):
        self.active = active
        self.loaded = [active]
        self.reload_returncode = reload_returncode
        self.reload_output = reload_output
        self.reloads = []

    def __call__(self, args, **kwargs):
        if args[0] == "vcl_list":
            lines = []
            for name in self.loaded:
                status = "active" if name == self.active else "available"
                lines.append(f"{status}   auto/warm   0 {name}")
            return subprocess.CompletedProcess(args, 0, stdout="\n".join(lines) + "\n")
        name = args[1]
        self.reloads.append(name)
        if name in self.loaded:
            return subprocess.CompletedProcess(
                args, 1, stdout=f"Already a VCL named {name}\n"
            )
        if self.reload_returncode == 0:
            self.loaded.append(name)
            self.active = name
        return subprocess.CompletedProcess(
            args, self.reload_returncode, stdout=self.reload_output
        )


@pytest.fixture
def varnish():
    return FakeVarnish()


@pytest.fixture
def pod():
    return SimpleNamespace(
        metadata=SimpleNamespace(
            name="web-varnish-abc", namespace="default", uid="pod-uid", annotations={}
        )
    )


@pytest.fixture
def config_map():
    return SimpleNamespace(
        data={
            "entrypoint.vcl": DEFAULT_ENTRYPOINT_VCL,
            "backends.vcl.tmpl": DEFAULT_BACKENDS_TEMPLATE,
        },
        metadata=SimpleNamespace(resource_version="100"),
    )


@pytest.fixture
def client(pod, config_map, make_address, make_endpoints):
    client = MagicMock()
    client.get_varnish_cluster.return_value = {
        "metadata": {"name": "web", "namespace": "default", "uid": "uid-1"},
        "spec": {
            "backend": {"selector": {"app": "web"}, "port": 8080},
            "service": {"ports": [{"port": 80}]},
        },
    }
    objects = {"Pod": pod, "ConfigMap": config_map}
    client.get.side_effect = lambda kind, name, namespace: objects.get(kind)

    backends = make_endpoints(
        [make_address("10.0.0.2"), make_address("10.0.0.1")], [("http", 8080)]
    )
    peers = make_endpoints([make_address("10.0.1.1")], [("varnish", 6081)])

    # Keyed by the varnish-component label of the Endpoints
    client.endpoints = {"no-cache-service": [backends], "cache-service": [peers]}

    def list_endpoints(namespace, label_selector):
        for component, found in client.endpoints.items():
            if f"varnish-component={component}" in label_selector:
                return found
        return []

    client.list_endpoints.side_effect = list_endpoints

    def patch_pod_annotations(name, namespace, annotations):
        pod.metadata.annotations.update(annotations)

    client.patch_pod_annotations.side_effect = patch_pod_annotations
    return client


@pytest.fixture
def controller(client, controller_config, varnish):
    return VarnishController(client, controller_config, runner=varnish, warn=MagicMock())


class TestVarnishController:
    """Tests for VarnishController.reconcile."""

    def test_first_pass_writes_and_reloads(self, controller, controller_config, varnish, pod):
        assert controller.reconcile() is True

        vcl_dir = Path(controller_config.vcl_dir)
        backends = (vcl_dir / "backends.vcl").read_text()
        assert backends.index("10.0.0.1") < backends.index("10.0.0.2")
        assert (vcl_dir / "entrypoint.vcl").read_text() == DEFAULT_ENTRYPOINT_VCL
        assert len(varnish.reloads) == 1
        assert varnish.reloads[0].startswith("v-100-")
        assert pod.metadata.annotations == {
            CONFIGMAP_ANNOTATION: "100",
            ACTIVE_ANNOTATION: "100",
        }

    def test_second_pass_is_a_noop(self, controller, client, varnish):
        controller.reconcile()
        client.patch_pod_annotations.reset_mock()

        assert controller.reconcile() is False

        assert len(varnish.reloads) == 1
        client.patch_pod_annotations.assert_not_called()

    def test_reloads_when_active_config_lags(self, controller, config_map, varnish):
        controller.reconcile()
        config_map.metadata.resource_version = "101"

        assert controller.reconcile() is True

        assert varnish.reloads[-1].startswith("v-101-")

    def test_reloads_on_backend_change(
        self, controller, client, varnish, make_address, make_endpoints
    ):
        controller.reconcile()
        client.endpoints["no-cache-service"] = [
            make_endpoints([make_address("10.0.0.3")], [("http", 8080)])
        ]

        assert controller.reconcile() is True
        assert len(varnish.reloads) == 2

    def test_back_to_back_reloads_get_distinct_names(
        self, controller, client, varnish, make_address, make_endpoints
    ):
        controller.reconcile()
        client.endpoints["no-cache-service"] = [
            make_endpoints([make_address("10.0.0.3")], [("http", 8080)])
        ]

        controller.reconcile()

        first, second = varnish.reloads
        assert first != second
        assert second.startswith("v-100-")
        assert varnish.active == second

    def test_compilation_failure(self, controller, controller_config, varnish, pod):
        varnish.reload_returncode = 1
        varnish.reload_output = "VCL compilation failed\n"

        with pytest.raises(VCLCompilationError):
            controller.reconcile()

        assert controller.warn.call_count == 2
        owner_call = controller.warn.call_args_list[1]
        assert owner_call.args[0] == controller_config.owner_reference
        assert owner_call.kwargs["reason"] == "VCLCompilationError"
        assert pod.metadata.annotations == {}

    def test_missing_config_map(self, controller, client, pod):
        client.get.side_effect = lambda kind, name, namespace: pod if kind == "Pod" else None

        with pytest.raises(ResourceNotFoundError, match="ConfigMap"):
            controller.reconcile()

    def test_missing_varnish_cluster(self, controller, client):
        client.get_varnish_cluster.return_value = None

        with pytest.raises(ResourceNotFoundError, match="VarnishCluster"):
            controller.reconcile()

    def test_missing_entrypoint(self, controller, config_map, varnish):
        del config_map.data["entrypoint.vcl"]

        with pytest.raises(ValidationError, match="entrypoint.vcl"):
            controller.reconcile()

        assert varnish.reloads == []

    def test_non_vcl_entries_ignored(self, controller, controller_config, config_map):
        config_map.data["README.md"] = "docs"

        controller.reconcile()

        assert not (Path(controller_config.vcl_dir) / "README.md").exists()

    def test_no_backends(self, controller, client):
        client.endpoints = {}

        with pytest.raises(ResourceNotFoundError, match="No endpoints"):
            controller.reconcile()
