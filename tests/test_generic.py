"""Tests for the generic object reconciler."""

import copy
from unittest.mock import MagicMock

import pytest
from kubernetes.client import V1ObjectMeta, V1OwnerReference
from kubernetes.client.exceptions import ApiException

from kube_client import KubeClient
from models import ConflictError
from resources.deployment import DEPLOYMENT, desired_deployment
from resources.generic import (
    KindHandler,
    ObjectReconciler,
    object_diff,
    owner_reference,
    set_controller_reference,
)
from resources.rbac import SERVICE_ACCOUNT, desired_service_account
from resources.service import (
    SERVICE,
    apply_service_defaults,
    desired_cached_service,
    desired_no_cache_service,
)


def stored(owner, handler, desired, resource_version="1"):
    """What the API server would return for ``desired`` after creation."""
    obj = copy.deepcopy(desired)
    set_controller_reference(owner, obj)
    handler.apply_defaults(obj)
    obj.metadata.resource_version = resource_version
    return obj


class TestOwnerReference:
    """Tests for owner reference helpers."""

    def test_controller_reference(self, owner):
        ref = owner_reference(owner)

        assert ref.uid == "uid-1"
        assert ref.kind == "VarnishCluster"
        assert ref.controller is True
        assert ref.block_owner_deletion is True

    def test_keeps_other_non_controller_owners(self, owner):
        other = V1OwnerReference(api_version="v1", kind="X", name="x", uid="uid-x")
        stale = V1OwnerReference(
            api_version="v1", kind="Y", name="y", uid="uid-y", controller=True
        )
        obj = desired_service_account(owner)
        obj.metadata.owner_references = [other, stale]

        set_controller_reference(owner, obj)

        assert [ref.uid for ref in obj.metadata.owner_references] == ["uid-x", "uid-1"]


class TestObjectReconciler:
    """Tests for ObjectReconciler.reconcile."""

    def test_creates_missing_object(self, owner):
        client = MagicMock()
        client.get.return_value = None
        desired = desired_service_account(owner)

        ObjectReconciler(client, SERVICE_ACCOUNT).reconcile(owner, desired)

        client.create.assert_called_once_with("ServiceAccount", desired)
        assert desired.metadata.owner_references[0].uid == "uid-1"
        client.replace.assert_not_called()

    def test_service_with_allocated_ip_is_unchanged(self, owner, spec):
        observed = stored(owner, SERVICE, desired_cached_service(owner, spec))
        observed.spec.cluster_ip = "10.0.0.1"
        observed.spec.cluster_i_ps = ["10.0.0.1"]
        client = MagicMock()
        client.get.return_value = observed

        result = ObjectReconciler(client, SERVICE).reconcile(
            owner, desired_cached_service(owner, spec)
        )

        assert result is observed
        client.replace.assert_not_called()
        client.create.assert_not_called()

    def test_changed_port_replaces_observed(self, owner, spec):
        observed = stored(owner, SERVICE, desired_cached_service(owner, spec))
        observed.spec.cluster_ip = "10.0.0.1"
        spec["service"]["ports"][0]["port"] = 8000
        client = MagicMock()
        client.get.return_value = observed

        ObjectReconciler(client, SERVICE).reconcile(owner, desired_cached_service(owner, spec))

        client.replace.assert_called_once()
        kind, replaced = client.replace.call_args.args
        assert kind == "Service"
        assert replaced.spec.ports[0].port == 8000
        # The allocated address and the resource version survive the update
        assert replaced.spec.cluster_ip == "10.0.0.1"
        assert replaced.metadata.resource_version == "1"

    def test_extra_label_is_removed(self, owner):
        observed = stored(owner, SERVICE_ACCOUNT, desired_service_account(owner))
        observed.metadata.labels["stale"] = "yes"
        client = MagicMock()
        client.get.return_value = observed

        ObjectReconciler(client, SERVICE_ACCOUNT).reconcile(
            owner, desired_service_account(owner)
        )

        replaced = client.replace.call_args.args[1]
        assert "stale" not in replaced.metadata.labels

    def test_foreign_annotations_are_kept(self, owner, spec):
        spec["service"]["annotations"] = {"lb": "internal"}
        observed = stored(owner, SERVICE, desired_cached_service(owner, spec))
        observed.metadata.annotations = {"kubectl.kubernetes.io/last-applied": "{}"}
        client = MagicMock()
        client.get.return_value = observed

        ObjectReconciler(client, SERVICE).reconcile(owner, desired_cached_service(owner, spec))

        replaced = client.replace.call_args.args[1]
        assert replaced.metadata.annotations == {
            "kubectl.kubernetes.io/last-applied": "{}",
            "lb": "internal",
        }

    def test_conflict_on_create(self, owner):
        core = MagicMock()
        core.read_namespaced_service_account.side_effect = ApiException(status=404)
        core.create_namespaced_service_account.side_effect = ApiException(status=409)
        client = KubeClient(
            core=core, apps=MagicMock(), rbac=MagicMock(), policy=MagicMock(), custom=MagicMock()
        )

        with pytest.raises(ConflictError):
            ObjectReconciler(client, SERVICE_ACCOUNT).reconcile(
                owner, desired_service_account(owner)
            )


class TestObjectDiff:
    """Tests for object_diff function."""

    def test_deployment_annotations_not_managed(self, owner, spec):
        desired = desired_deployment(owner, spec, "sa", {"a": "b"})
        observed = stored(owner, DEPLOYMENT, desired)
        observed.metadata.annotations = {"deployment.kubernetes.io/revision": "3"}
        set_controller_reference(owner, desired)

        assert object_diff(DEPLOYMENT, observed, desired) == []

    def test_reports_section_path_in_api_names(self, owner):
        handler = KindHandler("Service", sections=("spec",))
        desired = MagicMock()
        desired.metadata = V1ObjectMeta(labels={}, annotations={})
        desired.attribute_map = {"spec": "spec"}
        desired.spec = {"type": "NodePort"}
        observed = MagicMock()
        observed.metadata = V1ObjectMeta(labels={})
        observed.spec = {"type": "ClusterIP"}

        changes = object_diff(handler, observed, desired)

        assert changes == [{"path": "spec.type", "observed": "ClusterIP", "desired": "NodePort"}]

    def test_service_defaults(self, owner, spec):
        service = desired_cached_service(owner, spec)
        service.spec.ports[0].protocol = None
        apply_service_defaults(service)

        assert service.spec.ports[0].protocol == "TCP"
        assert service.spec.session_affinity == "None"


class TestRemovedFields:
    """Fields dropped from the VarnishCluster must be dropped from the objects."""

    def test_server_defaults_are_not_drift(self, owner, spec):
        observed = stored(owner, DEPLOYMENT, desired_deployment(owner, spec, "sa", {"a": "b"}))
        observed.spec.revision_history_limit = 10
        observed.spec.template.spec.dns_policy = "ClusterFirst"
        for container in observed.spec.template.spec.containers:
            container.termination_message_path = "/dev/termination-log"
        client = MagicMock()
        client.get.return_value = observed

        ObjectReconciler(client, DEPLOYMENT).reconcile(
            owner, desired_deployment(owner, spec, "sa", {"a": "b"})
        )

        client.replace.assert_not_called()

    def test_removed_toleration_is_reconciled(self, owner, spec):
        tolerated = copy.deepcopy(spec)
        tolerated["tolerations"] = [{"key": "dedicated", "operator": "Exists"}]
        observed = stored(
            owner, DEPLOYMENT, desired_deployment(owner, tolerated, "sa", {"a": "b"})
        )
        client = MagicMock()
        client.get.return_value = observed

        ObjectReconciler(client, DEPLOYMENT).reconcile(
            owner, desired_deployment(owner, spec, "sa", {"a": "b"})
        )

        replaced = client.replace.call_args.args[1]
        assert replaced.spec.template.spec.tolerations is None

    def test_removed_selector_key_is_reconciled(self, owner, spec):
        wide = copy.deepcopy(spec)
        wide["backend"]["selector"] = {"app": "web", "tier": "frontend"}
        spec["backend"]["selector"] = {"app": "web"}
        observed = stored(owner, SERVICE, desired_no_cache_service(owner, wide))
        observed.spec.cluster_ip = "10.0.0.1"
        observed.spec.ip_families = ["IPv4"]
        client = MagicMock()
        client.get.return_value = observed

        ObjectReconciler(client, SERVICE).reconcile(
            owner, desired_no_cache_service(owner, spec)
        )

        replaced = client.replace.call_args.args[1]
        assert replaced.spec.selector == {"app": "web"}
        assert replaced.spec.cluster_ip == "10.0.0.1"
