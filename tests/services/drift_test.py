"""Tests for comparing desired objects with live objects."""

from __future__ import annotations

import copy

import pytest
from kubernetes_asyncio.client import (
    V1ConfigMap,
    V1EnvVar,
    V1ObjectMeta,
    V1ResourceRequirements,
)

from tenantoperator.models.domain.drift import DriftReason
from tenantoperator.services.builder.tenant import TenantBuilder
from tenantoperator.services.drift import compare, prune

from ..support.data import read_tenant


@pytest.fixture
def builder() -> TenantBuilder:
    return TenantBuilder(
        cluster_domain="cluster.local", init_container_image="busybox:1.33.1"
    )


def test_missing(builder: TenantBuilder) -> None:
    tenant = read_tenant("plain")
    desired = builder.build(tenant).statefulsets[0].body
    result = compare(tenant, desired, None)
    assert not result.matches
    assert result.reason == DriftReason.MISSING
    assert result.drifts == []

    with pytest.raises(ValueError, match="without a tenant"):
        compare(None, desired, copy.deepcopy(desired))


def test_platform_defaults(builder: TenantBuilder) -> None:
    tenant = read_tenant("auto-tls")
    desired = builder.build(tenant).statefulsets[0].body
    assert compare(tenant, desired, copy.deepcopy(desired)).matches

    # Fields filled in by Kubernetes are not drift.
    live = copy.deepcopy(desired)
    live.metadata.uid = "some-uid"
    live.metadata.resource_version = "1234"
    live.spec.revision_history_limit = 10
    pod = live.spec.template.spec
    pod.dns_policy = "ClusterFirst"
    pod.scheduler_name = "default-scheduler"
    container = pod.containers[0]
    container.termination_message_path = "/dev/termination-log"
    container.ports[0].protocol = "TCP"
    container.env.append(V1EnvVar(name="EXTRA", value="injected"))
    live.spec.template.metadata.labels["injected"] = "true"
    pod.volumes[0].projected.default_mode = 420
    assert compare(tenant, desired, live).matches


def test_image_drift(builder: TenantBuilder) -> None:
    tenant = read_tenant("auto-tls")
    desired = builder.build(tenant).statefulsets[0].body
    live = copy.deepcopy(desired)
    live.spec.template.spec.containers[0].image = "minio/minio:v0"

    result = compare(tenant, desired, live)
    assert not result.matches
    assert result.reason == DriftReason.IMAGE
    assert len(result.drifts) == 1
    drift = result.drifts[0]
    assert drift.path == "/spec/template/spec/containers/0/image"
    assert drift.value == "minio/minio:v1"
    assert drift.present

    # Image drift takes precedence as the reason.
    live.spec.replicas = 2
    result = compare(tenant, desired, live)
    assert result.reason == DriftReason.IMAGE
    assert [d.path for d in result.drifts] == [
        "/spec/replicas",
        "/spec/template/spec/containers/0/image",
    ]


def test_spec_drift(builder: TenantBuilder) -> None:
    tenant = read_tenant("plain")
    desired = builder.build(tenant).statefulsets[0].body
    live = copy.deepcopy(desired)
    live.spec.replicas = 1
    live.spec.template.spec.containers[0].env = None

    result = compare(tenant, desired, live)
    assert result.reason == DriftReason.SPEC
    drifts = {d.path: d for d in result.drifts}
    assert drifts["/spec/replicas"].value == 2
    assert drifts["/spec/replicas"].present
    env = drifts["/spec/template/spec/containers/0/env"]
    assert not env.present
    assert env.value[0] == {"name": "MINIO_BROWSER", "value": "off"}


def test_quantities(builder: TenantBuilder) -> None:
    tenant = read_tenant("plain")
    desired = builder.build(tenant).statefulsets[0].body
    live = copy.deepcopy(desired)
    live.spec.template.spec.containers[0].resources = V1ResourceRequirements(
        requests={"cpu": "0.5", "memory": "1073741824"}
    )
    assert compare(tenant, desired, live).matches

    live.spec.template.spec.containers[0].resources = V1ResourceRequirements(
        requests={"cpu": "1", "memory": "1Gi"}
    )
    result = compare(tenant, desired, live)
    assert result.reason == DriftReason.SPEC
    assert [d.path for d in result.drifts] == [
        "/spec/template/spec/containers/0/resources"
    ]


def test_services(builder: TenantBuilder) -> None:
    tenant = read_tenant("plain")
    desired = builder.build(tenant).service
    live = copy.deepcopy(desired)
    live.spec.cluster_ip = "10.96.0.12"
    live.spec.ports[0].protocol = "TCP"
    live.spec.session_affinity = "None"
    assert compare(tenant, desired, live).matches

    live.spec.selector = {"app": "other"}
    result = compare(tenant, desired, live)
    assert [d.path for d in result.drifts] == ["/spec/selector"]
    assert result.drifts[0].value == {"v1.min.io/tenant": "plain"}


def test_secrets(builder: TenantBuilder) -> None:
    tenant = read_tenant("plain")
    desired = builder.build(tenant).args_secret
    live = copy.deepcopy(desired)
    live.type = "Opaque"
    assert compare(tenant, desired, live).matches

    live.data = {"MINIO_ARGS": "b2xk"}
    result = compare(tenant, desired, live)
    assert result.reason == DriftReason.SPEC
    assert [d.path for d in result.drifts] == ["/data"]


def test_unsupported() -> None:
    tenant = read_tenant("plain")
    config_map = V1ConfigMap(metadata=V1ObjectMeta(name="foo"))
    with pytest.raises(ValueError, match="Unsupported"):
        compare(tenant, config_map, copy.deepcopy(config_map))


def test_prune() -> None:
    data = {"a": None, "b": [{"c": None, "d": 1}], "e": {"f": None}}
    assert prune(data) == {"b": [{"d": 1}], "e": {}}
