"""Tests for the Kubernetes storage layer."""

from __future__ import annotations

from datetime import timedelta

import pytest
from kubernetes_asyncio.client import (
    ApiException,
    V1ConfigMap,
    V1ObjectMeta,
    V1Service,
    V1ServicePort,
    V1ServiceSpec,
)

from tenantoperator.exceptions import KubernetesError
from tenantoperator.factory import Factory
from tenantoperator.models.domain.drift import FieldDrift
from tenantoperator.timeout import Timeout

from ..support.data import read_tenant
from ..support.kubernetes import MockTenantKubernetesApi


def _build_service() -> V1Service:
    return V1Service(
        metadata=V1ObjectMeta(name="minio", labels={"app": "minio"}),
        spec=V1ServiceSpec(
            ports=[V1ServicePort(name="http-minio", port=80)],
        ),
    )


@pytest.mark.asyncio
async def test_ensure_exists(
    factory: Factory, mock_kubernetes: MockTenantKubernetesApi
) -> None:
    storage = factory.create_object_storage()
    tenant = read_tenant("plain")
    timeout = Timeout("Test", timedelta(seconds=10))

    assert await storage.read("tenants", _build_service(), timeout) is None
    created = await storage.ensure_exists(
        "tenants", _build_service(), tenant, timeout
    )
    assert created
    service = await storage.read("tenants", _build_service(), timeout)
    assert isinstance(service, V1Service)
    reference = service.metadata.owner_references[0]
    assert reference.api_version == "minio.min.io/v2"
    assert reference.kind == "Tenant"
    assert reference.name == "plain"
    assert reference.uid == tenant.uid
    assert reference.controller
    assert reference.block_owner_deletion

    # A second attempt leaves the existing object alone.
    body = _build_service()
    body.spec.ports[0].port = 443
    created = await storage.ensure_exists("tenants", body, tenant, timeout)
    assert not created
    service = await storage.read("tenants", body, timeout)
    assert service.spec.ports[0].port == 80


@pytest.mark.asyncio
async def test_patch(
    factory: Factory, mock_kubernetes: MockTenantKubernetesApi
) -> None:
    storage = factory.create_object_storage()
    tenant = read_tenant("plain")
    timeout = Timeout("Test", timedelta(seconds=10))
    await storage.ensure_exists("tenants", _build_service(), tenant, timeout)

    drifts = [
        FieldDrift("/spec/ports/0/port", 443, present=True),
        FieldDrift("/metadata/annotations", {"a": "b"}, present=False),
    ]
    await storage.patch("tenants", _build_service(), drifts, timeout)
    patches = mock_kubernetes.get_patches_for_test("Service")
    assert len(patches) == 1
    assert patches[0].body == [
        {"op": "replace", "path": "/spec/ports/0/port", "value": 443},
        {"op": "add", "path": "/metadata/annotations", "value": {"a": "b"}},
    ]
    service = await storage.read("tenants", _build_service(), timeout)
    assert service.spec.ports[0].port == 443
    assert service.metadata.annotations == {"a": "b"}


@pytest.mark.asyncio
async def test_errors(
    factory: Factory, mock_kubernetes: MockTenantKubernetesApi
) -> None:
    storage = factory.create_object_storage()
    tenant = read_tenant("plain")
    timeout = Timeout("Test", timedelta(seconds=10))

    def callback(method: str, *args: object) -> None:
        if method == "create_namespaced_service":
            raise ApiException(status=500, reason="Internal error")

    mock_kubernetes.error_callback = callback
    with pytest.raises(KubernetesError) as excinfo:
        await storage.ensure_exists(
            "tenants", _build_service(), tenant, timeout
        )
    assert excinfo.value.status == 500
    assert excinfo.value.kind == "Service"
    assert excinfo.value.name == "minio"

    config_map = V1ConfigMap(metadata=V1ObjectMeta(name="minio"))
    with pytest.raises(TypeError):
        await storage.read("tenants", config_map, timeout)
