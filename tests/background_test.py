"""Tests for the background operator."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
from kubernetes_asyncio.client import (
    ApiException,
    V1ObjectMeta,
    V1OwnerReference,
    V1StatefulSet,
)
from safir.testing.slack import MockSlackWebhook

from tenantoperator.factory import Factory
from tenantoperator.models.domain.kubernetes import WatchEventType
from tenantoperator.storage.kubernetes.watcher import WatchEvent

from .support.data import read_input_tenant
from .support.kubernetes import MockTenantKubernetesApi


async def _wait_for_status(
    mock_kubernetes: MockTenantKubernetesApi, name: str
) -> dict[str, Any]:
    for _ in range(100):
        obj = await mock_kubernetes.get_namespaced_custom_object(
            "minio.min.io", "v2", "tenants", "tenants", name
        )
        if "status" in obj:
            return obj["status"]
        await asyncio.sleep(0.05)
    raise AssertionError(f"Status of tenant {name} never set")


def _build_statefulset(
    owner_kind: str = "Tenant", *, controller: bool = True
) -> V1StatefulSet:
    owner = V1OwnerReference(
        api_version="minio.min.io/v2",
        kind=owner_kind,
        name="storage",
        uid="3c5a2d0e-6f1b-4c8e-9a7d-1b2c3d4e5f60",
        controller=controller,
    )
    return V1StatefulSet(
        metadata=V1ObjectMeta(
            name="storage-pool-0",
            namespace="tenants",
            owner_references=[owner],
        )
    )


@pytest.mark.asyncio
async def test_tenant_events(
    factory: Factory, mock_kubernetes: MockTenantKubernetesApi
) -> None:
    operator = factory.create_operator()
    obj = await mock_kubernetes.create_tenant_for_test(
        read_input_tenant("auto-tls")
    )

    await operator.handle_tenant_event(WatchEvent(WatchEventType.ADDED, obj))
    assert len(operator.queue) == 1
    key = await operator.queue.get()
    assert key == "tenants/storage"
    operator.queue.done(key)

    # Status and metadata changes do not change the generation.
    obj["status"] = {"currentState": "Provisioning"}
    event = WatchEvent(WatchEventType.MODIFIED, obj)
    await operator.handle_tenant_event(event)
    assert len(operator.queue) == 0

    obj["metadata"]["generation"] = 2
    await operator.handle_tenant_event(event)
    assert len(operator.queue) == 1

    # Deleting the tenant drops its work and its certificate requests.
    await factory.create_reconciler().reconcile("tenants", "storage")
    csrs = mock_kubernetes.get_all_objects_for_test(
        "CertificateSigningRequest"
    )
    assert len(csrs) == 1
    event = WatchEvent(WatchEventType.DELETED, obj)
    await operator.handle_tenant_event(event)
    assert len(operator.queue) == 0
    assert mock_kubernetes.get_all_objects_for_test(
        "CertificateSigningRequest"
    ) == []


@pytest.mark.asyncio
async def test_child_events(factory: Factory) -> None:
    operator = factory.create_operator()

    event = WatchEvent(WatchEventType.MODIFIED, _build_statefulset("Pod"))
    operator.handle_child_event(event)
    statefulset = _build_statefulset(controller=False)
    operator.handle_child_event(
        WatchEvent(WatchEventType.MODIFIED, statefulset)
    )
    assert len(operator.queue) == 0

    event = WatchEvent(WatchEventType.MODIFIED, _build_statefulset())
    operator.handle_child_event(event)
    assert len(operator.queue) == 1
    assert await operator.queue.get() == "tenants/storage"


@pytest.mark.asyncio
async def test_resync(
    factory: Factory, mock_kubernetes: MockTenantKubernetesApi
) -> None:
    operator = factory.create_operator()
    for name in ("auto-tls", "plain"):
        tenant = read_input_tenant(name)
        await mock_kubernetes.create_tenant_for_test(tenant)

    await operator.resync()
    assert len(operator.queue) == 2
    keys = {await operator.queue.get(), await operator.queue.get()}
    assert keys == {"tenants/plain", "tenants/storage"}


@pytest.mark.asyncio
async def test_start(
    factory: Factory, mock_kubernetes: MockTenantKubernetesApi
) -> None:
    await mock_kubernetes.create_tenant_for_test(read_input_tenant("plain"))
    await factory.start_background_services()

    status = await _wait_for_status(mock_kubernetes, "plain")
    assert status["currentState"] == "Provisioning"
    statefulsets = mock_kubernetes.get_all_objects_for_test("StatefulSet")
    assert [s.metadata.name for s in statefulsets] == ["plain-pool-0"]

    # The operator can be restarted after being stopped.
    await factory.operator.stop()
    await factory.operator.start()


@pytest.mark.asyncio
async def test_slack(
    factory: Factory,
    mock_kubernetes: MockTenantKubernetesApi,
    mock_slack: MockSlackWebhook,
) -> None:
    await mock_kubernetes.create_tenant_for_test(read_input_tenant("plain"))

    def callback(method: str, *args: Any) -> None:
        if method == "create_namespaced_service":
            raise ApiException(status=500, reason="Internal error")

    mock_kubernetes.error_callback = callback
    operator = factory.create_operator()
    await operator.start()
    try:
        for _ in range(100):
            if mock_slack.messages:
                break
            await asyncio.sleep(0.05)
    finally:
        await operator.stop()

    assert mock_slack.messages
    text = mock_slack.messages[0]["blocks"][0]["text"]["text"]
    assert text.startswith("Error creating object (Service tenants/plain-hl")
    assert mock_kubernetes.get_all_objects_for_test("StatefulSet") == []
