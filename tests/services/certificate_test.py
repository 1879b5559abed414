"""Tests for issuance of tenant certificates."""

from __future__ import annotations

from base64 import b64decode, b64encode
from datetime import timedelta
from typing import Any

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from kubernetes_asyncio.client import V1ObjectMeta, V1Secret
from safir.datetime import current_datetime

from tenantoperator.factory import Factory
from tenantoperator.models.domain.certificate import (
    CertificatePhase,
    CertificateRole,
    CertificateStatus,
)
from tenantoperator.models.v1.tenant import Tenant
from tenantoperator.timeout import Timeout

from ..support.certificates import MockCertificateAuthority
from ..support.data import read_input_tenant
from ..support.kubernetes import MockTenantKubernetesApi

SERVER = CertificateRole.SERVER
CSR = "CertificateSigningRequest"
CSR_NAME = "storage-tenants-csr"
KEY_SECRET = "storage-tls-key"
TLS_SECRET = "storage-tls"


async def _create_tenant(
    mock_kubernetes: MockTenantKubernetesApi, name: str = "auto-tls"
) -> tuple[Tenant, dict[str, Any]]:
    tenant = read_input_tenant(name)
    obj = await mock_kubernetes.create_tenant_for_test(tenant)
    return Tenant.from_object(obj), obj


def _secret_names(mock_kubernetes: MockTenantKubernetesApi) -> list[str]:
    secrets = mock_kubernetes.get_all_objects_for_test("Secret")
    return [s.metadata.name for s in secrets]


async def _read_secret(
    mock_kubernetes: MockTenantKubernetesApi, name: str
) -> V1Secret:
    return await mock_kubernetes.read_namespaced_secret(name, "tenants")


def _timeout() -> Timeout:
    return Timeout("Test", timedelta(seconds=30))


def _waiting() -> CertificateStatus:
    return CertificateStatus(
        SERVER,
        CertificatePhase.SUBMITTED,
        "storage-tls",
        message=f"Waiting for approval of {CSR_NAME}",
    )


@pytest.mark.asyncio
async def test_issue(
    factory: Factory,
    mock_kubernetes: MockTenantKubernetesApi,
    ca: MockCertificateAuthority,
) -> None:
    manager = factory.create_certificate_manager()
    tenant, _ = await _create_tenant(mock_kubernetes)

    status = await manager.ensure(tenant, SERVER, _timeout())
    assert status == _waiting()
    assert not status.is_ready
    assert not status.is_blocked

    # The request names every host, signed with the pending key.
    csrs = mock_kubernetes.get_all_objects_for_test(CSR)
    assert [c.metadata.name for c in csrs] == [CSR_NAME]
    csr = csrs[0]
    assert csr.metadata.labels == {
        "v1.min.io/tenant": "storage",
        "v1.min.io/namespace": "tenants",
        "v1.min.io/certificate-role": "server",
    }
    assert csr.metadata.owner_references is None
    assert csr.spec.signer_name == "kubernetes.io/kubelet-serving"
    assert csr.spec.usages == [
        "digital signature",
        "key encipherment",
        "server auth",
    ]
    request = x509.load_pem_x509_csr(b64decode(csr.spec.request))
    assert isinstance(request.signature_hash_algorithm, hashes.SHA512)
    public_key = request.public_key()
    assert isinstance(public_key, ec.EllipticCurvePublicKey)
    assert public_key.curve.name == "secp256r1"
    san = request.extensions.get_extension_for_class(
        x509.SubjectAlternativeName
    )
    hl = "storage-hl.tenants.svc.cluster.local"
    assert san.value.get_values_for_type(x509.DNSName) == [
        *(f"storage-pool-0-{i}.{hl}" for i in range(4)),
        hl,
        "minio.tenants.svc.cluster.local",
        "minio.tenants.svc",
        "minio.tenants",
    ]
    key_secret = await _read_secret(mock_kubernetes, KEY_SECRET)
    assert key_secret.metadata.owner_references[0].uid == tenant.uid
    pending_key = key_secret.data["private.key"]

    # Asking again does not submit a second request.
    status = await manager.ensure(tenant, SERVER, _timeout())
    assert status == _waiting()
    csrs = mock_kubernetes.get_all_objects_for_test(CSR)
    assert len(csrs) == 1

    # Approved but not yet signed.
    mock_kubernetes.approve_csr_for_test(CSR_NAME)
    status = await manager.ensure(tenant, SERVER, _timeout())
    assert status.phase == CertificatePhase.APPROVED
    assert TLS_SECRET not in _secret_names(mock_kubernetes)

    # Once signed, the certificate is stored and the request cleaned up.
    mock_kubernetes.approve_csr_for_test(CSR_NAME, ca)
    status = await manager.ensure(tenant, SERVER, _timeout())
    assert status == CertificateStatus(
        SERVER, CertificatePhase.SECRET_PERSISTED, "storage-tls"
    )
    assert status.is_ready
    assert mock_kubernetes.get_all_objects_for_test(CSR) == []
    assert KEY_SECRET not in _secret_names(mock_kubernetes)
    secret = await _read_secret(mock_kubernetes, TLS_SECRET)
    assert secret.metadata.owner_references[0].kind == "Tenant"
    assert secret.metadata.owner_references[0].uid == tenant.uid
    assert secret.data["private.key"] == pending_key
    certificate = x509.load_pem_x509_certificate(
        b64decode(secret.data["public.crt"])
    )
    assert certificate.issuer == ca.certificate.subject

    # Nothing more happens once the certificate exists.
    status = await manager.ensure(tenant, SERVER, _timeout())
    assert status.is_ready
    assert mock_kubernetes.get_all_objects_for_test(CSR) == []


@pytest.mark.asyncio
async def test_denied(
    factory: Factory, mock_kubernetes: MockTenantKubernetesApi
) -> None:
    manager = factory.create_certificate_manager()
    tenant, _ = await _create_tenant(mock_kubernetes)
    await manager.ensure(tenant, SERVER, _timeout())

    mock_kubernetes.deny_csr_for_test(CSR_NAME, "Not allowed")
    for _ in range(2):
        status = await manager.ensure(tenant, SERVER, _timeout())
        assert status == CertificateStatus(
            SERVER, CertificatePhase.DENIED, "storage-tls", "Not allowed"
        )
        assert status.is_blocked
    assert TLS_SECRET not in _secret_names(mock_kubernetes)


@pytest.mark.asyncio
async def test_approval_timeout(
    factory: Factory, mock_kubernetes: MockTenantKubernetesApi
) -> None:
    manager = factory.create_certificate_manager()
    tenant, _ = await _create_tenant(mock_kubernetes)
    await manager.ensure(tenant, SERVER, _timeout())

    created = current_datetime() - timedelta(minutes=29)
    mock_kubernetes.set_csr_created_for_test(CSR_NAME, created)
    status = await manager.ensure(tenant, SERVER, _timeout())
    assert status == _waiting()

    created = current_datetime() - timedelta(hours=1)
    mock_kubernetes.set_csr_created_for_test(CSR_NAME, created)
    status = await manager.ensure(tenant, SERVER, _timeout())
    assert status.phase == CertificatePhase.TIMED_OUT
    assert status.is_blocked
    assert status.message == f"Request {CSR_NAME} not approved in time"


@pytest.mark.asyncio
async def test_lost_key(
    factory: Factory, mock_kubernetes: MockTenantKubernetesApi
) -> None:
    manager = factory.create_certificate_manager()
    tenant, _ = await _create_tenant(mock_kubernetes)
    await manager.ensure(tenant, SERVER, _timeout())
    await mock_kubernetes.delete_namespaced_secret(KEY_SECRET, "tenants")

    status = await manager.ensure(tenant, SERVER, _timeout())
    assert status.phase == CertificatePhase.KEY_GENERATED
    assert mock_kubernetes.get_all_objects_for_test(CSR) == []

    # The next attempt starts over with a new key.
    status = await manager.ensure(tenant, SERVER, _timeout())
    assert status == _waiting()
    assert KEY_SECRET in _secret_names(mock_kubernetes)


@pytest.mark.asyncio
async def test_invalid_key(
    factory: Factory, mock_kubernetes: MockTenantKubernetesApi
) -> None:
    manager = factory.create_certificate_manager()
    tenant, _ = await _create_tenant(mock_kubernetes)
    secret = V1Secret(
        metadata=V1ObjectMeta(name="storage-tls-key"),
        data={"private.key": b64encode(b"not a key").decode()},
    )
    await mock_kubernetes.create_namespaced_secret("tenants", secret)

    status = await manager.ensure(tenant, SERVER, _timeout())
    assert status.phase == CertificatePhase.KEY_GENERATED
    assert KEY_SECRET not in _secret_names(mock_kubernetes)
    status = await manager.ensure(tenant, SERVER, _timeout())
    assert status == _waiting()


@pytest.mark.asyncio
async def test_hosts_changed(
    factory: Factory, mock_kubernetes: MockTenantKubernetesApi
) -> None:
    manager = factory.create_certificate_manager()
    tenant, obj = await _create_tenant(mock_kubernetes)
    await manager.ensure(tenant, SERVER, _timeout())
    csr = await mock_kubernetes.read_certificate_signing_request(CSR_NAME)
    old_hash = csr.metadata.annotations["v1.min.io/hosts-hash"]

    # Adding servers adds hosts, so the pending request is replaced.
    obj["spec"]["pools"][0]["servers"] = 8
    tenant = Tenant.from_object(obj)
    status = await manager.ensure(tenant, SERVER, _timeout())
    assert status.phase == CertificatePhase.KEY_GENERATED
    assert mock_kubernetes.get_all_objects_for_test(CSR) == []

    status = await manager.ensure(tenant, SERVER, _timeout())
    assert status == _waiting()
    csr = await mock_kubernetes.read_certificate_signing_request(CSR_NAME)
    assert csr.metadata.annotations["v1.min.io/hosts-hash"] != old_hash


@pytest.mark.asyncio
async def test_renewal(
    factory: Factory,
    mock_kubernetes: MockTenantKubernetesApi,
    ca: MockCertificateAuthority,
) -> None:
    manager = factory.create_certificate_manager()
    tenant, _ = await _create_tenant(mock_kubernetes)
    await manager.ensure(tenant, SERVER, _timeout())
    lifetime = timedelta(days=10)
    mock_kubernetes.approve_csr_for_test(CSR_NAME, ca, lifetime=lifetime)
    status = await manager.ensure(tenant, SERVER, _timeout())
    assert status.is_ready
    assert not status.rotating

    # The certificate expires within the renewal window, so a replacement
    # is requested while the old certificate stays in use.
    status = await manager.ensure(tenant, SERVER, _timeout())
    assert status == CertificateStatus(
        SERVER,
        CertificatePhase.SECRET_PERSISTED,
        "storage-tls",
        message=f"Renewal Submitted: Waiting for approval of {CSR_NAME}",
        rotating=True,
    )
    assert status.is_ready
    old_data = (await _read_secret(mock_kubernetes, TLS_SECRET)).data

    mock_kubernetes.approve_csr_for_test(CSR_NAME, ca)
    status = await manager.ensure(tenant, SERVER, _timeout())
    assert status.is_ready
    assert not status.rotating
    patches = mock_kubernetes.get_patches_for_test("Secret")
    assert [(p.name, p.body[0]["path"]) for p in patches] == [
        ("storage-tls", "/data")
    ]
    new_data = (await _read_secret(mock_kubernetes, TLS_SECRET)).data
    assert new_data["public.crt"] != old_data["public.crt"]

    status = await manager.ensure(tenant, SERVER, _timeout())
    assert status.is_ready
    assert not status.rotating
    assert mock_kubernetes.get_all_objects_for_test(CSR) == []


@pytest.mark.asyncio
async def test_missing_hosts(
    factory: Factory,
    mock_kubernetes: MockTenantKubernetesApi,
    ca: MockCertificateAuthority,
) -> None:
    manager = factory.create_certificate_manager()
    tenant, _ = await _create_tenant(mock_kubernetes)
    await manager.ensure(tenant, SERVER, _timeout())
    hosts = ["minio.tenants.svc.cluster.local"]
    mock_kubernetes.approve_csr_for_test(CSR_NAME, ca, hosts=hosts)
    status = await manager.ensure(tenant, SERVER, _timeout())
    assert status.is_ready

    status = await manager.ensure(tenant, SERVER, _timeout())
    assert status.rotating
    assert status.is_ready
    csrs = mock_kubernetes.get_all_objects_for_test(CSR)
    assert [c.metadata.name for c in csrs] == [CSR_NAME]


@pytest.mark.asyncio
async def test_unparsable_secret(
    factory: Factory,
    mock_kubernetes: MockTenantKubernetesApi,
    ca: MockCertificateAuthority,
) -> None:
    manager = factory.create_certificate_manager()
    tenant, _ = await _create_tenant(mock_kubernetes)
    secret = V1Secret(
        metadata=V1ObjectMeta(name="storage-tls"),
        data={
            "public.crt": b64encode(b"garbage").decode(),
            "private.key": b64encode(b"garbage").decode(),
        },
    )
    await mock_kubernetes.create_namespaced_secret("tenants", secret)

    # An unusable certificate is replaced, not rotated.
    status = await manager.ensure(tenant, SERVER, _timeout())
    assert status == _waiting()

    mock_kubernetes.approve_csr_for_test(CSR_NAME, ca)
    status = await manager.ensure(tenant, SERVER, _timeout())
    assert status.is_ready
    patches = mock_kubernetes.get_patches_for_test("Secret")
    assert [p.name for p in patches] == ["storage-tls"]


@pytest.mark.asyncio
async def test_cleanup(
    factory: Factory, mock_kubernetes: MockTenantKubernetesApi
) -> None:
    manager = factory.create_certificate_manager()
    tenant, _ = await _create_tenant(mock_kubernetes)
    other, _ = await _create_tenant(mock_kubernetes, "kes")
    await manager.ensure(tenant, SERVER, _timeout())
    for role in CertificateRole:
        await manager.ensure(other, role, _timeout())
    csrs = mock_kubernetes.get_all_objects_for_test(CSR)
    assert len(csrs) == 4

    await manager.cleanup("tenants", "storage", _timeout())
    csrs = mock_kubernetes.get_all_objects_for_test(CSR)
    assert sorted(c.metadata.name for c in csrs) == [
        "secure-client-tenants-csr",
        "secure-kes-tenants-csr",
        "secure-tenants-csr",
    ]

    # Cleaning up a tenant with no requests is harmless.
    await manager.cleanup("tenants", "storage", _timeout())
    await manager.cleanup("elsewhere", "secure", _timeout())
    csrs = mock_kubernetes.get_all_objects_for_test(CSR)
    assert len(csrs) == 3


@pytest.mark.asyncio
async def test_usages(
    factory: Factory, mock_kubernetes: MockTenantKubernetesApi
) -> None:
    manager = factory.create_certificate_manager()
    tenant, _ = await _create_tenant(mock_kubernetes, "kes")
    for role in CertificateRole:
        await manager.ensure(tenant, role, _timeout())

    # The kubelet-serving signer only accepts server usages.
    roles = set()
    for csr in mock_kubernetes.get_all_objects_for_test(CSR):
        roles.add(csr.metadata.labels["v1.min.io/certificate-role"])
        assert csr.spec.signer_name == "kubernetes.io/kubelet-serving"
        assert csr.spec.usages == [
            "digital signature",
            "key encipherment",
            "server auth",
        ]
    assert roles == {r.value for r in CertificateRole}
