"""Tests for the names of generated objects and hosts."""

from __future__ import annotations

from tenantoperator import naming
from tenantoperator.models.domain.certificate import CertificateRole

from .support.data import read_tenant

DOMAIN = "cluster.local"


def test_object_names() -> None:
    tenant = read_tenant("auto-tls")
    pool = tenant.spec.pools[0]

    assert naming.statefulset_name(tenant, pool) == "storage-pool-0"
    assert naming.headless_service_name(tenant) == "storage-hl"
    assert naming.service_name(tenant) == "minio"
    assert naming.console_name(tenant) == "storage-console"
    assert naming.args_secret_name(tenant) == "storage-args"
    assert naming.creds_secret_name(tenant) == "storage-creds-secret"
    assert naming.kes_statefulset_name(tenant) == "storage-kes"
    assert naming.kes_service_name(tenant) == "storage-kes-hl-svc"

    # An explicit credentials secret takes precedence.
    tenant = read_tenant("plain")
    assert naming.creds_secret_name(tenant) == "plain-creds"
    assert naming.default_creds_secret_name(tenant) == "plain-creds-secret"


def test_certificate_names() -> None:
    tenant = read_tenant("auto-tls")
    server = CertificateRole.SERVER
    client = CertificateRole.CLIENT
    kes = CertificateRole.KES

    assert naming.tls_secret_name(tenant, server) == "storage-tls"
    assert naming.tls_secret_name(tenant, client) == "storage-client-tls"
    assert naming.tls_secret_name(tenant, kes) == "storage-kes-tls"
    assert naming.pending_key_secret_name(tenant, server) == "storage-tls-key"
    assert naming.csr_name(tenant, server) == "storage-tenants-csr"
    assert naming.csr_name(tenant, client) == "storage-client-tenants-csr"
    assert naming.csr_name(tenant, kes) == "storage-kes-tenants-csr"


def test_endpoint_template() -> None:
    tenant = read_tenant("auto-tls")
    pool = tenant.spec.pools[0]
    assert naming.endpoint_template(tenant, pool, DOMAIN) == (
        "https://storage-pool-0-{0...3}.storage-hl.tenants.svc.cluster.local"
        "/export{0...7}"
    )

    tenant = read_tenant("plain")
    pool = tenant.spec.pools[0]
    assert naming.endpoint_template(tenant, pool, DOMAIN) == (
        "http://plain-pool-0-{0...1}.plain-hl.tenants.svc.cluster.local"
        "/export{0...1}"
    )


def test_volume_paths() -> None:
    tenant = read_tenant("plain")
    pool = tenant.spec.pools[0]
    assert naming.volume_name(0) == "data0"
    assert naming.volume_mount_path(tenant, pool, 1) == "/export1"
    assert naming.volume_path(tenant, pool) == "/export{0...1}"

    # A single volume per server is mounted without an index.
    tenant = read_tenant("standalone")
    pool = tenant.spec.pools[0]
    assert naming.volume_mount_path(tenant, pool, 0) == "/export"
    assert naming.volume_path(tenant, pool) == "/export"


def test_certificate_hosts() -> None:
    tenant = read_tenant("auto-tls")
    hl = "storage-hl.tenants.svc.cluster.local"
    hosts = naming.certificate_hosts(tenant, CertificateRole.SERVER, DOMAIN)
    assert hosts == [
        f"storage-pool-0-0.{hl}",
        f"storage-pool-0-1.{hl}",
        f"storage-pool-0-2.{hl}",
        f"storage-pool-0-3.{hl}",
        hl,
        "minio.tenants.svc.cluster.local",
        "minio.tenants.svc",
        "minio.tenants",
    ]
    common_name = naming.certificate_common_name(
        tenant, CertificateRole.SERVER, DOMAIN
    )
    assert common_name == f"system:node:*.{hl}"

    tenant = read_tenant("kes")
    kes_hl = "secure-kes-hl-svc.tenants.svc.cluster.local"
    hosts = naming.certificate_hosts(tenant, CertificateRole.KES, DOMAIN)
    assert hosts == [
        f"secure-kes-0.{kes_hl}",
        f"secure-kes-1.{kes_hl}",
        kes_hl,
    ]
    hosts = naming.certificate_hosts(tenant, CertificateRole.CLIENT, DOMAIN)
    assert hosts == ["secure-client.tenants.svc.cluster.local"]
    assert naming.kes_endpoint(tenant, DOMAIN) == f"https://{kes_hl}:7373"
