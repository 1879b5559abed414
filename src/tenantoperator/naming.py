"""Names of the Kubernetes objects and hosts derived from a tenant.

Every name the operator gives to an object, and every DNS name it expects a
server to answer to, is computed here from the tenant and, where relevant,
the pool or certificate role. None of these functions perform I/O.
"""

from __future__ import annotations

from .constants import (
    KES_PORT,
    LABEL_NAMESPACE,
    LABEL_POOL,
    LABEL_ROLE,
    LABEL_TENANT,
    VOLUME_NAME_PREFIX,
)
from .models.domain.certificate import CertificateRole
from .models.v1.tenant import Pool, Tenant

__all__ = [
    "args_secret_name",
    "certificate_common_name",
    "certificate_hosts",
    "certificate_labels",
    "console_name",
    "creds_secret_name",
    "csr_name",
    "default_creds_secret_name",
    "endpoint_template",
    "headless_service_fqdn",
    "headless_service_name",
    "kes_endpoint",
    "kes_service_name",
    "kes_statefulset_name",
    "pending_key_secret_name",
    "pool_labels",
    "scheme",
    "service_fqdn",
    "service_name",
    "statefulset_name",
    "tenant_labels",
    "tls_secret_name",
    "volume_mount_path",
    "volume_name",
    "volume_path",
]


def scheme(tenant: Tenant) -> str:
    """URL scheme the storage servers listen with."""
    return "https" if tenant.spec.tls.enabled else "http"


def tenant_labels(tenant: Tenant) -> dict[str, str]:
    """Labels identifying every object belonging to a tenant."""
    return {LABEL_TENANT: tenant.name}


def pool_labels(tenant: Tenant, pool: Pool) -> dict[str, str]:
    """Labels identifying the objects of one pool."""
    return {LABEL_TENANT: tenant.name, LABEL_POOL: pool.name}


def certificate_labels(
    tenant: Tenant, role: CertificateRole
) -> dict[str, str]:
    """Labels identifying the CSR and secrets of one certificate role.

    CSRs are cluster-scoped, so these also record the tenant namespace.
    """
    return {
        LABEL_TENANT: tenant.name,
        LABEL_NAMESPACE: tenant.namespace,
        LABEL_ROLE: role.value,
    }


def statefulset_name(tenant: Tenant, pool: Pool) -> str:
    """Name of the ``StatefulSet`` running one pool."""
    return f"{tenant.name}-{pool.name}"


def headless_service_name(tenant: Tenant) -> str:
    """Name of the headless ``Service`` giving each server a stable name."""
    return f"{tenant.name}-hl"


def service_name(tenant: Tenant) -> str:
    """Name of the client ``Service`` load-balancing across all servers."""
    return "minio"


def console_name(tenant: Tenant) -> str:
    """Name of the console ``Deployment`` and ``Service``."""
    return f"{tenant.name}-console"


def kes_statefulset_name(tenant: Tenant) -> str:
    """Name of the KES ``StatefulSet``."""
    return f"{tenant.name}-kes"


def kes_service_name(tenant: Tenant) -> str:
    """Name of the headless KES ``Service``."""
    return f"{tenant.name}-kes-hl-svc"


def args_secret_name(tenant: Tenant) -> str:
    """Name of the ``Secret`` carrying the server endpoint arguments."""
    return f"{tenant.name}-args"


def default_creds_secret_name(tenant: Tenant) -> str:
    """Name of the credentials ``Secret`` generated by the operator."""
    return f"{tenant.name}-creds-secret"


def creds_secret_name(tenant: Tenant) -> str:
    """Name of the credentials ``Secret`` the servers should use.

    An explicitly configured secret always takes precedence over the one the
    operator generates.
    """
    if tenant.spec.creds_secret:
        return tenant.spec.creds_secret.name
    return default_creds_secret_name(tenant)


def tls_secret_name(tenant: Tenant, role: CertificateRole) -> str:
    """Name of the ``Secret`` holding an operator-issued certificate."""
    match role:
        case CertificateRole.SERVER:
            return f"{tenant.name}-tls"
        case CertificateRole.CLIENT:
            return f"{tenant.name}-client-tls"
        case CertificateRole.KES:
            return f"{tenant.name}-kes-tls"


def pending_key_secret_name(tenant: Tenant, role: CertificateRole) -> str:
    """Name of the ``Secret`` holding a key while its CSR is pending."""
    return f"{tls_secret_name(tenant, role)}-key"


def csr_name(tenant: Tenant, role: CertificateRole) -> str:
    """Name of the cluster-scoped ``CertificateSigningRequest``.

    CSRs are not namespaced, so the namespace is part of the name.
    """
    match role:
        case CertificateRole.SERVER:
            return f"{tenant.name}-{tenant.namespace}-csr"
        case CertificateRole.CLIENT:
            return f"{tenant.name}-client-{tenant.namespace}-csr"
        case CertificateRole.KES:
            return f"{tenant.name}-kes-{tenant.namespace}-csr"


def headless_service_fqdn(tenant: Tenant, cluster_domain: str) -> str:
    """Fully-qualified name of the headless service."""
    hl = headless_service_name(tenant)
    return f"{hl}.{tenant.namespace}.svc.{cluster_domain}"


def service_fqdn(tenant: Tenant, cluster_domain: str) -> str:
    """Fully-qualified name of the client service."""
    return f"{service_name(tenant)}.{tenant.namespace}.svc.{cluster_domain}"


def kes_endpoint(tenant: Tenant, cluster_domain: str) -> str:
    """URL at which the storage servers reach KES."""
    service = kes_service_name(tenant)
    host = f"{service}.{tenant.namespace}.svc.{cluster_domain}"
    return f"https://{host}:{KES_PORT}"


def endpoint_template(tenant: Tenant, pool: Pool, cluster_domain: str) -> str:
    """Server endpoint argument for one pool.

    Uses the storage server's ellipsis notation to name every server in the
    pool and every volume on each server.
    """
    sts = statefulset_name(tenant, pool)
    last = pool.servers - 1
    hl = headless_service_fqdn(tenant, cluster_domain)
    hosts = f"{scheme(tenant)}://{sts}-{{0...{last}}}.{hl}"
    return hosts + volume_path(tenant, pool)


def volume_name(index: int) -> str:
    """Name of the volume claim template for the given volume index."""
    return f"{VOLUME_NAME_PREFIX}{index}"


def volume_mount_path(tenant: Tenant, pool: Pool, index: int) -> str:
    """Path at which a data volume is mounted.

    The path is suffixed with the volume index unless each server has
    exactly one volume.
    """
    if pool.volumes_per_server == 1:
        return tenant.spec.mount_path
    return f"{tenant.spec.mount_path}{index}"


def volume_path(tenant: Tenant, pool: Pool) -> str:
    """Data path argument covering all volumes of a server."""
    if pool.volumes_per_server == 1:
        return tenant.spec.mount_path
    last = pool.volumes_per_server - 1
    return f"{tenant.spec.mount_path}{{0...{last}}}"


def certificate_hosts(
    tenant: Tenant, role: CertificateRole, cluster_domain: str
) -> list[str]:
    """DNS names a certificate for the given role must cover.

    Parameters
    ----------
    tenant
        Tenant the certificate is for.
    role
        Certificate role.
    cluster_domain
        Cluster DNS domain.

    Returns
    -------
    list of str
        Host names, in a stable order.
    """
    namespace = tenant.namespace
    match role:
        case CertificateRole.SERVER:
            hl = headless_service_fqdn(tenant, cluster_domain)
            hosts = [
                f"{statefulset_name(tenant, pool)}-{i}.{hl}"
                for pool in tenant.spec.pools
                for i in range(pool.servers)
            ]
            service = service_name(tenant)
            hosts.extend(
                [
                    hl,
                    service_fqdn(tenant, cluster_domain),
                    f"{service}.{namespace}.svc",
                    f"{service}.{namespace}",
                ]
            )
            return hosts
        case CertificateRole.CLIENT:
            return [f"{tenant.name}-client.{namespace}.svc.{cluster_domain}"]
        case CertificateRole.KES:
            service = kes_service_name(tenant)
            kes_hl = f"{service}.{namespace}.svc.{cluster_domain}"
            replicas = tenant.spec.kes.replicas if tenant.spec.kes else 0
            hosts = [
                f"{kes_statefulset_name(tenant)}-{i}.{kes_hl}"
                for i in range(replicas)
            ]
            hosts.append(kes_hl)
            return hosts


def certificate_common_name(
    tenant: Tenant, role: CertificateRole, cluster_domain: str
) -> str:
    """Subject common name of the CSR for the given role.

    The kubelet-serving signer requires a ``system:node:`` prefix.
    """
    namespace = tenant.namespace
    match role:
        case CertificateRole.SERVER:
            hl = headless_service_fqdn(tenant, cluster_domain)
            return f"system:node:*.{hl}"
        case CertificateRole.CLIENT:
            return f"system:node:{tenant.name}-client.{namespace}"
        case CertificateRole.KES:
            service = kes_service_name(tenant)
            return f"system:node:*.{service}.{namespace}.svc.{cluster_domain}"
