"""Models for the Kubernetes objects making up a tenant."""

from __future__ import annotations

from dataclasses import dataclass

from kubernetes_asyncio.client import (
    V1Deployment,
    V1Secret,
    V1Service,
    V1StatefulSet,
)

from .certificate import CertificateRole

__all__ = ["DesiredObject", "TenantObjects"]


@dataclass
class DesiredObject[T]:
    """A desired object plus the certificates it cannot exist without."""

    body: T
    """Kubernetes object to create or update."""

    requires: frozenset[CertificateRole] = frozenset()
    """Certificate roles whose secrets must exist before applying."""


@dataclass
class TenantObjects:
    """All of the Kubernetes objects generated for a tenant.

    This is recomputed from the tenant on every reconcile and then compared
    with the objects in the cluster.
    """

    statefulsets: list[DesiredObject[V1StatefulSet]]
    """One ``StatefulSet`` per pool, in pool declaration order."""

    headless_service: V1Service
    """Headless service giving each server a stable DNS name."""

    service: V1Service
    """Client service load-balancing across all servers."""

    args_secret: V1Secret
    """Secret holding the server endpoint arguments."""

    console_deployment: V1Deployment | None = None
    """Management console, if enabled."""

    console_service: V1Service | None = None
    """Service for the management console, if enabled."""

    kes_statefulset: DesiredObject[V1StatefulSet] | None = None
    """KES servers, if enabled."""

    kes_service: V1Service | None = None
    """Headless service for KES, if enabled."""

    @property
    def services(self) -> list[V1Service]:
        """All services, in the order they should be applied."""
        services = [self.headless_service, self.service]
        if self.console_service:
            services.append(self.console_service)
        if self.kes_service:
            services.append(self.kes_service)
        return services
