"""Construction of Kubernetes objects for the KES key-management service."""

from __future__ import annotations

from kubernetes_asyncio.client import (
    V1Container,
    V1ContainerPort,
    V1KeyToPath,
    V1LabelSelector,
    V1ObjectMeta,
    V1PodSpec,
    V1PodTemplateSpec,
    V1ProjectedVolumeSource,
    V1SecretProjection,
    V1Service,
    V1ServicePort,
    V1ServiceSpec,
    V1StatefulSet,
    V1StatefulSetSpec,
    V1StatefulSetUpdateStrategy,
    V1Volume,
    V1VolumeMount,
    V1VolumeProjection,
)

from ... import naming
from ...constants import KES_CONFIG_PATH, KES_PORT, LABEL_KES
from ...models.v1.tenant import Tenant

__all__ = ["KESBuilder"]


class KESBuilder:
    """Construct the KES ``StatefulSet`` and its headless ``Service``."""

    def build_statefulset(
        self, tenant: Tenant, tls_projection: V1VolumeProjection
    ) -> V1StatefulSet:
        """Construct the KES ``StatefulSet``.

        Parameters
        ----------
        tenant
            Tenant with KES enabled.
        tls_projection
            Projection of the certificate KES serves.

        Returns
        -------
        kubernetes_asyncio.client.V1StatefulSet
            KES servers.

        Raises
        ------
        ValueError
            Raised if KES is not enabled for the tenant.
        """
        kes = tenant.spec.kes
        if not kes:
            raise ValueError(f"KES not enabled for {tenant.key}")
        name = naming.kes_statefulset_name(tenant)
        labels = self._pod_labels(tenant)
        config = V1VolumeProjection(
            secret=V1SecretProjection(
                name=kes.config_secret.name,
                items=[
                    V1KeyToPath(
                        key="server-config.yaml", path="server-config.yaml"
                    )
                ],
            )
        )
        volume_name = f"{name}-config"
        container = V1Container(
            name="kes",
            image=kes.image,
            image_pull_policy=tenant.spec.image_pull_policy.value,
            args=[
                "server",
                f"--config={KES_CONFIG_PATH}/server-config.yaml",
                "--auth=off",
            ],
            ports=[V1ContainerPort(container_port=KES_PORT, name="https")],
            volume_mounts=[
                V1VolumeMount(name=volume_name, mount_path=KES_CONFIG_PATH)
            ],
        )
        return V1StatefulSet(
            api_version="apps/v1",
            kind="StatefulSet",
            metadata=V1ObjectMeta(
                name=name, labels=naming.tenant_labels(tenant) | labels
            ),
            spec=V1StatefulSetSpec(
                pod_management_policy=tenant.spec.pod_management_policy.value,
                replicas=kes.replicas,
                selector=V1LabelSelector(match_labels=labels.copy()),
                service_name=naming.kes_service_name(tenant),
                template=V1PodTemplateSpec(
                    metadata=V1ObjectMeta(labels=labels.copy()),
                    spec=V1PodSpec(
                        containers=[container],
                        restart_policy="Always",
                        service_account_name=tenant.spec.service_account_name,
                        volumes=[
                            V1Volume(
                                name=volume_name,
                                projected=V1ProjectedVolumeSource(
                                    sources=[config, tls_projection]
                                ),
                            )
                        ],
                    ),
                ),
                update_strategy=V1StatefulSetUpdateStrategy(
                    type="RollingUpdate"
                ),
            ),
        )

    def build_service(self, tenant: Tenant) -> V1Service:
        """Construct the headless ``Service`` for KES.

        Parameters
        ----------
        tenant
            Tenant with KES enabled.

        Returns
        -------
        kubernetes_asyncio.client.V1Service
            Headless service giving each KES server a stable name.
        """
        labels = self._pod_labels(tenant)
        return V1Service(
            api_version="v1",
            kind="Service",
            metadata=V1ObjectMeta(
                name=naming.kes_service_name(tenant),
                labels=naming.tenant_labels(tenant) | labels,
            ),
            spec=V1ServiceSpec(
                cluster_ip="None",
                ports=[
                    V1ServicePort(
                        name="https", port=KES_PORT, target_port=KES_PORT
                    )
                ],
                publish_not_ready_addresses=True,
                selector=labels,
            ),
        )

    def _pod_labels(self, tenant: Tenant) -> dict[str, str]:
        """Labels selecting the KES pods, disjoint from the server labels."""
        return {LABEL_KES: naming.kes_statefulset_name(tenant)}
