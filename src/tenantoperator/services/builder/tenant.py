"""Construction of Kubernetes objects for storage tenants."""

from __future__ import annotations

import copy
import secrets
from base64 import b64encode

from kubernetes_asyncio.client import (
    V1Container,
    V1ContainerPort,
    V1Deployment,
    V1DeploymentSpec,
    V1EnvFromSource,
    V1EnvVar,
    V1EnvVarSource,
    V1HTTPGetAction,
    V1LabelSelector,
    V1LocalObjectReference,
    V1ObjectMeta,
    V1PersistentVolumeClaim,
    V1PersistentVolumeClaimSpec,
    V1PodSpec,
    V1PodTemplateSpec,
    V1ProjectedVolumeSource,
    V1Probe,
    V1Secret,
    V1SecretEnvSource,
    V1SecretKeySelector,
    V1Service,
    V1ServicePort,
    V1ServiceSpec,
    V1StatefulSet,
    V1StatefulSetSpec,
    V1StatefulSetUpdateStrategy,
    V1Volume,
    V1VolumeMount,
    V1VolumeProjection,
    V1VolumeResourceRequirements,
)

from ... import naming
from ...constants import (
    CERTS_PATH,
    CONSOLE_HTTPS_PORT,
    CONSOLE_PORT,
    CREDENTIALS_ACCESS_KEY,
    CREDENTIALS_SECRET_KEY,
    LABEL_CONSOLE,
    MINIO_ARGS_KEY,
    MINIO_PORT,
    MINIO_UPDATE_MINISIGN_PUBKEY,
    VALIDATE_MOUNTS_INTERVAL,
)
from ...models.domain.certificate import CertificateRole
from ...models.domain.tenant import DesiredObject, TenantObjects
from ...models.v1.tenant import Pool, Tenant, TLSMode
from .kes import KESBuilder
from .tls import TLSProjectionBuilder, issued_roles

__all__ = ["TenantBuilder"]


class TenantBuilder:
    """Construct Kubernetes objects for a storage tenant.

    All methods are deterministic functions of the tenant, apart from
    `build_default_credentials`, which generates random keys.

    Parameters
    ----------
    cluster_domain
        DNS domain of the cluster, used to construct server host names.
    init_container_image
        Image for the init containers that wait for mounts and DNS.
    """

    def __init__(
        self, *, cluster_domain: str, init_container_image: str
    ) -> None:
        self._domain = cluster_domain
        self._init_image = init_container_image
        self._tls = TLSProjectionBuilder()
        self._kes = KESBuilder()

    def build(self, tenant: Tenant) -> TenantObjects:
        """Construct all of the desired objects for a tenant.

        Parameters
        ----------
        tenant
            Tenant for which to construct objects.

        Returns
        -------
        TenantObjects
            Kubernetes objects making up the tenant.
        """
        projection = self.build_tls_projection(tenant)
        server_roles = frozenset(issued_roles(tenant))
        statefulsets = [
            DesiredObject(
                self.build_statefulset(tenant, pool, projection),
                requires=server_roles,
            )
            for pool in tenant.spec.pools
        ]
        objects = TenantObjects(
            statefulsets=statefulsets,
            headless_service=self._build_headless_service(tenant),
            service=self._build_service(tenant),
            args_secret=self._build_args_secret(tenant),
        )
        if tenant.spec.console:
            objects.console_deployment = self.build_console_deployment(tenant)
            objects.console_service = self._build_console_service(tenant)
        if tenant.spec.kes:
            requires: frozenset[CertificateRole] = frozenset()
            if CertificateRole.KES in server_roles:
                requires = frozenset({CertificateRole.KES})
            kes = self._kes.build_statefulset(
                tenant, self._tls.build_kes(tenant)
            )
            objects.kes_statefulset = DesiredObject(kes, requires=requires)
            objects.kes_service = self._kes.build_service(tenant)
        return objects

    def build_container_args(self, tenant: Tenant) -> list[str]:
        """Construct the endpoint arguments for the storage servers.

        A tenant with a single server with a single volume runs the server
        in standalone mode with a bare data path. Otherwise, each pool
        contributes one endpoint template, in declaration order.

        Parameters
        ----------
        tenant
            Tenant for which to construct arguments.

        Returns
        -------
        list of str
            Server arguments.
        """
        pools = tenant.spec.pools
        if len(pools) == 1 and pools[0].total_volumes == 1:
            return [tenant.spec.mount_path]
        domain = self._domain
        return [naming.endpoint_template(tenant, p, domain) for p in pools]

    def build_tls_projection(self, tenant: Tenant) -> list[V1VolumeProjection]:
        """Construct the projected TLS sources for the storage servers.

        Parameters
        ----------
        tenant
            Tenant for which to construct the projection.

        Returns
        -------
        list of kubernetes_asyncio.client.V1VolumeProjection
            Sources for the certificate volume, empty if TLS is disabled.
        """
        return self._tls.build(tenant)

    def build_statefulset(
        self,
        tenant: Tenant,
        pool: Pool,
        tls_projection: list[V1VolumeProjection],
    ) -> V1StatefulSet:
        """Construct the ``StatefulSet`` for one pool.

        Parameters
        ----------
        tenant
            Tenant the pool belongs to.
        pool
            Pool for which to construct the ``StatefulSet``.
        tls_projection
            Projected TLS sources, from `build_tls_projection`.

        Returns
        -------
        kubernetes_asyncio.client.V1StatefulSet
            ``StatefulSet`` running the servers of the pool.
        """
        labels = naming.pool_labels(tenant, pool)
        name = naming.statefulset_name(tenant, pool)

        # Data volumes come from the claim templates. The TLS material, if
        # any, is a single projected volume.
        mounts = [
            V1VolumeMount(
                name=naming.volume_name(i),
                mount_path=naming.volume_mount_path(tenant, pool, i),
            )
            for i in range(pool.volumes_per_server)
        ]
        volumes = []
        if tls_projection:
            tls_volume = self._tls_volume_name(tenant)
            mount = V1VolumeMount(name=tls_volume, mount_path=CERTS_PATH)
            mounts.append(mount)
            volumes.append(
                V1Volume(
                    name=tls_volume,
                    projected=V1ProjectedVolumeSource(sources=tls_projection),
                )
            )

        # Specification for the storage server.
        spec = tenant.spec
        container = V1Container(
            name="minio",
            image=spec.image,
            image_pull_policy=spec.image_pull_policy.value,
            args=["server", "--certs-dir", CERTS_PATH],
            env=self._build_env(tenant),
            ports=[
                V1ContainerPort(
                    container_port=MINIO_PORT, name=naming.scheme(tenant)
                )
            ],
            resources=(
                pool.resources.to_kubernetes() if pool.resources else None
            ),
            volume_mounts=mounts,
            liveness_probe=self._build_liveness_probe(tenant),
        )

        # Build the pod specification.
        image_pull_secrets = None
        if spec.image_pull_secret:
            ref = V1LocalObjectReference(name=spec.image_pull_secret.name)
            image_pull_secrets = [ref]
        pod_spec = V1PodSpec(
            affinity=copy.deepcopy(pool.affinity) if pool.affinity else None,
            containers=[container],
            image_pull_secrets=image_pull_secrets,
            init_containers=self._build_init_containers(tenant, mounts),
            node_selector=dict(pool.node_selector) or None,
            priority_class_name=spec.priority_class_name,
            restart_policy="Always",
            service_account_name=spec.service_account_name,
            tolerations=[t.to_kubernetes() for t in pool.tolerations] or None,
            volumes=volumes or None,
        )

        # Build the claim templates for the data volumes.
        claims = [
            V1PersistentVolumeClaim(
                metadata=V1ObjectMeta(name=naming.volume_name(i)),
                spec=V1PersistentVolumeClaimSpec(
                    access_modes=["ReadWriteOnce"],
                    resources=V1VolumeResourceRequirements(
                        requests={"storage": pool.capacity_per_volume}
                    ),
                    storage_class_name=pool.storage_class_name,
                ),
            )
            for i in range(pool.volumes_per_server)
        ]
        return V1StatefulSet(
            api_version="apps/v1",
            kind="StatefulSet",
            metadata=self._build_metadata(name, labels),
            spec=V1StatefulSetSpec(
                pod_management_policy=spec.pod_management_policy.value,
                replicas=pool.servers,
                selector=V1LabelSelector(match_labels=labels.copy()),
                service_name=naming.headless_service_name(tenant),
                template=V1PodTemplateSpec(
                    metadata=V1ObjectMeta(labels=labels.copy()),
                    spec=pod_spec,
                ),
                update_strategy=V1StatefulSetUpdateStrategy(
                    type="RollingUpdate"
                ),
                volume_claim_templates=claims,
            ),
        )

    def build_console_deployment(self, tenant: Tenant) -> V1Deployment:
        """Construct the ``Deployment`` for the management console.

        Parameters
        ----------
        tenant
            Tenant whose console should be constructed. Must have the console
            enabled.

        Returns
        -------
        kubernetes_asyncio.client.V1Deployment
            Console deployment.

        Raises
        ------
        ValueError
            Raised if the tenant does not enable the console.
        """
        console = tenant.spec.console
        if not console:
            raise ValueError(f"Console not enabled for {tenant.key}")
        labels = self._console_labels(tenant)
        metadata = self._build_metadata(
            naming.console_name(tenant), naming.tenant_labels(tenant) | labels
        )
        host = naming.service_fqdn(tenant, self._domain)
        server = f"{naming.scheme(tenant)}://{host}:{MINIO_PORT}"
        env = [V1EnvVar(name="MCS_MINIO_SERVER", value=server)]
        if tenant.spec.tls.enabled:
            name = "MCS_MINIO_SERVER_TLS_SKIP_VERIFICATION"
            env.append(V1EnvVar(name=name, value="on"))
        secret_ref = V1SecretEnvSource(name=console.console_secret.name)
        container = V1Container(
            name="console",
            image=console.image,
            image_pull_policy=tenant.spec.image_pull_policy.value,
            args=["server"],
            env=env,
            env_from=[V1EnvFromSource(secret_ref=secret_ref)],
            ports=[
                V1ContainerPort(container_port=CONSOLE_PORT, name="http"),
                V1ContainerPort(
                    container_port=CONSOLE_HTTPS_PORT, name="https"
                ),
            ],
            resources=(
                console.resources.to_kubernetes()
                if console.resources
                else None
            ),
        )
        return V1Deployment(
            api_version="apps/v1",
            kind="Deployment",
            metadata=metadata,
            spec=V1DeploymentSpec(
                replicas=console.replicas,
                selector=V1LabelSelector(match_labels=labels.copy()),
                template=V1PodTemplateSpec(
                    metadata=V1ObjectMeta(labels=labels.copy()),
                    spec=V1PodSpec(
                        containers=[container],
                        restart_policy="Always",
                        service_account_name=tenant.spec.service_account_name,
                    ),
                ),
            ),
        )

    def build_default_credentials(self, tenant: Tenant) -> V1Secret:
        """Construct the credentials secret used if none is configured.

        Parameters
        ----------
        tenant
            Tenant that has no explicit credentials secret.

        Returns
        -------
        kubernetes_asyncio.client.V1Secret
            Secret with a randomly generated access key and secret key.
        """
        access_key = secrets.token_hex(10)
        secret_key = secrets.token_urlsafe(30)
        return V1Secret(
            api_version="v1",
            kind="Secret",
            metadata=self._build_metadata(
                naming.default_creds_secret_name(tenant),
                naming.tenant_labels(tenant),
            ),
            data={
                CREDENTIALS_ACCESS_KEY: _encode(access_key),
                CREDENTIALS_SECRET_KEY: _encode(secret_key),
            },
            type="Opaque",
        )

    def _build_metadata(
        self, name: str, labels: dict[str, str]
    ) -> V1ObjectMeta:
        """Construct the metadata for an object.

        Owner references are added when the object is created, not here.
        """
        return V1ObjectMeta(name=name, labels=labels.copy())

    def _build_args_secret(self, tenant: Tenant) -> V1Secret:
        args = " ".join(self.build_container_args(tenant))
        return V1Secret(
            api_version="v1",
            kind="Secret",
            metadata=self._build_metadata(
                naming.args_secret_name(tenant), naming.tenant_labels(tenant)
            ),
            data={MINIO_ARGS_KEY: _encode(args)},
            type="Opaque",
        )

    def _build_env(self, tenant: Tenant) -> list[V1EnvVar]:
        """Construct the environment of the storage servers.

        The order is fixed: user settings first, then the variables the
        operator controls.
        """
        env = [V1EnvVar(name=e.name, value=e.value) for e in tenant.spec.env]
        env.extend(
            [
                V1EnvVar(name="MINIO_UPDATE", value="on"),
                V1EnvVar(
                    name="MINIO_UPDATE_MINISIGN_PUBKEY",
                    value=MINIO_UPDATE_MINISIGN_PUBKEY,
                ),
                self._secret_env(
                    "MINIO_ARGS",
                    naming.args_secret_name(tenant),
                    MINIO_ARGS_KEY,
                ),
            ]
        )
        creds = naming.creds_secret_name(tenant)
        env.append(
            self._secret_env("MINIO_ACCESS_KEY", creds, CREDENTIALS_ACCESS_KEY)
        )
        env.append(
            self._secret_env("MINIO_SECRET_KEY", creds, CREDENTIALS_SECRET_KEY)
        )
        if tenant.spec.kes:
            endpoint = naming.kes_endpoint(tenant, self._domain)
            env.extend(
                [
                    V1EnvVar(name="MINIO_KMS_KES_ENDPOINT", value=endpoint),
                    V1EnvVar(
                        name="MINIO_KMS_KES_CERT_FILE",
                        value=f"{CERTS_PATH}/client.crt",
                    ),
                    V1EnvVar(
                        name="MINIO_KMS_KES_KEY_FILE",
                        value=f"{CERTS_PATH}/client.key",
                    ),
                    V1EnvVar(
                        name="MINIO_KMS_KES_CA_PATH",
                        value=f"{CERTS_PATH}/CAs/kes.crt",
                    ),
                    V1EnvVar(
                        name="MINIO_KMS_KES_KEY_NAME",
                        value=tenant.spec.kes.key_name,
                    ),
                ]
            )
        return env

    def _build_init_containers(
        self, tenant: Tenant, mounts: list[V1VolumeMount]
    ) -> list[V1Container]:
        """Construct the containers that wait for mounts and DNS.

        The server refuses to start if its volumes, certificates, or peers
        are not available, so wait for all of them first. None of these
        loops give up.
        """
        interval = int(VALIDATE_MOUNTS_INTERVAL.total_seconds())
        script = "".join(
            f"until /bin/stat {m.mount_path}; do sleep {interval}; done;"
            for m in mounts
        )
        if tenant.spec.tls.enabled:
            script += "echo Wait till certs can be read;"
            for path in ("private.key", "public.crt", "CAs/public.crt"):
                script += (
                    f"until /bin/cat {CERTS_PATH}/{path} > /dev/null;"
                    f" do sleep {interval}; done;"
                )
        host = naming.headless_service_fqdn(tenant, self._domain)
        dns_script = (
            f"echo Wait for service; until nslookup {host} ;"
            f" do echo waiting for {host}; sleep {interval}; done; "
        )
        return [
            V1Container(
                name="validate-mounts",
                image=self._init_image,
                command=["/bin/sh", "-c", script],
                volume_mounts=copy.deepcopy(mounts),
            ),
            V1Container(
                name="wait-for-dns",
                image=self._init_image,
                command=["/bin/sh", "-c", dns_script],
            ),
        ]

    def _build_liveness_probe(self, tenant: Tenant) -> V1Probe | None:
        liveness = tenant.spec.liveness
        if not liveness:
            return None
        return V1Probe(
            http_get=V1HTTPGetAction(
                path="/minio/health/live",
                port=MINIO_PORT,
                scheme=naming.scheme(tenant).upper(),
            ),
            initial_delay_seconds=liveness.initial_delay_seconds,
            period_seconds=liveness.period_seconds,
            timeout_seconds=liveness.timeout_seconds,
        )

    def _build_headless_service(self, tenant: Tenant) -> V1Service:
        labels = naming.tenant_labels(tenant)
        return V1Service(
            api_version="v1",
            kind="Service",
            metadata=self._build_metadata(
                naming.headless_service_name(tenant), labels
            ),
            spec=V1ServiceSpec(
                cluster_ip="None",
                ports=[
                    V1ServicePort(
                        name=naming.scheme(tenant),
                        port=MINIO_PORT,
                        target_port=MINIO_PORT,
                    )
                ],
                publish_not_ready_addresses=True,
                selector=labels.copy(),
            ),
        )

    def _build_service(self, tenant: Tenant) -> V1Service:
        labels = naming.tenant_labels(tenant)
        port = 443 if tenant.spec.tls.enabled else 80
        return V1Service(
            api_version="v1",
            kind="Service",
            metadata=self._build_metadata(naming.service_name(tenant), labels),
            spec=V1ServiceSpec(
                ports=[
                    V1ServicePort(
                        name=naming.scheme(tenant),
                        port=port,
                        target_port=MINIO_PORT,
                    )
                ],
                selector=labels.copy(),
            ),
        )

    def _build_console_service(self, tenant: Tenant) -> V1Service:
        labels = self._console_labels(tenant)
        return V1Service(
            api_version="v1",
            kind="Service",
            metadata=self._build_metadata(
                naming.console_name(tenant),
                naming.tenant_labels(tenant) | labels,
            ),
            spec=V1ServiceSpec(
                ports=[
                    V1ServicePort(
                        name="http",
                        port=CONSOLE_PORT,
                        target_port=CONSOLE_PORT,
                    ),
                    V1ServicePort(
                        name="https",
                        port=CONSOLE_HTTPS_PORT,
                        target_port=CONSOLE_HTTPS_PORT,
                    ),
                ],
                selector=labels.copy(),
            ),
        )

    def _console_labels(self, tenant: Tenant) -> dict[str, str]:
        """Labels selecting the console pods.

        These deliberately omit the tenant label, which selects servers.
        """
        return {LABEL_CONSOLE: naming.console_name(tenant)}

    def _secret_env(self, name: str, secret: str, key: str) -> V1EnvVar:
        selector = V1SecretKeySelector(name=secret, key=key)
        return V1EnvVar(
            name=name, value_from=V1EnvVarSource(secret_key_ref=selector)
        )

    def _tls_volume_name(self, tenant: Tenant) -> str:
        """Name of the projected TLS volume, after the server secret."""
        tls = tenant.spec.tls
        if tls.mode == TLSMode.EXTERNAL and tls.external_cert_secret:
            return tls.external_cert_secret.name
        return naming.tls_secret_name(tenant, CertificateRole.SERVER)


def _encode(value: str) -> str:
    """Encode a value for the ``data`` of a ``Secret``."""
    return b64encode(value.encode()).decode()
