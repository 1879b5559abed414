"""Construction of the TLS material projected into tenant pods."""

from __future__ import annotations

from kubernetes_asyncio.client import (
    V1KeyToPath,
    V1SecretProjection,
    V1VolumeProjection,
)

from ... import naming
from ...constants import TLS_CERT_KEY, TLS_PRIVATE_KEY_KEY
from ...models.domain.certificate import CertificateRole
from ...models.v1.tenant import (
    CertificateSecretType,
    ExternalCertificateSecret,
    Tenant,
    TLSMode,
)

__all__ = ["TLSProjectionBuilder", "issued_roles"]


def issued_roles(tenant: Tenant) -> list[CertificateRole]:
    """Certificate roles the operator must issue for a tenant.

    Parameters
    ----------
    tenant
        Tenant being reconciled.

    Returns
    -------
    list of CertificateRole
        Roles to issue, empty unless TLS is auto-issued. The client and KES
        roles are only needed when KES is enabled.
    """
    if tenant.spec.tls.mode != TLSMode.AUTO_ISSUED:
        return []
    roles = [CertificateRole.SERVER]
    if tenant.spec.kes:
        roles.extend([CertificateRole.CLIENT, CertificateRole.KES])
    return roles


class TLSProjectionBuilder:
    """Map certificate secrets onto the file layout the servers expect.

    Whatever the source of a certificate (issued by the operator, a plain
    Kubernetes TLS secret, or a secret written by cert-manager), it is
    projected to the same paths under the certificate directory:
    ``public.crt``, ``private.key``, and ``CAs/public.crt`` for the server,
    ``client.crt`` and ``client.key`` for the KES client, and
    ``CAs/kes.crt`` for the KES CA.
    """

    def build(self, tenant: Tenant) -> list[V1VolumeProjection]:
        """Construct the projected volume sources for the storage servers.

        Parameters
        ----------
        tenant
            Tenant being reconciled.

        Returns
        -------
        list of kubernetes_asyncio.client.V1VolumeProjection
            Volume projections, or an empty list if TLS is disabled.
        """
        tls = tenant.spec.tls
        match tls.mode:
            case TLSMode.NONE:
                return []
            case TLSMode.AUTO_ISSUED:
                return self._build_issued(tenant)
            case TLSMode.EXTERNAL:
                return self._build_external(tenant)

    def build_kes(self, tenant: Tenant) -> V1VolumeProjection:
        """Construct the projection of the certificate KES serves.

        Parameters
        ----------
        tenant
            Tenant being reconciled, which must have KES enabled.

        Returns
        -------
        kubernetes_asyncio.client.V1VolumeProjection
            Projection mapping the KES certificate to ``server.crt`` and
            ``server.key``.
        """
        kes = tenant.spec.kes
        external = kes.external_cert_secret if kes else None
        if tenant.spec.tls.mode == TLSMode.EXTERNAL and external:
            cert, key = self._external_keys(external)
            name = external.name
        else:
            cert, key = TLS_CERT_KEY, TLS_PRIVATE_KEY_KEY
            name = naming.tls_secret_name(tenant, CertificateRole.KES)
        return self._projection(
            name, [(cert, "server.crt"), (key, "server.key")]
        )

    def _build_issued(self, tenant: Tenant) -> list[V1VolumeProjection]:
        cert, key = TLS_CERT_KEY, TLS_PRIVATE_KEY_KEY
        server = naming.tls_secret_name(tenant, CertificateRole.SERVER)
        sources = [
            self._projection(
                server,
                [
                    (cert, "public.crt"),
                    (key, "private.key"),
                    (cert, "CAs/public.crt"),
                ],
            )
        ]
        if tenant.spec.kes:
            client = naming.tls_secret_name(tenant, CertificateRole.CLIENT)
            kes = naming.tls_secret_name(tenant, CertificateRole.KES)
            sources.append(
                self._projection(
                    client, [(cert, "client.crt"), (key, "client.key")]
                )
            )
            sources.append(self._projection(kes, [(cert, "CAs/kes.crt")]))
        return sources

    def _build_external(self, tenant: Tenant) -> list[V1VolumeProjection]:
        tls = tenant.spec.tls
        if not tls.external_cert_secret:
            raise ValueError("External TLS without externalCertSecret")
        server = tls.external_cert_secret
        cert, key = self._external_keys(server)
        if server.type == CertificateSecretType.CERT_MANAGER:
            ca = "ca.crt"
        else:
            ca = cert
        sources = [
            self._projection(
                server.name,
                [
                    (cert, "public.crt"),
                    (key, "private.key"),
                    (ca, "CAs/public.crt"),
                ],
            )
        ]
        kes = tenant.spec.kes
        client = tls.external_client_cert_secret
        if kes and client and kes.external_cert_secret:
            cert, key = self._external_keys(client)
            sources.append(
                self._projection(
                    client.name, [(cert, "client.crt"), (key, "client.key")]
                )
            )
            kes_cert, _ = self._external_keys(kes.external_cert_secret)
            sources.append(
                self._projection(
                    kes.external_cert_secret.name, [(kes_cert, "CAs/kes.crt")]
                )
            )
        return sources

    def _external_keys(
        self, secret: ExternalCertificateSecret
    ) -> tuple[str, str]:
        """Return the certificate and key names used by an external secret."""
        if secret.type == CertificateSecretType.OPAQUE:
            return TLS_CERT_KEY, TLS_PRIVATE_KEY_KEY
        return "tls.crt", "tls.key"

    def _projection(
        self, secret: str, items: list[tuple[str, str]]
    ) -> V1VolumeProjection:
        return V1VolumeProjection(
            secret=V1SecretProjection(
                name=secret,
                items=[V1KeyToPath(key=k, path=p) for k, p in items],
            )
        )
