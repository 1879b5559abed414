"""Construction of keys, certificate requests, and certificate secrets."""

from __future__ import annotations

import hashlib
from base64 import b64decode, b64encode

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID
from kubernetes_asyncio.client import (
    V1CertificateSigningRequest,
    V1CertificateSigningRequestSpec,
    V1ObjectMeta,
    V1Secret,
)

from ... import naming
from ...constants import (
    CSR_HOSTS_ANNOTATION,
    PENDING_KEY_SECRET_KEY,
    TLS_CERT_KEY,
    TLS_PRIVATE_KEY_KEY,
)
from ...models.domain.certificate import CertificateRole, IssuedCertificate
from ...models.v1.tenant import Tenant

__all__ = ["CertificateBuilder"]

USAGES = ["digital signature", "key encipherment", "server auth"]
"""Key usages requested for every certificate.

The KES client certificate requests the same usages, since the default
``kubernetes.io/kubelet-serving`` signer rejects ``client auth``.
"""


class CertificateBuilder:
    """Construct the objects used to issue certificates for a tenant.

    Keys are ECDSA keys on the P-256 curve. Requests are signed with
    SHA-512 and name every host the certificate must cover.

    Parameters
    ----------
    cluster_domain
        DNS domain of the cluster.
    signer_name
        Signer to request in each ``CertificateSigningRequest``.
    organization
        Organization in the subject of each request.
    """

    def __init__(
        self, *, cluster_domain: str, signer_name: str, organization: str
    ) -> None:
        self._domain = cluster_domain
        self._signer_name = signer_name
        self._organization = organization

    def build_hosts(self, tenant: Tenant, role: CertificateRole) -> list[str]:
        """Return the hosts a certificate for this role must cover."""
        return naming.certificate_hosts(tenant, role, self._domain)

    def build_hosts_hash(self, hosts: list[str]) -> str:
        """Digest of a host list, used to detect outdated requests."""
        return hashlib.sha256("\n".join(hosts).encode()).hexdigest()

    def generate_key(self) -> str:
        """Generate a new private key.

        Returns
        -------
        str
            PEM-encoded PKCS #8 private key.
        """
        key = ec.generate_private_key(ec.SECP256R1())
        pem = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        return pem.decode()

    def build_csr(
        self, tenant: Tenant, role: CertificateRole, key: str
    ) -> V1CertificateSigningRequest:
        """Construct the certificate signing request for one role.

        Parameters
        ----------
        tenant
            Tenant the certificate is for.
        role
            Certificate role.
        key
            PEM-encoded private key from `generate_key`.

        Returns
        -------
        kubernetes_asyncio.client.V1CertificateSigningRequest
            Request to submit. It carries no owner reference since requests
            are not namespaced.

        Raises
        ------
        ValueError
            Raised if the key is not a valid PEM elliptic curve key.
        """
        private_key = serialization.load_pem_private_key(
            key.encode(), password=None
        )
        if not isinstance(private_key, ec.EllipticCurvePrivateKey):
            raise ValueError("Private key is not an elliptic curve key")
        hosts = self.build_hosts(tenant, role)
        domain = self._domain
        common_name = naming.certificate_common_name(tenant, role, domain)
        organization = self._organization
        subject = x509.Name(
            [
                x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization),
                x509.NameAttribute(NameOID.COMMON_NAME, common_name),
            ]
        )
        san = x509.SubjectAlternativeName([x509.DNSName(h) for h in hosts])
        request = (
            x509.CertificateSigningRequestBuilder()
            .subject_name(subject)
            .add_extension(san, critical=False)
            .sign(private_key, hashes.SHA512())
        )
        pem = request.public_bytes(serialization.Encoding.PEM)
        return V1CertificateSigningRequest(
            api_version="certificates.k8s.io/v1",
            kind="CertificateSigningRequest",
            metadata=V1ObjectMeta(
                name=naming.csr_name(tenant, role),
                labels=naming.certificate_labels(tenant, role),
                annotations={
                    CSR_HOSTS_ANNOTATION: self.build_hosts_hash(hosts)
                },
            ),
            spec=V1CertificateSigningRequestSpec(
                request=b64encode(pem).decode(),
                signer_name=self._signer_name,
                usages=list(USAGES),
            ),
        )

    def build_pending_key_secret(
        self, tenant: Tenant, role: CertificateRole, key: str
    ) -> V1Secret:
        """Construct the secret holding a key while its request is pending.

        Parameters
        ----------
        tenant
            Tenant the certificate is for.
        role
            Certificate role.
        key
            PEM-encoded private key.

        Returns
        -------
        kubernetes_asyncio.client.V1Secret
            Secret holding the key.
        """
        return V1Secret(
            api_version="v1",
            kind="Secret",
            metadata=V1ObjectMeta(
                name=naming.pending_key_secret_name(tenant, role),
                labels=naming.certificate_labels(tenant, role),
            ),
            data={PENDING_KEY_SECRET_KEY: b64encode(key.encode()).decode()},
            type="Opaque",
        )

    def build_tls_secret(
        self,
        tenant: Tenant,
        role: CertificateRole,
        key: str,
        certificate: str,
    ) -> V1Secret:
        """Construct the secret holding an issued certificate.

        Parameters
        ----------
        tenant
            Tenant the certificate is for.
        role
            Certificate role.
        key
            PEM-encoded private key.
        certificate
            PEM-encoded certificate chain returned by the signer.

        Returns
        -------
        kubernetes_asyncio.client.V1Secret
            Secret in the layout mounted by the servers.
        """
        return V1Secret(
            api_version="v1",
            kind="Secret",
            metadata=V1ObjectMeta(
                name=naming.tls_secret_name(tenant, role),
                labels=naming.certificate_labels(tenant, role),
            ),
            data={
                TLS_PRIVATE_KEY_KEY: b64encode(key.encode()).decode(),
                TLS_CERT_KEY: b64encode(certificate.encode()).decode(),
            },
            type="Opaque",
        )

    def read_key(self, secret: V1Secret) -> str | None:
        """Extract the PEM key from a pending key secret, if present."""
        if not secret.data or PENDING_KEY_SECRET_KEY not in secret.data:
            return None
        try:
            return b64decode(secret.data[PENDING_KEY_SECRET_KEY]).decode()
        except ValueError:
            return None

    def parse_certificate(self, secret: V1Secret) -> IssuedCertificate | None:
        """Parse the certificate stored in a TLS secret.

        Parameters
        ----------
        secret
            TLS secret written by `build_tls_secret`.

        Returns
        -------
        IssuedCertificate or None
            Properties of the leaf certificate, or `None` if the secret is
            incomplete or does not contain a parsable certificate.
        """
        data = secret.data or {}
        if TLS_CERT_KEY not in data or TLS_PRIVATE_KEY_KEY not in data:
            return None
        try:
            pem = b64decode(data[TLS_CERT_KEY])
            certificate = x509.load_pem_x509_certificate(pem)
        except ValueError:
            return None
        try:
            extension = certificate.extensions.get_extension_for_class(
                x509.SubjectAlternativeName
            )
            hosts = extension.value.get_values_for_type(x509.DNSName)
        except x509.ExtensionNotFound:
            hosts = []
        return IssuedCertificate(
            not_after=certificate.not_valid_after_utc, hosts=frozenset(hosts)
        )
