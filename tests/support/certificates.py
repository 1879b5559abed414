"""Certificate authority for signing test certificate requests."""

from __future__ import annotations

from datetime import timedelta

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID
from safir.datetime import current_datetime

__all__ = ["MockCertificateAuthority"]


class MockCertificateAuthority:
    """Sign certificate requests the way a cluster signer would.

    A new self-signed root is generated for each instance.
    """

    def __init__(self) -> None:
        self._key = ec.generate_private_key(ec.SECP256R1())
        self._name = x509.Name(
            [x509.NameAttribute(NameOID.COMMON_NAME, "Test signer")]
        )
        now = current_datetime()
        self.certificate = (
            x509.CertificateBuilder()
            .subject_name(self._name)
            .issuer_name(self._name)
            .public_key(self._key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - timedelta(minutes=1))
            .not_valid_after(now + timedelta(days=3650))
            .add_extension(
                x509.BasicConstraints(ca=True, path_length=None),
                critical=True,
            )
            .sign(self._key, hashes.SHA256())
        )

    def sign(
        self,
        request: bytes,
        *,
        lifetime: timedelta = timedelta(days=365),
        hosts: list[str] | None = None,
    ) -> bytes:
        """Sign a PEM-encoded certificate request.

        Parameters
        ----------
        request
            PEM-encoded certificate signing request.
        lifetime
            How long the certificate is valid.
        hosts
            If given, put these hosts in the certificate instead of the ones
            in the request.

        Returns
        -------
        bytes
            PEM-encoded certificate.
        """
        csr = x509.load_pem_x509_csr(request)
        if hosts is None:
            extension = csr.extensions.get_extension_for_class(
                x509.SubjectAlternativeName
            )
            san = extension.value
        else:
            san = x509.SubjectAlternativeName([x509.DNSName(h) for h in hosts])
        now = current_datetime()
        certificate = (
            x509.CertificateBuilder()
            .subject_name(csr.subject)
            .issuer_name(self._name)
            .public_key(csr.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - timedelta(minutes=1))
            .not_valid_after(now + lifetime)
            .add_extension(san, critical=False)
            .sign(self._key, hashes.SHA256())
        )
        return certificate.public_bytes(serialization.Encoding.PEM)
