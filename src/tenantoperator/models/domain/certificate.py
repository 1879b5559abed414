"""Domain models for operator-issued certificates."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

__all__ = [
    "CertificatePhase",
    "CertificateRole",
    "CertificateStatus",
    "IssuedCertificate",
]


class CertificateRole(Enum):
    """Purpose of a certificate issued for a tenant."""

    SERVER = "server"
    """Certificate served by the storage servers."""

    CLIENT = "client"
    """Certificate the storage servers present to KES."""

    KES = "kes"
    """Certificate served by KES."""


class CertificatePhase(Enum):
    """Phase of the issuance of one certificate role.

    The phases form the sequence ``KeyGenerated``, ``Submitted``, then one of
    ``Approved``, ``Denied``, or ``TimedOut``, and finally
    ``SecretPersisted`` once the signed certificate has been stored.
    """

    KEY_GENERATED = "KeyGenerated"
    SUBMITTED = "Submitted"
    APPROVED = "Approved"
    DENIED = "Denied"
    TIMED_OUT = "TimedOut"
    SECRET_PERSISTED = "SecretPersisted"


@dataclass(frozen=True, slots=True)
class CertificateStatus:
    """Result of one attempt to ensure a certificate exists."""

    role: CertificateRole
    """Role of the certificate."""

    phase: CertificatePhase
    """Phase reached at the end of the attempt."""

    secret_name: str
    """Name of the TLS secret holding, or that will hold, the certificate."""

    message: str = ""
    """Human-readable detail, used for status conditions."""

    rotating: bool = False
    """Whether a replacement is being issued for a persisted certificate."""

    @property
    def is_blocked(self) -> bool:
        """Whether issuance stopped and needs human intervention."""
        blocked = (CertificatePhase.DENIED, CertificatePhase.TIMED_OUT)
        return self.phase in blocked

    @property
    def is_ready(self) -> bool:
        """Whether the certificate secret exists and can be mounted."""
        return self.phase == CertificatePhase.SECRET_PERSISTED


@dataclass(frozen=True, slots=True)
class IssuedCertificate:
    """Properties of a persisted certificate that govern its renewal."""

    not_after: datetime
    """Expiration time of the certificate."""

    hosts: frozenset[str]
    """DNS names in the subject alternative names of the certificate."""

    def covers(self, hosts: list[str]) -> bool:
        """Whether the certificate is valid for all of the given hosts."""
        return set(hosts) <= self.hosts

    def needs_renewal(self, now: datetime, window: timedelta) -> bool:
        """Whether the certificate expires within the renewal window."""
        return self.not_after - now <= window
