"""Issuance and renewal of tenant certificates."""

from __future__ import annotations

from base64 import b64decode
from datetime import timedelta

from kubernetes_asyncio.client import (
    V1CertificateSigningRequest,
    V1CertificateSigningRequestCondition,
)
from safir.datetime import current_datetime
from structlog.stdlib import BoundLogger

from .. import naming
from ..constants import CSR_HOSTS_ANNOTATION, LABEL_NAMESPACE, LABEL_TENANT
from ..models.domain.certificate import (
    CertificatePhase,
    CertificateRole,
    CertificateStatus,
)
from ..models.domain.drift import FieldDrift
from ..models.v1.tenant import Tenant
from ..storage.kubernetes.csr import CertificateSigningRequestStorage
from ..storage.kubernetes.deleter import SecretStorage
from ..timeout import Timeout
from .builder.certificate import CertificateBuilder

__all__ = ["CertificateManager"]


class CertificateManager:
    """Issue certificates for tenants through the Kubernetes CSR API.

    Each call to `ensure` advances the issuance of one certificate as far as
    is possible without waiting and reports where it stopped. Approval of a
    request is always done by someone else, so a pending request is reported
    as such and the caller is expected to try again later. Nothing here
    sleeps or retries.

    The private key for a pending request is stored in a secret owned by the
    tenant, so that issuance can continue after a restart of the operator.

    Parameters
    ----------
    builder
        Builder for keys, requests, and secrets.
    csr_storage
        Storage for certificate signing requests.
    secret_storage
        Storage for secrets.
    approval_timeout
        How long a request may remain unapproved before issuance is
        reported as timed out.
    renewal_window
        Issue a replacement for a certificate expiring within this interval.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        builder: CertificateBuilder,
        csr_storage: CertificateSigningRequestStorage,
        secret_storage: SecretStorage,
        approval_timeout: timedelta,
        renewal_window: timedelta,
        logger: BoundLogger,
    ) -> None:
        self._builder = builder
        self._csr = csr_storage
        self._secret = secret_storage
        self._approval_timeout = approval_timeout
        self._renewal_window = renewal_window
        self._logger = logger

    async def ensure(
        self, tenant: Tenant, role: CertificateRole, timeout: Timeout
    ) -> CertificateStatus:
        """Advance issuance of the certificate for one role.

        Parameters
        ----------
        tenant
            Tenant needing the certificate.
        role
            Certificate role.
        timeout
            Timeout on the Kubernetes API calls.

        Returns
        -------
        CertificateStatus
            Phase reached. While a replacement for a still-valid certificate
            is being issued, the phase is ``SecretPersisted`` with
            ``rotating`` set.

        Raises
        ------
        KubernetesError
            Raised if there is some failure in a Kubernetes API call.
        """
        logger = self._logger.bind(
            tenant=tenant.name, namespace=tenant.namespace, role=role.value
        )
        secret_name = naming.tls_secret_name(tenant, role)
        hosts = self._builder.build_hosts(tenant, role)
        secret = await self._secret.read(
            secret_name, tenant.namespace, timeout
        )
        serving = False
        if secret:
            certificate = self._builder.parse_certificate(secret)
            if certificate:
                now = current_datetime()
                covered = certificate.covers(hosts)
                renew = certificate.needs_renewal(now, self._renewal_window)
                if covered and not renew:
                    return CertificateStatus(
                        role, CertificatePhase.SECRET_PERSISTED, secret_name
                    )
                serving = True
                reason = "expiring" if renew else "missing hosts"
                logger.info("Renewing certificate", reason=reason)
            else:
                logger.warning("Replacing unparsable certificate secret")

        status = await self._advance(
            tenant,
            role,
            hosts,
            secret_exists=secret is not None,
            logger=logger,
            timeout=timeout,
        )
        if serving and status.phase != CertificatePhase.SECRET_PERSISTED:
            message = f"Renewal {status.phase.value}"
            if status.message:
                message += f": {status.message}"
            return CertificateStatus(
                role,
                CertificatePhase.SECRET_PERSISTED,
                secret_name,
                message=message,
                rotating=True,
            )
        return status

    async def cleanup(
        self, namespace: str, name: str, timeout: Timeout
    ) -> None:
        """Delete all certificate signing requests of a deleted tenant.

        Certificate signing requests are not namespaced and thus cannot be
        owned by the tenant, so they are not garbage-collected with it.

        Parameters
        ----------
        namespace
            Namespace of the tenant.
        name
            Name of the tenant.
        timeout
            Timeout on the Kubernetes API calls.

        Raises
        ------
        KubernetesError
            Raised if there is some failure in a Kubernetes API call.
        """
        selector = f"{LABEL_TENANT}={name},{LABEL_NAMESPACE}={namespace}"
        for csr in await self._csr.list(timeout, label_selector=selector):
            self._logger.info(
                "Deleting certificate request of deleted tenant",
                tenant=name,
                namespace=namespace,
                csr=csr.metadata.name,
            )
            await self._csr.delete(csr.metadata.name, timeout)

    async def _advance(
        self,
        tenant: Tenant,
        role: CertificateRole,
        hosts: list[str],
        *,
        secret_exists: bool,
        logger: BoundLogger,
        timeout: Timeout,
    ) -> CertificateStatus:
        """Move issuance of a new certificate one step forward."""
        secret_name = naming.tls_secret_name(tenant, role)
        csr_name = naming.csr_name(tenant, role)
        csr = await self._csr.read(csr_name, timeout)
        if not csr:
            return await self._submit(tenant, role, logger, timeout)

        # A request for a different set of hosts is useless. Remove it and
        # submit a new one on the next attempt.
        annotations = csr.metadata.annotations or {}
        hosts_hash = self._builder.build_hosts_hash(hosts)
        if annotations.get(CSR_HOSTS_ANNOTATION) != hosts_hash:
            logger.info("Deleting outdated certificate request", csr=csr_name)
            await self._csr.delete(csr_name, timeout)
            return CertificateStatus(
                role,
                CertificatePhase.KEY_GENERATED,
                secret_name,
                message="Replacing outdated certificate request",
            )

        # Check for a final decision by the approver.
        for condition in _conditions(csr):
            if condition.type in ("Denied", "Failed"):
                message = condition.message or condition.reason or ""
                logger.warning(
                    "Certificate request was not issued",
                    csr=csr_name,
                    condition=condition.type,
                    message=message,
                )
                return CertificateStatus(
                    role, CertificatePhase.DENIED, secret_name, message=message
                )

        # Without the pending private key, the request cannot be used.
        key_name = naming.pending_key_secret_name(tenant, role)
        key_secret = await self._secret.read(
            key_name, tenant.namespace, timeout
        )
        key = self._builder.read_key(key_secret) if key_secret else None
        if not key:
            logger.warning("Private key lost, deleting request", csr=csr_name)
            await self._csr.delete(csr_name, timeout)
            return CertificateStatus(
                role,
                CertificatePhase.KEY_GENERATED,
                secret_name,
                message="Private key of certificate request was lost",
            )

        approved = any(c.type == "Approved" for c in _conditions(csr))
        if not approved:
            created = csr.metadata.creation_timestamp
            now = current_datetime()
            if created and now - created > self._approval_timeout:
                msg = "Certificate request not approved"
                logger.warning(msg, csr=csr_name)
                return CertificateStatus(
                    role,
                    CertificatePhase.TIMED_OUT,
                    secret_name,
                    message=f"Request {csr_name} not approved in time",
                )
            return CertificateStatus(
                role,
                CertificatePhase.SUBMITTED,
                secret_name,
                message=f"Waiting for approval of {csr_name}",
            )
        if not csr.status.certificate:
            return CertificateStatus(
                role,
                CertificatePhase.APPROVED,
                secret_name,
                message=f"Waiting for {csr_name} to be signed",
            )

        # The certificate was issued. Store it and clean up.
        certificate = b64decode(csr.status.certificate).decode()
        body = self._builder.build_tls_secret(tenant, role, key, certificate)
        if secret_exists:
            drift = FieldDrift("/data", body.data, present=True)
            await self._secret.patch(
                secret_name, tenant.namespace, [drift], timeout
            )
        else:
            await self._secret.create(
                tenant.namespace, body, timeout, owner=tenant
            )
        logger.info("Stored issued certificate", secret=secret_name)
        await self._csr.delete(csr_name, timeout)
        await self._secret.delete(key_name, tenant.namespace, timeout)
        return CertificateStatus(
            role, CertificatePhase.SECRET_PERSISTED, secret_name
        )

    async def _submit(
        self,
        tenant: Tenant,
        role: CertificateRole,
        logger: BoundLogger,
        timeout: Timeout,
    ) -> CertificateStatus:
        """Submit a new request, generating a key if needed."""
        secret_name = naming.tls_secret_name(tenant, role)
        key_name = naming.pending_key_secret_name(tenant, role)
        key_secret = await self._secret.read(
            key_name, tenant.namespace, timeout
        )
        key = self._builder.read_key(key_secret) if key_secret else None
        if not key:
            key = self._builder.generate_key()
            body = self._builder.build_pending_key_secret(tenant, role, key)
            if key_secret:
                drift = FieldDrift("/data", body.data, present=True)
                await self._secret.patch(
                    key_name, tenant.namespace, [drift], timeout
                )
            else:
                await self._secret.create(
                    tenant.namespace, body, timeout, owner=tenant
                )
            logger.info("Generated private key", secret=key_name)

        try:
            csr = self._builder.build_csr(tenant, role, key)
        except ValueError:
            logger.exception("Pending private key is invalid, discarding")
            await self._secret.delete(key_name, tenant.namespace, timeout)
            return CertificateStatus(
                role,
                CertificatePhase.KEY_GENERATED,
                secret_name,
                message="Discarded invalid pending private key",
            )
        await self._csr.create(csr, timeout)
        logger.info("Submitted certificate request", csr=csr.metadata.name)
        return CertificateStatus(
            role,
            CertificatePhase.SUBMITTED,
            secret_name,
            message=f"Waiting for approval of {csr.metadata.name}",
        )


def _conditions(
    csr: V1CertificateSigningRequest,
) -> list[V1CertificateSigningRequestCondition]:
    """Return the status conditions of a request."""
    if not csr.status or not csr.status.conditions:
        return []
    return csr.status.conditions
