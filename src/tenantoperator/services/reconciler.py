"""Reconciliation of a single tenant."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from pydantic import ValidationError
from safir.datetime import current_datetime
from structlog.stdlib import BoundLogger

from ..config import Config
from ..exceptions import InvalidTenantError
from ..models.domain.certificate import CertificateRole, CertificateStatus
from ..models.domain.drift import DriftReason
from ..models.domain.kubernetes import KubernetesModel
from ..models.domain.tenant import DesiredObject, TenantObjects
from ..models.v1.tenant import (
    PoolState,
    PoolStatus,
    Tenant,
    TenantCondition,
    TenantState,
    TenantStatus,
)
from ..storage.kubernetes.custom import TenantStorage
from ..storage.kubernetes.tenant import TenantObjectStorage
from ..timeout import Timeout
from .builder.tenant import TenantBuilder
from .builder.tls import issued_roles
from .certificate import CertificateManager
from .drift import compare

__all__ = ["ReconcileResult", "Reconciler"]


@dataclass(frozen=True, slots=True)
class ReconcileResult:
    """Outcome of a successful reconcile attempt."""

    requeue_after: timedelta | None = None
    """If set, reconcile the tenant again after this delay."""


class Reconciler:
    """Bring the objects of one tenant in line with its specification.

    Each call to `reconcile` is one complete attempt. It never waits for
    anything outside of the Kubernetes API calls it makes. When a
    certificate request is still waiting for approval, the attempt stops
    short of creating the objects that need that certificate and asks to be
    run again later. Errors are raised to the caller, which retries the
    entire attempt. Every step is idempotent, so repeating an attempt from
    the beginning is always safe.

    Parameters
    ----------
    config
        Operator configuration.
    tenant_builder
        Builder for the objects generated for a tenant.
    certificate_manager
        Manager for operator-issued certificates.
    tenant_storage
        Storage for ``Tenant`` objects.
    object_storage
        Storage for the objects generated for tenants.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        config: Config,
        tenant_builder: TenantBuilder,
        certificate_manager: CertificateManager,
        tenant_storage: TenantStorage,
        object_storage: TenantObjectStorage,
        logger: BoundLogger,
    ) -> None:
        self._config = config
        self._builder = tenant_builder
        self._certificates = certificate_manager
        self._tenants = tenant_storage
        self._storage = object_storage
        self._logger = logger

    async def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        """Reconcile one tenant.

        Parameters
        ----------
        namespace
            Namespace of the tenant.
        name
            Name of the tenant.

        Returns
        -------
        ReconcileResult
            When, if ever, the tenant should be reconciled again.

        Raises
        ------
        ControllerTimeoutError
            Raised if the attempt did not finish within the reconcile
            timeout.
        KubernetesError
            Raised if there is some failure in a Kubernetes API call.
        """
        key = f"{namespace}/{name}"
        timeout = Timeout("Reconcile", self._config.reconcile_timeout, key)
        async with timeout.enforce():
            return await self._reconcile(namespace, name, timeout)

    async def _reconcile(
        self, namespace: str, name: str, timeout: Timeout
    ) -> ReconcileResult:
        logger = self._logger.bind(tenant=name, namespace=namespace)
        obj = await self._tenants.read(name, namespace, timeout)
        if not obj:
            logger.debug("Tenant no longer exists")
            return ReconcileResult()
        try:
            tenant = Tenant.from_object(obj)
        except ValidationError as e:
            error = InvalidTenantError.from_exception(e)
            logger.warning("Tenant is invalid", error=error.error)
            await self._update_invalid_status(obj, error, timeout)
            return ReconcileResult()
        if tenant.deleting:
            logger.debug("Tenant is being deleted")
            return ReconcileResult()

        # Credentials are only generated once and never updated, since the
        # user may have rotated them.
        if not tenant.spec.creds_secret:
            body = self._builder.build_default_credentials(tenant)
            created = await self._storage.ensure_exists(
                namespace, body, tenant, timeout
            )
            if created:
                logger.info("Created credentials", secret=body.metadata.name)

        # Each certificate role progresses independently.
        certificates: dict[CertificateRole, CertificateStatus] = {}
        for role in issued_roles(tenant):
            status = await self._certificates.ensure(tenant, role, timeout)
            certificates[role] = status
        ready = frozenset(r for r, s in certificates.items() if s.is_ready)

        objects = self._builder.build(tenant)
        await self._apply(tenant, objects.args_secret, logger, timeout)
        for service in objects.services:
            await self._apply(tenant, service, logger, timeout)
        for desired in self._with_requirements(objects):
            if not desired.requires <= ready:
                missing = sorted(r.value for r in desired.requires - ready)
                logger.debug(
                    "Waiting for certificates",
                    name=desired.body.metadata.name,
                    certificates=missing,
                )
                continue
            await self._apply(tenant, desired.body, logger, timeout)
        if objects.console_deployment:
            deployment = objects.console_deployment
            await self._apply(tenant, deployment, logger, timeout)

        status = await self._build_status(
            tenant, objects, certificates, ready, timeout
        )
        await self._update_status(tenant, status, logger, timeout)

        if any(s.is_blocked for s in certificates.values()):
            return ReconcileResult(self._config.blocked_retry_interval)
        if len(ready) < len(certificates) or any(
            s.rotating for s in certificates.values()
        ):
            return ReconcileResult(self._config.csr_poll_interval)
        return ReconcileResult()

    async def _apply(
        self,
        tenant: Tenant,
        body: KubernetesModel,
        logger: BoundLogger,
        timeout: Timeout,
    ) -> None:
        """Create or update one object so that it matches the desired one."""
        name = body.metadata.name
        live = await self._storage.read(tenant.namespace, body, timeout)
        result = compare(tenant, body, live)
        if result.matches:
            return
        kind = type(body).__name__.removeprefix("V1")
        if result.reason == DriftReason.MISSING:
            created = await self._storage.ensure_exists(
                tenant.namespace, body, tenant, timeout
            )
            if created:
                logger.info(f"Created {kind}", name=name)
        else:
            reason = result.reason.value if result.reason else None
            logger.info(
                f"Updating {kind}",
                name=name,
                reason=reason,
                fields=[d.path for d in result.drifts],
            )
            await self._storage.patch(
                tenant.namespace, body, result.drifts, timeout
            )

    async def _build_status(
        self,
        tenant: Tenant,
        objects: TenantObjects,
        certificates: dict[CertificateRole, CertificateStatus],
        ready: frozenset[CertificateRole],
        timeout: Timeout,
    ) -> TenantStatus:
        """Summarize the state of the tenant after an attempt."""
        pools = []
        for pool, desired in zip(
            tenant.spec.pools, objects.statefulsets, strict=True
        ):
            if not desired.requires <= ready:
                pool_status = PoolStatus(
                    name=pool.name,
                    state=PoolState.PENDING,
                    replicas=pool.servers,
                )
                pools.append(pool_status)
                continue
            name = desired.body.metadata.name
            statefulset = await self._storage.read_statefulset(
                name, tenant.namespace, timeout
            )
            ready_replicas = 0
            if statefulset and statefulset.status:
                ready_replicas = statefulset.status.ready_replicas or 0
            if ready_replicas >= pool.servers:
                state = PoolState.READY
            else:
                state = PoolState.CREATED
            pool_status = PoolStatus(
                name=pool.name,
                state=state,
                replicas=pool.servers,
                ready_replicas=ready_replicas,
            )
            pools.append(pool_status)

        conditions = []
        blocked = [s for s in certificates.values() if s.is_blocked]
        if certificates:
            conditions.append(_certificates_condition(certificates, blocked))

        if blocked:
            state = TenantState.BLOCKED
        elif len(ready) < len(certificates):
            state = TenantState.WAITING_FOR_CERTIFICATES
        elif all(p.state == PoolState.READY for p in pools):
            state = TenantState.READY
        else:
            state = TenantState.PROVISIONING
        phases = {r.value: s.phase.value for r, s in certificates.items()}
        return TenantStatus(
            current_state=state,
            observed_generation=tenant.generation,
            pools=pools,
            certificates=phases,
            conditions=conditions,
        )

    async def _update_invalid_status(
        self,
        obj: dict[str, Any],
        error: InvalidTenantError,
        timeout: Timeout,
    ) -> None:
        """Report a validation failure in the status of a tenant."""
        metadata = obj["metadata"]
        condition = TenantCondition(
            type="Valid",
            status="False",
            reason="InvalidSpec",
            message=error.error,
        )
        status = TenantStatus(
            current_state=TenantState.INVALID,
            observed_generation=metadata.get("generation"),
            conditions=[condition],
        )
        new_status = _carry_transition_times(
            status.to_status(), obj.get("status")
        )
        if new_status != obj.get("status"):
            await self._tenants.patch_status(
                metadata["name"], metadata["namespace"], new_status, timeout
            )

    async def _update_status(
        self,
        tenant: Tenant,
        status: TenantStatus,
        logger: BoundLogger,
        timeout: Timeout,
    ) -> None:
        """Write the status of a tenant if it changed."""
        old_status = tenant.status
        new_status = _carry_transition_times(status.to_status(), old_status)
        if new_status == old_status:
            return
        logger.info(
            "Updating tenant status", state=status.current_state.value
        )
        await self._tenants.patch_status(
            tenant.name, tenant.namespace, new_status, timeout
        )

    def _with_requirements(
        self, objects: TenantObjects
    ) -> list[DesiredObject[Any]]:
        """Objects that may need certificates, in the order to apply them."""
        result: list[DesiredObject[Any]] = list(objects.statefulsets)
        if objects.kes_statefulset:
            result.insert(0, objects.kes_statefulset)
        return result


def _certificates_condition(
    certificates: dict[CertificateRole, CertificateStatus],
    blocked: list[CertificateStatus],
) -> TenantCondition:
    """Build the ``CertificatesReady`` condition."""
    if blocked:
        first = blocked[0]
        message = "; ".join(f"{s.role.value}: {s.message}" for s in blocked)
        return TenantCondition(
            type="CertificatesReady",
            status="False",
            reason=first.phase.value,
            message=message,
        )
    pending = [s for s in certificates.values() if not s.is_ready]
    if pending:
        message = "; ".join(f"{s.role.value}: {s.message}" for s in pending)
        return TenantCondition(
            type="CertificatesReady",
            status="False",
            reason="Pending",
            message=message,
        )
    rotating = [s for s in certificates.values() if s.rotating]
    message = "; ".join(f"{s.role.value}: {s.message}" for s in rotating)
    return TenantCondition(
        type="CertificatesReady",
        status="True",
        reason="Issued",
        message=message,
    )


def _carry_transition_times(
    status: dict[str, Any], old_status: dict[str, Any] | None
) -> dict[str, Any]:
    """Set condition transition times, keeping those of unchanged conditions.

    A condition whose type and status are the same as in the previous status
    keeps its previous transition time. Any other condition is stamped with
    the current time.
    """
    previous = {}
    if old_status:
        for condition in old_status.get("conditions") or []:
            previous[condition.get("type")] = condition
    now = current_datetime().isoformat().replace("+00:00", "Z")
    for condition in status.get("conditions", []):
        old = previous.get(condition["type"])
        if old and old.get("status") == condition["status"]:
            transition = old.get("lastTransitionTime", now)
        else:
            transition = now
        condition["lastTransitionTime"] = transition
    return status
