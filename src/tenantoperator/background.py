"""Tenant operator background processing."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import timedelta
from functools import partial
from typing import Any

import sentry_sdk
from aiojobs import Scheduler
from kubernetes_asyncio.client import V1Deployment, V1StatefulSet
from safir.datetime import current_datetime
from safir.slack.blockkit import SlackException
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from .config import Config
from .constants import KUBERNETES_REQUEST_TIMEOUT, TENANT_KIND
from .models.domain.kubernetes import WatchEventType
from .services.certificate import CertificateManager
from .services.queue import WorkQueue
from .services.reconciler import Reconciler
from .storage.kubernetes.custom import TenantStorage
from .storage.kubernetes.tenant import TenantObjectStorage
from .storage.kubernetes.watcher import WatchEvent
from .timeout import Timeout

__all__ = ["TenantOperator"]


class TenantOperator:
    """Run the tenant operator.

    While running, the operator performs several continuous background tasks:

    #. Watch ``Tenant`` objects and queue them for reconcile when they are
       created or their specification changes.
    #. Watch the ``StatefulSet`` and ``Deployment`` objects generated for
       tenants and queue their owning tenant when they change.
    #. Periodically queue every tenant for reconcile.
    #. Run a pool of workers that take tenants off the queue and reconcile
       them.

    The work queue guarantees that a tenant is only reconciled by one worker
    at a time, while different tenants are reconciled in parallel.

    This class is created during startup and tracked as part of the
    `~tenantoperator.factory.ProcessContext`.

    Parameters
    ----------
    config
        Operator configuration.
    reconciler
        Reconciler for a single tenant.
    certificate_manager
        Certificate manager, used to clean up after deleted tenants.
    tenant_storage
        Storage for ``Tenant`` objects.
    object_storage
        Storage for the objects generated for tenants.
    slack_client
        Optional Slack webhook client for alerts.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        config: Config,
        reconciler: Reconciler,
        certificate_manager: CertificateManager,
        tenant_storage: TenantStorage,
        object_storage: TenantObjectStorage,
        slack_client: SlackWebhookClient | None,
        logger: BoundLogger,
    ) -> None:
        self._config = config
        self._reconciler = reconciler
        self._certificates = certificate_manager
        self._tenants = tenant_storage
        self._objects = object_storage
        self._slack = slack_client
        self._logger = logger

        self._queue = self._build_queue()
        self._generations: dict[str, int] = {}
        self._scheduler: Scheduler | None = None

    @property
    def queue(self) -> WorkQueue:
        """Queue of tenants waiting to be reconciled."""
        return self._queue

    async def start(self) -> None:
        """Start all background tasks.

        Every existing tenant is queued before the watches start, so that
        tenants changed while the operator was not running are reconciled.
        """
        if self._scheduler:
            msg = "Background tasks already running, cannot start"
            self._logger.warning(msg)
            return
        self._scheduler = Scheduler()
        if self._queue.is_shutdown:
            self._queue = self._build_queue()

        self._logger.info("Queuing existing tenants")
        await self.resync()

        namespace = self._config.namespace
        watch_statefulsets = partial(
            self._objects.watch_statefulsets, namespace
        )
        watch_deployments = partial(self._objects.watch_deployments, namespace)
        coros = [
            self._watch_tenants(),
            self._watch_children("StatefulSet", watch_statefulsets),
            self._watch_children("Deployment", watch_deployments),
            self._loop(
                self.resync, self._config.resync_interval, "resyncing tenants"
            ),
        ]
        coros.extend(self._worker() for _ in range(self._config.workers))
        self._logger.info(
            "Starting background tasks", workers=self._config.workers
        )
        for coro in coros:
            await self._scheduler.spawn(coro)

    async def stop(self) -> None:
        """Stop the background tasks.

        Reconciles in progress are cancelled. Since every reconcile step is
        idempotent, this is harmless.
        """
        if not self._scheduler:
            msg = "Background tasks were already stopped"
            self._logger.warning(msg)
            return
        self._logger.info("Stopping background tasks")
        self._queue.shutdown()
        await self._scheduler.close()
        self._scheduler = None

    async def resync(self) -> None:
        """Queue every tenant for reconcile.

        Raises
        ------
        KubernetesError
            Raised if there is some failure in a Kubernetes API call.
        """
        timeout = Timeout("Listing tenants", KUBERNETES_REQUEST_TIMEOUT)
        async with timeout.enforce():
            tenants = await self._tenants.list(self._config.namespace, timeout)
        for obj in tenants:
            key = self._remember(obj)
            if key:
                self._queue.add(key)

    async def handle_tenant_event(
        self, event: WatchEvent[dict[str, Any]]
    ) -> None:
        """Process a change to a ``Tenant`` object.

        Tenants are queued when they are added or when their generation
        changes. Changes to only the status or metadata, including the
        status updates made by the operator itself, are ignored. When a
        tenant is deleted, any pending work for it is dropped and its
        certificate signing requests are deleted.

        Parameters
        ----------
        event
            Watch event for a ``Tenant`` object.
        """
        metadata = event.object.get("metadata", {})
        namespace = metadata.get("namespace")
        name = metadata.get("name")
        if not namespace or not name:
            return
        key = f"{namespace}/{name}"
        match event.action:
            case WatchEventType.ADDED:
                self._remember(event.object)
                self._queue.add(key)
            case WatchEventType.MODIFIED:
                previous = self._generations.get(key)
                self._remember(event.object)
                if previous != self._generations.get(key):
                    self._queue.add(key)
            case WatchEventType.DELETED:
                self._logger.info(
                    "Tenant deleted", tenant=name, namespace=namespace
                )
                self._generations.pop(key, None)
                self._queue.cancel(key)
                await self._cleanup(namespace, name)

    def handle_child_event(
        self, event: WatchEvent[V1StatefulSet] | WatchEvent[V1Deployment]
    ) -> None:
        """Queue the owning tenant of a changed generated object.

        Parameters
        ----------
        event
            Watch event for a generated ``StatefulSet`` or ``Deployment``.
        """
        metadata = event.object.metadata
        for owner in metadata.owner_references or []:
            if owner.kind == TENANT_KIND and owner.controller:
                self._queue.add(f"{metadata.namespace}/{owner.name}")

    async def _cleanup(self, namespace: str, name: str) -> None:
        """Delete the certificate signing requests of a deleted tenant."""
        key = f"{namespace}/{name}"
        timeout = Timeout("Cleanup", KUBERNETES_REQUEST_TIMEOUT, key)
        try:
            async with timeout.enforce():
                await self._certificates.cleanup(namespace, name, timeout)
        except Exception as e:
            msg = "Error cleaning up deleted tenant"
            self._logger.exception(msg, tenant=name, namespace=namespace)
            await self._maybe_post_exception(e)

    async def _loop(
        self,
        call: Callable[[], Awaitable[None]],
        interval: timedelta,
        description: str,
    ) -> None:
        """Wrap a coroutine in a periodic scheduling loop.

        The provided coroutine is run on every interval. This method always
        delays by the interval first before running the coroutine for the
        first time.

        Parameters
        ----------
        call
            Async function to run repeatedly.
        interval
            Scheduling interval to use.
        description
            Description of the background task for error reporting.
        """
        while True:
            await asyncio.sleep(interval.total_seconds())
            start = current_datetime(microseconds=True)
            try:
                await call()
            except Exception as e:
                elapsed = current_datetime(microseconds=True) - start
                msg = f"Uncaught exception {description}"
                self._logger.exception(msg, delay=elapsed.total_seconds())
                await self._maybe_post_exception(e)

    async def _maybe_post_exception(self, exc: Exception) -> None:
        """Post an exception to an external service.

        This will post the exception to Slack if Slack reporting is configured
        and Sentry if Sentry is enabled.

        Parameters
        ----------
        exc
            Exception to report.
        """
        sentry_sdk.capture_exception(exc)
        if not self._slack:
            return
        if isinstance(exc, SlackException):
            await self._slack.post_exception(exc)
        else:
            await self._slack.post_uncaught_exception(exc)

    async def _process(self, key: str) -> None:
        """Reconcile one tenant and schedule its next reconcile."""
        namespace, name = key.split("/", 1)
        try:
            result = await self._reconciler.reconcile(namespace, name)
        except Exception as e:
            delay = self._queue.add_rate_limited(key)
            self._logger.exception(
                "Reconcile failed",
                tenant=name,
                namespace=namespace,
                retry_delay=delay.total_seconds(),
            )
            await self._maybe_post_exception(e)
            return
        self._queue.forget(key)
        if result.requeue_after:
            self._queue.add_after(key, result.requeue_after)

    def _build_queue(self) -> WorkQueue:
        return WorkQueue(
            backoff_base=self._config.backoff_base,
            backoff_max=self._config.backoff_max,
        )

    def _remember(self, obj: dict[str, Any]) -> str | None:
        """Record the generation of a tenant and return its key."""
        metadata = obj.get("metadata", {})
        namespace = metadata.get("namespace")
        name = metadata.get("name")
        if not namespace or not name:
            return None
        key = f"{namespace}/{name}"
        self._generations[key] = metadata.get("generation", 0)
        return key

    async def _watch_children(
        self,
        kind: str,
        watch: Callable[[], AsyncIterator[WatchEvent[Any]]],
    ) -> None:
        """Watch generated objects of one kind and queue their owners."""
        while True:
            try:
                async for event in watch():
                    self.handle_child_event(event)
            except Exception as e:
                self._logger.exception(f"Error watching {kind} objects")
                await self._maybe_post_exception(e)
                await asyncio.sleep(1)

    async def _watch_tenants(self) -> None:
        """Watch ``Tenant`` objects and queue changed tenants."""
        namespace = self._config.namespace
        while True:
            try:
                async for event in self._tenants.watch(namespace):
                    await self.handle_tenant_event(event)
            except Exception as e:
                self._logger.exception("Error watching Tenant objects")
                await self._maybe_post_exception(e)
                await asyncio.sleep(1)

    async def _worker(self) -> None:
        """Reconcile tenants from the queue until it is shut down."""
        while True:
            key = await self._queue.get()
            if key is None:
                return
            try:
                await self._process(key)
            finally:
                self._queue.done(key)
