"""Component factory and process-wide context management."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import aclosing, asynccontextmanager
from dataclasses import dataclass
from typing import Self

import structlog
from kubernetes_asyncio.client.api_client import ApiClient
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from .background import TenantOperator
from .config import Config
from .services.builder.certificate import CertificateBuilder
from .services.builder.tenant import TenantBuilder
from .services.certificate import CertificateManager
from .services.reconciler import Reconciler
from .storage.kubernetes.csr import CertificateSigningRequestStorage
from .storage.kubernetes.custom import TenantStorage
from .storage.kubernetes.deleter import SecretStorage
from .storage.kubernetes.tenant import TenantObjectStorage

__all__ = ["Factory", "ProcessContext"]


@dataclass(frozen=True, slots=True)
class ProcessContext:
    """Per-process global application state.

    This object holds all of the per-process singletons and is managed by
    `~tenantoperator.dependencies.context.ContextDependency`. It is used by
    the `Factory` class as a source of dependencies to inject into created
    service and storage objects.
    """

    config: Config
    """Tenant operator configuration."""

    kubernetes_client: ApiClient
    """Shared Kubernetes client."""

    operator: TenantOperator
    """Background watches and reconcile workers."""

    @classmethod
    async def from_config(cls, config: Config) -> Self:
        """Create a new process context from the operator configuration.

        Parameters
        ----------
        config
            Tenant operator configuration.

        Returns
        -------
        ProcessContext
            Shared context for a tenant operator process.
        """
        kubernetes_client = ApiClient()
        logger = structlog.get_logger(__name__)
        factory = Factory(config, kubernetes_client, logger)
        return cls(
            config=config,
            kubernetes_client=kubernetes_client,
            operator=factory.create_operator(),
        )

    async def aclose(self) -> None:
        """Free allocated resources."""
        await self.kubernetes_client.close()

    async def start(self) -> None:
        """Start the background tasks running."""
        await self.operator.start()

    async def stop(self) -> None:
        """Clean up a process context.

        Called during shutdown, or before recreating the process context using
        a different configuration.
        """
        await self.operator.stop()


class Factory:
    """Build tenant operator components.

    Uses the contents of a `ProcessContext` to construct the components of the
    application on demand.

    Parameters
    ----------
    config
        Tenant operator configuration.
    kubernetes_client
        Shared Kubernetes client.
    logger
        Logger to use for messages.
    context
        Shared process context, if one has been created.
    """

    @classmethod
    @asynccontextmanager
    async def standalone(cls, config: Config) -> AsyncIterator[Self]:
        """Async context manager for tenant operator components.

        Intended for background jobs or the test suite.

        Parameters
        ----------
        config
            Tenant operator configuration.

        Yields
        ------
        Factory
            Newly-created factory. Must be used as a context manager.
        """
        logger = structlog.get_logger(__name__)
        context = await ProcessContext.from_config(config)
        factory = cls(config, context.kubernetes_client, logger, context)
        async with aclosing(factory):
            yield factory

    def __init__(
        self,
        config: Config,
        kubernetes_client: ApiClient,
        logger: BoundLogger,
        context: ProcessContext | None = None,
    ) -> None:
        self._config = config
        self._kubernetes_client = kubernetes_client
        self._logger = logger
        self._context = context
        self._background_services_started = False

    @property
    def operator(self) -> TenantOperator:
        """Global operator, from the `ProcessContext`.

        Only used by tests.
        """
        if not self._context:
            raise RuntimeError("Factory has no process context")
        return self._context.operator

    async def aclose(self) -> None:
        """Shut down the factory.

        After this method is called, the factory object is no longer valid and
        must not be used.
        """
        if not self._context:
            return
        if self._background_services_started:
            await self._context.stop()
        await self._context.aclose()

    def create_certificate_builder(self) -> CertificateBuilder:
        """Create builder for certificate requests and secrets.

        Returns
        -------
        CertificateBuilder
            Newly-created certificate builder.
        """
        return CertificateBuilder(
            cluster_domain=self._config.cluster_domain,
            signer_name=self._config.csr_signer_name,
            organization=self._config.csr_organization,
        )

    def create_certificate_manager(self) -> CertificateManager:
        """Create service to issue tenant certificates.

        Returns
        -------
        CertificateManager
            Newly-created certificate manager.
        """
        return CertificateManager(
            builder=self.create_certificate_builder(),
            csr_storage=CertificateSigningRequestStorage(
                self._kubernetes_client, self._logger
            ),
            secret_storage=SecretStorage(
                self._kubernetes_client, self._logger
            ),
            approval_timeout=self._config.csr_approval_timeout,
            renewal_window=self._config.certificate_renewal_window,
            logger=self._logger,
        )

    def create_object_storage(self) -> TenantObjectStorage:
        """Create Kubernetes storage for the objects generated for tenants.

        Returns
        -------
        TenantObjectStorage
            Newly-created storage.
        """
        return TenantObjectStorage(self._kubernetes_client, self._logger)

    def create_operator(self) -> TenantOperator:
        """Create the background operator.

        Returns
        -------
        TenantOperator
            Newly-created operator. It is not started.
        """
        return TenantOperator(
            config=self._config,
            reconciler=self.create_reconciler(),
            certificate_manager=self.create_certificate_manager(),
            tenant_storage=self.create_tenant_storage(),
            object_storage=self.create_object_storage(),
            slack_client=self.create_slack_client(),
            logger=self._logger,
        )

    def create_reconciler(self) -> Reconciler:
        """Create service to reconcile a single tenant.

        Returns
        -------
        Reconciler
            Newly-created reconciler.
        """
        return Reconciler(
            config=self._config,
            tenant_builder=self.create_tenant_builder(),
            certificate_manager=self.create_certificate_manager(),
            tenant_storage=self.create_tenant_storage(),
            object_storage=self.create_object_storage(),
            logger=self._logger,
        )

    def create_slack_client(self) -> SlackWebhookClient | None:
        """Create a client for sending messages to Slack.

        Returns
        -------
        SlackWebhookClient or None
            Configured Slack client if a Slack webhook was configured,
            otherwise `None`.
        """
        if not self._config.slack_webhook:
            return None
        return SlackWebhookClient(
            self._config.slack_webhook.get_secret_value(),
            self._config.name,
            self._logger,
        )

    def create_tenant_builder(self) -> TenantBuilder:
        """Create builder for the objects generated for a tenant.

        Returns
        -------
        TenantBuilder
            Newly-created tenant builder.
        """
        return TenantBuilder(
            cluster_domain=self._config.cluster_domain,
            init_container_image=self._config.init_container_image,
        )

    def create_tenant_storage(self) -> TenantStorage:
        """Create Kubernetes storage for ``Tenant`` objects.

        Returns
        -------
        TenantStorage
            Newly-created storage.
        """
        return TenantStorage(self._kubernetes_client, self._logger)

    async def start_background_services(self) -> None:
        """Start the operator managed by the process context.

        This is normally started by the context dependency when running as a
        FastAPI app, but the test suite may want the operator running while
        testing with only a factory.

        Only used by the test suite.
        """
        if not self._context:
            raise RuntimeError("Factory has no process context")
        await self._context.start()
        self._background_services_started = True
