"""Kubernetes storage layer for the objects making up a tenant."""

from __future__ import annotations

from collections.abc import AsyncIterator

from kubernetes_asyncio.client import (
    ApiClient,
    V1Deployment,
    V1Secret,
    V1Service,
    V1StatefulSet,
)
from structlog.stdlib import BoundLogger

from ...constants import LABEL_TENANT
from ...models.domain.drift import FieldDrift
from ...models.domain.kubernetes import KubernetesModel
from ...models.v1.tenant import Tenant
from ...timeout import Timeout
from .creator import KubernetesObjectCreator, ServiceStorage
from .deleter import DeploymentStorage, SecretStorage, StatefulSetStorage
from .watcher import WatchEvent

__all__ = ["TenantObjectStorage"]


class TenantObjectStorage:
    """Kubernetes storage layer for the objects generated for tenants.

    Dispatches each generated object to the storage class for its kind, so
    that the reconciler can treat all of the objects of a tenant uniformly.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        self._logger = logger
        self._deployment = DeploymentStorage(api_client, logger)
        self._secret = SecretStorage(api_client, logger)
        self._service = ServiceStorage(api_client, logger)
        self._statefulset = StatefulSetStorage(api_client, logger)

    async def ensure_exists(
        self,
        namespace: str,
        body: KubernetesModel,
        owner: Tenant,
        timeout: Timeout,
    ) -> bool:
        """Create an object owned by a tenant if it does not already exist.

        Parameters
        ----------
        namespace
            Namespace of the object.
        body
            Object to create.
        owner
            Tenant to set as the controlling owner.
        timeout
            Timeout on operation.

        Returns
        -------
        bool
            `True` if the object was created, `False` if it already existed.

        Raises
        ------
        KubernetesError
            Raised if there is some failure in a Kubernetes API call.
        """
        storage = self._storage_for(body)
        return await storage.ensure_exists(namespace, body, owner, timeout)

    async def patch(
        self,
        namespace: str,
        body: KubernetesModel,
        drifts: list[FieldDrift],
        timeout: Timeout,
    ) -> None:
        """Update the drifted fields of an existing object.

        Parameters
        ----------
        namespace
            Namespace of the object.
        body
            Desired object, used to determine the kind and name.
        drifts
            Fields to update.
        timeout
            Timeout on operation.

        Raises
        ------
        KubernetesError
            Raised if there is some failure in a Kubernetes API call.
        """
        storage = self._storage_for(body)
        name = body.metadata.name
        await storage.patch(name, namespace, drifts, timeout)

    async def read(
        self, namespace: str, body: KubernetesModel, timeout: Timeout
    ) -> KubernetesModel | None:
        """Read the live object corresponding to a desired object.

        Parameters
        ----------
        namespace
            Namespace of the object.
        body
            Desired object, used to determine the kind and name.
        timeout
            Timeout on operation.

        Returns
        -------
        KubernetesModel or None
            Live object, or `None` if it does not exist.

        Raises
        ------
        KubernetesError
            Raised if there is some failure in a Kubernetes API call.
        """
        storage = self._storage_for(body)
        return await storage.read(body.metadata.name, namespace, timeout)

    async def read_statefulset(
        self, name: str, namespace: str, timeout: Timeout
    ) -> V1StatefulSet | None:
        """Read a ``StatefulSet``, for reporting its status.

        Raises
        ------
        KubernetesError
            Raised if there is some failure in a Kubernetes API call.
        """
        return await self._statefulset.read(name, namespace, timeout)

    def watch_deployments(
        self, namespace: str | None
    ) -> AsyncIterator[WatchEvent[V1Deployment]]:
        """Watch the ``Deployment`` objects generated for tenants."""
        return self._deployment.watch(namespace, label_selector=LABEL_TENANT)

    def watch_statefulsets(
        self, namespace: str | None
    ) -> AsyncIterator[WatchEvent[V1StatefulSet]]:
        """Watch the ``StatefulSet`` objects generated for tenants."""
        return self._statefulset.watch(namespace, label_selector=LABEL_TENANT)

    def _storage_for(
        self, body: KubernetesModel
    ) -> KubernetesObjectCreator:
        """Find the storage class for an object."""
        match body:
            case V1Deployment():
                return self._deployment
            case V1Secret():
                return self._secret
            case V1Service():
                return self._service
            case V1StatefulSet():
                return self._statefulset
            case _:
                msg = f"Unsupported object type {type(body).__name__}"
                raise TypeError(msg)
