"""Storage layer for Kubernetes custom objects."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, ApiException
from structlog.stdlib import BoundLogger

from ...constants import (
    TENANT_GROUP,
    TENANT_KIND,
    TENANT_PLURAL,
    TENANT_VERSION,
)
from ...exceptions import KubernetesError
from ...timeout import Timeout
from .watcher import KubernetesWatcher, WatchEvent

__all__ = [
    "CustomStorage",
    "TenantStorage",
]


class CustomStorage:
    """Storage layer for Kubernetes custom objects.

    Normally, this class should be subclassed to specialize it for a specific
    custom object type, which provides a slightly nicer API, but it can be
    used as-is if desired.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    group
        API group for the custom objects to handle.
    version
        API version for the custom objects to handle.
    plural
        API plural under which those custom objects are managed.
    kind
        Name of the custom object kind, used for error reporting.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        api_client: ApiClient,
        group: str,
        version: str,
        plural: str,
        kind: str,
        logger: BoundLogger,
    ) -> None:
        self._api = client.CustomObjectsApi(api_client)
        self._group = group
        self._version = version
        self._plural = plural
        self._kind = kind
        self._logger = logger

    async def list(
        self, namespace: str | None, timeout: Timeout
    ) -> list[dict[str, Any]]:
        """List the custom objects in a namespace or the whole cluster.

        Parameters
        ----------
        namespace
            Namespace in which to list custom objects, or `None` to list
            them in all namespaces.
        timeout
            Timeout on operation.

        Returns
        -------
        list of dict
            List of custom objects found.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        try:
            if namespace:
                objs = await self._api.list_namespaced_custom_object(
                    self._group,
                    self._version,
                    namespace,
                    self._plural,
                    _request_timeout=timeout.left(),
                )
            else:
                objs = await self._api.list_cluster_custom_object(
                    self._group,
                    self._version,
                    self._plural,
                    _request_timeout=timeout.left(),
                )
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error listing objects",
                e,
                kind=self._kind,
                namespace=namespace,
            ) from e
        return objs["items"]

    async def patch_status(
        self,
        name: str,
        namespace: str,
        status: dict[str, Any],
        timeout: Timeout,
    ) -> None:
        """Replace the status of a custom object.

        Only the status subresource is written, so this never changes the
        specification or the generation of the object.

        Parameters
        ----------
        name
            Name of the custom object.
        namespace
            Namespace of the custom object.
        status
            New status.
        timeout
            Timeout on operation.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        msg = f"Updating {self._kind} status"
        self._logger.debug(msg, name=name, namespace=namespace)
        body = [{"op": "add", "path": "/status", "value": status}]
        try:
            await self._api.patch_namespaced_custom_object_status(
                self._group,
                self._version,
                namespace,
                self._plural,
                name,
                body,
                _request_timeout=timeout.left(),
            )
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error updating object status",
                e,
                kind=self._kind,
                namespace=namespace,
                name=name,
            ) from e

    async def read(
        self, name: str, namespace: str, timeout: Timeout
    ) -> dict[str, Any] | None:
        """Read a custom object.

        Parameters
        ----------
        name
            Name of the custom object.
        namespace
            Namespace of the custom object.
        timeout
            Timeout on operation.

        Returns
        -------
        dict or None
            Custom object, or `None` if it does not exist.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        try:
            return await self._api.get_namespaced_custom_object(
                self._group,
                self._version,
                namespace,
                self._plural,
                name,
                _request_timeout=timeout.left(),
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise KubernetesError.from_exception(
                "Error reading object",
                e,
                kind=self._kind,
                namespace=namespace,
                name=name,
            ) from e

    async def watch(
        self, namespace: str | None
    ) -> AsyncIterator[WatchEvent[dict[str, Any]]]:
        """Watch custom objects until cancelled.

        Parameters
        ----------
        namespace
            Namespace to watch, or `None` to watch all namespaces.

        Yields
        ------
        WatchEvent
            Next event.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        if namespace:
            method = self._api.list_namespaced_custom_object
        else:
            method = self._api.list_cluster_custom_object
        watcher = KubernetesWatcher(
            method=method,
            object_type=dict[str, Any],
            kind=self._kind,
            namespace=namespace,
            group=self._group,
            version=self._version,
            plural=self._plural,
            logger=self._logger,
        )
        try:
            async for event in watcher.watch():
                yield event
        finally:
            await watcher.close()


class TenantStorage(CustomStorage):
    """Storage layer for ``Tenant`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        super().__init__(
            api_client=api_client,
            group=TENANT_GROUP,
            version=TENANT_VERSION,
            plural=TENANT_PLURAL,
            kind=TENANT_KIND,
            logger=logger,
        )
