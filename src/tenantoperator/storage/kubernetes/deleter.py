"""Generic Kubernetes object storage including list, delete, and watch.

Provides a generic Kubernetes object management class and instantiations of
that class for Kubernetes object types that support list, delete, and watch
as well as the create, read, and patch operations provided by the
superclass.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from kubernetes_asyncio import client
from kubernetes_asyncio.client import (
    ApiClient,
    ApiException,
    V1Deployment,
    V1Secret,
    V1StatefulSet,
)
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError
from ...models.domain.kubernetes import KubernetesModel
from ...timeout import Timeout
from .creator import KubernetesObjectCreator
from .watcher import KubernetesWatcher, WatchEvent

__all__ = [
    "DeploymentStorage",
    "KubernetesObjectDeleter",
    "SecretStorage",
    "StatefulSetStorage",
]


class KubernetesObjectDeleter[T: KubernetesModel](KubernetesObjectCreator[T]):
    """Generic Kubernetes object storage supporting list, delete, and watch.

    This class is not meant to be used directly by code outside of the
    Kubernetes storage layer. Use one of the kind-specific storage classes
    built on top of it instead.

    Parameters
    ----------
    create_method
        Method to create this type of object.
    delete_method
        Method to delete this type of object.
    list_method
        Method to list all of this type of object in a namespace.
    list_all_method
        Method to list all of this type of object in all namespaces.
    patch_method
        Method to patch this type of object.
    read_method
        Method to read this type of object.
    object_type
        Type of object being acted on.
    kind
        Kubernetes kind of object being acted on.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        create_method: Callable[..., Awaitable[Any]],
        delete_method: Callable[..., Awaitable[Any]],
        list_method: Callable[..., Awaitable[Any]],
        list_all_method: Callable[..., Awaitable[Any]],
        patch_method: Callable[..., Awaitable[Any]],
        read_method: Callable[..., Awaitable[Any]],
        object_type: type[T],
        kind: str,
        logger: BoundLogger,
    ) -> None:
        super().__init__(
            create_method=create_method,
            patch_method=patch_method,
            read_method=read_method,
            object_type=object_type,
            kind=kind,
            logger=logger,
        )
        self._delete = delete_method
        self._list = list_method
        self._list_all = list_all_method

    async def delete(
        self, name: str, namespace: str, timeout: Timeout
    ) -> None:
        """Delete a Kubernetes object.

        If the object does not exist, this is silently treated as success.

        Parameters
        ----------
        name
            Name of the object.
        namespace
            Namespace of the object.
        timeout
            Timeout on operation.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        msg = f"Deleting {self._kind}"
        self._logger.debug(msg, name=name, namespace=namespace)
        try:
            await self._delete(
                name, namespace, _request_timeout=timeout.left()
            )
        except ApiException as e:
            if e.status == 404:
                return
            raise KubernetesError.from_exception(
                "Error deleting object",
                e,
                kind=self._kind,
                namespace=namespace,
                name=name,
            ) from e

    async def list(
        self,
        namespace: str,
        timeout: Timeout,
        *,
        label_selector: str | None = None,
    ) -> list[T]:
        """List all objects of the appropriate kind in the namespace.

        Parameters
        ----------
        namespace
            Namespace to list.
        timeout
            Timeout on operation.
        label_selector
            Filter the returned list by the given label selector expression.

        Returns
        -------
        list
            List of objects found.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        extra_args: dict[str, str | float] = {
            "_request_timeout": timeout.left()
        }
        if label_selector:
            extra_args["label_selector"] = label_selector
        try:
            objs = await self._list(namespace, **extra_args)
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error listing objects",
                e,
                kind=self._kind,
                namespace=namespace,
            ) from e
        return objs.items

    async def watch(
        self, namespace: str | None, *, label_selector: str | None = None
    ) -> AsyncIterator[WatchEvent[T]]:
        """Watch objects of the appropriate kind until cancelled.

        Parameters
        ----------
        namespace
            Namespace to watch, or `None` to watch all namespaces.
        label_selector
            Only watch objects matching this label selector.

        Yields
        ------
        WatchEvent
            Next event.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        watcher = KubernetesWatcher(
            method=self._list if namespace else self._list_all,
            object_type=self._type,
            kind=self._kind,
            namespace=namespace,
            label_selector=label_selector,
            logger=self._logger,
        )
        try:
            async for event in watcher.watch():
                yield event
        finally:
            await watcher.close()


class DeploymentStorage(KubernetesObjectDeleter[V1Deployment]):
    """Storage layer for ``Deployment`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        api = client.AppsV1Api(api_client)
        super().__init__(
            create_method=api.create_namespaced_deployment,
            delete_method=api.delete_namespaced_deployment,
            list_method=api.list_namespaced_deployment,
            list_all_method=api.list_deployment_for_all_namespaces,
            patch_method=api.patch_namespaced_deployment,
            read_method=api.read_namespaced_deployment,
            object_type=V1Deployment,
            kind="Deployment",
            logger=logger,
        )


class SecretStorage(KubernetesObjectDeleter[V1Secret]):
    """Storage layer for ``Secret`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        api = client.CoreV1Api(api_client)
        super().__init__(
            create_method=api.create_namespaced_secret,
            delete_method=api.delete_namespaced_secret,
            list_method=api.list_namespaced_secret,
            list_all_method=api.list_secret_for_all_namespaces,
            patch_method=api.patch_namespaced_secret,
            read_method=api.read_namespaced_secret,
            object_type=V1Secret,
            kind="Secret",
            logger=logger,
        )


class StatefulSetStorage(KubernetesObjectDeleter[V1StatefulSet]):
    """Storage layer for ``StatefulSet`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        api = client.AppsV1Api(api_client)
        super().__init__(
            create_method=api.create_namespaced_stateful_set,
            delete_method=api.delete_namespaced_stateful_set,
            list_method=api.list_namespaced_stateful_set,
            list_all_method=api.list_stateful_set_for_all_namespaces,
            patch_method=api.patch_namespaced_stateful_set,
            read_method=api.read_namespaced_stateful_set,
            object_type=V1StatefulSet,
            kind="StatefulSet",
            logger=logger,
        )
