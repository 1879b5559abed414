"""Generic Kubernetes object storage supporting create, read, and patch.

Provides a generic Kubernetes object management class implementing the
operations the reconciler needs to bring an object to its desired state:
create (attaching the owner reference of the tenant), read, and JSON patch
of individual fields. Storage classes for object types that only need those
operations are provided here.

For object types that also need list, delete, or watch, see
`~tenantoperator.storage.kubernetes.deleter.KubernetesObjectDeleter`.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from kubernetes_asyncio import client
from kubernetes_asyncio.client import (
    ApiClient,
    ApiException,
    V1OwnerReference,
    V1Service,
)
from structlog.stdlib import BoundLogger

from ...constants import TENANT_GROUP, TENANT_KIND, TENANT_VERSION
from ...exceptions import KubernetesError
from ...models.domain.drift import FieldDrift
from ...models.domain.kubernetes import KubernetesModel
from ...models.v1.tenant import Tenant
from ...timeout import Timeout

__all__ = [
    "KubernetesObjectCreator",
    "ServiceStorage",
    "build_owner_reference",
]


def build_owner_reference(tenant: Tenant) -> V1OwnerReference:
    """Construct the controller owner reference pointing at a tenant.

    Objects carrying this reference are garbage-collected by Kubernetes when
    the tenant is deleted.

    Parameters
    ----------
    tenant
        Owning tenant.

    Returns
    -------
    kubernetes_asyncio.client.V1OwnerReference
        Owner reference.
    """
    return V1OwnerReference(
        api_version=f"{TENANT_GROUP}/{TENANT_VERSION}",
        kind=TENANT_KIND,
        name=tenant.name,
        uid=tenant.uid,
        controller=True,
        block_owner_deletion=True,
    )


class KubernetesObjectCreator[T: KubernetesModel]:
    """Generic Kubernetes object storage supporting create, read, and patch.

    This class provides a wrapper around any Kubernetes object type that
    implements create, read, and patch operations with logging and exception
    conversion.

    This class is not meant to be used directly by code outside of the
    Kubernetes storage layer. Use one of the kind-specific storage classes
    built on top of it instead.

    Parameters
    ----------
    create_method
        Method to create this type of object.
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
        patch_method: Callable[..., Awaitable[Any]],
        read_method: Callable[..., Awaitable[Any]],
        object_type: type[T],
        kind: str,
        logger: BoundLogger,
    ) -> None:
        self._create = create_method
        self._patch = patch_method
        self._read = read_method
        self._type = object_type
        self._kind = kind
        self._logger = logger

    async def create(
        self,
        namespace: str,
        body: T,
        timeout: Timeout,
        *,
        owner: Tenant | None = None,
    ) -> None:
        """Create a new Kubernetes object.

        Parameters
        ----------
        namespace
            Namespace of the object.
        body
            New object.
        timeout
            Timeout on operation.
        owner
            If given, tenant to set as the controlling owner of the object.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        if owner:
            body.metadata.owner_references = [build_owner_reference(owner)]
        msg = f"Creating {self._kind}"
        self._logger.debug(msg, name=body.metadata.name, namespace=namespace)
        try:
            await self._create(
                namespace, body, _request_timeout=timeout.left()
            )
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error creating object",
                e,
                kind=self._kind,
                namespace=namespace,
                name=body.metadata.name,
            ) from e

    async def ensure_exists(
        self, namespace: str, body: T, owner: Tenant, timeout: Timeout
    ) -> bool:
        """Create an object owned by a tenant if it does not exist.

        An object of the same name that already exists is treated as success
        and left unchanged.

        Parameters
        ----------
        namespace
            Namespace of the object.
        body
            New object.
        owner
            Tenant to set as the controlling owner of the object.
        timeout
            Timeout on operation.

        Returns
        -------
        bool
            `True` if the object was created, `False` if it already existed.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        try:
            await self.create(namespace, body, timeout, owner=owner)
        except KubernetesError as e:
            if e.status == 409:
                msg = f"{self._kind} already exists"
                name = body.metadata.name
                self._logger.debug(msg, name=name, namespace=namespace)
                return False
            raise
        return True

    async def patch(
        self,
        name: str,
        namespace: str,
        drifts: list[FieldDrift],
        timeout: Timeout,
    ) -> None:
        """Update the given fields of an object with a JSON patch.

        Parameters
        ----------
        name
            Name of the object.
        namespace
            Namespace of the object.
        drifts
            Fields to update and their desired values. Fields present on the
            object are replaced and others are added.
        timeout
            Timeout on operation.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        body = [
            {
                "op": "replace" if d.present else "add",
                "path": d.path,
                "value": d.value,
            }
            for d in drifts
        ]
        paths = [d.path for d in drifts]
        msg = f"Patching {self._kind}"
        self._logger.debug(msg, name=name, namespace=namespace, paths=paths)
        try:
            await self._patch(
                name, namespace, body, _request_timeout=timeout.left()
            )
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error patching object",
                e,
                kind=self._kind,
                namespace=namespace,
                name=name,
            ) from e

    async def read(
        self, name: str, namespace: str, timeout: Timeout
    ) -> T | None:
        """Read a Kubernetes object.

        Parameters
        ----------
        name
            Name of the object.
        namespace
            Namespace of the object.
        timeout
            Timeout on operation.

        Returns
        -------
        typing.Any or None
            Kubernetes object, or `None` if it does not exist.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        try:
            return await self._read(
                name, namespace, _request_timeout=timeout.left()
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


class ServiceStorage(KubernetesObjectCreator[V1Service]):
    """Storage layer for ``Service`` objects.

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
            create_method=api.create_namespaced_service,
            patch_method=api.patch_namespaced_service,
            read_method=api.read_namespaced_service,
            object_type=V1Service,
            kind="Service",
            logger=logger,
        )
