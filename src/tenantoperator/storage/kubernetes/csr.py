"""Storage layer for ``CertificateSigningRequest`` objects."""

from __future__ import annotations

from kubernetes_asyncio import client
from kubernetes_asyncio.client import (
    ApiClient,
    ApiException,
    V1CertificateSigningRequest,
)
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError
from ...timeout import Timeout

__all__ = ["CertificateSigningRequestStorage"]


class CertificateSigningRequestStorage:
    """Storage layer for ``CertificateSigningRequest`` objects.

    Certificate signing requests are cluster-scoped, so unlike the other
    storage classes none of these methods take a namespace, and objects are
    created without an owner reference.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        self._api = client.CertificatesV1Api(api_client)
        self._logger = logger

    async def create(
        self, body: V1CertificateSigningRequest, timeout: Timeout
    ) -> bool:
        """Submit a certificate signing request.

        Parameters
        ----------
        body
            Request to submit.
        timeout
            Timeout on operation.

        Returns
        -------
        bool
            `True` if the request was created, `False` if a request of that
            name already existed.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        name = body.metadata.name
        self._logger.debug("Creating CertificateSigningRequest", name=name)
        try:
            await self._api.create_certificate_signing_request(
                body, _request_timeout=timeout.left()
            )
        except ApiException as e:
            if e.status == 409:
                return False
            raise KubernetesError.from_exception(
                "Error creating object",
                e,
                kind="CertificateSigningRequest",
                name=name,
            ) from e
        return True

    async def delete(self, name: str, timeout: Timeout) -> None:
        """Delete a certificate signing request.

        If the request does not exist, this is silently treated as success.

        Parameters
        ----------
        name
            Name of the request.
        timeout
            Timeout on operation.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        self._logger.debug("Deleting CertificateSigningRequest", name=name)
        try:
            await self._api.delete_certificate_signing_request(
                name, _request_timeout=timeout.left()
            )
        except ApiException as e:
            if e.status == 404:
                return
            raise KubernetesError.from_exception(
                "Error deleting object",
                e,
                kind="CertificateSigningRequest",
                name=name,
            ) from e

    async def list(
        self, timeout: Timeout, *, label_selector: str | None = None
    ) -> list[V1CertificateSigningRequest]:
        """List certificate signing requests.

        Parameters
        ----------
        timeout
            Timeout on operation.
        label_selector
            Filter the returned list by the given label selector expression.

        Returns
        -------
        list of kubernetes_asyncio.client.V1CertificateSigningRequest
            Matching requests.

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
            objs = await self._api.list_certificate_signing_request(
                **extra_args
            )
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error listing objects", e, kind="CertificateSigningRequest"
            ) from e
        return objs.items

    async def read(
        self, name: str, timeout: Timeout
    ) -> V1CertificateSigningRequest | None:
        """Read a certificate signing request.

        Parameters
        ----------
        name
            Name of the request.
        timeout
            Timeout on operation.

        Returns
        -------
        kubernetes_asyncio.client.V1CertificateSigningRequest or None
            Request, or `None` if it does not exist.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        try:
            return await self._api.read_certificate_signing_request(
                name, _request_timeout=timeout.left()
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise KubernetesError.from_exception(
                "Error reading object",
                e,
                kind="CertificateSigningRequest",
                name=name,
            ) from e
