"""Watch a Kubernetes namespace or cluster for events."""

from __future__ import annotations

import asyncio
import math
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Self

from kubernetes_asyncio.client import ApiException
from kubernetes_asyncio.watch import Watch
from safir.datetime import current_datetime
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError
from ...models.domain.kubernetes import WatchEventType

__all__ = [
    "KubernetesWatcher",
    "WatchEvent",
]


@dataclass
class WatchEvent[T]:
    """Parsed event from a Kubernetes watch.

    This model is intended only for use within the Kubernetes storage layer
    and the operator's watch loops.
    """

    action: WatchEventType
    """Action the event represents."""

    object: T
    """Affected Kubernetes object."""

    @classmethod
    def from_event(cls, event: dict[str, Any], object_type: type[T]) -> Self:
        """Create a `WatchEvent` from a watch event.

        Parameters
        ----------
        event
            Event as returned by the Kubernetes watch API.
        object_type
            Expected type of the object.

        Raises
        ------
        TypeError
            Raised if the type of the object in the watch event was incorrect.
        """
        action = WatchEventType(event["type"])
        if object_type.__name__ == "dict":
            return cls(action=action, object=event["raw_object"])
        obj = event["object"]
        if not isinstance(obj, object_type):
            real_type = type(obj).__name__
            expected_type = object_type.__name__
            msg = f"Watch object was of type {real_type}, not {expected_type}"
            raise TypeError(msg)
        return cls(action=action, object=obj)


class KubernetesWatcher[T]:
    """Watch Kubernetes for events.

    This wrapper around the watch API of the Kubernetes client implements
    retries and resource version handling. Without a timeout, the watch runs
    until stopped, transparently restarting whenever the server closes it.

    This class is not meant to be used directly by code outside of the
    Kubernetes storage layer. Use the ``watch`` method of the kind-specific
    storage classes instead.

    Parameters
    ----------
    method
        API list method that supports the watch API.
    object_type
        Type of object being watched. This cannot be autodiscovered from the
        method and must match the type of object returned by the method. For
        custom objects, this should be a `dict` type.
    kind
        Kubernetes kind of object being watched, for error reporting.
    namespace
        Namespace to watch. If not given, the method must be one that lists
        objects across all namespaces.
    label_selector
        Only watch objects matching this label selector.
    group
        Group of custom object.
    version
        Version of custom object.
    plural
        Plural of custom object.
    resource_version
        Resource version at which to start the watch.
    timeout
        Timeout for the watch, or `None` to watch until stopped.
    logger
        Logger to use.

    Raises
    ------
    ValueError
        Raised if ``timeout`` is specified but is less than zero.
    """

    def __init__(
        self,
        *,
        method: Callable[..., Awaitable[Any]],
        object_type: type[T],
        kind: str,
        namespace: str | None = None,
        label_selector: str | None = None,
        group: str | None = None,
        version: str | None = None,
        plural: str | None = None,
        resource_version: str | None = None,
        timeout: timedelta | None = None,
        logger: BoundLogger,
    ) -> None:
        self._method = method
        self._type = object_type
        self._kind = kind
        self._namespace = namespace
        self._logger = logger
        self._timeout = timeout
        self._stopped = False

        # Build the arguments to the method being watched.
        if timeout:
            timeout_seconds = int(math.ceil(timeout.total_seconds()))
            if timeout_seconds <= 0:
                raise ValueError("Watch timeout specified but <= 0")
        args = {
            "label_selector": label_selector,
            "group": group,
            "version": version,
            "plural": plural,
            "namespace": namespace,
            "resource_version": resource_version,
            "timeout_seconds": timeout_seconds if timeout else None,
            "_request_timeout": timeout_seconds if timeout else None,
        }
        self._args = {k: v for k, v in args.items() if v is not None}
        self._watch = Watch(return_type=object_type)

    async def close(self) -> None:
        """Close the internal API client used by the watch API."""
        self._watch.stop()
        await self._watch.close()

    def stop(self) -> None:
        """Stop a watch in progress."""
        self._watch.stop()
        self._stopped = True

    async def watch(self) -> AsyncIterator[WatchEvent[T]]:
        """Watch Kubernetes for events.

        If we started watching with a specific resource version, that resource
        version may be too old to still be known to Kubernetes, in which case
        the API call returns a 410 error and we should retry without a
        resource version. This is handled automatically. Events that arrive
        between the error and the retry may be missed, which the periodic
        resync of the operator covers.

        Yields
        ------
        WatchEvent
            Parsed event.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server during the
            watch.
        TimeoutError
            Raised if the timeout was reached.
        """
        args = self._args.copy()
        start = current_datetime(microseconds=True)
        while True:
            try:
                async with self._watch.stream(self._method, **args) as s:
                    async for event in s:
                        parsed = WatchEvent.from_event(event, self._type)
                        version = _resource_version(parsed.object)
                        if version:
                            args["resource_version"] = version
                        yield parsed

                # Server timeouts just end the iterator, as does calling
                # stop. Without a timeout of our own, resume from the last
                # resource version seen.
                if self._stopped:
                    break
                if not self._timeout:
                    continue
                elapsed = current_datetime(microseconds=True) - start
                if elapsed + timedelta(seconds=1) < self._timeout:
                    new_timeout = self._timeout - elapsed
                    new_timeout_seconds = int(new_timeout.total_seconds())
                    args["timeout_seconds"] = new_timeout_seconds
                    args["_request_timeout"] = new_timeout_seconds
                    continue
                elapsed_seconds = elapsed.total_seconds()
                msg = f"Event watch timed out after {elapsed_seconds}s"
                raise TimeoutError(msg)
            except ApiException as e:
                if e.status == 410 and "resource_version" in args:
                    version = args["resource_version"]
                    msg = f"Resource version {version} expired, retrying watch"
                    self._logger.info(msg)
                    del args["resource_version"]
                    continue

                # Kubernetes may also return 410 when no resource version was
                # set if there are long delays between events. Retry, but
                # wait one second so that we don't spam the control plane.
                if e.status == 410:
                    msg = "Watch expired (no resource version), retrying"
                    self._logger.info(msg)
                    await asyncio.sleep(1)
                    continue

                raise KubernetesError.from_exception(
                    "Error watching objects",
                    e,
                    kind=self._kind,
                    namespace=self._namespace,
                ) from e


def _resource_version(obj: Any) -> str | None:
    """Extract the resource version from a watched object."""
    if isinstance(obj, dict):
        return obj.get("metadata", {}).get("resourceVersion")
    metadata = getattr(obj, "metadata", None)
    return metadata.resource_version if metadata else None
