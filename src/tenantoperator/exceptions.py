"""Exceptions for the tenant operator."""

from __future__ import annotations

from datetime import datetime
from typing import Self, override

from kubernetes_asyncio.client import ApiException
from pydantic import ValidationError
from safir.datetime import format_datetime_for_logging
from safir.slack.blockkit import (
    SlackCodeBlock,
    SlackException,
    SlackMessage,
    SlackTextBlock,
    SlackTextField,
)
from safir.slack.sentry import SentryEventInfo

__all__ = [
    "ControllerTimeoutError",
    "InvalidTenantError",
    "KubernetesError",
]


class ControllerTimeoutError(SlackException):
    """An operation on a tenant ran out of time.

    Raised in place of `TimeoutError` so that alerts name the operation and
    the tenant.

    Parameters
    ----------
    operation
        Operation that timed out.
    tenant
        Tenant (as ``namespace/name``) associated with operation, if any.
    started_at
        Start time of the operation.
    failed_at
        Time at which the operation timed out.
    """

    def __init__(
        self,
        operation: str,
        tenant: str | None = None,
        *,
        started_at: datetime,
        failed_at: datetime,
    ) -> None:
        self.tenant = tenant
        self.started_at = started_at
        self.elapsed = failed_at - started_at
        seconds = self.elapsed.total_seconds()
        super().__init__(
            f"{operation} timed out after {seconds}s", failed_at=failed_at
        )

    @override
    def to_slack(self) -> SlackMessage:
        message = super().to_slack()
        started_at = format_datetime_for_logging(self.started_at)
        message.fields.append(
            SlackTextField(heading="Started at", text=started_at)
        )
        if self.tenant:
            field = SlackTextField(heading="Tenant", text=self.tenant)
            message.fields.append(field)
        return message

    @override
    def to_sentry(self) -> SentryEventInfo:
        info = super().to_sentry()
        context = info.contexts.setdefault("info", {})
        context["started_at"] = format_datetime_for_logging(self.started_at)
        context["elapsed"] = self.elapsed.total_seconds()
        if self.tenant:
            info.tags["tenant"] = self.tenant
        return info


class InvalidTenantError(SlackException):
    """The ``Tenant`` object failed validation.

    This is a fatal error for the current generation of the object. It is
    reported in the object status and the tenant is not retried until its
    specification changes.

    Parameters
    ----------
    message
        Summary error message.
    error
        Detailed error message, possibly multi-line.
    """

    @classmethod
    def from_exception(cls, exc: ValidationError) -> Self:
        """Create an exception from a Pydantic parse failure.

        Parameters
        ----------
        exc
            Pydantic exception.

        Returns
        -------
        InvalidTenantError
            Constructed exception.
        """
        errors = []
        for error in exc.errors():
            location = ".".join(str(p) for p in error["loc"])
            if location:
                errors.append(f"{location}: {error['msg']}")
            else:
                errors.append(error["msg"])
        return cls("Invalid Tenant specification", "; ".join(errors))

    def __init__(self, message: str, error: str) -> None:
        super().__init__(message)
        self.message = message
        self.error = error

    @override
    def __str__(self) -> str:
        return f"{self.message}: {self.error}"

    @override
    def to_slack(self) -> SlackMessage:
        """Convert to a Slack message for Slack alerting.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting as an alert.
        """
        message = super().to_slack()
        message.message = self.message
        block = SlackCodeBlock(heading="Error", code=self.error)
        message.blocks.append(block)
        return message


class KubernetesError(SlackException):
    """An API call to Kubernetes failed.

    Parameters
    ----------
    message
        Summary of error.
    kind
        Kind of object being acted on.
    namespace
        Namespace of object being acted on, if any.
    name
        Name of object being acted on, if the call was for one object.
    status
        Status code of failure, if any.
    body
        Body of failure message, if any.
    """

    @classmethod
    def from_exception(
        cls,
        message: str,
        exc: ApiException,
        *,
        kind: str,
        namespace: str | None = None,
        name: str | None = None,
    ) -> Self:
        """Create an exception from a Kubernetes API exception.

        The body of the API response is used as the error detail, falling
        back on the reason if there is no body.
        """
        return cls(
            message,
            kind=kind,
            namespace=namespace,
            name=name,
            status=exc.status,
            body=exc.body or exc.reason,
        )

    def __init__(
        self,
        message: str,
        *,
        kind: str,
        namespace: str | None = None,
        name: str | None = None,
        status: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.namespace = namespace
        self.name = name
        self.status = status
        self.body = body

    @property
    def target(self) -> str:
        """Description of the object or objects the call was for."""
        if self.name:
            prefix = f"{self.namespace}/" if self.namespace else ""
            return f"{self.kind} {prefix}{self.name}"
        if self.namespace:
            return f"{self.kind} in {self.namespace}"
        return self.kind

    @override
    def __str__(self) -> str:
        summary = self._summary()
        return f"{summary}: {self.body}" if self.body else summary

    @override
    def to_slack(self) -> SlackMessage:
        message = super().to_slack()
        message.message = self._summary()
        if self.status:
            field = SlackTextField(heading="Status", text=str(self.status))
            message.fields.append(field)
        block = SlackTextBlock(heading="Object", text=self.target)
        message.blocks.append(block)
        if self.body:
            code = SlackCodeBlock(heading="Error", code=self.body)
            message.blocks.append(code)
        return message

    @override
    def to_sentry(self) -> SentryEventInfo:
        info = super().to_sentry()
        info.tags["kind"] = self.kind
        tags = {"namespace": self.namespace, "name": self.name}
        info.tags.update({k: v for k, v in tags.items() if v})
        if self.status:
            info.tags["status"] = str(self.status)
        if self.body:
            info.attachments["body"] = self.body
        return info

    def _summary(self) -> str:
        details = [self.target]
        if self.status:
            details.append(f"status {self.status}")
        return f"{self.message} ({', '.join(details)})"
