"""Tests for exceptions."""

from __future__ import annotations

import datetime

import pytest
from kubernetes_asyncio.client import ApiException
from pydantic import ValidationError
from safir.datetime import format_datetime_for_logging

from tenantoperator.exceptions import (
    ControllerTimeoutError,
    InvalidTenantError,
    KubernetesError,
)
from tenantoperator.models.v1.tenant import Pool


def test_controller_timeout_error_slack() -> None:
    started_at = datetime.datetime(2001, 11, 30, tzinfo=datetime.UTC)
    failed_at = datetime.datetime(2001, 12, 30, tzinfo=datetime.UTC)

    error = ControllerTimeoutError(
        "Reconcile",
        "tenants/storage",
        started_at=started_at,
        failed_at=failed_at,
    )

    slack = error.to_slack().to_slack()
    assert slack == {
        "blocks": [
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": "Reconcile timed out after 2592000.0s",
                    "verbatim": True,
                },
            },
            {
                "type": "section",
                "fields": [
                    {
                        "type": "mrkdwn",
                        "text": "*Exception type*\nControllerTimeoutError",
                        "verbatim": True,
                    },
                    {
                        "type": "mrkdwn",
                        "text": "*Failed at*\n2001-12-30 00:00:00",
                        "verbatim": True,
                    },
                    {
                        "type": "mrkdwn",
                        "text": "*Started at*\n2001-11-30 00:00:00",
                        "verbatim": True,
                    },
                    {
                        "type": "mrkdwn",
                        "text": "*Tenant*\ntenants/storage",
                        "verbatim": True,
                    },
                ],
            },
            {"type": "divider"},
        ]
    }


def test_controller_timeout_error_sentry() -> None:
    started_at = datetime.datetime(2001, 11, 30, tzinfo=datetime.UTC)
    failed_at = datetime.datetime(2001, 12, 30, tzinfo=datetime.UTC)

    error = ControllerTimeoutError(
        "Reconcile",
        "tenants/storage",
        started_at=started_at,
        failed_at=failed_at,
    )

    sentry = error.to_sentry()
    assert sentry.tags["tenant"] == "tenants/storage"
    assert sentry.contexts["info"]["elapsed"] == 2592000.0
    assert sentry.contexts["info"]["started_at"] == (
        format_datetime_for_logging(started_at)
    )


def test_invalid_tenant_error() -> None:
    with pytest.raises(ValidationError) as excinfo:
        Pool.model_validate(
            {"name": "pool-0", "servers": 4, "volumes": 6, "capacity": "6Ti"}
        )
    error = InvalidTenantError.from_exception(excinfo.value)
    assert error.message == "Invalid Tenant specification"
    assert "volumes (6) must be a multiple of servers (4)" in error.error
    assert str(error).startswith("Invalid Tenant specification: ")


def test_kubernetes_error() -> None:
    exc = ApiException(status=500, reason="Internal error")
    error = KubernetesError.from_exception(
        "Error creating object",
        exc,
        kind="Service",
        namespace="tenants",
        name="minio",
    )
    assert error.status == 500
    assert str(error) == (
        "Error creating object (Service tenants/minio, status 500):"
        " Internal error"
    )

    sentry = error.to_sentry()
    assert sentry.tags["status"] == "500"
    assert sentry.tags["kind"] == "Service"
    assert sentry.tags["namespace"] == "tenants"

    error = KubernetesError("Error listing objects", kind="Tenant")
    assert str(error) == "Error listing objects (Tenant)"

    error = KubernetesError(
        "Error listing objects", kind="Secret", namespace="tenants"
    )
    assert error.target == "Secret in tenants"
    assert str(error) == "Error listing objects (Secret in tenants)"


def test_kubernetes_error_slack() -> None:
    exc = ApiException(status=404, reason="Not found")
    error = KubernetesError.from_exception(
        "Error reading object",
        exc,
        kind="CertificateSigningRequest",
        name="storage-tenants-csr",
    )
    assert error.target == "CertificateSigningRequest storage-tenants-csr"

    message = error.to_slack()
    assert message.message == (
        "Error reading object (CertificateSigningRequest"
        " storage-tenants-csr, status 404)"
    )
    headings = [f.heading for f in message.fields]
    assert headings == ["Exception type", "Failed at", "Status"]
    assert [b.heading for b in message.blocks] == ["Object", "Error"]

    sentry = error.to_sentry()
    assert sentry.tags["name"] == "storage-tenants-csr"
    assert "namespace" not in sentry.tags
    assert sentry.attachments["body"] == "Not found"
