"""Global configuration parsing."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Annotated, Self

import yaml
from pydantic import AliasChoices, Field, SecretStr, model_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict
from safir.logging import LogLevel, Profile
from safir.pydantic import HumanTimedelta

__all__ = ["Config"]


class Config(BaseSettings):
    """Tenant operator configuration."""

    model_config = SettingsConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    name: Annotated[
        str,
        Field(
            title="Name of application",
            description="Used when reporting problems to Slack",
        ),
    ] = "tenant-operator"

    path_prefix: Annotated[
        str, Field(title="URL prefix for the operator API")
    ] = "/tenant-operator"

    log_level: Annotated[
        LogLevel,
        Field(
            title="Log level",
            description="Python logging level",
            examples=[LogLevel.INFO],
        ),
    ] = LogLevel.INFO

    profile: Annotated[
        Profile,
        Field(
            title="Application logging profile",
            description=(
                "``production`` uses JSON logging. ``development`` uses"
                " logging that may be easier for humans to read but that"
                " cannot be easily parsed by computers."
            ),
            examples=[Profile.development],
        ),
    ] = Profile.production

    slack_webhook: Annotated[
        SecretStr | None,
        Field(
            title="Slack webhook for alerts",
            description=(
                "If set, failed reconciles and any uncaught exceptions in the"
                " operator will be reported to Slack via this webhook"
            ),
            validation_alias=AliasChoices(
                "TENANT_OPERATOR_SLACK_WEBHOOK", "slackWebhook"
            ),
        ),
    ] = None

    namespace: Annotated[
        str | None,
        Field(
            title="Namespace to watch",
            description=(
                "If set, only tenants in this namespace are reconciled."
                " Otherwise, tenants in all namespaces are watched."
            ),
        ),
    ] = None

    workers: Annotated[
        int,
        Field(
            title="Number of reconcile workers",
            description=(
                "Different tenants are reconciled in parallel up to this"
                " limit. A single tenant is never reconciled concurrently."
            ),
            ge=1,
        ),
    ] = 4

    cluster_domain: Annotated[
        str, Field(title="Cluster DNS domain")
    ] = "cluster.local"

    init_container_image: Annotated[
        str,
        Field(
            title="Init container image",
            description=(
                "Image used by the init containers that wait for volumes,"
                " certificates, and DNS. Must provide ``sh``, ``stat``,"
                " ``cat``, and ``nslookup``."
            ),
        ),
    ] = "busybox:1.33.1"

    csr_signer_name: Annotated[
        str,
        Field(
            title="CSR signer name",
            description="``signerName`` of submitted certificate requests",
        ),
    ] = "kubernetes.io/kubelet-serving"

    csr_organization: Annotated[
        str,
        Field(
            title="CSR subject organization",
            description="Organization in the subject of certificate requests",
        ),
    ] = "system:nodes"

    csr_poll_interval: Annotated[
        HumanTimedelta,
        Field(
            title="Certificate request poll interval",
            description=(
                "How soon to revisit a tenant while one of its certificate"
                " requests is waiting for approval"
            ),
        ),
    ] = timedelta(seconds=10)

    csr_approval_timeout: Annotated[
        HumanTimedelta,
        Field(
            title="Certificate approval timeout",
            description=(
                "How long a certificate request may wait for approval before"
                " the tenant is reported as blocked"
            ),
        ),
    ] = timedelta(minutes=30)

    certificate_renewal_window: Annotated[
        HumanTimedelta,
        Field(
            title="Certificate renewal window",
            description=(
                "Issue a replacement for an operator-issued certificate once"
                " it is within this long of expiring"
            ),
        ),
    ] = timedelta(days=30)

    blocked_retry_interval: Annotated[
        HumanTimedelta,
        Field(
            title="Blocked tenant retry interval",
            description=(
                "How often to revisit a tenant whose certificate request was"
                " denied or timed out"
            ),
        ),
    ] = timedelta(minutes=5)

    resync_interval: Annotated[
        HumanTimedelta,
        Field(
            title="Full resync interval",
            description="How often every tenant is queued for reconcile",
        ),
    ] = timedelta(minutes=10)

    backoff_base: Annotated[
        HumanTimedelta,
        Field(
            title="Initial retry delay",
            description="Delay before the first retry of a failed reconcile",
        ),
    ] = timedelta(seconds=1)

    backoff_max: Annotated[
        HumanTimedelta,
        Field(
            title="Maximum retry delay",
            description=(
                "Upper bound of the exponential backoff between retries of a"
                " failing reconcile"
            ),
        ),
    ] = timedelta(minutes=5)

    reconcile_timeout: Annotated[
        HumanTimedelta,
        Field(
            title="Reconcile timeout",
            description=(
                "Total time allowed for all Kubernetes API calls made by a"
                " single reconcile attempt"
            ),
        ),
    ] = timedelta(minutes=2)

    @model_validator(mode="after")
    def _validate_backoff(self) -> Self:
        if self.backoff_max < self.backoff_base:
            raise ValueError("backoffMax must not be less than backoffBase")
        return self

    @classmethod
    def from_file(cls, path: Path) -> Self:
        """Load the operator configuration from a YAML file.

        Parameters
        ----------
        path
            Path to the configuration file.
        """
        with path.open("r") as f:
            return cls.model_validate(yaml.safe_load(f) or {})
