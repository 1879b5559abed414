"""Models for the ``Tenant`` custom resource."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Self

from kubernetes_asyncio.client import V1ResourceRequirements
from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from ...constants import (
    DEFAULT_CONSOLE_IMAGE,
    DEFAULT_KES_IMAGE,
    DEFAULT_KES_KEY_NAME,
    DEFAULT_MINIO_IMAGE,
    DEFAULT_MOUNT_PATH,
    KUBERNETES_NAME_PATTERN,
    RESERVED_ENV,
)
from ...units import bytes_to_quantity, quantity_to_bytes, quantity_to_decimal
from ..domain.kubernetes import PodManagementPolicy, PullPolicy, Toleration

__all__ = [
    "CertificateSecretType",
    "ConsoleConfig",
    "EnvVar",
    "ExternalCertificateSecret",
    "KESConfig",
    "Liveness",
    "LocalObjectReference",
    "Pool",
    "PoolState",
    "PoolStatus",
    "ResourceRequirements",
    "TLSConfig",
    "TLSMode",
    "Tenant",
    "TenantCondition",
    "TenantSpec",
    "TenantState",
    "TenantStatus",
]


class CamelCaseModel(BaseModel):
    """Base class for models read from the camel-case custom resource."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="ignore", populate_by_name=True
    )


def _validate_env_name(v: str) -> str:
    if v in RESERVED_ENV:
        raise ValueError(f"Environment variable {v} is set by the operator")
    return v


def _validate_quantities(v: dict[str, str] | None) -> dict[str, str] | None:
    if v:
        for resource, quantity in v.items():
            try:
                quantity_to_decimal(quantity)
            except ValueError as e:
                msg = f"Invalid quantity {quantity} for {resource}"
                raise ValueError(msg) from e
    return v


class TLSMode(Enum):
    """How TLS material for a tenant is provided."""

    NONE = "none"
    """Servers listen over plain HTTP."""

    AUTO_ISSUED = "auto-issued"
    """The operator issues certificates through the cluster CSR API."""

    EXTERNAL = "external"
    """Certificates are provided by the user in existing secrets."""


class CertificateSecretType(Enum):
    """Layout of an externally-provided certificate secret."""

    KUBERNETES_TLS = "kubernetes.io/tls"
    """Standard TLS secret with ``tls.crt`` and ``tls.key``."""

    CERT_MANAGER = "cert-manager.io/v1alpha2"
    """Secret written by cert-manager, which also carries ``ca.crt``."""

    OPAQUE = "Opaque"
    """Generic secret using ``public.crt`` and ``private.key``."""


class LocalObjectReference(CamelCaseModel):
    """Reference to an object in the tenant's namespace."""

    name: Annotated[
        str,
        Field(
            title="Name",
            description="Name of the referenced object",
            pattern=KUBERNETES_NAME_PATTERN,
        ),
    ]


class ExternalCertificateSecret(CamelCaseModel):
    """Reference to a user-provided certificate secret."""

    name: Annotated[
        str,
        Field(title="Secret name", pattern=KUBERNETES_NAME_PATTERN),
    ]

    type: Annotated[
        CertificateSecretType,
        Field(
            title="Secret layout",
            description="Determines which keys hold the certificate and key",
        ),
    ] = CertificateSecretType.KUBERNETES_TLS


class TLSConfig(CamelCaseModel):
    """TLS configuration of a tenant."""

    mode: Annotated[TLSMode, Field(title="TLS mode")] = TLSMode.NONE

    external_cert_secret: Annotated[
        ExternalCertificateSecret | None,
        Field(
            title="Server certificate secret",
            description="Required if mode is ``external``",
        ),
    ] = None

    external_client_cert_secret: Annotated[
        ExternalCertificateSecret | None,
        Field(
            title="Client certificate secret",
            description=(
                "Certificate the storage servers present to KES. Required if"
                " mode is ``external`` and KES is enabled."
            ),
        ),
    ] = None

    @model_validator(mode="after")
    def _validate_external(self) -> Self:
        if self.mode == TLSMode.EXTERNAL and not self.external_cert_secret:
            raise ValueError("externalCertSecret required with external TLS")
        return self

    @property
    def enabled(self) -> bool:
        """Whether the storage servers listen over HTTPS."""
        return self.mode != TLSMode.NONE


class ResourceRequirements(CamelCaseModel):
    """Resource requests and limits, as Kubernetes quantities."""

    limits: Annotated[
        dict[str, str] | None,
        Field(title="Maximum allowed resources"),
        AfterValidator(_validate_quantities),
    ] = None

    requests: Annotated[
        dict[str, str] | None,
        Field(title="Minimum requested resources"),
        AfterValidator(_validate_quantities),
    ] = None

    def to_kubernetes(self) -> V1ResourceRequirements:
        """Convert to the Kubernetes object representation."""
        return V1ResourceRequirements(
            limits=dict(self.limits) if self.limits else None,
            requests=dict(self.requests) if self.requests else None,
        )


class EnvVar(CamelCaseModel):
    """Extra environment variable for the storage servers."""

    name: Annotated[
        str, Field(title="Variable name"), AfterValidator(_validate_env_name)
    ]

    value: Annotated[str, Field(title="Variable value")] = ""


class Liveness(CamelCaseModel):
    """Liveness probe timings for the storage servers."""

    initial_delay_seconds: Annotated[int, Field(ge=0)] = 10

    period_seconds: Annotated[int, Field(ge=1)] = 1

    timeout_seconds: Annotated[int, Field(ge=1)] = 1


class KESConfig(CamelCaseModel):
    """Configuration for the KES key-management sidecar service."""

    image: Annotated[str, Field(title="KES image")] = DEFAULT_KES_IMAGE

    replicas: Annotated[int, Field(title="Number of KES replicas", ge=1)] = 2

    config_secret: Annotated[
        LocalObjectReference,
        Field(
            title="KES configuration secret",
            description="Secret holding ``server-config.yaml`` for KES",
        ),
    ]

    external_cert_secret: Annotated[
        ExternalCertificateSecret | None,
        Field(
            title="KES certificate secret",
            description="Required if the tenant TLS mode is ``external``",
        ),
    ] = None

    key_name: Annotated[
        str, Field(title="Name of the KMS key used by the storage servers")
    ] = DEFAULT_KES_KEY_NAME


class ConsoleConfig(CamelCaseModel):
    """Configuration for the management console deployment."""

    image: Annotated[str, Field(title="Console image")] = (
        DEFAULT_CONSOLE_IMAGE
    )

    replicas: Annotated[int, Field(title="Console replicas", ge=1)] = 2

    console_secret: Annotated[
        LocalObjectReference,
        Field(
            title="Console secret",
            description="Secret whose keys become console environment",
        ),
    ]

    resources: Annotated[
        ResourceRequirements | None, Field(title="Console resources")
    ] = None


def _first_present(data: dict[str, Any], name: str) -> Any:
    """Look up a pool field by alias or by attribute name."""
    alias = to_camel(name)
    if alias in data:
        return data[alias]
    return data.get(name)


def _integer_field(data: dict[str, Any], name: str) -> int | None:
    """Look up a pool count that other fields are derived from."""
    value = _first_present(data, name)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{to_camel(name)} ({value!r}) must be an integer")
    return value


def _quantity_field(data: dict[str, Any], name: str) -> str | None:
    """Look up a pool capacity that other fields are derived from."""
    value = _first_present(data, name)
    if value is None:
        return None
    if not isinstance(value, str):
        msg = f"{to_camel(name)} ({value!r}) must be a quantity string"
        raise ValueError(msg)
    return value



class Pool(CamelCaseModel):
    """One pool of identically-configured storage servers.

    Either the per-server volume count or the total volume count may be
    given, and either the per-volume capacity or the total capacity. The
    other value of each pair is derived, and must divide exactly.
    """

    name: Annotated[
        str, Field(title="Pool name", pattern=KUBERNETES_NAME_PATTERN)
    ]

    servers: Annotated[int, Field(title="Number of servers", ge=1)]

    volumes_per_server: Annotated[
        int, Field(title="Volumes attached to each server", ge=1)
    ]

    capacity_per_volume: Annotated[
        str, Field(title="Capacity of each volume", examples=["1Ti"])
    ]

    volumes: Annotated[
        int | None, Field(title="Total volumes in the pool", ge=1)
    ] = None

    capacity: Annotated[
        str | None, Field(title="Total raw capacity of the pool")
    ] = None

    storage_class_name: Annotated[
        str | None, Field(title="Storage class of the volume claims")
    ] = None

    resources: Annotated[
        ResourceRequirements | None, Field(title="Server resources")
    ] = None

    affinity: Annotated[
        dict[str, Any] | None,
        Field(
            title="Pod affinity",
            description="Passed through verbatim to the pod specification",
        ),
    ] = None

    tolerations: Annotated[
        list[Toleration], Field(title="Pod tolerations")
    ] = []

    node_selector: Annotated[
        dict[str, str], Field(title="Node selector")
    ] = {}

    @model_validator(mode="before")
    @classmethod
    def _derive_sizes(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        servers = _integer_field(data, "servers")
        if servers is None or servers < 1:
            return data

        # Volumes per server.
        per_server = _integer_field(data, "volumes_per_server")
        volumes = _integer_field(data, "volumes")
        if volumes is not None:
            if volumes % servers != 0:
                msg = (
                    f"volumes ({volumes}) must be a multiple of servers"
                    f" ({servers})"
                )
                raise ValueError(msg)
            if per_server is not None and per_server * servers != volumes:
                msg = (
                    f"volumesPerServer ({per_server}) times servers"
                    f" ({servers}) does not equal volumes ({volumes})"
                )
                raise ValueError(msg)
            per_server = volumes // servers
            data.pop("volumes_per_server", None)
            data["volumesPerServer"] = per_server
        elif per_server is None:
            raise ValueError("one of volumes or volumesPerServer is required")
        if per_server < 1:
            return data
        total_volumes = servers * per_server

        # Capacity per volume.
        capacity = _quantity_field(data, "capacity")
        per_volume = _quantity_field(data, "capacity_per_volume")
        if capacity is not None:
            total = quantity_to_bytes(capacity)
            if total <= 0 or total % total_volumes != 0:
                msg = (
                    f"capacity ({capacity}) must divide evenly across"
                    f" {total_volumes} volumes"
                )
                raise ValueError(msg)
            derived = total // total_volumes
            if per_volume is not None:
                if quantity_to_bytes(per_volume) != derived:
                    msg = (
                        f"capacityPerVolume ({per_volume}) does not match"
                        f" capacity ({capacity}) over {total_volumes} volumes"
                    )
                    raise ValueError(msg)
            else:
                data.pop("capacity_per_volume", None)
                data["capacityPerVolume"] = bytes_to_quantity(derived)
        elif per_volume is None:
            msg = "one of capacity or capacityPerVolume is required"
            raise ValueError(msg)
        return data

    @field_validator("capacity_per_volume")
    @classmethod
    def _validate_capacity(cls, v: str) -> str:
        if quantity_to_bytes(v) <= 0:
            raise ValueError("capacityPerVolume must be positive")
        return v

    @classmethod
    def from_totals(
        cls,
        name: str,
        *,
        servers: int,
        volumes: int,
        capacity: str,
        storage_class_name: str | None = None,
    ) -> Self:
        """Construct a pool from total volume count and total capacity.

        This is the form used when creating a tenant or adding a pool from
        the command line, where the user thinks in terms of totals.

        Parameters
        ----------
        name
            Name of the pool.
        servers
            Number of servers.
        volumes
            Total number of volumes across all servers.
        capacity
            Total raw capacity across all volumes.
        storage_class_name
            Storage class for the volume claims, if any.

        Returns
        -------
        Pool
            Newly-created pool.

        Raises
        ------
        pydantic.ValidationError
            Raised if the volumes do not divide evenly across the servers or
            the capacity does not divide evenly across the volumes.
        """
        return cls.model_validate(
            {
                "name": name,
                "servers": servers,
                "volumes": volumes,
                "capacity": capacity,
                "storageClassName": storage_class_name,
            }
        )

    @property
    def total_volumes(self) -> int:
        """Total number of volumes in the pool."""
        return self.servers * self.volumes_per_server

    def to_spec(self) -> dict[str, Any]:
        """Serialize the pool as it would appear in a ``Tenant`` spec."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TenantSpec(CamelCaseModel):
    """Specification of a ``Tenant`` custom resource."""

    image: Annotated[str, Field(title="Storage server image")] = (
        DEFAULT_MINIO_IMAGE
    )

    image_pull_policy: Annotated[
        PullPolicy, Field(title="Image pull policy")
    ] = PullPolicy.IF_NOT_PRESENT

    image_pull_secret: Annotated[
        LocalObjectReference | None, Field(title="Image pull secret")
    ] = None

    pools: Annotated[
        list[Pool], Field(title="Server pools", min_length=1)
    ]

    mount_path: Annotated[
        str, Field(title="Base mount path of data volumes", pattern="^/")
    ] = DEFAULT_MOUNT_PATH

    creds_secret: Annotated[
        LocalObjectReference | None,
        Field(
            title="Credentials secret",
            description=(
                "Secret with ``accesskey`` and ``secretkey``. If not given,"
                " the operator generates one."
            ),
        ),
    ] = None

    env: Annotated[
        list[EnvVar], Field(title="Extra server environment")
    ] = []

    tls: Annotated[TLSConfig, Field(title="TLS configuration")] = TLSConfig()

    kes: Annotated[KESConfig | None, Field(title="KES configuration")] = None

    console: Annotated[
        ConsoleConfig | None, Field(title="Management console")
    ] = None

    pod_management_policy: Annotated[
        PodManagementPolicy, Field(title="StatefulSet pod management policy")
    ] = PodManagementPolicy.PARALLEL

    service_account_name: Annotated[
        str | None, Field(title="Service account for server pods")
    ] = None

    priority_class_name: Annotated[
        str | None, Field(title="Priority class for server pods")
    ] = None

    liveness: Annotated[
        Liveness | None, Field(title="Liveness probe timings")
    ] = None

    @field_validator("pools")
    @classmethod
    def _validate_unique_pools(cls, v: list[Pool]) -> list[Pool]:
        names = [p.name for p in v]
        if len(names) != len(set(names)):
            raise ValueError("Pool names must be unique")
        return v

    @field_validator("mount_path")
    @classmethod
    def _validate_mount_path(cls, v: str) -> str:
        return v.rstrip("/") or "/"

    @model_validator(mode="after")
    def _validate_kes(self) -> Self:
        if not self.kes:
            return self
        if not self.tls.enabled:
            raise ValueError("KES requires TLS to be enabled")
        if self.tls.mode == TLSMode.EXTERNAL:
            if not self.tls.external_client_cert_secret:
                msg = "externalClientCertSecret required with KES"
                raise ValueError(msg)
            if not self.kes.external_cert_secret:
                raise ValueError("kes.externalCertSecret required with KES")
        return self


class TenantState(Enum):
    """Overall state of a tenant, reported in its status."""

    INVALID = "Invalid"
    """The specification failed validation."""

    WAITING_FOR_CERTIFICATES = "WaitingForCertificates"
    """Certificate requests are waiting for approval or signing."""

    BLOCKED = "Blocked"
    """A certificate request was denied or not approved in time."""

    PROVISIONING = "Provisioning"
    """Objects exist but not all servers are ready."""

    READY = "Ready"
    """All servers of all pools are ready."""


class PoolState(Enum):
    """Provisioning state of a pool, reported in the tenant status."""

    PENDING = "Pending"
    """Waiting for something (usually a certificate) before creation."""

    CREATED = "Created"
    """StatefulSet exists but not all replicas are ready."""

    READY = "Ready"
    """All replicas are ready."""


class PoolStatus(CamelCaseModel):
    """Status of one pool."""

    name: str
    state: PoolState
    replicas: int
    ready_replicas: int = 0


class TenantCondition(CamelCaseModel):
    """A status condition of a tenant."""

    type: str
    status: str
    reason: str
    message: str = ""
    last_transition_time: str | None = None


class TenantStatus(CamelCaseModel):
    """Status written to the ``Tenant`` status subresource."""

    current_state: TenantState
    observed_generation: int | None = None
    pools: list[PoolStatus] = []
    certificates: dict[str, str] = {}
    conditions: list[TenantCondition] = []

    def to_status(self) -> dict[str, Any]:
        """Serialize for a status patch."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Tenant(BaseModel):
    """A parsed ``Tenant`` object.

    Only the specification is validated. Status is kept as the raw object so
    that it can be compared with a freshly computed status without being
    rejected if some other writer produced something unexpected.
    """

    name: str = Field(..., title="Name of the tenant")

    namespace: str = Field(..., title="Namespace of the tenant")

    uid: str = Field(..., title="UID of the tenant")

    generation: int = Field(1, title="Generation of the specification")

    deleting: bool = Field(False, title="Whether deletion has started")

    spec: TenantSpec = Field(..., title="Tenant specification")

    status: dict[str, Any] | None = Field(None, title="Current raw status")

    @classmethod
    def from_object(cls, obj: dict[str, Any]) -> Self:
        """Parse a ``Tenant`` custom object.

        Parameters
        ----------
        obj
            Object as returned by the Kubernetes custom objects API.

        Returns
        -------
        Tenant
            Parsed tenant.

        Raises
        ------
        pydantic.ValidationError
            Raised if the tenant specification is invalid.
        """
        metadata = obj.get("metadata", {})
        return cls.model_validate(
            {
                "name": metadata.get("name"),
                "namespace": metadata.get("namespace"),
                "uid": metadata.get("uid"),
                "generation": metadata.get("generation") or 1,
                "deleting": bool(metadata.get("deletionTimestamp")),
                "spec": obj.get("spec") or {},
                "status": obj.get("status"),
            }
        )

    @property
    def key(self) -> str:
        """Work queue key of the tenant."""
        return f"{self.namespace}/{self.name}"
