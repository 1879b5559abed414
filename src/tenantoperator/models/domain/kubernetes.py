"""Data types for interacting with Kubernetes."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Protocol, Self

from kubernetes_asyncio.client import V1ObjectMeta, V1Toleration
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

__all__ = [
    "KubernetesModel",
    "PodManagementPolicy",
    "PullPolicy",
    "TaintEffect",
    "Toleration",
    "TolerationOperator",
    "WatchEventType",
]


class KubernetesModel(Protocol):
    """Any object model generated by the operator or read back from the API.

    Every such model has metadata and can be serialized, which is all the
    storage layer and drift comparison rely on.
    """

    metadata: V1ObjectMeta

    def to_dict(self, *, serialize: bool = False) -> dict[str, Any]: ...


class PodManagementPolicy(Enum):
    """Pod management policy of a ``StatefulSet``."""

    ORDERED_READY = "OrderedReady"
    PARALLEL = "Parallel"


class PullPolicy(Enum):
    """Image pull policy of the containers of a tenant."""

    ALWAYS = "Always"
    IF_NOT_PRESENT = "IfNotPresent"
    NEVER = "Never"


class TaintEffect(Enum):
    NO_SCHEDULE = "NoSchedule"
    PREFER_NO_SCHEDULE = "PreferNoSchedule"
    NO_EXECUTE = "NoExecute"


class TolerationOperator(Enum):
    EQUAL = "Equal"
    EXISTS = "Exists"


class Toleration(BaseModel):
    """A taint the servers of a pool tolerate.

    Uses the same field names as the Kubernetes pod specification, so the
    tolerations of a pool can be copied from an existing pod.
    """

    key: Annotated[
        str | None,
        Field(
            title="Taint key",
            description="Unset with ``Exists`` to tolerate every taint",
        ),
    ] = None

    operator: Annotated[
        TolerationOperator, Field(title="Match operator")
    ] = TolerationOperator.EQUAL

    value: Annotated[str | None, Field(title="Taint value")] = None

    effect: Annotated[
        TaintEffect | None,
        Field(title="Taint effect", description="Unset to match any effect"),
    ] = None

    toleration_seconds: Annotated[
        int | None,
        Field(
            title="Seconds to tolerate",
            description="Only meaningful for ``NoExecute`` taints",
        ),
    ] = None

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    @model_validator(mode="after")
    def _check_operator(self) -> Self:
        match self.operator:
            case TolerationOperator.EXISTS if self.value:
                raise ValueError("value must be unset for operator Exists")
            case TolerationOperator.EQUAL if not (self.key and self.value):
                raise ValueError("key and value required for operator Equal")
        return self

    def to_kubernetes(self) -> V1Toleration:
        """Convert to the toleration of a pod specification."""
        return V1Toleration(
            key=self.key,
            operator=self.operator.value,
            value=self.value,
            effect=self.effect.value if self.effect else None,
            toleration_seconds=self.toleration_seconds,
        )


class WatchEventType(Enum):
    """Type of a Kubernetes watch event."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
