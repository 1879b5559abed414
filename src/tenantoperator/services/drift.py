"""Comparison of desired objects against the objects in the cluster."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from kubernetes_asyncio.client import (
    V1Deployment,
    V1Secret,
    V1Service,
    V1StatefulSet,
)

from ..models.domain.drift import DriftReason, DriftResult, FieldDrift
from ..models.domain.kubernetes import KubernetesModel
from ..models.v1.tenant import Tenant
from ..units import quantity_to_decimal

__all__ = ["compare", "prune"]

_CONTAINER_FIELDS = ("image", "resources", "env", "volumeMounts")
"""Container fields the operator keeps in sync."""


def prune(value: Any) -> Any:
    """Recursively remove `None` values from serialized Kubernetes data."""
    if isinstance(value, dict):
        return {k: prune(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [prune(v) for v in value]
    return value


def compare(
    tenant: Tenant | None,
    desired: KubernetesModel,
    live: KubernetesModel | None,
) -> DriftResult:
    """Compare a desired object with the corresponding live object.

    Only the fields the operator manages are compared, and the comparison
    is directional: every value set in the desired object must be present
    with an equal value in the live object, but fields the live object has
    in addition (usually defaults added by Kubernetes) are ignored. Lists
    are compared position by position over the length of the desired list,
    and resource quantities are compared by value.

    Parameters
    ----------
    tenant
        Tenant owning the object.
    desired
        Object as generated from the tenant.
    live
        Object currently in the cluster, or `None` if it does not exist.

    Returns
    -------
    DriftResult
        Result of the comparison. If a container image differs, the reason
        is ``image`` even if other fields also differ.

    Raises
    ------
    ValueError
        Raised if no tenant is given or the object is of an unsupported
        kind.
    """
    if tenant is None:
        raise ValueError("Cannot compare objects without a tenant")
    if live is None:
        return DriftResult(matches=False, reason=DriftReason.MISSING)
    want = prune(desired.to_dict(serialize=True))
    have = prune(live.to_dict(serialize=True))

    drifts = []
    image_drift = False
    for path in _managed_paths(desired, want):
        value, _ = _resolve(want, path)
        if _is_empty(value):
            continue
        current, present = _resolve(have, path)
        quantities = path[-1] in ("resources", "requests", "limits")
        if not _is_derivative(value, current, quantities=quantities):
            if path[-1] == "image":
                image_drift = True
            pointer = "/" + "/".join(_escape(str(p)) for p in path)
            drifts.append(FieldDrift(pointer, value, present))

    if not drifts:
        return DriftResult(matches=True)
    reason = DriftReason.IMAGE if image_drift else DriftReason.SPEC
    return DriftResult(matches=False, reason=reason, drifts=drifts)


def _managed_paths(
    desired: KubernetesModel, data: dict[str, Any]
) -> list[tuple[str | int, ...]]:
    """Determine the paths of all managed fields of an object."""
    if isinstance(desired, V1StatefulSet | V1Deployment):
        paths: list[tuple[str | int, ...]] = [
            ("spec", "replicas"),
            ("spec", "template", "metadata", "labels"),
        ]
        pod_spec, _ = _resolve(data, ("spec", "template", "spec"))
        containers = (pod_spec or {}).get("containers", [])
        base = ("spec", "template", "spec", "containers")

        # Images are checked first so that they are patched first.
        paths.extend((*base, i, "image") for i in range(len(containers)))
        for i in range(len(containers)):
            paths.extend(
                (*base, i, f) for f in _CONTAINER_FIELDS if f != "image"
            )
        paths.append(("spec", "template", "spec", "volumes"))
        return paths
    elif isinstance(desired, V1Service):
        return [("spec", "ports"), ("spec", "selector")]
    elif isinstance(desired, V1Secret):
        return [("data",)]
    else:
        msg = f"Unsupported object type {type(desired).__name__}"
        raise ValueError(msg)


def _resolve(data: Any, path: tuple[str | int, ...]) -> tuple[Any, bool]:
    """Find the value at a path, returning whether it was present."""
    current = data
    for part in path:
        if isinstance(part, int):
            if not isinstance(current, list) or part >= len(current):
                return None, False
            current = current[part]
        else:
            if not isinstance(current, dict) or part not in current:
                return None, False
            current = current[part]
    return current, True


def _is_empty(value: Any) -> bool:
    return value is None or value in ({}, [], "")


def _is_derivative(desired: Any, live: Any, *, quantities: bool) -> bool:
    """Whether every value set in desired is matched in live."""
    if _is_empty(desired):
        return True
    if isinstance(desired, dict):
        if not isinstance(live, dict):
            return False
        return all(
            _is_derivative(v, live.get(k), quantities=quantities)
            for k, v in desired.items()
        )
    if isinstance(desired, list):
        if not isinstance(live, list) or len(live) < len(desired):
            return False
        return all(
            _is_derivative(d, lv, quantities=quantities)
            for d, lv in zip(desired, live, strict=False)
        )
    if desired == live:
        return True
    if quantities and live is not None:
        want, have = _quantity(desired), _quantity(live)
        return want is not None and want == have
    return False


def _quantity(value: Any) -> Decimal | None:
    try:
        return quantity_to_decimal(value)
    except (TypeError, ValueError):
        return None


def _escape(part: str) -> str:
    """Escape one component of a JSON pointer."""
    return part.replace("~", "~0").replace("/", "~1")
