"""Utilities for reading test data."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from tenantoperator.models.v1.tenant import Tenant

__all__ = ["read_input_tenant", "read_tenant"]


def read_input_tenant(name: str) -> dict[str, Any]:
    """Read a ``Tenant`` custom object from the test data.

    Parameters
    ----------
    name
        Base name of the file under ``tests/data/tenants``, without the
        ``.json`` extension.

    Returns
    -------
    dict
        Custom object, without the fields set by Kubernetes on creation.
    """
    path = Path(__file__).parent.parent / "data" / "tenants" / f"{name}.json"
    with path.open("r") as f:
        return json.load(f)


def read_tenant(name: str) -> Tenant:
    """Read and parse a ``Tenant`` from the test data.

    Used by tests that don't go through the Kubernetes API, so the fields
    Kubernetes would set on creation are filled in with fixed values.

    Parameters
    ----------
    name
        Base name of the file under ``tests/data/tenants``.

    Returns
    -------
    Tenant
        Parsed tenant.
    """
    obj = read_input_tenant(name)
    obj["metadata"]["uid"] = "3c5a2d0e-6f1b-4c8e-9a7d-1b2c3d4e5f60"
    obj["metadata"]["generation"] = 1
    return Tenant.from_object(obj)
