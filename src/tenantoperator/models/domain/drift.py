"""Models for differences between desired and live objects."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

__all__ = ["DriftReason", "DriftResult", "FieldDrift"]


class DriftReason(Enum):
    """Why a live object does not match the desired object."""

    MISSING = "missing"
    """The object does not exist."""

    IMAGE = "image"
    """A container image differs."""

    SPEC = "spec"
    """Some other field managed by the operator differs."""


@dataclass(frozen=True, slots=True)
class FieldDrift:
    """One managed field of a live object that must be updated."""

    path: str
    """JSON pointer to the field."""

    value: Any
    """Desired value, in the serialized (camel-case) form."""

    present: bool
    """Whether the field exists on the live object."""


@dataclass(frozen=True, slots=True)
class DriftResult:
    """Result of comparing a desired object with a live object."""

    matches: bool
    """Whether the live object already satisfies the desired object."""

    reason: DriftReason | None = None
    """Why the objects do not match, or `None` if they match."""

    drifts: list[FieldDrift] = field(default_factory=list)
    """Managed fields that differ, each with its desired value."""
