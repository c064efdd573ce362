"""Resource models for kd."""

from kd.resources.models import (
    ROLLING_UPDATE,
    WATCHABLE_KINDS,
    ManagedResource,
    ResourceKind,
    ResourceSpec,
    StatusSnapshot,
    UpdateStrategy,
)


__all__ = [
    "ROLLING_UPDATE",
    "WATCHABLE_KINDS",
    "ManagedResource",
    "ResourceKind",
    "ResourceSpec",
    "StatusSnapshot",
    "UpdateStrategy",
]
