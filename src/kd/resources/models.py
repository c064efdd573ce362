"""Pydantic models for deployable Kubernetes resources.

Only the fields kd needs to pick a kubectl verb and to judge rollout
readiness are modelled; the full manifest travels as rendered text.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


ROLLING_UPDATE = "RollingUpdate"


class ResourceKind(str, Enum):
    """Workload categories with their own readiness rules."""

    DEPLOYMENT = "Deployment"
    STATEFULSET = "StatefulSet"
    DAEMONSET = "DaemonSet"
    JOB = "Job"
    OTHER = "Other"

    @classmethod
    def from_kind(cls, kind: str) -> ResourceKind:
        """Map a manifest ``kind`` onto a workload category."""
        for member in cls:
            if member is not cls.OTHER and member.value == kind:
                return member
        return cls.OTHER


WATCHABLE_KINDS = frozenset(
    {
        ResourceKind.DEPLOYMENT,
        ResourceKind.STATEFULSET,
        ResourceKind.DAEMONSET,
        ResourceKind.JOB,
    }
)

STRATEGY_KINDS = frozenset({ResourceKind.STATEFULSET, ResourceKind.DAEMONSET})


class UpdateStrategy(BaseModel):
    """``spec.updateStrategy`` of a StatefulSet or DaemonSet."""

    model_config = ConfigDict(extra="ignore")

    type: str | None = Field(default=None, description="Strategy type, e.g. RollingUpdate")


class ResourceSpec(BaseModel):
    """Desired-state fields used for readiness comparison."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    replicas: int | None = Field(default=None, description="Desired replica count")
    update_strategy: UpdateStrategy = Field(
        default_factory=UpdateStrategy,
        alias="updateStrategy",
    )

    @property
    def desired_replicas(self) -> int:
        """Desired replicas, using the API server default of 1 when omitted."""
        return 1 if self.replicas is None else self.replicas

    @property
    def is_rolling_update(self) -> bool:
        """Whether rollouts follow RollingUpdate (the apps/v1 default when unset)."""
        strategy = self.update_strategy.type
        return strategy is None or strategy == ROLLING_UPDATE


class StatusSnapshot(BaseModel):
    """Observed status of a workload at one point in time.

    Snapshots are immutable. Every fetch builds a new one from the object's
    ``status`` document; a field missing from that document reads as its
    zero value, never as the value of an earlier fetch.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    observed_generation: int = Field(default=0, alias="observedGeneration")

    # Deployment
    replicas: int = 0
    updated_replicas: int = Field(default=0, alias="updatedReplicas")
    available_replicas: int = Field(default=0, alias="availableReplicas")
    unavailable_replicas: int = Field(default=0, alias="unavailableReplicas")

    # StatefulSet
    ready_replicas: int = Field(default=0, alias="readyReplicas")
    current_revision: str = Field(default="", alias="currentRevision")
    update_revision: str = Field(default="", alias="updateRevision")

    # DaemonSet
    desired_number_scheduled: int = Field(default=0, alias="desiredNumberScheduled")
    updated_number_scheduled: int = Field(default=0, alias="updatedNumberScheduled")
    number_available: int = Field(default=0, alias="numberAvailable")

    # Job
    succeeded: int = 0

    @classmethod
    def from_status(cls, status: Mapping[str, Any] | None) -> StatusSnapshot:
        """Build a snapshot from an object's ``status`` mapping."""
        if not status:
            return cls()
        return cls.model_validate({k: v for k, v in status.items() if v is not None})


class ManagedResource(BaseModel):
    """One unit of deployable work: a rendered manifest plus its identity."""

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    kind: str = Field(description="Manifest kind, e.g. Deployment or Service")
    name: str = Field(default="", description="Object name; empty until generated")
    namespace: str | None = None
    generate_name: str | None = Field(default=None, alias="generateName")
    spec: ResourceSpec = Field(default_factory=ResourceSpec)
    status: StatusSnapshot = Field(default_factory=StatusSnapshot)
    create_only: bool = False
    manifest: str = Field(default="", description="Rendered manifest text")
    source_file: str = Field(default="", description="File the manifest came from")

    @classmethod
    def from_document(
        cls,
        document: Mapping[str, Any],
        *,
        manifest: str,
        source_file: str,
        create_only: bool = False,
    ) -> ManagedResource:
        """Build a resource from a parsed manifest document."""
        kind = document.get("kind") or ""
        metadata = document.get("metadata") or {}
        spec = document.get("spec") or {}
        resource_kind = ResourceKind.from_kind(kind)
        if resource_kind not in WATCHABLE_KINDS or not isinstance(spec, Mapping):
            # Only workload specs feed readiness.
            spec = {}
        elif resource_kind not in STRATEGY_KINDS or spec.get("updateStrategy") is None:
            spec = {key: value for key, value in spec.items() if key != "updateStrategy"}
        return cls(
            kind=kind,
            name=metadata.get("name") or "",
            namespace=metadata.get("namespace"),
            generate_name=metadata.get("generateName") or None,
            spec=ResourceSpec.model_validate(spec),
            create_only=create_only,
            manifest=manifest,
            source_file=source_file,
        )

    @property
    def resource_kind(self) -> ResourceKind:
        """Workload category of this resource."""
        return ResourceKind.from_kind(self.kind)

    @property
    def is_watchable(self) -> bool:
        """Whether a rollout of this kind is watched until ready."""
        return self.resource_kind in WATCHABLE_KINDS

    @property
    def display_name(self) -> str:
        """Name for messages, falling back to the generateName prefix."""
        return self.name or self.generate_name or ""

    @property
    def ref(self) -> str:
        """``kind/name`` reference understood by kubectl."""
        return f"{self.kind}/{self.name}"

    def matches(self, kind: str, name: str) -> bool:
        """Case-insensitive identity comparison used by create-only selectors."""
        return self.kind.lower() == kind.lower() and self.name.lower() == name.lower()

    def replace_status(self, snapshot: StatusSnapshot) -> None:
        """Swap in a freshly fetched snapshot, discarding the previous one."""
        self.status = snapshot
