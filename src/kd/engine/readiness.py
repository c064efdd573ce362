"""Rollout readiness rules per workload kind."""

from __future__ import annotations

from dataclasses import dataclass

from kd.resources.models import ResourceKind, ResourceSpec, StatusSnapshot


@dataclass(frozen=True)
class Readiness:
    """Verdict for one status snapshot."""

    ready: bool
    available: int
    unavailable: int


def _deployment_status_unobserved(status: StatusSnapshot) -> bool:
    # A new Deployment reports all-zero counts until its controller has
    # written status once; observedGeneration stays 0 until then.
    return status.observed_generation == 0 and not any(
        (
            status.replicas,
            status.updated_replicas,
            status.available_replicas,
            status.unavailable_replicas,
        )
    )


def evaluate(kind: ResourceKind, spec: ResourceSpec, status: StatusSnapshot) -> Readiness:
    """Decide whether a workload has converged.

    Deployment: no unavailable replicas, and available, total and updated
    replica counts agree. A snapshot the controller has not populated yet
    is never ready.

    StatefulSet: ready replicas equal the desired count and the current
    revision equals the update revision.

    DaemonSet: every desired node runs an available, updated pod.

    Job: one successful completion.

    Other kinds have no rollout and are always ready.
    """
    if kind is ResourceKind.DEPLOYMENT:
        ready = (
            status.unavailable_replicas == 0
            and status.available_replicas == status.replicas
            and status.replicas == status.updated_replicas
            and not _deployment_status_unobserved(status)
        )
        return Readiness(ready, status.available_replicas, status.unavailable_replicas)

    if kind is ResourceKind.STATEFULSET:
        desired = spec.desired_replicas
        ready = (
            status.ready_replicas == desired
            and status.current_revision == status.update_revision
        )
        return Readiness(ready, status.ready_replicas, desired - status.ready_replicas)

    if kind is ResourceKind.DAEMONSET:
        ready = (
            status.desired_number_scheduled == status.number_available
            and status.updated_number_scheduled == status.desired_number_scheduled
        )
        return Readiness(
            ready,
            status.number_available,
            status.desired_number_scheduled - status.updated_number_scheduled,
        )

    if kind is ResourceKind.JOB:
        if status.succeeded == 1:
            return Readiness(True, 1, 0)
        return Readiness(False, 0, 1)

    return Readiness(True, 0, 0)
