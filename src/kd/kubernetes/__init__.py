"""Kubernetes cluster access for kd."""

from kd.kubernetes.client import (
    ClusterClient,
    KubectlClient,
    KubectlOptions,
    KubectlResult,
    NoopClient,
    Verb,
    select_client,
)
from kd.kubernetes.credentials import staged_credentials


__all__ = [
    "ClusterClient",
    "KubectlClient",
    "KubectlOptions",
    "KubectlResult",
    "NoopClient",
    "Verb",
    "select_client",
    "staged_credentials",
]
