"""Pytest configuration and fixtures for kd tests."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from typing import Any

import pytest

from kd.errors import ClusterClientError, ResourceNotFoundError
from kd.kubernetes.client import ClusterClient, KubectlResult, Verb
from kd.resources.models import ManagedResource, StatusSnapshot


ENV_NAMES = [
    "DEBUG",
    "DEBUG_TEMPLATES",
    "DRY_RUN",
    "INSECURE_SKIP_TLS_VERIFY",
    "KUBE_CONFIG_DATA",
    "KUBE_SERVER",
    "KUBE_TOKEN",
    "KUBE_USERNAME",
    "KUBE_PASSWORD",
    "CONFIG_FILE",
    "CREATE_ONLY",
    "CREATE_ONLY_RESOURCES",
    "KUBE_REPLACE",
    "KUBE_CONTEXT",
    "CONTEXT",
    "KUBE_NAMESPACE",
    "FAIL_SUPERSEDED",
    "KUBE_CERTIFICATE_AUTHORITY",
    "KUBE_CERTIFICATE_AUTHORITY_DATA",
    "KUBE_CERTIFICATE_AUTHORITY_FILE",
    "FILES",
    "TIMEOUT",
    "CHECK_INTERVAL",
    "ALLOW_MISSING",
]

KD_FIELDS = [
    "LOG_FORMAT",
    "DELETE",
    "EXTRA_ARGS",
    "INITIAL_DELAY",
    "FETCH_RETRIES",
    "FETCH_RETRY_DELAY",
]


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's or CI's kd variables out of the tests."""
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
        monkeypatch.delenv(f"PLUGIN_{name}", raising=False)
    for name in KD_FIELDS:
        monkeypatch.delenv(f"KD_{name}", raising=False)


class FakeClusterClient(ClusterClient):
    """Scripted in-memory cluster client.

    ``snapshots`` is consumed one entry per ``fetch_snapshot`` call; an
    exception entry is raised instead of returned. The last entry repeats
    once the script runs out.
    """

    def __init__(
        self,
        *,
        snapshots: Iterable[StatusSnapshot | Exception] = (),
        fields: dict[tuple[str, str, str], str] | None = None,
        existing: Iterable[tuple[str, str]] = (),
        submit_results: Iterable[KubectlResult] = (),
    ) -> None:
        self.snapshots = list(snapshots)
        self.fields = fields or {}
        self.existing = {(kind.lower(), name) for kind, name in existing}
        self.submit_results = list(submit_results)
        self.field_errors: dict[tuple[str, str], Exception] = {}
        self.fetch_calls: list[tuple[str, str]] = []
        self.field_calls: list[tuple[str, str, str]] = []
        self.submissions: list[tuple[Verb, str, tuple[str, ...]]] = []

    async def fetch_field(self, kind: str, name: str, path: str) -> str:
        self.field_calls.append((kind, name, path))
        if (kind, name) in self.field_errors:
            raise self.field_errors[(kind, name)]
        if (kind, name, path) in self.fields:
            return self.fields[(kind, name, path)]
        if path == ".metadata.name" and (kind.lower(), name) in self.existing:
            return name
        raise ResourceNotFoundError(
            f"NotFound: object {kind}/{name} not found",
            stderr=f'Error from server (NotFound): {kind.lower()} "{name}" not found',
            returncode=1,
        )

    async def fetch_snapshot(self, kind: str, name: str) -> StatusSnapshot:
        self.fetch_calls.append((kind, name))
        if not self.snapshots:
            raise ClusterClientError("no status scripted")
        entry = self.snapshots.pop(0) if len(self.snapshots) > 1 else self.snapshots[0]
        if isinstance(entry, Exception):
            raise entry
        return entry

    async def submit(
        self,
        verb: Verb,
        manifest: str,
        extra_args: Sequence[str] = (),
    ) -> KubectlResult:
        self.submissions.append((verb, manifest, tuple(extra_args)))
        if self.submit_results:
            return self.submit_results.pop(0)
        return KubectlResult(stdout="", stderr="", returncode=0)


@pytest.fixture
def fake_client() -> FakeClusterClient:
    """Empty scripted cluster client."""
    return FakeClusterClient()


@pytest.fixture
def make_resource() -> Callable[..., ManagedResource]:
    """Factory for resources built from a manifest-shaped document."""

    def _make(
        kind: str = "Deployment",
        name: str = "web",
        *,
        spec: dict[str, Any] | None = None,
        generate_name: str | None = None,
        create_only: bool = False,
    ) -> ManagedResource:
        metadata: dict[str, Any] = {}
        if name:
            metadata["name"] = name
        if generate_name:
            metadata["generateName"] = generate_name
        document = {"apiVersion": "apps/v1", "kind": kind, "metadata": metadata, "spec": spec or {}}
        return ManagedResource.from_document(
            document,
            manifest=f"kind: {kind}\nmetadata:\n  name: {name}\n",
            source_file="test.yaml",
            create_only=create_only,
        )

    return _make


@pytest.fixture
def deployment_status() -> Callable[..., StatusSnapshot]:
    """Factory for Deployment status snapshots."""

    def _status(
        replicas: int = 2,
        updated: int = 2,
        available: int = 2,
        unavailable: int = 0,
        generation: int = 1,
    ) -> StatusSnapshot:
        return StatusSnapshot(
            observed_generation=generation,
            replicas=replicas,
            updated_replicas=updated,
            available_replicas=available,
            unavailable_replicas=unavailable,
        )

    return _status


@pytest.fixture
def client_factory() -> type[FakeClusterClient]:
    """The scripted client class, for tests that need a custom script."""
    return FakeClusterClient
