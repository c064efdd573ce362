"""Unit tests for the kubectl cluster client."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from kd.config.settings import Settings
from kd.errors import ClusterClientError, ResourceNotFoundError
from kd.kubernetes.client import (
    NOOP_VALUE,
    KubectlClient,
    KubectlOptions,
    NoopClient,
    Verb,
    redact,
    select_client,
)


def fake_process(stdout: bytes = b"", stderr: bytes = b"", returncode: int = 0) -> MagicMock:
    """Process stand-in returned by create_subprocess_exec."""
    process = MagicMock()
    process.communicate = AsyncMock(return_value=(stdout, stderr))
    process.wait = AsyncMock(return_value=returncode)
    process.returncode = returncode
    return process


class TestKubectlOptions:
    """Tests for global kubectl flags."""

    def test_global_flags(self) -> None:
        """Test flag rendering for a token based setup."""
        options = KubectlOptions(
            server="https://k8s.example.com",
            token="s3cret",
            username="ignored",
            namespace="apps",
            context="prod",
            insecure_skip_tls_verify=True,
            certificate_authority="/tmp/ca.pem",
        )

        assert options.global_flags() == [
            "--server=https://k8s.example.com",
            "--insecure-skip-tls-verify",
            "--certificate-authority=/tmp/ca.pem",
            "--token=s3cret",
            "--context=prod",
            "--namespace=apps",
        ]

    def test_basic_auth_without_token(self) -> None:
        """Test that username and password are used when no token is set."""
        options = KubectlOptions(username="admin", password="hunter2")

        assert options.global_flags() == ["--username=admin", "--password=hunter2"]

    def test_from_settings(self) -> None:
        """Test that secrets are unwrapped from settings."""
        settings = Settings(kube_token="abc", namespace="apps")
        options = KubectlOptions.from_settings(settings, kubeconfig="/tmp/kd1/kube-config")

        assert options.token == "abc"
        assert options.kubeconfig == "/tmp/kd1/kube-config"
        assert options.namespace == "apps"

    def test_redact(self) -> None:
        """Test that credentials never reach the logs."""
        assert redact(["kubectl", "--token=abc", "--password=x", "get"]) == [
            "kubectl",
            "--token=***",
            "--password=***",
            "get",
        ]


class TestKubectlClient:
    """Tests for kubectl invocations."""

    @pytest.mark.asyncio
    async def test_fetch_field(self) -> None:
        """Test the custom-columns field lookup."""
        client = KubectlClient(KubectlOptions(namespace="apps"))
        process = fake_process(stdout=b"web\n")

        with patch(
            "kd.kubernetes.client.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=process),
        ) as create:
            value = await client.fetch_field("Deployment", "web", ".metadata.name")

        assert value == "web"
        args = create.call_args.args
        assert args == (
            "kubectl",
            "--namespace=apps",
            "get",
            "Deployment/web",
            "-o",
            "custom-columns=:.metadata.name",
            "--no-headers",
        )

    @pytest.mark.asyncio
    async def test_fetch_field_not_found(self) -> None:
        """Test that kubectl's NotFound error is classified."""
        process = fake_process(
            stderr=b'Error from server (NotFound): deployments.apps "web" not found\n',
            returncode=1,
        )

        with patch(
            "kd.kubernetes.client.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=process),
        ):
            with pytest.raises(ResourceNotFoundError, match="NotFound"):
                await KubectlClient().fetch_field("Deployment", "web", ".metadata.name")

    @pytest.mark.asyncio
    async def test_fetch_snapshot(self) -> None:
        """Test that the status document becomes a snapshot."""
        document = {
            "kind": "Deployment",
            "status": {"observedGeneration": 2, "replicas": 3, "updatedReplicas": 3},
        }
        process = fake_process(stdout=json.dumps(document).encode())

        with patch(
            "kd.kubernetes.client.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=process),
        ):
            snapshot = await KubectlClient().fetch_snapshot("Deployment", "web")

        assert snapshot.observed_generation == 2
        assert snapshot.updated_replicas == 3

    @pytest.mark.asyncio
    async def test_fetch_snapshot_invalid_json(self) -> None:
        """Test that garbage output is a client error."""
        process = fake_process(stdout=b"not json")

        with patch(
            "kd.kubernetes.client.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=process),
        ):
            with pytest.raises(ClusterClientError, match="invalid kubectl output"):
                await KubectlClient().fetch_snapshot("Deployment", "web")

    @pytest.mark.asyncio
    async def test_submit_feeds_manifest_on_stdin(self) -> None:
        """Test that the manifest is written to kubectl's stdin."""
        process = fake_process(stdout=b"deployment.apps/web configured\n")

        with patch(
            "kd.kubernetes.client.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=process),
        ) as create:
            result = await KubectlClient().submit(Verb.APPLY, "kind: Deployment\n", ["--record"])

        assert result.ok is True
        assert create.call_args.args == ("kubectl", "apply", "-f", "-", "--record")
        process.communicate.assert_awaited_once_with(b"kind: Deployment\n")

    @pytest.mark.asyncio
    async def test_create_drops_force(self) -> None:
        """Test that --force is not passed to create."""
        process = fake_process()

        with patch(
            "kd.kubernetes.client.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=process),
        ) as create:
            await KubectlClient().submit(Verb.CREATE, "kind: Job\n", ["--force", "--record"])

        assert create.call_args.args == ("kubectl", "create", "-f", "-", "--record")

    @pytest.mark.asyncio
    async def test_submit_failure_is_returned(self) -> None:
        """Test that a non-zero exit is reported, not raised."""
        process = fake_process(stderr=b"error: invalid\n", returncode=1)

        with patch(
            "kd.kubernetes.client.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=process),
        ):
            result = await KubectlClient().submit(Verb.APPLY, "kind: Deployment\n")

        assert result.ok is False
        assert result.stderr == "error: invalid\n"

    @pytest.mark.asyncio
    async def test_missing_binary(self) -> None:
        """Test that a missing kubectl raises a client error."""
        with patch(
            "kd.kubernetes.client.asyncio.create_subprocess_exec",
            new=AsyncMock(side_effect=FileNotFoundError("kubectl")),
        ):
            with pytest.raises(ClusterClientError, match="error starting kubectl"):
                await KubectlClient().fetch_field("Deployment", "web", ".metadata.name")

    @pytest.mark.asyncio
    async def test_passthrough_returns_exit_status(self) -> None:
        """Test that passthrough runs kubectl with the global flags."""
        process = fake_process(returncode=3)

        with patch(
            "kd.kubernetes.client.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=process),
        ) as create:
            code = await KubectlClient(KubectlOptions(context="dev")).passthrough(["get", "pods"])

        assert code == 3
        assert create.call_args.args == ("kubectl", "--context=dev", "get", "pods")


class TestNoopClient:
    """Tests for the dry-run client."""

    @pytest.mark.asyncio
    async def test_noop_answers(self) -> None:
        """Test that the no-op client never fails."""
        client = NoopClient()

        assert await client.fetch_field("Secret", "db", ".data.password") == NOOP_VALUE
        assert (await client.submit(Verb.APPLY, "kind: Secret\n")).ok is True

    def test_select_client(self) -> None:
        """Test that dry runs get the no-op client."""
        assert isinstance(select_client(Settings(dry_run=True)), NoopClient)
        assert isinstance(select_client(Settings()), KubectlClient)
