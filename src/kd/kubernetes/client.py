"""Cluster access through kubectl.

``ClusterClient`` is the small capability set the deploy engine needs:
read one field, read an object's status, and submit a manifest. The live
implementation shells out to kubectl; the no-op implementation backs dry
runs, where nothing may touch the cluster.
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from kd.errors import ClusterClientError, ResourceNotFoundError
from kd.observability.logging import get_logger
from kd.resources.models import StatusSnapshot


if TYPE_CHECKING:
    from kd.config.settings import Settings


log = get_logger(__name__)

NOT_FOUND_MARKER = "NotFound"
NOOP_VALUE = "noop"

_SENSITIVE_FLAGS = ("--token=", "--password=")


class Verb(str, Enum):
    """kubectl verbs used to submit manifests."""

    APPLY = "apply"
    CREATE = "create"
    REPLACE = "replace"
    DELETE = "delete"


@dataclass(frozen=True)
class KubectlResult:
    """Result of a kubectl invocation."""

    stdout: str
    stderr: str
    returncode: int

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass(frozen=True)
class KubectlOptions:
    """Global kubectl flags shared by every invocation in a run."""

    kubeconfig: str | None = None
    server: str | None = None
    insecure_skip_tls_verify: bool = False
    certificate_authority: str | None = None
    token: str | None = None
    username: str | None = None
    password: str | None = None
    context: str | None = None
    namespace: str | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        certificate_authority: str | None = None,
        kubeconfig: str | None = None,
    ) -> KubectlOptions:
        """Build options from settings plus staged credential file paths."""
        return cls(
            kubeconfig=kubeconfig,
            server=settings.kube_server,
            insecure_skip_tls_verify=settings.insecure_skip_tls_verify,
            certificate_authority=certificate_authority,
            token=settings.kube_token.get_secret_value() if settings.kube_token else None,
            username=settings.kube_username,
            password=settings.kube_password.get_secret_value() if settings.kube_password else None,
            context=settings.context,
            namespace=settings.namespace,
        )

    def global_flags(self) -> list[str]:
        """Flags placed before the kubectl sub-command."""
        flags: list[str] = []
        if self.kubeconfig:
            flags.append(f"--kubeconfig={self.kubeconfig}")
        if self.server:
            flags.append(f"--server={self.server}")
        if self.insecure_skip_tls_verify:
            flags.append("--insecure-skip-tls-verify")
        if self.certificate_authority:
            flags.append(f"--certificate-authority={self.certificate_authority}")
        if self.token:
            flags.append(f"--token={self.token}")
        else:
            if self.username:
                flags.append(f"--username={self.username}")
            if self.password:
                flags.append(f"--password={self.password}")
        if self.context:
            flags.append(f"--context={self.context}")
        if self.namespace:
            flags.append(f"--namespace={self.namespace}")
        return flags


def redact(args: Sequence[str]) -> list[str]:
    """Hide credentials in an argument list before it is logged."""
    redacted = []
    for arg in args:
        for prefix in _SENSITIVE_FLAGS:
            if arg.startswith(prefix):
                arg = f"{prefix}***"
                break
        redacted.append(arg)
    return redacted


class ClusterClient(ABC):
    """Operations the deploy engine performs against a cluster."""

    @abstractmethod
    async def fetch_field(self, kind: str, name: str, path: str) -> str:
        """Return the scalar at ``path`` (e.g. ``.metadata.name``) of an object.

        Raises:
            ResourceNotFoundError: If the object does not exist.
            ClusterClientError: On any other failure.
        """

    @abstractmethod
    async def fetch_snapshot(self, kind: str, name: str) -> StatusSnapshot:
        """Return a freshly built status snapshot of an object.

        Raises:
            ResourceNotFoundError: If the object does not exist.
            ClusterClientError: On any other failure.
        """

    @abstractmethod
    async def submit(
        self,
        verb: Verb,
        manifest: str,
        extra_args: Sequence[str] = (),
    ) -> KubectlResult:
        """Submit a manifest with the given verb.

        A non-zero exit is returned, not raised; only a failure to run
        kubectl at all raises ``ClusterClientError``.
        """


class KubectlClient(ClusterClient):
    """Live client invoking the kubectl binary."""

    def __init__(self, options: KubectlOptions | None = None, binary: str = "kubectl") -> None:
        self.options = options or KubectlOptions()
        self.binary = binary

    def command(self, args: Sequence[str]) -> list[str]:
        """Full command line for kubectl ``args``."""
        return [self.binary, *self.options.global_flags(), *args]

    async def _run(self, args: Sequence[str], stdin: str | None = None) -> KubectlResult:
        """Run kubectl, feeding ``stdin`` while stdout and stderr are drained."""
        cmd = self.command(args)
        log.debug("running_kubectl", command=redact(cmd))
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            msg = f"error starting {self.binary}: {e}"
            raise ClusterClientError(msg) from e

        stdout, stderr = await process.communicate(
            stdin.encode() if stdin is not None else None,
        )
        return KubectlResult(
            stdout=stdout.decode(errors="replace") if stdout else "",
            stderr=stderr.decode(errors="replace") if stderr else "",
            returncode=process.returncode or 0,
        )

    def _failure(self, kind: str, name: str, result: KubectlResult) -> ClusterClientError:
        stderr = result.stderr.strip()
        if NOT_FOUND_MARKER in stderr:
            return ResourceNotFoundError(
                f"{NOT_FOUND_MARKER}: object {kind}/{name} not found",
                stderr=stderr,
                returncode=result.returncode,
            )
        return ClusterClientError(
            stderr or f"{self.binary} exited with status {result.returncode}",
            stderr=stderr,
            returncode=result.returncode,
        )

    async def fetch_field(self, kind: str, name: str, path: str) -> str:
        result = await self._run(
            ["get", f"{kind}/{name}", "-o", f"custom-columns=:{path}", "--no-headers"],
        )
        if not result.ok:
            raise self._failure(kind, name, result)
        return result.stdout.strip()

    async def fetch_snapshot(self, kind: str, name: str) -> StatusSnapshot:
        result = await self._run(["get", f"{kind}/{name}", "-o", "json"])
        if not result.ok:
            raise self._failure(kind, name, result)
        try:
            document = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            msg = f"invalid kubectl output for {kind}/{name}: {e}"
            raise ClusterClientError(msg) from e
        if not isinstance(document, dict):
            msg = f"invalid kubectl output for {kind}/{name}: expected an object"
            raise ClusterClientError(msg)
        return StatusSnapshot.from_status(document.get("status"))

    async def submit(
        self,
        verb: Verb,
        manifest: str,
        extra_args: Sequence[str] = (),
    ) -> KubectlResult:
        extra = list(extra_args)
        if verb is Verb.CREATE and any("--force" in arg for arg in extra):
            log.info("dropping_force_flag", reason="--force is invalid for create")
            extra = [arg for arg in extra if "--force" not in arg]
        return await self._run([verb.value, "-f", "-", *extra], stdin=manifest)

    async def passthrough(self, args: Sequence[str]) -> int:
        """Run kubectl with inherited stdio and return its exit status."""
        cmd = self.command(args)
        log.debug("running_kubectl", command=redact(cmd))
        try:
            process = await asyncio.create_subprocess_exec(*cmd)
        except OSError as e:
            msg = f"error starting {self.binary}: {e}"
            raise ClusterClientError(msg) from e
        return await process.wait()


class NoopClient(ClusterClient):
    """Client for dry runs: answers without contacting a cluster."""

    async def fetch_field(self, kind: str, name: str, path: str) -> str:
        return NOOP_VALUE

    async def fetch_snapshot(self, kind: str, name: str) -> StatusSnapshot:
        return StatusSnapshot()

    async def submit(
        self,
        verb: Verb,
        manifest: str,
        extra_args: Sequence[str] = (),
    ) -> KubectlResult:
        return KubectlResult(stdout="", stderr="", returncode=0)


def select_client(settings: Settings, options: KubectlOptions | None = None) -> ClusterClient:
    """Pick the client for this run: no-op for dry runs, kubectl otherwise."""
    if settings.dry_run:
        return NoopClient()
    return KubectlClient(options)


__all__ = [
    "NOOP_VALUE",
    "NOT_FOUND_MARKER",
    "ClusterClient",
    "KubectlClient",
    "KubectlOptions",
    "KubectlResult",
    "NoopClient",
    "Verb",
    "redact",
    "select_client",
]
