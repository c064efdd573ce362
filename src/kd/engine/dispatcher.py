"""Manifest submission.

Chooses the kubectl verb for a resource from the run mode and whether the
object already exists, submits the manifest, and records the name the
API server generated for ``generateName`` objects.
"""

from __future__ import annotations

from dataclasses import dataclass

from kd.config.settings import Settings
from kd.engine.existence import resource_exists
from kd.errors import ClusterClientError, SubmissionError
from kd.kubernetes.client import ClusterClient, KubectlResult, Verb
from kd.observability.logging import get_logger
from kd.resources.models import ManagedResource


log = get_logger(__name__)

CREATED_MARKER = " created"


@dataclass(frozen=True)
class DeployMode:
    """Run-wide submission flags."""

    delete: bool = False
    replace: bool = False
    extra_args: tuple[str, ...] = ()

    @classmethod
    def from_settings(cls, settings: Settings) -> DeployMode:
        return cls(
            delete=settings.delete,
            replace=settings.replace,
            extra_args=tuple(settings.extra_args),
        )


@dataclass(frozen=True)
class DispatchResult:
    """What the dispatcher did with one resource."""

    verb: Verb | None
    output: str = ""
    skip_reason: str | None = None

    @property
    def skipped(self) -> bool:
        return self.verb is None


def choose_verb(resource: ManagedResource, mode: DeployMode, exists: bool) -> Verb | None:
    """Pick the kubectl verb, or ``None`` when the resource is left alone.

    Objects with a generated name are always created (apply and replace
    need a name) and cannot be deleted by name.
    """
    if resource.generate_name:
        return None if mode.delete else Verb.CREATE
    if resource.create_only and exists:
        return None
    if mode.delete:
        return Verb.DELETE if exists else None
    if mode.replace:
        return Verb.REPLACE if exists else Verb.CREATE
    return Verb.APPLY


def _skip_reason(resource: ManagedResource, exists: bool) -> str:
    if resource.generate_name:
        return "objects with a generated name cannot be deleted by name"
    if resource.create_only and exists:
        return "it is marked as create only and already exists"
    return "it does not exist"


def parse_generated_name(output: str) -> str:
    """Extract ``name`` from kubectl's ``<kind>/<name> created`` confirmation.

    Raises:
        SubmissionError: If no confirmation line is present.
    """
    for line in output.splitlines():
        line = line.strip()
        if not line.endswith(CREATED_MARKER):
            continue
        reference = line[: -len(CREATED_MARKER)].strip()
        _, sep, name = reference.partition("/")
        if sep and name:
            return name
    msg = f"could not determine generated name from kubectl output: {output.strip()!r}"
    raise SubmissionError(msg)


class DeployDispatcher:
    """Submits resources to the cluster one at a time."""

    def __init__(self, client: ClusterClient, mode: DeployMode | None = None) -> None:
        self.client = client
        self.mode = mode or DeployMode()

    def needs_existence_check(self, resource: ManagedResource) -> bool:
        if resource.generate_name:
            return False
        return resource.create_only or self.mode.replace or self.mode.delete

    async def dispatch(self, resource: ManagedResource) -> DispatchResult:
        """Submit ``resource`` with the verb the run mode calls for.

        On success a generated name is written back to ``resource.name``.

        Raises:
            SubmissionError: If the existence check or the submission failed.
            ClusterClientError: If kubectl could not be started.
        """
        exists = False
        if self.needs_existence_check(resource):
            try:
                exists = await resource_exists(self.client, resource.kind, resource.name)
            except ClusterClientError as e:
                msg = f"problem checking if resource {resource.ref} exists: {e.message}"
                raise SubmissionError(msg, phase="existence", details={"resource": resource.ref}) from e

        verb = choose_verb(resource, self.mode, exists)
        if verb is None:
            reason = _skip_reason(resource, exists)
            log.info("skipping_resource", kind=resource.kind, name=resource.display_name, reason=reason)
            return DispatchResult(verb=None, skip_reason=reason)

        action = "deleting" if verb is Verb.DELETE else "deploying"
        log.info(
            action,
            kind=resource.kind.lower(),
            name=resource.display_name,
            verb=verb.value,
            source_file=resource.source_file,
        )
        result = await self.client.submit(verb, resource.manifest, self.mode.extra_args)
        if not result.ok:
            raise SubmissionError(
                self._failure_message(resource, verb, result),
                details={"resource": f"{resource.kind}/{resource.display_name}", "verb": verb.value},
            )

        output = result.stdout.strip()
        if output:
            log.info("kubectl_output", output=output)

        if resource.generate_name:
            resource.name = parse_generated_name(result.stdout)
            log.debug("generated_name", kind=resource.kind, name=resource.name)

        return DispatchResult(verb=verb, output=output)

    @staticmethod
    def _failure_message(resource: ManagedResource, verb: Verb, result: KubectlResult) -> str:
        stderr = result.stderr.strip()
        if stderr:
            return stderr
        return (
            f"{resource.kind}/{resource.display_name}: "
            f"kubectl {verb.value} exited with status {result.returncode}"
        )


__all__ = [
    "DeployDispatcher",
    "DeployMode",
    "DispatchResult",
    "choose_verb",
    "parse_generated_name",
]
