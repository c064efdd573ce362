"""Batch deployment driver.

Renders and parses every manifest before anything is submitted, then
deploys the resources one at a time in file order. Each workload is
watched to a terminal state before the next resource starts; the first
failure stops the run.
"""

from __future__ import annotations

from dataclasses import dataclass

from kd.config.settings import Settings
from kd.engine.dispatcher import DeployDispatcher, DeployMode, DispatchResult
from kd.engine.watch import RolloutWatcher, WatchResult
from kd.kubernetes.client import ClusterClient
from kd.manifests.loader import collect_files, parse_resource, read_manifest, split_documents
from kd.manifests.render import Rendered, TemplateRenderer
from kd.observability.logging import LogContext, get_logger
from kd.resources.models import ManagedResource


log = get_logger(__name__)


@dataclass(frozen=True)
class DeployReport:
    """What happened to one resource."""

    resource: ManagedResource
    dispatch: DispatchResult
    watch: WatchResult | None = None


class Deployer:
    """Deploys the manifests named in the settings."""

    def __init__(
        self,
        settings: Settings,
        client: ClusterClient,
        *,
        renderer: TemplateRenderer | None = None,
    ) -> None:
        self.settings = settings
        self.client = client
        self.renderer = renderer or TemplateRenderer(client, allow_missing=settings.allow_missing)
        self.dispatcher = DeployDispatcher(client, DeployMode.from_settings(settings))
        self.watcher = RolloutWatcher(
            client,
            interval=settings.check_interval,
            timeout=settings.timeout,
            fail_superseded=settings.fail_superseded,
            initial_delay=settings.initial_delay,
            fetch_retries=settings.fetch_retries,
            fetch_retry_delay=settings.fetch_retry_delay,
        )

    async def load(self) -> list[ManagedResource]:
        """Render and parse every manifest document.

        Raises:
            ManifestError: If a file is missing or a document cannot be parsed.
            RenderError: If a template fails to render.
        """
        rendered: list[tuple[str, Rendered]] = []
        for path in collect_files(self.settings.files):
            log.debug("parsing_file", path=str(path))
            for document in split_documents(read_manifest(path)):
                rendered.append((str(path), await self.renderer.render(document, source=str(path))))

        resources: list[ManagedResource] = []
        for source_file, result in rendered:
            if self.settings.debug_templates:
                log.info("rendered_template", source_file=source_file, template=result.text)
            resource = parse_resource(result.text, source_file=source_file, create_only=result.secret_used)
            if resource is None:
                log.debug("empty_document_skipped", source_file=source_file)
                continue
            self._apply_create_only(resource)
            resources.append(resource)
        return resources

    def _apply_create_only(self, resource: ManagedResource) -> None:
        if self.settings.create_only:
            resource.create_only = True
            return
        if any(resource.matches(kind, name) for kind, name in self.settings.create_only_pairs):
            resource.create_only = True

    async def deploy_resource(self, resource: ManagedResource) -> DeployReport:
        """Submit one resource and, for workloads, watch its rollout."""
        with LogContext(kind=resource.kind, resource=resource.display_name):
            dispatch = await self.dispatcher.dispatch(resource)
            if dispatch.skipped or self.settings.delete or not resource.is_watchable:
                return DeployReport(resource=resource, dispatch=dispatch)
            watch = await self.watcher.watch(resource)
            return DeployReport(resource=resource, dispatch=dispatch, watch=watch)

    async def run(self) -> list[DeployReport]:
        """Load every manifest, then deploy them in order.

        A dry run stops after loading.

        Raises:
            KdError: The first failure; later resources are not touched.
        """
        resources = await self.load()
        if self.settings.dry_run:
            log.info("dry_run_complete", resources=len(resources))
            return []

        reports = []
        for resource in resources:
            reports.append(await self.deploy_resource(resource))
        log.info("deploy_complete", resources=len(reports))
        return reports


__all__ = ["DeployReport", "Deployer"]
