"""kd Command Line Interface.

``kd`` renders and deploys manifests, watching workload rollouts until
they are ready. ``kd run`` runs kubectl itself with the same cluster
options.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from kd.config.settings import Settings, load_settings
from kd.deployer import Deployer
from kd.engine.existence import resource_exists
from kd.errors import ClusterClientError, ConfigurationError, KdError, SubmissionError
from kd.kubernetes.client import KubectlClient, select_client
from kd.kubernetes.credentials import staged_credentials
from kd.observability.logging import configure_logging, get_logger
from kd.version import __version__


if TYPE_CHECKING:
    from argparse import Namespace


log = get_logger(__name__)

EXTRA_ARGS_SEPARATOR = "--"


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="kd",
        description="kd - simple kubernetes resources deployment tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  kd -f deploy/                      Deploy every manifest under deploy/
  kd -f app.yaml -- --record         Pass extra flags to kubectl
  kd --delete -f app.yaml            Delete the resources instead
  kd run get pods                    Run kubectl with kd's cluster options

Every option can also be set from its environment variable.
        """,
    )

    parser.add_argument(
        "-V",
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    output = parser.add_argument_group("output")
    output.add_argument("--debug", action="store_true", default=None, help="Debug output")
    output.add_argument(
        "--debug-templates",
        action="store_true",
        default=None,
        help="Log every rendered template",
    )
    output.add_argument(
        "--log-format",
        choices=["console", "json"],
        default=None,
        help="Log output format",
    )

    modes = parser.add_argument_group("run modes")
    modes.add_argument(
        "--dryrun",
        "--dry-run",
        dest="dry_run",
        action="store_true",
        default=None,
        help="Render and parse the manifests, then exit before deploying",
    )
    modes.add_argument(
        "--delete",
        action="store_true",
        default=None,
        help="Delete the resources instead of applying them",
    )
    modes.add_argument(
        "--replace",
        action="store_true",
        default=None,
        help="Use replace instead of apply for updating objects",
    )
    modes.add_argument(
        "--create-only",
        action="store_true",
        default=None,
        help="Only create resources (do not update, skip if exists)",
    )
    modes.add_argument(
        "--create-only-resource",
        dest="create_only_resources",
        action="append",
        default=None,
        metavar="KIND/NAME",
        help="Only create this resource (repeatable)",
    )
    modes.add_argument(
        "--allow-missing",
        action="store_true",
        default=None,
        help="Render missing template variables as <no value> instead of failing",
    )
    modes.add_argument(
        "--fail-superseded",
        action="store_true",
        default=None,
        help="Fail a rollout that has been superseded by another one",
    )

    cluster = parser.add_argument_group("cluster")
    cluster.add_argument("-s", "--kube-server", metavar="URL", help="Kubernetes API server URL")
    cluster.add_argument("-t", "--kube-token", metavar="TOKEN", help="Kubernetes auth token")
    cluster.add_argument("-u", "--kube-username", metavar="USERNAME", help="Kubernetes auth username")
    cluster.add_argument("-p", "--kube-password", metavar="PASSWORD", help="Kubernetes auth password")
    cluster.add_argument("--kube-config-data", metavar="DATA", help="Kubernetes config file data")
    cluster.add_argument("-c", "--context", metavar="CONTEXT", help="Kube config context")
    cluster.add_argument("-n", "--namespace", metavar="NAMESPACE", help="Kubernetes namespace")
    cluster.add_argument(
        "--insecure-skip-tls-verify",
        action="store_true",
        default=None,
        help="Do not verify the API server certificate",
    )
    cluster.add_argument(
        "--certificate-authority",
        metavar="PATH",
        help="Path or URL of the CA for the Kubernetes API",
    )
    cluster.add_argument(
        "--certificate-authority-data",
        metavar="DATA",
        help="CA data for the Kubernetes API",
    )
    cluster.add_argument(
        "--certificate-authority-file",
        metavar="PATH",
        help="Where to save CA data or a downloaded CA",
    )

    inputs = parser.add_argument_group("inputs")
    inputs.add_argument(
        "-f",
        "--file",
        dest="files",
        action="append",
        default=None,
        metavar="PATH",
        help="File or directory of Kubernetes resources (repeatable)",
    )
    inputs.add_argument("--config", dest="config_file", metavar="PATH", help="Env file location")
    inputs.add_argument(
        "-T",
        "--timeout",
        help="How long to wait for a rollout, e.g. 3m or 90s",
    )
    inputs.add_argument("--check-interval", help="Rollout status check interval, e.g. 1s")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")
    subparsers.add_parser(
        "run",
        help="Run kubectl with kd's cluster options",
        usage="kd run [kubectl args]",
        add_help=False,
    )

    return parser


def split_extra_args(argv: Sequence[str]) -> tuple[list[str], list[str] | None]:
    """Split ``argv`` at the first ``--``; ``None`` when there is none."""
    args = list(argv)
    if EXTRA_ARGS_SEPARATOR not in args:
        return args, None
    index = args.index(EXTRA_ARGS_SEPARATOR)
    return args[:index], args[index + 1 :]


def settings_overrides(args: Namespace, extra_args: Sequence[str] = ()) -> dict[str, Any]:
    """Settings values given on the command line; unset flags are ``None``."""
    return {
        "debug": args.debug,
        "debug_templates": args.debug_templates,
        "log_format": args.log_format,
        "dry_run": args.dry_run,
        "delete": args.delete,
        "replace": args.replace,
        "create_only": args.create_only,
        "create_only_resources": args.create_only_resources,
        "allow_missing": args.allow_missing,
        "fail_superseded": args.fail_superseded,
        "kube_server": args.kube_server,
        "kube_token": args.kube_token,
        "kube_username": args.kube_username,
        "kube_password": args.kube_password,
        "kube_config_data": args.kube_config_data,
        "context": args.context,
        "namespace": args.namespace,
        "insecure_skip_tls_verify": args.insecure_skip_tls_verify,
        "certificate_authority": args.certificate_authority,
        "certificate_authority_data": args.certificate_authority_data,
        "certificate_authority_file": args.certificate_authority_file,
        "files": args.files,
        "config_file": args.config_file,
        "timeout": args.timeout,
        "check_interval": args.check_interval,
        "extra_args": tuple(extra_args) or None,
    }


async def deploy(settings: Settings) -> int:
    """Deploy the configured manifests."""
    if settings.dry_run:
        await Deployer(settings, select_client(settings)).run()
        return 0
    with staged_credentials(settings) as options:
        await Deployer(settings, select_client(settings, options)).run()
    return 0


async def run_kubectl(settings: Settings, kubectl_args: Sequence[str]) -> int:
    """Run kubectl with kd's cluster options and inherited stdio.

    With a single create-only resource configured, kubectl is not run
    when that object already exists.
    """
    pairs = settings.create_only_pairs
    if len(pairs) > 1:
        msg = "can only specify a single resource when using run"
        raise ConfigurationError(msg)

    with staged_credentials(settings) as options:
        client = KubectlClient(options)
        if pairs:
            kind, name = pairs[0]
            try:
                exists = await resource_exists(client, kind, name)
            except ClusterClientError as e:
                msg = f"problem checking if resource {kind}/{name} exists: {e.message}"
                raise SubmissionError(msg, phase="existence") from e
            if exists:
                log.info("skipping_run", resource=f"{kind}/{name}", reason="resource marked as create only exists")
                return 0
        returncode = await client.passthrough(kubectl_args)

    if returncode != 0:
        msg = (
            f"error running 'kubectl {' '.join(kubectl_args)}' "
            f"(use debug to see sensitive params): exit status {returncode}"
        )
        raise ClusterClientError(msg, returncode=returncode)
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    argv, extra_args = split_extra_args(sys.argv[1:] if argv is None else argv)
    parser = create_parser()
    args, unknown = parser.parse_known_args(argv)

    if args.command == "run":
        kubectl_args = list(unknown)
        if extra_args is not None:
            kubectl_args += [EXTRA_ARGS_SEPARATOR, *extra_args]
        overrides = settings_overrides(args)
    else:
        if unknown:
            parser.error(f"unrecognized arguments: {' '.join(unknown)}")
        kubectl_args = []
        overrides = settings_overrides(args, extra_args or ())

    try:
        settings = load_settings(**overrides)
    except ConfigurationError as e:
        print(f"[error] {e.message}", file=sys.stderr)
        return 1

    configure_logging(
        level="DEBUG" if settings.debug else "INFO",
        format_type=settings.log_format,
    )

    command_handlers = {
        None: lambda: deploy(settings),
        "run": lambda: run_kubectl(settings, kubectl_args),
    }

    try:
        return asyncio.run(command_handlers[args.command]())
    except KdError as e:
        log.error("run_failed", **e.to_dict())
        print(f"[error] {e.message}", file=sys.stderr)
        return 1


def run_cli() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run_cli()
