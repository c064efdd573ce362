"""kd - simple Kubernetes resources deployment tool.

Renders manifests, submits them with kubectl and watches Deployments,
StatefulSets, DaemonSets and Jobs until they become healthy.
"""

from kd.version import __version__


__all__ = ["__version__"]
