"""Manifest loading and rendering."""

from kd.manifests.loader import collect_files, parse_resource, read_manifest, split_documents
from kd.manifests.render import Rendered, TemplateRenderer


__all__ = [
    "Rendered",
    "TemplateRenderer",
    "collect_files",
    "parse_resource",
    "read_manifest",
    "split_documents",
]
