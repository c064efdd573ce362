"""Manifest discovery, document splitting and parsing."""

from __future__ import annotations

import re
from collections.abc import Sequence
from pathlib import Path

import yaml
from pydantic import ValidationError

from kd.errors import ManifestError
from kd.resources.models import ManagedResource


YAML_SUFFIXES = (".yaml", ".yml")

_DOCUMENT_SEPARATOR = re.compile(r"^---\n", re.MULTILINE)


def list_directory(path: Path) -> list[Path]:
    """Recursively list the YAML files under ``path`` in sorted order."""
    return sorted(p for p in path.rglob("*") if p.is_file() and p.suffix in YAML_SUFFIXES)


def collect_files(paths: Sequence[str | Path]) -> list[Path]:
    """Expand files and directories into the ordered list of manifest files.

    Every path is checked before any is used, so a typo fails the run
    before anything is deployed.

    Raises:
        ManifestError: If no paths were given or one does not exist.
    """
    if not paths:
        msg = "no kubernetes resource files specified"
        raise ManifestError(msg)

    files: list[Path] = []
    for entry in paths:
        path = Path(entry)
        if path.is_dir():
            files.extend(list_directory(path))
        elif path.exists():
            files.append(path)
        else:
            msg = f"stat {entry}: no such file or directory"
            raise ManifestError(msg, details={"path": str(entry)})
    return files


def read_manifest(path: Path) -> str:
    """Read a manifest file as text."""
    try:
        return path.read_text()
    except OSError as e:
        msg = f"cannot read {path}: {e.strerror or e}"
        raise ManifestError(msg, details={"path": str(path)}) from e


def split_documents(text: str) -> list[str]:
    """Split a multi-document YAML string on ``---`` lines, dropping empty parts."""
    return [document for document in _DOCUMENT_SEPARATOR.split(text) if document]


def parse_resource(
    rendered: str,
    *,
    source_file: str,
    create_only: bool = False,
) -> ManagedResource | None:
    """Parse one rendered document; ``None`` if it holds no object.

    Raises:
        ManifestError: If the document is not valid YAML, has no kind or has
            fields of the wrong shape.
    """
    try:
        document = yaml.safe_load(rendered)
    except yaml.YAMLError as e:
        msg = f"invalid YAML in {source_file}: {e}"
        raise ManifestError(msg, phase="parse", details={"path": source_file}) from e

    if document is None:
        return None
    if not isinstance(document, dict) or not document.get("kind"):
        msg = f"manifest in {source_file} has no kind"
        raise ManifestError(msg, phase="parse", details={"path": source_file})

    for section in ("metadata", "spec"):
        if document.get(section) is not None and not isinstance(document[section], dict):
            msg = f"manifest in {source_file} has a non-mapping {section}"
            raise ManifestError(msg, phase="parse", details={"path": source_file, "field": section})

    try:
        return ManagedResource.from_document(
            document,
            manifest=rendered,
            source_file=source_file,
            create_only=create_only,
        )
    except ValidationError as e:
        msg = f"invalid {document['kind']} in {source_file}: {e}"
        raise ManifestError(msg, phase="parse", details={"path": source_file}) from e
