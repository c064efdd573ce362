"""Unit tests for manifest discovery and parsing."""

from __future__ import annotations

from pathlib import Path

import pytest

from kd.errors import ManifestError
from kd.manifests.loader import collect_files, parse_resource, split_documents


class TestCollectFiles:
    """Tests for file discovery."""

    def test_files_and_directories(self, tmp_path: Path) -> None:
        """Test that directories are walked recursively in sorted order."""
        (tmp_path / "deploy" / "nested").mkdir(parents=True)
        (tmp_path / "deploy" / "b.yaml").write_text("kind: Service\n")
        (tmp_path / "deploy" / "a.yml").write_text("kind: Service\n")
        (tmp_path / "deploy" / "nested" / "c.yaml").write_text("kind: Service\n")
        (tmp_path / "deploy" / "README.md").write_text("docs\n")
        single = tmp_path / "single.yaml"
        single.write_text("kind: Service\n")

        files = collect_files([str(single), str(tmp_path / "deploy")])

        assert [f.relative_to(tmp_path).as_posix() for f in files] == [
            "single.yaml",
            "deploy/a.yml",
            "deploy/b.yaml",
            "deploy/nested/c.yaml",
        ]

    def test_missing_path(self, tmp_path: Path) -> None:
        """Test that a missing path fails before anything is read."""
        with pytest.raises(ManifestError, match="no such file or directory"):
            collect_files([str(tmp_path / "missing.yaml")])

    def test_no_paths(self) -> None:
        """Test that running without files is an error."""
        with pytest.raises(ManifestError, match="no kubernetes resource files specified"):
            collect_files([])


class TestSplitDocuments:
    """Tests for multi-document splitting."""

    def test_split_on_separator_lines(self) -> None:
        """Test splitting on lines that are exactly ---."""
        text = "---\nkind: Service\n---\nkind: Deployment\n"

        assert split_documents(text) == ["kind: Service\n", "kind: Deployment\n"]

    def test_inline_dashes_are_kept(self) -> None:
        """Test that --- inside a value does not split."""
        text = "kind: ConfigMap\ndata:\n  banner: a---b\n"

        assert split_documents(text) == [text]

    def test_empty_fragments_dropped(self) -> None:
        """Test that consecutive separators produce no empty documents."""
        assert split_documents("---\n---\nkind: Service\n") == ["kind: Service\n"]


class TestParseResource:
    """Tests for document parsing."""

    def test_parse_deployment(self) -> None:
        """Test parsing a rendered Deployment."""
        text = "apiVersion: apps/v1\nkind: Deployment\nmetadata:\n  name: web\nspec:\n  replicas: 2\n"

        resource = parse_resource(text, source_file="web.yaml", create_only=True)

        assert resource is not None
        assert resource.ref == "Deployment/web"
        assert resource.spec.replicas == 2
        assert resource.create_only is True
        assert resource.manifest == text
        assert resource.source_file == "web.yaml"

    def test_comment_only_document(self) -> None:
        """Test that a document with no content is skipped."""
        assert parse_resource("# nothing here\n", source_file="empty.yaml") is None

    def test_invalid_yaml(self) -> None:
        """Test that malformed YAML is a manifest error."""
        with pytest.raises(ManifestError, match="invalid YAML in broken.yaml"):
            parse_resource("kind: [unclosed\n", source_file="broken.yaml")

    def test_document_without_kind(self) -> None:
        """Test that a document without a kind is rejected."""
        with pytest.raises(ManifestError, match="has no kind"):
            parse_resource("metadata:\n  name: web\n", source_file="web.yaml")

    def test_custom_resource_with_scalar_strategy(self) -> None:
        """Test that fields kd does not read are not validated on other kinds."""
        resource = parse_resource(
            "kind: Widget\nmetadata:\n  name: w\nspec:\n  updateStrategy: RollingUpdate\n",
            source_file="w.yaml",
        )

        assert resource is not None
        assert resource.ref == "Widget/w"

    def test_invalid_workload_spec(self) -> None:
        """Test that a malformed workload spec is a manifest error."""
        with pytest.raises(ManifestError, match="invalid StatefulSet in db.yaml") as exc_info:
            parse_resource(
                "kind: StatefulSet\nmetadata:\n  name: db\nspec:\n  updateStrategy: OnDelete\n",
                source_file="db.yaml",
            )

        assert exc_info.value.phase == "parse"

    def test_numeric_name(self) -> None:
        """Test that a non-string name is a manifest error."""
        with pytest.raises(ManifestError, match="invalid ConfigMap"):
            parse_resource("kind: ConfigMap\nmetadata:\n  name: 123\n", source_file="cm.yaml")

    def test_non_mapping_metadata(self) -> None:
        """Test that metadata must be a mapping."""
        with pytest.raises(ManifestError, match="non-mapping metadata"):
            parse_resource("kind: ConfigMap\nmetadata: web\n", source_file="cm.yaml")
