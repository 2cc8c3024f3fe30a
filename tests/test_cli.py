"""Tests for the CLI interface."""

from __future__ import annotations

from pathlib import Path

import yaml
from click.testing import CliRunner

from etcd_operator.cli import cli

runner = CliRunner()


def test_cli_help() -> None:
    result = runner.invoke(cli, ["--help"])
    assert result.exit_code == 0
    for command in ("run", "validate", "render", "status"):
        assert command in result.output


def test_validate_accepts_manifest(manifest_file: Path) -> None:
    """Test manifest validation command."""
    result = runner.invoke(cli, ["validate", str(manifest_file)])

    assert result.exit_code == 0
    assert "Manifest is valid" in result.output
    assert "quay.io/coreos/etcd:v3.5.21" in result.output


def test_validate_rejects_even_size(tmp_path: Path, sample_manifest: dict) -> None:
    """Test validation reports the failing rule."""
    sample_manifest["spec"]["size"] = 4
    path = tmp_path / "even.yaml"
    path.write_text(yaml.dump(sample_manifest))

    result = runner.invoke(cli, ["validate", str(path)])

    assert result.exit_code == 1
    assert "ParityViolation" in result.output


def test_validate_rejects_malformed_manifest(tmp_path: Path) -> None:
    path = tmp_path / "broken.yaml"
    path.write_text("spec:\n  size: 3\n")

    result = runner.invoke(cli, ["validate", str(path)])

    assert result.exit_code == 1
    assert "Could not read" in result.output


def test_render_prints_child_resources(manifest_file: Path) -> None:
    """Test rendering the child resources of a manifest."""
    result = runner.invoke(cli, ["render", str(manifest_file), "--replicas", "3"])

    assert result.exit_code == 0
    documents = [d for d in yaml.safe_load_all(result.output) if d]
    assert [d["kind"] for d in documents] == ["ConfigMap", "Service", "Service", "StatefulSet"]
    statefulset = documents[-1]
    assert statefulset["spec"]["replicas"] == 3
    assert statefulset["spec"]["volumeClaimTemplates"][0]["spec"]["storageClassName"] == "fast"
